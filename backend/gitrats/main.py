"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gitrats.api import admin, leaderboards, ops, sync
from gitrats.api.errors import install_error_handlers
from gitrats.infra import http, postgres
from gitrats.obs import init as obs_init
from gitrats.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	try:
		yield
	finally:
		await http.close_http_client()
		await postgres.close_pool()


def create_app() -> FastAPI:
	application = FastAPI(title="GitRats XP API", lifespan=lifespan)
	if settings.cors_allow_origins:
		application.add_middleware(
			CORSMiddleware,
			allow_origins=list(settings.cors_allow_origins),
			allow_credentials=True,
			allow_methods=["*"],
			allow_headers=["*"],
		)
	obs_init(application)
	install_error_handlers(application)
	application.include_router(ops.router)
	application.include_router(sync.router)
	application.include_router(admin.router)
	application.include_router(leaderboards.router)
	return application


app = create_app()
