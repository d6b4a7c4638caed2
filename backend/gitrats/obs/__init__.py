"""Observability bootstrap: JSON logging, request middleware, build info."""

from __future__ import annotations

from fastapi import FastAPI

from gitrats.obs import logging as obs_logging
from gitrats.obs import metrics, middleware
from gitrats.settings import settings

_logging_configured = False


def init(app: FastAPI) -> None:
	"""Instrument ``app``; logging is configured once per process."""
	global _logging_configured
	if not settings.obs_enabled:
		return
	if not _logging_configured:
		obs_logging.configure_logging()
		metrics.set_build_info(settings.service_name, settings.git_commit, settings.environment)
		_logging_configured = True
	middleware.install(app)


__all__ = ["init"]
