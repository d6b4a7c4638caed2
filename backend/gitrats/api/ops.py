"""Health probes and the Prometheus scrape endpoint."""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from gitrats.infra.auth import verify_access_jwt
from gitrats.obs import health
from gitrats.settings import settings

router = APIRouter(tags=["ops"])


def _bearer(authorization: Optional[str]) -> Optional[str]:
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1].strip()
	return None


def _is_admin_session(token: str) -> bool:
	try:
		return verify_access_jwt(token).has_role("admin")
	except HTTPException:
		return False


async def require_metrics_access(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	"""Allow scrapers holding the ops token, or an admin session."""
	if settings.obs_metrics_public:
		return
	presented = x_admin_token or _bearer(authorization)
	if not presented:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")
	expected = settings.obs_admin_token
	if expected and hmac.compare_digest(presented.encode(), expected.encode()):
		return
	if x_admin_token is None and _is_admin_session(presented):
		return
	raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return await health.liveness()


@router.get("/health/ready")
async def health_ready() -> Response:
	status_code, payload = await health.readiness()
	return JSONResponse(content=payload, status_code=status_code)


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
