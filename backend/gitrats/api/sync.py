"""Self-service GitHub sync endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from gitrats.api.deps import get_reconcile_service
from gitrats.api.errors import to_http_error
from gitrats.domain.errors import XPEngineError
from gitrats.domain.sync.schemas import ReconcileResultSchema, SyncStatusSchema
from gitrats.domain.sync.service import ReconcileService
from gitrats.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/github", tags=["github-sync"])


@router.post("/sync", response_model=ReconcileResultSchema)
async def sync_endpoint(
    auth_user: AuthenticatedUser = Depends(get_current_user),
    service: ReconcileService = Depends(get_reconcile_service),
) -> ReconcileResultSchema:
    """Reconcile the caller's GitHub activity into XP."""
    try:
        result = await service.reconcile_user(auth_user.id)
    except XPEngineError as exc:
        raise to_http_error(exc) from exc
    return ReconcileResultSchema.model_validate(result)


@router.get("/sync/status", response_model=SyncStatusSchema)
async def sync_status_endpoint(
    auth_user: AuthenticatedUser = Depends(get_current_user),
    service: ReconcileService = Depends(get_reconcile_service),
) -> SyncStatusSchema:
    try:
        status = await service.sync_status(auth_user.id)
    except XPEngineError as exc:
        raise to_http_error(exc) from exc
    return SyncStatusSchema.model_validate(status)
