"""Admin XP maintenance endpoints: bulk sync, recalculation, grants."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from gitrats.api.deps import get_achievement_service, get_guild_service, get_reconcile_service
from gitrats.api.errors import to_http_error
from gitrats.domain.achievements.schemas import AchievementGrantSchema, GrantAchievementRequest
from gitrats.domain.achievements.service import AchievementService
from gitrats.domain.errors import XPEngineError
from gitrats.domain.guilds.schemas import GuildRecountReportSchema, GuildRecountSchema
from gitrats.domain.guilds.service import GuildService
from gitrats.domain.sync.schemas import (
    BulkReportSchema,
    ReconcileResultSchema,
    RecalculationResultSchema,
    XPAnalysisSchema,
    XPVerificationSchema,
)
from gitrats.domain.sync.service import ReconcileService
from gitrats.infra.auth import AuthenticatedUser, get_admin_user

router = APIRouter(prefix="/admin", tags=["admin-xp"])


@router.post("/sync-all", response_model=BulkReportSchema)
async def sync_all_endpoint(
    _: AuthenticatedUser = Depends(get_admin_user),
    service: ReconcileService = Depends(get_reconcile_service),
) -> BulkReportSchema:
    return BulkReportSchema.from_entries(await service.reconcile_all_users())


@router.post("/recalculate-all", response_model=BulkReportSchema)
async def recalculate_all_endpoint(
    _: AuthenticatedUser = Depends(get_admin_user),
    service: ReconcileService = Depends(get_reconcile_service),
) -> BulkReportSchema:
    return BulkReportSchema.from_entries(await service.recalculate_all_users())


@router.post("/users/{user_id}/recalculate", response_model=RecalculationResultSchema)
async def recalculate_user_endpoint(
    user_id: str,
    _: AuthenticatedUser = Depends(get_admin_user),
    service: ReconcileService = Depends(get_reconcile_service),
) -> RecalculationResultSchema:
    try:
        result = await service.recalculate_user(user_id)
    except XPEngineError as exc:
        raise to_http_error(exc) from exc
    return RecalculationResultSchema.model_validate(result)


@router.post("/users/{user_id}/repair-sync", response_model=ReconcileResultSchema)
async def repair_sync_endpoint(
    user_id: str,
    _: AuthenticatedUser = Depends(get_admin_user),
    service: ReconcileService = Depends(get_reconcile_service),
) -> ReconcileResultSchema:
    try:
        result = await service.repair_user(user_id)
    except XPEngineError as exc:
        raise to_http_error(exc) from exc
    return ReconcileResultSchema.model_validate(result)


@router.get("/users/{user_id}/xp-analysis", response_model=XPAnalysisSchema)
async def xp_analysis_endpoint(
    user_id: str,
    _: AuthenticatedUser = Depends(get_admin_user),
    service: ReconcileService = Depends(get_reconcile_service),
) -> XPAnalysisSchema:
    try:
        analysis = await service.analyze_user(user_id)
    except XPEngineError as exc:
        raise to_http_error(exc) from exc
    return XPAnalysisSchema.from_analysis(analysis)


@router.get("/users/{user_id}/xp-verification", response_model=XPVerificationSchema)
async def xp_verification_endpoint(
    user_id: str,
    _: AuthenticatedUser = Depends(get_admin_user),
    service: ReconcileService = Depends(get_reconcile_service),
) -> XPVerificationSchema:
    try:
        verification = await service.verify_user(user_id)
    except XPEngineError as exc:
        raise to_http_error(exc) from exc
    return XPVerificationSchema.model_validate(verification)


@router.post("/achievements/grant", response_model=AchievementGrantSchema)
async def grant_achievement_endpoint(
    payload: GrantAchievementRequest,
    admin: AuthenticatedUser = Depends(get_admin_user),
    service: AchievementService = Depends(get_achievement_service),
) -> AchievementGrantSchema:
    try:
        result = await service.grant_achievement(payload.user_id, payload.code, granted_by=admin.id)
    except XPEngineError as exc:
        raise to_http_error(exc) from exc
    return AchievementGrantSchema.model_validate(result)


@router.post("/guilds/recalculate", response_model=GuildRecountReportSchema)
async def recalculate_guilds_endpoint(
    _: AuthenticatedUser = Depends(get_admin_user),
    service: GuildService = Depends(get_guild_service),
) -> GuildRecountReportSchema:
    report = await service.recalculate_all()
    items = [GuildRecountSchema.model_validate(item) for item in report]
    return GuildRecountReportSchema(
        guilds=len(items),
        changed=sum(1 for item in items if item.changed),
        items=items,
    )
