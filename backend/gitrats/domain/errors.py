"""Error taxonomy for the XP engine."""

from __future__ import annotations

import math

from fastapi import status


class XPEngineError(RuntimeError):
	"""Base class for reconciliation and grant failures."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	code: str = "xp_engine_error"

	def __init__(self, message: str | None = None) -> None:
		super().__init__(message or self.code)


class CredentialExpired(XPEngineError):
	"""GitHub rejected the stored access token; the user must re-authenticate."""

	status_code = status.HTTP_401_UNAUTHORIZED
	code = "github_credential_expired"


class SourceUnavailable(XPEngineError):
	"""Lifetime totals could not be fetched; nothing was written."""

	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	code = "github_unavailable"


class UserNotFound(XPEngineError):
	status_code = status.HTTP_404_NOT_FOUND
	code = "user_not_found"


class CharacterNotFound(XPEngineError):
	status_code = status.HTTP_404_NOT_FOUND
	code = "character_not_found"


class AchievementNotFound(XPEngineError):
	status_code = status.HTTP_404_NOT_FOUND
	code = "achievement_not_found"


class CooldownActive(XPEngineError):
	"""A sync was attempted before the minimum interval elapsed."""

	status_code = status.HTTP_429_TOO_MANY_REQUESTS
	code = "sync_cooldown"

	def __init__(self, retry_after: float) -> None:
		self.retry_after = max(1, math.ceil(retry_after))
		super().__init__(f"sync available in {self.retry_after}s")


class SyncInProgress(XPEngineError):
	"""Another reconciliation for the same user holds the lock or won the write."""

	status_code = status.HTTP_409_CONFLICT
	code = "sync_in_progress"


class InvariantViolation(XPEngineError):
	"""Derived level/XP fields disagree; the write is refused."""

	status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
	code = "xp_invariant_violation"
