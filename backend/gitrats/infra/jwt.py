"""Access tokens shared with the web frontend.

The frontend signs short-lived HS256 tokens with the shared secret after the
GitHub OAuth dance; the API only verifies them. ``sub`` is the GitRats user id,
``login`` the GitHub handle and ``roles`` a list such as ``["admin"]``.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, Optional

import jwt
from jwt import InvalidTokenError

from gitrats.settings import settings

ISSUER = "gitrats-web"
AUDIENCE = "gitrats-api"
ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 3600


def encode_access(
	user_id: str,
	*,
	login: Optional[str] = None,
	roles: Iterable[str] = (),
	ttl_seconds: int = DEFAULT_TTL_SECONDS,
) -> str:
	now = int(time.time())
	claims: Dict[str, Any] = {
		"sub": user_id,
		"roles": list(roles),
		"iss": ISSUER,
		"aud": AUDIENCE,
		"iat": now,
		"exp": now + ttl_seconds,
	}
	if login:
		claims["login"] = login
	return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def decode_access(token: str) -> Dict[str, Any]:
	"""Verify signature, expiry, issuer and audience.

	Raises ``jwt.InvalidTokenError`` (or a subclass) when any check fails.
	"""
	claims = jwt.decode(
		token,
		settings.secret_key,
		algorithms=[ALGORITHM],
		audience=AUDIENCE,
		issuer=ISSUER,
		leeway=5,
		options={"require": ["exp", "iat", "iss", "aud", "sub"]},
	)
	if not str(claims["sub"]).strip():
		raise InvalidTokenError("empty subject")
	return claims
