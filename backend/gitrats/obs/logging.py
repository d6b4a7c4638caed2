"""Structured JSON logging.

Every line is a single JSON object. Request-scoped fields (request id, route,
caller, client ip) come from a context variable bound by the HTTP middleware;
anything passed through ``extra=`` is appended after redaction, so GitHub
access tokens and similar credentials never reach the log stream.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from gitrats.settings import settings

_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("obs_log_context", default=MappingProxyType({}))

_LOGGER_NAME = "gitrats"

_SENSITIVE_KEYWORDS = ("token", "secret", "authorization", "password", "cookie", "email")

_MAX_STRING_LENGTH = 256
_MAX_COLLECTION_ITEMS = 20

# Attributes every LogRecord carries; never echoed as extra fields.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def bind_context(**fields: Optional[str]) -> Token:
	"""Layer ``fields`` over the current log context; returns a reset token."""
	merged = dict(_CONTEXT.get())
	merged.update({key: value for key, value in fields.items() if value})
	return _CONTEXT.set(MappingProxyType(merged))


def reset_context(token: Token) -> None:
	_CONTEXT.reset(token)


def current_context() -> Mapping[str, str]:
	return _CONTEXT.get()


def current_request_id() -> Optional[str]:
	return _CONTEXT.get().get("request_id")


def _is_sensitive(key: str) -> bool:
	lowered = key.lower()
	return any(keyword in lowered for keyword in _SENSITIVE_KEYWORDS)


def _clean(key: str, value: Any) -> Any:
	if _is_sensitive(key):
		return "[redacted]"
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING_LENGTH else value[:_MAX_STRING_LENGTH] + "..."
	if isinstance(value, Mapping):
		items = list(value.items())
		cleaned = {str(k): _clean(str(k), v) for k, v in items[:_MAX_COLLECTION_ITEMS]}
		if len(items) > _MAX_COLLECTION_ITEMS:
			cleaned["_truncated"] = len(items) - _MAX_COLLECTION_ITEMS
		return cleaned
	if isinstance(value, (list, tuple, set, frozenset)):
		items = list(value)
		cleaned_items = [_clean(key, item) for item in items[:_MAX_COLLECTION_ITEMS]]
		if len(items) > _MAX_COLLECTION_ITEMS:
			cleaned_items.append(f"+{len(items) - _MAX_COLLECTION_ITEMS} more")
		return cleaned_items
	if isinstance(value, datetime):
		return value.isoformat()
	return value


class JSONLogFormatter(logging.Formatter):
	"""Render records as compact JSON with service metadata and request context."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		payload.update(_CONTEXT.get())
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key in _RESERVED_ATTRS or key.startswith("_"):
				continue
			payload[key] = _clean(key, value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Keep a fraction of INFO records; everything else passes."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	"""Route the root logger through one JSON stream handler."""
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	# httpx logs every GitHub request URL at INFO
	logging.getLogger("httpx").setLevel(logging.WARNING)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
