"""Logging helpers with PII / secret redaction.

Modules keep using ``logging.getLogger(__name__)``; this module only adds a
:class:`RedactingFilter` so bearer tokens, refresh tokens and personal data
never reach a handler, plus :func:`configure_logging` for applications.

Usage
-----

```python
from relay.utils.log import configure_logging

configure_logging(settings.log_level)
```
"""

from __future__ import annotations

import logging
import re
from typing import Any
from typing import Mapping

REDACTED = "[REDACTED]"

_SENSITIVE_KEYS = (
    "authorization",
    "token",
    "jwt",
    "password",
    "secret",
    "api_key",
    "apikey",
    "x_api_key",
    "access_token",
    "refresh_token",
    "refreshtoken",
    "accesstoken",
    "email",
    "phone",
    "address",
    "ssn",
    "credit_card",
)

_SENSITIVE_PATTERNS = (
    re.compile(r"Bearer\s+[A-Za-z0-9\-_.~+/]+=*"),
    re.compile(r"\beyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+"),  # JWT
    re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
    re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"),  # card
    re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"),  # phone
    re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"),  # SSN
)

# Attributes every LogRecord carries; anything else arrived via ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("x", logging.INFO, "x", 0, "x", None, None)).keys() | {"message", "asctime"}
)


def _is_sensitive_key(key: str) -> bool:
    normalised = key.lower().replace("-", "_")
    return any(marker in normalised for marker in _SENSITIVE_KEYS)


def redact_text(text: str) -> str:
    """Replace every sensitive pattern in *text*."""

    for pattern in _SENSITIVE_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text


def redact_value(value: Any) -> Any:
    """Recursively scrub strings, mappings and sequences."""

    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, Mapping):
        return sanitize_mapping(value)
    if isinstance(value, (list, tuple)):
        return type(value)(redact_value(v) for v in value)
    return value


def sanitize_mapping(data: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of *data* with sensitive keys masked (headers, bodies)."""

    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        if _is_sensitive_key(str(key)):
            sanitized[key] = REDACTED
        else:
            sanitized[key] = redact_value(value)
    return sanitized


class RedactingFilter(logging.Filter):
    """Scrub the rendered message and any ``extra`` attributes."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 – logging API
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        if isinstance(record.msg, str):
            record.msg = redact_text(record.msg)

        for key, value in list(record.__dict__.items()):
            if key in _RESERVED_ATTRS:
                continue
            if _is_sensitive_key(key):
                setattr(record, key, REDACTED)
            else:
                setattr(record, key, redact_value(value))
        return True


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a redacting stream handler to the ``relay`` logger once."""

    logger = logging.getLogger("relay")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not any(isinstance(f, RedactingFilter) for h in logger.handlers for f in h.filters):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        handler.addFilter(RedactingFilter())
        logger.addHandler(handler)

    return logger


__all__ = [
    "REDACTED",
    "RedactingFilter",
    "configure_logging",
    "redact_text",
    "redact_value",
    "sanitize_mapping",
]
