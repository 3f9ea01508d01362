"""Shared *Enum* definitions for SQLAlchemy & Pydantic models.

The Enums inherit from ``str`` so that JSON serialisation renders plain
strings and equality checks against raw literals (``method == "POST"``)
keep working.
"""

from __future__ import annotations

from enum import Enum


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class TimeoutClass(str, Enum):
    """Which transport timeout an operation is sent with."""

    DEFAULT = "default"  # text / metadata calls
    MEDIA = "media"  # uploads, image/video analysis


class DrainHalt(str, Enum):
    """Why a drain pass stopped before emptying the queue."""

    OFFLINE = "offline"
    TRANSIENT_FAILURE = "transient_failure"
    SESSION_EXPIRED = "session_expired"


class FailureReason(str, Enum):
    """Why a queued operation was discarded."""

    MAX_RETRIES = "max_retries"
    REJECTED = "rejected"
