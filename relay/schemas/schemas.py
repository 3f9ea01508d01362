"""Pydantic value objects passed between the dispatcher components."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from pydantic import AliasChoices
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator
from pydantic import model_validator

from relay.models.enums import DrainHalt
from relay.models.enums import HttpMethod
from relay.models.enums import TimeoutClass
from relay.utils.time import utc_now

# Reads and destructive deletes are never replayed from the offline queue.
NON_QUEUEABLE_METHODS = frozenset({HttpMethod.GET, HttpMethod.DELETE})


# ---------------------------------------------------------------------------
# Operation
# ---------------------------------------------------------------------------


class Operation(BaseModel):
    """A unit of work the dispatcher sends now or replays later.

    The model is frozen and its body is detached from the caller's object
    at construction, so the payload cannot change once created.  Only
    ``retry_count`` evolves, through :meth:`with_retry_count` copies.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Stable operation identifier")
    method: HttpMethod = Field(..., description="HTTP method")
    path: str = Field(..., min_length=1, description="Path relative to the API base URL")
    body: Any = Field(None, description="JSON-serialisable payload, opaque to the queue")
    params: Optional[Dict[str, Any]] = Field(None, description="Query parameters")
    queueable: bool = Field(False, description="Safe to persist and replay when offline")
    timeout_class: TimeoutClass = Field(TimeoutClass.DEFAULT, description="Transport timeout bucket")
    created_at: datetime = Field(default_factory=utc_now)
    retry_count: int = Field(0, ge=0)

    @field_validator("body", "params", mode="before")
    @classmethod
    def _detach_json(cls, value: Any) -> Any:
        if value is None:
            return None
        try:
            return json.loads(json.dumps(value))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"operation payload must be JSON-serialisable: {exc}") from exc

    @model_validator(mode="after")
    def _check_queueable(self) -> Operation:
        if self.queueable and self.method in NON_QUEUEABLE_METHODS:
            raise ValueError(f"{self.method.value} operations cannot be queued for offline replay")
        return self

    def with_retry_count(self, retry_count: int) -> Operation:
        return self.model_copy(update={"retry_count": retry_count})


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class CredentialPair(BaseModel):
    """Access token plus optional refresh token, both opaque strings."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None

    def authorization_header(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def __repr__(self) -> str:  # keep tokens out of tracebacks and logs
        return f"CredentialPair(access_token='***', refresh_token={'***' if self.refresh_token else None})"

    __str__ = __repr__


# ---------------------------------------------------------------------------
# Transport response
# ---------------------------------------------------------------------------


class Response(BaseModel):
    """A successful (2xx) transport response."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    body: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)

    @property
    def data(self) -> Any:
        """Unwrap the backend's ``{"success": ..., "data": ...}`` envelope."""

        if isinstance(self.body, dict) and "data" in self.body:
            return self.body["data"]
        return self.body


# ---------------------------------------------------------------------------
# Drain report
# ---------------------------------------------------------------------------


class DrainReport(BaseModel):
    """Summary of one :meth:`OfflineQueue.drain` pass."""

    skipped: bool = False
    sent: int = 0
    failed: int = 0
    remaining: int = 0
    halted: Optional[DrainHalt] = None


# ---------------------------------------------------------------------------
# Feature-service payloads
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    """Authenticated user as returned by ``/auth/login`` and ``/auth/me``."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., validation_alias=AliasChoices("id", "_id"))
    email: str
    name: Optional[str] = None
    avatar: Optional[str] = None
    is_active: bool = Field(True, validation_alias=AliasChoices("isActive", "is_active"))


class AuthResult(BaseModel):
    """Login/signup outcome: the user plus the credential pair to install."""

    user: UserProfile
    credentials: CredentialPair

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> AuthResult:
        return cls(
            user=UserProfile.model_validate(data["user"]),
            credentials=CredentialPair(
                access_token=data["accessToken"],
                refresh_token=data.get("refreshToken"),
            ),
        )


class ChatReply(BaseModel):
    """Assistant answer to a chat message or media analysis."""

    model_config = ConfigDict(populate_by_name=True)

    response: str = ""
    job_id: str = Field("", validation_alias=AliasChoices("jobId", "_id", "job_id"))
    conversation_id: Optional[str] = Field(None, validation_alias=AliasChoices("conversationId", "conversation_id"))
    tokens_used: Optional[int] = Field(None, validation_alias=AliasChoices("tokensUsed", "tokens_used"))
    processing_time: Optional[int] = Field(None, validation_alias=AliasChoices("processingTime", "processing_time"))

    @model_validator(mode="before")
    @classmethod
    def _pick_response_text(cls, data: Any) -> Any:
        # Media endpoints answer with ``analysis`` instead of ``response``
        if isinstance(data, dict) and not data.get("response"):
            text = data.get("analysis") or data.get("message")
            if isinstance(text, str):
                data = {**data, "response": text}
        return data


class Conversation(BaseModel):
    """Chat thread summary (messages are passed through untouched)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))
    user_id: str = Field("", validation_alias=AliasChoices("userId", "user_id"))
    title: Optional[str] = None
    created_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("createdAt", "created_at"))
    updated_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("updatedAt", "updated_at"))
    messages: List[Dict[str, Any]] = Field(default_factory=list)
