from sqlalchemy import JSON
from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import UniqueConstraint

from relay.database import Base
from relay.utils.time import utc_now_naive

# ---------------------------------------------------------------------------
# Offline queue
# ---------------------------------------------------------------------------


class PendingOperation(Base):
    """An operation waiting in the offline queue.

    Replay order is the autoincrement ``id`` (insertion order), never the
    client timestamp, so clock adjustments cannot reorder dependent
    messages.  ``op_id`` uniqueness is scoped per owner.
    """

    __tablename__ = "pending_operations"
    __table_args__ = (UniqueConstraint("owner_id", "op_id", name="uq_pending_operations_owner_op"),)

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Client-generated ID (stable across retries)
    op_id = Column(String, nullable=False, index=True)

    # Authenticated user the request belongs to
    owner_id = Column(String, nullable=False, index=True)

    # Request -----------------------------------------------------------
    method = Column(String, nullable=False)
    path = Column(String, nullable=False)
    body = Column(JSON, nullable=True)
    params = Column(JSON, nullable=True)
    queueable = Column(Boolean, nullable=False, default=True)
    timeout_class = Column(String, nullable=False, default="default")

    # Metadata (the only fields the queue ever updates) -----------------
    retry_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False)
    enqueued_at = Column(DateTime, nullable=False, default=utc_now_naive)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class StoredCredentials(Base):
    """The single current credential pair, encrypted at rest.

    Both tokens live in one row and are written in one transaction so a
    reader never sees a mix of old and new values.
    """

    __tablename__ = "stored_credentials"

    # Singleton row: slot is always "current"
    slot = Column(String, primary_key=True, default="current")

    access_token_enc = Column(Text, nullable=False)
    refresh_token_enc = Column(Text, nullable=True)
    owner_id = Column(String, nullable=True)

    updated_at = Column(DateTime, nullable=False, default=utc_now_naive, onupdate=utc_now_naive)
