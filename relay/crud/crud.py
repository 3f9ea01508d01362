# Standard library typing helpers
from typing import List
from typing import Optional

from sqlalchemy.orm import Session

from relay.models.models import PendingOperation
from relay.models.models import StoredCredentials
from relay.schemas.schemas import Operation
from relay.utils.time import as_utc
from relay.utils.time import utc_now_naive

_CREDENTIALS_SLOT = "current"


# Offline queue operations


def append_operation(db: Session, *, owner_id: str, operation: Operation) -> PendingOperation:
    """Persist *operation* at the tail of *owner_id*'s queue."""

    row = PendingOperation(
        op_id=operation.id,
        owner_id=owner_id,
        method=operation.method.value,
        path=operation.path,
        body=operation.body,
        params=operation.params,
        queueable=operation.queueable,
        timeout_class=operation.timeout_class.value,
        retry_count=operation.retry_count,
        created_at=as_utc(operation.created_at).replace(tzinfo=None),
        enqueued_at=utc_now_naive(),
    )
    db.add(row)
    db.flush()
    return row


def get_oldest_operation(db: Session, *, owner_id: str) -> Optional[PendingOperation]:
    """Return the head of the queue (lowest insertion id)."""
    return (
        db.query(PendingOperation)
        .filter(PendingOperation.owner_id == owner_id)
        .order_by(PendingOperation.id.asc())
        .first()
    )


def get_operations(db: Session, *, owner_id: str) -> List[PendingOperation]:
    """Return every pending operation in replay order."""
    return (
        db.query(PendingOperation)
        .filter(PendingOperation.owner_id == owner_id)
        .order_by(PendingOperation.id.asc())
        .all()
    )


def count_operations(db: Session, *, owner_id: str) -> int:
    return db.query(PendingOperation).filter(PendingOperation.owner_id == owner_id).count()


def delete_operation(db: Session, *, owner_id: str, op_id: str) -> bool:
    deleted = (
        db.query(PendingOperation)
        .filter(PendingOperation.owner_id == owner_id, PendingOperation.op_id == op_id)
        .delete(synchronize_session=False)
    )
    return bool(deleted)


def update_retry_count(
    db: Session,
    *,
    owner_id: str,
    op_id: str,
    retry_count: int,
    last_error: Optional[str] = None,
) -> bool:
    """Update queue metadata only; the request payload columns are never written."""

    updated = (
        db.query(PendingOperation)
        .filter(PendingOperation.owner_id == owner_id, PendingOperation.op_id == op_id)
        .update(
            {PendingOperation.retry_count: retry_count, PendingOperation.last_error: last_error},
            synchronize_session=False,
        )
    )
    return bool(updated)


def delete_operations(db: Session, *, owner_id: Optional[str] = None) -> int:
    """Delete *owner_id*'s queue, or every queue when *owner_id* is None."""

    query = db.query(PendingOperation)
    if owner_id is not None:
        query = query.filter(PendingOperation.owner_id == owner_id)
    return query.delete(synchronize_session=False)


def row_to_operation(row: PendingOperation) -> Operation:
    return Operation(
        id=row.op_id,
        method=row.method,
        path=row.path,
        body=row.body,
        params=row.params,
        queueable=row.queueable,
        timeout_class=row.timeout_class,
        created_at=as_utc(row.created_at),
        retry_count=row.retry_count,
    )


# Credential operations


def get_credentials(db: Session) -> Optional[StoredCredentials]:
    return db.get(StoredCredentials, _CREDENTIALS_SLOT)


def upsert_credentials(
    db: Session,
    *,
    access_token_enc: str,
    refresh_token_enc: Optional[str],
    owner_id: Optional[str] = None,
) -> StoredCredentials:
    """Replace both tokens of the singleton row in one write."""

    row = db.get(StoredCredentials, _CREDENTIALS_SLOT)
    if row is None:
        row = StoredCredentials(slot=_CREDENTIALS_SLOT)
        db.add(row)
    row.access_token_enc = access_token_enc
    row.refresh_token_enc = refresh_token_enc
    row.owner_id = owner_id
    row.updated_at = utc_now_naive()
    db.flush()
    return row


def delete_credentials(db: Session) -> bool:
    deleted = db.query(StoredCredentials).filter(StoredCredentials.slot == _CREDENTIALS_SLOT).delete()
    return bool(deleted)
