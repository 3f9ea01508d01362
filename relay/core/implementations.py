"""Production implementations of core interfaces.

These implementations wrap the CRUD helpers and the Fernet cipher to
provide the persistence contracts required by the dispatcher.
"""

from __future__ import annotations

import logging
from typing import List
from typing import Optional

from sqlalchemy.orm import sessionmaker

from relay.config import Settings
from relay.core.interfaces import CredentialStore
from relay.core.interfaces import QueueStorage
from relay.crud import crud
from relay.database import db_session
from relay.database import initialize_database
from relay.database import make_engine
from relay.database import make_sessionmaker
from relay.schemas.schemas import CredentialPair
from relay.schemas.schemas import Operation
from relay.utils.crypto import TokenCipher

logger = logging.getLogger(__name__)


def session_factory_from_settings(settings: Settings) -> sessionmaker:
    """Create engine + schema for ``settings.database_url`` and return a sessionmaker."""

    engine = make_engine(settings.database_url)
    initialize_database(engine)
    return make_sessionmaker(engine)


class SqlCredentialStore(CredentialStore):
    """Credential store persisted in a single encrypted row.

    A decrypted copy is cached in memory; the cache and the row are both
    replaced as a whole, so readers only ever see complete pairs.
    """

    def __init__(self, session_factory: sessionmaker, cipher: TokenCipher):
        self._session_factory = session_factory
        self._cipher = cipher
        self._cached: Optional[CredentialPair] = None
        self._owner_id: Optional[str] = None
        self._loaded = False

    def get(self) -> Optional[CredentialPair]:
        if not self._loaded:
            self._load()
        return self._cached

    def owner_id(self) -> Optional[str]:
        if not self._loaded:
            self._load()
        return self._owner_id

    def set(self, pair: CredentialPair, owner_id: Optional[str] = None) -> None:
        owner = owner_id if owner_id is not None else self.owner_id()
        with db_session(self._session_factory) as db:
            crud.upsert_credentials(
                db,
                access_token_enc=self._cipher.encrypt(pair.access_token),
                refresh_token_enc=self._cipher.encrypt(pair.refresh_token) if pair.refresh_token else None,
                owner_id=owner,
            )
        # Swap the cache only after the row is committed
        self._cached = pair
        self._owner_id = owner
        self._loaded = True

    def clear(self) -> None:
        with db_session(self._session_factory) as db:
            crud.delete_credentials(db)
        self._cached = None
        self._owner_id = None
        self._loaded = True

    def _load(self) -> None:
        with db_session(self._session_factory) as db:
            row = crud.get_credentials(db)
            if row is None:
                pair, owner = None, None
            else:
                try:
                    pair = CredentialPair(
                        access_token=self._cipher.decrypt(row.access_token_enc),
                        refresh_token=self._cipher.decrypt(row.refresh_token_enc) if row.refresh_token_enc else None,
                    )
                    owner = row.owner_id
                except ValueError:
                    # Key rotated or row corrupted – treat as logged out
                    logger.warning("Stored credentials could not be decrypted; discarding them")
                    crud.delete_credentials(db)
                    pair, owner = None, None
        self._cached = pair
        self._owner_id = owner
        self._loaded = True


class SqlQueueStorage(QueueStorage):
    """Offline queue persisted as ``pending_operations`` rows."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def append(self, owner_id: str, operation: Operation) -> None:
        with db_session(self._session_factory) as db:
            crud.append_operation(db, owner_id=owner_id, operation=operation)

    async def peek_oldest(self, owner_id: str) -> Optional[Operation]:
        with db_session(self._session_factory) as db:
            row = crud.get_oldest_operation(db, owner_id=owner_id)
            return crud.row_to_operation(row) if row is not None else None

    async def remove(self, owner_id: str, operation_id: str) -> bool:
        with db_session(self._session_factory) as db:
            return crud.delete_operation(db, owner_id=owner_id, op_id=operation_id)

    async def update_retry_count(
        self,
        owner_id: str,
        operation_id: str,
        retry_count: int,
        last_error: Optional[str] = None,
    ) -> None:
        with db_session(self._session_factory) as db:
            crud.update_retry_count(
                db,
                owner_id=owner_id,
                op_id=operation_id,
                retry_count=retry_count,
                last_error=last_error,
            )

    async def load_all(self, owner_id: str) -> List[Operation]:
        with db_session(self._session_factory) as db:
            return [crud.row_to_operation(row) for row in crud.get_operations(db, owner_id=owner_id)]

    async def clear(self, owner_id: Optional[str] = None) -> int:
        with db_session(self._session_factory) as db:
            return crud.delete_operations(db, owner_id=owner_id)

    async def count(self, owner_id: str) -> int:
        with db_session(self._session_factory) as db:
            return crud.count_operations(db, owner_id=owner_id)
