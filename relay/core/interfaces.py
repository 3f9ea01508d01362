"""Abstract interfaces for the collaborators the dispatcher depends on.

These interfaces define the contracts the queue/refresh/dispatch logic
depends on, allowing different implementations for production, testing,
and development.
"""

from __future__ import annotations

from abc import ABC
from abc import abstractmethod
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from relay.schemas.schemas import CredentialPair
from relay.schemas.schemas import Operation
from relay.schemas.schemas import Response


class Transport(ABC):
    """Abstract interface for a single HTTP exchange."""

    @abstractmethod
    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Response:
        """Send one request.

        Returns the response for 2xx statuses.  Raises
        :class:`~relay.errors.TransportTimeout`,
        :class:`~relay.errors.TransportConnectionError` or
        :class:`~relay.errors.HttpStatusError` otherwise.
        """
        pass

    async def aclose(self) -> None:
        """Release network resources (optional)."""
        return None


class CredentialStore(ABC):
    """Abstract interface for the current credential pair.

    Implementations must replace the pair atomically: ``get()`` returns
    either the complete old pair or the complete new one.
    """

    @abstractmethod
    def get(self) -> Optional[CredentialPair]:
        """Return the current pair, if any."""
        pass

    @abstractmethod
    def set(self, pair: CredentialPair, owner_id: Optional[str] = None) -> None:
        """Replace the current pair."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Forget the current pair."""
        pass

    def owner_id(self) -> Optional[str]:
        """Return the user the stored pair belongs to, when known."""
        return None


class QueueStorage(ABC):
    """Abstract interface for offline-queue persistence, keyed per owner."""

    @abstractmethod
    async def append(self, owner_id: str, operation: Operation) -> None:
        """Add *operation* at the tail of *owner_id*'s queue."""
        pass

    @abstractmethod
    async def peek_oldest(self, owner_id: str) -> Optional[Operation]:
        """Return the head of the queue without removing it."""
        pass

    @abstractmethod
    async def remove(self, owner_id: str, operation_id: str) -> bool:
        """Remove one operation; return whether it existed."""
        pass

    async def remove_oldest(self, owner_id: str) -> Optional[Operation]:
        """Remove and return the head of the queue."""
        head = await self.peek_oldest(owner_id)
        if head is not None:
            await self.remove(owner_id, head.id)
        return head

    @abstractmethod
    async def update_retry_count(
        self,
        owner_id: str,
        operation_id: str,
        retry_count: int,
        last_error: Optional[str] = None,
    ) -> None:
        """Persist a new retry count (metadata only, never the payload)."""
        pass

    @abstractmethod
    async def load_all(self, owner_id: str) -> List[Operation]:
        """Return the whole queue in replay order (restart recovery)."""
        pass

    @abstractmethod
    async def clear(self, owner_id: Optional[str] = None) -> int:
        """Drop *owner_id*'s queue (or every queue); return rows removed."""
        pass

    async def count(self, owner_id: str) -> int:
        return len(await self.load_all(owner_id))
