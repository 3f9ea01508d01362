"""Coordinated access-token refresh.

When many in-flight requests hit a 401 at once (the access token expired
for all of them), exactly one refresh exchange goes over the wire.  The
first caller starts it; everyone else awaits the same task and receives the
same :class:`CredentialPair` or the same exception.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from relay.config import Settings
from relay.core.interfaces import CredentialStore
from relay.core.interfaces import Transport
from relay.errors import HttpStatusError
from relay.errors import NoRefreshTokenError
from relay.errors import RefreshUnavailableError
from relay.errors import SessionExpiredError
from relay.errors import TransportNetworkError
from relay.events import EventBus
from relay.events import EventType
from relay.metrics import token_refresh_total
from relay.schemas.schemas import CredentialPair

logger = logging.getLogger(__name__)


def _extract_tokens(body) -> tuple[Optional[str], Optional[str]]:
    """Pull access/refresh tokens out of the refresh endpoint's response.

    Accepts the backend envelope ``{"success": true, "data": {...}}`` as well
    as a bare token object, in camelCase or snake_case.
    """

    if not isinstance(body, dict):
        return None, None
    if body.get("success") is False:
        return None, None
    data = body.get("data", body)
    if not isinstance(data, dict):
        return None, None
    access = data.get("accessToken") or data.get("access_token")
    refresh = data.get("refreshToken") or data.get("refresh_token")
    return access, refresh


class RefreshCoordinator:
    """Guarantee at most one outstanding refresh exchange."""

    def __init__(
        self,
        credentials: CredentialStore,
        transport: Transport,
        settings: Settings,
        *,
        event_bus: Optional[EventBus] = None,
    ):
        self._credentials = credentials
        self._transport = transport
        self._settings = settings
        self._event_bus = event_bus
        self._inflight: Optional[asyncio.Task] = None

    @property
    def refresh_in_progress(self) -> bool:
        return self._inflight is not None

    async def ensure_fresh_credentials(
        self,
        caused_by: str,
        stale_access_token: Optional[str] = None,
    ) -> CredentialPair:
        """Return a refreshed credential pair.

        Parameters
        ----------
        caused_by:
            Id of the request whose 401 triggered the call (logging only).
        stale_access_token:
            The access token the failed request carried.  When the store
            already holds a different one, a refresh completed in the
            meantime and its result is returned without a network call.

        Raises
        ------
        NoRefreshTokenError
            No refresh token stored.
        SessionExpiredError
            Refresh token rejected; the credential store has been cleared.
        RefreshUnavailableError
            Network failure while refreshing; credentials left untouched.
        """

        if self._inflight is None:
            current = self._credentials.get()
            if stale_access_token is not None and current is not None and current.access_token != stale_access_token:
                logger.debug("Credentials already refreshed; reusing them", extra={"request_id": caused_by})
                return current

            # Registered before the first suspension point so concurrent
            # callers always find it
            task = asyncio.ensure_future(self._refresh(caused_by))
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        else:
            logger.debug("Joining in-flight token refresh", extra={"request_id": caused_by})

        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _refresh(self, caused_by: str) -> CredentialPair:
        current = self._credentials.get()
        if current is None or not current.refresh_token:
            token_refresh_total.labels("no_refresh_token").inc()
            logger.info("No refresh token available; clearing credentials", extra={"request_id": caused_by})
            self._credentials.clear()
            raise NoRefreshTokenError("No refresh token available")

        logger.info("Refreshing access token", extra={"request_id": caused_by})

        try:
            resp = await self._transport.send(
                "POST",
                self._settings.refresh_path,
                body={"refreshToken": current.refresh_token},
                headers={},
                timeout=self._settings.default_timeout,
            )
        except HttpStatusError as exc:
            token_refresh_total.labels("rejected").inc()
            logger.warning("Refresh token rejected (HTTP %s); clearing credentials", exc.status_code)
            self._credentials.clear()
            raise SessionExpiredError("Refresh token rejected") from exc
        except TransportNetworkError as exc:
            token_refresh_total.labels("unavailable").inc()
            logger.warning("Token refresh unreachable: %s", exc)
            raise RefreshUnavailableError("Token refresh endpoint unreachable", cause=exc) from exc

        access, refresh = _extract_tokens(resp.body)
        if not access:
            token_refresh_total.labels("malformed").inc()
            logger.error("Refresh response did not contain an access token; clearing credentials")
            self._credentials.clear()
            raise SessionExpiredError("Token refresh failed")

        pair = CredentialPair(access_token=access, refresh_token=refresh or current.refresh_token)
        # Persist before any waiter resumes
        self._credentials.set(pair)
        token_refresh_total.labels("success").inc()
        logger.info("Access token refreshed", extra={"request_id": caused_by})

        if self._event_bus is not None:
            await self._event_bus.publish(EventType.CREDENTIALS_REFRESHED, {"caused_by": caused_by})

        return pair
