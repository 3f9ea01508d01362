"""Login, signup, logout and account removal on top of the dispatcher."""

from __future__ import annotations

import logging
from typing import Optional

from relay.errors import DispatchError
from relay.errors import ServerError
from relay.models.enums import HttpMethod
from relay.schemas.schemas import AuthResult
from relay.schemas.schemas import Operation
from relay.schemas.schemas import Response
from relay.schemas.schemas import UserProfile
from relay.services.dispatcher import RequestDispatcher

logger = logging.getLogger(__name__)


def _unwrap(resp: Response, fallback_message: str) -> dict:
    """Return the ``data`` object of a ``{"success": ..., "data": ...}`` envelope."""

    body = resp.body if isinstance(resp.body, dict) else {}
    if body.get("success") is False:
        raise ServerError(resp.status_code, body.get("message") or fallback_message)
    data = resp.data
    if not isinstance(data, dict):
        raise ServerError(resp.status_code, fallback_message)
    return data


class AuthService:
    """Account operations.  None of them is ever queued."""

    def __init__(self, dispatcher: RequestDispatcher):
        self._dispatcher = dispatcher

    async def login(self, email: str, password: str) -> AuthResult:
        logger.info("Logging in", extra={"email": email})
        resp = await self._dispatcher.execute(
            Operation(method=HttpMethod.POST, path="/auth/login", body={"email": email, "password": password})
        )
        return await self._establish(resp, "Login failed")

    async def signup(self, email: str, password: str, name: Optional[str] = None) -> AuthResult:
        body = {"email": email, "password": password}
        if name:
            body["name"] = name
        logger.info("Registering account", extra={"email": email})
        resp = await self._dispatcher.execute(Operation(method=HttpMethod.POST, path="/auth/register", body=body))
        return await self._establish(resp, "Registration failed")

    async def current_user(self) -> UserProfile:
        resp = await self._dispatcher.execute(Operation(method=HttpMethod.GET, path="/auth/me"))
        return UserProfile.model_validate(_unwrap(resp, "Failed to load profile"))

    async def logout(self, *, all_devices: bool = False) -> None:
        """Tell the backend (best effort), then drop local credentials and queue."""

        path = "/auth/logout-all" if all_devices else "/auth/logout"
        try:
            await self._dispatcher.execute(Operation(method=HttpMethod.POST, path=path))
        except DispatchError as e:
            # Local sign-out must happen regardless
            logger.info("Server-side logout failed: %s", e)
        await self._dispatcher.sign_out()

    async def delete_account(self) -> None:
        """Deactivate the account server-side; local state is cleared only on success."""

        await self._dispatcher.execute(Operation(method=HttpMethod.POST, path="/user/deactivate"))
        await self._dispatcher.sign_out()
        logger.info("Account deactivated")

    async def _establish(self, resp: Response, fallback_message: str) -> AuthResult:
        try:
            result = AuthResult.from_payload(_unwrap(resp, fallback_message))
        except (KeyError, TypeError, ValueError) as exc:
            raise ServerError(resp.status_code, fallback_message) from exc
        await self._dispatcher.sign_in(result.credentials, user_id=result.user.id)
        return result
