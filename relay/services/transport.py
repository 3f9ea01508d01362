"""``httpx``-based :class:`~relay.core.interfaces.Transport`.

One long-lived :class:`httpx.AsyncClient` per transport, created lazily so
the transport can be constructed outside a running event loop.  Failures are
classified into the transport error vocabulary:

* ``httpx.TimeoutException``  → :class:`TransportTimeout`
* any other ``httpx.TransportError`` → :class:`TransportConnectionError`
* non-2xx status → :class:`HttpStatusError` carrying the decoded body
"""

from __future__ import annotations

import logging
import time
from typing import Any
from typing import Dict
from typing import Optional

import httpx

from relay.config import Settings
from relay.core.interfaces import Transport
from relay.errors import HttpStatusError
from relay.errors import TransportConnectionError
from relay.errors import TransportTimeout
from relay.metrics import request_latency_seconds
from relay.schemas.schemas import Response
from relay.utils.log import sanitize_mapping

logger = logging.getLogger(__name__)


def _decode_body(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    content_type = resp.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return resp.json()
        except ValueError:
            return resp.text
    return resp.text


class HttpxTransport(Transport):
    """Send requests to ``settings.api_base_url`` with ``httpx``."""

    def __init__(self, settings: Settings, *, client: Optional[httpx.AsyncClient] = None):
        self._settings = settings
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.api_base_url,
                timeout=self._settings.default_timeout,
                headers=dict(self._settings.default_headers),
            )
        return self._client

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Response:
        client = self._get_client()
        effective_timeout = timeout if timeout is not None else self._settings.default_timeout

        logger.debug(
            "request",
            extra={"method": method, "path": path, "request_headers": sanitize_mapping(headers or {})},
        )

        started = time.perf_counter()
        try:
            resp = await client.request(
                method,
                path,
                json=body,
                headers=headers,
                params=params,
                timeout=effective_timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("Request timed out: %s %s after %.1fs", method, path, effective_timeout)
            raise TransportTimeout(f"{method} {path} timed out after {effective_timeout}s") from exc
        except httpx.TransportError as exc:
            logger.warning("Request failed at network level: %s %s (%s)", method, path, type(exc).__name__)
            raise TransportConnectionError(f"{method} {path} failed: {exc}") from exc
        finally:
            request_latency_seconds.labels(method).observe(time.perf_counter() - started)

        payload = _decode_body(resp)
        if resp.status_code >= 400:
            logger.info("Request rejected: %s %s -> %s", method, path, resp.status_code)
            raise HttpStatusError(resp.status_code, payload)

        return Response(status_code=resp.status_code, body=payload, headers=dict(resp.headers))

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
