"""HTTP client for the remote peer (vehicle-side sensor API).

Endpoints:
----------
- GET  /record/snapshots?session_id=ID  -> [{index, name, sha256, size_bytes}]
- GET  /files/{session_id}/{name}       -> chunk bytes
- POST /record/sync-marker              <- {session_id, sync_id, type}
- GET  /api/sync/time                   -> {remote_unix_ms, remote_iso}

Every failure (timeout, connection error, non-2xx, malformed body) is raised
as TransportError with ``context["kind"]`` set to one of ``timeout``,
``network_error``, ``http_status`` or ``invalid_response``. Callers decide
whether a failure is fatal; the mirror treats all of them as transient.

Example:
    >>> async with RemotePeerClient("http://vehicle.local:9150", settings.mirror) as client:
    ...     entries = await client.catalog(session_id)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from seasync.config import MirrorConfig
from seasync.domain import MarkerType
from seasync.exceptions import TransportError

logger = logging.getLogger(__name__)

__all__ = ["CatalogEntry", "RemotePeerClient"]


class CatalogEntry(BaseModel):
    """One finalized chunk advertised by the remote peer."""

    model_config = {"frozen": True, "extra": "ignore"}

    index: int = Field(..., ge=0)
    name: str
    sha256: str
    size_bytes: int = Field(0, ge=0)


class RemotePeerClient:
    """Async client for one remote peer.

    Args:
        base_url: Peer API root, e.g. ``http://vehicle.local:9150``
        config: Mirror settings (per-request timeouts)
        transport: Optional httpx transport (``httpx.MockTransport`` in tests)
    """

    def __init__(
        self,
        base_url: str,
        config: Optional[MirrorConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.config = config or MirrorConfig()
        self._client = httpx.AsyncClient(base_url=self.base_url, transport=transport)

    async def __aenter__(self) -> "RemotePeerClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def catalog(self, session_id: str) -> List[CatalogEntry]:
        """Finalized chunks the peer has for a session, sorted by index."""
        response = await self._request(
            "GET", "/record/snapshots", params={"session_id": session_id}, timeout=self.config.catalog_timeout_s
        )
        try:
            payload = response.json()
            entries = [CatalogEntry.model_validate(item) for item in payload]
        except (ValueError, TypeError, ValidationError) as e:
            raise TransportError(
                f"Malformed catalog from {self.base_url} for {session_id}: {e}",
                context={"kind": "invalid_response", "session_id": session_id},
            ) from e
        return sorted(entries, key=lambda entry: entry.index)

    async def fetch_chunk(self, session_id: str, name: str) -> bytes:
        response = await self._request("GET", f"/files/{session_id}/{name}", timeout=self.config.download_timeout_s)
        return response.content

    async def post_marker(self, session_id: str, sync_id: str, marker_type: MarkerType) -> None:
        """Ask the peer to record a SYNC_START/SYNC_STOP marker."""
        await self._request(
            "POST",
            "/record/sync-marker",
            json={"session_id": session_id, "sync_id": sync_id, "type": marker_type.value},
            timeout=self.config.marker_timeout_s,
        )

    async def server_time(self, timeout: float) -> Dict[str, Any]:
        """Raw body of the peer's time endpoint."""
        response = await self._request("GET", "/api/sync/time", timeout=timeout)
        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(
                f"Non-JSON time response from {self.base_url}", context={"kind": "invalid_response"}
            ) from e
        if not isinstance(body, dict):
            raise TransportError(f"Unexpected time response from {self.base_url}", context={"kind": "invalid_response"})
        return body

    async def _request(self, method: str, path: str, timeout: float, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(method, path, timeout=timeout, **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {url} timed out after {timeout}s", context={"kind": "timeout"}) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise TransportError(
                f"{method} {url} returned HTTP {status}", context={"kind": "http_status", "status": status}
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}", context={"kind": "network_error"}) from e
        return response
