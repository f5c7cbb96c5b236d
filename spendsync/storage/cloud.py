"""HTTP document store for spendsync.

Talks to the sync backend's REST document API:

- ``GET    {base}/v1/{path}``             list a collection
- ``GET    {base}/v1/{path}/{id}``        read one document (404 -> None)
- ``PUT    {base}/v1/{path}/{id}``        write one document
- ``DELETE {base}/v1/{path}/{id}``        delete one document
- ``POST   {base}/v1/batch:commit``       apply a list of writes atomically
- ``GET    {base}/health``                reachability probe

Zero DB coupling: pure HTTP/credential logic.
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from spendsync.config import SyncSettings, validate_backend_url
from spendsync.protocols import (
    BatchCommitError,
    DataError,
    NetworkFailureError,
    NotAuthenticatedError,
    SpendSyncError,
)
from spendsync.storage.documents import SERVER_TIMESTAMP, Timestamp

logger = logging.getLogger(__name__)

SERVER_TIMESTAMP_WIRE = {"__serverTimestamp__": True}


def _to_wire(data: Dict[str, Any]) -> Dict[str, Any]:
    """Replace sentinels and Timestamps with their JSON forms."""
    wire = {}
    for key, value in data.items():
        if value is SERVER_TIMESTAMP:
            wire[key] = dict(SERVER_TIMESTAMP_WIRE)
        elif isinstance(value, Timestamp):
            wire[key] = {"seconds": value.seconds, "nanos": value.nanos}
        else:
            wire[key] = value
    return wire


class HttpWriteBatch:
    """Writes staged for one ``batch:commit`` call."""

    def __init__(self, store: "HttpDocumentStore"):
        self._store = store
        self._writes: List[Dict[str, Any]] = []

    def set(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._writes.append({"op": "set", "path": path, "id": doc_id, "data": _to_wire(data)})

    def delete(self, path: str, doc_id: str) -> None:
        self._writes.append({"op": "delete", "path": path, "id": doc_id})

    async def commit(self) -> Optional[datetime]:
        response = await self._store._request(
            "POST", "/v1/batch:commit", json={"writes": self._writes}
        )
        if response.status_code >= 400:
            raise BatchCommitError(f"HTTP {response.status_code}: {response.text[:200]}")
        commit_time = response.json().get("commitTime")
        if commit_time is None:
            return None
        # Imported here: the codec depends on storage.documents
        from spendsync.sync.codec import to_datetime

        try:
            return to_datetime(commit_time)
        except DataError:
            logger.warning(f"Ignoring unparseable commitTime: {commit_time!r}")
            return None


class HttpDocumentStore:
    """DocumentStore backed by the REST document API.

    Args:
        backend_url: Base URL of the sync backend (validated; https only
            except for localhost).
        auth_token: Bearer token sent with every request.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        backend_url: str,
        auth_token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        validated = validate_backend_url(backend_url)
        if not validated:
            raise ValueError(f"Refusing unsafe backend_url: {backend_url}")
        self.backend_url = validated.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: SyncSettings, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "HttpDocumentStore":
        if not settings.has_cloud_credentials:
            raise NotAuthenticatedError("backend_url and auth_token are not configured")
        return cls(
            settings.backend_url,
            settings.auth_token,
            timeout=settings.request_timeout,
            transport=transport,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.auth_token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Send one request, mapping transport, auth and server failures."""
        try:
            async with httpx.AsyncClient(
                timeout=timeout or self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method,
                    f"{self.backend_url}{url}",
                    headers=self._headers(),
                    json=json,
                    params=params,
                )
        except httpx.TransportError as e:
            raise NetworkFailureError(f"{method} {url}: {e}") from e

        if response.status_code in (401, 403):
            raise NotAuthenticatedError(
                f"Backend rejected credentials (HTTP {response.status_code})"
            )
        if response.status_code >= 500:
            raise NetworkFailureError(f"{method} {url}: HTTP {response.status_code}")
        return response

    async def get_documents(
        self,
        path: str,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        params = {}
        if order_by:
            params = {"orderBy": order_by, "descending": "true" if descending else "false"}
        response = await self._request("GET", f"/v1/{path}", params=params)
        if response.status_code == 404:
            return []
        if response.status_code >= 400:
            raise SpendSyncError(f"GET {path}: HTTP {response.status_code}")
        return response.json().get("documents", [])

    async def get_document(self, path: str, doc_id: str) -> Optional[Dict[str, Any]]:
        response = await self._request("GET", f"/v1/{path}/{doc_id}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise SpendSyncError(f"GET {path}/{doc_id}: HTTP {response.status_code}")
        document = response.json()
        document.setdefault("id", doc_id)
        return document

    async def set_document(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        response = await self._request("PUT", f"/v1/{path}/{doc_id}", json=_to_wire(data))
        if response.status_code >= 400:
            raise BatchCommitError(f"PUT {path}/{doc_id}: HTTP {response.status_code}")

    async def delete_document(self, path: str, doc_id: str) -> None:
        response = await self._request("DELETE", f"/v1/{path}/{doc_id}")
        # Deleting a missing document is not an error
        if response.status_code >= 400 and response.status_code != 404:
            raise BatchCommitError(f"DELETE {path}/{doc_id}: HTTP {response.status_code}")

    def batch(self) -> HttpWriteBatch:
        return HttpWriteBatch(self)

    async def health_check(self, timeout: float = 3.0) -> Dict[str, Any]:
        """Test backend connectivity.

        Returns:
            Dict with keys:
            - 'healthy': bool indicating if the backend is reachable
            - 'latency_ms': response time in milliseconds (if healthy)
            - 'error': error message (if not healthy)
        """
        start = time.time()
        try:
            response = await self._request("GET", "/health", timeout=timeout)
        except (NetworkFailureError, NotAuthenticatedError) as e:
            logger.debug(f"Backend health check failed: {e}")
            return {"healthy": False, "error": str(e)}

        latency_ms = (time.time() - start) * 1000
        if response.status_code == 200:
            return {"healthy": True, "latency_ms": round(latency_ms, 2)}
        return {"healthy": False, "error": f"HTTP {response.status_code}"}
