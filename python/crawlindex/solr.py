"""
Solr client - Search backend used by the indexing coordinators.

One httpx.AsyncClient is opened per run and shared by every submission,
then closed exactly once. Failures are classified here so the
coordinator only has to know "retry" or "give up".
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

import httpx

from .errors import CommitWarning, IndexPermanentError, IndexTransientError, ResourceError
from .models import Document


logger = logging.getLogger(__name__)


# Statuses worth retrying besides 5xx
TRANSIENT_STATUS_CODES = frozenset({408, 429})


class SearchBackend(Protocol):
    async def open(self) -> None: ...

    async def add_batch(self, collection: str, documents: Sequence[Document]) -> None: ...

    async def commit(self, collection: str) -> None: ...

    async def close(self) -> None: ...


class SolrClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def open(self) -> None:
        """Connect and check that Solr answers; raises ResourceError if not."""
        if self._client is not None:
            return

        client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout_seconds,
            transport=self._transport,
        )
        try:
            response = await client.get("/admin/info/system", params={"wt": "json"})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            await client.aclose()
            raise ResourceError(f"Cannot reach Solr at {self._base_url}: {exc}") from exc

        self._client = client
        logger.info(f"Connected to Solr at {self._base_url}")

    async def add_batch(self, collection: str, documents: Sequence[Document]) -> None:
        if not documents:
            return
        await self._post(
            f"/{collection}/update",
            params={"wt": "json"},
            json=[doc.to_solr() for doc in documents],
        )

    async def commit(self, collection: str) -> None:
        try:
            await self._post(f"/{collection}/update", params={"commit": "true", "wt": "json"})
        except (IndexTransientError, IndexPermanentError) as exc:
            raise CommitWarning(f"{collection}: {exc}") from exc

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except Exception as exc:
            raise ResourceError(f"Error closing Solr client: {exc}") from exc

    async def __aenter__(self) -> "SolrClient":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _post(self, url: str, *, params: dict[str, str], json: Any = None) -> httpx.Response:
        if self._client is None:
            raise ResourceError("SolrClient is not open")

        try:
            response = await self._client.post(url, params=params, json=json)
        except httpx.TransportError as exc:
            raise IndexTransientError(f"{type(exc).__name__}: {exc}") from exc

        status = response.status_code
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            raise IndexTransientError(f"HTTP {status} from Solr: {_error_message(response)}")
        if status >= 400:
            raise IndexPermanentError(f"HTTP {status} from Solr: {_error_message(response)}")
        return response


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]

    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("msg"):
        return str(error["msg"])
    return response.text[:200]
