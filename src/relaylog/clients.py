"""
HTTP clients for the remote search indexes.

Both clients are thin wrappers around ``httpx.Client`` with bounded timeouts
so a slow indexer can only ever stall the hook dispatcher thread.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence
from urllib.parse import quote

import httpx
import orjson

from .exceptions import ConfigurationError

DEFAULT_TIMEOUT_SECONDS = 5.0
_JSON_HEADERS = {"Content-Type": "application/json"}


def _validate_url(raw: str, *, backend: str) -> str:
    try:
        url = httpx.URL(raw.strip())
    except (httpx.InvalidURL, TypeError) as exc:
        raise ConfigurationError(f"invalid {backend} address: {raw!r}", details={"address": raw}) from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(
            f"invalid {backend} address: {raw!r} (expected http(s)://host[:port])",
            details={"address": raw},
        )
    return str(url).rstrip("/")


class MeilisearchClient:
    """Minimal Meilisearch document API client."""

    def __init__(
        self,
        host: str,
        api_key: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ):
        self._host = _validate_url(host, backend="meilisearch")
        headers = dict(_JSON_HEADERS)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(base_url=self._host, headers=headers, timeout=timeout, transport=transport)

    @property
    def host(self) -> str:
        return self._host

    def index_documents(self, index: str, documents: bytes, *, primary_key: str | None = None) -> dict[str, Any]:
        """Add or replace documents; ``documents`` is a JSON array payload.

        Raises:
            httpx.HTTPError: Transport failure or non-2xx response.
        """
        params = {"primaryKey": primary_key} if primary_key else None
        response = self._client.post(f"/indexes/{quote(index, safe='')}/documents", content=documents, params=params)
        response.raise_for_status()
        return response.json()

    def close(self) -> None:
        self._client.close()


class ElasticsearchClient:
    """Minimal Elasticsearch document API client with node failover.

    Transport failures move on to the next configured node; HTTP error
    responses are raised immediately.
    """

    def __init__(
        self,
        addresses: Sequence[str],
        username: str | None = None,
        password: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ):
        if not addresses:
            raise ConfigurationError("elasticsearch requires at least one address")
        self._addresses = [_validate_url(a, backend="elasticsearch") for a in addresses]
        auth = (username, password or "") if username else None
        self._client = httpx.Client(auth=auth, headers=_JSON_HEADERS, timeout=timeout, transport=transport)

    @property
    def addresses(self) -> list[str]:
        return list(self._addresses)

    def ping(self) -> bool:
        """True when any node answers ``GET /`` with a 2xx status."""
        for address in self._addresses:
            try:
                if self._client.get(f"{address}/").is_success:
                    return True
            except httpx.TransportError:
                continue
        return False

    def index_document(self, index: str, doc_id: str, document: Mapping[str, Any]) -> dict[str, Any]:
        """Create or replace ``document`` under ``doc_id``.

        Raises:
            httpx.HTTPError: Every node failed or a node returned non-2xx.
        """
        body = orjson.dumps(document, default=str, option=orjson.OPT_NON_STR_KEYS)
        path = f"/{quote(index, safe='')}/_doc/{quote(doc_id, safe='')}"
        last_error: httpx.TransportError | None = None
        for address in self._addresses:
            try:
                response = self._client.put(f"{address}{path}", content=body)
            except httpx.TransportError as exc:
                last_error = exc
                continue
            response.raise_for_status()
            return response.json()
        assert last_error is not None
        raise last_error

    def close(self) -> None:
        self._client.close()


def new_elasticsearch_client(
    addresses: Sequence[str],
    username: str | None = None,
    password: str | None = None,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    verify: bool = False,
    transport: httpx.BaseTransport | None = None,
) -> ElasticsearchClient:
    """Build a client, optionally checking that the cluster is reachable.

    Raises:
        ConfigurationError: Invalid addresses, or ``verify`` and no node answers.
    """
    client = ElasticsearchClient(addresses, username, password, timeout=timeout, transport=transport)
    if verify and not client.ping():
        client.close()
        raise ConfigurationError(
            "error initializing Elasticsearch client: no reachable node",
            details={"addresses": list(addresses)},
        )
    return client
