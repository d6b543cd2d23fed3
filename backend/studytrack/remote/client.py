"""HTTP client for the authoritative remote envelope store."""

from __future__ import annotations

import logging
from typing import Optional, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..errors import NetworkError, NotFound, RecordValidationError, ServerError, StaleWriteError
from ..records import StoredEnvelope

logger = logging.getLogger(__name__)

STORE_PREFIX = "/api/store"


class RemoteStore(Protocol):
    """Asynchronous CRUD over stored envelopes. Implementations never retry."""

    async def fetch(self, key: str) -> StoredEnvelope:  # pragma: no cover - protocol definition
        ...

    async def put(self, key: str, envelope: StoredEnvelope) -> StoredEnvelope:  # pragma: no cover
        ...

    async def delete(self, key: str) -> None:  # pragma: no cover - protocol definition
        ...


class RemoteStoreClient:
    """``RemoteStore`` implementation talking to the store service over httpx."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)

    @staticmethod
    def _path(key: str) -> str:
        return f"{STORE_PREFIX}/{quote(key, safe='')}"

    async def _request(self, method: str, key: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, self._path(key), **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Timed out during {method} {key}: {exc}") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Transport failure during {method} {key}: {exc}") from exc

        if response.status_code == 404:
            raise NotFound(key)
        if response.status_code == 409:
            raise StaleWriteError(f"Remote store holds a newer envelope for '{key}'.")
        if response.status_code == 422:
            raise RecordValidationError(f"Remote store rejected envelope for '{key}': {response.text}")
        if response.status_code >= 400:
            raise ServerError(
                f"Remote store returned {response.status_code} for {method} {key}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _parse(key: str, response: httpx.Response) -> StoredEnvelope:
        try:
            return StoredEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ServerError(f"Remote store returned a malformed envelope for '{key}': {exc}") from exc

    async def fetch(self, key: str) -> StoredEnvelope:
        response = await self._request("GET", key)
        return self._parse(key, response)

    async def put(self, key: str, envelope: StoredEnvelope) -> StoredEnvelope:
        response = await self._request("PUT", key, json=envelope.model_dump(mode="json"))
        return self._parse(key, response)

    async def delete(self, key: str) -> None:
        await self._request("DELETE", key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["RemoteStore", "RemoteStoreClient", "STORE_PREFIX"]
