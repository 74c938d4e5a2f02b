"""Metadata store - per-model metadata behind a small async contract.

Backends: an in-process store and a REST store over httpx. The cached
store in front of either adds a TTL cache and bounded-backoff retries.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Protocol, TypeVar

import httpx

from shotcaller import config
from shotcaller.errors import MetadataNotFoundError, MetadataStoreError
from shotcaller.models import EnvironmentalMetadata, ModelMetadata

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MetadataStore(Protocol):
    async def get_model_metadata(self, model_id: str) -> ModelMetadata: ...

    async def store_model_metadata(self, model_id: str, metadata: ModelMetadata) -> ModelMetadata: ...

    async def get_environmental_metadata(self, model_id: str) -> EnvironmentalMetadata | None: ...

    async def store_environmental_metadata(
        self, model_id: str, data: EnvironmentalMetadata
    ) -> ModelMetadata: ...


class InMemoryMetadataStore:
    def __init__(self):
        self._records: dict[str, ModelMetadata] = {}

    async def get_model_metadata(self, model_id: str) -> ModelMetadata:
        record = self._records.get(model_id)
        if record is None:
            raise MetadataNotFoundError(f"No metadata for model {model_id}")
        return record

    async def store_model_metadata(self, model_id: str, metadata: ModelMetadata) -> ModelMetadata:
        previous = self._records.get(model_id)
        version = previous.version + 1 if previous else metadata.version
        record = metadata.model_copy(update={"model_id": model_id, "version": version})
        self._records[model_id] = record
        return record

    async def get_environmental_metadata(self, model_id: str) -> EnvironmentalMetadata | None:
        return (await self.get_model_metadata(model_id)).environment

    async def store_environmental_metadata(
        self, model_id: str, data: EnvironmentalMetadata
    ) -> ModelMetadata:
        current = self._records.get(model_id) or ModelMetadata(model_id=model_id)
        return await self.store_model_metadata(model_id, current.model_copy(update={"environment": data}))


class HttpMetadataStore:
    """REST backend: ``/models/{id}/metadata`` and ``/models/{id}/environment``."""

    def __init__(
        self,
        base_url: str = config.METADATA_STORE_URL,
        api_key: str = config.METADATA_STORE_KEY,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

    async def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        resp = await self._client.request(method, path, json=payload)
        if resp.status_code == 404:
            raise MetadataNotFoundError(f"{method} {path}: not found")
        resp.raise_for_status()
        return resp.json()

    async def get_model_metadata(self, model_id: str) -> ModelMetadata:
        data = await self._request("GET", f"/models/{model_id}/metadata")
        return ModelMetadata.model_validate(data)

    async def store_model_metadata(self, model_id: str, metadata: ModelMetadata) -> ModelMetadata:
        data = await self._request(
            "PUT", f"/models/{model_id}/metadata", metadata.model_dump(mode="json", by_alias=True)
        )
        return ModelMetadata.model_validate(data)

    async def get_environmental_metadata(self, model_id: str) -> EnvironmentalMetadata | None:
        data = await self._request("GET", f"/models/{model_id}/environment")
        return EnvironmentalMetadata.model_validate(data) if data else None

    async def store_environmental_metadata(
        self, model_id: str, data: EnvironmentalMetadata
    ) -> ModelMetadata:
        body = await self._request(
            "PUT", f"/models/{model_id}/environment", data.model_dump(mode="json", by_alias=True)
        )
        return ModelMetadata.model_validate(body)

    async def aclose(self) -> None:
        await self._client.aclose()


def _is_transient(error: Exception) -> bool:
    if isinstance(error, MetadataNotFoundError):
        return False
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500 or error.response.status_code == 429
    return isinstance(error, (httpx.TransportError, MetadataStoreError))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int = config.METADATA_RETRY_ATTEMPTS,
    initial_delay: float = config.METADATA_RETRY_INITIAL_DELAY,
    max_delay: float = config.METADATA_RETRY_MAX_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with exponential backoff on transient failures.

    Non-transient errors (not found, 4xx) are raised at once; transient ones
    become MetadataStoreError after the last attempt.
    """
    delay = initial_delay
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except MetadataNotFoundError:
            raise
        except (httpx.HTTPError, MetadataStoreError) as e:
            if not _is_transient(e):
                raise MetadataStoreError(f"Metadata request failed: {e}") from e
            if attempt == attempts:
                raise MetadataStoreError(f"Metadata request failed after {attempts} attempts: {e}") from e
            logger.warning(f"Metadata request failed (attempt {attempt}/{attempts}), retrying in {delay:.2f}s: {e}")
            await sleep(delay)
            delay = min(delay * 2, max_delay)
    raise MetadataStoreError("Metadata request was not attempted")


class CachedMetadataStore:
    """TTL/LRU cache and retry in front of a durable store. Writes invalidate."""

    def __init__(
        self,
        store: MetadataStore,
        ttl: float = config.METADATA_CACHE_TTL_SECONDS,
        max_size: int = 128,
        clock: Callable[[], float] = time.monotonic,
        attempts: int = config.METADATA_RETRY_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.ttl = ttl
        self.max_size = max_size
        self.clock = clock
        self.attempts = attempts
        self.sleep = sleep
        self._cache: OrderedDict[str, tuple[float, ModelMetadata]] = OrderedDict()

    def _cached(self, model_id: str) -> ModelMetadata | None:
        entry = self._cache.get(model_id)
        if entry is None:
            return None
        stored_at, metadata = entry
        if self.clock() - stored_at > self.ttl:
            del self._cache[model_id]
            return None
        self._cache.move_to_end(model_id)
        return metadata

    def _remember(self, metadata: ModelMetadata) -> ModelMetadata:
        self._cache[metadata.model_id] = (self.clock(), metadata)
        self._cache.move_to_end(metadata.model_id)
        while len(self._cache) > self.max_size:
            self._cache.popitem(last=False)
        return metadata

    def invalidate(self, model_id: str) -> None:
        self._cache.pop(model_id, None)

    async def _retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(operation, attempts=self.attempts, sleep=self.sleep)

    async def get_model_metadata(self, model_id: str) -> ModelMetadata:
        cached = self._cached(model_id)
        if cached is not None:
            return cached
        metadata = await self._retry(lambda: self.store.get_model_metadata(model_id))
        return self._remember(metadata)

    async def store_model_metadata(self, model_id: str, metadata: ModelMetadata) -> ModelMetadata:
        self.invalidate(model_id)
        stored = await self._retry(lambda: self.store.store_model_metadata(model_id, metadata))
        return self._remember(stored)

    async def get_environmental_metadata(self, model_id: str) -> EnvironmentalMetadata | None:
        return (await self.get_model_metadata(model_id)).environment

    async def store_environmental_metadata(
        self, model_id: str, data: EnvironmentalMetadata
    ) -> ModelMetadata:
        self.invalidate(model_id)
        stored = await self._retry(lambda: self.store.store_environmental_metadata(model_id, data))
        return self._remember(stored)


def create_metadata_store() -> CachedMetadataStore:
    """REST-backed store when METADATA_STORE_URL is set, in-memory otherwise."""
    if config.METADATA_STORE_URL:
        logger.info(f"Using REST metadata store at {config.METADATA_STORE_URL}")
        backend: MetadataStore = HttpMetadataStore()
    else:
        backend = InMemoryMetadataStore()
    return CachedMetadataStore(backend)
