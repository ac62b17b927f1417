"""
ContentCache - tenant-scoped, content-addressed cache around an expensive
generation function.

Keys are (cache name, resource id, fingerprint). The resource id is always
part of the key, so two tenants with identical content never share an entry.
"""
import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from core.periods import now_ms
from services.database import Database

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 16

# Result handed to waiters when the owning caller was cancelled
_OWNER_CANCELLED = object()


def fingerprint(inputs: Any) -> str:
    """
    Short deterministic digest of the canonical JSON form of inputs.
    Key order and whitespace never change the result.
    """
    canonical = json.dumps(inputs, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()[:FINGERPRINT_LENGTH]


class CacheStore(ABC):
    """
    Backing storage for cache entries.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Tuple[Any, int]]:
        """Return (value, expires_at_ms) or None."""
        raise NotImplementedError

    @abstractmethod
    async def put(self, key: str, resource_id: str, value: Any, expires_at: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def purge_expired(self, now: int) -> int:
        raise NotImplementedError


class SqliteCacheStore(CacheStore):
    def __init__(self, database: Database):
        self.db = database

    async def get(self, key: str) -> Optional[Tuple[Any, int]]:
        return await self.db.get_cache_entry(key)

    async def put(self, key: str, resource_id: str, value: Any, expires_at: int) -> None:
        await self.db.put_cache_entry(key, resource_id, value, expires_at)

    async def purge_expired(self, now: int) -> int:
        return await self.db.delete_expired_cache_entries(now)


class InMemoryCacheStore(CacheStore):
    def __init__(self):
        self.entries: Dict[str, Tuple[Any, int]] = {}

    async def get(self, key: str) -> Optional[Tuple[Any, int]]:
        return self.entries.get(key)

    async def put(self, key: str, resource_id: str, value: Any, expires_at: int) -> None:
        self.entries[key] = (value, expires_at)

    async def purge_expired(self, now: int) -> int:
        expired = [k for k, (_, expires_at) in self.entries.items() if expires_at <= now]
        for key in expired:
            del self.entries[key]
        return len(expired)


class ContentCache:
    """
    Wraps one generation function. Hits within the TTL return the stored
    value; misses run compute_fn once and store its result. Failures are
    never stored, and concurrent misses on the same key share one
    computation.
    """

    def __init__(
        self,
        store: CacheStore,
        name: str,
        ttl_seconds: float,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.name = name
        self.ttl_ms = int(ttl_seconds * 1000)
        self.clock = clock
        self._in_flight: Dict[str, asyncio.Future] = {}

    def key_for(self, resource_id: str, fingerprint_inputs: Any) -> str:
        if not resource_id:
            raise ValueError("resource_id is required for cache keys")
        return f"{self.name}:{resource_id}:{fingerprint(fingerprint_inputs)}"

    async def fetch(
        self,
        resource_id: str,
        fingerprint_inputs: Any,
        compute_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        key = self.key_for(resource_id, fingerprint_inputs)

        while True:
            pending = self._in_flight.get(key)
            if pending is None:
                break
            logger.debug(f"Joining in-flight computation: {key}")
            value = await asyncio.shield(pending)
            if value is not _OWNER_CANCELLED:
                return value

        # Registered before the first await so concurrent misses find it
        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            cached = await self.store.get(key)
            if cached is not None and cached[1] > self.clock():
                logger.debug(f"Cache hit: {key}")
                future.set_result(cached[0])
                return cached[0]

            value = await compute_fn()
            await self.store.put(key, resource_id, value, self.clock() + self.ttl_ms)
            future.set_result(value)
            logger.debug(f"Cache miss computed and stored: {key}")
            return value
        except asyncio.CancelledError:
            # Waiters were not cancelled, so one of them takes over
            future.set_result(_OWNER_CANCELLED)
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited failure doesn't warn at GC
            future.exception()
            raise
        finally:
            self._in_flight.pop(key, None)

    async def purge_expired(self) -> int:
        count = await self.store.purge_expired(self.clock())
        if count:
            logger.info(f"Purged {count} expired '{self.name}' cache entries")
        return count
