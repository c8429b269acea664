from typing import Dict, Optional, Protocol

import structlog
from redis import Redis, RedisError

from storefront.core.config import settings
from storefront.errors import StorageError

logger = structlog.get_logger(__name__)


class CartStorage(Protocol):
    """Durable key/value storage for serialized carts.

    Implementations raise ``StorageError`` on any failure.
    """

    def read(self, key: str) -> Optional[str]: ...

    def write(self, key: str, value: str) -> None: ...


def cart_key(session_id: str) -> str:
    return f"cart:{session_id}"


def get_client() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)


class RedisCartStorage:
    def __init__(self, client: Optional[Redis] = None, ttl_seconds: Optional[int] = None):
        self.client = client if client is not None else get_client()
        self.ttl_seconds = settings.CART_TTL_SECONDS if ttl_seconds is None else ttl_seconds

    def read(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except RedisError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def write(self, key: str, value: str) -> None:
        try:
            if self.ttl_seconds:
                self.client.set(key, value, ex=self.ttl_seconds)
            else:
                self.client.set(key, value)
        except RedisError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e


class MemoryCartStorage:
    """Process-local storage, used when no Redis is configured and in tests."""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(data or {})

    def read(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def write(self, key: str, value: str) -> None:
        self.data[key] = value


def build_storage() -> CartStorage:
    if not settings.REDIS_URL:
        logger.warning("REDIS_URL not set, carts will not survive a restart")
        return MemoryCartStorage()
    return RedisCartStorage()
