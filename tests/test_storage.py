from unittest.mock import MagicMock

import pytest
from redis import RedisError

from storefront.errors import StorageError
from storefront.store import storage as storage_mod
from storefront.store.storage import MemoryCartStorage, RedisCartStorage, cart_key


def test_cart_key():
    assert cart_key("abc") == "cart:abc"


def test_redis_write_uses_ttl():
    client = MagicMock()
    RedisCartStorage(client=client, ttl_seconds=60).write("cart:a", "[]")
    client.set.assert_called_once_with("cart:a", "[]", ex=60)


def test_redis_write_without_ttl():
    client = MagicMock()
    RedisCartStorage(client=client, ttl_seconds=0).write("cart:a", "[]")
    client.set.assert_called_once_with("cart:a", "[]")


def test_redis_read():
    client = MagicMock()
    client.get.return_value = "[]"
    assert RedisCartStorage(client=client, ttl_seconds=60).read("cart:a") == "[]"


@pytest.mark.parametrize("method,args", [("read", ("cart:a",)), ("write", ("cart:a", "[]"))])
def test_redis_errors_become_storage_errors(method, args):
    client = MagicMock()
    client.get.side_effect = RedisError("boom")
    client.set.side_effect = RedisError("boom")
    with pytest.raises(StorageError):
        getattr(RedisCartStorage(client=client, ttl_seconds=60), method)(*args)


def test_build_storage_falls_back_to_memory(monkeypatch):
    monkeypatch.setattr(storage_mod.settings, "REDIS_URL", "")
    assert isinstance(storage_mod.build_storage(), MemoryCartStorage)
