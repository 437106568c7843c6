"""Tests for cache backends."""

from unittest.mock import Mock

import fakeredis
import pytest
from redis.exceptions import ConnectionError

from ridematch.cache.backends import InMemoryCacheBackend, RedisCacheBackend
from ridematch.core.exceptions import CacheBackendError
from tests.helpers import FakeClock


@pytest.mark.unit
class TestInMemoryCacheBackend:
    def test_get_miss(self):
        assert InMemoryCacheBackend().get("nope") is None

    def test_set_then_get(self):
        backend = InMemoryCacheBackend()
        backend.set("k", b"v", 10)
        assert backend.get("k") == b"v"

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        backend = InMemoryCacheBackend(clock=clock)
        backend.set("k", b"v", 10)

        clock.advance(9.9)
        assert backend.get("k") == b"v"
        clock.advance(0.1)
        assert backend.get("k") is None

    def test_delete_many_and_unknown(self):
        backend = InMemoryCacheBackend()
        backend.set("a", b"1", 10)
        backend.set("b", b"2", 10)

        backend.delete("a", "b", "missing")

        assert len(backend) == 0

    def test_purge_expired(self):
        clock = FakeClock()
        backend = InMemoryCacheBackend(clock=clock)
        backend.set("short", b"1", 1)
        backend.set("long", b"2", 100)

        clock.advance(5)

        assert backend.purge_expired() == 1
        assert backend.get("long") == b"2"


@pytest.mark.unit
class TestRedisCacheBackend:
    @pytest.fixture
    def backend(self):
        return RedisCacheBackend(fakeredis.FakeRedis())

    def test_set_get_delete(self, backend):
        backend.set("k", b"value", 60)
        assert backend.get("k") == b"value"

        backend.delete("k")
        assert backend.get("k") is None

    def test_ttl_is_whole_seconds_not_exceeding_requested(self, backend):
        backend.set("k", b"v", 2.9)
        assert 1000 < backend._client.pttl("k") <= 2000

    def test_sub_second_ttl_is_at_least_one_second(self, backend):
        backend.set("k", b"v", 0.2)
        assert 0 < backend._client.pttl("k") <= 1000

    def test_delete_without_keys_does_not_call_redis(self):
        client = Mock()
        RedisCacheBackend(client).delete()
        client.delete.assert_not_called()

    @pytest.mark.parametrize(
        "method,args", [("get", ("k",)), ("set", ("k", b"v", 5)), ("delete", ("k",))]
    )
    def test_redis_errors_become_cache_backend_errors(self, method, args):
        client = Mock()
        redis_method = {"set": "setex"}.get(method, method)
        getattr(client, redis_method).side_effect = ConnectionError("refused")

        with pytest.raises(CacheBackendError):
            getattr(RedisCacheBackend(client), method)(*args)
