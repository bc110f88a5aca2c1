import pytest

from pocketllm.proxy.cache import CacheAsideController
from pocketllm.proxy.store import DurableStore


class FakeClock:
    def __init__(self, now_ms: int = 1_000_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(tmp_path, clock):
    return CacheAsideController(DurableStore(tmp_path).cache, ttl_ms=600_000, now_fn=clock)


@pytest.mark.anyio
async def test_lookup_miss_on_empty_cache(cache):
    assert await cache.lookup("k") is None


@pytest.mark.anyio
async def test_record_then_lookup(cache, clock):
    entry = await cache.record("k", ["Hel", "lo"])
    assert entry.created_at == clock.now_ms

    found = await cache.lookup("k")
    assert found is not None
    assert found.tokens == ("Hel", "lo")
    assert found.text == "Hello"


@pytest.mark.anyio
async def test_entry_expires_at_ttl(cache, clock):
    await cache.record("k", ["x"])

    clock.now_ms += 599_999
    assert await cache.lookup("k") is not None

    clock.now_ms += 1
    assert await cache.lookup("k") is None
    # Stale entries are ignored, not evicted.
    assert await cache.list_keys() == ["k"]


@pytest.mark.anyio
async def test_record_overwrites_and_refreshes(cache, clock):
    await cache.record("k", ["old"])
    clock.now_ms += 700_000
    await cache.record("k", ["new"])
    found = await cache.lookup("k")
    assert found.tokens == ("new",)


@pytest.mark.anyio
async def test_list_and_clear(cache):
    await cache.record("a", ["1"])
    await cache.record("b", ["2"])
    assert sorted(await cache.list_keys()) == ["a", "b"]

    await cache.clear()
    assert await cache.list_keys() == []
    assert await cache.lookup("a") is None


def test_zero_ttl_is_never_fresh(tmp_path, clock):
    from pocketllm.proxy.types import CacheEntry

    cache = CacheAsideController(DurableStore(tmp_path).cache, ttl_ms=0, now_fn=clock)
    assert cache.is_fresh(CacheEntry(key="k", tokens=("x",), created_at=clock.now_ms)) is False
