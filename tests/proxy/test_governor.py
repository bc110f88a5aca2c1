from pocketllm.proxy.governor import RequestGovernor


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_admits_up_to_limit_then_rejects():
    clock = FakeClock()
    gov = RequestGovernor(limit=3, window_s=60, now_fn=clock)

    results = [gov.admit("a") for _ in range(4)]
    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert results[-1].retry_after_s == 60


def test_window_resets_after_expiry():
    clock = FakeClock()
    gov = RequestGovernor(limit=1, window_s=10, now_fn=clock)

    assert gov.admit("a").allowed
    clock.now += 4
    rejected = gov.admit("a")
    assert not rejected.allowed
    assert rejected.retry_after_s == 6

    clock.now += 6
    assert gov.admit("a").allowed


def test_rejections_do_not_extend_window():
    clock = FakeClock()
    gov = RequestGovernor(limit=1, window_s=10, now_fn=clock)
    gov.admit("a")
    for _ in range(5):
        clock.now += 1.5
        assert not gov.admit("a").allowed
    clock.now += 2.5
    assert gov.admit("a").allowed


def test_identities_are_independent():
    gov = RequestGovernor(limit=1, window_s=60, now_fn=FakeClock())
    assert gov.admit(gov.identity("key-1", "10.0.0.1")).allowed
    assert gov.admit(gov.identity("key-2", "10.0.0.1")).allowed
    assert gov.admit(gov.identity(None, "10.0.0.1")).allowed
    assert not gov.admit(gov.identity("key-1", "10.0.0.1")).allowed


def test_identity_defaults_to_anonymous():
    assert RequestGovernor.identity(None, None) == "anonymous::"
    assert RequestGovernor.identity("", "1.2.3.4") == "anonymous::1.2.3.4"


def test_disabled_governor_admits_everything():
    for gov in (RequestGovernor(limit=0, window_s=60), RequestGovernor(limit=5, window_s=0)):
        assert not gov.enabled
        assert all(gov.admit("a").allowed for _ in range(100))


def test_reset_clears_windows():
    gov = RequestGovernor(limit=1, window_s=60, now_fn=FakeClock())
    gov.admit("a")
    gov.reset()
    assert gov.admit("a").allowed
