from eyespy.api.cache import ResponseCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = ResponseCache(ttl=60.0, clock=clock)
    cache.put((20, 0), "page")

    clock.now += 59.9
    assert cache.get((20, 0)) == "page"

    clock.now += 0.1
    assert cache.get((20, 0)) is None
    assert len(cache) == 0


def test_invalidate_clears_all_pages():
    cache = ResponseCache(ttl=60.0)
    cache.put((20, 0), "first")
    cache.put((20, 20), "second")

    cache.invalidate()

    assert cache.get((20, 0)) is None
    assert cache.get((20, 20)) is None


def test_zero_ttl_disables_caching():
    cache = ResponseCache(ttl=0)
    cache.put((20, 0), "page")

    assert cache.get((20, 0)) is None
    assert len(cache) == 0
