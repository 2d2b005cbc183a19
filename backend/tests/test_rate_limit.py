from wishsync.core.config import settings
from wishsync.core.rate_limit import SlidingWindowLimiter, limiter


class TestSlidingWindowLimiter:
    def test_allows_up_to_limit_then_blocks(self):
        window = SlidingWindowLimiter()
        waits = [window.hit("k", max_requests=3, window_seconds=60, now=100.0) for _ in range(4)]
        assert waits[:3] == [0.0, 0.0, 0.0]
        assert waits[3] > 0

    def test_wait_counts_down_to_oldest_hit_expiry(self):
        window = SlidingWindowLimiter()
        window.hit("k", max_requests=2, window_seconds=30, now=100.0)
        window.hit("k", max_requests=2, window_seconds=30, now=110.0)
        assert window.hit("k", max_requests=2, window_seconds=30, now=120.0) == 10.0

    def test_slot_frees_after_window(self):
        window = SlidingWindowLimiter()
        window.hit("k", max_requests=1, window_seconds=30, now=100.0)
        assert window.hit("k", max_requests=1, window_seconds=30, now=129.0) > 0
        assert window.hit("k", max_requests=1, window_seconds=30, now=130.0) == 0.0

    def test_keys_are_independent(self):
        window = SlidingWindowLimiter()
        window.hit("a", max_requests=1, window_seconds=60, now=1.0)
        assert window.hit("b", max_requests=1, window_seconds=60, now=1.0) == 0.0

    def test_reset_clears_one_key(self):
        window = SlidingWindowLimiter()
        window.hit("a", max_requests=1, window_seconds=60, now=1.0)
        window.hit("b", max_requests=1, window_seconds=60, now=1.0)
        window.reset("a")
        assert window.hit("a", max_requests=1, window_seconds=60, now=2.0) == 0.0
        assert window.hit("b", max_requests=1, window_seconds=60, now=2.0) > 0

    def test_idle_keys_are_swept(self):
        window = SlidingWindowLimiter()
        for n in range(99):
            window.hit(f"old-{n}", max_requests=5, window_seconds=10, now=0.0)
        window.hit("fresh", max_requests=5, window_seconds=10, now=50.0)
        assert len(window) == 1

    def test_key_count_is_capped(self):
        window = SlidingWindowLimiter(max_keys=10)
        for n in range(100):
            window.hit(f"k-{n}", max_requests=5, window_seconds=1000, now=float(n))
        assert len(window) == 10


def test_reservations_are_throttled_per_user(client, login):
    owner = login(1, "Olga")
    guest = login(2, "Gleb")
    client.get("/wishlist", headers=owner)
    item_id = client.put("/wishlist/items", json={"items": [{"text": "Mug"}]}, headers=owner).json()["items"][0]["id"]

    previous = settings.rate_limit_requests
    settings.rate_limit_enabled = True
    settings.rate_limit_requests = 3
    limiter.reset()
    try:
        codes = [client.post(f"/wishlist/items/{item_id}/reserve", headers=guest).status_code for _ in range(4)]
        other_user = client.post(f"/wishlist/items/{item_id}/reserve", headers=owner).status_code
    finally:
        settings.rate_limit_enabled = False
        settings.rate_limit_requests = previous
        limiter.reset()

    assert codes == [200, 200, 200, 429]
    # Owner has their own budget and reaches the ownership check.
    assert other_user == 403
