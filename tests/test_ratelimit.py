import mongomock

from ratelimit import RATE_LIMITS, RateLimit, RateLimiter
from tests.conftest import FakeClock


def _limiter(clock=None):
    return RateLimiter(mongomock.MongoClient()["limits"], clock=clock or FakeClock())


def test_fixed_window():
    clock = FakeClock()
    limiter = _limiter(clock)

    results = [limiter.check("user:1", "LOGIN") for _ in range(6)]
    assert [r.allowed for r in results] == [True] * 5 + [False]
    assert results[0].remaining == 4
    assert results[5].retry_after == 60

    clock.advance(59.5)
    blocked = limiter.check("user:1", "LOGIN")
    assert not blocked.allowed
    assert blocked.retry_after == 1

    clock.advance(0.5)
    assert limiter.check("user:1", "LOGIN").allowed


def test_windows_are_per_identifier_and_action():
    limiter = _limiter()
    for _ in range(5):
        limiter.check("user:1", "LOGIN")
    assert not limiter.check("user:1", "LOGIN").allowed
    assert limiter.check("user:2", "LOGIN").allowed
    assert limiter.check("user:1", "API_SEARCH").allowed


def test_adaptive_allowance():
    limiter = _limiter()
    results = [limiter.check_adaptive("user:1", "LOGIN", trust_score=100) for _ in range(11)]
    assert [r.allowed for r in results].count(True) == 10


def test_reset_and_cleanup():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(6):
        limiter.check("user:1", "SIGNUP")
    limiter.reset("user:1", "SIGNUP")
    assert limiter.check("user:1", "SIGNUP").allowed

    limiter.check("user:2", "SIGNUP", RateLimit(10, 1))
    clock.advance(120)
    assert limiter.cleanup() == 2


def test_login_is_throttled(client):
    for _ in range(RATE_LIMITS["LOGIN"].max_requests):
        assert client.post("/api/auth/login", json={"email": "ada@example.com"}).status_code == 200

    response = client.post("/api/auth/login", json={"email": "Ada@example.com"})
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"
    assert response.json()["retryAfter"] == 60
    assert response.headers["X-RateLimit-Remaining"] == "0"

    assert client.post("/api/auth/login", json={"email": "bo@example.com"}).status_code == 200


def test_login_window_expires(client, clock):
    for _ in range(6):
        client.post("/api/auth/login", json={"email": "ada@example.com"})
    clock.advance(60)
    assert client.post("/api/auth/login", json={"email": "ada@example.com"}).status_code == 200


def test_blocked_identifier(client):
    client.app.state.rate_limiter.block("email:ada@example.com", "abuse")
    response = client.post("/api/auth/login", json={"email": "ada@example.com"})
    assert response.status_code == 403
    client.app.state.rate_limiter.unblock("email:ada@example.com")
    assert client.post("/api/auth/login", json={"email": "ada@example.com"}).status_code == 200


def test_disabled_limiter(settings, mongo):
    from fastapi.testclient import TestClient

    from main import create_app

    app = create_app(settings=settings.model_copy(update={"rate_limit_enabled": False}), client=mongo)
    with TestClient(app) as c:
        codes = [c.post("/api/auth/login", json={"email": "ada@example.com"}).status_code for _ in range(8)]
    assert set(codes) == {200}


class RacingCollection:
    """Opens the window from a second worker right after the first lookup misses."""

    def __init__(self, inner, key, reset_at):
        self.inner = inner
        self.key = key
        self.reset_at = reset_at
        self.raced = False

    def find_one_and_update(self, *args, **kwargs):
        result = self.inner.find_one_and_update(*args, **kwargs)
        if not self.raced:
            self.raced = True
            self.inner.insert_one({"_id": self.key, "count": 1, "resetAt": self.reset_at, "action": "LOGIN"})
        return result

    def __getattr__(self, name):
        return getattr(self.inner, name)


def test_concurrent_first_hits_both_count():
    clock = FakeClock()
    limiter = _limiter(clock)
    limiter.collection = RacingCollection(limiter.collection, "LOGIN:user:1", clock() + 60)

    result = limiter.check("user:1", "LOGIN")

    assert result.allowed
    assert result.remaining == 3
    assert limiter.collection.inner.find_one({"_id": "LOGIN:user:1"})["count"] == 2


def test_expired_window_is_reset():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(5):
        limiter.check("user:1", "LOGIN")

    clock.advance(61)
    result = limiter.check("user:1", "LOGIN")
    assert result.allowed
    assert result.remaining == 4
    assert result.reset_at == clock() + 60
