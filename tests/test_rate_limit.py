import pytest

from busbook.src import constants, exceptions
from busbook.src.redis import acquireLock, hitRateLimit, releaseLock


def test_counter_expires_with_its_window(fake_redis):
    assert hitRateLimit("10.0.0.1", window=60, maxRequests=2) == 1
    assert hitRateLimit("10.0.0.1", window=60, maxRequests=2) == 2
    assert fake_redis.expiry["ratelimit:10.0.0.1"] == 60

    with pytest.raises(exceptions.TooManyRequests) as error:
        hitRateLimit("10.0.0.1", window=60, maxRequests=2)
    assert error.value.headers["Retry-After"] == "60"

    # Other clients have their own window
    assert hitRateLimit("10.0.0.2", window=60, maxRequests=2) == 1


def test_api_answers_429_over_the_limit(client, monkeypatch, fake_redis):
    monkeypatch.setattr(constants, "RATE_LIMIT_ENABLED", True)
    fake_redis.store["ratelimit:testclient"] = constants.RATE_LIMIT_MAX_REQUESTS
    fake_redis.expiry["ratelimit:testclient"] = 30

    response = client.get("/api/account")
    assert response.status_code == 429
    assert response.json()["error"] == "TooManyRequests"
    assert response.headers["Retry-After"] == "30"


def test_lock_is_released_once(fake_redis):
    lock = acquireLock("user_account", 7)
    assert lock.locked()
    releaseLock(lock)
    assert not lock.locked()
    releaseLock(lock)
    releaseLock(None)
