from datetime import timedelta

import pytest

from src.models.rate_limited_host import RateLimitedHost
from src.services.rate_limiter import HostRateLimiter
from src.utils.time import utcnow


@pytest.fixture
def limiter(db_session):
    return HostRateLimiter(db_session)


def test_unknown_host_is_allowed(limiter):
    assert limiter.check_host("example.com") is True
    assert limiter.check_host(None) is True
    assert limiter.get_retry_after("example.com") is None


def test_penalized_host_is_blocked_until_window_elapses(limiter):
    now = utcnow()
    limiter.penalize("example.com", now + timedelta(seconds=60))

    assert limiter.check_host("example.com", now=now) is False
    assert limiter.check_host("example.com", now=now + timedelta(seconds=61)) is True
    assert limiter.check_host("other.com", now=now) is True


def test_later_window_wins(db_session, limiter):
    now = utcnow()
    later = now + timedelta(seconds=600)
    limiter.penalize("example.com", later)
    limiter.penalize("example.com", now + timedelta(seconds=30))

    assert limiter.get_retry_after("example.com") == later
    assert db_session.query(RateLimitedHost).count() == 1

    latest = now + timedelta(seconds=1200)
    limiter.penalize("example.com", latest)
    assert limiter.get_retry_after("example.com") == latest


def test_penalize_for_returns_window(limiter):
    before = utcnow()
    retry_after = limiter.penalize_for("example.com", 120)

    assert retry_after >= before + timedelta(seconds=120)
    assert limiter.get_retry_after("example.com") == retry_after


def test_limited_hosts(limiter):
    now = utcnow()
    limiter.penalize("a.example.com", now + timedelta(seconds=60))
    limiter.penalize("b.example.com", now - timedelta(seconds=60))

    assert limiter.limited_hosts(now) == {"a.example.com"}


def test_purge_expired(db_session, limiter):
    now = utcnow()
    limiter.penalize("a.example.com", now + timedelta(seconds=60))
    limiter.penalize("b.example.com", now - timedelta(seconds=60))

    assert limiter.purge_expired(now) == 1
    assert [row.hostname for row in db_session.query(RateLimitedHost).all()] == ["a.example.com"]
