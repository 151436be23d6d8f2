"""
Tests for retry-with-backoff policies.
"""

import httpx
import pytest
from sqlalchemy import exc as sa_exc

from bhavan.core.errors import DatabaseError, NetworkError, PaymentError, ValidationError
from bhavan.core.retry import (
    RetryConfig,
    is_transient_database_error,
    is_transient_network_error,
    with_database_retry,
    with_network_retry,
)

FAST = RetryConfig(max_attempts=3, base_delay_ms=500, max_delay_ms=10000, exponential_base=2)


class Recorder:
    """Fake sleep that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def failing(error: Exception, succeed_after: int = None):
    calls = {"count": 0}

    async def operation():
        calls["count"] += 1
        if succeed_after is not None and calls["count"] > succeed_after:
            return "ok"
        raise error

    return operation, calls


def _operational_error() -> sa_exc.OperationalError:
    return sa_exc.OperationalError("SELECT 1", {}, Exception("database is locked"))


class TestRetryConfig:
    def test_exponential_delays(self):
        assert FAST.delay_for(1) == 0.5
        assert FAST.delay_for(2) == 1.0
        assert FAST.delay_for(3) == 2.0

    def test_delay_capped(self):
        config = RetryConfig(base_delay_ms=1000, max_delay_ms=3000)
        assert config.delay_for(10) == 3.0


class TestDatabaseRetry:
    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self):
        sleep = Recorder()
        operation, calls = failing(_operational_error())

        with pytest.raises(DatabaseError):
            await with_database_retry(operation, config=FAST, sleep=sleep)

        assert calls["count"] == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_database_error_reraised_unchanged(self):
        error = DatabaseError("connection pool exhausted")
        operation, calls = failing(error)

        with pytest.raises(DatabaseError) as exc_info:
            await with_database_retry(operation, config=FAST, sleep=Recorder())

        assert exc_info.value is error
        assert calls["count"] == 3

    @pytest.mark.asyncio
    async def test_recovers_from_transient_failure(self):
        sleep = Recorder()
        operation, calls = failing(_operational_error(), succeed_after=1)

        assert await with_database_retry(operation, config=FAST, sleep=sleep) == "ok"
        assert calls["count"] == 2
        assert sleep.delays == [0.5]

    @pytest.mark.asyncio
    async def test_integrity_error_not_retried(self):
        sleep = Recorder()
        error = sa_exc.IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        operation, calls = failing(error)

        with pytest.raises(DatabaseError):
            await with_database_retry(operation, config=FAST, sleep=sleep)
        assert calls["count"] == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_app_errors_pass_through(self):
        operation, calls = failing(ValidationError("bad input"))

        with pytest.raises(ValidationError):
            await with_database_retry(operation, config=FAST, sleep=Recorder())
        assert calls["count"] == 1


class TestNetworkRetry:
    @pytest.mark.asyncio
    async def test_retryable_network_error(self):
        sleep = Recorder()
        operation, calls = failing(NetworkError("gateway timeout", retryable=True), succeed_after=2)

        assert await with_network_retry(operation, config=FAST, sleep=sleep) == "ok"
        assert calls["count"] == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_payment_errors_never_retried(self):
        operation, calls = failing(PaymentError("card declined", gateway_code="DECLINED"))

        with pytest.raises(PaymentError):
            await with_network_retry(operation, config=FAST, sleep=Recorder())
        assert calls["count"] == 1

    @pytest.mark.asyncio
    async def test_bare_failure_wrapped_as_network_error(self):
        operation, calls = failing(httpx.ConnectError("connection refused"))

        with pytest.raises(NetworkError) as exc_info:
            await with_network_retry(operation, config=FAST, sleep=Recorder())
        assert calls["count"] == 3
        assert exc_info.value.retryable is False


class TestClassifiers:
    def test_database(self):
        assert is_transient_database_error(_operational_error())
        assert is_transient_database_error(DatabaseError("pool exhausted"))
        assert not is_transient_database_error(ValueError("nope"))

    def test_network(self):
        assert is_transient_network_error(httpx.ReadTimeout("slow"))
        assert is_transient_network_error(ConnectionError("reset"))
        assert is_transient_network_error(RuntimeError("ETIMEDOUT while reading"))
        assert not is_transient_network_error(NetworkError("down", retryable=False))
        assert not is_transient_network_error(ValueError("bad json"))
