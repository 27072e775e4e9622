"""Tests for rate-limit retries of marketplace calls."""

import httpx
import pytest

from creative_rotator.adapters.marketplace.stub import http_error
from creative_rotator.domain.errors import ExternalServiceError, RateLimitedError
from creative_rotator.services.resilience import ResilientCaller, parse_retry_after


class ScriptedCall:
    """Raises the queued errors in order, then returns ``value``."""

    def __init__(self, *errors: Exception, value: object = "ok") -> None:
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class TestParseRetryAfter:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("3", 3.0),
            (" 1.5 ", 1.5),
            ("0", 0.0),
            (None, None),
            ("", None),
            ("-1", None),
            ("Wed, 21 Oct 2026 07:28:00 GMT", None),
        ],
    )
    def test_parse(self, header: str | None, expected: float | None) -> None:
        assert parse_retry_after(header) == expected


class TestResilientCaller:
    @pytest.mark.asyncio
    async def test_succeeds_after_two_rate_limits(self, recording_sleep) -> None:
        caller = ResilientCaller(max_attempts=3, base_delay=0.5, sleep=recording_sleep)
        fn = ScriptedCall(http_error(429), http_error(429), value={"views": 10})

        result = await caller.call(fn, operation="fetch_campaign_stats")

        assert result == {"views": 10}
        assert fn.calls == 3
        assert recording_sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_rate_limited(self, recording_sleep) -> None:
        caller = ResilientCaller(max_attempts=3, base_delay=0.5, sleep=recording_sleep)
        fn = ScriptedCall(http_error(429), http_error(429), http_error(429))

        with pytest.raises(RateLimitedError) as exc_info:
            await caller.call(fn)

        assert exc_info.value.attempts == 3
        assert fn.calls == 3
        assert recording_sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_retry_after_header_wins_over_backoff(self, recording_sleep) -> None:
        caller = ResilientCaller(max_attempts=2, base_delay=0.5, sleep=recording_sleep)
        fn = ScriptedCall(http_error(429, {"Retry-After": "4"}))

        await caller.call(fn)

        assert recording_sleep.delays == [4.0]

    @pytest.mark.asyncio
    async def test_delay_is_capped(self, recording_sleep) -> None:
        caller = ResilientCaller(
            max_attempts=2, base_delay=0.5, max_delay=2.0, sleep=recording_sleep
        )
        fn = ScriptedCall(http_error(429, {"Retry-After": "120"}))

        await caller.call(fn)

        assert recording_sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self, recording_sleep) -> None:
        caller = ResilientCaller(max_attempts=3, sleep=recording_sleep)
        fn = ScriptedCall(http_error(500))

        with pytest.raises(ExternalServiceError) as exc_info:
            await caller.call(fn, operation="set_primary_image")

        assert exc_info.value.status_code == 500
        assert fn.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self, recording_sleep) -> None:
        caller = ResilientCaller(max_attempts=3, sleep=recording_sleep)
        fn = ScriptedCall(httpx.ConnectError("connection refused"))

        with pytest.raises(ExternalServiceError):
            await caller.call(fn)

        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_backoff_grows_exponentially(self, recording_sleep) -> None:
        caller = ResilientCaller(
            max_attempts=5, base_delay=0.5, max_delay=30, sleep=recording_sleep
        )
        fn = ScriptedCall(*(http_error(429) for _ in range(5)))

        with pytest.raises(RateLimitedError):
            await caller.call(fn)

        assert fn.calls == 5
        assert recording_sleep.delays == [0.5, 1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, recording_sleep) -> None:
        caller = ResilientCaller(
            max_attempts=4, base_delay=1.0, max_delay=1.5, sleep=recording_sleep
        )
        fn = ScriptedCall(*(http_error(429) for _ in range(3)))

        await caller.call(fn)

        assert recording_sleep.delays == [1.0, 1.5, 1.5]

    @pytest.mark.asyncio
    async def test_provider_error_raised_by_call_passes_through(self, recording_sleep) -> None:
        caller = ResilientCaller(max_attempts=3, sleep=recording_sleep)
        fn = ScriptedCall(ExternalServiceError("bad payload"))

        with pytest.raises(ExternalServiceError, match="bad payload"):
            await caller.call(fn)

        assert fn.calls == 1
        assert recording_sleep.delays == []

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            ResilientCaller(max_attempts=0)
