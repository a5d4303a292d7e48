"""Unit tests for storage retry classification and bounds."""

import pytest
from azure.cosmos.exceptions import CosmosHttpResponseError

from conftest import s3_error
from semantic_store.exceptions import (
    CorruptionError,
    NotFoundError,
    PermanentStorageError,
    TransientStorageError,
)
from semantic_store.retry import ErrorKind, RetryPolicy, classify_error, retry_async


class FlakyOperation:
    """Fails with ``error`` for the first ``failures`` calls, then returns ``result``."""

    def __init__(self, failures: int, error: Exception, result: str = "ok"):
        self.failures = failures
        self.error = error
        self.result = result
        self.attempts = 0

    async def __call__(self) -> str:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        return self.result


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestRetryPolicy:
    """Tests for delay calculation."""

    def test_delay_grows_linearly_and_caps(self):
        """Delays grow by the base delay and stop at the cap."""
        policy = RetryPolicy(max_attempts=5, base_delay_seconds=1.0, max_delay_seconds=2.5)

        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 2.5, 2.5]

    def test_attempts_must_be_positive(self):
        """At least one attempt is required."""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestClassifyError:
    """Tests for transient / permanent / not-found classification."""

    @pytest.mark.parametrize(
        "error",
        [
            s3_error("SlowDown", 503),
            s3_error("Throttling", 400),
            s3_error("InternalError", 500),
            CosmosHttpResponseError(status_code=429, message="Request rate is large"),
            CosmosHttpResponseError(status_code=409, message="Conflict"),
            CosmosHttpResponseError(status_code=408, message="Request timeout"),
            TimeoutError("read timed out"),
            ConnectionResetError("connection reset by peer"),
            RuntimeError("temporary failure in name resolution"),
            RuntimeError("Too Many Requests"),
            TransientStorageError("lock busy"),
        ],
    )
    def test_transient(self, error):
        """Throttling, conflicts, timeouts and network errors are transient."""
        assert classify_error(error) is ErrorKind.TRANSIENT

    @pytest.mark.parametrize(
        "error",
        [
            s3_error("NoSuchKey", 404),
            s3_error("404", 404, "HeadObject"),
            CosmosHttpResponseError(status_code=404, message="Entity with the specified id does not exist"),
            NotFoundError("missing"),
        ],
    )
    def test_not_found(self, error):
        """404 responses map to NOT_FOUND."""
        assert classify_error(error) is ErrorKind.NOT_FOUND

    @pytest.mark.parametrize(
        "error",
        [
            s3_error("AccessDenied", 403),
            CosmosHttpResponseError(status_code=401, message="Unauthorized"),
            ValueError("bad request"),
            CorruptionError("broken"),
        ],
    )
    def test_permanent(self, error):
        """Authorization and request errors are permanent."""
        assert classify_error(error) is ErrorKind.PERMANENT


class TestRetryAsync:
    """Tests for the bounded retry loop."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failures", [0, 1, 2])
    async def test_transient_failures_below_ceiling_succeed(self, failures):
        """K transient failures (K < ceiling) then success -> exactly K+1 attempts."""
        operation = FlakyOperation(failures, s3_error("SlowDown", 503))
        sleep = SleepRecorder()
        policy = RetryPolicy(max_attempts=3, base_delay_seconds=0.5, max_delay_seconds=5.0)

        result = await retry_async("Upload", operation, policy, sleep=sleep)

        assert result == "ok"
        assert operation.attempts == failures + 1
        assert sleep.delays == [0.5 * n for n in range(1, failures + 1)]

    @pytest.mark.asyncio
    async def test_transient_beyond_ceiling_raises(self):
        """Attempts stop at max_attempts with the last error as cause."""
        operation = FlakyOperation(10, CosmosHttpResponseError(status_code=429, message="throttled"))
        policy = RetryPolicy(max_attempts=3, base_delay_seconds=0.0)

        with pytest.raises(TransientStorageError) as exc_info:
            await retry_async("WriteEntity", operation, policy, sleep=SleepRecorder())

        assert operation.attempts == 3
        assert exc_info.value.context["attempts"] == 3
        assert isinstance(exc_info.value.__cause__, CosmosHttpResponseError)

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self):
        """Permanent errors fail after one attempt."""
        operation = FlakyOperation(1, s3_error("AccessDenied", 403))

        with pytest.raises(PermanentStorageError) as exc_info:
            await retry_async("Upload", operation, RetryPolicy(), sleep=SleepRecorder())

        assert operation.attempts == 1
        assert exc_info.value.context["operation"] == "Upload"

    @pytest.mark.asyncio
    async def test_not_found_surfaces_immediately(self):
        """Missing objects are reported without retrying."""
        operation = FlakyOperation(1, s3_error("NoSuchKey", 404))

        with pytest.raises(NotFoundError):
            await retry_async(
                "Download", operation, RetryPolicy(), context={"key": "m/index.json"}, sleep=SleepRecorder()
            )

        assert operation.attempts == 1

    @pytest.mark.asyncio
    async def test_store_errors_pass_through_unchanged(self):
        """Errors already in the store hierarchy are not wrapped."""
        error = CorruptionError("bad envelope", {"path": "tables/a.b.json"})
        operation = FlakyOperation(1, error)

        with pytest.raises(CorruptionError) as exc_info:
            await retry_async("Download", operation, RetryPolicy(), sleep=SleepRecorder())

        assert exc_info.value is error
