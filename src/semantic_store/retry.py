"""Bounded retry for remote storage calls.

Failures are classified as transient, permanent or not-found. Transient failures
are retried with a capped, linearly growing delay (``min(cap, base * attempt)``)
up to a fixed number of attempts; the other two surface immediately.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

from loguru import logger
from pydantic import BaseModel, Field

from semantic_store.exceptions import (
    NotFoundError,
    PermanentStorageError,
    SemanticStoreError,
    TransientStorageError,
)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = {408, 409, 429}
TRANSIENT_ERROR_CODES = {
    "conflict",
    "internalerror",
    "operationaborted",
    "requesttimeout",
    "requesttimeouterror",
    "serviceunavailable",
    "slowdown",
    "throttling",
    "throttlingexception",
    "toomanyrequests",
    "toomanyrequestsexception",
}
NOT_FOUND_ERROR_CODES = {"404", "nosuchbucket", "nosuchkey", "notfound"}
TRANSIENT_MESSAGE_MARKERS = ("conflict", "too many requests", "temporary", "timeout", "timed out")


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    NOT_FOUND = "not_found"


class RetryPolicy(BaseModel):
    """Retry configuration.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay_seconds: Delay unit multiplied by the attempt number
        max_delay_seconds: Cap applied to every delay
    """

    max_attempts: int = Field(default=3, ge=1, le=20)
    base_delay_seconds: float = Field(default=0.5, ge=0.0)
    max_delay_seconds: float = Field(default=5.0, ge=0.0)

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number ``attempt`` (1-based)."""
        return min(self.max_delay_seconds, self.base_delay_seconds * attempt)


def _status_code(exc: BaseException) -> int | None:
    # botocore ClientError keeps the status in its response dict; azure and httpx
    # style errors expose it directly.
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if isinstance(status, int):
            return status
    for attr in ("status_code", "status"):
        status = getattr(exc, attr, None)
        if isinstance(status, int):
            return status
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _error_code(exc: BaseException) -> str | None:
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        code = response.get("Error", {}).get("Code")
        if code is not None:
            return str(code).lower()
    code = getattr(exc, "error_code", None)
    return str(code).lower() if code is not None else None


def classify_error(exc: BaseException) -> ErrorKind:
    """Decide whether a storage failure is worth retrying.

    Example:
        >>> classify_error(TimeoutError("read timed out"))
        <ErrorKind.TRANSIENT: 'transient'>
    """
    if isinstance(exc, TransientStorageError):
        return ErrorKind.TRANSIENT
    if isinstance(exc, NotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, SemanticStoreError):
        return ErrorKind.PERMANENT

    status = _status_code(exc)
    code = _error_code(exc)

    if status == 404 or code in NOT_FOUND_ERROR_CODES:
        return ErrorKind.NOT_FOUND
    if status is not None and (status >= 500 or status in TRANSIENT_STATUS_CODES):
        return ErrorKind.TRANSIENT
    if code in TRANSIENT_ERROR_CODES:
        return ErrorKind.TRANSIENT
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT

    message = str(exc).lower()
    if any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def is_transient_error(exc: BaseException) -> bool:
    return classify_error(exc) is ErrorKind.TRANSIENT


async def retry_async(
    operation: str,
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    context: dict[str, Any] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``func`` until it succeeds, fails permanently, or runs out of attempts.

    Args:
        operation: Name used in log lines and error messages (e.g. "Upload")
        func: Zero-argument coroutine factory performing one attempt
        policy: Attempt ceiling and backoff settings
        context: Extra diagnostic details attached to raised errors
        sleep: Delay function (tests pass a recorder)

    Raises:
        NotFoundError: Backend reported the target as missing
        PermanentStorageError: Non-retryable failure, raised on first occurrence
        TransientStorageError: Retryable failure persisted past ``max_attempts``
    """
    details = {"operation": operation, **(context or {})}
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except Exception as e:
            kind = classify_error(e)
            if isinstance(e, SemanticStoreError) and kind is not ErrorKind.TRANSIENT:
                raise
            if kind is ErrorKind.NOT_FOUND:
                raise NotFoundError(f"{operation} target not found", details) from e
            if kind is ErrorKind.PERMANENT:
                logger.error(f"{operation} failed permanently: {e}")
                raise PermanentStorageError(f"{operation} failed: {e}", details) from e
            if attempt >= policy.max_attempts:
                logger.error(f"{operation} still failing after {attempt} attempts: {e}")
                raise TransientStorageError(
                    f"{operation} failed after {attempt} attempts: {e}",
                    {**details, "attempts": attempt},
                ) from e

            delay = policy.delay_for(attempt)
            logger.warning(
                f"Transient failure in {operation} "
                f"(attempt {attempt}/{policy.max_attempts}), retrying in {delay:.2f}s: {e}"
            )
            await sleep(delay)
