"""
Transient-vs-fatal failure classification and the single bounded retry.
"""
import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from core.errors import (
    BestEffortFailure,
    FatalProviderError,
    NotFound,
    TransientProviderError,
    Unauthorized,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailureKind(enum.Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"


def _status_code(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify(error: BaseException) -> FailureKind:
    """
    Transient: rate limit (429), timeout, network failure, any 5xx.
    Fatal: everything else.
    """
    if isinstance(error, (Unauthorized, NotFound, FatalProviderError)):
        return FailureKind.FATAL
    if isinstance(error, TransientProviderError):
        return FailureKind.TRANSIENT

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return FailureKind.TRANSIENT
    if isinstance(error, (httpx.NetworkError, ConnectionError)):
        return FailureKind.TRANSIENT

    status = _status_code(error)
    if status is not None:
        if status == 429 or 500 <= status < 600:
            return FailureKind.TRANSIENT
        return FailureKind.FATAL

    message = str(error).lower()
    if "timeout" in message or "timed out" in message:
        return FailureKind.TRANSIENT
    if "network" in message or "connection" in message:
        return FailureKind.TRANSIENT

    return FailureKind.FATAL


class RetryPolicy:
    """
    One retry after a fixed delay for transient failures; fatal failures
    are re-raised immediately.
    """

    def __init__(
        self,
        delay_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.delay_seconds = delay_seconds
        self.sleep = sleep

    def classify(self, error: BaseException) -> FailureKind:
        return classify(error)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        context: Optional[Dict[str, Any]] = None,
    ) -> T:
        context = context or {}
        try:
            return await operation()
        except Exception as e:
            if self.classify(e) is FailureKind.FATAL:
                logger.warning(f"Fatal failure, not retrying: {e}", extra=context)
                raise

            logger.warning(
                f"Transient failure, retrying once in {self.delay_seconds}s: {e}",
                extra={**context, "status_code": _status_code(e)},
            )

        await self.sleep(self.delay_seconds)
        try:
            return await operation()
        except Exception as e:
            logger.error(f"Retry failed: {e}", extra=context)
            raise

    async def run_best_effort(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[T]:
        """
        Same retry rule, but failure is logged and absorbed as None.
        """
        try:
            return await self.run(operation, context=context)
        except (Unauthorized, NotFound):
            raise
        except Exception as e:
            failure = BestEffortFailure(f"{label} failed: {e}")
            logger.warning(str(failure), extra=context or {})
            return None
