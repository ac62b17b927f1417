import asyncio

import httpx
import pytest

from core.errors import FatalProviderError, NotFound, TransientProviderError, Unauthorized
from processing.retry import FailureKind, classify


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.example.com")
    return httpx.HTTPStatusError("error", request=request, response=httpx.Response(status, request=request))


@pytest.mark.parametrize(
    "error",
    [
        TransientProviderError("rate limited", status_code=429),
        asyncio.TimeoutError(),
        httpx.ConnectError("refused"),
        httpx.ReadTimeout("slow"),
        _status_error(429),
        _status_error(503),
        RuntimeError("Request timed out"),
        RuntimeError("network unreachable"),
    ],
)
def test_transient_errors(error):
    assert classify(error) is FailureKind.TRANSIENT


@pytest.mark.parametrize(
    "error",
    [
        Unauthorized("nope"),
        NotFound("gone"),
        FatalProviderError("bad schema"),
        _status_error(400),
        _status_error(401),
        ValueError("malformed"),
    ],
)
def test_fatal_errors(error):
    assert classify(error) is FailureKind.FATAL


class Flaky:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


async def test_transient_failure_is_retried_once(retry, sleeps):
    operation = Flaky(TransientProviderError("429", status_code=429), "ok")
    assert await retry.run(operation) == "ok"
    assert operation.calls == 2
    assert sleeps == [1.0]


async def test_fatal_failure_is_not_retried(retry, sleeps):
    operation = Flaky(FatalProviderError("invalid"), "ok")
    with pytest.raises(FatalProviderError):
        await retry.run(operation)
    assert operation.calls == 1
    assert sleeps == []


async def test_second_transient_failure_propagates(retry):
    operation = Flaky(TransientProviderError("503"), TransientProviderError("503 again"), "never")
    with pytest.raises(TransientProviderError, match="again"):
        await retry.run(operation)
    assert operation.calls == 2


async def test_best_effort_returns_none(retry):
    operation = Flaky(TransientProviderError("a"), TransientProviderError("b"))
    assert await retry.run_best_effort(operation, label="Perspective") is None


async def test_best_effort_still_propagates_ownership_errors(retry):
    with pytest.raises(Unauthorized):
        await retry.run_best_effort(Flaky(Unauthorized("no")), label="Perspective")
