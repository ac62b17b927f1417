import time
import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Type, TypeVar

import httpx
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_ollama import ChatOllama
from pydantic import BaseModel, ValidationError

from core.entities import ModelTier
from core.errors import FatalProviderError, ProviderError, TransientProviderError
from processing.retry import FailureKind, _status_code, classify

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def _to_provider_error(error: BaseException, timeout: float) -> ProviderError:
    if isinstance(error, ProviderError):
        return error
    if isinstance(error, asyncio.TimeoutError):
        return TransientProviderError(f"Request timed out after {timeout}s")
    if isinstance(error, ValidationError):
        return FatalProviderError(f"Malformed structured output: {error}")

    status = _status_code(error)
    if classify(error) is FailureKind.TRANSIENT:
        return TransientProviderError(str(error) or error.__class__.__name__, status_code=status)
    return FatalProviderError(str(error) or error.__class__.__name__, status_code=status)


class StructuredLLMClient:
    """
    LangChain-based Ollama client for structured output.

    Performs exactly one attempt per call; retrying is the caller's
    RetryPolicy's job. Raw failures are converted to
    TransientProviderError / FatalProviderError.
    """

    def __init__(
        self,
        base_url: str,
        models: Dict[str, str],
        temperature: float = 0.1,
        timeout: float = 60.0,
    ):
        # ChatOllama uses Ollama's native API, not OpenAI-compatible /v1 endpoint
        # Strip /v1 suffix if present
        if base_url.endswith("/v1"):
            base_url = base_url[:-3]
        elif base_url.endswith("/v1/"):
            base_url = base_url[:-4]

        self.base_url = base_url.rstrip('/')
        self.models = models
        self.timeout = timeout

        self._chats: Dict[str, ChatOllama] = {
            tier: ChatOllama(
                base_url=self.base_url,
                model=model,
                temperature=temperature,
                num_ctx=8192,
            )
            for tier, model in models.items()
        }

    def model_name(self, tier: ModelTier) -> str:
        return self.models.get(tier) or self.models["quality"]

    def _chat(self, tier: ModelTier) -> ChatOllama:
        return self._chats.get(tier) or self._chats["quality"]

    @staticmethod
    def _messages(system_prompt: Optional[str], user_prompt: str) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=user_prompt))
        return messages

    async def generate(
        self,
        schema: Type[SchemaT],
        system_prompt: Optional[str],
        user_prompt: str,
        tier: ModelTier = "quality",
    ) -> SchemaT:
        """
        Single structured-output call. Returns a validated schema instance.
        """
        start = time.time()
        runnable = self._chat(tier).with_structured_output(schema, method="json_schema")

        try:
            result = await asyncio.wait_for(
                runnable.ainvoke(self._messages(system_prompt, user_prompt)),
                timeout=self.timeout,
            )
            if not isinstance(result, schema):
                result = schema.model_validate(result)
        except Exception as e:
            error = _to_provider_error(e, self.timeout)
            logger.warning(
                f"Structured output call failed: {error}",
                extra={"model": self.model_name(tier), "status_code": error.status_code},
            )
            raise error from e

        latency_ms = int((time.time() - start) * 1000)
        logger.info(
            f"Structured output received ({schema.__name__})",
            extra={"model": self.model_name(tier), "latency_ms": latency_ms},
        )
        return result

    async def stream(
        self,
        schema: Type[SchemaT],
        system_prompt: Optional[str],
        user_prompt: str,
        tier: ModelTier = "quality",
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream partial structured output as dicts. The last yielded value is
        the complete object, validated against the schema.
        """
        runnable = self._chat(tier).with_structured_output(
            schema, method="json_schema", include_raw=False
        )
        deadline = time.monotonic() + self.timeout
        last: Optional[Dict[str, Any]] = None

        try:
            iterator = runnable.astream(self._messages(system_prompt, user_prompt)).__aiter__()
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                last = chunk.model_dump() if isinstance(chunk, BaseModel) else dict(chunk or {})
                yield last

            if last is None:
                raise FatalProviderError("Empty structured output stream")
            schema.model_validate(last)
        except Exception as e:
            error = _to_provider_error(e, self.timeout)
            logger.warning(
                f"Structured output stream failed: {error}",
                extra={"model": self.model_name(tier), "status_code": error.status_code},
            )
            raise error from e

    async def health_check(self) -> bool:
        """
        Check if the Ollama server is reachable by calling /api/tags.
        """
        url = f"{self.base_url}/api/tags"
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(url)
                if resp.status_code == 200:
                    return True
                logger.error(f"Ollama health check failed: {resp.status_code} {resp.text}")
                return False
        except httpx.HTTPError as e:
            logger.error(f"Ollama health check error: {e} (url={url})")
            return False
