"""The LLM client contract consumed by the orchestrator.

Provider adapters (Anthropic, OpenAI, Ollama, ...) implement ``ApiClient``.
``RetryingClient`` wraps any of them with a ``RetryPolicy`` so that
transport retries stay out of the orchestration loop.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from codeh_llm.errors import LLMError, StreamError
from codeh_llm.retry import OnRetryCallback, RetryPolicy, retry_with_policy
from codeh_llm.types import ChatRequest, ChatResponse, StreamChunk

# Receives each chunk as it arrives; the final chunk has done=True.
ChunkCallback = Callable[[StreamChunk], None]


@runtime_checkable
class ApiClient(Protocol):
    """Protocol every LLM adapter implements."""

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send *request* and wait for the complete response."""
        ...

    async def stream_chat(
        self,
        request: ChatRequest,
        on_chunk: ChunkCallback,
    ) -> ChatResponse:
        """Send *request*, forwarding chunks to *on_chunk* as they arrive.

        Returns the fully assembled response once the stream ends.
        """
        ...


class RetryingClient:
    """``ApiClient`` decorator applying a retry policy.

    Usage::

        client = RetryingClient(OllamaClient(config), RetryPolicy(max_retries=3))
        response = await client.chat(ChatRequest(messages=[Message.user("hi")]))

    Streams are retried only while nothing has been delivered to the
    caller; an interruption after the first chunk surfaces as a
    non-retryable ``StreamError``.
    """

    def __init__(
        self,
        inner: ApiClient,
        policy: RetryPolicy | None = None,
        *,
        on_retry: OnRetryCallback | None = None,
    ) -> None:
        self._inner = inner
        self._policy = policy or RetryPolicy()
        self._on_retry = on_retry

    @property
    def inner(self) -> ApiClient:
        return self._inner

    async def chat(self, request: ChatRequest) -> ChatResponse:
        async def _attempt() -> ChatResponse:
            return await self._inner.chat(request)

        return await retry_with_policy(_attempt, self._policy, self._on_retry)

    async def stream_chat(
        self,
        request: ChatRequest,
        on_chunk: ChunkCallback,
    ) -> ChatResponse:
        delivered = False

        def _forward(chunk: StreamChunk) -> None:
            nonlocal delivered
            if chunk.content:
                delivered = True
            on_chunk(chunk)

        async def _attempt() -> ChatResponse:
            try:
                return await self._inner.stream_chat(request, _forward)
            except LLMError as exc:
                if delivered and exc.retryable:
                    raise StreamError(
                        f"Stream interrupted after partial delivery: {exc}",
                        provider=exc.provider,
                        retryable=False,
                    ) from exc
                raise

        return await retry_with_policy(_attempt, self._policy, self._on_retry)
