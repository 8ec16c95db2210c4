"""codeh LLM boundary.

Wire types, the ``ApiClient`` contract, the error taxonomy and the retry
layer shared by every provider adapter.
"""

from __future__ import annotations

from codeh_llm.client import ApiClient, ChunkCallback, RetryingClient
from codeh_llm.errors import (
    AbortError,
    AuthenticationError,
    InvalidRequestError,
    LLMError,
    NetworkError,
    ProviderError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    StreamError,
)
from codeh_llm.retry import RetryPolicy, retry_with_policy
from codeh_llm.types import (
    ChatRequest,
    ChatResponse,
    FinishReason,
    Message,
    Role,
    StreamChunk,
    ToolCall,
    ToolSpec,
    Usage,
)

__all__ = [
    # Client
    "ApiClient",
    "ChunkCallback",
    "RetryingClient",
    # Retry
    "RetryPolicy",
    "retry_with_policy",
    # Types
    "ChatRequest",
    "ChatResponse",
    "FinishReason",
    "Message",
    "Role",
    "StreamChunk",
    "ToolCall",
    "ToolSpec",
    "Usage",
    # Errors
    "LLMError",
    "ProviderError",
    "AuthenticationError",
    "InvalidRequestError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "RequestTimeoutError",
    "StreamError",
    "AbortError",
]
