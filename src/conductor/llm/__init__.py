"""LLM client module."""
from conductor.llm.client import (
    AnthropicLLMClient,
    LLMClient,
    LLMClientFactory,
    LLMProviderError,
    LLMResponse,
    OpenAILLMClient,
)

__all__ = [
    "AnthropicLLMClient",
    "LLMClient",
    "LLMClientFactory",
    "LLMProviderError",
    "LLMResponse",
    "OpenAILLMClient",
]
