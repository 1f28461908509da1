"""Provider clients behind the LLM-backed workers and reviewer.

A client is bound to one ``LLMConfig`` so workers only pass a prompt. SDK
exceptions are translated into ``LLMProviderError`` with a ``recoverable``
flag: rate limits, dropped connections and 5xx responses are worth a retry,
bad requests and auth failures are not.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

import anthropic
import openai

from conductor.config.schema import LLMConfig
from conductor.errors import ConductorError

logger = logging.getLogger(__name__)


class LLMProviderError(ConductorError):
    """The provider rejected or failed a completion request."""

    def __init__(self, provider: str, message: str, recoverable: bool):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.recoverable = recoverable


@dataclass
class LLMResponse:
    """One completion."""

    content: str
    model: str
    tokens_used: int


class LLMClient(ABC):
    """Completion client bound to a model configuration."""

    provider: ClassVar[str]
    transient_errors: ClassVar[tuple[type[Exception], ...]] = ()
    fatal_errors: ClassVar[tuple[type[Exception], ...]] = ()

    def __init__(self, config: LLMConfig):
        self.config = config
        self.total_tokens = 0

    async def complete(self, prompt: str, system: str | None = None) -> LLMResponse:
        """Send one prompt and account for the tokens it used.

        Raises:
            LLMProviderError: the SDK raised; ``recoverable`` says whether a retry may help
        """
        try:
            response = await self._complete(prompt, system)
        except self.transient_errors as e:
            logger.warning("%s request failed, retryable: %s", self.provider, e)
            raise LLMProviderError(self.provider, str(e), recoverable=True) from e
        except self.fatal_errors as e:
            raise LLMProviderError(self.provider, str(e), recoverable=False) from e

        self.total_tokens += response.tokens_used
        logger.debug("%s used %d tokens (%d total)", self.config.model, response.tokens_used, self.total_tokens)
        return response

    @abstractmethod
    async def _complete(self, prompt: str, system: str | None) -> LLMResponse:
        pass


class AnthropicLLMClient(LLMClient):
    """Anthropic Messages API client."""

    provider = "anthropic"
    transient_errors = (anthropic.RateLimitError, anthropic.APIConnectionError, anthropic.InternalServerError)
    fatal_errors = (anthropic.APIStatusError,)

    def __init__(self, api_key: str, config: LLMConfig):
        super().__init__(config)
        self.api_key = api_key
        self.client = anthropic.AsyncAnthropic(api_key=api_key)

    async def _complete(self, prompt: str, system: str | None) -> LLMResponse:
        kwargs = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        response = await self.client.messages.create(**kwargs)

        # Tool-use and thinking blocks carry no text
        text = "".join(block.text for block in response.content if getattr(block, "type", "text") == "text")
        return LLMResponse(
            content=text,
            model=self.config.model,
            tokens_used=response.usage.input_tokens + response.usage.output_tokens,
        )


class OpenAILLMClient(LLMClient):
    """OpenAI Chat Completions client."""

    provider = "openai"
    transient_errors = (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError)
    fatal_errors = (openai.APIStatusError,)

    def __init__(self, api_key: str, config: LLMConfig):
        super().__init__(config)
        self.api_key = api_key
        self.client = openai.AsyncOpenAI(api_key=api_key)

    async def _complete(self, prompt: str, system: str | None) -> LLMResponse:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await self.client.chat.completions.create(
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            messages=messages,
        )

        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=self.config.model,
            tokens_used=response.usage.total_tokens if response.usage else 0,
        )


class LLMClientFactory:
    """
    Builds the client for an ``LLMConfig``.

    The provider comes from ``LLMConfig.provider``, else from the model name
    prefix, else from whichever API key is set.
    """

    # Provider -> (env var, model prefix, client class)
    PROVIDERS: ClassVar[dict[str, tuple[str, str, type[LLMClient]]]] = {
        "anthropic": ("ANTHROPIC_API_KEY", "claude-", AnthropicLLMClient),
        "openai": ("OPENAI_API_KEY", "gpt-", OpenAILLMClient),
    }

    @classmethod
    def create(cls, config: LLMConfig) -> LLMClient | None:
        """Return a client if an API key is available, None otherwise."""
        provider = config.provider or cls._infer_provider(config.model) or cls._find_available_provider()
        if not provider:
            logger.warning("No LLM provider available (no API keys found)")
            return None
        if provider not in cls.PROVIDERS:
            raise ValueError(f"Unknown LLM provider: {provider}. Use one of: {', '.join(cls.PROVIDERS)}")

        env_var, _, client_class = cls.PROVIDERS[provider]
        api_key = os.getenv(env_var)
        if not api_key:
            logger.warning(f"No API key found for {provider} (set {env_var})")
            return None

        logger.info(f"Using {provider} with model {config.model}")
        return client_class(api_key, config)

    @classmethod
    def _infer_provider(cls, model: str) -> str | None:
        for provider, (_, prefix, _) in cls.PROVIDERS.items():
            if model.startswith(prefix):
                return provider
        return None

    @classmethod
    def _find_available_provider(cls) -> str | None:
        """Find first provider with available API key."""
        for provider, (env_var, _, _) in cls.PROVIDERS.items():
            if os.getenv(env_var):
                return provider
        return None

    @classmethod
    def is_available(cls) -> bool:
        return cls._find_available_provider() is not None
