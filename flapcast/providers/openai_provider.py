"""OpenAI compatible chat completion provider."""

import time

import openai
from openai import AsyncOpenAI

from flapcast.core.errors import (
    AuthenticationError,
    InvalidRequestError,
    OverloadedError,
    ProviderConnectionError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
)
from flapcast.core.logging import get_logger
from flapcast.observability.metrics import PROVIDER_LATENCY
from flapcast.providers.base import AIProvider, ProviderResponse

logger = get_logger(__name__)


def map_openai_error(error: openai.OpenAIError, provider: str) -> ProviderError:
    """Translate an SDK error into the provider error taxonomy."""
    if isinstance(error, openai.APITimeoutError):
        return ProviderTimeoutError(f"Request timed out: {error}", provider)
    if isinstance(error, openai.APIConnectionError):
        return ProviderConnectionError(f"Connection failed: {error}", provider)
    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        message = f"{provider} API error {status}: {error.message}"
        if status == 429:
            return RateLimitError(message, provider, status)
        if status in (401, 403):
            return AuthenticationError(message, provider, status)
        if status >= 500:
            return OverloadedError(message, provider, status)
        return InvalidRequestError(message, provider, status)
    return ProviderError(f"{provider} error: {error}", provider)


class OpenAIProvider(AIProvider):
    """Chat completions over ``openai.AsyncOpenAI``.

    SDK retries are disabled; retry and failover belong to the caller so
    that every attempt is reported to the provider circuit.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        timeout: float = 30.0,
        name: str = "openai",
        client: AsyncOpenAI | None = None,
    ):
        """Initialize provider.

        Args:
            api_key: API key
            model: Model name
            base_url: OpenAI compatible API base URL
            timeout: Request timeout in seconds
            name: Provider name, also used for its circuit id
            client: Preconfigured SDK client
        """
        self._name = name
        self._model = model
        self._client = client or AsyncOpenAI(
            api_key=api_key or "dummy-key",
            base_url=base_url or None,
            timeout=timeout,
            max_retries=0,
        )

    @property
    def name(self) -> str:
        return self._name

    async def generate(self, system_prompt: str, user_prompt: str) -> ProviderResponse:
        start_time = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.9,
                max_tokens=200,
            )
        except openai.OpenAIError as e:
            raise map_openai_error(e, self._name) from e
        finally:
            PROVIDER_LATENCY.labels(provider=self._name).observe(time.monotonic() - start_time)

        if not response.choices or response.choices[0].message is None:
            raise InvalidRequestError(f"{self._name} returned no completion choices", self._name)

        text = (response.choices[0].message.content or "").strip()
        if not text:
            raise InvalidRequestError(f"{self._name} returned an empty completion", self._name)

        return ProviderResponse(
            text=text,
            provider=self._name,
            model=response.model or self._model,
            tokens_used=response.usage.total_tokens if response.usage else None,
        )

    async def close(self) -> None:
        """Close SDK client."""
        await self._client.close()
