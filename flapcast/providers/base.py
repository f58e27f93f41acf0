"""Base class for AI text providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class ProviderResponse:
    """Text returned by a provider call."""

    text: str
    provider: str
    model: str
    tokens_used: int | None = None


class AIProvider(ABC):
    """Abstract base class for AI providers.

    Implementations raise ``ProviderError`` subclasses so callers can tell
    retryable failures from permanent ones.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return provider name, e.g. ``openai``."""
        pass

    @abstractmethod
    async def generate(self, system_prompt: str, user_prompt: str) -> ProviderResponse:
        """Generate text for a prompt pair.

        Args:
            system_prompt: System prompt
            user_prompt: User prompt

        Returns:
            Provider response
        """
        pass

    async def close(self) -> None:
        """Clean up resources. Override if needed."""
        pass
