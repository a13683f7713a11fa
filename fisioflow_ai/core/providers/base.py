"""Base provider client abstraction for premium AI services."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from fisioflow_ai.lib.config import ProviderSettings

logger = logging.getLogger(__name__)


@dataclass
class Message:
    """Chat message format."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class ProviderReply:
    """Standardized reply from a provider client."""

    content: str
    token_count: int
    model_used: str
    finish_reason: str = "stop"
    metadata: dict[str, Any] = field(default_factory=dict)


class ProviderClient(ABC):
    """Abstract base class for premium provider clients."""

    def __init__(self, settings: ProviderSettings):
        """Initialize client with provider settings.

        Args:
            settings: Provider configuration (model, endpoint, key, timeout)
        """
        self.settings = settings
        self.provider = settings.name
        self.model_name = settings.model
        logger.info(f"Initialized {settings.kind} client for {self.provider.value} ({self.model_name})")

    @abstractmethod
    async def generate(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> ProviderReply:
        """Generate a reply.

        Args:
            messages: Conversation messages
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Returns:
            ProviderReply with content and token usage
        """

    @abstractmethod
    async def check_health(self) -> bool:
        """Check if the provider is reachable and the credentials work."""

    async def aclose(self) -> None:
        """Release network resources."""
