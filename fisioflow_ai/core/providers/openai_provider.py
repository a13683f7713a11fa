"""OpenAI-compatible provider client (ChatGPT, Perplexity, Mars AI)."""

import logging

from openai import AsyncOpenAI

from fisioflow_ai.core.providers.base import Message, ProviderClient, ProviderReply
from fisioflow_ai.lib.config import ProviderSettings

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(ProviderClient):
    """Client for any chat-completions endpoint speaking the OpenAI protocol."""

    def __init__(self, settings: ProviderSettings):
        super().__init__(settings)
        self.client = AsyncOpenAI(
            base_url=settings.base_url,
            api_key=settings.api_key,
            timeout=settings.timeout,
            max_retries=1,
        )

    async def generate(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> ProviderReply:
        try:
            params = {
                "model": self.model_name,
                "messages": [{"role": m.role, "content": m.content} for m in messages],
                "temperature": temperature,
            }
            if max_tokens:
                params["max_tokens"] = max_tokens

            response = await self.client.chat.completions.create(**params)

            choice = response.choices[0]
            usage = response.usage
            return ProviderReply(
                content=choice.message.content or "",
                token_count=usage.total_tokens if usage else 0,
                model_used=response.model,
                finish_reason=choice.finish_reason or "stop",
                metadata={
                    "prompt_tokens": usage.prompt_tokens if usage else 0,
                    "completion_tokens": usage.completion_tokens if usage else 0,
                },
            )

        except Exception as e:
            logger.error(f"{self.provider.value} generation error: {e}")
            raise

    async def check_health(self) -> bool:
        try:
            await self.client.chat.completions.create(
                model=self.model_name,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=1,
            )
            return True
        except Exception as e:
            logger.error(f"{self.provider.value} health check failed: {e}")
            return False

    async def aclose(self) -> None:
        await self.client.close()
