"""Claude provider client over the Messages REST endpoint."""

import logging

import httpx

from fisioflow_ai.core.providers.base import Message, ProviderClient, ProviderReply
from fisioflow_ai.lib.config import ProviderSettings

logger = logging.getLogger(__name__)

API_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 1024


class ClaudeProvider(ProviderClient):
    """Anthropic Claude client."""

    def __init__(self, settings: ProviderSettings):
        super().__init__(settings)
        self.base_url = settings.base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            timeout=settings.timeout,
            headers={
                "x-api-key": settings.api_key or "",
                "anthropic-version": API_VERSION,
                "content-type": "application/json",
            },
        )

    async def generate(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> ProviderReply:
        system = "\n".join(m.content for m in messages if m.role == "system")
        payload = {
            "model": self.model_name,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": temperature,
            "messages": [
                {"role": m.role, "content": m.content} for m in messages if m.role != "system"
            ],
        }
        if system:
            payload["system"] = system

        try:
            response = await self.client.post(f"{self.base_url}/messages", json=payload)
            response.raise_for_status()
            data = response.json()

            usage = data.get("usage", {})
            input_tokens = usage.get("input_tokens", 0)
            output_tokens = usage.get("output_tokens", 0)

            return ProviderReply(
                content="".join(
                    block.get("text", "")
                    for block in data.get("content", [])
                    if block.get("type") == "text"
                ),
                token_count=input_tokens + output_tokens,
                model_used=data.get("model", self.model_name),
                finish_reason=data.get("stop_reason") or "stop",
                metadata={"prompt_tokens": input_tokens, "completion_tokens": output_tokens},
            )

        except httpx.HTTPStatusError as e:
            logger.error(f"Claude HTTP error: {e.response.status_code} - {e.response.text}")
            raise
        except Exception as e:
            logger.error(f"Claude generation error: {e}")
            raise

    async def check_health(self) -> bool:
        try:
            reply = await self.generate([Message(role="user", content="ping")], max_tokens=1)
            return reply is not None
        except Exception as e:
            logger.error(f"Claude health check failed: {e}")
            return False

    async def aclose(self) -> None:
        await self.client.aclose()
