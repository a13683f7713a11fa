"""Gemini provider client over the generateContent REST endpoint."""

import logging

import httpx

from fisioflow_ai.core.providers.base import Message, ProviderClient, ProviderReply
from fisioflow_ai.lib.config import ProviderSettings

logger = logging.getLogger(__name__)


class GeminiProvider(ProviderClient):
    """Google Gemini client."""

    def __init__(self, settings: ProviderSettings):
        super().__init__(settings)
        self.base_url = settings.base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=settings.timeout)

    async def generate(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> ProviderReply:
        system = "\n".join(m.content for m in messages if m.role == "system")
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages
            if m.role != "system"
        ]

        payload = {
            "contents": contents,
            "generationConfig": {"temperature": temperature},
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        if max_tokens:
            payload["generationConfig"]["maxOutputTokens"] = max_tokens

        try:
            response = await self.client.post(
                f"{self.base_url}/models/{self.model_name}:generateContent",
                params={"key": self.settings.api_key},
                json=payload,
            )
            response.raise_for_status()
            data = response.json()

            candidate = (data.get("candidates") or [{}])[0]
            parts = candidate.get("content", {}).get("parts", [])
            usage = data.get("usageMetadata", {})

            return ProviderReply(
                content="".join(part.get("text", "") for part in parts),
                token_count=usage.get("totalTokenCount", 0),
                model_used=self.model_name,
                finish_reason=(candidate.get("finishReason") or "STOP").lower(),
                metadata={
                    "prompt_tokens": usage.get("promptTokenCount", 0),
                    "completion_tokens": usage.get("candidatesTokenCount", 0),
                },
            )

        except httpx.HTTPStatusError as e:
            logger.error(f"Gemini HTTP error: {e.response.status_code} - {e.response.text}")
            raise
        except Exception as e:
            logger.error(f"Gemini generation error: {e}")
            raise

    async def check_health(self) -> bool:
        try:
            response = await self.client.get(
                f"{self.base_url}/models/{self.model_name}",
                params={"key": self.settings.api_key},
            )
            return response.status_code == 200
        except Exception as e:
            logger.error(f"Gemini health check failed: {e}")
            return False

    async def aclose(self) -> None:
        await self.client.aclose()
