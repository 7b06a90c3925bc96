"""
app/services/ai_service.py

Purpose: Chat-completion provider access

- Primary provider (DeepSeek) with a short timeout
- Exactly one attempt on the fallback provider (OpenAI) when the primary fails
- Strict JSON-object parsing for structured calls
- Shared httpx client, closed on shutdown
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AIProvider:
    name: str
    url: str
    api_key: Optional[str]
    model: str


def parse_json_object(content: Any) -> Dict[str, Any]:
    """
    Parses a model reply that must be a single JSON object.

    Raises:
        ValueError: If the content is not a JSON object
    """
    if not isinstance(content, str) or not content.strip().startswith("{"):
        raise ValueError("Response is not a JSON object")
    parsed = json.loads(content)
    if not isinstance(parsed, dict):
        raise ValueError("Response is not a JSON object")
    return parsed


class AIService:
    """
    Calls OpenAI-compatible chat completion endpoints.

    The primary provider is tried once; on any transport error, non-2xx
    status or unusable body the fallback provider is tried once. When both
    fail UpstreamUnavailable is raised; callers degrade from there.
    """

    def __init__(self, primary: Optional[AIProvider] = None, fallback: Optional[AIProvider] = None):
        self.primary = primary or AIProvider(
            name="deepseek",
            url=settings.DEEPSEEK_API_URL,
            api_key=settings.DEEPSEEK_API_KEY,
            model=settings.DEEPSEEK_MODEL,
        )
        self.fallback = fallback or AIProvider(
            name="openai",
            url=settings.OPENAI_API_URL,
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
        )
        self._timeout = settings.AI_TIMEOUT_SECONDS
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _complete(
        self,
        provider: AIProvider,
        messages: List[Dict[str, str]],
        temperature: float,
        json_mode: bool
    ) -> str:
        """
        One request to one provider.

        Returns:
            The assistant message content

        Raises:
            UpstreamUnavailable: On any failure
        """
        if not provider.api_key:
            raise UpstreamUnavailable(f"{provider.name} is not configured")

        payload: Dict[str, Any] = {
            "model": provider.model,
            "messages": messages,
            "temperature": temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        try:
            response = await self._get_client().post(
                provider.url,
                json=payload,
                headers={"Authorization": f"Bearer {provider.api_key}"},
            )
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(f"{provider.name} timed out") from e
        except httpx.RequestError as e:
            raise UpstreamUnavailable(f"{provider.name} unreachable: {e}") from e

        if response.status_code >= 300:
            raise UpstreamUnavailable(
                f"{provider.name} returned {response.status_code}",
                details={"body": response.text[:200]},
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UpstreamUnavailable(f"{provider.name} returned an unexpected body") from e

        if not isinstance(content, str):
            raise UpstreamUnavailable(f"{provider.name} returned no content")
        return content

    async def _with_fallback(self, messages, temperature: float, json_mode: bool, parse):
        last_error: Optional[Exception] = None
        for provider in (self.primary, self.fallback):
            try:
                content = await self._complete(provider, messages, temperature, json_mode)
                return parse(content)
            except UpstreamUnavailable as e:
                last_error = e
                logger.warning(f"⚠️ AI provider {provider.name} failed: {e.message}")
            except (ValueError, json.JSONDecodeError) as e:
                last_error = e
                logger.warning(f"⚠️ AI provider {provider.name} returned unusable JSON: {e}")

        logger.error("❌ All AI providers failed")
        raise UpstreamUnavailable("AI providers unavailable") from last_error

    async def chat_json(self, messages: List[Dict[str, str]], temperature: float = 0.1) -> Dict[str, Any]:
        """
        Structured completion that must return one JSON object.

        Raises:
            UpstreamUnavailable: If neither provider produced a JSON object
        """
        return await self._with_fallback(messages, temperature, True, parse_json_object)

    async def chat_text(self, messages: List[Dict[str, str]], temperature: float = 0.7) -> str:
        """Free-text completion."""
        return await self._with_fallback(messages, temperature, False, lambda content: content.strip())

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Global AI service instance
_ai_service: Optional[AIService] = None


def get_ai_service() -> AIService:
    """Get or create the global AI service instance."""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service


async def close_ai_service():
    """Close the AI service HTTP client."""
    global _ai_service
    if _ai_service:
        await _ai_service.close()
        _ai_service = None
