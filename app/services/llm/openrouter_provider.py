from typing import List, Optional

import httpx

from app.logging_config import get_logger
from app.services.llm.base import LLMError, LLMProvider, LLMResponse

logger = get_logger("llm.openrouter")

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"


class OpenRouterProvider(LLMProvider):
    """OpenRouter chat completions (OpenAI-compatible wire format)."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "meta-llama/llama-3.1-8b-instruct",
        app_url: str = "http://localhost:8000",
        app_title: str = "IronCore Bot",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.app_url = app_url
        self.app_title = app_title
        self._transport = transport

    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        model = model or self.default_model
        timeout = timeout_seconds if timeout_seconds is not None else 30.0
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.debug(f"OpenRouter request: model={model}, messages_count={len(messages)}")

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(
                    OPENROUTER_URL,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "HTTP-Referer": self.app_url,
                        "X-Title": self.app_title,
                    },
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise LLMError(f"OpenRouter request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"OpenRouter error: {response.text[:500]}")
            raise LLMError(f"OpenRouter API error: {response.status_code}")

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Malformed OpenRouter response: {e}") from e

        return LLMResponse(content=content.strip(), model=data.get("model", model), usage=data.get("usage"))
