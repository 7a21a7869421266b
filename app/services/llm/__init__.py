from app.services.llm.base import LLMError, LLMProvider, LLMResponse
from app.services.llm.openrouter_provider import OpenRouterProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenRouterProvider"]
