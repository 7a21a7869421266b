from typing import Optional

from app.logging_config import get_logger
from app.services.gym_knowledge import get_faq_response, gym_name, knowledge_summary
from app.services.intent_service import Intent, IntentType
from app.services.llm.base import LLMError, LLMProvider

logger = get_logger("ai_service")

HANDOFF_MARKER = "HANDOFF"
LLM_MAX_TOKENS = 400
FALLBACK_RESPONSE = "Sorry, I couldn't process that right now. Could you rephrase, or type 'talk to staff' to reach our team?"

SIMPLE_MESSAGES = {"ok", "okay", "k", "yes", "no", "thanks", "thank you", "bye"}

SYSTEM_PROMPT = """You are the WhatsApp assistant of {name}. Answer briefly and warmly using only these facts:

{facts}

Rules:
- Keep answers under 80 words, plain text, WhatsApp formatting allowed.
- Never invent prices, offers or timings that are not listed.
- If the question needs a human (payments, complaints, medical advice, anything not covered above), reply with exactly: HANDOFF"""


def is_simple_message(text: str) -> bool:
    return (text or "").lower().strip().strip("!.?, ") in SIMPLE_MESSAGES


class AIResponder:
    """Produces the bot's reply. Returns None when a human should take over."""

    def __init__(self, llm: Optional[LLMProvider] = None, model: Optional[str] = None):
        self.llm = llm
        self.model = model

    def canned_answer(self, intent: Intent) -> Optional[str]:
        if intent.type in (IntentType.GREETING, IntentType.FAQ, IntentType.BOOKING):
            return get_faq_response(intent.category)
        return None

    async def respond(self, text: str, intent: Intent, history: list[dict]) -> Optional[str]:
        canned = self.canned_answer(intent)
        if canned:
            logger.debug("Answered from FAQ", extra={"context": {"category": intent.category}})
            return canned

        if self.llm is None:
            return FALLBACK_RESPONSE

        messages = [{"role": "system", "content": SYSTEM_PROMPT.format(name=gym_name(), facts=knowledge_summary())}]
        messages.extend(history)
        if not history or history[-1].get("content") != text:
            messages.append({"role": "user", "content": text})

        try:
            response = await self.llm.generate(messages, model=self.model, temperature=0.4, max_tokens=LLM_MAX_TOKENS)
        except LLMError as e:
            logger.error(f"LLM answer failed: {e}")
            return FALLBACK_RESPONSE

        content = response.content.strip()
        if not content or HANDOFF_MARKER in content.upper():
            logger.info("LLM requested a human", extra={"context": {"model": response.model}})
            return None
        return content
