from __future__ import annotations

import logging
from typing import Any, Dict

from app.config import get_settings
from app.chat.prompts import build_chat_response_prompt, build_intent_classifier_prompt
from llm.client import LLMClient

logger = logging.getLogger(__name__)


def _client(*, temperature: float | None = None) -> LLMClient:
    settings = get_settings()
    return LLMClient(
        model=settings.LLM_MODEL,
        provider=settings.LLM_PROVIDER,
        api_key=settings.OPENAI_API_KEY,
        temperature=settings.LLM_TEMPERATURE if temperature is None else temperature,
        timeout_s=settings.LLM_TIMEOUT_S,
    )


def classify_intent(message: str, context: Dict[str, Any]) -> Dict[str, Any] | None:
    """
    Raw classifier payload, or None when the LLM is disabled or its output
    is unusable; the rule-based recognizer covers both cases.
    """
    settings = get_settings()
    if not settings.LLM_ENABLED:
        return None

    prompt = build_intent_classifier_prompt(message, context)
    try:
        return _client().classify(prompt=prompt)
    except Exception as e:
        logger.warning("intent classification failed, using rules: %s", e)
        return None


def polish_assistant_message(draft: str, context: Dict[str, Any] | None = None) -> str:
    settings = get_settings()
    if not settings.LLM_ENABLED or not settings.LLM_CHAT_RESPONSES:
        return draft

    prompt = build_chat_response_prompt(draft, context or {})
    try:
        llm_client = _client(temperature=settings.LLM_CHAT_TEMPERATURE)
        raw_text = llm_client._call_provider(prompt=prompt)
        parsed = llm_client._parse_json(raw_text)
        message = parsed.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    except Exception:
        return draft
    return draft


def explain(prompt: str, context: Dict[str, Any] | None = None) -> str | None:
    settings = get_settings()
    if not settings.LLM_ENABLED or not settings.LLM_CHAT_RESPONSES:
        return None
    try:
        return _client(temperature=settings.LLM_CHAT_TEMPERATURE).complete(prompt, context)
    except Exception as e:
        logger.warning("completion failed: %s", e)
        return None
