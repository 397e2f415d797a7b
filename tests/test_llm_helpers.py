from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from app.chat.llm import classify_intent, explain, polish_assistant_message
from app.config import get_settings
from llm.client import LLMClient


def test_llm_disabled_falls_back():
    assert classify_intent("is alice.eth available?", {}) is None
    assert polish_assistant_message("draft") == "draft"
    assert explain("prompt") is None


def test_complete_parses_text_and_falls_back_to_prompt():
    client = LLMClient(provider="openai", api_key="k")
    with patch.object(LLMClient, "_call_provider", return_value='{"text": " Try alice.eth "}'):
        assert client.complete("rephrase") == "Try alice.eth"
    with patch.object(LLMClient, "_call_provider", return_value='noise {"text": ""} noise'):
        assert client.complete("rephrase") == "rephrase"


def test_unconfigured_provider_raises():
    with pytest.raises(RuntimeError):
        LLMClient(provider="none").classify(prompt={"system": "", "user": ""})


@pytest.mark.use_llm
def test_classifier_failure_returns_none(monkeypatch):
    monkeypatch.setenv("LLM_ENABLED", "true")
    get_settings.cache_clear()
    with patch.object(LLMClient, "_call_provider", side_effect=RuntimeError("boom")):
        assert classify_intent("is alice.eth available?", {}) is None


@pytest.mark.use_llm
def test_classifier_payload_is_returned(monkeypatch):
    monkeypatch.setenv("LLM_ENABLED", "true")
    get_settings.cache_clear()
    payload = {"kind": "check_availability", "params": {"name": "alice.eth"}, "confidence": 0.9}
    with patch.object(LLMClient, "_call_provider", return_value=json.dumps(payload)) as call:
        assert classify_intent("is alice.eth available?", {"lastEntityName": None}) == payload
    prompt = call.call_args.kwargs["prompt"]
    assert "check_availability" in prompt["system"]
