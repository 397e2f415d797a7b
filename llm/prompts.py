from __future__ import annotations

import json
from typing import Any, Dict


COMPLETION_SYSTEM_PROMPT = (
    "You are the explanation writer for an ENS and payments assistant. "
    "You only phrase clarifications and explanations; you never decide whether "
    "a transaction runs. Use only facts present in the prompt and context. "
    "Return strict JSON only with a single key: text."
)


def build_completion_prompt(prompt: str, context: Dict[str, Any] | None = None) -> Dict[str, str]:
    user = {
        "prompt": prompt,
        "context": context or {},
        "instruction": "Return JSON: {\"text\": \"...\"}",
    }
    return {
        "system": COMPLETION_SYSTEM_PROMPT,
        "user": json.dumps(user, ensure_ascii=True, default=str),
    }
