"""Shared utilities for parsing LLM responses."""

from __future__ import annotations

import json
from typing import Any, List


def parse_llm_json(raw: str) -> dict:
    """Parse a JSON object from an LLM response, handling code fences and preamble text.

    Tries in order:
    1. Strip markdown code fences, then json.loads
    2. Extract substring between first '{' and last '}', then json.loads
    3. Return empty dict

    A top-level JSON array is wrapped as {"items": [...]}.
    """
    if not raw:
        return {}

    text = raw.strip()
    if text.startswith("```"):
        lines = [l for l in text.split("\n") if not l.strip().startswith("```")]
        text = "\n".join(lines)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None

    if data is None:
        start = raw.find("{")
        end = raw.rfind("}") + 1
        if start >= 0 and end > start:
            try:
                data = json.loads(raw[start:end])
            except json.JSONDecodeError:
                data = None

    if isinstance(data, dict):
        return data
    if isinstance(data, list):
        return {"items": data}
    return {}


def as_list_of_dicts(value: Any) -> List[dict]:
    """Keep only dict items of a list-valued JSON field."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]
