"""Shared fixtures: a temporary journal store and a scripted language model."""

from datetime import datetime, timezone
from typing import List, Optional

import pytest
from unittest.mock import MagicMock

from chronicle.common.llm_client import OllamaModel
from chronicle.common.store import JournalStore


def day(year: int, month: int, d: int) -> datetime:
    return datetime(year, month, d, 9, 0, tzinfo=timezone.utc)


def fake_client(replies: Optional[List[str]] = None, model: str = "llama3.1:8b") -> MagicMock:
    """LLMClient stand-in whose generate() returns the scripted replies in turn."""
    client = MagicMock()
    client.spec = OllamaModel(model)
    client.model_used = model
    client.is_available = True
    client.generate.side_effect = list(replies or [])
    client.health.return_value = {"provider": "ollama", "model": model, "ok": True}
    return client


@pytest.fixture
def store(tmp_path):
    s = JournalStore(tmp_path / "journal.db")
    yield s
    s.close()
