from __future__ import annotations

import sys
from pathlib import Path

import pytest


_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from config.settings import Settings  # noqa: E402
from tests.stubs import UPSTREAM_URL  # noqa: E402


@pytest.fixture
def settings(monkeypatch) -> Settings:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-test")
    monkeypatch.setenv("OPENAI_BASE_URL", UPSTREAM_URL)
    for name in ("SYSTEM_PROMPT", "PORT", "HOST", "OPENAI_TIMEOUT", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return Settings()
