"""Pytest configuration and shared fixtures for the test suite.

Provides:
- Markers for unit and integration tests
- A controllable clock for time-window logic
- Knowledge entry payloads and scripted provider clients
"""

import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

REPO_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(REPO_ROOT))

from fisioflow_ai.core.providers.base import ProviderClient, ProviderReply
from fisioflow_ai.lib.config import (
    DEFAULT_LIMITS,
    PROVIDER_KEY_ENV,
    LoadBalancingSettings,
    ProviderSettings,
)
from fisioflow_ai.models.usage import ProviderName, UsageLimits

PROVIDER_KINDS = {
    ProviderName.CHATGPT_PLUS: "openai",
    ProviderName.GEMINI_PRO: "gemini",
    ProviderName.CLAUDE_PRO: "claude",
    ProviderName.PERPLEXITY_PRO: "openai",
    ProviderName.MARS_AI_PRO: "openai",
}


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 10, 14, 30, tzinfo=UTC))


def make_entry_data(**overrides):
    """Valid knowledge entry payload: seeded confidence 0.9 (experience, references, tags)."""
    data = {
        "title": "Protocolo para lombalgia crônica",
        "content": (
            "Para dor lombar crônica recomenda-se exercício terapêutico progressivo, "
            "fortalecimento do core e educação em dor. Evitar repouso prolongado."
        ),
        "type": "protocol",
        "tags": ["lombalgia", "dor lombar", "coluna"],
        "conditions": ["lombalgia crônica"],
        "techniques": ["estabilização segmentar", "mobilização neural"],
        "contraindications": ["fratura vertebral"],
        "references": ["Diretriz de lombalgia 2021"],
        "author": {"id": "pt-1", "name": "Dra. Souza", "experience": 12},
        "tenant_id": "clinic-1",
    }
    data.update(overrides)
    return data


@pytest.fixture
def entry_data():
    return make_entry_data


def provider_settings(
    enabled: set[ProviderName] | None = None,
    limits: UsageLimits | None = None,
) -> dict[ProviderName, ProviderSettings]:
    """Settings for every provider; all enabled with a dummy key unless restricted."""
    enabled = set(ProviderName) if enabled is None else enabled
    return {
        name: ProviderSettings(
            name=name,
            enabled=name in enabled,
            kind=PROVIDER_KINDS[name],
            model=f"{name.value}-model",
            base_url="https://example.invalid",
            limits=limits or DEFAULT_LIMITS[name],
            api_key="test-key",
        )
        for name in ProviderName
    }


def fake_client(content: str = "Resposta premium", token_count: int = 120, error=None):
    """Provider client double whose ``generate`` returns a canned reply or raises."""
    client = MagicMock(spec=ProviderClient)
    if error is not None:
        client.generate = AsyncMock(side_effect=error)
    else:
        client.generate = AsyncMock(
            return_value=ProviderReply(
                content=content, token_count=token_count, model_used="fake-model"
            )
        )
    client.check_health = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


def fake_clients(providers=None, **kwargs):
    return {name: fake_client(**kwargs) for name in (providers or list(ProviderName))}


@pytest.fixture
def round_robin():
    return LoadBalancingSettings(enabled=True, algorithm="round_robin", weights={})


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Run from the repo root with a throwaway data dir and no provider keys."""
    monkeypatch.chdir(REPO_ROOT)
    monkeypatch.setenv("FISIOFLOW_DATA_DIR", str(tmp_path / "data"))
    for var in PROVIDER_KEY_ENV.values():
        # setenv first so keys loaded from a .env file are undone afterwards
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
    return tmp_path / "data"
