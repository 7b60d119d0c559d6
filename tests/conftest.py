import json
from datetime import datetime, timezone

import pytest

from ceremony_engine.core.ceremony.config_store import CeremonyConfigStore
from ceremony_engine.core.ceremony.resolver import ModelResolver
from ceremony_engine.core.llm.client import GenerationClient, RetryPolicy
from ceremony_engine.core.llm.models import (
    CredentialCheck,
    ProviderName,
    ProviderResponse,
    TokenUsage,
)
from ceremony_engine.core.llm.providers.base import BaseProvider
from ceremony_engine.core.prompts.templates import TemplateStore
from ceremony_engine.core.usage.ledger import UsageLedger
from ceremony_engine.utils.exceptions import ProviderError


class FakeProvider(BaseProvider):
    """Adapter double driven by a script of texts/exceptions or a responder."""

    def __init__(self, script=None, responder=None, name=ProviderName.CLAUDE,
                 model="fake-model", usage=(100, 50)):
        self.name = name
        super().__init__("test-key", model)
        self.script = list(script or [])
        self.responder = responder
        self.usage = TokenUsage(input_tokens=usage[0], output_tokens=usage[1])
        self.calls = []

    async def _complete(self, prompt, max_tokens, system, json_mode):
        self.calls.append(
            {"prompt": prompt, "max_tokens": max_tokens, "system": system, "json_mode": json_mode}
        )
        if self.responder is not None:
            step = self.responder(prompt)
        else:
            step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        return ProviderResponse(text=step, usage=self.usage)

    def _map_error(self, exc):
        return ProviderError(self.name.value, str(exc), self.model)


class FakeFactory:
    """Stands in for ProviderFactory; hands out pre-registered adapters."""

    def __init__(self, default=None):
        self.default = default
        self.adapters = {}
        self.created = []
        self.validated = []

    def register(self, provider, model, adapter):
        self.adapters[(provider, model)] = adapter
        return adapter

    def create(self, provider, model):
        self.created.append((provider, model))
        adapter = self.adapters.get((provider, model), self.default)
        if adapter is None:
            adapter = FakeProvider(script=[], name=ProviderName(provider), model=model)
        return adapter

    async def validate(self, provider, model):
        self.validated.append((provider, model))
        return CredentialCheck(valid=True)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def fixed_now():
    return datetime(2026, 3, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def avc_dir(tmp_path):
    path = tmp_path / ".avc"
    path.mkdir()
    return path


@pytest.fixture
def write_config(avc_dir):
    def _write(document):
        path = avc_dir / "avc.json"
        path.write_text(json.dumps(document), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def sample_config():
    return {
        "settings": {
            "ceremonies": [
                {
                    "name": "sprint-planning",
                    "provider": "claude",
                    "defaultModel": "claude-sonnet-4-5-20250929",
                    "stages": {
                        "validation-domain": {"provider": "gemini", "model": "gemini-2.5-flash"},
                        "validation": {
                            "provider": "claude",
                            "model": "claude-haiku-4-5",
                            "validationTypes": {
                                "universal": {"provider": "openai", "model": "gpt-4o"},
                                "feature": {"model": "claude-opus-4-6"},
                            },
                        },
                        "decomposition": {"model": "claude-opus-4-6"},
                    },
                },
                {
                    "name": "sponsor-call",
                    "provider": "gemini",
                    "defaultModel": "gemini-2.5-pro",
                },
            ]
        }
    }


@pytest.fixture
def config_store(write_config, sample_config):
    return CeremonyConfigStore(write_config(sample_config))


@pytest.fixture
def resolver(config_store):
    return ModelResolver(
        config_store,
        default_provider="claude",
        default_model="claude-sonnet-4-5-20250929",
    )


@pytest.fixture
def ledger(avc_dir, fixed_now):
    return UsageLedger(avc_dir / "token-history.json", clock=lambda: fixed_now)


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def fake_factory():
    return FakeFactory()


@pytest.fixture
def client(resolver, fake_factory, ledger, sleep):
    return GenerationClient(
        resolver,
        fake_factory,
        ledger,
        retry_policy=RetryPolicy(),
        sleep=sleep,
    )


@pytest.fixture
def templates_dir(tmp_path):
    path = tmp_path / "agents"
    path.mkdir()
    return path


@pytest.fixture
def template_store(templates_dir):
    return TemplateStore(templates_dir)


@pytest.fixture
def write_templates(templates_dir):
    def _write(validator_ids):
        for validator_id in validator_ids:
            (templates_dir / f"{validator_id}.md").write_text(
                f"You are {validator_id}. Return JSON.", encoding="utf-8"
            )
    return _write


@pytest.fixture
def make_provider():
    return FakeProvider
