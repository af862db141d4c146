import pytest

from zeno_core.providers import PROVIDER_CLIENTS, create_provider
from zeno_core.providers.gemini_client import GeminiClient
from zeno_core.providers.openai_client import OpenAIClient
from zeno_core.providers.registry import (
    GEMINI_CONFIG,
    OPENAI_CONFIG,
    PROVIDER_REGISTRY,
    get_provider_config,
    resolve_model,
)


class DummySettings:
    primary_provider = "openai"
    fallback_provider = "gemini"
    openai_api_key = "sk-test-123456"
    openai_base_url = "https://api.openai.com/v1"
    gemini_api_key = "gm-test-123456"
    gemini_base_url = "https://generativelanguage.googleapis.com/v1beta"
    http_timeout = 1.0


def test_create_provider_default(monkeypatch):
    monkeypatch.setattr("zeno_core.providers.settings", DummySettings())
    provider = create_provider()
    assert isinstance(provider, OpenAIClient)


def test_create_provider_explicit():
    provider = create_provider("Gemini", DummySettings())
    assert isinstance(provider, GeminiClient)
    assert provider.name == "gemini"


def test_create_provider_unknown():
    with pytest.raises(KeyError):
        create_provider("mistral", DummySettings())


def test_registry_maps_logical_model():
    assert resolve_model(OPENAI_CONFIG, "zeno-chat").provider_model == "gpt-4o-mini"
    assert resolve_model(GEMINI_CONFIG, "zeno-chat").provider_model == "gemini-2.0-flash"
    # 未登记的名称原样透传
    assert resolve_model(OPENAI_CONFIG, "gpt-4o").provider_model == "gpt-4o"
    assert get_provider_config("OPENAI") is OPENAI_CONFIG


def test_every_registered_provider_can_be_created():
    assert set(PROVIDER_CLIENTS) == set(PROVIDER_REGISTRY)
    for key in PROVIDER_REGISTRY:
        provider = create_provider(key.upper(), DummySettings())
        assert provider.name == get_provider_config(key).name
