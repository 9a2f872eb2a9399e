import pytest

from hivemind.providers import DEFAULT_PROVIDERS, get_env_key, resolve_provider, resolve_providers


def test_stop_bonus_is_capped() -> None:
    openai = DEFAULT_PROVIDERS["openai"]

    assert openai.response_confidence("stop") == pytest.approx(0.9)
    assert openai.response_confidence("length") == 0.8
    assert DEFAULT_PROVIDERS["anthropic"].response_confidence("stop") == 0.9


def test_env_override_of_model(monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_MODEL", "gemini-1.5-pro")

    assert get_env_key("google") == "GOOGLE_MODEL"
    assert resolve_provider("google").model == "gemini-1.5-pro"
    assert resolve_provider("google").confidence == 0.85


def test_unknown_provider_gets_defaults(monkeypatch) -> None:
    monkeypatch.delenv("MISTRAL_MODEL", raising=False)

    [config] = resolve_providers(["mistral"])
    assert (config.name, config.model, config.confidence) == ("mistral", "mistral", 0.8)
