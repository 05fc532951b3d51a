"""Tests for modsmith.config."""

from __future__ import annotations

import pytest
import yaml

from modsmith.config import (
    ModsmithConfig,
    build_descriptors,
    build_retry,
    load_config,
    validate_config,
)
from modsmith.llm.providers.gemini import GeminiProvider
from modsmith.llm.providers.openai_compat import OpenAICompatProvider


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("MODSMITH_PRIMARY_MODEL", "MODSMITH_RETRY_MAX", "MODSMITH_TEMPERATURE",
                "MODSMITH_DETERMINISTIC", "MODSMITH_MODE", "MODSMITH_LOG_LEVEL",
                "MODSMITH_MAX_CONTEXT", "MODSMITH_RETRY_JITTER"):
        monkeypatch.delenv(var, raising=False)


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestDefaults:
    def test_default_chain(self):
        cfg = load_config()
        assert [p.name for p in cfg.providers] == ["gemini", "groq", "openrouter"]
        assert cfg.providers[0].kind == "gemini"
        assert cfg.providers[1].api_base == "https://api.groq.com/openai/v1"
        assert cfg.retry.max_retries == 3
        assert cfg.retry.initial_delay_seconds == 2.0
        assert cfg.retry.max_delay_seconds == 10.0
        assert cfg.generation.mode == "chat"
        assert validate_config(cfg) == []

    def test_to_dict_has_no_secrets(self):
        data = ModsmithConfig().to_dict()
        assert data["providers"][0]["api_key_env"] == "GEMINI_API_KEY"
        assert "api_key" not in data["providers"][0]


class TestLayering:
    def test_yaml_file(self, tmp_path):
        path = write_yaml(tmp_path / "modsmith.yaml", {
            "providers": [
                {"name": "local", "kind": "openai-compat", "model": "qwen", "api_base": "http://localhost:8080/v1",
                 "api_key_env": "LOCAL_KEY", "supports_tools": False, "unknown_key": 1},
            ],
            "retry": {"max_retries": 1},
        })
        cfg = load_config(path)
        assert len(cfg.providers) == 1
        assert cfg.providers[0].supports_tools is False
        assert cfg.retry.max_retries == 1
        assert cfg.retry.max_delay_seconds == 10.0

    def test_profile_overlay(self, tmp_path):
        path = write_yaml(tmp_path / "modsmith.yaml", {
            "generation": {"temperature": 0.9},
            "profiles": {"ci": {"generation": {"deterministic": True, "mode": "structured-json"}}},
        })
        cfg = load_config(path, profile="ci")
        assert cfg.generation.temperature == 0.9
        assert cfg.generation.deterministic is True
        assert cfg.generation.mode == "structured-json"

    def test_unknown_profile(self, tmp_path):
        path = write_yaml(tmp_path / "modsmith.yaml", {"profiles": {}})
        with pytest.raises(ValueError):
            load_config(path, profile="nope")

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = write_yaml(tmp_path / "modsmith.yaml", {"retry": {"max_retries": 1}})
        monkeypatch.setenv("MODSMITH_RETRY_MAX", "5")
        monkeypatch.setenv("MODSMITH_DETERMINISTIC", "yes")
        monkeypatch.setenv("MODSMITH_PRIMARY_MODEL", "gemini-2.5-pro")
        cfg = load_config(path)
        assert cfg.retry.max_retries == 5
        assert cfg.generation.deterministic is True
        assert cfg.providers[0].model == "gemini-2.5-pro"

    def test_env_values_coerced(self, monkeypatch):
        monkeypatch.setenv("MODSMITH_TEMPERATURE", "0.2")
        monkeypatch.setenv("MODSMITH_RETRY_JITTER", "0")
        monkeypatch.setenv("MODSMITH_MAX_CONTEXT", "8000")
        monkeypatch.setenv("MODSMITH_DETERMINISTIC", "off")
        cfg = load_config()
        assert cfg.generation.temperature == 0.2
        assert cfg.retry.jitter_seconds == 0.0
        assert cfg.generation.max_context_tokens == 8000
        assert cfg.generation.deterministic is False

    def test_cli_overrides_win(self, monkeypatch):
        monkeypatch.setenv("MODSMITH_MODE", "chat")
        cfg = load_config(cli_overrides={"generation.mode": "structured-json", "providers.1.model": "m"})
        assert cfg.generation.mode == "structured-json"
        assert cfg.providers[1].model == "m"

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "absent.yaml")
        assert len(cfg.providers) == 3


class TestValidation:
    def test_problems_reported(self):
        cfg = ModsmithConfig()
        cfg.providers[0].kind = "bogus"
        cfg.providers[2].name = "groq"
        cfg.generation.mode = "xml"
        cfg.retry.max_retries = -1
        problems = validate_config(cfg)
        assert any("unknown kind" in p for p in problems)
        assert any("duplicate" in p for p in problems)
        assert any("generation.mode" in p for p in problems)
        assert any("max_retries" in p for p in problems)

    def test_empty_provider_list(self):
        cfg = ModsmithConfig(providers=[])
        assert "no providers configured" in validate_config(cfg)


class TestFactories:
    def test_descriptors_skip_missing_keys(self):
        cfg = ModsmithConfig()
        descriptors = build_descriptors(cfg, environ={"GEMINI_API_KEY": "g", "OPENROUTER_API_KEY": "o"})
        assert [d.id for d in descriptors] == ["gemini", "openrouter"]
        assert isinstance(descriptors[0].provider, GeminiProvider)
        assert isinstance(descriptors[1].provider, OpenAICompatProvider)
        assert descriptors[1].model == cfg.providers[2].model

    def test_no_keys_no_descriptors(self):
        assert build_descriptors(ModsmithConfig(), environ={}) == ()

    def test_capabilities_carried(self):
        cfg = ModsmithConfig()
        cfg.providers[0].supports_streaming = False
        descriptor = build_descriptors(cfg, environ={"GEMINI_API_KEY": "g"})[0]
        assert descriptor.supports_streaming is False
        assert descriptor.supports_tools is True

    def test_build_retry(self):
        cfg = ModsmithConfig()
        cfg.retry.max_retries = 2
        cfg.retry.jitter_seconds = 0.0
        retry = build_retry(cfg)
        assert retry.max_retries == 2
        assert retry.initial_delay == 2.0
        assert retry.max_delay == 10.0
        assert retry.jitter == 0.0
