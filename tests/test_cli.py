"""Tests for the modsmith CLI using typer's test runner."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from modsmith.cli import app as cli_app
from modsmith.llm.types import FinishReason, StreamEnd
from tests.mock_providers import ScriptedProvider, descriptor, text_events

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("MODSMITH_CONFIG", str(tmp_path / "absent.yaml"))
    for var in ("GEMINI_API_KEY", "GROQ_API_KEY", "OPENROUTER_API_KEY", "MODSMITH_MODE"):
        monkeypatch.delenv(var, raising=False)


def use_providers(monkeypatch, *providers):
    monkeypatch.setattr(
        cli_app, "build_descriptors", lambda cfg: tuple(descriptor(p) for p in providers)
    )


class TestInfoCommands:
    def test_version(self):
        result = runner.invoke(cli_app.app, ["version"])
        assert result.exit_code == 0
        assert "modsmith-core v0.1.0" in result.output

    def test_config_validate_defaults(self):
        result = runner.invoke(cli_app.app, ["config", "validate"])
        assert result.exit_code == 0, result.output
        assert "gemini -> groq -> openrouter" in result.output

    def test_config_validate_reports_problems(self, tmp_path, monkeypatch):
        path = tmp_path / "bad.yaml"
        path.write_text("generation:\n  mode: xml\n", encoding="utf-8")
        monkeypatch.setenv("MODSMITH_CONFIG", str(path))
        result = runner.invoke(cli_app.app, ["config", "validate"])
        assert result.exit_code == 1
        assert "generation.mode" in result.output

    def test_providers_list(self, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "k")
        result = runner.invoke(cli_app.app, ["providers", "list"])
        assert result.exit_code == 0
        assert "openrouter" in result.output
        assert "groq" in result.output


class TestGenerate:
    def test_no_keys(self):
        result = runner.invoke(cli_app.app, ["generate", "hi"])
        assert result.exit_code == 1
        assert "No usable providers" in result.output

    def test_chat_streams_text(self, monkeypatch):
        provider = ScriptedProvider("gemini", [text_events("Hel", "lo")])
        use_providers(monkeypatch, provider)
        result = runner.invoke(cli_app.app, ["generate", "say hello"])
        assert result.exit_code == 0, result.output
        assert "Hello" in result.output
        assert provider.closed

    def test_classified_error_exits_1(self, monkeypatch):
        provider = ScriptedProvider("gemini", [[StreamEnd(FinishReason.SAFETY, "block reason SAFETY")]])
        use_providers(monkeypatch, provider)
        result = runner.invoke(cli_app.app, ["generate", "something bad"])
        assert result.exit_code == 1
        assert "safety_blocked" in result.output

    def test_structured_apply(self, tmp_path, monkeypatch):
        project = tmp_path / "proj"
        project.mkdir()
        (project / "plugin.yml").write_text("name: Demo", encoding="utf-8")
        payload = json.dumps({"files": [{"path": "src/A.java", "content": "class A {}"}]})
        provider = ScriptedProvider("gemini", [text_events(payload)])
        use_providers(monkeypatch, provider)

        result = runner.invoke(
            cli_app.app,
            ["generate", "add A", "--project", str(project), "--mode", "structured-json", "--apply"],
        )
        assert result.exit_code == 0, result.output
        assert (project / "src" / "A.java").read_text(encoding="utf-8") == "class A {}"
        assert "plugin.yml" in provider.calls[0].messages[-1].content
        assert "- Name: proj" in provider.calls[0].system_instruction

    def test_apply_requires_structured_mode(self, tmp_path, monkeypatch):
        use_providers(monkeypatch, ScriptedProvider("gemini"))
        result = runner.invoke(cli_app.app, ["generate", "x", "--project", str(tmp_path), "--apply"])
        assert result.exit_code == 1
        assert "--apply requires --mode structured-json" in result.output
