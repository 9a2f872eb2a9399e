import json

import pytest
from click.testing import CliRunner

from hivemind.cli import main
from hivemind.config import Settings
from hivemind.services import build_services
from hivemind.telemetry import TelemetryEmitter


@pytest.fixture
def services(store, fake_caller):
    return build_services(Settings(), store=store, model_caller=fake_caller, telemetry=TelemetryEmitter())


def _invoke(services, *args: str):
    return CliRunner().invoke(main, ["--log-level", "CRITICAL", *args], obj={"services": services})


def test_analyze_prints_diagnosis(services) -> None:
    result = _invoke(
        services,
        "analyze",
        "Cannot read property 'name' of undefined",
        "--stack",
        "at foo (/app/a.js:10:5)",
        "--language",
        "javascript",
    )

    assert result.exit_code == 0, result.output
    assert "TypeError in javascript" in result.output
    assert "NULL_REFERENCE" in result.output
    assert "No fixes available yet" in result.output


def test_analyze_json_output(services, store) -> None:
    result = _invoke(services, "analyze", "Unexpected token }", "--json", "--user-id", "dev")

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["error_pattern"]["category"] == "SYNTAX_ERROR"
    assert payload["confidence"] == 0.3


def test_apply_unknown_fix_fails(services) -> None:
    result = _invoke(services, "apply-fix", "missing")

    assert result.exit_code == 1
    assert "Fix not found" in result.output


def test_report_unknown_fix_fails(services) -> None:
    result = _invoke(services, "report-fix", "missing", "occurrence", "--failure")

    assert result.exit_code == 1
    assert "Fix not found" in result.output


def test_consensus_command(services, fake_caller) -> None:
    for provider in ("openai", "anthropic", "google"):
        fake_caller.script(provider, "print('hello')")

    result = _invoke(services, "consensus", "say hello", "--language", "python")

    assert result.exit_code == 0, result.output
    assert "consensus" in result.output
    assert "print('hello')" in result.output


def test_consensus_rejects_bad_threshold(services) -> None:
    result = _invoke(services, "consensus", "say hello", "--threshold", "1.5")

    assert result.exit_code == 2


def test_consensus_all_providers_failing(services) -> None:
    result = _invoke(services, "consensus", "say hello")

    assert result.exit_code == 1
    assert "All AI models failed to respond" in result.output
