"""Tests for the conductor CLI"""
import json
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from conductor.cli.main import cli
from conductor.llm.client import LLMResponse

THEME_CSS = ".header { color: red; }\n.footer { color: red; }\n"


@pytest.fixture
def runner():
    """Create Click test runner"""
    return CliRunner()


@pytest.fixture
def theme_file(tmp_path):
    path = tmp_path / "theme.css"
    path.write_text(THEME_CSS)
    return path


def write_log(path, entries):
    path.write_text("\n".join(json.dumps(entry) for entry in entries) + "\n")
    return path


def test_patch_writes_file(runner, theme_file):
    result = runner.invoke(
        cli, ["--no-color", "patch", str(theme_file), "-s", ".header { color: red; }", "-r", ".header { color: blue; }"]
    )

    assert result.exit_code == 0
    assert "Replaced 1 occurrence(s) using exact" in result.output
    assert theme_file.read_text().startswith(".header { color: blue; }")


def test_patch_dry_run_leaves_file(runner, theme_file):
    result = runner.invoke(
        cli, ["--no-color", "patch", str(theme_file), "-s", "color: red;", "-r", "color: blue;", "--all", "--dry-run"]
    )

    assert result.exit_code == 0
    assert "Would replace 2 occurrence(s)" in result.output
    assert theme_file.read_text() == THEME_CSS


def test_patch_ambiguous_exits_nonzero(runner, theme_file):
    result = runner.invoke(cli, ["--no-color", "patch", str(theme_file), "-s", "color: red;", "-r", "color: blue;"])

    assert result.exit_code == 1
    assert "multiple locations" in result.output
    assert theme_file.read_text() == THEME_CSS


def test_patch_not_found_exits_nonzero(runner, theme_file):
    result = runner.invoke(cli, ["--no-color", "patch", str(theme_file), "-s", ".sidebar", "-r", ".aside"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_detect_reports_error_loop(runner, tmp_path):
    entry = {"type": "tool_call", "name": "edit_file", "input": {"filePath": "a.css"}, "result": "boom", "is_error": True}
    log = write_log(tmp_path / "session.jsonl", [entry] * 5)

    result = runner.invoke(cli, ["--no-color", "detect", str(log)])

    assert result.exit_code == 1
    assert "same_action_error at line 3" in result.output


def test_detect_json_output(runner, tmp_path):
    log = write_log(tmp_path / "session.jsonl", [{"type": "message", "text": "thinking"}] * 3)

    result = runner.invoke(cli, ["detect", str(log), "--json"])

    assert result.exit_code == 1
    payload = json.loads(result.output)
    assert payload["line"] == 3
    assert payload["pattern"] == "monologue"
    assert payload["severity"] == "escalate"


def test_detect_clean_log(runner, tmp_path):
    log = write_log(
        tmp_path / "session.jsonl",
        [
            {"type": "tool_call", "name": "read_file", "input": {"path": "a.css"}, "result": "one"},
            {"type": "tool_call", "name": "edit_file", "input": {"filePath": "a.css"}, "result": "ok", "is_edit": True},
            {"type": "compaction", "edits_made": True},
        ],
    )

    result = runner.invoke(cli, ["detect", str(log), "--json"])

    assert result.exit_code == 0
    assert json.loads(result.output) == {
        "line": None,
        "is_stuck": False,
        "pattern": None,
        "severity": None,
        "loop_start_index": -1,
        "details": "",
    }


def test_detect_bad_line(runner, tmp_path):
    log = tmp_path / "session.jsonl"
    log.write_text('{"type": "tool_call", "name": "read_file"}\n{"type": "shrug"}\n')

    result = runner.invoke(cli, ["--no-color", "detect", str(log)])

    assert result.exit_code == 2
    assert "line 2" in result.output


def test_run_applies_changes(runner, theme_file, monkeypatch):
    reply = {
        "changes": [{
            "file_name": "theme.css",
            "patches": [{"search": ".header { color: red; }", "replace": ".header { color: blue; }"}],
            "reasoning": "recolor",
            "confidence": 0.9,
        }],
        "analysis": "done",
    }
    client = AsyncMock()
    client.complete = AsyncMock(return_value=LLMResponse(content=json.dumps(reply), model="test", tokens_used=1))
    monkeypatch.chdir(theme_file.parent)

    with patch("conductor.cli.main.LLMClientFactory.create", return_value=client):
        result = runner.invoke(
            cli, ["--no-color", "run", "make the header blue", "-f", "theme.css", "--role", "css", "--no-review", "--apply"]
        )

    assert result.exit_code == 0, result.output
    assert "completed" in result.output
    assert "Wrote theme.css" in result.output
    assert theme_file.read_text().startswith(".header { color: blue; }")


def test_run_without_provider(runner, theme_file):
    with patch("conductor.cli.main.LLMClientFactory.create", return_value=None):
        result = runner.invoke(cli, ["--no-color", "run", "anything", "-f", str(theme_file)])

    assert result.exit_code == 1
    assert "No LLM provider available" in result.output


def test_config_show(runner):
    result = runner.invoke(cli, ["--no-color", "config", "show"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["coordinator"]["max_worker_retries"] == 2
    assert "global" in payload


def test_config_path_lists_loaded_files(runner, tmp_path):
    (tmp_path / ".conductor.toml").write_text("[review]\nenabled = false\n")

    result = runner.invoke(cli, ["config", "path"])

    assert result.exit_code == 0
    assert result.output.splitlines()[0] == f"user: {tmp_path / 'no-config.toml'}"
    assert f"loaded: {tmp_path / '.conductor.toml'}" in result.output


def test_invalid_config_exits_with_error(runner, tmp_path):
    (tmp_path / ".conductor.toml").write_text("[stuck]\nmonologue = \"often\"\n")

    result = runner.invoke(cli, ["--no-color", "config", "show"])

    assert result.exit_code == 2
    assert "Invalid config file" in result.output
