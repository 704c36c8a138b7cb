"""
Integration tests for the ai-permissions CLI.

Tests cover:
- check exit codes and JSON output
- rules listing
- compile with a mocked LLM
- doctor
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from ai_permissions import __version__
from ai_permissions.cli import app
from ai_permissions.compiler import OpenAICompatibleAdapter

runner = CliRunner()


@pytest.fixture
def config_file(temp_dir: Path, rules_file: Path) -> Path:
    """Config pointing at the sample rules and a local LLM."""
    path = temp_dir / "config.yaml"
    path.write_text(
        f"rules_path: {rules_file}\n"
        "compiler:\n"
        "  provider: ollama\n"
        "  model: qwen2.5:7b\n"
        "  max_retries: 0\n"
    )
    return path


class TestVersion:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestCheck:
    """Tests for the check command."""

    def test_allowed_exits_zero(self, config_file: Path) -> None:
        result = runner.invoke(app, ["check", "read", "--config", str(config_file)])
        assert result.exit_code == 0
        assert "ALLOW" in result.stdout

    def test_blocked_exits_one(self, config_file: Path) -> None:
        result = runner.invoke(app, ["check", "gmail.delete", "--config", str(config_file), "--json"])
        assert result.exit_code == 1

        data = json.loads(result.stdout)
        assert data["decision"] == "BLOCK"
        assert data["reason"] == "Never auto-delete emails"
        assert data["block_details"]["source"] == "rule"

    def test_requires_approval(self, config_file: Path) -> None:
        result = runner.invoke(
            app,
            ["check", "bash", "--args", '{"command": "ls"}', "--config", str(config_file), "--json"],
        )
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["decision"] == "REQUIRES_APPROVAL"
        assert data["block_details"]["approval_id"] in data["reason"]

    def test_intent_option(self, config_file: Path) -> None:
        result = runner.invoke(app, ["check", "gmail.list", "--intent", "sort my inbox", "--config", str(config_file)])
        assert result.exit_code == 0

    def test_rules_and_default_override(self, temp_dir: Path, config_file: Path) -> None:
        """--rules and --default override the config."""
        empty = temp_dir / "empty.json"
        empty.write_text('{"rules": []}')
        result = runner.invoke(
            app,
            ["check", "read", "--rules", str(empty), "--default", "allow", "--config", str(config_file), "--json"],
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["reason"] == "No matching rule"

    def test_protected_path(self, config_file: Path) -> None:
        result = runner.invoke(
            app,
            ["check", "filesystem.write", "--args", '{"path": "rules.json"}', "--config", str(config_file)],
        )
        assert result.exit_code == 1
        assert "Protected path" in result.stdout

    @pytest.mark.parametrize("args_json", ["{oops", "[1, 2]"])
    def test_bad_args(self, config_file: Path, args_json: str) -> None:
        result = runner.invoke(app, ["check", "read", "--args", args_json, "--config", str(config_file), "--json"])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["error"] is True
        assert data["error_type"] == "invalid_args"

    def test_bad_config(self, temp_dir: Path) -> None:
        """An explicitly named config must be valid."""
        bad = temp_dir / "bad.yaml"
        bad.write_text("default_when_no_match: sometimes\n")
        result = runner.invoke(app, ["check", "read", "--config", str(bad), "--json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_type"] == "config_load_error"


class TestRules:
    """Tests for the rules command."""

    def test_table(self, rules_file: Path) -> None:
        result = runner.invoke(app, ["rules", "--rules", str(rules_file)])
        assert result.exit_code == 0
        assert "5 rule(s)" in result.stdout

    def test_json(self, rules_file: Path) -> None:
        result = runner.invoke(app, ["rules", "--rules", str(rules_file), "--json"])
        assert result.exit_code == 0
        rules = json.loads(result.stdout)["rules"]
        assert len(rules) == 5
        assert rules[2]["toolPattern"] == "^(exec|bash|process)$"

    def test_empty(self, temp_dir: Path) -> None:
        empty = temp_dir / "empty.json"
        empty.write_text('{"rules": []}')
        result = runner.invoke(app, ["rules", "--rules", str(empty)])
        assert result.exit_code == 0
        assert "No rules" in result.stdout

    def test_missing(self, temp_dir: Path) -> None:
        result = runner.invoke(app, ["rules", "--rules", str(temp_dir / "nope.json"), "--json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_type"] == "RulesLoadError"


class TestCompile:
    """Tests for the compile command."""

    REPLY = '{"rules": [{"action": "block", "tool": "gmail.delete", "reason": "never auto-delete emails"}]}'

    def test_compile(self, temp_dir: Path, config_file: Path) -> None:
        source = temp_dir / "rules.yaml"
        source.write_text("- never delete emails\n")
        output = temp_dir / "compiled.json"

        with patch.object(OpenAICompatibleAdapter, "complete", return_value=self.REPLY) as mock_complete:
            result = runner.invoke(app, ["compile", str(source), str(output), "--config", str(config_file)])

        assert result.exit_code == 0, result.output
        assert "Compiled 1 rules" in result.stdout
        assert json.loads(output.read_text())["rules"][0]["tool"] == "gmail.delete"
        assert "never delete emails" in mock_complete.call_args[0][0]

    def test_compile_json(self, temp_dir: Path, config_file: Path) -> None:
        source = temp_dir / "rules.yaml"
        source.write_text("- never delete emails\n")
        output = temp_dir / "compiled.json"

        with patch.object(OpenAICompatibleAdapter, "complete", return_value=self.REPLY):
            result = runner.invoke(
                app,
                ["compile", str(source), str(output), "--config", str(config_file), "--json"],
            )

        data = json.loads(result.stdout)
        assert data["output"] == str(output)
        assert data["rules"][0]["action"] == "block"

    def test_missing_input(self, temp_dir: Path, config_file: Path) -> None:
        result = runner.invoke(app, ["compile", str(temp_dir / "nope.yaml"), "--config", str(config_file), "--json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_type"] == "input_not_found"

    def test_model_error(self, temp_dir: Path, config_file: Path) -> None:
        """Unusable model output fails the command and writes nothing."""
        source = temp_dir / "rules.yaml"
        source.write_text("- never delete emails\n")
        output = temp_dir / "compiled.json"

        with patch.object(OpenAICompatibleAdapter, "complete", return_value="no idea"):
            result = runner.invoke(
                app,
                ["compile", str(source), str(output), "--config", str(config_file), "--json"],
            )

        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_type"] == "CompilerParseError"
        assert not output.exists()

    def test_openai_without_key(self, temp_dir: Path, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        source = temp_dir / "rules.yaml"
        source.write_text("- never delete emails\n")

        result = runner.invoke(
            app,
            ["compile", str(source), "--provider", "openai", "--model", "gpt-4o", "--config", str(config_file), "--json"],
        )

        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_type"] == "CompilerConfigError"


class TestAllow:
    """Tests for the allow (approve forever) command."""

    def test_appends_rule(self, rules_file: Path, config_file: Path) -> None:
        result = runner.invoke(app, ["allow", "gmail.send", "--rules", str(rules_file), "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["added"] is True
        assert data["rule"]["reason"].startswith("User approved forever on ")

        rules = json.loads(rules_file.read_text())["rules"]
        assert len(rules) == 6
        assert rules[-1]["tool"] == "gmail.send"

        check = runner.invoke(app, ["check", "gmail.send", "--config", str(config_file)])
        assert check.exit_code == 0

    def test_already_allowed(self, rules_file: Path) -> None:
        result = runner.invoke(app, ["allow", "read", "--rules", str(rules_file), "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["added"] is False
        assert len(json.loads(rules_file.read_text())["rules"]) == 5

    def test_block_rule_still_wins(self, rules_file: Path, config_file: Path) -> None:
        result = runner.invoke(app, ["allow", "gmail.delete", "--rules", str(rules_file), "--json"])
        assert json.loads(result.stdout)["blocked_by"][0]["reason"] == "Never auto-delete emails"

        check = runner.invoke(app, ["check", "gmail.delete", "--config", str(config_file)])
        assert check.exit_code == 1

    def test_creates_missing_file(self, temp_dir: Path) -> None:
        path = temp_dir / "new" / "rules.json"
        result = runner.invoke(app, ["allow", "read", "--rules", str(path)])
        assert result.exit_code == 0
        assert json.loads(path.read_text())["rules"][0]["tool"] == "read"

    def test_broken_file_left_alone(self, temp_dir: Path) -> None:
        path = temp_dir / "rules.json"
        path.write_text("{not json")
        result = runner.invoke(app, ["allow", "read", "--rules", str(path), "--json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_type"] == "RulesLoadError"
        assert path.read_text() == "{not json"


class TestDoctor:
    """Tests for the doctor command."""

    def test_all_ok(self, config_file: Path) -> None:
        with patch.object(OpenAICompatibleAdapter, "check_connection", return_value=(True, "Connected")):
            result = runner.invoke(app, ["doctor", "--config", str(config_file), "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["ok"] is True
        assert [c["name"] for c in data["checks"]] == ["Python version", "Config", "Rules", "LLM endpoint"]

    def test_missing_rules(self, temp_dir: Path) -> None:
        config = temp_dir / "config.yaml"
        config.write_text(f"rules_path: {temp_dir / 'nope.json'}\ncompiler:\n  provider: ollama\n")

        with patch.object(OpenAICompatibleAdapter, "check_connection", return_value=(True, "Connected")):
            result = runner.invoke(app, ["doctor", "--config", str(config), "--json"])

        assert result.exit_code == 1
        rules_check = json.loads(result.stdout)["checks"][2]
        assert rules_check["ok"] is False
        assert "ai-permissions compile" in rules_check["message"]

    def test_unreachable_llm(self, config_file: Path) -> None:
        with patch.object(OpenAICompatibleAdapter, "check_connection", return_value=(False, "Cannot connect")):
            result = runner.invoke(app, ["doctor", "--config", str(config_file)])

        assert result.exit_code == 1
        assert "Cannot connect" in result.stdout
