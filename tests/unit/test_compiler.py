"""
Tests for the natural-language rule compiler.

Tests:
    - Plain rules file parsing
    - Prompt building
    - Starter rules
    - RuleCompiler with canned model replies
"""

import json
from pathlib import Path

import pytest

from ai_permissions.compiler import LLMAdapter, RuleCompiler
from ai_permissions.compiler.compiler import (
    COMPILER_PROMPT,
    STARTER_RULES,
    build_prompt,
    parse_plain_rules,
    write_starter_rules,
)
from ai_permissions.errors import CompilerInvalidResponseError, CompilerParseError, CompilerTimeoutError
from ai_permissions.schema import RuleAction, load_rules


class CannedAdapter(LLMAdapter):
    """Adapter that replays a fixed reply and records prompts."""

    provider = "canned"
    model = "test-model"

    def __init__(self, reply: str = '{"rules": []}', error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.reply


class TestParsePlainRules:
    """Tests for parse_plain_rules."""

    def test_dash_lines_only(self) -> None:
        """Comments and blank lines are skipped."""
        text = "# my rules\n\n- never delete emails\nnot a rule\n  - ask before bash\n"
        assert parse_plain_rules(text) == ["never delete emails", "ask before bash"]

    def test_quotes_stripped(self) -> None:
        """Quoted statements lose their quotes."""
        text = "- \"never delete emails\"\n- 'ask before bash'\n"
        assert parse_plain_rules(text) == ["never delete emails", "ask before bash"]

    def test_empty_items_dropped(self) -> None:
        assert parse_plain_rules("-\n-   \n") == []

    def test_starter_rules(self) -> None:
        """The starter file yields four statements."""
        statements = parse_plain_rules(STARTER_RULES)
        assert len(statements) == 4
        assert statements[0].startswith("block gmail.delete")


class TestBuildPrompt:
    """Tests for build_prompt."""

    def test_lists_statements(self) -> None:
        prompt = build_prompt(["never delete emails", "ask before bash"])
        assert prompt.startswith(COMPILER_PROMPT)
        assert prompt.endswith("User rules:\n- never delete emails\n- ask before bash")


class TestWriteStarterRules:
    """Tests for write_starter_rules."""

    def test_creates_file(self, temp_dir: Path) -> None:
        """Missing parents are created."""
        path = write_starter_rules(temp_dir / "nested" / "rules.txt")
        assert path.read_text() == STARTER_RULES

    def test_keeps_existing(self, temp_dir: Path) -> None:
        """An existing file is left alone unless overwrite is set."""
        path = temp_dir / "rules.txt"
        path.write_text("- mine\n")
        write_starter_rules(path)
        assert path.read_text() == "- mine\n"
        write_starter_rules(path, overwrite=True)
        assert path.read_text() == STARTER_RULES


class TestRuleCompiler:
    """Tests for RuleCompiler.compile and compile_file."""

    def test_compiles_rules(self) -> None:
        """A valid reply becomes a RuleSet."""
        reply = json.dumps({
            "rules": [
                {"action": "block", "tool": "gmail.delete", "reason": "never auto-delete emails"},
                {"action": "require_approval", "toolPattern": "^(exec|bash)$", "reason": "ask first"},
            ]
        })
        llm = CannedAdapter(reply)
        rule_set = RuleCompiler(llm).compile(["never delete emails", "ask before commands"])

        assert len(rule_set.rules) == 2
        assert rule_set.rules[0].action == RuleAction.BLOCK
        assert rule_set.rules[0].tool == "gmail.delete"
        assert rule_set.rules[1].tool_pattern == "^(exec|bash)$"
        assert "- never delete emails" in llm.prompts[0]

    def test_empty_input_skips_model(self) -> None:
        """Nothing to compile means no model call."""
        llm = CannedAdapter()
        assert RuleCompiler(llm).compile(["", "   "]).rules == []
        assert llm.prompts == []

    def test_fenced_reply(self) -> None:
        """Markdown fences around the JSON are tolerated."""
        reply = 'Here you go:\n```json\n{"rules": [{"action": "allow", "tool": "read"}]}\n```'
        rule_set = RuleCompiler(CannedAdapter(reply)).compile(["allow read"])
        assert rule_set.rules[0].action == RuleAction.ALLOW

    def test_bare_list_reply(self) -> None:
        """A bare list of rules is accepted."""
        reply = '[{"action": "block", "tool": "gmail.delete"}]'
        rule_set = RuleCompiler(CannedAdapter(reply)).compile(["never delete"])
        assert rule_set.rules[0].tool == "gmail.delete"

    def test_repaired_reply(self) -> None:
        """Trailing commas from the model are repaired."""
        reply = '{"rules": [{"action": "block", "tool": "bash",},]}'
        rule_set = RuleCompiler(CannedAdapter(reply)).compile(["block bash"])
        assert rule_set.rules[0].tool == "bash"

    def test_no_json(self) -> None:
        """Prose without JSON is a parse error."""
        with pytest.raises(CompilerParseError) as exc_info:
            RuleCompiler(CannedAdapter("Sorry, I can't do that.")).compile(["x"])
        assert exc_info.value.provider == "canned"
        assert exc_info.value.model == "test-model"

    def test_invalid_action(self) -> None:
        """Unknown actions are rejected."""
        reply = '{"rules": [{"action": "maybe", "tool": "bash"}]}'
        with pytest.raises(CompilerInvalidResponseError, match="invalid action"):
            RuleCompiler(CannedAdapter(reply)).compile(["x"])

    def test_rule_without_tool(self) -> None:
        """Rules that match nothing are rejected."""
        reply = '{"rules": [{"action": "block", "reason": "everything"}]}'
        with pytest.raises(CompilerInvalidResponseError) as exc_info:
            RuleCompiler(CannedAdapter(reply)).compile(["x"])
        assert "toolPattern" in exc_info.value.validation_error

    def test_adapter_errors_propagate(self) -> None:
        """Backend failures are not swallowed."""
        llm = CannedAdapter(error=CompilerTimeoutError(provider="canned", model="m", timeout_seconds=1))
        with pytest.raises(CompilerTimeoutError):
            RuleCompiler(llm).compile(["x"])

    def test_compile_file(self, temp_dir: Path) -> None:
        """compile_file writes rules JSON the engine can load."""
        source = temp_dir / "rules.txt"
        source.write_text("- never delete emails\n")
        output = temp_dir / "out" / "rules.json"
        reply = '{"rules": [{"action": "block", "tool": "gmail.delete", "reason": "never auto-delete"}]}'

        RuleCompiler(CannedAdapter(reply)).compile_file(source, output)

        on_disk = json.loads(output.read_text())
        assert on_disk["rules"][0]["tool"] == "gmail.delete"
        assert load_rules(output)[0].reason == "never auto-delete"
