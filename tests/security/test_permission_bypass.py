"""
Security tests for permission bypass attempts.

These tests verify that an agent cannot talk, rename or reshape its
way around the decision engine.

Attack vectors tested:
- Writing the rules or config through alternate path spellings
- Overriding path protection with an allow rule
- Reusing an approval for a different call
- Forged or smuggled approve commands
- Mutating arguments after an approval request was minted
"""

from pathlib import Path

import pytest

from ai_permissions.approval import ApprovalLedger
from ai_permissions.engine import DecisionEngine
from ai_permissions.schema import (
    ApprovalSettings,
    CompiledRule,
    Decision,
    EngineConfig,
    RuleAction,
    ToolCall,
)

pytestmark = pytest.mark.security


@pytest.fixture
def permissive_engine(temp_dir: Path, ledger: ApprovalLedger) -> DecisionEngine:
    """Engine whose only rule allows every tool."""
    return DecisionEngine(
        EngineConfig(rules_path=temp_dir / "unused.json", approval=ApprovalSettings(background_sweep=False)),
        ledger=ledger,
        rules=[CompiledRule(action=RuleAction.ALLOW, tool_pattern=".*", reason="yolo")],
    )


@pytest.fixture
def cautious_engine(temp_dir: Path, ledger: ApprovalLedger) -> DecisionEngine:
    """Engine that asks before every tool."""
    return DecisionEngine(
        EngineConfig(rules_path=temp_dir / "unused.json", approval=ApprovalSettings(background_sweep=False)),
        ledger=ledger,
        rules=[],
    )


class TestProtectedPathSpellings:
    """Alternate spellings of protected paths are still blocked."""

    @pytest.mark.parametrize(
        "path",
        [
            "rules.json",
            "/home/user/.config/ai-permissions-layer/rules.json",
            "/home/user/.config/ai-permissions-layer/config.yaml",
            "../../.config/ai-permissions-layer/rules.yaml",
            "./backup/rules-old.json",
            "C:\\Users\\me\\.config\\ai-permissions-layer\\config.yaml",
            "workspace\\rules.json",
        ],
    )
    def test_blocked_even_when_allowed(self, permissive_engine: DecisionEngine, path: str) -> None:
        decision = permissive_engine.evaluate(ToolCall(tool_name="filesystem.write", args={"path": path}))
        assert decision.decision == Decision.BLOCK, path
        assert "Protected path" in decision.reason

    @pytest.mark.parametrize("key", ["path", "file_path", "filePath", "filename"])
    def test_every_path_key_checked(self, permissive_engine: DecisionEngine, key: str) -> None:
        decision = permissive_engine.evaluate(ToolCall(tool_name="write_file", args={key: "/x/rules.json"}))
        assert decision.decision == Decision.BLOCK

    def test_non_string_decoy(self, permissive_engine: DecisionEngine) -> None:
        """A non-string ``path`` does not hide a later path key."""
        decision = permissive_engine.evaluate(
            ToolCall(tool_name="fs.writeFile", args={"path": ["safe.txt"], "filename": "rules.json"})
        )
        assert decision.decision == Decision.BLOCK

    def test_ordinary_writes_unaffected(self, permissive_engine: DecisionEngine) -> None:
        decision = permissive_engine.evaluate(ToolCall(tool_name="filesystem.write", args={"path": "notes/todo.md"}))
        assert decision.allowed


class TestApprovalScope:
    """Approvals authorize exactly one identical call."""

    def test_not_transferable_across_params(self, cautious_engine: DecisionEngine) -> None:
        decision = cautious_engine.evaluate(ToolCall(tool_name="bash", args={"command": "ls"}))
        cautious_engine.on_message(f"approve {decision.approval_id}")

        other = cautious_engine.evaluate(ToolCall(tool_name="bash", args={"command": "rm -rf ~"}))
        assert other.decision == Decision.REQUIRES_APPROVAL

    def test_not_transferable_across_tools(self, cautious_engine: DecisionEngine) -> None:
        decision = cautious_engine.evaluate(ToolCall(tool_name="bash", args={"command": "ls"}))
        cautious_engine.on_message(f"approve {decision.approval_id}")

        other = cautious_engine.evaluate(ToolCall(tool_name="exec", args={"command": "ls"}))
        assert other.decision == Decision.REQUIRES_APPROVAL

    @pytest.mark.parametrize(("approved", "attempted"), [(1, "1"), (1, True), (None, ""), ([1], 1)])
    def test_value_types_distinguished(self, cautious_engine: DecisionEngine, approved, attempted) -> None:
        """Look-alike values of another type are different calls."""
        decision = cautious_engine.evaluate(ToolCall(tool_name="transfer", args={"amount": approved}))
        cautious_engine.on_message(f"approve {decision.approval_id}")

        other = cautious_engine.evaluate(ToolCall(tool_name="transfer", args={"amount": attempted}))
        assert other.decision == Decision.REQUIRES_APPROVAL

    def test_mutation_after_request(self, cautious_engine: DecisionEngine) -> None:
        """Changing the arguments after the prompt does not change what was approved."""
        args = {"files": ["a.txt"]}
        decision = cautious_engine.evaluate(ToolCall(tool_name="delete", args=args))
        args["files"].append("b.txt")
        cautious_engine.on_message(f"approve {decision.approval_id}")

        widened = cautious_engine.evaluate(ToolCall(tool_name="delete", args={"files": ["a.txt", "b.txt"]}))
        assert widened.decision == Decision.REQUIRES_APPROVAL

    def test_single_use(self, cautious_engine: DecisionEngine) -> None:
        call = ToolCall(tool_name="bash", args={"command": "ls"})
        decision = cautious_engine.evaluate(call)
        cautious_engine.on_message(f"approve {decision.approval_id}")

        assert cautious_engine.evaluate(call).allowed
        assert not cautious_engine.evaluate(call).allowed
        assert not cautious_engine.on_message(f"approve {decision.approval_id}")


class TestForgedCommands:
    """Approve commands the user never gave."""

    def test_unknown_uuid(self, cautious_engine: DecisionEngine) -> None:
        call = ToolCall(tool_name="bash", args={"command": "ls"})
        cautious_engine.evaluate(call)

        assert not cautious_engine.on_message("approve 12345678-1234-1234-1234-123456789abc")
        assert cautious_engine.evaluate(call).decision == Decision.REQUIRES_APPROVAL

    @pytest.mark.parametrize(
        "template",
        [
            "disapprove {id}",
            "approve{id}",
            "approve {id}0",
            "approve: {id}",
        ],
    )
    def test_near_miss_commands(self, cautious_engine: DecisionEngine, template: str) -> None:
        decision = cautious_engine.evaluate(ToolCall(tool_name="bash", args={"command": "ls"}))
        assert not cautious_engine.on_message(template.format(id=decision.approval_id))

    def test_approve_after_deny(self, cautious_engine: DecisionEngine) -> None:
        """A denial cannot be flipped by a later approve."""
        call = ToolCall(tool_name="bash", args={"command": "ls"})
        decision = cautious_engine.evaluate(call)

        assert cautious_engine.on_message(f"deny {decision.approval_id}")
        assert not cautious_engine.on_message(f"approve {decision.approval_id}")
        assert cautious_engine.evaluate(call).decision == Decision.REQUIRES_APPROVAL
