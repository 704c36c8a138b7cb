"""
Decision Engine for the AI Permissions Layer.

The DecisionEngine is the single per-call decision pipeline. The host calls
it before every tool execution and on every inbound chat message.

Decision Flow (evaluate):
    1. Internal framework tools bypass policy -> ALLOW
    2. Path protection flags the call -> BLOCK (no rule can override this)
    3. Load the rules and run the matcher
    4. BLOCK -> BLOCK with the rule's reason
    5. REQUIRES_APPROVAL -> consume a matching approval (ALLOW, one use) or
       mint a new request and tell the host to block with its id
    6. ALLOW -> ALLOW

Message Flow (on_message):
    ``approve <uuid>`` / ``deny <uuid>`` -> ApprovalLedger.resolve

Design Principles:
    - Fail-closed: an unexpected error in evaluation is a BLOCK
    - Malformed or missing rules degrade to ``default_when_no_match``
      (require_approval by default), never to "allow everything"
    - Nothing raises across ``evaluate``/``on_message``
"""

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ai_permissions.approval import (
    ApprovalLedger,
    ExpirySweeper,
    format_approval_request,
    parse_approval_command,
)
from ai_permissions.errors import ToolExecutionError
from ai_permissions.policy import (
    PROTECTED_PATH_REASON,
    RuleMatcher,
    is_protected_path_violation,
    protect_files,
)
from ai_permissions.schema import (
    DEFAULT_CONFIG_PATH,
    ApprovalStatus,
    BlockSource,
    CompiledRule,
    Decision,
    EngineConfig,
    EngineDecision,
    Intent,
    ToolCall,
    load_engine_config_or_default,
    load_rules_or_empty,
)

logger = logging.getLogger(__name__)

INTERNAL_TOOL_REASON = "Internal tool bypass"
CONSUMED_APPROVAL_REASON = "User approved (one-use consumed)"
INTERNAL_ERROR_REASON = "Permission check failed; blocked as a precaution"

ToolExecutor = Callable[[ToolCall], Any]


@dataclass
class ExecutionResult:
    """
    Outcome of running a call through :meth:`DecisionEngine.execute`.

    Attributes:
        decision: The engine's verdict
        reason: Why the call was allowed or blocked
        executed: Whether the executor ran
        result: The executor's return value, if it ran
        approval_id: Request id minted for REQUIRES_APPROVAL, if any
    """

    decision: Decision
    reason: str
    executed: bool
    result: Any = None
    approval_id: str | None = None


class DecisionEngine:
    """
    Compose path protection, rule matching and the approval ledger.

    Usage:
        engine = DecisionEngine(EngineConfig(rules_path="rules.json"))
        decision = engine.evaluate(ToolCall(tool_name="gmail.send", args={...}))
        if decision.blocked:
            show(decision.reason)

        engine.on_message("approve 0f8fad5b-d9cb-469f-a165-70867728950e")

    Attributes:
        config: Engine configuration
        ledger: Approval ledger shared by evaluate and on_message
        matcher: Rule matcher with the configured default
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        ledger: ApprovalLedger | None = None,
        rules: Sequence[CompiledRule] | None = None,
        config_path: Path | str | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            config: Engine configuration (defaults if None)
            ledger: Approval ledger (built from ``config.approval`` if None)
            rules: Fixed rule list; when None, ``config.rules_path`` is
                re-read on every decision
            config_path: YAML file the config came from; protected like
                the rules file
        """
        self.config = config or EngineConfig()
        self.ledger = ledger or ApprovalLedger.from_settings(self.config.approval)
        self.matcher = RuleMatcher(self.config.default_when_no_match)
        self._static_rules = list(rules) if rules is not None else None
        self._path_config = None
        if self.config.path_protection.enabled:
            # The engine's own files are protected wherever they live
            own_files: list[tuple[Path | str, int]] = [(self.config.rules_path, 1)]
            if config_path is not None:
                own_files.append((config_path, 2))
            self._path_config = protect_files(self.config.path_protection.to_config(), own_files)
        self._internal_patterns = [
            re.compile(pattern, re.IGNORECASE) for pattern in self.config.internal_tool_patterns
        ]
        self._sweeper: ExpirySweeper | None = None

    @classmethod
    def from_config_file(cls, path: Path | str | None = None) -> "DecisionEngine":
        """Build an engine from a YAML config, falling back to defaults."""
        config_path = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH
        return cls(load_engine_config_or_default(config_path), config_path=config_path)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the background expiry sweeper if the config asks for it."""
        if not self.config.approval.background_sweep:
            return
        if self._sweeper is None:
            self._sweeper = ExpirySweeper(self.ledger, self.config.approval.sweep_interval_seconds)
        self._sweeper.start()

    def close(self) -> None:
        """Stop the background sweeper."""
        if self._sweeper is not None:
            self._sweeper.stop()
            self._sweeper = None

    def __enter__(self) -> "DecisionEngine":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # =========================================================================
    # Tool Calls
    # =========================================================================

    def load_rules(self) -> list[CompiledRule]:
        """Return the current rule set (empty if the file is missing or bad)."""
        if self._static_rules is not None:
            return self._static_rules
        return load_rules_or_empty(self.config.rules_path)

    def is_internal_tool(self, tool_name: str) -> bool:
        """Whether a tool is framework-internal and exempt from policy."""
        return any(pattern.search(tool_name) for pattern in self._internal_patterns)

    def evaluate(self, tool_call: ToolCall, intent: Intent | None = None) -> EngineDecision:
        """
        Decide a single tool call.

        Args:
            tool_call: The candidate call
            intent: The stated goal, used by intent-pattern rules

        Returns:
            EngineDecision; ``blocked`` is True for BLOCK and REQUIRES_APPROVAL
        """
        try:
            return self._evaluate(tool_call, intent or Intent())
        except Exception:
            logger.exception("Permission check failed for %s", tool_call.tool_name)
            return EngineDecision.block(
                INTERNAL_ERROR_REASON,
                tool_call.tool_name,
                BlockSource.INTERNAL_ERROR,
            )

    def execute(
        self,
        tool_call: ToolCall,
        intent: Intent | None,
        executor: ToolExecutor,
    ) -> ExecutionResult:
        """
        Evaluate a call and run it only if it is allowed.

        Raises:
            ToolExecutionError: If the executor itself fails
        """
        decision = self.evaluate(tool_call, intent)
        if decision.blocked:
            return ExecutionResult(
                decision=decision.decision,
                reason=decision.reason,
                executed=False,
                approval_id=decision.approval_id,
            )

        try:
            result = executor(tool_call)
        except Exception as e:
            raise ToolExecutionError(
                tool=tool_call.tool_name,
                tool_args=dict(tool_call.args),
                underlying_error=str(e),
            ) from e

        return ExecutionResult(
            decision=Decision.ALLOW,
            reason=decision.reason,
            executed=True,
            result=result,
        )

    def _evaluate(self, tool_call: ToolCall, intent: Intent) -> EngineDecision:
        tool_name = tool_call.tool_name

        if self.is_internal_tool(tool_name):
            return EngineDecision.allow(INTERNAL_TOOL_REASON)

        # Path protection runs before any rule and cannot be overridden
        if self._path_config is not None and is_protected_path_violation(tool_call, self._path_config):
            logger.warning("BLOCKED: Protected path - %s", tool_name)
            return EngineDecision.block(PROTECTED_PATH_REASON, tool_name, BlockSource.PATH_PROTECTION)

        result = self.matcher.match(tool_call, intent, self.load_rules())

        if result.decision == Decision.BLOCK:
            logger.warning("BLOCKED: %s - %s", tool_name, result.reason)
            return EngineDecision.block(result.reason, tool_name, BlockSource.RULE)

        if result.decision == Decision.REQUIRES_APPROVAL:
            return self._require_approval(tool_call, result.reason)

        return EngineDecision.allow(result.reason)

    def _require_approval(self, tool_call: ToolCall, reason: str) -> EngineDecision:
        tool_name = tool_call.tool_name

        if self.ledger.consume_if_approved(tool_name, tool_call.args):
            logger.info("ALLOWED: %s - user approved (one-use consumed)", tool_name)
            return EngineDecision.allow(CONSUMED_APPROVAL_REASON)

        approval_id = self.ledger.create(tool_name, tool_call.args, reason)
        logger.warning("REQUIRES_APPROVAL: %s - %s (uuid=%s)", tool_name, reason, approval_id)
        return EngineDecision.requires_approval(
            format_approval_request(approval_id, reason),
            tool_name,
            approval_id,
        )

    # =========================================================================
    # Approvals
    # =========================================================================

    def on_message(self, text: str | None) -> bool:
        """
        Resolve an approval request if the message is an approve/deny reply.

        Returns:
            True if a pending request was resolved. Unrelated text, unknown
            ids and already-resolved requests all return False.
        """
        command = parse_approval_command(text)
        if command is None:
            return False

        resolved = self.ledger.resolve(command.uuid, command.decision)
        if resolved:
            verb = "approved" if command.decision.value == "APPROVE" else "denied"
            logger.info("User %s request %s", verb, command.uuid)
        else:
            logger.debug("Ignoring %s for unknown or settled request %s", command.decision.value, command.uuid)
        return resolved

    def approval_status(self, approval_id: str) -> ApprovalStatus:
        """Report the status of an approval request."""
        return self.ledger.status_of(approval_id)

    def sweep_expired(self) -> int:
        """Drop expired approval requests now."""
        return self.ledger.sweep_expired()
