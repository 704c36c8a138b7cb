"""
Schema definitions for the AI Permissions Layer.

This module defines the Pydantic models used throughout the package:
- ToolCall/Intent: What the agent is trying to do
- CompiledRule/RuleSet: The compiled permission rules
- PathProtectionConfig: Which tools may never touch which paths
- PendingApproval: One entry of the approval ledger
- MatchResult/EngineDecision: The verdicts
- EngineConfig: Process-wide configuration loaded from YAML

Design Decisions:
    - Rule files use camelCase keys (toolPattern, intentPattern); models
      accept both spellings and write the camelCase one back out
    - Rules and decisions are immutable (frozen=True)
    - Loaders come in pairs: a strict one that raises typed errors for the
      CLI, and a lenient one the engine uses that never raises
"""

import json
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ai_permissions.errors import ConfigLoadError, RulesLoadError

logger = logging.getLogger(__name__)


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_CONFIG_DIR = Path("~/.config/ai-permissions-layer").expanduser()
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_RULES_PATH = DEFAULT_CONFIG_DIR / "rules.json"
DEFAULT_PLAIN_RULES_PATH = DEFAULT_CONFIG_DIR / "rules.yaml"

# Tool names that can write files
DEFAULT_DANGEROUS_TOOLS: tuple[str, ...] = (
    "filesystem.write",
    "filesystem.edit",
    "write_file",
    "edit_file",
    "writeFile",
    "fs.writeFile",
)

# OpenClaw file tools (group:fs) that can write files
OPENCLAW_DANGEROUS_TOOLS: tuple[str, ...] = ("write", "edit", "apply_patch")

# The rules files and the layer's own config directory
DEFAULT_PROTECTED_PATTERNS: tuple[str, ...] = (
    "**/rules*.json",
    "**/.config/ai-permissions-layer/**",
)

# Framework-internal tools that are never subject to user policy
DEFAULT_INTERNAL_TOOL_PATTERNS: tuple[str, ...] = (
    r"^pairing$",
    r"^device[-_]?pair",
    r"^pair\b",
    r"internal",
    r"^openclaw\.",
)

NO_MATCH_REASON = "No matching rule"


# =============================================================================
# Enums
# =============================================================================


class Decision(str, Enum):
    """The engine's verdict for a single tool call."""

    ALLOW = "ALLOW"
    BLOCK = "BLOCK"
    REQUIRES_APPROVAL = "REQUIRES_APPROVAL"


class RuleAction(str, Enum):
    """Action a compiled rule prescribes."""

    BLOCK = "block"
    REQUIRE_APPROVAL = "require_approval"
    ALLOW = "allow"

    def to_decision(self) -> Decision:
        """Map a rule action to the decision it produces."""
        return _ACTION_TO_DECISION[self]


_ACTION_TO_DECISION = {
    RuleAction.BLOCK: Decision.BLOCK,
    RuleAction.REQUIRE_APPROVAL: Decision.REQUIRES_APPROVAL,
    RuleAction.ALLOW: Decision.ALLOW,
}


class ApprovalStatus(str, Enum):
    """Status of an approval request as seen through the ledger."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    UNKNOWN = "unknown"


class ApprovalDecision(str, Enum):
    """A human's answer to an approval request."""

    APPROVE = "APPROVE"
    DENY = "DENY"


class BlockSource(str, Enum):
    """Which layer of the engine stopped a call."""

    PATH_PROTECTION = "path_protection"
    RULE = "rule"
    APPROVAL_REQUIRED = "approval_required"
    INTERNAL_ERROR = "internal_error"


# =============================================================================
# Call Models
# =============================================================================


class ToolCall(BaseModel):
    """
    One candidate action from the agent.

    Attributes:
        tool_name: Tool identifier (e.g., "gmail.delete", "filesystem.write")
        args: Tool-specific parameters, including any path-like fields
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tool_name: str = Field(..., alias="toolName", description="Tool identifier")
    args: dict[str, Any] = Field(default_factory=dict, description="Tool arguments")


class Intent(BaseModel):
    """Free-text statement of what the user or agent is trying to achieve."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(default="", description="Stated goal accompanying the call")


# =============================================================================
# Rule Models
# =============================================================================


class CompiledRule(BaseModel):
    """
    A structured permission rule produced by the compiler.

    A rule with neither ``tool`` nor ``tool_pattern`` is legal and simply
    never matches.

    Attributes:
        action: block, require_approval or allow
        tool: Exact tool name to match
        tool_pattern: Regex searched in the tool name
        intent_pattern: Regex searched (case-insensitive) in the intent text
        reason: Human-readable explanation surfaced on BLOCK/REQUIRES_APPROVAL
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    action: RuleAction = Field(..., description="What to do when the rule matches")
    tool: str | None = Field(default=None, description="Exact tool name")
    tool_pattern: str | None = Field(
        default=None,
        alias="toolPattern",
        description="Regex searched in the tool name",
    )
    intent_pattern: str | None = Field(
        default=None,
        alias="intentPattern",
        description="Regex searched case-insensitively in the intent text",
    )
    reason: str = Field(default="", description="Why this rule exists")

    def to_record(self) -> dict[str, Any]:
        """Serialize in the on-disk (camelCase) form."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class RuleSet(BaseModel):
    """The compiled rules document: ``{"rules": [...]}``."""

    model_config = ConfigDict(extra="ignore")

    rules: list[CompiledRule] = Field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        """Serialize in the on-disk form."""
        return {"rules": [rule.to_record() for rule in self.rules]}


class PathProtectionConfig(BaseModel):
    """
    Tools that can write files, and the paths they must never touch.

    Attributes:
        dangerous_tools: Exact tool names subject to the check
        protected_patterns: Glob patterns (``**`` spans segments)
    """

    model_config = ConfigDict(frozen=True)

    dangerous_tools: frozenset[str] = Field(
        default_factory=lambda: frozenset(DEFAULT_DANGEROUS_TOOLS),
    )
    protected_patterns: tuple[str, ...] = Field(
        default_factory=lambda: DEFAULT_PROTECTED_PATTERNS,
    )


# =============================================================================
# Decision Models
# =============================================================================


class MatchResult(BaseModel):
    """Outcome of running the rule matcher."""

    model_config = ConfigDict(frozen=True)

    decision: Decision
    reason: str


class BlockDetails(BaseModel):
    """Structured context for a call the engine did not allow."""

    model_config = ConfigDict(frozen=True)

    source: BlockSource
    tool_name: str
    approval_id: str | None = None


class EngineDecision(BaseModel):
    """
    Result of evaluating a tool call through the whole engine.

    Attributes:
        decision: ALLOW, BLOCK or REQUIRES_APPROVAL
        reason: Human-readable explanation for the host to render
        block_details: Set whenever the call is not allowed
    """

    model_config = ConfigDict(frozen=True)

    decision: Decision
    reason: str
    block_details: BlockDetails | None = None

    @property
    def allowed(self) -> bool:
        """Whether the host may execute the tool."""
        return self.decision == Decision.ALLOW

    @property
    def blocked(self) -> bool:
        """Whether the host must refuse the tool (BLOCK or REQUIRES_APPROVAL)."""
        return not self.allowed

    @property
    def approval_id(self) -> str | None:
        """The request id minted for REQUIRES_APPROVAL, if any."""
        return self.block_details.approval_id if self.block_details else None

    @classmethod
    def allow(cls, reason: str) -> "EngineDecision":
        """Create an ALLOW decision."""
        return cls(decision=Decision.ALLOW, reason=reason)

    @classmethod
    def block(cls, reason: str, tool_name: str, source: BlockSource) -> "EngineDecision":
        """Create a BLOCK decision."""
        return cls(
            decision=Decision.BLOCK,
            reason=reason,
            block_details=BlockDetails(source=source, tool_name=tool_name),
        )

    @classmethod
    def requires_approval(cls, reason: str, tool_name: str, approval_id: str) -> "EngineDecision":
        """Create a REQUIRES_APPROVAL decision carrying the new request id."""
        return cls(
            decision=Decision.REQUIRES_APPROVAL,
            reason=reason,
            block_details=BlockDetails(
                source=BlockSource.APPROVAL_REQUIRED,
                tool_name=tool_name,
                approval_id=approval_id,
            ),
        )


class PendingApproval(BaseModel):
    """
    One approval request held by the ledger.

    Attributes:
        uuid: Request id (uuid4, lowercase canonical form)
        tool_name: Tool the request was minted for
        params: Tool arguments the request was minted for
        status: pending, approved or denied
        reason: Why approval was needed
        created_at: Clock reading when the request was created
        resolved_at: Clock reading when a human answered, if they did
        fingerprint: Canonical ``tool:params`` key
    """

    model_config = ConfigDict(extra="forbid")

    uuid: str
    tool_name: str
    params: dict[str, Any] = Field(default_factory=dict)
    status: ApprovalStatus = ApprovalStatus.PENDING
    reason: str = ""
    created_at: float
    resolved_at: float | None = None
    fingerprint: str


# =============================================================================
# Configuration Models
# =============================================================================


class PathProtectionSettings(BaseModel):
    """
    Path protection section of the engine config.

    Omitted lists fall back to the built-in defaults.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(default=True, description="Master switch for path protection")
    dangerous_tools: list[str] | None = Field(
        default=None,
        description="Tool names that can write files",
    )
    protected_patterns: list[str] | None = Field(
        default=None,
        description="Globs those tools must never target",
    )

    def to_config(self) -> PathProtectionConfig:
        """Build the immutable config the checker consumes."""
        return PathProtectionConfig(
            dangerous_tools=frozenset(
                DEFAULT_DANGEROUS_TOOLS if self.dangerous_tools is None else self.dangerous_tools
            ),
            protected_patterns=tuple(
                DEFAULT_PROTECTED_PATTERNS
                if self.protected_patterns is None
                else self.protected_patterns
            ),
        )


class ApprovalSettings(BaseModel):
    """
    Approval ledger section of the engine config.

    Attributes:
        ttl_seconds: Age after which a pending request expires
        resolved_ttl_seconds: Time after resolution at which approved/denied
            entries expire; None keeps them until consumed
        sweep_interval_seconds: Period of the background expiry sweep
        background_sweep: Whether the engine runs the sweeper thread
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    ttl_seconds: float = Field(default=60 * 60, gt=0)
    resolved_ttl_seconds: float | None = Field(default=60 * 60, gt=0)
    sweep_interval_seconds: float = Field(default=5 * 60, gt=0)
    background_sweep: bool = True


class CompilerConfig(BaseModel):
    """
    LLM settings for the natural-language rule compiler.

    Attributes:
        provider: openai, ollama, lm-studio/lmstudio or vllm
        model: Model identifier sent to the provider
        base_url: Override for the provider's OpenAI-compatible base URL
        api_key_env: Environment variable holding the API key
        fallback_model: Model retried once when the primary model fails
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    provider: str = Field(default="openai", min_length=1)
    model: str = Field(default="gpt-4o-mini", min_length=1)
    base_url: str | None = None
    api_key_env: str | None = None
    fallback_model: str | None = None
    timeout_seconds: float = Field(default=60.0, gt=0, le=600)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_delay_seconds: float = Field(default=1.0, ge=0)


class EngineConfig(BaseModel):
    """
    Complete decision engine configuration.

    Attributes:
        rules_path: Compiled rules JSON, re-read on every decision
        default_when_no_match: Action when no rule matches
        path_protection: Self-protection of the rules and config files
        approval: Ledger TTL and sweeping
        internal_tool_patterns: Regexes for framework tools that bypass policy
        compiler: LLM settings for ``ai-permissions compile``
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rules_path: Path = Field(default_factory=lambda: DEFAULT_RULES_PATH)
    default_when_no_match: RuleAction = RuleAction.REQUIRE_APPROVAL
    path_protection: PathProtectionSettings = Field(default_factory=PathProtectionSettings)
    approval: ApprovalSettings = Field(default_factory=ApprovalSettings)
    internal_tool_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_INTERNAL_TOOL_PATTERNS),
    )
    compiler: CompilerConfig = Field(default_factory=CompilerConfig)

    @field_validator("rules_path")
    @classmethod
    def expand_rules_path(cls, v: Path) -> Path:
        """Expand ``~`` so host configs can use home-relative paths."""
        return v.expanduser()

    @field_validator("internal_tool_patterns")
    @classmethod
    def validate_internal_patterns(cls, v: list[str]) -> list[str]:
        """Reject patterns that are not valid regexes."""
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                msg = f"Invalid internal tool pattern {pattern!r}: {e}"
                raise ValueError(msg) from e
        return v


# =============================================================================
# Loading Helpers
# =============================================================================


def load_rules(path: Path | str) -> list[CompiledRule]:
    """
    Load compiled rules from a JSON file.

    A document without a ``rules`` key is an empty rule set.

    Raises:
        RulesLoadError: If the file is missing, unreadable or malformed
    """
    path = Path(path).expanduser()
    data = _read_rules_document(path)
    try:
        return RuleSet.model_validate(data).rules
    except ValidationError as e:
        raise RulesLoadError(path=str(path), underlying_error=str(e)) from e


def load_rules_or_empty(path: Path | str) -> list[CompiledRule]:
    """
    Load compiled rules, degrading instead of raising.

    Missing and unparsable files are treated identically and give an empty
    rule set, so the engine falls back to ``default_when_no_match``. Inside
    a readable document each rule stands alone: an invalid record is logged
    and skipped, and its valid siblings still apply.
    """
    path = Path(path).expanduser()
    try:
        data = _read_rules_document(path)
    except RulesLoadError as e:
        if path.exists():
            logger.warning("Ignoring unusable rules file, using empty rule set: %s", e.message)
        else:
            logger.debug("No rules file at %s, using empty rule set", path)
        return []

    records = data.get("rules", [])
    if not isinstance(records, list):
        logger.warning("Ignoring unusable rules file, using empty rule set: %s has no rules list", path)
        return []

    rules = []
    for index, record in enumerate(records):
        try:
            rules.append(CompiledRule.model_validate(record))
        except ValidationError as e:
            logger.warning("Skipping invalid rule %d in %s: %s", index, path, e)
    return rules


def _read_rules_document(path: Path) -> dict[str, Any]:
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise RulesLoadError(path=str(path), underlying_error="file not found") from e
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise RulesLoadError(path=str(path), underlying_error=str(e)) from e

    if not isinstance(data, dict):
        raise RulesLoadError(
            path=str(path),
            underlying_error=f"expected a JSON object, got {type(data).__name__}",
        )
    return data


def save_rules(path: Path | str, rules: list[CompiledRule]) -> Path:
    """Write rules as pretty JSON, creating parent directories."""
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    document = RuleSet(rules=rules).to_record()
    path.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")
    return path


def load_engine_config(path: Path | str) -> EngineConfig:
    """
    Load the engine config from a YAML file.

    An empty file yields the defaults.

    Raises:
        ConfigLoadError: If the file is missing, not YAML, or fails validation
    """
    path = Path(path).expanduser()
    try:
        with path.open(encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigLoadError(path=str(path), underlying_error=str(e)) from e
    return _parse_engine_config(content, str(path))


def load_engine_config_from_string(content: str) -> EngineConfig:
    """Load the engine config from a YAML string."""
    return _parse_engine_config(content, "<string>")


def load_engine_config_or_default(path: Path | str | None = None) -> EngineConfig:
    """
    Load the engine config, falling back to defaults.

    Absent and malformed configs both produce the defaults, whose
    ``default_when_no_match`` is the safe ``require_approval``.
    """
    path = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH
    if not path.exists():
        return EngineConfig()
    try:
        return load_engine_config(path)
    except ConfigLoadError as e:
        logger.warning("Ignoring unusable config, using defaults: %s", e.message)
        return EngineConfig()


def _parse_engine_config(content: str, source: str) -> EngineConfig:
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigLoadError(path=source, underlying_error=str(e)) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            path=source,
            underlying_error=f"expected a mapping, got {type(data).__name__}",
        )

    try:
        return EngineConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigLoadError(path=source, underlying_error=str(e)) from e
