"""
Exception hierarchy for the AI Permissions Layer.

All exceptions inherit from PermissionsError, allowing callers to catch
every layer-specific exception with a single except clause.

Exception Categories:
    - ConfigLoadError / RulesLoadError: Config or rules file unusable
    - InvalidRuleError: A compiled rule failed validation
    - CompilerError: The LLM rule compiler failed
    - ToolExecutionError: An allowed tool failed inside the middleware

The decision engine itself never raises these across its public boundary.
They surface from the strict loaders, the compiler and the CLI.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Config errors: 1xxx
ERROR_CONFIG_LOAD = 1001
ERROR_RULES_LOAD = 1002

# Rule errors: 2xxx
ERROR_RULE_INVALID = 2001

# Compiler errors: 3xxx
ERROR_COMPILER_CONNECTION = 3001
ERROR_COMPILER_TIMEOUT = 3002
ERROR_COMPILER_MODEL_NOT_FOUND = 3003
ERROR_COMPILER_PARSE = 3004
ERROR_COMPILER_INVALID_RESPONSE = 3005
ERROR_COMPILER_CONFIG = 3006

# Execution errors: 4xxx
ERROR_TOOL_EXECUTION_FAILED = 4001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class PermissionsError(Exception):
    """
    Base exception for all AI Permissions Layer errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Config Errors
# =============================================================================


@dataclass
class ConfigLoadError(PermissionsError):
    """Raised when the engine config file cannot be read or validated."""

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to load config {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_CONFIG_LOAD
        if not self.suggestion:
            self.suggestion = "Check the YAML syntax and field names in the config file"
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })


@dataclass
class RulesLoadError(PermissionsError):
    """
    Raised when a compiled rules file is missing or malformed.

    The engine never lets this escape: it treats the file as an empty
    rule set and falls back to ``default_when_no_match``.
    """

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to load rules {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_RULES_LOAD
        if not self.suggestion:
            self.suggestion = "Recompile the rules with: ai-permissions compile"
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Rule Errors
# =============================================================================


@dataclass
class InvalidRuleError(PermissionsError):
    """Raised when a rule record does not validate as a CompiledRule."""

    index: int | None = None
    validation_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            where = f" at index {self.index}" if self.index is not None else ""
            self.message = f"Invalid rule{where}: {self.validation_error}"
        if self.code == 0:
            self.code = ERROR_RULE_INVALID
        self.context.update({
            "index": self.index,
            "validation_error": self.validation_error,
        })


# =============================================================================
# Compiler Errors
# =============================================================================


@dataclass
class CompilerError(PermissionsError):
    """
    Base class for rule compiler errors.

    Attributes:
        provider: The LLM provider in use (e.g. "openai", "ollama")
        model: The model name
    """

    provider: str = ""
    model: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "provider": self.provider,
            "model": self.model,
        })


@dataclass
class CompilerConnectionError(CompilerError):
    """Raised when the LLM endpoint cannot be reached."""

    url: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            detail = f": {self.underlying_error}" if self.underlying_error else ""
            self.message = f"Cannot reach {self.provider} at {self.url}{detail}"
        if self.code == 0:
            self.code = ERROR_COMPILER_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the model server is running and base_url is correct"
        super().__post_init__()
        self.context.update({
            "url": self.url,
            "underlying_error": self.underlying_error,
        })


@dataclass
class CompilerTimeoutError(CompilerError):
    """Raised when the LLM request exceeds its timeout."""

    timeout_seconds: float = 0.0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.provider} model {self.model} timed out after {self.timeout_seconds}s"
        if self.code == 0:
            self.code = ERROR_COMPILER_TIMEOUT
        if not self.suggestion:
            self.suggestion = "Increase compiler.timeout_seconds or use a smaller model"
        super().__post_init__()
        self.context["timeout_seconds"] = self.timeout_seconds


@dataclass
class CompilerModelNotFoundError(CompilerError):
    """Raised when the provider does not know the requested model."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Model not found on {self.provider}: {self.model}"
        if self.code == 0:
            self.code = ERROR_COMPILER_MODEL_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Pass --model with a model the provider serves"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class CompilerParseError(CompilerError):
    """Raised when the model output contains no usable JSON."""

    raw_response: str = ""
    parse_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Could not parse compiler output: {self.parse_error}"
        if self.code == 0:
            self.code = ERROR_COMPILER_PARSE
        super().__post_init__()
        self.context.update({
            "raw_response": self.raw_response,
            "parse_error": self.parse_error,
        })


@dataclass
class CompilerInvalidResponseError(CompilerError):
    """Raised when the model output is JSON but not a valid rules document."""

    raw_response: str = ""
    validation_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Compiler output is not a valid rule set: {self.validation_error}"
        if self.code == 0:
            self.code = ERROR_COMPILER_INVALID_RESPONSE
        super().__post_init__()
        self.context.update({
            "raw_response": self.raw_response,
            "validation_error": self.validation_error,
        })


@dataclass
class CompilerConfigError(CompilerError):
    """Raised when no usable LLM adapter can be built from the config."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Cannot configure compiler for provider {self.provider}"
        if self.code == 0:
            self.code = ERROR_COMPILER_CONFIG
        if not self.suggestion:
            self.suggestion = "Set OPENAI_API_KEY or compiler.api_key_env in the config"
        super().__post_init__()


# =============================================================================
# Execution Errors
# =============================================================================


@dataclass
class ToolExecutionError(PermissionsError):
    """Raised by the middleware when an allowed tool fails during execution."""

    tool: str = ""
    tool_args: dict[str, Any] = field(default_factory=dict)
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Tool {self.tool} failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_TOOL_EXECUTION_FAILED
        self.context.update({
            "tool": self.tool,
            "tool_args": self.tool_args,
            "underlying_error": self.underlying_error,
        })
