"""Helpers for building rules outside the compiler."""

from datetime import UTC, date, datetime
from typing import Any

from pydantic import ValidationError

from ai_permissions.errors import InvalidRuleError
from ai_permissions.schema import CompiledRule, Intent, RuleAction, ToolCall


def parse_rule(record: Any, index: int | None = None) -> CompiledRule:
    """
    Validate one rule record (camelCase or snake_case keys).

    A rule must name a tool, either exactly or by pattern; one with
    neither could never match and is rejected.

    Raises:
        InvalidRuleError: If the record is not a usable rule
    """
    if not isinstance(record, dict):
        raise InvalidRuleError(
            index=index,
            validation_error=f"expected an object, got {type(record).__name__}",
        )

    try:
        rule = CompiledRule.model_validate(record)
    except ValidationError as e:
        raise InvalidRuleError(index=index, validation_error=str(e)) from e

    if not rule.tool and not rule.tool_pattern:
        raise InvalidRuleError(index=index, validation_error="rule needs 'tool' or 'toolPattern'")
    return rule


def create_allow_rule(
    tool_call: ToolCall,
    intent: Intent | None = None,
    today: date | None = None,
) -> CompiledRule:
    """
    Build a permanent allow rule for a tool the user approved "forever".

    The rule matches the tool by exact name only; the arguments and intent
    of the approved call are deliberately not part of it.
    """
    today = today or datetime.now(UTC).date()
    return CompiledRule(
        action=RuleAction.ALLOW,
        tool=tool_call.tool_name,
        reason=f"User approved forever on {today.isoformat()}",
    )
