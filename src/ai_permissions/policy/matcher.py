"""
Rule matcher for the AI Permissions Layer.

Evaluates a compiled rule list against a tool call and its intent.

How it works:
    1. Walk the rules once, in list order
    2. A rule is a candidate when its tool matches (exact ``tool`` or
       ``tool_pattern`` regex search) and its ``intent_pattern`` (if any)
       is found case-insensitively in the intent text
    3. The first candidate is kept, except that a ``block`` candidate wins
       immediately and ends the scan
    4. No candidate: fall back to ``default_when_no_match``

Block has absolute priority so that a prohibition cannot be weakened by
where it happens to sit in the list.
"""

import logging
import re
from collections.abc import Sequence
from functools import lru_cache

from ai_permissions.schema import (
    NO_MATCH_REASON,
    CompiledRule,
    Intent,
    MatchResult,
    RuleAction,
    ToolCall,
)

logger = logging.getLogger(__name__)


@lru_cache(maxsize=512)
def compile_pattern(pattern: str, ignore_case: bool = False) -> re.Pattern[str] | None:
    """
    Compile a rule regex, caching by pattern text and flags.

    Returns None for invalid syntax; the rule then never matches on that
    pattern. Because of the cache, each bad pattern is logged once.
    """
    try:
        return re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    except re.error as e:
        logger.warning("Invalid rule pattern %r ignored: %s", pattern, e)
        return None


class RuleMatcher:
    """
    Evaluate tool calls against compiled rules.

    Usage:
        matcher = RuleMatcher()
        result = matcher.match(tool_call, Intent(text="clean inbox"), rules)
        if result.decision == Decision.BLOCK:
            ...

    Attributes:
        default_when_no_match: Action applied when no rule is a candidate
    """

    def __init__(self, default_when_no_match: RuleAction = RuleAction.REQUIRE_APPROVAL) -> None:
        self.default_when_no_match = RuleAction(default_when_no_match)

    def match(
        self,
        tool_call: ToolCall,
        intent: Intent,
        rules: Sequence[CompiledRule],
        default_when_no_match: RuleAction | str | None = None,
    ) -> MatchResult:
        """
        Decide a tool call from the rules alone.

        Args:
            tool_call: The candidate call
            intent: Intent text used by ``intent_pattern`` rules
            rules: Compiled rules, in priority order
            default_when_no_match: Overrides the matcher's default for this call

        Returns:
            MatchResult with the decision and the matched rule's reason
        """
        matched: CompiledRule | None = None

        for rule in rules:
            if not (self._tool_matches(rule, tool_call.tool_name) and self._intent_matches(rule, intent.text)):
                continue
            if rule.action == RuleAction.BLOCK:
                matched = rule
                break
            if matched is None:
                matched = rule

        if matched is None:
            fallback = RuleAction(default_when_no_match or self.default_when_no_match)
            return MatchResult(decision=fallback.to_decision(), reason=NO_MATCH_REASON)

        return MatchResult(decision=matched.action.to_decision(), reason=matched.reason)

    @staticmethod
    def _tool_matches(rule: CompiledRule, tool_name: str) -> bool:
        if rule.tool and rule.tool == tool_name:
            return True
        if rule.tool_pattern:
            compiled = compile_pattern(rule.tool_pattern)
            return compiled is not None and compiled.search(tool_name) is not None
        return False

    @staticmethod
    def _intent_matches(rule: CompiledRule, text: str) -> bool:
        if not rule.intent_pattern:
            return True
        compiled = compile_pattern(rule.intent_pattern, ignore_case=True)
        return compiled is not None and compiled.search(text) is not None


def match(
    tool_call: ToolCall,
    intent: Intent,
    rules: Sequence[CompiledRule],
    default_when_no_match: RuleAction | str = RuleAction.REQUIRE_APPROVAL,
) -> MatchResult:
    """Match with a throwaway RuleMatcher; see :meth:`RuleMatcher.match`."""
    return RuleMatcher(RuleAction(default_when_no_match)).match(tool_call, intent, rules)
