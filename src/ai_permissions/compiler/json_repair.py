"""
JSON recovery for compiler model output.

Models asked for "ONLY valid JSON" still wrap it in prose or code fences,
leave trailing commas, or answer with Python literals. This module pulls
the JSON document out of such replies and fixes the common slips.

Design Principles:
    - Best effort: a bounded number of repair rounds
    - Never invent content; give up with an error message instead
"""

import json
import re
from typing import Any

from ai_permissions.schema import RuleAction

# Maximum number of repair rounds
MAX_REPAIR_ATTEMPTS = 3

_FENCE_PATTERNS = (
    re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE),
    re.compile(r"```\s*([\s\S]*?)\s*```"),
)

_VALID_ACTIONS = frozenset(action.value for action in RuleAction)


def extract_json(text: str) -> str | None:
    """
    Extract the first JSON object or array from mixed text.

    Fenced blocks are preferred. Otherwise the earliest ``{`` or ``[`` is
    matched to its closing bracket, skipping brackets inside strings.

    Args:
        text: Model reply

    Returns:
        The JSON substring, or None if there is none
    """
    if not text or not text.strip():
        return None

    text = text.strip()

    for pattern in _FENCE_PATTERNS:
        found = pattern.search(text)
        if found:
            candidate = found.group(1).strip()
            if candidate.startswith(("{", "[")):
                return candidate

    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    return _balanced_span(text, min(starts))


def _balanced_span(text: str, start: int) -> str | None:
    opening = text[start]
    closing = "}" if opening == "{" else "]"
    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == opening:
            depth += 1
        elif char == closing:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    # Truncated reply: no closing bracket
    return None


def repair_json(text: str) -> str | None:
    """
    Try to turn nearly-JSON into JSON.

    Handles trailing commas, single-quoted documents, unquoted keys,
    Python ``True``/``False``/``None`` and ``//`` or ``/* */`` comments.

    Returns:
        A string ``json.loads`` accepts, or None
    """
    if not text:
        return None

    for _ in range(MAX_REPAIR_ATTEMPTS):
        if _is_json(text):
            return text
        repaired = _repair_once(text)
        if repaired == text:
            break
        text = repaired

    return text if _is_json(text) else None


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except json.JSONDecodeError:
        return False
    return True


def _repair_once(text: str) -> str:
    text = re.sub(r"/\*.*?\*/", "", text, flags=re.DOTALL)
    text = re.sub(r"^\s*//.*?$", "", text, flags=re.MULTILINE)
    text = re.sub(r",\s*([}\]])", r"\1", text)

    # Only swap quotes when the document has no double quotes at all
    if '"' not in text and "'" in text:
        text = text.replace("'", '"')

    text = re.sub(r"([{,])\s*([A-Za-z_][A-Za-z0-9_]*)\s*:", r'\1"\2":', text)
    text = re.sub(r"\bTrue\b", "true", text)
    text = re.sub(r"\bFalse\b", "false", text)
    text = re.sub(r"\bNone\b", "null", text)
    return text


def parse_json_safely(text: str) -> tuple[Any, str | None]:
    """
    Parse model output with extraction and repair.

    Returns:
        ``(value, None)`` on success, ``(None, error_message)`` otherwise

    Example:
        data, error = parse_json_safely(reply)
        if error:
            raise CompilerParseError(raw_response=reply, parse_error=error)
    """
    if not text or not text.strip():
        return None, "Empty response"

    try:
        return json.loads(text), None
    except json.JSONDecodeError:
        pass

    candidate = extract_json(text) or text
    repaired = repair_json(candidate)
    if repaired is None:
        return None, "No valid JSON found in response"
    return json.loads(repaired), None


def validate_rules_json(data: Any) -> tuple[bool, str | None]:
    """
    Check the shape of a compiled rules document.

    Expected format:
        {"rules": [{"action": "block", "tool": "gmail.delete", "reason": "..."}]}

    Only the document shape and the action values are checked here; field
    types are left to the CompiledRule model.

    Returns:
        ``(is_valid, error_message)``
    """
    if not isinstance(data, dict):
        return False, f"Expected object, got {type(data).__name__}"

    rules = data.get("rules")
    if not isinstance(rules, list):
        return False, "'rules' must be a list"

    for index, rule in enumerate(rules):
        if not isinstance(rule, dict):
            return False, f"rules[{index}] must be an object"
        action = rule.get("action")
        if action not in _VALID_ACTIONS:
            return False, f"rules[{index}] has invalid action {action!r}"

    return True, None
