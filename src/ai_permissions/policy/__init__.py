"""
Policy module for the AI Permissions Layer.

This module holds the two pure, stateless checks the decision engine
composes:

    - Path protection: dangerous tools may never target protected paths
    - Rule matching: compiled rules decide ALLOW / BLOCK / REQUIRES_APPROVAL,
      with block taking absolute priority

Neither check touches the approval ledger; that composition lives in
:mod:`ai_permissions.engine`.
"""

from ai_permissions.policy.matcher import RuleMatcher, compile_pattern, match
from ai_permissions.policy.path_protection import (
    PROTECTED_PATH_REASON,
    extract_path,
    glob_match,
    is_protected_path_violation,
    protect_files,
    protected_file_patterns,
)
from ai_permissions.policy.rules import create_allow_rule, parse_rule

__all__ = [
    "PROTECTED_PATH_REASON",
    "RuleMatcher",
    "compile_pattern",
    "create_allow_rule",
    "extract_path",
    "glob_match",
    "is_protected_path_violation",
    "match",
    "parse_rule",
    "protect_files",
    "protected_file_patterns",
]
