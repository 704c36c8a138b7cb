"""
Approval module for the AI Permissions Layer.

Implements the human-in-the-loop half of REQUIRES_APPROVAL:

    - ApprovalLedger: one-use, TTL-bounded store of approval requests
    - parse_approval_command / format_approval_request: the chat protocol
    - ExpirySweeper: periodic background expiry

Approvals live in memory only; they do not survive a process restart.
"""

from ai_permissions.approval.ledger import (
    APPROVAL_TTL_SECONDS,
    ApprovalLedger,
    canonicalize,
    fingerprint,
)
from ai_permissions.approval.messages import (
    UUID_PATTERN,
    ApprovalCommand,
    format_approval_request,
    parse_approval_command,
)
from ai_permissions.approval.sweeper import DEFAULT_SWEEP_INTERVAL_SECONDS, ExpirySweeper

__all__ = [
    "APPROVAL_TTL_SECONDS",
    "DEFAULT_SWEEP_INTERVAL_SECONDS",
    "UUID_PATTERN",
    "ApprovalCommand",
    "ApprovalLedger",
    "ExpirySweeper",
    "canonicalize",
    "fingerprint",
    "format_approval_request",
    "parse_approval_command",
]
