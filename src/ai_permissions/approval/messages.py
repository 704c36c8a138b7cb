"""
Chat protocol for approval requests.

Outbound: the block reason shown to the user embeds the request id as
``Request ID: <uuid>`` together with the reply instructions.

Inbound: any chat message is scanned for ``approve <uuid>`` or
``deny <uuid>`` (case-insensitive, optionally written as a slash command
such as ``/approve <uuid>``). Messages without a command are ignored.
"""

import re
from dataclasses import dataclass

from ai_permissions.schema import ApprovalDecision

UUID_PATTERN = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"


def _command_regex(word: str) -> re.Pattern[str]:
    return re.compile(
        rf"(?:^|\s)(?:/{word}\s+)?/?{word}\s+({UUID_PATTERN})(?![0-9a-f])",
        re.IGNORECASE,
    )


# Approve is checked first when a message contains both commands
_COMMANDS = (
    (ApprovalDecision.APPROVE, _command_regex("approve")),
    (ApprovalDecision.DENY, _command_regex("deny")),
)


@dataclass(frozen=True)
class ApprovalCommand:
    """A parsed approve/deny reply."""

    uuid: str
    decision: ApprovalDecision


def parse_approval_command(content: str | None) -> ApprovalCommand | None:
    """
    Extract an approve/deny command from a chat message.

    Examples:
        "approve 0f8fad5b-d9cb-469f-a165-70867728950e" -> APPROVE
        "/deny 0F8FAD5B-D9CB-469F-A165-70867728950E"   -> DENY (id lowercased)
        "sounds good"                                   -> None
    """
    text = (content or "").strip()
    if not text:
        return None

    for decision, pattern in _COMMANDS:
        found = pattern.search(text)
        if found:
            return ApprovalCommand(uuid=found.group(1).lower(), decision=decision)
    return None


def format_approval_request(approval_id: str, reason: str) -> str:
    """Build the block reason that asks the user to approve or deny."""
    return (
        f"[Approval required] {reason}\n\n"
        f"Request ID: {approval_id}\n\n"
        f"Ask the user: reply approve {approval_id} to allow this action, "
        f"or deny {approval_id} to block it. "
        "This is a one-use approval; after approving, retry the same action."
    )
