"""
One-use approval ledger for the REQUIRES_APPROVAL flow.

The ledger turns an asynchronous human answer into a deterministic outcome
when the same call is retried:

    pending --resolve(APPROVE)--> approved --consume--> [deleted]
    pending --resolve(DENY)-----> denied   (terminal, never consumed)
    pending --expire------------> [deleted]

Entries are indexed twice, by request id and by the call fingerprint
(``tool_name:canonical_params``). Both index entries are created and
removed together under one lock, so a consumed approval can authorize at
most one call even when tool calls arrive on several threads.
"""

import copy
import json
import logging
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from ai_permissions.schema import (
    ApprovalDecision,
    ApprovalSettings,
    ApprovalStatus,
    PendingApproval,
)

logger = logging.getLogger(__name__)

# Pending requests expire after one hour
APPROVAL_TTL_SECONDS = 60 * 60


def canonicalize(params: Mapping[str, Any]) -> str:
    """
    Serialize parameters into a stable string.

    Keys are sorted at every depth and separators are compact, so the same
    logical call always yields the same string regardless of key order.
    Values JSON cannot encode fall back to ``str``.
    """
    return json.dumps(
        _normalize(params),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def fingerprint(tool_name: str, params: Mapping[str, Any]) -> str:
    """Return the ledger lookup key for a call."""
    return f"{tool_name}:{canonicalize(params)}"


def _normalize(value: Any) -> Any:
    # Mixed-type keys would make sort_keys raise; stringify them first
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def _coerce_decision(decision: ApprovalDecision | str) -> ApprovalDecision:
    if isinstance(decision, ApprovalDecision):
        return decision
    return ApprovalDecision(decision.strip().upper())


class ApprovalLedger:
    """
    TTL-bounded store of approval requests.

    Usage:
        ledger = ApprovalLedger()
        request_id = ledger.create("gmail.send", {"to": "a@b.c"}, "No matching rule")
        ledger.resolve(request_id, ApprovalDecision.APPROVE)
        ledger.consume_if_approved("gmail.send", {"to": "a@b.c"})  # True
        ledger.consume_if_approved("gmail.send", {"to": "a@b.c"})  # False

    Attributes:
        ttl_seconds: Age after which a pending request expires
        resolved_ttl_seconds: Time after resolution at which approved and
            denied entries expire; None keeps them until consumed
    """

    def __init__(
        self,
        ttl_seconds: float = APPROVAL_TTL_SECONDS,
        resolved_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """
        Initialize an empty ledger.

        Args:
            ttl_seconds: Pending request lifetime
            resolved_ttl_seconds: Lifetime of resolved entries, None for unbounded
            clock: Returns the current time in seconds (injectable for tests)
            id_factory: Returns fresh request ids (defaults to uuid4)
        """
        self.ttl_seconds = ttl_seconds
        self.resolved_ttl_seconds = resolved_ttl_seconds
        self._clock = clock
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._lock = threading.Lock()
        self._by_uuid: dict[str, PendingApproval] = {}
        self._by_fingerprint: dict[str, str] = {}

    @classmethod
    def from_settings(
        cls,
        settings: ApprovalSettings,
        clock: Callable[[], float] = time.time,
    ) -> "ApprovalLedger":
        """Build a ledger from the ``approval`` section of the engine config."""
        return cls(
            ttl_seconds=settings.ttl_seconds,
            resolved_ttl_seconds=settings.resolved_ttl_seconds,
            clock=clock,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_uuid)

    def create(self, tool_name: str, params: Mapping[str, Any], reason: str) -> str:
        """
        Record a new pending request and return its id.

        The new request takes over the fingerprint index. Earlier requests
        for the same call stay resolvable by id until they expire.
        """
        stored_params = copy.deepcopy(dict(params))
        key = fingerprint(tool_name, stored_params)

        with self._lock:
            approval_id = self._new_id()
            self._by_uuid[approval_id] = PendingApproval(
                uuid=approval_id,
                tool_name=tool_name,
                params=stored_params,
                reason=reason,
                created_at=self._clock(),
                fingerprint=key,
            )
            self._by_fingerprint[key] = approval_id

        return approval_id

    def resolve(self, approval_id: str, decision: ApprovalDecision | str) -> bool:
        """
        Record a human answer for a pending request.

        Returns:
            True if the request was pending and is now approved/denied.
            False (and no change) for unknown, expired, already resolved or
            already consumed requests.
        """
        decision = _coerce_decision(decision)
        key = approval_id.strip().lower()

        with self._lock:
            entry = self._by_uuid.get(key)
            if entry is None or entry.status != ApprovalStatus.PENDING:
                return False

            now = self._clock()
            if self._is_expired(entry, now):
                self._remove(entry)
                return False

            entry.status = (
                ApprovalStatus.APPROVED
                if decision == ApprovalDecision.APPROVE
                else ApprovalStatus.DENIED
            )
            entry.resolved_at = now
            return True

    def consume_if_approved(self, tool_name: str, params: Mapping[str, Any]) -> bool:
        """
        Spend the approval for this exact call, if one exists.

        Returns:
            True once per approved request; the entry is deleted in the same
            critical section, so later calls get False.
        """
        key = fingerprint(tool_name, params)

        with self._lock:
            approval_id = self._by_fingerprint.get(key)
            if approval_id is None:
                return False

            entry = self._by_uuid.get(approval_id)
            if entry is None or entry.status != ApprovalStatus.APPROVED:
                return False

            expired = self._is_expired(entry, self._clock())
            self._remove(entry)
            return not expired

    def status_of(self, approval_id: str) -> ApprovalStatus:
        """Report a request's status without changing anything."""
        key = approval_id.strip().lower()
        with self._lock:
            entry = self._by_uuid.get(key)
            if entry is None or self._is_expired(entry, self._clock()):
                return ApprovalStatus.UNKNOWN
            return entry.status

    def get(self, approval_id: str) -> PendingApproval | None:
        """Return a copy of a request, or None."""
        with self._lock:
            entry = self._by_uuid.get(approval_id.strip().lower())
            return entry.model_copy(deep=True) if entry else None

    def sweep_expired(self, now: float | None = None) -> int:
        """
        Remove expired entries from both indexes.

        Pending requests expire ``ttl_seconds`` after creation; resolved
        ones ``resolved_ttl_seconds`` after resolution when that is set.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock() if now is None else now
            expired = [entry for entry in self._by_uuid.values() if self._is_expired(entry, now)]
            for entry in expired:
                self._remove(entry)

        if expired:
            logger.debug("Swept %d expired approval request(s)", len(expired))
        return len(expired)

    def _new_id(self) -> str:
        approval_id = self._id_factory().lower()
        while approval_id in self._by_uuid:
            approval_id = self._id_factory().lower()
        return approval_id

    def _is_expired(self, entry: PendingApproval, now: float) -> bool:
        if entry.status == ApprovalStatus.PENDING:
            return now - entry.created_at > self.ttl_seconds
        if self.resolved_ttl_seconds is None or entry.resolved_at is None:
            return False
        return now - entry.resolved_at > self.resolved_ttl_seconds

    def _remove(self, entry: PendingApproval) -> None:
        self._by_uuid.pop(entry.uuid, None)
        # A newer request may own the fingerprint by now
        if self._by_fingerprint.get(entry.fingerprint) == entry.uuid:
            del self._by_fingerprint[entry.fingerprint]
