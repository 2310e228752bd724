"""Approval queue for operations that need human confirmation.

Write tools never touch the environment directly. They queue a
`PendingOperation`; the operation is applied only after the human
approves it through the agent loop.

Lifecycle: PENDING -> APPROVED | REJECTED | EXPIRED, exactly once.

Bounds:
- TTL: a pending operation older than `ttl_seconds` expires (on cleanup,
  or when someone tries to apply it)
- Retention: resolved entries stay for `resolved_retention_seconds`
  after they were resolved, so a late approval is still visible
- Size: above `max_operations`, the entry resolved longest ago is
  evicted first; the oldest pending entry goes only when nothing else can
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class OperationStatus(Enum):
    """Where a pending operation is in its lifecycle."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


@dataclass(slots=True)
class PendingOperation:
    """A write action waiting for (or past) human confirmation."""

    id: int
    type: str
    """Tool name that produced the operation, or "user_feedback"."""

    data: dict[str, Any]
    created_at: float
    status: OperationStatus = OperationStatus.PENDING
    resolved_at: float | None = None

    @property
    def is_pending(self) -> bool:
        return self.status is OperationStatus.PENDING

    def age(self, now: float | None = None) -> float:
        return (now if now is not None else time.time()) - self.created_at

    def resolved_age(self, now: float | None = None) -> float:
        """Seconds since approval, rejection or expiry (creation for older records)."""
        since = self.resolved_at if self.resolved_at is not None else self.created_at
        return (now if now is not None else time.time()) - since

    def resolve(self, status: OperationStatus, now: float | None = None) -> None:
        self.status = status
        self.resolved_at = now if now is not None else time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "data": self.data,
            "created_at": self.created_at,
            "status": self.status.value,
            "resolved_at": self.resolved_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingOperation:
        return cls(
            id=data["id"],
            type=data["type"],
            data=dict(data.get("data") or {}),
            created_at=data["created_at"],
            status=OperationStatus(data.get("status", "pending")),
            resolved_at=data.get("resolved_at"),
        )


@dataclass(slots=True)
class ApprovalQueue:
    """Bounded store of pending operations.

    Attributes:
        ttl_seconds: Pending operations older than this expire (default 600)
        max_operations: Maximum entries kept (default 50)
        resolved_retention_seconds: Entries resolved longer ago than this
            are dropped on cleanup (default 60)
    """

    ttl_seconds: float = 600.0
    max_operations: int = 50
    resolved_retention_seconds: float = 60.0

    _operations: list[PendingOperation] = field(default_factory=list, init=False)
    _next_id: int = field(default=1, init=False)

    def queue(self, operation_type: str, data: dict[str, Any]) -> int:
        """Queue an operation and return its id."""
        self._cleanup()
        operation = PendingOperation(
            id=self._next_id,
            type=operation_type,
            data=data,
            created_at=time.time(),
        )
        self._next_id += 1
        self._operations.append(operation)
        self._enforce_capacity()

        logger.debug(
            "Queued operation #%d: %s", operation.id, operation_type,
            extra={"queue_size": len(self._operations)},
        )
        return operation.id

    def get(self, operation_id: int) -> PendingOperation | None:
        for operation in self._operations:
            if operation.id == operation_id:
                return operation
        return None

    def all(self) -> list[PendingOperation]:
        return list(self._operations)

    def pending(self) -> list[PendingOperation]:
        return [op for op in self._operations if op.is_pending]

    def approve(self, operation_id: int) -> bool:
        """Mark a pending operation approved. False if missing or resolved."""
        return self._resolve(operation_id, OperationStatus.APPROVED)

    def reject(self, operation_id: int) -> bool:
        """Mark a pending operation rejected. False if missing or resolved."""
        return self._resolve(operation_id, OperationStatus.REJECTED)

    def expire(self, operation_id: int) -> bool:
        return self._resolve(operation_id, OperationStatus.EXPIRED)

    def is_expired(self, operation: PendingOperation) -> bool:
        return operation.age() > self.ttl_seconds

    def _resolve(self, operation_id: int, status: OperationStatus) -> bool:
        operation = self.get(operation_id)
        if operation is None or not operation.is_pending:
            return False
        operation.resolve(status)
        logger.info("Operation #%d %s: %s", operation.id, status.value, operation.type)
        return True

    # =========================================================================
    # Bounds
    # =========================================================================

    def _cleanup(self) -> int:
        now = time.time()
        kept: list[PendingOperation] = []
        removed = 0
        for operation in self._operations:
            if operation.is_pending and operation.age(now) > self.ttl_seconds:
                operation.resolve(OperationStatus.EXPIRED, now)
            if not operation.is_pending and (
                operation.resolved_age(now) > self.resolved_retention_seconds
            ):
                removed += 1
                continue
            kept.append(operation)
        self._operations = kept
        if removed:
            logger.debug("Cleaned up %d stale operations", removed)
        return removed

    def _enforce_capacity(self) -> None:
        while len(self._operations) > self.max_operations:
            resolved = [op for op in self._operations if not op.is_pending]
            if resolved:
                victim = max(resolved, key=lambda op: op.resolved_age())
            else:
                victim = min(self._operations, key=lambda op: op.created_at)
                logger.warning(
                    "Approval queue full, evicting pending operation #%d", victim.id
                )
            self._operations.remove(victim)

    def cleanup(self) -> int:
        """Expire and drop stale entries. Returns how many were removed."""
        return self._cleanup()

    def clear(self) -> int:
        """Drop everything and restart ids at 1."""
        count = len(self._operations)
        self._operations.clear()
        self._next_id = 1
        return count

    def stats(self) -> dict[str, Any]:
        counts = {status.value: 0 for status in OperationStatus}
        for operation in self._operations:
            counts[operation.status.value] += 1
        return {
            "total": len(self._operations),
            **counts,
            "ttl_seconds": self.ttl_seconds,
            "max_operations": self.max_operations,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "next_id": self._next_id,
            "operations": [op.to_dict() for op in self._operations],
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        self._operations = [PendingOperation.from_dict(op) for op in data.get("operations", [])]
        self._next_id = data.get("next_id", len(self._operations) + 1)
