from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from cbam_desk.engine.models import LOCK_TERMINAL_STATUSES, LOCK_TYPES, EmissionEntry, LifecycleLock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockVerdict:
    accepted: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"accepted": self.accepted, "reason": self.reason}


def add_lock(entry: EmissionEntry, lock_type: str, reason: str = "") -> Tuple[EmissionEntry, LockVerdict]:
    """Attach a pending lock; an active lock of the same type is not duplicated."""
    if entry.is_submitted:
        return entry, LockVerdict(False, "Entry is submitted and immutable")
    if lock_type not in LOCK_TYPES:
        return entry, LockVerdict(False, f"Unknown lock type: {lock_type}")
    if any(lk.lock_type == lock_type for lk in entry.active_locks):
        return entry, LockVerdict(False, f"An active {lock_type} lock already exists")

    lock = LifecycleLock(lock_type=lock_type, status="pending", reason=reason)
    return entry.with_changes(lifecycle_locks=entry.lifecycle_locks + (lock,)), LockVerdict(True, f"{lock_type} lock added")


def resolve_lock(entry: EmissionEntry, lock_type: str, status: str = "resolved") -> Tuple[EmissionEntry, LockVerdict]:
    """Settle every active lock of ``lock_type`` with a terminal status."""
    if entry.is_submitted:
        return entry, LockVerdict(False, "Entry is submitted and immutable")
    if status not in LOCK_TERMINAL_STATUSES:
        return entry, LockVerdict(False, f"Status {status} does not release a lock")

    changed = False
    locks = []
    for lk in entry.lifecycle_locks:
        if lk.lock_type == lock_type and lk.is_active:
            locks.append(LifecycleLock(lock_type=lk.lock_type, status=status, reason=lk.reason))
            changed = True
        else:
            locks.append(lk)

    if not changed:
        logger.info("No active %s lock on %s", lock_type, entry.entry_id or entry.cn_code)
        return entry, LockVerdict(False, f"No active {lock_type} lock")
    return entry.with_changes(lifecycle_locks=tuple(locks)), LockVerdict(True, f"{lock_type} lock {status}")
