"""
Module progress state machine and progressive unlocking.

States per (user, module)::

    not_started → in_progress → completed
         ↑                          │
         └──────── reset ───────────┘
    skipped is reachable from any state

A missing ``Progress`` row means ``not_started``. Completing a module
unlocks the next one (``sequence_order + 1``) of the same roadmap and
refreshes the roadmap's unbuffered ``completed_hours``.

Each update is one read-modify-write unit: it runs under a per-roadmap
in-process lock and inside a ``BEGIN IMMEDIATE`` transaction, so duplicate
completions are idempotent and a missing roadmap or module leaves nothing
half-written.
"""

import logging
import sqlite3
import threading
import weakref
from datetime import datetime
from typing import Dict, List, Optional

from learnpath import db
from learnpath.db import RecordNotFoundError
from learnpath.models import (
    Progress,
    ProgressStatus,
    ProgressUpdate,
    ProgressUpdateResult,
    RoadmapModule,
)
from learnpath.utils import utc_now

logger = logging.getLogger(__name__)

# entries live only while some update holds the lock
_ROADMAP_LOCKS: "weakref.WeakValueDictionary[str, threading.Lock]" = (
    weakref.WeakValueDictionary()
)
_LOCKS_GUARD = threading.Lock()


def _roadmap_lock(roadmap_id: str) -> threading.Lock:
    with _LOCKS_GUARD:
        return _ROADMAP_LOCKS.setdefault(roadmap_id, threading.Lock())


# =========================================================================
# Transitions
# =========================================================================


def apply_status(
    current: Progress, status: ProgressStatus, now: datetime
) -> Progress:
    """Return *current* moved to *status*; same status is a no-op.

    - ``in_progress`` stamps ``started_at`` if unset.
    - ``completed`` stamps ``completed_at`` and backfills ``started_at``.
    - ``not_started`` clears ``completed_at`` only.
    - ``skipped`` only changes the status.

    Leaving ``completed`` for any other status clears ``completed_at``.
    """
    if current.status == status:
        return current

    updates: Dict[str, object] = {"status": status}
    if status == "in_progress":
        if current.started_at is None:
            updates["started_at"] = now
    elif status == "completed":
        updates["completed_at"] = now
        if current.started_at is None:
            updates["started_at"] = now
    if status != "completed":
        updates["completed_at"] = None
    return current.model_copy(update=updates)


def current_status(
    conn: sqlite3.Connection, user_id: str, module_id: str
) -> ProgressStatus:
    """Stored status, or ``'not_started'`` when no record exists."""
    progress = db.get_progress(conn, user_id, module_id)
    return progress.status if progress else "not_started"


# =========================================================================
# Unlocking
# =========================================================================


def _unlock_next(
    conn: sqlite3.Connection, module: RoadmapModule
) -> List[str]:
    """Unlock the module right after *module*, if it exists and is locked."""
    nxt = db.get_module_by_sequence(
        conn, module.roadmap_id, module.sequence_order + 1
    )
    if nxt is None or not nxt.is_locked:
        return []
    db.set_module_locked(conn, nxt.id, False)
    logger.info(
        "Unlocked module %s (sequence %d) in roadmap %s.",
        nxt.id, nxt.sequence_order, module.roadmap_id,
    )
    return [nxt.id]


# =========================================================================
# Entry point
# =========================================================================


def update_module_progress(
    conn: sqlite3.Connection,
    update: ProgressUpdate,
    now: Optional[datetime] = None,
) -> ProgressUpdateResult:
    """Apply a learner's status change, unlocking the next module on completion.

    Raises:
        RecordNotFoundError: the roadmap does not exist, or the module does
            not belong to it. Nothing is written in that case.
    """
    now = now or utc_now()

    with _roadmap_lock(update.roadmap_id), db.transaction(conn):
        roadmap = db.get_roadmap(conn, update.roadmap_id)
        if roadmap is None:
            raise RecordNotFoundError("roadmap", update.roadmap_id)
        module = db.get_module(conn, update.roadmap_id, update.module_id)
        if module is None:
            raise RecordNotFoundError("module", update.module_id)

        current = db.get_progress(conn, update.user_id, module.id) or Progress(
            user_id=update.user_id, roadmap_module_id=module.id
        )
        was_completed = current.status == "completed"

        changed = apply_status(current, update.status, now)
        extra: Dict[str, object] = {}
        if update.time_spent_minutes is not None:
            extra["time_spent_minutes"] = update.time_spent_minutes
        if update.notes is not None:
            extra["notes"] = update.notes
        if extra:
            changed = changed.model_copy(update=extra)

        stored = db.upsert_progress(conn, changed)
        is_completed = stored.status == "completed"

        unlocked: List[str] = []
        if is_completed and not was_completed:
            unlocked = _unlock_next(conn, module)
        if is_completed != was_completed:
            completed_hours = db.sum_completed_hours(conn, roadmap.id)
            db.update_roadmap_hours(conn, roadmap.id, completed_hours=completed_hours)
            logger.debug(
                "Roadmap %s completed hours → %.1f", roadmap.id, completed_hours
            )

    logger.info(
        "Progress updated: user=%s module=%s %s → %s (unlocked=%d).",
        update.user_id, module.id, current.status, stored.status, len(unlocked),
    )
    return ProgressUpdateResult(progress=stored, unlocked_modules=unlocked)
