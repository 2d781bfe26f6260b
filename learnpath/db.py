"""
Database module for the Personalized Learning Path core.

Catalog: ``Skills``, ``SkillDependencies``, ``Resources``.
Learner: ``OnboardingStates``.
Roadmap: ``Roadmaps``, ``RoadmapModules``, ``Progress``.

Connections run in autocommit mode; multi-statement units go through
``transaction()`` which takes the write lock up front (``BEGIN IMMEDIATE``)
and rolls back on any error.
"""

import contextlib
import json
import logging
import os
import sqlite3
import time
from typing import Any, Dict, Generator, Iterable, List, Optional, Sequence

from learnpath.models import (
    OnboardingState,
    Progress,
    Resource,
    Roadmap,
    RoadmapModule,
    Skill,
    SkillDependency,
)
from learnpath.utils import new_id, utc_now

logger = logging.getLogger(__name__)


class RecordNotFoundError(LookupError):
    """Raised when a roadmap, module or other row cannot be located.

    Attributes:
        kind: Table-level name of the missing record (``'roadmap'``, ...).
        key: The identifier that was looked up.
    """

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


# =========================================================================
# Schema constants
# =========================================================================

_CREATE_SKILLS = """\
CREATE TABLE IF NOT EXISTS Skills (
    id               TEXT    PRIMARY KEY,
    name             TEXT    NOT NULL,
    slug             TEXT    UNIQUE NOT NULL,
    description      TEXT    NOT NULL DEFAULT '',
    phase            TEXT    CHECK(phase IN ('foundation','core_ml','deep_learning')),
    estimated_hours  REAL    NOT NULL CHECK(estimated_hours > 0),
    is_optional      INTEGER NOT NULL DEFAULT 0,
    sequence_order   INTEGER NOT NULL DEFAULT 0,
    created_at       TIMESTAMP
);
"""

_CREATE_SKILL_DEPENDENCIES = """\
CREATE TABLE IF NOT EXISTS SkillDependencies (
    id             TEXT    PRIMARY KEY,
    skill_id       TEXT    NOT NULL,
    depends_on_id  TEXT    NOT NULL,
    is_hard        INTEGER NOT NULL DEFAULT 1,
    FOREIGN KEY (skill_id) REFERENCES Skills(id),
    FOREIGN KEY (depends_on_id) REFERENCES Skills(id),
    UNIQUE(skill_id, depends_on_id)
);
"""

_CREATE_RESOURCES = """\
CREATE TABLE IF NOT EXISTS Resources (
    id                TEXT    PRIMARY KEY,
    skill_id          TEXT    NOT NULL,
    title             TEXT    NOT NULL DEFAULT '',
    url               TEXT    NOT NULL DEFAULT '',
    type              TEXT    CHECK(type IN ('video','article','course','book',
                                             'tutorial','documentation',
                                             'exercise','project')),
    provider          TEXT,
    duration_minutes  REAL,
    is_free           INTEGER NOT NULL DEFAULT 1,
    quality           REAL    NOT NULL DEFAULT 0,
    FOREIGN KEY (skill_id) REFERENCES Skills(id),
    UNIQUE(skill_id, url)
);
"""

_CREATE_ONBOARDING_STATES = """\
CREATE TABLE IF NOT EXISTS OnboardingStates (
    user_id          TEXT    PRIMARY KEY,
    current_role     TEXT,
    target_role      TEXT,
    weekly_hours     INTEGER,
    existing_skills  TEXT    NOT NULL DEFAULT '[]',
    is_complete      INTEGER NOT NULL DEFAULT 0
);
"""

_CREATE_ROADMAPS = """\
CREATE TABLE IF NOT EXISTS Roadmaps (
    id                     TEXT    PRIMARY KEY,
    user_id                TEXT    NOT NULL,
    title                  TEXT    NOT NULL,
    description            TEXT,
    source_role            TEXT    NOT NULL,
    target_role            TEXT    NOT NULL,
    total_estimated_hours  REAL    NOT NULL DEFAULT 0,
    completed_hours        REAL    NOT NULL DEFAULT 0,
    is_active              INTEGER NOT NULL DEFAULT 1,
    created_at             TIMESTAMP,
    updated_at             TIMESTAMP
);
"""

_CREATE_ROADMAP_MODULES = """\
CREATE TABLE IF NOT EXISTS RoadmapModules (
    id              TEXT    PRIMARY KEY,
    roadmap_id      TEXT    NOT NULL,
    skill_id        TEXT    NOT NULL,
    phase           TEXT    NOT NULL,
    sequence_order  INTEGER NOT NULL,
    is_locked       INTEGER NOT NULL DEFAULT 1,
    is_skipped      INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (roadmap_id) REFERENCES Roadmaps(id),
    FOREIGN KEY (skill_id) REFERENCES Skills(id),
    UNIQUE(roadmap_id, sequence_order)
);
"""

_CREATE_PROGRESS = """\
CREATE TABLE IF NOT EXISTS Progress (
    id                  TEXT    PRIMARY KEY,
    user_id             TEXT    NOT NULL,
    roadmap_module_id   TEXT    NOT NULL,
    status              TEXT    CHECK(status IN ('not_started','in_progress',
                                                 'completed','skipped')),
    started_at          TIMESTAMP,
    completed_at        TIMESTAMP,
    time_spent_minutes  INTEGER NOT NULL DEFAULT 0,
    notes               TEXT,
    updated_at          TIMESTAMP,
    FOREIGN KEY (roadmap_module_id) REFERENCES RoadmapModules(id),
    UNIQUE(user_id, roadmap_module_id)
);
"""

_CREATE_IDX_DEP_SKILL = """\
CREATE INDEX IF NOT EXISTS idx_dependencies_skill
    ON SkillDependencies(skill_id);
"""

_CREATE_IDX_MODULE_ROADMAP = """\
CREATE INDEX IF NOT EXISTS idx_modules_roadmap
    ON RoadmapModules(roadmap_id);
"""


# =========================================================================
# Connection helper
# =========================================================================


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new autocommit SQLite connection with WAL mode and row-factory."""
    os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=10, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


# =========================================================================
# Migration
# =========================================================================


def migrate_db(db_path: str) -> None:
    """Create (or verify) every table and index."""
    conn = get_connection(db_path)
    try:
        for ddl in (
            _CREATE_SKILLS,
            _CREATE_SKILL_DEPENDENCIES,
            _CREATE_RESOURCES,
            _CREATE_ONBOARDING_STATES,
            _CREATE_ROADMAPS,
            _CREATE_ROADMAP_MODULES,
            _CREATE_PROGRESS,
            _CREATE_IDX_DEP_SKILL,
            _CREATE_IDX_MODULE_ROADMAP,
        ):
            conn.execute(ddl)
        logger.info("Migration OK at %s", os.path.abspath(db_path))
    finally:
        conn.close()


# =========================================================================
# Lock-retry helper & transactions
# =========================================================================

_SQLITE_LOCK_RETRIES = 5
_SQLITE_LOCK_BASE_DELAY = 0.1


def _retry_on_lock(fn, *args, **kwargs):  # type: ignore[no-untyped-def]
    """Wrap *fn* with SQLite-lock retry."""
    for attempt in range(1, _SQLITE_LOCK_RETRIES + 1):
        try:
            return fn(*args, **kwargs)
        except sqlite3.OperationalError as exc:
            if "locked" in str(exc).lower() and attempt < _SQLITE_LOCK_RETRIES:
                delay = _SQLITE_LOCK_BASE_DELAY * (2 ** (attempt - 1))
                logger.warning(
                    "SQLite locked (attempt %d/%d), retrying in %.2fs",
                    attempt, _SQLITE_LOCK_RETRIES, delay,
                )
                time.sleep(delay)
            else:
                raise


@contextlib.contextmanager
def transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """Run the block as one write transaction; roll back on any error."""
    _retry_on_lock(conn.execute, "BEGIN IMMEDIATE;")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK;")
        raise
    else:
        conn.execute("COMMIT;")


def _placeholders(values: Sequence[Any]) -> str:
    return ",".join("?" for _ in values)


def _now() -> str:
    return utc_now().isoformat()


# =========================================================================
# Skill repository
# =========================================================================


def insert_skill(conn: sqlite3.Connection, skill: Skill) -> str:
    """Insert a skill idempotently (``INSERT OR IGNORE`` on slug).

    Returns the stored id, which is the existing row's id for a known slug.
    """
    def _do_insert() -> str:
        conn.execute(
            """
            INSERT OR IGNORE INTO Skills
                (id, name, slug, description, phase, estimated_hours,
                 is_optional, sequence_order, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (skill.id, skill.name, skill.slug, skill.description, skill.phase,
             skill.estimated_hours, int(skill.is_optional),
             skill.sequence_order, _now()),
        )
        row = conn.execute(
            "SELECT id FROM Skills WHERE slug = ?", (skill.slug,)
        ).fetchone()
        return row["id"]

    return _retry_on_lock(_do_insert)


def insert_dependency(conn: sqlite3.Connection, dep: SkillDependency) -> bool:
    """Insert an edge; returns ``False`` for self-loops and duplicates."""
    if dep.skill_id == dep.depends_on_id:
        return False
    cursor = _retry_on_lock(
        conn.execute,
        """INSERT OR IGNORE INTO SkillDependencies
               (id, skill_id, depends_on_id, is_hard)
           VALUES (?, ?, ?, ?)""",
        (dep.id or new_id(), dep.skill_id, dep.depends_on_id, int(dep.is_hard)),
    )
    return cursor.rowcount == 1


def _skills_from_rows(rows: Iterable[sqlite3.Row]) -> List[Skill]:
    return [
        Skill(**{k: r[k] for k in r.keys() if k != "created_at"}) for r in rows
    ]


def get_all_skills(conn: sqlite3.Connection) -> List[Skill]:
    rows = conn.execute(
        "SELECT * FROM Skills ORDER BY sequence_order, id"
    ).fetchall()
    return _skills_from_rows(rows)


def get_non_optional_skills(conn: sqlite3.Connection) -> List[Skill]:
    """Return every required skill ordered by curator ``sequence_order``."""
    rows = conn.execute(
        "SELECT * FROM Skills WHERE is_optional = 0 ORDER BY sequence_order, id"
    ).fetchall()
    return _skills_from_rows(rows)


def get_skills_by_ids(
    conn: sqlite3.Connection, skill_ids: Iterable[str]
) -> List[Skill]:
    ids = list(skill_ids)
    if not ids:
        return []
    rows = conn.execute(
        f"SELECT * FROM Skills WHERE id IN ({_placeholders(ids)}) "
        "ORDER BY sequence_order, id",
        ids,
    ).fetchall()
    return _skills_from_rows(rows)


def get_skills_by_slugs(
    conn: sqlite3.Connection, slugs: Iterable[str]
) -> List[Skill]:
    values = list(slugs)
    if not values:
        return []
    rows = conn.execute(
        f"SELECT * FROM Skills WHERE slug IN ({_placeholders(values)}) "
        "ORDER BY sequence_order, id",
        values,
    ).fetchall()
    return _skills_from_rows(rows)


def get_dependencies(
    conn: sqlite3.Connection,
    skill_ids: Optional[Iterable[str]] = None,
) -> List[SkillDependency]:
    """Return edges; with *skill_ids*, only edges with both ends inside it."""
    if skill_ids is None:
        rows = conn.execute(
            "SELECT * FROM SkillDependencies ORDER BY rowid"
        ).fetchall()
    else:
        ids = list(skill_ids)
        if not ids:
            return []
        marks = _placeholders(ids)
        rows = conn.execute(
            f"""SELECT * FROM SkillDependencies
                WHERE skill_id IN ({marks}) AND depends_on_id IN ({marks})
                ORDER BY rowid""",
            ids + ids,
        ).fetchall()
    return [SkillDependency(**dict(r)) for r in rows]


# =========================================================================
# Resource repository
# =========================================================================


def insert_resource(conn: sqlite3.Connection, resource: Resource) -> bool:
    """Insert a resource idempotently on ``(skill_id, url)``."""
    cursor = _retry_on_lock(
        conn.execute,
        """INSERT OR IGNORE INTO Resources
               (id, skill_id, title, url, type, provider, duration_minutes,
                is_free, quality)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (resource.id or new_id(), resource.skill_id, resource.title,
         resource.url, resource.type, resource.provider,
         resource.duration_minutes, int(resource.is_free), resource.quality),
    )
    return cursor.rowcount == 1


def get_resources_for_skills(
    conn: sqlite3.Connection, skill_ids: Iterable[str]
) -> Dict[str, List[Resource]]:
    """Return ``{skill_id: [resources best-quality first]}``."""
    ids = list(skill_ids)
    result: Dict[str, List[Resource]] = {sid: [] for sid in ids}
    if not ids:
        return result
    rows = conn.execute(
        f"SELECT * FROM Resources WHERE skill_id IN ({_placeholders(ids)}) "
        "ORDER BY quality DESC, rowid",
        ids,
    ).fetchall()
    for r in rows:
        result[r["skill_id"]].append(Resource(**dict(r)))
    return result


# =========================================================================
# Learner profile
# =========================================================================


def save_onboarding(conn: sqlite3.Connection, state: OnboardingState) -> None:
    """Insert or replace a learner's onboarding answers."""
    _retry_on_lock(
        conn.execute,
        """INSERT OR REPLACE INTO OnboardingStates
               (user_id, current_role, target_role, weekly_hours,
                existing_skills, is_complete)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (state.user_id, state.current_role, state.target_role,
         state.weekly_hours, json.dumps(state.existing_skills),
         int(state.is_complete)),
    )


def get_onboarding(
    conn: sqlite3.Connection, user_id: str
) -> Optional[OnboardingState]:
    row = conn.execute(
        "SELECT * FROM OnboardingStates WHERE user_id = ?", (user_id,)
    ).fetchone()
    if row is None:
        return None
    data = dict(row)
    data["existing_skills"] = json.loads(data["existing_skills"] or "[]")
    return OnboardingState(**data)


def get_known_skill_slugs(conn: sqlite3.Connection, user_id: str) -> List[str]:
    """Skill slugs the learner marked as known (``[]`` if not onboarded)."""
    state = get_onboarding(conn, user_id)
    return list(state.existing_skills) if state else []


# =========================================================================
# Roadmaps & modules
# =========================================================================


def insert_roadmap(conn: sqlite3.Connection, roadmap: Roadmap) -> None:
    now = _now()
    conn.execute(
        """INSERT INTO Roadmaps
               (id, user_id, title, description, source_role, target_role,
                total_estimated_hours, completed_hours, is_active,
                created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (roadmap.id, roadmap.user_id, roadmap.title, roadmap.description,
         roadmap.source_role, roadmap.target_role,
         roadmap.total_estimated_hours, roadmap.completed_hours,
         int(roadmap.is_active), now, now),
    )


def get_roadmap(conn: sqlite3.Connection, roadmap_id: str) -> Optional[Roadmap]:
    row = conn.execute(
        "SELECT * FROM Roadmaps WHERE id = ?", (roadmap_id,)
    ).fetchone()
    return Roadmap(**dict(row)) if row else None


def get_active_roadmap(
    conn: sqlite3.Connection, user_id: str
) -> Optional[Roadmap]:
    row = conn.execute(
        """SELECT * FROM Roadmaps WHERE user_id = ? AND is_active = 1
           ORDER BY created_at DESC LIMIT 1""",
        (user_id,),
    ).fetchone()
    return Roadmap(**dict(row)) if row else None


def update_roadmap_hours(
    conn: sqlite3.Connection,
    roadmap_id: str,
    total_estimated_hours: Optional[float] = None,
    completed_hours: Optional[float] = None,
) -> None:
    """Set whichever aggregate is given; ``None`` leaves a column untouched."""
    conn.execute(
        """UPDATE Roadmaps SET
               total_estimated_hours = COALESCE(?, total_estimated_hours),
               completed_hours = COALESCE(?, completed_hours),
               updated_at = ?
           WHERE id = ?""",
        (total_estimated_hours, completed_hours, _now(), roadmap_id),
    )


def insert_modules_batch(
    conn: sqlite3.Connection, modules: List[RoadmapModule]
) -> int:
    """Insert modules; caller owns the transaction. Returns rows inserted."""
    for m in modules:
        conn.execute(
            """INSERT INTO RoadmapModules
                   (id, roadmap_id, skill_id, phase, sequence_order,
                    is_locked, is_skipped)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (m.id, m.roadmap_id, m.skill_id, m.phase, m.sequence_order,
             int(m.is_locked), int(m.is_skipped)),
        )
    return len(modules)


def get_modules(conn: sqlite3.Connection, roadmap_id: str) -> List[RoadmapModule]:
    rows = conn.execute(
        "SELECT * FROM RoadmapModules WHERE roadmap_id = ? ORDER BY sequence_order",
        (roadmap_id,),
    ).fetchall()
    return [RoadmapModule(**dict(r)) for r in rows]


def get_module(
    conn: sqlite3.Connection, roadmap_id: str, module_id: str
) -> Optional[RoadmapModule]:
    """Return the module only if it belongs to *roadmap_id*."""
    row = conn.execute(
        "SELECT * FROM RoadmapModules WHERE id = ? AND roadmap_id = ?",
        (module_id, roadmap_id),
    ).fetchone()
    return RoadmapModule(**dict(row)) if row else None


def get_module_by_sequence(
    conn: sqlite3.Connection, roadmap_id: str, sequence_order: int
) -> Optional[RoadmapModule]:
    row = conn.execute(
        "SELECT * FROM RoadmapModules WHERE roadmap_id = ? AND sequence_order = ?",
        (roadmap_id, sequence_order),
    ).fetchone()
    return RoadmapModule(**dict(row)) if row else None


def set_module_locked(
    conn: sqlite3.Connection, module_id: str, is_locked: bool
) -> None:
    conn.execute(
        "UPDATE RoadmapModules SET is_locked = ? WHERE id = ?",
        (int(is_locked), module_id),
    )


def set_module_skipped(
    conn: sqlite3.Connection, module_id: str, is_skipped: bool
) -> None:
    conn.execute(
        "UPDATE RoadmapModules SET is_skipped = ? WHERE id = ?",
        (int(is_skipped), module_id),
    )


# =========================================================================
# Progress
# =========================================================================


def get_progress(
    conn: sqlite3.Connection, user_id: str, module_id: str
) -> Optional[Progress]:
    row = conn.execute(
        "SELECT * FROM Progress WHERE user_id = ? AND roadmap_module_id = ?",
        (user_id, module_id),
    ).fetchone()
    return Progress(**dict(row)) if row else None


def get_progress_for_roadmap(
    conn: sqlite3.Connection, user_id: str, roadmap_id: str
) -> Dict[str, Progress]:
    """Return ``{module_id: progress}`` for the learner's records."""
    rows = conn.execute(
        """SELECT p.* FROM Progress p
           JOIN RoadmapModules m ON m.id = p.roadmap_module_id
           WHERE p.user_id = ? AND m.roadmap_id = ?""",
        (user_id, roadmap_id),
    ).fetchall()
    return {r["roadmap_module_id"]: Progress(**dict(r)) for r in rows}


def upsert_progress(conn: sqlite3.Connection, progress: Progress) -> Progress:
    """Insert or update the (user, module) record; returns what was stored."""
    stored = progress.model_copy(update={
        "id": progress.id or new_id(),
        "updated_at": utc_now(),
    })
    conn.execute(
        """INSERT INTO Progress
               (id, user_id, roadmap_module_id, status, started_at,
                completed_at, time_spent_minutes, notes, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(user_id, roadmap_module_id) DO UPDATE SET
               status = excluded.status,
               started_at = excluded.started_at,
               completed_at = excluded.completed_at,
               time_spent_minutes = excluded.time_spent_minutes,
               notes = excluded.notes,
               updated_at = excluded.updated_at""",
        (stored.id, stored.user_id, stored.roadmap_module_id, stored.status,
         stored.started_at.isoformat() if stored.started_at else None,
         stored.completed_at.isoformat() if stored.completed_at else None,
         stored.time_spent_minutes, stored.notes,
         stored.updated_at.isoformat()),
    )
    return stored


def sum_completed_hours(conn: sqlite3.Connection, roadmap_id: str) -> float:
    """Unbuffered hours of modules with at least one completed record."""
    row = conn.execute(
        """SELECT COALESCE(SUM(s.estimated_hours), 0) AS hours
           FROM RoadmapModules m
           JOIN Skills s ON s.id = m.skill_id
           WHERE m.roadmap_id = ?
             AND EXISTS (SELECT 1 FROM Progress p
                         WHERE p.roadmap_module_id = m.id
                           AND p.status = 'completed')""",
        (roadmap_id,),
    ).fetchone()
    return float(row["hours"])


# =========================================================================
# Repository adapters
# =========================================================================


class SqliteSkillRepository:
    """Skill Repository backed by one connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def get_non_optional_skills(self) -> List[Skill]:
        return get_non_optional_skills(self.conn)

    def get_skills_by_ids(self, skill_ids: Iterable[str]) -> List[Skill]:
        return get_skills_by_ids(self.conn, skill_ids)

    def get_skills_by_slugs(self, slugs: Iterable[str]) -> List[Skill]:
        return get_skills_by_slugs(self.conn, slugs)

    def get_dependencies(
        self, skill_ids: Optional[Iterable[str]] = None
    ) -> List[SkillDependency]:
        return get_dependencies(self.conn, skill_ids)


class SqliteProfileRepository:
    """User Skill Profile backed by ``OnboardingStates``."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def get_known_skill_slugs(self, user_id: str) -> List[str]:
        return get_known_skill_slugs(self.conn, user_id)
