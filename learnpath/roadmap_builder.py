"""
Roadmap assembly CLI: gap analysis → sequencing → modules → time estimate.

Usage::

    python -m learnpath.roadmap_builder --db ./data/learnpath.db \\
        onboard --user u1 --target-role ml_engineer --weekly-hours 10 \\
        --known python-ml,math-foundations

    python -m learnpath.roadmap_builder --db ./data/learnpath.db generate --user u1
    python -m learnpath.roadmap_builder --db ./data/learnpath.db \\
        progress --user u1 --roadmap <id> --module <id> --status completed
    python -m learnpath.roadmap_builder --db ./data/learnpath.db \\
        skip --roadmap <id> --module <id> [--unskip]
    python -m learnpath.roadmap_builder --db ./data/learnpath.db show --user u1

Time estimation ratios can be saved to / applied from a JSON config with
``--save-config`` / ``--apply-config``.
"""

import argparse
import logging
import math
import sqlite3
import sys
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from learnpath import db
from learnpath.db import RecordNotFoundError
from learnpath.gap_analysis import GapAnalyzer, RequiredSkillsStrategy
from learnpath.models import (
    PHASE_LABELS,
    PHASE_ORDER,
    ModuleTimeInput,
    OnboardingState,
    PhaseOverview,
    ProgressOverview,
    ProgressUpdate,
    Roadmap,
    RoadmapGenerationResult,
    RoadmapModule,
    RoadmapOverview,
    TimeCalculationConfig,
    TimelineOverview,
)
from learnpath.progress import update_module_progress
from learnpath.sequencing import sequence_skills
from learnpath.time_calculation import (
    calculate_roadmap_time,
    load_time_config,
    round_half_up,
    save_time_config,
)
from learnpath.utils import new_id, setup_logging, timed, utc_now

logger = logging.getLogger(__name__)

DEFAULT_WEEKLY_HOURS = 10
GENERATION_BUDGET_MS = 3000


class OnboardingIncompleteError(Exception):
    """Raised when a roadmap is requested before onboarding is finished.

    Attributes:
        user_id: The learner the roadmap was requested for.
    """

    def __init__(self, user_id: str, reason: str) -> None:
        self.user_id = user_id
        super().__init__(f"user={user_id}: {reason}")


# =========================================================================
# Helpers
# =========================================================================


def projected_completion(
    hours: float, weekly_hours: Optional[int], now: Optional[datetime] = None
) -> datetime:
    """``now + ceil(hours / weekly_hours)`` weeks (10 h/week if unset)."""
    if not weekly_hours or weekly_hours <= 0:
        weekly_hours = DEFAULT_WEEKLY_HOURS
    weeks = math.ceil(hours / weekly_hours)
    return (now or utc_now()) + timedelta(weeks=weeks)


def roadmap_title(source_role: Optional[str], target_role: str) -> str:
    if source_role:
        return f"From {source_role} to {target_role}"
    return f"Path to {target_role}"


def roadmap_description(target_role: str, total_hours: float) -> str:
    return (
        f"Personalized learning path to become a {target_role}. "
        f"Estimated {total_hours:g} hours of focused learning."
    )


def _module_time_inputs(
    conn: sqlite3.Connection, modules: List[RoadmapModule]
) -> List[ModuleTimeInput]:
    skill_ids = [m.skill_id for m in modules]
    skills = {s.id: s for s in db.get_skills_by_ids(conn, skill_ids)}
    resources = db.get_resources_for_skills(conn, skill_ids)
    return [
        ModuleTimeInput(
            id=m.id,
            skill_id=m.skill_id,
            is_skipped=m.is_skipped,
            skill=skills[m.skill_id],
            resources=resources.get(m.skill_id),
        )
        for m in modules
    ]


# =========================================================================
# Generation
# =========================================================================


def _existing_result(
    conn: sqlite3.Connection,
    roadmap: Roadmap,
    weekly_hours: Optional[int],
    now: Optional[datetime],
) -> RoadmapGenerationResult:
    modules = db.get_modules(conn, roadmap.id)
    logger.info(
        "Roadmap already exists for user=%s, returning %s.",
        roadmap.user_id, roadmap.id,
    )
    return RoadmapGenerationResult(
        roadmap_id=roadmap.id,
        total_hours=roadmap.total_estimated_hours,
        projected_completion=projected_completion(
            roadmap.total_estimated_hours, weekly_hours, now
        ),
        module_count=len(modules),
        phase_count=len({m.phase for m in modules}),
    )


def generate_roadmap(
    conn: sqlite3.Connection,
    user_id: str,
    config: Optional[TimeCalculationConfig] = None,
    strategy: Optional[RequiredSkillsStrategy] = None,
    now: Optional[datetime] = None,
) -> RoadmapGenerationResult:
    """Build and persist the learner's roadmap (idempotent per user).

    The first module starts unlocked, all others locked. The stored total is
    the buffered, rounded Time Estimator figure.

    Raises:
        OnboardingIncompleteError: onboarding is missing, unfinished, or
            lacks a target role / weekly hours.
    """
    onboarding = db.get_onboarding(conn, user_id)
    weekly_hours = onboarding.weekly_hours if onboarding else None

    existing = db.get_active_roadmap(conn, user_id)
    if existing is not None:
        return _existing_result(conn, existing, weekly_hours, now)

    if onboarding is None or not onboarding.is_complete:
        raise OnboardingIncompleteError(
            user_id, "Onboarding must be completed before generating roadmap"
        )
    if not onboarding.target_role or not onboarding.weekly_hours:
        raise OnboardingIncompleteError(
            user_id, "Target role and weekly hours are required"
        )

    with timed("Roadmap generation", budget_ms=GENERATION_BUDGET_MS, log=logger):
        analyzer = GapAnalyzer(
            db.SqliteSkillRepository(conn),
            db.SqliteProfileRepository(conn),
            strategy,
        )
        gap = analyzer.analyze_gap(user_id, onboarding.target_role)
        if not gap.missing_skills:
            logger.warning(
                "No missing skills for user=%s - creating an empty roadmap.",
                user_id,
            )

        skill_ids = [s.id for s in gap.missing_skills]
        sequencing = sequence_skills(
            gap.missing_skills, db.get_dependencies(conn, skill_ids)
        )
        if sequencing.has_circular_dependency:
            logger.warning(
                "Circular dependency during sequencing for user=%s (%s), "
                "proceeding with best-effort order.",
                user_id, " -> ".join(sequencing.circular_dependency_path or []),
            )

        roadmap_id = new_id()
        modules = [
            RoadmapModule(
                id=new_id(),
                roadmap_id=roadmap_id,
                skill_id=skill.id,
                phase=skill.phase,
                sequence_order=skill.sequence_order,
                is_locked=skill.sequence_order > 1,
                is_skipped=False,
            )
            for skill in sequencing.sequenced_skills
        ]
        timing = calculate_roadmap_time(_module_time_inputs(conn, modules), config)
        total_hours = timing.rounded_total_hours

        roadmap = Roadmap(
            id=roadmap_id,
            user_id=user_id,
            title=roadmap_title(onboarding.current_role, onboarding.target_role),
            description=roadmap_description(onboarding.target_role, total_hours),
            source_role=onboarding.current_role or "beginner",
            target_role=onboarding.target_role,
            total_estimated_hours=total_hours,
        )
        with db.transaction(conn):
            db.insert_roadmap(conn, roadmap)
            db.insert_modules_batch(conn, modules)

    logger.info(
        "Roadmap generated: user=%s roadmap=%s modules=%d hours=%d",
        user_id, roadmap_id, len(modules), total_hours,
    )
    return RoadmapGenerationResult(
        roadmap_id=roadmap_id,
        total_hours=total_hours,
        projected_completion=projected_completion(
            total_hours, onboarding.weekly_hours, now
        ),
        module_count=len(modules),
        phase_count=len(sequencing.phase_groups),
        has_circular_dependency=sequencing.has_circular_dependency,
    )


# =========================================================================
# Recalculation & skipping
# =========================================================================


def recalculate_roadmap_time(
    conn: sqlite3.Connection,
    roadmap_id: str,
    config: Optional[TimeCalculationConfig] = None,
) -> int:
    """Rerun the Time Estimator over stored modules; store and return the total."""
    roadmap = db.get_roadmap(conn, roadmap_id)
    if roadmap is None:
        raise RecordNotFoundError("roadmap", roadmap_id)

    modules = db.get_modules(conn, roadmap_id)
    timing = calculate_roadmap_time(_module_time_inputs(conn, modules), config)
    db.update_roadmap_hours(
        conn, roadmap_id, total_estimated_hours=timing.rounded_total_hours
    )
    logger.info(
        "Roadmap time recalculated: roadmap=%s total=%d modules=%d skipped=%d",
        roadmap_id, timing.rounded_total_hours, len(modules),
        sum(1 for m in modules if m.is_skipped),
    )
    return timing.rounded_total_hours


def update_module_skip_status(
    conn: sqlite3.Connection,
    roadmap_id: str,
    module_id: str,
    is_skipped: bool,
    config: Optional[TimeCalculationConfig] = None,
) -> int:
    """Flip a module's skip flag and return the recalculated total hours."""
    with db.transaction(conn):
        if db.get_module(conn, roadmap_id, module_id) is None:
            raise RecordNotFoundError("module", module_id)
        db.set_module_skipped(conn, module_id, is_skipped)
        return recalculate_roadmap_time(conn, roadmap_id, config)


# =========================================================================
# Overview
# =========================================================================


def get_roadmap_overview(
    conn: sqlite3.Connection,
    user_id: str,
    now: Optional[datetime] = None,
) -> RoadmapOverview:
    """Phases, progress counts and timeline for the learner's active roadmap."""
    roadmap = db.get_active_roadmap(conn, user_id)
    if roadmap is None:
        raise RecordNotFoundError("roadmap", f"active roadmap for user {user_id}")

    modules = db.get_modules(conn, roadmap.id)
    skills = {
        s.id: s for s in db.get_skills_by_ids(conn, [m.skill_id for m in modules])
    }
    progress = db.get_progress_for_roadmap(conn, user_id, roadmap.id)

    counts: Dict[str, int] = defaultdict(int)
    by_phase: Dict[str, PhaseOverview] = {}
    for m in modules:
        status = progress[m.id].status if m.id in progress else "not_started"
        if status not in ("completed", "in_progress") and m.is_skipped:
            status = "skipped"
        counts[status] += 1

        hours = skills[m.skill_id].estimated_hours
        phase = by_phase.setdefault(
            m.phase, PhaseOverview(phase=m.phase, label=PHASE_LABELS[m.phase])
        )
        phase.module_ids.append(m.id)
        phase.total_hours += hours
        phase.total_modules += 1
        if status == "completed":
            phase.completed_hours += hours
            phase.completed_modules += 1

    total = len(modules)
    summary = ProgressOverview(
        total_modules=total,
        completed_modules=counts["completed"],
        in_progress_modules=counts["in_progress"],
        skipped_modules=counts["skipped"],
        not_started_modules=counts["not_started"],
        completion_percentage=(
            round_half_up(counts["completed"] / total * 100) if total else 0
        ),
    )

    onboarding = db.get_onboarding(conn, user_id)
    weekly_hours = (onboarding.weekly_hours if onboarding else None) or DEFAULT_WEEKLY_HOURS
    remaining = max(0.0, roadmap.total_estimated_hours - roadmap.completed_hours)
    timeline = TimelineOverview(
        total_hours=roadmap.total_estimated_hours,
        completed_hours=roadmap.completed_hours,
        remaining_hours=remaining,
        weekly_hours=weekly_hours,
        projected_completion=projected_completion(remaining, weekly_hours, now),
    )

    return RoadmapOverview(
        roadmap=roadmap,
        phases=[by_phase[p] for p in PHASE_ORDER if p in by_phase],
        progress=summary,
        timeline=timeline,
    )


# =========================================================================
# CLI
# =========================================================================


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="python -m learnpath.roadmap_builder",
        description="Generate and track personalized learning roadmaps.",
    )
    parser.add_argument("--db", default="./data/learnpath.db")
    parser.add_argument(
        "--apply-config", type=str, default=None,
        help="Apply a saved time-estimation config JSON.",
    )
    parser.add_argument(
        "--save-config", type=str, default=None,
        help="Save the time-estimation settings to a config JSON and exit.",
    )
    parser.add_argument("--practice-ratio", type=float, default=0.5)
    parser.add_argument("--buffer", type=float, default=0.1)

    sub = parser.add_subparsers(dest="command")

    onboard = sub.add_parser("onboard", help="Record onboarding answers.")
    onboard.add_argument("--user", required=True)
    onboard.add_argument("--target-role", required=True)
    onboard.add_argument("--current-role", default=None)
    onboard.add_argument("--weekly-hours", type=int, default=DEFAULT_WEEKLY_HOURS)
    onboard.add_argument(
        "--known", default="", help="Comma-separated skill slugs already known.",
    )

    generate = sub.add_parser("generate", help="Generate the learner's roadmap.")
    generate.add_argument("--user", required=True)

    prog = sub.add_parser("progress", help="Update a module's progress.")
    prog.add_argument("--user", required=True)
    prog.add_argument("--roadmap", required=True)
    prog.add_argument("--module", required=True)
    prog.add_argument(
        "--status", required=True,
        choices=["not_started", "in_progress", "completed", "skipped"],
    )
    prog.add_argument("--minutes", type=int, default=None)
    prog.add_argument("--notes", default=None)

    skip = sub.add_parser("skip", help="Skip (or un-skip) a module.")
    skip.add_argument("--roadmap", required=True)
    skip.add_argument("--module", required=True)
    skip.add_argument("--unskip", action="store_true")

    show = sub.add_parser("show", help="Print the learner's roadmap overview.")
    show.add_argument("--user", required=True)

    return parser.parse_args(argv)


def main(argv=None):
    """CLI entry-point."""
    setup_logging()
    args = _parse_args(argv)

    config = TimeCalculationConfig(
        practice_time_ratio=args.practice_ratio,
        buffer_percentage=args.buffer,
    )
    if args.save_config:
        save_time_config(config, args.save_config)
        return
    if args.apply_config:
        config = load_time_config(args.apply_config)

    if args.command is None:
        logger.error("No command given; see --help.")
        sys.exit(2)

    db.migrate_db(args.db)
    conn = db.get_connection(args.db)
    try:
        if args.command == "onboard":
            db.save_onboarding(conn, OnboardingState(
                user_id=args.user,
                current_role=args.current_role,
                target_role=args.target_role,
                weekly_hours=args.weekly_hours,
                existing_skills=[s for s in args.known.split(",") if s],
                is_complete=True,
            ))
            logger.info("Onboarding saved for user=%s.", args.user)
        elif args.command == "generate":
            result = generate_roadmap(conn, args.user, config=config)
            print(result.model_dump_json(indent=2))
        elif args.command == "progress":
            result = update_module_progress(conn, ProgressUpdate(
                user_id=args.user,
                roadmap_id=args.roadmap,
                module_id=args.module,
                status=args.status,
                time_spent_minutes=args.minutes,
                notes=args.notes,
            ))
            print(result.model_dump_json(indent=2))
        elif args.command == "skip":
            hours = update_module_skip_status(
                conn, args.roadmap, args.module, not args.unskip, config=config
            )
            logger.info("Roadmap %s now estimated at %d hour(s).", args.roadmap, hours)
        elif args.command == "show":
            print(get_roadmap_overview(conn, args.user).model_dump_json(indent=2))
    except (RecordNotFoundError, OnboardingIncompleteError) as exc:
        logger.error("❌ %s", exc)
        sys.exit(1)
    finally:
        conn.close()


if __name__ == "__main__":
    main()
