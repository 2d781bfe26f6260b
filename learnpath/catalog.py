"""
Catalog loader and CLI: skills, prerequisite edges, and resources.

Usage::

    python -m learnpath.catalog \\
        --input tests/sample_catalog.json \\
        --db ./data/learnpath.db [--metrics]

The catalog is a JSON object with ``skills``, ``dependencies`` (by slug) and
``resources`` (by skill slug). Loading is idempotent; a bad entry is logged
and counted, never fatal.

Exit code 0 on success.
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from learnpath import db
from learnpath.dag_validator import compute_metrics, validate_dag
from learnpath.models import CatalogSummary, Resource, Skill, SkillDependency
from learnpath.utils import new_id, setup_logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-section loaders
# ---------------------------------------------------------------------------


def _load_skills(
    conn, entries: List[Dict[str, Any]], summary: CatalogSummary
) -> Dict[str, str]:
    """Insert skills; returns ``{slug: stored id}``."""
    slug_to_id: Dict[str, str] = {}
    for entry in entries:
        try:
            skill = Skill(**{"id": entry.get("id") or entry.get("slug"), **entry})
        except ValidationError as exc:
            logger.warning("  ✗ Invalid skill %r: %s", entry.get("slug"), exc)
            summary.errors.append(f"skill {entry.get('slug')}: invalid")
            continue
        slug_to_id[skill.slug] = db.insert_skill(conn, skill)
        summary.skills += 1
    return slug_to_id


def _load_dependencies(
    conn,
    entries: List[Dict[str, Any]],
    slug_to_id: Dict[str, str],
    summary: CatalogSummary,
) -> None:
    for entry in entries:
        skill_slug = entry.get("skill")
        prereq_slug = entry.get("depends_on")
        if skill_slug not in slug_to_id or prereq_slug not in slug_to_id:
            logger.warning(
                "  ⏭ Edge %s → %s references an unknown skill, rejected.",
                skill_slug, prereq_slug,
            )
            summary.rejected_edges += 1
            continue
        dep = SkillDependency(
            id=new_id(),
            skill_id=slug_to_id[skill_slug],
            depends_on_id=slug_to_id[prereq_slug],
            is_hard=bool(entry.get("is_hard", True)),
        )
        if db.insert_dependency(conn, dep):
            summary.dependencies += 1


def _load_resources(
    conn,
    entries: List[Dict[str, Any]],
    slug_to_id: Dict[str, str],
    summary: CatalogSummary,
) -> None:
    for entry in entries:
        skill_slug = entry.get("skill")
        if skill_slug not in slug_to_id:
            summary.errors.append(f"resource {entry.get('url')}: unknown skill")
            continue
        data = {k: v for k, v in entry.items() if k != "skill"}
        try:
            resource = Resource(skill_id=slug_to_id[skill_slug], **data)
        except ValidationError as exc:
            logger.warning("  ✗ Invalid resource %r: %s", entry.get("url"), exc)
            summary.errors.append(f"resource {entry.get('url')}: invalid")
            continue
        if db.insert_resource(conn, resource):
            summary.resources += 1


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_catalog(
    catalog: Dict[str, Any],
    db_path: str = "./data/learnpath.db",
) -> CatalogSummary:
    """Load a parsed catalog into the SQLite database.

    Args:
        catalog: Dict with optional ``skills``, ``dependencies``,
                 ``resources`` lists.
        db_path: Filesystem path to the SQLite database.

    Returns:
        A ``CatalogSummary`` with per-section counts.
    """
    db.migrate_db(db_path)
    conn = db.get_connection(db_path)
    summary = CatalogSummary()

    try:
        with db.transaction(conn):
            slug_to_id = _load_skills(conn, catalog.get("skills", []), summary)
            _load_dependencies(
                conn, catalog.get("dependencies", []), slug_to_id, summary
            )
            _load_resources(
                conn, catalog.get("resources", []), slug_to_id, summary
            )
        summary.is_dag = validate_dag(db.get_dependencies(conn))
    finally:
        conn.close()

    if not summary.is_dag:
        logger.warning(
            "Stored skill graph contains a prerequisite cycle; sequencing "
            "will prune it per roadmap."
        )

    logger.info(
        "Catalog loaded: skills=%d dependencies=%d resources=%d rejected_edges=%d",
        summary.skills, summary.dependencies, summary.resources,
        summary.rejected_edges,
    )
    return summary


def catalog_metrics(db_path: str) -> Dict[str, Any]:
    """Graph metrics over the stored catalog."""
    conn = db.get_connection(db_path)
    try:
        skills = db.get_all_skills(conn)
        deps = db.get_dependencies(conn)
    finally:
        conn.close()
    return compute_metrics(deps, n_skills=len(skills))


# ---------------------------------------------------------------------------
# CLI entry-point
# ---------------------------------------------------------------------------


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="python -m learnpath.catalog",
        description="Load a skill catalog into the learning path database.",
    )
    parser.add_argument(
        "--input",
        required=True,
        help="Path to a JSON catalog file.",
    )
    parser.add_argument(
        "--db",
        default="./data/learnpath.db",
        help="Path to the SQLite database (default: ./data/learnpath.db).",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Log skill-graph metrics after loading.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """CLI main entry-point."""
    setup_logging()
    args = _parse_args(argv)

    logger.info("Loading catalog from %s", args.input)
    with open(args.input, "r", encoding="utf-8") as fh:
        catalog = json.load(fh)

    if not isinstance(catalog, dict):
        logger.error("Expected a JSON object with a 'skills' list in %s", args.input)
        sys.exit(1)

    summary = load_catalog(catalog, db_path=args.db)

    if args.metrics:
        metrics = catalog_metrics(args.db)
        logger.info(
            "Skill graph: skills=%d edges=%d avg_out=%.2f max_depth=%d "
            "isolated=%d is_dag=%s",
            metrics["total_skills"], metrics["total_edges"],
            metrics["avg_out_degree"], metrics["max_depth"],
            metrics["isolated_skills_count"], metrics["is_dag"],
        )

    logger.info("✅ Catalog load complete: %s", summary.model_dump_json())
    sys.exit(0)


if __name__ == "__main__":
    main()
