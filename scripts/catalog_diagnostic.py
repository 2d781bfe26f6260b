"""
Catalog Structural Diagnostic: checks the stored skill graph without
modifying it and writes one JSON report.

Usage::

    python scripts/catalog_diagnostic.py --db ./data/learnpath.db \\
        --out ./data/catalog_diagnostic.json

Reports graph metrics, the first prerequisite cycle (if any), phase
boundary violations over the full catalog, and the sequence a learner with
no known skills would get.
"""

import argparse
import json
import logging
import os
import sys
from collections import Counter

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from learnpath import db
from learnpath.dag_validator import (
    build_dependency_graph,
    compute_metrics,
    detect_cycle,
)
from learnpath.sequencing import sequence_skills, verify_phase_boundaries
from learnpath.utils import setup_logging, timed

logger = logging.getLogger(__name__)


# =====================================================================
# Helpers
# =====================================================================

def _save(data: dict, path: str):
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2, default=str)
    logger.info("Saved → %s", path)


# =====================================================================
# Main diagnostic
# =====================================================================

def run_diagnostic(db_path: str) -> dict:
    conn = db.get_connection(db_path)
    try:
        skills = db.get_all_skills(conn)
        deps = db.get_dependencies(conn)
    finally:
        conn.close()

    with timed("Catalog diagnostic", log=logger):
        skill_ids = [s.id for s in skills]
        graph = build_dependency_graph(skill_ids, deps)
        cycle = detect_cycle(graph)
        sequencing = sequence_skills(skills, deps)
        violations = verify_phase_boundaries(sequencing.sequenced_skills, graph)

    return {
        "metrics": compute_metrics(deps, n_skills=len(skills)),
        "skills_per_phase": dict(Counter(s.phase for s in skills)),
        "optional_skills": sum(1 for s in skills if s.is_optional),
        "soft_edges": sum(1 for d in deps if not d.is_hard),
        "cycle": cycle,
        "phase_boundary_violations": [
            {"skill": sid, "prerequisite": pid} for sid, pid in violations
        ],
        "full_sequence": [s.slug for s in sequencing.sequenced_skills],
    }


def main():
    setup_logging()
    parser = argparse.ArgumentParser(description="Skill catalog diagnostic")
    parser.add_argument("--db", default="./data/learnpath.db")
    parser.add_argument("--out", default="./data/catalog_diagnostic.json")
    args = parser.parse_args()

    report = run_diagnostic(args.db)
    _save(report, args.out)

    if report["cycle"] or report["phase_boundary_violations"]:
        logger.warning(
            "Catalog has issues: cycle=%s, phase boundary violations=%d",
            report["cycle"], len(report["phase_boundary_violations"]),
        )
        sys.exit(1)
    logger.info("✅ Catalog graph is consistent.")


if __name__ == "__main__":
    main()
