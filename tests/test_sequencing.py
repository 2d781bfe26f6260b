"""
pytest suite for the dependency sequencer and skill-graph validation.

All tests use small in-memory skill sets, no database needed.
"""

import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from learnpath.dag_validator import (
    build_dependency_graph,
    compute_metrics,
    detect_cycle,
    prerequisite_closure,
    prerequisite_digraph,
    prune_cycle_edges,
    validate_dag,
)
from learnpath.models import Skill, SkillDependency
from learnpath.sequencing import (
    calculate_priority_score,
    group_into_phases,
    sequence_skills,
    verify_phase_boundaries,
)


# =========================================================================
# Helpers
# =========================================================================


def _skill(sid, phase="foundation", hours=10, order=0, optional=False, name=None):
    return Skill(
        id=sid,
        name=name or sid,
        slug=sid.lower(),
        phase=phase,
        estimated_hours=hours,
        is_optional=optional,
        sequence_order=order,
    )


def _dep(skill_id, depends_on_id):
    return SkillDependency(skill_id=skill_id, depends_on_id=depends_on_id)


def _ids(skills):
    return [s.id for s in skills]


# =========================================================================
# Priority score
# =========================================================================


class TestPriorityScore:
    def test_formula(self):
        assert calculate_priority_score(_skill("a", "foundation", order=1)) == 1029
        assert calculate_priority_score(_skill("b", "core_ml", order=4)) == 1016
        assert calculate_priority_score(
            _skill("c", "deep_learning", order=5, optional=True)
        ) == 905

    def test_required_beats_optional(self):
        required = _skill("req", order=50)
        optional = _skill("opt", order=1, optional=True)
        result = sequence_skills([optional, required], [])
        assert _ids(result.sequenced_skills) == ["req", "opt"]

    def test_earlier_phase_wins_among_ready(self):
        late = _skill("late", "deep_learning", order=1)
        early = _skill("early", "foundation", order=5)
        result = sequence_skills([late, early], [])
        assert _ids(result.sequenced_skills) == ["early", "late"]

    def test_ties_keep_input_order(self):
        skills = [_skill(s, order=3) for s in ("x", "y", "z")]
        result = sequence_skills(skills, [])
        assert _ids(result.sequenced_skills) == ["x", "y", "z"]

        reversed_result = sequence_skills(list(reversed(skills)), [])
        assert _ids(reversed_result.sequenced_skills) == ["z", "y", "x"]


# =========================================================================
# Topological ordering
# =========================================================================


class TestTopologicalOrder:
    def test_prerequisites_come_first(self):
        # ml needs math + prep, prep needs python; given in reverse
        skills = [
            _skill("ml", "core_ml", order=4),
            _skill("prep", order=3),
            _skill("math", order=2),
            _skill("python", order=1),
        ]
        deps = [_dep("prep", "python"), _dep("ml", "math"), _dep("ml", "prep")]

        result = sequence_skills(skills, deps)
        order = _ids(result.sequenced_skills)

        assert order == ["python", "math", "prep", "ml"]
        for dep in deps:
            assert order.index(dep.depends_on_id) < order.index(dep.skill_id)
        assert result.has_circular_dependency is False
        assert result.circular_dependency_path is None

    def test_sequence_orders_are_contiguous_from_one(self):
        skills = [_skill("a", order=9), _skill("b", order=7), _skill("c", order=8)]
        result = sequence_skills(skills, [_dep("b", "a")])
        assert [s.sequence_order for s in result.sequenced_skills] == [1, 2, 3]

    def test_prerequisite_outside_set_is_ignored(self):
        skills = [_skill("b", order=2), _skill("c", order=3)]
        result = sequence_skills(skills, [_dep("b", "a"), _dep("c", "b")])
        assert _ids(result.sequenced_skills) == ["b", "c"]

    def test_empty_input(self):
        result = sequence_skills([], [])
        assert result.sequenced_skills == []
        assert result.phase_groups == []
        assert result.has_circular_dependency is False


# =========================================================================
# Cycles
# =========================================================================


class TestCycles:
    def test_three_cycle_is_reported_and_recovered(self):
        skills = [
            _skill("A", order=1, name="Skill A"),
            _skill("B", order=2, name="Skill B"),
            _skill("C", order=3, name="Skill C"),
        ]
        deps = [_dep("A", "C"), _dep("B", "A"), _dep("C", "B")]

        result = sequence_skills(skills, deps)

        assert result.has_circular_dependency is True
        assert result.circular_dependency_path == [
            "Skill A", "Skill C", "Skill B", "Skill A",
        ]
        assert len(result.sequenced_skills) == 3
        assert _ids(result.sequenced_skills) == ["A", "B", "C"]

    def test_second_independent_cycle_keeps_every_skill(self, caplog):
        skills = [_skill(s, order=i) for i, s in enumerate("ABCDE", start=1)]
        deps = [
            _dep("A", "B"), _dep("B", "A"),
            _dep("C", "D"), _dep("D", "C"),
            _dep("E", "A"),
        ]

        with caplog.at_level(logging.WARNING):
            result = sequence_skills(skills, deps)

        order = _ids(result.sequenced_skills)
        assert sorted(order) == list("ABCDE")
        assert result.circular_dependency_path == ["A", "B", "A"]
        # C and D stay blocked by the unreported cycle
        assert order[-2:] == ["C", "D"]
        assert "Topological sort incomplete" in caplog.text

    def test_detect_cycle_returns_closed_path(self):
        graph = {"a": ["c"], "b": ["a"], "c": ["b"]}
        assert detect_cycle(graph) == ["a", "c", "b", "a"]

    def test_detect_cycle_on_dag(self):
        graph = {"a": [], "b": ["a"], "c": ["a", "b"]}
        assert detect_cycle(graph) is None

    def test_prune_only_removes_edges_inside_cycle(self):
        deps = [_dep("a", "b"), _dep("b", "a"), _dep("c", "a")]
        kept = prune_cycle_edges(deps, ["a", "b", "a"])
        assert [(d.skill_id, d.depends_on_id) for d in kept] == [("c", "a")]


# =========================================================================
# Phases
# =========================================================================


class TestPhaseGrouping:
    def test_groups_follow_canonical_phase_order(self):
        skills = [
            _skill("dl", "deep_learning", hours=20, order=3),
            _skill("py", "foundation", hours=8, order=1),
            _skill("ml", "core_ml", hours=15, order=2),
            _skill("math", "foundation", hours=12, order=4),
        ]
        result = sequence_skills(skills, [_dep("dl", "ml")])

        phases = [g.phase for g in result.phase_groups]
        assert phases == ["foundation", "core_ml", "deep_learning"]

        foundation = result.phase_groups[0]
        assert _ids(foundation.skills) == ["py", "math"]
        assert foundation.total_hours == 20
        assert foundation.sequence_start == 1
        assert result.phase_groups[1].sequence_start == 3
        assert result.phase_groups[2].sequence_start == 4

    def test_empty_phases_are_omitted(self):
        groups = group_into_phases([_skill("dl", "deep_learning", order=1)])
        assert [g.phase for g in groups] == ["deep_learning"]

    def test_boundary_violation_is_logged_not_fixed(self, caplog):
        skills = [
            _skill("basic", "foundation", order=1),
            _skill("advanced", "deep_learning", order=2),
        ]
        deps = [_dep("basic", "advanced")]
        graph = build_dependency_graph(["basic", "advanced"], deps)

        with caplog.at_level(logging.WARNING):
            result = sequence_skills(skills, deps)
            violations = verify_phase_boundaries(result.sequenced_skills, graph)

        assert violations == [("basic", "advanced")]
        assert _ids(result.sequenced_skills) == ["advanced", "basic"]
        assert "Phase boundary violation" in caplog.text


# =========================================================================
# Graph helpers
# =========================================================================


class TestGraphHelpers:
    def test_prerequisite_closure(self):
        graph = {"c": ["b"], "b": ["a"], "d": ["a"]}
        assert prerequisite_closure("c", graph) == {"a", "b"}
        assert prerequisite_closure("a", graph) == set()

    def test_prerequisite_closure_on_digraph_and_cycle(self):
        G = prerequisite_digraph({"c": ["b"], "b": ["a"], "d": ["a"]})
        assert prerequisite_closure("c", G) == {"a", "b"}
        assert prerequisite_closure("unknown", G) == set()
        assert prerequisite_closure("a", {"a": ["b"], "b": ["a"]}) == {"b"}

    def test_validate_dag(self):
        assert validate_dag([_dep("b", "a"), _dep("c", "b")]) is True
        assert validate_dag([_dep("b", "a"), _dep("a", "b")]) is False

    def test_compute_metrics(self):
        metrics = compute_metrics([_dep("b", "a"), _dep("c", "b")], n_skills=4)
        assert metrics["total_skills"] == 4
        assert metrics["total_edges"] == 2
        assert metrics["max_depth"] == 2
        assert metrics["isolated_skills_count"] == 1
        assert metrics["avg_out_degree"] == pytest.approx(0.6667)
        assert metrics["is_dag"] is True
