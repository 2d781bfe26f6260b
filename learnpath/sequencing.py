"""
Dependency sequencer: orders an arbitrary skill subset so prerequisites
come first, tolerating cycles, and buckets the result into phases.

Pipeline:
1. Build the adjacency map restricted to the subset.
2. Detect the first cycle (if any) and prune the edges inside it.
3. Kahn's algorithm with a priority-ordered ready list.
4. Group into canonical phases.
5. Verify phase boundaries (diagnostic only).
"""

import heapq
import itertools
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from learnpath.dag_validator import (
    DependencyGraph,
    build_dependency_graph,
    detect_cycle,
    prune_cycle_edges,
)
from learnpath.models import (
    PHASE_ORDER,
    PhaseGroup,
    SequencingResult,
    Skill,
    SkillDependency,
    phase_index,
)
from learnpath.utils import timed

logger = logging.getLogger(__name__)

OPTIONAL_PENALTY = -100
PHASE_WEIGHT = 10


# =========================================================================
# Priority
# =========================================================================


def calculate_priority_score(skill: Skill) -> int:
    """Higher score = learned earlier among skills that are ready.

    Lower curator ``sequence_order`` wins, required beats optional, and
    earlier phases get a bonus of ``PHASE_WEIGHT`` per phase.
    """
    base_score = 1000 - skill.sequence_order
    optional_penalty = OPTIONAL_PENALTY if skill.is_optional else 0
    phase_score = (len(PHASE_ORDER) - phase_index(skill.phase)) * PHASE_WEIGHT
    return base_score + optional_penalty + phase_score


# =========================================================================
# Topological sort
# =========================================================================


def topological_sort_with_priority(
    skills: List[Skill],
    graph: DependencyGraph,
) -> List[Skill]:
    """Kahn's algorithm; among ready skills the highest priority goes next.

    Equal scores resolve by the order skills entered the ready list. Skills
    still blocked at the end (an unresolved cycle) are appended in input
    order so that nothing is dropped. Returned skills carry their 1-based
    position in ``sequence_order``.
    """
    skill_map: Dict[str, Skill] = {s.id: s for s in skills}
    in_degree: Dict[str, int] = {s.id: 0 for s in skills}
    dependents: Dict[str, List[str]] = defaultdict(list)

    for skill in skills:
        for prereq_id in graph.get(skill.id, ()):
            if prereq_id in skill_map:
                in_degree[skill.id] += 1
                dependents[prereq_id].append(skill.id)

    counter = itertools.count()
    ready: List[Tuple[int, int, str]] = []
    for skill in skills:
        if in_degree[skill.id] == 0:
            heapq.heappush(
                ready, (-calculate_priority_score(skill), next(counter), skill.id)
            )

    ordered: List[Skill] = []
    emitted = set()
    while ready:
        _, _, skill_id = heapq.heappop(ready)
        ordered.append(skill_map[skill_id])
        emitted.add(skill_id)

        for dependent_id in dependents.get(skill_id, ()):
            in_degree[dependent_id] -= 1
            if in_degree[dependent_id] == 0:
                dependent = skill_map[dependent_id]
                heapq.heappush(
                    ready,
                    (-calculate_priority_score(dependent), next(counter), dependent_id),
                )

    if len(ordered) != len(skill_map):
        logger.warning(
            "Topological sort incomplete - possible cycle in dependency graph "
            "(processed=%d, total=%d); appending the rest in input order.",
            len(ordered), len(skill_map),
        )
        ordered.extend(s for s in skills if s.id not in emitted)

    return [
        skill.model_copy(update={"sequence_order": position})
        for position, skill in enumerate(ordered, start=1)
    ]


# =========================================================================
# Phase grouping & verification
# =========================================================================


def group_into_phases(sequenced_skills: List[Skill]) -> List[PhaseGroup]:
    """Bucket skills by phase in ``PHASE_ORDER``, keeping their order."""
    buckets: Dict[str, List[Skill]] = defaultdict(list)
    for skill in sequenced_skills:
        buckets[skill.phase].append(skill)

    groups: List[PhaseGroup] = []
    sequence_start = 1
    for phase in PHASE_ORDER:
        members = buckets.get(phase)
        if not members:
            continue
        members.sort(key=lambda s: s.sequence_order)
        groups.append(PhaseGroup(
            phase=phase,
            skills=members,
            total_hours=sum(s.estimated_hours for s in members),
            sequence_start=sequence_start,
        ))
        sequence_start += len(members)
    return groups


def verify_phase_boundaries(
    sequenced_skills: List[Skill],
    graph: DependencyGraph,
) -> List[Tuple[str, str]]:
    """Log every prerequisite that sits in a later phase than its dependent.

    Returns the offending ``(skill_id, prerequisite_id)`` pairs; never
    raises and never changes the sequence.
    """
    by_id = {s.id: s for s in sequenced_skills}
    violations: List[Tuple[str, str]] = []
    for skill in sequenced_skills:
        skill_phase = phase_index(skill.phase)
        for prereq_id in graph.get(skill.id, ()):
            prereq = by_id.get(prereq_id)
            if prereq is None:
                continue
            if phase_index(prereq.phase) > skill_phase:
                logger.warning(
                    "Phase boundary violation detected - prerequisite in later "
                    "phase: %s (%s) requires %s (%s).",
                    skill.name, skill.phase, prereq.name, prereq.phase,
                )
                violations.append((skill.id, prereq_id))
    return violations


# =========================================================================
# Entry point
# =========================================================================


def sequence_skills(
    skills: Iterable[Skill],
    dependencies: Iterable[SkillDependency],
) -> SequencingResult:
    """Sequence *skills* respecting prerequisites and phase boundaries.

    A circular dependency is reported through ``has_circular_dependency``
    and ``circular_dependency_path``; it never raises.
    """
    skills = list(skills)
    dependencies = list(dependencies)
    if not skills:
        return SequencingResult()

    with timed("Skill sequencing", log=logger):
        skill_map = {s.id: s for s in skills}
        graph = build_dependency_graph(skill_map, dependencies)

        cycle_path = None
        cycle = detect_cycle(graph)
        if cycle:
            cycle_path = [
                skill_map[sid].name if sid in skill_map else sid for sid in cycle
            ]
            logger.error(
                "Circular dependency detected in skill prerequisites: %s",
                " -> ".join(cycle_path),
            )
            graph = build_dependency_graph(
                skill_map, prune_cycle_edges(dependencies, cycle)
            )

        sequenced = topological_sort_with_priority(skills, graph)
        phase_groups = group_into_phases(sequenced)
        verify_phase_boundaries(sequenced, graph)

    logger.info(
        "Skill sequencing completed: %d skill(s), %d phase(s), cycle=%s.",
        len(sequenced), len(phase_groups), cycle_path is not None,
    )
    return SequencingResult(
        sequenced_skills=sequenced,
        phase_groups=phase_groups,
        has_circular_dependency=cycle_path is not None,
        circular_dependency_path=cycle_path,
    )
