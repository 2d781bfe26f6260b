"""
Gap analysis: which of a target role's required skills the learner still
has to learn, ordered so prerequisites come first.

A skill is *satisfied* when the learner knows it directly, or knows any
skill that transitively depends on it (knowing C where A→B→C implies A and
B). The pure ``analyze_gap`` works on in-memory snapshots; ``GapAnalyzer``
wires it to the skill and profile repositories.
"""

import abc
import logging
from typing import Iterable, List, Optional, Protocol, Sequence, Set

from learnpath.dag_validator import (
    build_prerequisite_map,
    prerequisite_closure,
    prerequisite_digraph,
)
from learnpath.models import GapAnalysisResult, Skill, SkillDependency
from learnpath.sequencing import sequence_skills
from learnpath.utils import timed

logger = logging.getLogger(__name__)

GAP_ANALYSIS_BUDGET_MS = 500


# =========================================================================
# Collaborator contracts
# =========================================================================


class SkillRepository(Protocol):
    def get_non_optional_skills(self) -> List[Skill]: ...

    def get_skills_by_slugs(self, slugs: Iterable[str]) -> List[Skill]: ...

    def get_dependencies(
        self, skill_ids: Optional[Iterable[str]] = None
    ) -> List[SkillDependency]: ...


class ProfileRepository(Protocol):
    def get_known_skill_slugs(self, user_id: str) -> List[str]: ...


# =========================================================================
# Role → required skills
# =========================================================================


class RequiredSkillsStrategy(abc.ABC):
    """Maps a target role to the skills it requires."""

    @abc.abstractmethod
    def required_skills(
        self, target_role: str, skills: SkillRepository
    ) -> List[Skill]:
        """Return the role's required skills; ``[]`` for an unknown role."""


class AllNonOptionalSkills(RequiredSkillsStrategy):
    """Every non-optional catalog skill is required, whatever the role."""

    def required_skills(
        self, target_role: str, skills: SkillRepository
    ) -> List[Skill]:
        if not target_role or not target_role.strip():
            return []
        required = sorted(
            skills.get_non_optional_skills(), key=lambda s: s.sequence_order
        )
        logger.debug(
            "Loaded %d required skill(s) for target role %r.",
            len(required), target_role,
        )
        return required


# =========================================================================
# Pure analysis
# =========================================================================


def satisfied_skill_ids(
    known_skill_ids: Iterable[str],
    dependencies: Iterable[SkillDependency],
) -> Set[str]:
    """Known skills plus the union of their prerequisite closures."""
    known = set(known_skill_ids)
    prereq_graph = prerequisite_digraph(build_prerequisite_map(dependencies))
    satisfied = set(known)
    for skill_id in known:
        satisfied |= prerequisite_closure(skill_id, prereq_graph)
    return satisfied


def analyze_gap(
    required_skills: Sequence[Skill],
    known_skill_ids: Iterable[str],
    dependencies: Iterable[SkillDependency],
) -> GapAnalysisResult:
    """Compute missing skills, their prerequisite order, and total hours.

    ``missing_skills`` keeps the order of *required_skills*;
    ``ordered_skills`` is the same set run through the sequencer. Empty input
    yields an empty, zero-hour result.
    """
    required = list(required_skills)
    if not required:
        return GapAnalysisResult()

    dependencies = list(dependencies)
    satisfied = satisfied_skill_ids(known_skill_ids, dependencies)
    missing = [s for s in required if s.id not in satisfied]
    if not missing:
        return GapAnalysisResult()

    by_id = {s.id: s for s in missing}
    sequencing = sequence_skills(missing, dependencies)
    ordered = [by_id[s.id] for s in sequencing.sequenced_skills]

    return GapAnalysisResult(
        missing_skills=missing,
        ordered_skills=ordered,
        total_hours=sum(s.estimated_hours for s in ordered),
    )


# =========================================================================
# Service
# =========================================================================


class GapAnalyzer:
    """Loads a learner's snapshot from the repositories and analyses it."""

    def __init__(
        self,
        skills: SkillRepository,
        profiles: ProfileRepository,
        strategy: Optional[RequiredSkillsStrategy] = None,
    ) -> None:
        self.skills = skills
        self.profiles = profiles
        self.strategy = strategy or AllNonOptionalSkills()

    def analyze_gap(self, user_id: str, target_role: str) -> GapAnalysisResult:
        with timed("Gap analysis", budget_ms=GAP_ANALYSIS_BUDGET_MS, log=logger):
            required = self.strategy.required_skills(target_role, self.skills)
            if not required:
                logger.warning(
                    "No required skills found for target role %r.", target_role
                )
                return GapAnalysisResult()

            slugs = self.profiles.get_known_skill_slugs(user_id)
            known_ids = {s.id for s in self.skills.get_skills_by_slugs(slugs)}
            dependencies = self.skills.get_dependencies()
            result = analyze_gap(required, known_ids, dependencies)

        logger.info(
            "Gap analysis completed for user=%s role=%s: %d missing skill(s), "
            "%.1f hour(s).",
            user_id, target_role, len(result.missing_skills), result.total_hours,
        )
        return result
