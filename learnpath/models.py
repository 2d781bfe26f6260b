"""
Pydantic models for the Personalized Learning Path core.

Catalog: skills, dependency edges, resources.
Roadmap: modules, progress records, roadmap aggregates.
Results: gap analysis, sequencing, time calculation, progress updates.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# =========================================================================
# Literals & phase ordering
# =========================================================================

Phase = Literal["foundation", "core_ml", "deep_learning"]

PHASE_ORDER: List[str] = ["foundation", "core_ml", "deep_learning"]

PHASE_LABELS: Dict[str, str] = {
    "foundation": "Foundation",
    "core_ml": "Core ML",
    "deep_learning": "Deep Learning",
}

ProgressStatus = Literal["not_started", "in_progress", "completed", "skipped"]

ResourceType = Literal[
    "video",
    "article",
    "course",
    "book",
    "tutorial",
    "documentation",
    "exercise",
    "project",
]


def phase_index(phase: str) -> int:
    """Position of *phase* in ``PHASE_ORDER`` (``-1`` if unknown)."""
    try:
        return PHASE_ORDER.index(phase)
    except ValueError:
        return -1


# =========================================================================
# Catalog models
# =========================================================================


class Skill(BaseModel):
    """Mirrors a single row of the ``Skills`` table. Read-only to the core."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str
    description: str = ""
    phase: Phase
    estimated_hours: float = Field(gt=0)
    is_optional: bool = False
    sequence_order: int = 0


class SkillDependency(BaseModel):
    """Directed edge: ``skill_id`` requires ``depends_on_id`` first."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    skill_id: str
    depends_on_id: str
    is_hard: bool = True


class Resource(BaseModel):
    """Mirrors a single row of the ``Resources`` table."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    skill_id: str
    title: str = ""
    url: str = ""
    type: ResourceType = "article"
    provider: Optional[str] = None
    duration_minutes: Optional[float] = None
    is_free: bool = True
    quality: float = 0.0


# =========================================================================
# Roadmap & progress models
# =========================================================================


class Roadmap(BaseModel):
    """Mirrors a single row of the ``Roadmaps`` table."""

    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    source_role: str
    target_role: str
    total_estimated_hours: float = 0.0
    completed_hours: float = 0.0
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RoadmapModule(BaseModel):
    """One (roadmap, skill) pair carrying lock/skip state."""

    id: str
    roadmap_id: str
    skill_id: str
    phase: Phase
    sequence_order: int
    is_locked: bool = True
    is_skipped: bool = False


class Progress(BaseModel):
    """One (user, module) progress record."""

    id: Optional[str] = None
    user_id: str
    roadmap_module_id: str
    status: ProgressStatus = "not_started"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent_minutes: int = 0
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None


class OnboardingState(BaseModel):
    """What the learner told us during onboarding."""

    user_id: str
    current_role: Optional[str] = None
    target_role: Optional[str] = None
    weekly_hours: Optional[int] = None
    existing_skills: List[str] = Field(default_factory=list)
    is_complete: bool = False


# =========================================================================
# Gap analysis & sequencing results
# =========================================================================


class GapAnalysisResult(BaseModel):
    """Required skills the learner still has to learn."""

    missing_skills: List[Skill] = Field(default_factory=list)
    ordered_skills: List[Skill] = Field(default_factory=list)
    total_hours: float = 0.0


class PhaseGroup(BaseModel):
    """Sequenced skills that share one curriculum phase."""

    phase: Phase
    skills: List[Skill] = Field(default_factory=list)
    total_hours: float = 0.0
    sequence_start: int = 1


class SequencingResult(BaseModel):
    """Output of ``sequencing.sequence_skills``.

    ``sequenced_skills`` carry their roadmap position in ``sequence_order``
    (1-based), replacing the curator hint they came in with.
    """

    sequenced_skills: List[Skill] = Field(default_factory=list)
    phase_groups: List[PhaseGroup] = Field(default_factory=list)
    has_circular_dependency: bool = False
    circular_dependency_path: Optional[List[str]] = None


# =========================================================================
# Time calculation
# =========================================================================


class TimeCalculationConfig(BaseModel):
    """Tunable ratios for the time estimator (JSON-serialisable)."""

    practice_time_ratio: float = Field(default=0.5, ge=0)
    buffer_percentage: float = Field(default=0.1, ge=0)


class ModuleTimeInput(BaseModel):
    """A roadmap module joined with its skill and resources."""

    id: str
    skill_id: str
    is_skipped: bool = False
    skill: Skill
    resources: Optional[List[Resource]] = None


class ModuleTime(BaseModel):
    """Time figures for a single module."""

    resource_time_hours: float
    practice_time_hours: float
    total_time_hours: float


class ModuleTimeData(BaseModel):
    """One entry of ``TimeCalculationResult.module_breakdown``."""

    module_id: str
    skill_id: str
    resource_time_hours: float
    practice_time_hours: float
    module_time_hours: float
    is_skipped: bool


class TimeCalculationResult(BaseModel):
    """Aggregated roadmap time; sums exclude skipped modules."""

    total_resource_time_hours: float = 0.0
    total_practice_time_hours: float = 0.0
    total_module_time_hours: float = 0.0
    buffer_hours: float = 0.0
    total_estimated_hours: float = 0.0
    rounded_total_hours: int = 0
    module_breakdown: List[ModuleTimeData] = Field(default_factory=list)


# =========================================================================
# Progress updates
# =========================================================================


class ProgressUpdate(BaseModel):
    """A learner's request to move a module to ``status``."""

    user_id: str
    roadmap_id: str
    module_id: str
    status: ProgressStatus
    time_spent_minutes: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)


class ProgressUpdateResult(BaseModel):
    """The stored progress record plus the ids of newly unlocked modules."""

    progress: Progress
    unlocked_modules: List[str] = Field(default_factory=list)


# =========================================================================
# Roadmap assembly
# =========================================================================


class RoadmapGenerationResult(BaseModel):
    """Summary returned by ``roadmap_builder.generate_roadmap``."""

    roadmap_id: str
    total_hours: float
    projected_completion: datetime
    module_count: int
    phase_count: int
    has_circular_dependency: bool = False


class CatalogSummary(BaseModel):
    """Aggregated catalog-load summary that gets serialised to JSON."""

    skills: int = 0
    dependencies: int = 0
    resources: int = 0
    rejected_edges: int = 0
    is_dag: bool = True
    errors: List[str] = Field(default_factory=list)


class PhaseOverview(BaseModel):
    """Per-phase slice of a roadmap overview."""

    phase: Phase
    label: str
    module_ids: List[str] = Field(default_factory=list)
    total_hours: float = 0.0
    completed_hours: float = 0.0
    completed_modules: int = 0
    total_modules: int = 0


class ProgressOverview(BaseModel):
    total_modules: int = 0
    completed_modules: int = 0
    in_progress_modules: int = 0
    skipped_modules: int = 0
    not_started_modules: int = 0
    completion_percentage: int = 0


class TimelineOverview(BaseModel):
    total_hours: float = 0.0
    completed_hours: float = 0.0
    remaining_hours: float = 0.0
    weekly_hours: int
    projected_completion: datetime


class RoadmapOverview(BaseModel):
    """What a dashboard needs to render one learner's active roadmap."""

    roadmap: Roadmap
    phases: List[PhaseOverview] = Field(default_factory=list)
    progress: ProgressOverview
    timeline: TimelineOverview
