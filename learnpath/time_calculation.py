"""
Learning-time estimation for roadmap modules.

Formula::

    resource time = sum(positive resource minutes) / 60
                    (or skill.estimated_hours when no resource has a duration)
    practice time = resource time * practice_time_ratio
    module time   = resource time + practice time
    buffer        = sum(module time of non-skipped modules) * buffer_percentage
    total         = sum(module time) + buffer, rounded half-up to an hour

Everything here is pure: the same modules and config always produce the
same result, so it is safe to recompute on every skip toggle.
"""

import json
import logging
import os
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional

from learnpath.models import (
    ModuleTime,
    ModuleTimeData,
    ModuleTimeInput,
    Resource,
    Skill,
    TimeCalculationConfig,
    TimeCalculationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_PRACTICE_TIME_RATIO = 0.5
DEFAULT_BUFFER_PERCENTAGE = 0.1


# =========================================================================
# Helpers
# =========================================================================


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves up, on the decimal repr of *value*."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_resource_time(
    skill: Skill,
    resources: Optional[Iterable[Resource]] = None,
) -> float:
    """Hours of resource material for *skill*.

    Sums positive ``duration_minutes``; if none is positive the curated
    ``skill.estimated_hours`` is used instead, never a blend of both.
    """
    total_minutes = sum(
        r.duration_minutes
        for r in (resources or ())
        if r.duration_minutes is not None and r.duration_minutes > 0
    )
    if total_minutes > 0:
        return total_minutes / 60
    return skill.estimated_hours


# =========================================================================
# Public API
# =========================================================================


def calculate_module_time(
    skill: Skill,
    resources: Optional[Iterable[Resource]] = None,
    practice_ratio: float = DEFAULT_PRACTICE_TIME_RATIO,
) -> ModuleTime:
    """Time for a single module."""
    resource_time = calculate_resource_time(skill, resources)
    practice_time = resource_time * practice_ratio
    return ModuleTime(
        resource_time_hours=resource_time,
        practice_time_hours=practice_time,
        total_time_hours=resource_time + practice_time,
    )


def calculate_roadmap_time(
    modules: Iterable[ModuleTimeInput],
    config: Optional[TimeCalculationConfig] = None,
) -> TimeCalculationResult:
    """Total learning time for a roadmap.

    ``module_breakdown`` lists every module, skipped or not; the aggregate
    sums only count modules that are not skipped.
    """
    config = config or TimeCalculationConfig()
    modules = list(modules)

    breakdown: List[ModuleTimeData] = []
    total_resource = 0.0
    total_practice = 0.0
    total_module = 0.0

    for module in modules:
        figures = calculate_module_time(
            module.skill, module.resources, config.practice_time_ratio
        )
        breakdown.append(ModuleTimeData(
            module_id=module.id,
            skill_id=module.skill_id,
            resource_time_hours=figures.resource_time_hours,
            practice_time_hours=figures.practice_time_hours,
            module_time_hours=figures.total_time_hours,
            is_skipped=module.is_skipped,
        ))
        if not module.is_skipped:
            total_resource += figures.resource_time_hours
            total_practice += figures.practice_time_hours
            total_module += figures.total_time_hours

    buffer_hours = total_module * config.buffer_percentage
    total_estimated = total_module + buffer_hours
    rounded = round_half_up(total_estimated)

    logger.debug(
        "Roadmap time calculation completed: modules=%d skipped=%d "
        "module_hours=%.2f buffer=%.2f total=%.2f rounded=%d",
        len(modules), sum(1 for m in modules if m.is_skipped),
        total_module, buffer_hours, total_estimated, rounded,
    )

    return TimeCalculationResult(
        total_resource_time_hours=total_resource,
        total_practice_time_hours=total_practice,
        total_module_time_hours=total_module,
        buffer_hours=buffer_hours,
        total_estimated_hours=total_estimated,
        rounded_total_hours=rounded,
        module_breakdown=breakdown,
    )


# =========================================================================
# Config files
# =========================================================================


def load_time_config(path: str) -> TimeCalculationConfig:
    """Read a JSON time config; unknown keys are ignored."""
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    config = TimeCalculationConfig.model_validate(data)
    logger.info(
        "Time config loaded from %s (practice=%.2f, buffer=%.2f).",
        path, config.practice_time_ratio, config.buffer_percentage,
    )
    return config


def save_time_config(config: TimeCalculationConfig, path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config.model_dump(), fh, indent=2)
    logger.info("Time config saved → %s", path)
