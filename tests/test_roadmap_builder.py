"""
pytest suite for roadmap assembly: generation, skip recalculation,
overview, and the CLI.

Resource hours in the sample catalog: python-ml 6h, math-foundations 13h,
ml-algorithms 4h, deep-learning-fundamentals 80h; data-preprocessing (6h)
and model-deployment (10h) fall back to their estimated hours.
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from learnpath import db
from learnpath.catalog import load_catalog
from learnpath.db import RecordNotFoundError
from learnpath.models import OnboardingState, ProgressUpdate, TimeCalculationConfig
from learnpath.progress import update_module_progress
from learnpath.roadmap_builder import (
    OnboardingIncompleteError,
    generate_roadmap,
    get_roadmap_overview,
    main,
    projected_completion,
    recalculate_roadmap_time,
    roadmap_title,
    update_module_skip_status,
)

CATALOG_PATH = os.path.join(os.path.dirname(__file__), "sample_catalog.json")
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture()
def tmp_db(tmp_path):
    """Return a DB path inside a temporary directory."""
    return str(tmp_path / "test_roadmap.db")


@pytest.fixture()
def conn(tmp_db):
    with open(CATALOG_PATH, "r", encoding="utf-8") as fh:
        load_catalog(json.load(fh), db_path=tmp_db)
    c = db.get_connection(tmp_db)
    yield c
    c.close()


def _onboard(conn, user_id="u1", known=("python-ml",), current_role="backend_developer",
             weekly_hours=10, complete=True):
    db.save_onboarding(conn, OnboardingState(
        user_id=user_id,
        current_role=current_role,
        target_role="ml_engineer",
        weekly_hours=weekly_hours,
        existing_skills=list(known),
        is_complete=complete,
    ))


def _module_for(conn, roadmap_id, skill_id):
    return next(m for m in db.get_modules(conn, roadmap_id) if m.skill_id == skill_id)


# =========================================================================
# Generation
# =========================================================================


class TestGenerateRoadmap:
    def test_requires_onboarding(self, conn):
        with pytest.raises(OnboardingIncompleteError) as exc_info:
            generate_roadmap(conn, "ghost")
        assert exc_info.value.user_id == "ghost"

    def test_requires_completed_onboarding(self, conn):
        _onboard(conn, complete=False)
        with pytest.raises(OnboardingIncompleteError):
            generate_roadmap(conn, "u1")
        assert db.get_active_roadmap(conn, "u1") is None

    def test_generates_modules_in_prerequisite_order(self, conn):
        _onboard(conn)
        result = generate_roadmap(conn, "u1", now=NOW)

        modules = db.get_modules(conn, result.roadmap_id)
        assert [m.skill_id for m in modules] == [
            "math-foundations",
            "data-preprocessing",
            "ml-algorithms",
            "deep-learning-fundamentals",
            "model-deployment",
        ]
        assert [m.sequence_order for m in modules] == [1, 2, 3, 4, 5]
        assert [m.is_locked for m in modules] == [False, True, True, True, True]
        assert not any(m.is_skipped for m in modules)

        assert result.module_count == 5
        assert result.phase_count == 3
        assert result.has_circular_dependency is False

    def test_sequences_missing_skills_once(self, conn, monkeypatch):
        from learnpath import roadmap_builder, sequencing

        calls = []

        def recording_sequence_skills(skills, dependencies):
            calls.append([s.id for s in skills])
            return sequencing.sequence_skills(skills, dependencies)

        monkeypatch.setattr(
            roadmap_builder, "sequence_skills", recording_sequence_skills
        )
        _onboard(conn)
        generate_roadmap(conn, "u1", now=NOW)

        assert len(calls) == 1
        assert sorted(calls[0]) == sorted([
            "math-foundations",
            "data-preprocessing",
            "ml-algorithms",
            "deep-learning-fundamentals",
            "model-deployment",
        ])

    def test_total_hours_and_projection(self, conn):
        _onboard(conn)
        result = generate_roadmap(conn, "u1", now=NOW)

        # (19.5 + 9 + 6 + 120 + 15) * 1.1 = 186.45
        assert result.total_hours == 186
        assert result.projected_completion == NOW + timedelta(weeks=19)

        roadmap = db.get_roadmap(conn, result.roadmap_id)
        assert roadmap.total_estimated_hours == 186
        assert roadmap.title == "From backend_developer to ml_engineer"
        assert "186 hours" in roadmap.description

    def test_no_known_skills(self, conn):
        _onboard(conn, known=(), current_role=None)
        result = generate_roadmap(conn, "u1", now=NOW)

        roadmap = db.get_roadmap(conn, result.roadmap_id)
        assert result.module_count == 6
        assert result.total_hours == 196
        assert roadmap.title == "Path to ml_engineer"
        assert roadmap.source_role == "beginner"

    def test_is_idempotent(self, conn):
        _onboard(conn)
        first = generate_roadmap(conn, "u1", now=NOW)
        second = generate_roadmap(conn, "u1", now=NOW)

        assert second.roadmap_id == first.roadmap_id
        assert second.module_count == first.module_count
        count = conn.execute(
            "SELECT COUNT(*) FROM Roadmaps WHERE user_id = ?", ("u1",)
        ).fetchone()[0]
        assert count == 1

    def test_everything_known_gives_empty_roadmap(self, conn):
        _onboard(conn, known=("model-deployment",))
        result = generate_roadmap(conn, "u1", now=NOW)

        assert result.module_count == 0
        assert result.total_hours == 0
        assert result.projected_completion == NOW

    def test_custom_config(self, conn):
        _onboard(conn)
        config = TimeCalculationConfig(practice_time_ratio=0.5, buffer_percentage=0)
        result = generate_roadmap(conn, "u1", config=config, now=NOW)
        assert result.total_hours == 170


# =========================================================================
# Skipping & recalculation
# =========================================================================


class TestSkipAndRecalculate:
    def test_skip_and_unskip(self, conn):
        _onboard(conn)
        roadmap_id = generate_roadmap(conn, "u1", now=NOW).roadmap_id
        deep = _module_for(conn, roadmap_id, "deep-learning-fundamentals")

        # (169.5 - 120) * 1.1 = 54.45
        assert update_module_skip_status(conn, roadmap_id, deep.id, True) == 54
        assert db.get_roadmap(conn, roadmap_id).total_estimated_hours == 54
        assert db.get_module(conn, roadmap_id, deep.id).is_skipped is True

        assert update_module_skip_status(conn, roadmap_id, deep.id, False) == 186

    def test_skip_unknown_module(self, conn):
        _onboard(conn)
        roadmap_id = generate_roadmap(conn, "u1", now=NOW).roadmap_id

        with pytest.raises(RecordNotFoundError):
            update_module_skip_status(conn, roadmap_id, "missing", True)
        assert db.get_roadmap(conn, roadmap_id).total_estimated_hours == 186

    def test_recalculate_with_new_config(self, conn):
        _onboard(conn)
        roadmap_id = generate_roadmap(conn, "u1", now=NOW).roadmap_id

        config = TimeCalculationConfig(practice_time_ratio=0.5, buffer_percentage=0)
        assert recalculate_roadmap_time(conn, roadmap_id, config) == 170
        assert db.get_roadmap(conn, roadmap_id).total_estimated_hours == 170

    def test_recalculate_unknown_roadmap(self, conn):
        with pytest.raises(RecordNotFoundError):
            recalculate_roadmap_time(conn, "missing")


# =========================================================================
# Overview
# =========================================================================


class TestOverview:
    def test_progress_and_timeline(self, conn):
        _onboard(conn)
        roadmap_id = generate_roadmap(conn, "u1", now=NOW).roadmap_id
        modules = db.get_modules(conn, roadmap_id)

        update_module_progress(conn, ProgressUpdate(
            user_id="u1", roadmap_id=roadmap_id, module_id=modules[0].id,
            status="completed",
        ), now=NOW)
        update_module_progress(conn, ProgressUpdate(
            user_id="u1", roadmap_id=roadmap_id, module_id=modules[1].id,
            status="in_progress",
        ), now=NOW)
        update_module_skip_status(conn, roadmap_id, modules[4].id, True)

        overview = get_roadmap_overview(conn, "u1", now=NOW)

        assert overview.progress.total_modules == 5
        assert overview.progress.completed_modules == 1
        assert overview.progress.in_progress_modules == 1
        assert overview.progress.skipped_modules == 1
        assert overview.progress.not_started_modules == 2
        assert overview.progress.completion_percentage == 20

        assert [p.phase for p in overview.phases] == [
            "foundation", "core_ml", "deep_learning",
        ]
        foundation = overview.phases[0]
        assert foundation.label == "Foundation"
        assert foundation.total_modules == 2
        assert foundation.completed_modules == 1
        assert foundation.completed_hours == 12
        assert foundation.total_hours == 18

        # skipping model-deployment: (169.5 - 15) * 1.1 = 169.95
        assert overview.timeline.total_hours == 170
        assert overview.timeline.completed_hours == 12
        assert overview.timeline.remaining_hours == 158
        assert overview.timeline.weekly_hours == 10
        assert overview.timeline.projected_completion == NOW + timedelta(weeks=16)

    def test_no_roadmap(self, conn):
        with pytest.raises(RecordNotFoundError):
            get_roadmap_overview(conn, "u1")


# =========================================================================
# Helpers & CLI
# =========================================================================


class TestHelpers:
    def test_projection_defaults_weekly_hours(self):
        assert projected_completion(25, None, NOW) == NOW + timedelta(weeks=3)
        assert projected_completion(25, 0, NOW) == NOW + timedelta(weeks=3)
        assert projected_completion(20, 5, NOW) == NOW + timedelta(weeks=4)

    def test_titles(self):
        assert roadmap_title("analyst", "ml_engineer") == "From analyst to ml_engineer"
        assert roadmap_title(None, "ml_engineer") == "Path to ml_engineer"

    def test_cli_onboard_generate_show(self, tmp_db, capsys):
        with open(CATALOG_PATH, "r", encoding="utf-8") as fh:
            load_catalog(json.load(fh), db_path=tmp_db)

        main(["--db", tmp_db, "onboard", "--user", "u9",
              "--target-role", "ml_engineer", "--known", "python-ml"])
        main(["--db", tmp_db, "generate", "--user", "u9"])
        generated = json.loads(capsys.readouterr().out)
        assert generated["module_count"] == 5
        assert generated["total_hours"] == 186

        main(["--db", tmp_db, "show", "--user", "u9"])
        overview = json.loads(capsys.readouterr().out)
        assert overview["progress"]["not_started_modules"] == 5

    def test_cli_save_and_apply_config(self, tmp_db, tmp_path):
        path = str(tmp_path / "time.json")
        main(["--save-config", path, "--buffer", "0"])

        with open(CATALOG_PATH, "r", encoding="utf-8") as fh:
            load_catalog(json.load(fh), db_path=tmp_db)
        main(["--db", tmp_db, "onboard", "--user", "u9",
              "--target-role", "ml_engineer", "--known", "python-ml"])
        main(["--db", tmp_db, "--apply-config", path, "generate", "--user", "u9"])

        c = db.get_connection(tmp_db)
        try:
            assert db.get_active_roadmap(c, "u9").total_estimated_hours == 170
        finally:
            c.close()

    def test_cli_missing_roadmap_exits_1(self, tmp_db):
        with pytest.raises(SystemExit) as exc_info:
            main(["--db", tmp_db, "show", "--user", "nobody"])
        assert exc_info.value.code == 1
