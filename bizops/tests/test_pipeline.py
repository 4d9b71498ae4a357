"""Tests for pipeline urgency, recommendations, health and validation."""
from __future__ import annotations

from datetime import date, datetime

import pytest

from bizops.pipeline import (
    DEFAULT_RECOMMENDATION,
    days_until_next_action,
    is_overdue,
    next_stage,
    pipeline_health,
    recommended_next_action,
    urgency_level,
    validate_pipeline_item,
)
from bizops.stages import get_progression

TODAY = date(2026, 3, 10)


class TestDates:
    def test_days_until(self):
        assert days_until_next_action(date(2026, 3, 12), TODAY) == 2
        assert days_until_next_action("2026-03-09", TODAY) == -1
        assert days_until_next_action(datetime(2026, 3, 10, 18, 30), TODAY) == 0
        assert days_until_next_action(None, TODAY) is None
        assert days_until_next_action("", TODAY) is None

    def test_is_overdue(self):
        assert is_overdue(date(2026, 3, 9), TODAY)
        assert not is_overdue(TODAY, TODAY)
        assert not is_overdue(None, TODAY)

    @pytest.mark.parametrize("offset, expected", [
        (-5, "overdue"), (-1, "overdue"), (0, "high"), (1, "high"),
        (2, "medium"), (3, "medium"), (4, "low"), (30, "low"),
    ])
    def test_urgency(self, offset, expected):
        action = date.fromordinal(TODAY.toordinal() + offset)
        assert urgency_level(action, TODAY) == expected

    def test_urgency_without_date(self):
        assert urgency_level(None, TODAY) == "low"


class TestStages:
    def test_recommended_action(self):
        assert recommended_next_action("Warm Lead").startswith("Send personalized outreach")
        assert recommended_next_action("Initial Outreach") == DEFAULT_RECOMMENDATION

    def test_next_stage(self):
        progression = get_progression("cto_club")
        assert next_stage(progression, "Identified") == "Warm Lead"
        assert next_stage(progression, "Strategic Partner") is None
        assert next_stage(progression, "Nope") is None


class TestHealth:
    def test_empty_pipeline_is_healthy(self):
        assert pipeline_health([], TODAY) == {
            "score": 100, "overdue": 0, "actionable_today": 0, "no_next_action": 0,
        }

    def test_mixed_pipeline(self):
        items = [
            {"next_action_date": date(2026, 3, 1)},
            {"next_action_date": None},
            {"next_action_date": TODAY},
            {"next_action_date": date(2026, 4, 1)},
        ]
        health = pipeline_health(items, TODAY)
        # 100 - 1/4 * 40 - 1/4 * 30 = 82.5
        assert health == {"score": 83, "overdue": 1, "actionable_today": 1, "no_next_action": 1}

    def test_all_overdue(self):
        items = [{"next_action_date": date(2026, 1, 1)}] * 3
        assert pipeline_health(items, TODAY)["score"] == 60

    def test_nothing_scheduled(self):
        items = [{"next_action_date": None}, {}]
        assert pipeline_health(items, TODAY)["score"] == 70


class TestValidation:
    def _valid(self, **overrides):
        data = {
            "contact_id": 1, "pipeline": "relationship",
            "pipeline_stage": "Initial Outreach", "next_action_date": TODAY,
        }
        data.update(overrides)
        return data

    def test_valid(self):
        assert validate_pipeline_item(self._valid(), TODAY) == []
        assert validate_pipeline_item(self._valid(next_action_date=None), TODAY) == []

    def test_required_fields(self):
        errors = validate_pipeline_item(self._valid(contact_id=None, pipeline_stage=""), TODAY)
        assert "Contact is required" in errors
        assert "Pipeline stage is required" in errors

    def test_unknown_pipeline(self):
        errors = validate_pipeline_item(self._valid(pipeline="sales"), TODAY)
        assert any("Unknown pipeline" in e for e in errors)

    def test_stage_from_other_vocabulary(self):
        errors = validate_pipeline_item(self._valid(pipeline_stage="Warm Lead"), TODAY)
        assert errors == ["Unknown stage 'Warm Lead' for pipeline 'relationship'"]

    def test_bad_date(self):
        errors = validate_pipeline_item(self._valid(next_action_date="not-a-date"), TODAY)
        assert errors == ["Next action date is not a valid date"]

    def test_past_date(self):
        errors = validate_pipeline_item(self._valid(next_action_date="2026-03-09"), TODAY)
        assert errors == ["Next action date should be today or in the future"]
