"""Pipeline business rules: next-action urgency, stage suggestions, health."""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from bizops.stages import Progression, get_progression

RECOMMENDED_ACTIONS = {
    "Identified": "Research company and role, find common connections",
    "Warm Lead": "Send personalized outreach message or request introduction",
    "Active Discussion": "Schedule follow-up meeting or call",
    "Partnership Pending": "Finalize partnership terms and agreement",
    "Strategic Partner": "Plan regular check-ins and collaboration opportunities",
}
DEFAULT_RECOMMENDATION = "Define next action step"


def _as_date(value: date | str | None) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def days_until_next_action(next_action_date: date | str | None, today: date | None = None) -> int | None:
    action = _as_date(next_action_date)
    if action is None:
        return None
    return (action - (today or date.today())).days


def is_overdue(next_action_date: date | str | None, today: date | None = None) -> bool:
    days = days_until_next_action(next_action_date, today)
    return days is not None and days < 0


def urgency_level(next_action_date: date | str | None, today: date | None = None) -> str:
    days = days_until_next_action(next_action_date, today)
    if days is None:
        return "low"
    if days < 0:
        return "overdue"
    if days <= 1:
        return "high"
    if days <= 3:
        return "medium"
    return "low"


def recommended_next_action(stage: str) -> str:
    return RECOMMENDED_ACTIONS.get(stage, DEFAULT_RECOMMENDATION)


def next_stage(progression: Progression, stage: str) -> str | None:
    """Stage following *stage*, or None at the end / for unknown stages."""
    idx = progression.index(stage)
    if idx is None or idx == len(progression.stages) - 1:
        return None
    return progression.stages[idx + 1]


def pipeline_health(items: Iterable[Mapping[str, Any]], today: date | None = None) -> dict[str, int]:
    """Score a pipeline 0-100: overdue items cost up to 40, items without a date up to 30."""
    items = list(items)
    total = len(items)
    dates = [item.get("next_action_date") for item in items]
    overdue = sum(1 for d in dates if is_overdue(d, today))
    actionable_today = sum(1 for d in dates if days_until_next_action(d, today) == 0)
    no_next_action = sum(1 for d in dates if not d)

    score = 100.0
    if total:
        score -= overdue / total * 40
        score -= no_next_action / total * 30
    score = max(0.0, min(100.0, score))

    return {
        "score": int(score + 0.5),
        "overdue": overdue,
        "actionable_today": actionable_today,
        "no_next_action": no_next_action,
    }


def validate_pipeline_item(data: Mapping[str, Any], today: date | None = None) -> list[str]:
    """Return user-facing validation errors for a new or edited pipeline item."""
    errors: list[str] = []
    if not data.get("contact_id"):
        errors.append("Contact is required")

    stage = data.get("pipeline_stage")
    if not stage:
        errors.append("Pipeline stage is required")
    else:
        try:
            progression = get_progression(data.get("pipeline") or "")
        except ValueError as exc:
            errors.append(str(exc))
        else:
            if progression.index(stage) is None:
                errors.append(f"Unknown stage {stage!r} for pipeline {progression.name!r}")

    try:
        days = days_until_next_action(data.get("next_action_date"), today)
    except ValueError:
        errors.append("Next action date is not a valid date")
    else:
        if days is not None and days < 0:
            errors.append("Next action date should be today or in the future")
    return errors
