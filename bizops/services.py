"""Shared business logic for the BizOps API and MCP server."""
from __future__ import annotations

import json
import logging
from collections import Counter, defaultdict
from collections.abc import Mapping
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from bizops import pipeline as pipeline_rules
from bizops.models import Contact, PipelineItem, Project, StageRule
from bizops.rating import RATING_METRICS, RatingCalculationResult, calculate_project_rating
from bizops.stages import DEFAULT_PROGRESSIONS, Progression, StageRule as Rule, advance_stage, get_progression
from bizops.utils import json_parse, split_csv

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

PROJECT_UPDATABLE_FIELDS = ("name", "description", "priority", "status", "is_collaboration")

CONTACT_FIELDS = (
    "name", "first_name", "last_name", "email", "company", "job_title",
    "contact_type", "linkedin_url", "is_in_cto_club",
)

_PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}
_STATUS_ORDER = {"active": 5, "potential": 4, "on-hold": 3, "completed": 2, "archived": 1}

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def project_summary(proj: Project) -> dict:
    return {
        "id": proj.id, "name": proj.name, "description": proj.description or "",
        "priority": proj.priority, "status": proj.status,
        "is_collaboration": bool(proj.is_collaboration),
        "rating": proj.rating,
        "detailed_ratings": json_parse(proj.detailed_ratings_json, None),
        "created_at": proj.created_at.isoformat() if proj.created_at else None,
    }


def contact_summary(contact: Contact) -> dict:
    return {
        "id": contact.id, "display_name": contact.display_name,
        **{f: getattr(contact, f) for f in CONTACT_FIELDS},
    }


def pipeline_item_summary(item: PipelineItem, today: date | None = None) -> dict:
    progression = DEFAULT_PROGRESSIONS.get(item.pipeline)
    return {
        "id": item.id, "contact_id": item.contact_id,
        "contact_name": item.contact.display_name if item.contact else "Unknown Contact",
        "pipeline": item.pipeline, "pipeline_stage": item.pipeline_stage,
        "next_action_description": item.next_action_description or "",
        "next_action_date": item.next_action_date,
        "notes": item.notes or "",
        "days_until_next_action": pipeline_rules.days_until_next_action(item.next_action_date, today),
        "urgency": pipeline_rules.urgency_level(item.next_action_date, today),
        "recommended_action": pipeline_rules.recommended_next_action(item.pipeline_stage),
        "next_stage": pipeline_rules.next_stage(progression, item.pipeline_stage) if progression else None,
    }


def stage_rule_summary(rule: StageRule) -> dict:
    try:
        stages = get_progression(rule.pipeline).stages
    except ValueError:
        stages = ()
    idx = rule.implied_stage_index
    return {
        "id": rule.id, "pipeline": rule.pipeline, "position": rule.position,
        "keywords": json_parse(rule.keywords_json, []),
        "implied_stage_index": idx,
        "implied_stage": stages[idx] if 0 <= idx < len(stages) else None,
    }


def rating_metrics_info() -> list[dict]:
    return [
        {"key": key, "label": label, "max_weight": max_weight}
        for key, (label, max_weight) in RATING_METRICS.items()
    ]


# ---------------------------------------------------------------------------
# Filtering and sorting
# ---------------------------------------------------------------------------


def filter_and_sort_projects(
    items: list[dict], *, status=None, priority=None, collaboration=None,
    has_rating=None, search=None, sort_by="rating", sort_dir="desc",
) -> list[dict]:
    if status:
        ss = split_csv(status)
        items = [i for i in items if i["status"] in ss]
    if priority:
        ps = split_csv(priority)
        items = [i for i in items if i["priority"] in ps]
    if collaboration is not None:
        items = [i for i in items if i["is_collaboration"] == collaboration]
    if has_rating is not None:
        items = [i for i in items if (i["rating"] is not None) == has_rating]
    if search:
        q = search.casefold()
        items = [i for i in items if q in i["name"].casefold() or q in i["description"].casefold()]

    def sort_key(item: dict):
        if sort_by == "rating":
            return item["rating"] if item["rating"] is not None else -1
        if sort_by == "created_at":
            return item["created_at"] or ""
        if sort_by == "priority":
            return _PRIORITY_ORDER.get(item["priority"], 0)
        if sort_by == "status":
            return _STATUS_ORDER.get(item["status"], 0)
        return item["name"].casefold()

    items.sort(key=sort_key, reverse=(sort_dir == "desc"))
    return items


def query_projects(session: Session, **filters) -> list[dict]:
    projects = session.execute(select(Project)).scalars().all()
    return filter_and_sort_projects([project_summary(p) for p in projects], **filters)


def query_pipeline(
    session: Session, *, pipeline: str | None = None, stage: str | None = None,
    today: date | None = None,
) -> list[dict]:
    query = select(PipelineItem).order_by(PipelineItem.next_action_date.is_(None), PipelineItem.next_action_date)
    if pipeline:
        query = query.where(PipelineItem.pipeline == pipeline)
    if stage:
        query = query.where(PipelineItem.pipeline_stage == stage)
    items = session.execute(query).scalars().all()
    return [pipeline_item_summary(i, today) for i in items]


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)


# ---------------------------------------------------------------------------
# Ratings
# ---------------------------------------------------------------------------


def save_project_ratings(
    session: Session, proj: Project, ratings: Mapping[str, Any],
) -> RatingCalculationResult:
    """Replace the project's ratings blob and derived star rating (caller must commit).

    Raises RatingDataError when *ratings* is not a mapping.
    """
    calculation = calculate_project_rating(ratings)
    proj.detailed_ratings_json = json.dumps(dict(ratings))
    proj.rating = calculation.star_rating
    session.add(proj)
    log.info("Rated project %s: %.2f%% (%.2f stars)", proj.id, calculation.percentage, calculation.star_rating)
    return calculation


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def load_progression(session: Session, pipeline: str) -> Progression:
    """Built-in stage vocabulary for *pipeline* with the stored rule table."""
    base = get_progression(pipeline)
    rows = session.execute(
        select(StageRule).where(StageRule.pipeline == pipeline)
        .order_by(StageRule.position, StageRule.id)
    ).scalars().all()
    rules = [
        Rule(tuple(str(k) for k in json_parse(r.keywords_json, [])), r.implied_stage_index)
        for r in rows
    ]
    return base.with_rules(rules)


def create_pipeline_item(session: Session, data: dict[str, Any], today: date | None = None) -> PipelineItem:
    """Validate and add a pipeline item (caller must commit). Raises ValueError on invalid data."""
    errors = pipeline_rules.validate_pipeline_item(data, today)
    if errors:
        raise ValueError("; ".join(errors))
    if session.get(Contact, data["contact_id"]) is None:
        raise ValueError("Contact not found")
    item = PipelineItem(
        contact_id=data["contact_id"], pipeline=data["pipeline"],
        pipeline_stage=data["pipeline_stage"],
        next_action_description=data.get("next_action_description") or "",
        next_action_date=data.get("next_action_date"),
        notes=data.get("notes") or "",
    )
    session.add(item)
    return item


def update_next_action(
    session: Session, item: PipelineItem, text: str, next_action_date: date | None = None,
) -> PipelineItem:
    """Store a new next action and the stage it implies (caller must commit)."""
    progression = load_progression(session, item.pipeline)
    new_stage = advance_stage(progression, item.pipeline_stage, text)
    if new_stage != item.pipeline_stage:
        log.info("Pipeline item %s advanced: %s -> %s", item.id, item.pipeline_stage, new_stage)
    item.next_action_description = text
    item.pipeline_stage = new_stage
    if next_action_date is not None:
        item.next_action_date = next_action_date
    return item


def set_stage(item: PipelineItem, stage: str) -> PipelineItem:
    """Manually set a stage; must belong to the item's own vocabulary."""
    if get_progression(item.pipeline).index(stage) is None:
        raise ValueError(f"Unknown stage {stage!r} for pipeline {item.pipeline!r}")
    item.pipeline_stage = stage
    return item


def pipeline_health(session: Session, pipeline: str | None = None, today: date | None = None) -> dict:
    query = select(PipelineItem.next_action_date)
    if pipeline:
        query = query.where(PipelineItem.pipeline == pipeline)
    rows = session.execute(query).all()
    return pipeline_rules.pipeline_health(({"next_action_date": d} for (d,) in rows), today)


# ---------------------------------------------------------------------------
# Stage rules
# ---------------------------------------------------------------------------


def _check_rule(pipeline: str, implied_stage_index: int) -> None:
    stages = get_progression(pipeline).stages
    if not 0 <= implied_stage_index < len(stages):
        raise ValueError(f"Stage index {implied_stage_index} out of range for pipeline {pipeline!r}")


def list_stage_rules(session: Session, pipeline: str | None = None) -> list[dict]:
    query = select(StageRule).order_by(StageRule.pipeline, StageRule.position, StageRule.id)
    if pipeline:
        query = query.where(StageRule.pipeline == pipeline)
    return [stage_rule_summary(r) for r in session.execute(query).scalars().all()]


def create_stage_rule(
    session: Session, *, pipeline: str, keywords: list[str], implied_stage_index: int,
    position: int | None = None,
) -> dict:
    _check_rule(pipeline, implied_stage_index)
    if position is None:
        existing = session.execute(select(StageRule.position).where(StageRule.pipeline == pipeline)).scalars().all()
        position = max(existing, default=-1) + 1
    rule = StageRule(
        pipeline=pipeline, position=position,
        keywords_json=json.dumps(keywords), implied_stage_index=implied_stage_index,
    )
    session.add(rule)
    session.commit()
    session.refresh(rule)
    return stage_rule_summary(rule)


def update_stage_rule(
    session: Session, rule_id: int, *, keywords: list[str] | None = None,
    implied_stage_index: int | None = None, position: int | None = None,
) -> dict | None:
    rule = session.get(StageRule, rule_id)
    if rule is None:
        return None
    if implied_stage_index is not None:
        _check_rule(rule.pipeline, implied_stage_index)
        rule.implied_stage_index = implied_stage_index
    if keywords is not None:
        rule.keywords_json = json.dumps(keywords)
    if position is not None:
        rule.position = position
    session.commit()
    return stage_rule_summary(rule)


def delete_stage_rule(session: Session, rule_id: int) -> bool:
    rule = session.get(StageRule, rule_id)
    if rule is None:
        return False
    session.delete(rule)
    session.commit()
    return True


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def compute_stats(session: Session, today: date | None = None) -> dict:
    projects = session.execute(select(Project)).scalars().all()
    by_status: Counter[str] = Counter()
    by_priority: Counter[str] = Counter()
    ratings = []
    for proj in projects:
        by_status[proj.status] += 1
        by_priority[proj.priority] += 1
        if proj.rating is not None:
            ratings.append(proj.rating)

    pipeline_by_stage: dict[str, dict[str, int]] = defaultdict(dict)
    overdue = 0
    for item in session.execute(select(PipelineItem)).scalars().all():
        stages = pipeline_by_stage[item.pipeline]
        stages[item.pipeline_stage] = stages.get(item.pipeline_stage, 0) + 1
        if pipeline_rules.is_overdue(item.next_action_date, today):
            overdue += 1

    total_contacts = len(session.execute(select(Contact.id)).all())
    return {
        "total_projects": len(projects), "rated_projects": len(ratings),
        "average_rating": round(sum(ratings) / len(ratings), 2) if ratings else None,
        "by_status": dict(by_status), "by_priority": dict(by_priority),
        "total_contacts": total_contacts,
        "pipeline_by_stage": dict(pipeline_by_stage),
        "overdue_actions": overdue,
    }
