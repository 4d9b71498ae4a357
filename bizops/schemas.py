"""Pydantic request/response schemas for the BizOps API."""
from __future__ import annotations

import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from bizops.rating import RATING_METRICS, RUNWAY_MAX_MONTHS

ProjectPriority = Literal["high", "medium", "low"]
ProjectStatus = Literal["potential", "active", "on-hold", "completed", "archived"]


# ---------------------------------------------------------------------------
# Ratings
# ---------------------------------------------------------------------------


class RatingMetricIn(BaseModel):
    value: float | None = Field(None, ge=0, le=5)
    weight: float = Field(0.0, ge=0, le=1)


class DetailedRatingsIn(BaseModel):
    """Form-level rating validation; enforces each metric's maximum weight."""

    revenuePotential: RatingMetricIn = Field(default_factory=RatingMetricIn)
    insiderSupport: RatingMetricIn = Field(default_factory=RatingMetricIn)
    strategicFitEvolve: RatingMetricIn = Field(default_factory=RatingMetricIn)
    strategicFitVerticals: RatingMetricIn = Field(default_factory=RatingMetricIn)
    clarityClient: RatingMetricIn = Field(default_factory=RatingMetricIn)
    clarityUs: RatingMetricIn = Field(default_factory=RatingMetricIn)
    effortPotentialClient: RatingMetricIn = Field(default_factory=RatingMetricIn)
    effortExistingClient: RatingMetricIn = Field(default_factory=RatingMetricIn)
    timingPotentialClient: RatingMetricIn = Field(default_factory=RatingMetricIn)
    runway: int = Field(0, ge=0, le=RUNWAY_MAX_MONTHS)

    @model_validator(mode="after")
    def weights_within_metric_max(self) -> DetailedRatingsIn:
        errors = []
        for key, (label, max_weight) in RATING_METRICS.items():
            metric: RatingMetricIn = getattr(self, key)
            if metric.weight > max_weight + 1e-9:
                errors.append(f"{label} weight must be between 0 and {max_weight}")
        if errors:
            raise ValueError("; ".join(errors))
        return self


class MetricBreakdownOut(BaseModel):
    score: float
    weight: float
    contribution: float


class RatingResultOut(BaseModel):
    weighted_score: float
    total_possible: float
    percentage: float
    star_rating: float
    breakdown: dict[str, MetricBreakdownOut]


class RatingMetricInfo(BaseModel):
    key: str
    label: str
    max_weight: float


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def _required_name(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Project name is required")
    return v


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    priority: ProjectPriority = "medium"
    status: ProjectStatus = "potential"
    is_collaboration: bool = False

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        return _required_name(v)


class ProjectUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    priority: ProjectPriority | None = None
    status: ProjectStatus | None = None
    is_collaboration: bool | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str | None) -> str | None:
        return None if v is None else _required_name(v)


class ProjectOut(BaseModel):
    id: int
    name: str
    description: str
    priority: str
    status: str
    is_collaboration: bool
    rating: float | None = None
    detailed_ratings: dict[str, Any] | None = None
    created_at: str | None = None


class ProjectRatingOut(BaseModel):
    project: ProjectOut
    calculation: RatingResultOut


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


class ContactCreate(BaseModel):
    name: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    company: str = ""
    job_title: str = ""
    contact_type: str = "guest"
    linkedin_url: str = ""
    is_in_cto_club: bool = False

    @model_validator(mode="after")
    def has_identity(self) -> ContactCreate:
        if not (self.name.strip() or self.first_name.strip() or self.email.strip()):
            raise ValueError("Contact must have either a name or email address")
        return self


class ContactOut(BaseModel):
    id: int
    display_name: str
    name: str
    first_name: str
    last_name: str
    email: str
    company: str
    job_title: str
    contact_type: str
    linkedin_url: str
    is_in_cto_club: bool


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class PipelineItemCreate(BaseModel):
    contact_id: int
    pipeline: str = "relationship"
    pipeline_stage: str
    next_action_description: str = ""
    next_action_date: dt.date | None = None
    notes: str = ""


class NextActionUpdate(BaseModel):
    next_action_description: str
    next_action_date: dt.date | None = None


class StageUpdate(BaseModel):
    pipeline_stage: str


class PipelineItemOut(BaseModel):
    id: int
    contact_id: int
    contact_name: str
    pipeline: str
    pipeline_stage: str
    next_action_description: str
    next_action_date: dt.date | None = None
    notes: str
    days_until_next_action: int | None = None
    urgency: str
    recommended_action: str
    next_stage: str | None = None


class PipelineHealthOut(BaseModel):
    score: int
    overdue: int
    actionable_today: int
    no_next_action: int


class StageRuleIn(BaseModel):
    pipeline: str
    keywords: list[str] = Field(min_length=1)
    implied_stage_index: int = Field(ge=0)
    position: int | None = None


class StageRuleUpdate(BaseModel):
    keywords: list[str] | None = None
    implied_stage_index: int | None = Field(None, ge=0)
    position: int | None = None


class StageRuleOut(BaseModel):
    id: int
    pipeline: str
    position: int
    keywords: list[str]
    implied_stage_index: int
    implied_stage: str | None = None


# ---------------------------------------------------------------------------
# Import / stats
# ---------------------------------------------------------------------------


class ImportResult(BaseModel):
    projects_created: int
    projects_updated: int
    contacts_created: int
    contacts_updated: int
    rows_skipped: int


class StatsOut(BaseModel):
    total_projects: int
    rated_projects: int
    average_rating: float | None
    by_status: dict[str, int]
    by_priority: dict[str, int]
    total_contacts: int
    pipeline_by_stage: dict[str, dict[str, int]]
    overdue_actions: int
