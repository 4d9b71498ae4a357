from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from bizops import services
from bizops.db import init_db, session_scope
from bizops.models import PipelineItem, Project
from bizops.rating import RATING_METRICS, RatingDataError, calculate_project_rating
from bizops.schemas import DetailedRatingsIn
from bizops.stages import DEFAULT_PROGRESSIONS

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def bizops_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "BizOps",
    instructions=(
        "BizOps tracks BizDev projects with weighted ratings and relationship pipelines. "
        "Start with get_stats() for an overview, list_projects() to browse projects, "
        "and list_pipeline() to see pipeline items and their next actions."
    ),
    lifespan=bizops_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_or_error(session, model, entity_id, label="Entity"):
    obj = session.get(model, entity_id)
    if not obj:
        return None, {"error": f"{label} {entity_id} not found"}
    return obj, None


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("bizops://overview")
def bizops_overview() -> str:
    """Overview of BizOps: data model, rating metrics and pipeline stages."""
    return json.dumps({
        "system": "BizOps business-operations dashboard",
        "data_model": {
            "project": "BizDev opportunity with priority, status and a 0-5 star rating.",
            "detailed_ratings": "Nine weighted 0-5 metrics plus runway (months); drives the project rating.",
            "contact": "A person tracked in one or more pipelines.",
            "pipeline_item": "A contact's position in a pipeline with a next action and date.",
        },
        "rating_metrics": {k: {"label": label, "max_weight": w} for k, (label, w) in RATING_METRICS.items()},
        "pipelines": {name: list(p.stages) for name, p in DEFAULT_PROGRESSIONS.items()},
        "workflow": [
            "1. get_stats() — project, rating and pipeline counts.",
            "2. list_projects() / get_project(id) — browse BizDev projects.",
            "3. preview_rating(ratings) then rate_project(id, ratings) — score a project.",
            "4. list_pipeline(pipeline) — see who needs a next action.",
            "5. update_next_action(item_id, text) — stage advances when the text implies progress.",
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Projects & ratings
# ---------------------------------------------------------------------------


@mcp.tool()
def list_projects(
    status: str | None = None, priority: str | None = None, search: str | None = None,
    sort_by: str = "rating", sort_dir: str = "desc", limit: int = 50,
) -> list[dict]:
    """List BizDev projects.

    Args:
        status: Comma-separated from: potential, active, on-hold, completed, archived.
        priority: Comma-separated from: high, medium, low.
        search: Free-text search across name and description.
        sort_by: rating, name, created_at, priority, status.
        sort_dir: asc or desc.
        limit: Max results (default 50, max 500).
    """
    with session_scope() as session:
        items = services.query_projects(
            session, status=status, priority=priority, search=search,
            sort_by=sort_by, sort_dir=sort_dir,
        )
        return items[:max(1, min(limit, 500))]


@mcp.tool()
def get_project(project_id: int) -> dict:
    """Get a project including its detailed ratings."""
    with session_scope() as session:
        proj, err = _get_or_error(session, Project, project_id, "Project")
        return err if err else services.project_summary(proj)


@mcp.tool()
def preview_rating(ratings: dict[str, Any]) -> dict:
    """Calculate a rating without saving it.

    ``ratings`` maps metric keys (see the overview resource) to
    ``{"value": 0-5, "weight": 0-1}`` and may include ``runway`` in months.
    """
    try:
        return calculate_project_rating(ratings).to_dict()
    except RatingDataError as exc:
        return {"error": f"Rating failed: {exc}"}


@mcp.tool()
def rate_project(project_id: int, ratings: dict[str, Any]) -> dict:
    """Replace a project's detailed ratings and store the recomputed star rating."""
    with session_scope() as session:
        proj, err = _get_or_error(session, Project, project_id, "Project")
        if err:
            return err
        try:
            validated = DetailedRatingsIn.model_validate(ratings)
        except ValidationError as exc:
            messages = "; ".join(e["msg"] for e in exc.errors())
            return {"error": f"Rating failed: {messages}"}
        calculation = services.save_project_ratings(session, proj, validated.model_dump())
        session.commit()
        return {"project": services.project_summary(proj), "calculation": calculation.to_dict()}


# ---------------------------------------------------------------------------
# Tools: Pipeline
# ---------------------------------------------------------------------------


@mcp.tool()
def list_pipeline(pipeline: str | None = None, stage: str | None = None) -> list[dict]:
    """List pipeline items ordered by next action date.

    Args:
        pipeline: relationship, cto_club or cto_outreach. All pipelines if omitted.
        stage: Only items currently at this stage.
    """
    with session_scope() as session:
        items = services.query_pipeline(session, pipeline=pipeline, stage=stage)
        for item in items:
            if item["next_action_date"] is not None:
                item["next_action_date"] = item["next_action_date"].isoformat()
        return items


@mcp.tool()
def update_next_action(item_id: int, next_action_description: str) -> dict:
    """Save a new next action for a pipeline item; its stage advances if the text implies progress."""
    with session_scope() as session:
        item, err = _get_or_error(session, PipelineItem, item_id, "Pipeline item")
        if err:
            return err
        previous = item.pipeline_stage
        services.update_next_action(session, item, next_action_description)
        session.commit()
        return {
            "item_id": item.id, "pipeline": item.pipeline,
            "previous_stage": previous, "pipeline_stage": item.pipeline_stage,
            "advanced": previous != item.pipeline_stage,
        }


@mcp.tool()
def get_pipeline_health(pipeline: str | None = None) -> dict:
    """Health score (0-100) of a pipeline based on overdue and missing next actions."""
    with session_scope() as session:
        return services.pipeline_health(session, pipeline)


@mcp.tool()
def list_stage_rules(pipeline: str | None = None) -> list[dict]:
    """List the keyword rules that map next actions to implied stages, in evaluation order."""
    with session_scope() as session:
        return services.list_stage_rules(session, pipeline)


# ---------------------------------------------------------------------------
# Tools: Stats
# ---------------------------------------------------------------------------


@mcp.tool()
def get_stats() -> dict:
    """Summary statistics for projects, contacts and pipelines."""
    with session_scope() as session:
        return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the BizOps MCP server over stdio."""
    logging.basicConfig(level=os.environ.get("BIZOPS_LOG_LEVEL", "INFO").upper())
    mcp.run()


if __name__ == "__main__":
    main()
