from __future__ import annotations

import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Generator

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from bizops import services
from bizops.db import get_session, init_db
from bizops.importer import import_xlsx
from bizops.models import Contact, PipelineItem, Project
from bizops.rating import RatingDataError, calculate_project_rating
from bizops.schemas import (
    ContactCreate,
    ContactOut,
    DetailedRatingsIn,
    ImportResult,
    NextActionUpdate,
    PipelineHealthOut,
    PipelineItemCreate,
    PipelineItemOut,
    ProjectCreate,
    ProjectOut,
    ProjectRatingOut,
    ProjectUpdate,
    RatingMetricInfo,
    RatingResultOut,
    StageRuleIn,
    StageRuleOut,
    StageRuleUpdate,
    StageUpdate,
    StatsOut,
)
from bizops.stages import DEFAULT_PROGRESSIONS

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="BizOps",
    version="0.1.0",
    description=(
        "Business-operations API: BizDev projects with weighted ratings, contacts, "
        "and relationship pipelines whose stages advance from next-action text. "
        "All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Projects", "description": "BizDev projects and their ratings."},
        {"name": "Ratings", "description": "Weighted rating calculation and metric definitions."},
        {"name": "Contacts", "description": "People tracked across pipelines."},
        {"name": "Pipeline", "description": "Pipeline items, next actions and stage progression."},
        {"name": "Stage rules", "description": "Keyword table that maps next actions to stages."},
        {"name": "Import", "description": "Bulk import from XLSX spreadsheets."},
        {"name": "Stats", "description": "Aggregate statistics."},
        {"name": "Admin", "description": "Administrative operations."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _get_or_404(session: Session, model, entity_id: int, label: str = "Entity"):
    obj = session.get(model, entity_id)
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


# ---------------------------------------------------------------------------
# Routes: Projects
# ---------------------------------------------------------------------------


@app.get("/api/projects", response_model=list[ProjectOut],
         tags=["Projects"], summary="List projects with filtering and sorting")
async def list_projects(
    status: str | None = Query(None, description="Comma-separated: potential, active, on-hold, completed, archived"),
    priority: str | None = Query(None, description="Comma-separated: high, medium, low"),
    collaboration: bool | None = Query(None),
    has_rating: bool | None = Query(None),
    search: str | None = Query(None, description="Free-text search across name and description"),
    sort_by: str = Query("rating", description="Sort field: rating, name, created_at, priority, status"),
    sort_dir: str = Query("desc", description="asc or desc"),
    session: Session = Depends(db_session),
):
    return services.query_projects(
        session, status=status, priority=priority, collaboration=collaboration,
        has_rating=has_rating, search=search, sort_by=sort_by, sort_dir=sort_dir,
    )


@app.post("/api/projects", response_model=ProjectOut, status_code=201,
          tags=["Projects"], summary="Create a project")
async def create_project(body: ProjectCreate, session: Session = Depends(db_session)):
    proj = Project(**body.model_dump())
    session.add(proj)
    session.commit()
    session.refresh(proj)
    return services.project_summary(proj)


@app.get("/api/projects/{project_id}", response_model=ProjectOut,
         tags=["Projects"], summary="Get a project with its detailed ratings")
async def get_project(project_id: int, session: Session = Depends(db_session)):
    return services.project_summary(_get_or_404(session, Project, project_id, "Project"))


@app.put("/api/projects/{project_id}", response_model=ProjectOut,
         tags=["Projects"], summary="Update project fields (partial update, null fields ignored)")
async def update_project(project_id: int, body: ProjectUpdate, session: Session = Depends(db_session)):
    proj = _get_or_404(session, Project, project_id, "Project")
    services.apply_updates(proj, body.model_dump(), services.PROJECT_UPDATABLE_FIELDS)
    session.commit()
    return services.project_summary(proj)


@app.delete("/api/projects/{project_id}", tags=["Projects"], summary="Delete a project")
async def delete_project(project_id: int, session: Session = Depends(db_session)):
    proj = _get_or_404(session, Project, project_id, "Project")
    session.delete(proj)
    session.commit()
    return {"ok": True}


@app.put("/api/projects/{project_id}/ratings", response_model=ProjectRatingOut,
         tags=["Projects", "Ratings"], summary="Replace a project's detailed ratings and recompute its rating")
async def rate_project(project_id: int, body: DetailedRatingsIn, session: Session = Depends(db_session)):
    proj = _get_or_404(session, Project, project_id, "Project")
    try:
        calculation = services.save_project_ratings(session, proj, body.model_dump())
        session.commit()
    except RatingDataError as exc:
        session.rollback()
        log.warning("Rating failed for project %s: %s", project_id, exc)
        raise HTTPException(400, f"Rating failed: {exc}") from exc
    return {"project": services.project_summary(proj), "calculation": calculation.to_dict()}


# ---------------------------------------------------------------------------
# Routes: Ratings
# ---------------------------------------------------------------------------


@app.post("/api/ratings/preview", response_model=RatingResultOut,
          tags=["Ratings"], summary="Calculate a rating without saving it")
async def preview_rating(body: DetailedRatingsIn):
    return calculate_project_rating(body.model_dump()).to_dict()


@app.get("/api/rating-metrics", response_model=list[RatingMetricInfo],
         tags=["Ratings"], summary="List rating metrics with labels and maximum weights")
async def list_rating_metrics():
    return services.rating_metrics_info()


# ---------------------------------------------------------------------------
# Routes: Contacts
# ---------------------------------------------------------------------------


@app.get("/api/contacts", response_model=list[ContactOut], tags=["Contacts"], summary="List contacts")
async def list_contacts(
    search: str | None = Query(None, description="Match on name, email or company"),
    session: Session = Depends(db_session),
):
    rows = session.execute(select(Contact).order_by(Contact.id)).scalars().all()
    contacts = [services.contact_summary(c) for c in rows]
    if search:
        q = search.casefold()
        contacts = [c for c in contacts if q in c["display_name"].casefold()
                    or q in c["email"].casefold() or q in c["company"].casefold()]
    return contacts


@app.post("/api/contacts", response_model=ContactOut, status_code=201,
          tags=["Contacts"], summary="Create a contact")
async def create_contact(body: ContactCreate, session: Session = Depends(db_session)):
    contact = Contact(**body.model_dump())
    session.add(contact)
    session.commit()
    session.refresh(contact)
    return services.contact_summary(contact)


@app.get("/api/contacts/{contact_id}", response_model=ContactOut, tags=["Contacts"], summary="Get a contact")
async def get_contact(contact_id: int, session: Session = Depends(db_session)):
    return services.contact_summary(_get_or_404(session, Contact, contact_id, "Contact"))


# ---------------------------------------------------------------------------
# Routes: Pipeline (fixed paths before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.get("/api/stages", tags=["Pipeline"], summary="List stage vocabularies per pipeline")
async def list_stages():
    return {name: list(p.stages) for name, p in DEFAULT_PROGRESSIONS.items()}


@app.get("/api/pipeline", response_model=list[PipelineItemOut],
         tags=["Pipeline"], summary="List pipeline items ordered by next action date")
async def list_pipeline(
    pipeline: str | None = Query(None, description="relationship, cto_club or cto_outreach"),
    stage: str | None = Query(None),
    session: Session = Depends(db_session),
):
    return services.query_pipeline(session, pipeline=pipeline, stage=stage)


@app.get("/api/pipeline/health", response_model=PipelineHealthOut,
         tags=["Pipeline"], summary="Pipeline health score (overdue and missing next actions)")
async def get_pipeline_health(pipeline: str | None = Query(None), session: Session = Depends(db_session)):
    return services.pipeline_health(session, pipeline)


@app.post("/api/pipeline", response_model=PipelineItemOut, status_code=201,
          tags=["Pipeline"], summary="Add a contact to a pipeline")
async def create_pipeline_item(body: PipelineItemCreate, session: Session = Depends(db_session)):
    try:
        item = services.create_pipeline_item(session, body.model_dump())
        session.commit()
    except ValueError as exc:
        session.rollback()
        raise HTTPException(400, str(exc)) from exc
    session.refresh(item)
    return services.pipeline_item_summary(item)


@app.get("/api/pipeline/{item_id}", response_model=PipelineItemOut,
         tags=["Pipeline"], summary="Get a pipeline item")
async def get_pipeline_item(item_id: int, session: Session = Depends(db_session)):
    return services.pipeline_item_summary(_get_or_404(session, PipelineItem, item_id, "Pipeline item"))


@app.put("/api/pipeline/{item_id}/next-action", response_model=PipelineItemOut,
         tags=["Pipeline"], summary="Save a next action; the stage advances when the text implies progress")
async def update_next_action(item_id: int, body: NextActionUpdate, session: Session = Depends(db_session)):
    item = _get_or_404(session, PipelineItem, item_id, "Pipeline item")
    services.update_next_action(session, item, body.next_action_description, body.next_action_date)
    session.commit()
    return services.pipeline_item_summary(item)


@app.put("/api/pipeline/{item_id}/stage", response_model=PipelineItemOut,
         tags=["Pipeline"], summary="Set a pipeline stage manually")
async def update_stage(item_id: int, body: StageUpdate, session: Session = Depends(db_session)):
    item = _get_or_404(session, PipelineItem, item_id, "Pipeline item")
    try:
        services.set_stage(item, body.pipeline_stage)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    session.commit()
    return services.pipeline_item_summary(item)


@app.delete("/api/pipeline/{item_id}", tags=["Pipeline"], summary="Remove an item from its pipeline")
async def delete_pipeline_item(item_id: int, session: Session = Depends(db_session)):
    item = _get_or_404(session, PipelineItem, item_id, "Pipeline item")
    session.delete(item)
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Stage rules
# ---------------------------------------------------------------------------


@app.get("/api/stage-rules", response_model=list[StageRuleOut],
         tags=["Stage rules"], summary="List stage rules in evaluation order")
async def list_stage_rules(pipeline: str | None = Query(None), session: Session = Depends(db_session)):
    return services.list_stage_rules(session, pipeline)


@app.post("/api/stage-rules", response_model=StageRuleOut, status_code=201,
          tags=["Stage rules"], summary="Add a stage rule")
async def create_stage_rule(body: StageRuleIn, session: Session = Depends(db_session)):
    try:
        return services.create_stage_rule(
            session, pipeline=body.pipeline, keywords=body.keywords,
            implied_stage_index=body.implied_stage_index, position=body.position,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


@app.put("/api/stage-rules/{rule_id}", response_model=StageRuleOut,
         tags=["Stage rules"], summary="Update a stage rule's keywords, target stage or position")
async def update_stage_rule(rule_id: int, body: StageRuleUpdate, session: Session = Depends(db_session)):
    try:
        result = services.update_stage_rule(
            session, rule_id, keywords=body.keywords,
            implied_stage_index=body.implied_stage_index, position=body.position,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    if result is None:
        raise HTTPException(404, "Stage rule not found")
    return result


@app.delete("/api/stage-rules/{rule_id}", tags=["Stage rules"], summary="Delete a stage rule")
async def delete_stage_rule(rule_id: int, session: Session = Depends(db_session)):
    if not services.delete_stage_rule(session, rule_id):
        raise HTTPException(404, "Stage rule not found")
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Import
# ---------------------------------------------------------------------------


@app.post("/api/import", response_model=ImportResult,
          tags=["Import"], summary="Import projects and contacts from an XLSX spreadsheet")
async def import_file(file: UploadFile = File(...), session: Session = Depends(db_session)):
    if not file.filename or not file.filename.endswith(".xlsx"):
        raise HTTPException(400, "Only .xlsx files are supported")
    content = await file.read()
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(suffix=".xlsx", delete=False) as f:
            tmp_path = Path(f.name)
            f.write(content)
        return import_xlsx(tmp_path, session)
    finally:
        if tmp_path:
            tmp_path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/stats", response_model=StatsOut, tags=["Stats"], summary="Get aggregate statistics")
async def get_stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Routes: Reset
# ---------------------------------------------------------------------------


@app.delete("/api/reset", tags=["Admin"], summary="Delete all projects, contacts and pipeline items")
async def reset_db(session: Session = Depends(db_session)):
    session.execute(delete(PipelineItem))
    session.execute(delete(Contact))
    session.execute(delete(Project))
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    logging.basicConfig(level=os.environ.get("BIZOPS_LOG_LEVEL", "INFO").upper())
    uvicorn.run("bizops.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
