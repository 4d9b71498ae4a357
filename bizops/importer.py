from __future__ import annotations

import logging
from pathlib import Path

import openpyxl
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from bizops.models import Contact, Project
from bizops.rating import RATING_METRICS, RUNWAY_KEY, RUNWAY_MAX_MONTHS
from bizops.schemas import DetailedRatingsIn, ImportResult
from bizops.services import save_project_ratings

log = logging.getLogger(__name__)

_PRIORITIES = {"high", "medium", "low"}
_STATUSES = {"potential", "active", "on-hold", "completed", "archived"}


def _s(value: object) -> str:
    """Safely coerce cell value to stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def _col(row: tuple, idx: int) -> object:
    """Safely get a column value from a row tuple."""
    return row[idx] if idx < len(row) else None


def _i(value: object) -> int:
    """Safely coerce cell value to int."""
    if value is None:
        return 0
    try:
        return int(value)
    except (ValueError, TypeError):
        return 0


def _f(value: object) -> float | None:
    """Safely coerce cell value to float, None if missing."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _b(value: object) -> bool:
    """Safely coerce cell value to bool."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


# ---------------------------------------------------------------------------
# Sheet layouts
# ---------------------------------------------------------------------------

# Projects: name, description, status, priority, collaboration, runway,
# then one value column per metric, then one weight column per metric
_PROJECT_COLS = {"name": 0, "description": 1, "status": 2, "priority": 3, "is_collaboration": 4, "runway": 5}
_METRIC_KEYS = tuple(RATING_METRICS)
_VALUE_START = 6
_WEIGHT_START = _VALUE_START + len(_METRIC_KEYS)

_CONTACT_COLS = {
    "name": 0, "email": 1, "company": 2, "job_title": 3,
    "contact_type": 4, "linkedin_url": 5, "is_in_cto_club": 6,
}


def _parse_ratings(row: tuple) -> dict | None:
    """Ratings blob from the metric columns, None when the row has no weights at all."""
    weights = [_f(_col(row, _WEIGHT_START + i)) for i in range(len(_METRIC_KEYS))]
    if all(w is None for w in weights):
        return None
    ratings: dict = {
        key: {"value": _f(_col(row, _VALUE_START + i)), "weight": weights[i] or 0.0}
        for i, key in enumerate(_METRIC_KEYS)
    }
    ratings[RUNWAY_KEY] = max(0, min(RUNWAY_MAX_MONTHS, _i(_col(row, _PROJECT_COLS["runway"]))))
    return ratings


def _parse_projects(ws) -> tuple[list[dict], int]:
    out: list[dict] = []
    skipped = 0
    for row in ws.iter_rows(min_row=2, values_only=True):
        if not row or not _s(_col(row, _PROJECT_COLS["name"])):
            continue
        status = _s(_col(row, _PROJECT_COLS["status"])).lower() or "potential"
        priority = _s(_col(row, _PROJECT_COLS["priority"])).lower() or "medium"
        if status not in _STATUSES or priority not in _PRIORITIES:
            log.warning("Skipping project row %r: bad status/priority (%s/%s)", row[0], status, priority)
            skipped += 1
            continue
        ratings = _parse_ratings(row)
        if ratings is not None:
            try:
                ratings = DetailedRatingsIn.model_validate(ratings).model_dump()
            except ValidationError as exc:
                log.warning("Skipping project row %r: invalid ratings (%d errors)", row[0], exc.error_count())
                skipped += 1
                continue
        out.append({
            "name": _s(_col(row, _PROJECT_COLS["name"])),
            "description": _s(_col(row, _PROJECT_COLS["description"])),
            "status": status,
            "priority": priority,
            "is_collaboration": _b(_col(row, _PROJECT_COLS["is_collaboration"])),
            "ratings": ratings,
        })
    return out, skipped


def _parse_contacts(ws) -> tuple[list[dict], int]:
    out: list[dict] = []
    skipped = 0
    for row in ws.iter_rows(min_row=2, values_only=True):
        if not row or not any(row):
            continue
        entry = {field: _s(_col(row, idx)) for field, idx in _CONTACT_COLS.items()}
        entry["is_in_cto_club"] = _b(_col(row, _CONTACT_COLS["is_in_cto_club"]))
        entry["email"] = entry["email"].lower()
        if not entry["name"] and not entry["email"]:
            log.warning("Skipping contact row without name or email: %r", row)
            skipped += 1
            continue
        entry["contact_type"] = entry["contact_type"] or "guest"
        out.append(entry)
    return out, skipped


# ---------------------------------------------------------------------------
# Upserts
# ---------------------------------------------------------------------------


def _contact_key(email: str, name: str) -> str:
    return f"email:{email.casefold()}" if email else f"name:{name.strip().casefold()}"


def _upsert_project(session: Session, data: dict, existing: dict[str, Project]) -> bool:
    key = data["name"].casefold()
    ratings = data.pop("ratings")
    is_new = key not in existing
    if is_new:
        proj = Project(**data)
        session.add(proj)
        session.flush()
        existing[key] = proj
    else:
        proj = existing[key]
        for field, val in data.items():
            if val not in ("", None):
                setattr(proj, field, val)
    if ratings is not None:
        save_project_ratings(session, proj, ratings)
    return is_new


def _upsert_contact(session: Session, data: dict, existing: dict[str, Contact]) -> bool:
    key = _contact_key(data["email"], data["name"])
    if key in existing:
        contact = existing[key]
        for field, val in data.items():
            if val not in ("", None):
                setattr(contact, field, val)
        return False
    contact = Contact(**data)
    session.add(contact)
    existing[key] = contact
    return True


def import_xlsx(file_path: str | Path, session: Session) -> ImportResult:
    """Import the "Projects" and "Contacts" sheets. Upserts by name / email."""
    file_path = Path(file_path)
    wb = openpyxl.load_workbook(file_path, read_only=True, data_only=True)

    project_rows: list[dict] = []
    contact_rows: list[dict] = []
    skipped = 0
    for sheet_name in wb.sheetnames:
        lower = sheet_name.casefold()
        if "project" in lower:
            rows, bad = _parse_projects(wb[sheet_name])
            project_rows.extend(rows)
            skipped += bad
        elif "contact" in lower:
            rows, bad = _parse_contacts(wb[sheet_name])
            contact_rows.extend(rows)
            skipped += bad
    wb.close()

    projects = {p.name.casefold(): p for p in session.execute(select(Project)).scalars().all()}
    contacts = {_contact_key(c.email, c.name): c for c in session.execute(select(Contact)).scalars().all()}

    projects_created = projects_updated = contacts_created = contacts_updated = 0
    for data in project_rows:
        if _upsert_project(session, data, projects):
            projects_created += 1
        else:
            projects_updated += 1
    for data in contact_rows:
        if _upsert_contact(session, data, contacts):
            contacts_created += 1
        else:
            contacts_updated += 1

    session.commit()
    log.info("Imported %d projects, %d contacts from %s",
             projects_created + projects_updated, contacts_created + contacts_updated, file_path.name)

    return ImportResult(
        projects_created=projects_created, projects_updated=projects_updated,
        contacts_created=contacts_created, contacts_updated=contacts_updated,
        rows_skipped=skipped,
    )
