from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date
from sqlalchemy import exists
from sqlalchemy.orm import Session

from ..models import Permit, Build, Inspection, PhaseMetrics
from ..normalize import is_approved, is_failure, normalize_inspection_type
from ..settings import Settings

logger = logging.getLogger(__name__)

COMPLETED = "COMPLETED"
IN_PROGRESS = "IN_PROGRESS"
NOT_STARTED = "NOT_STARTED"

PHASE_FIELDS = (
    "start_to_foundation",
    "foundation_to_framing",
    "framing_to_drywall",
    "drywall_to_final",
    "start_to_final",
    "time_to_pass_final",
)

def calculate_duration(earlier: date | None, later: date | None) -> int | None:
    """Whole days from earlier to later; None when missing, same-day or out of order."""
    if earlier is None or later is None:
        return None
    days = (later - earlier).days
    if days <= 0:
        return None
    return days

@dataclass
class Milestones:
    first_approved: date | None = None
    foundation: date | None = None
    framing: date | None = None
    drywall: date | None = None
    final_attempt: date | None = None
    final_approved: date | None = None
    failures: int = 0

def find_milestones(inspections: list[Inspection]) -> Milestones:
    m = Milestones()
    for insp in sorted(inspections, key=lambda i: (i.inspection_date, i.id or 0)):
        kind = insp.inspection_type or normalize_inspection_type(insp.inspection_type_raw)
        day = insp.inspection_date
        ok = is_approved(insp.result)

        if is_failure(insp.result):
            m.failures += 1

        if ok and m.first_approved is None:
            m.first_approved = day
        if kind == "FINAL":
            if m.final_attempt is None:
                m.final_attempt = day
            if ok and m.final_approved is None:
                m.final_approved = day
        elif ok and kind == "FOUNDATION" and m.foundation is None:
            m.foundation = day
        elif ok and kind == "FRAMING" and m.framing is None:
            m.framing = day
        elif ok and kind == "DRYWALL" and m.drywall is None:
            m.drywall = day
    return m

def phase_durations(m: Milestones) -> dict[str, int | None]:
    return {
        "start_to_foundation": calculate_duration(m.first_approved, m.foundation),
        "foundation_to_framing": calculate_duration(m.foundation, m.framing),
        "framing_to_drywall": calculate_duration(m.framing, m.drywall),
        "drywall_to_final": calculate_duration(m.drywall, m.final_attempt),
        "start_to_final": calculate_duration(m.first_approved, m.final_approved),
        "time_to_pass_final": calculate_duration(m.final_attempt, m.final_approved),
    }

def upsert_phase_metrics(db: Session, permit_number: str, values: dict) -> PhaseMetrics:
    existing = db.query(PhaseMetrics).filter(PhaseMetrics.permit_number == permit_number).one_or_none()
    if existing:
        for k, v in values.items():
            setattr(existing, k, v)
        return existing
    pm = PhaseMetrics(permit_number=permit_number, **values)
    db.add(pm)
    return pm

def apply_permit_timing(permit: Permit, m: Milestones, durations: dict) -> None:
    if m.first_approved is not None:
        permit.started_date = m.first_approved
        permit.started_but_not_completed = m.final_approved is None
        permit.pull_to_start_lag_days = calculate_duration(permit.issue_date, m.first_approved)

    if m.final_approved is not None or permit.finaled_date is not None:
        status = COMPLETED
    elif m.first_approved is not None:
        status = IN_PROGRESS
    else:
        status = NOT_STARTED

    for b in permit.builds:
        b.started_date = m.first_approved
        b.finaled_date = permit.finaled_date
        b.completion_status = status
        b.total_failures = m.failures
        b.time_to_completion_days = durations["start_to_final"]
        b.time_to_pass_final_days = durations["time_to_pass_final"]
        b.pull_to_start_lag_days = permit.pull_to_start_lag_days

def compute_durations(db: Session, settings: Settings, *, offset: int = 0, limit: int | None = None) -> dict:
    limit = limit or settings.durations_batch_size

    has_inspections = exists().where(Inspection.permit_id == Permit.id)
    permits = (
        db.query(Permit)
        .filter(has_inspections)
        .order_by(Permit.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    started = 0
    for i, permit in enumerate(permits, start=1):
        inspections = db.query(Inspection).filter(Inspection.permit_id == permit.id).all()
        m = find_milestones(inspections)
        durations = phase_durations(m)

        upsert_phase_metrics(db, permit.permit_nbr, durations)
        apply_permit_timing(permit, m, durations)
        if m.first_approved is not None:
            started += 1

        if i % 100 == 0:
            db.flush()
            logger.info("durations: %d/%d permits", i, len(permits))

    db.flush()
    logger.info("durations: %d permits processed, %d started", len(permits), started)

    return {
        "processed": len(permits),
        "started": started,
        "offset": offset,
        "next_offset": offset + len(permits),
        "done": len(permits) < limit,
    }

def sync_finaled_dates(db: Session) -> dict:
    """Copy each permit's finaled date onto its builds."""
    synced = 0
    rows = db.query(Build, Permit.finaled_date).join(Permit, Build.permit_id == Permit.id).all()
    for build, finaled in rows:
        if build.finaled_date != finaled:
            build.finaled_date = finaled
            synced += 1
    db.flush()
    return {"synced_count": synced}
