from __future__ import annotations
import calendar
import logging
import math
from datetime import date, datetime
from typing import Iterable
from sqlalchemy.orm import Session

from ..models import Contractor, BuildContractor, Build, Permit
from ..settings import Settings

logger = logging.getLogger(__name__)

def months_before(d: date, months: int) -> date:
    y, m = divmod(d.year * 12 + (d.month - 1) - months, 12)
    m += 1
    return date(y, m, min(d.day, calendar.monthrange(y, m)[1]))

def average_positive(values: Iterable[int | float | None], ndigits: int = 0) -> int | float | None:
    """Mean of the strictly positive samples; null and non-positive entries are ignored."""
    samples = [v for v in values if v is not None and v > 0]
    if not samples:
        return None
    mean = sum(samples) / len(samples)
    # half-up, so 44.5 days reads as 45
    return math.floor(mean + 0.5) if ndigits == 0 else round(mean, ndigits)

def average(values: Iterable[int | float | None], ndigits: int = 1) -> float | None:
    samples = [v for v in values if v is not None]
    if not samples:
        return None
    return round(sum(samples) / len(samples), ndigits)

def contractor_rollup(builds: list[tuple[Build, Permit]], *, today: date, staleness_months: int) -> dict:
    stale_before = months_before(today, staleness_months)
    year_ago = months_before(today, 12)

    started = [b for b, _ in builds if b.started_date is not None]
    finalized = [b for b in started if b.finaled_date is not None]
    active = [
        b for b in started
        if b.finaled_date is None and b.started_date >= stale_before
    ]

    activity = [
        d
        for b, p in builds
        for d in (p.issue_date, b.started_date, b.finaled_date)
        if d is not None
    ]

    return {
        "total_builds": len(builds),
        "active_builds": len(active),
        "builds_in_last_year": sum(1 for b, _ in builds if b.created_at and b.created_at.date() >= year_ago),
        "completion_rate": round(100.0 * len(finalized) / len(started), 1) if started else None,
        "avg_time_to_completion_days": average_positive(b.time_to_completion_days for b, _ in builds),
        "avg_time_to_pass_final_days": average_positive(b.time_to_pass_final_days for b, _ in builds),
        "avg_pull_to_start_lag_days": average_positive(b.pull_to_start_lag_days for b, _ in builds),
        "avg_failed_inspections": average(b.total_failures for b, _ in builds),
        "last_active_date": max(activity) if activity else None,
    }

def compute_contractor_metrics(db: Session, settings: Settings, *, today: date | None = None) -> dict:
    today = today or datetime.utcnow().date()
    now = datetime.utcnow()

    contractors = db.query(Contractor).order_by(Contractor.id.asc()).all()
    logger.info("Processing %d contractors...", len(contractors))

    updated = 0
    for i, c in enumerate(contractors, start=1):
        builds = (
            db.query(Build, Permit)
            .join(BuildContractor, BuildContractor.build_id == Build.id)
            .join(Permit, Permit.id == Build.permit_id)
            .filter(BuildContractor.contractor_id == c.id)
            .all()
        )

        for k, v in contractor_rollup(builds, today=today, staleness_months=settings.active_staleness_months).items():
            setattr(c, k, v)
        c.metrics_updated_at = now
        updated += 1

        if i % 50 == 0:
            db.flush()
            logger.info("Processed %d/%d contractors...", i, len(contractors))

    db.flush()
    return {"processed": len(contractors), "updated": updated}
