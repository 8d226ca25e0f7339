from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from typing import Callable

from sqlalchemy.orm import Session

from ..models import JobRun, Watermark, JOB_SUCCESS, JOB_FAILED

logger = logging.getLogger(__name__)

MESSAGE_MAX = 500


def get_watermark(db: Session, source_key: str) -> date | None:
    wm = db.get(Watermark, source_key)
    return wm.last_value if wm else None


def advance_watermark(db: Session, source_key: str, value: date | None, records_processed: int = 0) -> date | None:
    """Move the cursor forward; never backwards. Caller commits."""
    wm = db.get(Watermark, source_key)
    if wm is None:
        wm = Watermark(source_key=source_key, last_value=None, records_processed=0)
        db.add(wm)

    if value is not None and (wm.last_value is None or value > wm.last_value):
        wm.last_value = value
    wm.records_processed = records_processed
    wm.updated_at = datetime.utcnow()
    return wm.last_value


def run_batches(step: Callable[[int], dict], *, max_batches: int) -> dict:
    """
    Call a batched stage from offset 0, following next_offset until it reports
    done or max_batches calls have been made. Numeric counters are summed.
    """
    totals: dict = {}
    offset = 0
    done = False
    batches = 0

    while batches < max_batches:
        result = step(offset)
        batches += 1
        for k, v in result.items():
            if k in ("offset", "next_offset", "done") or isinstance(v, bool) or not isinstance(v, (int, float)):
                continue
            totals[k] = totals.get(k, 0) + v
        offset = result["next_offset"]
        done = result["done"]
        if done:
            break

    if not done:
        logger.warning("batched stage stopped after %d batches at offset %d", batches, offset)
    return {**totals, "batches": batches, "next_offset": offset, "done": done}


def run_job(
    db: Session,
    job_name: str,
    source: str | None,
    fn: Callable[[], dict],
    *,
    dry_run: bool = False,
    count_key: str | None = None,
) -> dict:
    """
    Run one pipeline stage as a single transaction and record it in etl_job_runs.

    A dry run executes every read and computation, then rolls the writes back.
    """
    started_at = datetime.utcnow()
    logger.info("job %s starting (dry_run=%s)", job_name, dry_run)

    try:
        result = fn()
    except Exception as e:
        db.rollback()
        if dry_run:
            logger.error("job %s failed (dry run): %s", job_name, e)
            raise
        db.add(JobRun(
            id=str(uuid.uuid4()),
            job_name=job_name,
            source=source,
            status=JOB_FAILED,
            rowcount=0,
            message=str(e)[:MESSAGE_MAX],
            started_at=started_at,
            finished_at=datetime.utcnow(),
        ))
        db.commit()
        logger.error("job %s failed: %s", job_name, e)
        raise

    if dry_run:
        db.rollback()
    else:
        db.add(JobRun(
            id=str(uuid.uuid4()),
            job_name=job_name,
            source=source,
            status=JOB_SUCCESS,
            rowcount=int(result.get(count_key) or 0) if count_key else 0,
            started_at=started_at,
            finished_at=datetime.utcnow(),
        ))
        db.commit()

    logger.info("job %s finished: %s", job_name, result)
    return result
