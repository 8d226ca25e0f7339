from __future__ import annotations
import logging
from datetime import date
from typing import Iterable
from sqlalchemy.orm import Session

from ..models import Permit, Inspection
from ..normalize import norm, parse_source_date, result_rank, normalize_inspection_type
from ..adapters.socrata import SocrataClient, soql_in
from ..settings import Settings
from .jobs import get_watermark, advance_watermark

logger = logging.getLogger(__name__)

WATERMARK_KEY = "ladbs_inspections_api"

INSPECTION_FIELDS = ["permit", "inspection_date", "inspection", "inspection_result"]

def dedupe_inspections(rows: Iterable[dict]) -> dict[tuple[str, str, str], dict]:
    """
    Collapse rows sharing (permit, inspection_date, normalized type) to the one
    with the best result. Ties keep the first row seen.
    """
    best: dict[tuple[str, str, str], dict] = {}
    for r in rows:
        permit = (r.get("permit") or "").strip()
        dt = r.get("inspection_date")
        if not permit or not dt:
            continue

        t = norm(r.get("inspection"))
        result = norm(r.get("inspection_result"))
        key = (permit, dt, t)

        current = best.get(key)
        if current is None or result_rank(result) > result_rank(current["result"]):
            best[key] = {"permit": permit, "inspection_date": dt, "inspection": t, "result": result}
    return best

def upsert_inspection(db: Session, *, permit_id: int | None, rec: dict) -> bool:
    """Insert, or replace the stored result only when the new one outranks it."""
    day = parse_source_date(rec["inspection_date"])
    if day is None:
        return False

    existing = db.query(Inspection).filter(
        Inspection.permit_number == rec["permit"],
        Inspection.inspection_date == day,
        Inspection.inspection_type_raw == rec["inspection"],
    ).one_or_none()

    if existing:
        if result_rank(rec["result"]) > result_rank(existing.result):
            existing.result = rec["result"] or None
            return True
        return False

    db.add(Inspection(
        permit_id=permit_id,
        permit_number=rec["permit"],
        inspection_date=day,
        inspection_type_raw=rec["inspection"],
        inspection_type=normalize_inspection_type(rec["inspection"]),
        result=rec["result"] or None,
    ))
    return True

def _permit_batch(db: Session, offset: int, size: int) -> list[tuple[int, str]]:
    return (
        db.query(Permit.id, Permit.permit_nbr)
        .order_by(Permit.permit_nbr.asc())
        .offset(offset)
        .limit(size)
        .all()
    )

def sync_inspections(
    db: Session,
    source: SocrataClient,
    settings: Settings,
    *,
    since: str | None = None,
    id_batch: int | None = None,
    max_permit_pages: int | None = None,
    page_size: int | None = None,
    pages_per_batch: int | None = None,
    offset: int = 0,
) -> dict:
    """
    Pull inspections for permits already in the store, batch by batch.

    The watermark only advances once the permit list has been walked to the end.
    A batch whose rows ran past the page cap holds it at the last day fetched
    for that batch, so the next run re-reads from there.
    """
    id_batch = min(id_batch or settings.inspections_id_batch, 500)
    max_permit_pages = min(max_permit_pages or settings.inspections_max_permit_pages, 200)
    page_size = min(page_size or settings.inspections_page_size, 1000)
    pages_per_batch = min(pages_per_batch or settings.inspections_pages_per_batch, 20)

    since_date: date | None = date.fromisoformat(since) if since else get_watermark(db, WATERMARK_KEY)

    imported = 0
    fetched = 0
    permits_scanned = 0
    max_date: date | None = None
    hold: date | None = None
    truncated = 0
    done = False
    cursor = offset

    for _ in range(max_permit_pages):
        batch = _permit_batch(db, cursor, id_batch)
        if not batch:
            done = True
            break

        ids = {nbr: pid for pid, nbr in batch}
        where = soql_in("permit", ids.keys())
        if since_date:
            where += f" AND inspection_date >= '{since_date.isoformat()}T00:00:00'"

        rows: list[dict] = []
        for p in range(pages_per_batch):
            page = source.fetch(
                settings.inspections_dataset,
                where=where,
                order="inspection_date ASC, permit ASC",
                limit=page_size,
                offset=p * page_size,
                select=INSPECTION_FIELDS,
            )
            rows.extend(page)
            if len(page) < page_size:
                break
        else:
            last = parse_source_date(rows[-1].get("inspection_date")) if rows else None
            if last and (hold is None or last < hold):
                hold = last
            truncated += 1
            logger.warning("inspections: batch at offset %d hit the page cap at %s", cursor, last)
        fetched += len(rows)

        for rec in dedupe_inspections(rows).values():
            d = parse_source_date(rec["inspection_date"])
            if d and (max_date is None or d > max_date):
                max_date = d
            if upsert_inspection(db, permit_id=ids.get(rec["permit"]), rec=rec):
                imported += 1

        db.flush()
        permits_scanned += len(batch)
        cursor += len(batch)

        if len(batch) < id_batch:
            done = True
            break

    if done:
        upto = min(max_date, hold) if max_date and hold else max_date
        advance_watermark(db, WATERMARK_KEY, upto, records_processed=fetched)

    logger.info("inspections: scanned %d permits, fetched %d rows, wrote %d", permits_scanned, fetched, imported)

    return {
        "imported": imported,
        "fetched": fetched,
        "permits_scanned": permits_scanned,
        "since": since_date.isoformat() if since_date else None,
        "max_inspection_date": max_date.isoformat() if max_date else None,
        "truncated_batches": truncated,
        "offset": offset,
        "next_offset": cursor,
        "done": done,
    }
