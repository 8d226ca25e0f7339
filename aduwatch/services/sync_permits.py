from __future__ import annotations
import logging
from datetime import date, datetime, timedelta
from sqlalchemy.orm import Session

from ..models import Permit, Build
from ..normalize import classify_adu, permit_scope, parse_source_date, parse_float, parse_int
from ..adapters.socrata import SocrataClient
from ..settings import Settings
from .jobs import get_watermark, advance_watermark

logger = logging.getLogger(__name__)

WATERMARK_KEY = "ladbs_permits_api"
DEFAULT_LOOKBACK_DAYS = 90

PERMIT_FIELDS = [
    "permit_nbr",
    "primary_address",
    "zip_code",
    "issue_date",
    "cofo_date",
    "status_desc",
    "permit_type",
    "work_desc",
    "valuation",
    "square_footage",
    "apn",
    "lat",
    "lon",
]

def permit_record(row: dict) -> dict:
    work_desc = row.get("work_desc") or None
    adu_kind = classify_adu(work_desc)
    return {
        "permit_nbr": row["permit_nbr"].strip(),
        "issue_date": parse_source_date(row.get("issue_date")),
        "finaled_date": parse_source_date(row.get("cofo_date")),
        "status": row.get("status_desc") or None,
        "permit_type": row.get("permit_type") or None,
        "work_description": work_desc,
        "permit_scope": permit_scope(row.get("permit_type")),
        "is_adu": adu_kind is not None,
        "adu_classification": adu_kind,
    }

def build_record(row: dict) -> dict:
    valuation = parse_float(row.get("valuation"))
    sqft = parse_int(row.get("square_footage"))
    return {
        "address": row.get("primary_address") or None,
        "zip_code": row.get("zip_code") or None,
        "lat": parse_float(row.get("lat")),
        "lon": parse_float(row.get("lon")),
        "apn": row.get("apn") or None,
        "valuation": valuation,
        "sqft": sqft,
        "valuation_per_sqft": round(valuation / sqft, 2) if valuation and sqft else None,
    }

def upsert_permit(db: Session, *, row: dict) -> tuple[Permit, bool]:
    record = permit_record(row)
    existing = db.query(Permit).filter(Permit.permit_nbr == record["permit_nbr"]).one_or_none()

    if existing:
        for k, v in record.items():
            # a refresh without a CofO date must not erase one we already linked
            if k == "finaled_date" and v is None:
                continue
            setattr(existing, k, v)
        return existing, False

    p = Permit(**record)
    db.add(p)
    p.builds.append(Build(**build_record(row)))
    return p, True

def resolve_since(db: Session, settings: Settings, since: str | None) -> date:
    if since:
        return date.fromisoformat(since)
    wm = get_watermark(db, WATERMARK_KEY)
    if wm:
        return wm
    if settings.permits_initial_since:
        return date.fromisoformat(settings.permits_initial_since)
    return datetime.utcnow().date() - timedelta(days=DEFAULT_LOOKBACK_DAYS)

def sync_permits(
    db: Session,
    source: SocrataClient,
    settings: Settings,
    *,
    page_size: int | None = None,
    max_pages: int | None = None,
    since: str | None = None,
    offset: int | None = None,
) -> dict:
    """
    Pull permits whose cursor field is past the watermark and upsert them.

    With an explicit offset the call is one slice of a backfill: it starts
    paging there, reports next_offset/done, and leaves the watermark alone.
    """
    page_size = page_size or settings.permits_page_size
    max_pages = max_pages or settings.permits_max_pages
    cursor_field = settings.permits_cursor_field
    backfill = offset is not None
    start = offset or 0

    since_date = resolve_since(db, settings, since)
    where = f"{cursor_field} > '{since_date.isoformat()}'"
    if settings.permits_where:
        where = f"{where} AND {settings.permits_where}"

    logger.info("Syncing permits %s (offset=%s, pages<=%s)", where, start, max_pages)

    new_permits = 0
    updated_permits = 0
    skipped = 0
    seen = 0
    max_cursor: date | None = None
    done = False

    for page in range(max_pages):
        rows = source.fetch(
            settings.permits_dataset,
            where=where,
            order=f"{cursor_field} ASC",
            limit=page_size,
            offset=start + page * page_size,
            select=PERMIT_FIELDS + [cursor_field],
        )
        seen += len(rows)

        for row in rows:
            if not (row.get("permit_nbr") or "").strip():
                skipped += 1
                continue

            _, created = upsert_permit(db, row=row)
            if created:
                new_permits += 1
            else:
                updated_permits += 1

            c = parse_source_date(row.get(cursor_field))
            if c and (max_cursor is None or c > max_cursor):
                max_cursor = c

        db.flush()
        logger.info("permits page %d: %d rows", page + 1, len(rows))

        if len(rows) < page_size:
            done = True
            break

    if not backfill:
        advance_watermark(db, WATERMARK_KEY, max_cursor, records_processed=seen)

    return {
        "new_permits": new_permits,
        "updated_permits": updated_permits,
        "skipped": skipped,
        "total_processed": seen,
        "since": since_date.isoformat(),
        "max_cursor": max_cursor.isoformat() if max_cursor else None,
        "offset": start,
        "next_offset": start + seen,
        "done": done,
    }
