from __future__ import annotations
import logging
from sqlalchemy.orm import Session

from ..models import Permit, Amendment
from ..normalize import amendment_permit_numbers, amendment_digit, classify_contractor_change, parse_source_date
from ..adapters.socrata import SocrataClient, soql_in
from ..settings import Settings

logger = logging.getLogger(__name__)

AMENDMENT_FIELDS = ["permit_nbr", "work_desc", "issue_date", "cofo_date", "status_desc"]

def upsert_amendment(db: Session, *, record: dict) -> Amendment:
    existing = db.query(Amendment).filter(
        Amendment.amendment_permit_nbr == record["amendment_permit_nbr"],
    ).one_or_none()

    if existing:
        for k, v in record.items():
            setattr(existing, k, v)
        return existing

    a = Amendment(**record)
    db.add(a)
    return a

def import_amendments(
    db: Session,
    source: SocrataClient,
    settings: Settings,
    *,
    offset: int = 0,
    limit: int | None = None,
) -> dict:
    """
    Look up amendments 1-9 for one batch of stored permits with a single
    batched query, and upsert whatever the city has on file.
    """
    limit = limit or settings.amendments_batch_size
    digit_offset = settings.amendment_digit_offset

    permits = (
        db.query(Permit.id, Permit.permit_nbr)
        .order_by(Permit.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    if not permits:
        return {"processed": 0, "total_fetched": 0, "total_upserted": 0, "contractor_changes": 0,
                "offset": offset, "next_offset": offset, "done": True}

    # amendment number -> (permit id, base number)
    owners: dict[str, tuple[int, str]] = {}
    for pid, base in permits:
        for nbr in amendment_permit_numbers(base, digit_offset):
            owners[nbr] = (pid, base)

    rows: list[dict] = []
    if owners:
        rows = source.fetch_all(
            settings.permits_dataset,
            where=soql_in("permit_nbr", owners.keys()),
            order="permit_nbr ASC",
            select=AMENDMENT_FIELDS,
            page_size=1000,
        )

    upserted = 0
    changes = 0
    for row in rows:
        nbr = (row.get("permit_nbr") or "").strip()
        owner = owners.get(nbr)
        if owner is None:
            continue
        permit_id, base = owner

        work_desc = row.get("work_desc") or ""
        change_type = classify_contractor_change(work_desc)
        if change_type:
            changes += 1

        upsert_amendment(db, record={
            "permit_id": permit_id,
            "base_permit_nbr": base,
            "amendment_permit_nbr": nbr,
            "amendment_number": amendment_digit(nbr, digit_offset),
            "work_description": work_desc or None,
            "issue_date": parse_source_date(row.get("issue_date")),
            "finaled_date": parse_source_date(row.get("cofo_date")),
            "status": row.get("status_desc") or None,
            "has_contractor_change": change_type is not None,
            "contractor_change_type": change_type,
        })
        upserted += 1

    db.flush()
    logger.info("amendments: %d permits, %d rows fetched, %d upserted", len(permits), len(rows), upserted)

    return {
        "processed": len(permits),
        "total_fetched": len(rows),
        "total_upserted": upserted,
        "contractor_changes": changes,
        "offset": offset,
        "next_offset": offset + len(permits),
        "done": len(permits) < limit,
    }
