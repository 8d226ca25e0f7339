from __future__ import annotations
import logging
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Permit, Build, Contractor, BuildContractor, ROLE_PRIMARY
from ..normalize import amendment_permit_numbers, permit_number_variants, parse_source_date
from ..adapters.socrata import SocrataClient, soql_in
from ..settings import Settings

logger = logging.getLogger(__name__)

def candidate_permit_numbers(base: str, digit_offset: int) -> list[str]:
    """Base permit first, then amendments 1-9. The base always wins."""
    return [base] + amendment_permit_numbers(base, digit_offset)

def find_certificate(source: SocrataClient, settings: Settings, permit_nbr: str) -> dict | None:
    """
    One query per candidate covering its spelling variants; among the hits the
    row matching the earliest variant is preferred.
    """
    variants = permit_number_variants(permit_nbr)
    rows = source.fetch(
        settings.cofo_dataset,
        where=soql_in("pcis_permit", variants),
        order="cofo_issue_date ASC",
        limit=50,
    )
    if not rows:
        return None

    rank = {v: i for i, v in enumerate(variants)}
    return min(rows, key=lambda r: rank.get((r.get("pcis_permit") or "").strip(), len(variants)))

def resolve_contractor(db: Session, cofo: dict) -> tuple[Contractor, bool]:
    license_number = str(cofo["license"]).strip()
    found = db.query(Contractor).filter(Contractor.license_number == license_number).one_or_none()
    if found:
        return found, False

    c = Contractor(
        contractor_name=(cofo.get("contractors_business_name") or "").strip() or "Unknown",
        license_number=license_number,
        license_type=cofo.get("license_type") or None,
    )
    try:
        with db.begin_nested():
            db.add(c)
    except IntegrityError:
        # created concurrently by another run
        return db.query(Contractor).filter(Contractor.license_number == license_number).one(), False
    return c, True

def link_primary_contractor(db: Session, build_id: int, contractor_id: int) -> bool:
    already = db.query(BuildContractor.id).filter(
        BuildContractor.build_id == build_id,
        BuildContractor.role == ROLE_PRIMARY,
    ).first()
    if already:
        return False

    try:
        with db.begin_nested():
            db.add(BuildContractor(build_id=build_id, contractor_id=contractor_id, role=ROLE_PRIMARY))
    except IntegrityError:
        logger.info("build %s already has a primary contractor", build_id)
        return False
    return True

def _unlinked_finaled_permits(db: Session, status: str, offset: int, limit: int) -> list[tuple[Permit, Build]]:
    """Finaled permits none of whose builds has a PRIMARY contractor, paired with their first build."""
    with_primary = (
        select(Build.permit_id)
        .join(BuildContractor, BuildContractor.build_id == Build.id)
        .where(BuildContractor.role == ROLE_PRIMARY)
    )
    permits = (
        db.query(Permit)
        .filter(Permit.status == status)
        .filter(Permit.builds.any())
        .filter(Permit.id.not_in(with_primary))
        .order_by(Permit.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return [(p, p.builds[0]) for p in permits]

def sync_certificates(
    db: Session,
    source: SocrataClient,
    settings: Settings,
    *,
    offset: int = 0,
    limit: int | None = None,
) -> dict:
    limit = limit or settings.cofo_batch_size
    batch = _unlinked_finaled_permits(db, settings.finaled_status, offset, limit)

    updated = 0
    created = 0
    linked = 0
    matched = 0

    for permit, build in batch:
        cofo = None
        for nbr in candidate_permit_numbers(permit.permit_nbr, settings.amendment_digit_offset):
            cofo = find_certificate(source, settings, nbr)
            if cofo is not None:
                break

        if cofo is None:
            continue
        matched += 1

        issued = parse_source_date(cofo.get("cofo_issue_date"))
        if issued and permit.finaled_date is None:
            permit.finaled_date = issued
            updated += 1

        if not cofo.get("license"):
            logger.debug("certificate for %s has no license number", permit.permit_nbr)
            continue

        contractor, was_created = resolve_contractor(db, cofo)
        if was_created:
            created += 1
        if link_primary_contractor(db, build.id, contractor.id):
            linked += 1

    db.flush()
    logger.info("certificates: %d permits checked, %d matched, %d linked", len(batch), matched, linked)

    # linked permits drop out of the selection; only the rest are stepped over
    next_offset = offset + (len(batch) - linked)
    return {
        "permits_checked": len(batch),
        "certificates_matched": matched,
        "permits_updated": updated,
        "contractors_created": created,
        "contractors_linked": linked,
        "offset": offset,
        "next_offset": next_offset,
        "done": len(batch) < limit,
    }
