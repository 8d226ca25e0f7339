from datetime import date

from aduwatch.models import Inspection
from aduwatch.services.inspections import WATERMARK_KEY, sync_inspections
from aduwatch.services.jobs import get_watermark


def _insp(permit, day, kind, result):
    return {"permit": permit, "inspection_date": f"{day}T00:00:00.000", "inspection": kind, "inspection_result": result}


def test_walks_permits_in_batches_and_advances_watermark_at_the_end(db, cfg, source, make_permit):
    a = make_permit("21010-10000-00001")
    b = make_permit("21010-10000-00002")
    source.rows[cfg.inspections_dataset] = [
        _insp(a.permit_nbr, "2024-03-01", "Foundation", "Corrections Issued"),
        _insp(a.permit_nbr, "2024-03-01", "FOUNDATION", "Approved"),
        _insp(b.permit_nbr, "2024-04-10", "Final", "Permit Finaled"),
        _insp("99999-90000-00000", "2024-05-01", "Final", "Approved"),
    ]

    result = sync_inspections(db, source, cfg, id_batch=1)

    assert result["permits_scanned"] == 2
    assert result["fetched"] == 3
    assert result["imported"] == 2
    assert result["done"] is True
    assert result["next_offset"] == 2
    assert get_watermark(db, WATERMARK_KEY) == date(2024, 4, 10)

    rows = db.query(Inspection).order_by(Inspection.inspection_date).all()
    assert [(r.permit_id, r.inspection_type, r.result) for r in rows] == [
        (a.id, "FOUNDATION", "APPROVED"),
        (b.id, "FINAL", "PERMIT FINALED"),
    ]


def test_partial_walk_leaves_watermark(db, cfg, source, make_permit):
    a = make_permit("21010-10000-00001")
    make_permit("21010-10000-00002")
    source.rows[cfg.inspections_dataset] = [_insp(a.permit_nbr, "2024-03-01", "FRAMING", "APPROVED")]

    result = sync_inspections(db, source, cfg, id_batch=1, max_permit_pages=1)

    assert result["done"] is False
    assert result["next_offset"] == 1
    assert result["imported"] == 1
    assert get_watermark(db, WATERMARK_KEY) is None


def test_since_bounds_the_query(db, cfg, source, make_permit):
    make_permit("21010-10000-00001")

    sync_inspections(db, source, cfg, since="2024-06-01")

    where = source.calls[0]["where"]
    assert where.startswith("permit in ('21010-10000-00001')")
    assert where.endswith("AND inspection_date >= '2024-06-01T00:00:00'")


def test_rerun_does_not_duplicate_or_downgrade(db, cfg, source, make_permit):
    a = make_permit("21010-10000-00001")
    source.rows[cfg.inspections_dataset] = [_insp(a.permit_nbr, "2024-03-01", "FRAMING", "APPROVED")]
    sync_inspections(db, source, cfg, since="2024-01-01")

    source.rows[cfg.inspections_dataset] = [_insp(a.permit_nbr, "2024-03-01", "FRAMING", "Cancelled")]
    result = sync_inspections(db, source, cfg, since="2024-01-01")

    assert result["imported"] == 0
    (row,) = db.query(Inspection).all()
    assert row.result == "APPROVED"


def test_watermark_day_is_read_again_on_the_next_run(db, cfg, source, make_permit):
    a = make_permit("21010-10000-00001")
    source.rows[cfg.inspections_dataset] = [_insp(a.permit_nbr, "2024-03-01", "FRAMING", "APPROVED")]
    sync_inspections(db, source, cfg)
    assert get_watermark(db, WATERMARK_KEY) == date(2024, 3, 1)

    source.rows[cfg.inspections_dataset].append(_insp(a.permit_nbr, "2024-03-01", "FOUNDATION", "APPROVED"))
    result = sync_inspections(db, source, cfg)

    assert "inspection_date >= '2024-03-01T00:00:00'" in source.calls[-1]["where"]
    assert result["imported"] == 1
    assert db.query(Inspection).count() == 2


def test_page_cap_holds_watermark_until_batch_is_fully_read(db, cfg, source, make_permit):
    a = make_permit("21010-10000-00001")
    b = make_permit("21010-10000-00002")
    source.rows[cfg.inspections_dataset] = [
        _insp(a.permit_nbr, "2024-03-01", "FOUNDATION", "APPROVED"),
        _insp(a.permit_nbr, "2024-03-02", "FRAMING", "APPROVED"),
        _insp(a.permit_nbr, "2024-03-03", "DRYWALL", "APPROVED"),
        _insp(a.permit_nbr, "2024-03-04", "FINAL", "APPROVED"),
        _insp(b.permit_nbr, "2024-06-01", "FINAL", "APPROVED"),
    ]

    def run():
        return sync_inspections(db, source, cfg, id_batch=1, page_size=2, pages_per_batch=1)

    first = run()
    assert first["done"] is True
    assert first["truncated_batches"] == 1
    assert get_watermark(db, WATERMARK_KEY) == date(2024, 3, 2)

    for _ in range(3):
        run()

    assert db.query(Inspection).filter(Inspection.permit_id == a.id).count() == 4
    assert get_watermark(db, WATERMARK_KEY) == date(2024, 6, 1)
