import pytest

from aduwatch.models import JobRun, Permit
from aduwatch.services.jobs import run_batches, run_job


def test_failed_dry_run_leaves_no_trace(db):
    def stage():
        db.add(Permit(permit_nbr="21010-10000-00001"))
        db.flush()
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        run_job(db, "sync_permits", None, stage, dry_run=True)

    assert db.query(Permit).count() == 0
    assert db.query(JobRun).count() == 0


def test_failed_live_run_is_audited(db):
    def stage():
        raise RuntimeError("x" * 600)

    with pytest.raises(RuntimeError):
        run_job(db, "sync_permits", None, stage)

    job = db.query(JobRun).one()
    assert len(job.message) == 500


def test_run_batches_follows_next_offset_and_sums_counters():
    seen = []

    def step(offset):
        seen.append(offset)
        n = 2 if offset < 4 else 1
        return {"processed": n, "ratio": 0.5, "done": n < 2, "offset": offset,
                "next_offset": offset + n, "since": "2024-01-01", "flag": True}

    result = run_batches(step, max_batches=10)

    assert seen == [0, 2, 4]
    assert result["processed"] == 5
    assert result["ratio"] == 1.5
    assert result["batches"] == 3
    assert result["next_offset"] == 5
    assert result["done"] is True
    assert "since" not in result and "flag" not in result


def test_run_batches_stops_at_the_cap():
    result = run_batches(lambda o: {"processed": 1, "next_offset": o + 1, "done": False}, max_batches=3)
    assert result == {"processed": 3, "batches": 3, "next_offset": 3, "done": False}
