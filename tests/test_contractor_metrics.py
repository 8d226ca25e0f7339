from datetime import date, datetime

from aduwatch.models import BuildContractor, Contractor, ROLE_PRIMARY
from aduwatch.services.contractor_metrics import (
    average,
    average_positive,
    compute_contractor_metrics,
    months_before,
)

TODAY = date(2025, 6, 30)


def test_average_positive_ignores_nulls_and_non_positive():
    assert average_positive([30, None, -5, 60]) == 45
    assert average_positive([0, None]) is None
    assert average_positive([]) is None
    assert average_positive([1, 2], ndigits=1) == 1.5
    assert average_positive([44, 45]) == 45
    assert average_positive([2, 3]) == 3


def test_average_keeps_zeros():
    assert average([0, 2, None, 1]) == 1.0
    assert average([None]) is None


def test_months_before_clamps_day():
    assert months_before(date(2025, 3, 31), 1) == date(2025, 2, 28)
    assert months_before(date(2025, 6, 30), 18) == date(2023, 12, 30)
    assert months_before(date(2025, 1, 15), 12) == date(2024, 1, 15)


def _link(db, contractor, permit):
    db.add(BuildContractor(build_id=permit.builds[0].id, contractor_id=contractor.id, role=ROLE_PRIMARY))


def test_rollup_over_linked_builds(db, cfg, make_permit):
    c = Contractor(contractor_name="ACME", license_number="123")
    db.add(c)
    db.flush()

    done = make_permit(
        "21010-10000-00001",
        issue_date=date(2024, 1, 1),
        finaled_date=date(2024, 9, 1),
        started_date=date(2024, 2, 1),
        time_to_completion_days=213,
        time_to_pass_final_days=10,
        pull_to_start_lag_days=31,
        total_failures=2,
    )
    active = make_permit(
        "21010-10000-00002",
        issue_date=date(2025, 1, 1),
        started_date=date(2025, 2, 1),
        pull_to_start_lag_days=31,
        total_failures=0,
    )
    stale = make_permit(
        "21010-10000-00003",
        issue_date=date(2022, 1, 1),
        started_date=date(2022, 3, 1),
        total_failures=1,
    )
    # permit-level finaled date is copied to builds by a separate stage
    done.builds[0].finaled_date = done.finaled_date
    never = make_permit("21010-10000-00004", issue_date=date(2023, 5, 1))
    never.builds[0].created_at = datetime(2023, 5, 1)
    stale.builds[0].created_at = datetime(2022, 1, 1)
    for p in (done, active, stale, never):
        _link(db, c, p)
    db.flush()

    result = compute_contractor_metrics(db, cfg, today=TODAY)

    assert result == {"processed": 1, "updated": 1}
    assert c.total_builds == 4
    assert c.active_builds == 1
    assert c.completion_rate == 33.3
    assert c.avg_time_to_completion_days == 213
    assert c.avg_time_to_pass_final_days == 10
    assert c.avg_pull_to_start_lag_days == 31
    assert c.avg_failed_inspections == 1.0
    assert c.last_active_date == date(2025, 2, 1)
    assert c.builds_in_last_year == 2
    assert c.metrics_updated_at is not None


def test_contractor_without_started_builds_has_no_completion_rate(db, cfg, make_permit):
    c = Contractor(contractor_name="NEW CO", license_number="456")
    db.add(c)
    db.flush()
    p = make_permit("21010-10000-00001")
    _link(db, c, p)
    db.flush()

    compute_contractor_metrics(db, cfg, today=TODAY)

    assert c.total_builds == 1
    assert c.completion_rate is None
    assert c.active_builds == 0
    assert c.avg_time_to_completion_days is None


def test_contractor_without_builds_is_zeroed(db, cfg):
    c = Contractor(contractor_name="EMPTY", license_number="789")
    db.add(c)
    db.flush()

    compute_contractor_metrics(db, cfg, today=TODAY)

    assert c.total_builds == 0
    assert c.completion_rate is None
    assert c.last_active_date is None
    assert c.avg_failed_inspections is None
