import re
import socket
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from aduwatch import models
from aduwatch.adapters.socrata import SocrataClient, soql_quote
from aduwatch.db import Base, enable_sqlite_savepoints
from aduwatch.settings import Settings

CRON_SECRET = "test-secret"
COMPARISON_RE = re.compile(r"(\w+) (>=|>) '([^']*)'")


def _compare(left, op, right):
    return left >= right if op == ">=" else left > right


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0] if isinstance(address, tuple) else address
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)


class FakeSource(SocrataClient):
    """
    In-memory stand-in for the Socrata API.

    rows: dataset -> list of records. match: dataset -> field whose quoted
    value must appear in an IN list of $where for a record to be returned.
    Simple `field > 'value'` and `field >= 'value'` terms are applied as
    string comparisons, which is enough for ISO dates.
    """

    def __init__(self, rows=None, match=None):
        super().__init__("http://socrata.invalid/resource")
        self.rows = rows or {}
        self.match = match or {}
        self.calls = []
        self.fail = None

    def fetch(self, dataset, *, where=None, order=None, limit=1000, offset=0, select=None):
        self.calls.append({"dataset": dataset, "where": where, "order": order, "limit": limit, "offset": offset})
        if self.fail is not None:
            exc = self.fail(self.calls[-1])
            if exc is not None:
                raise exc

        rows = self.rows.get(dataset, [])
        field = self.match.get(dataset)
        if field and where and f"{field} in (" in where:
            rows = [r for r in rows if soql_quote(r.get(field) or "") in where]
        for name, op, value in COMPARISON_RE.findall(where or ""):
            rows = [r for r in rows if r.get(name) is not None and _compare(str(r[name]), op, value)]
        return [dict(r) for r in rows[offset:offset + limit]]

    def offsets(self, dataset):
        return [c["offset"] for c in self.calls if c["dataset"] == dataset]


@pytest.fixture
def cfg():
    return Settings(
        _env_file=None,
        cron_secret=CRON_SECRET,
        permits_where=None,
        permits_initial_since="2024-01-01",
        scheduler_enabled=False,
    )


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=True, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def source(cfg):
    return FakeSource(match={
        cfg.inspections_dataset: "permit",
        cfg.cofo_dataset: "pcis_permit",
    })


@pytest.fixture
def make_permit(db):
    def _make(permit_nbr, *, status="Issued", issue_date=date(2024, 1, 1), finaled_date=None, **build_kw):
        p = models.Permit(
            permit_nbr=permit_nbr,
            status=status,
            issue_date=issue_date,
            finaled_date=finaled_date,
        )
        p.builds.append(models.Build(address=build_kw.pop("address", "123 MAIN ST"), **build_kw))
        db.add(p)
        db.flush()
        return p
    return _make


@pytest.fixture
def make_inspection(db):
    def _make(permit, day, kind, result, raw=None):
        i = models.Inspection(
            permit_id=permit.id,
            permit_number=permit.permit_nbr,
            inspection_date=day,
            inspection_type_raw=raw or kind,
            inspection_type=kind,
            result=result,
        )
        db.add(i)
        db.flush()
        return i
    return _make


@pytest.fixture
def client(db, cfg, source):
    from fastapi.testclient import TestClient
    from aduwatch.db import get_db
    from aduwatch.main import app, get_settings, get_source

    def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_settings] = lambda: cfg
    app.dependency_overrides[get_source] = lambda: source
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth():
    return {"Authorization": f"Bearer {CRON_SECRET}"}
