import logging
import secrets
from datetime import datetime, timezone
from typing import Callable

from fastapi import FastAPI, APIRouter, Depends, Query, Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session

from .db import Base, engine, get_db
from .models import Permit, Contractor, BuildContractor, Build, Inspection, PhaseMetrics
from .schemas import ContractorOut, ContractorDetailOut, BuildOut, PermitTimelineOut
from .adapters.socrata import SocrataClient
from .scheduler import start_scheduler
from .settings import Settings, settings
from .services.jobs import run_job, run_batches
from .services.sync_permits import sync_permits, WATERMARK_KEY as PERMITS_SOURCE
from .services.inspections import sync_inspections, WATERMARK_KEY as INSPECTIONS_SOURCE
from .services.amendments import import_amendments
from .services.certificates import sync_certificates
from .services.durations import compute_durations, sync_finaled_dates
from .services.contractor_metrics import compute_contractor_metrics

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s  %(levelname)-8s  %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)

def get_settings() -> Settings:
    return settings

def get_source(cfg: Settings = Depends(get_settings)) -> SocrataClient:
    return SocrataClient(cfg.socrata_base_url, app_token=cfg.socrata_app_token, timeout=cfg.socrata_timeout)

def require_cron_secret(request: Request, cfg: Settings = Depends(get_settings)):
    header = request.headers.get("authorization") or ""
    expected = f"Bearer {cfg.cron_secret}"
    if not cfg.cron_secret or not secrets.compare_digest(header, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")

@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    if settings.scheduler_enabled:
        start_scheduler()

@app.get("/health")
def health():
    return {"ok": True, "app": settings.app_name}

# ============================================================
# Scheduled pipeline endpoints
# ============================================================
cron = APIRouter(prefix="/api/cron", dependencies=[Depends(require_cron_secret)])

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

def _run(db: Session, job_name: str, source: str | None, fn: Callable[[], dict], *, dry_run: bool, count_key: str):
    try:
        result = run_job(db, job_name, source, fn, dry_run=dry_run, count_key=count_key)
    except Exception as e:
        logger.exception("%s failed", job_name)
        return JSONResponse({"success": False, "error": str(e), "timestamp": _now()}, status_code=500)
    return {"success": True, **result, "dry_run": dry_run, "timestamp": _now()}

@cron.get("/sync-permits")
def cron_sync_permits(
    page_size: int | None = Query(default=None, alias="pageSize", ge=1, le=5000),
    pages: int | None = Query(default=None, ge=1, le=100),
    since: str | None = Query(default=None, description="YYYY-MM-DD, overrides the watermark"),
    offset: int | None = Query(default=None, ge=0, description="backfill mode"),
    dry_run: bool = Query(default=False, alias="dryRun"),
    db: Session = Depends(get_db),
    source: SocrataClient = Depends(get_source),
    cfg: Settings = Depends(get_settings),
):
    return _run(
        db, "sync_permits", PERMITS_SOURCE,
        lambda: sync_permits(db, source, cfg, page_size=page_size, max_pages=pages, since=since, offset=offset),
        dry_run=dry_run, count_key="total_processed",
    )

@cron.get("/import-amendments")
def cron_import_amendments(
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1, le=500),
    dry_run: bool = Query(default=False, alias="dryRun"),
    db: Session = Depends(get_db),
    source: SocrataClient = Depends(get_source),
    cfg: Settings = Depends(get_settings),
):
    return _run(
        db, "import_amendments", PERMITS_SOURCE,
        lambda: import_amendments(db, source, cfg, offset=offset, limit=limit),
        dry_run=dry_run, count_key="total_upserted",
    )

@cron.get("/sync-coo")
def cron_sync_coo(
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1, le=500),
    dry_run: bool = Query(default=False, alias="dryRun"),
    db: Session = Depends(get_db),
    source: SocrataClient = Depends(get_source),
    cfg: Settings = Depends(get_settings),
):
    return _run(
        db, "sync_coo", "ladbs_cofo_api",
        lambda: sync_certificates(db, source, cfg, offset=offset, limit=limit),
        dry_run=dry_run, count_key="contractors_linked",
    )

@cron.get("/import-inspections")
def cron_import_inspections(
    since: str | None = Query(default=None, description="YYYY-MM-DD inspection_date lower bound"),
    id_batch: int | None = Query(default=None, alias="idBatch", ge=1, le=500),
    permit_pages: int | None = Query(default=None, alias="permitPages", ge=1, le=200),
    limit: int | None = Query(default=None, ge=1, le=1000),
    pages_per_batch: int | None = Query(default=None, alias="pagesPerIdBatch", ge=1, le=20),
    offset: int = Query(default=0, ge=0),
    dry_run: bool = Query(default=False, alias="dryRun"),
    db: Session = Depends(get_db),
    source: SocrataClient = Depends(get_source),
    cfg: Settings = Depends(get_settings),
):
    return _run(
        db, "import_inspections", INSPECTIONS_SOURCE,
        lambda: sync_inspections(
            db, source, cfg,
            since=since, id_batch=id_batch, max_permit_pages=permit_pages,
            page_size=limit, pages_per_batch=pages_per_batch, offset=offset,
        ),
        dry_run=dry_run, count_key="imported",
    )

@cron.get("/sync-finaled-dates")
def cron_sync_finaled_dates(
    dry_run: bool = Query(default=False, alias="dryRun"),
    db: Session = Depends(get_db),
):
    return _run(db, "sync_finaled_dates", None, lambda: sync_finaled_dates(db),
                dry_run=dry_run, count_key="synced_count")

@cron.get("/compute-durations")
def cron_compute_durations(
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1, le=10000),
    dry_run: bool = Query(default=False, alias="dryRun"),
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    return _run(db, "compute_durations", None,
                lambda: compute_durations(db, cfg, offset=offset, limit=limit),
                dry_run=dry_run, count_key="processed")

@cron.get("/compute-contractor-metrics")
def cron_compute_contractor_metrics(
    dry_run: bool = Query(default=False, alias="dryRun"),
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    return _run(db, "compute_contractor_metrics", None,
                lambda: compute_contractor_metrics(db, cfg),
                dry_run=dry_run, count_key="updated")

@cron.get("/calculations")
def cron_calculations(
    dry_run: bool = Query(default=False, alias="dryRun"),
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    def all_calculations() -> dict:
        return {
            "finaled_dates": sync_finaled_dates(db),
            "durations": run_batches(
                lambda o: compute_durations(db, cfg, offset=o), max_batches=cfg.pipeline_max_batches,
            ),
            "contractor_metrics": compute_contractor_metrics(db, cfg),
        }

    return _run(db, "run_all_calculations", None, all_calculations, dry_run=dry_run, count_key=None)

app.include_router(cron)

# ============================================================
# Dashboard reads
# ============================================================
@app.get("/contractors", response_model=list[ContractorOut])
def list_contractors(
    min_builds: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    query = db.query(Contractor)
    if min_builds:
        query = query.filter(Contractor.total_builds >= min_builds)

    return (
        query.order_by(
            Contractor.completion_rate.is_(None),
            Contractor.completion_rate.desc(),
            Contractor.contractor_name.asc(),
        )
        .limit(limit)
        .all()
    )

@app.get("/contractors/{contractor_id}", response_model=ContractorDetailOut)
def get_contractor(contractor_id: int, db: Session = Depends(get_db)):
    c = db.get(Contractor, contractor_id)
    if not c:
        raise HTTPException(status_code=404, detail="Not found")

    builds = (
        db.query(Build)
        .join(BuildContractor, BuildContractor.build_id == Build.id)
        .filter(BuildContractor.contractor_id == contractor_id)
        .order_by(Build.started_date.is_(None), Build.started_date.desc())
        .all()
    )
    return ContractorDetailOut(
        contractor=ContractorOut.model_validate(c),
        builds=[BuildOut.model_validate(b) for b in builds],
    )

@app.get("/permits/{permit_nbr}/timeline", response_model=PermitTimelineOut)
def permit_timeline(permit_nbr: str, db: Session = Depends(get_db)):
    p = db.query(Permit).filter(Permit.permit_nbr == permit_nbr).one_or_none()
    if not p:
        raise HTTPException(status_code=404, detail="Not found")

    inspections = (
        db.query(Inspection)
        .filter(Inspection.permit_id == p.id)
        .order_by(Inspection.inspection_date.asc(), Inspection.id.asc())
        .all()
    )
    phases = db.query(PhaseMetrics).filter(PhaseMetrics.permit_number == p.permit_nbr).one_or_none()

    return PermitTimelineOut.model_validate({
        "permit_nbr": p.permit_nbr,
        "status": p.status,
        "adu_classification": p.adu_classification,
        "issue_date": p.issue_date,
        "started_date": p.started_date,
        "finaled_date": p.finaled_date,
        "pull_to_start_lag_days": p.pull_to_start_lag_days,
        "started_but_not_completed": p.started_but_not_completed,
        "phases": phases,
        "inspections": inspections,
        "amendments": p.amendments,
    }, from_attributes=True)
