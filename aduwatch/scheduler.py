import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from .db import SessionLocal
from .settings import Settings, settings
from .adapters.socrata import SocrataClient
from .services.jobs import run_job, run_batches
from .services.sync_permits import sync_permits, WATERMARK_KEY as PERMITS_SOURCE
from .services.inspections import sync_inspections, WATERMARK_KEY as INSPECTIONS_SOURCE
from .services.amendments import import_amendments
from .services.certificates import sync_certificates
from .services.durations import compute_durations, sync_finaled_dates
from .services.contractor_metrics import compute_contractor_metrics

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()

def pipeline_stages(source: SocrataClient, cfg: Settings):
    """(job name, source key, stage(db), count key) in dependency order."""

    def walk(stage):
        # batched stages run from offset 0 until they report done
        return lambda db: run_batches(lambda o: stage(db, offset=o), max_batches=cfg.pipeline_max_batches)

    return [
        ("sync_permits", PERMITS_SOURCE, lambda db: sync_permits(db, source, cfg), "total_processed"),
        ("import_amendments", PERMITS_SOURCE,
         walk(lambda db, offset: import_amendments(db, source, cfg, offset=offset)), "total_upserted"),
        ("sync_coo", "ladbs_cofo_api",
         walk(lambda db, offset: sync_certificates(db, source, cfg, offset=offset)), "contractors_linked"),
        ("import_inspections", INSPECTIONS_SOURCE, lambda db: sync_inspections(db, source, cfg), "imported"),
        ("sync_finaled_dates", None, lambda db: sync_finaled_dates(db), "synced_count"),
        ("compute_durations", None, walk(lambda db, offset: compute_durations(db, cfg, offset=offset)), "processed"),
        ("compute_contractor_metrics", None, lambda db: compute_contractor_metrics(db, cfg), "updated"),
    ]

def run_pipeline(cfg: Settings = settings, source: SocrataClient | None = None, session_factory=SessionLocal) -> dict:
    source = source or SocrataClient(cfg.socrata_base_url, app_token=cfg.socrata_app_token, timeout=cfg.socrata_timeout)
    outcome: dict = {}

    for name, key, stage, count_key in pipeline_stages(source, cfg):
        db: Session = session_factory()
        try:
            # a failed stage is already in etl_job_runs; later stages still run on stored data
            outcome[name] = run_job(db, name, key, lambda: stage(db), count_key=count_key)
        except Exception as e:
            logger.exception("pipeline stage %s failed", name)
            outcome[name] = {"error": str(e)}
        finally:
            db.close()
    return outcome

def _run_pipeline():
    run_pipeline(settings)

def start_scheduler():
    scheduler.add_job(
        _run_pipeline,
        CronTrigger(hour=settings.pipeline_cron_hour, minute=settings.pipeline_cron_minute),
        id="ladbs_pipeline",
        replace_existing=True,
    )
    scheduler.start()
