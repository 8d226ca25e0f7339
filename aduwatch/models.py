from sqlalchemy import String, Text, Date, DateTime, Integer, Float, Boolean, ForeignKey, UniqueConstraint, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import date, datetime
from .db import Base

# contractor change classification on amendments
CONTRACTOR_CHANGE = "CONTRACTOR_CHANGE"
CONTRACTOR_TO_OWNER = "CONTRACTOR_TO_OWNER"
OWNER_TO_CONTRACTOR = "OWNER_TO_CONTRACTOR"

ROLE_PRIMARY = "PRIMARY"

JOB_SUCCESS = "SUCCESS"
JOB_FAILED = "FAILED"

class Permit(Base):
    __tablename__ = "permits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    permit_nbr: Mapped[str] = mapped_column(String, unique=True, index=True)

    issue_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    finaled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    permit_type: Mapped[str | None] = mapped_column(String, nullable=True)
    work_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    permit_scope: Mapped[str | None] = mapped_column(String, nullable=True)  # NEW / ADDITION / ALTERATION
    is_adu: Mapped[bool] = mapped_column(Boolean, default=False)
    adu_classification: Mapped[str | None] = mapped_column(String, nullable=True)  # ADU / JADU

    # written by the duration computer
    started_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    pull_to_start_lag_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_but_not_completed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    builds: Mapped[list["Build"]] = relationship(back_populates="permit", order_by="Build.id")
    amendments: Mapped[list["Amendment"]] = relationship(back_populates="permit", order_by="Amendment.amendment_number")


class Build(Base):
    __tablename__ = "builds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    permit_id: Mapped[int] = mapped_column(Integer, ForeignKey("permits.id"), index=True)

    address: Mapped[str | None] = mapped_column(String, nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String, nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    apn: Mapped[str | None] = mapped_column(String, nullable=True)
    valuation: Mapped[float | None] = mapped_column(Float, nullable=True)
    sqft: Mapped[int | None] = mapped_column(Integer, nullable=True)
    valuation_per_sqft: Mapped[float | None] = mapped_column(Float, nullable=True)

    started_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    finaled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completion_status: Mapped[str | None] = mapped_column(String, nullable=True)
    total_failures: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_to_completion_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_to_pass_final_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pull_to_start_lag_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    permit: Mapped[Permit] = relationship(back_populates="builds")
    contractor_links: Mapped[list["BuildContractor"]] = relationship(back_populates="build")


class Amendment(Base):
    __tablename__ = "permit_amendments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    permit_id: Mapped[int] = mapped_column(Integer, ForeignKey("permits.id"), index=True)
    base_permit_nbr: Mapped[str] = mapped_column(String, index=True)
    amendment_permit_nbr: Mapped[str] = mapped_column(String, unique=True)
    amendment_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[str | None] = mapped_column(String, nullable=True)
    work_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    issue_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    finaled_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    has_contractor_change: Mapped[bool] = mapped_column(Boolean, default=False)
    contractor_change_type: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    permit: Mapped[Permit] = relationship(back_populates="amendments")


class Inspection(Base):
    __tablename__ = "inspections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    permit_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("permits.id"), index=True, nullable=True)
    permit_number: Mapped[str] = mapped_column(String, index=True)
    inspection_date: Mapped[date] = mapped_column(Date)
    inspection_type_raw: Mapped[str] = mapped_column(String)  # trimmed + uppercased, part of the key
    inspection_type: Mapped[str | None] = mapped_column(String, nullable=True)  # FOUNDATION / FRAMING / DRYWALL / FINAL
    result: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("permit_number", "inspection_date", "inspection_type_raw", name="uq_inspection_key"),
    )


class PhaseMetrics(Base):
    __tablename__ = "inspection_phase_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    permit_number: Mapped[str] = mapped_column(String, unique=True)

    start_to_foundation: Mapped[int | None] = mapped_column(Integer, nullable=True)
    foundation_to_framing: Mapped[int | None] = mapped_column(Integer, nullable=True)
    framing_to_drywall: Mapped[int | None] = mapped_column(Integer, nullable=True)
    drywall_to_final: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_to_final: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_to_pass_final: Mapped[int | None] = mapped_column(Integer, nullable=True)

    computed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Contractor(Base):
    __tablename__ = "contractors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contractor_name: Mapped[str] = mapped_column(String)
    license_number: Mapped[str] = mapped_column(String, unique=True, index=True)
    license_type: Mapped[str | None] = mapped_column(String, nullable=True)
    license_status: Mapped[str | None] = mapped_column(String, nullable=True)

    # owned by the metrics aggregator, overwritten on every run
    total_builds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active_builds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    builds_in_last_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completion_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_time_to_completion_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avg_time_to_pass_final_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avg_pull_to_start_lag_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avg_failed_inspections: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_active_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    metrics_updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    build_links: Mapped[list["BuildContractor"]] = relationship(back_populates="contractor")


class BuildContractor(Base):
    __tablename__ = "build_contractors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    build_id: Mapped[int] = mapped_column(Integer, ForeignKey("builds.id"), index=True)
    contractor_id: Mapped[int] = mapped_column(Integer, ForeignKey("contractors.id"), index=True)
    role: Mapped[str] = mapped_column(String, default=ROLE_PRIMARY)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    build: Mapped[Build] = relationship(back_populates="contractor_links")
    contractor: Mapped[Contractor] = relationship(back_populates="build_links")

    __table_args__ = (
        UniqueConstraint("build_id", "contractor_id", name="uq_build_contractor"),
        # one PRIMARY contractor per build
        Index(
            "uq_build_primary_contractor",
            "build_id",
            unique=True,
            sqlite_where=text("role = 'PRIMARY'"),
            postgresql_where=text("role = 'PRIMARY'"),
        ),
    )


class Watermark(Base):
    __tablename__ = "etl_watermarks"

    source_key: Mapped[str] = mapped_column(String, primary_key=True)
    last_value: Mapped[date | None] = mapped_column(Date, nullable=True)
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class JobRun(Base):
    __tablename__ = "etl_job_runs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    job_name: Mapped[str] = mapped_column(String, index=True)
    source: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String)  # SUCCESS / FAILED
    rowcount: Mapped[int] = mapped_column(Integer, default=0)
    message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime)
    finished_at: Mapped[datetime] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_job_runs_name_started", "job_name", "started_at"),
    )
