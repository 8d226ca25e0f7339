from pydantic import BaseModel, computed_field
from datetime import date, datetime

NOT_AVAILABLE = "N/A"

def _display(v, fmt: str = "{}") -> str:
    return NOT_AVAILABLE if v is None else fmt.format(v)

class ContractorOut(BaseModel):
    id: int
    contractor_name: str
    license_number: str
    license_type: str | None = None
    license_status: str | None = None

    total_builds: int | None = None
    active_builds: int | None = None
    builds_in_last_year: int | None = None
    completion_rate: float | None = None
    avg_time_to_completion_days: int | None = None
    avg_time_to_pass_final_days: int | None = None
    avg_pull_to_start_lag_days: int | None = None
    avg_failed_inspections: float | None = None
    last_active_date: date | None = None
    metrics_updated_at: datetime | None = None

    @computed_field
    @property
    def completion_rate_display(self) -> str:
        return _display(self.completion_rate, "{:g}%")

    @computed_field
    @property
    def avg_days_display(self) -> str:
        return _display(self.avg_time_to_completion_days, "{} days")

    class Config:
        from_attributes = True

class BuildOut(BaseModel):
    id: int
    permit_id: int
    address: str | None = None
    zip_code: str | None = None
    lat: float | None = None
    lon: float | None = None
    valuation: float | None = None
    sqft: int | None = None

    started_date: date | None = None
    finaled_date: date | None = None
    completion_status: str | None = None
    total_failures: int | None = None
    time_to_completion_days: int | None = None
    time_to_pass_final_days: int | None = None

    class Config:
        from_attributes = True

class ContractorDetailOut(BaseModel):
    contractor: ContractorOut
    builds: list[BuildOut]

class InspectionOut(BaseModel):
    inspection_date: date
    inspection_type_raw: str
    inspection_type: str | None = None
    result: str | None = None

    class Config:
        from_attributes = True

class AmendmentOut(BaseModel):
    amendment_permit_nbr: str
    amendment_number: int | None = None
    status: str | None = None
    work_description: str | None = None
    issue_date: date | None = None
    finaled_date: date | None = None
    has_contractor_change: bool = False
    contractor_change_type: str | None = None

    class Config:
        from_attributes = True

class PhaseMetricsOut(BaseModel):
    start_to_foundation: int | None = None
    foundation_to_framing: int | None = None
    framing_to_drywall: int | None = None
    drywall_to_final: int | None = None
    start_to_final: int | None = None
    time_to_pass_final: int | None = None

    class Config:
        from_attributes = True

class PermitTimelineOut(BaseModel):
    permit_nbr: str
    status: str | None = None
    adu_classification: str | None = None
    issue_date: date | None = None
    started_date: date | None = None
    finaled_date: date | None = None
    pull_to_start_lag_days: int | None = None
    started_but_not_completed: bool | None = None

    phases: PhaseMetricsOut | None = None
    inspections: list[InspectionOut] = []
    amendments: list[AmendmentOut] = []
