from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "ADU Watch"
    database_url: str = "sqlite:///./aduwatch.db"
    log_level: str = "INFO"

    # bearer token expected on every /api/cron/* call; empty rejects everything
    cron_secret: str = ""

    # LADBS Socrata open data
    socrata_base_url: str = "https://data.lacity.org/resource"
    socrata_app_token: str | None = None
    socrata_timeout: int = 60

    permits_dataset: str = "pi9x-tg5x"
    inspections_dataset: str = "9w5z-rg2h"
    cofo_dataset: str = "y3gg-54j8"

    # permit sync
    permits_cursor_field: str = "refresh_time"
    permits_where: str | None = "adu_changed >= '1'"
    permits_initial_since: str | None = None  # YYYY-MM-DD; default is 90 days back
    permits_page_size: int = 1000
    permits_max_pages: int = 5

    # inspection sync
    inspections_id_batch: int = 200
    inspections_max_permit_pages: int = 50
    inspections_page_size: int = 1000
    inspections_pages_per_batch: int = 3

    # amendments / certificates / durations
    amendment_digit_offset: int = 10
    amendments_batch_size: int = 100
    cofo_batch_size: int = 100
    finaled_status: str = "Permit Finaled"
    durations_batch_size: int = 1000

    # contractor metrics
    active_staleness_months: int = 18

    # scheduled pipeline and /api/cron/calculations walk batched stages up to this many calls
    pipeline_max_batches: int = 50

    # scheduler
    scheduler_enabled: bool = False
    pipeline_cron_hour: int = 4
    pipeline_cron_minute: int = 15

settings = Settings()
