from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any


class AdminRequest(BaseModel):
    action: str
    password: Any = None  # compared only when it is a string
    data: Any = None


class CronConfigPatch(BaseModel):
    """Fields of a cron config the admin panel may change."""
    model_config = ConfigDict(extra="ignore")

    enabled: bool | None = None
    frequency_minutes: int | None = Field(default=None, gt=0)
    countries: list[str] | None = None
    processing_options: dict[str, Any] | None = None


class CronConfigUpdateIn(BaseModel):
    jobName: str = Field(min_length=1)
    config: CronConfigPatch


class BulkRetellCronIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    country_code: str
    time_range: str = "all"  # last_1h, last_24h, all
    llm_model: str = Field(min_length=1)
    llm_provider: str = Field(min_length=1)
    frequency_minutes: int = Field(default=60, gt=0)


class CronJobConfigOut(BaseModel):
    id: int
    job_name: str
    job_type: str
    enabled: bool
    frequency_minutes: int
    countries: list[str] = Field(default_factory=list)
    processing_options: dict[str, Any] = Field(default_factory=dict)
    last_run_at: datetime | None = None
    last_run_status: str | None = None
    last_run_details: Any = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class CronJobEventOut(BaseModel):
    id: int
    job_name: str
    event_type: str
    status: str
    message: str | None = None
    details: Any = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ProviderTestIn(BaseModel):
    provider: str
    apiKey: str = Field(min_length=1)
