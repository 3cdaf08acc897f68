"""Pydantic schemas for the admin surface: jobs, premium metrics, health."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - resolved at runtime by pydantic
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobExecutionLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    attempt: int
    started_at: datetime
    finished_at: datetime
    error: str | None


class JobRunResponse(BaseModel):
    job_name: str
    status: str
    started_at: datetime
    finished_at: datetime
    result: dict[str, Any] | None = None


class JobHealthResponse(BaseModel):
    name: str
    registered: bool
    is_active: bool
    is_running: bool
    attempt: int
    interval_seconds: int
    last_run_at: datetime | None
    next_run_at: datetime
    overdue_seconds: float = Field(description="Seconds past next_run_at, 0 when not due")
    backlog: int = Field(description="Whole intervals missed since next_run_at")
    last_error: str | None
    recent_runs: list[JobExecutionLogResponse]


class SchedulerHealthResponse(BaseModel):
    reference: datetime
    jobs: list[JobHealthResponse]


class PremiumMetricsResponse(BaseModel):
    """Premium conversion funnel over a window, compared with the window before."""

    window_days: int
    tier: str | None
    window_start: datetime
    window_end: datetime
    totals: dict[str, int]
    unique_users: dict[str, int]
    conversion_rates: dict[str, float | None]
    previous_totals: dict[str, int]
    deltas: dict[str, int]
    timeseries: list[dict[str, Any]]
    forecasts: dict[str, dict[str, Any]]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
