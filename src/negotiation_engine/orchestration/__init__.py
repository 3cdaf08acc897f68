"""Orchestration layer — recurring background jobs."""

from negotiation_engine.orchestration.jobs import PREMIUM_METRICS_JOB, register_default_jobs
from negotiation_engine.orchestration.scheduler import JobRunResult, JobScheduler

__all__ = ["PREMIUM_METRICS_JOB", "JobRunResult", "JobScheduler", "register_default_jobs"]
