"""Default recurring jobs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from negotiation_engine.config import get_settings
from negotiation_engine.logging_config import get_logger
from negotiation_engine.services.premium_metrics_service import PremiumMetricsService
from negotiation_engine.services.sla_service import scan_negotiation_sla_windows

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.config import Settings
    from negotiation_engine.orchestration.scheduler import JobScheduler

logger = get_logger(__name__)

PREMIUM_METRICS_JOB = "premium-conversion-metrics"
NEGOTIATION_SLA_JOB = "negotiation-sla-scan"


async def refresh_premium_metrics(session: AsyncSession) -> dict[str, Any]:
    """Recompute the premium funnel and return the summary kept in job metadata."""
    service = PremiumMetricsService(session)
    summary = service.summarize(await service.get_conversion_metrics())
    logger.info(
        "premium_metrics.refreshed",
        window_days=summary["window_days"],
        completions=summary["totals"].get("PREMIUM_NEGOTIATION_COMPLETED", 0),
        anomaly=summary["completion_anomaly"],
    )
    return summary


async def scan_negotiation_deadlines(session: AsyncSession) -> dict[str, Any]:
    summary = await scan_negotiation_sla_windows(session)
    return {
        "warned": len(summary["warned"]),
        "breached": len(summary["breached"]),
        "warning_hours": summary["warning_hours"],
    }


def register_default_jobs(scheduler: JobScheduler, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    scheduler.register(
        PREMIUM_METRICS_JOB,
        settings.premium_metrics_job_interval_seconds,
        refresh_premium_metrics,
        metadata={"window_days": settings.premium_metrics_window_days},
    )
    scheduler.register(
        NEGOTIATION_SLA_JOB,
        settings.negotiation_sla_job_interval_seconds,
        scan_negotiation_deadlines,
        metadata={"warning_hours": settings.negotiation_sla_warning_hours},
    )
