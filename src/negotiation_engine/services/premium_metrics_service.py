"""Premium Conversion Metrics Service.

Reads the premium funnel (CTA viewed -> trial -> upgrade -> premium deal
completed) over a rolling window and compares it with the window before.
Weekly buckets of premium completions and contract signatures feed the
forecast and anomaly functions in domain.forecasts.
"""

from __future__ import annotations

from collections import Counter
from datetime import timedelta
from typing import TYPE_CHECKING

from negotiation_engine.config import get_settings
from negotiation_engine.domain.clock import as_utc, utcnow
from negotiation_engine.domain.enums import ContractIntentEventType, PremiumConversionEventType
from negotiation_engine.domain.exceptions import ValidationFailedError
from negotiation_engine.domain.forecasts import (
    build_bucketed_series,
    detect_latest_anomaly,
    forecast_next_value,
)
from negotiation_engine.infrastructure.database.repositories import (
    ContractIntentMetricRepository,
    PremiumConversionRepository,
)
from negotiation_engine.infrastructure.database.unit_of_work import atomic
from negotiation_engine.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from negotiation_engine.config import Settings
    from negotiation_engine.domain.enums import PremiumTier
    from negotiation_engine.infrastructure.database.orm_models import PremiumConversionEvent

logger = get_logger(__name__)

MIN_WINDOW_DAYS = 7
MAX_WINDOW_DAYS = 120

# (rate name, numerator event, denominator event)
FUNNEL_RATES: tuple[tuple[str, PremiumConversionEventType, PremiumConversionEventType], ...] = (
    (
        "trial_from_cta",
        PremiumConversionEventType.TRIAL_STARTED,
        PremiumConversionEventType.UPGRADE_CTA_VIEWED,
    ),
    (
        "upgrade_from_trial",
        PremiumConversionEventType.UPGRADE_CONFIRMED,
        PremiumConversionEventType.TRIAL_STARTED,
    ),
    (
        "completion_from_upgrade",
        PremiumConversionEventType.PREMIUM_NEGOTIATION_COMPLETED,
        PremiumConversionEventType.UPGRADE_CONFIRMED,
    ),
)

UNIQUE_USER_EVENTS = (
    PremiumConversionEventType.TRIAL_STARTED,
    PremiumConversionEventType.UPGRADE_CONFIRMED,
)


def clamp_window_days(window_days: int) -> int:
    return max(MIN_WINDOW_DAYS, min(MAX_WINDOW_DAYS, int(window_days)))


def _rate(numerator: int, denominator: int) -> float | None:
    if denominator == 0:
        return None
    return round(numerator / denominator, 4)


def _totals(events: Iterable[PremiumConversionEvent]) -> dict[str, int]:
    counts = Counter(evt.event_type for evt in events)
    return {t.value: counts.get(t.value, 0) for t in PremiumConversionEventType}


class PremiumMetricsService:
    """Computes premium funnel metrics and forecasts."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._repo = PremiumConversionRepository(session)
        self._intent_repo = ContractIntentMetricRepository(session)

    async def record_conversion_event(
        self,
        user_id: str,
        event_type: PremiumConversionEventType,
        occurred_at: datetime | None = None,
        negotiation_id: str | None = None,
        tier: PremiumTier | None = None,
        metadata: dict | None = None,
    ) -> PremiumConversionEvent:
        if not user_id:
            raise ValidationFailedError("user_id is required", details={"fields": ["user_id"]})

        async with atomic(self._session):
            evt = await self._repo.record(
                user_id=user_id,
                event_type=event_type,
                occurred_at=as_utc(occurred_at) if occurred_at else utcnow(),
                negotiation_id=negotiation_id,
                tier=tier.value if tier else None,
                metadata=metadata,
            )

        logger.info(
            "premium_conversion.recorded",
            user_id=user_id,
            event_type=event_type.value,
            tier=evt.tier,
        )
        return evt

    async def get_conversion_metrics(
        self,
        window_days: int | None = None,
        tier: PremiumTier | None = None,
        now: datetime | None = None,
    ) -> dict:
        """Funnel totals, rates, window-over-window deltas, daily series and forecasts.

        ``window_days`` is clamped to [7, 120]. Events without a tier count as
        PREMIUM when filtering by tier.
        """
        window_days = clamp_window_days(window_days or self._settings.premium_metrics_window_days)
        window_end = as_utc(now) if now else utcnow()
        window = timedelta(days=window_days)
        window_start = window_end - window
        previous_start = window_start - window

        current = await self._repo.list_between(window_start, window_end, tier=tier)
        previous = await self._repo.list_between(previous_start, window_start, tier=tier)

        totals = _totals(current)
        previous_totals = _totals(previous)

        unique_users = {
            t.value: len({evt.user_id for evt in current if evt.event_type == t.value})
            for t in UNIQUE_USER_EVENTS
        }
        conversion_rates = {
            name: _rate(totals[num.value], totals[den.value]) for name, num, den in FUNNEL_RATES
        }
        deltas = {key: totals[key] - previous_totals[key] for key in totals}

        completions = [
            evt.occurred_at
            for evt in (*previous, *current)
            if evt.event_type == PremiumConversionEventType.PREMIUM_NEGOTIATION_COMPLETED.value
        ]
        signatures = [
            metric.occurred_at
            for metric in await self._intent_repo.list_events(
                event_type=ContractIntentEventType.PARTICIPANT_SIGNED,
                since=previous_start,
                until=window_end,
            )
        ]

        metrics = {
            "window_days": window_days,
            "tier": tier.value if tier else None,
            "window_start": window_start,
            "window_end": window_end,
            "totals": totals,
            "unique_users": unique_users,
            "conversion_rates": conversion_rates,
            "previous_totals": previous_totals,
            "deltas": deltas,
            "timeseries": self._daily_timeseries(current, window_start, window_days),
            "forecasts": {
                "premium_completions": self._forecast(completions),
                "contract_signatures": self._forecast(signatures),
            },
        }
        logger.debug(
            "premium_metrics.computed",
            window_days=window_days,
            tier=metrics["tier"],
            events=len(current),
        )
        return metrics

    @staticmethod
    def _daily_timeseries(
        events: Iterable[PremiumConversionEvent],
        window_start: datetime,
        window_days: int,
    ) -> list[dict]:
        days = [
            {"date": (window_start + timedelta(days=i)).date().isoformat()}
            | {t.value: 0 for t in PremiumConversionEventType}
            for i in range(window_days)
        ]
        for evt in events:
            index = (as_utc(evt.occurred_at) - window_start).days
            if 0 <= index < window_days:
                days[index][evt.event_type] += 1
        return days

    def _forecast(self, timestamps: list[datetime]) -> dict:
        series = build_bucketed_series(timestamps, self._settings.forecast_bucket_days)
        return {
            "bucket_days": self._settings.forecast_bucket_days,
            "series": [
                {"timestamp": point.timestamp.isoformat(), "value": point.value}
                for point in series
            ],
            "forecast": forecast_next_value(series).to_dict(),
            "anomaly": detect_latest_anomaly(series).to_dict(),
        }

    def summarize(self, metrics: dict) -> dict:
        """Compact form stored in the scheduler job metadata."""
        return {
            "window_days": metrics["window_days"],
            "computed_at": metrics["window_end"].isoformat(),
            "totals": metrics["totals"],
            "conversion_rates": metrics["conversion_rates"],
            "completion_forecast": metrics["forecasts"]["premium_completions"]["forecast"],
            "completion_anomaly": metrics["forecasts"]["premium_completions"]["anomaly"]["is_anomaly"],
        }
