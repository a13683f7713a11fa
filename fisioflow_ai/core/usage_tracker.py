"""Per-provider usage windows, quota status and threshold alerts."""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

from fisioflow_ai.core.alerts import AlertListener, AlertManager
from fisioflow_ai.models.usage import (
    Alert,
    AlertSeverity,
    AlertType,
    ProviderName,
    ProviderStatus,
    UsageCounters,
    UsageLimits,
    UsageTracker,
)
from fisioflow_ai.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

STATUS_RANK = {
    ProviderStatus.AVAILABLE: 0,
    ProviderStatus.WARNING: 1,
    ProviderStatus.CRITICAL: 2,
    ProviderStatus.BLOCKED: 3,
}


def next_hour(now: datetime) -> datetime:
    return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


def next_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)


def next_month(now: datetime) -> datetime:
    first = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


class UsageMonitor:
    """Tracks hourly, daily and monthly usage for every premium provider.

    Status is a pure function of the usage percentage (the highest
    current/limit ratio over the three windows). Alerts fire on upward status
    transitions only, so a provider sitting above a threshold does not keep
    alerting.
    """

    def __init__(
        self,
        limits: dict[ProviderName, UsageLimits],
        store: SQLiteStore | None = None,
        alerts: AlertManager | None = None,
        warning_threshold: float = 0.8,
        critical_threshold: float = 0.95,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize usage monitor.

        Args:
            limits: Quota per provider
            store: Persistence for tracker documents
            alerts: Alert registry for threshold crossings
            warning_threshold: Percentage that flips status to warning
            critical_threshold: Percentage that flips status to critical
            clock: Time source, injectable for tests
        """
        self.store = store
        self.alerts = alerts or AlertManager()
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self.clock = clock or (lambda: datetime.now(UTC))

        now = self.clock()
        self.trackers: dict[ProviderName, UsageTracker] = {
            provider: UsageTracker(
                provider=provider,
                limits=provider_limits,
                reset_dates=self._fresh_reset_dates(now),
            )
            for provider, provider_limits in limits.items()
        }
        self.locks: dict[ProviderName, asyncio.Lock] = {
            provider: asyncio.Lock() for provider in self.trackers
        }

    @staticmethod
    def _fresh_reset_dates(now: datetime) -> dict[str, datetime]:
        return {"hourly": next_hour(now), "daily": next_day(now), "monthly": next_month(now)}

    def load(self) -> None:
        """Restore persisted trackers, resetting windows that lapsed while down."""
        if self.store is None:
            return

        now = self.clock()
        for name, data in self.store.load_usage_trackers().items():
            try:
                provider = ProviderName(name)
            except ValueError:
                logger.warning(f"Skipping persisted tracker for unknown provider {name}")
                continue
            if provider not in self.trackers:
                continue

            saved = UsageTracker.from_dict(data)
            tracker = self.trackers[provider]
            tracker.current = saved.current
            tracker.tokens_used = saved.tokens_used
            tracker.reset_dates = {**self._fresh_reset_dates(now), **saved.reset_dates}

            if now >= tracker.reset_dates["hourly"]:
                tracker.current.hourly = 0
                tracker.reset_dates["hourly"] = next_hour(now)
            if now >= tracker.reset_dates["daily"]:
                tracker.current.daily = 0
                tracker.reset_dates["daily"] = next_day(now)
            if now >= tracker.reset_dates["monthly"]:
                tracker.current.monthly = 0
                tracker.reset_dates["monthly"] = next_month(now)

            self._recompute(tracker)
            self._persist(tracker)

        logger.info(f"Loaded usage trackers for {len(self.trackers)} providers")

    def calculate_percentage(self, current: UsageCounters, limits: UsageLimits) -> float:
        ratios = [
            current.hourly / limits.hourly if limits.hourly > 0 else 1.0,
            current.daily / limits.daily if limits.daily > 0 else 1.0,
            current.monthly / limits.monthly if limits.monthly > 0 else 1.0,
        ]
        return max(ratios)

    def status_for(self, percentage: float) -> ProviderStatus:
        if percentage >= 1.0:
            return ProviderStatus.BLOCKED
        if percentage >= self.critical_threshold:
            return ProviderStatus.CRITICAL
        if percentage >= self.warning_threshold:
            return ProviderStatus.WARNING
        return ProviderStatus.AVAILABLE

    def _recompute(self, tracker: UsageTracker) -> ProviderStatus:
        """Refresh percentage and status. Returns the previous status."""
        previous = tracker.status
        tracker.percentage = self.calculate_percentage(tracker.current, tracker.limits)
        tracker.status = self.status_for(tracker.percentage)
        return previous

    async def track_usage(self, provider: ProviderName, tokens: int = 0) -> UsageTracker:
        """Count one call against every window of a provider.

        Args:
            provider: Provider that served the call
            tokens: Tokens consumed by the call

        Returns:
            Updated tracker
        """
        async with self.locks[provider]:
            tracker = self.trackers[provider]
            tracker.current.hourly += 1
            tracker.current.daily += 1
            tracker.current.monthly += 1
            tracker.tokens_used += tokens

            previous = self._recompute(tracker)
            self._persist(tracker)

            if STATUS_RANK[tracker.status] > STATUS_RANK[previous]:
                self._raise_threshold_alert(tracker, previous)

            logger.debug(
                f"Usage for {provider.value}: {tracker.current.to_dict()} "
                f"({tracker.percentage:.0%}, {tracker.status.value})"
            )
            return tracker

    def _raise_threshold_alert(self, tracker: UsageTracker, previous: ProviderStatus) -> None:
        data = {
            "previous_status": previous.value,
            "status": tracker.status.value,
            "percentage": tracker.percentage,
            "current": tracker.current.to_dict(),
            "limits": tracker.limits.to_dict(),
        }
        if tracker.status == ProviderStatus.WARNING:
            self.alerts.add_alert(
                AlertType.USAGE_WARNING,
                AlertSeverity.MEDIUM,
                f"{tracker.provider.value} reached {tracker.percentage:.0%} of its quota",
                provider=tracker.provider.value,
                data=data,
            )
        else:
            self.alerts.add_alert(
                AlertType.USAGE_CRITICAL,
                AlertSeverity.CRITICAL,
                f"{tracker.provider.value} is {tracker.status.value} at "
                f"{tracker.percentage:.0%} of its quota",
                provider=tracker.provider.value,
                data=data,
            )

    async def reset_hourly(self) -> None:
        """Reset hourly counters whose reset date has come."""
        await self._reset_window("hourly", next_hour)

    async def reset_daily(self) -> None:
        await self._reset_window("daily", next_day)

    async def check_monthly_reset(self) -> None:
        await self._reset_window("monthly", next_month)

    async def _reset_window(
        self, window: str, next_reset: Callable[[datetime], datetime]
    ) -> None:
        now = self.clock()
        reset = []
        for provider, tracker in self.trackers.items():
            async with self.locks[provider]:
                if now < tracker.reset_dates[window]:
                    continue
                setattr(tracker.current, window, 0)
                tracker.reset_dates[window] = next_reset(now)
                self._recompute(tracker)
                self._persist(tracker)
                reset.append(provider.value)
        if reset:
            logger.info(f"🔄 Reset {window} usage for {', '.join(reset)}")

    def add_alert_listener(self, listener: AlertListener) -> None:
        self.alerts.add_listener(listener)

    def get_alerts(self, include_resolved: bool = False) -> list[Alert]:
        return self.alerts.get_alerts(include_resolved=include_resolved)

    def resolve_alert(self, alert_id: str) -> Alert:
        return self.alerts.resolve_alert(alert_id)

    def get_tracker(self, provider: ProviderName) -> UsageTracker:
        return self.trackers[provider]

    def get_all(self) -> dict[ProviderName, UsageTracker]:
        return dict(self.trackers)

    def is_available(self, provider: ProviderName) -> bool:
        tracker = self.trackers.get(provider)
        return tracker is not None and tracker.status != ProviderStatus.BLOCKED

    async def update_limits(self, provider: ProviderName, limits: UsageLimits) -> UsageTracker:
        async with self.locks[provider]:
            tracker = self.trackers[provider]
            tracker.limits = limits
            self._recompute(tracker)
            self._persist(tracker)
            logger.info(f"Updated limits for {provider.value}: {limits.to_dict()}")
            return tracker

    def summary(self) -> dict[str, Any]:
        return {provider.value: tracker.to_dict() for provider, tracker in self.trackers.items()}

    def _persist(self, tracker: UsageTracker) -> None:
        if self.store is None:
            return
        try:
            self.store.save_usage_tracker(tracker.provider.value, tracker.to_dict())
        except Exception as e:
            logger.error(f"Failed to persist usage tracker for {tracker.provider.value}: {e}")
