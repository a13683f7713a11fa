"""Query metrics log, rolling analytics and economy reporting."""

import calendar
from collections import Counter, defaultdict, deque
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

from fisioflow_ai.core.alerts import AlertManager
from fisioflow_ai.lib.errors import ValidationError
from fisioflow_ai.lib.logger import LogCategory, get_logger
from fisioflow_ai.models.metrics import QueryMetric
from fisioflow_ai.models.usage import Alert, AlertSeverity, AlertType
from fisioflow_ai.storage.sqlite_store import SQLiteStore

logger = get_logger(__name__, LogCategory.ANALYTICS)

# Assumed price per 1k tokens on a pay-per-use API vs. our premium subscriptions
PAID_API_COST_PER_1K = 0.02
PREMIUM_COST_PER_1K = 0.002
COST_AVOIDED_PER_QUERY = 0.05

PERIODS = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


def _percentile(values: list[float], p: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    idx = int(len(ordered) * p / 100)
    return ordered[min(idx, len(ordered) - 1)]


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class AnalyticsAggregator:
    """Collects per-query metrics and aggregates them over rolling windows."""

    def __init__(
        self,
        store: SQLiteStore | None = None,
        alerts: AlertManager | None = None,
        retention_days: int = 90,
        max_metrics: int = 100000,
        thresholds: dict[str, float] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize analytics aggregator.

        Args:
            store: Persistence for metric documents
            alerts: Alert registry shared with usage tracking
            retention_days: Metrics older than this are pruned
            max_metrics: Maximum number of metrics kept in memory
            thresholds: performance_warning/critical (ms), quality_warning/critical
            clock: Time source, injectable for tests
        """
        self.store = store
        self.alerts = alerts or AlertManager()
        self.retention_days = retention_days
        self.clock = clock or (lambda: datetime.now(UTC))
        self.thresholds = {
            "performance_warning": 5000,
            "performance_critical": 10000,
            "quality_warning": 0.6,
            "quality_critical": 0.4,
            **(thresholds or {}),
        }

        self.metrics: deque[QueryMetric] = deque(maxlen=max_metrics)
        self.hourly_rollups: deque[dict[str, Any]] = deque(maxlen=24 * retention_days)
        self.daily_summaries: dict[str, dict[str, Any]] = {}

    def load(self) -> int:
        if self.store is None:
            return 0
        cutoff = self.clock() - timedelta(days=self.retention_days)
        for data in self.store.load_metrics(since=cutoff.isoformat()):
            self.metrics.append(QueryMetric.from_dict(data))
        logger.info(f"Loaded {len(self.metrics)} query metrics")
        return len(self.metrics)

    def record_query(self, metric: QueryMetric) -> None:
        """Append one query metric."""
        self.metrics.append(metric)
        if self.store is not None:
            self.store.append_metric(
                metric.query_id, metric.timestamp.isoformat(), metric.to_dict()
            )

    def track_user_feedback(self, query_id: str, rating: int) -> bool:
        """Attach a 1-5 satisfaction rating to a recorded query.

        Returns:
            True if the query was found
        """
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", field="rating")

        for position, metric in enumerate(self.metrics):
            if metric.query_id == query_id:
                updated = metric.with_feedback(rating)
                self.metrics[position] = updated
                if self.store is not None:
                    self.store.append_metric(
                        updated.query_id, updated.timestamp.isoformat(), updated.to_dict()
                    )
                logger.info(f"Feedback {rating}/5 recorded for query {query_id}")
                return True

        logger.warning(f"Feedback for unknown query {query_id}")
        return False

    def _window(self, delta: timedelta, end: datetime | None = None) -> list[QueryMetric]:
        end = end or self.clock()
        start = end - delta
        return [m for m in self.metrics if start <= m.timestamp <= end]

    def _query_counts(self, metrics: list[QueryMetric]) -> dict[str, Any]:
        return {
            "total": len(metrics),
            "by_source": dict(Counter(m.source for m in metrics)),
            "by_type": dict(Counter(m.type for m in metrics)),
            "by_provider": dict(Counter(m.provider for m in metrics if m.provider)),
        }

    def _performance(self, metrics: list[QueryMetric]) -> dict[str, Any]:
        total = len(metrics)
        times = [m.response_time for m in metrics]
        cache_hits = sum(1 for m in metrics if m.source == "cache")
        internal_ok = sum(1 for m in metrics if m.source == "internal" and m.success)
        failures = sum(1 for m in metrics if not m.success)
        return {
            "total_queries": total,
            "avg_response_time": round(_mean(times), 2),
            "p95_response_time": round(_percentile(times, 95), 2),
            "cache_hit_rate": cache_hits / total if total else 0.0,
            "internal_success_rate": internal_ok / total if total else 0.0,
            "error_rate": failures / total if total else 0.0,
        }

    def _economy(self, metrics: list[QueryMetric]) -> dict[str, Any]:
        premium = [m for m in metrics if m.source == "premium"]
        premium_tokens = sum(m.tokens_used for m in premium)
        avoided = sum(1 for m in metrics if m.source != "premium" and m.success)

        estimated_cost = premium_tokens * PREMIUM_COST_PER_1K / 1000
        estimated_savings = premium_tokens * (PAID_API_COST_PER_1K - PREMIUM_COST_PER_1K) / 1000
        cost_avoidance = avoided * COST_AVOIDED_PER_QUERY

        by_provider: dict[str, dict[str, float]] = defaultdict(lambda: {"queries": 0, "tokens": 0})
        for m in premium:
            by_provider[m.provider or "unknown"]["queries"] += 1
            by_provider[m.provider or "unknown"]["tokens"] += m.tokens_used
        for values in by_provider.values():
            values["cost"] = values["tokens"] * PREMIUM_COST_PER_1K / 1000

        return {
            "premium_queries": len(premium),
            "premium_tokens": premium_tokens,
            "queries_avoided": avoided,
            "estimated_cost": round(estimated_cost, 6),
            "estimated_savings": round(estimated_savings, 6),
            "cost_avoidance": round(cost_avoidance, 4),
            "roi": (
                round((estimated_savings + cost_avoidance) / estimated_cost, 2)
                if estimated_cost > 0
                else None
            ),
            "by_provider": dict(by_provider),
        }

    def _quality(self, metrics: list[QueryMetric]) -> dict[str, Any]:
        ratings = [m.user_feedback for m in metrics if m.user_feedback is not None]
        confidences = [m.confidence for m in metrics]
        low = sum(1 for c in confidences if c < self.thresholds["quality_warning"])
        return {
            "avg_confidence": round(_mean(confidences), 4),
            "feedback_count": len(ratings),
            "avg_rating": round(_mean(ratings), 2),
            "satisfaction": round(_mean(ratings) / 5, 4) if ratings else None,
            "low_confidence_share": low / len(confidences) if confidences else 0.0,
        }

    def get_current_analytics(self) -> dict[str, Any]:
        """Snapshot over rolling windows: queries 30d, performance 24h, economy 30d, quality 7d."""
        now = self.clock()
        return {
            "generated_at": now.isoformat(),
            "queries": self._query_counts(self._window(PERIODS["30d"], now)),
            "performance": self._performance(self._window(PERIODS["24h"], now)),
            "economy": self._economy(self._window(PERIODS["30d"], now)),
            "quality": self._quality(self._window(PERIODS["7d"], now)),
            "alerts": [a.to_dict() for a in self.alerts.get_alerts()],
        }

    def get_detailed_report(self, period: str = "24h") -> dict[str, Any]:
        """Report for 24h, 7d or 30d with trend buckets and breakdowns."""
        if period not in PERIODS:
            raise ValidationError(
                f"Unknown period '{period}', expected one of {list(PERIODS)}", field="period"
            )

        now = self.clock()
        span = PERIODS[period]
        metrics = self._window(span, now)
        bucket = timedelta(hours=1) if period == "24h" else timedelta(days=1)

        trends = []
        bucket_start = now - span
        while bucket_start < now:
            bucket_end = min(bucket_start + bucket, now)
            in_bucket = [m for m in metrics if bucket_start <= m.timestamp < bucket_end]
            trends.append(
                {
                    "start": bucket_start.isoformat(),
                    "queries": len(in_bucket),
                    "avg_response_time": round(_mean([m.response_time for m in in_bucket]), 2),
                    "cache_hits": sum(1 for m in in_bucket if m.source == "cache"),
                    "premium": sum(1 for m in in_bucket if m.source == "premium"),
                }
            )
            bucket_start = bucket_end

        return {
            "period": period,
            "generated_at": now.isoformat(),
            "summary": {
                "queries": self._query_counts(metrics),
                "performance": self._performance(metrics),
                "economy": self._economy(metrics),
                "quality": self._quality(metrics),
            },
            "trends": trends,
            "top_query_types": Counter(m.type for m in metrics).most_common(5),
            "slowest_queries": [
                m.to_dict() for m in sorted(metrics, key=lambda m: -m.response_time)[:5]
            ],
        }

    def get_economy_report(self) -> dict[str, Any]:
        """Month-to-date economy with a linear projection and recommendations."""
        now = self.clock()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        metrics = [m for m in self.metrics if month_start <= m.timestamp <= now]
        economy = self._economy(metrics)
        performance = self._performance(metrics)

        days_in_month = calendar.monthrange(now.year, now.month)[1]
        elapsed_days = max((now - month_start).total_seconds() / 86400, 1 / 24)
        factor = days_in_month / elapsed_days

        return {
            "month": month_start.strftime("%Y-%m"),
            "current": economy,
            "projection": {
                "queries": round(len(metrics) * factor),
                "estimated_cost": round(economy["estimated_cost"] * factor, 4),
                "estimated_savings": round(economy["estimated_savings"] * factor, 4),
                "cost_avoidance": round(economy["cost_avoidance"] * factor, 4),
            },
            "recommendations": self._recommendations(metrics, performance, economy),
        }

    def _recommendations(
        self,
        metrics: list[QueryMetric],
        performance: dict[str, Any],
        economy: dict[str, Any],
    ) -> list[str]:
        if not metrics:
            return ["Sem consultas registradas neste mês."]

        recommendations = []
        premium_share = economy["premium_queries"] / len(metrics)
        if performance["internal_success_rate"] < 0.4:
            recommendations.append(
                "Ampliar a base de conhecimento interna: menos de 40% das consultas "
                "foram resolvidas internamente."
            )
        if performance["cache_hit_rate"] < 0.2 and premium_share > 0.3:
            recommendations.append(
                "Revisar o TTL do cache: poucas respostas premium estão sendo reaproveitadas."
            )
        if premium_share > 0.5:
            recommendations.append(
                "Mais da metade das consultas usa provedores premium; cadastre protocolos "
                "para os tipos de consulta mais frequentes."
            )
        if performance["error_rate"] > 0.1:
            recommendations.append(
                "Taxa de respostas de contingência acima de 10%; verifique a disponibilidade "
                "dos provedores."
            )
        if not recommendations:
            recommendations.append("Uso econômico dentro do esperado.")
        return recommendations

    async def run_hourly_rollup(self) -> dict[str, Any]:
        """Summarize the last hour, update the daily summary, prune old metrics."""
        now = self.clock()
        last_hour = self._window(timedelta(hours=1), now)
        rollup = {
            "hour": now.replace(minute=0, second=0, microsecond=0).isoformat(),
            "performance": self._performance(last_hour),
            "economy": self._economy(last_hour),
        }
        self.hourly_rollups.append(rollup)

        day_key = now.date().isoformat()
        today = self._window(now - now.replace(hour=0, minute=0, second=0, microsecond=0), now)
        self.daily_summaries[day_key] = {
            "performance": self._performance(today),
            "economy": self._economy(today),
            "quality": self._quality(today),
        }

        pruned = self.prune()
        self._check_thresholds(rollup["performance"], self._quality(last_hour), len(last_hour))

        logger.info(
            f"📊 Hourly rollup: {len(last_hour)} queries, "
            f"{rollup['performance']['cache_hit_rate']:.0%} cache hits, pruned {pruned}"
        )
        return rollup

    def prune(self) -> int:
        """Drop metrics and summaries older than the retention window."""
        cutoff = self.clock() - timedelta(days=self.retention_days)
        kept = [m for m in self.metrics if m.timestamp >= cutoff]
        removed = len(self.metrics) - len(kept)
        self.metrics.clear()
        self.metrics.extend(kept)

        cutoff_day = cutoff.date().isoformat()
        for day in [d for d in self.daily_summaries if d < cutoff_day]:
            del self.daily_summaries[day]

        if self.store is not None:
            removed = max(removed, self.store.prune_metrics(cutoff.isoformat()))
        return removed

    def _check_thresholds(
        self, performance: dict[str, Any], quality: dict[str, Any], count: int
    ) -> None:
        if count == 0:
            return

        avg_time = performance["avg_response_time"]
        if avg_time > self.thresholds["performance_critical"]:
            self.add_alert(
                AlertType.PERFORMANCE_DEGRADED,
                AlertSeverity.CRITICAL,
                f"Average response time {avg_time:.0f}ms in the last hour",
                data={"avg_response_time": avg_time},
            )
        elif avg_time > self.thresholds["performance_warning"]:
            self.add_alert(
                AlertType.PERFORMANCE_DEGRADED,
                AlertSeverity.HIGH,
                f"Average response time {avg_time:.0f}ms in the last hour",
                data={"avg_response_time": avg_time},
            )

        avg_confidence = quality["avg_confidence"]
        if avg_confidence < self.thresholds["quality_critical"]:
            self.add_alert(
                AlertType.QUALITY_LOW,
                AlertSeverity.CRITICAL,
                f"Average confidence {avg_confidence:.2f} in the last hour",
                data={"avg_confidence": avg_confidence},
            )
        elif avg_confidence < self.thresholds["quality_warning"]:
            self.add_alert(
                AlertType.QUALITY_LOW,
                AlertSeverity.MEDIUM,
                f"Average confidence {avg_confidence:.2f} in the last hour",
                data={"avg_confidence": avg_confidence},
            )

    def add_alert(
        self,
        type: AlertType,
        severity: AlertSeverity,
        message: str,
        provider: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> Alert:
        return self.alerts.add_alert(type, severity, message, provider=provider, data=data)

    def resolve_alert(self, alert_id: str) -> Alert:
        return self.alerts.resolve_alert(alert_id)

    def get_alerts(self, include_resolved: bool = False) -> list[Alert]:
        return self.alerts.get_alerts(include_resolved=include_resolved)
