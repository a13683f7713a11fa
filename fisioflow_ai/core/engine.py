"""AIEngine: builds every component from configuration and exposes the public API."""

import logging
from datetime import UTC, datetime
from typing import Any, Callable

from fisioflow_ai.core.alerts import AlertManager
from fisioflow_ai.core.analytics import AnalyticsAggregator
from fisioflow_ai.core.cache_service import TieredCache
from fisioflow_ai.core.knowledge_base import KnowledgeBase
from fisioflow_ai.core.knowledge_index import KnowledgeIndex
from fisioflow_ai.core.orchestrator import QueryOrchestrator
from fisioflow_ai.core.provider_manager import ProviderManager
from fisioflow_ai.core.providers.base import ProviderClient
from fisioflow_ai.core.usage_tracker import UsageMonitor
from fisioflow_ai.lib.anonymizer import Anonymizer
from fisioflow_ai.lib.config import EngineConfig
from fisioflow_ai.lib.errors import ConfigurationInvalid, ValidationError
from fisioflow_ai.lib.scheduler import Scheduler
from fisioflow_ai.models.knowledge import KnowledgeEntry, KnowledgeResult, SearchParams
from fisioflow_ai.models.query import Query, QueryContext, QueryPriority, QueryType
from fisioflow_ai.models.response import Response
from fisioflow_ai.models.usage import Alert, ProviderName
from fisioflow_ai.storage.knowledge_store import KnowledgeStore
from fisioflow_ai.storage.kv_store import MemoryStore, SQLiteDocumentStore, SQLiteKVStore
from fisioflow_ai.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

# Reset jobs poll; each window resets only once its reset date has passed
RESET_CHECK_INTERVAL = 60


class AIEngine:
    """Service object owning the knowledge base, cache, providers and analytics.

    Build it with ``from_config``, call ``start()`` once inside a running
    event loop and ``shutdown()`` before exit.
    """

    def __init__(
        self,
        config: EngineConfig,
        store: SQLiteStore,
        knowledge_base: KnowledgeBase,
        cache: TieredCache,
        usage: UsageMonitor,
        alerts: AlertManager,
        providers: ProviderManager,
        analytics: AnalyticsAggregator,
        orchestrator: QueryOrchestrator,
        scheduler: Scheduler | None = None,
    ):
        self.config = config
        self.store = store
        self.knowledge_base = knowledge_base
        self.cache = cache
        self.usage = usage
        self.alerts = alerts
        self.providers = providers
        self.analytics = analytics
        self.orchestrator = orchestrator
        self.scheduler = scheduler or Scheduler()
        self.started_at: datetime | None = None

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        clients: dict[ProviderName, ProviderClient] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> "AIEngine":
        """Build an engine from configuration.

        Args:
            config: Loaded engine configuration
            clients: Pre-built provider clients (tests); built from config otherwise
            clock: Time source shared by every component

        Raises:
            ConfigurationInvalid: If startup checks fail
        """
        errors = config.validate()
        if errors:
            raise ConfigurationInvalid(errors)

        clock = clock or (lambda: datetime.now(UTC))
        data_dir = config.data_dir
        data_dir.mkdir(parents=True, exist_ok=True)

        store = SQLiteStore(db_path=data_dir / "engine.db")

        kb_settings = config.knowledge_base
        index = KnowledgeIndex(
            min_confidence=kb_settings.min_confidence_threshold,
            max_results=kb_settings.max_results,
            fuzzy_search=kb_settings.fuzzy_search,
            fuzzy_threshold=kb_settings.fuzzy_threshold,
            clock=clock,
        )
        knowledge_base = KnowledgeBase(
            store=KnowledgeStore(store),
            index=index,
            enabled=kb_settings.enabled,
            auto_summary=kb_settings.auto_summary,
            clock=clock,
        )

        cache_settings = config.cache
        cache = TieredCache(
            memory=MemoryStore(max_entries=cache_settings.memory_max_entries),
            tier1=SQLiteKVStore(
                data_dir / "cache_tier1.db", max_bytes=cache_settings.tier1_max_bytes
            ),
            tier2=SQLiteDocumentStore(data_dir / "cache_tier2.db"),
            default_ttl=cache_settings.default_ttl,
            small_entry_max_bytes=cache_settings.small_entry_max_bytes,
            enabled=cache_settings.enabled,
            clock=clock,
        )

        alerts = AlertManager(store=store, clock=clock)
        usage = UsageMonitor(
            limits={name: settings.limits for name, settings in config.providers.items()},
            store=store,
            alerts=alerts,
            warning_threshold=config.alerts.usage_warning,
            critical_threshold=config.alerts.usage_critical,
            clock=clock,
        )

        security = config.security
        providers = ProviderManager(
            settings=config.providers,
            usage=usage,
            anonymizer=Anonymizer(
                common_names=security.common_names,
                salt=security.hash_salt,
                enabled=security.anonymization,
            ),
            load_balancing=config.load_balancing,
            clients=clients,
        )

        analytics = AnalyticsAggregator(
            store=store,
            alerts=alerts,
            retention_days=config.analytics.retention_days,
            max_metrics=config.analytics.max_metrics,
            thresholds={
                "performance_warning": config.alerts.performance_warning,
                "performance_critical": config.alerts.performance_critical,
                "quality_warning": config.alerts.quality_warning,
                "quality_critical": config.alerts.quality_critical,
            },
            clock=clock,
        )

        orchestrator = QueryOrchestrator(
            knowledge_base=knowledge_base,
            cache=cache,
            providers=providers,
            analytics=analytics,
            max_concurrent_queries=config.get("system.max_concurrent_queries", 10),
            clock=clock,
        )

        return cls(
            config=config,
            store=store,
            knowledge_base=knowledge_base,
            cache=cache,
            usage=usage,
            alerts=alerts,
            providers=providers,
            analytics=analytics,
            orchestrator=orchestrator,
        )

    async def start(self) -> None:
        """Load persisted state and schedule background jobs."""
        logger.info("🚀 Starting FisioFlow AI engine")

        self.alerts.load()
        self.usage.load()
        await self.knowledge_base.load()
        self.analytics.load()

        self.scheduler.add_job("hourly_reset", self.usage.reset_hourly, RESET_CHECK_INTERVAL)
        self.scheduler.add_job("daily_reset", self.usage.reset_daily, RESET_CHECK_INTERVAL)
        self.scheduler.add_job(
            "monthly_check", self.usage.check_monthly_reset, RESET_CHECK_INTERVAL
        )
        self.scheduler.add_job(
            "cache_sweep", self.cache.cleanup_expired, self.config.cache.cleanup_interval
        )
        if self.config.analytics.enabled:
            self.scheduler.add_job(
                "analytics_rollup",
                self.analytics.run_hourly_rollup,
                self.config.analytics.rollup_interval,
            )
        self.scheduler.start()

        self.started_at = datetime.now(UTC)
        logger.info("✅ Engine started")

    async def shutdown(self) -> None:
        logger.info("Shutting down engine")
        await self.scheduler.shutdown()
        await self.providers.aclose()

    # Queries

    async def process_query(
        self,
        text: str,
        type: str | QueryType,
        context: dict[str, Any] | QueryContext,
        priority: str = "normal",
        max_response_time: float | None = None,
    ) -> Response:
        """Resolve a clinical query.

        Args:
            text: Question text
            type: Query type name (underscores or hyphens)
            context: Clinical context; must carry a user role
            priority: low, normal, high or urgent
            max_response_time: Seconds allowed for the premium call

        Raises:
            ValidationError: Unknown type, missing role or empty text
        """
        try:
            query_type = QueryType.parse(type)
        except ValueError as e:
            raise ValidationError(f"Unknown query type: {type}", field="type") from e
        try:
            query_priority = QueryPriority(priority)
        except ValueError as e:
            raise ValidationError(f"Unknown priority: {priority}", field="priority") from e

        if not isinstance(context, QueryContext):
            context = QueryContext.from_dict(context or {})

        query = Query(
            text=text,
            type=query_type,
            context=context,
            priority=query_priority,
            max_response_time=max_response_time or self.config.get("system.default_timeout", 30),
        )
        logger.debug(f"Query {query.id}: type={query_type.value} length={len(text or '')}")
        return await self.orchestrator.process(query)

    # Knowledge base

    async def add_knowledge(self, data: dict[str, Any]) -> str:
        return await self.knowledge_base.add_knowledge(data)

    async def update_entry(self, entry_id: str, changes: dict[str, Any]) -> KnowledgeEntry:
        return await self.knowledge_base.update_entry(entry_id, changes)

    async def delete_entry(self, entry_id: str) -> bool:
        return await self.knowledge_base.delete_entry(entry_id)

    def get_entry(self, entry_id: str) -> KnowledgeEntry | None:
        return self.knowledge_base.get_entry(entry_id)

    def list_entries(self, tenant_id: str | None = None) -> list[KnowledgeEntry]:
        return self.knowledge_base.list_entries(tenant_id)

    async def search(self, params: SearchParams) -> list[KnowledgeResult]:
        return await self.knowledge_base.search(params)

    def get_statistics(self) -> dict[str, Any]:
        return self.knowledge_base.get_statistics()

    async def record_knowledge_feedback(self, entry_id: str, positive: bool) -> KnowledgeEntry:
        return await self.knowledge_base.record_feedback(entry_id, positive)

    # Analytics

    def get_current_analytics(self) -> dict[str, Any]:
        return self.analytics.get_current_analytics()

    def get_detailed_report(self, period: str = "24h") -> dict[str, Any]:
        return self.analytics.get_detailed_report(period)

    def get_economy_report(self) -> dict[str, Any]:
        return self.analytics.get_economy_report()

    def track_user_feedback(self, query_id: str, rating: int) -> bool:
        return self.analytics.track_user_feedback(query_id, rating)

    # Operations

    async def clear_cache(self) -> None:
        await self.cache.clear()

    async def test_all_providers(self) -> dict[str, bool]:
        return await self.providers.test_all_providers()

    def get_provider_stats(self) -> dict[str, dict[str, Any]]:
        return self.providers.get_provider_stats()

    def get_alerts(self, include_resolved: bool = False) -> list[Alert]:
        return self.analytics.get_alerts(include_resolved=include_resolved)

    def resolve_alert(self, alert_id: str) -> Alert:
        return self.analytics.resolve_alert(alert_id)

    async def health(self) -> dict[str, Any]:
        """Component status summary."""
        provider_stats = self.providers.get_provider_stats()
        available = [
            name for name in self.providers.clients if self.providers.is_usable(name)
        ]
        open_alerts = self.alerts.get_alerts()

        if not available:
            status = "degraded"
        elif any(a.severity.value == "critical" for a in open_alerts):
            status = "warning"
        else:
            status = "healthy"

        return {
            "status": status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "components": {
                "knowledge_base": {
                    "enabled": self.knowledge_base.enabled,
                    **self.knowledge_base.index.stats(),
                },
                "cache": await self.cache.get_stats(),
                "providers": {
                    "available": [p.value for p in available],
                    "configured": [
                        name for name, stats in provider_stats.items() if stats["configured"]
                    ],
                },
                "scheduler": self.scheduler.get_stats(),
            },
            "open_alerts": len(open_alerts),
        }
