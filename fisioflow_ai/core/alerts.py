"""Alert registry shared by usage tracking and analytics."""

import logging
from datetime import UTC, datetime
from typing import Any, Callable

from fisioflow_ai.models.usage import Alert, AlertSeverity, AlertType
from fisioflow_ai.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

AlertListener = Callable[[Alert], None]

SEVERITY_LOG_LEVEL = {
    AlertSeverity.LOW: logging.INFO,
    AlertSeverity.MEDIUM: logging.WARNING,
    AlertSeverity.HIGH: logging.WARNING,
    AlertSeverity.CRITICAL: logging.ERROR,
}


class AlertManager:
    """Keeps alerts, persists them and notifies listeners."""

    def __init__(
        self,
        store: SQLiteStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.clock = clock or (lambda: datetime.now(UTC))
        self.alerts: dict[str, Alert] = {}
        self.listeners: list[AlertListener] = []

    def load(self) -> None:
        if self.store is None:
            return
        for data in self.store.load_alerts(include_resolved=True):
            alert = Alert.from_dict(data)
            self.alerts[alert.id] = alert

    def add_listener(self, listener: AlertListener) -> None:
        self.listeners.append(listener)

    def add_alert(
        self,
        type: AlertType,
        severity: AlertSeverity,
        message: str,
        provider: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> Alert:
        alert = Alert(
            type=type,
            severity=severity,
            message=message,
            provider=provider,
            data=data or {},
            created_at=self.clock(),
        )
        self.alerts[alert.id] = alert
        self._persist(alert)

        logger.log(
            SEVERITY_LOG_LEVEL[severity],
            f"🚨 Alert [{severity.value}] {type.value}: {message}",
        )
        for listener in self.listeners:
            try:
                listener(alert)
            except Exception as e:
                logger.error(f"Alert listener failed: {e}")
        return alert

    def resolve_alert(self, alert_id: str) -> Alert:
        """Mark an alert as resolved.

        Raises:
            KeyError: If the alert does not exist
        """
        alert = self.alerts[alert_id]
        if not alert.resolved:
            alert.resolved = True
            alert.resolved_at = self.clock()
            self._persist(alert)
            logger.info(f"Alert {alert_id} resolved")
        return alert

    def get_alerts(
        self,
        include_resolved: bool = False,
        type: AlertType | None = None,
        provider: str | None = None,
    ) -> list[Alert]:
        alerts = [
            a
            for a in self.alerts.values()
            if (include_resolved or not a.resolved)
            and (type is None or a.type == type)
            and (provider is None or a.provider == provider)
        ]
        return sorted(alerts, key=lambda a: a.created_at)

    def _persist(self, alert: Alert) -> None:
        if self.store is None:
            return
        self.store.save_alert(
            alert.id, alert.created_at.isoformat(), alert.resolved, alert.to_dict()
        )
