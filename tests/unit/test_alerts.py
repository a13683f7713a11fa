"""Tests for the alert registry."""

import pytest

from fisioflow_ai.core.alerts import AlertManager
from fisioflow_ai.models.usage import AlertSeverity, AlertType
from fisioflow_ai.storage.sqlite_store import SQLiteStore


@pytest.mark.unit
def test_alerts_are_filtered_and_sorted(clock):
    alerts = AlertManager(clock=clock)
    first = alerts.add_alert(
        AlertType.USAGE_WARNING, AlertSeverity.MEDIUM, "80% used", provider="chatgpt_plus"
    )
    clock.advance(minutes=1)
    second = alerts.add_alert(AlertType.QUALITY_LOW, AlertSeverity.MEDIUM, "low confidence")

    assert alerts.get_alerts() == [first, second]
    assert alerts.get_alerts(type=AlertType.QUALITY_LOW) == [second]
    assert alerts.get_alerts(provider="chatgpt_plus") == [first]


@pytest.mark.unit
def test_resolve_is_idempotent(clock):
    alerts = AlertManager(clock=clock)
    alert = alerts.add_alert(AlertType.USAGE_CRITICAL, AlertSeverity.CRITICAL, "blocked")

    resolved_at = clock.advance(minutes=5)
    alerts.resolve_alert(alert.id)
    clock.advance(minutes=5)
    alerts.resolve_alert(alert.id)

    assert alert.resolved is True
    assert alert.resolved_at == resolved_at


@pytest.mark.unit
def test_listeners_are_notified_and_failures_contained(clock):
    alerts = AlertManager(clock=clock)
    seen = []

    def broken(alert):
        raise RuntimeError("webhook down")

    alerts.add_listener(broken)
    alerts.add_listener(seen.append)

    alert = alerts.add_alert(AlertType.PROVIDER_ERROR, AlertSeverity.HIGH, "timeout")

    assert seen == [alert]


@pytest.mark.unit
def test_alerts_survive_restart(tmp_path, clock):
    store = SQLiteStore(tmp_path / "engine.db")
    alerts = AlertManager(store=store, clock=clock)
    open_alert = alerts.add_alert(AlertType.USAGE_WARNING, AlertSeverity.MEDIUM, "80% used")
    closed = alerts.add_alert(AlertType.QUALITY_LOW, AlertSeverity.MEDIUM, "low confidence")
    alerts.resolve_alert(closed.id)

    restarted = AlertManager(store=store, clock=clock)
    restarted.load()

    assert [a.id for a in restarted.get_alerts()] == [open_alert.id]
    reloaded = restarted.get_alerts(include_resolved=True)
    assert {a.id for a in reloaded} == {open_alert.id, closed.id}
    assert next(a for a in reloaded if a.id == closed.id).resolved is True
