"""Provider usage tracking models."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ProviderName(str, Enum):
    """Premium AI providers available to the clinic."""

    CHATGPT_PLUS = "chatgpt_plus"
    GEMINI_PRO = "gemini_pro"
    CLAUDE_PRO = "claude_pro"
    PERPLEXITY_PRO = "perplexity_pro"
    MARS_AI_PRO = "mars_ai_pro"


class ProviderStatus(str, Enum):
    AVAILABLE = "available"
    WARNING = "warning"
    CRITICAL = "critical"
    BLOCKED = "blocked"


class AlertType(str, Enum):
    USAGE_WARNING = "usage_warning"
    USAGE_CRITICAL = "usage_critical"
    PERFORMANCE_DEGRADED = "performance_degraded"
    QUALITY_LOW = "quality_low"
    PROVIDER_ERROR = "provider_error"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


WINDOWS = ("hourly", "daily", "monthly")


@dataclass
class UsageLimits:
    """Quota per usage window."""

    hourly: int
    daily: int
    monthly: int

    def to_dict(self) -> dict[str, int]:
        return {"hourly": self.hourly, "daily": self.daily, "monthly": self.monthly}


@dataclass
class UsageCounters:
    hourly: int = 0
    daily: int = 0
    monthly: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"hourly": self.hourly, "daily": self.daily, "monthly": self.monthly}


@dataclass
class UsageTracker:
    """Usage state for a single provider."""

    provider: ProviderName
    limits: UsageLimits
    current: UsageCounters = field(default_factory=UsageCounters)
    status: ProviderStatus = ProviderStatus.AVAILABLE
    percentage: float = 0.0
    reset_dates: dict[str, datetime] = field(default_factory=dict)
    tokens_used: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "limits": self.limits.to_dict(),
            "current": self.current.to_dict(),
            "status": self.status.value,
            "percentage": self.percentage,
            "reset_dates": {k: v.isoformat() for k, v in self.reset_dates.items()},
            "tokens_used": self.tokens_used,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UsageTracker":
        return cls(
            provider=ProviderName(data["provider"]),
            limits=UsageLimits(**data["limits"]),
            current=UsageCounters(**data.get("current", {})),
            status=ProviderStatus(data.get("status", "available")),
            percentage=float(data.get("percentage", 0.0)),
            reset_dates={
                k: datetime.fromisoformat(v) for k, v in data.get("reset_dates", {}).items()
            },
            tokens_used=int(data.get("tokens_used", 0)),
        )


@dataclass
class Alert:
    """Operational alert raised by usage tracking or analytics."""

    type: AlertType
    severity: AlertSeverity
    message: str
    provider: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    resolved: bool = False
    resolved_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "provider": self.provider,
            "message": self.message,
            "data": self.data,
            "created_at": self.created_at.isoformat(),
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Alert":
        return cls(
            id=data["id"],
            type=AlertType(data["type"]),
            severity=AlertSeverity(data["severity"]),
            provider=data.get("provider"),
            message=data["message"],
            data=data.get("data", {}),
            created_at=datetime.fromisoformat(data["created_at"]),
            resolved=bool(data.get("resolved", False)),
            resolved_at=(
                datetime.fromisoformat(data["resolved_at"]) if data.get("resolved_at") else None
            ),
        )
