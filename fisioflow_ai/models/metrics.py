"""Per-query metric record."""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class QueryMetric:
    """Immutable record appended for every resolved or failed query."""

    query_id: str
    type: str
    source: str
    response_time: float  # milliseconds
    tokens_used: int
    confidence: float
    success: bool
    timestamp: datetime
    provider: str | None = None
    user_feedback: int | None = None  # rating 1-5

    def with_feedback(self, rating: int) -> "QueryMetric":
        return replace(self, user_feedback=rating)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query_id": self.query_id,
            "type": self.type,
            "source": self.source,
            "provider": self.provider,
            "response_time": self.response_time,
            "tokens_used": self.tokens_used,
            "confidence": self.confidence,
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
            "user_feedback": self.user_feedback,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueryMetric":
        return cls(
            query_id=data["query_id"],
            type=data["type"],
            source=data["source"],
            provider=data.get("provider"),
            response_time=float(data["response_time"]),
            tokens_used=int(data["tokens_used"]),
            confidence=float(data["confidence"]),
            success=bool(data["success"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            user_feedback=data.get("user_feedback"),
        )
