"""Response data model for resolved queries."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ResponseSource(str, Enum):
    """Where an answer came from."""

    INTERNAL = "internal"
    CACHE = "cache"
    PREMIUM = "premium"


class EvidenceLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


@dataclass
class Response:
    """Answer returned by the engine for one query."""

    query_id: str
    content: str
    confidence: float
    source: ResponseSource
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    provider: str | None = None
    references: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    follow_up_questions: list[str] = field(default_factory=list)
    tokens_used: int = 0
    response_time: float = 0.0  # milliseconds
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def evidence_level(self) -> EvidenceLevel | None:
        value = self.metadata.get("evidence_level")
        if value is None:
            return None
        try:
            return EvidenceLevel(value)
        except ValueError:
            return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "id": self.id,
            "query_id": self.query_id,
            "content": self.content,
            "confidence": self.confidence,
            "source": self.source.value,
            "provider": self.provider,
            "references": list(self.references),
            "suggestions": list(self.suggestions),
            "follow_up_questions": list(self.follow_up_questions),
            "tokens_used": self.tokens_used,
            "response_time": self.response_time,
            "created_at": self.created_at.isoformat(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Response":
        """Create from dict produced by ``to_dict``."""
        return cls(
            id=data["id"],
            query_id=data["query_id"],
            content=data["content"],
            confidence=float(data["confidence"]),
            source=ResponseSource(data["source"]),
            provider=data.get("provider"),
            references=list(data.get("references", [])),
            suggestions=list(data.get("suggestions", [])),
            follow_up_questions=list(data.get("follow_up_questions", [])),
            tokens_used=int(data.get("tokens_used", 0)),
            response_time=float(data.get("response_time", 0.0)),
            created_at=datetime.fromisoformat(data["created_at"]),
            metadata=dict(data.get("metadata", {})),
        )
