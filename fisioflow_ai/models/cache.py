"""Cache entry model."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from fisioflow_ai.models.response import Response


@dataclass
class CacheEntry:
    """Cached response with expiry and access bookkeeping."""

    key: str
    response: Response
    created_at: datetime
    expires_at: datetime
    access_count: int = 0
    last_accessed: datetime | None = None

    def __post_init__(self):
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")
        if self.last_accessed is None:
            self.last_accessed = self.created_at

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def touch(self, now: datetime) -> None:
        self.access_count += 1
        self.last_accessed = now

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "response": self.response.to_dict(),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "access_count": self.access_count,
            "last_accessed": self.last_accessed.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            response=Response.from_dict(data["response"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            access_count=int(data.get("access_count", 0)),
            last_accessed=datetime.fromisoformat(data["last_accessed"]),
        )
