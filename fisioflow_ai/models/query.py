"""Query data model and cache key derivation."""

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

FNV_OFFSET_BASIS = 0xCBF29CE484222325
FNV_PRIME = 0x100000001B3
CACHE_KEY_PREFIX = "ai_cache_"


class QueryType(str, Enum):
    """Kinds of clinical query the engine resolves."""

    GENERAL_QUESTION = "general_question"
    PROTOCOL_SUGGESTION = "protocol_suggestion"
    DIAGNOSIS_HELP = "diagnosis_help"
    EXERCISE_RECOMMENDATION = "exercise_recommendation"
    CASE_ANALYSIS = "case_analysis"
    RESEARCH_QUERY = "research_query"
    DOCUMENT_ANALYSIS = "document_analysis"

    @classmethod
    def parse(cls, value: "str | QueryType") -> "QueryType":
        """Accept both ``exercise_recommendation`` and ``exercise-recommendation``."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower().replace("-", "_"))


class QueryPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


@dataclass
class QueryContext:
    """Clinical context attached to a query."""

    user_role: str
    symptoms: list[str] = field(default_factory=list)
    diagnosis: str | None = None
    previous_treatments: list[str] = field(default_factory=list)
    patient_id: str | None = None
    tenant_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueryContext":
        known = {
            "user_role",
            "symptoms",
            "diagnosis",
            "previous_treatments",
            "patient_id",
            "tenant_id",
            "extra",
        }
        aliases = {
            "userRole": "user_role",
            "previousTreatments": "previous_treatments",
            "patientId": "patient_id",
            "tenantId": "tenant_id",
        }
        values: dict[str, Any] = {}
        extra: dict[str, Any] = dict(data.get("extra") or {})
        for key, value in data.items():
            name = aliases.get(key, key)
            if name == "extra":
                continue
            if name in known:
                values[name] = value
            else:
                extra[key] = value
        values["extra"] = extra
        values.setdefault("user_role", "")
        values["symptoms"] = list(values.get("symptoms") or [])
        values["previous_treatments"] = list(values.get("previous_treatments") or [])
        return cls(**values)


def fnv1a_64(data: bytes) -> int:
    """64-bit FNV-1a hash."""
    h = FNV_OFFSET_BASIS
    for byte in data:
        h ^= byte
        h = (h * FNV_PRIME) & 0xFFFFFFFFFFFFFFFF
    return h


def derive_cache_key(text: str, context: QueryContext | dict[str, Any] | None) -> str:
    """Derive a deterministic cache key from query text and context.

    Args:
        text: Query text
        context: Query context (dataclass or plain dict)

    Returns:
        Key of the form ``ai_cache_<16 hex digits>``
    """
    if isinstance(context, QueryContext):
        context = context.to_dict()
    serialized = json.dumps(context or {}, sort_keys=True, ensure_ascii=False, default=str)
    digest = fnv1a_64((text + serialized).encode("utf-8"))
    return f"{CACHE_KEY_PREFIX}{digest:016x}"


@dataclass
class Query:
    """A single clinical query submitted to the engine."""

    text: str
    type: QueryType
    context: QueryContext
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    priority: QueryPriority = QueryPriority.NORMAL
    max_response_time: float = 30.0  # seconds
    cache_key: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self):
        if not self.cache_key:
            self.cache_key = derive_cache_key(self.text, self.context)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "type": self.type.value,
            "context": self.context.to_dict(),
            "priority": self.priority.value,
            "max_response_time": self.max_response_time,
            "cache_key": self.cache_key,
            "created_at": self.created_at.isoformat(),
        }
