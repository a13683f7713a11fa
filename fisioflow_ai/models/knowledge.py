# fisioflow_ai/models/knowledge.py
from datetime import UTC, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

KnowledgeType = Literal["protocol", "exercise", "case", "technique", "experience"]
KNOWLEDGE_TYPES = ("protocol", "exercise", "case", "technique", "experience")


def _now() -> datetime:
    return datetime.now(UTC)


class Author(BaseModel):
    id: Optional[str] = None
    name: str
    experience: int = 0  # years in practice


class KnowledgeEntry(BaseModel):
    id: str
    title: str
    content: str
    summary: Optional[str] = None
    type: KnowledgeType
    tags: list[str] = []
    conditions: list[str] = []
    techniques: list[str] = []
    contraindications: list[str] = []
    references: list[str] = []
    author: Author
    tenant_id: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    usage_count: int = 0
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    feedback_count: int = 0
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    last_used: Optional[datetime] = None


class SearchParams(BaseModel):
    text: Optional[str] = None
    symptoms: list[str] = []
    diagnosis: Optional[str] = None
    type: Optional[KnowledgeType] = None
    tenant_id: Optional[str] = None


class KnowledgeResult(BaseModel):
    entry: KnowledgeEntry
    relevance: float
    score: float = 0.0
    matched_fields: list[str] = []
