"""Request bodies accepted by the HTTP API."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class QueryRequest(BaseModel):
    """Clinical query submission."""

    text: str
    type: str = "general_question"
    context: dict[str, Any] = Field(default_factory=dict)
    priority: Literal["low", "normal", "high", "urgent"] = "normal"
    max_response_time: float | None = Field(default=None, gt=0)


class AuthorModel(BaseModel):
    id: str | None = None
    name: str
    experience: int = 0


class KnowledgeCreateRequest(BaseModel):
    title: str
    content: str
    type: str
    tenant_id: str
    author: AuthorModel
    summary: str | None = None
    tags: list[str] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)
    techniques: list[str] = Field(default_factory=list)
    contraindications: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)


class KnowledgeUpdateRequest(BaseModel):
    """Partial update; only fields that are set are applied."""

    title: str | None = None
    content: str | None = None
    summary: str | None = None
    type: str | None = None
    tags: list[str] | None = None
    conditions: list[str] | None = None
    techniques: list[str] | None = None
    contraindications: list[str] | None = None
    references: list[str] | None = None
    author: AuthorModel | None = None


class KnowledgeFeedbackRequest(BaseModel):
    positive: bool


class QueryFeedbackRequest(BaseModel):
    query_id: str
    rating: int = Field(ge=1, le=5)
