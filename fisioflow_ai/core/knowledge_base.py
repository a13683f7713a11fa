"""Knowledge base service: validation, persistence and indexing of clinical entries."""

import logging
import re
import uuid
from collections import Counter
from datetime import UTC, datetime
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from fisioflow_ai.core.knowledge_index import KnowledgeIndex
from fisioflow_ai.lib.errors import ValidationError
from fisioflow_ai.models.knowledge import (
    KNOWLEDGE_TYPES,
    KnowledgeEntry,
    KnowledgeResult,
    SearchParams,
)
from fisioflow_ai.storage.knowledge_store import KnowledgeStore

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 5
MIN_CONTENT_LENGTH = 20
FEEDBACK_STEP = 0.05
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0

# Fields a caller may change through update_entry
EDITABLE_FIELDS = {
    "title",
    "content",
    "summary",
    "type",
    "tags",
    "conditions",
    "techniques",
    "contraindications",
    "references",
    "author",
}


def initial_confidence(data: dict[str, Any]) -> float:
    """Seed confidence from author experience, references, detail and tagging."""
    confidence = 0.5
    author = data.get("author") or {}
    if author.get("experience", 0) > 5:
        confidence += 0.2
    if data.get("references"):
        confidence += 0.1
    if len(data.get("content") or "") > 500:
        confidence += 0.1
    if len(data.get("tags") or []) >= 3:
        confidence += 0.1
    return min(round(confidence, 4), MAX_CONFIDENCE)


def generate_summary(content: str) -> str:
    """First two sentences of the content."""
    sentences = [s.strip() for s in re.split(r"[.!?]+", content) if s.strip()]
    if len(sentences) <= 2:
        return content.strip()
    return ". ".join(sentences[:2]) + "."


def validate_entry_data(data: dict[str, Any]) -> None:
    """Check required fields and minimum sizes.

    Raises:
        ValidationError: Naming the first offending field
    """
    for name in ("title", "content", "type", "author", "tenant_id"):
        if not data.get(name):
            raise ValidationError(f"Field '{name}' is required", field=name)

    if len(data["title"].strip()) < MIN_TITLE_LENGTH:
        raise ValidationError(
            f"Title must have at least {MIN_TITLE_LENGTH} characters", field="title"
        )
    if len(data["content"].strip()) < MIN_CONTENT_LENGTH:
        raise ValidationError(
            f"Content must have at least {MIN_CONTENT_LENGTH} characters", field="content"
        )
    if data["type"] not in KNOWLEDGE_TYPES:
        raise ValidationError(f"Invalid knowledge type: {data['type']}", field="type")

    author = data["author"]
    if not isinstance(author, dict) or not author.get("name"):
        raise ValidationError("Author name is required", field="author")


class KnowledgeBase:
    """Owns the knowledge store and keeps the in-memory index in sync with it."""

    def __init__(
        self,
        store: KnowledgeStore,
        index: KnowledgeIndex,
        enabled: bool = True,
        auto_summary: bool = True,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.index = index
        self.enabled = enabled
        self.auto_summary = auto_summary
        self.clock = clock or (lambda: datetime.now(UTC))

    async def load(self) -> int:
        """Index every persisted entry.

        Raises:
            IndexCorruption: If a stored document cannot be loaded

        Returns:
            Number of indexed entries
        """
        entries = self.store.list()
        for entry in entries:
            await self.index.index(entry)
        logger.info(f"📚 Knowledge base loaded with {len(entries)} entries")
        return len(entries)

    async def add_knowledge(self, data: dict[str, Any]) -> str:
        """Validate, persist and index a new entry.

        Args:
            data: Entry fields (title, content, type, author, tenant_id, ...)

        Returns:
            New entry id
        """
        data = dict(data)
        validate_entry_data(data)

        now = self.clock()
        data["id"] = data.get("id") or str(uuid.uuid4())
        data["confidence"] = initial_confidence(data)
        data["usage_count"] = 0
        data["success_rate"] = 0.0
        data["feedback_count"] = 0
        data["created_at"] = now
        data["updated_at"] = now
        data["last_used"] = None
        if self.auto_summary and not data.get("summary"):
            data["summary"] = generate_summary(data["content"])

        entry = self._build(data)
        self.store.save(entry)
        await self.index.index(entry)

        logger.info(
            f"Added knowledge entry {entry.id} ({entry.type}) "
            f"with confidence {entry.confidence:.2f}"
        )
        return entry.id

    async def update_entry(self, entry_id: str, changes: dict[str, Any]) -> KnowledgeEntry:
        """Apply editable changes to an entry and re-index it.

        Raises:
            KeyError: If the entry does not exist
            ValidationError: If the merged entry is invalid
        """
        entry = self.get_entry(entry_id)
        if entry is None:
            raise KeyError(entry_id)

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields not editable: {sorted(unknown)}", field=sorted(unknown)[0]
            )

        data = entry.model_dump()
        data.update(changes)
        validate_entry_data(data)
        data["updated_at"] = self.clock()

        updated = self._build(data)
        self.store.save(updated)
        await self.index.index(updated)
        logger.info(f"Updated knowledge entry {entry_id}")
        return updated

    async def delete_entry(self, entry_id: str) -> bool:
        deleted = self.store.delete(entry_id)
        await self.index.remove(entry_id)
        return deleted

    def get_entry(self, entry_id: str) -> KnowledgeEntry | None:
        return self.index.entries.get(entry_id) or self.store.get(entry_id)

    def list_entries(self, tenant_id: str | None = None) -> list[KnowledgeEntry]:
        return self.store.list(tenant_id)

    async def search(self, params: SearchParams) -> list[KnowledgeResult]:
        """Search the index and persist the usage bump on returned entries."""
        if not self.enabled:
            return []

        results = await self.index.search(params)
        for result in results:
            self.store.save(result.entry)
        return results

    async def related_titles(self, text: str, limit: int = 3) -> list[str]:
        entries = await self.index.related(text, limit)
        return [entry.title for entry in entries]

    async def record_feedback(self, entry_id: str, positive: bool) -> KnowledgeEntry:
        """Adjust confidence and success rate from explicit feedback.

        Confidence moves by 0.05 and always stays within [0.1, 1.0].
        """
        entry = self.get_entry(entry_id)
        if entry is None:
            raise KeyError(entry_id)

        step = FEEDBACK_STEP if positive else -FEEDBACK_STEP
        confidence = max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, round(entry.confidence + step, 4)))

        successes = entry.success_rate * entry.feedback_count + (1 if positive else 0)
        feedback_count = entry.feedback_count + 1

        updated = entry.model_copy(
            update={
                "confidence": confidence,
                "feedback_count": feedback_count,
                "success_rate": min(1.0, successes / feedback_count),
                "updated_at": self.clock(),
            }
        )
        self.store.save(updated)
        await self.index.index(updated)

        logger.info(
            f"Feedback on {entry_id}: {'positive' if positive else 'negative'}, "
            f"confidence now {confidence:.2f}"
        )
        return updated

    def get_statistics(self) -> dict[str, Any]:
        entries = self.store.list()
        if not entries:
            return {
                "total_entries": 0,
                "by_type": {},
                "by_author": {},
                "average_confidence": 0.0,
                "average_success_rate": 0.0,
                "most_used": [],
                "recently_added": [],
            }

        most_used = sorted(entries, key=lambda e: e.usage_count, reverse=True)[:10]
        recently_added = sorted(entries, key=lambda e: e.created_at, reverse=True)[:10]

        return {
            "total_entries": len(entries),
            "by_type": dict(Counter(e.type for e in entries)),
            "by_author": dict(Counter(e.author.name for e in entries)),
            "average_confidence": sum(e.confidence for e in entries) / len(entries),
            "average_success_rate": sum(e.success_rate for e in entries) / len(entries),
            "most_used": [self._brief(e) for e in most_used],
            "recently_added": [self._brief(e) for e in recently_added],
        }

    @staticmethod
    def _brief(entry: KnowledgeEntry) -> dict[str, Any]:
        return {
            "id": entry.id,
            "title": entry.title,
            "type": entry.type,
            "usage_count": entry.usage_count,
            "confidence": entry.confidence,
            "created_at": entry.created_at.isoformat(),
        }

    @staticmethod
    def _build(data: dict[str, Any]) -> KnowledgeEntry:
        try:
            return KnowledgeEntry.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"])
            raise ValidationError(
                f"Invalid value for '{field}': {first['msg']}", field=field
            ) from e
