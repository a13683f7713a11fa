# fisioflow_ai/storage/knowledge_store.py
import json
import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from fisioflow_ai.lib.errors import IndexCorruption
from fisioflow_ai.models.knowledge import KnowledgeEntry
from fisioflow_ai.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class KnowledgeStore:
    """Durable CRUD for knowledge entries, one JSON document per entry."""

    def __init__(self, sqlite_store: SQLiteStore):
        self.sqlite_store = sqlite_store

    def save(self, entry: KnowledgeEntry) -> None:
        self.sqlite_store.save_knowledge(
            entry_id=entry.id,
            tenant_id=entry.tenant_id,
            document=entry.model_dump(mode="json"),
        )

    def get(self, entry_id: str) -> Optional[KnowledgeEntry]:
        data = self.sqlite_store.get_knowledge(entry_id)
        if data is None:
            return None
        try:
            return KnowledgeEntry.model_validate(data)
        except PydanticValidationError as e:
            raise IndexCorruption(entry_id, str(e)) from e

    def delete(self, entry_id: str) -> bool:
        deleted = self.sqlite_store.delete_knowledge(entry_id)
        if deleted:
            logger.info(f"Deleted knowledge entry {entry_id}")
        return deleted

    def list(self, tenant_id: Optional[str] = None) -> list[KnowledgeEntry]:
        """Load every entry, optionally for one tenant.

        Raises:
            IndexCorruption: If a stored document is not a valid entry
        """
        entries = []
        for entry_id, raw in self.sqlite_store.list_knowledge(tenant_id):
            try:
                entries.append(KnowledgeEntry.model_validate(json.loads(raw)))
            except (json.JSONDecodeError, PydanticValidationError) as e:
                logger.error(f"Corrupt knowledge document {entry_id}: {e}")
                raise IndexCorruption(entry_id, str(e)) from e
        return entries
