"""Removal of personally identifying data before a query leaves the process."""

import hashlib
import re
from dataclasses import replace

from fisioflow_ai.lib.logger import LogCategory, get_logger
from fisioflow_ai.models.query import Query

logger = get_logger(__name__, LogCategory.SECURITY)

CPF_PATTERN = re.compile(r"\d{3}\.\d{3}\.\d{3}-\d{2}")
PHONE_PATTERN = re.compile(r"\(\d{2}\)\s?\d{4,5}-?\d{4}")
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


class Anonymizer:
    """Replaces CPF numbers, phones, e-mails and common names with placeholders."""

    def __init__(self, common_names: list[str], salt: str = "", enabled: bool = True):
        self.enabled = enabled
        self.salt = salt
        self.name_patterns = [
            re.compile(rf"\b{re.escape(name)}\b", re.IGNORECASE) for name in common_names
        ]

    def anonymize_text(self, text: str) -> str:
        if not self.enabled or not text:
            return text

        result = CPF_PATTERN.sub("[CPF_REMOVIDO]", text)
        result = PHONE_PATTERN.sub("[TELEFONE_REMOVIDO]", result)
        result = EMAIL_PATTERN.sub("[EMAIL_REMOVIDO]", result)
        for pattern in self.name_patterns:
            result = pattern.sub("[NOME_REMOVIDO]", result)
        return result

    def hash_value(self, value: str) -> str:
        digest = hashlib.sha256(f"{self.salt}:{value}".encode("utf-8")).hexdigest()
        return f"hash_{digest[:16]}"

    def anonymize_query(self, query: Query) -> Query:
        """Return a scrubbed copy of the query.

        The copy carries an opaque id so the caller's identifier never leaves
        the process; callers restore it on the response.

        Args:
            query: Original query (left untouched)

        Returns:
            Anonymized query
        """
        if not self.enabled:
            return query

        context = replace(
            query.context,
            symptoms=[self.anonymize_text(s) for s in query.context.symptoms],
            diagnosis=(
                self.anonymize_text(query.context.diagnosis) if query.context.diagnosis else None
            ),
            previous_treatments=[
                self.anonymize_text(t) for t in query.context.previous_treatments
            ],
            patient_id=(
                self.hash_value(query.context.patient_id) if query.context.patient_id else None
            ),
            extra={},
        )
        anonymized_text = self.anonymize_text(query.text)
        if anonymized_text != query.text:
            logger.info(
                "Personal data removed from outbound query",
                extra_fields={"query_length": len(query.text)},
            )

        return replace(
            query,
            id=self.hash_value(query.id),
            text=anonymized_text,
            context=context,
            cache_key=query.cache_key,
        )
