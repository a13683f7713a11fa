"""In-memory inverted index over knowledge entries."""

import asyncio
import logging
import re
import unicodedata
from collections import defaultdict
from datetime import UTC, datetime
from typing import Callable

from fisioflow_ai.models.knowledge import KnowledgeEntry, KnowledgeResult, SearchParams

logger = logging.getLogger(__name__)

TEXT_WEIGHT = 1.0
SYMPTOM_WEIGHT = 0.8
DIAGNOSIS_WEIGHT = 1.2
FUZZY_WEIGHT = 0.5

STOPWORDS = frozenset(
    {
        "para", "com", "por", "uma", "umas", "uns", "que", "dos", "das", "nos", "nas",
        "pelo", "pela", "pelos", "pelas", "como", "mais", "mas", "sem", "sobre", "entre",
        "seu", "sua", "seus", "suas", "ele", "ela", "eles", "elas", "isso", "isto", "este",
        "esta", "esse", "essa", "qual", "quais", "quando", "onde", "muito", "tem", "ter",
        "ser", "sao", "foi", "the", "and", "for",
    }
)

_SPLIT = re.compile(r"[^a-z0-9]+")


def normalize(text: str) -> str:
    """Lower-case and strip diacritics."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def tokenize(text: str) -> list[str]:
    """Split text into index terms, dropping short words and stopwords."""
    return [
        token
        for token in _SPLIT.split(normalize(text))
        if len(token) > 2 and token not in STOPWORDS
    ]


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Normalized edit-distance similarity in [0, 1]."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def recency_bonus(last_used: datetime | None, now: datetime) -> float:
    if last_used is None:
        return 1.0
    days = (now - last_used).total_seconds() / 86400
    if days < 7:
        return 1.2
    if days < 30:
        return 1.1
    if days < 90:
        return 1.0
    return 0.9


class KnowledgeIndex:
    """Term, condition, technique and symptom postings over knowledge entries.

    Relevance from the text, symptom and diagnosis sub-searches is combined
    additively per entry and ranked by relevance x confidence x recency.
    """

    def __init__(
        self,
        min_confidence: float = 0.7,
        max_results: int = 10,
        fuzzy_search: bool = True,
        fuzzy_threshold: float = 0.8,
        clock: Callable[[], datetime] | None = None,
    ):
        self.min_confidence = min_confidence
        self.max_results = max_results
        self.fuzzy_search = fuzzy_search
        self.fuzzy_threshold = fuzzy_threshold
        self.clock = clock or (lambda: datetime.now(UTC))

        self.entries: dict[str, KnowledgeEntry] = {}
        self.term_index: dict[str, set[str]] = defaultdict(set)
        self.condition_index: dict[str, set[str]] = defaultdict(set)
        self.technique_index: dict[str, set[str]] = defaultdict(set)
        self.symptom_index: dict[str, set[str]] = defaultdict(set)
        self._order: dict[str, int] = {}
        self._next_order = 0
        self.lock = asyncio.Lock()

    async def index(self, entry: KnowledgeEntry) -> None:
        """Index an entry, replacing any previous postings for it."""
        async with self.lock:
            self._remove(entry.id)
            self._insert(entry)

    async def remove(self, entry_id: str) -> None:
        async with self.lock:
            self._remove(entry_id)

    def _insert(self, entry: KnowledgeEntry) -> None:
        self.entries[entry.id] = entry
        if entry.id not in self._order:
            self._order[entry.id] = self._next_order
            self._next_order += 1

        searchable = " ".join(
            [entry.title, entry.content, entry.summary or ""]
            + entry.tags
            + entry.conditions
            + entry.techniques
        )
        for term in set(tokenize(searchable)):
            self.term_index[term].add(entry.id)
        for condition in entry.conditions:
            self.condition_index[normalize(condition)].add(entry.id)
        for technique in entry.techniques:
            self.technique_index[normalize(technique)].add(entry.id)
        for tag in entry.tags:
            self.symptom_index[normalize(tag)].add(entry.id)

    def _remove(self, entry_id: str) -> None:
        if entry_id not in self.entries:
            return
        for postings in (
            self.term_index,
            self.condition_index,
            self.technique_index,
            self.symptom_index,
        ):
            empty = []
            for key, ids in postings.items():
                ids.discard(entry_id)
                if not ids:
                    empty.append(key)
            for key in empty:
                del postings[key]
        del self.entries[entry_id]

    def _search_text(self, text: str) -> dict[str, float]:
        terms = tokenize(text)
        if not terms:
            return {}

        scores: dict[str, float] = defaultdict(float)
        for term in terms:
            for entry_id in self.term_index.get(term, ()):
                scores[entry_id] += 1.0
            if self.fuzzy_search:
                # Fuzzy hits never add to an entry already matched exactly on this term
                exact = self.term_index.get(term, set())
                fuzzy_ids: set[str] = set()
                for indexed_term, ids in self.term_index.items():
                    if indexed_term == term:
                        continue
                    if similarity(term, indexed_term) >= self.fuzzy_threshold:
                        fuzzy_ids.update(ids - exact)
                for entry_id in fuzzy_ids:
                    scores[entry_id] += FUZZY_WEIGHT

        return {entry_id: score / len(terms) for entry_id, score in scores.items()}

    def _search_symptoms(self, symptoms: list[str]) -> dict[str, float]:
        normalized = [normalize(s) for s in symptoms if s.strip()]
        if not normalized:
            return {}

        scores: dict[str, float] = defaultdict(float)
        for symptom in normalized:
            matched = self.symptom_index.get(symptom, set()) | self.condition_index.get(
                symptom, set()
            )
            for entry_id in matched:
                scores[entry_id] += 1.0
        return {entry_id: score / len(normalized) for entry_id, score in scores.items()}

    def _search_diagnosis(self, diagnosis: str) -> dict[str, float]:
        scores: dict[str, float] = {}
        for entry_id in self.condition_index.get(normalize(diagnosis), ()):
            scores[entry_id] = 1.0
        for entry_id, score in self._search_text(diagnosis).items():
            if entry_id not in scores:
                scores[entry_id] = 0.5 * min(score, 1.0)
        return scores

    async def search(self, params: SearchParams) -> list[KnowledgeResult]:
        """Search the index.

        Args:
            params: Text, symptoms, diagnosis and optional type/tenant filters

        Returns:
            Ranked results meeting the confidence floor, at most ``max_results``.
            Returned entries have their usage count and last-used time updated.
        """
        async with self.lock:
            combined: dict[str, float] = defaultdict(float)
            matched_fields: dict[str, list[str]] = defaultdict(list)

            sub_searches = []
            if params.text:
                sub_searches.append(("text", TEXT_WEIGHT, self._search_text(params.text)))
            if params.symptoms:
                sub_searches.append(
                    ("symptoms", SYMPTOM_WEIGHT, self._search_symptoms(params.symptoms))
                )
            if params.diagnosis:
                sub_searches.append(
                    ("diagnosis", DIAGNOSIS_WEIGHT, self._search_diagnosis(params.diagnosis))
                )

            for field_name, weight, scores in sub_searches:
                for entry_id, score in scores.items():
                    combined[entry_id] += score * weight
                    matched_fields[entry_id].append(field_name)

            now = self.clock()
            results = []
            for entry_id, relevance in combined.items():
                entry = self.entries[entry_id]
                if params.type and entry.type != params.type:
                    continue
                if params.tenant_id and entry.tenant_id != params.tenant_id:
                    continue
                if entry.confidence < self.min_confidence:
                    continue
                score = relevance * entry.confidence * recency_bonus(entry.last_used, now)
                results.append(
                    KnowledgeResult(
                        entry=entry,
                        relevance=min(relevance, 1.0),
                        score=score,
                        matched_fields=matched_fields[entry_id],
                    )
                )

            results.sort(key=lambda r: (-r.score, self._order[r.entry.id]))
            results = results[: self.max_results]

            for result in results:
                result.entry.usage_count += 1
                result.entry.last_used = now

            logger.debug(f"Knowledge search matched {len(combined)}, returned {len(results)}")
            return results

    async def related(self, text: str, limit: int = 3) -> list[KnowledgeEntry]:
        """Closest entries by text alone, ignoring the confidence floor and usage."""
        async with self.lock:
            scores = self._search_text(text)
            ranked = sorted(scores.items(), key=lambda kv: (-kv[1], self._order[kv[0]]))
            return [self.entries[entry_id] for entry_id, _ in ranked[:limit]]

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self.entries),
            "terms": len(self.term_index),
            "conditions": len(self.condition_index),
            "techniques": len(self.technique_index),
            "symptoms": len(self.symptom_index),
        }
