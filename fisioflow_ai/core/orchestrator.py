"""Query resolution pipeline: knowledge base, cache, premium provider, fallback."""

import asyncio
import time
from dataclasses import replace
from datetime import UTC, datetime
from enum import Enum
from typing import Callable

from fisioflow_ai.core.analytics import AnalyticsAggregator
from fisioflow_ai.core.cache_service import TieredCache
from fisioflow_ai.core.knowledge_base import KnowledgeBase
from fisioflow_ai.core.knowledge_index import tokenize
from fisioflow_ai.core.provider_manager import ProviderManager
from fisioflow_ai.core.response_builder import (
    SCHEDULING_KEYWORDS,
    build_error_response,
    build_fallback_response,
    build_internal_response,
    scheduling_prompt,
)
from fisioflow_ai.lib.errors import ProviderCallFailed, ProviderUnavailable, ValidationError
from fisioflow_ai.lib.logger import LogCategory, get_logger
from fisioflow_ai.models.knowledge import SearchParams
from fisioflow_ai.models.metrics import QueryMetric
from fisioflow_ai.models.query import Query, QueryType
from fisioflow_ai.models.response import Response, ResponseSource

logger = get_logger(__name__, LogCategory.QUERY)


class PipelineState(str, Enum):
    VALIDATE = "validate"
    SEARCH_INTERNAL = "search_internal"
    CHECK_CACHE = "check_cache"
    QUERY_PREMIUM = "query_premium"
    FALLBACK = "fallback"
    DONE = "done"
    ERROR = "error"


def has_scheduling_intent(text: str) -> bool:
    return any(token in SCHEDULING_KEYWORDS for token in tokenize(text))


def validate_query(query: Query) -> None:
    """Fail fast on malformed queries.

    Raises:
        ValidationError: If id, text, type, context or user role is missing
    """
    if not query.id:
        raise ValidationError("Query id is required", field="id")
    if not query.text or not query.text.strip():
        raise ValidationError("Query text is required", field="text")
    if not isinstance(query.type, QueryType):
        raise ValidationError("Query type is required", field="type")
    if query.context is None:
        raise ValidationError("Query context is required", field="context")
    if not query.context.user_role:
        raise ValidationError("User role is required", field="context.user_role")


class QueryOrchestrator:
    """Resolves a query through the cheapest source that can answer it.

    Order: internal knowledge base, tiered cache, one premium provider,
    canned fallback. Queries with scheduling intent skip the knowledge base
    and cache and are never cached themselves.
    """

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        cache: TieredCache,
        providers: ProviderManager,
        analytics: AnalyticsAggregator,
        max_concurrent_queries: int = 10,
        clock: Callable[[], datetime] | None = None,
    ):
        self.knowledge_base = knowledge_base
        self.cache = cache
        self.providers = providers
        self.analytics = analytics
        self.clock = clock or (lambda: datetime.now(UTC))
        self.semaphore = asyncio.Semaphore(max_concurrent_queries)

    async def process(self, query: Query) -> Response:
        """Resolve a query.

        Args:
            query: Query to resolve

        Returns:
            Response from the first stage that could answer

        Raises:
            ValidationError: Malformed query (nothing else propagates)
        """
        validate_query(query)

        async with self.semaphore:
            start = time.perf_counter()
            state = PipelineState.VALIDATE
            try:
                response, state = await self._resolve(query)
            except ValidationError:
                raise
            except Exception as e:
                logger.error(f"Pipeline error for query {query.id}: {e}", exc_info=True)
                response = build_error_response(query)
                state = PipelineState.ERROR

            response.response_time = (time.perf_counter() - start) * 1000
            self._record(query, response, state)
            return response

    async def _resolve(self, query: Query) -> tuple[Response, PipelineState]:
        if has_scheduling_intent(query.text):
            logger.info(f"Query {query.id} has scheduling intent, going straight to premium")
            response = await self._query_premium(
                query, system_prompt=scheduling_prompt(self.clock()), cache_result=False
            )
            if response is not None:
                response.metadata["scheduling"] = True
                return response, PipelineState.DONE
            return build_fallback_response(query), PipelineState.FALLBACK

        response = await self._search_internal(query)
        if response is not None:
            return response, PipelineState.DONE

        response = await self._check_cache(query)
        if response is not None:
            return response, PipelineState.DONE

        response = await self._query_premium(query)
        if response is not None:
            return response, PipelineState.DONE

        logger.info(f"Query {query.id} resolved by fallback")
        return build_fallback_response(query), PipelineState.FALLBACK

    async def _search_internal(self, query: Query) -> Response | None:
        try:
            results = await self.knowledge_base.search(
                SearchParams(
                    text=query.text,
                    symptoms=query.context.symptoms,
                    diagnosis=query.context.diagnosis,
                    tenant_id=query.context.tenant_id,
                )
            )
        except Exception as e:
            logger.warning(f"Knowledge base search failed for {query.id}: {e}")
            return None

        if not results:
            return None

        response = build_internal_response(results, query)
        floor = self.knowledge_base.index.min_confidence
        if response.confidence < floor:
            logger.info(
                f"Internal answer for {query.id} below floor "
                f"({response.confidence:.2f} < {floor:.2f}), trying cache"
            )
            return None

        logger.info(f"📚 Query {query.id} answered from {len(results)} knowledge entries")
        return response

    async def _check_cache(self, query: Query) -> Response | None:
        try:
            cached = await self.cache.get(query.cache_key)
        except Exception as e:
            logger.warning(f"Cache lookup failed for {query.id}: {e}")
            return None

        if cached is None:
            return None

        logger.info(f"⚡ Query {query.id} answered from cache")
        return replace(
            cached,
            query_id=query.id,
            source=ResponseSource.CACHE,
            references=list(cached.references),
            suggestions=list(cached.suggestions),
            follow_up_questions=list(cached.follow_up_questions),
            metadata={**cached.metadata, "source": ResponseSource.CACHE.value},
        )

    async def _query_premium(
        self,
        query: Query,
        system_prompt: str | None = None,
        cache_result: bool = True,
    ) -> Response | None:
        provider = self.providers.select_best_provider(query.type)
        if provider is None:
            return None

        try:
            response = await asyncio.wait_for(
                self.providers.query(provider, query, system_prompt=system_prompt),
                timeout=query.max_response_time,
            )
        except ProviderUnavailable as e:
            logger.warning(str(e))
            return None
        except ProviderCallFailed as e:
            logger.error(str(e))
            return None
        except asyncio.TimeoutError:
            logger.warning(
                f"{provider.value} exceeded {query.max_response_time}s for query {query.id}"
            )
            return None

        await self._enrich_with_references(response, query)

        if cache_result:
            try:
                await self.cache.set(query.cache_key, response)
            except Exception as e:
                logger.warning(f"Could not cache premium answer for {query.id}: {e}")

        return response

    async def _enrich_with_references(self, response: Response, query: Query) -> None:
        try:
            titles = await self.knowledge_base.related_titles(query.text)
        except Exception as e:
            logger.debug(f"No internal references for {query.id}: {e}")
            return
        if titles:
            response.references = list(dict.fromkeys(response.references + titles))
            response.metadata["internal_references"] = len(titles)

    def _record(self, query: Query, response: Response, state: PipelineState) -> None:
        success = state == PipelineState.DONE
        logger.info(
            f"Query {query.id} ({query.type.value}) -> {response.source.value} "
            f"[{state.value}] in {response.response_time:.0f}ms success={success}"
        )
        try:
            self.analytics.record_query(
                QueryMetric(
                    query_id=query.id,
                    type=query.type.value,
                    source=response.source.value,
                    provider=response.provider,
                    response_time=response.response_time,
                    tokens_used=response.tokens_used,
                    confidence=response.confidence,
                    success=success,
                    timestamp=self.clock(),
                )
            )
        except Exception as e:
            logger.error(f"Failed to record metrics for {query.id}: {e}")
