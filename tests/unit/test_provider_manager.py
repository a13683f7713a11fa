"""Tests for provider selection, dispatch and usage accounting."""

import asyncio
import random

import pytest
from conftest import fake_client, fake_clients, provider_settings

from fisioflow_ai.core.provider_manager import ProviderManager, estimate_tokens
from fisioflow_ai.core.usage_tracker import UsageMonitor
from fisioflow_ai.lib.anonymizer import Anonymizer
from fisioflow_ai.lib.config import LoadBalancingSettings
from fisioflow_ai.lib.errors import ProviderCallFailed, ProviderUnavailable
from fisioflow_ai.models.query import Query, QueryContext, QueryType
from fisioflow_ai.models.response import ResponseSource
from fisioflow_ai.models.usage import ProviderName, UsageLimits

CHATGPT = ProviderName.CHATGPT_PLUS
CLAUDE = ProviderName.CLAUDE_PRO
GEMINI = ProviderName.GEMINI_PRO
PERPLEXITY = ProviderName.PERPLEXITY_PRO


def build_manager(clock, algorithm="round_robin", enabled=None, clients=None, limits=None, **lb):
    settings = provider_settings(enabled=enabled, limits=limits)
    usage = UsageMonitor(
        limits={name: s.limits for name, s in settings.items()},
        clock=clock,
    )
    return ProviderManager(
        settings=settings,
        usage=usage,
        anonymizer=Anonymizer(common_names=["Maria"], salt="test"),
        load_balancing=LoadBalancingSettings(
            enabled=lb.pop("lb_enabled", True), algorithm=algorithm, weights=lb.pop("weights", {})
        ),
        clients=fake_clients() if clients is None else clients,
        rng=random.Random(7),
    )


def make_query(text="Conduta para dor lombar crônica?", query_type=QueryType.GENERAL_QUESTION):
    return Query(
        text=text,
        type=query_type,
        context=QueryContext(user_role="physio", symptoms=["dor lombar"], patient_id="p-42"),
    )


@pytest.mark.unit
def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


@pytest.mark.unit
def test_preferred_provider_without_load_balancing(clock):
    manager = build_manager(clock, lb_enabled=False)

    assert manager.select_best_provider(QueryType.DIAGNOSIS_HELP) == CLAUDE
    assert manager.select_best_provider(QueryType.RESEARCH_QUERY) == PERPLEXITY
    assert manager.select_best_provider(QueryType.EXERCISE_RECOMMENDATION) == CHATGPT


@pytest.mark.unit
def test_round_robin_rotates_over_available_providers(clock):
    manager = build_manager(clock, enabled={CHATGPT, CLAUDE, GEMINI})

    picks = [manager.select_best_provider(QueryType.GENERAL_QUESTION) for _ in range(4)]

    assert picks == [CHATGPT, CLAUDE, GEMINI, CHATGPT]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_blocked_and_disabled_providers_are_skipped(clock):
    manager = build_manager(
        clock,
        enabled={CHATGPT, CLAUDE},
        limits=UsageLimits(hourly=1, daily=100, monthly=1000),
        lb_enabled=False,
    )
    await manager.usage.track_usage(CLAUDE)

    assert manager.select_best_provider(QueryType.DIAGNOSIS_HELP) == CHATGPT

    await manager.usage.track_usage(CHATGPT)
    assert manager.select_best_provider(QueryType.DIAGNOSIS_HELP) is None


@pytest.mark.unit
def test_providers_without_client_are_skipped(clock):
    manager = build_manager(clock, clients={GEMINI: fake_client()})

    assert manager.select_best_provider(QueryType.GENERAL_QUESTION) == GEMINI
    assert manager.get_provider_stats()[CHATGPT.value]["configured"] is False


@pytest.mark.unit
def test_missing_api_key_leaves_provider_unconfigured(clock):
    settings = provider_settings()
    for s in settings.values():
        s.api_key = None
    manager = ProviderManager(
        settings=settings,
        usage=UsageMonitor(limits={n: s.limits for n, s in settings.items()}, clock=clock),
        anonymizer=Anonymizer(common_names=[]),
        load_balancing=LoadBalancingSettings(enabled=True, algorithm="round_robin"),
    )

    assert manager.clients == {}
    assert manager.select_best_provider(QueryType.GENERAL_QUESTION) is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_least_used_picks_lowest_monthly_count(clock):
    manager = build_manager(clock, algorithm="least_used", enabled={CHATGPT, CLAUDE, GEMINI})
    await manager.usage.track_usage(CHATGPT)
    await manager.usage.track_usage(CLAUDE)

    assert manager.select_best_provider(QueryType.GENERAL_QUESTION) == GEMINI


@pytest.mark.unit
def test_weighted_never_picks_zero_weight(clock):
    manager = build_manager(
        clock,
        algorithm="weighted",
        enabled={CHATGPT, CLAUDE},
        weights={"chatgpt_plus": 0, "claude_pro": 1},
    )

    picks = {manager.select_best_provider(QueryType.GENERAL_QUESTION) for _ in range(20)}

    assert picks == {CLAUDE}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_query_sends_anonymized_messages_and_tracks_usage(clock):
    client = fake_client(content="Exercício terapêutico progressivo.", token_count=120)
    manager = build_manager(clock, clients={CLAUDE: client})
    query = make_query(text="Maria, CPF 123.456.789-09, tem dor lombar crônica")

    response = await manager.query(CLAUDE, query)

    messages = client.generate.await_args.args[0]
    outbound = "\n".join(m.content for m in messages)
    assert "123.456.789-09" not in outbound
    assert "Maria" not in outbound
    assert "p-42" not in outbound
    assert messages[0].role == "system"

    assert response.query_id == query.id
    assert response.source == ResponseSource.PREMIUM
    assert response.provider == CLAUDE.value
    assert response.confidence == pytest.approx(0.90)
    assert response.tokens_used == 120
    assert response.metadata["evidence_level"] == "moderate"

    tracker = manager.usage.get_tracker(CLAUDE)
    assert tracker.current.monthly == 1
    assert tracker.tokens_used == 120


@pytest.mark.unit
@pytest.mark.asyncio
async def test_query_uses_custom_system_prompt(clock):
    client = fake_client()
    manager = build_manager(clock, clients={CHATGPT: client})

    await manager.query(CHATGPT, make_query(), system_prompt="Você é Rafa")

    messages = client.generate.await_args.args[0]
    assert messages[0].content == "Você é Rafa"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_perplexity_answers_carry_high_evidence(clock):
    manager = build_manager(clock, clients={PERPLEXITY: fake_client()})

    response = await manager.query(PERPLEXITY, make_query(query_type=QueryType.RESEARCH_QUERY))

    assert response.metadata["evidence_level"] == "high"
    assert response.confidence == pytest.approx(0.82)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_token_estimate_when_provider_reports_none(clock):
    manager = build_manager(clock, clients={CHATGPT: fake_client(token_count=0)})

    response = await manager.query(CHATGPT, make_query())

    assert response.tokens_used > 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_call_raises_and_is_not_counted(clock):
    manager = build_manager(
        clock, clients={CHATGPT: fake_client(error=ConnectionError("connection reset"))}
    )

    with pytest.raises(ProviderCallFailed):
        await manager.query(CHATGPT, make_query())

    assert manager.usage.get_tracker(CHATGPT).current.monthly == 0
    assert manager.get_provider_stats()[CHATGPT.value]["failures"] == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_timed_out_call_counts_as_failure(clock):
    client = fake_client()

    async def slow(messages):
        await asyncio.sleep(5)

    client.generate.side_effect = slow
    manager = build_manager(clock, clients={CHATGPT: client})

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(manager.query(CHATGPT, make_query()), timeout=0.05)

    stats = manager.get_provider_stats()[CHATGPT.value]
    assert stats["calls"] == 1
    assert stats["failures"] == 1
    assert stats["avg_response_time"] == 0.0
    assert manager.usage.get_tracker(CHATGPT).current.monthly == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_query_on_unavailable_provider(clock):
    manager = build_manager(
        clock,
        enabled={CHATGPT},
        clients={CHATGPT: fake_client()},
        limits=UsageLimits(hourly=1, daily=100, monthly=1000),
    )

    with pytest.raises(ProviderUnavailable):
        await manager.query(CLAUDE, make_query())

    await manager.query(CHATGPT, make_query())
    with pytest.raises(ProviderUnavailable) as exc_info:
        await manager.query(CHATGPT, make_query())
    assert exc_info.value.reason == "quota exhausted"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_test_all_providers(clock):
    manager = build_manager(clock, clients={CHATGPT: fake_client()})

    results = await manager.test_all_providers()

    assert results[CHATGPT.value] is True
    assert results[CLAUDE.value] is False
    assert set(results) == {p.value for p in ProviderName}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_provider_config(clock):
    manager = build_manager(clock)

    await manager.update_provider_config(CHATGPT, enabled=False)
    assert not manager.is_usable(CHATGPT)

    await manager.update_provider_config(
        CLAUDE, limits=UsageLimits(hourly=1, daily=10, monthly=100)
    )
    assert manager.usage.get_tracker(CLAUDE).limits.hourly == 1
