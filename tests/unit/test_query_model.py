"""Tests for query, context and cache-key models."""

import re

import pytest

from fisioflow_ai.models.query import (
    Query,
    QueryContext,
    QueryType,
    derive_cache_key,
    fnv1a_64,
)


@pytest.mark.unit
def test_fnv1a_known_vectors():
    """Standard 64-bit FNV-1a test vectors."""
    assert fnv1a_64(b"") == 0xCBF29CE484222325
    assert fnv1a_64(b"a") == 0xAF63DC4C8601EC8C


@pytest.mark.unit
def test_cache_key_format():
    key = derive_cache_key("dor lombar", {"user_role": "physio"})
    assert re.fullmatch(r"ai_cache_[0-9a-f]{16}", key)


@pytest.mark.unit
def test_cache_key_ignores_context_key_order():
    first = derive_cache_key("dor lombar", {"user_role": "physio", "diagnosis": "lombalgia"})
    second = derive_cache_key("dor lombar", {"diagnosis": "lombalgia", "user_role": "physio"})
    assert first == second


@pytest.mark.unit
def test_cache_key_changes_with_text_or_context():
    base = derive_cache_key("dor lombar", {"user_role": "physio"})
    assert derive_cache_key("dor cervical", {"user_role": "physio"}) != base
    assert derive_cache_key("dor lombar", {"user_role": "admin"}) != base


@pytest.mark.unit
def test_query_derives_cache_key_from_text_and_context():
    context = QueryContext(user_role="physio", symptoms=["dor"])
    first = Query(text="dor lombar", type=QueryType.GENERAL_QUESTION, context=context)
    second = Query(text="dor lombar", type=QueryType.DIAGNOSIS_HELP, context=context)

    assert first.cache_key == derive_cache_key("dor lombar", context)
    # Type does not participate in the key
    assert first.cache_key == second.cache_key
    assert first.id != second.id


@pytest.mark.unit
def test_query_type_parse_accepts_hyphens():
    assert QueryType.parse("exercise-recommendation") == QueryType.EXERCISE_RECOMMENDATION
    assert QueryType.parse(" Protocol_Suggestion ") == QueryType.PROTOCOL_SUGGESTION
    assert QueryType.parse(QueryType.CASE_ANALYSIS) is QueryType.CASE_ANALYSIS
    with pytest.raises(ValueError):
        QueryType.parse("astrology")


@pytest.mark.unit
def test_context_from_dict_aliases_and_extra():
    context = QueryContext.from_dict(
        {
            "userRole": "physio",
            "previousTreatments": ["TENS"],
            "patientId": "p-42",
            "symptoms": ["dor"],
            "sessionCount": 3,
        }
    )

    assert context.user_role == "physio"
    assert context.previous_treatments == ["TENS"]
    assert context.patient_id == "p-42"
    assert context.extra == {"sessionCount": 3}


@pytest.mark.unit
def test_context_from_dict_without_role_leaves_it_empty():
    context = QueryContext.from_dict({"symptoms": None})
    assert context.user_role == ""
    assert context.symptoms == []
