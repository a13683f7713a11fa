"""Tests for personal data removal on outbound queries."""

import pytest

from fisioflow_ai.lib.anonymizer import Anonymizer
from fisioflow_ai.models.query import Query, QueryContext, QueryType


@pytest.fixture
def anonymizer():
    return Anonymizer(common_names=["Maria", "João"], salt="test")


@pytest.mark.unit
def test_anonymize_text_replaces_identifiers(anonymizer):
    text = (
        "Paciente maria, CPF 123.456.789-09, telefone (11) 98765-4321, "
        "email maria.silva@example.com, encaminhada por João."
    )

    result = anonymizer.anonymize_text(text)

    assert "123.456.789-09" not in result
    assert "98765-4321" not in result
    assert "example.com" not in result
    assert "[CPF_REMOVIDO]" in result
    assert "[TELEFONE_REMOVIDO]" in result
    assert "[EMAIL_REMOVIDO]" in result
    assert result.count("[NOME_REMOVIDO]") == 2


@pytest.mark.unit
def test_names_match_whole_words_only(anonymizer):
    assert anonymizer.anonymize_text("Mariana relata dor") == "Mariana relata dor"


@pytest.mark.unit
def test_hash_value_is_salted_and_stable(anonymizer):
    first = anonymizer.hash_value("p-42")
    assert first == anonymizer.hash_value("p-42")
    assert first.startswith("hash_") and len(first) == len("hash_") + 16
    assert Anonymizer(common_names=[], salt="other").hash_value("p-42") != first


@pytest.mark.unit
def test_anonymize_query_returns_scrubbed_copy(anonymizer):
    query = Query(
        text="Maria, CPF 123.456.789-09, sente dor lombar",
        type=QueryType.GENERAL_QUESTION,
        context=QueryContext(
            user_role="physio",
            symptoms=["dor relatada por Maria"],
            patient_id="p-42",
            extra={"address": "Rua A, 10"},
        ),
    )

    anonymized = anonymizer.anonymize_query(query)

    assert anonymized is not query
    assert anonymized.id != query.id
    assert "Maria" not in anonymized.text
    assert anonymized.context.symptoms == ["dor relatada por [NOME_REMOVIDO]"]
    assert anonymized.context.patient_id == anonymizer.hash_value("p-42")
    assert anonymized.context.extra == {}
    assert anonymized.cache_key == query.cache_key
    # Original untouched
    assert query.text.startswith("Maria")
    assert query.context.patient_id == "p-42"


@pytest.mark.unit
def test_disabled_anonymizer_passes_through():
    anonymizer = Anonymizer(common_names=["Maria"], enabled=False)
    query = Query(
        text="Maria sente dor",
        type=QueryType.GENERAL_QUESTION,
        context=QueryContext(user_role="physio"),
    )

    assert anonymizer.anonymize_text("Maria") == "Maria"
    assert anonymizer.anonymize_query(query) is query
