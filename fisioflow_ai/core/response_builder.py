"""Builds engine responses: internal synthesis, canned fallbacks and prompts."""

from collections import Counter
from datetime import datetime

from fisioflow_ai.models.knowledge import KnowledgeResult
from fisioflow_ai.models.query import Query, QueryType
from fisioflow_ai.models.response import EvidenceLevel, Response, ResponseSource

FALLBACK_CONFIDENCE = 0.3
ERROR_CONFIDENCE = 0.1
MAX_COMBINED_RESULTS = 3

FALLBACK_CONTENT = {
    QueryType.EXERCISE_RECOMMENDATION: (
        "Recomendo uma avaliação presencial detalhada para prescrição segura de exercícios. "
        "Considere exercícios de baixo impacto inicialmente."
    ),
    QueryType.DIAGNOSIS_HELP: (
        "Para um diagnóstico preciso, é essencial realizar uma avaliação clínica completa. "
        "Considere buscar consensos científicos atuais."
    ),
    QueryType.PROTOCOL_SUGGESTION: (
        "Sugiro seguir protocolos estabelecidos na literatura científica, adaptando conforme "
        "as características individuais do paciente."
    ),
}
DEFAULT_FALLBACK_CONTENT = (
    "Não foi possível fornecer uma resposta específica no momento. Recomendo consultar "
    "literatura científica atualizada ou buscar segunda opinião profissional."
)

TYPE_SUGGESTIONS = {
    QueryType.EXERCISE_RECOMMENDATION: [
        "Revisar contraindicações antes da prescrição",
        "Monitorar progressão com métricas objetivas",
    ],
    QueryType.DIAGNOSIS_HELP: [
        "Correlacionar com exames complementares",
        "Considerar diagnóstico diferencial",
    ],
    QueryType.PROTOCOL_SUGGESTION: [
        "Adaptar protocolo conforme resposta do paciente",
        "Documentar evolução no prontuário",
    ],
}

TYPE_FOLLOW_UPS = {
    QueryType.EXERCISE_RECOMMENDATION: [
        "Qual o nível de atividade física atual do paciente?",
        "Há limitações específicas a considerar?",
    ],
    QueryType.PROTOCOL_SUGGESTION: [
        "Quais tratamentos já foram tentados?",
        "Qual a frequência ideal de sessões?",
    ],
}

SCHEDULING_KEYWORDS = ("agendar", "marcar", "consulta", "horario", "agenda", "sessao")

SCHEDULING_PROMPT = (
    "Você é Rafa, assistente virtual da Clínica FisioFlow. Ajude com agendamentos de forma "
    "cordial e objetiva: confirme o tipo de atendimento, sugira que o paciente informe dias "
    "e períodos de preferência e lembre que a confirmação final é feita pela recepção. "
    "Data e hora atuais: {now}. Nunca invente horários disponíveis."
)


def scheduling_prompt(now: datetime) -> str:
    return SCHEDULING_PROMPT.format(now=now.strftime("%d/%m/%Y %H:%M"))


def evidence_level(results: list[KnowledgeResult]) -> EvidenceLevel:
    if not results:
        return EvidenceLevel.LOW

    avg_confidence = sum(r.entry.confidence for r in results) / len(results)
    has_references = any(r.entry.references for r in results)
    avg_usage = sum(r.entry.usage_count for r in results) / len(results)

    if avg_confidence > 0.8 and has_references and avg_usage > 10:
        return EvidenceLevel.HIGH
    if avg_confidence > 0.6 and (has_references or avg_usage > 5):
        return EvidenceLevel.MODERATE
    return EvidenceLevel.LOW


def _relevance_label(relevance: float) -> str:
    if relevance > 0.8:
        return "Altamente relevante"
    if relevance > 0.6:
        return "Relevante"
    return "Parcialmente relevante"


def _format_single(result: KnowledgeResult) -> str:
    entry = result.entry
    sections = [f"**{entry.title}**", "", entry.content]
    if entry.techniques:
        sections += ["", "**Técnicas aplicáveis:**", ", ".join(entry.techniques)]
    if entry.contraindications:
        sections += ["", "**Contraindicações:**", ", ".join(entry.contraindications)]
    if entry.references:
        sections += ["", "**Referências:**"] + [f"- {ref}" for ref in entry.references]
    return "\n".join(sections)


def _synthesis(results: list[KnowledgeResult]) -> str:
    techniques = list(dict.fromkeys(t for r in results for t in r.entry.techniques))
    conditions = list(dict.fromkeys(c for r in results for c in r.entry.conditions))

    parts = []
    if techniques:
        parts.append(f"As técnicas mais recomendadas incluem: {', '.join(techniques[:3])}.")
    if conditions:
        parts.append(
            f"Estas abordagens são especialmente eficazes para: {', '.join(conditions[:2])}."
        )
    avg_success = sum(r.entry.success_rate for r in results) / len(results)
    if avg_success > 0.7:
        parts.append(f"Os casos analisados mostram uma taxa de sucesso média de {avg_success:.0%}.")
    return " ".join(parts)


def combine_content(results: list[KnowledgeResult]) -> str:
    if not results:
        return "Não foram encontradas informações relevantes na base de conhecimento interna."
    if len(results) == 1:
        return _format_single(results[0])

    sections = [
        f"Baseado na análise de {len(results)} casos similares em nossa base de conhecimento:",
        "",
    ]
    for position, result in enumerate(results, 1):
        text = result.entry.summary or result.entry.content
        if len(text) > 200:
            text = text[:200] + "..."
        sections += [
            f"**{position}. {result.entry.title}** ({_relevance_label(result.relevance)})",
            text,
            "",
        ]
    sections += ["**Síntese:**", _synthesis(results)]
    return "\n".join(sections)


def suggestions_for(results: list[KnowledgeResult], query: Query) -> list[str]:
    suggestions = []
    techniques = Counter(t for r in results for t in r.entry.techniques)
    for technique, _ in techniques.most_common(2):
        suggestions.append(f"Considerar a técnica: {technique}")
    contraindications = {c for r in results for c in r.entry.contraindications}
    if contraindications:
        suggestions.append(f"Atenção às contraindicações: {', '.join(sorted(contraindications))}")
    suggestions += TYPE_SUGGESTIONS.get(query.type, [])
    return suggestions[:5]


def follow_ups_for(query: Query) -> list[str]:
    questions = []
    if query.context.symptoms:
        questions += ["Há outros sintomas associados?", "Qual a intensidade dos sintomas (0-10)?"]
    if query.context.diagnosis:
        questions += ["Há comorbidades relevantes?", "Qual o tempo de evolução do quadro?"]
    questions += TYPE_FOLLOW_UPS.get(query.type, [])
    return questions[:3]


def build_internal_response(results: list[KnowledgeResult], query: Query) -> Response:
    """Synthesize one response from the top knowledge results."""
    top = results[:MAX_COMBINED_RESULTS]
    avg_confidence = sum(r.entry.confidence for r in top) / len(top)
    avg_relevance = sum(r.relevance for r in top) / len(top)

    references = list(dict.fromkeys(ref for r in top for ref in r.entry.references))

    return Response(
        query_id=query.id,
        content=combine_content(top),
        confidence=(avg_confidence + avg_relevance) / 2,
        source=ResponseSource.INTERNAL,
        references=references,
        suggestions=suggestions_for(top, query),
        follow_up_questions=follow_ups_for(query),
        metadata={
            "evidence_level": evidence_level(top).value,
            "reliability": avg_confidence,
            "relevance": avg_relevance,
            "knowledge_entries": [r.entry.id for r in top],
        },
    )


def build_fallback_response(query: Query) -> Response:
    """Deterministic low-confidence answer for when nothing else worked."""
    return Response(
        query_id=query.id,
        content=FALLBACK_CONTENT.get(query.type, DEFAULT_FALLBACK_CONTENT),
        confidence=FALLBACK_CONFIDENCE,
        source=ResponseSource.INTERNAL,
        suggestions=["Consultar literatura científica", "Buscar segunda opinião"],
        follow_up_questions=["Há informações adicionais disponíveis?"],
        metadata={
            "evidence_level": EvidenceLevel.LOW.value,
            "reliability": FALLBACK_CONFIDENCE,
            "relevance": 0.5,
            "fallback": True,
        },
    )


def build_error_response(query: Query) -> Response:
    return Response(
        query_id=query.id,
        content=(
            "Ocorreu um erro interno ao processar sua consulta. Por favor, tente novamente "
            "ou reformule sua pergunta."
        ),
        confidence=ERROR_CONFIDENCE,
        source=ResponseSource.INTERNAL,
        suggestions=["Reformular a pergunta", "Verificar conexão", "Tentar novamente"],
        metadata={
            "evidence_level": EvidenceLevel.LOW.value,
            "reliability": ERROR_CONFIDENCE,
            "relevance": ERROR_CONFIDENCE,
            "error": True,
        },
    )
