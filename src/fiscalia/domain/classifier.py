"""Rule-table intent classifier.

NO LLM. Each Rule is a declarative predicate over the normalised message.
Tiers are evaluated in ascending order; the first tier with any match
decides, and within it the most specific rule wins.
Security: NEVER log raw text (PII).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from fiscalia.domain.entities import ExtractedEntities
from fiscalia.domain.extraction import extract_entities
from fiscalia.domain.intents import Intent, IntentClassification
from fiscalia.domain.text import for_matching

PRIORITY_CONFIDENCE = 0.95
TIER_CONFIDENCE: dict[int, float] = {1: 0.9, 2: 0.7, 3: 0.4}

EMIT_VERBS = (
    "emitir", "emita", "emite", "emissao", "gerar", "gere", "fazer", "faca",
    "criar", "crie", "nova", "preciso de uma", "quero uma",
)
CANCEL_VERBS = ("cancelar", "cancele", "cancela", "anular", "anule", "estornar")
INVOICE_NOUN = ("nota", "nota fiscal")
INVOICES_NOUN = ("notas", "notas fiscais")
LIST_VERBS = (
    "listar", "liste", "mostrar", "mostre", "ver", "exibir", "minhas", "todas as",
    "historico de", "quantas", "quais",
)
CREATE_VERBS = (
    "cadastrar", "cadastre", "criar", "crie", "adicionar", "adicione", "registrar",
    "registre", "novo",
)


def _term_pattern(terms: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(t) for t in sorted(terms, key=len, reverse=True))
    return re.compile(rf"(?<![a-z0-9])(?:{alternatives})(?![a-z0-9])")


@dataclass(frozen=True)
class Rule:
    """Declarative classification rule.

    Attributes:
        name: Stable identifier, reported in IntentClassification.rule.
        intent: Target intent.
        tier: 1 is most precise. Lower tiers are only consulted when no
            rule of a higher tier matched.
        require: Groups of alternative terms; every group must match.
        exclude: Terms that veto the rule.
        exact: The whole message must equal one of the terms of the
            single group (greetings).
    """

    name: str
    intent: Intent
    tier: int
    require: tuple[tuple[str, ...], ...]
    exclude: tuple[str, ...] = ()
    exact: bool = False
    _patterns: tuple[re.Pattern[str], ...] = field(init=False, repr=False, compare=False)
    _exclude: re.Pattern[str] | None = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_patterns", tuple(_term_pattern(g) for g in self.require))
        object.__setattr__(self, "_exclude", _term_pattern(self.exclude) if self.exclude else None)

    def specificity(self, text: str) -> int | None:
        """Score of this rule against ``text``, or None when it does not match.

        The score is the word count of the longest matched term of each
        group, summed, so qualified rules beat bare keywords.
        """
        if self.exact:
            bare = re.sub(r"[^a-z0-9 ]", "", text).strip()
            terms = self.require[0]
            return len(bare.split()) + 1 if bare in terms else None

        if self._exclude is not None and self._exclude.search(text):
            return None

        score = 0
        for pattern in self._patterns:
            matches = pattern.findall(text)
            if not matches:
                return None
            score += max(len(m.split()) for m in matches)
        return score + len(self._patterns)


RULES: tuple[Rule, ...] = (
    # Tier 1: verb + object, or unambiguous phrases
    Rule(
        "greeting", Intent.GREETING, 1,
        (("oi", "ola", "bom dia", "boa tarde", "boa noite", "hey", "hello", "e ai", "eai",
          "tudo bem", "oi tudo bem", "ola tudo bem"),),
        exact=True,
    ),
    Rule(
        "emit_invoice", Intent.EMIT_INVOICE, 1, (EMIT_VERBS, INVOICE_NOUN),
        exclude=("ultima", "rejeitada", "rejeitadas", "pendente", "pendentes", "status", "situacao")
        + CANCEL_VERBS,
    ),
    Rule("cancel_invoice", Intent.CANCEL_INVOICE, 1, (CANCEL_VERBS, INVOICE_NOUN + ("emissao",))),
    Rule("last_invoice", Intent.LAST_INVOICE, 1, (("ultima", "mais recente"), INVOICE_NOUN)),
    Rule(
        "rejected_invoices", Intent.REJECTED_INVOICES, 1,
        (("rejeitada", "rejeitadas", "recusada", "recusadas", "com erro", "que falharam",
          "negada", "negadas"), INVOICE_NOUN + INVOICES_NOUN),
    ),
    Rule(
        "pending_invoices", Intent.PENDING_INVOICES, 1,
        (("pendente", "pendentes", "processando", "aguardando", "em analise"),
         INVOICE_NOUN + INVOICES_NOUN),
    ),
    Rule(
        "invoice_status", Intent.INVOICE_STATUS, 1,
        (("status", "situacao", "andamento", "como esta"), INVOICE_NOUN),
        exclude=("conexao",),
    ),
    Rule("list_invoices", Intent.LIST_INVOICES, 1, (LIST_VERBS, INVOICES_NOUN)),
    Rule("invoices_issued", Intent.LIST_INVOICES, 1, (INVOICES_NOUN, ("emitidas", "emiti"))),
    Rule("create_client", Intent.CREATE_CLIENT, 1, (CREATE_VERBS, ("cliente",))),
    Rule(
        "list_clients", Intent.LIST_CLIENTS, 1,
        (LIST_VERBS + ("meus", "todos os"), ("clientes",)),
    ),
    Rule("registered_clients", Intent.LIST_CLIENTS, 1, (("clientes cadastrados",),)),
    Rule(
        "search_client", Intent.SEARCH_CLIENT, 1,
        (("buscar", "busque", "procurar", "procure", "encontrar", "pesquisar", "dados do",
          "qual o"), ("cliente", "cpf", "cnpj")),
    ),
    Rule(
        "revenue", Intent.REVENUE, 1,
        (("faturamento", "faturei", "faturou", "receita", "quanto ganhei", "quanto vendi",
          "total de vendas"),),
    ),
    Rule(
        "check_connection", Intent.CHECK_CONNECTION, 1,
        (("verificar", "testar", "status da", "esta", "checar"),
         ("conexao", "conectado", "conectada", "prefeitura online")),
    ),
    Rule(
        "help", Intent.HELP, 1,
        (("ajuda", "help", "como funciona", "o que voce faz", "me ajuda", "pode me ajudar",
          "o que voce pode fazer", "duvida"),),
    ),
    # Tier 2: single strong cue
    Rule("emit_verb", Intent.EMIT_INVOICE, 2, (("emitir", "emita", "emissao", "faturar"),)),
    Rule("cancel_verb", Intent.CANCEL_INVOICE, 2, (CANCEL_VERBS,)),
    Rule(
        "view_taxes", Intent.VIEW_TAXES, 2,
        (("imposto", "impostos", "tributo", "tributos", "das", "guia", "guias", "aliquota"),),
        exclude=("cpf", "cnpj", "nota", "notas"),
    ),
    Rule("invoices_noun", Intent.LIST_INVOICES, 2, (INVOICES_NOUN,)),
    Rule("clients_noun", Intent.LIST_CLIENTS, 2, (("clientes",),)),
    Rule("client_noun", Intent.SEARCH_CLIENT, 2, (("cliente",),)),
    Rule("connection_noun", Intent.CHECK_CONNECTION, 2, (("conexao", "prefeitura"),)),
    # Tier 3: weak cues, below the deterministic threshold
    Rule("how_much", Intent.REVENUE, 3, (("quanto", "quantos"),)),
    Rule("invoice_noun", Intent.LIST_INVOICES, 3, (INVOICE_NOUN,)),
    Rule("billing_words", Intent.EMIT_INVOICE, 3, (("cobrar", "cobranca", "servico", "prestei"),)),
)

_EMIT_CUE = _term_pattern(EMIT_VERBS + ("faturar", "cobrar", "cobranca"))
_REVENUE_PRIORITY = _term_pattern(
    ("quanto faturei", "meu faturamento", "faturamento do", "faturamento de", "faturamento no",
     "quanto ganhei", "minha receita")
)
_HISTORY_PRIORITY = _term_pattern(
    ("minhas notas", "notas emitidas", "historico de notas", "listar notas", "ultima nota",
     "ultimas notas")
)


def _best_rule(text: str, rules: tuple[Rule, ...]) -> Rule | None:
    for tier in sorted({r.tier for r in rules}):
        best: Rule | None = None
        best_score = -1
        for rule in rules:
            if rule.tier != tier:
                continue
            score = rule.specificity(text)
            # Strictly greater: ties keep the earlier rule
            if score is not None and score > best_score:
                best, best_score = rule, score
        if best is not None:
            return best
    return None


def detect_priority_intent(text: str, entities: ExtractedEntities) -> tuple[Intent, str] | None:
    """High-precision structural check, independent of rule confidence.

    Args:
        text: Message in matching form (see ``for_matching``).
        entities: Entities extracted from the same message.

    Returns:
        (intent, rule name) or None.
    """
    has_party = entities.name is not None or entities.document is not None
    emit_cue = bool(_EMIT_CUE.search(text)) and "cancel" not in text

    if entities.amount is not None and has_party and (emit_cue or entities.is_multiline):
        return Intent.EMIT_INVOICE, "priority_amount_and_client"

    if entities.name is not None and entities.document is not None and entities.amount is None:
        if emit_cue and re.search(r"(?<![a-z])nota(?![a-z])", text):
            return Intent.EMIT_INVOICE, "priority_invoice_for_client"
        return Intent.CREATE_CLIENT, "priority_name_and_document"

    if _REVENUE_PRIORITY.search(text):
        return Intent.REVENUE, "priority_revenue"

    match = _HISTORY_PRIORITY.search(text)
    if match:
        if match.group(0) == "ultima nota":
            return Intent.LAST_INVOICE, "priority_last_invoice"
        return Intent.LIST_INVOICES, "priority_invoice_history"
    return None


def classify(
    text: str,
    entities: ExtractedEntities | None = None,
    *,
    rules: tuple[Rule, ...] = RULES,
) -> IntentClassification:
    """Classify a message. Always returns an intent (FALLBACK if none matched).

    Args:
        text: User message. NEVER logged.
        entities: Entities already extracted from ``text``; extracted here
            when omitted.
        rules: Rule table override (tests).
    """
    if entities is None:
        entities = extract_entities(text)
    normalized = for_matching(text)

    priority = detect_priority_intent(normalized, entities)
    if priority is not None:
        intent, rule_name = priority
        return IntentClassification(
            intent=intent,
            confidence=PRIORITY_CONFIDENCE,
            entities=entities,
            priority=True,
            rule=rule_name,
        )

    rule = _best_rule(normalized, rules)
    if rule is None:
        return IntentClassification(intent=Intent.FALLBACK, confidence=0.0, entities=entities)

    return IntentClassification(
        intent=rule.intent,
        confidence=TIER_CONFIDENCE.get(rule.tier, 0.0),
        entities=entities,
        rule=rule.name,
    )
