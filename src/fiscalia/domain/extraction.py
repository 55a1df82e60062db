"""Deterministic entity extraction from user messages.

NO LLM. Uses regex and heuristics over an accent-folded copy of the text
that keeps character positions aligned with the original, so names are
returned exactly as typed.
Security: NEVER log raw text (PII).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation

from fiscalia.domain.entities import (
    DocumentNumber,
    ExtractedEntities,
    LineKind,
    MonetaryAmount,
    Period,
    PersonName,
    ServiceDescription,
)
from fiscalia.domain.text import strip_accents
from fiscalia.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SERVICE_CODE = "1799"
DEFAULT_SERVICE_TEXT = "Serviço prestado"

# LC 116/2003 codes: code -> (description, keywords). Keywords are accent-free.
SERVICE_CODES: dict[str, tuple[str, tuple[str, ...]]] = {
    "0101": (
        "Análise e desenvolvimento de sistemas",
        ("desenvolvimento de sistema", "software", "sistema", "aplicativo", "app", "programacao"),
    ),
    "0103": ("Processamento de dados", ("processamento de dados", "entrada de dados", "digitacao")),
    "0105": ("Licenciamento de programas", ("licenciamento", "licenca", "saas")),
    "0107": ("Suporte técnico em informática", ("suporte tecnico", "suporte", "help desk", "helpdesk")),
    "0108": ("Elaboração de páginas eletrônicas", ("landing page", "website", "site", "ecommerce")),
    "0701": ("Engenharia e arquitetura", ("engenharia", "arquitetura", "laudo", "agronomia")),
    "0802": ("Treinamento e capacitação", ("treinamento", "capacitacao", "curso", "workshop", "mentoria", "coaching")),
    "1401": ("Medicina e biomedicina", ("consulta medica", "medicina", "medico", "clinica")),
    "1404": ("Psicologia", ("psicoterapia", "psicologia", "psicologo", "terapia")),
    "1406": ("Odontologia", ("odontologia", "dentista", "dental")),
    "1701": ("Consultoria e assessoria", ("consultoria", "assessoria", "consultor", "consultora")),
    "1702": ("Pesquisa e análise de dados", ("analise de dados", "pesquisa", "estatistica")),
    "1703": ("Planejamento e gestão", ("gerenciamento de projetos", "planejamento", "gestao")),
    "1704": ("Recrutamento e seleção", ("recursos humanos", "recrutamento", "selecao")),
    "1705": ("Contabilidade e auditoria", ("contabilidade", "contabil", "auditoria", "contador")),
    "1706": ("Marketing e design", ("identidade visual", "marketing", "design", "branding", "logo")),
    "1707": ("Publicidade e propaganda", ("publicidade", "propaganda", "anuncio", "campanha")),
    "2501": ("Manutenção predial", ("manutencao predial", "reparos", "pintura")),
    "3501": ("Fotografia", ("ensaio fotografico", "fotografia", "fotografo", "foto")),
    "3601": ("Produção audiovisual", ("edicao de video", "filmagem", "video")),
}

_MASK = "#"

# Date pattern (dd/mm or dd-mm or dd/mm/yyyy)
_DATE_PARTS = r"(\d{1,2})[/\-](\d{1,2})(?:[/\-](\d{4}))?"

# Date range: "01/03 a 31/03" or "01/03 até 31/03"
_DATE_RANGE_PATTERN = re.compile(rf"{_DATE_PARTS}\s*(?:a|ate|-)\s*{_DATE_PARTS}")
_DATE_MASK_PATTERN = re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b")

_NUMBER = r"\d[\d.,]*\d|\d"

# Labeled document: "CPF 123.456.789-09", "cnpj: 12345678000190"
_LABELED_DOCUMENT = re.compile(
    r"\b(cpf|cnpj|documento|doc)\b\s*(?:n[o.]*\s*|numero\s*)?[:\-]?\s*(\d[\d.\-/]*\d)"
)
_DOCUMENT_MARKER = re.compile(r"\b(?:cpf|cnpj|documento)\b")
_DOCUMENT_ONLY_LINE = re.compile(r"^[\s\d.\-/]+$")

# Amount patterns in priority order
_CURRENCY_AMOUNT = re.compile(rf"r\$\s*({_NUMBER})(\s*(?:k|mil)\b)?")
_MULTIPLIER_AMOUNT = re.compile(rf"(?<![\d.,])({_NUMBER})\s*(k|mil)\b")
_REAIS_AMOUNT = re.compile(rf"(?<![\d.,])({_NUMBER})\s*(?:reais|real)\b")
_ANCHORED_AMOUNT = re.compile(
    rf"\b(?:valor|total|quantia|preco|de|por)\s*(?:de\s*)?[:\-]?\s*(?<![\d.,])({_NUMBER})(?![\d.,/])"
)
_AMOUNT_LINE = re.compile(
    rf"^\s*(?:valor\s*[:\-]?\s*)?(?:r\$\s*)?({_NUMBER})\s*(k|mil|reais)?\s*$"
)

# "emitir nota 1500": a bare number right after the invoice noun is an amount
_EMISSION_AMOUNT = re.compile(
    r"\b(?:emitir|emita|emite|gerar|gere|gera|fazer|faca|faz|criar|crie|nova)\s+(?:(?:uma|a|nova)\s+)*"
    rf"(?:nota(?:\s+fiscal)?|nfs-?e|nf)\s*(?<![\d.,])({_NUMBER})(?![\d.,/])"
)

# Spelled-out amounts, accent-free. "mil" multiplies what precedes it.
NUMBER_WORDS = {
    "um": 1, "uma": 1, "dois": 2, "duas": 2, "tres": 3, "quatro": 4, "cinco": 5,
    "seis": 6, "sete": 7, "oito": 8, "nove": 9, "dez": 10, "onze": 11, "doze": 12,
    "treze": 13, "catorze": 14, "quatorze": 14, "quinze": 15, "dezesseis": 16,
    "dezessete": 17, "dezoito": 18, "dezenove": 19, "vinte": 20, "trinta": 30,
    "quarenta": 40, "cinquenta": 50, "sessenta": 60, "setenta": 70, "oitenta": 80,
    "noventa": 90, "cem": 100, "cento": 100, "duzentos": 200, "duzentas": 200,
    "trezentos": 300, "trezentas": 300, "quatrocentos": 400, "quatrocentas": 400,
    "quinhentos": 500, "quinhentas": 500, "seiscentos": 600, "seiscentas": 600,
    "setecentos": 700, "setecentas": 700, "oitocentos": 800, "oitocentas": 800,
    "novecentos": 900, "novecentas": 900, "mil": 1000,
}
_NUMBER_WORD = "|".join(sorted(NUMBER_WORDS, key=len, reverse=True))
_SPELLED_AMOUNT = re.compile(
    rf"\b((?:{_NUMBER_WORD})(?:\s+(?:e\s+)?(?:{_NUMBER_WORD}))*)\b(\s+(?:reais|real)\b)?"
)

_LABELED_NAME_PATTERNS = (
    re.compile(r"\b(?:cliente|tomador|razao social|nome)\b\s*[:\-]?\s*"),
    re.compile(r"\bpara\s+(?:(?:o|a)\s+)?(?:(?:cliente|tomador)\s+)?"),
)
_CREATION_VERB = re.compile(
    r"\b(?:cadastrar|cadastre|cadastra|criar|crie|adicionar|adicione|registrar|registre|incluir|inclua)\s+"
    r"(?:(?:o|a|um|uma|novo|nova)\s+)*"
)
_SERVICE_DESCRIPTION = re.compile(
    r"\b(?:referente\s+(?:a|ao|à)s?|ref\.?\s*(?:a\s+)?|servicos?\s+de|descricao\s*:?)\s+"
)
_INVOICE_REF = re.compile(
    r"\b(?:nota(?:\s+fiscal)?|nfs-?e|nf)\s*(?:numero|n[o.]+|#)?\s*:?\s*#?(\d{1,10})(?![\d.,/])"
)
_INVOICE_UUID = re.compile(r"\b([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\b")
_REASON = re.compile(r"\b(?:motivo|justificativa|porque|pois)\b\s*[:\-]?\s*(.+)$")

_MONTHS = {
    "janeiro": 1,
    "fevereiro": 2,
    "marco": 3,
    "abril": 4,
    "maio": 5,
    "junho": 6,
    "julho": 7,
    "agosto": 8,
    "setembro": 9,
    "outubro": 10,
    "novembro": 11,
    "dezembro": 12,
}

# (pattern, symbol), most specific first
_PERIOD_KEYWORDS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(?:mes passado|ultimo mes|mes anterior)\b"), "last_month"),
    (re.compile(r"\b(?:ano passado|ultimo ano|ano anterior)\b"), "last_year"),
    (re.compile(r"\bhoje\b"), "today"),
    (re.compile(r"\bontem\b"), "yesterday"),
    (re.compile(r"\b(?:esta|essa|nesta|nessa|da|na) semana\b"), "this_week"),
    (re.compile(r"\b(?:este|esse|neste|nesse|no|do) ano\b|\banual\b"), "this_year"),
    (re.compile(r"\b(?:este|esse|neste|nesse|no|do) mes\b|\bmes atual\b|\bmensal\b"), "this_month"),
)

# Words that end a name when walking forward from a label
_NAME_STOP_WORDS = frozenset(
    {
        "cpf", "cnpj", "documento", "doc", "valor", "no", "na", "nos", "nas",
        "referente", "ref", "servico", "servicos", "pelo", "pela", "por", "com",
        "total", "reais", "real", "mil", "hoje", "ontem", "sobre", "descricao",
        "motivo", "para", "que", "emitir", "nota", "cliente", "email", "e-mail", "amanha",
        "telefone", "tel", "k",
    }
)
_CONNECTORS = frozenset({"de", "da", "do", "dos", "das", "e"})
_LEADING_ARTICLES = frozenset({"o", "a", "um", "uma"})

# Vocabulary that never forms a name on its own
_NON_NAME_WORDS = frozenset(
    {
        "emitir", "emissao", "gerar", "criar", "fazer", "nova", "novo", "nota", "notas",
        "fiscal", "fiscais", "nf", "nfse", "servico", "servicos", "cliente", "clientes",
        "cadastrar", "cancelar", "listar", "mostrar", "ver", "valor", "para", "o", "a",
        "um", "uma", "por", "favor", "oi", "ola", "bom", "boa", "dia", "tarde", "noite",
        "obrigado", "obrigada", "sim", "nao", "ok", "quero", "preciso", "faturamento",
        "imposto", "impostos", "status", "ajuda", "hoje", "ontem", "mes", "ano", "semana",
        "reais", "real", "mim", "voce", "ele", "ela", "isso", "esse", "este", "essa", "esta",
        "minha", "minhas", "meu", "meus", "ultima", "tudo", "bem", "confirmo", "confirmar",
        "pode", "qual", "quanto", "quais", "como", "que", "me", "eu", "ajudar", "help",
        "vamos", "agora", "outra", "outro", "mais", "tambem", "cpf", "cnpj", "documento", "amanha",
    }
)

_NAME_TOKEN = re.compile(r"[a-z][a-z'\-.]*")


@dataclass
class _Line:
    """One message line: original text, folded copy and masked spans."""

    raw: str
    folded: str
    kind: LineKind = LineKind.OTHER
    claimed: list[tuple[int, int]] = field(default_factory=list)

    def claim(self, start: int, end: int) -> None:
        self.claimed.append((start, end))
        self.folded = self.folded[:start] + _MASK * (end - start) + self.folded[end:]


def _fold(text: str) -> str:
    """Lower-case and strip accents character by character (length-preserving)."""
    out = []
    for ch in text:
        folded = strip_accents(ch).lower()
        out.append(folded if len(folded) == 1 else "?")
    return "".join(out)


def parse_decimal(raw: str) -> Decimal | None:
    """Parse a pt-BR or en-US formatted number.

    Rules:
    - Both separators present: the last one is the decimal separator.
    - Single separator followed by 1-2 digits: decimal.
    - Separator(s) followed by groups of 3 digits: thousands. The leading
      group never starts with zero ("0,004" is not 4).

    Returns:
        Decimal value, or None if the string is not a number.
    """
    s = raw.strip().rstrip(".,")
    if not s or not s[0].isdigit():
        return None

    has_comma = "," in s
    has_dot = "." in s
    try:
        if has_comma and has_dot:
            decimal_sep, thousands_sep = (",", ".") if s.rfind(",") > s.rfind(".") else (".", ",")
            integer, fraction = s.rsplit(decimal_sep, 1)
            if thousands_sep in integer and not _valid_groups(integer.split(thousands_sep)):
                return None
            digits = integer.replace(thousands_sep, "")
            return Decimal(f"{digits}.{fraction}")

        sep = "," if has_comma else "." if has_dot else None
        if sep is None:
            return Decimal(s)

        parts = s.split(sep)
        if len(parts) == 2 and 1 <= len(parts[1]) <= 2:
            return Decimal(f"{parts[0]}.{parts[1]}")
        if _valid_groups(parts):
            return Decimal("".join(parts))
        return None
    except InvalidOperation:
        return None


def _valid_groups(groups: list[str]) -> bool:
    head = groups[0]
    return 1 <= len(head) <= 3 and not head.startswith("0") and all(len(g) == 3 for g in groups[1:])


def spelled_value(words: str) -> Decimal | None:
    """Value of a run of number words ("mil e quinhentos" -> 1500)."""
    total = 0
    current = 0
    for word in words.split():
        if word == "e":
            continue
        value = NUMBER_WORDS.get(word)
        if value is None:
            return None
        if value == 1000:
            total += (current or 1) * 1000
            current = 0
        else:
            current += value
    total += current
    return Decimal(total) if total > 0 else None


def _spelled_amount(match: re.Match[str]) -> MonetaryAmount | None:
    words = match.group(1)
    # A lone small number ("uma nota", "dois clientes") needs the currency word
    significant = bool(match.group(2)) or any(NUMBER_WORDS[w] >= 100 for w in words.split() if w != "e")
    if not significant:
        return None
    value = spelled_value(words)
    return MonetaryAmount.from_decimal(value) if value else None


def _to_amount(number: str, multiplier: str | None) -> MonetaryAmount | None:
    value = parse_decimal(number)
    if value is None:
        return None
    if multiplier and multiplier.strip() in ("k", "mil"):
        value = value * 1000
    if value <= 0:
        return None
    return MonetaryAmount.from_decimal(value)


def _classify_line(line: _Line) -> None:
    """Classify a line as document, amount, name or other."""
    text = line.folded.strip()
    digits = "".join(ch for ch in text if ch.isdigit())

    if _DOCUMENT_ONLY_LINE.match(text) and len(digits) in (11, 14):
        line.kind = LineKind.DOCUMENT
        return
    labeled = _LABELED_DOCUMENT.fullmatch(text)
    if labeled and DocumentNumber.parse(labeled.group(2)):
        line.kind = LineKind.DOCUMENT
        return

    amount_line = _AMOUNT_LINE.match(text)
    if amount_line and _to_amount(amount_line.group(1), amount_line.group(2)):
        line.kind = LineKind.AMOUNT
        return
    spelled = _SPELLED_AMOUNT.fullmatch(text)
    if spelled and _spelled_amount(spelled):
        line.kind = LineKind.AMOUNT
        return

    if _looks_like_name_line(text):
        line.kind = LineKind.NAME


def _looks_like_name_line(text: str) -> bool:
    if not re.fullmatch(r"[a-z][a-z'\-. ]*", text):
        return False
    words = text.split()
    if not 1 <= len(words) <= 6:
        return False
    return _has_name_word(words)


def _has_name_word(words: list[str]) -> bool:
    for word in words:
        bare = word.strip(".,'-")
        if len(bare) >= 2 and bare not in _NON_NAME_WORDS and bare not in _CONNECTORS:
            return True
    return False


def _extract_document(lines: list[_Line]) -> DocumentNumber | None:
    """Labeled document anywhere, else a standalone 11/14-digit line."""
    for line in lines:
        for match in _LABELED_DOCUMENT.finditer(line.folded):
            doc = DocumentNumber.parse(match.group(2))
            if doc:
                line.claim(match.start(2), match.end(2))
                return doc

    for line in lines:
        if line.kind is LineKind.DOCUMENT:
            doc = DocumentNumber.parse(line.folded)
            if doc:
                line.claim(0, len(line.folded))
                return doc
    return None


def _extract_amount(lines: list[_Line]) -> MonetaryAmount | None:
    """Formatted amounts first, then standalone amount lines, anchored numbers, spelled-out words."""
    for line in lines:
        line.folded = _DATE_MASK_PATTERN.sub(lambda m: _MASK * len(m.group(0)), line.folded)

    for pattern in (_CURRENCY_AMOUNT, _MULTIPLIER_AMOUNT, _REAIS_AMOUNT):
        for line in lines:
            for match in pattern.finditer(line.folded):
                multiplier = match.group(2) if pattern.groups >= 2 else None
                amount = _to_amount(match.group(1), multiplier)
                if amount:
                    line.claim(match.start(), match.end())
                    return amount

    for line in lines:
        if line.kind is LineKind.AMOUNT:
            match = _AMOUNT_LINE.match(line.folded)
            if match:
                amount = _to_amount(match.group(1), match.group(2))
                if amount:
                    line.claim(0, len(line.folded))
                    return amount

    for pattern in (_ANCHORED_AMOUNT, _EMISSION_AMOUNT):
        for line in lines:
            for match in pattern.finditer(line.folded):
                amount = _to_amount(match.group(1), None)
                if amount:
                    line.claim(match.start(1), match.end(1))
                    return amount

    for line in lines:
        for match in _SPELLED_AMOUNT.finditer(line.folded):
            amount = _spelled_amount(match)
            if amount:
                line.claim(match.start(), match.end())
                return amount
    return None


def _clean_token(token: str) -> str:
    return token.strip(",.;:!?()\"'")


def _name_from_span(line: _Line, spans: list[tuple[int, int]]) -> str | None:
    """Trim connectors at the edges and return the original-cased name."""
    while spans and _clean_token(line.folded[spans[-1][0]:spans[-1][1]]) in _CONNECTORS:
        spans.pop()
    while spans and _clean_token(line.folded[spans[0][0]:spans[0][1]]) in (_CONNECTORS | _LEADING_ARTICLES):
        spans.pop(0)
    if not spans:
        return None
    words = [_clean_token(line.folded[s:e]) for s, e in spans]
    if not _has_name_word(words):
        return None
    name = line.raw[spans[0][0]:spans[-1][1]].strip(" ,.;:!?-")
    return name or None


def _walk_forward(line: _Line, start: int) -> str | None:
    spans: list[tuple[int, int]] = []
    for match in re.finditer(r"\S+", line.folded[start:]):
        token = match.group(0)
        bare = _clean_token(token)
        if _MASK in token or bare in _NAME_STOP_WORDS or not _NAME_TOKEN.fullmatch(bare):
            break
        spans.append((start + match.start(), start + match.start() + len(token.rstrip(",.;:!?"))))
        if token[-1] in ",;:!?" or len(spans) >= 8:
            break
    return _name_from_span(line, spans)


def _walk_backward(line: _Line, end: int) -> str | None:
    spans: list[tuple[int, int]] = []
    for match in reversed(list(re.finditer(r"\S+", line.folded[:end]))):
        token = match.group(0)
        bare = _clean_token(token)
        if (
            _MASK in token
            or bare in _NAME_STOP_WORDS
            or (bare in _NON_NAME_WORDS and bare not in _CONNECTORS)
            or not _NAME_TOKEN.fullmatch(bare)
        ):
            break
        if spans and token[-1] in ",;:":
            break
        spans.insert(0, (match.start(), match.start() + len(token.rstrip(",.;:!?"))))
        if len(spans) >= 6:
            break
    return _name_from_span(line, spans)


def _extract_name(lines: list[_Line], *, expect_name: bool) -> PersonName | None:
    """Ordered heuristics; the first that yields a name wins."""
    # 1. Text following a labeled keyword ("cliente X", "para X")
    for pattern in _LABELED_NAME_PATTERNS:
        for line in lines:
            if line.kind is LineKind.DOCUMENT or line.kind is LineKind.AMOUNT:
                continue
            for match in pattern.finditer(line.folded):
                name = _walk_forward(line, match.end())
                if name:
                    return PersonName(name)

    # 2. Text following a creation verb ("cadastrar Maria Souza")
    for line in lines:
        for match in _CREATION_VERB.finditer(line.folded):
            name = _walk_forward(line, match.end())
            if name:
                return PersonName(name)

    # 3. Text preceding a document marker ("Maria Souza CPF ...")
    for line in lines:
        for match in _DOCUMENT_MARKER.finditer(line.folded):
            name = _walk_backward(line, match.start())
            if name:
                return PersonName(name)

    # 4. A lone line of letters
    if len(lines) > 1 or expect_name:
        for line in lines:
            if line.kind is LineKind.NAME and not line.claimed:
                return PersonName(line.raw.strip(" ,.;:!?-"))
    return None


def infer_service_code(text: str) -> tuple[str, str] | None:
    """Map free text to an LC 116 (code, description) by keyword score.

    Multi-word keywords score higher. Ties keep table order.
    """
    folded = _fold(text)
    best: tuple[str, str] | None = None
    best_score = 0
    for code, (description, keywords) in SERVICE_CODES.items():
        score = 0
        for keyword in keywords:
            if re.search(rf"\b{re.escape(keyword)}\b", folded):
                score += 2 * len(keyword.split())
        if score > best_score:
            best_score = score
            best = (code, description)
    return best


def _extract_service(lines: list[_Line]) -> ServiceDescription:
    description: str | None = None
    for line in lines:
        match = _SERVICE_DESCRIPTION.search(line.folded)
        if not match:
            continue
        tail_raw = line.raw[match.end():]
        tail_folded = line.folded[match.end():]
        stop = re.search(r"\bpara\b|\bcpf\b|\bcnpj\b|\bvalor\b|[#,;]|r\$|\d", tail_folded)
        candidate = tail_raw[: stop.start()] if stop else tail_raw
        candidate = candidate.strip(" .:-")
        if len(candidate) >= 3:
            description = candidate
            break

    whole = "\n".join(line.raw for line in lines)
    inferred = infer_service_code(description or whole)
    if description:
        code = inferred[0] if inferred else DEFAULT_SERVICE_CODE
        return ServiceDescription(text=description, code=code, matched=True)
    if inferred:
        return ServiceDescription(text=inferred[1], code=inferred[0], matched=True)
    return ServiceDescription(text=DEFAULT_SERVICE_TEXT, code=DEFAULT_SERVICE_CODE, matched=False)


def _parse_date(day: str, month: str, year: str | None, reference_year: int) -> date | None:
    try:
        return date(int(year) if year else reference_year, int(month), int(day))
    except (ValueError, TypeError):
        return None


def extract_period(text: str, *, reference_date: date | None = None) -> Period | None:
    """Symbolic period ("mês passado", "março") or explicit date range."""
    reference_date = reference_date or date.today()
    folded = _fold(text)

    match = _DATE_RANGE_PATTERN.search(folded)
    if match:
        start = _parse_date(match.group(1), match.group(2), match.group(3), reference_date.year)
        end = _parse_date(match.group(4), match.group(5), match.group(6), reference_date.year)
        if start and end and start <= end:
            return Period(start=start, end=end)

    for pattern, symbol in _PERIOD_KEYWORDS:
        if pattern.search(folded):
            return Period(symbol=symbol)

    for month_name, month in _MONTHS.items():
        if re.search(rf"\b{month_name}\b", folded):
            return Period(symbol=f"month:{month}")
    return None


def _extract_invoice_ref(lines: list[_Line]) -> str | None:
    for line in lines:
        match = _INVOICE_UUID.search(line.folded)
        if match:
            return line.raw[match.start(1):match.end(1)]
    for line in lines:
        # "emitir nota 1500" carries an amount, not a reference
        amounts = {m.start(1) for m in _EMISSION_AMOUNT.finditer(line.folded)}
        for match in _INVOICE_REF.finditer(line.folded):
            if match.start(1) not in amounts:
                return match.group(1)
    return None


def _extract_reason(lines: list[_Line]) -> str | None:
    for line in lines:
        match = _REASON.search(_fold(line.raw))
        if match:
            reason = line.raw[match.start(1):].strip(" .")
            if reason:
                return reason
    return None


def extract_entities(
    text: str,
    *,
    expect_name: bool = False,
    reference_date: date | None = None,
) -> ExtractedEntities:
    """Extract amount, document, name, service, period and references.

    Never raises: a failure is logged (without the text) and yields an
    empty result.

    Args:
        text: User message. NEVER logged.
        expect_name: Accept a lone letters line in a single-line message
            (used when the previous turn asked for the client).
        reference_date: Reference date for year inference (default: today).

    Returns:
        ExtractedEntities with None for anything not found.
    """
    try:
        return _extract(text or "", expect_name=expect_name, reference_date=reference_date)
    except Exception:
        logger.exception("entity extraction failed")
        return ExtractedEntities()


def _extract(text: str, *, expect_name: bool, reference_date: date | None) -> ExtractedEntities:
    lines = [_Line(raw=raw, folded=_fold(raw)) for raw in text.splitlines() if raw.strip()]
    for line in lines:
        _classify_line(line)
    kinds = tuple(line.kind for line in lines)

    invoice_ref = _extract_invoice_ref(lines)
    reason = _extract_reason(lines)
    period = extract_period(text, reference_date=reference_date)
    service = _extract_service(lines)

    # Order matters: documents claim their digits before amounts run, and
    # names never read claimed spans.
    document = _extract_document(lines)
    amount = _extract_amount(lines)
    name = _extract_name(lines, expect_name=expect_name)

    return ExtractedEntities(
        amount=amount,
        document=document,
        name=name,
        service=service,
        period=period,
        invoice_ref=invoice_ref,
        reason=reason,
        lines=kinds,
    )
