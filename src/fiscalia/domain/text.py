"""Text normalisation shared by the extractor and the classifier.

NEVER log the raw text passing through here.
"""

from __future__ import annotations

import re
import unicodedata

# Frequent typos and shorthand seen in chat messages. Keys and values are
# already lower-case and accent-free.
TYPO_CORRECTIONS: dict[str, str] = {
    "emtir": "emitir",
    "emiitr": "emitir",
    "faturamneto": "faturamento",
    "fatuamento": "faturamento",
    "ulitma": "ultima",
    "utlima": "ultima",
    "ultma": "ultima",
    "clinte": "cliente",
    "cleinte": "cliente",
    "nta": "nota",
    "noat": "nota",
    "cancelra": "cancelar",
    "lisatr": "listar",
    "lsitar": "listar",
    "impsto": "imposto",
    "qauntas": "quantas",
    # Shorthand
    "nf": "nota fiscal",
    "nfs": "nota fiscal",
    "nfse": "nota fiscal",
    "nfs-e": "nota fiscal",
    "cli": "cliente",
    "fat": "faturamento",
    "canc": "cancelar",
    "ult": "ultima",
    "pend": "pendente",
    "rej": "rejeitada",
}

_WORD = re.compile(r"[a-z0-9\-]+")
_SPACES = re.compile(r"[ \t]+")


def strip_accents(text: str) -> str:
    """Remove diacritics ("emissão" -> "emissao")."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(text: str) -> str:
    """Lower-case, strip accents and collapse horizontal whitespace.

    Line breaks are preserved: multi-line messages are handled line by line.
    """
    lowered = strip_accents(text or "").lower()
    lines = [_SPACES.sub(" ", line).strip() for line in lowered.splitlines()]
    return "\n".join(line for line in lines if line)


def correct_typos(normalized: str) -> str:
    """Replace known typos and shorthand on whole words."""
    return _WORD.sub(lambda m: TYPO_CORRECTIONS.get(m.group(0), m.group(0)), normalized)


def for_matching(text: str) -> str:
    """Normalised, typo-corrected, single-line form used by rule predicates."""
    return correct_typos(normalize(text)).replace("\n", " ")
