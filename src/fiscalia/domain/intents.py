"""Intent types and the classifier's result."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from fiscalia.domain.entities import ExtractedEntities


class Intent(str, Enum):
    EMIT_INVOICE = "emit_invoice"
    CANCEL_INVOICE = "cancel_invoice"
    LIST_INVOICES = "list_invoices"
    LAST_INVOICE = "last_invoice"
    INVOICE_STATUS = "invoice_status"
    REJECTED_INVOICES = "rejected_invoices"
    PENDING_INVOICES = "pending_invoices"
    CREATE_CLIENT = "create_client"
    LIST_CLIENTS = "list_clients"
    SEARCH_CLIENT = "search_client"
    REVENUE = "revenue"
    VIEW_TAXES = "view_taxes"
    CHECK_CONNECTION = "check_connection"
    HELP = "help"
    GREETING = "greeting"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class IntentClassification:
    """One classification per message.

    Attributes:
        intent: Never None; FALLBACK when nothing matched.
        confidence: Fixed score of the matched rule tier, used for routing only.
        entities: Entities the decision was based on.
        priority: Set by the high-precision structural check.
        rule: Name of the rule that fired (for diagnostics).
    """

    intent: Intent
    confidence: float
    entities: ExtractedEntities = field(default_factory=ExtractedEntities)
    priority: bool = False
    rule: str | None = None

    def is_deterministic(self, threshold: float) -> bool:
        """Whether this can be resolved without the language model."""
        if self.intent is Intent.FALLBACK:
            return False
        return self.priority or self.confidence >= threshold
