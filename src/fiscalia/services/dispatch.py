"""Message dispatch pipeline.

Stages, evaluated in order; the first one that produces an action wins:

1. Deterministic: priority structural match or a rule above the
   confidence threshold. Always tried first.
2. Language model: only when stage 1 did not fire and a model is
   configured. A function call is mapped to an intent and its arguments
   are normalised into ExtractedEntities.
3. Deterministic fallback: any model failure (or no model) re-runs the
   rule chain on the classification below the threshold.
4. Generic safe response: capability menu, no action. Only reached if
   stage 3 raised.

A user turn is persisted before dispatch and an assistant turn after.
Persistence failures are logged and never fail the response. The message
text is never logged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Any

from fiscalia.domain.actions import (
    CLARIFICATION_TYPES,
    QUERY_TYPES,
    Action,
    ActionType,
    build_action,
)
from fiscalia.domain.classifier import PRIORITY_CONFIDENCE, TIER_CONFIDENCE, classify
from fiscalia.domain.clients import (
    ClientResolution,
    ResolutionStatus,
    ensure_client,
    resolve_client,
)
from fiscalia.domain.conversations import ConversationTurn, Role
from fiscalia.domain.entities import DocumentNumber, ExtractedEntities
from fiscalia.domain.errors import LanguageModelError
from fiscalia.domain.extraction import extract_entities
from fiscalia.domain.intents import Intent, IntentClassification
from fiscalia.domain.ports import (
    ClientDirectory,
    CompanyStore,
    ConversationStore,
    GenerativeLanguageService,
)
from fiscalia.domain.templates import CAPABILITY_MENU
from fiscalia.infra.settings import DEFAULT_CONFIDENCE_THRESHOLD
from fiscalia.infra.time import Clock, SystemClock
from fiscalia.llm.prompts import (
    CLARIFICATION_FUNCTION,
    FUNCTION_DEFINITIONS,
    FUNCTION_TO_INTENT,
    build_system_prompt,
    normalize_arguments,
)
from fiscalia.observability.logging import get_logger
from fiscalia.observability.redaction import safe_log_context
from fiscalia.services.queries import QueryService

logger = get_logger(__name__)

# A clarification older than this no longer captures the next message
PENDING_ACTION_TTL = timedelta(minutes=30)

_EXPECTS_NAME = frozenset({ActionType.AWAITING_CLIENT, ActionType.AWAITING_CLIENT_NAME})
_CLIENT_INTENTS = frozenset({Intent.EMIT_INVOICE, Intent.CREATE_CLIENT, Intent.SEARCH_CLIENT})
_CHOICE = re.compile(r"^\s*(?:op[cç][aã]o\s*)?(\d{1,2})\s*[.)]?\s*$", re.IGNORECASE)
_BARE_REFERENCE = re.compile(r"^\s*(?:n[ºo°.]*\s*)?#?(\d{1,10})\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one message.

    Attributes:
        action: Proposed action. Conversational types (greeting, help,
            fallback) are rendered without an action.
        stage: Pipeline stage that produced the action (diagnostics only).
    """

    action: Action
    stage: str

    @property
    def explanation(self) -> str:
        return self.action.explanation

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "action": None if self.action.is_conversational else self.action.to_dict(),
            "explanation": self.action.explanation,
            "requiresConfirmation": self.action.requires_confirmation,
        }


@dataclass(frozen=True)
class _Routing:
    classification: IntentClassification
    # Client chosen from a disambiguation list
    chosen_client_id: str | None = None


class MessageDispatcher:
    """Turns one user message into a proposed action.

    All collaborators are passed in; ``language_model`` is optional.

    Args:
        clients: Client directory used by the resolver.
        conversations: Conversation log.
        queries: Answers read-only query actions.
        companies: Company store (regime context for the model prompt).
        language_model: Generative model; None skips stage 2.
        confidence_threshold: Minimum rule confidence for stage 1.
        history_limit: Turns sent to the model as context.
        clock: Clock for period resolution and pending-action expiry.
    """

    def __init__(
        self,
        *,
        clients: ClientDirectory,
        conversations: ConversationStore,
        queries: QueryService,
        companies: CompanyStore | None = None,
        language_model: GenerativeLanguageService | None = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        history_limit: int = 20,
        clock: Clock | None = None,
    ) -> None:
        self._clients = clients
        self._conversations = conversations
        self._queries = queries
        self._companies = companies
        self._language_model = language_model
        self._threshold = confidence_threshold
        self._history_limit = history_limit
        self._clock = clock or SystemClock()

    def process(
        self,
        account_id: str,
        message: str,
        *,
        company_id: str | None = None,
        history: list[dict[str, str]] | None = None,
    ) -> DispatchResult:
        """Dispatch a message. Never raises.

        Args:
            account_id: Requesting account (tenant scope for every lookup).
            message: Raw user message. NEVER logged.
            company_id: Company the user is acting for, if chosen.
            history: Client-supplied prior turns; the stored log is used
                when omitted.

        Returns:
            DispatchResult.
        """
        turns = self._recent_turns(account_id)
        self._persist(ConversationTurn(account_id=account_id, role=Role.USER, content=message))

        try:
            result = self._dispatch(account_id, message, company_id, history, turns)
        except Exception:
            logger.exception(
                "dispatch failed, returning generic response",
                extra={"extra_fields": safe_log_context(account_id=account_id)},
            )
            result = DispatchResult(Action(ActionType.FALLBACK, {}, CAPABILITY_MENU), stage="generic")

        self._persist(
            ConversationTurn(
                account_id=account_id,
                role=Role.ASSISTANT,
                content=result.explanation,
                metadata={
                    "action": {"type": result.action.type.value, "data": result.action.data},
                    "stage": result.stage,
                },
            )
        )
        logger.info(
            "message dispatched",
            extra={
                "extra_fields": safe_log_context(
                    account_id=account_id,
                    stage=result.stage,
                    action_type=result.action.type.value,
                )
            },
        )
        return result

    # ── Pipeline ─────────────────────────────────────────────

    def _dispatch(
        self,
        account_id: str,
        message: str,
        company_id: str | None,
        history: list[dict[str, str]] | None,
        turns: list[ConversationTurn],
    ) -> DispatchResult:
        today = self._clock.now().date()
        pending = self._pending_action(turns)

        entities = extract_entities(
            message,
            expect_name=pending is not None and pending.type in _EXPECTS_NAME,
            reference_date=today,
        )
        routing = self._route(message, classify(message, entities), pending)
        classification = routing.classification

        # Stage 1
        if classification.is_deterministic(self._threshold):
            action = self._build(
                account_id, classification.intent, classification.entities, company_id,
                chosen_client_id=routing.chosen_client_id,
            )
            return DispatchResult(action, stage="deterministic")

        # Stage 2
        if self._language_model is not None:
            try:
                action = self._model_stage(
                    account_id, message, company_id, history, turns, classification, today
                )
                return DispatchResult(action, stage="model")
            except Exception as exc:
                logger.warning(
                    "language model stage failed, using deterministic fallback",
                    extra={
                        "extra_fields": safe_log_context(
                            account_id=account_id, error_type=type(exc).__name__
                        )
                    },
                )

        # Stage 3
        action = self._build(account_id, classification.intent, classification.entities, company_id)
        return DispatchResult(action, stage="fallback")

    def _build(
        self,
        account_id: str,
        intent: Intent,
        entities: ExtractedEntities,
        company_id: str | None,
        *,
        chosen_client_id: str | None = None,
    ) -> Action:
        resolution = self._resolve(account_id, intent, entities, chosen_client_id)
        action = build_action(intent, entities, resolution)
        if action.type in QUERY_TYPES and not action.explanation:
            action = self._queries.answer(action, account_id, company_id)
        return action

    def _resolve(
        self,
        account_id: str,
        intent: Intent,
        entities: ExtractedEntities,
        chosen_client_id: str | None,
    ) -> ClientResolution | None:
        if intent not in _CLIENT_INTENTS:
            return None
        if chosen_client_id is not None:
            client = self._clients.get(account_id, chosen_client_id)
            if client is not None:
                return ClientResolution(status=ResolutionStatus.FOUND, client=client)
        if entities.name is None and entities.document is None:
            return None

        resolution = resolve_client(
            self._clients,
            account_id,
            name=entities.name.text if entities.name else None,
            document=entities.document,
        )
        if (
            intent is Intent.EMIT_INVOICE
            and resolution.can_auto_create
            and entities.document is not None
            and entities.name is not None
        ):
            client = ensure_client(
                self._clients, account_id, name=entities.name.text, document=entities.document
            )
            return ClientResolution(status=ResolutionStatus.FOUND, client=client)
        return resolution

    def _model_stage(
        self,
        account_id: str,
        message: str,
        company_id: str | None,
        history: list[dict[str, str]] | None,
        turns: list[ConversationTurn],
        classification: IntentClassification,
        today: date,
    ) -> Action:
        language_model = self._language_model
        if language_model is None:
            raise LanguageModelError("Modelo de linguagem não configurado.")
        company = self._companies.get(account_id, company_id) if self._companies else None

        messages = [{"role": "system", "content": build_system_prompt(company, today)}]
        if history is not None:
            messages += [
                {"role": h["role"], "content": h["content"]}
                for h in history[-self._history_limit:]
                if h.get("role") in ("user", "assistant") and h.get("content")
            ]
        else:
            messages += [t.as_model_message() for t in turns[-self._history_limit:]]
        messages.append({"role": "user", "content": message})

        completion = language_model.complete(messages, FUNCTION_DEFINITIONS)

        call = completion.function_call
        if call is not None:
            if call.name == CLARIFICATION_FUNCTION:
                question = str(call.arguments.get("question") or "").strip()
                if not question:
                    raise LanguageModelError("clarification without a question")
                return Action(ActionType.CLARIFY, {"question": question}, question)

            intent = FUNCTION_TO_INTENT.get(call.name)
            if intent is None:
                raise LanguageModelError(f"unknown function: {call.name}")
            entities = normalize_arguments(call.arguments, today=today)
            return self._build(
                account_id, intent, entities.merged_over(classification.entities), company_id
            )

        if completion.content and completion.content.strip():
            return Action(ActionType.FALLBACK, {}, completion.content.strip())
        raise LanguageModelError("empty completion")

    def _persist(self, turn: ConversationTurn) -> None:
        try:
            self._conversations.append(turn)
        except Exception:
            logger.warning(
                "conversation turn not persisted",
                exc_info=True,
                extra={
                    "extra_fields": safe_log_context(
                        account_id=turn.account_id, role=turn.role.value
                    )
                },
            )

    # ── Follow-up handling ───────────────────────────────────

    def _recent_turns(self, account_id: str) -> list[ConversationTurn]:
        try:
            return self._conversations.recent(account_id, self._history_limit)
        except Exception:
            logger.warning(
                "conversation history unavailable",
                exc_info=True,
                extra={"extra_fields": safe_log_context(account_id=account_id)},
            )
            return []

    def _pending_action(self, turns: list[ConversationTurn]) -> Action | None:
        """The clarification asked by the last assistant turn, if still open."""
        if not turns or turns[-1].role is not Role.ASSISTANT:
            return None
        last = turns[-1]
        if last.created_at is not None and self._clock.now() - last.created_at > PENDING_ACTION_TTL:
            return None
        raw = last.metadata.get("action") if last.metadata else None
        if not isinstance(raw, dict):
            return None
        try:
            action_type = ActionType(raw.get("type"))
        except ValueError:
            return None
        if action_type not in CLARIFICATION_TYPES:
            return None
        data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
        if "intent" not in data:
            return None
        return Action(action_type, data)

    def _route(
        self,
        message: str,
        classification: IntentClassification,
        pending: Action | None,
    ) -> _Routing:
        """Merge a follow-up answer into the pending request.

        A new request that stands on its own (priority match or a tier-1
        rule for a different intent) replaces the pending one.
        """
        if pending is None:
            return _Routing(classification)
        try:
            pending_intent = Intent(pending.data["intent"])
        except ValueError:
            return _Routing(classification)

        if _overrides(pending_intent, classification):
            return _Routing(classification)

        entities = classification.entities
        chosen_client_id = None

        if pending.type is ActionType.SELECT_CLIENT:
            chosen_client_id = _chosen_candidate(message, entities, pending.data.get("candidates"))
            if chosen_client_id is not None:
                # "2" picks an option; it is not an amount
                entities = replace(entities, amount=None)
        elif pending.type is ActionType.AWAITING_INVOICE_REFERENCE and not entities.invoice_ref:
            match = _BARE_REFERENCE.match(message)
            if match:
                entities = replace(entities, invoice_ref=match.group(1), amount=None)
        elif pending.type is ActionType.AWAITING_CANCEL_REASON and not entities.reason:
            entities = replace(entities, reason=message.strip())

        contributes = chosen_client_id is not None or any(
            (
                entities.amount,
                entities.document,
                entities.name,
                entities.invoice_ref,
                entities.reason,
                entities.period,
            )
        )
        if not contributes:
            return _Routing(classification)

        captured = ExtractedEntities.from_dict(pending.data.get("captured"))
        merged = entities.merged_over(captured)
        return _Routing(
            IntentClassification(
                intent=pending_intent,
                confidence=PRIORITY_CONFIDENCE,
                entities=merged,
                priority=True,
                rule="follow_up",
            ),
            chosen_client_id=chosen_client_id,
        )


def _overrides(pending_intent: Intent, classification: IntentClassification) -> bool:
    if classification.intent in (pending_intent, Intent.FALLBACK):
        return False
    # A bare "name + document" answers the pending question
    if classification.rule == "priority_name_and_document":
        return False
    return classification.priority or classification.confidence >= TIER_CONFIDENCE[1]


def _chosen_candidate(
    message: str,
    entities: ExtractedEntities,
    candidates: Any,
) -> str | None:
    if not isinstance(candidates, list) or not candidates:
        return None
    match = _CHOICE.match(message)
    if match:
        index = int(match.group(1))
        if 1 <= index <= len(candidates):
            return candidates[index - 1].get("id")
        return None
    if entities.document is not None:
        for candidate in candidates:
            doc = DocumentNumber.parse(candidate.get("document"))
            if doc is not None and doc.digits == entities.document.digits:
                return candidate.get("id")
    return None
