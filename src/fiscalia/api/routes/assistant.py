"""Assistant endpoints: message processing, confirmed actions, history.

Message texts and action data may contain client documents: they are
never logged here, only ids, action types and sizes.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from fiscalia.api.auth import CurrentUser, get_current_user
from fiscalia.api.deps import get_action_executor, get_conversation_store, get_dispatcher
from fiscalia.domain.errors import InvalidMessage
from fiscalia.domain.ports import ConversationStore
from fiscalia.observability.logging import get_logger
from fiscalia.observability.redaction import safe_log_context
from fiscalia.services.action_executor import ActionExecutor
from fiscalia.services.dispatch import MessageDispatcher

router = APIRouter(prefix="/assistant", tags=["assistant"])

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 2000
MAX_HISTORY_TURNS = 50

SUGGESTIONS = [
    "Emitir nova nota fiscal",
    "Qual meu faturamento este mês?",
    "Listar minhas últimas notas",
    "Verificar impostos pendentes",
]


class HistoryMessage(BaseModel):
    role: str = Field(pattern="^(user|assistant)$")
    content: str


class ProcessRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(max_length=MAX_MESSAGE_LENGTH)
    company_id: str | None = Field(default=None, alias="companyId")
    history: list[HistoryMessage] | None = Field(default=None, max_length=MAX_HISTORY_TURNS)


class ExecuteActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action_type: str = Field(alias="actionType")
    action_data: dict[str, Any] = Field(default_factory=dict, alias="actionData")
    company_id: str | None = Field(default=None, alias="companyId")


@router.post("/process")
def process_message(
    body: ProcessRequest,
    user: CurrentUser = Depends(get_current_user),
    dispatcher: MessageDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    """Interpret a message and propose an action.

    Returns ``{success, action, explanation, requiresConfirmation}``;
    ``action`` is null for conversational answers.
    """
    if not body.message.strip():
        raise InvalidMessage()

    history = [m.model_dump() for m in body.history] if body.history is not None else None
    result = dispatcher.process(
        user.account_id,
        body.message,
        company_id=body.company_id,
        history=history,
    )
    return result.to_dict()


@router.post("/execute-action")
def execute_action(
    body: ExecuteActionRequest,
    user: CurrentUser = Depends(get_current_user),
    executor: ActionExecutor = Depends(get_action_executor),
) -> dict[str, Any]:
    """Execute an action the user confirmed.

    Errors come back as ``{message, code, data?}`` through the app's
    FiscaliaError handler.
    """
    logger.info(
        "execute action requested",
        extra={
            "extra_fields": safe_log_context(
                account_id=user.account_id,
                action_type=body.action_type,
                data_keys=sorted(body.action_data),
            )
        },
    )
    result = executor.execute(user.account, body.action_type, body.action_data, body.company_id)
    return {"success": True, **result}


@router.get("/history")
def get_history(
    limit: int = Query(default=MAX_HISTORY_TURNS, ge=1, le=200),
    user: CurrentUser = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> dict[str, Any]:
    turns = conversations.recent(user.account_id, limit)
    return {"turns": [t.to_dict() for t in turns]}


@router.delete("/history")
def clear_history(
    user: CurrentUser = Depends(get_current_user),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> dict[str, Any]:
    deleted = conversations.purge(user.account_id)
    logger.info(
        "conversation history purged",
        extra={"extra_fields": safe_log_context(account_id=user.account_id, deleted=deleted)},
    )
    return {"success": True, "deleted": deleted}


@router.get("/suggestions")
def suggestions(user: CurrentUser = Depends(get_current_user)) -> list[str]:
    return SUGGESTIONS
