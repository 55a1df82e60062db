"""Worker routes for invoice background jobs."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from fiscalia.api.deps import get_status_poller
from fiscalia.api.task_auth import require_task_auth
from fiscalia.observability.logging import get_logger
from fiscalia.observability.redaction import safe_log_context
from fiscalia.services.status_polling import InvoiceStatusPoller

router = APIRouter(prefix="/tasks/invoices", tags=["tasks"])

logger = get_logger(__name__)


@router.post("/poll-status", dependencies=[Depends(require_task_auth)])
def poll_status(poller: InvoiceStatusPoller | None = Depends(get_status_poller)) -> dict[str, Any]:
    """Poll one batch of processing invoices.

    Always answers 200 once authenticated so the scheduler does not
    retry a batch that partly succeeded; failures are in the summary.
    """
    if poller is None:
        logger.warning(
            "status polling skipped",
            extra={"extra_fields": safe_log_context(reason="fiscal_not_configured")},
        )
        return {"ok": True, "status": "skipped", "reason": "fiscal_not_configured"}

    summary = poller.run_once()
    return {"ok": True, "status": "done", **summary.to_dict()}
