"""Worker route for delivering queued outbound messages.

Cloud Tasks retry contract:
- 200 on success, already-sent and terminal failures (the task is dropped)
- 500 on retryable failures, so the queue applies its backoff
- on the final allowed attempt a retryable failure is answered 200 with
  "retries_exhausted"; the message stays `failed`
"""

import json

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from flowrelay.api.deps import get_retry_policy, get_sender
from flowrelay.api.task_auth import verify_task_auth
from flowrelay.domain.delivery import DeliveryError, deliver
from flowrelay.observability.correlation import correlation_scope, get_correlation_id
from flowrelay.observability.logging import get_logger
from flowrelay.observability.redaction import safe_log_context
from flowrelay.tasks.contracts import DeliveryJob, RetryPolicy
from flowrelay.whatsapp.meta_sender import MetaSender

router = APIRouter(prefix="/tasks/messages", tags=["tasks"])

logger = get_logger(__name__)

RETRY_COUNT_HEADER = "X-CloudTasks-TaskRetryCount"


class DeliverRequest(BaseModel):
    """Delivery job as enqueued by the dispatcher.

    Security: recipient and content.text are NEVER logged.
    """

    tenant_id: str
    message_id: str
    recipient: str
    content: dict
    idempotency_key: str
    correlation_id: str | None = None


def _attempt_number(request: Request) -> int:
    """1-based attempt number from the Cloud Tasks retry header."""
    raw = request.headers.get(RETRY_COUNT_HEADER, "0")
    try:
        return int(raw) + 1
    except ValueError:
        return 1


@router.post("/deliver")
async def deliver_message(
    request: Request,
    req: DeliverRequest,
    sender: MetaSender = Depends(get_sender),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
):
    """Deliver one message via Meta Cloud API."""
    correlation_id = req.correlation_id or get_correlation_id()

    # Verify task authentication (OIDC or internal secret in local dev)
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    attempt = _attempt_number(request)
    log_ctx = safe_log_context(
        correlationId=correlation_id,
        tenant_id=req.tenant_id,
        message_id=req.message_id,
        attempt=attempt,
    )

    try:
        job = DeliveryJob.from_dict(req.model_dump())
    except ValueError as exc:
        logger.warning(
            "deliver task payload invalid",
            extra={"extra_fields": {**log_ctx, "error": str(exc)}},
        )
        return {"ok": False, "terminal": True, "error": "invalid_payload"}

    logger.info("deliver task received", extra={"extra_fields": log_ctx})

    try:
        with correlation_scope(correlation_id):
            outcome = deliver(job, sender)
    except DeliveryError as exc:
        err_ctx = {**log_ctx, "error_type": type(exc).__name__}
        if not exc.retryable:
            logger.error("deliver task failed permanently", extra={"extra_fields": err_ctx})
            return {"ok": False, "terminal": True, "error": type(exc).__name__}

        if retry_policy.is_last_attempt(attempt):
            logger.error("deliver task retries exhausted", extra={"extra_fields": err_ctx})
            return {"ok": False, "terminal": True, "error": "retries_exhausted"}

        logger.warning("deliver task failed, will retry", extra={"extra_fields": err_ctx})
        return Response(
            status_code=500,
            content=json.dumps({"ok": False, "error": type(exc).__name__}),
            media_type="application/json",
        )

    return {
        "ok": True,
        "status": outcome.status,
        "message_id": outcome.message_id,
        "external_message_id": outcome.external_message_id,
    }
