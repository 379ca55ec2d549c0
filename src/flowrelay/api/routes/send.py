"""Direct send endpoint: dispatch a text or template message to one customer."""

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel

from flowrelay.api.deps import get_retry_policy, get_tasks_client
from flowrelay.domain.dispatch import InvalidDispatchRequest, dispatch
from flowrelay.domain.models import OutboundContent, ReplyButton
from flowrelay.domain.templates import render, reply_buttons
from flowrelay.infra.db import txn
from flowrelay.infra.repositories import templates_repository, tenants_repository
from flowrelay.observability.correlation import get_correlation_id
from flowrelay.observability.logging import get_logger
from flowrelay.observability.redaction import safe_log_context
from flowrelay.tasks.client import TasksClient
from flowrelay.tasks.contracts import RetryPolicy

router = APIRouter(prefix="/tenants", tags=["send"])

logger = get_logger(__name__)


class SendButton(BaseModel):
    id: str
    title: str


class SendRequest(BaseModel):
    """Request body for POST /tenants/{tenant_id}/send.

    Either text or template_key is required. Explicit buttons turn the
    message into reply-button content.
    """

    to: str | None = None
    text: str | None = None
    template_key: str | None = None
    variables: dict[str, str] | None = None
    buttons: list[SendButton] | None = None
    idempotency_key: str | None = None


def _build_content(tenant_id: str, body: SendRequest) -> OutboundContent:
    if body.template_key:
        with txn() as cur:
            template = templates_repository.get_active_template(
                cur, tenant_id, body.template_key
            )
        if template is None:
            raise HTTPException(status_code=404, detail="Template not found")
        text = render(template.body, body.variables or {})
        buttons = reply_buttons(template)
    else:
        text = body.text or ""
        buttons = ()

    if body.buttons:
        buttons = tuple(ReplyButton(id=b.id, title=b.title) for b in body.buttons)

    if buttons:
        return OutboundContent(kind="interactive_button", text=text, buttons=buttons)
    return OutboundContent(kind="text", text=text)


@router.post("/{tenant_id}/send")
def send_message(
    tenant_id: str = Path(..., description="Tenant identifier"),
    body: SendRequest = ...,
    tasks_client: TasksClient = Depends(get_tasks_client),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
) -> dict:
    """Queue one outbound message.

    Replaying an idempotency_key returns the original message_id. A new job
    is enqueued only if that message is still queued, under the same task id.
    """
    if not body.to:
        raise HTTPException(status_code=400, detail="to is required")
    if not body.text and not body.template_key:
        raise HTTPException(status_code=400, detail="text or template_key is required")

    with txn() as cur:
        tenant = tenants_repository.get_tenant(cur, tenant_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail="Tenant not found")

    content = _build_content(tenant.id, body)

    try:
        result = dispatch(
            tasks_client,
            tenant.id,
            body.to,
            content,
            idempotency_key=body.idempotency_key,
            retry_policy=retry_policy,
        )
    except InvalidDispatchRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    logger.info(
        "direct send accepted",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                tenant_id=tenant.id,
                kind=content.kind,
                duplicate=result.duplicate,
            )
        },
    )

    response = {
        "ok": True,
        "message_id": result.message_id,
        "idempotency_key": result.idempotency_key,
        "duplicate": result.duplicate,
    }
    if result.duplicate:
        response["note"] = "duplicate suppressed"
    return response
