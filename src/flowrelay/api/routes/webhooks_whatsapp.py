"""WhatsApp webhook routes - Meta Cloud API.

Inbound messages are routed through the conversation engine and any reply is
dispatched with a key derived from the inbound message id, so a redelivered
webhook never produces a second reply; a redelivery does re-enqueue a reply
whose delivery job was never enqueued. Status receipts overwrite the status
of the outbound message they refer to.

IMPORTANT: Always return 200 to Meta, even on errors. Meta retries non-2xx
responses, and one failing message must not cause the whole batch to be
redelivered.

Security: customer numbers and text are NEVER logged.
"""

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request, Response
from psycopg2.extensions import cursor as PgCursor

from flowrelay.api.deps import get_app_settings, get_retry_policy, get_tasks_client
from flowrelay.config import Settings
from flowrelay.domain import conversation_engine
from flowrelay.domain.dispatch import (
    InvalidDispatchRequest,
    enqueue_delivery,
    record_outbound,
    validate_dispatch,
)
from flowrelay.domain.models import STATUS_QUEUED, DispatchResult, Message, Tenant
from flowrelay.domain.receipts import reconcile_status
from flowrelay.infra.db import txn
from flowrelay.infra.repositories import messages_repository, tenants_repository
from flowrelay.observability.correlation import get_correlation_id
from flowrelay.observability.logging import get_logger
from flowrelay.observability.redaction import safe_log_context
from flowrelay.tasks.client import TasksClient
from flowrelay.tasks.contracts import RetryPolicy
from flowrelay.whatsapp.meta_adapter import iter_changes
from flowrelay.whatsapp.models import InboundEvent

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)

EventOutcome = Literal["replied", "silent", "duplicate"]


def reply_idempotency_key(event: InboundEvent, inbound_message_id: str | None = None) -> str:
    return f"flow-reply:{event.external_message_id or inbound_message_id}"


def _id_prefix(value: str | None) -> str:
    return (value or "")[:16]


@router.get("")
async def whatsapp_webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """Meta webhook verification handshake: echo hub.challenge if the token matches."""
    expected = settings.meta_verify_token
    if hub_mode == "subscribe" and expected and hub_verify_token == expected:
        logger.info("verification handshake accepted")
        return Response(status_code=200, content=hub_challenge or "")

    logger.warning(
        "webhook verification failed",
        extra={"extra_fields": safe_log_context(hub_mode=hub_mode or "missing")},
    )
    return Response(status_code=403, content="verification failed")


def _pending_reply(cur: PgCursor, tenant: Tenant, event: InboundEvent) -> Message | None:
    """Reply to an already-recorded inbound message whose job never ran."""
    if not event.external_message_id:
        return None
    reply = messages_repository.find_outbound_by_idempotency_key(
        cur, tenant.id, reply_idempotency_key(event)
    )
    if reply is None or reply.status != STATUS_QUEUED:
        return None
    return reply


def process_event(
    tasks_client: TasksClient,
    tenant: Tenant,
    event: InboundEvent,
    retry_policy: RetryPolicy,
) -> EventOutcome:
    """Record one inbound message, decide a reply and dispatch it.

    The inbound row, the state change and the reply row commit together, so a
    failure before commit leaves nothing behind and the provider's redelivery
    is processed from scratch. The delivery job is enqueued after commit; if
    that enqueue fails, a redelivery finds the reply still `queued` and
    enqueues it again.
    """
    with txn() as cur:
        inbound_id = messages_repository.record_inbound(
            cur,
            tenant_id=tenant.id,
            body=event.record_body,
            message_type=event.record_type,
            external_message_id=event.external_message_id,
        )
        if inbound_id is None:
            pending = _pending_reply(cur, tenant, event)
            if pending is None:
                return "duplicate"
            outcome: EventOutcome = "duplicate"
            content = pending.to_content()
            result = DispatchResult(
                message_id=pending.id,
                idempotency_key=pending.idempotency_key or reply_idempotency_key(event),
                duplicate=True,
            )
        else:
            decision = conversation_engine.handle_inbound(
                cur,
                tenant.id,
                event.customer_id,
                text=event.text,
                payload_id=event.payload_id,
            )
            if decision is None:
                return "silent"

            content = decision.to_content()
            try:
                validate_dispatch(tenant.id, event.customer_id, content)
            except InvalidDispatchRequest as exc:
                logger.warning(
                    "reply not dispatched",
                    extra={
                        "extra_fields": safe_log_context(
                            tenant_id=tenant.id, template_key=decision.template_key, error=str(exc)
                        )
                    },
                )
                return "silent"

            outcome = "replied"
            result, needs_job = record_outbound(
                cur, tenant.id, content, reply_idempotency_key(event, inbound_id)
            )
            if not needs_job:
                return outcome

    enqueue_delivery(
        tasks_client, tenant.id, event.customer_id, content, result, retry_policy=retry_policy
    )
    return outcome


@router.post("")
async def whatsapp_webhook(
    request: Request,
    tasks_client: TasksClient = Depends(get_tasks_client),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
) -> Response:
    """Receive messages and status receipts from Meta Cloud API."""
    correlation_id = get_correlation_id()

    try:
        payload: Any = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=200, content="ok")

    if not isinstance(payload, dict):
        return Response(status_code=200, content="ok")

    for change in iter_changes(payload):
        if not change.phone_number_id or not (change.events or change.receipts):
            continue

        try:
            with txn() as cur:
                tenant = tenants_repository.get_tenant_by_phone_number_id(
                    cur, change.phone_number_id
                )
        except Exception:
            logger.exception(
                "tenant lookup failed",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
            )
            continue

        if tenant is None:
            logger.info(
                "webhook for unknown phone_number_id ignored",
                extra={"extra_fields": safe_log_context(events=len(change.events))},
            )
            continue

        for event in change.events:
            log_ctx = safe_log_context(
                tenant_id=tenant.id,
                message_id_prefix=_id_prefix(event.external_message_id),
                kind=event.record_type,
            )
            try:
                outcome = process_event(tasks_client, tenant, event, retry_policy)
            except Exception:
                logger.exception(
                    "inbound message processing failed", extra={"extra_fields": log_ctx}
                )
                continue
            logger.info(
                "inbound message processed",
                extra={"extra_fields": {**log_ctx, "outcome": outcome}},
            )

        for receipt in change.receipts:
            try:
                with txn() as cur:
                    updated = reconcile_status(cur, tenant.id, receipt)
            except Exception:
                logger.exception(
                    "status receipt update failed",
                    extra={"extra_fields": safe_log_context(tenant_id=tenant.id)},
                )
                continue
            logger.info(
                "status receipt applied",
                extra={
                    "extra_fields": safe_log_context(
                        tenant_id=tenant.id,
                        status=receipt.status,
                        updated=updated,
                        message_id_prefix=_id_prefix(receipt.external_message_id),
                    )
                },
            )

    return Response(status_code=200, content="ok")
