"""Idempotent outbound dispatch.

One idempotency key maps to at most one outbound message row. Replays with a
known key return the original message reference; concurrent first calls are
settled by the unique (tenant_id, idempotency_key) index.

The delivery job is enqueued after the row commits. If that enqueue fails the
row stays `queued`, so a replay of a key whose message is still `queued`
enqueues again under the same task id; the queue keeps that to one job.

Security: NEVER log the recipient or text.
"""

import uuid

from psycopg2.extensions import cursor as PgCursor

from flowrelay.infra.db import txn
from flowrelay.infra.repositories import messages_repository
from flowrelay.observability.correlation import get_correlation_id
from flowrelay.observability.logging import get_logger
from flowrelay.observability.redaction import safe_log_context
from flowrelay.tasks.client import TasksClient
from flowrelay.tasks.contracts import (
    DEFAULT_RETRY_POLICY,
    DELIVERY_TASK_PATH,
    DeliveryJob,
    RetryPolicy,
    delivery_task_id,
)

from .models import STATUS_QUEUED, DispatchResult, OutboundContent

logger = get_logger(__name__)


class InvalidDispatchRequest(ValueError):
    """Dispatch request is missing routing fields or content."""


def generate_idempotency_key() -> str:
    return str(uuid.uuid4())


def validate_dispatch(tenant_id: str, recipient: str, content: OutboundContent) -> None:
    """Raises InvalidDispatchRequest if routing fields or content are missing."""
    if not tenant_id:
        raise InvalidDispatchRequest("tenant_id required")
    if not recipient:
        raise InvalidDispatchRequest("recipient required")
    if not content.text:
        raise InvalidDispatchRequest("content text required")
    if content.kind == "interactive_button" and not content.buttons:
        raise InvalidDispatchRequest("interactive_button content requires buttons")


def record_outbound(
    cur: PgCursor,
    tenant_id: str,
    content: OutboundContent,
    idempotency_key: str,
) -> tuple[DispatchResult, bool]:
    """Find or create the outbound row for a key, within the caller's transaction.

    Returns:
        (result, needs_job). needs_job is True for a new row and for a replayed
        row still `queued`; False when another writer owns the row or it has
        already been attempted.
    """
    log_ctx = safe_log_context(tenant_id=tenant_id, kind=content.kind)

    existing = messages_repository.find_outbound_by_idempotency_key(
        cur, tenant_id, idempotency_key
    )
    if existing is not None:
        needs_job = existing.status == STATUS_QUEUED
        logger.info(
            "dispatch replay: duplicate suppressed",
            extra={"extra_fields": {**log_ctx, "requeue": str(needs_job).lower()}},
        )
        return (
            DispatchResult(message_id=existing.id, idempotency_key=idempotency_key, duplicate=True),
            needs_job,
        )

    message_id = messages_repository.create_outbound(
        cur,
        tenant_id=tenant_id,
        body=content.text,
        message_type=content.kind,
        idempotency_key=idempotency_key,
        buttons=content.buttons,
    )
    if message_id is None:
        # Lost the insert race; the winner enqueues the job.
        winner = messages_repository.find_outbound_by_idempotency_key(
            cur, tenant_id, idempotency_key
        )
        logger.info("dispatch race: duplicate suppressed", extra={"extra_fields": log_ctx})
        return (
            DispatchResult(
                message_id=winner.id if winner else None,
                idempotency_key=idempotency_key,
                duplicate=True,
            ),
            False,
        )

    return DispatchResult(message_id=message_id, idempotency_key=idempotency_key), True


def enqueue_delivery(
    tasks_client: TasksClient,
    tenant_id: str,
    recipient: str,
    content: OutboundContent,
    result: DispatchResult,
    *,
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> None:
    """Enqueue the delivery job for a committed outbound row."""
    correlation_id = get_correlation_id() or None
    job = DeliveryJob(
        tenant_id=tenant_id,
        message_id=result.message_id,
        recipient=recipient,
        content=content,
        idempotency_key=result.idempotency_key,
        correlation_id=correlation_id,
    )
    tasks_client.enqueue(
        delivery_task_id(tenant_id, result.message_id),
        DELIVERY_TASK_PATH,
        job.to_dict(),
        retry_policy=retry_policy,
        correlation_id=correlation_id,
    )

    logger.info(
        "outbound message queued",
        extra={
            "extra_fields": safe_log_context(
                tenant_id=tenant_id,
                kind=content.kind,
                message_id=result.message_id,
                replay=str(result.duplicate).lower(),
            )
        },
    )


def dispatch(
    tasks_client: TasksClient,
    tenant_id: str,
    recipient: str,
    content: OutboundContent,
    idempotency_key: str | None = None,
    *,
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> DispatchResult:
    """Create the outbound message and enqueue its delivery, once per key.

    Args:
        tasks_client: Queue producer shared by the process.
        tenant_id: Tenant identifier.
        recipient: Customer number. NEVER logged.
        content: What to send.
        idempotency_key: Caller-supplied key; a fresh one is generated if None.
        retry_policy: Attempt bound and backoff for the delivery job.

    Returns:
        DispatchResult; duplicate=True when the key had already been used.

    Raises:
        InvalidDispatchRequest: If routing fields or content are missing.
    """
    validate_dispatch(tenant_id, recipient, content)
    key = idempotency_key or generate_idempotency_key()

    with txn() as cur:
        result, needs_job = record_outbound(cur, tenant_id, content, key)

    # Enqueue only after commit so the worker can see the row.
    if needs_job:
        enqueue_delivery(
            tasks_client, tenant_id, recipient, content, result, retry_policy=retry_policy
        )
    return result
