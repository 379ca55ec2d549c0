"""Delivery of one queued outbound message to the provider.

Jobs arrive at least once. A message already `sent` is never sent again, so
a redelivered job is answered without calling the provider. There is no
lease: two workers holding the same job at the same moment can both send.

Failures are split by `retryable`:
- provider failures (timeout, non-2xx, network) are retryable
- a missing tenant, credential or message is not; retrying cannot fix it
Either way the message is left `failed` until a later attempt succeeds.

Security: NEVER log the recipient, text or access token.
"""

from dataclasses import dataclass
from typing import Literal

from flowrelay.infra import credentials
from flowrelay.infra.db import txn
from flowrelay.infra.repositories import messages_repository, tenants_repository
from flowrelay.observability.correlation import correlation_scope
from flowrelay.observability.logging import get_logger
from flowrelay.observability.redaction import safe_log_context
from flowrelay.tasks.contracts import DeliveryJob
from flowrelay.whatsapp.meta_sender import MetaSender, SendFailure

from .models import STATUS_SENT

logger = get_logger(__name__)


class DeliveryError(Exception):
    """Delivery attempt failed."""

    retryable = True


class ConfigurationError(DeliveryError):
    """Tenant or its credential is missing."""

    retryable = False


class MessageNotFound(DeliveryError):
    retryable = False


class ProviderDeliveryError(DeliveryError):
    """Provider call failed; carries the classified failure."""

    def __init__(self, failure: SendFailure) -> None:
        super().__init__(f"provider send failed: {failure.describe()}")
        self.failure = failure


@dataclass(frozen=True)
class DeliveryOutcome:
    message_id: str
    status: Literal["sent", "already_sent"]
    external_message_id: str | None = None
    simulated: bool = False


def _mark_failed(job: DeliveryJob) -> None:
    with txn() as cur:
        messages_repository.mark_failed(cur, job.tenant_id, job.message_id)


def deliver(job: DeliveryJob, sender: MetaSender) -> DeliveryOutcome:
    """Send the job's message unless it was already sent.

    Raises:
        ConfigurationError: Tenant or credential missing (message marked failed).
        MessageNotFound: The message row does not exist.
        ProviderDeliveryError: Provider call failed (message marked failed).
    """
    log_ctx = safe_log_context(
        tenant_id=job.tenant_id, message_id=job.message_id, kind=job.content.kind
    )

    with txn() as cur:
        tenant = tenants_repository.get_tenant(cur, job.tenant_id)
    if tenant is None:
        _mark_failed(job)
        raise ConfigurationError("tenant not found")

    try:
        access_token = credentials.get_access_token(tenant)
    except credentials.CredentialError as exc:
        _mark_failed(job)
        raise ConfigurationError("tenant access token unreadable") from exc
    if not access_token:
        _mark_failed(job)
        raise ConfigurationError("tenant missing access token")

    with txn() as cur:
        message = messages_repository.get_message(cur, job.tenant_id, job.message_id)
    if message is None:
        raise MessageNotFound("message not found")

    if message.status == STATUS_SENT:
        logger.info("delivery skipped: already sent", extra={"extra_fields": log_ctx})
        return DeliveryOutcome(
            message_id=message.id,
            status="already_sent",
            external_message_id=message.external_message_id,
        )

    result = sender.send(
        phone_number_id=tenant.phone_number_id,
        access_token=access_token,
        recipient=job.recipient,
        content=job.content,
    )

    if isinstance(result, SendFailure):
        _mark_failed(job)
        raise ProviderDeliveryError(result)

    with txn() as cur:
        messages_repository.mark_sent(cur, job.tenant_id, job.message_id, result.external_message_id)

    logger.info(
        "message delivered",
        extra={"extra_fields": {**log_ctx, "simulated": str(result.simulated).lower()}},
    )
    return DeliveryOutcome(
        message_id=message.id,
        status="sent",
        external_message_id=result.external_message_id,
        simulated=result.simulated,
    )


def make_delivery_handler(sender: MetaSender):
    """Queue handler for delivery jobs (inline backend).

    Non-retryable failures are logged and swallowed so the queue drops the
    job; retryable ones propagate so the queue backs off and retries.
    """

    def handle(payload: dict) -> None:
        job = DeliveryJob.from_dict(payload)
        try:
            with correlation_scope(job.correlation_id):
                deliver(job, sender)
        except DeliveryError as exc:
            if exc.retryable:
                raise
            logger.error(
                "delivery failed permanently",
                extra={
                    "extra_fields": safe_log_context(
                        tenant_id=job.tenant_id,
                        message_id=job.message_id,
                        error_type=type(exc).__name__,
                    )
                },
            )

    return handle
