"""Queue contracts: retry policy and the delivery job payload.

Delivery jobs carry the recipient and content so the worker never has to
re-render anything; the message row only tracks status.
"""

from dataclasses import dataclass, field
from typing import Any

from flowrelay.config import Settings
from flowrelay.domain.models import OutboundContent

DELIVERY_TASK_PATH = "/tasks/messages/deliver"


def delivery_task_id(tenant_id: str, message_id: str) -> str:
    """Stable task id, so re-enqueueing the same message is deduplicated."""
    return f"deliver:{tenant_id}:{message_id}"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_attempts: Total attempts, first try included.
        backoff_seconds: Delay before the second attempt; doubles after each failure.
    """

    max_attempts: int = 5
    backoff_seconds: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        return self.backoff_seconds * (2 ** (attempt - 1))

    def is_last_attempt(self, attempt: int) -> bool:
        return attempt >= self.max_attempts


DEFAULT_RETRY_POLICY = RetryPolicy()


@dataclass(frozen=True)
class DeliveryJob:
    tenant_id: str
    message_id: str
    recipient: str
    content: OutboundContent
    idempotency_key: str
    correlation_id: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "tenant_id": self.tenant_id,
            "message_id": self.message_id,
            "recipient": self.recipient,
            "content": self.content.to_dict(),
            "idempotency_key": self.idempotency_key,
            "correlation_id": self.correlation_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeliveryJob":
        """Create from dict.

        Raises:
            ValueError: If a required field is missing or content is malformed.
        """
        missing = [
            name
            for name in ("tenant_id", "message_id", "recipient", "idempotency_key")
            if not data.get(name)
        ]
        if missing:
            raise ValueError(f"Delivery job missing fields: {missing}")
        content = data.get("content")
        if not isinstance(content, dict):
            raise ValueError("Delivery job content must be an object")
        return cls(
            tenant_id=str(data["tenant_id"]),
            message_id=str(data["message_id"]),
            recipient=str(data["recipient"]),
            content=OutboundContent.from_dict(content),
            idempotency_key=str(data["idempotency_key"]),
            correlation_id=data.get("correlation_id"),
        )


def retry_policy_from_settings(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max(1, settings.delivery_max_attempts),
        backoff_seconds=settings.delivery_backoff_seconds,
    )
