"""Normalized WhatsApp webhook content.

ATTENTION PII: `customer_id` and `text` are the customer's number and words.
Use in memory only; NEVER log them.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class InboundEvent:
    """One customer message, with button clicks reduced to a payload id."""

    customer_id: str
    external_message_id: str | None
    message_type: str
    text: str | None = None
    payload_id: str | None = None

    @property
    def record_type(self) -> str:
        """Type stored on the inbound message row."""
        return "button_reply" if self.payload_id else self.message_type

    @property
    def record_body(self) -> str:
        return self.text or self.payload_id or ""


@dataclass(frozen=True)
class StatusReceipt:
    """Delivery/read receipt for a message we sent."""

    external_message_id: str
    status: str


@dataclass(frozen=True)
class WebhookChange:
    """Everything one `entry[].changes[]` item carries for a business number."""

    phone_number_id: str | None
    events: tuple[InboundEvent, ...] = ()
    receipts: tuple[StatusReceipt, ...] = ()
