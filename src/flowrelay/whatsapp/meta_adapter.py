"""Meta Cloud API adapter - normalize webhook payloads.

Payload structure:
{
  "object": "whatsapp_business_account",
  "entry": [{
    "changes": [{
      "value": {
        "metadata": {"phone_number_id": "..."},
        "messages": [{"from": "PHONE", "id": "wamid...", "type": "text", "text": {"body": "..."}}],
        "statuses": [{"id": "wamid...", "status": "delivered"}]
      },
      "field": "messages"
    }]
  }]
}

Malformed parts are skipped rather than rejected: one bad entry must not
stop the rest of the batch.
"""

from typing import Any, Iterator

from .models import InboundEvent, StatusReceipt, WebhookChange


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _first_str(*values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value:
            return value
    return None


def extract_inbound(message: dict[str, Any]) -> InboundEvent | None:
    """Normalize one provider message. None when the sender is missing.

    Branching uses the interactive reply id (button, then list), then the
    legacy template-button payload. The visible text prefers the clicked
    option's title, then the legacy button text, then the text body.
    """
    customer_id = _first_str(message.get("from"))
    if customer_id is None:
        return None

    interactive = _as_dict(message.get("interactive"))
    button_reply = _as_dict(interactive.get("button_reply"))
    list_reply = _as_dict(interactive.get("list_reply"))
    legacy_button = _as_dict(message.get("button"))
    text_obj = _as_dict(message.get("text"))

    payload_id = _first_str(
        button_reply.get("id"), list_reply.get("id"), legacy_button.get("payload")
    )
    text = _first_str(
        button_reply.get("title"),
        list_reply.get("title"),
        legacy_button.get("text"),
        text_obj.get("body"),
    )

    return InboundEvent(
        customer_id=customer_id,
        external_message_id=_first_str(message.get("id")),
        message_type=_first_str(message.get("type")) or "text",
        text=text,
        payload_id=payload_id,
    )


def extract_receipt(status: dict[str, Any]) -> StatusReceipt | None:
    external_id = _first_str(status.get("id"))
    if external_id is None:
        return None
    return StatusReceipt(
        external_message_id=external_id,
        status=_first_str(status.get("status")) or "unknown",
    )


def iter_changes(payload: dict[str, Any]) -> Iterator[WebhookChange]:
    """Yield every change in the webhook, in payload order."""
    for entry in _as_list(payload.get("entry")):
        for change in _as_list(_as_dict(entry).get("changes")):
            value = _as_dict(_as_dict(change).get("value"))
            metadata = _as_dict(value.get("metadata"))

            events = tuple(
                event
                for event in (
                    extract_inbound(m) for m in _as_list(value.get("messages")) if isinstance(m, dict)
                )
                if event is not None
            )
            receipts = tuple(
                receipt
                for receipt in (
                    extract_receipt(s) for s in _as_list(value.get("statuses")) if isinstance(s, dict)
                )
                if receipt is not None
            )

            yield WebhookChange(
                phone_number_id=_first_str(metadata.get("phone_number_id")),
                events=events,
                receipts=receipts,
            )
