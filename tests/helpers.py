"""Shared test helper functions for flowrelay tests.

These are NOT fixtures - they are regular functions importable by test files.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from flowrelay.observability.logging import JsonFormatter


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@contextmanager
def captured_logs(*logger_names: str) -> Iterator[list[str]]:
    """Collect rendered JSON lines from the named loggers.

    Service loggers do not propagate to root, so caplog never sees them;
    attach a handler directly instead.
    """
    handler = _ListHandler()
    formatter = JsonFormatter()
    loggers = [logging.getLogger(name) for name in logger_names]
    for logger in loggers:
        logger.addHandler(handler)
    lines: list[str] = []
    try:
        yield lines
    finally:
        for logger in loggers:
            logger.removeHandler(handler)
        lines.extend(formatter.format(r) for r in handler.records)


def meta_text_message(
    text: str,
    *,
    sender: str = "5511999999999",
    message_id: str = "wamid.in.1",
    phone_number_id: str = "pn-1",
) -> dict[str, Any]:
    """Meta webhook payload carrying one text message."""
    return _meta_payload(
        phone_number_id,
        messages=[
            {"from": sender, "id": message_id, "type": "text", "text": {"body": text}}
        ],
    )


def meta_button_click(
    button_id: str,
    title: str,
    *,
    sender: str = "5511999999999",
    message_id: str = "wamid.in.2",
    phone_number_id: str = "pn-1",
) -> dict[str, Any]:
    """Meta webhook payload carrying one interactive button reply."""
    return _meta_payload(
        phone_number_id,
        messages=[
            {
                "from": sender,
                "id": message_id,
                "type": "interactive",
                "interactive": {
                    "type": "button_reply",
                    "button_reply": {"id": button_id, "title": title},
                },
            }
        ],
    )


def meta_status(
    external_id: str, status: str | None, *, phone_number_id: str = "pn-1"
) -> dict[str, Any]:
    entry: dict[str, Any] = {"id": external_id, "recipient_id": "5511999999999"}
    if status is not None:
        entry["status"] = status
    return _meta_payload(phone_number_id, statuses=[entry])


def _meta_payload(phone_number_id: str, **value: Any) -> dict[str, Any]:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "waba-1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"phone_number_id": phone_number_id},
                            **value,
                        },
                    }
                ],
            }
        ],
    }
