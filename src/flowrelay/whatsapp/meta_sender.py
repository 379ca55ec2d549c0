"""Outbound WhatsApp messaging via Meta Cloud API.

`MetaSender.send` never raises for provider trouble: it returns either a
SendSuccess or a SendFailure classifying what went wrong, and the caller
decides about retries.

Security: NEVER log the recipient, the text or the access token. Only hashes
and lengths.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Literal, Union

import requests

from flowrelay.config import Settings
from flowrelay.domain.models import OutboundContent
from flowrelay.observability.logging import get_logger
from flowrelay.observability.redaction import hash_identifier, safe_log_context

logger = get_logger(__name__)

GRAPH_API_BASE_URL = "https://graph.facebook.com"

FailureReason = Literal["timeout", "http_error", "network_error"]


@dataclass(frozen=True)
class SendSuccess:
    external_message_id: str | None
    simulated: bool = False


@dataclass(frozen=True)
class SendFailure:
    reason: FailureReason
    status_code: int | None = None

    def describe(self) -> str:
        """Short PII-free description for logs and error messages."""
        if self.status_code is not None:
            return f"{self.reason} ({self.status_code})"
        return self.reason


SendResult = Union[SendSuccess, SendFailure]


def build_payload(recipient: str, content: OutboundContent) -> dict[str, Any]:
    """Graph API message body for plain text or reply-button content."""
    if content.kind == "interactive_button":
        return {
            "messaging_product": "whatsapp",
            "to": recipient,
            "type": "interactive",
            "interactive": {
                "type": "button",
                "body": {"text": content.text},
                "action": {
                    "buttons": [
                        {"type": "reply", "reply": {"id": b.id, "title": b.title}}
                        for b in content.buttons
                    ]
                },
            },
        }

    return {
        "messaging_product": "whatsapp",
        "to": recipient,
        "type": "text",
        "text": {"body": content.text},
    }


def _extract_message_id(response: requests.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    try:
        return str(body["messages"][0]["id"])
    except (KeyError, IndexError, TypeError):
        return None


class MetaSender:
    """Sends messages through the Graph API `/{phone_number_id}/messages` endpoint.

    Built once per process; the underlying requests.Session is reused.
    """

    def __init__(
        self,
        *,
        api_version: str,
        timeout_seconds: float = 10.0,
        test_token_prefix: str = "mock_",
        session: requests.Session | None = None,
    ) -> None:
        self._api_version = api_version
        self._timeout = timeout_seconds
        self._test_token_prefix = test_token_prefix
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> MetaSender:
        return cls(
            api_version=settings.whatsapp_api_version,
            timeout_seconds=settings.send_timeout_seconds,
            test_token_prefix=settings.test_token_prefix,
        )

    def is_test_token(self, access_token: str) -> bool:
        return bool(self._test_token_prefix) and access_token.startswith(self._test_token_prefix)

    def send(
        self,
        *,
        phone_number_id: str,
        access_token: str,
        recipient: str,
        content: OutboundContent,
    ) -> SendResult:
        """Send one message.

        Args:
            phone_number_id: Tenant's Meta phone number id.
            access_token: Decrypted bearer token. NEVER logged.
            recipient: Customer number. NEVER logged.
            content: Text or interactive-button content. Text NEVER logged.
        """
        log_ctx = safe_log_context(
            to_hash=hash_identifier(recipient),
            kind=content.kind,
            text_len=len(content.text),
            button_count=len(content.buttons),
        )

        if self.is_test_token(access_token):
            logger.info("test credential: send simulated", extra={"extra_fields": log_ctx})
            return SendSuccess(
                external_message_id=f"mock-{int(time.time() * 1000)}", simulated=True
            )

        url = f"{GRAPH_API_BASE_URL}/{self._api_version}/{phone_number_id}/messages"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        }

        logger.info("sending outbound message via meta", extra={"extra_fields": log_ctx})

        try:
            response = self._session.post(
                url,
                json=build_payload(recipient, content),
                headers=headers,
                timeout=self._timeout,
            )
        except requests.Timeout:
            return self._failed(SendFailure(reason="timeout"), log_ctx)
        except requests.RequestException:
            return self._failed(SendFailure(reason="network_error"), log_ctx)

        if not 200 <= response.status_code < 300:
            return self._failed(
                SendFailure(reason="http_error", status_code=response.status_code), log_ctx
            )

        external_id = _extract_message_id(response)
        logger.info(
            "outbound message sent via meta",
            extra={"extra_fields": {**log_ctx, "has_external_id": str(external_id is not None).lower()}},
        )
        return SendSuccess(external_message_id=external_id)

    @staticmethod
    def _failed(failure: SendFailure, log_ctx: dict[str, str]) -> SendFailure:
        logger.warning(
            "outbound send via meta failed",
            extra={"extra_fields": {**log_ctx, "error": failure.describe()}},
        )
        return failure
