"""Tests for the delivery worker logic."""

import pytest

from fakes import FakeSender, failing_sender
from flowrelay.domain.delivery import (
    ConfigurationError,
    MessageNotFound,
    ProviderDeliveryError,
    deliver,
    make_delivery_handler,
)
from flowrelay.domain.dispatch import dispatch
from flowrelay.domain.models import OutboundContent
from flowrelay.infra.credentials import seal_token
from flowrelay.tasks.client import TasksClient
from flowrelay.tasks.contracts import DELIVERY_TASK_PATH, DeliveryJob, RetryPolicy
from flowrelay.whatsapp.meta_sender import SendFailure, SendSuccess

from helpers import captured_logs

TENANT = "tenant-1"
RECIPIENT = "+15550001111"
KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


def _job(message_id: str, text: str = "hi") -> DeliveryJob:
    return DeliveryJob(
        tenant_id=TENANT,
        message_id=message_id,
        recipient=RECIPIENT,
        content=OutboundContent(kind="text", text=text),
        idempotency_key="k1",
    )


class TestDeliver:
    def test_success_marks_sent_with_external_id(self, store):
        message = store.add_outbound()
        sender = FakeSender([SendSuccess(external_message_id="wamid.1")])

        outcome = deliver(_job(message.id), sender)

        assert outcome.status == "sent"
        assert outcome.external_message_id == "wamid.1"
        stored = store.messages[message.id]
        assert stored.status == "sent"
        assert stored.external_message_id == "wamid.1"
        [call] = sender.calls
        assert call["phone_number_id"] == "pn-1"
        assert call["access_token"] == "mock_token"
        assert call["recipient"] == RECIPIENT

    def test_already_sent_short_circuits_without_calling_provider(self, store):
        message = store.add_outbound(status="sent", external_message_id="wamid.old")
        sender = FakeSender()

        outcome = deliver(_job(message.id), sender)

        assert outcome.status == "already_sent"
        assert outcome.external_message_id == "wamid.old"
        assert sender.calls == []

    def test_provider_failure_marks_failed_and_is_retryable(self, store):
        message = store.add_outbound()
        sender = FakeSender([SendFailure(reason="timeout")])

        with pytest.raises(ProviderDeliveryError) as exc_info:
            deliver(_job(message.id), sender)

        assert exc_info.value.retryable is True
        assert exc_info.value.failure.reason == "timeout"
        assert store.messages[message.id].status == "failed"

    def test_retry_after_failure_sends(self, store):
        message = store.add_outbound()
        sender = failing_sender(1)

        with pytest.raises(ProviderDeliveryError):
            deliver(_job(message.id), sender)
        outcome = deliver(_job(message.id), sender)

        assert outcome.status == "sent"
        assert store.messages[message.id].status == "sent"

    def test_missing_tenant_is_configuration_failure(self, store):
        message = store.add_outbound()
        store.tenants.clear()
        sender = FakeSender()

        with pytest.raises(ConfigurationError) as exc_info:
            deliver(_job(message.id), sender)

        assert exc_info.value.retryable is False
        assert store.messages[message.id].status == "failed"
        assert sender.calls == []

    def test_missing_credential_is_configuration_failure(self, store):
        store.add_tenant(access_token_enc=None)
        message = store.add_outbound()

        with pytest.raises(ConfigurationError):
            deliver(_job(message.id), FakeSender())

        assert store.messages[message.id].status == "failed"

    def test_undecryptable_credential_is_configuration_failure(self, store, monkeypatch):
        monkeypatch.setenv("CREDENTIALS_KEY", KEY_HEX)
        store.add_tenant(access_token_enc="not-a-sealed-token")
        message = store.add_outbound()

        with pytest.raises(ConfigurationError):
            deliver(_job(message.id), FakeSender())

    def test_malformed_key_is_configuration_failure(self, store, monkeypatch):
        monkeypatch.setenv("CREDENTIALS_KEY", "not-hex")
        message = store.add_outbound()
        sender = FakeSender()

        with pytest.raises(ConfigurationError) as exc_info:
            deliver(_job(message.id), sender)

        assert exc_info.value.retryable is False
        assert store.messages[message.id].status == "failed"
        assert sender.calls == []

    def test_sealed_credential_is_decrypted(self, store, monkeypatch):
        monkeypatch.setenv("CREDENTIALS_KEY", KEY_HEX)
        store.add_tenant(access_token_enc=seal_token("EAAG-real-token"))
        message = store.add_outbound()
        sender = FakeSender()

        deliver(_job(message.id), sender)

        assert sender.calls[0]["access_token"] == "EAAG-real-token"

    def test_unknown_message(self, store):
        with pytest.raises(MessageNotFound) as exc_info:
            deliver(_job("msg-404"), FakeSender())

        assert exc_info.value.retryable is False

    def test_logs_never_contain_recipient_text_or_token(self, store):
        store.add_tenant(access_token_enc="mock_secret_token")
        message = store.add_outbound(text="my private words")

        with captured_logs("flowrelay.domain.delivery") as lines:
            deliver(_job(message.id, text="my private words"), FakeSender())

        output = "\n".join(lines)
        assert lines
        assert RECIPIENT not in output
        assert "15550001111" not in output
        assert "my private words" not in output
        assert "mock_secret_token" not in output


class TestDispatchThenDeliver:
    def test_inline_queue_delivers_dispatched_message(self, store):
        sender = FakeSender([SendSuccess(external_message_id="wamid.1")])
        client = TasksClient("inline", sleep=lambda _: None)
        client.register_handler(DELIVERY_TASK_PATH, make_delivery_handler(sender))

        result = dispatch(
            client, TENANT, "+1555", OutboundContent(kind="text", text="hi"), idempotency_key="k1"
        )
        client.join()

        stored = store.messages[result.message_id]
        assert stored.status == "sent"
        assert stored.external_message_id == "wamid.1"
        assert len(sender.calls) == 1

        # Replaying the dispatch sends nothing more.
        dispatch(client, TENANT, "+1555", OutboundContent(kind="text", text="hi"), idempotency_key="k1")
        client.join()
        assert len(sender.calls) == 1

    def test_inline_queue_retries_with_exponential_backoff(self, store):
        sleeps = []
        sender = failing_sender(2)
        client = TasksClient("inline", sleep=sleeps.append)
        client.register_handler(DELIVERY_TASK_PATH, make_delivery_handler(sender))

        result = dispatch(
            client,
            TENANT,
            RECIPIENT,
            OutboundContent(kind="text", text="hi"),
            retry_policy=RetryPolicy(max_attempts=5, backoff_seconds=2.0),
        )
        client.join()

        assert len(sender.calls) == 3
        assert sleeps == [2.0, 4.0]
        assert store.messages[result.message_id].status == "sent"

    def test_inline_queue_gives_up_after_max_attempts(self, store):
        sleeps = []
        sender = failing_sender(10)
        client = TasksClient("inline", sleep=sleeps.append)
        client.register_handler(DELIVERY_TASK_PATH, make_delivery_handler(sender))

        result = dispatch(
            client,
            TENANT,
            RECIPIENT,
            OutboundContent(kind="text", text="hi"),
            retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=1.0),
        )
        client.join()

        assert len(sender.calls) == 3
        assert sleeps == [1.0, 2.0]
        assert store.messages[result.message_id].status == "failed"

    def test_configuration_failure_is_not_retried(self, store):
        store.add_tenant(access_token_enc=None)
        sleeps = []
        sender = FakeSender()
        client = TasksClient("inline", sleep=sleeps.append)
        client.register_handler(DELIVERY_TASK_PATH, make_delivery_handler(sender))

        result = dispatch(client, TENANT, RECIPIENT, OutboundContent(kind="text", text="hi"))
        client.join()

        assert sleeps == []
        assert sender.calls == []
        assert store.messages[result.message_id].status == "failed"
