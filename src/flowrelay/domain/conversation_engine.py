"""Conversation engine: decide the reply to one inbound event.

Strategies run in order and the first to produce a template wins:
1. button branch (only when the event carries a payload id)
2. flow rules, first match
3. flow fallback template

The winning template becomes the customer's last template, and its state
label (button nextState or rule setState) is applied. No strategy winning
means no reply and no state change beyond creating the state row.
"""

from typing import Literal

from psycopg2.extensions import cursor as PgCursor

from flowrelay.infra.repositories import conversation_state_repository, templates_repository
from flowrelay.observability.logging import get_logger
from flowrelay.observability.redaction import safe_log_context

from .buttons import resolve_button_branch
from .models import ConversationState, Decision, Template
from .rules import normalize_text, select_fallback, select_rule_reply
from .templates import render, reply_buttons

logger = get_logger(__name__)

Strategy = Literal["button", "rule", "fallback"]


def handle_inbound(
    cur: PgCursor,
    tenant_id: str,
    customer_id: str,
    text: str | None = None,
    payload_id: str | None = None,
) -> Decision | None:
    """Pick a reply for an inbound message and record the state transition.

    Args:
        cur: Database cursor (within transaction).
        tenant_id: Tenant identifier.
        customer_id: Customer channel id (e.g. WhatsApp wa_id). NEVER logged.
        text: Free text, or the clicked button's title.
        payload_id: Clicked button/list option id, if any.

    Returns:
        The reply decision, or None for silence.
    """
    state = conversation_state_repository.get_or_create_state(cur, tenant_id, customer_id)

    branch = resolve_button_branch(cur, state, payload_id)
    if branch is not None:
        return _reply(cur, state, branch.template, branch.next_state, "button")

    flow = templates_repository.get_flow(cur, tenant_id)
    if flow is None:
        return None

    match = select_rule_reply(cur, flow, normalize_text(text))
    if match is not None:
        return _reply(cur, state, match.template, match.set_state, "rule")

    fallback = select_fallback(cur, flow)
    if fallback is not None:
        return _reply(cur, state, fallback.template, None, "fallback")

    logger.info(
        "no reply for inbound message",
        extra={
            "extra_fields": safe_log_context(
                tenant_id=tenant_id, has_payload=bool(payload_id)
            )
        },
    )
    return None


def _reply(
    cur: PgCursor,
    state: ConversationState,
    template: Template,
    new_state: str | None,
    strategy: Strategy,
) -> Decision:
    updated = state.advance(template.key, new_state)
    conversation_state_repository.save_state(cur, updated)

    logger.info(
        "reply selected",
        extra={
            "extra_fields": safe_log_context(
                tenant_id=state.tenant_id,
                strategy=strategy,
                template_key=template.key,
                template_version=template.version,
                state_changed=updated.state != state.state,
            )
        },
    )

    if template.kind == "interactive_button":
        return Decision(
            reply_kind="interactive_button",
            reply_text=render(template.body),
            template_key=template.key,
            buttons=reply_buttons(template),
        )
    return Decision(reply_kind="text", reply_text=render(template.body), template_key=template.key)
