"""Button-click branching.

A click is only meaningful relative to the interactive template the customer
last received. Any gap (no previous template, not interactive, unknown button,
no or inactive next template) yields None so the caller falls through to
rule matching.
"""

from dataclasses import dataclass

from psycopg2.extensions import cursor as PgCursor

from flowrelay.infra.repositories import templates_repository

from .models import ConversationState, Template


@dataclass(frozen=True)
class ButtonBranch:
    template: Template
    next_state: str | None = None


def resolve_button_branch(
    cur: PgCursor,
    state: ConversationState,
    payload_id: str | None,
) -> ButtonBranch | None:
    if not payload_id or not state.last_template_key:
        return None

    previous = templates_repository.get_active_template(
        cur, state.tenant_id, state.last_template_key
    )
    if previous is None or previous.kind != "interactive_button":
        return None

    button = previous.find_button(payload_id)
    if button is None or not button.next_template_key:
        return None

    next_template = templates_repository.get_active_template(
        cur, state.tenant_id, button.next_template_key
    )
    if next_template is None:
        return None

    return ButtonBranch(template=next_template, next_state=button.next_state)
