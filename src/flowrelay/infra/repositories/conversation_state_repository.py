"""Conversation state store: one row per (tenant, customer).

No row locks are taken. Two inbound messages from the same customer handled
at the same time both read, decide and write; the last write wins.
"""

from psycopg2.extensions import cursor as PgCursor

from flowrelay.domain.models import DEFAULT_STATE, ConversationState


def get_or_create_state(cur: PgCursor, tenant_id: str, customer_id: str) -> ConversationState:
    """Load the customer's state, inserting the default row on first contact."""
    cur.execute(
        """
        INSERT INTO conversation_states (tenant_id, customer_id, state)
        VALUES (%s, %s, %s)
        ON CONFLICT (tenant_id, customer_id) DO NOTHING
        """,
        (tenant_id, customer_id, DEFAULT_STATE),
    )
    cur.execute(
        """
        SELECT state, last_template_key FROM conversation_states
        WHERE tenant_id = %s AND customer_id = %s
        """,
        (tenant_id, customer_id),
    )
    state, last_template_key = cur.fetchone()
    return ConversationState(
        tenant_id=tenant_id,
        customer_id=customer_id,
        state=state or DEFAULT_STATE,
        last_template_key=last_template_key,
    )


def save_state(cur: PgCursor, state: ConversationState) -> None:
    cur.execute(
        """
        UPDATE conversation_states
        SET state = %s, last_template_key = %s, updated_at = now()
        WHERE tenant_id = %s AND customer_id = %s
        """,
        (state.state, state.last_template_key, state.tenant_id, state.customer_id),
    )
