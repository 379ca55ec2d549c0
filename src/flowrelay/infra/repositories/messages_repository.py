"""Message records for both directions.

Two partial unique indexes back the delivery guarantees:
- (tenant_id, idempotency_key) for outbound dispatch
- (tenant_id, external_message_id) on inbound rows, for webhook redelivery
"""

import json

from psycopg2.extensions import cursor as PgCursor

from flowrelay.domain.models import (
    STATUS_FAILED,
    STATUS_QUEUED,
    STATUS_RECEIVED,
    STATUS_SENT,
    Message,
    ReplyButton,
)

_MESSAGE_COLUMNS = """
id, tenant_id, direction, body, type, status, external_message_id, idempotency_key, buttons
"""


def _row_to_message(row: tuple) -> Message:
    return Message(
        id=str(row[0]),
        tenant_id=str(row[1]),
        direction=row[2],
        body=row[3] or "",
        type=row[4],
        status=row[5],
        external_message_id=row[6],
        idempotency_key=row[7],
        buttons=tuple(
            ReplyButton(id=str(b["id"]), title=str(b["title"])) for b in row[8] or []
        ),
    )


def record_inbound(
    cur: PgCursor,
    *,
    tenant_id: str,
    body: str,
    message_type: str,
    external_message_id: str | None,
) -> str | None:
    """Insert an inbound message.

    Returns:
        The new message id, or None if this external id was already recorded
        for the tenant (provider redelivered the webhook).
    """
    cur.execute(
        """
        INSERT INTO messages (tenant_id, direction, body, type, external_message_id, status)
        VALUES (%s, 'IN', %s, %s, %s, %s)
        ON CONFLICT (tenant_id, external_message_id)
            WHERE direction = 'IN' AND external_message_id IS NOT NULL
        DO NOTHING
        RETURNING id
        """,
        (tenant_id, body, message_type, external_message_id, STATUS_RECEIVED),
    )
    row = cur.fetchone()
    return str(row[0]) if row else None


def find_outbound_by_idempotency_key(
    cur: PgCursor, tenant_id: str, idempotency_key: str
) -> Message | None:
    cur.execute(
        f"""
        SELECT {_MESSAGE_COLUMNS} FROM messages
        WHERE tenant_id = %s AND idempotency_key = %s AND direction = 'OUT'
        """,
        (tenant_id, idempotency_key),
    )
    row = cur.fetchone()
    return _row_to_message(row) if row else None


def create_outbound(
    cur: PgCursor,
    *,
    tenant_id: str,
    body: str,
    message_type: str,
    idempotency_key: str,
    buttons: tuple[ReplyButton, ...] = (),
) -> str | None:
    """Insert a queued outbound message.

    Buttons are kept so a queued message can be re-enqueued from its row.

    Returns:
        The new message id, or None when the unique (tenant_id,
        idempotency_key) index rejected the row because a concurrent
        writer created it first.
    """
    cur.execute(
        """
        INSERT INTO messages (tenant_id, direction, body, type, buttons, idempotency_key, status)
        VALUES (%s, 'OUT', %s, %s, %s::jsonb, %s, %s)
        ON CONFLICT (tenant_id, idempotency_key) WHERE idempotency_key IS NOT NULL
        DO NOTHING
        RETURNING id
        """,
        (
            tenant_id,
            body,
            message_type,
            json.dumps([{"id": b.id, "title": b.title} for b in buttons]),
            idempotency_key,
            STATUS_QUEUED,
        ),
    )
    row = cur.fetchone()
    return str(row[0]) if row else None


def get_message(cur: PgCursor, tenant_id: str, message_id: str) -> Message | None:
    cur.execute(
        f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE tenant_id = %s AND id = %s",
        (tenant_id, message_id),
    )
    row = cur.fetchone()
    return _row_to_message(row) if row else None


def mark_sent(
    cur: PgCursor, tenant_id: str, message_id: str, external_message_id: str | None
) -> None:
    cur.execute(
        """
        UPDATE messages
        SET status = %s,
            external_message_id = COALESCE(%s, external_message_id),
            updated_at = now()
        WHERE tenant_id = %s AND id = %s
        """,
        (STATUS_SENT, external_message_id, tenant_id, message_id),
    )


def mark_failed(cur: PgCursor, tenant_id: str, message_id: str) -> None:
    """Flag a delivery attempt as failed. A message already sent stays sent."""
    cur.execute(
        """
        UPDATE messages
        SET status = %s, updated_at = now()
        WHERE tenant_id = %s AND id = %s AND status <> %s
        """,
        (STATUS_FAILED, tenant_id, message_id, STATUS_SENT),
    )


def apply_status_receipt(
    cur: PgCursor, tenant_id: str, external_message_id: str, status: str
) -> int:
    """Overwrite status on every outbound message with this provider id.

    No ordering check: a late receipt replaces a newer status.

    Returns:
        Number of messages updated (0 for an unknown provider id).
    """
    cur.execute(
        """
        UPDATE messages
        SET status = %s, updated_at = now()
        WHERE tenant_id = %s AND external_message_id = %s AND direction = 'OUT'
        """,
        (status, tenant_id, external_message_id),
    )
    return cur.rowcount
