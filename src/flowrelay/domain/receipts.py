"""Provider status receipts (delivered, read, failed, ...)."""

from psycopg2.extensions import cursor as PgCursor

from flowrelay.infra.repositories import messages_repository
from flowrelay.whatsapp.models import StatusReceipt


def reconcile_status(cur: PgCursor, tenant_id: str, receipt: StatusReceipt) -> int:
    """Copy the receipt's status onto our outbound message(s).

    The write is unconditional: receipts can arrive out of order and a late
    "delivered" will replace an earlier-applied "read". An unknown provider
    id updates nothing.

    Returns:
        Number of messages updated.
    """
    return messages_repository.apply_status_receipt(
        cur, tenant_id, receipt.external_message_id, receipt.status
    )
