"""Tenant lookups, plus storing a tenant's access token sealed.

Onboarding lives elsewhere; the routing core only reads a tenant's id, phone
number id and stored token.
"""

from psycopg2.extensions import cursor as PgCursor

from flowrelay.domain.models import Tenant
from flowrelay.infra.credentials import seal_token

_SELECT_TENANT = """
SELECT id, phone_number_id, access_token_enc
FROM tenants
"""


def _row_to_tenant(row: tuple) -> Tenant:
    return Tenant(id=str(row[0]), phone_number_id=row[1], access_token_enc=row[2])


def get_tenant(cur: PgCursor, tenant_id: str) -> Tenant | None:
    cur.execute(_SELECT_TENANT + " WHERE id = %s", (tenant_id,))
    row = cur.fetchone()
    return _row_to_tenant(row) if row else None


def get_tenant_by_phone_number_id(cur: PgCursor, phone_number_id: str) -> Tenant | None:
    """Resolve the tenant owning a Meta phone_number_id (webhook routing)."""
    cur.execute(_SELECT_TENANT + " WHERE phone_number_id = %s", (phone_number_id,))
    row = cur.fetchone()
    return _row_to_tenant(row) if row else None


def first_tenant_id(cur: PgCursor) -> str | None:
    """Oldest tenant's id (seed tooling default)."""
    cur.execute("SELECT id FROM tenants ORDER BY created_at LIMIT 1")
    row = cur.fetchone()
    return str(row[0]) if row else None


def set_access_token(cur: PgCursor, tenant_id: str, access_token: str) -> bool:
    """Seal `access_token` and store it on the tenant.

    Returns:
        False if the tenant does not exist.
    """
    cur.execute(
        """
        UPDATE tenants
        SET access_token_enc = %s, updated_at = now()
        WHERE id = %s
        """,
        (seal_token(access_token), tenant_id),
    )
    return cur.rowcount == 1
