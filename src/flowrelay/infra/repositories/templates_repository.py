"""Template and flow storage.

Uses raw SQL with psycopg2 (no ORM). JSONB columns come back as Python
lists/dicts from psycopg2's default typecasters.
"""

import json
from typing import Any, Sequence

from psycopg2.extensions import cursor as PgCursor

from flowrelay.domain.models import Flow, FlowRule, Template, TemplateButton
from flowrelay.domain.templates import infer_variables


def _row_to_template(row: tuple) -> Template:
    tenant_id, key, body, kind, variables, buttons, is_active, version = row
    return Template(
        tenant_id=str(tenant_id),
        key=key,
        body=body,
        kind=kind if kind == "interactive_button" else "text",
        variables=tuple(variables or ()),
        buttons=tuple(TemplateButton.from_dict(b) for b in buttons or ()),
        is_active=bool(is_active),
        version=int(version),
    )


def get_active_template(cur: PgCursor, tenant_id: str, key: str) -> Template | None:
    """Active template by (tenant, key); inactive or missing yields None."""
    if not key:
        return None
    cur.execute(
        """
        SELECT tenant_id, key, body, kind, variables, buttons, is_active, version
        FROM templates
        WHERE tenant_id = %s AND key = %s AND is_active = true
        """,
        (tenant_id, key),
    )
    row = cur.fetchone()
    return _row_to_template(row) if row else None


def upsert_template(
    cur: PgCursor,
    *,
    tenant_id: str,
    key: str,
    body: str,
    kind: str = "text",
    variables: Sequence[str] | None = None,
    buttons: Sequence[TemplateButton] = (),
    description: str | None = None,
    is_active: bool = True,
) -> Template:
    """Create or replace a template, bumping its version on every write.

    Variables default to the placeholders found in `body`.
    """
    declared = list(variables) if variables is not None else list(infer_variables(body))
    cur.execute(
        """
        INSERT INTO templates (
            tenant_id, key, body, kind, variables, buttons, description, is_active, version
        )
        VALUES (%s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s, 1)
        ON CONFLICT (tenant_id, key) DO UPDATE
        SET body = EXCLUDED.body,
            kind = EXCLUDED.kind,
            variables = EXCLUDED.variables,
            buttons = EXCLUDED.buttons,
            description = EXCLUDED.description,
            is_active = EXCLUDED.is_active,
            version = templates.version + 1,
            updated_at = now()
        RETURNING tenant_id, key, body, kind, variables, buttons, is_active, version
        """,
        (
            tenant_id,
            key,
            body,
            kind,
            json.dumps(declared),
            json.dumps([b.to_dict() for b in buttons]),
            description,
            is_active,
        ),
    )
    return _row_to_template(cur.fetchone())


def get_flow(cur: PgCursor, tenant_id: str) -> Flow | None:
    cur.execute(
        "SELECT rules, fallback_template_key FROM flows WHERE tenant_id = %s",
        (tenant_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    rules: list[dict[str, Any]] = row[0] or []
    return Flow(
        tenant_id=tenant_id,
        rules=tuple(FlowRule.from_dict(r) for r in rules if isinstance(r, dict)),
        fallback_template_key=row[1] or None,
    )


def upsert_flow(
    cur: PgCursor,
    *,
    tenant_id: str,
    rules: Sequence[FlowRule],
    fallback_template_key: str | None = None,
) -> Flow:
    """Replace a tenant's rule list (order preserved) and fallback."""
    cur.execute(
        """
        INSERT INTO flows (tenant_id, rules, fallback_template_key)
        VALUES (%s, %s::jsonb, %s)
        ON CONFLICT (tenant_id) DO UPDATE
        SET rules = EXCLUDED.rules,
            fallback_template_key = EXCLUDED.fallback_template_key,
            updated_at = now()
        """,
        (tenant_id, json.dumps([r.to_dict() for r in rules]), fallback_template_key),
    )
    return Flow(
        tenant_id=tenant_id,
        rules=tuple(rules),
        fallback_template_key=fallback_template_key,
    )
