"""Seed the demo templates and flow for one tenant.

Usage:
    DATABASE_URL=... python scripts/seed_demo_flow.py [tenant_id]

The tenant defaults to SEED_TENANT_ID, then to the oldest tenant in the
database. Running it again bumps every template's version and replaces the
flow rules. With SEED_ACCESS_TOKEN set, that token is sealed with
CREDENTIALS_KEY and stored as the tenant's access token.
"""

from __future__ import annotations

import os
import sys

DEMO_TEMPLATES = [
    {
        "key": "greeting",
        "body": "Hi {{name}} 👋, welcome to {{brand}}!",
        "variables": ["name", "brand"],
        "description": "Generic greeting",
    },
    {"key": "help_menu", "body": "You can reply: order, status, support", "variables": []},
    {"key": "order_intent", "body": "Great! Please share your product code.", "variables": []},
    {
        "key": "status_intent",
        "body": "Please share your order id to check status.",
        "variables": [],
    },
    {
        "key": "fallback",
        "body": "Sorry, I didn't get that. Type 'help' to see options.",
        "variables": [],
    },
]

DEMO_RULES = [
    {
        "when": {"type": "contains", "value": "hi"},
        "action": {"replyTemplateKey": "greeting", "setState": "welcomed"},
    },
    {"when": {"type": "contains", "value": "help"}, "action": {"replyTemplateKey": "help_menu"}},
    {
        "when": {"type": "regex", "value": r"\border\b"},
        "action": {"replyTemplateKey": "order_intent", "setState": "awaiting_product_code"},
    },
    {
        "when": {"type": "regex", "value": r"\bstatus\b"},
        "action": {"replyTemplateKey": "status_intent", "setState": "awaiting_order_id"},
    },
]

DEMO_FALLBACK_KEY = "fallback"


def main() -> None:
    if not os.environ.get("DATABASE_URL"):
        print("ERROR: DATABASE_URL not set")
        sys.exit(1)

    # Import after env validation so missing DB doesn't blow up on import
    from flowrelay.domain.models import FlowRule
    from flowrelay.infra.db import txn
    from flowrelay.infra.repositories import templates_repository, tenants_repository

    with txn() as cur:
        tenant_id = (
            (sys.argv[1] if len(sys.argv) > 1 else None)
            or os.environ.get("SEED_TENANT_ID")
            or tenants_repository.first_tenant_id(cur)
        )
        if not tenant_id:
            print("ERROR: no tenant found; create one first or pass a tenant id")
            sys.exit(2)
        if tenants_repository.get_tenant(cur, tenant_id) is None:
            print(f"ERROR: tenant {tenant_id} not found")
            sys.exit(2)

        print(f"Seeding tenant {tenant_id} ...")
        access_token = os.environ.get("SEED_ACCESS_TOKEN")
        if access_token:
            tenants_repository.set_access_token(cur, tenant_id, access_token)
            print("  access token stored (sealed)")
        for row in DEMO_TEMPLATES:
            template = templates_repository.upsert_template(
                cur,
                tenant_id=tenant_id,
                key=row["key"],
                body=row["body"],
                variables=row["variables"],
                description=row.get("description"),
            )
            print(f"  template {template.key} v{template.version}")

        flow = templates_repository.upsert_flow(
            cur,
            tenant_id=tenant_id,
            rules=[FlowRule.from_dict(rule) for rule in DEMO_RULES],
            fallback_template_key=DEMO_FALLBACK_KEY,
        )

    print(f"Seed complete: {len(flow.rules)} rules, fallback={flow.fallback_template_key}")


if __name__ == "__main__":
    main()
