"""Flow rule matching.

Rules are evaluated in document order and the first rule that both matches
the inbound text and points at an active template wins. A rule whose template
is missing or inactive is skipped as if it had not matched.
"""

import re
from dataclasses import dataclass
from functools import lru_cache

from psycopg2.extensions import cursor as PgCursor

from flowrelay.infra.repositories import templates_repository
from flowrelay.observability.logging import get_logger
from flowrelay.observability.redaction import safe_log_context

from .models import Flow, FlowRule, MatchType, Template

logger = get_logger(__name__)


@dataclass(frozen=True)
class RuleMatch:
    """Template picked from a flow, and the state label to move to (if any).

    rule_index is None when the tenant's fallback template was used.
    """

    template: Template
    set_state: str | None = None
    rule_index: int | None = None


def normalize_text(text: str | None) -> str:
    return (text or "").strip()


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return None


def rule_matches(rule: FlowRule, text: str) -> bool:
    """Whether `rule` matches already-normalized inbound `text`.

    An invalid regex never matches; it does not raise.
    """
    if not rule.value:
        return False

    if rule.match_type is MatchType.CONTAINS:
        return bool(text) and rule.value.lower() in text.lower()

    if rule.match_type is MatchType.REGEX:
        pattern = _compile(rule.value)
        return pattern is not None and pattern.search(text) is not None

    return text.lower() == rule.value.lower()


def select_rule_reply(cur: PgCursor, flow: Flow, text: str) -> RuleMatch | None:
    """First matching rule with a resolvable template, or None."""
    for index, rule in enumerate(flow.rules):
        if not rule_matches(rule, text):
            continue

        template = templates_repository.get_active_template(
            cur, flow.tenant_id, rule.reply_template_key
        )
        if template is None:
            logger.info(
                "matched rule skipped: template not active",
                extra={
                    "extra_fields": safe_log_context(
                        tenant_id=flow.tenant_id,
                        rule_index=index,
                        template_key=rule.reply_template_key,
                    )
                },
            )
            continue

        return RuleMatch(template=template, set_state=rule.set_state, rule_index=index)

    return None


def select_fallback(cur: PgCursor, flow: Flow) -> RuleMatch | None:
    """Tenant's fallback template, when set and active."""
    if not flow.fallback_template_key:
        return None
    template = templates_repository.get_active_template(
        cur, flow.tenant_id, flow.fallback_template_key
    )
    if template is None:
        return None
    return RuleMatch(template=template)
