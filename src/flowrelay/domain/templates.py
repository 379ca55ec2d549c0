"""Template placeholder rendering.

Bodies use `{{ name }}` placeholders. Rendering never fails: a variable with
no value renders as an empty string, and a body rendered without a variable
mapping is returned untouched.
"""

import re
from typing import Mapping

from .models import ReplyButton, Template

_PLACEHOLDER = re.compile(r"{{\s*([\w.-]+)\s*}}")


def infer_variables(body: str) -> tuple[str, ...]:
    """Placeholder names in order of first appearance."""
    seen: dict[str, None] = {}
    for match in _PLACEHOLDER.finditer(body):
        seen.setdefault(match.group(1), None)
    return tuple(seen)


def render(body: str, variables: Mapping[str, object] | None = None) -> str:
    """Substitute placeholders in `body` from `variables`."""
    if variables is None:
        return body

    def _sub(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, body)


def reply_buttons(template: Template) -> tuple[ReplyButton, ...]:
    """Outbound `{id, title}` pairs for an interactive template."""
    return tuple(ReplyButton(id=b.id, title=b.title) for b in template.buttons)
