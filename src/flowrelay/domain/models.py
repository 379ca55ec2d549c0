"""Domain records for tenants, templates, flows, conversation state and messages.

Rows are loaded by the repositories into these frozen dataclasses; mutations go
back through the repositories, never by editing an instance in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Literal

ReplyKind = Literal["text", "interactive_button"]
Direction = Literal["IN", "OUT"]

REPLY_KINDS: frozenset[str] = frozenset({"text", "interactive_button"})

DEFAULT_STATE = "default"

# Message.status values written by this service. Receipts may write others
# ("delivered", "read", ...) verbatim.
STATUS_QUEUED = "queued"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_RECEIVED = "received"


class MatchType(str, Enum):
    """How a flow rule compares its value against inbound text."""

    EQUALS = "equals"
    CONTAINS = "contains"
    REGEX = "regex"

    @classmethod
    def from_raw(cls, value: Any) -> MatchType:
        """Decode a stored match type; anything unrecognized means equals."""
        try:
            return cls(value)
        except ValueError:
            return cls.EQUALS


@dataclass(frozen=True)
class Tenant:
    """Only the parts of a tenant the routing core needs."""

    id: str
    phone_number_id: str
    access_token_enc: str | None = None


@dataclass(frozen=True)
class TemplateButton:
    id: str
    title: str
    next_template_key: str | None = None
    next_state: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TemplateButton:
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            next_template_key=data.get("nextTemplateKey") or None,
            next_state=data.get("nextState") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "title": self.title}
        if self.next_template_key:
            data["nextTemplateKey"] = self.next_template_key
        if self.next_state:
            data["nextState"] = self.next_state
        return data


@dataclass(frozen=True)
class Template:
    tenant_id: str
    key: str
    body: str
    kind: ReplyKind = "text"
    variables: tuple[str, ...] = ()
    buttons: tuple[TemplateButton, ...] = ()
    is_active: bool = True
    version: int = 1

    def find_button(self, button_id: str) -> TemplateButton | None:
        for button in self.buttons:
            if button.id == button_id:
                return button
        return None


@dataclass(frozen=True)
class FlowRule:
    """One `{when: {type, value}, action: {replyTemplateKey, setState?}}` entry."""

    match_type: MatchType
    value: str
    reply_template_key: str
    set_state: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlowRule:
        when = data.get("when") or {}
        action = data.get("action") or {}
        return cls(
            match_type=MatchType.from_raw(when.get("type")),
            value=str(when.get("value") or ""),
            reply_template_key=str(action.get("replyTemplateKey") or ""),
            set_state=action.get("setState") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        action: dict[str, Any] = {"replyTemplateKey": self.reply_template_key}
        if self.set_state:
            action["setState"] = self.set_state
        return {
            "when": {"type": self.match_type.value, "value": self.value},
            "action": action,
        }


@dataclass(frozen=True)
class Flow:
    tenant_id: str
    rules: tuple[FlowRule, ...] = ()
    fallback_template_key: str | None = None


@dataclass(frozen=True)
class ConversationState:
    """Per (tenant, customer) pointer used for branching and state labels."""

    tenant_id: str
    customer_id: str
    state: str = DEFAULT_STATE
    last_template_key: str | None = None

    def advance(self, template_key: str, new_state: str | None = None) -> ConversationState:
        """State after sending `template_key`, optionally moving to `new_state`."""
        return replace(
            self,
            last_template_key=template_key,
            state=new_state or self.state,
        )


@dataclass(frozen=True)
class Message:
    id: str
    tenant_id: str
    direction: Direction
    body: str
    type: str
    status: str
    external_message_id: str | None = None
    idempotency_key: str | None = None
    buttons: tuple[ReplyButton, ...] = ()

    def to_content(self) -> OutboundContent:
        """Rebuild the outbound content this row was created from."""
        kind = self.type if self.type in REPLY_KINDS else "text"
        return OutboundContent(kind=kind, text=self.body, buttons=self.buttons)  # type: ignore[arg-type]


@dataclass(frozen=True)
class ReplyButton:
    id: str
    title: str


@dataclass(frozen=True)
class OutboundContent:
    """What gets sent: plain text, or body text with reply buttons."""

    kind: ReplyKind
    text: str
    buttons: tuple[ReplyButton, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "text": self.text,
            "buttons": [{"id": b.id, "title": b.title} for b in self.buttons],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OutboundContent:
        kind = data.get("kind") or "text"
        if kind not in REPLY_KINDS:
            raise ValueError(f"Unsupported content kind: {kind}")
        buttons = tuple(
            ReplyButton(id=str(b["id"]), title=str(b["title"]))
            for b in data.get("buttons") or []
        )
        return cls(kind=kind, text=str(data.get("text") or ""), buttons=buttons)


@dataclass(frozen=True)
class Decision:
    """Reply chosen by the conversation engine for one inbound event."""

    reply_kind: ReplyKind
    reply_text: str
    template_key: str
    buttons: tuple[ReplyButton, ...] = field(default=())

    def to_content(self) -> OutboundContent:
        return OutboundContent(kind=self.reply_kind, text=self.reply_text, buttons=self.buttons)


@dataclass(frozen=True)
class DispatchResult:
    """Reference returned to dispatch callers, before any delivery happens.

    duplicate is True when the key was already used and no new message was
    created.
    """

    message_id: str | None
    idempotency_key: str
    duplicate: bool = False
