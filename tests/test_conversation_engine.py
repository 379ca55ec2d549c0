"""Tests for the conversation engine (button branch -> rules -> fallback)."""

import pytest

from fakes import FAKE_CURSOR
from flowrelay.domain.buttons import resolve_button_branch
from flowrelay.domain.conversation_engine import handle_inbound
from flowrelay.domain.models import ConversationState, ReplyButton

TENANT = "tenant-1"
CUSTOMER = "15550001111"

MENU_BUTTONS = [
    {"id": "btn_orders", "title": "Orders", "nextTemplateKey": "orders", "nextState": "in_orders"},
    {"id": "btn_dead", "title": "Dead end", "nextTemplateKey": "missing"},
    {"id": "btn_none", "title": "No target"},
]


@pytest.fixture
def help_flow(store):
    """Flow [{equals:"help" -> help_menu}] with fallback `fallback`."""
    store.add_template("help_menu", "You can reply: order, status, support")
    store.add_template("fallback", "Sorry, I didn't get that. Type 'help' to see options.")
    store.set_flow(
        [{"when": {"type": "equals", "value": "help"}, "action": {"replyTemplateKey": "help_menu"}}],
        fallback="fallback",
    )
    return store


@pytest.fixture
def menu_flow(store):
    """Interactive menu reachable by "menu", with button branches."""
    store.add_template("menu", "What do you need?", kind="interactive_button", buttons=MENU_BUTTONS)
    store.add_template("orders", "Your orders: none yet")
    store.add_template("help_menu", "Help")
    store.add_template("fallback", "Sorry?")
    store.set_flow(
        [
            {"when": {"type": "equals", "value": "menu"}, "action": {"replyTemplateKey": "menu"}},
            {"when": {"type": "equals", "value": "orders"}, "action": {"replyTemplateKey": "help_menu"}},
        ],
        fallback="fallback",
    )
    return store


class TestHandleInbound:
    def test_equals_rule_then_fallback(self, help_flow):
        decision = handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="Help")

        assert decision.reply_kind == "text"
        assert decision.template_key == "help_menu"
        assert decision.reply_text == "You can reply: order, status, support"
        assert help_flow.state_of(CUSTOMER).last_template_key == "help_menu"

        decision = handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="xyz")

        assert decision.template_key == "fallback"
        assert help_flow.state_of(CUSTOMER).last_template_key == "fallback"

    def test_text_is_trimmed_before_matching(self, help_flow):
        decision = handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="  help\n")

        assert decision.template_key == "help_menu"

    def test_rule_set_state_is_applied(self, store):
        store.add_template("order_intent", "Great! Please share your product code.")
        store.set_flow(
            [
                {
                    "when": {"type": "regex", "value": r"\border\b"},
                    "action": {"replyTemplateKey": "order_intent", "setState": "awaiting_product_code"},
                }
            ]
        )

        handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="I want to ORDER")

        state = store.state_of(CUSTOMER)
        assert state.state == "awaiting_product_code"
        assert state.last_template_key == "order_intent"

    def test_silence_without_flow_still_creates_state(self, store):
        assert handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="hello") is None

        state = store.state_of(CUSTOMER)
        assert state.state == "default"
        assert state.last_template_key is None

    def test_silence_when_nothing_matches_and_no_fallback(self, store):
        store.add_template("greeting", "Hi")
        store.set_flow(
            [{"when": {"type": "equals", "value": "hi"}, "action": {"replyTemplateKey": "greeting"}}]
        )

        assert handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="bye") is None
        assert store.state_of(CUSTOMER).last_template_key is None

    def test_placeholders_are_left_unrendered(self, store):
        store.add_template("greeting", "Hi {{name}}, welcome to {{brand}}!")
        store.set_flow(
            [{"when": {"type": "contains", "value": "hi"}, "action": {"replyTemplateKey": "greeting"}}]
        )

        decision = handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="hi")

        assert decision.reply_text == "Hi {{name}}, welcome to {{brand}}!"

    def test_interactive_template_reply_carries_buttons(self, menu_flow):
        decision = handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="menu")

        assert decision.reply_kind == "interactive_button"
        assert decision.buttons == (
            ReplyButton(id="btn_orders", title="Orders"),
            ReplyButton(id="btn_dead", title="Dead end"),
            ReplyButton(id="btn_none", title="No target"),
        )
        content = decision.to_content()
        assert content.kind == "interactive_button"
        assert len(content.buttons) == 3

    def test_button_branch_short_circuits_rules(self, menu_flow):
        handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="menu")

        # The title "orders" would match the second rule; the branch wins.
        decision = handle_inbound(
            FAKE_CURSOR, TENANT, CUSTOMER, text="orders", payload_id="btn_orders"
        )

        assert decision.template_key == "orders"
        state = menu_flow.state_of(CUSTOMER)
        assert state.state == "in_orders"
        assert state.last_template_key == "orders"

    @pytest.mark.parametrize("payload_id", ["btn_unknown", "btn_dead", "btn_none"])
    def test_unresolvable_click_equals_no_payload(self, menu_flow, payload_id):
        handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="menu")
        with_payload = handle_inbound(
            FAKE_CURSOR, TENANT, CUSTOMER, text="orders", payload_id=payload_id
        )

        menu_flow.states.clear()
        handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="menu")
        without_payload = handle_inbound(FAKE_CURSOR, TENANT, CUSTOMER, text="orders")

        assert with_payload == without_payload
        assert with_payload.template_key == "help_menu"

    def test_click_without_previous_template_falls_through(self, menu_flow):
        decision = handle_inbound(
            FAKE_CURSOR, TENANT, CUSTOMER, text="xyz", payload_id="btn_orders"
        )

        assert decision.template_key == "fallback"


class TestResolveButtonBranch:
    def _state(self, last_template_key=None):
        return ConversationState(
            tenant_id=TENANT, customer_id=CUSTOMER, last_template_key=last_template_key
        )

    def test_resolves_next_template_and_state(self, menu_flow):
        branch = resolve_button_branch(FAKE_CURSOR, self._state("menu"), "btn_orders")

        assert branch.template.key == "orders"
        assert branch.next_state == "in_orders"

    def test_previous_template_must_be_interactive(self, menu_flow):
        assert resolve_button_branch(FAKE_CURSOR, self._state("orders"), "btn_orders") is None

    def test_previous_template_must_be_active(self, menu_flow):
        menu_flow.add_template("menu", "gone", kind="interactive_button", buttons=MENU_BUTTONS, is_active=False)

        assert resolve_button_branch(FAKE_CURSOR, self._state("menu"), "btn_orders") is None

    def test_no_payload_or_no_previous_template(self, menu_flow):
        assert resolve_button_branch(FAKE_CURSOR, self._state("menu"), None) is None
        assert resolve_button_branch(FAKE_CURSOR, self._state(None), "btn_orders") is None
