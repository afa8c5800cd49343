"""
Unit tests for revealing and focusing invalid fields.
"""

import asyncio

import pytest

from formengine.error_navigator import (
    ErrorNavigator,
    FocusRegistry,
    PanelState,
    format_summary_value,
    pretty_label,
    to_summary_items,
)
from formengine.form_state import FormState
from test_fixtures import FormFixtures


class FakeHandle:
    """Control handle that records calls and reports a fixed height."""

    def __init__(self, heights=None):
        self.calls = []
        self.heights = list(heights or [])

    def scroll_to_center(self):
        self.calls.append('scroll')

    def layout_height(self):
        return self.heights.pop(0) if self.heights else 38.0

    def focus(self):
        self.calls.append('focus')


@pytest.fixture
def state():
    return FormState({}, 'nav')


@pytest.fixture
def navigator(state):
    return ErrorNavigator(FocusRegistry(), PanelState(state), state,
                          max_tries=3, max_layout_frames=5, frame_interval=0)


class TestReveal:
    """Test cases for opening panels on the way to a field."""

    def test_switches_tab(self, navigator):
        navigator.reveal('email', FormFixtures.contact_tabs(), {})

        assert navigator.panels.active_tab('root::tabs-0') == 1
        assert navigator.pending_path == 'email'

    def test_opens_section_and_collapses_others_when_single_open(self, navigator):
        navigator.panels.set_open('root::acc-0', 'terms', True, allow_multiple=False)

        navigator.reveal('notes', FormFixtures.payment_accordion(), {})

        assert navigator.panels.open_sections('root::acc-0') == ['delivery']

    def test_multi_open_accordion_keeps_others(self, navigator):
        navigator.panels.set_open('root::acc-0', 'terms', True, allow_multiple=True)

        navigator.reveal('notes', FormFixtures.payment_accordion(allow_multiple=True), {})

        assert navigator.panels.open_sections('root::acc-0') == ['terms', 'delivery']

    def test_multi_open_accordion_opens_every_section_with_errors(self, navigator):
        navigator.state.errors = {'method': 'Method is required', 'notes': 'Notes are required'}

        navigator.reveal('notes', FormFixtures.payment_accordion(allow_multiple=True), {})

        assert navigator.panels.open_sections('root::acc-0') == ['terms', 'delivery']

    def test_unknown_path_only_records_pending(self, navigator):
        navigator.reveal('missing', FormFixtures.contact_tabs(), {})
        assert navigator.panels.active_tab('root::tabs-0') == 0
        assert navigator.pending_path == 'missing'


class TestFocus:
    """Test cases for asynchronous and polled focusing."""

    def test_focus_mounted_control(self, navigator):
        handle = FakeHandle()
        navigator.registry.register('email', handle)
        navigator.reveal('email', FormFixtures.contact_tabs(), {})

        assert asyncio.run(navigator.focus_path('email')) is True
        assert handle.calls == ['scroll', 'focus']
        assert navigator.pending_path is None

    def test_waits_for_layout_to_settle(self, navigator):
        handle = FakeHandle(heights=[10, 30, 30, 30])
        navigator.registry.register('a', handle)

        assert asyncio.run(navigator.focus_path('a')) is True
        assert handle.heights == []

    def test_missing_control_gives_up_silently(self, navigator):
        navigator.reveal('email', FormFixtures.contact_tabs(), {})

        assert asyncio.run(navigator.focus_path('email')) is False
        assert navigator.pending_path is None

    def test_navigate_uses_first_invalid_field(self, navigator):
        handle = FakeHandle()
        navigator.registry.register('email', handle)

        focused = asyncio.run(navigator.navigate([{'field': 'email'}, {'field': 'name'}],
                                                 FormFixtures.contact_tabs(), {}))

        assert focused
        assert navigator.panels.active_tab('root::tabs-0') == 1

    def test_navigate_without_errors(self, navigator):
        assert asyncio.run(navigator.navigate([], [], {})) is False

    def test_poll_pending_focuses_when_mounted(self, navigator):
        navigator.reveal('email', [], {})
        assert navigator.poll_pending() is False

        handle = FakeHandle()
        navigator.registry.register('email', handle)

        assert navigator.poll_pending() is True
        assert handle.calls == ['scroll', 'focus']
        assert navigator.pending_path is None

    def test_poll_pending_gives_up_after_max_tries(self, navigator):
        navigator.reveal('email', [], {})
        for _ in range(3):
            navigator.poll_pending()
        assert navigator.pending_path is None


class TestPanelState:
    """Test cases for persisted tab and section state."""

    def test_tabs_default_to_first(self, state):
        panels = PanelState(state)
        assert panels.active_tab('root::tabs-0') == 0
        panels.set_active_tab('root::tabs-0', 2)
        assert panels.active_tab('root::tabs-0') == 2

    def test_close_section(self, state):
        panels = PanelState(state)
        panels.set_open('g', 'a', True, allow_multiple=True)
        panels.set_open('g', 'b', True, allow_multiple=True)
        panels.set_open('g', 'a', False, allow_multiple=True)
        assert panels.open_sections('g') == ['b']
        assert not panels.is_open('g', 'a')

    def test_reset(self, state):
        panels = PanelState(state)
        panels.set_active_tab('t', 1)
        panels.reset()
        assert panels.active_tab('t') == 0


class TestSummaryFormatting:
    """Test cases for error summary labels and values."""

    def test_pretty_label(self):
        assert pretty_label('items.0.unit_price') == 'Unit price'
        assert pretty_label('contact-method') == 'Contact method'
        assert pretty_label('customer.vatId') == 'Vat Id'

    def test_format_summary_value(self):
        assert format_summary_value(None) == '—'
        assert format_summary_value('') == '“”'
        assert format_summary_value('text') == 'text'
        assert format_summary_value(3) == '3'
        assert format_summary_value(['a', 'b']) == '["a", "b"]'

    def test_long_values_are_truncated(self):
        assert len(format_summary_value('x' * 200)) == 200
        text = format_summary_value(list(range(100)))
        assert len(text) == 118
        assert text.endswith('…')

    def test_to_summary_items(self):
        items = to_summary_items({'customer.name': 'Required'}, {'customer': {'name': None}})
        assert items[0].label == 'Name'
        assert items[0].value_text == '—'
        assert items[0].message == 'Required'
