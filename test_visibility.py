"""
Unit tests for hidden/disabled resolution and visibility filtering.
"""

from formengine.declarations import (
    AccordionGroup,
    AccordionSection,
    DataTableSection,
    FieldSetting,
    FieldsGroup,
    TabConfig,
    TabsGroup,
)
from formengine.visibility import (
    filter_visible_settings,
    predicate_context,
    resolve_disabled,
    resolve_hidden,
)


def hidden_unless_phone(values):
    return values.get('contact') != 'phone'


class TestResolve:
    """Test cases for predicate resolution."""

    def test_global_disabled_wins(self):
        assert resolve_disabled(False, {}, global_disabled=True)
        assert resolve_disabled(lambda v: False, {}, global_disabled=True)

    def test_bool_and_predicate(self):
        assert resolve_disabled(True, {})
        assert not resolve_hidden(False, {})
        assert resolve_hidden(hidden_unless_phone, {'contact': 'email'})
        assert not resolve_hidden(hidden_unless_phone, {'contact': 'phone'})

    def test_raising_predicate_is_false(self):
        def broken(values):
            raise KeyError('missing')

        assert resolve_hidden(broken, {}) is False
        assert resolve_disabled(broken, {}) is False


class TestFilterVisibleSettings:
    """Test cases for filter_visible_settings."""

    def test_hidden_leaf_is_dropped(self):
        items = [FieldSetting(name='contact'), FieldSetting(name='phone', hidden=hidden_unless_phone)]
        visible = filter_visible_settings(items, {'contact': 'email'})
        assert [fs.name for fs in visible] == ['contact']

    def test_recurses_into_groups(self):
        items = [
            FieldsGroup(fields=(FieldSetting(name='a'), FieldSetting(name='b', hidden=True))),
            TabsGroup(tabs=(
                TabConfig('One', (FieldSetting(name='c'),)),
                TabConfig('Two', (FieldSetting(name='d'),), hidden=True),
            )),
            AccordionGroup(accordion=(
                AccordionSection('S', (FieldSetting(name='e', hidden=hidden_unless_phone),)),
            )),
        ]
        visible = filter_visible_settings(items, {'contact': 'email'})

        assert [fs.name for fs in visible[0].fields] == ['a']
        assert [tab.title for tab in visible[1].tabs] == ['One']
        assert visible[2].accordion[0].fields == ()

    def test_hidden_group_is_dropped(self):
        items = [FieldsGroup(fields=(FieldSetting(name='a'),), hidden=True)]
        assert filter_visible_settings(items, {}) == []

    def test_table_fields_are_left_for_row_filtering(self):
        table = DataTableSection(data_source='items', fields=(FieldSetting(name='x', hidden=True),))
        visible = filter_visible_settings([table], {})
        assert visible[0].fields == table.fields


class TestPredicateContext:
    """Test cases for row-level predicate values."""

    def test_top_level_table_uses_form_values(self):
        ctx = predicate_context({'a': 1}, 'items')
        assert ctx == {'a': 1}

    def test_nested_table_exposes_parent_row(self):
        values = {'items': [{'kind': 'part'}]}
        ctx = predicate_context(values, 'items.0.parts')
        assert ctx['kind'] == 'part'
        assert ctx['items'] == [{'kind': 'part'}]

    def test_live_edits_win_over_original(self):
        original = {'items': [{'kind': 'service', 'note': 'orig'}]}
        values = {'items': [{'kind': 'part'}]}
        ctx = predicate_context(values, 'items.0.parts', original)
        assert ctx['kind'] == 'part'
        assert ctx['note'] == 'orig'

    def test_row_values_are_laid_over(self):
        ctx = predicate_context({'kind': 'a'}, 'items', row_values={'kind': 'b'})
        assert ctx['kind'] == 'b'
