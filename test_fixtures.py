"""
Test fixtures for form engine tests.

Provides reusable declarations, data documents and an engine factory that keeps
state in a plain dict instead of Streamlit's session_state.
"""

from typing import Any, Dict, List, Optional

from formengine import constraints as c
from formengine.declarations import (
    AccordionGroup,
    AccordionSection,
    DataTableSection,
    FieldSetting,
    SettingsItem,
    TabConfig,
    TabsGroup,
)
from formengine.form_engine import FormEngine

TEST_ENGINE_SETTINGS = {
    'debounce_ms': 0,
    'chunk_threshold': 48,
    'first_chunk': 16,
    'chunk_step': 24,
    'focus_max_tries': 3,
    'stable_frames': 2,
    'max_layout_frames': 5,
}


def make_engine(items: List[Any], source: Optional[Dict[str, Any]] = None, **kwargs) -> FormEngine:
    """FormEngine backed by a dict, with fast navigation settings."""
    kwargs.setdefault('storage', {})
    kwargs.setdefault('engine_settings', dict(TEST_ENGINE_SETTINGS))
    return FormEngine(items, data_source=source, **kwargs)


class FormFixtures:
    """Declarations used across engine, navigator and renderer tests."""

    @staticmethod
    def items_table(with_parts: bool = False) -> DataTableSection:
        fields: List[SettingsItem] = [
            FieldSetting(name='name', label='Name', validation=lambda: c.string().required("Name is required")),
            FieldSetting(name='qty', label='Qty', type='number',
                         validation=lambda: c.number().required("Qty is required").ge(1, "At least 1")),
        ]
        if with_parts:
            fields.append(DataTableSection(
                data_source='parts',
                header='Parts',
                fields=(FieldSetting(name='sku', label='SKU',
                                     validation=lambda: c.string().required("SKU is required")),),
            ))
        return DataTableSection(data_source='items', header='Items', fields=tuple(fields))

    @staticmethod
    def items_document() -> Dict[str, Any]:
        return {'items': [{'name': 'A', 'qty': 1}, {'name': 'B', 'qty': 2}, {'name': 'C', 'qty': 3}]}

    @staticmethod
    def nested_document() -> Dict[str, Any]:
        return {'items': [
            {'name': 'A', 'qty': 1, 'parts': [{'sku': 'A-1'}]},
            {'name': 'B', 'qty': 2, 'parts': []},
        ]}

    @staticmethod
    def contact_tabs() -> List[SettingsItem]:
        return [TabsGroup(tabs=(
            TabConfig('General', (FieldSetting(name='name', label='Name'),)),
            TabConfig('Contact', (
                FieldSetting(name='email', label='Email', type='email',
                             validation=lambda: c.string().required("Email is required").email()),
            )),
        ))]

    @staticmethod
    def contact_method_fields() -> List[SettingsItem]:
        return [
            FieldSetting(name='contact', label='Contact', type='radio-group', options=()),
            FieldSetting(name='phone', label='Phone',
                         hidden=lambda values: values.get('contact') != 'phone',
                         validation=lambda: c.string().required("Phone is required")),
        ]

    @staticmethod
    def payment_accordion(allow_multiple: bool = False) -> List[SettingsItem]:
        return [AccordionGroup(allow_multiple=allow_multiple, accordion=(
            AccordionSection('Terms', (FieldSetting(name='method', label='Method'),), id='terms', open=True),
            AccordionSection('Delivery', (
                FieldSetting(name='notes', label='Notes',
                             validation=lambda: c.string().required("Notes are required")),
            ), id='delivery'),
        ))]
