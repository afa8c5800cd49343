"""
Hidden/disabled predicate resolution and visibility filtering.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

from .declarations import (
    AccordionGroup,
    FieldsGroup,
    Predicate,
    SettingsItem,
    TabsGroup,
)
from .path_utils import get_deep_value, join_path, split_path

logger = logging.getLogger(__name__)


def _evaluate(prop: Predicate, values: Dict[str, Any], what: str) -> bool:
    if callable(prop):
        try:
            return bool(prop(values))
        except Exception as e:
            logger.warning(f"{what} predicate raised {type(e).__name__}: {e}; treating as False")
            return False
    return bool(prop)


def resolve_disabled(prop: Predicate, values: Dict[str, Any], global_disabled: bool = False) -> bool:
    """The form-wide flag wins; otherwise a bool or predicate of the values decides."""
    if global_disabled:
        return True
    return _evaluate(prop, values, "disabled")


def resolve_hidden(prop: Predicate, values: Dict[str, Any]) -> bool:
    return _evaluate(prop, values, "hidden")


def is_item_hidden(item: SettingsItem, values: Dict[str, Any]) -> bool:
    return resolve_hidden(getattr(item, 'hidden', False), values)


def filter_visible_settings(items: Sequence[SettingsItem], values: Dict[str, Any]) -> List[SettingsItem]:
    """
    Drop hidden items, recursing through groups, tabs and accordion sections.

    Table fields are left as declared: they are filtered per row context, since
    their predicates see the row's values.
    """
    out: List[SettingsItem] = []
    for item in items or ():
        if is_item_hidden(item, values):
            continue
        if isinstance(item, FieldsGroup):
            out.append(replace(item, fields=tuple(filter_visible_settings(item.fields, values))))
        elif isinstance(item, TabsGroup):
            tabs = tuple(
                replace(tab, fields=tuple(filter_visible_settings(tab.fields, values)))
                for tab in item.tabs if not resolve_hidden(tab.hidden, values)
            )
            out.append(replace(item, tabs=tabs))
        elif isinstance(item, AccordionGroup):
            sections = tuple(
                replace(sec, fields=tuple(filter_visible_settings(sec.fields, values)))
                for sec in item.accordion if not resolve_hidden(sec.hidden, values)
            )
            out.append(replace(item, accordion=sections))
        else:
            out.append(item)
    return out


def predicate_context(values: Dict[str, Any], table_key: str, original: Optional[Dict[str, Any]] = None,
                      row_values: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Values a table's row-level predicates evaluate against.

    For a nested table (`parent.<i>.child`) the parent row is exposed at top level,
    merging its committed values with its live edits (live edits win). Row values,
    when given, are laid over the result.
    """
    ctx: Dict[str, Any] = dict(values or {})

    parts = split_path(table_key)
    if len(parts) >= 3 and parts[-2].isdigit():
        parent_row_path = join_path(*parts[:-1])
        from_original = get_deep_value(original or {}, parent_row_path)
        from_values = get_deep_value(values or {}, parent_row_path)
        if isinstance(from_original, dict):
            ctx.update(from_original)
        if isinstance(from_values, dict):
            ctx.update(from_values)

    if row_values:
        ctx.update(row_values)
    return ctx
