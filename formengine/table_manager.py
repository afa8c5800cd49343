"""
Row lifecycle for editable data tables.

Each table instance is addressed by its absolute key ("items", "items.0.sub").
A table has committed rows, at most one active (selected) row whose fields are
edited in place at `key.<i>.<field>`, and a draft buffer at `key.<field>` used to
compose a new row. Committed rows live in the table data map; the value tree
mirrors them and additionally carries uncommitted edits of the active row.
"""

import re
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from .declarations import (
    BOOLEAN_TYPES,
    DataTableContext,
    FieldSetting,
    SelectOption,
    iter_tables,
    to_leaf_field_settings,
)
from .model_builder import FieldError, validate_fields
from .path_utils import get_deep_value, is_populated, join_path, set_deep_value
from .visibility import filter_visible_settings, predicate_context
from .form_state import FormState

logger = logging.getLogger(__name__)

# Side maps keyed by table/row paths; all are re-indexed together
TABLE_SIDE_MAPS = ('table_data_map', 'active_row_index_map', 'row_snapshots',
                   'last_processed_row', 'table_version_map')


@dataclass
class RowActionResult:
    """Outcome of a row lifecycle transition."""
    ok: bool
    errors: List[FieldError] = field(default_factory=list)
    message: str = ""
    row: Optional[Dict[str, Any]] = None


# -- value helpers ------------------------------------------------------------

def is_boolean_control(fs: FieldSetting) -> bool:
    return fs.type in BOOLEAN_TYPES


def empty_for(fs: FieldSetting) -> Any:
    """Value a cleared input holds: False for boolean controls, "" otherwise."""
    return False if is_boolean_control(fs) else ""


def _parse_number(text: str) -> Any:
    stripped = text.strip()
    try:
        return int(stripped)
    except ValueError:
        pass
    try:
        return float(stripped)
    except ValueError:
        return text


def normalize_by_type(fs: FieldSetting, value: Any) -> Any:
    """
    Normalize a value before it is committed into a row.

    Dates become ISO strings; for number fields, blanks become None and numeric
    strings become numbers. Anything else passes through.
    """
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if fs.type == 'number':
        if value is None or value == "":
            return None
        if isinstance(value, str):
            return _parse_number(value)
    return value


def coerce_change_value(fs: FieldSetting, raw: Any) -> Any:
    """
    Turn whatever a control reports into the value to store.

    Accepts plain values, event-like mappings ({'target': {'checked'|'value'}}) and
    option objects, which are reduced to their `value`.
    """
    value = raw
    if isinstance(value, dict) and 'target' in value and isinstance(value['target'], dict):
        target = value['target']
        value = target.get('checked') if is_boolean_control(fs) else target.get('value')

    if isinstance(value, SelectOption):
        value = value.value
    elif fs.type == 'dropdown' and isinstance(value, dict) and 'value' in value:
        value = value['value']
    elif isinstance(value, (list, tuple)):
        value = [v.value if isinstance(v, SelectOption) else v for v in value]

    if is_boolean_control(fs):
        return bool(value)
    if fs.type == 'number':
        if value is None or value == "":
            return ""
        return normalize_by_type(fs, value)
    if value is None:
        return ""
    return normalize_by_type(fs, value)


# -- path re-indexing ---------------------------------------------------------

def _row_pattern(base_key: str):
    return re.compile(rf"^{re.escape(base_key)}\.(\d+)(\.|$)")


def shift_nested_table_keys(mapping: Dict[str, Any], base_key: str, start_index: int, delta: int) -> Dict[str, Any]:
    """
    Re-index keys of the form `base.<i>...` for every i >= start_index by `delta`.

    Used after a row is inserted (+1 from 0) or deleted (-1 from index + 1) so that
    state keyed by child paths follows its row.
    """
    pattern = _row_pattern(base_key)
    out: Dict[str, Any] = {}
    for key, value in mapping.items():
        match = pattern.match(key)
        if match and int(match.group(1)) >= start_index:
            index = int(match.group(1)) + delta
            out[f"{base_key}.{index}{key[match.end(1):]}"] = value
        else:
            out[key] = value
    return out


def drop_nested_keys_for_index(mapping: Dict[str, Any], base_key: str, index: int) -> Dict[str, Any]:
    """Remove every key living under row `index` of table `base_key`."""
    pattern = _row_pattern(base_key)
    out: Dict[str, Any] = {}
    for key, value in mapping.items():
        match = pattern.match(key)
        if match and int(match.group(1)) == index:
            continue
        out[key] = value
    return out


class TableRowManager:
    """Row selection, add, update, delete and cancel for table instances."""

    def __init__(self, state: FormState, source_getter: Optional[Callable[[], Dict[str, Any]]] = None):
        self.state = state
        self._source_getter = source_getter or (lambda: {})

    # -- reads ----------------------------------------------------------------

    def rows(self, table_key: str) -> List[Dict[str, Any]]:
        """Committed rows of a table."""
        table_map = self.state.side_map('table_data_map')
        if table_key in table_map:
            return list(table_map[table_key] or [])
        rows = get_deep_value(self.state.values, table_key)
        return list(rows) if isinstance(rows, list) else []

    def active_index(self, table_key: str) -> Optional[int]:
        return self.state.side_map('active_row_index_map').get(table_key)

    def version(self, table_key: str) -> int:
        return self.state.side_map('table_version_map').get(table_key, 0)

    def context_values(self, ctx: DataTableContext, row_values: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return predicate_context(self.state.values, ctx.key, self._source_getter(), row_values)

    def row_fields(self, ctx: DataTableContext, row_values: Optional[Dict[str, Any]] = None) -> List[FieldSetting]:
        """Visible leaf fields of the table's rows, with paths relative to the row."""
        visible = filter_visible_settings(ctx.table.fields, self.context_values(ctx, row_values))
        return to_leaf_field_settings(visible)

    def _draft_relative(self, ctx: DataTableContext, fields: Sequence[FieldSetting]) -> Dict[str, Any]:
        rel: Dict[str, Any] = {}
        for fs in fields:
            rel = set_deep_value(rel, fs.name, self.state.get_value(join_path(ctx.key, fs.name)))
        return rel

    def _row_relative(self, ctx: DataTableContext, index: int, fields: Sequence[FieldSetting]) -> Dict[str, Any]:
        rel: Dict[str, Any] = {}
        for fs in fields:
            rel = set_deep_value(rel, fs.name, self.state.get_value(join_path(ctx.key, index, fs.name)))
        return rel

    def has_draft(self, ctx: DataTableContext) -> bool:
        """True when any draft input of the table holds an entered value."""
        for fs in to_leaf_field_settings(ctx.table.fields):
            if is_populated(self.state.get_value(join_path(ctx.key, fs.name))):
                return True
        return False

    # -- button state ---------------------------------------------------------

    def can_add(self, ctx: DataTableContext, disabled: bool = False) -> bool:
        return not disabled and self.active_index(ctx.key) is None and self.has_draft(ctx)

    def can_update(self, ctx: DataTableContext, disabled: bool = False) -> bool:
        return not disabled and self.active_index(ctx.key) is not None

    def can_delete(self, ctx: DataTableContext, disabled: bool = False) -> bool:
        return self.can_update(ctx, disabled)

    def can_cancel(self, ctx: DataTableContext) -> bool:
        return self.active_index(ctx.key) is not None or self.has_draft(ctx)

    # -- validation -----------------------------------------------------------

    def validate_draft(self, ctx: DataTableContext) -> List[FieldError]:
        """Validate the draft buffer alone; error paths are absolute (`key.field`)."""
        draft = self._draft_relative(ctx, to_leaf_field_settings(ctx.table.fields))
        fields = self.row_fields(ctx, draft)
        draft = self._draft_relative(ctx, fields)
        errors = validate_fields(fields, draft, context=self.context_values(ctx, draft))
        return [FieldError(join_path(ctx.key, e.field), e.message, e.value) for e in errors]

    def validate_active_row(self, ctx: DataTableContext) -> List[FieldError]:
        """Validate only the active row's own fields; error paths are `key.<i>.field`."""
        index = self.active_index(ctx.key)
        if index is None:
            return []
        row = self._row_relative(ctx, index, to_leaf_field_settings(ctx.table.fields))
        fields = self.row_fields(ctx, row)
        row = self._row_relative(ctx, index, fields)
        errors = validate_fields(fields, row, context=self.context_values(ctx, row))
        return [FieldError(join_path(ctx.key, index, e.field), e.message, e.value) for e in errors]

    # -- transitions ----------------------------------------------------------

    def _bump_version(self, table_key: str) -> None:
        self.state.update_side_map('table_version_map', table_key, self.version(table_key) + 1)
        self.state.bump_render_version()

    def _write_rows(self, table_key: str, rows: List[Dict[str, Any]]) -> None:
        self.state.update_side_map('table_data_map', table_key, rows)
        self.state.values = set_deep_value(self.state.values, table_key, deepcopy(rows))

    def _clear_draft(self, ctx: DataTableContext) -> None:
        drafts = dict(self.state.drafts)
        for fs in to_leaf_field_settings(ctx.table.fields):
            drafts[join_path(ctx.key, fs.name)] = empty_for(fs)
        self.state.drafts = drafts
        self.state.clear_errors(paths=[join_path(ctx.key, fs.name) for fs in to_leaf_field_settings(ctx.table.fields)])

    def _deselect(self, table_key: str) -> None:
        self.state.update_side_map('active_row_index_map', table_key, None)
        self.state.update_side_map('row_snapshots', table_key, None)
        self.state.update_side_map('last_processed_row', table_key, None)

    def _reindex(self, table_key: str, start_index: int, delta: int, drop_index: Optional[int] = None) -> None:
        for name in TABLE_SIDE_MAPS:
            mapping = self.state.side_map(name)
            if drop_index is not None:
                mapping = drop_nested_keys_for_index(mapping, table_key, drop_index)
            self.state.set(name, shift_nested_table_keys(mapping, table_key, start_index, delta))

        drafts = self.state.drafts
        if drop_index is not None:
            drafts = drop_nested_keys_for_index(drafts, table_key, drop_index)
        self.state.drafts = shift_nested_table_keys(drafts, table_key, start_index, delta)

        errors = self.state.errors
        if drop_index is not None:
            errors = drop_nested_keys_for_index(errors, table_key, drop_index)
        self.state.errors = shift_nested_table_keys(errors, table_key, start_index, delta)

    def select_row(self, ctx: DataTableContext, index: Optional[int]) -> bool:
        """
        Make `index` the active row (None deselects).

        Selecting the row that is already active with an unchanged snapshot is a
        no-op and returns False. Otherwise the row's fields are seeded from the
        committed row (cleared values when deselecting) and errors under the table
        are dropped.
        """
        rows = self.rows(ctx.key)
        if index is not None and not 0 <= index < len(rows):
            logger.warning(f"Row {index} out of range for table '{ctx.key}' ({len(rows)} rows); deselecting")
            index = None

        row = deepcopy(rows[index]) if index is not None else None
        last = self.state.side_map('last_processed_row').get(ctx.key)
        snapshot = self.state.side_map('row_snapshots').get(ctx.key)
        if last == index and snapshot == row and self.active_index(ctx.key) == index:
            return False

        self.state.update_side_map('active_row_index_map', ctx.key, index)
        self.state.update_side_map('row_snapshots', ctx.key, row)
        self.state.update_side_map('last_processed_row', ctx.key, index)
        self.state.clear_errors(prefix=ctx.key)

        # Discard uncommitted edits of any previously active row
        self.state.values = set_deep_value(self.state.values, ctx.key, deepcopy(rows))

        leaves = to_leaf_field_settings(ctx.table.fields)
        if index is None:
            self._clear_draft(ctx)
        else:
            for fs in leaves:
                current = get_deep_value(row, fs.name)
                self.state.set_value(join_path(ctx.key, index, fs.name),
                                     current if current is not None else empty_for(fs))
            self._clear_draft(ctx)

        self.state.bump_render_version()
        logger.debug(f"Table '{ctx.key}' active row -> {index}")
        return True

    def add_row(self, ctx: DataTableContext, disabled: bool = False) -> RowActionResult:
        """Validate the draft and, if valid, prepend it as a new committed row."""
        if disabled:
            return RowActionResult(False, message="Table is disabled")
        if self.active_index(ctx.key) is not None:
            return RowActionResult(False, message="Finish editing the selected row first")
        if not self.has_draft(ctx):
            return RowActionResult(False, message="Nothing to add")

        errors = self.validate_draft(ctx)
        if errors:
            for err in errors:
                self.state.set_error(err.field, err.message)
            logger.info(f"Add to '{ctx.key}' rejected: {len(errors)} invalid field(s)")
            return RowActionResult(False, errors=errors, message="Draft has invalid fields")

        new_row: Dict[str, Any] = {}
        for fs in to_leaf_field_settings(ctx.table.fields):
            value = normalize_by_type(fs, self.state.get_value(join_path(ctx.key, fs.name)))
            new_row = set_deep_value(new_row, fs.name, value)
        for child in iter_tables(ctx.table.fields):
            if get_deep_value(new_row, child.data_source) is None:
                new_row = set_deep_value(new_row, child.data_source, [])

        rows = [new_row] + self.rows(ctx.key)
        self._reindex(ctx.key, 0, 1)
        self._write_rows(ctx.key, rows)
        self.state.update_side_map('row_snapshots', ctx.key, None)
        self.state.update_side_map('last_processed_row', ctx.key, None)
        self._clear_draft(ctx)
        self._bump_version(ctx.key)
        logger.info(f"Added row to '{ctx.key}' ({len(rows)} rows)")
        return RowActionResult(True, row=new_row)

    def update_row(self, ctx: DataTableContext, disabled: bool = False) -> RowActionResult:
        """Validate the active row's fields and commit them into the row."""
        index = self.active_index(ctx.key)
        if disabled:
            return RowActionResult(False, message="Table is disabled")
        if index is None:
            return RowActionResult(False, message="No row selected")

        errors = self.validate_active_row(ctx)
        if errors:
            for err in errors:
                self.state.set_error(err.field, err.message)
            logger.info(f"Update of '{ctx.key}.{index}' rejected: {len(errors)} invalid field(s)")
            return RowActionResult(False, errors=errors, message="Row has invalid fields")

        rows = self.rows(ctx.key)
        updated = dict(rows[index]) if index < len(rows) and isinstance(rows[index], dict) else {}
        for fs in to_leaf_field_settings(ctx.table.fields):
            value = normalize_by_type(fs, self.state.get_value(join_path(ctx.key, index, fs.name)))
            updated = set_deep_value(updated, fs.name, value)
        for child in iter_tables(ctx.table.fields):
            child_key = join_path(ctx.key, index, child.data_source)
            updated = set_deep_value(updated, child.data_source, self.rows(child_key))

        rows = list(rows)
        rows[index] = updated
        self._write_rows(ctx.key, rows)
        self.state.clear_errors(prefix=ctx.key)
        self._deselect(ctx.key)
        self._clear_draft(ctx)
        self._bump_version(ctx.key)
        logger.info(f"Updated row {index} of '{ctx.key}'")
        return RowActionResult(True, row=updated)

    def delete_row(self, ctx: DataTableContext, disabled: bool = False) -> RowActionResult:
        """Remove the active row and re-index state of the rows after it."""
        index = self.active_index(ctx.key)
        if disabled:
            return RowActionResult(False, message="Table is disabled")
        if index is None:
            return RowActionResult(False, message="No row selected")

        rows = [row for i, row in enumerate(self.rows(ctx.key)) if i != index]
        self._reindex(ctx.key, index + 1, -1, drop_index=index)
        self._write_rows(ctx.key, rows)
        self._deselect(ctx.key)
        self._bump_version(ctx.key)
        logger.info(f"Deleted row {index} of '{ctx.key}' ({len(rows)} rows left)")
        return RowActionResult(True)

    def cancel(self, ctx: DataTableContext) -> RowActionResult:
        """Deselect, discard uncommitted row edits and reset the draft."""
        index = self.active_index(ctx.key)
        if index is not None:
            self.state.clear_errors(prefix=join_path(ctx.key, index))
            self.state.values = set_deep_value(self.state.values, ctx.key, deepcopy(self.rows(ctx.key)))
        self._deselect(ctx.key)
        self._clear_draft(ctx)
        self.state.bump_render_version()
        return RowActionResult(True)

    def replace_rows(self, ctx: DataTableContext, rows: List[Dict[str, Any]], disabled: bool = False) -> RowActionResult:
        """Replace a table's rows wholesale (the table control's whole-array change)."""
        if disabled:
            return RowActionResult(False, message="Table is disabled")
        rows = [deepcopy(row) if isinstance(row, dict) else {} for row in rows or []]
        for name in TABLE_SIDE_MAPS:
            mapping = self.state.side_map(name)
            self.state.set(name, {k: v for k, v in mapping.items() if not k.startswith(ctx.key + ".")})
        self.state.clear_errors(prefix=ctx.key)
        self._write_rows(ctx.key, rows)
        self._deselect(ctx.key)
        self._clear_draft(ctx)
        self._bump_version(ctx.key)
        logger.info(f"Replaced rows of '{ctx.key}' ({len(rows)} rows)")
        return RowActionResult(True)
