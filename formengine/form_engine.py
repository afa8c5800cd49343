"""
Form engine: owns the values of one declared form and everything that happens
to them (change, validation, table row lifecycle, submit, reset).

Rendering is not done here. A renderer asks for control and table bindings,
draws them, registers focus handles and reports user input back through the
binding callbacks.
"""

import asyncio
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, MutableMapping, Optional, Sequence, Set, Tuple

from .change_tracker import ChangeTracker, content_hash
from .config_loader import get_engine_settings
from .declarations import (
    DataTableContext,
    FieldSetting,
    SettingsItem,
    collect_absolute_leaf_fields,
    collect_data_table_contexts,
    flatten_for_schema,
    iter_tables,
    mark_colliding_fields,
    parse_settings,
    prefix_items,
    to_leaf_field_settings,
    validate_declarations,
)
from .error_navigator import (
    ErrorNavigator,
    ErrorSummaryItem,
    FocusRegistry,
    PanelState,
    to_summary_items,
)
from .form_state import DEFAULT_FORM_KEY, FormState
from .model_builder import FieldError, is_field_required, uses_values, validate_fields
from .path_utils import get_deep_value, is_descendant, join_path, path_depth, relative_path, set_deep_value
from .scheduler import TriggerQueue
from .table_manager import (
    RowActionResult,
    TableRowManager,
    coerce_change_value,
    empty_for,
    is_boolean_control,
)
from .visibility import filter_visible_settings, predicate_context, resolve_disabled, resolve_hidden

logger = logging.getLogger(__name__)


@dataclass
class SubmitResult:
    valid: bool
    values: Dict[str, Any]
    invalid_fields: List[Dict[str, Any]] = field(default_factory=list)
    updated: bool = False


@dataclass
class ControlBinding:
    """Everything a renderer needs to draw one input."""
    name: str
    field: FieldSetting
    value: Any
    error: Optional[str]
    required: bool
    disabled: bool
    on_change: Callable[[Any], bool]
    on_blur: Callable[[], bool]

    @property
    def label(self) -> str:
        return self.field.label or self.name

    @property
    def test_id(self) -> str:
        return f"{self.field.type}-{self.name.replace('.', '-')}"


@dataclass
class TableBinding:
    """State of one table instance plus the items to render for editing."""
    context: DataTableContext
    rows: List[Dict[str, Any]]
    active_index: Optional[int]
    version: int
    disabled: bool
    blocked: bool
    can_add: bool
    can_update: bool
    can_delete: bool
    can_cancel: bool
    editing_path: str
    editing_items: List[SettingsItem]
    on_change: Callable[[List[Dict[str, Any]]], RowActionResult]
    on_active_row_change: Callable[[Optional[int]], bool]

    @property
    def key(self) -> str:
        return self.context.key


@dataclass
class _Target:
    field: FieldSetting
    context: Optional[DataTableContext] = None
    row_index: Optional[int] = None
    draft: bool = False


def _related(path: str, names: Sequence[str]) -> bool:
    return any(is_descendant(path, name) or is_descendant(name, path) for name in names)


class FormEngine:
    """
    Engine for one form instance.

    Args:
        field_settings: Settings items, or plain mappings parsed with parse_settings
        data_source: Document the form edits; re-seeds the form when its content changes
        disabled: Disable every control and table action
        loading: Ask the renderer for a skeleton instead of controls
        storage: State mapping (Streamlit session_state when omitted)
        form_key: Namespace for this form's state keys
        on_submit: Called with the SubmitResult after every submit
        on_change: Called with the full document after non-table changes and row commits
        engine_settings: Timing/chunking overrides (config.yaml 'engine' section when omitted)
    """

    def __init__(self, field_settings: Sequence[Any], data_source: Optional[Dict[str, Any]] = None,
                 disabled: bool = False, loading: bool = False,
                 storage: Optional[MutableMapping[str, Any]] = None, form_key: str = DEFAULT_FORM_KEY,
                 on_submit: Optional[Callable[[SubmitResult], Any]] = None,
                 on_change: Optional[Callable[[Dict[str, Any]], Any]] = None,
                 engine_settings: Optional[Dict[str, int]] = None):
        self.field_settings: List[SettingsItem] = mark_colliding_fields(parse_settings(field_settings))
        self.problems = validate_declarations(self.field_settings)
        for problem in self.problems:
            logger.warning(f"Declaration problem in form '{form_key}': {problem}")

        self.settings = dict(engine_settings) if engine_settings is not None else get_engine_settings()
        self.disabled = disabled
        self.loading = loading
        self.on_submit = on_submit
        self.on_change = on_change
        self.data_source: Dict[str, Any] = {}

        self.state = FormState(storage, form_key)
        self.tables = TableRowManager(self.state, lambda: self.data_source)
        self.tracker = ChangeTracker(self.state)
        self.registry = FocusRegistry()
        self.panels = PanelState(self.state)
        self.navigator = ErrorNavigator(
            self.registry, self.panels, self.state,
            max_tries=self.settings.get('focus_max_tries', 120),
            stable_frames=self.settings.get('stable_frames', 2),
            max_layout_frames=self.settings.get('max_layout_frames', 45),
        )
        self.triggers = TriggerQueue(self.trigger, self.settings.get('debounce_ms', 150))
        self.navigation_task: Optional[asyncio.Future] = None

        self.set_source(data_source)

    # -- loading ----------------------------------------------------------------

    def set_source(self, data_source: Optional[Dict[str, Any]]) -> bool:
        """
        Point the form at a data source.

        Re-seeds values, tables and the change baseline only when the source's
        content differs from the one seen before (or nothing was loaded yet).
        """
        self.data_source = deepcopy(data_source) if isinstance(data_source, dict) else {}
        changed = self.tracker.sync_source(self.data_source)
        if changed or not self.state.get('loaded'):
            self._load()
            return True
        return False

    def _load(self) -> None:
        source = self.data_source
        values: Dict[str, Any] = deepcopy(source)
        drafts: Dict[str, Any] = {}

        for absolute in collect_absolute_leaf_fields(self.field_settings):
            if absolute.draft_of is not None:
                drafts[absolute.name] = empty_for(absolute.field)
                continue
            current = get_deep_value(source, absolute.name)
            values = set_deep_value(values, absolute.name, current if current is not None else empty_for(absolute.field))

        tables: Dict[str, List[Any]] = {}
        for table in iter_tables(self.field_settings):
            rows = get_deep_value(source, table.data_source)
            rows = list(rows) if isinstance(rows, list) else []
            tables[table.data_source] = rows
            values = set_deep_value(values, table.data_source, deepcopy(rows))

        self.triggers.discard()
        self.state.reset(values, drafts, tables)
        self.panels.reset()
        self.navigator.cancel_pending()
        self.state.set('visible_hash', None)
        self.tracker.reseed(self.get_values())
        logger.info(f"Form '{self.state.form_key}' loaded ({len(drafts)} draft inputs, {len(tables)} tables)")

    def reset(self) -> None:
        """Revert to the last supplied data source."""
        self._load()

    # -- reads --------------------------------------------------------------------

    @property
    def values(self) -> Dict[str, Any]:
        """Live value tree (includes uncommitted edits of active rows)."""
        return self.state.values

    def get_values(self) -> Dict[str, Any]:
        """
        The full document: values with every table's committed rows laid over
        them, shallow tables first.
        """
        payload = deepcopy(self.state.values)
        table_map = self.state.side_map('table_data_map')
        for key in sorted(table_map, key=path_depth):
            payload = set_deep_value(payload, key, deepcopy(table_map[key]))
        return payload

    def get_value(self, path: str) -> Any:
        return self.state.get_value(path)

    def visible_settings(self) -> List[SettingsItem]:
        return filter_visible_settings(self.field_settings, self.state.values)

    def table_contexts(self, visible_only: bool = True) -> List[DataTableContext]:
        items = self.visible_settings() if visible_only else self.field_settings
        contexts = collect_data_table_contexts(self.state.values, items)
        if not visible_only:
            return contexts
        return [ctx for ctx in contexts if ctx.parent_key is None or not resolve_hidden(
            ctx.table.hidden, predicate_context(self.state.values, ctx.key, self.data_source)
        )]

    def context(self, table_key: str) -> DataTableContext:
        for ctx in self.table_contexts(visible_only=False):
            if ctx.key == table_key:
                return ctx
        raise KeyError(f"Unknown table '{table_key}'")

    def conditional_names(self) -> List[str]:
        """Fields whose validation depends on other values."""
        return [fs.name for fs in flatten_for_schema(self.field_settings)
                if fs.name and fs.validation is not None and uses_values(fs.validation)]

    def _locate(self, path: str) -> Optional[_Target]:
        for absolute in collect_absolute_leaf_fields(self.field_settings):
            if absolute.draft_of is None and absolute.name == path:
                return _Target(absolute.field)

        contexts = sorted(self.table_contexts(visible_only=False), key=lambda ctx: -path_depth(ctx.key))
        for ctx in contexts:
            if not path.startswith(ctx.key + "."):
                continue
            rest = relative_path(path, ctx.key)
            leaves = {fs.name: fs for fs in to_leaf_field_settings(ctx.table.fields)}
            head, _, tail = rest.partition(".")
            if head.isdigit() and tail in leaves:
                return _Target(leaves[tail], ctx, int(head), False)
            if rest in leaves:
                return _Target(leaves[rest], ctx, None, True)
        return None

    # -- table state ------------------------------------------------------------

    def is_table_blocked(self, ctx: DataTableContext) -> bool:
        """A nested table is blocked unless its parent row is the active one."""
        if ctx.parent_key is None:
            return False
        return self.tables.active_index(ctx.parent_key) != ctx.row_index

    def is_table_disabled(self, ctx: DataTableContext) -> bool:
        """Disabled when this table or any ancestor table is disabled or sits in an inactive parent row."""
        current: Optional[DataTableContext] = ctx
        while current is not None:
            ctx_values = predicate_context(self.state.values, current.key, self.data_source)
            if resolve_disabled(current.table.disabled, ctx_values, self.disabled) or self.is_table_blocked(current):
                return True
            current = self.context(current.parent_key) if current.parent_key is not None else None
        return False

    def table_binding(self, ctx: DataTableContext) -> TableBinding:
        index = self.tables.active_index(ctx.key)
        disabled = self.is_table_disabled(ctx)
        editing_path = join_path(ctx.key, index) if index is not None else ctx.key
        return TableBinding(
            context=ctx,
            rows=self.tables.rows(ctx.key),
            active_index=index,
            version=self.tables.version(ctx.key),
            disabled=disabled,
            blocked=self.is_table_blocked(ctx),
            can_add=self.tables.can_add(ctx, disabled),
            can_update=self.tables.can_update(ctx, disabled),
            can_delete=self.tables.can_delete(ctx, disabled),
            can_cancel=self.tables.can_cancel(ctx),
            editing_path=editing_path,
            editing_items=prefix_items(ctx.table.fields, editing_path),
            on_change=lambda rows: self.replace_rows(ctx.key, rows),
            on_active_row_change=lambda row_index: self.select_row(ctx.key, row_index),
        )

    def select_row(self, table_key: str, index: Optional[int]) -> bool:
        """Select a row (None deselects); rows of a disabled table cannot be selected."""
        ctx = self.context(table_key)
        if index is not None and self.is_table_disabled(ctx):
            logger.debug(f"Selection of row {index} in disabled table '{table_key}' ignored")
            return False
        changed = self.tables.select_row(ctx, index)
        if changed and index is not None:
            fields = to_leaf_field_settings(ctx.table.fields)
            self.trigger([join_path(ctx.key, index, fs.name) for fs in fields])
        return changed

    def _after_row_action(self, result: RowActionResult) -> RowActionResult:
        if result.ok:
            if self.on_change is not None:
                self.on_change(self.get_values())
            self.clear_hidden_errors()
        return result

    def add_row(self, table_key: str) -> RowActionResult:
        ctx = self.context(table_key)
        return self._after_row_action(self.tables.add_row(ctx, self.is_table_disabled(ctx)))

    def update_row(self, table_key: str) -> RowActionResult:
        ctx = self.context(table_key)
        return self._after_row_action(self.tables.update_row(ctx, self.is_table_disabled(ctx)))

    def delete_row(self, table_key: str) -> RowActionResult:
        ctx = self.context(table_key)
        return self._after_row_action(self.tables.delete_row(ctx, self.is_table_disabled(ctx)))

    def cancel_row(self, table_key: str) -> RowActionResult:
        ctx = self.context(table_key)
        return self.tables.cancel(ctx)

    def replace_rows(self, table_key: str, rows: List[Dict[str, Any]]) -> RowActionResult:
        ctx = self.context(table_key)
        return self._after_row_action(self.tables.replace_rows(ctx, rows, self.is_table_disabled(ctx)))

    # -- controls ---------------------------------------------------------------

    def control_binding(self, fs: FieldSetting, name: Optional[str] = None,
                        context_values: Optional[Dict[str, Any]] = None,
                        extra_disabled: bool = False) -> ControlBinding:
        """
        Binding for a leaf field rendered at `name` (defaults to the field's own name).

        Args:
            context_values: Values the field's predicates and validation see
                (row context for table fields)
            extra_disabled: Disabled by an enclosing section or table
        """
        name = name or fs.name
        ctx_values = context_values if context_values is not None else self.state.values
        raw = self.state.get_value(name)
        if is_boolean_control(fs):
            value = bool(raw)
        else:
            value = "" if raw is None else raw

        return ControlBinding(
            name=name,
            field=fs,
            value=value,
            error=self.state.get_error(name),
            required=is_field_required(fs, ctx_values),
            disabled=extra_disabled or resolve_disabled(fs.disabled, ctx_values, self.disabled),
            on_change=lambda raw_value: self.change(name, raw_value),
            on_blur=lambda: self.blur(name),
        )

    def change(self, path: str, raw: Any) -> bool:
        """
        Apply a value reported by a control.

        Returns False when the change was refused (unknown path, disabled control
        or table, draft edit while a row is active, edit of a row that is not active).
        """
        target = self._locate(path)
        if target is None:
            logger.warning(f"Change for undeclared path '{path}' ignored")
            return False

        ctx_values = self.tables.context_values(target.context) if target.context is not None else self.state.values
        if resolve_disabled(target.field.disabled, ctx_values, self.disabled):
            logger.debug(f"Change for disabled field '{path}' ignored")
            return False

        if target.context is not None:
            if self.is_table_disabled(target.context):
                logger.debug(f"Change for '{path}' ignored: table '{target.context.key}' is disabled")
                return False
            active = self.tables.active_index(target.context.key)
            if target.draft and active is not None:
                logger.warning(f"Draft edit of '{path}' refused while row {active} is active")
                return False
            if not target.draft and active != target.row_index:
                logger.warning(f"Edit of '{path}' refused: row {target.row_index} is not active")
                return False

        value = coerce_change_value(target.field, raw)
        self.state.set_value(path, value, draft=target.draft)

        if target.context is not None:
            self.triggers.queue([path])
        else:
            if self.on_change is not None:
                self.on_change(self.get_values())
            self.triggers.queue([path] + self.conditional_names())

        self.clear_hidden_errors()
        return True

    def blur(self, path: str) -> bool:
        """Validate a field immediately (pending debounced triggers included)."""
        self.triggers.queue([path])
        self.triggers.flush()
        return path not in self.state.errors

    def flush_triggers(self) -> List[str]:
        return self.triggers.flush()

    # -- validation ---------------------------------------------------------------

    def _validate(self, names: Optional[Sequence[str]] = None) -> Tuple[List[FieldError], Set[str]]:
        values = self.state.values
        found: List[FieldError] = []
        checked: Set[str] = set()

        base_fields = to_leaf_field_settings(self.visible_settings())
        if names is not None:
            base_fields = [fs for fs in base_fields if _related(fs.name, names)]
        if base_fields:
            found.extend(validate_fields(base_fields, values))
            checked.update(fs.name for fs in base_fields)

        for ctx in self.table_contexts():
            if names is not None and not any(is_descendant(name, ctx.key) for name in names):
                continue
            index = self.tables.active_index(ctx.key)
            leaves = to_leaf_field_settings(ctx.table.fields)
            if index is not None:
                found.extend(self.tables.validate_active_row(ctx))
                checked.update(join_path(ctx.key, index, fs.name) for fs in leaves)
            if self.tables.has_draft(ctx):
                found.extend(self.tables.validate_draft(ctx))
            checked.update(join_path(ctx.key, fs.name) for fs in leaves)

        if names is not None:
            found = [err for err in found if _related(err.field, names)]
            checked = {path for path in checked if _related(path, names)}
        return found, checked

    def trigger(self, names: Optional[Sequence[str]] = None) -> bool:
        """
        Validate `names` (every visible field when None) and update their errors.

        Returns:
            True when none of the validated fields has an error
        """
        found, checked = self._validate(names)
        if names is None:
            self.state.errors = {err.field: err.message for err in found}
        else:
            errors = {path: msg for path, msg in self.state.errors.items() if not _related(path, list(checked))}
            errors.update({err.field: err.message for err in found})
            self.state.errors = errors
        return not found

    def clear_hidden_errors(self) -> None:
        """Drop errors of fields that became hidden; only acts when the visible set changed."""
        visible = self._input_paths(visible_only=True)
        visible_hash = content_hash(sorted(visible))
        if self.state.get('visible_hash') == visible_hash:
            return
        self.state.set('visible_hash', visible_hash)

        hidden = self._input_paths(visible_only=False) - visible
        if not hidden:
            return
        errors = self.state.errors
        kept = {path: msg for path, msg in errors.items() if not _related(path, list(hidden))}
        if len(kept) != len(errors):
            logger.debug(f"Cleared {len(errors) - len(kept)} error(s) of hidden fields")
            self.state.errors = kept

    def _input_paths(self, visible_only: bool) -> Set[str]:
        items = self.visible_settings() if visible_only else self.field_settings
        paths = {fs.name for fs in to_leaf_field_settings(items)}
        for ctx in self.table_contexts(visible_only):
            index = self.tables.active_index(ctx.key)
            fields = self.tables.row_fields(ctx) if visible_only else to_leaf_field_settings(ctx.table.fields)
            for fs in fields:
                paths.add(join_path(ctx.key, fs.name))
                if index is not None:
                    paths.add(join_path(ctx.key, index, fs.name))
        return paths

    # -- submit ---------------------------------------------------------------

    async def submit(self) -> SubmitResult:
        """
        Validate everything visible and report the document.

        Pending debounced validation is settled first. On failure the first
        invalid field's panels are opened at once and focusing it continues in
        the background (see `navigation_task`).
        """
        await self.triggers.settle()
        found, _ = self._validate(None)
        self.state.errors = {err.field: err.message for err in found}

        payload = self.get_values()
        updated = self.tracker.mark_submitted(payload)
        result = SubmitResult(
            valid=not found,
            values=payload,
            invalid_fields=[err.to_dict() for err in found],
            updated=updated,
        )

        if found:
            first = found[0].field
            logger.info(f"Submit blocked: {len(found)} invalid field(s), first '{first}'")
            self.navigator.reveal(first, self.visible_settings(), self.state.values)
            self.navigation_task = asyncio.ensure_future(self.navigator.focus_path(first))
            self.navigation_task.add_done_callback(self._navigation_done)
        else:
            logger.info(f"Submit ok (updated={updated})")

        if self.on_submit is not None:
            self.on_submit(result)
        return result

    def submit_sync(self) -> SubmitResult:
        """Run submit() to completion from synchronous code (e.g. a button callback)."""
        return asyncio.run(self.submit())

    @staticmethod
    def _navigation_done(task: asyncio.Future) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Focusing the first invalid field failed: {error}", exc_info=error)

    # -- reporting ------------------------------------------------------------

    def focus_field(self, path: str) -> None:
        """Reveal `path` and request focus on its control."""
        self.navigator.reveal(path, self.visible_settings(), self.state.values)

    def error_summary(self) -> List[ErrorSummaryItem]:
        return to_summary_items(self.state.errors, self.state.values, value_getter=self.state.get_value)

    def changed_fields(self) -> List[str]:
        return self.tracker.changed_paths(self.get_values())

    def is_dirty(self) -> bool:
        return self.tracker.is_updated(self.get_values())
