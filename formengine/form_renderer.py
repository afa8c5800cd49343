"""
Streamlit renderer for a FormEngine.

Draws the visible declaration tree: leaf controls, field groups, tabs (a
horizontal radio bound to the engine's panel state), accordions (expanders) and
data tables (a selectable dataframe plus an editing area and row actions).
Every control reports input back through its engine binding and registers a
focus handle, so failed submits can bring the first invalid field into view.
"""

import json
import streamlit as st
import streamlit.components.v1 as components
import pandas as pd
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dateutil import parser as date_parser

from .declarations import (
    AccordionGroup,
    DataTableSection,
    FieldSetting,
    FieldsGroup,
    SettingsItem,
    TabsGroup,
    accordion_section_key,
    collect_absolute_leaf_fields,
    contains_field_path,
    iter_tables,
    panel_key,
    to_leaf_field_settings,
)
from .error_handler import ErrorHandler
from .form_engine import ControlBinding, FormEngine, TableBinding
from .path_utils import join_path, set_deep_value
from .scheduler import ProgressiveReveal
from .visibility import resolve_disabled, resolve_hidden

logger = logging.getLogger(__name__)

CONTROL_HEIGHT = 38
EMPTY_OPTION_TEXT = "-- Select --"


class StreamlitControlHandle:
    """Focus handle for a mounted Streamlit widget, located by its aria-label."""

    def __init__(self, label: str, height: float = CONTROL_HEIGHT):
        self.label = label
        self.height = height
        self._center = False

    def scroll_to_center(self) -> None:
        self._center = True

    def layout_height(self) -> float:
        return self.height

    def focus(self) -> None:
        block = "center" if self._center else "nearest"
        script = f"""
        <script>
        const doc = window.parent.document;
        const el = doc.querySelector('[aria-label=' + JSON.stringify({json.dumps(self.label)}) + ']');
        if (el) {{
            el.scrollIntoView({{block: {json.dumps(block)}}});
            el.focus({{preventScroll: true}});
        }}
        </script>
        """
        components.html(script, height=0)


@dataclass
class _Scope:
    """Where items are being rendered: row prefix, predicate values and inherited disabling."""
    values: Dict[str, Any]
    prefix: Optional[str] = None
    disabled: bool = False
    filtered: bool = True


def skeleton_outline(items: Sequence[SettingsItem], depth: int = 0) -> List[Tuple[int, str]]:
    """Placeholder lines (depth, text) mirroring the declaration tree, for the loading state."""
    lines: List[Tuple[int, str]] = []
    for item in items or ():
        if isinstance(item, FieldSetting):
            lines.append((depth, item.label or item.name or ""))
        elif isinstance(item, FieldsGroup):
            if item.header:
                lines.append((depth, item.header))
            lines.extend(skeleton_outline(item.fields, depth + 1))
        elif isinstance(item, TabsGroup):
            lines.append((depth, " | ".join(tab.title for tab in item.tabs)))
            if item.tabs:
                lines.extend(skeleton_outline(item.tabs[0].fields, depth + 1))
        elif isinstance(item, AccordionGroup):
            for section in item.accordion:
                lines.append((depth, f"▸ {section.title}"))
        elif isinstance(item, DataTableSection):
            lines.append((depth, item.header or item.data_source))
    return lines


def to_widget_date(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date_parser.parse(str(value)).date()
    except (ValueError, OverflowError) as e:
        logger.warning(f"Failed to parse date string '{value}': {e}")
        return None


def to_widget_number(value: Any) -> Optional[float]:
    if value in (None, "") or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Non-numeric value '{value}' shown as empty")
        return None


def item_field_names(item: SettingsItem) -> List[str]:
    """Paths an item renders: its leaf names, table drafts and table data sources."""
    names = [absolute.name for absolute in collect_absolute_leaf_fields([item])]
    names.extend(table.data_source for table in iter_tables([item]))
    return names


class FormRenderer:
    """Draws one FormEngine with Streamlit widgets."""

    def __init__(self, engine: FormEngine, columns: int = 1):
        self.engine = engine
        self.columns = max(columns, 1)

    # -- keys -----------------------------------------------------------------

    def _key(self, *parts: Any) -> str:
        return "__".join([self.engine.state.form_key, *[str(p) for p in parts]])

    def _widget_key(self, name: str) -> str:
        return self._key("w", self.engine.state.render_version, name)

    @staticmethod
    def _sync_widget(key: str, value: Any) -> None:
        """Push the engine's value into the widget before it is created."""
        if key not in st.session_state or st.session_state[key] != value:
            st.session_state[key] = value

    # -- entry point ----------------------------------------------------------

    def render(self) -> None:
        engine = self.engine
        if engine.loading:
            self.render_skeleton()
            return

        engine.registry.clear()
        ErrorHandler.show_declaration_problems(engine.problems)

        items = engine.visible_settings()
        scope = _Scope(values=engine.values, disabled=engine.disabled)
        reveal = self._progressive_reveal(items)

        for index, item in enumerate(items[:reveal.count]):
            self._render_item(item, index, "root", scope)

        if not reveal.done:
            remaining = reveal.total - reveal.count
            st.button(f"Show {remaining} more field(s)", key=self._key("reveal_more"),
                      on_click=self._reveal_more, args=(reveal.total,))

        engine.navigator.poll_pending()
        engine.flush_triggers()

    def render_skeleton(self) -> None:
        for depth, text in skeleton_outline(self.engine.field_settings):
            indent = "&nbsp;" * 4 * depth
            st.markdown(f"{indent}<span style='opacity:0.35'>{text or '…'}</span>", unsafe_allow_html=True)

    def _progressive_reveal(self, items: Sequence[SettingsItem]) -> ProgressiveReveal:
        settings = self.engine.settings
        state = self.engine.state
        reveal = ProgressiveReveal(
            len(items),
            threshold=settings.get('chunk_threshold', 48),
            first_chunk=settings.get('first_chunk', 16),
            step=settings.get('chunk_step', 24),
            count=state.get('reveal_count'),
        )
        pending = self.engine.navigator.pending_path
        if pending and not reveal.done:
            reveal.ensure_path_visible([item_field_names(item) for item in items], pending)
        state.set('reveal_count', reveal.count)
        return reveal

    def _reveal_more(self, total: int) -> None:
        settings = self.engine.settings
        reveal = ProgressiveReveal(total, threshold=settings.get('chunk_threshold', 48),
                                   step=settings.get('chunk_step', 24),
                                   count=self.engine.state.get('reveal_count'))
        reveal.tick()
        self.engine.state.set('reveal_count', reveal.count)

    # -- tree walking ---------------------------------------------------------

    def _is_hidden(self, item: SettingsItem, scope: _Scope) -> bool:
        if scope.filtered:
            return False
        return resolve_hidden(getattr(item, 'hidden', False), scope.values)

    def _render_items(self, items: Sequence[SettingsItem], parent_key: str, scope: _Scope) -> None:
        leaves: List[Tuple[int, FieldSetting]] = []
        for index, item in enumerate(items or ()):
            if self._is_hidden(item, scope):
                continue
            if isinstance(item, FieldSetting) and self.columns > 1:
                leaves.append((index, item))
                continue
            self._flush_columns(leaves, parent_key, scope)
            leaves = []
            self._render_item(item, index, parent_key, scope)
        self._flush_columns(leaves, parent_key, scope)

    def _flush_columns(self, leaves: List[Tuple[int, FieldSetting]], parent_key: str, scope: _Scope) -> None:
        if not leaves:
            return
        cols = st.columns(self.columns)
        for position, (index, fs) in enumerate(leaves):
            with cols[position % self.columns]:
                self._render_item(fs, index, parent_key, scope)

    def _render_item(self, item: SettingsItem, index: int, parent_key: str, scope: _Scope) -> None:
        if isinstance(item, FieldSetting):
            self._render_field(item, scope)
        elif isinstance(item, FieldsGroup):
            self._render_group(item, panel_key(parent_key, "group", index), scope)
        elif isinstance(item, TabsGroup):
            self._render_tabs(item, panel_key(parent_key, "tabs", index), scope)
        elif isinstance(item, AccordionGroup):
            self._render_accordion(item, panel_key(parent_key, "acc", index), scope)
        elif isinstance(item, DataTableSection):
            self._render_table_section(item, parent_key, scope)

    def _render_group(self, group: FieldsGroup, group_key: str, scope: _Scope) -> None:
        if group.header:
            if group.is_sub_header:
                st.markdown(f"**{group.header}**")
            else:
                st.subheader(group.header)
        if group.description:
            st.caption(group.description)
        self._render_items(group.fields, group_key, scope)

    def _error_count(self, items: Sequence[SettingsItem]) -> int:
        return sum(1 for path in self.engine.state.errors if contains_field_path(items, path))

    def _render_tabs(self, group: TabsGroup, group_key: str, scope: _Scope) -> None:
        if group.header:
            st.subheader(group.header)
        if group.description:
            st.caption(group.description)

        indices = [i for i, tab in enumerate(group.tabs)
                   if scope.filtered or not resolve_hidden(tab.hidden, scope.values)]
        if not indices:
            return

        panels = self.engine.panels
        active = panels.active_tab(group_key, indices[0])
        if active not in indices:
            active = indices[0]

        def title(i: int) -> str:
            count = self._error_count(group.tabs[i].fields)
            return f"{group.tabs[i].title} ({count} ⚠)" if count else group.tabs[i].title

        key = self._key("tabs", group_key)
        self._sync_widget(key, active)
        st.radio(
            group.header or "Tabs",
            options=indices,
            format_func=title,
            horizontal=True,
            key=key,
            label_visibility="collapsed",
            on_change=lambda: panels.set_active_tab(group_key, st.session_state[key]),
        )
        # Only the active tab is mounted
        self._render_items(group.tabs[active].fields, panel_key(group_key, "tab", active), scope)

    def _render_accordion(self, group: AccordionGroup, group_key: str, scope: _Scope) -> None:
        if group.header:
            st.subheader(group.header)
        if group.description:
            st.caption(group.description)

        panels = self.engine.panels
        opened = panels.open_sections(group_key)
        for index, section in enumerate(group.accordion):
            if not scope.filtered and resolve_hidden(section.hidden, scope.values):
                continue
            section_key = accordion_section_key(group, index)
            expanded = section_key in opened or (section.open and group_key not in
                                                 self.engine.state.side_map('open_sections'))
            count = self._error_count(section.fields)
            label = f"{section.title} ({count} ⚠)" if count else section.title
            disabled = scope.disabled or resolve_disabled(section.disabled, scope.values, self.engine.disabled)
            with st.expander(label, expanded=expanded):
                section_scope = _Scope(scope.values, scope.prefix, disabled, scope.filtered)
                self._render_items(section.fields, panel_key(group_key, "sec", section_key), section_scope)

    # -- leaf controls --------------------------------------------------------

    def _render_field(self, fs: FieldSetting, scope: _Scope) -> None:
        if fs.declaration_error:
            st.error(f"**{fs.label or fs.name or 'Field'}**: {fs.declaration_error}")
            return

        name = join_path(scope.prefix, fs.name) if scope.prefix else fs.name
        binding = self.engine.control_binding(fs, name=name, context_values=scope.values,
                                              extra_disabled=scope.disabled)
        ErrorHandler.render_field_safely(lambda: self._render_control(binding), binding.label, binding.required)

    def _render_control(self, binding: ControlBinding) -> None:
        fs = binding.field
        label = f"{binding.label} *" if binding.required else binding.label

        if fs.render is not None:
            fs.render(binding)
        else:
            self._render_widget(binding, label)

        self.engine.registry.register(binding.name, StreamlitControlHandle(label))
        if binding.error:
            st.markdown(f":red[{binding.error}]")

    def _render_widget(self, binding: ControlBinding, label: str) -> None:
        fs = binding.field
        key = self._widget_key(binding.name)

        def on_change() -> None:
            binding.on_change(st.session_state[key])
            self.engine.flush_triggers()

        common = {
            'label': label,
            'key': key,
            'help': fs.help_text,
            'disabled': binding.disabled,
            'on_change': on_change,
        }
        option_values = [opt.value for opt in fs.options]
        option_text = {opt.value: opt.text for opt in fs.options}

        if fs.type in ('text', 'email'):
            self._sync_widget(key, str(binding.value))
            st.text_input(placeholder=fs.placeholder, **common)
        elif fs.type == 'textarea':
            self._sync_widget(key, str(binding.value))
            st.text_area(placeholder=fs.placeholder, height=100, **common)
        elif fs.type == 'number':
            value = to_widget_number(binding.value)
            if isinstance(value, int):
                self._sync_widget(key, value)
                st.number_input(value=None, step=1, placeholder=fs.placeholder, **common)
            else:
                self._sync_widget(key, None if value is None else float(value))
                st.number_input(value=None, step=0.01, format="%.2f", placeholder=fs.placeholder, **common)
        elif fs.type == 'date':
            self._sync_widget(key, to_widget_date(binding.value))
            st.date_input(value=None, **common)
        elif fs.type == 'dropdown':
            self._sync_widget(key, binding.value if binding.value in option_values else None)
            st.selectbox(
                options=[None] + option_values,
                format_func=lambda v: EMPTY_OPTION_TEXT if v is None else option_text.get(v, str(v)),
                **common,
            )
        elif fs.type in ('radio-group', 'radio-button-group'):
            self._sync_widget(key, binding.value if binding.value in option_values else None)
            st.radio(
                options=option_values,
                index=None,
                format_func=lambda v: option_text.get(v, str(v)),
                horizontal=fs.type == 'radio-button-group',
                **common,
            )
        elif fs.type in ('checkbox-group', 'switch-group'):
            current = binding.value if isinstance(binding.value, list) else []
            self._sync_widget(key, [v for v in current if v in option_values])
            st.multiselect(options=option_values, format_func=lambda v: option_text.get(v, str(v)), **common)
        elif fs.type == 'switch':
            self._sync_widget(key, bool(binding.value))
            st.toggle(**common)
        elif fs.type in ('checkbox', 'radio'):
            self._sync_widget(key, bool(binding.value))
            st.checkbox(**common)
        else:
            raise ValueError(f"Unsupported field type '{fs.type}'")

    # -- tables ---------------------------------------------------------------

    def _render_table_section(self, table: DataTableSection, parent_key: str, scope: _Scope) -> None:
        table_key = join_path(scope.prefix, table.data_source) if scope.prefix else table.data_source
        try:
            ctx = self.engine.context(table_key)
        except KeyError:
            # Tables inside a draft row have no rows to attach to yet
            st.caption(f"{table.header or table.data_source}: save the row to add entries here.")
            return

        binding = self.engine.table_binding(ctx)
        dt_key = panel_key(parent_key, "dt", table.data_source)

        if table.header:
            st.markdown(f"#### {table.header}")
        if table.description:
            st.caption(table.description)

        self._render_rows(binding)

        if binding.blocked:
            st.info("Select the parent row to edit these entries.")
            return

        self._render_editing_area(binding, dt_key)
        self._render_row_actions(binding)

    def _table_columns(self, binding: TableBinding) -> List[Tuple[str, str]]:
        table = binding.context.table
        if table.columns:
            return [(col.column, col.title) for col in table.columns]
        return [(fs.name, fs.label or fs.name) for fs in to_leaf_field_settings(table.fields)]

    def _render_rows(self, binding: TableBinding) -> None:
        columns = self._table_columns(binding)
        records = []
        for row in binding.rows:
            row = row if isinstance(row, dict) else {}
            records.append({title: self._cell(row, column) for column, title in columns})
        df = pd.DataFrame(records, columns=[title for _, title in columns])

        if not records:
            st.info("No entries yet.")
            return

        key = self._key("dt", binding.key, binding.version)
        selectable = not binding.disabled

        def on_select() -> None:
            event = st.session_state.get(key)
            rows = event.selection.rows if event is not None else []
            binding.on_active_row_change(rows[0] if rows else None)

        if selectable:
            st.dataframe(df, key=key, hide_index=True, use_container_width=True,
                         on_select=on_select, selection_mode="single-row")
        else:
            st.dataframe(df, hide_index=True, use_container_width=True)

    @staticmethod
    def _cell(row: Dict[str, Any], column: str) -> Any:
        value: Any = row
        for part in column.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if isinstance(value, (list, dict)):
            return json.dumps(value, default=str)
        return value

    def _editing_values(self, binding: TableBinding) -> Dict[str, Any]:
        ctx = binding.context
        row: Dict[str, Any] = {}
        for fs in to_leaf_field_settings(ctx.table.fields):
            row = set_deep_value(row, fs.name, self.engine.get_value(join_path(binding.editing_path, fs.name)))
        return self.engine.tables.context_values(ctx, row)

    def _render_editing_area(self, binding: TableBinding, dt_key: str) -> None:
        editing = binding.active_index is not None
        st.caption(f"Editing row {binding.active_index + 1}" if editing else "New entry")
        scope = _Scope(
            values=self._editing_values(binding),
            prefix=binding.editing_path,
            disabled=binding.disabled,
            filtered=False,
        )
        items = binding.context.table.fields
        if not editing:
            items = [item for item in items if not isinstance(item, DataTableSection)]
        self._render_items(items, dt_key, scope)

    def _render_row_actions(self, binding: TableBinding) -> None:
        state = self.engine.state
        message = state.side_map('table_messages').get(binding.key)
        if message:
            st.warning(message)

        def run(action) -> None:
            result = action(binding.key)
            state.update_side_map('table_messages', binding.key, None if result.ok else result.message)

        cols = st.columns(4)
        with cols[0]:
            st.button("Add", key=self._key("add", binding.key), disabled=not binding.can_add,
                      on_click=run, args=(self.engine.add_row,))
        with cols[1]:
            st.button("Update", key=self._key("update", binding.key), disabled=not binding.can_update,
                      on_click=run, args=(self.engine.update_row,))
        with cols[2]:
            st.button("Delete", key=self._key("delete", binding.key), disabled=not binding.can_delete,
                      on_click=run, args=(self.engine.delete_row,))
        with cols[3]:
            st.button("Cancel", key=self._key("cancel", binding.key), disabled=not binding.can_cancel,
                      on_click=run, args=(self.engine.cancel_row,))

    # -- error summary --------------------------------------------------------

    def render_error_summary(self) -> None:
        items = self.engine.error_summary()
        if not items:
            return
        with st.expander(f"⚠️ {len(items)} field(s) need attention", expanded=True):
            for item in items:
                cols = st.columns([3, 3, 1])
                with cols[0]:
                    st.markdown(f"**{item.label}**  \n:red[{item.message}]")
                with cols[1]:
                    st.caption(item.value_text)
                with cols[2]:
                    st.button("Go", key=self._key("goto", item.field),
                              on_click=self.engine.focus_field, args=(item.field,))
