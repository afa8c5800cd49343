"""
Error navigation: reveal and focus the first invalid field.

After a failed submit the navigator switches every tab group and opens every
accordion section on the way to the failing path, then polls a focus registry
until the path's control is mounted, centres it, waits for the layout to stop
moving and focuses it. Giving up is silent.
"""

import json
import re
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from .declarations import (
    AccordionGroup,
    DataTableSection,
    FieldsGroup,
    SettingsItem,
    TabsGroup,
    accordion_section_key,
    contains_field_path,
    first_section_index_containing_path,
    first_tab_index_containing_path,
    panel_key,
)
from .form_state import FormState
from .path_utils import get_deep_value
from .scheduler import FRAME_INTERVAL, wait_frames

logger = logging.getLogger(__name__)

DEFAULT_FOCUS_MAX_TRIES = 120
DEFAULT_STABLE_FRAMES = 2
DEFAULT_MAX_LAYOUT_FRAMES = 45
SUMMARY_VALUE_LIMIT = 120

_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")


class ControlHandle(Protocol):
    """What the navigator needs from a mounted control."""

    def scroll_to_center(self) -> None: ...

    def layout_height(self) -> float: ...

    def focus(self) -> None: ...


class FocusRegistry:
    """Field path -> mounted control handle."""

    def __init__(self):
        self._handles: Dict[str, ControlHandle] = {}

    def register(self, path: str, handle: ControlHandle) -> None:
        self._handles[path] = handle

    def unregister(self, path: str) -> None:
        self._handles.pop(path, None)

    def get(self, path: str) -> Optional[ControlHandle]:
        return self._handles.get(path)

    def clear(self) -> None:
        self._handles.clear()

    def paths(self) -> List[str]:
        return list(self._handles)

    def __contains__(self, path: str) -> bool:
        return path in self._handles


class PanelState:
    """Active tab per tab group and forced-open sections per accordion group."""

    def __init__(self, state: FormState):
        self.state = state

    def active_tab(self, group_key: str, default: int = 0) -> int:
        return self.state.side_map('active_tabs').get(group_key, default)

    def set_active_tab(self, group_key: str, index: int) -> None:
        self.state.update_side_map('active_tabs', group_key, index)

    def open_sections(self, group_key: str) -> List[str]:
        return list(self.state.side_map('open_sections').get(group_key, []))

    def is_open(self, group_key: str, section_key: str) -> bool:
        return section_key in self.open_sections(group_key)

    def set_open(self, group_key: str, section_key: str, is_open: bool, allow_multiple: bool) -> None:
        current = self.open_sections(group_key)
        if is_open:
            sections = current + [section_key] if allow_multiple else [section_key]
            sections = list(dict.fromkeys(sections))
        else:
            sections = [key for key in current if key != section_key]
        self.state.update_side_map('open_sections', group_key, sections)

    def force_open(self, group_key: str, section_key: str, allow_multiple: bool) -> None:
        """Open a section no matter what the user had open; single-open groups collapse the others."""
        self.set_open(group_key, section_key, True, allow_multiple)

    def reset(self) -> None:
        self.state.set('active_tabs', {})
        self.state.set('open_sections', {})


@dataclass
class ErrorSummaryItem:
    field: str
    label: str
    value_text: str
    message: str


def pretty_label(path: str) -> str:
    """'items.0.unit_price' -> 'Unit price'; only the last segment is used."""
    leaf = path.split(".")[-1] or path
    text = _CAMEL_BOUNDARY.sub(r"\1 \2", leaf.replace("_", " ").replace("-", " "))
    return text[:1].upper() + text[1:]


def format_summary_value(value: Any) -> str:
    if value is None:
        return "—"
    if isinstance(value, str):
        return "“”" if value == "" else value
    try:
        text = json.dumps(value, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        text = str(value)
    if len(text) > SUMMARY_VALUE_LIMIT:
        return text[:SUMMARY_VALUE_LIMIT - 3] + "…"
    return text


def to_summary_items(errors: Dict[str, str], values: Dict[str, Any],
                     value_getter: Optional[Callable[[str], Any]] = None) -> List[ErrorSummaryItem]:
    """Error map -> displayable summary rows (label, current value, message)."""
    items = []
    for path, message in errors.items():
        value = value_getter(path) if value_getter is not None else get_deep_value(values, path)
        items.append(ErrorSummaryItem(
            field=path,
            label=pretty_label(path),
            value_text=format_summary_value(value),
            message=message,
        ))
    return items


class ErrorNavigator:
    """Reveals panels and focuses a field's control."""

    def __init__(self, registry: FocusRegistry, panels: PanelState, state: FormState,
                 max_tries: int = DEFAULT_FOCUS_MAX_TRIES,
                 stable_frames: int = DEFAULT_STABLE_FRAMES,
                 max_layout_frames: int = DEFAULT_MAX_LAYOUT_FRAMES,
                 frame_interval: float = FRAME_INTERVAL):
        self.registry = registry
        self.panels = panels
        self.state = state
        self.max_tries = max_tries
        self.stable_frames = stable_frames
        self.max_layout_frames = max_layout_frames
        self.frame_interval = frame_interval

    # -- panels ---------------------------------------------------------------

    def reveal(self, path: str, items: Sequence[SettingsItem], values: Dict[str, Any],
               parent_key: str = "root") -> None:
        """Switch tabs and open accordion sections on the way to `path`."""
        for index, item in enumerate(items or ()):
            if isinstance(item, TabsGroup):
                group_key = panel_key(parent_key, "tabs", index)
                tab_index = first_tab_index_containing_path(item, path)
                if tab_index >= 0:
                    self.panels.set_active_tab(group_key, tab_index)
                    logger.debug(f"Switched {group_key} to tab {tab_index} for '{path}'")
                    self.reveal(path, item.tabs[tab_index].fields, values, panel_key(group_key, "tab", tab_index))
            elif isinstance(item, AccordionGroup):
                group_key = panel_key(parent_key, "acc", index)
                section_index = first_section_index_containing_path(item, path)
                if item.allow_multiple:
                    for i, section in enumerate(item.accordion):
                        if any(contains_field_path(section.fields, err) for err in self.state.errors):
                            self.panels.force_open(group_key, accordion_section_key(item, i), True)
                if section_index >= 0:
                    section_key = accordion_section_key(item, section_index)
                    self.panels.force_open(group_key, section_key, item.allow_multiple)
                    logger.debug(f"Opened {group_key}/{section_key} for '{path}'")
                    self.reveal(path, item.accordion[section_index].fields, values,
                                panel_key(group_key, "sec", section_key))
            elif isinstance(item, FieldsGroup):
                if contains_field_path(item.fields, path):
                    self.reveal(path, item.fields, values, panel_key(parent_key, "group", index))
            elif isinstance(item, DataTableSection):
                if path == item.data_source or path.startswith(item.data_source + "."):
                    self.reveal(path, item.fields, values, panel_key(parent_key, "dt", item.data_source))

        if parent_key == "root":
            self.state.set('pending_focus', {'path': path, 'tries': 0})

    # -- focus ----------------------------------------------------------------

    @property
    def pending_path(self) -> Optional[str]:
        pending = self.state.get('pending_focus')
        return pending.get('path') if pending else None

    def cancel_pending(self) -> None:
        self.state.set('pending_focus', None)

    def poll_pending(self) -> bool:
        """
        One synchronous focus attempt for the pending path.

        Used by renderers that mount controls in discrete passes: each pass calls
        this once; after `max_tries` passes the request is dropped.
        """
        pending = self.state.get('pending_focus')
        if not pending:
            return False
        handle = self.registry.get(pending['path'])
        if handle is not None:
            handle.scroll_to_center()
            handle.focus()
            self.cancel_pending()
            return True
        tries = pending.get('tries', 0) + 1
        if tries >= self.max_tries:
            logger.debug(f"Giving up focusing '{pending['path']}' after {tries} attempts")
            self.cancel_pending()
        else:
            self.state.set('pending_focus', {'path': pending['path'], 'tries': tries})
        return False

    async def wait_for_control(self, path: str) -> Optional[ControlHandle]:
        for _ in range(self.max_tries):
            handle = self.registry.get(path)
            if handle is not None:
                return handle
            await wait_frames(1, self.frame_interval)
        return None

    async def wait_for_stable_layout(self, handle: ControlHandle) -> None:
        """Wait until the control's layout height holds for `stable_frames` frames."""
        last = None
        stable = 0
        for _ in range(self.max_layout_frames):
            height = handle.layout_height()
            if last is not None and abs(height - last) < 2:
                stable += 1
                if stable >= self.stable_frames:
                    return
            else:
                stable = 0
            last = height
            await wait_frames(1, self.frame_interval)

    async def focus_path(self, path: str) -> bool:
        handle = await self.wait_for_control(path)
        if handle is None:
            logger.debug(f"No control mounted for '{path}'; focus skipped")
            if self.pending_path == path:
                self.cancel_pending()
            return False
        handle.scroll_to_center()
        await self.wait_for_stable_layout(handle)
        await wait_frames(2, self.frame_interval)
        handle.focus()
        if self.pending_path == path:
            self.cancel_pending()
        return True

    async def navigate(self, invalid_fields: Sequence[Any], items: Sequence[SettingsItem],
                       values: Dict[str, Any]) -> bool:
        """
        Reveal and focus the first invalid field.

        Args:
            invalid_fields: FieldError objects or {'field': ...} mappings, in report order
            items: Visible settings items the form renders
            values: Current form values

        Returns:
            True if a control received focus
        """
        if not invalid_fields:
            return False
        first = invalid_fields[0]
        path = first['field'] if isinstance(first, dict) else first.field
        self.reveal(path, items, values)
        return await self.focus_path(path)
