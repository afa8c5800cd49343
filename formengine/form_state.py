"""
Form state storage.

Holds the form value tree, staged table drafts, the error map and the table
side maps. Everything lives in a mapping (Streamlit's session_state by default)
under keys namespaced by the form key, so state survives reruns and two forms
on one page do not collide.
"""

import streamlit as st
import logging
from copy import deepcopy
from typing import Any, Dict, Iterable, List, MutableMapping, Optional

from .path_utils import get_deep_value, is_descendant, set_deep_value

logger = logging.getLogger(__name__)

DEFAULT_FORM_KEY = "form"


class FormState:
    """Namespaced, rerun-safe state for one form instance."""

    def __init__(self, storage: Optional[MutableMapping[str, Any]] = None, form_key: str = DEFAULT_FORM_KEY):
        self._storage = storage if storage is not None else st.session_state
        self.form_key = form_key
        self.initialize()

    def _key(self, name: str) -> str:
        return f"{self.form_key}__{name}"

    def initialize(self) -> None:
        """Initialize all state slots with default values (idempotent)."""
        defaults = {
            'values': {},
            'drafts': {},
            'errors': {},
            'table_data_map': {},
            'active_row_index_map': {},
            'row_snapshots': {},
            'last_processed_row': {},
            'table_version_map': {},
            'render_version': 0,
            'loaded': False,
        }
        for name, default_value in defaults.items():
            if self._key(name) not in self._storage:
                self._storage[self._key(name)] = default_value

    def get(self, name: str, default: Any = None) -> Any:
        return self._storage.get(self._key(name), default)

    def set(self, name: str, value: Any) -> None:
        self._storage[self._key(name)] = value

    # -- values ---------------------------------------------------------------

    @property
    def values(self) -> Dict[str, Any]:
        return self.get('values') or {}

    @values.setter
    def values(self, tree: Dict[str, Any]) -> None:
        self.set('values', tree)

    @property
    def drafts(self) -> Dict[str, Any]:
        return self.get('drafts') or {}

    @drafts.setter
    def drafts(self, drafts: Dict[str, Any]) -> None:
        self.set('drafts', drafts)

    def is_draft_path(self, path: str) -> bool:
        return path in self.drafts

    def get_value(self, path: str) -> Any:
        """Read a control's value; staged draft inputs shadow the value tree."""
        drafts = self.drafts
        if path in drafts:
            return drafts[path]
        return get_deep_value(self.values, path)

    def set_value(self, path: str, value: Any, draft: bool = False) -> None:
        if draft or self.is_draft_path(path):
            drafts = dict(self.drafts)
            drafts[path] = value
            self.drafts = drafts
        else:
            self.values = set_deep_value(self.values, path, value)

    # -- errors ---------------------------------------------------------------

    @property
    def errors(self) -> Dict[str, str]:
        return self.get('errors') or {}

    @errors.setter
    def errors(self, errors: Dict[str, str]) -> None:
        self.set('errors', errors)

    def get_error(self, path: str) -> Optional[str]:
        return self.errors.get(path)

    def set_error(self, path: str, message: str) -> None:
        errors = dict(self.errors)
        errors[path] = message
        self.errors = errors

    def clear_errors(self, paths: Optional[Iterable[str]] = None, prefix: Optional[str] = None) -> None:
        """
        Clear errors.

        Args:
            paths: Exact paths to clear
            prefix: Clear every error at or beneath this path

        With neither argument, all errors are cleared.
        """
        if paths is None and prefix is None:
            self.errors = {}
            return
        exact = set(paths or ())
        self.errors = {
            path: msg for path, msg in self.errors.items()
            if path not in exact and not (prefix is not None and is_descendant(path, prefix))
        }

    def errors_under(self, prefix: str) -> Dict[str, str]:
        return {path: msg for path, msg in self.errors.items() if is_descendant(path, prefix)}

    # -- table side maps ------------------------------------------------------

    def side_map(self, name: str) -> Dict[str, Any]:
        return self.get(name) or {}

    def update_side_map(self, name: str, key: str, value: Any) -> None:
        mapping = dict(self.side_map(name))
        mapping[key] = value
        self.set(name, mapping)

    def bump_render_version(self) -> int:
        version = self.get('render_version', 0) + 1
        self.set('render_version', version)
        return version

    @property
    def render_version(self) -> int:
        return self.get('render_version', 0)

    def reset(self, values: Dict[str, Any], drafts: Dict[str, Any], tables: Dict[str, List[Any]]) -> None:
        """Replace all state with a freshly seeded document."""
        self.values = deepcopy(values)
        self.drafts = dict(drafts)
        self.errors = {}
        self.set('table_data_map', deepcopy(tables))
        self.set('active_row_index_map', {})
        self.set('row_snapshots', {})
        self.set('last_processed_row', {})
        self.set('table_version_map', {})
        self.set('loaded', True)
        self.bump_render_version()
        logger.debug(f"Form state '{self.form_key}' reset with {len(drafts)} draft input(s)")
