"""
Path utilities for the form engine.
Reads and writes values at dotted/indexed paths ("items.0.name", "items[0].name")
inside plain nested structures without mutating the original.
"""

import re
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_BRACKET_ONLY = re.compile(r"^\[(\d+)\]$")
_PROP_INDEX = re.compile(r"^(.+?)\[(\d+)\]$")
_NUMERIC = re.compile(r"^\d+$")


def is_index(segment: Any) -> bool:
    """Return True if a path segment addresses a list position."""
    return isinstance(segment, int) or bool(_NUMERIC.match(str(segment)))


def split_path(path: Optional[str]) -> List[str]:
    """
    Split a path into its segments.

    Accepts "a.b.0.c", "a.b[0].c" and "a.[0].c"; all three yield ['a', 'b', '0', 'c'].

    Args:
        path: Dotted path (may be None or empty)

    Returns:
        List of string segments
    """
    if path is None or path == "":
        return []

    parts: List[str] = []
    for segment in str(path).split("."):
        if not segment:
            continue
        bracket = _BRACKET_ONLY.match(segment)
        if bracket:
            parts.append(bracket.group(1))
            continue
        prop_index = _PROP_INDEX.match(segment)
        if prop_index:
            parts.extend([prop_index.group(1), prop_index.group(2)])
            continue
        parts.append(segment)
    return parts


def join_path(*parts: Any) -> str:
    """Join non-empty path fragments with dots."""
    return ".".join(str(p) for p in parts if p is not None and p != "")


def is_descendant(path: str, ancestor: str) -> bool:
    """True when `path` equals `ancestor` or lives underneath it."""
    if not ancestor:
        return True
    return path == ancestor or path.startswith(ancestor + ".")


def relative_path(path: str, prefix: str) -> str:
    """Strip `prefix.` from the front of `path`; returns `path` unchanged if it is not nested."""
    if prefix and path.startswith(prefix + "."):
        return path[len(prefix) + 1:]
    return path


def get_deep_value(obj: Any, path: Optional[str]) -> Any:
    """
    Read the value at `path`.

    Missing keys, out-of-range indexes and non-container intermediates all
    resolve to None rather than raising.
    """
    if obj is None or path is None or path == "":
        return None

    current = obj
    for segment in split_path(path):
        if current is None:
            return None
        if isinstance(current, list):
            if not is_index(segment):
                return None
            index = int(segment)
            current = current[index] if 0 <= index < len(current) else None
        elif isinstance(current, dict):
            current = current.get(segment)
        else:
            return None
    return current


def _set(node: Any, parts: List[str], value: Any) -> Any:
    head, rest = parts[0], parts[1:]

    # Numeric segments address lists unless the node is an existing mapping with keys
    if is_index(head) and (isinstance(node, list) or not node):
        index = int(head)
        items = list(node) if isinstance(node, list) else []
        while len(items) <= index:
            items.append(None)
        items[index] = _set(items[index], rest, value) if rest else value
        return items

    base: Dict[str, Any] = dict(node) if isinstance(node, dict) else {}
    if not rest:
        base[head] = value
        return base

    child = base.get(head)
    base[head] = _set(child if isinstance(child, (dict, list)) else None, rest, value)
    return base


def set_deep_value(obj: Any, path: Optional[str], value: Any) -> Any:
    """
    Return a copy of `obj` with `value` written at `path`.

    Only the containers along the path are copied; everything else is shared with
    the original, which is never mutated. Missing containers are created (a list
    when the next segment is numeric, a dict otherwise) and lists are padded with None.
    """
    parts = split_path(path)
    if not parts:
        return obj
    return _set(obj, parts, value)


def is_populated(value: Any) -> bool:
    """A value counts as entered when it is not None, not "" and not boolean False."""
    if value is None or (isinstance(value, str) and value == ""):
        return False
    if isinstance(value, bool) and value is False:
        return False
    return True


def path_depth(path: str) -> int:
    return len(split_path(path))
