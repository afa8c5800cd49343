"""
Dynamic pydantic schema builder for declared forms.
Turns a flat list of (dotted-path, constraint factory) fields into a nested model
and reports validation failures as per-path field errors.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from . import constraints as c
from .constraints import Constraint, create_object_model, intersect_annotation
from .declarations import FieldSetting
from .path_utils import get_deep_value, is_index, split_path

logger = logging.getLogger(__name__)


@dataclass
class FieldError:
    """A failed field: its absolute path, the message and the offending value."""
    field: str
    message: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {'field': self.field, 'error': self.message, 'value': self.value}


class _Node(dict):
    """Schema tree branch; `own` holds a constraint declared on the branch path itself."""

    def __init__(self):
        super().__init__()
        self.own: Optional[Constraint] = None


def uses_values(factory: Callable[..., Any]) -> bool:
    """True when a validation factory takes the form values (i.e. is conditional)."""
    try:
        params = inspect.signature(factory).parameters.values()
    except (TypeError, ValueError):
        return True
    return any(
        p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL)
        for p in params
    )


def evaluate_constraint(fs: FieldSetting, values: Dict[str, Any]) -> Optional[Constraint]:
    """
    Run a field's validation factory against the current values.

    Returns None when the field declares no validation. A factory that raises is
    logged and treated as unconstrained so one bad declaration cannot block the form.
    """
    if fs.validation is None:
        return None
    try:
        result = fs.validation(values) if uses_values(fs.validation) else fs.validation()
    except Exception as e:
        logger.error(f"Validation factory for '{fs.name}' failed: {e}", exc_info=True)
        return None
    if not isinstance(result, Constraint):
        logger.warning(f"Validation factory for '{fs.name}' returned {type(result).__name__}, ignoring")
        return None
    return result


def build_tree(fields: Sequence[FieldSetting], values: Dict[str, Any]) -> _Node:
    root = _Node()
    for fs in fields:
        if not fs.name:
            continue
        constraint = evaluate_constraint(fs, values) or c.any_()
        parts = split_path(fs.name)
        current = root
        for i, part in enumerate(parts):
            is_leaf = i == len(parts) - 1
            existing = current.get(part)
            if is_leaf:
                if isinstance(existing, _Node):
                    existing.own = constraint
                else:
                    current[part] = constraint
            else:
                if isinstance(existing, Constraint):
                    node = _Node()
                    node.own = existing
                    current[part] = node
                elif existing is None:
                    current[part] = _Node()
                current = current[part]
    return root


def _model_name(path: str) -> str:
    clean = "".join(ch if ch.isalnum() else "_" for ch in path)
    return f"FormSchema_{clean}" if clean else "FormSchema"


def _compile(node: Any, path: str) -> Any:
    if isinstance(node, Constraint):
        return node.to_annotation()

    keys = list(node.keys())
    if keys and all(is_index(k) for k in keys):
        # Index siblings describe a list; every row validates against the first child
        annotation = List[_compile(node[keys[0]], f"{path}.{keys[0]}")]
        return intersect_annotation(annotation, node.own) if node.own is not None else annotation

    children = {
        key: (_compile(child, f"{path}.{key}" if path else key), _default_factory(child))
        for key, child in node.items()
    }
    own = node.own
    if own is not None and own.kind == 'object':
        for key, child in (own.shape or {}).items():
            children[key] = (child.to_annotation(), None)
        own = c.Constraint(kind='any', checks=own.checks, is_required_flag=own.is_required_flag,
                           required_message=own.required_message)

    annotation = create_object_model(children, _model_name(path))
    if own is not None and (own.checks or own.is_required_flag or own.kind != 'any'):
        return intersect_annotation(annotation, own)
    return annotation


def _default_factory(node: Any) -> Optional[Callable[[], Any]]:
    if isinstance(node, Constraint):
        return None
    keys = list(node.keys())
    if keys and all(is_index(k) for k in keys):
        return list
    return dict


def build_schema(fields: Sequence[FieldSetting], values: Optional[Dict[str, Any]] = None) -> Any:
    """
    Build a validation schema for the given fields.

    Args:
        fields: Field declarations; names may be dotted paths ("address.city", "items.0.qty")
        values: Current form values, passed to conditional validation factories

    Returns:
        A pydantic model class (or list annotation when all top-level keys are indexes)
    """
    tree = build_tree(fields, values or {})
    schema = _compile(tree, "")
    logger.debug(f"Built schema for {len(fields)} field(s)")
    return schema


def _loc_to_path(loc: Sequence[Any]) -> str:
    return ".".join(str(part) for part in loc)


def validate_values(schema: Any, values: Any) -> List[FieldError]:
    """
    Validate values against a schema built by build_schema.

    Returns:
        Field errors in schema order; empty when valid
    """
    adapter = schema if isinstance(schema, TypeAdapter) else TypeAdapter(schema)
    try:
        adapter.validate_python(values if values is not None else {})
        return []
    except ValidationError as e:
        errors = []
        seen = set()
        for err in e.errors():
            path = _loc_to_path(err.get('loc', ()))
            if path in seen:
                continue
            seen.add(path)
            errors.append(FieldError(field=path, message=err.get('msg', 'Invalid value'),
                                     value=get_deep_value(values, path)))
        return errors


def validate_fields(fields: Sequence[FieldSetting], values: Dict[str, Any],
                    context: Optional[Dict[str, Any]] = None) -> List[FieldError]:
    """Build a schema for `fields` and validate `values` against it in one step."""
    schema = build_schema(fields, context if context is not None else values)
    return validate_values(schema, values)


def is_field_required(fs: FieldSetting, values: Dict[str, Any]) -> bool:
    return c.is_required(evaluate_constraint(fs, values))
