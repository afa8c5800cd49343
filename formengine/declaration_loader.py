"""
Loading form declarations and data documents from YAML/JSON files.

Declarations on disk cannot hold callables, so validation and hidden/disabled
rules are written declaratively and compiled here:

    - name: email
      type: email
      validation: {type: string, required: "Email is required", email: true}
      hidden: {field: contact_method, not_equals: email}

    - name: po_number
      validation:
        type: string
        required_when: {field: payment, equals: invoice}
"""

import json
import yaml
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Union

from . import constraints as c
from .constraints import Constraint
from .declarations import SettingsItem, parse_settings, validate_declarations
from .exceptions import ConfigurationLoadError, DeclarationError
from .path_utils import get_deep_value

logger = logging.getLogger(__name__)

_TYPE_BUILDERS = {
    'string': c.string,
    'text': c.string,
    'email': c.string,
    'number': c.number,
    'integer': c.integer,
    'boolean': c.boolean,
    'date': c.date_,
    'any': c.any_,
    'array': c.array,
}


def compile_predicate(spec: Dict[str, Any]) -> Callable[[Dict[str, Any]], bool]:
    """
    Compile a declarative rule into a predicate over form values.

    Supported forms: {field, equals}, {field, not_equals}, {field, in: [...]},
    {field, truthy: bool}, {field, empty: bool} and the combinators
    {all: [...]}, {any: [...]}, {not: {...}}.
    """
    if not isinstance(spec, dict):
        raise DeclarationError(f"Rule must be a mapping, got {type(spec).__name__}")

    if 'all' in spec:
        parts = [compile_predicate(p) for p in spec['all']]
        return lambda values: all(p(values) for p in parts)
    if 'any' in spec:
        parts = [compile_predicate(p) for p in spec['any']]
        return lambda values: any(p(values) for p in parts)
    if 'not' in spec:
        inner = compile_predicate(spec['not'])
        return lambda values: not inner(values)

    path = spec.get('field')
    if not path:
        raise DeclarationError(f"Rule is missing 'field': {spec}")

    if 'equals' in spec:
        expected = spec['equals']
        return lambda values: get_deep_value(values, path) == expected
    if 'not_equals' in spec:
        expected = spec['not_equals']
        return lambda values: get_deep_value(values, path) != expected
    if 'in' in spec:
        choices = list(spec['in'] or [])
        return lambda values: get_deep_value(values, path) in choices
    if 'empty' in spec:
        want_empty = bool(spec['empty'])
        return lambda values: (get_deep_value(values, path) in (None, "", [], False)) == want_empty
    want = bool(spec.get('truthy', True))
    return lambda values: bool(get_deep_value(values, path)) == want


def _message(value: Any, default: str) -> str:
    return value if isinstance(value, str) else default


def _build_constraint(spec: Dict[str, Any], required: bool) -> Constraint:
    kind = spec.get('type', 'string')
    if kind == 'enum':
        constraint = c.enum(spec.get('choices', []), spec.get('message'))
    elif kind in _TYPE_BUILDERS:
        constraint = _TYPE_BUILDERS[kind]()
    else:
        raise DeclarationError(f"Unknown validation type '{kind}'")

    if 'min_length' in spec:
        constraint = constraint.min_length(int(spec['min_length']), spec.get('min_length_message'))
    if 'max_length' in spec:
        constraint = constraint.max_length(int(spec['max_length']), spec.get('max_length_message'))
    if spec.get('nonempty'):
        constraint = constraint.nonempty(_message(spec['nonempty'], c.DEFAULT_REQUIRED_MESSAGE))
    if 'pattern' in spec:
        constraint = constraint.pattern(spec['pattern'], spec.get('pattern_message'))
    if spec.get('email'):
        constraint = constraint.email(_message(spec['email'], "Invalid email"))
    if 'min_value' in spec:
        constraint = constraint.ge(spec['min_value'], spec.get('min_value_message'))
    if 'max_value' in spec:
        constraint = constraint.le(spec['max_value'], spec.get('max_value_message'))
    if spec.get('optional'):
        constraint = constraint.optional()
    if required:
        constraint = constraint.required(_message(spec.get('required') or spec.get('required_message'),
                                                   c.DEFAULT_REQUIRED_MESSAGE))
    return constraint


def compile_validation(spec: Dict[str, Any]) -> Callable[..., Constraint]:
    """
    Compile a declarative validation mapping into a constraint factory.

    Plain rules produce a factory with no arguments; a `required_when` rule
    produces one that takes the form values, which marks the field as
    conditionally validated.
    """
    if not isinstance(spec, dict):
        raise DeclarationError(f"Validation must be a mapping, got {type(spec).__name__}")

    # Fail on malformed specs at load time rather than on first validation
    _build_constraint(spec, bool(spec.get('required')))

    if 'required_when' in spec:
        condition = compile_predicate(spec['required_when'])

        def conditional(values: Dict[str, Any]) -> Constraint:
            return _build_constraint(spec, bool(spec.get('required')) or condition(values))

        return conditional

    static = _build_constraint(spec, bool(spec.get('required')))
    return lambda: static


def _read_file(path: Path) -> Any:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix.lower() == '.json':
                return json.load(f)
            return yaml.safe_load(f)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationLoadError(path, e)
    except (IOError, OSError) as e:
        raise ConfigurationLoadError(path, e)


def parse_declarations(raw: Union[List[Any], Dict[str, Any]]) -> List[SettingsItem]:
    """Parse already-loaded declaration data (a list, or a mapping with 'fieldSettings')."""
    if isinstance(raw, dict):
        raw = raw.get('fieldSettings', raw.get('field_settings', []))
    if not isinstance(raw, list):
        raise DeclarationError("Form declaration must be a list of settings items")
    items = parse_settings(raw, compile_validation, compile_predicate)
    for problem in validate_declarations(items):
        logger.warning(f"Declaration problem: {problem}")
    return items


def load_declarations(path: Union[str, Path]) -> List[SettingsItem]:
    """
    Load a form declaration file.

    Raises:
        ConfigurationLoadError: If the file cannot be read or parsed
    """
    path = Path(path)
    raw = _read_file(path)
    items = parse_declarations(raw or [])
    logger.info(f"Loaded {len(items)} settings item(s) from {path}")
    return items


def load_document(path: Union[str, Path]) -> Dict[str, Any]:
    """Load a data document (the form's data source)."""
    path = Path(path)
    data = _read_file(path)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationLoadError(path, ValueError("Document root must be a mapping"))
    return data
