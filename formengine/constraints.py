"""
Chainable validation constraints for form fields.

A Constraint describes what a single value must satisfy. Field declarations supply
a factory returning one, e.g.::

    from formengine import constraints as c

    validation=lambda values: c.string().required().email()

Constraints are immutable: every chained call returns a new instance. They compile
to pydantic annotations so that the Schema Builder can assemble a dynamic model out
of them.
"""

import re
import builtins
import logging
from dataclasses import dataclass, field, replace
from datetime import date as Date
from typing import Annotated, Any, Callable, Dict, List, Optional, Tuple

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    create_model,
)
from pydantic_core import PydanticCustomError

logger = logging.getLogger(__name__)

DEFAULT_REQUIRED_MESSAGE = "Required field"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

_MODEL_CONFIG = ConfigDict(extra='ignore', populate_by_name=True)


@dataclass(frozen=True)
class Check:
    """A single rule applied after type coercion."""
    code: str
    predicate: Callable[[Any], bool]
    message: str
    arg: Any = None


@dataclass(frozen=True)
class Constraint:
    kind: str = 'any'
    checks: Tuple[Check, ...] = ()
    is_required_flag: bool = False
    required_message: str = DEFAULT_REQUIRED_MESSAGE
    allow_blank: bool = False
    shape: Optional[Dict[str, 'Constraint']] = field(default=None, compare=False)
    item: Optional['Constraint'] = None
    choices: Tuple[Any, ...] = ()
    parts: Tuple['Constraint', ...] = ()

    # -- chaining -----------------------------------------------------------

    def _with_check(self, code: str, predicate: Callable[[Any], bool], message: str,
                    arg: Any = None) -> 'Constraint':
        return replace(self, checks=self.checks + (Check(code, predicate, message, arg),))

    def required(self, message: str = DEFAULT_REQUIRED_MESSAGE) -> 'Constraint':
        """Reject None, "" and empty lists with `message`."""
        return replace(self, is_required_flag=True, required_message=message, allow_blank=False)

    def optional(self) -> 'Constraint':
        """Let blank values through without running any other check."""
        return replace(self, is_required_flag=False, allow_blank=True)

    def min_length(self, length: int, message: Optional[str] = None) -> 'Constraint':
        message = message or f"Must be at least {length} characters"
        return self._with_check('min', lambda v: len(v) >= length, message, length)

    def max_length(self, length: int, message: Optional[str] = None) -> 'Constraint':
        message = message or f"Must be at most {length} characters"
        return self._with_check('max', lambda v: len(v) <= length, message, length)

    def nonempty(self, message: str = DEFAULT_REQUIRED_MESSAGE) -> 'Constraint':
        return self._with_check('min', lambda v: len(v) >= 1, message, 1)

    def pattern(self, regex: str, message: Optional[str] = None) -> 'Constraint':
        compiled = re.compile(regex)
        message = message or "Invalid format"
        return self._with_check('pattern', lambda v: bool(compiled.search(str(v))), message, regex)

    def email(self, message: str = "Invalid email") -> 'Constraint':
        compiled = re.compile(EMAIL_PATTERN)
        return self._with_check('email', lambda v: bool(compiled.match(str(v))), message)

    def ge(self, bound: float, message: Optional[str] = None) -> 'Constraint':
        message = message or f"Value must be >= {bound}"
        return self._with_check('ge', lambda v: v >= bound, message, bound)

    def le(self, bound: float, message: Optional[str] = None) -> 'Constraint':
        message = message or f"Value must be <= {bound}"
        return self._with_check('le', lambda v: v <= bound, message, bound)

    def gt(self, bound: float, message: Optional[str] = None) -> 'Constraint':
        message = message or f"Value must be > {bound}"
        return self._with_check('gt', lambda v: v > bound, message, bound)

    def lt(self, bound: float, message: Optional[str] = None) -> 'Constraint':
        message = message or f"Value must be < {bound}"
        return self._with_check('lt', lambda v: v < bound, message, bound)

    def refine(self, predicate: Callable[[Any], bool], message: str = "Invalid value") -> 'Constraint':
        """Attach an arbitrary predicate; it only sees non-blank values."""
        return self._with_check('custom', predicate, message)

    # -- composition --------------------------------------------------------

    def merge(self, other: 'Constraint') -> 'Constraint':
        """
        Combine with another constraint.

        Two object constraints merge their shapes (keys from `other` win). Any other
        pairing yields an intersection that must satisfy both sides.
        """
        if self.kind == 'object' and other.kind == 'object':
            shape = dict(self.shape or {})
            shape.update(other.shape or {})
            return replace(
                self,
                shape=shape,
                checks=self.checks + other.checks,
                is_required_flag=self.is_required_flag or other.is_required_flag,
            )
        return intersect(self, other)

    # -- compilation --------------------------------------------------------

    def _base_annotation(self) -> Any:
        if self.kind == 'string':
            return str
        if self.kind == 'number':
            return float
        if self.kind == 'integer':
            return int
        if self.kind == 'boolean':
            return bool
        if self.kind == 'date':
            return Date
        if self.kind == 'object':
            shape = self.shape or {}
            return create_object_model(
                {key: (value.to_annotation(), None) for key, value in shape.items()},
                "ObjectConstraint",
            )
        if self.kind == 'array':
            item_annotation = self.item.to_annotation() if self.item is not None else Any
            return List[item_annotation]
        return Any

    def _before(self, value: Any) -> Any:
        if isinstance(value, str) and value == "" and self.kind not in ('string', 'any'):
            return None
        return value

    def _after(self, value: Any) -> Any:
        if _is_blank(value):
            if self.is_required_flag:
                raise PydanticCustomError('required', self.required_message)
            if value is None or self.allow_blank:
                return value

        for check in self.checks:
            try:
                passed = check.predicate(value)
            except (TypeError, ValueError):
                passed = False
            if not passed:
                raise PydanticCustomError(check.code, check.message)
        return value

    def to_annotation(self) -> Any:
        """Compile to a pydantic-compatible annotation (None always accepted by type)."""
        if self.kind == 'intersection':
            first, rest = self.parts[0], self.parts[1:]
            annotation = first.to_annotation()
            for other in rest:
                annotation = intersect_annotation(annotation, other)
            return annotation

        return Annotated[
            Optional[self._base_annotation()],
            BeforeValidator(self._before),
            AfterValidator(self._after),
        ]


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, list) and len(value) == 0)


# -- builders -----------------------------------------------------------------

def any_() -> Constraint:
    return Constraint(kind='any')


def string() -> Constraint:
    return Constraint(kind='string')


def number() -> Constraint:
    return Constraint(kind='number')


def integer() -> Constraint:
    return Constraint(kind='integer')


def boolean() -> Constraint:
    return Constraint(kind='boolean')


def date_() -> Constraint:
    return Constraint(kind='date')


def enum(choices, message: Optional[str] = None) -> Constraint:
    choices = tuple(choices)
    message = message or f"Value must be one of: {', '.join(str(c) for c in choices)}"
    base = Constraint(kind='enum', choices=choices)
    return base._with_check('enum', lambda v: v in choices, message, choices)


def object_(shape: Optional[Dict[str, Constraint]] = None) -> Constraint:
    return Constraint(kind='object', shape=dict(shape or {}))


def array(item: Optional[Constraint] = None) -> Constraint:
    return Constraint(kind='array', item=item)


def intersect(left: Constraint, right: Constraint) -> Constraint:
    """Constraint satisfied only when both sides are."""
    left_parts = left.parts if left.kind == 'intersection' else (left,)
    right_parts = right.parts if right.kind == 'intersection' else (right,)
    return Constraint(kind='intersection', parts=left_parts + right_parts)


# Readable aliases for names that shadow builtins/modules
any = any_  # noqa: A001
date = date_  # noqa: F811
object = object_  # noqa: A001


def is_required(constraint: Optional[Constraint]) -> bool:
    """
    True when the constraint rejects an empty value.

    Explicit `.required()`, or a minimum length of at least one, both count.
    """
    if constraint is None:
        return False
    if constraint.kind == 'intersection':
        return builtins.any(is_required(part) for part in constraint.parts)
    if constraint.allow_blank:
        return False
    if constraint.is_required_flag:
        return True
    for check in constraint.checks:
        if check.code == 'min' and isinstance(check.arg, int) and check.arg >= 1:
            return True
    return False


def create_object_model(fields: Dict[str, Tuple[Any, Optional[Callable[[], Any]]]],
                        model_name: str = "FormSchema") -> type:
    """
    Create a pydantic model whose fields are addressed by the given keys.

    Keys are used as aliases so arbitrary path segments ("first-name", "0") are valid.

    Args:
        fields: Mapping of key -> (annotation, default_factory or None)
        model_name: Name for the generated model class

    Returns:
        Pydantic model class ignoring unknown keys
    """
    field_definitions: Dict[str, Any] = {}
    for index, (key, (annotation, default_factory)) in enumerate(fields.items()):
        if default_factory is not None:
            info = Field(default_factory=default_factory, alias=key, validate_default=True)
        else:
            info = Field(default=None, alias=key, validate_default=True)
        field_definitions[f"f_{index}"] = (annotation, info)

    return create_model(model_name, __config__=_MODEL_CONFIG, **field_definitions)


def intersect_annotation(annotation: Any, constraint: Constraint) -> Any:
    """Wrap `annotation` so the value must also satisfy `constraint`."""
    adapter = TypeAdapter(constraint.to_annotation())

    def _check(value: Any) -> Any:
        raw = value.model_dump(by_alias=True) if isinstance(value, BaseModel) else value
        try:
            adapter.validate_python(raw)
        except ValidationError as e:
            first = e.errors()[0]
            raise PydanticCustomError(first.get('type', 'intersection'), first.get('msg', 'Invalid value'))
        return value

    return Annotated[annotation, AfterValidator(_check)]
