"""
Unit tests for the dynamic schema builder.
"""

from formengine import constraints as c
from formengine.declarations import FieldSetting
from formengine.model_builder import (
    FieldError,
    build_schema,
    is_field_required,
    uses_values,
    validate_fields,
    validate_values,
)


def field(name, validation=None, **kwargs):
    return FieldSetting(name=name, validation=validation, **kwargs)


class TestUsesValues:
    """Test cases for conditional factory detection."""

    def test_zero_argument_factory(self):
        assert not uses_values(lambda: c.string())

    def test_factory_taking_values(self):
        assert uses_values(lambda values: c.string())

    def test_keyword_only_factory_is_static(self):
        assert not uses_values(lambda *, strict=True: c.string())


class TestValidateFields:
    """Test cases for building and validating nested schemas."""

    def test_nested_path_error(self):
        fields = [field('customer.email', lambda: c.string().required("Email is required"))]
        errors = validate_fields(fields, {'customer': {'email': ''}})

        assert errors == [FieldError('customer.email', 'Email is required', '')]

    def test_valid_values(self):
        fields = [
            field('customer.name', lambda: c.string().required()),
            field('customer.email', lambda: c.string().email()),
        ]
        assert validate_fields(fields, {'customer': {'name': 'Acme', 'email': 'a@b.io'}}) == []

    def test_row_paths_validate_every_row(self):
        fields = [field('items.0.qty', lambda: c.number().ge(1, "At least 1"))]
        errors = validate_fields(fields, {'items': [{'qty': 5}, {'qty': 0}]})

        assert [e.field for e in errors] == ['items.1.qty']
        assert errors[0].message == "At least 1"
        assert errors[0].value == 0

    def test_conditional_validation_sees_values(self):
        def po_reference(values):
            if values.get('payment') == 'invoice':
                return c.string().required("PO reference is required")
            return c.string()

        fields = [field('payment'), field('po_reference', po_reference)]

        invoice = validate_fields(fields, {'payment': 'invoice', 'po_reference': ''})
        card = validate_fields(fields, {'payment': 'card', 'po_reference': ''})

        assert [e.field for e in invoice] == ['po_reference']
        assert card == []

    def test_context_overrides_values_for_factories(self):
        fields = [field('sku', lambda values: c.string().required() if values.get('kind') == 'part' else c.string())]
        errors = validate_fields(fields, {'sku': ''}, context={'kind': 'part', 'sku': ''})
        assert [e.field for e in errors] == ['sku']

    def test_failing_factory_is_unconstrained(self):
        def broken(values):
            raise RuntimeError("boom")

        assert validate_fields([field('a', broken)], {'a': ''}) == []

    def test_fields_without_validation_accept_anything(self):
        assert validate_fields([field('notes')], {'notes': {'free': 'form'}}) == []

    def test_parent_and_child_declarations(self):
        fields = [
            field('address', lambda: c.object_().refine(lambda v: True)),
            field('address.city', lambda: c.string().required("City is required")),
        ]
        errors = validate_fields(fields, {'address': {'city': ''}})
        assert [e.field for e in errors] == ['address.city']

    def test_schema_is_reusable(self):
        schema = build_schema([field('title', lambda: c.string().required("Title is required"))])
        assert validate_values(schema, {'title': 'x'}) == []
        assert [e.message for e in validate_values(schema, {'title': ''})] == ["Title is required"]


class TestFieldError:
    """Test cases for FieldError."""

    def test_to_dict(self):
        err = FieldError('items.0.qty', 'At least 1', 0)
        assert err.to_dict() == {'field': 'items.0.qty', 'error': 'At least 1', 'value': 0}


class TestIsFieldRequired:
    """Test cases for required detection on declarations."""

    def test_static_and_conditional(self):
        always = field('a', lambda: c.string().required())
        conditional = field('b', lambda values: c.string().required() if values.get('a') else c.string())
        plain = field('c')

        assert is_field_required(always, {})
        assert is_field_required(conditional, {'a': 'x'})
        assert not is_field_required(conditional, {'a': ''})
        assert not is_field_required(plain, {})
