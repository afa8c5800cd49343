"""
Form declaration types and tree walkers.

A form is declared as a list of settings items. Each item is exactly one of: a leaf
field, a fields group, a tabs group, an accordion group or a data table section.
Walkers in this module flatten, prefix and search those trees; they never look at
widget state.
"""

import re
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .exceptions import DeclarationError
from .path_utils import get_deep_value, is_descendant, join_path

logger = logging.getLogger(__name__)

Predicate = Union[bool, Callable[[Dict[str, Any]], bool]]

FIELD_TYPES = (
    'text', 'number', 'textarea', 'dropdown', 'date', 'email',
    'radio', 'checkbox', 'switch',
    'radio-group', 'checkbox-group', 'radio-button-group', 'switch-group',
)
BOOLEAN_TYPES = ('switch', 'checkbox', 'radio')
MULTI_VALUE_TYPES = ('checkbox-group', 'switch-group')
GROUP_SHAPES = ('fields', 'tabs', 'accordion', 'dataTable')

_NULLISH_SUFFIX = re.compile(r"\.(None|null|undefined)$")


@dataclass(frozen=True)
class SelectOption:
    value: Any
    text: str


@dataclass(frozen=True)
class FieldSetting:
    """A single input control bound to a value path."""
    name: Optional[str] = None
    label: Optional[str] = None
    type: str = 'text'
    validation: Optional[Callable[..., Any]] = None
    options: Tuple[SelectOption, ...] = ()
    disabled: Predicate = False
    hidden: Predicate = False
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    render: Optional[Callable[[Any], Any]] = None
    parse_error: Optional[str] = None

    @property
    def declaration_error(self) -> Optional[str]:
        if self.parse_error:
            return self.parse_error
        if not self.name:
            return f"Field '{self.label or '?'}' is missing a name"
        if self.type not in FIELD_TYPES:
            return f"Field '{self.name}' has unsupported type '{self.type}'"
        return None


@dataclass(frozen=True)
class FieldsGroup:
    fields: Tuple['SettingsItem', ...] = ()
    header: Optional[str] = None
    is_sub_header: bool = False
    description: Optional[str] = None
    hidden: Predicate = False


@dataclass(frozen=True)
class TabConfig:
    title: str
    fields: Tuple['SettingsItem', ...] = ()
    hidden: Predicate = False


@dataclass(frozen=True)
class TabsGroup:
    tabs: Tuple[TabConfig, ...] = ()
    header: Optional[str] = None
    description: Optional[str] = None
    hidden: Predicate = False


@dataclass(frozen=True)
class AccordionSection:
    title: str
    fields: Tuple['SettingsItem', ...] = ()
    id: Optional[str] = None
    open: bool = False
    hidden: Predicate = False
    disabled: Predicate = False


@dataclass(frozen=True)
class AccordionGroup:
    accordion: Tuple[AccordionSection, ...] = ()
    allow_multiple: bool = False
    header: Optional[str] = None
    description: Optional[str] = None
    hidden: Predicate = False


@dataclass(frozen=True)
class ColumnSetting:
    title: str
    column: str


@dataclass(frozen=True)
class DataTableSection:
    """Editable table whose rows live at `data_source` (relative to the enclosing row)."""
    data_source: str
    fields: Tuple['SettingsItem', ...] = ()
    columns: Tuple[ColumnSetting, ...] = ()
    header: Optional[str] = None
    description: Optional[str] = None
    hidden: Predicate = False
    disabled: Predicate = False


SettingsItem = Union[FieldSetting, FieldsGroup, TabsGroup, AccordionGroup, DataTableSection]


@dataclass(frozen=True)
class AbsoluteField:
    """A leaf field addressed by its full path; `draft_of` names the owning table for draft inputs."""
    name: str
    field: FieldSetting
    draft_of: Optional[str] = None


@dataclass(frozen=True)
class DataTableContext:
    """A table instance at a concrete path, possibly nested inside a row of a parent table."""
    key: str
    table: DataTableSection
    parent_key: Optional[str] = None
    row_index: Optional[int] = None

    @property
    def fields(self) -> Tuple[SettingsItem, ...]:
        return self.table.fields


# -- child access -------------------------------------------------------------

def child_items(item: SettingsItem) -> Iterator[SettingsItem]:
    """Yield nested settings items of a group (tables are not descended into)."""
    if isinstance(item, FieldsGroup):
        yield from item.fields
    elif isinstance(item, TabsGroup):
        for tab in item.tabs:
            yield from tab.fields
    elif isinstance(item, AccordionGroup):
        for section in item.accordion:
            yield from section.fields


def accordion_section_key(group: AccordionGroup, index: int) -> str:
    section = group.accordion[index]
    return section.id or f"{group.header or 'accordion'}-sec-{index}"


def panel_key(parent: str, kind: str, ident: Any) -> str:
    """Stable key for a group instance in the rendered tree, e.g. 'root::tabs-2'."""
    return f"{parent}::{kind}-{ident}"


# -- flattening ---------------------------------------------------------------

def flatten_for_schema(items: Sequence[SettingsItem]) -> List[FieldSetting]:
    """
    Collect leaf fields through groups, tabs and accordions.

    Data table sections are skipped; their fields belong to row schemas.
    """
    out: List[FieldSetting] = []
    for item in items or ():
        if isinstance(item, FieldSetting):
            out.append(item)
        elif isinstance(item, DataTableSection):
            continue
        else:
            out.extend(flatten_for_schema(list(child_items(item))))
    return out


def to_leaf_field_settings(items: Sequence[SettingsItem]) -> List[FieldSetting]:
    """
    Named leaves that are not a parent path of another named field.

    'address' is dropped when 'address.city' is also declared.
    """
    named = [fs for fs in flatten_for_schema(items) if fs.name]
    names = [fs.name for fs in named]
    return [
        fs for fs in named
        if not any(other != fs.name and other.startswith(fs.name + ".") for other in names)
    ]


def prefix_items(items: Sequence[SettingsItem], prefix: Optional[str]) -> List[SettingsItem]:
    """
    Rewrite names and table data sources to live under `prefix`.

    A trailing ".None"/".null"/".undefined" on the prefix is stripped.
    """
    clean = _NULLISH_SUFFIX.sub("", prefix or "")
    if not clean:
        return list(items or ())

    out: List[SettingsItem] = []
    for item in items or ():
        if isinstance(item, FieldSetting):
            out.append(replace(item, name=join_path(clean, item.name)) if item.name else item)
        elif isinstance(item, DataTableSection):
            out.append(replace(item, data_source=join_path(clean, item.data_source)))
        elif isinstance(item, FieldsGroup):
            out.append(replace(item, fields=tuple(prefix_items(item.fields, clean))))
        elif isinstance(item, TabsGroup):
            out.append(replace(item, tabs=tuple(
                replace(tab, fields=tuple(prefix_items(tab.fields, clean))) for tab in item.tabs
            )))
        elif isinstance(item, AccordionGroup):
            out.append(replace(item, accordion=tuple(
                replace(sec, fields=tuple(prefix_items(sec.fields, clean))) for sec in item.accordion
            )))
        else:
            out.append(item)
    return out


def iter_tables(items: Sequence[SettingsItem]) -> Iterator[DataTableSection]:
    """Tables reachable without entering another table."""
    for item in items or ():
        if isinstance(item, DataTableSection):
            yield item
        elif not isinstance(item, FieldSetting):
            yield from iter_tables(list(child_items(item)))


def collect_absolute_leaf_fields(items: Sequence[SettingsItem], base_path: str = "") -> List[AbsoluteField]:
    """
    Every input path the form seeds on load.

    Plain leaves appear under their own names. Each table contributes its draft
    inputs as `tableKey.fieldName`; row inputs are index-dependent and excluded.
    """
    out: List[AbsoluteField] = []
    for item in items or ():
        if isinstance(item, FieldSetting):
            if item.name:
                out.append(AbsoluteField(join_path(base_path, item.name), item))
        elif isinstance(item, DataTableSection):
            table_key = join_path(base_path, item.data_source)
            for leaf in to_leaf_field_settings(item.fields):
                out.append(AbsoluteField(join_path(table_key, leaf.name), leaf, draft_of=table_key))
        else:
            out.extend(collect_absolute_leaf_fields(list(child_items(item)), base_path))
    return out


def collect_data_table_contexts(values: Dict[str, Any], items: Sequence[SettingsItem],
                                base_path: str = "", parent_key: Optional[str] = None,
                                row_index: Optional[int] = None) -> List[DataTableContext]:
    """
    Find every table instance, descending into the rows present in `values`.

    A table declared inside another table's fields yields one context per parent row,
    keyed as `parent.<i>.child`.
    """
    out: List[DataTableContext] = []
    for table in iter_tables(items):
        key = join_path(base_path, table.data_source)
        out.append(DataTableContext(key=key, table=table, parent_key=parent_key, row_index=row_index))

        rows = get_deep_value(values, key)
        if not isinstance(rows, list) or not any(True for _ in iter_tables(table.fields)):
            continue
        for index in range(len(rows)):
            out.extend(collect_data_table_contexts(
                values, table.fields, join_path(key, index), parent_key=key, row_index=index
            ))
    return out


# -- path membership ----------------------------------------------------------

def contains_field_path(items: Sequence[SettingsItem], path: str) -> bool:
    """
    True when `path` is rendered somewhere inside `items`.

    Matches a declared name exactly, a name reached through a row prefix
    (`x.items.0.name` ends with `.name`), or any path under a declared table.
    """
    for absolute in collect_absolute_leaf_fields(items):
        name = absolute.name
        if path == name or path.endswith("." + name):
            return True
    for table in iter_tables(items):
        if path == table.data_source or path.startswith(table.data_source + "."):
            return True
    return False


def first_tab_index_containing_path(group: TabsGroup, path: str) -> int:
    for index, tab in enumerate(group.tabs):
        if contains_field_path(tab.fields, path):
            return index
    return -1


def first_section_index_containing_path(group: AccordionGroup, path: str) -> int:
    for index, section in enumerate(group.accordion):
        if contains_field_path(section.fields, path):
            return index
    return -1


# -- validation ---------------------------------------------------------------

def find_collisions(items: Sequence[SettingsItem], base_path: str = "") -> Dict[str, str]:
    """
    Field paths that equal or nest under (or contain) a table data source at the
    same level, mapped to that table's key. Their values would share one path.
    """
    names = {a.name for a in collect_absolute_leaf_fields(items, base_path) if a.draft_of is None}
    clashes: Dict[str, str] = {}
    for table in iter_tables(items):
        table_key = join_path(base_path, table.data_source)
        for name in sorted(names):
            if is_descendant(name, table_key) or is_descendant(table_key, name):
                clashes.setdefault(name, table_key)
    return clashes


def collision_message(name: str, table_key: str) -> str:
    return f"Field path '{name}' collides with table data source '{table_key}'"


def mark_colliding_fields(items: Sequence[SettingsItem], base_path: str = "") -> List[SettingsItem]:
    """
    Replace fields that collide with a table by unnamed placeholders carrying
    `parse_error`, so the rest of the form still loads. Table rows are checked too.
    """
    clashes = find_collisions(items, base_path)

    def rewrite(nodes: Sequence[SettingsItem]) -> Tuple[SettingsItem, ...]:
        out: List[SettingsItem] = []
        for item in nodes or ():
            if isinstance(item, FieldSetting):
                name = join_path(base_path, item.name) if item.name else None
                if name in clashes:
                    out.append(FieldSetting(label=item.label or item.name,
                                            parse_error=collision_message(name, clashes[name])))
                else:
                    out.append(item)
            elif isinstance(item, DataTableSection):
                row_path = join_path(base_path, item.data_source, "0")
                out.append(replace(item, fields=tuple(mark_colliding_fields(item.fields, row_path))))
            elif isinstance(item, FieldsGroup):
                out.append(replace(item, fields=rewrite(item.fields)))
            elif isinstance(item, TabsGroup):
                out.append(replace(item, tabs=tuple(replace(tab, fields=rewrite(tab.fields)) for tab in item.tabs)))
            elif isinstance(item, AccordionGroup):
                out.append(replace(item, accordion=tuple(
                    replace(sec, fields=rewrite(sec.fields)) for sec in item.accordion
                )))
            else:
                out.append(item)
        return tuple(out)

    return list(rewrite(items))


def validate_declarations(items: Sequence[SettingsItem], base_path: str = "") -> List[str]:
    """
    Check a declaration tree for structural problems.

    Returns problems that are rendered in place (missing names, unknown types)
    and field paths that collide with a table data source. Nothing is raised.
    """
    problems = [collision_message(name, table_key)
                for name, table_key in find_collisions(items, base_path).items()]

    for table in iter_tables(items):
        problems.extend(validate_declarations(table.fields, join_path(base_path, table.data_source, "0")))

    for fs in flatten_for_schema(items):
        if fs.declaration_error:
            problems.append(fs.declaration_error)

    return problems


# -- parsing from plain data --------------------------------------------------

def _parse_options(raw: Any) -> Tuple[SelectOption, ...]:
    options = []
    for opt in raw or ():
        if isinstance(opt, SelectOption):
            options.append(opt)
        elif isinstance(opt, dict):
            value = opt.get('value')
            options.append(SelectOption(value=value, text=str(opt.get('text', opt.get('label', value)))))
        else:
            options.append(SelectOption(value=opt, text=str(opt)))
    return tuple(options)


def parse_item(raw: Any, compile_validation: Optional[Callable[[Any], Any]] = None,
               compile_predicate: Optional[Callable[[Any], Any]] = None) -> SettingsItem:
    """
    Build a settings item from a plain mapping (as loaded from YAML/JSON).

    Already-built items are returned unchanged. A mapping that carries more than one
    group shape (fields/tabs/accordion/dataTable) raises DeclarationError.
    """
    if isinstance(raw, (FieldSetting, FieldsGroup, TabsGroup, AccordionGroup, DataTableSection)):
        return raw
    if not isinstance(raw, dict):
        raise DeclarationError(f"Settings item must be a mapping, got {type(raw).__name__}")

    shapes = [shape for shape in GROUP_SHAPES if raw.get(shape) is not None]
    if len(shapes) > 1:
        raise DeclarationError(
            f"Settings item declares more than one shape: {', '.join(shapes)}",
            context={'shapes': shapes, 'header': raw.get('header')},
        )

    def predicate(value: Any) -> Predicate:
        if isinstance(value, dict) and compile_predicate is not None:
            return compile_predicate(value)
        return value if callable(value) else bool(value)

    def children(raw_items: Any) -> Tuple[SettingsItem, ...]:
        return tuple(parse_settings(raw_items or [], compile_validation, compile_predicate))

    hidden = predicate(raw.get('hidden', False))

    if 'fields' in shapes:
        return FieldsGroup(
            fields=children(raw['fields']),
            header=raw.get('header'),
            is_sub_header=bool(raw.get('isSubHeader', raw.get('is_sub_header', False))),
            description=raw.get('description'),
            hidden=hidden,
        )

    if 'tabs' in shapes:
        return TabsGroup(
            tabs=tuple(
                TabConfig(title=str(tab.get('title', f"Tab {i + 1}")),
                          fields=children(tab.get('fields')),
                          hidden=predicate(tab.get('hidden', False)))
                for i, tab in enumerate(raw['tabs'])
            ),
            header=raw.get('header'),
            description=raw.get('description'),
            hidden=hidden,
        )

    if 'accordion' in shapes:
        return AccordionGroup(
            accordion=tuple(
                AccordionSection(title=str(sec.get('title', f"Section {i + 1}")),
                                 fields=children(sec.get('fields')),
                                 id=sec.get('id'),
                                 open=bool(sec.get('open', False)),
                                 hidden=predicate(sec.get('hidden', False)),
                                 disabled=predicate(sec.get('disabled', False)))
                for i, sec in enumerate(raw['accordion'])
            ),
            allow_multiple=bool(raw.get('allowMultiple', raw.get('allow_multiple', False))),
            header=raw.get('header'),
            description=raw.get('description'),
            hidden=hidden,
        )

    if 'dataTable' in shapes:
        table = raw['dataTable']
        config = table.get('config', {})
        data_source = table.get('dataSource') or config.get('dataSource')
        if not data_source:
            raise DeclarationError("Data table is missing 'dataSource'", context={'header': raw.get('header')})
        columns = table.get('columns') or config.get('columnSettings') or []
        return DataTableSection(
            data_source=str(data_source),
            fields=children(table.get('fields')),
            columns=tuple(ColumnSetting(title=str(col.get('title', col.get('column'))), column=str(col['column']))
                          for col in columns),
            header=raw.get('header', table.get('header')),
            description=raw.get('description', table.get('description')),
            hidden=hidden,
            disabled=predicate(table.get('disabled', raw.get('disabled', False))),
        )

    validation = raw.get('validation')
    if isinstance(validation, dict) and compile_validation is not None:
        validation = compile_validation(validation)

    return FieldSetting(
        name=raw.get('name'),
        label=raw.get('label'),
        type=raw.get('type', 'text'),
        validation=validation if callable(validation) else None,
        options=_parse_options(raw.get('options')),
        disabled=predicate(raw.get('disabled', False)),
        hidden=hidden,
        placeholder=raw.get('placeholder'),
        help_text=raw.get('helpText', raw.get('help_text')),
    )


def parse_settings(raw_items: Sequence[Any], compile_validation: Optional[Callable[[Any], Any]] = None,
                   compile_predicate: Optional[Callable[[Any], Any]] = None) -> List[SettingsItem]:
    """
    Parse a list of settings items.

    A malformed node does not abort the form: it becomes a FieldSetting carrying
    `parse_error`, which the renderer shows in place of the control.
    """
    items: List[SettingsItem] = []
    for raw in raw_items or ():
        try:
            items.append(parse_item(raw, compile_validation, compile_predicate))
        except DeclarationError as e:
            label = (raw.get('label') or raw.get('header')) if isinstance(raw, dict) else None
            logger.error(f"Invalid settings item {label!r}: {e}")
            items.append(FieldSetting(label=label, parse_error=str(e)))
    return items
