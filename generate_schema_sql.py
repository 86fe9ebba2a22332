#!/usr/bin/env python3
"""Generate CREATE TABLE SQL from a declarative YAML schema with column templates."""

from __future__ import annotations

import argparse
import dataclasses
import difflib
import sys
from pathlib import Path
from typing import Any

from column_aligner import align_rows

try:
    import yaml
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required. Install with: pip install pyyaml") from exc


MAX_CONSTRAINT_NAME_LENGTH = 63
INDENT = "    "

# Field index of the nullability fragment; NULL / NOT NULL are right-aligned.
NULL_FIELD = 2

COLUMN_PROPERTIES = frozenset({"type", "length", "not_null", "default", "values"})


class SchemaError(ValueError):
    """Base class for schema validation failures."""


class SchemaMissingSection(SchemaError):
    def __init__(self, section: str) -> None:
        self.section = section
        super().__init__(f"No {section} found in schema file... aborting")


class TableMissingColumns(SchemaError):
    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(f"Table `{table}` is missing columns... aborting")


class UnknownColumnTemplate(SchemaError):
    def __init__(self, table: str, column: str, template: str) -> None:
        self.table = table
        self.column = column
        self.template = template
        super().__init__(
            f"Requested column template `{template}` for column `{column}` in table `{table}` not found"
        )


class MissingColumnType(SchemaError):
    def __init__(self, table: str, column: str) -> None:
        self.table = table
        self.column = column
        super().__init__(f"Column `{column}` for table `{table}` is missing a type... aborting")


class UnrecognizedColumnProperty(SchemaError):
    def __init__(self, table: str, column: str, prop: str) -> None:
        self.table = table
        self.column = column
        self.prop = prop
        super().__init__(
            f"Extra column property `{prop}` found for column `{column}` in table `{table}`... aborting"
        )


class MissingEnumValues(SchemaError):
    def __init__(self, table: str, column: str) -> None:
        self.table = table
        self.column = column
        super().__init__(f"Enum `{column}` for table `{table}` is missing a values collection... aborting")


class MissingConstraintType(SchemaError):
    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(f"Constraint for table `{table}` is missing a type... aborting")


class UnknownConstraintType(SchemaError):
    def __init__(self, table: str, constraint_type: Any) -> None:
        self.table = table
        self.constraint_type = constraint_type
        super().__init__(f"Unknown constraint type `{constraint_type}` found for table `{table}`... aborting")


class MissingConstraintField(SchemaError):
    kind = ""
    field = ""

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(f"{self.kind} constraint for table `{table}` is missing a {self.field}... aborting")


class MissingPrimaryKeyColumns(MissingConstraintField):
    kind = "PK"
    field = "columns"


class MissingForeignKeyColumn(MissingConstraintField):
    kind = "FK"
    field = "column"


class MissingForeignKeyReferencesColumn(MissingConstraintField):
    kind = "FK"
    field = "references_column"


class MissingForeignKeyReferencesTable(MissingConstraintField):
    kind = "FK"
    field = "references_table"


@dataclasses.dataclass
class Schema:
    column_templates: dict[str, dict]
    tables: dict[str, dict]


@dataclasses.dataclass
class ColumnParts:
    name: str
    type_part: str
    null_part: str = ""
    default_part: str = ""

    def as_row(self) -> list[str]:
        return [self.name, self.type_part, self.null_part, self.default_part]


@dataclasses.dataclass
class ConstraintParts:
    name: str
    kind: str
    columns: str
    references: str = ""
    keyword: str = "CONSTRAINT"

    def as_row(self) -> list[str]:
        return [self.keyword, self.name, self.kind, self.columns, self.references]


def sql_scalar(value: Any) -> str:
    """Render a YAML scalar as SQL text without adding any quoting."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def as_list(value: Any) -> list:
    """Accept either a single YAML scalar or a sequence of them."""
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def quote_identifier(name: Any) -> str:
    # Embedded backticks are not escaped.
    return f"`{sql_scalar(name)}`"


def merge_template(
    table_name: str,
    column_name: str,
    definition: dict,
    column_templates: dict[str, dict],
) -> dict:
    if "template" not in definition:
        return dict(definition)

    template_name = definition["template"]
    if template_name not in column_templates:
        raise UnknownColumnTemplate(table_name, column_name, template_name)

    template = column_templates[template_name]
    if template is None:
        template = {}
    if not isinstance(template, dict):
        raise SchemaError(f"Column template `{template_name}` must be a mapping of properties")

    merged = dict(template)
    merged.update(definition)
    del merged["template"]
    return merged


def resolve_column(
    table_name: str,
    column_name: str,
    definition: dict | None,
    column_templates: dict[str, dict],
) -> ColumnParts:
    if definition is None:
        definition = {}
    if not isinstance(definition, dict):
        raise SchemaError(f"Column `{column_name}` for table `{table_name}` must be a mapping of properties")

    props = merge_template(table_name, column_name, definition, column_templates)

    null_part = ""
    if "not_null" in props:
        null_part = "NOT NULL" if props["not_null"] else "NULL"

    if "type" not in props:
        raise MissingColumnType(table_name, column_name)
    col_type = sql_scalar(props["type"])
    type_part = col_type
    if "length" in props:
        type_part += f"({sql_scalar(props['length'])})"
    # A length suffix makes the type fragment stop matching, so `enum` with
    # a length renders as `enum(N)` and takes no values.
    if type_part.lower() == "enum":
        if "values" not in props:
            raise MissingEnumValues(table_name, column_name)
        values = [sql_scalar(v) for v in as_list(props["values"])]
        type_part += "('" + "', '".join(values) + "')"

    default_part = ""
    if "default" in props:
        default_part = f"DEFAULT {sql_scalar(props['default'])}"

    leftover = [key for key in props if key not in COLUMN_PROPERTIES]
    if leftover:
        raise UnrecognizedColumnProperty(table_name, column_name, leftover[0])

    return ColumnParts(
        name=quote_identifier(column_name),
        type_part=type_part,
        null_part=null_part,
        default_part=default_part,
    )


def resolve_primary_key(table_name: str, constraint: dict) -> ConstraintParts:
    if "columns" not in constraint:
        raise MissingPrimaryKeyColumns(table_name)

    columns = [sql_scalar(c) for c in as_list(constraint["columns"])]
    name = "__".join(["pk", table_name, *columns])
    return ConstraintParts(
        name=quote_identifier(name),
        kind="PRIMARY KEY",
        columns="( " + ", ".join(quote_identifier(c) for c in columns) + " )",
    )


def foreign_key_name(table_name: str, column: str, references_table: str, references_column: str) -> str:
    name = "__".join(["fk", table_name, references_table, column, references_column])
    # Truncated names may collide; nothing disambiguates them.
    return name[:MAX_CONSTRAINT_NAME_LENGTH]


def resolve_foreign_key(table_name: str, constraint: dict) -> ConstraintParts:
    if "column" not in constraint:
        raise MissingForeignKeyColumn(table_name)
    if "references_column" not in constraint:
        raise MissingForeignKeyReferencesColumn(table_name)
    if "references_table" not in constraint:
        raise MissingForeignKeyReferencesTable(table_name)

    column = sql_scalar(constraint["column"])
    references_table = sql_scalar(constraint["references_table"])
    references_column = sql_scalar(constraint["references_column"])

    name = foreign_key_name(table_name, column, references_table, references_column)
    return ConstraintParts(
        name=quote_identifier(name),
        kind="FOREIGN KEY",
        columns=f"( {quote_identifier(column)} )",
        references=f"REFERENCES {quote_identifier(references_table)} ( {quote_identifier(references_column)} )",
    )


CONSTRAINT_RESOLVERS = {
    "primary": resolve_primary_key,
    "foreign": resolve_foreign_key,
}


def resolve_constraint(table_name: str, constraint: dict | None) -> ConstraintParts:
    if constraint is None:
        constraint = {}
    if not isinstance(constraint, dict):
        raise SchemaError(f"Constraint for table `{table_name}` must be a mapping")
    if "type" not in constraint:
        raise MissingConstraintType(table_name)

    resolver = CONSTRAINT_RESOLVERS.get(constraint["type"])
    if resolver is None:
        raise UnknownConstraintType(table_name, constraint["type"])
    return resolver(table_name, constraint)


def resolve_constraints(table_name: str, constraints: list | None) -> list[ConstraintParts]:
    if constraints is None:
        return []
    if not isinstance(constraints, list):
        raise SchemaError(f"Constraints for table `{table_name}` must be a list")
    return [resolve_constraint(table_name, c) for c in constraints]


def render_body_lines(lines: list[str]) -> list[str]:
    out: list[str] = []
    last = len(lines) - 1
    for idx, line in enumerate(lines):
        if not line.strip():
            out.append("")
            continue
        trailing = "," if idx < last else ""
        out.append(f"{INDENT}{line.strip()}{trailing}")
    return out


def render_table_sql(table_name: str, table: dict | None, column_templates: dict[str, dict]) -> str:
    if not isinstance(table, dict) or not table.get("columns"):
        raise TableMissingColumns(table_name)

    columns = table["columns"]
    if not isinstance(columns, dict):
        raise SchemaError(f"Columns for table `{table_name}` must be a mapping")

    column_rows = [
        resolve_column(table_name, column_name, definition, column_templates).as_row()
        for column_name, definition in columns.items()
    ]
    lines = align_rows(column_rows, right_aligned=[NULL_FIELD])

    constraints = resolve_constraints(table_name, table.get("constraints"))
    if constraints:
        lines.append("")
        lines.extend(align_rows([c.as_row() for c in constraints]))

    sql: list[str] = [f"CREATE TABLE {quote_identifier(table_name)}", "("]
    sql.extend(render_body_lines(lines))
    sql.append(");")
    sql.append("")
    return "\n".join(sql)


def generate_sql(schema: Schema) -> str:
    blocks = [
        render_table_sql(sql_scalar(table_name), table, schema.column_templates)
        for table_name, table in schema.tables.items()
    ]
    return "\n".join(blocks)


def schema_from_mapping(data: Any) -> Schema:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SchemaError("Schema file must contain a mapping at the top level")

    for section in ("column_templates", "tables"):
        if section not in data:
            raise SchemaMissingSection(section)

    sections = {}
    for section in ("column_templates", "tables"):
        body = data[section]
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise SchemaError(f"Section `{section}` must be a mapping")
        sections[section] = dict(body)

    return Schema(**sections)


def load_schema(path: Path) -> Schema:
    return schema_from_mapping(yaml.safe_load(path.read_text(encoding="utf-8")))


def generate_outputs(schema_path: Path) -> str:
    return generate_sql(load_schema(schema_path))


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def check_equal(path: Path, generated: str, schema_path: Path) -> bool:
    """Compare the committed SQL at `path` with what `schema_path` compiles to."""
    if not path.exists():
        print(f"[check] missing file: {path} (generate it from {schema_path})", file=sys.stderr)
        return False

    existing = path.read_text(encoding="utf-8")
    if existing == generated:
        return True

    print(f"[check] drift detected: {path} is out of date with {schema_path}", file=sys.stderr)
    diff = difflib.unified_diff(
        existing.splitlines(),
        generated.splitlines(),
        fromfile=str(path),
        tofile=f"{schema_path} -> {path}",
        lineterm="",
    )
    for idx, line in enumerate(diff):
        if idx > 200:
            print("... (diff truncated)", file=sys.stderr)
            break
        print(line, file=sys.stderr)
    return False


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate CREATE TABLE SQL from a YAML schema")
    parser.add_argument("--schema", default="schema.yaml", help="Input YAML schema")
    parser.add_argument("--out", default=None, help="Output SQL file (default: stdout)")
    parser.add_argument("--check", action="store_true", help="Verify --out is up-to-date without writing")
    args = parser.parse_args(argv)
    if args.check and not args.out:
        parser.error("--check requires --out")
    return args


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    schema_path = Path(args.schema)

    try:
        sql_output = generate_outputs(schema_path)
    except (SchemaError, yaml.YAMLError, OSError) as exc:
        print(f"[error] {schema_path}: {exc}", file=sys.stderr)
        return 1

    if args.out is None:
        sys.stdout.write(sql_output)
        return 0

    out_sql = Path(args.out)
    if args.check:
        return 0 if check_equal(out_sql, sql_output, schema_path) else 1

    write_text(out_sql, sql_output)
    print(f"Generated {out_sql}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
