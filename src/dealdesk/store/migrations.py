"""YAML table schema to SQLite DDL.

The schema file is checked as a whole before anything touches the database,
so a bad reference or enum name never leaves a half-created store behind.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

SQL_TYPES = {
    "uuid": "TEXT",
    "text": "TEXT",
    "number": "REAL",
    "decimal": "TEXT",
    "datetime": "TEXT",
    "date": "TEXT",
    "enum": "TEXT",
    "bool": "INTEGER",
}
META_TABLE = "__schema_meta"


class SchemaError(RuntimeError):
    pass


@dataclass(frozen=True)
class Schema:
    version: int
    enums: dict[str, list[str]]
    tables: dict[str, Any]

    def fields(self, table_name: str) -> dict[str, dict[str, Any]]:
        return self.tables[table_name]["fields"]

    def primary_key(self, table_name: str) -> list[str]:
        key = self.tables[table_name].get("primary_key")
        if key is None:
            return []
        return [key] if isinstance(key, str) else list(key)


def load_schema(schema_path: Path) -> Schema:
    data = yaml.safe_load(schema_path.read_text(encoding="utf-8")) or {}
    try:
        version = int(data.get("version", 1))
    except (TypeError, ValueError) as exc:
        raise SchemaError("Schema version must be an integer.") from exc
    schema = Schema(
        version=version,
        enums=data.get("enums") or {},
        tables=data.get("tables") or {},
    )
    problems = check_schema(schema)
    if problems:
        raise SchemaError("Invalid schema: " + "; ".join(problems))
    return schema


def check_schema(schema: Schema) -> list[str]:
    """Every problem in the schema, in file order."""
    if not isinstance(schema.enums, dict):
        return ["enums must be a mapping"]
    if not isinstance(schema.tables, dict):
        return ["tables must be a mapping"]

    problems: list[str] = []
    for table_name, table_def in schema.tables.items():
        fields = table_def.get("fields") if isinstance(table_def, dict) else None
        if not isinstance(fields, dict) or not fields:
            problems.append(f"{table_name}: fields must be a non-empty mapping")
            continue
        for key in schema.primary_key(table_name):
            if key not in fields:
                problems.append(f"{table_name}: primary key {key} is not a field")
        for field_name, spec in fields.items():
            problems.extend(_check_field(schema, f"{table_name}.{field_name}", spec))
        for index_fields in table_def.get("indexes") or []:
            if not isinstance(index_fields, list) or not index_fields:
                problems.append(f"{table_name}: index must be a non-empty list")
                continue
            for name in index_fields:
                if name not in fields:
                    problems.append(f"{table_name}: index column {name} is not a field")
    return problems


def _check_field(schema: Schema, label: str, spec: Any) -> list[str]:
    if not isinstance(spec, dict):
        return [f"{label}: definition must be a mapping"]
    problems = []
    field_type = spec.get("type")
    if field_type not in SQL_TYPES:
        problems.append(f"{label}: unknown type {field_type}")
    if field_type == "enum":
        values = schema.enums.get(spec.get("enum"))
        if not values:
            problems.append(f"{label}: unknown enum {spec.get('enum')}")
    ref = spec.get("ref")
    if ref:
        ref_table, _, ref_field = str(ref).partition(".")
        target = schema.tables.get(ref_table)
        if not isinstance(target, dict) or ref_field not in (target.get("fields") or {}):
            problems.append(f"{label}: reference {ref} does not resolve")
    return problems


def table_ddl(schema: Schema, table_name: str) -> str:
    keys = schema.primary_key(table_name)
    columns: list[str] = []
    constraints: list[str] = []
    for field_name, spec in schema.fields(table_name).items():
        columns.append(_column_sql(schema, field_name, spec, inline_key=keys == [field_name]))
        if spec.get("ref"):
            ref_table, _, ref_field = spec["ref"].partition(".")
            constraints.append(
                f"FOREIGN KEY ({field_name}) REFERENCES {ref_table}({ref_field})"
            )
    if len(keys) > 1:
        constraints.insert(0, f"PRIMARY KEY ({', '.join(keys)})")
    body = ", ".join(columns + constraints)
    return f"CREATE TABLE IF NOT EXISTS {table_name} ({body});"


def index_ddl(schema: Schema, table_name: str) -> list[str]:
    statements = []
    for index_fields in schema.tables[table_name].get("indexes") or []:
        name = f"idx_{table_name}_{'_'.join(index_fields)}"
        statements.append(
            f"CREATE INDEX IF NOT EXISTS {name} ON {table_name} ({', '.join(index_fields)});"
        )
    return statements


def _column_sql(schema: Schema, field_name: str, spec: dict[str, Any], inline_key: bool) -> str:
    parts = [field_name, SQL_TYPES[spec["type"]]]
    if spec.get("required", False):
        parts.append("NOT NULL")
    if inline_key:
        parts.append("PRIMARY KEY")
    if spec["type"] == "enum":
        allowed = ", ".join(f"'{value}'" for value in schema.enums[spec["enum"]])
        parts.append(f"CHECK ({field_name} IN ({allowed}))")
    elif spec["type"] == "bool":
        parts.append(f"CHECK ({field_name} IN (0, 1))")
    return " ".join(parts)


def applied_version(conn) -> int | None:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (META_TABLE,)
    ).fetchone()
    if row is None:
        return None
    return conn.execute(f"SELECT MAX(version) FROM {META_TABLE}").fetchone()[0]


def apply_schema(conn, schema_path: Path) -> Schema:
    """Create missing tables and indexes; refuses to go back to an older version."""
    schema = load_schema(schema_path)
    current = applied_version(conn)
    if current is not None and schema.version < current:
        raise SchemaError(
            f"Store is at schema version {current}; refusing to apply version {schema.version}."
        )

    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute(
        f"CREATE TABLE IF NOT EXISTS {META_TABLE} "
        "(version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)"
    )
    for table_name in schema.tables:
        conn.execute(table_ddl(schema, table_name))
        for statement in index_ddl(schema, table_name):
            conn.execute(statement)
    conn.execute(
        f"INSERT OR REPLACE INTO {META_TABLE} (version, applied_at) VALUES (?, datetime('now'))",
        (schema.version,),
    )
    conn.commit()
    return schema
