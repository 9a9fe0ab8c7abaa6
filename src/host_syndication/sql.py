from __future__ import annotations
import re
from typing import Iterable, Optional, Sequence


_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")

INSIGHTS_FILTER = "canonical_facts ? 'insights_id'"

HOSTS_COLUMNS_DDL = (
    "id uuid PRIMARY KEY",
    "account character varying(10)",
    "org_id character varying(36)",
    "display_name character varying(200)",
    "tags jsonb NOT NULL DEFAULT '{}'",
    "updated timestamp with time zone NOT NULL",
    "created timestamp with time zone NOT NULL",
    "stale_timestamp timestamp with time zone NOT NULL",
    "system_profile jsonb NOT NULL DEFAULT '{}'",
)


def quote_ident(name: str) -> str:
    """Quote a single SQL identifier."""
    if not name:
        raise ValueError("identifier must not be empty")
    if _IDENT_RE.match(name) and name.lower() == name:
        return name
    return '"' + name.replace('"', '""') + '"'


def qualified(name: str, schema: Optional[str] = None) -> str:
    """Quote ``schema.name``; a dotted ``name`` carries its own schema."""
    if schema is None and "." in name:
        schema, name = name.split(".", 1)
    if schema:
        return f"{quote_ident(schema)}.{quote_ident(name)}"
    return quote_ident(name)


def build_create_schema(schema: str) -> str:
    return f"CREATE SCHEMA IF NOT EXISTS {quote_ident(schema)};"


def build_create_hosts_table(schema: str, table_name: str) -> str:
    """Builds the CREATE TABLE statement for a replica table.

    Safe to repeat: an existing table is left untouched.
    """
    cols = ",\n    ".join(HOSTS_COLUMNS_DDL)
    return f"""
CREATE TABLE IF NOT EXISTS {qualified(table_name, schema)} (
    {cols}
);
""".strip()


def build_create_hosts_indexes(schema: str, table_name: str) -> list[str]:
    target = qualified(table_name, schema)
    return [
        f"CREATE INDEX IF NOT EXISTS {quote_ident(table_name + '_account_index')} ON {target} (account);",
        f"CREATE INDEX IF NOT EXISTS {quote_ident(table_name + '_org_id_index')} ON {target} (org_id);",
        f"CREATE INDEX IF NOT EXISTS {quote_ident(table_name + '_tags_index')} ON {target} USING GIN (tags JSONB_PATH_OPS);",
    ]


def build_drop_table(schema: str, table_name: str) -> str:
    return f"DROP TABLE IF EXISTS {qualified(table_name, schema)};"


def build_create_or_replace_view(schema: str, view_name: str, table_name: str) -> str:
    """Points ``schema.view_name`` at ``table_name`` in a single statement."""
    return (
        f"CREATE OR REPLACE VIEW {qualified(view_name, schema)} AS "
        f"SELECT * FROM {qualified(table_name, schema)};"
    )


def build_drop_view(schema: str, view_name: str) -> str:
    return f"DROP VIEW IF EXISTS {qualified(view_name, schema)};"


def build_select_host_rows(
    table: str,
    *,
    schema: Optional[str] = None,
    columns: Sequence[str] = (),
    where: Iterable[str] = (),
) -> str:
    """Builds the identity query used by validation.

    Content columns are cast to text so both sides compare the same way.
    """
    select_items = ["id::text"] + [f"{quote_ident(c)}::text" for c in columns]
    conditions = list(where)
    where_clause = f"\nWHERE {' AND '.join(conditions)}" if conditions else ""
    return f"""
SELECT {', '.join(select_items)}
FROM {qualified(table, schema)}{where_clause}
""".strip()
