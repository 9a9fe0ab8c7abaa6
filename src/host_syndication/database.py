"""Source and replica database access."""

from __future__ import annotations
import logging
import re
from typing import List, Optional, Sequence

from .client import DatabaseClient
from . import naming
from .models import PipelineId
from .naming import TABLE_PREFIX
from .sql import (
    INSIGHTS_FILTER,
    build_create_hosts_indexes,
    build_create_hosts_table,
    build_create_or_replace_view,
    build_create_schema,
    build_drop_table,
    build_drop_view,
    build_select_host_rows,
)

logger = logging.getLogger(__name__)

_VIEW_TARGET_RE = re.compile(r"FROM\s+(?:\"?[\w$]+\"?\.)?\"?(?P<table>[\w$]+)\"?", re.IGNORECASE)


class SourceDatabase:
    """Read-only access to the source-of-truth hosts table."""

    def __init__(self, client: DatabaseClient, table: str = "public.hosts"):
        self.client = client
        self.table = table

    def host_rows(self, insights_only: bool, columns: Sequence[str] = ()) -> List[tuple]:
        """Fetch ``(id, *columns)`` for every host replicated by a pipeline."""
        where = [INSIGHTS_FILTER] if insights_only else []
        return self.client.fetch_all(
            build_select_host_rows(self.table, columns=columns, where=where))


class AppDatabase:
    """Replica schema owned by the syndication pipelines.

    Replica tables live in ``schema``. Each pipeline serves reads through its
    own view, ``schema.<view_name>_<token>``, which selects from its active table.
    """

    def __init__(self, client: DatabaseClient, schema: str = "inventory", view_name: str = "hosts"):
        self.client = client
        self.schema = schema
        self.view_name = view_name

    def create_table(self, table_name: str) -> None:
        """Create the schema, a replica table and its indexes if missing."""
        logger.info(f"Creating table {self.schema}.{table_name}")
        with self.client.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(build_create_schema(self.schema))
                cur.execute(build_create_hosts_table(self.schema, table_name))
                for statement in build_create_hosts_indexes(self.schema, table_name):
                    cur.execute(statement)

    def drop_table(self, table_name: str) -> None:
        logger.info(f"Dropping table {self.schema}.{table_name}")
        self.client.execute(build_drop_table(self.schema, table_name))

    def list_tables(self) -> List[str]:
        """List replica tables in the schema, owned by any pipeline."""
        rows = self.client.fetch_all(
            """
            SELECT table_name FROM information_schema.tables
            WHERE table_schema = %s AND table_type = 'BASE TABLE'
            AND table_name LIKE %s
            ORDER BY table_name
            """,
            (self.schema, f"{TABLE_PREFIX}%"),
        )
        return [row[0] for row in rows]

    def view_for(self, pipeline_id: PipelineId) -> str:
        """Name of the view serving reads for ``pipeline_id``."""
        return naming.view_name(pipeline_id, base=self.view_name)

    def get_current_table(self, view_name: str) -> Optional[str]:
        """Return the table a view currently selects from, or None without a view."""
        row = self.client.fetch_one(
            """
            SELECT view_definition FROM information_schema.views
            WHERE table_schema = %s AND table_name = %s
            """,
            (self.schema, view_name),
        )
        if not row or not row[0]:
            return None

        match = _VIEW_TARGET_RE.search(row[0])
        return match.group("table") if match else None

    def swap_view(self, view_name: str, table_name: str) -> None:
        """Atomically repoint a view at ``table_name``."""
        logger.info(f"Pointing view {self.schema}.{view_name} at {table_name}")
        self.client.execute(
            build_create_or_replace_view(self.schema, view_name, table_name))

    def drop_view(self, view_name: str) -> None:
        logger.info(f"Dropping view {self.schema}.{view_name}")
        self.client.execute(build_drop_view(self.schema, view_name))

    def host_rows(self, table_name: str, columns: Sequence[str] = ()) -> List[tuple]:
        """Fetch ``(id, *columns)`` for every host in a replica table."""
        return self.client.fetch_all(
            build_select_host_rows(table_name, schema=self.schema, columns=columns))
