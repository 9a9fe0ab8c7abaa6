"""Resource storage for pipelines.

Status writes use optimistic concurrency: an update only succeeds against the
``resource_version`` it was read at. A missing resource is an ordinary outcome
(``get`` returns None, ``update`` returns ``NOT_FOUND``), never an exception.
"""

from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from psycopg.types.json import Jsonb

from .client import DatabaseClient
from .models import Pipeline, PipelineId, PipelineSpec, PipelineStatus
from .sql import quote_ident

logger = logging.getLogger(__name__)


class UpdateOutcome(str, Enum):
    OK = "ok"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


class PipelineStore(ABC):
    """Storage contract shared by both controllers."""

    @abstractmethod
    def get(self, pipeline_id: PipelineId) -> Optional[Pipeline]:
        """Return the stored pipeline, or None if it no longer exists."""
        pass

    @abstractmethod
    def list(self, namespace: Optional[str] = None) -> List[Pipeline]:
        pass

    @abstractmethod
    def create(self, pipeline: Pipeline) -> Pipeline:
        pass

    @abstractmethod
    def update(self, pipeline: Pipeline) -> UpdateOutcome:
        """Write status and finalizers if ``resource_version`` is still current.

        The spec is never written. A deleting pipeline whose finalizers are
        all removed is removed from storage.
        """
        pass

    @abstractmethod
    def request_deletion(self, pipeline_id: PipelineId) -> bool:
        """Mark a pipeline for deletion; remove it at once if nothing holds it.

        Returns:
            False if the pipeline did not exist
        """
        pass


class PostgresPipelineStore(PipelineStore):
    """Pipeline store backed by a PostgreSQL table."""

    def __init__(self, client: DatabaseClient, table: str = "syndication_pipelines"):
        self.client = client
        self.table = quote_ident(table)

    def ensure_table(self) -> None:
        self.client.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                namespace text NOT NULL,
                name text NOT NULL,
                spec jsonb NOT NULL,
                status jsonb NOT NULL,
                finalizers jsonb NOT NULL DEFAULT '[]',
                deletion_timestamp timestamp with time zone,
                resource_version bigint NOT NULL DEFAULT 1,
                PRIMARY KEY (namespace, name)
            )
        """)

    def _row_to_pipeline(self, row: tuple) -> Pipeline:
        namespace, name, spec, status, finalizers, deletion_timestamp, version = row
        return Pipeline(
            namespace=namespace,
            name=name,
            spec=PipelineSpec.model_validate(spec),
            status=PipelineStatus.model_validate(status),
            finalizers=list(finalizers or []),
            deletion_timestamp=deletion_timestamp,
            resource_version=version,
        )

    def get(self, pipeline_id: PipelineId) -> Optional[Pipeline]:
        row = self.client.fetch_one(
            f"""
            SELECT namespace, name, spec, status, finalizers, deletion_timestamp, resource_version
            FROM {self.table} WHERE namespace = %s AND name = %s
            """,
            (pipeline_id.namespace, pipeline_id.name),
        )
        return self._row_to_pipeline(row) if row else None

    def list(self, namespace: Optional[str] = None) -> List[Pipeline]:
        query = f"""
            SELECT namespace, name, spec, status, finalizers, deletion_timestamp, resource_version
            FROM {self.table}
        """
        params: tuple = ()
        if namespace:
            query += " WHERE namespace = %s"
            params = (namespace,)
        query += " ORDER BY namespace, name"
        return [self._row_to_pipeline(row) for row in self.client.fetch_all(query, params)]

    def create(self, pipeline: Pipeline) -> Pipeline:
        logger.info(f"Creating pipeline {pipeline.id}")
        self.client.execute(
            f"""
            INSERT INTO {self.table} (namespace, name, spec, status, finalizers, resource_version)
            VALUES (%s, %s, %s, %s, %s, 1)
            """,
            (
                pipeline.namespace,
                pipeline.name,
                Jsonb(pipeline.spec.model_dump(mode="json")),
                Jsonb(pipeline.status.model_dump(mode="json")),
                Jsonb(list(pipeline.finalizers)),
            ),
        )
        return pipeline.model_copy(update={"resource_version": 1})

    def update(self, pipeline: Pipeline) -> UpdateOutcome:
        key = (pipeline.namespace, pipeline.name, pipeline.resource_version)
        if pipeline.is_deleting and not pipeline.finalizers:
            affected = self.client.execute(
                f"""
                DELETE FROM {self.table}
                WHERE namespace = %s AND name = %s AND resource_version = %s
                """,
                key,
            )
        else:
            affected = self.client.execute(
                f"""
                UPDATE {self.table}
                SET status = %s, finalizers = %s, resource_version = resource_version + 1
                WHERE namespace = %s AND name = %s AND resource_version = %s
                """,
                (
                    Jsonb(pipeline.status.model_dump(mode="json")),
                    Jsonb(list(pipeline.finalizers)),
                ) + key,
            )

        if affected == 1:
            return UpdateOutcome.OK
        if self.get(pipeline.id) is None:
            return UpdateOutcome.NOT_FOUND
        return UpdateOutcome.CONFLICT

    def request_deletion(self, pipeline_id: PipelineId) -> bool:
        params = (pipeline_id.namespace, pipeline_id.name)
        removed = self.client.execute(
            f"""
            DELETE FROM {self.table}
            WHERE namespace = %s AND name = %s AND finalizers = '[]'::jsonb
            """,
            params,
        )
        if removed:
            logger.info(f"Deleted pipeline {pipeline_id}")
            return True

        marked = self.client.execute(
            f"""
            UPDATE {self.table}
            SET deletion_timestamp = COALESCE(deletion_timestamp, %s),
                resource_version = resource_version + 1
            WHERE namespace = %s AND name = %s
            """,
            (datetime.now(timezone.utc),) + params,
        )
        if marked:
            logger.info(f"Marked pipeline {pipeline_id} for deletion")
        return marked == 1
