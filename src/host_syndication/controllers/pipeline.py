"""Pipeline lifecycle controller.

Drives a pipeline through NEW -> INITIAL_SYNC -> VALID. The controller never
waits for validation: it reacts to the ``valid`` condition written by the
validation controller, so every pass is short and safe to repeat.

Blue/green refresh: a candidate table is built next to the active one and the
pipeline's view is only repointed once the candidate has been validated. The
previous active table is removed after the cutover is recorded.
"""

from __future__ import annotations
import logging
from typing import Any, Dict

from .. import naming
from ..config import SyndicationSettings
from ..connect import ConnectorManager
from ..database import AppDatabase
from ..exceptions import InvariantError, SyndicationError
from ..models import FINALIZER, ConditionStatus, Pipeline, PipelineState
from ..store import PipelineStore
from .base import BaseReconciler, ReconcileStep

logger = logging.getLogger(__name__)


class PipelineReconciler(BaseReconciler):
    """Creates, refreshes, cuts over and tears down replication infrastructure."""

    name = "pipeline"
    watches_changes = True

    def __init__(
        self,
        store: PipelineStore,
        settings: SyndicationSettings,
        app_db: AppDatabase,
        connectors: ConnectorManager,
    ):
        super().__init__(store, settings)
        self.app_db = app_db
        self.connectors = connectors

    def reconcile_pipeline(self, pipeline: Pipeline, memo: Dict[str, Any]) -> ReconcileStep:
        if pipeline.is_deleting:
            return self._finalize(pipeline)

        updated = pipeline.model_copy(deep=True)
        status = updated.status
        if FINALIZER not in updated.finalizers:
            updated.finalizers.append(FINALIZER)

        spec_hash = pipeline.spec.fingerprint()
        if status.state != PipelineState.NEW and status.spec_hash and status.spec_hash != spec_hash:
            logger.info(f"[{pipeline.id}] Spec changed, refreshing pipeline")
            status.state = PipelineState.NEW

        if status.state == PipelineState.NEW:
            self._start_initial_sync(updated, spec_hash)
        else:
            if not status.table_name:
                raise InvariantError(f"Pipeline {pipeline.id} is {status.state.value} without a table name")
            self._ensure_table(updated)
            self._ensure_connector(updated)
            if naming.can_cutover(status):
                self._cutover(updated)

        if updated == pipeline:
            return ReconcileStep()
        return ReconcileStep(pipeline=updated)

    def _start_initial_sync(self, pipeline: Pipeline, spec_hash: str) -> None:
        status = pipeline.status
        generation, table = naming.next_candidate(pipeline.id, status)

        self.app_db.create_table(table)
        self.connectors.create_connector(pipeline, table)

        status.pipeline_version = generation
        status.table_name = table
        status.state = PipelineState.INITIAL_SYNC
        status.valid = ConditionStatus.UNKNOWN
        status.validation_failed_count = 0
        status.host_count = 0
        status.spec_hash = spec_hash
        logger.info(
            f"[{pipeline.id}] Started initial sync into {table} "
            f"(active table: {status.active_table_name or 'none'})")

    def _ensure_table(self, pipeline: Pipeline) -> None:
        table = pipeline.status.table_name
        if table in self.app_db.list_tables():
            return
        logger.warning(f"[{pipeline.id}] Table {table} is missing, recreating it")
        self.app_db.create_table(table)

    def _ensure_connector(self, pipeline: Pipeline) -> None:
        table = pipeline.status.table_name
        connectors = self.connectors.list_connectors(pipeline.namespace, pipeline.name)
        if any(c.target_table == table for c in connectors):
            return
        logger.warning(f"[{pipeline.id}] Connector for {table} is missing, recreating it")
        self.connectors.create_connector(pipeline, table)

    def _cutover(self, pipeline: Pipeline) -> None:
        status = pipeline.status
        previous = status.active_table_name
        view = self.app_db.view_for(pipeline.id)
        self.app_db.swap_view(view, status.table_name)

        status.active_table_name = status.table_name
        status.state = PipelineState.VALID
        status.validation_failed_count = 0
        logger.info(
            f"[{pipeline.id}] Transitioned to VALID, {view} now reads "
            f"{status.table_name} (was {previous or 'none'})")

    def after_update(self, pipeline: Pipeline) -> None:
        if pipeline.is_deleting:
            return
        try:
            self._remove_stale(pipeline)
        except SyndicationError as e:
            logger.warning(f"[{pipeline.id}] Stale object cleanup deferred: {e}")

    def _remove_stale(self, pipeline: Pipeline) -> None:
        status = pipeline.status
        for connector in self.connectors.list_connectors(pipeline.namespace, pipeline.name):
            if naming.is_stale(pipeline.id, connector.target_table, status):
                self.connectors.delete_connector(pipeline.id, connector.target_table)

        existing = self.app_db.list_tables()
        current = self.app_db.get_current_table(self.app_db.view_for(pipeline.id))
        stale = naming.stale_tables(pipeline.id, existing, status, keep=[current])
        for table in stale:
            self.app_db.drop_table(table)

    def _finalize(self, pipeline: Pipeline) -> ReconcileStep:
        if FINALIZER not in pipeline.finalizers:
            return ReconcileStep()

        logger.info(f"[{pipeline.id}] Removing pipeline")
        self.connectors.delete_connector(pipeline.id)

        self.app_db.drop_view(self.app_db.view_for(pipeline.id))
        for table in self.app_db.list_tables():
            if naming.is_owned_table(pipeline.id, table):
                self.app_db.drop_table(table)

        updated = pipeline.model_copy(deep=True)
        updated.finalizers.remove(FINALIZER)
        return ReconcileStep(pipeline=updated)
