"""Validation controller.

Runs the validation engine against the candidate table and records the
verdict in status. Two thresholds bound the verdict: a mismatch percentage
for a single pass, and a number of consecutive failed passes after which the
pipeline is sent back to NEW for a rebuild. The active table keeps serving
reads throughout.
"""

from __future__ import annotations
import logging
from typing import Any, Dict

from ..config import SyndicationSettings, Thresholds
from ..exceptions import InvariantError
from ..models import ConditionStatus, Pipeline, PipelineState, ReconcileResult
from ..store import PipelineStore
from ..validation import ValidationEngine, ValidationResult
from .base import BaseReconciler, ReconcileStep

logger = logging.getLogger(__name__)


class ValidationReconciler(BaseReconciler):
    """Measures replication fidelity and advances or resets the lifecycle state."""

    name = "validation"

    def __init__(self, store: PipelineStore, settings: SyndicationSettings, engine: ValidationEngine):
        super().__init__(store, settings)
        self.engine = engine

    def thresholds_for(self, pipeline: Pipeline) -> Thresholds:
        thresholds = self.settings.thresholds_for(pipeline.status.state)
        override = pipeline.spec.validation_threshold
        if pipeline.status.state != PipelineState.INITIAL_SYNC and override is not None:
            thresholds = Thresholds(thresholds.attempts, override)
        return thresholds

    def reconcile_pipeline(self, pipeline: Pipeline, memo: Dict[str, Any]) -> ReconcileStep:
        if pipeline.is_deleting or pipeline.status.state == PipelineState.NEW:
            return ReconcileStep()

        table = pipeline.status.table_name
        if not table:
            raise InvariantError(
                f"Pipeline {pipeline.id} is {pipeline.status.state.value} without a table name")

        # A retry after a write conflict reuses the measurement of the same table
        result: ValidationResult = memo.get(table)
        if result is None:
            result = self.engine.validate(pipeline, table)
            memo[table] = result

        thresholds = self.thresholds_for(pipeline)
        updated = pipeline.model_copy(deep=True)
        status = updated.status
        status.host_count = result.matched_count

        if result.passes(thresholds.percentage):
            status.valid = ConditionStatus.TRUE
            status.validation_failed_count = 0
            if status.state == PipelineState.INVALID:
                status.state = PipelineState.VALID
                logger.info(f"[{pipeline.id}] Validation recovered, transitioned to VALID")
            logger.debug(
                f"[{pipeline.id}] Validation passed: {result.matched_count}/{result.total_source_count} hosts")
        else:
            status.valid = ConditionStatus.FALSE
            status.validation_failed_count += 1
            if status.state == PipelineState.VALID:
                status.state = PipelineState.INVALID
            logger.warning(
                f"[{pipeline.id}] Validation failed ({status.validation_failed_count}/{thresholds.attempts}): "
                f"{result.matched_count}/{result.total_source_count} hosts match in {table}, "
                f"mismatch {result.mismatch_ratio:.1%} > {thresholds.percentage}%"
                + (f" ({result.error})" if result.error else ""))

            if status.validation_failed_count >= thresholds.attempts:
                logger.warning(
                    f"[{pipeline.id}] Validation failed {status.validation_failed_count} times, "
                    f"refreshing pipeline (active table {status.active_table_name or 'none'} keeps serving)")
                status.state = PipelineState.NEW

        step_result = ReconcileResult(requeue_after=self.settings.interval_for(status.state))
        if updated == pipeline:
            return ReconcileStep(result=step_result)
        return ReconcileStep(pipeline=updated, result=step_result)
