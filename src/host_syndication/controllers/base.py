"""Shared reconciliation loop for the pipeline controllers."""

from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..config import SyndicationSettings
from ..exceptions import ConflictError, SyndicationError
from ..models import Pipeline, PipelineId, ReconcileResult
from ..store import PipelineStore, UpdateOutcome

logger = logging.getLogger(__name__)


@dataclass
class ReconcileStep:
    """What one pass decided.

    ``pipeline`` is the resource to write back, or None when nothing changed.
    """
    pipeline: Optional[Pipeline] = None
    result: ReconcileResult = field(default_factory=ReconcileResult)


class BaseReconciler(ABC):
    """Read, decide, write; retry from a fresh read when the write races.

    A resource that no longer exists ends the pass as a successful no-op,
    both when it is read and when its status is written back.
    """

    name = "reconciler"
    # Re-run as soon as the stored resource changes, not only on its own schedule
    watches_changes = False

    def __init__(self, store: PipelineStore, settings: SyndicationSettings):
        self.store = store
        self.settings = settings

    def reconcile(self, pipeline_id: PipelineId) -> ReconcileResult:
        # Survives conflict retries within this call only
        memo: Dict[str, Any] = {}
        for attempt in range(1, self.settings.conflict_retries + 1):
            pipeline = self.store.get(pipeline_id)
            if pipeline is None:
                logger.debug(f"[{pipeline_id}] {self.name}: pipeline not found, nothing to do")
                return ReconcileResult()

            try:
                step = self.reconcile_pipeline(pipeline, memo)
            except SyndicationError as e:
                logger.error(f"[{pipeline_id}] {self.name} failed: {e}")
                raise

            if step.pipeline is None:
                self.after_update(pipeline)
                return step.result

            outcome = self.store.update(step.pipeline)
            if outcome == UpdateOutcome.OK:
                self.after_update(step.pipeline)
                return step.result
            if outcome == UpdateOutcome.NOT_FOUND:
                logger.info(f"[{pipeline_id}] {self.name}: pipeline removed during reconciliation")
                return ReconcileResult()

            logger.info(
                f"[{pipeline_id}] {self.name}: status changed concurrently "
                f"(attempt {attempt}/{self.settings.conflict_retries}), retrying")

        raise ConflictError(
            f"[{pipeline_id}] {self.name}: gave up after {self.settings.conflict_retries} conflicting writes")

    @abstractmethod
    def reconcile_pipeline(self, pipeline: Pipeline, memo: Dict[str, Any]) -> ReconcileStep:
        """Compute the next status and apply side effects for one pass."""
        pass

    def after_update(self, pipeline: Pipeline) -> None:
        """Hook run once the pass's status is durable."""
        pass
