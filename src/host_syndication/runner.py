"""Controller wiring and a periodic scheduler."""

from __future__ import annotations
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .client import DatabaseClient
from .config import SyndicationSettings
from .connect import KafkaConnectManager
from .controllers import BaseReconciler, PipelineReconciler, ValidationReconciler
from .database import AppDatabase, SourceDatabase
from .models import Pipeline, PipelineId
from .store import PipelineStore, PostgresPipelineStore
from .validation import ValidationEngine

logger = logging.getLogger(__name__)


@dataclass
class Controllers:
    """Everything needed to reconcile pipelines against real infrastructure."""
    store: PipelineStore
    pipeline: PipelineReconciler
    validation: ValidationReconciler

    @property
    def reconcilers(self) -> List[BaseReconciler]:
        return [self.pipeline, self.validation]


def build_controllers(settings: SyndicationSettings, store: Optional[PipelineStore] = None) -> Controllers:
    """Wire both controllers to PostgreSQL and Kafka Connect."""
    source_client = DatabaseClient(settings.source_db)
    app_client = DatabaseClient(settings.app_db)

    if store is None:
        store = PostgresPipelineStore(app_client, settings.store_table)
        store.ensure_table()

    app_db = AppDatabase(app_client, settings.db_schema, settings.db_view)
    engine = ValidationEngine(
        SourceDatabase(source_client, settings.source_table),
        app_db,
        compare_columns=settings.validation_compare_columns,
        report_ids=settings.validation_report_ids,
    )
    return Controllers(
        store=store,
        pipeline=PipelineReconciler(store, settings, app_db, KafkaConnectManager(settings)),
        validation=ValidationReconciler(store, settings, engine),
    )


class Scheduler:
    """Periodically reconciles every stored pipeline.

    Distinct pipelines are reconciled concurrently; the reconcilers of one
    pipeline run in order within a single task. A reconciler asking for a
    delay is not invoked again for that pipeline before the delay expires;
    otherwise it is invoked every ``resync_interval`` seconds. Reconcilers with
    ``watches_changes`` set also run on the first pass after the stored
    pipeline changed. Failures are logged and retried after ``resync_interval``.
    """

    def __init__(
        self,
        store: PipelineStore,
        reconcilers: Sequence[BaseReconciler],
        resync_interval: float = 30.0,
        workers: int = 4,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.reconcilers = list(reconcilers)
        self.resync_interval = resync_interval
        self.workers = workers
        self.clock = clock
        self._due: Dict[Tuple[str, PipelineId], float] = {}
        self._seen: Dict[PipelineId, int] = {}
        self._lock = threading.Lock()

    def _is_due(self, reconciler: BaseReconciler, pipeline_id: PipelineId, now: float) -> bool:
        with self._lock:
            return self._due.get((reconciler.name, pipeline_id), 0.0) <= now

    def _schedule(self, reconciler: BaseReconciler, pipeline_id: PipelineId, at: float) -> None:
        with self._lock:
            self._due[(reconciler.name, pipeline_id)] = at

    def _reconcile_pipeline(self, pipeline: Pipeline) -> int:
        failures = 0
        for reconciler in self.reconcilers:
            now = self.clock()
            if not self._is_due(reconciler, pipeline.id, now):
                continue
            try:
                result = reconciler.reconcile(pipeline.id)
            except Exception as e:
                logger.error(f"[{pipeline.id}] {reconciler.name} reconciliation failed: {e}")
                self._schedule(reconciler, pipeline.id, now + self.resync_interval)
                failures += 1
                continue

            if result.requeue:
                delay = 0.0
            elif result.requeue_after is not None:
                delay = result.requeue_after
            else:
                delay = self.resync_interval
            self._schedule(reconciler, pipeline.id, now + delay)
        return failures

    def run_once(self) -> int:
        """Reconcile every due pipeline once. Returns the number of failed reconciliations."""
        pipelines = self.store.list()
        known = {p.id for p in pipelines}
        with self._lock:
            for key in [k for k in self._due if k[1] not in known]:
                del self._due[key]
            for pipeline_id in [p for p in self._seen if p not in known]:
                del self._seen[pipeline_id]
            for pipeline in pipelines:
                if self._seen.get(pipeline.id) == pipeline.resource_version:
                    continue
                self._seen[pipeline.id] = pipeline.resource_version
                for reconciler in self.reconcilers:
                    if reconciler.watches_changes:
                        self._due[(reconciler.name, pipeline.id)] = 0.0

        if not pipelines:
            return 0
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            return sum(executor.map(self._reconcile_pipeline, pipelines))

    def run_forever(self, stop: threading.Event, tick: float = 1.0) -> None:
        logger.info(f"Scheduler started with {len(self.reconcilers)} reconcilers")
        while not stop.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Scheduler pass failed: {e}")
            stop.wait(tick)
        logger.info("Scheduler stopped")
