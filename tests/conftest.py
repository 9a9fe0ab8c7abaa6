"""In-memory stand-ins for the store, databases and connector API."""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

import pytest

from host_syndication.config import SyndicationSettings
from host_syndication.connect import Connector, ConnectorManager
from host_syndication.controllers import PipelineReconciler, ValidationReconciler
from host_syndication.exceptions import DatabaseError
from host_syndication.models import Pipeline, PipelineId
from host_syndication.naming import connector_name, connector_prefix, connector_target, view_name
from host_syndication.store import PipelineStore, UpdateOutcome
from host_syndication.validation import ValidationEngine


class MemoryPipelineStore(PipelineStore):
    """Dict-backed store with the same versioning rules as the PostgreSQL one."""

    def __init__(self):
        self.pipelines: Dict[PipelineId, Pipeline] = {}
        # Number of upcoming updates that lose a race against a concurrent writer
        self.conflicts = 0
        self.updates = 0

    def get(self, pipeline_id: PipelineId) -> Optional[Pipeline]:
        pipeline = self.pipelines.get(pipeline_id)
        return pipeline.model_copy(deep=True) if pipeline else None

    def list(self, namespace: Optional[str] = None) -> List[Pipeline]:
        return [
            p.model_copy(deep=True)
            for key, p in sorted(self.pipelines.items(), key=lambda item: str(item[0]))
            if namespace is None or key.namespace == namespace
        ]

    def create(self, pipeline: Pipeline) -> Pipeline:
        if pipeline.id in self.pipelines:
            raise DatabaseError(f"Pipeline {pipeline.id} already exists")
        stored = pipeline.model_copy(deep=True, update={"resource_version": 1})
        self.pipelines[pipeline.id] = stored
        return stored.model_copy(deep=True)

    def update(self, pipeline: Pipeline) -> UpdateOutcome:
        current = self.pipelines.get(pipeline.id)
        if current is None:
            return UpdateOutcome.NOT_FOUND
        if self.conflicts:
            self.conflicts -= 1
            current.resource_version += 1
            return UpdateOutcome.CONFLICT
        if current.resource_version != pipeline.resource_version:
            return UpdateOutcome.CONFLICT

        self.updates += 1
        if current.is_deleting and not pipeline.finalizers:
            del self.pipelines[pipeline.id]
            return UpdateOutcome.OK
        self.pipelines[pipeline.id] = current.model_copy(deep=True, update={
            "status": pipeline.status.model_copy(deep=True),
            "finalizers": list(pipeline.finalizers),
            "resource_version": current.resource_version + 1,
        })
        return UpdateOutcome.OK

    def request_deletion(self, pipeline_id: PipelineId) -> bool:
        current = self.pipelines.get(pipeline_id)
        if current is None:
            return False
        if not current.finalizers:
            del self.pipelines[pipeline_id]
            return True
        if current.deletion_timestamp is None:
            current.deletion_timestamp = datetime.now(timezone.utc)
        current.resource_version += 1
        return True


class FakeConnectorManager(ConnectorManager):
    def __init__(self):
        self.connectors: Dict[str, Connector] = {}
        self.created: List[str] = []
        self.error: Optional[Exception] = None

    def _check(self):
        if self.error:
            raise self.error

    def create_connector(self, pipeline: Pipeline, target_table: str) -> bool:
        self._check()
        name = connector_name(pipeline.id, target_table)
        if name in self.connectors:
            return False
        self.connectors[name] = Connector(name=name, target_table=target_table, state="RUNNING")
        self.created.append(name)
        return True

    def delete_connector(self, pipeline_id: PipelineId, target_table: Optional[str] = None) -> int:
        self._check()
        if target_table:
            names = [connector_name(pipeline_id, target_table)]
        else:
            prefix = connector_prefix(pipeline_id.namespace, pipeline_id.name)
            names = [n for n in self.connectors if n.startswith(prefix)]
        deleted = 0
        for name in names:
            if self.connectors.pop(name, None):
                deleted += 1
        return deleted

    def list_connectors(self, namespace: str, app_name: str) -> List[Connector]:
        self._check()
        pipeline_id = PipelineId(namespace, app_name)
        return [c for name, c in sorted(self.connectors.items())
                if connector_target(pipeline_id, name) is not None]

    def targets(self) -> Set[str]:
        return {c.target_table for c in self.connectors.values()}


class FakeAppDatabase:
    """Replica tables as sets of host ids, plus the target of each view."""

    def __init__(self, schema: str = "inventory", view_name: str = "hosts"):
        self.schema = schema
        self.view_name = view_name
        self.tables: Dict[str, Set[str]] = {}
        self.views: Dict[str, str] = {}
        self.error: Optional[Exception] = None

    def _check(self):
        if self.error:
            raise self.error

    def load(self, table_name: str, host_ids) -> None:
        """Simulate the connector catching up on ``table_name``."""
        self.tables[table_name] = set(host_ids)

    def create_table(self, table_name: str) -> None:
        self._check()
        self.tables.setdefault(table_name, set())

    def drop_table(self, table_name: str) -> None:
        self._check()
        self.tables.pop(table_name, None)

    def list_tables(self) -> List[str]:
        self._check()
        return sorted(self.tables)

    def view_for(self, pipeline_id: PipelineId) -> str:
        return view_name(pipeline_id, base=self.view_name)

    def serving(self, pipeline_id: PipelineId) -> Optional[str]:
        """Table that reads for ``pipeline_id`` currently go to."""
        return self.views.get(self.view_for(pipeline_id))

    def get_current_table(self, view_name: str) -> Optional[str]:
        self._check()
        return self.views.get(view_name)

    def swap_view(self, view_name: str, table_name: str) -> None:
        self._check()
        self.views[view_name] = table_name

    def drop_view(self, view_name: str) -> None:
        self._check()
        self.views.pop(view_name, None)

    def host_rows(self, table_name: str, columns=()) -> List[tuple]:
        self._check()
        if table_name not in self.tables:
            raise DatabaseError(f'relation "{self.schema}.{table_name}" does not exist')
        return [(host_id,) for host_id in sorted(self.tables[table_name])]


class FakeSourceDatabase:
    """Source hosts keyed by id; the value says whether the host has an insights_id."""

    def __init__(self):
        self.hosts: Dict[str, bool] = {}

    def add_hosts(self, count: int, insights: bool = True, start: int = 0) -> List[str]:
        ids = [f"00000000-0000-0000-0000-{n:012d}" for n in range(start, start + count)]
        for host_id in ids:
            self.hosts[host_id] = insights
        return ids

    def host_rows(self, insights_only: bool, columns=()) -> List[tuple]:
        return [(host_id,) for host_id, insights in sorted(self.hosts.items())
                if insights or not insights_only]


@pytest.fixture
def settings():
    return SyndicationSettings()


@pytest.fixture
def store():
    return MemoryPipelineStore()


@pytest.fixture
def connectors():
    return FakeConnectorManager()


@pytest.fixture
def app_db():
    return FakeAppDatabase()


@pytest.fixture
def source_db():
    return FakeSourceDatabase()


@pytest.fixture
def engine(source_db, app_db):
    return ValidationEngine(source_db, app_db)


@pytest.fixture
def pipeline_reconciler(store, settings, app_db, connectors):
    return PipelineReconciler(store, settings, app_db, connectors)


@pytest.fixture
def validation_reconciler(store, settings, engine):
    return ValidationReconciler(store, settings, engine)


@pytest.fixture
def pipeline_id():
    return PipelineId("test", "inventory")
