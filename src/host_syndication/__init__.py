"""Host Syndication

Keeps replica copies of the hosts table in sync through a CDC pipeline,
validates them continuously and rebuilds them blue/green when they drift.
"""

from .config import DatabaseConfig, SyndicationSettings, Thresholds, load_settings
from .models import (
    ConditionStatus,
    Pipeline,
    PipelineId,
    PipelineSpec,
    PipelineState,
    PipelineStatus,
    ReconcileResult,
)
from .client import DatabaseClient
from .database import AppDatabase, SourceDatabase
from .store import PipelineStore, PostgresPipelineStore, UpdateOutcome
from .connect import Connector, ConnectorManager, KafkaConnectManager
from .validation import ValidationEngine, ValidationResult
from .controllers import PipelineReconciler, ValidationReconciler
from .runner import Scheduler, build_controllers

__all__ = [
    # Configuration
    "DatabaseConfig",
    "SyndicationSettings",
    "Thresholds",
    "load_settings",

    # Data models
    "ConditionStatus",
    "Pipeline",
    "PipelineId",
    "PipelineSpec",
    "PipelineState",
    "PipelineStatus",
    "ReconcileResult",

    # Collaborators
    "DatabaseClient",
    "AppDatabase",
    "SourceDatabase",
    "PipelineStore",
    "PostgresPipelineStore",
    "UpdateOutcome",
    "Connector",
    "ConnectorManager",
    "KafkaConnectManager",

    # Validation and reconciliation
    "ValidationEngine",
    "ValidationResult",
    "PipelineReconciler",
    "ValidationReconciler",
    "Scheduler",
    "build_controllers",
]

__version__ = "0.1.0"
