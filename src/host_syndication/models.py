"""Data models for syndication pipelines."""

from __future__ import annotations
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


FINALIZER = "syndication.finalizer"


class PipelineState(str, Enum):
    """Lifecycle states of a pipeline."""
    NEW = "NEW"
    INITIAL_SYNC = "INITIAL_SYNC"
    VALID = "VALID"
    INVALID = "INVALID"


class ConditionStatus(str, Enum):
    """Tri-state outcome of the most recent validation."""
    UNKNOWN = "Unknown"
    FALSE = "False"
    TRUE = "True"


@dataclass(frozen=True)
class PipelineId:
    """Immutable identity of a pipeline resource."""
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class PipelineSpec(BaseModel):
    """Declared intent of a pipeline. Read-only to the controllers."""

    insights_only: bool = False
    # Overrides validation.percentage.threshold for this pipeline
    validation_threshold: Optional[int] = Field(None, ge=0, le=100)

    def fingerprint(self) -> str:
        """Stable hash of the spec, used to detect when a refresh is needed."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


class PipelineStatus(BaseModel):
    """Observed status shared by the lifecycle and validation controllers."""

    state: PipelineState = PipelineState.NEW
    valid: ConditionStatus = ConditionStatus.UNKNOWN
    table_name: Optional[str] = None
    active_table_name: Optional[str] = None
    validation_failed_count: int = 0
    host_count: int = 0
    pipeline_version: int = 0
    spec_hash: Optional[str] = None

    @field_validator("validation_failed_count", "host_count", "pipeline_version")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("counters must not be negative")
        return v


class Pipeline(BaseModel):
    """A pipeline resource as held by the resource store."""

    namespace: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    spec: PipelineSpec = Field(default_factory=PipelineSpec)
    status: PipelineStatus = Field(default_factory=PipelineStatus)
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None
    resource_version: int = 0

    @property
    def id(self) -> PipelineId:
        return PipelineId(self.namespace, self.name)

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def get_state(self) -> PipelineState:
        return self.status.state

    def get_valid(self) -> ConditionStatus:
        return self.status.valid

    def is_valid(self) -> bool:
        return (self.status.state == PipelineState.VALID
                and self.status.valid == ConditionStatus.TRUE)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass.

    A zero result (no requeue, no delay) means converged or no-op.
    """
    requeue: bool = False
    requeue_after: Optional[float] = None

    @property
    def is_zero(self) -> bool:
        return not self.requeue and self.requeue_after is None
