"""Table naming and swap logic.

Pure functions only: candidate names are derived from the pipeline identity and
its refresh generation, so they can be computed (and tested) without touching
a database.
"""

from __future__ import annotations
import hashlib
import re
from typing import Iterable, List, Optional, Set, Tuple

from .exceptions import InvariantError
from .models import ConditionStatus, PipelineId, PipelineState, PipelineStatus


TABLE_PREFIX = "hosts_v"
CONNECTOR_PREFIX = "syndication"

_TABLE_RE = re.compile(r"^hosts_v(?P<generation>\d+)_(?P<token>[0-9a-f]{8})$")


def identity_token(pipeline_id: PipelineId) -> str:
    """Short, stable token identifying the pipeline in object names."""
    digest = hashlib.sha1(str(pipeline_id).encode("utf-8")).hexdigest()
    return digest[:8]


def table_name(pipeline_id: PipelineId, generation: int) -> str:
    """Name of the replica table built during refresh ``generation``."""
    if generation < 1:
        raise ValueError("generation must be >= 1")
    return f"{TABLE_PREFIX}{generation}_{identity_token(pipeline_id)}"


def parse_generation(pipeline_id: PipelineId, name: str) -> Optional[int]:
    """Return the generation encoded in ``name`` if the table belongs to the pipeline."""
    match = _TABLE_RE.match(name)
    if not match or match.group("token") != identity_token(pipeline_id):
        return None
    return int(match.group("generation"))


def is_owned_table(pipeline_id: PipelineId, name: str) -> bool:
    return parse_generation(pipeline_id, name) is not None


def next_candidate(pipeline_id: PipelineId, status: PipelineStatus) -> Tuple[int, str]:
    """Allocate the next (generation, table name) for a fresh candidate.

    The generation only moves forward, and the name never equals the table
    that is currently serving reads.
    """
    generation = status.pipeline_version + 1
    if status.active_table_name:
        active_generation = parse_generation(pipeline_id, status.active_table_name)
        if active_generation is not None and active_generation >= generation:
            generation = active_generation + 1

    name = table_name(pipeline_id, generation)
    if name == status.active_table_name:
        raise InvariantError(
            f"Candidate table {name} collides with the active table of {pipeline_id}")
    return generation, name


def can_cutover(status: PipelineStatus) -> bool:
    """A candidate may become active only after an explicit VALID verdict."""
    return (status.state == PipelineState.INITIAL_SYNC
            and status.valid == ConditionStatus.TRUE
            and bool(status.table_name))


def is_stale(
    pipeline_id: PipelineId,
    name: str,
    status: PipelineStatus,
    keep: Iterable[Optional[str]] = (),
) -> bool:
    """Whether an owned table (or its connector) can be removed.

    Only tables from generations older than the candidate qualify; newer ones
    may belong to a pass that has not been observed yet.
    """
    generation = parse_generation(pipeline_id, name)
    if generation is None or generation >= status.pipeline_version:
        return False
    keep_set: Set[str] = {n for n in keep if n}
    keep_set.update(n for n in (status.table_name, status.active_table_name) if n)
    return name not in keep_set


def stale_tables(
    pipeline_id: PipelineId,
    existing: Iterable[str],
    status: PipelineStatus,
    keep: Iterable[Optional[str]] = (),
) -> List[str]:
    """Owned tables that are neither the candidate nor the active table."""
    keep = list(keep)
    return sorted(name for name in existing if is_stale(pipeline_id, name, status, keep))


def view_name(pipeline_id: PipelineId, base: str = "hosts") -> str:
    """Name of the view serving reads for the pipeline."""
    return f"{base}_{identity_token(pipeline_id)}"


def connector_prefix(namespace: str, app_name: str) -> str:
    return f"{CONNECTOR_PREFIX}-{namespace}-{app_name}-"


def connector_name(pipeline_id: PipelineId, target_table: str) -> str:
    """Name of the connector feeding ``target_table``."""
    return f"{connector_prefix(pipeline_id.namespace, pipeline_id.name)}{target_table}"


def connector_target(pipeline_id: PipelineId, name: str) -> Optional[str]:
    """Return the target table of a connector name owned by the pipeline."""
    prefix = connector_prefix(pipeline_id.namespace, pipeline_id.name)
    if not name.startswith(prefix):
        return None
    table = name[len(prefix):]
    return table if is_owned_table(pipeline_id, table) else None
