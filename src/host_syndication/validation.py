"""Replication fidelity measurement.

The engine compares the identities (and optionally a few content columns) of
the filtered source hosts with the rows of a replica table and reports how
many source hosts are missing from the replica.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Set

from .database import AppDatabase, SourceDatabase
from .exceptions import ValidationDataError
from .models import Pipeline

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Counts produced by one validation pass."""

    table_name: str
    matched_count: int = 0
    total_source_count: int = 0
    missing_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def mismatch_ratio(self) -> float:
        if self.total_source_count == 0:
            return 0.0
        return (self.total_source_count - self.matched_count) / self.total_source_count

    def passes(self, percentage_threshold: int) -> bool:
        """Classify against a percentage threshold; the boundary counts as a pass."""
        if self.error:
            return False
        if self.total_source_count == 0:
            return True
        return self.mismatch_ratio <= percentage_threshold / 100


def _row_keys(rows: Iterable[Sequence], width: int, side: str) -> Set[tuple]:
    keys = set()
    for row in rows:
        if row is None or len(row) < width:
            raise ValidationDataError(f"Malformed {side} row: {row!r}")
        if row[0] is None:
            raise ValidationDataError(f"{side} row without an id")
        keys.add(tuple(row[:width]))
    return keys


class ValidationEngine:
    """Measures how faithfully a replica table mirrors the source hosts."""

    def __init__(
        self,
        source_db: SourceDatabase,
        app_db: AppDatabase,
        compare_columns: Sequence[str] = (),
        report_ids: int = 10,
    ):
        self.source_db = source_db
        self.app_db = app_db
        self.compare_columns = tuple(compare_columns)
        self.report_ids = report_ids

    def validate(self, pipeline: Pipeline, table_name: str) -> ValidationResult:
        """Validate ``table_name`` against the hosts selected by the pipeline's spec.

        Database failures propagate. Malformed rows yield a failed result
        instead of an exception.
        """
        width = 1 + len(self.compare_columns)
        source_rows = self.source_db.host_rows(
            pipeline.spec.insights_only, self.compare_columns)
        replica_rows = self.app_db.host_rows(table_name, self.compare_columns)

        try:
            source_keys = _row_keys(source_rows, width, "source")
            replica_keys = _row_keys(replica_rows, width, "replica")
        except ValidationDataError as e:
            logger.warning(f"[{pipeline.id}] Validation of {table_name} got unusable data: {e}")
            return ValidationResult(table_name=table_name, error=str(e))

        matched = source_keys & replica_keys
        result = ValidationResult(
            table_name=table_name,
            matched_count=len(matched),
            total_source_count=len(source_keys),
        )

        if self.report_ids and len(matched) < len(source_keys):
            missing = sorted(str(key[0]) for key in source_keys - matched)
            result.missing_ids = missing[:self.report_ids]
            logger.info(
                f"[{pipeline.id}] {len(source_keys) - len(matched)} hosts missing or different "
                f"in {table_name}, e.g. {', '.join(result.missing_ids)}")

        logger.debug(
            f"[{pipeline.id}] Validated {table_name}: {result.matched_count}/"
            f"{result.total_source_count} hosts match (ratio {result.mismatch_ratio:.3f})")
        return result
