"""Tests for the validation engine."""

import pytest
from unittest.mock import Mock

from host_syndication.exceptions import DatabaseUnavailableError
from host_syndication.models import Pipeline, PipelineSpec
from host_syndication.validation import ValidationEngine, ValidationResult


TABLE = "hosts_v1_0123abcd"


class TestValidationResult:

    def test_mismatch_ratio(self):
        result = ValidationResult(TABLE, matched_count=8, total_source_count=10)
        assert result.mismatch_ratio == pytest.approx(0.2)

    def test_boundary_passes(self):
        """Exactly at the threshold counts as a pass."""
        assert ValidationResult(TABLE, matched_count=8, total_source_count=10).passes(20)

    def test_above_threshold_fails(self):
        assert not ValidationResult(TABLE, matched_count=7, total_source_count=10).passes(20)

    def test_boundary_with_fractional_ratio(self):
        assert ValidationResult(TABLE, matched_count=4, total_source_count=5).passes(20)
        assert not ValidationResult(TABLE, matched_count=79, total_source_count=100).passes(20)

    def test_empty_source_passes(self):
        result = ValidationResult(TABLE, matched_count=0, total_source_count=0)
        assert result.mismatch_ratio == 0.0
        assert result.passes(0)

    def test_zero_threshold_requires_exact_match(self):
        assert ValidationResult(TABLE, matched_count=10, total_source_count=10).passes(0)
        assert not ValidationResult(TABLE, matched_count=9, total_source_count=10).passes(0)

    def test_error_never_passes(self):
        assert not ValidationResult(TABLE, error="bad row").passes(100)


class TestValidationEngine:

    @pytest.fixture
    def pipeline(self):
        return Pipeline(namespace="test", name="inventory")

    def test_full_match(self, engine, source_db, app_db, pipeline):
        ids = source_db.add_hosts(10)
        app_db.load(TABLE, ids)

        result = engine.validate(pipeline, TABLE)

        assert result.matched_count == 10
        assert result.total_source_count == 10
        assert result.missing_ids == []
        assert result.passes(0)

    def test_missing_hosts_are_reported(self, engine, source_db, app_db, pipeline):
        ids = source_db.add_hosts(10)
        app_db.load(TABLE, ids[:7])

        result = engine.validate(pipeline, TABLE)

        assert result.matched_count == 7
        assert result.total_source_count == 10
        assert result.missing_ids == sorted(ids[7:])

    def test_extra_replica_rows_do_not_count(self, engine, source_db, app_db, pipeline):
        ids = source_db.add_hosts(5)
        app_db.load(TABLE, ids + ["ffffffff-0000-0000-0000-000000000000"])

        result = engine.validate(pipeline, TABLE)

        assert result.matched_count == 5
        assert result.mismatch_ratio == 0.0

    def test_insights_only_filters_source(self, engine, source_db, app_db):
        insights = source_db.add_hosts(6, insights=True)
        source_db.add_hosts(4, insights=False, start=100)
        app_db.load(TABLE, insights)
        pipeline = Pipeline(namespace="test", name="advisor", spec=PipelineSpec(insights_only=True))

        result = engine.validate(pipeline, TABLE)

        assert result.total_source_count == 6
        assert result.matched_count == 6

    def test_reported_ids_are_capped(self, source_db, app_db, pipeline):
        source_db.add_hosts(30)
        app_db.load(TABLE, [])
        engine = ValidationEngine(source_db, app_db, report_ids=5)

        result = engine.validate(pipeline, TABLE)

        assert result.matched_count == 0
        assert len(result.missing_ids) == 5

    def test_compare_columns_detect_content_drift(self, pipeline):
        source = Mock()
        source.host_rows.return_value = [("a", "acct1"), ("b", "acct2")]
        replica = Mock()
        replica.host_rows.return_value = [("a", "acct1"), ("b", "stale")]
        engine = ValidationEngine(source, replica, compare_columns=["account"])

        result = engine.validate(pipeline, TABLE)

        source.host_rows.assert_called_once_with(False, ("account",))
        replica.host_rows.assert_called_once_with(TABLE, ("account",))
        assert result.matched_count == 1
        assert result.missing_ids == ["b"]

    def test_malformed_rows_fail_validation(self, pipeline):
        source = Mock()
        source.host_rows.return_value = [("a",), (None,)]
        replica = Mock()
        replica.host_rows.return_value = [("a",)]
        engine = ValidationEngine(source, replica)

        result = engine.validate(pipeline, TABLE)

        assert result.error is not None
        assert not result.passes(100)

    def test_short_rows_fail_validation(self, pipeline):
        source = Mock()
        source.host_rows.return_value = [("a",)]
        replica = Mock()
        replica.host_rows.return_value = [("a",)]
        engine = ValidationEngine(source, replica, compare_columns=["account"])

        result = engine.validate(pipeline, TABLE)

        assert "Malformed" in result.error

    def test_database_errors_propagate(self, pipeline):
        source = Mock()
        source.host_rows.side_effect = DatabaseUnavailableError("timeout")
        engine = ValidationEngine(source, Mock())

        with pytest.raises(DatabaseUnavailableError):
            engine.validate(pipeline, TABLE)
