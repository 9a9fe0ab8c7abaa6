"""Tests for the command line interface."""

from unittest.mock import Mock, patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from host_syndication.cli import app
from host_syndication.exceptions import DatabaseUnavailableError
from host_syndication.models import FINALIZER, Pipeline, PipelineId, ReconcileResult


runner = CliRunner()
PID = PipelineId("test", "inventory")


@pytest.fixture
def controllers(store):
    controllers = Mock()
    controllers.store = store
    with patch("host_syndication.cli.build_controllers", return_value=controllers):
        yield controllers


def test_create(controllers, store):
    result = runner.invoke(app, ["create", "test", "inventory", "--insights-only"])

    assert result.exit_code == 0
    assert "Created pipeline test/inventory" in result.stdout
    assert store.get(PID).spec.insights_only is True


def test_create_duplicate(controllers, store):
    store.create(Pipeline(namespace="test", name="inventory"))

    result = runner.invoke(app, ["create", "test", "inventory"])

    assert result.exit_code == 1


def test_create_rejects_bad_threshold(controllers):
    result = runner.invoke(app, ["create", "test", "inventory", "--validation-threshold", "150"])
    assert result.exit_code != 0


def test_delete(controllers, store):
    store.create(Pipeline(namespace="test", name="inventory", finalizers=[FINALIZER]))

    result = runner.invoke(app, ["delete", "test", "inventory"])

    assert result.exit_code == 0
    assert store.get(PID).is_deleting


def test_delete_missing(controllers):
    result = runner.invoke(app, ["delete", "test", "inventory"])
    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_status(controllers, store):
    store.create(Pipeline(namespace="test", name="inventory"))

    with patch("host_syndication.cli.console", Console(width=200)):
        result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "test/inventory" in result.stdout
    assert "NEW" in result.stdout


def test_status_empty(controllers):
    result = runner.invoke(app, ["status"])
    assert "No pipelines found" in result.stdout


def test_reconcile(controllers, store):
    store.create(Pipeline(namespace="test", name="inventory"))
    lifecycle, validation = Mock(), Mock()
    lifecycle.name, validation.name = "pipeline", "validation"
    lifecycle.reconcile.return_value = ReconcileResult()
    validation.reconcile.return_value = ReconcileResult(requeue_after=15)
    controllers.reconcilers = [lifecycle, validation]

    result = runner.invoke(app, ["reconcile", "test", "inventory"])

    assert result.exit_code == 0
    assert "pipeline: done" in result.stdout
    assert "validation: requeue after 15s" in result.stdout
    lifecycle.reconcile.assert_called_once_with(PID)


def test_reconcile_failure(controllers, store):
    failing = Mock()
    failing.name = "pipeline"
    failing.reconcile.side_effect = DatabaseUnavailableError("connection refused")
    controllers.reconcilers = [failing]

    result = runner.invoke(app, ["reconcile", "test", "inventory"])

    assert result.exit_code == 1
    assert "connection refused" in result.stdout


def test_invalid_settings_file(tmp_path):
    path = tmp_path / "bad.properties"
    path.write_text("validation.attempts.threshold=0\n")

    result = runner.invoke(app, ["status", "--config", str(path)])

    assert result.exit_code == 1
