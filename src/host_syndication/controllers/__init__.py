"""Reconcilers driving syndication pipelines."""

from .base import BaseReconciler, ReconcileStep
from .pipeline import PipelineReconciler
from .validation import ValidationReconciler

__all__ = [
    "BaseReconciler",
    "ReconcileStep",
    "PipelineReconciler",
    "ValidationReconciler",
]
