"""Background reconciliation of the metadata and blob stores."""

from .reconciler import ReconcileReport, Reconciler

__all__ = ["ReconcileReport", "Reconciler"]
