"""Billing-system integration: provider client and subscription reconciliation."""

from .client import BillingClient
from .reconciler import BillingReconciler, ReconcileResult, SyncReport
from .snapshot import BillingSnapshot

__all__ = [
    "BillingClient",
    "BillingReconciler",
    "BillingSnapshot",
    "ReconcileResult",
    "SyncReport",
]
