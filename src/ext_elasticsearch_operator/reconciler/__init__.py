"""Reconciliation of ElasticsearchUser resources."""

from .cache import ResourceCache
from .diff import diff, stale_identity_actions
from .finalizer import FinalizerManager
from .loop import LoopCommand, ReconcileLoop
from .observed import ObservedStateFetcher
from .resync import ResyncScheduler

__all__ = [
    "FinalizerManager",
    "LoopCommand",
    "ObservedStateFetcher",
    "ReconcileLoop",
    "ResourceCache",
    "ResyncScheduler",
    "diff",
    "stale_identity_actions",
]
