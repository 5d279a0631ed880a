"""
Orchestration package for fetch and sync operations.

This package coordinates remote clients and the local document store:
fetch-by-url, fetch-by-id, single document sync and cancellable bulk sync
with a summary report.
"""

from .sync_orchestrator import SyncOrchestrator
from .sync_report import SyncItemResult, SyncReport

__all__ = [
    'SyncOrchestrator',
    'SyncReport',
    'SyncItemResult',
]
