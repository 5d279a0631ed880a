"""
Sync report aggregating per-document outcomes of a bulk sync.

The report is built incrementally while the orchestrator walks the tracked
documents, and can be logged, summarized for the CLI or exported as a dict.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models import DocumentMetadata, SyncOutcome

logger = logging.getLogger('docfetch.orchestrator.report')


@dataclass
class SyncItemResult:
    """Outcome for one tracked document."""

    local_id: str
    remote_id: str
    title: str
    relative_path: str
    outcome: SyncOutcome
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'local_id': self.local_id,
            'remote_id': self.remote_id,
            'title': self.title,
            'relative_path': self.relative_path,
            'outcome': self.outcome.value,
            'error': self.error,
            'error_code': self.error_code,
        }


@dataclass
class SyncReport:
    """Counts and per-item results of a bulk sync run."""

    total: int = 0
    cancelled: bool = False
    results: List[SyncItemResult] = field(default_factory=list)

    def record(
        self,
        metadata: DocumentMetadata,
        outcome: SyncOutcome,
        error: Optional[Exception] = None
    ) -> SyncItemResult:
        """Append the outcome for one document."""
        result = SyncItemResult(
            local_id=metadata.local_id,
            remote_id=metadata.remote_id,
            title=metadata.title,
            relative_path=metadata.relative_path,
            outcome=outcome,
            error=str(error) if error is not None else None,
            error_code=getattr(error, 'code', None) if error is not None else None,
        )
        self.results.append(result)
        return result

    def _count(self, outcome: SyncOutcome) -> int:
        return sum(1 for result in self.results if result.outcome is outcome)

    @property
    def synced(self) -> int:
        return self._count(SyncOutcome.SYNCED)

    @property
    def skipped(self) -> int:
        return self._count(SyncOutcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(SyncOutcome.FAILED)

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.attempted)

    @property
    def failures(self) -> List[SyncItemResult]:
        return [result for result in self.results if result.outcome is SyncOutcome.FAILED]

    def summary_message(self) -> str:
        """One-line human readable summary, e.g. '2 synced, 1 up to date, 1 failed'."""
        parts = []
        if self.synced:
            parts.append(f"{self.synced} synced")
        if self.skipped:
            parts.append(f"{self.skipped} up to date")
        if self.failed:
            parts.append(f"{self.failed} failed")
        message = ', '.join(parts) if parts else 'No documents to sync'
        if self.cancelled:
            message += f" (cancelled, {self.remaining} not attempted)"
        return message

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'synced': self.synced,
            'skipped': self.skipped,
            'failed': self.failed,
            'cancelled': self.cancelled,
            'results': [result.to_dict() for result in self.results],
        }

    def log_summary(self, log: Optional[logging.Logger] = None) -> None:
        """Log the summary and every failure."""
        log = log or logger
        log_method = log.warning if self.failed else log.info
        log_method(f"Sync finished: {self.summary_message()}")
        for failure in self.failures:
            log.warning(f"  Failed: {failure.title} ({failure.relative_path}): {failure.error}")


__all__ = ['SyncReport', 'SyncItemResult']
