"""
Sync orchestrator coordinating remote clients and the local document store.

Operations: fetch a document by URL or id into the store, re-sync one tracked
document, and run a cancellable bulk sync over every tracked document.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional

from tqdm import tqdm

from config_loader import get_nested
from exporters import DocumentStore, NotTrackedError
from fetchers import DocFetchError, RemoteClient
from logger import ProgressTracker
from models import DocumentMetadata, RemoteDocument, SyncOutcome
from orchestrator.sync_report import SyncReport

logger = logging.getLogger('docfetch.orchestrator')

ClientProvider = Callable[[str], RemoteClient]


class SyncOrchestrator:
    """Central coordinator for fetch and sync operations."""

    def __init__(
        self,
        config: Dict[str, Any],
        store: DocumentStore,
        client_provider: ClientProvider,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize sync orchestrator.

        Args:
            config: Configuration dictionary
            store: Document store holding the local copies
            client_provider: Callable returning a RemoteClient for a connection id
            logger: Optional logger instance
        """
        self.config = config or {}
        self.store = store
        self.client_provider = client_provider
        self.logger = logger or logging.getLogger('docfetch.orchestrator')
        self.show_progress = bool(get_nested(self.config, 'sync.progress_bars', True))
        self._clients: Dict[str, RemoteClient] = {}

    def client_for(self, connection_id: str) -> RemoteClient:
        """Return the (cached) client for a connection id."""
        if connection_id not in self._clients:
            self._clients[connection_id] = self.client_provider(connection_id)
        return self._clients[connection_id]

    def fetch_by_url(self, url: str, connection_id: str, category: Optional[str] = None) -> DocumentMetadata:
        """
        Fetch the document behind a page URL and save it locally.

        A document that is already tracked is updated in place.

        Raises:
            DocFetchError: If the URL cannot be resolved or the fetch fails
        """
        self.logger.info(f"Fetching document from {url}")
        document = self.client_for(connection_id).get_document_by_url(url)
        return self._store_document(document, connection_id, category)

    def fetch_by_id(self, document_id: str, connection_id: str, category: Optional[str] = None) -> DocumentMetadata:
        """Fetch a document by remote id and save it locally (updating it when tracked)."""
        self.logger.info(f"Fetching document {document_id}")
        document = self.client_for(connection_id).get_document_by_id(document_id)
        return self._store_document(document, connection_id, category)

    def sync_document(self, metadata: DocumentMetadata) -> SyncOutcome:
        """
        Re-fetch one tracked document and rewrite it when the remote version advanced.

        Returns:
            SKIPPED if the local file is missing or the remote version is not newer,
            SYNCED if the file was rewritten

        Raises:
            DocFetchError: If the fetch fails
        """
        if not self.store.path_for(metadata).exists():
            self.logger.warning(f"Local file missing for '{metadata.title}' ({metadata.relative_path}); skipping")
            return SyncOutcome.SKIPPED

        document = self.client_for(metadata.connection_id).get_document_by_id(metadata.remote_id)

        if document.version <= metadata.version:
            self.logger.info(f"'{metadata.title}' is up to date (v{metadata.version})")
            return SyncOutcome.SKIPPED

        self.logger.info(f"Syncing '{metadata.title}': v{metadata.version} -> v{document.version}")
        self.store.update(document, metadata)
        return SyncOutcome.SYNCED

    def sync_file(self, relative_path: str) -> SyncOutcome:
        """
        Sync the tracked document stored at a path relative to the docs root.

        Raises:
            NotTrackedError: If no index entry exists for the path
        """
        metadata = self.store.find_by_local_path(relative_path)
        if metadata is None:
            raise NotTrackedError(f"{relative_path} is not tracked by docfetch")
        return self.sync_document(metadata)

    def sync_all(
        self,
        category: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> SyncReport:
        """
        Sync every tracked document sequentially.

        Per-document failures are recorded and never stop the run. The cancel
        event is checked before each document's fetch; documents synced before
        cancellation stay committed.

        Args:
            category: Optional category filter
            cancel_event: Optional event that stops the run when set

        Returns:
            SyncReport with synced/skipped/failed counts and per-item results
        """
        documents = self.store.list(category)
        report = SyncReport(total=len(documents))

        if not documents:
            self.logger.info("No tracked documents to sync")
            return report

        progress_bar = tqdm(
            documents,
            desc="Syncing documents",
            unit="doc",
            disable=not self.show_progress
        )

        with progress_bar as iterable, ProgressTracker(len(documents), "documents") as tracker:
            for metadata in iterable:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    self.logger.warning(
                        f"Sync cancelled after {report.attempted}/{report.total} documents"
                    )
                    break

                try:
                    outcome = self.sync_document(metadata)
                except DocFetchError as e:
                    self.logger.error(f"Failed to sync '{metadata.title}' [{e.code}]: {e}")
                    report.record(metadata, SyncOutcome.FAILED, e)
                    tracker.increment(success=False)
                    continue
                except Exception as e:
                    self.logger.error(f"Failed to sync '{metadata.title}': {e}", exc_info=True)
                    report.record(metadata, SyncOutcome.FAILED, e)
                    tracker.increment(success=False)
                    continue

                report.record(metadata, outcome)
                tracker.increment(success=True, skipped=outcome is SyncOutcome.SKIPPED)

        report.log_summary(self.logger)
        return report

    def _store_document(
        self,
        document: RemoteDocument,
        connection_id: str,
        category: Optional[str]
    ) -> DocumentMetadata:
        existing = self.store.find_by_remote_id(document.id)
        if existing is not None:
            self.logger.info(f"'{document.title}' already exists at {existing.relative_path}; updating")
            return self.store.update(document, existing)
        return self.store.save(document, connection_id, category)


__all__ = ['SyncOrchestrator', 'ClientProvider']
