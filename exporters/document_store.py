"""Local document store: Markdown files plus a JSON metadata index under a docs root."""

import hashlib
import json
import logging
import os
import re
import string
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Tuple

from config_loader import COLLISION_POLICIES, ConfigurationError, get_nested
from converters.markdown_converter import MarkdownConverter
from models import (
    DocumentMetadata,
    Frontmatter,
    LocalState,
    MetadataIndex,
    RemoteDocument,
    isoformat_utc,
)

logger = logging.getLogger('docfetch.exporters.documentstore')

METADATA_FILENAME = '.docfetch-metadata.json'
MAX_FILENAME_LENGTH = 100
DEFAULT_FILENAME = 'untitled'
CHECKSUM_LENGTH = 16

FORBIDDEN_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|\x00-\x1f]')
REPEATED_DASHES = re.compile(r'-+')
FILENAME_TRIM_CHARS = string.whitespace + '-'


class DocumentStoreError(Exception):
    """Base exception for document store errors."""
    pass


class IndexCorruptedError(DocumentStoreError):
    """The metadata index exists but cannot be read."""
    pass


class NotTrackedError(DocumentStoreError):
    """A local file has no entry in the metadata index."""
    pass


def sanitize_filename(title: str) -> str:
    """
    Convert a document title into a filesystem-safe filename (without extension).

    Forbidden characters become '-', repeated dashes collapse, leading and
    trailing dashes and whitespace are trimmed, and the result is truncated to
    100 characters. Empty results fall back to 'untitled'.
    """
    sanitized = FORBIDDEN_FILENAME_CHARS.sub('-', title or '')
    sanitized = REPEATED_DASHES.sub('-', sanitized)
    sanitized = sanitized.strip(FILENAME_TRIM_CHARS)
    sanitized = sanitized[:MAX_FILENAME_LENGTH].strip(FILENAME_TRIM_CHARS)
    return sanitized or DEFAULT_FILENAME


def compute_checksum(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 content, truncated to 16 characters."""
    return hashlib.sha256(content.encode('utf-8')).hexdigest()[:CHECKSUM_LENGTH]


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStore:
    """
    Persists converted documents and tracks their provenance.

    Layout under the docs root:
        <category>/<sanitized-title>.md
        .docfetch-metadata.json

    The index is read, modified and rewritten in full on every mutation
    (temp file + os.replace). There is no cross-process lock.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        logger: Optional[logging.Logger] = None,
        root: Optional[str] = None,
        converter: Optional[MarkdownConverter] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the document store.

        Args:
            config: Configuration dictionary (docs.*, export.collision_policy)
            logger: Logger instance
            root: Optional docs root override (takes precedence over config)
            converter: Optional converter instance
            clock: Optional callable returning the current time
        """
        self.config = config or {}
        self.logger = logger or logging.getLogger('docfetch.exporters.documentstore')

        self.root = Path(root) if root else Path(get_nested(self.config, 'docs.root', '.docs'))
        self.metadata_path = self.root / METADATA_FILENAME
        self.category_labels: Dict[str, str] = dict(get_nested(self.config, 'docs.categories', {}) or {})
        self.default_category = get_nested(self.config, 'docs.default_category') or next(
            iter(self.category_labels), None
        )

        self.collision_policy = get_nested(self.config, 'export.collision_policy', 'suffix')
        if self.collision_policy not in COLLISION_POLICIES:
            raise ConfigurationError(f"export.collision_policy must be one of: {list(COLLISION_POLICIES)}")

        self.clock = clock or _default_clock
        self.converter = converter or MarkdownConverter(logger=self.logger, config=self.config)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def save(self, document: RemoteDocument, connection_id: str, category: Optional[str] = None) -> DocumentMetadata:
        """
        Save a newly fetched document.

        A document whose remote id is already tracked is updated in place instead,
        so the index never holds two entries for one remote id.

        Args:
            document: Remote document to save
            connection_id: Connection the document was fetched through
            category: Target category (defaults to docs.default_category)

        Returns:
            Metadata of the saved document
        """
        category = category or self.default_category
        self._validate_category(category)

        index = self.load_index()
        existing = index.find_by_remote_id(document.id)
        if existing is not None:
            self.logger.info(
                f"Document {document.id} is already tracked at {existing.relative_path}; updating"
            )
            return self.update(document, existing)

        synced_at = self.clock()
        content = self.render(document, synced_at)
        relative_path = self._allocate_path(index, document, category)

        self._write_file(self._resolve(relative_path), content)

        metadata = DocumentMetadata(
            local_id=str(uuid.uuid4()),
            remote_id=document.id,
            connection_id=connection_id,
            relative_path=relative_path,
            title=document.title,
            remote_url=document.web_url,
            space_key=document.space_key,
            version=document.version,
            synced_at=isoformat_utc(synced_at),
            checksum=compute_checksum(content),
            category=category,
            labels=list(document.labels),
        )
        index.upsert(metadata)
        self.save_index(index)

        self.logger.info(f"Saved '{document.title}' (v{document.version}) to {relative_path}")
        return metadata

    def update(self, document: RemoteDocument, existing: DocumentMetadata) -> DocumentMetadata:
        """
        Overwrite an existing document file; local id and path are preserved.

        Args:
            document: Newly fetched remote document
            existing: Index entry for the same remote id

        Returns:
            The updated metadata (the same object, mutated in place)
        """
        if existing.remote_id != document.id:
            raise DocumentStoreError(
                f"Cannot update {existing.relative_path} (remote id {existing.remote_id}) "
                f"with document {document.id}"
            )

        index = self.load_index()
        synced_at = self.clock()
        content = self.render(document, synced_at)

        self._write_file(self._resolve(existing.relative_path), content)

        existing.title = document.title
        existing.version = document.version
        existing.synced_at = isoformat_utc(synced_at)
        existing.checksum = compute_checksum(content)
        existing.labels = list(document.labels)

        index.upsert(existing)
        self.save_index(index)

        self.logger.info(f"Updated '{document.title}' to v{document.version} at {existing.relative_path}")
        return existing

    def find_by_remote_id(self, remote_id: str) -> Optional[DocumentMetadata]:
        return self.load_index().find_by_remote_id(str(remote_id))

    def find_by_local_path(self, relative_path: str) -> Optional[DocumentMetadata]:
        """Look up a document by its path relative to the docs root."""
        return self.load_index().find_by_path(self.normalize_relative_path(relative_path))

    def list(self, category: Optional[str] = None) -> List[DocumentMetadata]:
        documents = self.load_index().documents
        if category is None:
            return list(documents)
        return [doc for doc in documents if doc.category == category]

    def delete(self, local_id: str) -> bool:
        """
        Remove a document's file and index entry.

        Unknown ids are a no-op and a file that is already gone is ignored.

        Returns:
            True if an index entry was removed
        """
        index = self.load_index()
        metadata = index.remove(local_id)
        if metadata is None:
            self.logger.debug(f"Delete requested for unknown local id {local_id}")
            return False

        try:
            self._resolve(metadata.relative_path).unlink()
        except FileNotFoundError:
            self.logger.debug(f"File already removed: {metadata.relative_path}")

        self.save_index(index)
        self.logger.info(f"Deleted '{metadata.title}' ({metadata.relative_path})")
        return True

    def categories(self) -> List[Tuple[str, str]]:
        """Configured (category, label) pairs in configuration order."""
        return list(self.category_labels.items())

    def path_for(self, metadata: DocumentMetadata) -> Path:
        """Absolute filesystem path of a tracked document."""
        return self._resolve(metadata.relative_path)

    def local_state(self, metadata: DocumentMetadata) -> LocalState:
        """Compare the file on disk with the checksum recorded at the last write."""
        path = self.path_for(metadata)
        try:
            content = path.read_bytes().decode('utf-8')
        except FileNotFoundError:
            return LocalState.MISSING

        if compute_checksum(content) == metadata.checksum:
            return LocalState.CURRENT
        return LocalState.MODIFIED

    def read_frontmatter(self, metadata: DocumentMetadata) -> Optional[Frontmatter]:
        """Parse the header of a saved document; None if the file or header is missing."""
        path = self.path_for(metadata)
        try:
            content = path.read_bytes().decode('utf-8')
        except FileNotFoundError:
            return None
        frontmatter, _ = self.converter.frontmatter_builder.parse(content)
        return frontmatter

    def render(self, document: RemoteDocument, synced_at: Optional[datetime] = None) -> str:
        """Full file content (frontmatter + body) for a document."""
        result = self.converter.convert_document(document, synced_at or self.clock())
        return self.converter.build_markdown_file(result)

    def ensure_directories(self) -> None:
        """Create the docs root and every configured category directory."""
        for category in self.category_labels:
            (self.root / category).mkdir(parents=True, exist_ok=True)
        self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Index persistence
    # ------------------------------------------------------------------

    def load_index(self) -> MetadataIndex:
        """
        Read the metadata index. A missing index is an empty one.

        Raises:
            IndexCorruptedError: If the index exists but cannot be parsed
        """
        try:
            raw = self.metadata_path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return MetadataIndex()

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("index root is not an object")
            return MetadataIndex.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            raise IndexCorruptedError(f"Metadata index {self.metadata_path} is corrupted: {e}") from e

    def save_index(self, index: MetadataIndex) -> None:
        """Rewrite the index in full via a temp file and atomic rename."""
        payload = json.dumps(index.to_dict(), indent=2, ensure_ascii=False) + '\n'
        self._atomic_write(self.metadata_path, payload.encode('utf-8'))
        self.logger.debug(f"Metadata index written: {len(index.documents)} documents")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def normalize_relative_path(relative_path: str) -> str:
        return str(PurePosixPath(str(relative_path).replace('\\', '/')))

    def _allocate_path(self, index: MetadataIndex, document: RemoteDocument, category: str) -> str:
        """Derive category/filename.md, applying the collision policy."""
        filename = sanitize_filename(document.title)
        relative_path = f"{category}/{filename}.md"

        owner = index.find_by_path(relative_path)
        if owner is None or owner.remote_id == document.id:
            return relative_path

        if self.collision_policy == 'suffix':
            suffixed = self._suffixed_path(index, document, category, filename)
            self.logger.warning(
                f"{relative_path} already holds document {owner.remote_id}; "
                f"saving document {document.id} as {suffixed}"
            )
            return suffixed

        self.logger.warning(
            f"{relative_path} already holds document {owner.remote_id}; "
            f"document {document.id} will share the file"
        )
        return relative_path

    @staticmethod
    def _suffixed_path(index: MetadataIndex, document: RemoteDocument, category: str, filename: str) -> str:
        """
        category/<filename>-<remote id>.md, shortened to the filename limit.

        A further '-<n>' is added while the suffixed path belongs to another document.
        """
        id_suffix = f"-{sanitize_filename(document.id)}"
        suffix = id_suffix
        counter = 1
        while True:
            stem = filename[:max(MAX_FILENAME_LENGTH - len(suffix), 1)].rstrip(FILENAME_TRIM_CHARS)
            candidate = f"{category}/{stem or DEFAULT_FILENAME}{suffix}.md"
            owner = index.find_by_path(candidate)
            if owner is None or owner.remote_id == document.id:
                return candidate
            counter += 1
            suffix = f"{id_suffix}-{counter}"

    def _validate_category(self, category: Optional[str]) -> None:
        if not category:
            raise DocumentStoreError("No category given and docs.default_category is not set")
        if self.category_labels and category not in self.category_labels:
            raise DocumentStoreError(
                f"Unknown category '{category}'. Configured categories: {sorted(self.category_labels)}"
            )
        if '/' in category or '\\' in category or category in ('.', '..'):
            raise DocumentStoreError(f"Invalid category name: {category!r}")

    def _resolve(self, relative_path: str) -> Path:
        parts = PurePosixPath(self.normalize_relative_path(relative_path)).parts
        if not parts or '..' in parts or parts[0] == '/':
            raise DocumentStoreError(f"Refusing path outside docs root: {relative_path}")
        return self.root.joinpath(*parts)

    def _write_file(self, path: Path, content: str) -> None:
        # Bytes keep '\n' line endings on every platform so checksums match the file
        self._atomic_write(path, content.encode('utf-8'))

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix='.tmp')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise


__all__ = [
    'DocumentStore',
    'DocumentStoreError',
    'IndexCorruptedError',
    'NotTrackedError',
    'sanitize_filename',
    'compute_checksum',
    'METADATA_FILENAME',
]
