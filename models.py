"""Data models for the DocFetch fetch/convert/store pipeline."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from dateutil.parser import isoparse

logger = logging.getLogger('docfetch')

METADATA_SCHEMA_VERSION = "1.0.0"


def isoformat_utc(value: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision and a Z suffix.

    Naive datetimes are assumed to already be in UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (with or without a Z suffix) into an aware datetime."""
    if not value:
        return None
    parsed = isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SyncOutcome(Enum):
    """Result classification for a single document during sync."""
    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


class LocalState(Enum):
    """State of a saved file compared with what was last written by the store."""
    CURRENT = "current"
    MODIFIED = "modified"
    MISSING = "missing"


@dataclass(frozen=True)
class RemoteDocument:
    """A Confluence page as returned by the remote client. Immutable once fetched."""

    id: str
    title: str
    space_key: str
    version: int
    created_at: datetime
    updated_at: datetime
    author: str
    content: str  # storage format (XHTML)
    web_url: str
    labels: Tuple[str, ...] = ()
    space_name: str = ''

    def __post_init__(self) -> None:
        if not isinstance(self.version, int) or self.version < 1:
            raise ValueError(f"Document version must be an integer >= 1, got {self.version!r}")
        # Accept any iterable of labels but store a tuple so the instance stays hashable
        object.__setattr__(self, 'labels', tuple(self.labels or ()))


@dataclass(frozen=True)
class SearchResult:
    """Lightweight search hit returned by the remote client."""

    id: str
    title: str
    space_key: str
    excerpt: str
    last_modified: Optional[datetime]
    web_url: str
    space_name: str = ''


@dataclass
class Frontmatter:
    """Metadata header embedded at the top of every saved markdown file."""

    title: str
    remote_id: str
    remote_url: str
    space_key: str
    version: int
    synced_at: str
    modified_at: str
    author: str
    labels: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize frontmatter to an ordered dictionary (header key order)."""
        return {
            'title': self.title,
            'remote_id': self.remote_id,
            'remote_url': self.remote_url,
            'space_key': self.space_key,
            'version': self.version,
            'synced_at': self.synced_at,
            'modified_at': self.modified_at,
            'author': self.author,
            'labels': list(self.labels),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Frontmatter':
        return cls(
            title=str(data.get('title', '')),
            remote_id=str(data.get('remote_id', '')),
            remote_url=str(data.get('remote_url', '')),
            space_key=str(data.get('space_key', '')),
            version=int(data.get('version', 1)),
            synced_at=str(data.get('synced_at', '')),
            modified_at=str(data.get('modified_at', '')),
            author=str(data.get('author', '')),
            labels=[str(label) for label in (data.get('labels') or [])],
        )


@dataclass
class ConversionResult:
    """Markdown body plus the frontmatter derived from the same document."""

    markdown: str
    frontmatter: Frontmatter
    stats: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DocumentMetadata:
    """Index entry for a locally saved document."""

    local_id: str
    remote_id: str
    connection_id: str
    relative_path: str
    title: str
    remote_url: str
    space_key: str
    version: int
    synced_at: str
    checksum: str
    category: str
    labels: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize metadata using the camelCase keys of the index file."""
        return {
            'localId': self.local_id,
            'remoteId': self.remote_id,
            'connectionId': self.connection_id,
            'relativePath': self.relative_path,
            'title': self.title,
            'remoteUrl': self.remote_url,
            'spaceKey': self.space_key,
            'version': self.version,
            'syncedAt': self.synced_at,
            'checksum': self.checksum,
            'category': self.category,
            'labels': list(self.labels),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DocumentMetadata':
        """Deserialize an index entry.

        Raises:
            KeyError: If a required key is missing
        """
        return cls(
            local_id=data['localId'],
            remote_id=str(data['remoteId']),
            connection_id=data.get('connectionId', 'default'),
            relative_path=data['relativePath'],
            title=data.get('title', ''),
            remote_url=data.get('remoteUrl', ''),
            space_key=data.get('spaceKey', ''),
            version=int(data.get('version', 1)),
            synced_at=data.get('syncedAt', ''),
            checksum=data.get('checksum', ''),
            category=data.get('category', ''),
            labels=list(data.get('labels') or []),
        )


@dataclass
class MetadataIndex:
    """The persisted index: schema version plus one entry per tracked document."""

    schema_version: str = METADATA_SCHEMA_VERSION
    documents: List[DocumentMetadata] = field(default_factory=list)

    def find_by_remote_id(self, remote_id: str) -> Optional[DocumentMetadata]:
        return next((d for d in self.documents if d.remote_id == remote_id), None)

    def find_by_local_id(self, local_id: str) -> Optional[DocumentMetadata]:
        return next((d for d in self.documents if d.local_id == local_id), None)

    def find_by_path(self, relative_path: str) -> Optional[DocumentMetadata]:
        return next((d for d in self.documents if d.relative_path == relative_path), None)

    def upsert(self, metadata: DocumentMetadata) -> None:
        """Replace the entry with the same local id or remote id, or append a new one."""
        for position, existing in enumerate(self.documents):
            if existing.local_id == metadata.local_id or existing.remote_id == metadata.remote_id:
                self.documents[position] = metadata
                return
        self.documents.append(metadata)

    def remove(self, local_id: str) -> Optional[DocumentMetadata]:
        for position, existing in enumerate(self.documents):
            if existing.local_id == local_id:
                return self.documents.pop(position)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schemaVersion': self.schema_version,
            'documents': [doc.to_dict() for doc in self.documents],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MetadataIndex':
        # Early index files stored the schema under "version"
        schema_version = data.get('schemaVersion') or data.get('version') or METADATA_SCHEMA_VERSION
        documents = [DocumentMetadata.from_dict(doc) for doc in data.get('documents', [])]
        return cls(schema_version=schema_version, documents=documents)
