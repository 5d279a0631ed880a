"""Local document storage package.

This package persists converted Confluence pages as Markdown files under a docs
root and tracks their provenance in a JSON metadata index.

Package Structure:
- document_store: DocumentStore plus filename sanitizing and checksum helpers

Layout:
- <root>/<category>/<sanitized-title>.md: YAML frontmatter, blank line, Markdown body
- <root>/.docfetch-metadata.json: {schemaVersion, documents: [...]}

Configuration Referenced:
- docs.root: Base directory for saved documents
- docs.categories: Category directory names and labels
- docs.default_category: Category used when none is given
- export.collision_policy: 'suffix' or 'overwrite' for filename collisions
"""

from .document_store import (
    METADATA_FILENAME,
    DocumentStore,
    DocumentStoreError,
    IndexCorruptedError,
    NotTrackedError,
    compute_checksum,
    sanitize_filename,
)

__all__ = [
    'DocumentStore',
    'DocumentStoreError',
    'IndexCorruptedError',
    'NotTrackedError',
    'compute_checksum',
    'sanitize_filename',
    'METADATA_FILENAME',
]
