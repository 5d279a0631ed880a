"""Shared fixtures: sample documents, an in-memory remote client and store config."""

from datetime import datetime, timezone

import pytest

from config_loader import ConfigLoader
from fetchers.base_fetcher import DocumentNotFoundError, RemoteClient
from models import RemoteDocument, SearchResult

FIXED_NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_document(document_id='123', version=1, title='Getting Started', **overrides):
    fields = {
        'id': document_id,
        'title': title,
        'space_key': 'DEV',
        'version': version,
        'created_at': datetime(2024, 1, 10, 9, 0, 0, tzinfo=timezone.utc),
        'updated_at': datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc),
        'author': 'Ada Lovelace',
        'content': f'<h1>{title}</h1><p>Version {version} of the page.</p>',
        'web_url': f'https://example.atlassian.net/wiki/spaces/DEV/pages/{document_id}',
        'labels': ('howto',),
    }
    fields.update(overrides)
    return RemoteDocument(**fields)


class FakeClient(RemoteClient):
    """In-memory RemoteClient returning prepared documents and recording calls."""

    def __init__(self, documents=None, errors=None, on_fetch=None):
        super().__init__({})
        self.documents = {doc.id: doc for doc in (documents or [])}
        self.errors = dict(errors or {})
        self.on_fetch = on_fetch
        self.calls = []

    def get_document_by_id(self, document_id):
        self.calls.append(document_id)
        if self.on_fetch is not None:
            self.on_fetch(document_id)
        if document_id in self.errors:
            raise self.errors[document_id]
        if document_id not in self.documents:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return self.documents[document_id]

    def search(self, query, limit=25, space_key=None):
        return [
            SearchResult(
                id=doc.id,
                title=doc.title,
                space_key=doc.space_key,
                excerpt='',
                last_modified=doc.updated_at,
                web_url=doc.web_url,
            )
            for doc in self.documents.values()
            if doc.title in query
        ][:limit]


@pytest.fixture
def store_config(tmp_path):
    return ConfigLoader.with_defaults({
        'docs': {
            'root': str(tmp_path / 'docs'),
            'categories': {'reference': 'Reference', 'guides': 'Guides'},
        },
        'sync': {'progress_bars': False},
    })


@pytest.fixture
def clock():
    return lambda: FIXED_NOW
