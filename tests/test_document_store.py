"""Tests for the local document store and its metadata index."""

import json

import pytest

from config_loader import ConfigLoader
from exporters.document_store import (
    METADATA_FILENAME,
    DocumentStore,
    DocumentStoreError,
    IndexCorruptedError,
    compute_checksum,
    sanitize_filename,
)
from models import LocalState
from conftest import make_document


@pytest.fixture
def store(store_config, clock):
    return DocumentStore(store_config, clock=clock)


class TestSanitizeFilename:

    def test_forbidden_characters(self):
        assert sanitize_filename('A/B: C?') == 'A-B- C'

    def test_repeated_dashes_collapse(self):
        assert sanitize_filename('a // b') == 'a - b'
        assert sanitize_filename('x***y') == 'x-y'

    def test_symbols_only_falls_back(self):
        assert sanitize_filename('???') == 'untitled'
        assert sanitize_filename('   ') == 'untitled'
        assert sanitize_filename('') == 'untitled'

    def test_truncated_to_100_characters(self):
        assert sanitize_filename('a' * 150) == 'a' * 100

    def test_truncation_does_not_leave_trailing_dash(self):
        assert sanitize_filename('a' * 99 + '/b') == 'a' * 99

    def test_control_characters(self):
        assert sanitize_filename('tab\there') == 'tab-here'


class TestSave:

    def test_save_writes_file_and_index(self, store, tmp_path):
        metadata = store.save(make_document(), 'default', 'guides')

        path = tmp_path / 'docs' / 'guides' / 'Getting Started.md'
        assert metadata.relative_path == 'guides/Getting Started.md'
        assert path.exists()

        content = path.read_bytes().decode('utf-8')
        assert content.startswith('---\n')
        assert content.endswith('\n')
        assert '# Getting Started' in content
        assert metadata.checksum == compute_checksum(content)
        assert metadata.synced_at == '2024-03-01T12:00:00.000Z'

        index = json.loads((tmp_path / 'docs' / METADATA_FILENAME).read_text(encoding='utf-8'))
        assert index['schemaVersion'] == '1.0.0'
        entry = index['documents'][0]
        assert entry['remoteId'] == '123'
        assert entry['relativePath'] == 'guides/Getting Started.md'
        assert entry['localId'] == metadata.local_id
        assert entry['connectionId'] == 'default'

    def test_default_category(self, store):
        metadata = store.save(make_document(), 'default')
        assert metadata.category == 'reference'
        assert metadata.relative_path.startswith('reference/')

    def test_unknown_category_is_rejected(self, store):
        with pytest.raises(DocumentStoreError):
            store.save(make_document(), 'default', 'archive')

    def test_saving_tracked_remote_id_updates_instead(self, store):
        first = store.save(make_document(version=1), 'default')
        second = store.save(make_document(version=2), 'default')

        documents = store.list()
        assert len(documents) == 1
        assert documents[0].version == 2
        assert second.local_id == first.local_id
        assert second.relative_path == first.relative_path
        assert 'Version 2 of the page.' in store.path_for(second).read_text(encoding='utf-8')

    def test_title_collision_gets_id_suffix(self, store):
        store.save(make_document('1', title='Same'), 'default')
        second = store.save(make_document('2', title='Same'), 'default')

        assert second.relative_path == 'reference/Same-2.md'
        assert len(store.list()) == 2

    def test_suffixed_name_respects_length_limit(self, store):
        title = 'a' * 100
        store.save(make_document('1', title=title), 'default')
        second = store.save(make_document('2', title=title), 'default')

        assert second.relative_path == f"reference/{'a' * 98}-2.md"

    def test_suffixed_name_already_taken(self, store):
        store.save(make_document('1', title='Same'), 'default')
        store.save(make_document('5', title='Same-2'), 'default')
        third = store.save(make_document('2', title='Same'), 'default')

        assert third.relative_path == 'reference/Same-2-2.md'
        assert len({entry.relative_path for entry in store.list()}) == 3

    def test_title_collision_overwrite_policy(self, tmp_path, clock):
        config = ConfigLoader.with_defaults({
            'docs': {'root': str(tmp_path / 'docs')},
            'export': {'collision_policy': 'overwrite'},
        })
        store = DocumentStore(config, clock=clock)

        store.save(make_document('1', title='Same'), 'default')
        second = store.save(make_document('2', title='Same'), 'default')

        assert second.relative_path.endswith('/Same.md')
        assert 'Same-2' not in second.relative_path

    def test_invalid_collision_policy(self, tmp_path):
        config = ConfigLoader.with_defaults({
            'docs': {'root': str(tmp_path / 'docs')},
            'export': {'collision_policy': 'rename'},
        })
        with pytest.raises(ValueError):
            DocumentStore(config)


class TestUpdate:

    def test_update_preserves_identity(self, store):
        metadata = store.save(make_document(version=1, labels=('old',)), 'default')
        local_id = metadata.local_id

        updated = store.update(make_document(version=4, labels=('new',)), metadata)

        assert updated.local_id == local_id
        assert updated.version == 4
        assert updated.labels == ['new']
        assert store.find_by_remote_id('123').version == 4

    def test_update_with_other_remote_id_fails(self, store):
        metadata = store.save(make_document('1'), 'default')
        with pytest.raises(DocumentStoreError):
            store.update(make_document('2'), metadata)


class TestLookupAndDelete:

    def test_find_by_local_path_accepts_backslashes(self, store):
        metadata = store.save(make_document(), 'default')
        found = store.find_by_local_path(metadata.relative_path.replace('/', '\\'))
        assert found.local_id == metadata.local_id

    def test_find_unknown(self, store):
        assert store.find_by_remote_id('nope') is None
        assert store.find_by_local_path('reference/nope.md') is None

    def test_list_by_category(self, store):
        store.save(make_document('1', title='One'), 'default', 'reference')
        store.save(make_document('2', title='Two'), 'default', 'guides')

        assert [doc.title for doc in store.list('guides')] == ['Two']
        assert len(store.list()) == 2

    def test_delete_removes_file_and_entry(self, store):
        metadata = store.save(make_document(), 'default')
        path = store.path_for(metadata)

        assert store.delete(metadata.local_id) is True
        assert not path.exists()
        assert store.list() == []

    def test_delete_with_file_already_gone(self, store):
        metadata = store.save(make_document(), 'default')
        store.path_for(metadata).unlink()

        assert store.delete(metadata.local_id) is True
        assert store.list() == []

    def test_delete_unknown_id(self, store):
        assert store.delete('missing') is False

    def test_categories_keep_configured_order(self, store):
        assert store.categories() == [('reference', 'Reference'), ('guides', 'Guides')]


class TestLocalState:

    def test_current_modified_missing(self, store):
        metadata = store.save(make_document(), 'default')
        path = store.path_for(metadata)
        assert store.local_state(metadata) == LocalState.CURRENT

        path.write_text(path.read_text(encoding='utf-8') + '\nlocal note\n', encoding='utf-8')
        assert store.local_state(metadata) == LocalState.MODIFIED

        path.unlink()
        assert store.local_state(metadata) == LocalState.MISSING

    def test_read_frontmatter(self, store):
        metadata = store.save(make_document(version=5), 'default')
        frontmatter = store.read_frontmatter(metadata)

        assert frontmatter.remote_id == '123'
        assert frontmatter.version == 5
        assert frontmatter.synced_at == metadata.synced_at


class TestIndex:

    def test_missing_index_is_empty(self, store):
        assert store.load_index().documents == []

    def test_corrupted_index_raises(self, store, tmp_path):
        index_path = tmp_path / 'docs' / METADATA_FILENAME
        index_path.parent.mkdir(parents=True)
        index_path.write_text('{not json', encoding='utf-8')

        with pytest.raises(IndexCorruptedError):
            store.list()

    def test_index_with_missing_keys_raises(self, store, tmp_path):
        index_path = tmp_path / 'docs' / METADATA_FILENAME
        index_path.parent.mkdir(parents=True)
        index_path.write_text('{"documents": [{"title": "x"}]}', encoding='utf-8')

        with pytest.raises(IndexCorruptedError):
            store.load_index()

    def test_no_temp_files_left_behind(self, store, tmp_path):
        store.save(make_document(), 'default')
        leftovers = [p.name for p in (tmp_path / 'docs').rglob('*.tmp')]
        assert leftovers == []

    def test_paths_outside_root_are_rejected(self, store):
        with pytest.raises(DocumentStoreError):
            store._resolve('../outside.md')

    def test_ensure_directories(self, store, tmp_path):
        store.ensure_directories()
        assert (tmp_path / 'docs' / 'reference').is_dir()
        assert (tmp_path / 'docs' / 'guides').is_dir()
