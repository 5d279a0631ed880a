"""Tests for fetch and sync orchestration."""

import threading
from unittest.mock import patch

import pytest

from exporters.document_store import DocumentStore, NotTrackedError
from fetchers.base_fetcher import DocFetchError, NetworkError
from models import SyncOutcome
from orchestrator import SyncOrchestrator, SyncReport
from conftest import FakeClient, make_document


@pytest.fixture
def store(store_config, clock):
    return DocumentStore(store_config, clock=clock)


def make_orchestrator(config, store, client):
    return SyncOrchestrator(config, store, lambda connection_id: client)


def track(store, count, version=1):
    """Save `count` documents with ids '1'..str(count) at the given version."""
    return [
        store.save(make_document(str(number), version=version, title=f'Page {number}'), 'default')
        for number in range(1, count + 1)
    ]


class TestFetch:

    def test_fetch_by_id_saves_document(self, store_config, store):
        client = FakeClient([make_document('42', title='Runbook')])
        orchestrator = make_orchestrator(store_config, store, client)

        metadata = orchestrator.fetch_by_id('42', 'default', 'guides')

        assert metadata.relative_path == 'guides/Runbook.md'
        assert metadata.connection_id == 'default'
        assert client.calls == ['42']

    def test_fetch_by_url_twice_keeps_one_entry(self, store_config, store):
        client = FakeClient([make_document('123', version=1)])
        orchestrator = make_orchestrator(store_config, store, client)
        url = 'https://example.atlassian.net/wiki/spaces/DEV/pages/123/Getting+Started'

        first = orchestrator.fetch_by_url(url, 'default')
        client.documents['123'] = make_document('123', version=2)
        second = orchestrator.fetch_by_url(url, 'default')

        assert len(store.list()) == 1
        assert second.local_id == first.local_id
        assert store.list()[0].version == 2

    def test_client_is_cached_per_connection(self, store_config, store):
        created = []

        def provider(connection_id):
            created.append(connection_id)
            return FakeClient()

        orchestrator = SyncOrchestrator(store_config, store, provider)
        assert orchestrator.client_for('default') is orchestrator.client_for('default')
        orchestrator.client_for('other')
        assert created == ['default', 'other']


class TestSyncDocument:

    def test_newer_remote_version_is_synced(self, store_config, store):
        metadata = track(store, 1, version=1)[0]
        client = FakeClient([make_document('1', version=2, title='Page 1')])
        orchestrator = make_orchestrator(store_config, store, client)

        assert orchestrator.sync_document(metadata) == SyncOutcome.SYNCED
        assert store.find_by_remote_id('1').version == 2

    @pytest.mark.parametrize('remote_version', [3, 2])
    def test_same_or_older_remote_version_is_skipped(self, store_config, store, remote_version):
        metadata = track(store, 1, version=3)[0]
        before = store.path_for(metadata).read_bytes()
        client = FakeClient([make_document('1', version=remote_version, title='Page 1')])
        orchestrator = make_orchestrator(store_config, store, client)

        assert orchestrator.sync_document(metadata) == SyncOutcome.SKIPPED
        assert store.path_for(metadata).read_bytes() == before
        assert store.find_by_remote_id('1').version == 3

    def test_missing_local_file_is_skipped_without_fetch(self, store_config, store):
        metadata = track(store, 1)[0]
        store.path_for(metadata).unlink()
        client = FakeClient([make_document('1', version=2, title='Page 1')])
        orchestrator = make_orchestrator(store_config, store, client)

        assert orchestrator.sync_document(metadata) == SyncOutcome.SKIPPED
        assert client.calls == []

    def test_sync_file_by_relative_path(self, store_config, store):
        metadata = track(store, 1)[0]
        client = FakeClient([make_document('1', version=2, title='Page 1')])
        orchestrator = make_orchestrator(store_config, store, client)

        assert orchestrator.sync_file(metadata.relative_path) == SyncOutcome.SYNCED

    def test_sync_file_untracked_path(self, store_config, store):
        orchestrator = make_orchestrator(store_config, store, FakeClient())
        with pytest.raises(NotTrackedError):
            orchestrator.sync_file('reference/unknown.md')

    def test_fetch_errors_propagate(self, store_config, store):
        metadata = track(store, 1)[0]
        client = FakeClient(errors={'1': NetworkError('connection reset')})
        orchestrator = make_orchestrator(store_config, store, client)

        with pytest.raises(NetworkError):
            orchestrator.sync_document(metadata)


class TestSyncAll:

    def test_failure_does_not_stop_the_run(self, store_config, store):
        track(store, 5, version=1)
        client = FakeClient(
            [make_document(str(n), version=2, title=f'Page {n}') for n in range(1, 6)],
            errors={'3': DocFetchError('server exploded', status_code=500, retryable=True)},
        )
        orchestrator = make_orchestrator(store_config, store, client)

        report = orchestrator.sync_all()

        assert [result.outcome for result in report.results] == [
            SyncOutcome.SYNCED,
            SyncOutcome.SYNCED,
            SyncOutcome.FAILED,
            SyncOutcome.SYNCED,
            SyncOutcome.SYNCED,
        ]
        assert client.calls == ['1', '2', '3', '4', '5']
        assert report.synced == 4
        assert report.failed == 1
        assert report.failures[0].remote_id == '3'
        assert report.failures[0].error_code == 'API_ERROR'
        assert not report.cancelled

    def test_unexpected_exceptions_are_recorded(self, store_config, store):
        track(store, 2, version=1)
        client = FakeClient(
            [make_document('2', version=2, title='Page 2')],
            errors={'1': RuntimeError('bug')},
        )
        orchestrator = make_orchestrator(store_config, store, client)

        report = orchestrator.sync_all()

        assert [result.outcome for result in report.results] == [SyncOutcome.FAILED, SyncOutcome.SYNCED]
        assert report.failures[0].error == 'bug'

    def test_cancellation_stops_before_next_document(self, store_config, store):
        track(store, 5, version=1)
        cancel_event = threading.Event()

        def cancel_on_second_fetch(document_id):
            if document_id == '2':
                cancel_event.set()

        client = FakeClient(
            [make_document(str(n), version=2, title=f'Page {n}') for n in range(1, 6)],
            on_fetch=cancel_on_second_fetch,
        )
        orchestrator = make_orchestrator(store_config, store, client)

        report = orchestrator.sync_all(cancel_event=cancel_event)

        assert report.cancelled
        assert report.attempted == 2
        assert report.remaining == 3
        assert report.synced == 2
        assert client.calls == ['1', '2']
        versions = {doc.remote_id: doc.version for doc in store.list()}
        assert versions == {'1': 2, '2': 2, '3': 1, '4': 1, '5': 1}

    def test_progress_bar_is_closed_when_interrupted(self, store_config, store):
        track(store, 3, version=1)
        client = FakeClient(
            [make_document(str(n), version=2, title=f'Page {n}') for n in range(1, 4)],
            errors={'2': KeyboardInterrupt()},
        )
        orchestrator = make_orchestrator(store_config, store, client)

        with patch('orchestrator.sync_orchestrator.tqdm') as tqdm_class:
            bar = tqdm_class.return_value
            bar.__enter__.return_value = bar
            bar.__iter__.return_value = iter(store.list())

            with pytest.raises(KeyboardInterrupt):
                orchestrator.sync_all()

        bar.__exit__.assert_called_once()
        assert client.calls == ['1', '2']

    def test_category_filter(self, store_config, store):
        store.save(make_document('1', title='One'), 'default', 'reference')
        store.save(make_document('2', title='Two'), 'default', 'guides')
        client = FakeClient([make_document('2', version=2, title='Two')])
        orchestrator = make_orchestrator(store_config, store, client)

        report = orchestrator.sync_all(category='guides')

        assert report.total == 1
        assert client.calls == ['2']

    def test_nothing_tracked(self, store_config, store):
        report = make_orchestrator(store_config, store, FakeClient()).sync_all()
        assert report.total == 0
        assert report.summary_message() == 'No documents to sync'


class TestSyncReport:

    def test_summary_message(self, store):
        metadata = track(store, 3)
        report = SyncReport(total=4, cancelled=True)
        report.record(metadata[0], SyncOutcome.SYNCED)
        report.record(metadata[1], SyncOutcome.SKIPPED)
        report.record(metadata[2], SyncOutcome.FAILED, DocFetchError('nope'))

        assert report.summary_message() == '1 synced, 1 up to date, 1 failed (cancelled, 1 not attempted)'
        assert report.to_dict()['results'][2]['outcome'] == 'failed'
