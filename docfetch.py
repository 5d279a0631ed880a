#!/usr/bin/env python3
"""
DocFetch - Main CLI Entry Point

Fetches Confluence pages into a local folder of Markdown files and keeps those
copies synchronized with the remote versions.
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from config_loader import ConfigLoader, ConfigurationError, get_nested
from exporters import DocumentStore, DocumentStoreError
from fetchers import DocFetchError, FetcherFactory
from logger import log_config, log_section, setup_logging
from orchestrator import SyncOrchestrator

# Version
__version__ = "1.0.0"

DEFAULT_CONFIG_PATH = 'config.yaml'


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        description="Fetch Confluence pages as Markdown and keep them in sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fetch a page into the default category
  python docfetch.py fetch https://example.atlassian.net/wiki/spaces/DEV/pages/123/Title

  # Fetch a page by id into a specific category
  python docfetch.py fetch --id 123456 --category guides

  # Re-sync one local file
  python docfetch.py sync reference/Getting-Started.md

  # Re-sync everything (Ctrl-C stops after the current document)
  python docfetch.py sync-all

  # Search the remote wiki
  python docfetch.py search "deployment runbook" --space OPS
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--config',
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help=f'Path to configuration YAML file (default: {DEFAULT_CONFIG_PATH})'
    )

    parser.add_argument(
        '--docs-root',
        type=str,
        help='Override docs.root from the configuration'
    )

    parser.add_argument(
        '--connection',
        type=str,
        default='default',
        help='Connection id from the connections section (default: default)'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        help='Write logs to this file as well'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Explicit log level (overrides -v)'
    )

    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bars'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (-v for INFO, -vv for DEBUG)'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    fetch_parser = subparsers.add_parser('fetch', help='Fetch a page by URL or id')
    fetch_parser.add_argument('url', nargs='?', help='Confluence page URL')
    fetch_parser.add_argument('--id', dest='document_id', help='Remote page id instead of a URL')
    fetch_parser.add_argument('--category', help='Target category (default: docs.default_category)')

    sync_parser = subparsers.add_parser('sync', help='Re-sync one tracked file')
    sync_parser.add_argument('path', help='File path relative to the docs root')

    sync_all_parser = subparsers.add_parser('sync-all', help='Re-sync every tracked document')
    sync_all_parser.add_argument('--category', help='Only sync documents in this category')

    list_parser = subparsers.add_parser('list', help='List tracked documents')
    list_parser.add_argument('--category', help='Only list documents in this category')

    search_parser = subparsers.add_parser('search', help='Search the remote wiki')
    search_parser.add_argument('query', help='Free text or CQL query')
    search_parser.add_argument('--space', dest='space_key', help='Restrict to a space key')
    search_parser.add_argument('--limit', type=int, default=25, help='Maximum results (default: 25)')

    delete_parser = subparsers.add_parser('delete', help='Delete a tracked document')
    delete_parser.add_argument('local_id', help='Local id as shown by list')

    return parser


def load_configuration(args: argparse.Namespace) -> dict:
    """Load the config file (defaults only when the default path is absent) and apply CLI overrides."""
    if args.config == DEFAULT_CONFIG_PATH and not Path(args.config).exists():
        config = ConfigLoader.with_defaults({})
    else:
        config = ConfigLoader.load(args.config)

    config = ConfigLoader.merge_with_args(config, args)
    ConfigLoader.validate(config)
    return config


def build_orchestrator(config: dict, logger: logging.Logger) -> SyncOrchestrator:
    store = DocumentStore(config, logger=logging.getLogger('docfetch.exporters.documentstore'))

    def client_provider(connection_id: str):
        return FetcherFactory.create_client(config, connection_id)

    return SyncOrchestrator(config, store, client_provider, logger=logger)


def run_command(args: argparse.Namespace, config: dict, logger: logging.Logger) -> int:
    """Dispatch the selected subcommand. Returns the process exit code."""
    orchestrator = build_orchestrator(config, logger)
    store = orchestrator.store

    if args.command == 'fetch':
        if not args.url and not args.document_id:
            print("ERROR: fetch needs a URL or --id", file=sys.stderr)
            return 1
        if args.document_id:
            metadata = orchestrator.fetch_by_id(args.document_id, args.connection, args.category)
        else:
            metadata = orchestrator.fetch_by_url(args.url, args.connection, args.category)
        print(f"Saved '{metadata.title}' (v{metadata.version}) to {store.path_for(metadata)}")
        return 0

    if args.command == 'sync':
        outcome = orchestrator.sync_file(args.path)
        print(f"{args.path}: {outcome.value}")
        return 0

    if args.command == 'sync-all':
        cancel_event = threading.Event()

        def request_cancel(signum, frame):
            print("\nCancelling after the current document...", file=sys.stderr)
            cancel_event.set()

        previous_handler = signal.signal(signal.SIGINT, request_cancel)
        try:
            report = orchestrator.sync_all(args.category, cancel_event)
        finally:
            signal.signal(signal.SIGINT, previous_handler)

        print(report.summary_message())
        for failure in report.failures:
            print(f"  FAILED {failure.relative_path}: {failure.error}", file=sys.stderr)
        return 1 if report.failed else 0

    if args.command == 'list':
        documents = store.list(args.category)
        if not documents:
            print("No tracked documents")
            return 0
        for metadata in documents:
            state = store.local_state(metadata).value
            print(f"{metadata.local_id}  {state:<8}  v{metadata.version:<4}  {metadata.relative_path}  {metadata.title}")
        return 0

    if args.command == 'search':
        client = orchestrator.client_for(args.connection)
        results = client.search(args.query, limit=args.limit, space_key=args.space_key)
        if not results:
            print("No results")
            return 0
        for result in results:
            print(f"{result.id:<12}  [{result.space_key}]  {result.title}")
            if result.web_url:
                print(f"{'':<12}  {result.web_url}")
        return 0

    if args.command == 'delete':
        if store.delete(args.local_id):
            print(f"Deleted {args.local_id}")
        else:
            print(f"No tracked document with local id {args.local_id}")
        return 0

    logger.error(f"Unknown command: {args.command}")
    return 1


def main() -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args()

    try:
        logger = setup_logging(verbosity=args.verbose, level=args.log_level)

        log_section("DocFetch")
        logger.info(f"Version: {__version__}")

        config = load_configuration(args)

        # Reconfigure logging with config file settings
        logger = setup_logging(
            verbosity=args.verbose,
            log_file=get_nested(config, 'logging.file'),
            level=args.log_level or get_nested(config, 'logging.level')
        )
        log_config(config)

        return run_command(args, config, logger)

    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return 2
    except ConfigurationError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 2
    except (DocFetchError, DocumentStoreError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"ERROR: Unexpected error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
