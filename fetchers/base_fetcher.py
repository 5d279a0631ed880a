"""Remote client interface, error types and Confluence URL parsing."""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from models import RemoteDocument, SearchResult


class DocFetchError(Exception):
    """Base exception for remote client errors."""

    def __init__(
        self,
        message: str,
        code: str = 'API_ERROR',
        status_code: Optional[int] = None,
        retryable: bool = False
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retryable = retryable


class AuthenticationError(DocFetchError):
    """Credentials were rejected (401) or access was denied (403)."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message, 'AUTH_ERROR', status_code, False)


class DocumentNotFoundError(DocFetchError):
    """The requested document does not exist or the URL cannot be resolved."""

    def __init__(self, message: str):
        super().__init__(message, 'NOT_FOUND', 404, False)


class RateLimitError(DocFetchError):
    """The server asked the client to slow down."""

    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message, 'RATE_LIMITED', 429, True)
        self.retry_after = retry_after


class NetworkError(DocFetchError):
    """The server could not be reached."""

    def __init__(self, message: str):
        super().__init__(message, 'NETWORK_ERROR', None, True)


@dataclass(frozen=True)
class ParsedConfluenceUrl:
    """Identifiers extracted from a Confluence page URL."""

    page_id: Optional[str] = None
    space_key: Optional[str] = None
    page_title: Optional[str] = None


SPACES_PAGE_PATTERN = re.compile(r'/wiki/spaces/([^/]+)/pages/(\d+)(?:/([^?#]+))?')
PAGE_ID_PATTERN = re.compile(r'pageId=(\d+)')
DISPLAY_PATTERN = re.compile(r'(?:/wiki)?/display/([^/]+)/([^?#]+)')


def _decode_title(raw: str) -> str:
    return unquote(raw.replace('+', ' '))


def parse_confluence_url(url: str) -> ParsedConfluenceUrl:
    """
    Extract page id, space key and title from a Confluence URL.

    Supported forms:
        /wiki/spaces/KEY/pages/ID[/Title]
        .../viewpage.action?pageId=ID
        /wiki/display/KEY/Title and /display/KEY/Title (Data Center)

    Raises:
        DocumentNotFoundError: If the URL matches none of the forms
    """
    match = SPACES_PAGE_PATTERN.search(url or '')
    if match:
        return ParsedConfluenceUrl(
            page_id=match.group(2),
            space_key=match.group(1),
            page_title=_decode_title(match.group(3)) if match.group(3) else None,
        )

    match = PAGE_ID_PATTERN.search(url or '')
    if match:
        return ParsedConfluenceUrl(page_id=match.group(1))

    match = DISPLAY_PATTERN.search(url or '')
    if match:
        return ParsedConfluenceUrl(space_key=match.group(1), page_title=_decode_title(match.group(2)))

    raise DocumentNotFoundError(f"Cannot parse Confluence URL: {url}")


class RemoteClient(ABC):
    """Abstract base class for Confluence content clients."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, logger=None):
        """
        Initialize base client with configuration and logger.

        Args:
            config: Connection configuration dictionary
            logger: Logger instance (optional, uses module logger if not provided)
        """
        self.config = config or {}
        self.logger = logger or logging.getLogger('docfetch.fetcher')

    @abstractmethod
    def get_document_by_id(self, document_id: str) -> RemoteDocument:
        """
        Fetch a single document with its storage-format body.

        Raises:
            DocFetchError: Or one of its subclasses
        """
        pass

    @abstractmethod
    def search(self, query: str, limit: int = 25, space_key: Optional[str] = None) -> List[SearchResult]:
        """
        Search documents by free text or CQL.

        Args:
            query: Free text, or a CQL expression
            limit: Maximum number of results
            space_key: Optional space to restrict the search to
        """
        pass

    def get_document_by_url(self, url: str) -> RemoteDocument:
        """
        Resolve a page URL to a document.

        Page-id URLs are fetched directly; display URLs are resolved by a
        title search within their space.

        Raises:
            DocumentNotFoundError: If the URL cannot be parsed or resolved
        """
        parsed = parse_confluence_url(url)

        if parsed.page_id:
            return self.get_document_by_id(parsed.page_id)

        if parsed.space_key and parsed.page_title:
            title = escape_cql_value(parsed.page_title)
            space_key = escape_cql_value(parsed.space_key)
            results = self.search(f'title = "{title}" AND space = "{space_key}"', limit=1)
            if results:
                return self.get_document_by_id(results[0].id)

        raise DocumentNotFoundError(f"Could not find document for URL: {url}")


CQL_MARKERS = ('=', '~', ' AND ', ' OR ', ' NOT ', ' IN ', 'space', 'type', 'title', 'text')


def is_cql(query: str) -> bool:
    return any(marker in query for marker in CQL_MARKERS)


def escape_cql_value(value: str) -> str:
    return re.sub(r'(["\\])', r'\\\1', value)


def build_cql(query: str, space_key: Optional[str] = None) -> str:
    """Turn a free-text query (or CQL) into a page-only CQL expression."""
    parts = [query if is_cql(query) else f'text ~ "{escape_cql_value(query)}"']
    if space_key:
        parts.append(f'space = "{escape_cql_value(space_key)}"')
    parts.append('type = page')
    return ' AND '.join(parts)


__all__ = [
    'RemoteClient',
    'DocFetchError',
    'AuthenticationError',
    'DocumentNotFoundError',
    'RateLimitError',
    'NetworkError',
    'ParsedConfluenceUrl',
    'parse_confluence_url',
    'build_cql',
    'escape_cql_value',
    'is_cql',
]
