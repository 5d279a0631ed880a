"""API fetcher implementation for retrieving Confluence content via REST API."""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config_loader import ConfigurationError
from models import RemoteDocument, SearchResult, parse_timestamp
from .base_fetcher import (
    AuthenticationError,
    DocFetchError,
    DocumentNotFoundError,
    NetworkError,
    RateLimitError,
    RemoteClient,
    build_cql,
)

logger = logging.getLogger('docfetch.fetcher.api')

CONTENT_ENDPOINT = '/wiki/rest/api/content/{document_id}'
SEARCH_ENDPOINT = '/wiki/rest/api/search'
CONTENT_EXPAND = 'body.storage,version,space,history,metadata.labels'
SEARCH_EXPAND = 'content.space,content.version'
DEFAULT_RETRY_AFTER = 60


class ApiFetcher(RemoteClient):
    """Fetches Confluence Cloud pages in storage format via the REST API."""

    def __init__(
        self,
        config: Dict[str, Any],
        logger: Optional[logging.Logger] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize API fetcher with connection configuration.

        Args:
            config: Connection settings (base_url, username, api_token, timeout, max_retries)
            logger: Logger instance (optional)
            session: Optional pre-built requests session
        """
        super().__init__(config, logger or logging.getLogger('docfetch.fetcher.api'))

        base_url = (config.get('base_url') or '').rstrip('/')
        if not base_url:
            raise ConfigurationError("base_url is required for API fetcher")
        if base_url.endswith('/wiki'):
            base_url = base_url[:-len('/wiki')]
        self.base_url = base_url

        username = config.get('username')
        api_token = config.get('api_token')
        if not username or not api_token:
            raise ConfigurationError("Basic auth requires username and api_token")

        self.timeout = config.get('timeout', 30)
        self.max_retries = int(config.get('max_retries', 3))
        self.retry_backoff_factor = float(config.get('retry_backoff_factor', 2.0))

        self.session = session or requests.Session()
        self.session.auth = (username, api_token)
        self.session.headers.update({'Accept': 'application/json'})

        # Retry transient failures on idempotent requests; the final response is
        # returned (not raised) so its status can be mapped to an error type
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=self.retry_backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"],
            raise_on_status=False
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.logger.debug(
            f"Initialized ApiFetcher for {self.base_url} "
            f"(timeout={self.timeout}s, max_retries={self.max_retries})"
        )

    def get_document_by_id(self, document_id: str) -> RemoteDocument:
        """
        Fetch a page with its storage body, version, space, history and labels.

        Raises:
            DocFetchError: Or a subclass describing the failure
        """
        self.logger.info(f"Fetching document {document_id}")
        data = self._request(
            CONTENT_ENDPOINT.format(document_id=document_id),
            params={'expand': CONTENT_EXPAND}
        )
        return self._convert_api_page_to_model(data)

    def search(self, query: str, limit: int = 25, space_key: Optional[str] = None) -> List[SearchResult]:
        cql = build_cql(query, space_key)
        self.logger.debug(f"Searching with CQL: {cql}")

        data = self._request(SEARCH_ENDPOINT, params={
            'cql': cql,
            'limit': str(limit),
            'expand': SEARCH_EXPAND,
        })

        results = []
        for item in data.get('results', []):
            content = item.get('content')
            if not content or 'id' not in content:
                continue
            space = content.get('space') or {}
            last_modified = item.get('lastModified') or (content.get('version') or {}).get('when')
            results.append(SearchResult(
                id=str(content['id']),
                title=content.get('title', ''),
                space_key=space.get('key', ''),
                space_name=space.get('name', ''),
                excerpt=BeautifulSoup(item.get('excerpt') or '', 'html.parser').get_text().strip(),
                last_modified=parse_timestamp(last_modified),
                web_url=self._web_url((content.get('_links') or {}).get('webui', '')),
            ))

        self.logger.info(f"Search returned {len(results)} results")
        return results

    def _request(self, endpoint: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        GET an API endpoint and return the decoded JSON body.

        Raises:
            NetworkError: For connection failures and timeouts
            DocFetchError: For HTTP errors (mapped by status) and invalid responses
        """
        url = f"{self.base_url}{endpoint}"
        start_time = time.time()
        self.logger.debug(f"API Request: GET {url}")

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Request timed out after {self.timeout}s: {url}") from e
        except requests.exceptions.ConnectionError as e:
            raise NetworkError(f"Network error: {e}") from e
        except requests.exceptions.RequestException as e:
            raise DocFetchError(f"Request failed: {e}") from e

        self.logger.debug(f"API Response: {response.status_code} {url} ({time.time() - start_time:.3f}s)")

        if response.status_code >= 400:
            self._raise_for_status(response)

        try:
            return response.json()
        except ValueError as e:
            raise DocFetchError(f"Invalid JSON response from {url}", status_code=response.status_code) from e

    def _raise_for_status(self, response: requests.Response) -> None:
        """Map an HTTP error response to the matching DocFetchError subclass."""
        status = response.status_code
        message = f"HTTP {status}"
        try:
            body = response.json()
            if isinstance(body, dict):
                message = body.get('message') or body.get('errorMessage') or message
        except ValueError:
            pass

        if status == 401:
            raise AuthenticationError(message, 401)
        if status == 403:
            raise AuthenticationError(f"Access denied: {message}", 403)
        if status == 404:
            raise DocumentNotFoundError(message)
        if status == 429:
            retry_after = response.headers.get('Retry-After', str(DEFAULT_RETRY_AFTER))
            try:
                wait_time = int(retry_after)
            except ValueError:
                wait_time = DEFAULT_RETRY_AFTER
            raise RateLimitError(message, wait_time)
        raise DocFetchError(message, 'API_ERROR', status, status >= 500)

    def _convert_api_page_to_model(self, api_response: Dict[str, Any]) -> RemoteDocument:
        """Convert a v1 content response to a RemoteDocument."""
        page_id = str(api_response['id'])
        version_info = api_response.get('version') or {}
        history = api_response.get('history') or {}
        space = api_response.get('space') or {}

        updated_at = parse_timestamp(version_info.get('when'))
        created_at = parse_timestamp(history.get('createdDate')) or updated_at
        if updated_at is None:
            updated_at = created_at or datetime.now(timezone.utc)
        if created_at is None:
            created_at = updated_at

        author = (
            (version_info.get('by') or {}).get('displayName')
            or (history.get('createdBy') or {}).get('displayName')
            or ''
        )

        labels = [
            label.get('name') for label in
            ((api_response.get('metadata') or {}).get('labels') or {}).get('results', [])
            if label.get('name')
        ]

        content = ((api_response.get('body') or {}).get('storage') or {}).get('value', '')
        if not content:
            self.logger.warning(f"Document {page_id} has no storage body")

        links = api_response.get('_links') or {}
        if links.get('base') and links.get('webui'):
            web_url = f"{links['base']}{links['webui']}"
        else:
            web_url = self._web_url(links.get('webui', ''))

        return RemoteDocument(
            id=page_id,
            title=api_response.get('title', 'Untitled'),
            space_key=space.get('key', ''),
            space_name=space.get('name', ''),
            version=int(version_info.get('number', 1)),
            created_at=created_at,
            updated_at=updated_at,
            author=author,
            content=content,
            web_url=web_url,
            labels=tuple(labels),
        )

    def _web_url(self, webui: str) -> str:
        return f"{self.base_url}/wiki{webui}" if webui else ''


__all__ = ['ApiFetcher']
