"""Fetchers package for retrieving Confluence documents."""

from config_loader import ConfigurationError

from .base_fetcher import (
    AuthenticationError,
    DocFetchError,
    DocumentNotFoundError,
    NetworkError,
    ParsedConfluenceUrl,
    RateLimitError,
    RemoteClient,
    parse_confluence_url,
)
from .api_fetcher import ApiFetcher


class FetcherFactory:
    """Factory for creating remote clients from configured connections."""

    @staticmethod
    def create_client(config: dict, connection_id: str, logger=None) -> RemoteClient:
        """Create a client for a configured connection.

        Args:
            config: Configuration dictionary
            connection_id: Key under the connections section
            logger: Logger instance

        Returns:
            RemoteClient instance

        Raises:
            ConfigurationError: If the connection is not configured
        """
        connections = config.get('connections') or {}
        if connection_id not in connections:
            raise ConfigurationError(
                f"Unknown connection '{connection_id}'. Configured connections: {sorted(connections)}"
            )
        return ApiFetcher(connections[connection_id], logger)


__all__ = [
    'RemoteClient',
    'ApiFetcher',
    'FetcherFactory',
    'DocFetchError',
    'AuthenticationError',
    'DocumentNotFoundError',
    'RateLimitError',
    'NetworkError',
    'ParsedConfluenceUrl',
    'parse_confluence_url',
]
