"""Converters package for Confluence storage format to Markdown conversion."""

import logging

from .frontmatter import FrontmatterBuilder
from .macro_handler import MacroHandler, parse_storage
from .markdown_converter import MarkdownConverter
from .text_cleaner import TextCleaner

logger = logging.getLogger('docfetch.converters')


def convert_document(document, synced_at=None, config=None, logger=None):
    """
    Convenience function to convert a RemoteDocument to Markdown.

    This orchestrates the full conversion pipeline:
    1. Storage format parsing and macro normalization
    2. Markdown generation using markdownify
    3. Text post-processing
    4. Frontmatter generation

    Args:
        document: RemoteDocument with storage-format content
        synced_at: Optional conversion time for the frontmatter
        config: Optional configuration dictionary
        logger: Optional logger instance (uses module logger if not provided)

    Returns:
        ConversionResult with markdown and frontmatter

    Example:
        >>> from converters import convert_document
        >>> result = convert_document(document)
        >>> print(result.markdown)
    """
    if logger is None:
        logger = logging.getLogger('docfetch.converters')

    converter = MarkdownConverter(logger=logger, config=config)
    return converter.convert_document(document, synced_at)


__all__ = [
    'convert_document',
    'MarkdownConverter',
    'MacroHandler',
    'TextCleaner',
    'FrontmatterBuilder',
    'parse_storage',
]
