"""YAML frontmatter generation and parsing for saved Markdown files."""

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

import yaml

from models import Frontmatter, RemoteDocument, isoformat_utc

logger = logging.getLogger('docfetch.converters.frontmatter')

FRONTMATTER_DELIMITER = '---'
FRONTMATTER_PATTERN = re.compile(r'\A---\r?\n(?P<header>.*?)^---[ \t]*(?:\r?\n|\Z)', re.DOTALL | re.MULTILINE)


class _QuotedString(str):
    """Marks a value that must be emitted as a double-quoted YAML scalar."""


class _FrontmatterDumper(yaml.SafeDumper):
    """SafeDumper that indents block sequences under their key."""

    def increase_indent(self, flow=False, indentless=False):
        return super().increase_indent(flow, False)


def _represent_quoted_string(dumper, data):
    return dumper.represent_scalar('tag:yaml.org,2002:str', str(data), style='"')


_FrontmatterDumper.add_representer(_QuotedString, _represent_quoted_string)


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


class FrontmatterBuilder:
    """Builds, renders and parses the metadata header of a document file."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or _default_clock

    def build(self, document: RemoteDocument, synced_at: Optional[datetime] = None) -> Frontmatter:
        """
        Derive frontmatter from a remote document.

        Args:
            document: Source document
            synced_at: Conversion time; the builder's clock is used when omitted

        Returns:
            Frontmatter for the document
        """
        return Frontmatter(
            title=document.title,
            remote_id=document.id,
            remote_url=document.web_url,
            space_key=document.space_key,
            version=document.version,
            synced_at=isoformat_utc(synced_at or self.clock()),
            modified_at=isoformat_utc(document.updated_at),
            author=document.author,
            labels=list(document.labels),
        )

    def render(self, frontmatter: Frontmatter) -> str:
        """Render frontmatter as a '---' delimited YAML block ending in a newline."""
        data = {}
        for key, value in frontmatter.to_dict().items():
            if isinstance(value, str):
                value = _QuotedString(value)
            elif isinstance(value, list):
                value = [_QuotedString(str(item)) for item in value]
            data[key] = value

        body = yaml.dump(
            data,
            Dumper=_FrontmatterDumper,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
            width=4096,
        )
        return f"{FRONTMATTER_DELIMITER}\n{body}{FRONTMATTER_DELIMITER}\n"

    def parse(self, content: str) -> Tuple[Optional[Frontmatter], str]:
        """
        Split file content into its frontmatter and Markdown body.

        Returns:
            (Frontmatter or None when the header is absent or unreadable, body text)
        """
        match = FRONTMATTER_PATTERN.match(content or '')
        if not match:
            return None, content or ''

        body = content[match.end():]
        if body.startswith('\n'):
            body = body[1:]

        try:
            data = yaml.safe_load(match.group('header')) or {}
        except yaml.YAMLError as e:
            logger.warning(f"Unreadable frontmatter: {e}")
            return None, body

        if not isinstance(data, dict):
            return None, body

        try:
            return Frontmatter.from_dict(data), body
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid frontmatter values: {e}")
            return None, body


__all__ = ['FrontmatterBuilder', 'FRONTMATTER_DELIMITER']
