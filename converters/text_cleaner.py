"""Deterministic cleanup of rendered Markdown."""

import html
import logging
import re
from typing import List, Tuple

logger = logging.getLogger('docfetch.converters.textcleaner')

FENCED_CODE_PATTERN = re.compile(
    # Fences may sit behind blockquote markers or list indentation; the closing
    # fence carries the same prefix as the opening one
    r'^(?P<prefix>(?:[ \t]*>[ \t]?)*[ \t]*)(?P<fence>`{3,}|~{3,})[^\n]*\n'
    r'(?:.*?\n)?(?P=prefix)(?P=fence)[ \t]*$',
    re.MULTILINE | re.DOTALL
)
HTML_COMMENT_PATTERN = re.compile(r'<!--.*?-->', re.DOTALL)
# Any opening/closing tag except <a ...>, </a> and <img ...>
RESIDUAL_TAG_PATTERN = re.compile(r'</?(?!(?:a|img)\b)[A-Za-z][\w:.-]*(?:\s[^<>]*)?/?>')
ATTACHMENT_REFERENCE_PATTERN = re.compile(r'!?\[([^\]]*)\]\(attachment://[^)\s]*(?:\s+"[^"]*")?\)')
CONFLUENCE_LINK_PATTERN = re.compile(r'!?\[([^\]]*)\]\(confluence://[^)\s]*(?:\s+"[^"]*")?\)')
TRAILING_WHITESPACE_PATTERN = re.compile(r'[ \t]+$', re.MULTILINE)
EXCESS_NEWLINES_PATTERN = re.compile(r'\n{3,}')
ESCAPED_EMPHASIS_PATTERN = re.compile(r'(?<!\\)\\([_*])')


class TextCleaner:
    """
    Post-processes Markdown produced by the converter.

    Steps, in order:
        1. decode HTML entities
        2. strip residual raw tags except <a> and <img>
        3. collapse confluence:// links to their text and attachment:// references to [text]
        4. strip trailing spaces and collapse 3+ newlines to 2
        5. unescape \\_ and \\* (an escaped backslash is left alone)
        6. trim the document

    Fenced code blocks, also those nested in blockquotes or list items, are
    excluded from steps 1-5. ``clean`` is idempotent:
    passes repeat until the text is stable, and every pass that changes the
    text also shortens it.
    """

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('docfetch.converters.textcleaner')

    def clean(self, markdown: str) -> str:
        text = markdown or ''
        passes = 0
        while True:
            cleaned = self._clean_once(text)
            passes += 1
            if cleaned == text:
                break
            text = cleaned

        if passes > 2:
            self.logger.debug(f"Markdown cleanup settled after {passes} passes")
        return text

    def _clean_once(self, text: str) -> str:
        segments = self._split_code_blocks(text)
        cleaned = ''.join(
            segment if is_code else self._clean_prose(segment)
            for segment, is_code in segments
        )
        return cleaned.strip()

    @staticmethod
    def _clean_prose(text: str) -> str:
        text = html.unescape(text)
        text = HTML_COMMENT_PATTERN.sub('', text)
        text = RESIDUAL_TAG_PATTERN.sub('', text)
        text = ATTACHMENT_REFERENCE_PATTERN.sub(r'[\1]', text)
        text = CONFLUENCE_LINK_PATTERN.sub(r'\1', text)
        text = TRAILING_WHITESPACE_PATTERN.sub('', text)
        text = EXCESS_NEWLINES_PATTERN.sub('\n\n', text)
        text = ESCAPED_EMPHASIS_PATTERN.sub(r'\1', text)
        return text

    @staticmethod
    def _split_code_blocks(text: str) -> List[Tuple[str, bool]]:
        """Split text into (segment, is_code_block) pairs."""
        segments: List[Tuple[str, bool]] = []
        position = 0
        for match in FENCED_CODE_PATTERN.finditer(text):
            if match.start() > position:
                segments.append((text[position:match.start()], False))
            segments.append((match.group(0), True))
            position = match.end()
        if position < len(text):
            segments.append((text[position:], False))
        return segments


def clean_markdown(markdown: str) -> str:
    """Convenience wrapper around TextCleaner().clean()."""
    return TextCleaner().clean(markdown)


__all__ = ['TextCleaner', 'clean_markdown']
