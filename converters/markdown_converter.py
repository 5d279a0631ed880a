"""Markdown converter orchestrator for Confluence storage format to Markdown conversion."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from bs4 import BeautifulSoup, Tag
from markdownify import ASTERISK, ATX, BACKSLASH, chomp
from markdownify import MarkdownConverter as MarkdownifyConverter

from models import ConversionResult, RemoteDocument

from .frontmatter import FrontmatterBuilder
from .macro_handler import MacroHandler
from .text_cleaner import TextCleaner

logger = logging.getLogger('docfetch.converters.markdownconverter')

CONFLUENCE_SCHEME = 'confluence://'
ATTACHMENT_SCHEME = 'attachment://'


class MarkdownConverter(MarkdownifyConverter):
    """
    Converts Confluence storage format into deterministic Markdown.

    This class extends markdownify.MarkdownConverter to provide:
    - Macro normalization (via MacroHandler) before rendering
    - GFM tables with a single separator after the header row
    - Fenced code blocks tagged with the source language
    - Pass-through rendering of layout-only tags
    - Post-processing (via TextCleaner) and frontmatter generation
    """

    def __init__(
        self,
        logger: logging.Logger = None,
        config: Dict[str, Any] = None,
        clock: Optional[Callable[[], datetime]] = None,
        **kwargs
    ):
        """Initialize markdown converter with logger, configuration and optional clock."""
        markdownify_options = {
            'heading_style': ATX,
            'bullets': '-',
            'strong_em_symbol': ASTERISK,
            'newline_style': BACKSLASH,
            'escape_asterisks': True,
            'escape_underscores': True,
            'escape_misc': False,
            'wrap': False,
        }
        markdownify_options.update(kwargs)
        super().__init__(**markdownify_options)

        self.logger = logger or logging.getLogger('docfetch.converters.markdownconverter')
        self.config = config or {}

        self.macro_handler = MacroHandler(self.logger)
        self.text_cleaner = TextCleaner(self.logger)
        self.frontmatter_builder = FrontmatterBuilder(clock=clock)

    def convert_document(
        self,
        document: RemoteDocument,
        synced_at: Optional[datetime] = None
    ) -> ConversionResult:
        """
        Convert a RemoteDocument into a Markdown body and its frontmatter.

        Args:
            document: Remote document with storage-format content
            synced_at: Conversion time recorded in the frontmatter (clock time if omitted)

        Returns:
            ConversionResult with cleaned markdown, frontmatter and conversion stats
        """
        self.logger.info(f"Converting document {document.id} to markdown")

        soup, macro_stats, warnings = self.macro_handler.normalize(document.content)
        for warning in warnings:
            self.logger.debug(f"[{document.id}] {warning}")

        markdown = self.text_cleaner.clean(self.convert_soup(soup))
        frontmatter = self.frontmatter_builder.build(document, synced_at)

        stats = {
            'macros': macro_stats,
            'warnings': warnings,
            'characters': len(markdown),
        }
        self.logger.debug(
            f"Converted document {document.id}: {macro_stats['macros_converted']} macros, "
            f"{len(markdown)} characters"
        )
        return ConversionResult(markdown=markdown, frontmatter=frontmatter, stats=stats)

    def convert_storage(self, content: str) -> str:
        """Convert a storage-format fragment to cleaned Markdown without frontmatter."""
        soup, _, _ = self.macro_handler.normalize(content)
        return self.text_cleaner.clean(self.convert_soup(soup))

    def build_markdown_file(self, result: ConversionResult) -> str:
        """Assemble the final file: YAML header, blank line, body, trailing newline."""
        header = self.frontmatter_builder.render(result.frontmatter)
        return f"{header}\n{result.markdown}\n"

    @staticmethod
    def _is_inline(parent_tags, kwargs) -> bool:
        return '_inline' in (parent_tags or ()) or bool(kwargs.get('convert_as_inline'))

    def convert_table(self, el, text, parent_tags=None, **kwargs):
        """Render a GFM table; rows are produced by convert_tr."""
        text = text.strip('\n')
        if not text.strip():
            return ''
        return '\n\n' + text + '\n\n'

    def convert_tr(self, el, text, parent_tags=None, **kwargs):
        """Render one table row, followed by the separator when it is the header row."""
        cells = el.find_all(['td', 'th'], recursive=False)
        if not cells:
            return ''

        row = '| ' + text.strip() + '\n'
        if el is self._find_header_row(el):
            row += '|' + ' --- |' * len(cells) + '\n'
        return row

    def convert_td(self, el, text, parent_tags=None, **kwargs):
        cell = ' '.join(text.split())
        return ' ' + cell.replace('|', '\\|') + ' |'

    convert_th = convert_td

    def convert_thead(self, el, text, parent_tags=None, **kwargs):
        return text

    convert_tbody = convert_thead
    convert_tfoot = convert_thead

    def convert_caption(self, el, text, parent_tags=None, **kwargs):
        text = text.strip()
        return text + '\n\n' if text else ''

    def convert_colgroup(self, el, text, parent_tags=None, **kwargs):
        return ''

    convert_col = convert_colgroup

    @staticmethod
    def _find_header_row(row: Tag) -> Optional[Tag]:
        """
        First row of the owning table with th cells or inside thead.

        Falls back to the first row so the rendered table always has a separator.
        """
        table = row.find_parent('table')
        if table is None:
            return None

        rows = [candidate for candidate in table.find_all('tr')
                if candidate.find_parent('table') is table]
        for candidate in rows:
            in_thead = candidate.parent is not None and candidate.parent.name == 'thead'
            if in_thead or candidate.find('th', recursive=False) is not None:
                return candidate
        return rows[0] if rows else None

    def convert_details(self, el, text, parent_tags=None, **kwargs):
        """Render an expandable section as a bold summary line followed by the body."""
        summary = el.find('summary', recursive=False)
        title = summary.get_text(' ', strip=True) if summary is not None else ''
        title = title or 'Details'
        body = text.strip('\n')

        if self._is_inline(parent_tags, kwargs):
            return f" **{title}** {body.strip()} "
        if not body.strip():
            return f"\n\n**{title}**\n\n"
        return f"\n\n**{title}**\n\n{body}\n\n"

    def convert_summary(self, el, text, parent_tags=None, **kwargs):
        # Summary text is emitted once by convert_details
        return ''

    def convert_div(self, el, text, parent_tags=None, **kwargs):
        """Layout containers pass their children through."""
        if self._is_inline(parent_tags, kwargs):
            return text
        text = text.strip('\n')
        if not text.strip():
            return ''
        return '\n\n' + text + '\n\n'

    convert_section = convert_div
    convert_article = convert_div

    def convert_span(self, el, text, parent_tags=None, **kwargs):
        return text

    def convert_blockquote(self, el, text, parent_tags=None, **kwargs):
        text = text.strip()
        if not text:
            return ''
        if self._is_inline(parent_tags, kwargs):
            return ' ' + text + ' '

        quoted_lines = [f'> {line}' if line.strip() else '>' for line in text.split('\n')]
        return '\n\n' + '\n'.join(quoted_lines) + '\n\n'

    def convert_pre(self, el, text, parent_tags=None, **kwargs):
        """Render a fenced code block; the code text is used verbatim."""
        code_el = el.find('code')
        source = code_el if code_el is not None else el
        code_text = source.get_text().strip('\n')
        language = self._extract_code_language(code_el) if code_el is not None else ''

        fence = '```'
        while fence in code_text:
            fence += '`'
        return f"\n\n{fence}{language}\n{code_text}\n{fence}\n\n"

    def convert_a(self, el, text, parent_tags=None, **kwargs):
        """Page links collapse to their text, attachment links to [text]."""
        href = el.get('href') or ''
        if href.startswith(CONFLUENCE_SCHEME):
            return text
        if href.startswith(ATTACHMENT_SCHEME):
            if '_noformat' in (parent_tags or ()):
                return text
            prefix, suffix, text = chomp(text)
            return f'{prefix}[{text}]{suffix}' if text else ''
        return super().convert_a(el, text, parent_tags or set())

    def convert_img(self, el, text, parent_tags=None, **kwargs):
        src = el.get('src', '')
        alt = el.get('alt', '') or el.get('title', '')
        if not src:
            return alt
        if src.startswith(ATTACHMENT_SCHEME):
            return f'[{alt}]'
        return f'![{alt}]({src})'

    def convert_script(self, el, text, parent_tags=None, **kwargs):
        return ''

    convert_style = convert_script

    @staticmethod
    def _extract_code_language(element: Tag) -> str:
        """Extract programming language from a code element's class or data attribute."""
        for cls in element.get('class', []):
            if str(cls).startswith('language-'):
                return str(cls)[len('language-'):]
            if str(cls).startswith('lang-'):
                return str(cls)[len('lang-'):]
        return element.get('data-language', '') or ''


def convert_html_fragment(html_content: str, **options) -> str:
    """Render an already normalized HTML fragment with the converter's tag rules."""
    soup = BeautifulSoup(html_content, 'html.parser')
    return MarkdownConverter(**options).convert_soup(soup)


__all__ = ['MarkdownConverter', 'convert_html_fragment']
