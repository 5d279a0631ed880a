"""Confluence storage-format normalizer: rewrites ac: macros into plain HTML."""

import html
import logging
import re
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import quote

from bs4 import BeautifulSoup, Comment, NavigableString, PageElement, Tag

logger = logging.getLogger('docfetch.converters.macrohandler')

CDATA_PATTERN = re.compile(r'<!\[CDATA\[(.*?)\]\]>', re.DOTALL)

MACRO_TAGS = ('ac:structured-macro', 'ac:macro')

# Characters left untouched when building confluence:// and attachment:// targets
URI_SAFE_CHARS = "-_.!~*'()"

EMOTICON_MAP = {
    'smile': '🙂',
    'sad': '🙁',
    'cheeky': '😛',
    'laugh': '😀',
    'wink': '😉',
    'thumbs-up': '👍',
    'thumbs-down': '👎',
    'information': 'ℹ️',
    'tick': '✅',
    'cross': '❌',
    'warning': '⚠️',
    'plus': '➕',
    'minus': '➖',
    'question': '❓',
    'light-on': '💡',
    'light-off': '💡',
    'yellow-star': '⭐',
    'red-star': '⭐',
    'green-star': '⭐',
    'blue-star': '⭐',
    'heart': '❤️',
    'broken-heart': '💔',
}

CALLOUT_LABELS = {
    'info': 'Info',
    'note': 'Note',
    'warning': 'Warning',
    'tip': 'Tip',
}

INLINE_TAGS = frozenset({
    'a', 'abbr', 'b', 'br', 'code', 'em', 'i', 'img', 'kbd', 'mark',
    's', 'small', 'span', 'strike', 'strong', 'sub', 'sup', 'u',
})

DEFAULT_EXPAND_TITLE = 'Click to expand'

Replacement = Union[None, PageElement, List[PageElement]]
Handler = Callable[[Tag, BeautifulSoup], Replacement]


def expand_cdata(content: str) -> str:
    """Replace CDATA sections with their HTML-escaped text."""
    return CDATA_PATTERN.sub(lambda match: html.escape(match.group(1), quote=False), content)


def parse_storage(content: str) -> BeautifulSoup:
    """
    Parse storage-format markup into a BeautifulSoup tree.

    html.parser keeps namespaced ac:/ri: tags and authored nesting (a macro
    inside a paragraph stays inside that paragraph).
    """
    return BeautifulSoup(expand_cdata(content or ''), 'html.parser')


class MacroHandler:
    """Converts Confluence macros and ac: elements to markdown-friendly HTML structures."""

    def __init__(self, logger: logging.Logger = None):
        """Initialize macro handler with optional logger."""
        self.logger = logger or logging.getLogger('docfetch.converters.macrohandler')

        # Register macro converters, keyed by ac:name
        self.macro_converters: Dict[str, Handler] = {
            'code': self._convert_code_macro,
            'info': partial(self._convert_callout_macro, callout_type='info'),
            'note': partial(self._convert_callout_macro, callout_type='note'),
            'warning': partial(self._convert_callout_macro, callout_type='warning'),
            'tip': partial(self._convert_callout_macro, callout_type='tip'),
            'panel': self._convert_panel_macro,
            'expand': self._convert_expand_macro,
            'status': self._convert_status_macro,
            'toc': self._convert_toc_macro,
        }

        # Register element converters, keyed by tag name
        self.element_converters: Dict[str, Handler] = {
            'ac:link': self._convert_link,
            'ac:image': self._convert_image,
            'ac:emoticon': self._convert_emoticon,
        }

    def normalize(self, content: str) -> Tuple[BeautifulSoup, Dict[str, Any], List[str]]:
        """Parse storage markup and convert every macro in it."""
        return self.convert(parse_storage(content))

    def convert(self, soup: BeautifulSoup) -> Tuple[BeautifulSoup, Dict[str, Any], List[str]]:
        """
        Convert all Confluence macros and ac: elements in the tree.

        Args:
            soup: BeautifulSoup object parsed from storage format

        Returns:
            Tuple of (normalized soup, conversion stats, warnings)
        """
        stats: Dict[str, Any] = {
            'macros_found': 0,
            'macros_converted': 0,
            'macros_failed': [],
            'unknown': [],
            'by_type': {},
        }
        warnings: List[str] = []

        elements = soup.find_all(self._is_convertible)

        # Process depth-first (handle nested macros from inside out)
        for element in reversed(elements):
            is_macro = element.name in MACRO_TAGS
            name = self._get_macro_name(element) if is_macro else element.name

            if is_macro:
                stats['macros_found'] += 1
            self.logger.debug(f"Converting {'macro' if is_macro else 'element'}: {name}")

            handler = self.macro_converters.get(name) if is_macro else self.element_converters.get(name)

            try:
                if handler is None:
                    self.logger.debug(f"Unsupported macro type: {name or '(unnamed)'}")
                    warnings.append(f"Unsupported macro type: {name or '(unnamed)'}")
                    stats['unknown'].append(name)
                    replacement = self._convert_unknown_macro(element, soup)
                else:
                    replacement = handler(element, soup)
                    if is_macro:
                        stats['macros_converted'] += 1
                        stats['by_type'][name] = stats['by_type'].get(name, 0) + 1
            except Exception as e:
                self.logger.error(f"Failed to convert {name}: {e}")
                warnings.append(f"Failed to convert {name}: {e}")
                stats['macros_failed'].append(name)
                replacement = self._convert_unknown_macro(element, soup)

            self._replace(element, replacement)

        self.logger.debug(
            f"Macro conversion complete: {stats['macros_converted']}/{stats['macros_found']} converted"
        )
        return soup, stats, warnings

    def _is_convertible(self, tag: Tag) -> bool:
        return tag.name in MACRO_TAGS or tag.name in self.element_converters

    @staticmethod
    def _replace(element: Tag, replacement: Replacement) -> None:
        """Swap element for its replacement node(s); None removes it."""
        if replacement is None:
            element.decompose()
            return

        nodes = replacement if isinstance(replacement, list) else [replacement]
        for node in nodes:
            element.insert_before(node)
        element.decompose()

    @staticmethod
    def _get_macro_name(element: Tag) -> str:
        return (element.get('ac:name') or '').strip().lower()

    def _convert_code_macro(self, element: Tag, soup: BeautifulSoup) -> Tag:
        """Code macro -> <pre><code class="language-X">."""
        language = self._extract_parameter(element, 'language')
        title = self._extract_parameter(element, 'title')

        body = self._find_body(element, 'ac:plain-text-body')
        code_text = body.get_text() if body is not None else ''
        # Drop blank lines around the code but keep the first line's indentation
        code_text = re.sub(r'\A(?:[ \t]*\r?\n)+', '', code_text).rstrip()

        pre = soup.new_tag('pre')
        code = soup.new_tag('code')
        if language:
            code['class'] = [f'language-{language}']
        code.string = code_text
        pre.append(code)

        if not title:
            return pre

        wrapper = soup.new_tag('div')
        heading = soup.new_tag('p')
        strong = soup.new_tag('strong')
        strong.string = title
        heading.append(strong)
        wrapper.append(heading)
        wrapper.append(pre)
        return wrapper

    def _convert_callout_macro(self, element: Tag, soup: BeautifulSoup, callout_type: str) -> Tag:
        """info/note/warning/tip -> blockquote led by a bold label."""
        label_text = f"{CALLOUT_LABELS[callout_type]}:"
        title = self._extract_parameter(element, 'title')
        if title:
            label_text = f"{CALLOUT_LABELS[callout_type]}: {title}"

        label = soup.new_tag('strong')
        label.string = label_text

        blockquote = soup.new_tag('blockquote')
        children = self._take_body_children(element)
        first = next((child for child in children if not self._is_blank(child)), None)

        if isinstance(first, Tag) and first.name == 'p':
            first.insert(0, label)
            first.insert(1, NavigableString(' '))
        elif first is None or isinstance(first, NavigableString) or first.name in INLINE_TAGS:
            blockquote.append(label)
            if first is not None:
                blockquote.append(NavigableString(' '))
        else:
            paragraph = soup.new_tag('p')
            paragraph.append(label)
            blockquote.append(paragraph)

        for child in children:
            blockquote.append(child)
        return blockquote

    def _convert_panel_macro(self, element: Tag, soup: BeautifulSoup) -> Tag:
        blockquote = soup.new_tag('blockquote')

        title = self._extract_parameter(element, 'title')
        if title:
            heading = soup.new_tag('p')
            strong = soup.new_tag('strong')
            strong.string = title
            heading.append(strong)
            blockquote.append(heading)

        for child in self._take_body_children(element):
            blockquote.append(child)
        return blockquote

    def _convert_expand_macro(self, element: Tag, soup: BeautifulSoup) -> Tag:
        """Expand macro -> <details><summary>title</summary>body</details>."""
        title = self._extract_parameter(element, 'title') or DEFAULT_EXPAND_TITLE

        details = soup.new_tag('details')
        summary = soup.new_tag('summary')
        summary.string = title
        details.append(summary)

        body = soup.new_tag('div')
        for child in self._take_body_children(element):
            body.append(child)
        details.append(body)
        return details

    def _convert_status_macro(self, element: Tag, soup: BeautifulSoup) -> Optional[Tag]:
        title = self._extract_parameter(element, 'title')
        if not title:
            return None

        strong = soup.new_tag('strong')
        strong.string = f"[{title}]"
        return strong

    def _convert_toc_macro(self, element: Tag, soup: BeautifulSoup) -> None:
        return None

    def _convert_unknown_macro(self, element: Tag, soup: BeautifulSoup) -> Replacement:
        """Keep the rich text body of an unsupported macro, or drop it."""
        children = self._take_body_children(element)
        return children or None

    def _convert_link(self, element: Tag, soup: BeautifulSoup) -> Replacement:
        """ac:link -> <a> with a confluence:// or attachment:// target."""
        page = element.find('ri:page')
        attachment = element.find('ri:attachment')
        anchor = element.get('ac:anchor')

        if page is not None and page.get('ri:content-title'):
            label = page['ri:content-title']
            href = f"confluence://{quote(label, safe=URI_SAFE_CHARS)}"
        elif attachment is not None and attachment.get('ri:filename'):
            label = attachment['ri:filename']
            href = f"attachment://{quote(label, safe=URI_SAFE_CHARS)}"
        elif anchor:
            label = anchor
            href = f"#{anchor}"
        else:
            # User mentions, shortcuts and other targets keep only their text
            return self._take_link_body(element) or None

        link = soup.new_tag('a', href=href)
        body_nodes = self._take_link_body(element)
        if body_nodes:
            for node in body_nodes:
                link.append(node)
        else:
            link.string = label
        return link

    def _convert_image(self, element: Tag, soup: BeautifulSoup) -> Optional[Tag]:
        """ac:image -> <img>."""
        attachment = element.find('ri:attachment')
        url = element.find('ri:url')

        if attachment is not None and attachment.get('ri:filename'):
            filename = attachment['ri:filename']
            src = f"attachment://{quote(filename, safe=URI_SAFE_CHARS)}"
            alt = element.get('ac:alt') or filename
        elif url is not None and url.get('ri:value'):
            src = url['ri:value']
            alt = element.get('ac:alt') or ''
        else:
            return None

        return soup.new_tag('img', src=src, alt=alt)

    def _convert_emoticon(self, element: Tag, soup: BeautifulSoup) -> Optional[NavigableString]:
        token = EMOTICON_MAP.get((element.get('ac:name') or '').strip().lower(), '')
        return NavigableString(token) if token else None

    def _extract_parameter(self, element: Tag, param_name: str) -> Optional[str]:
        """Extract a direct ac:parameter value from a macro element."""
        param = element.find('ac:parameter', attrs={'ac:name': param_name}, recursive=False)
        if param is None:
            return None
        value = param.get_text(strip=True)
        return value or None

    @staticmethod
    def _find_body(element: Tag, body_tag: str) -> Optional[Tag]:
        body = element.find(body_tag, recursive=False)
        if body is None:
            body = element.find(body_tag)
        return body

    def _take_body_children(self, element: Tag) -> List[PageElement]:
        """Detach and return the children of the macro's rich text body."""
        body = self._find_body(element, 'ac:rich-text-body')
        if body is None:
            return []
        return [child.extract() for child in list(body.contents)]

    def _take_link_body(self, element: Tag) -> List[PageElement]:
        body = element.find('ac:link-body') or element.find('ac:plain-text-link-body')
        if body is None:
            return []
        children = [child.extract() for child in list(body.contents)]
        if all(self._is_blank(child) for child in children):
            return []
        return children

    @staticmethod
    def _is_blank(node: PageElement) -> bool:
        if isinstance(node, Comment):
            return True
        return isinstance(node, NavigableString) and not node.strip()


__all__ = ['MacroHandler', 'parse_storage', 'expand_cdata', 'EMOTICON_MAP']
