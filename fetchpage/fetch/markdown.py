"""HTML to Markdown conversion over a parsed BeautifulSoup tree.

Two entry points share one element mapping table:

- ``from_html`` (string mode) is used for markup fetched over plain HTTP.
  Boilerplate elements are stripped, a primary content region is isolated
  when one clearly dominates the page, and the result is converted.
- ``from_document`` (tree-walk mode) is used for a rendered browser
  document. Caller selectors scope the extraction (nested matches are
  collapsed into their outermost match); without selectors a content
  container is auto-detected. Non-content subtrees are pruned by class/id
  heuristics before the walk.

Both entry points return a string for any input and never raise.
"""

import logging
import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from bs4 import BeautifulSoup
from bs4.element import (
    CData,
    Comment,
    Declaration,
    Doctype,
    NavigableString,
    ProcessingInstruction,
    Tag,
)

from .errors import SelectorNotFound

logger = logging.getLogger(__name__)


# Priority order for primary content detection
CONTENT_CONTAINER_SELECTORS = [
    'main',
    'article',
    '[role="main"]',
    '.content',
    '.main',
    '.post',
    '.article',
    '#content',
    '#main',
    '#post',
    '#article',
]

BOILERPLATE_TAGS = ['script', 'style', 'noscript', 'template', 'nav', 'header', 'footer', 'aside']
PRUNED_TAGS = ['script', 'style', 'noscript', 'template', 'nav', 'header', 'footer']

# class/id tokens that mark advertising and navigation chrome
_NON_CONTENT_EXACT = {'ad', 'ads', 'advert', 'advertisement', 'sidebar', 'menu', 'nav'}
_NON_CONTENT_TOKEN_RE = re.compile(
    r'(^|[-_])(nav|navbar|navigation|menu|sidebar|advertisement)([-_]|$)|^ad[-_]',
    re.IGNORECASE
)

_SKIPPED_STRINGS = (Comment, Doctype, Declaration, ProcessingInstruction)
_BLOCK_CONTAINERS = {
    'div', 'section', 'article', 'main', 'figure', 'figcaption', 'dl', 'dt', 'dd',
    'form', 'fieldset', 'details', 'summary', 'address', 'body', 'html',
}
_DROPPED_TAGS = {'script', 'style', 'noscript', 'template', 'head', 'title', 'meta', 'link', 'iframe', 'svg'}

BLOCK_SEPARATOR = '\n\n---\n\n'

SelectorArg = Union[str, Sequence[str], None]


def _collapse(text: str) -> str:
    return re.sub(r'\s+', ' ', text).strip()


def _wrap_inline(content: str, marker: str) -> str:
    inner = content.strip()
    if not inner:
        return content
    lead = ' ' if content[:1].isspace() else ''
    trail = ' ' if content[-1:].isspace() else ''
    return f"{lead}{marker}{inner}{marker}{trail}"


def _text_length(node) -> int:
    return len(_collapse(node.get_text(' ')))


def is_non_content(tag: Tag) -> bool:
    """Check whether a tag's class or id marks it as ads/navigation chrome."""
    if tag.attrs is None:
        return False
    tokens: List[str] = list(tag.get('class') or [])
    element_id = tag.get('id')
    if element_id:
        tokens.append(element_id)

    for token in tokens:
        lowered = token.lower()
        if lowered in _NON_CONTENT_EXACT or _NON_CONTENT_TOKEN_RE.search(lowered):
            return True
    return False


def filter_nested(elements: Iterable[Tag]) -> List[Tag]:
    """Drop elements that are descendants of another element in the list."""
    elements = list(elements)
    ids = {id(element) for element in elements}
    return [
        element for element in elements
        if not any(id(parent) in ids for parent in element.parents)
    ]


class MarkdownTransformer:
    """Converts HTML into Markdown using one shared element mapping table."""

    def __init__(
        self,
        parser: str = 'lxml',
        min_region_length: int = 500,
        min_region_ratio: float = 0.2,
        auto_detect_min_text: int = 100
    ):
        """Initialize transformer.

        Args:
            parser: BeautifulSoup tree builder
            min_region_length: Minimum text length for an isolated region (string mode)
            min_region_ratio: Minimum share of the page text for an isolated region (string mode)
            auto_detect_min_text: Minimum text length for an auto-detected container (tree-walk mode)
        """
        self.parser = parser
        self.min_region_length = min_region_length
        self.min_region_ratio = min_region_ratio
        self.auto_detect_min_text = auto_detect_min_text

        self._handlers: Dict[str, Callable[[Tag, str], str]] = {
            'h1': self._heading,
            'h2': self._heading,
            'h3': self._heading,
            'h4': self._heading,
            'h5': self._heading,
            'h6': self._heading,
            'p': lambda node, content: f"\n{content.strip()}\n\n" if content.strip() else '',
            'br': lambda node, content: '\n',
            'strong': lambda node, content: _wrap_inline(content, '**'),
            'b': lambda node, content: _wrap_inline(content, '**'),
            'em': lambda node, content: _wrap_inline(content, '*'),
            'i': lambda node, content: _wrap_inline(content, '*'),
            'code': self._inline_code,
            'pre': self._preformatted,
            'a': self._link,
            'img': self._image,
            'ul': self._list,
            'ol': self._list,
            'blockquote': self._blockquote,
            'hr': lambda node, content: '\n---\n\n',
            'table': self._table,
        }

    # Public API

    def parse(self, html: str) -> BeautifulSoup:
        return BeautifulSoup(html or '', self.parser)

    def extract_title(self, html: str) -> str:
        """Return the document ``<title>`` text, or an empty string."""
        try:
            soup = self.parse(html)
            if soup.title and soup.title.string:
                return soup.title.string.strip()
        except Exception as e:
            logger.debug(f"Failed to extract title: {e}")
        return ''

    def from_html(self, html: str) -> str:
        """Convert raw markup fetched without a browser (string mode).

        Args:
            html: Raw HTML string

        Returns:
            Markdown text (empty for empty input)
        """
        if not html or not html.strip():
            return ''

        try:
            soup = self.parse(html)
            for element in soup(BOILERPLATE_TAGS):
                element.decompose()

            root = self._isolate_primary_region(soup)
            return self._finalize(self.convert(root))

        except Exception as e:
            logger.error(f"String-mode conversion failed: {e}")
            return f"Error: failed to convert HTML to Markdown ({e})"

    def from_document(self, html: str, selectors: SelectorArg = None) -> str:
        """Convert a rendered document (tree-walk mode).

        Args:
            html: Rendered document markup
            selectors: CSS selector, or several, scoping the extraction

        Returns:
            Markdown text, or a diagnostic string when a selector matches nothing
        """
        selector_list = self._normalize_selectors(selectors)

        try:
            soup = self.parse(html)

            if selector_list:
                targets = self.select_targets(soup, selector_list)
            else:
                targets = [self._auto_detect_container(soup)]

            blocks = []
            for target in targets:
                self._prune_non_content(target)
                block = self._finalize(self.convert(target))
                if block:
                    blocks.append(block)

            return BLOCK_SEPARATOR.join(blocks)

        except SelectorNotFound as e:
            logger.warning(str(e))
            if e.nested_only:
                return f'Error: elements matched by CSS selector "{e.selector}" are all nested inside each other and were filtered'
            return f'Error: no elements found for CSS selector "{e.selector}"'
        except Exception as e:
            logger.error(f"Tree-walk conversion failed: {e}")
            return f"Error: failed to convert document to Markdown ({e})"

    def select_targets(self, soup: BeautifulSoup, selectors: List[str]) -> List[Tag]:
        """Select elements for every selector and collapse nested matches.

        Raises:
            SelectorNotFound: If no selector matches, or nothing survives the nesting filter
        """
        matches: List[Tag] = []
        seen = set()
        for selector in selectors:
            for element in soup.select(selector):
                if id(element) not in seen:
                    seen.add(id(element))
                    matches.append(element)

        label = ', '.join(selectors)
        if not matches:
            raise SelectorNotFound(label)

        filtered = filter_nested(matches)
        if not filtered:
            raise SelectorNotFound(label, nested_only=True)

        if len(filtered) < len(matches):
            logger.debug(f"Selector {label!r}: {len(matches) - len(filtered)} nested matches filtered")
        return filtered

    def convert(self, node) -> str:
        """Convert a node and its subtree bottom-up via the mapping table."""
        if isinstance(node, NavigableString):
            if isinstance(node, _SKIPPED_STRINGS):
                return ''
            if isinstance(node, CData):
                return str(node)
            return re.sub(r'\s+', ' ', str(node).replace('\xa0', ' '))

        if not isinstance(node, Tag):
            return ''

        name = (node.name or '').lower()
        if name in _DROPPED_TAGS:
            return ''

        handler = self._handlers.get(name)
        # Handlers for these tags read the subtree themselves
        if name in ('pre', 'table', 'ul', 'ol', 'img', 'br', 'hr'):
            return handler(node, '')

        content = ''.join(self.convert(child) for child in node.children)

        if handler:
            return handler(node, content)
        if name in _BLOCK_CONTAINERS:
            return f"\n{content}\n"
        return content

    # Region selection

    def _isolate_primary_region(self, soup: BeautifulSoup):
        root = soup.body or soup
        total_length = _text_length(root)

        best = None
        best_length = 0
        for selector in CONTENT_CONTAINER_SELECTORS:
            candidate = soup.select_one(selector)
            if candidate is None:
                continue
            length = _text_length(candidate)
            if length > best_length:
                best, best_length = candidate, length

        if (
            best is not None
            and best_length >= self.min_region_length
            and best_length >= total_length * self.min_region_ratio
        ):
            logger.debug(f"Isolated primary region <{best.name}> ({best_length}/{total_length} chars)")
            return best

        return root

    def _auto_detect_container(self, soup: BeautifulSoup):
        for selector in CONTENT_CONTAINER_SELECTORS:
            found = soup.select_one(selector)
            if found is not None and len(found.get_text(strip=True)) > self.auto_detect_min_text:
                logger.debug(f"Auto-detected content container: {selector}")
                return found
        return soup.body or soup

    def _prune_non_content(self, target: Tag) -> None:
        if not isinstance(target, Tag):
            return
        for element in target.find_all(PRUNED_TAGS):
            element.decompose()
        doomed = [element for element in target.find_all(True) if is_non_content(element)]
        for element in filter_nested(doomed):
            element.decompose()

    @staticmethod
    def _normalize_selectors(selectors: SelectorArg) -> List[str]:
        if not selectors:
            return []
        if isinstance(selectors, str):
            selectors = [selectors]
        return [s.strip() for s in selectors if s and s.strip()]

    # Element handlers

    def _heading(self, node: Tag, content: str) -> str:
        text = _collapse(content)
        if not text:
            return ''
        level = int(node.name[1])
        return f"\n{'#' * level} {text}\n\n"

    def _inline_code(self, node: Tag, content: str) -> str:
        code = node.get_text().replace('\xa0', ' ')
        if not code.strip():
            return ''
        return f"`{code.strip()}`"

    def _preformatted(self, node: Tag, content: str) -> str:
        language = ''
        code_element = node.find('code')
        for candidate in (code_element, node):
            if candidate is None:
                continue
            for css_class in candidate.get('class') or []:
                if css_class.startswith('language-'):
                    language = css_class[len('language-'):]
                    break
            if language:
                break

        code = node.get_text().replace('\xa0', ' ').strip('\n')
        if not code.strip():
            return ''
        return f"\n```{language}\n{code}\n```\n\n"

    def _link(self, node: Tag, content: str) -> str:
        text = content.strip()
        if not text:
            return ''
        href = node.get('href') or '#'
        if href.lower().startswith('javascript:'):
            return text
        return f"[{text}]({href})"

    def _image(self, node: Tag, content: str) -> str:
        src = node.get('src') or node.get('data-src') or ''
        if not src:
            return ''
        alt = node.get('alt') or 'image'
        return f"![{alt}]({src})"

    def _list(self, node: Tag, content: str) -> str:
        items = []
        ordered = node.name == 'ol'
        for index, item in enumerate(node.find_all('li', recursive=False), start=1):
            text = _collapse(''.join(self.convert(child) for child in item.children))
            if not text:
                continue
            prefix = f"{index}." if ordered else '-'
            items.append(f"{prefix} {text}")
        if not items:
            return ''
        return '\n' + '\n'.join(items) + '\n\n'

    def _blockquote(self, node: Tag, content: str) -> str:
        lines = [line.strip() for line in content.strip().split('\n')]
        quoted = '\n'.join(f"> {line}" if line else '>' for line in lines)
        return f"\n{quoted}\n\n" if content.strip() else ''

    def _table(self, node: Tag, content: str) -> str:
        rows = [row for row in node.find_all('tr') if row.find_parent('table') is node]
        if not rows:
            return ''

        header_row = None
        thead = node.find('thead')
        if thead is not None and thead.find_parent('table') is node:
            header_row = thead.find('tr')
        if header_row is None:
            header_row = rows[0]

        def cells_of(row: Tag) -> List[str]:
            return [
                _collapse(cell.get_text(' ')).replace('|', '\\|')
                for cell in row.find_all(['th', 'td'], recursive=False)
            ]

        header_cells = cells_of(header_row)
        if not header_cells:
            return ''

        lines = [
            '| ' + ' | '.join(header_cells) + ' |',
            '| ' + ' | '.join('---' for _ in header_cells) + ' |',
        ]
        for row in rows:
            if row is header_row:
                continue
            cells = cells_of(row)
            if cells:
                lines.append('| ' + ' | '.join(cells) + ' |')

        return '\n' + '\n'.join(lines) + '\n\n'

    # Output cleanup

    @staticmethod
    def _finalize(text: str) -> str:
        """Normalize whitespace outside code fences and collapse blank lines."""
        parts = re.split(r'(\n```[^\n]*\n.*?\n```\n)', text, flags=re.DOTALL)
        cleaned = []
        for index, part in enumerate(parts):
            if index % 2 == 1:
                cleaned.append(part)
                continue
            part = re.sub(r'[ \t]+', ' ', part)
            part = '\n'.join(line.strip() for line in part.split('\n'))
            cleaned.append(part)

        result = ''.join(cleaned)
        result = re.sub(r'\n{3,}', '\n\n', result)
        return result.strip()
