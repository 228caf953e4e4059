"""Rich-text markup stripping for document content."""

from __future__ import annotations

import re
from html import unescape
from html.parser import HTMLParser

_BLOCK_TAGS = frozenset(
    {
        "p", "div", "section", "article", "header", "footer", "blockquote",
        "ul", "ol", "li", "table", "tr", "pre", "br", "hr",
    }
)
_HEADING_TAGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
_SKIPPED_TAGS = frozenset({"script", "style"})


class _TextExtractor(HTMLParser):
    """Collects text nodes, turning block elements into paragraph breaks.

    Headings are emitted as Markdown-style `#` lines so that the chunker can
    still find section boundaries once the markup is gone.
    """

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in _SKIPPED_TAGS:
            self._skip_depth += 1
            return
        if tag in _HEADING_TAGS:
            self._parts.append("\n\n" + "#" * _HEADING_TAGS[tag] + " ")
        elif tag == "li":
            self._parts.append("\n- ")
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n\n")

    def handle_endtag(self, tag: str) -> None:
        if tag in _SKIPPED_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if tag in _HEADING_TAGS or (tag in _BLOCK_TAGS and tag != "li"):
            self._parts.append("\n\n")

    def handle_data(self, data: str) -> None:
        if not self._skip_depth:
            self._parts.append(data)

    def text(self) -> str:
        return "".join(self._parts)


def strip_markup(content: str) -> str:
    """Return the plain text of rich (HTML) content, trimmed.

    Plain text passes through unchanged apart from whitespace cleanup, so the
    function is safe to call on content that was never marked up.
    """

    if "<" not in content:
        return _tidy(unescape(content))
    extractor = _TextExtractor()
    extractor.feed(content)
    extractor.close()
    return _tidy(extractor.text())


def _tidy(text: str) -> str:
    lines = [re.sub(r"[ \t\f\v\xa0]+", " ", line).strip() for line in text.splitlines()]
    joined = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", joined).strip()
