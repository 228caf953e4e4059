"""Section, paragraph and sentence aware chunking of long documents."""

from __future__ import annotations

import re

from process_copilot.config import ChunkingConfig

_HEADING_SPLIT = re.compile(r"(?m)^(?=#{1,6}\s)")
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?。！？])\s+")


class ContentChunker:
    """Splits plain text into bounded, semantically coherent fragments.

    Design notes:
    1. Sections first.
       Text is split before every Markdown-style heading line. A section that
       fits within `max_chunk_size` is emitted whole.

    2. Greedy paragraph packing second.
       Paragraphs of an oversized section are accumulated into a running buffer
       until the next paragraph would overflow the limit, then the buffer is
       flushed.

    3. Line and sentence packing for long paragraphs.
       A paragraph that alone exceeds the limit is split into lines (list
       items), and any line still over the limit into sentences; the pieces are
       packed with the same greedy rule. A single sentence longer than the
       limit stands alone rather than being cut mid-sentence.

    Adjacent chunks never overlap. A sliding-window overlap would improve recall
    for facts spanning a chunk boundary and is the obvious next refinement.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(self, text: str, max_chunk_size: int | None = None) -> list[str]:
        """Chunk `text` into fragments of at most `max_chunk_size` characters.

        Fragments shorter than `min_chunk_length` (stray headings, list
        bullets) are dropped as noise.
        """

        limit = max_chunk_size or self.config.max_chunk_size
        if limit <= 0:
            raise ValueError("max_chunk_size must be positive")

        chunks: list[str] = []
        for section in _HEADING_SPLIT.split(self._normalize(text)):
            section = section.strip()
            if not section:
                continue
            if len(section) <= limit:
                chunks.append(section)
                continue
            chunks.extend(self._pack_paragraphs(section, limit))

        return [chunk for chunk in chunks if len(chunk) >= self.config.min_chunk_length]

    def _pack_paragraphs(self, section: str, limit: int) -> list[str]:
        chunks: list[str] = []
        buffer: list[str] = []

        for paragraph in self._split_paragraphs(section):
            if len(paragraph) > limit:
                if buffer:
                    chunks.append("\n\n".join(buffer))
                    buffer = []
                chunks.extend(self._split_long_paragraph(paragraph, limit))
                continue
            if buffer and _joined_length(buffer, paragraph, 2) > limit:
                chunks.append("\n\n".join(buffer))
                buffer = []
            buffer.append(paragraph)

        if buffer:
            chunks.append("\n\n".join(buffer))
        return chunks

    def _split_long_paragraph(self, paragraph: str, limit: int) -> list[str]:
        # List items share one paragraph; pack them line by line before
        # falling back to sentences within an oversized line.
        units: list[str] = []
        for line in paragraph.split("\n"):
            if len(line) > limit:
                units.extend(self._pack(self._split_sentences(line), limit, " "))
            elif line:
                units.append(line)
        return self._pack(units, limit, "\n")

    @staticmethod
    def _pack(parts: list[str], limit: int, separator: str) -> list[str]:
        chunks: list[str] = []
        buffer: list[str] = []
        for part in parts:
            if buffer and _joined_length(buffer, part, len(separator)) > limit:
                chunks.append(separator.join(buffer))
                buffer = []
            buffer.append(part)
        if buffer:
            chunks.append(separator.join(buffer))
        return chunks

    @staticmethod
    def _normalize(text: str) -> str:
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        lines = [re.sub(r"[ \t\f\v\xa0]+", " ", line).strip() for line in text.split("\n")]
        return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()

    @staticmethod
    def _split_paragraphs(text: str) -> list[str]:
        return [part.strip() for part in _PARAGRAPH_SPLIT.split(text) if part.strip()]

    @staticmethod
    def _split_sentences(paragraph: str) -> list[str]:
        return [part.strip() for part in _SENTENCE_SPLIT.split(paragraph) if part.strip()]


def _joined_length(buffer: list[str], addition: str, separator_length: int) -> int:
    return sum(len(item) for item in buffer) + separator_length * len(buffer) + len(addition)
