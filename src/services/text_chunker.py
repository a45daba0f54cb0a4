"""Paragraph-based chunking of flat document text."""

import re
from typing import Iterator, List

from models.data_models import TranslationChunk


SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
PARAGRAPH_SEPARATOR = "\n\n"


class ParagraphTextChunker:
    """Packs whole paragraphs into chunks of at most max_chars_per_chunk characters."""

    def __init__(self, max_chars_per_chunk: int):
        if max_chars_per_chunk <= 0:
            raise ValueError("max_chars_per_chunk must be positive")
        self.max_chars_per_chunk = max_chars_per_chunk

    def chunk(self, text: str) -> List[TranslationChunk]:
        """
        Split text into indexed chunks.

        Paragraphs longer than the limit are split on sentence ends and
        emitted as chunks of their own.
        """
        paragraphs = [p.strip() for p in text.split(PARAGRAPH_SEPARATOR)]
        paragraphs = [p for p in paragraphs if p]

        pieces: List[str] = []
        buffer = ""

        for paragraph in paragraphs:
            if len(paragraph) > self.max_chars_per_chunk:
                if buffer:
                    pieces.append(buffer)
                    buffer = ""
                pieces.extend(self._split_large_paragraph(paragraph))
                continue

            if buffer and len(buffer) + len(PARAGRAPH_SEPARATOR) + len(paragraph) > self.max_chars_per_chunk:
                pieces.append(buffer)
                buffer = ""

            buffer = f"{buffer}{PARAGRAPH_SEPARATOR}{paragraph}" if buffer else paragraph

        if buffer:
            pieces.append(buffer)

        return [TranslationChunk(index=i, text=piece) for i, piece in enumerate(pieces)]

    def _split_large_paragraph(self, paragraph: str) -> Iterator[str]:
        buffer = ""
        for sentence in SENTENCE_END.split(paragraph):
            if not sentence.strip():
                continue
            if buffer and len(buffer) + 1 + len(sentence) > self.max_chars_per_chunk:
                yield buffer
                buffer = ""
            buffer = f"{buffer} {sentence}" if buffer else sentence

        if buffer:
            yield buffer
