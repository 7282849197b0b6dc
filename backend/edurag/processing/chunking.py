"""
Chunking Engine  —  Sentence-Greedy Segmentation with Overlap
══════════════════════════════════════════════════════════════

Why sentence-greedy chunks?
───────────────────────────
  Fixed-size windows split mid-sentence, producing "orphan" embeddings that
  carry no subject:

    "The mitochondria is the powerhouse of
    [CHUNK BREAK]
    the cell, producing ATP through..."

  Accumulating whole sentences up to a ceiling keeps every embedded unit
  readable, and a short overlap tail carries context across the boundary.

Algorithm
─────────
  1. Split into paragraphs at blank lines (when preserve_paragraphs is on).
  2. Split each paragraph into sentences with the language's SentenceRule.
  3. Accumulate sentences (joined by one space) while the buffer stays
     within max_chunk_size.
  4. On overflow: emit the buffer if it reached min_chunk_size (shorter
     buffers are discarded), then start the next buffer with the overlap
     tail of the previous one followed by the overflowing sentence.
  5. A paragraph break closes a buffer that reached min_chunk_size; the next
     paragraph starts clean, without overlap.
  6. A single sentence longer than max_chunk_size becomes its own chunk.
  7. Emit the final buffer if it reached min_chunk_size.

  ┌──────── chunk 0 ────────┐
  s1 s2 s3 ........ [tail of s3]
                    [tail of s3] s4 s5 ........ [tail of s5]
                    └──────── chunk 1 ─────────┘

Offsets always point into the text handed to chunk(): a chunk's
start_offset is where its first character (possibly inside the previous
chunk's last sentence) sits in the source.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from edurag.processing.language import Language, Sentence
from edurag.schemas.documents import ChunkingConfig

logger = logging.getLogger(__name__)

# Blank line (optionally holding spaces/tabs) between two paragraphs
_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")

# Sentence terminator followed by whitespace, used to align overlap tails
_SENTENCE_BREAK = re.compile(r"[.!?。！？]\s+")


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ChunkCandidate:
    """
    A chunk ready for embedding.

    Fields map directly to the document_chunks table.
    """
    chunk_index:    int     # 0-based ordering within the document
    content:        str     # sentences joined by single spaces
    language:       str     # language code carried from the document
    start_offset:   int     # inclusive offset into the source text
    end_offset:     int     # exclusive offset into the source text
    sentence_count: int

    @property
    def char_count(self) -> int:
        return len(self.content)

    @property
    def word_count(self) -> int:
        return len(self.content.split())

    def metadata(self) -> dict:
        return {
            "wordCount":     self.word_count,
            "sentenceCount": self.sentence_count,
            "charCount":     self.char_count,
        }


# ---------------------------------------------------------------------------
# Core chunker
# ---------------------------------------------------------------------------

class ChunkingEngine:
    """
    Stateless chunker. Same (text, config, language) always yields the same
    chunks.

    Usage:
        engine = ChunkingEngine()
        chunks = engine.chunk(text, ChunkingConfig(), Language.ENGLISH)
    """

    def chunk(
        self,
        text:     str,
        config:   ChunkingConfig,
        language: Language,
    ) -> list[ChunkCandidate]:
        if not text or not text.strip():
            return []

        builder = _ChunkBuilder(config, language)
        for para_idx, sentences in enumerate(self._paragraphs(text, config, language)):
            if para_idx > 0:
                builder.paragraph_break()
            for sentence in sentences:
                builder.add(sentence)
        builder.finish()

        chunks = builder.chunks
        logger.info(
            "ChunkingEngine | lang=%s chars=%d chunks=%d avg_chars=%.0f",
            language.code, len(text), len(chunks),
            sum(c.char_count for c in chunks) / max(1, len(chunks)),
        )
        return chunks

    def _paragraphs(
        self,
        text:     str,
        config:   ChunkingConfig,
        language: Language,
    ) -> list[list[Sentence]]:
        if not config.preserve_paragraphs:
            return [language.rule.split(text)]

        paragraphs: list[list[Sentence]] = []
        pos = 0
        for match in _PARAGRAPH_BREAK.finditer(text):
            paragraphs.append(language.rule.split(text[pos : match.start()], offset=pos))
            pos = match.end()
        paragraphs.append(language.rule.split(text[pos:], offset=pos))
        return [p for p in paragraphs if p]


# ---------------------------------------------------------------------------
# Buffer state machine
# ---------------------------------------------------------------------------

@dataclass
class _ChunkBuilder:
    config:   ChunkingConfig
    language: Language
    chunks:   list[ChunkCandidate] = field(default_factory=list)
    _parts:   list[Sentence]       = field(default_factory=list)

    @property
    def _length(self) -> int:
        if not self._parts:
            return 0
        return sum(len(p.text) for p in self._parts) + len(self._parts) - 1

    def add(self, sentence: Sentence) -> None:
        max_size = self.config.max_chunk_size

        if len(sentence.text) > max_size:
            self._emit_if_valid()
            self._parts = [sentence]
            self._emit()
            return

        if not self._parts:
            self._parts = [sentence]
            return

        if self._length + 1 + len(sentence.text) <= max_size:
            self._parts.append(sentence)
            return

        previous = self._parts
        self._emit_if_valid()
        budget = min(self.config.chunk_overlap, max_size - len(sentence.text) - 1)
        self._parts = _overlap_tail(previous, budget) + [sentence]

    def paragraph_break(self) -> None:
        # short paragraphs keep accumulating into the next one
        if self._length >= self.config.min_chunk_size:
            self._emit()

    def finish(self) -> None:
        self._emit_if_valid()

    def _emit_if_valid(self) -> None:
        if self._parts and self._length < self.config.min_chunk_size:
            logger.debug(
                "ChunkingEngine | discarding short buffer chars=%d min=%d",
                self._length, self.config.min_chunk_size,
            )
            self._parts = []
            return
        self._emit()

    def _emit(self) -> None:
        if not self._parts:
            return
        self.chunks.append(ChunkCandidate(
            chunk_index=len(self.chunks),
            content=" ".join(p.text for p in self._parts),
            language=self.language.code,
            start_offset=self._parts[0].start,
            end_offset=self._parts[-1].end,
            sentence_count=len(self._parts),
        ))
        self._parts = []


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _overlap_tail(parts: list[Sentence], budget: int) -> list[Sentence]:
    """
    Last `budget` characters of the joined buffer, moved forward to a
    sentence or word boundary when the raw cut lands mid-word. Returned as
    source-anchored pieces so offsets stay exact.
    """
    if budget <= 0 or not parts:
        return []

    joined = " ".join(p.text for p in parts)
    cut = max(0, len(joined) - budget)

    if cut > 0 and not joined[cut - 1].isspace():
        window = joined[cut:]
        sentence_break = _SENTENCE_BREAK.search(window)
        if sentence_break and sentence_break.end() <= len(window) // 2:
            cut += sentence_break.end()
        else:
            space = window.find(" ")
            if space != -1:
                cut += space + 1

    while cut < len(joined) and joined[cut].isspace():
        cut += 1
    if cut >= len(joined):
        return []

    tail: list[Sentence] = []
    joined_start = 0
    for part in parts:
        joined_end = joined_start + len(part.text)
        if joined_start >= cut:
            tail.append(part)
        elif cut < joined_end:
            skip = cut - joined_start
            tail.append(Sentence(text=part.text[skip:], start=part.start + skip, end=part.end))
        joined_start = joined_end + 1
    return tail
