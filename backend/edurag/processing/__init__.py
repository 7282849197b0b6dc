"""
Document Processing Package
════════════════════════════

The leaf components of the ingestion pipeline:

  Text Extraction → Language Detection → Chunking → Embedding

Modules
───────
  extractor.py  Fetch a document over HTTP and pull out plain text (PDF, text)
  language.py   Closed Language enumeration, sentence rules, LanguageDetector
  chunking.py   Sentence-greedy chunker with overlap and source offsets
  embeddings.py Embedding client with retry policy and bounded sub-batches

Design principles
─────────────────
  • Every component is stateless and dependency-injected.
  • Nothing here touches persistence; ProcessingOrchestrator wires them up.
  • Every step emits structured log lines.
"""

from edurag.processing.chunking import ChunkCandidate, ChunkingEngine
from edurag.processing.embeddings import EmbeddingClient, EmbeddingOutcome
from edurag.processing.extractor import ExtractionResult, TextExtractor
from edurag.processing.language import Language, LanguageDetector, SentenceRule

__all__ = [
    "ChunkCandidate",
    "ChunkingEngine",
    "EmbeddingClient",
    "EmbeddingOutcome",
    "ExtractionResult",
    "Language",
    "LanguageDetector",
    "SentenceRule",
    "TextExtractor",
]
