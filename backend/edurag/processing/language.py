"""
Language Detection  —  Character-Class Scoring
═══════════════════════════════════════════════

Every supported language is a member of the closed `Language` enumeration and
carries the two things the pipeline needs from it:

    Language.KOREAN ──▶ pattern  [가-힣]            (detection)
                    └─▶ rule     SentenceRule.HANGUL (sentence splitting)

Detection scores each pattern against a lowercased prefix of the text:

    score      = pattern matches / sample length
    confidence = min(score × 10, 1.0)

The top scorer wins; the next two non-zero scorers are reported as
alternatives. Text with no script-specific characters falls back to English
with a fixed confidence. English carries no pattern: it is the default, never
a scored candidate.

Ties resolve in enumeration order. Chinese is listed before Japanese so that
Han-only text (which both patterns match equally) reports Chinese, while any
kana pushes Japanese strictly ahead.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from edurag.core.exceptions import UnsupportedLanguage
from edurag.schemas.documents import (
    DetectionMethod,
    LanguageAlternative,
    LanguageDetectionResult,
)

logger = logging.getLogger(__name__)

SAMPLE_CHARS        = 2000
CONFIDENCE_SCALE    = 10.0
FALLBACK_CONFIDENCE = 0.7
MAX_ALTERNATIVES    = 2


# ---------------------------------------------------------------------------
# Sentence rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Sentence:
    """A sentence with its character span in the source text."""
    text:  str
    start: int
    end:   int


class SentenceRule(Enum):
    """Boundary rule used to split a paragraph into sentences."""

    # ". ", "! ", "? " and line breaks; "3.14" and "e.g.x" stay intact
    LATIN  = r"[.!?]+(?=\s|$)|\n+"
    # full-width and ASCII terminators need no trailing whitespace
    CJK    = r"[。！？!?]+|\n+"
    # terminators before whitespace; an unpunctuated 다/요/까 ending closes a
    # sentence only at a line end
    HANGUL = r"[.!?]+(?=\s|$)|[다요까](?=[ \t]*(?:\n|$))|\n+"

    def __init__(self, boundary: str) -> None:
        self.boundary = re.compile(boundary)

    def split(self, text: str, offset: int = 0) -> list[Sentence]:
        """
        Split `text` into stripped sentences that keep their terminators.
        Spans are shifted by `offset` so callers can split a slice of a
        larger document and still report document offsets.
        """
        sentences: list[Sentence] = []
        pos = 0
        for match in self.boundary.finditer(text):
            _append_span(sentences, text, pos, match.end(), offset)
            pos = match.end()
        _append_span(sentences, text, pos, len(text), offset)
        return sentences


def _append_span(out: list[Sentence], text: str, start: int, end: int, offset: int) -> None:
    piece = text[start:end]
    stripped = piece.strip()
    if not stripped:
        return
    lead = len(piece) - len(piece.lstrip())
    begin = offset + start + lead
    out.append(Sentence(text=stripped, start=begin, end=begin + len(stripped)))


# ---------------------------------------------------------------------------
# Languages
# ---------------------------------------------------------------------------

class Language(Enum):
    """Closed set of supported languages: (code, display name, pattern, sentence rule)."""

    ENGLISH    = ("en", "English",   None,                                  SentenceRule.LATIN)
    KOREAN     = ("ko", "Korean",    r"[가-힣]",                    SentenceRule.HANGUL)
    CHINESE    = ("zh", "Chinese",   r"[一-龯]",                    SentenceRule.CJK)
    JAPANESE   = ("ja", "Japanese",  r"[\u3040-\u30ff一-龯]",       SentenceRule.CJK)
    FRENCH     = ("fr", "French",    r"[àáâãäåæçèéêëìíîïðñòóôõöøùúûüýþÿ]", SentenceRule.LATIN)
    GERMAN     = ("de", "German",    r"[äöüß]",                             SentenceRule.LATIN)
    SPANISH    = ("es", "Spanish",   r"[áéíóúüñ¿¡]",                        SentenceRule.LATIN)
    ITALIAN    = ("it", "Italian",   r"[àèéìíîòóù]",                        SentenceRule.LATIN)
    PORTUGUESE = ("pt", "Portuguese", r"[àáâãçéêíóôõú]",                    SentenceRule.LATIN)
    RUSSIAN    = ("ru", "Russian",   r"[а-яё]",                             SentenceRule.LATIN)
    ARABIC     = ("ar", "Arabic",    r"[\u0600-\u06ff]",                    SentenceRule.LATIN)
    HINDI      = ("hi", "Hindi",     r"[\u0900-\u097f]",                    SentenceRule.LATIN)

    def __init__(self, code: str, display_name: str, pattern: str | None, rule: SentenceRule) -> None:
        self.code = code
        self.display_name = display_name
        self.pattern = re.compile(pattern) if pattern else None
        self.rule = rule

    @classmethod
    def from_code(cls, code: str) -> "Language":
        normalized = (code or "").strip().lower()
        for language in cls:
            if language.code == normalized:
                return language
        raise UnsupportedLanguage(code)

    @classmethod
    def scored(cls) -> list["Language"]:
        """Languages that take part in detection, in tie-break order."""
        return [language for language in cls if language.pattern is not None]


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class LanguageDetector:
    """
    Stateless detector. Pure function of its input: never raises, never
    performs I/O.

    Usage:
        detector = LanguageDetector()
        result   = detector.detect(text)
        language = Language.from_code(result.detected_language)
    """

    def __init__(
        self,
        sample_chars:        int      = SAMPLE_CHARS,
        confidence_scale:    float    = CONFIDENCE_SCALE,
        fallback_confidence: float    = FALLBACK_CONFIDENCE,
        default_language:    Language = Language.ENGLISH,
    ) -> None:
        self._sample_chars        = sample_chars
        self._confidence_scale    = confidence_scale
        self._fallback_confidence = fallback_confidence
        self._default_language    = default_language

    @classmethod
    def from_settings(cls, settings) -> "LanguageDetector":
        return cls(
            sample_chars=settings.language_sample_chars,
            confidence_scale=settings.language_confidence_scale,
            fallback_confidence=settings.language_fallback_confidence,
            default_language=Language.from_code(settings.default_language),
        )

    def detect(self, text: str) -> LanguageDetectionResult:
        sample = (text or "")[: self._sample_chars].lower()
        if not sample.strip():
            return self._fallback()

        scores: list[tuple[Language, float]] = []
        for language in Language.scored():
            matches = len(language.pattern.findall(sample))
            if matches:
                scores.append((language, matches / len(sample)))

        if not scores:
            return self._fallback()

        # sorted() is stable: equal scores keep enumeration order
        ranked = sorted(scores, key=lambda item: item[1], reverse=True)
        winner, top_score = ranked[0]

        result = LanguageDetectionResult(
            detected_language=winner.code,
            confidence=self._confidence(top_score),
            method=DetectionMethod.AUTOMATIC,
            alternatives=[
                LanguageAlternative(language=language.code, confidence=self._confidence(score))
                for language, score in ranked[1 : 1 + MAX_ALTERNATIVES]
            ],
        )
        logger.debug(
            "LanguageDetector | lang=%s confidence=%.2f alternatives=%s",
            result.detected_language, result.confidence,
            [alt.language for alt in result.alternatives],
        )
        return result

    @staticmethod
    def manual(language: Language) -> LanguageDetectionResult:
        """Result recorded when the caller names the language explicitly."""
        return LanguageDetectionResult(
            detected_language=language.code,
            confidence=1.0,
            method=DetectionMethod.MANUAL,
        )

    def _confidence(self, score: float) -> float:
        return min(score * self._confidence_scale, 1.0)

    def _fallback(self) -> LanguageDetectionResult:
        return LanguageDetectionResult(
            detected_language=self._default_language.code,
            confidence=self._fallback_confidence,
            method=DetectionMethod.FALLBACK,
        )
