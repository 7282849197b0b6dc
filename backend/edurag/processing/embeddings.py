"""
Embedding Client  —  Per-Chunk Embeddings with Retry
═════════════════════════════════════════════════════

Design goals:
  • Bounded input: text is truncated to MAX_INPUT_CHARS before submission
  • Retry logic: RetryPolicy back-off on rate limits and transient errors
  • Bounded concurrency: sub-batches of BATCH_SIZE requests, a short pause
    between sub-batches to stay under provider rate limits
  • No silent loss: a chunk that cannot be embedded comes back as a failed
    EmbeddingOutcome, never dropped and never reported as success

OpenAI embedding model selection:
  text-embedding-3-small  → 1536 dims  (default)
  text-embedding-3-large  → 3072 dims

Sub-batching:

    texts ─┬─ [t0 t1 t2 t3 t4] ── gather ──▶ outcomes ─┐
           │                                            sleep(batch_delay)
           ├─ [t5 t6 t7 t8 t9] ── gather ──▶ outcomes ◀┘
           └─ ...

Retry policy (per request):
  On RateLimitError / 5xx / connection / timeout → back off and retry
  On AuthenticationError / BadRequest / malformed response → fail immediately
  After max_attempts → EmbeddingFailed(last_error)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Sequence

import httpx
import openai
from openai import AsyncOpenAI

from edurag.core.exceptions import EmbeddingFailed
from edurag.core.retry import RetryExhausted, RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_MODEL        = "text-embedding-3-small"
DEFAULT_DIMENSIONS   = 1536
MAX_INPUT_CHARS      = 8000   # provider input ceiling, in characters
BATCH_SIZE           = 5      # concurrent requests per sub-batch
BATCH_DELAY_SECONDS  = 1.0    # pause between sub-batches
REQUEST_TIMEOUT      = 30.0


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class EmbeddingOutcome:
    """
    Result for one input of a batch.

    index  : position of the input in the submitted sequence
    vector : embedding, when the request succeeded
    error  : EmbeddingFailed, when it did not
    """
    index:  int
    vector: list[float] | None   = None
    error:  EmbeddingFailed | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.vector is not None


class MalformedEmbeddingResponse(ValueError):
    """Provider answered 2xx but the payload is unusable."""


def is_transient_error(exc: BaseException) -> bool:
    """Errors worth another attempt: throttling, server faults, network trouble."""
    if isinstance(exc, (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)):
        return True
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code == 429 or exc.status_code >= 500
    return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, TimeoutError))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class EmbeddingClient:
    """
    One instance can be shared by concurrent document runs and searches.

    Usage:
        client  = EmbeddingClient.from_settings(settings)
        vector  = await client.embed("photosynthesis")

        async for outcomes in client.iter_batches(texts):
            ...   # persist as each sub-batch completes
    """

    def __init__(
        self,
        client:          AsyncOpenAI | None = None,
        *,
        api_key:         str         = "",
        model:           str         = DEFAULT_MODEL,
        dimensions:      int         = DEFAULT_DIMENSIONS,
        max_input_chars: int         = MAX_INPUT_CHARS,
        batch_size:      int         = BATCH_SIZE,
        batch_delay:     float       = BATCH_DELAY_SECONDS,
        request_timeout: float       = REQUEST_TIMEOUT,
        retry_policy:    RetryPolicy | None = None,
        sleep:           Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client          = client
        self._api_key         = api_key
        self._model           = model
        self._dimensions      = dimensions
        self._max_input_chars = max_input_chars
        self._batch_size      = max(1, batch_size)
        self._batch_delay     = batch_delay
        self._request_timeout = request_timeout
        self._policy          = retry_policy or RetryPolicy()
        self._sleep           = sleep

    @classmethod
    def from_settings(cls, settings, client: AsyncOpenAI | None = None) -> "EmbeddingClient":
        return cls(
            client,
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            max_input_chars=settings.embedding_max_input_chars,
            batch_size=settings.embedding_batch_size,
            batch_delay=settings.embedding_batch_delay_seconds,
            request_timeout=settings.embedding_request_timeout,
            retry_policy=RetryPolicy.from_settings(settings),
        )

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def openai(self) -> AsyncOpenAI:
        # Built lazily: AsyncOpenAI refuses to construct without a key.
        # SDK retries are disabled because RetryPolicy owns back-off.
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key or None,
                timeout=self._request_timeout,
                max_retries=0,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()

    # ------------------------------------------------------------------
    # Single text
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """
        Embed one text.

        Raises:
            EmbeddingFailed: retries exhausted, or a non-transient provider error.
        """
        prepared = self._truncate(text)
        try:
            return await run_with_retry(
                lambda: self._request(prepared),
                self._policy,
                is_retryable=is_transient_error,
                sleep=self._sleep,
                label="embedding",
            )
        except RetryExhausted as exc:
            raise EmbeddingFailed(
                message=f"Embedding failed after {exc.attempts} attempts",
                last_error=exc.last_error,
                attempts=exc.attempts,
            ) from exc.last_error
        except Exception as exc:
            logger.error("Non-retryable embedding error | %s: %s", type(exc).__name__, exc)
            raise EmbeddingFailed(
                message="Embedding request was rejected",
                last_error=exc,
                attempts=1,
                retryable=False,
            ) from exc

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def iter_batches(self, texts: Sequence[str]) -> AsyncIterator[list[EmbeddingOutcome]]:
        """Yield the outcomes of each sub-batch as soon as it completes."""
        total_batches = (len(texts) + self._batch_size - 1) // self._batch_size
        logger.info(
            "EmbeddingClient | texts=%d batches=%d model=%s",
            len(texts), total_batches, self._model,
        )

        for start in range(0, len(texts), self._batch_size):
            if start > 0 and self._batch_delay > 0:
                await self._sleep(self._batch_delay)

            t0 = time.monotonic()
            batch = texts[start : start + self._batch_size]
            results = await asyncio.gather(
                *(self.embed(text) for text in batch),
                return_exceptions=True,
            )

            outcomes: list[EmbeddingOutcome] = []
            for offset, result in enumerate(results):
                index = start + offset
                if isinstance(result, EmbeddingFailed):
                    outcomes.append(EmbeddingOutcome(index=index, error=result))
                elif isinstance(result, BaseException):
                    raise result
                else:
                    outcomes.append(EmbeddingOutcome(index=index, vector=result))

            logger.debug(
                "Embedding batch | start=%d size=%d failed=%d elapsed_ms=%.0f",
                start, len(batch), sum(1 for o in outcomes if not o.ok),
                (time.monotonic() - t0) * 1000,
            )
            yield outcomes

    async def embed_batch(self, texts: Sequence[str]) -> list[EmbeddingOutcome]:
        """Embed every text; one outcome per input, in input order."""
        outcomes: list[EmbeddingOutcome] = []
        async for batch in self.iter_batches(texts):
            outcomes.extend(batch)
        return outcomes

    # ------------------------------------------------------------------
    # Provider call
    # ------------------------------------------------------------------

    async def _request(self, text: str) -> list[float]:
        response = await self.openai.embeddings.create(
            model=self._model,
            input=text,
            encoding_format="float",
        )
        if not response.data:
            raise MalformedEmbeddingResponse("Provider returned no embedding")

        vector = list(response.data[0].embedding)
        if len(vector) != self._dimensions:
            raise MalformedEmbeddingResponse(
                f"Expected {self._dimensions} dimensions, got {len(vector)}"
            )
        return vector

    def _truncate(self, text: str) -> str:
        if len(text) <= self._max_input_chars:
            return text
        logger.debug(
            "Embedding input truncated | chars=%d limit=%d",
            len(text), self._max_input_chars,
        )
        return text[: self._max_input_chars]
