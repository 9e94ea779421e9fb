"""
Tempo Oracle Client - Three-Tier Gemini BPM Resolution

Resolves a track's BPM by asking Google Gemini, grounded with Google Search,
through a fixed fallback chain:

1. PRIMARY   - fastest model, tightest token budget, most deterministic
2. SECONDARY - larger budget, slightly more randomness
3. TERTIARY  - largest budget

A tier succeeds when its answer contains a number strictly between 0 and 300.
Exceptions, timeouts, empty answers and out-of-range numbers escalate to the
next tier. When every tier fails the estimate is EXHAUSTED; nothing is raised.
"""

import asyncio
import logging
import math
import os
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from google import genai
from google.genai import types

from .models import OracleAttempt, TempoEstimate
from .scheduler import CancellationToken

logger = logging.getLogger(__name__)

MIN_VALID_BPM = 0.0
MAX_VALID_BPM = 300.0

_NUMBER_PATTERN = re.compile(r"(\d+\.?\d*)")

AttemptListener = Callable[[OracleAttempt], None]


@dataclass(frozen=True)
class OracleTier:
    """One model configuration in the fallback chain.

    Attributes:
        ordinal: Position in the chain (1-based)
        label: Human-readable tier name for logs
        model: Gemini model identifier
        temperature: Sampling temperature (kept low for deterministic answers)
        max_output_tokens: Token budget for the answer
        timeout_seconds: Wall-clock limit for the call
        thinking_budget: Thinking token budget for models that support it (None = model default)
    """

    ordinal: int
    label: str
    model: str
    temperature: float
    max_output_tokens: int
    timeout_seconds: float
    thinking_budget: Optional[int] = None


DEFAULT_TIERS: Tuple[OracleTier, ...] = (
    OracleTier(1, "PRIMARY", "gemini-2.5-flash-lite", 0.1, 100, 15.0, thinking_budget=0),
    OracleTier(2, "SECONDARY", "gemini-2.0-flash", 0.15, 200, 20.0),
    OracleTier(3, "TERTIARY", "gemini-2.5-flash", 0.2, 400, 30.0, thinking_budget=0),
)


def build_prompt(title: str, artist: str) -> str:
    return (
        f'Look up the tempo of the song "{title}" by {artist} on Tunebat and SongBPM. '
        "Reply with ONLY the numeric BPM value (for example 128 or 120.5)."
    )


def extract_bpm(text: str) -> Optional[float]:
    """Best-effort BPM extraction from free text.

    Takes the first decimal-looking substring, falling back to parsing the
    whole trimmed text.

    Examples:
        >>> extract_bpm("128 BPM")
        128.0
        >>> extract_bpm("The tempo is about 120.5 beats per minute")
        120.5
        >>> extract_bpm("unknown") is None
        True
    """
    if not text:
        return None

    match = _NUMBER_PATTERN.search(text)
    if match:
        try:
            return float(match.group(1))
        except ValueError:
            pass

    try:
        value = float(text.strip())
    except ValueError:
        return None
    return None if math.isnan(value) else value


def is_valid_bpm(bpm: Optional[float]) -> bool:
    return bpm is not None and MIN_VALID_BPM < bpm < MAX_VALID_BPM


def extract_response_text(response: Any) -> str:
    """Answer text, falling back to the first candidate part."""
    try:
        text = response.text
    except (AttributeError, ValueError):
        text = None

    if not text:
        try:
            text = response.candidates[0].content.parts[0].text
        except (AttributeError, IndexError, TypeError):
            text = None
    return (text or "").strip()


def extract_grounding(response: Any) -> Tuple[List[str], List[str]]:
    """Return ``(citation_uris, search_snippets)`` from grounding metadata."""
    try:
        metadata = response.candidates[0].grounding_metadata
    except (AttributeError, IndexError, TypeError):
        return [], []
    if metadata is None:
        return [], []

    chunks = getattr(metadata, "grounding_chunks", None) or []
    supports = getattr(metadata, "grounding_supports", None) or []

    def chunk_uri(index: int) -> Optional[str]:
        try:
            return getattr(chunks[index].web, "uri", None)
        except (AttributeError, IndexError, TypeError):
            return None

    citations: List[str] = []
    snippets: List[str] = []
    if supports:
        for support in supports:
            segment = getattr(support, "segment", None)
            snippet = getattr(segment, "text", None) if segment is not None else None
            if snippet:
                snippets.append(snippet)
            for index in getattr(support, "grounding_chunk_indices", None) or []:
                uri = chunk_uri(index)
                if uri and uri not in citations:
                    citations.append(uri)
    else:
        for index in range(len(chunks)):
            uri = chunk_uri(index)
            if uri and uri not in citations:
                citations.append(uri)
    return citations, snippets


class TempoOracleClient:
    """Gemini-backed tempo oracle with a three-tier fallback chain."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        tiers: Sequence[OracleTier] = DEFAULT_TIERS,
        client: Any = None,
        listeners: Optional[Iterable[AttemptListener]] = None,
    ):
        """
        Initialize the oracle.

        Args:
            api_key: Gemini API key. If None, reads GEMINI_API_KEY from the environment.
            tiers: Fallback chain, tried in order
            client: Preconfigured ``genai.Client`` (or compatible fake for tests)
            listeners: Callables receiving one OracleAttempt per tier attempted

        Raises:
            ValueError: If no client or API key is available, or tiers is empty
        """
        if not tiers:
            raise ValueError("At least one oracle tier is required")

        if client is None:
            api_key = api_key or os.getenv("GEMINI_API_KEY")
            if not api_key:
                raise ValueError("GEMINI_API_KEY must be provided or set in environment")
            client = genai.Client(api_key=api_key)

        self.client = client
        self.tiers: Tuple[OracleTier, ...] = tuple(tiers)
        self._listeners: List[AttemptListener] = list(listeners or [])

    def add_listener(self, listener: AttemptListener) -> None:
        self._listeners.append(listener)

    def _emit(self, attempt: OracleAttempt) -> None:
        for listener in self._listeners:
            try:
                listener(attempt)
            except Exception:
                logger.exception(f"Oracle attempt listener {listener!r} failed")

    def _build_config(self, tier: OracleTier) -> types.GenerateContentConfig:
        kwargs = {
            "temperature": tier.temperature,
            "max_output_tokens": tier.max_output_tokens,
            "tools": [types.Tool(google_search=types.GoogleSearch())],
        }
        if tier.thinking_budget is not None:
            kwargs["thinking_config"] = types.ThinkingConfig(thinking_budget=tier.thinking_budget)
        return types.GenerateContentConfig(**kwargs)

    async def _generate(self, tier: OracleTier, prompt: str) -> Any:
        return await self.client.aio.models.generate_content(
            model=tier.model,
            contents=prompt,
            config=self._build_config(tier),
        )

    async def _attempt(
        self,
        tier: OracleTier,
        prompt: str,
        title: str,
        artist: str,
        item_id: Optional[str],
    ) -> OracleAttempt:
        base = dict(item_id=item_id, title=title, artist=artist, tier=tier.ordinal, tier_label=tier.label, model=tier.model)
        try:
            response = await asyncio.wait_for(self._generate(tier, prompt), timeout=tier.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"{tier.label} ({tier.model}) timed out after {tier.timeout_seconds:.0f}s for {title!r} by {artist}")
            return OracleAttempt(**base, error=f"timed out after {tier.timeout_seconds:g}s")
        except Exception as e:
            logger.warning(f"{tier.label} ({tier.model}) failed for {title!r} by {artist}: {e}")
            return OracleAttempt(**base, error=str(e) or type(e).__name__)

        raw_text = extract_response_text(response)
        if not raw_text:
            logger.warning(f"Empty response from {tier.label} ({tier.model}) for {title!r} by {artist}")
            return OracleAttempt(**base, error="empty response (possible content filtering)")

        citations, snippets = extract_grounding(response)
        bpm = extract_bpm(raw_text)
        valid = is_valid_bpm(bpm)
        logger.debug(
            f"{tier.label} ({tier.model}) for {title!r} by {artist}: "
            f"raw={raw_text!r} parsed={bpm} valid={valid} citations={len(citations)}"
        )
        return OracleAttempt(
            **base,
            raw_text=raw_text,
            parsed_bpm=bpm,
            valid=valid,
            citations=citations,
            search_snippets=snippets,
            error=None if valid else f"invalid BPM in response: {raw_text[:80]!r}",
        )

    async def resolve(
        self,
        title: str,
        artist: str,
        cancel_token: Optional[CancellationToken] = None,
        *,
        item_id: Optional[str] = None,
    ) -> TempoEstimate:
        """Resolve one track's tempo, escalating through the tiers.

        Cancellation is checked before each tier starts and right after its
        call returns.

        Args:
            title: Track title
            artist: Primary artist name
            cancel_token: Shared cancellation token
            item_id: Track id attached to emitted OracleAttempt events

        Returns:
            RESOLVED estimate from the first valid tier, EXHAUSTED if none was
            valid, or CANCELLED if cancellation was observed
        """
        prompt = build_prompt(title, artist)
        last_text = ""

        for tier in self.tiers:
            if cancel_token is not None and cancel_token.cancelled:
                logger.debug(f"Skipping {tier.label} for {title!r}: cancelled")
                return TempoEstimate.cancelled()

            attempt = await self._attempt(tier, prompt, title, artist, item_id)
            self._emit(attempt)

            if cancel_token is not None and cancel_token.cancelled:
                return TempoEstimate.cancelled()

            if attempt.valid:
                logger.info(f"{tier.label} successful for {title!r} by {artist}: {attempt.parsed_bpm:.1f} BPM")
                return TempoEstimate(
                    bpm=attempt.parsed_bpm,
                    tier=tier.ordinal,
                    citations=list(attempt.citations),
                    raw_text=attempt.raw_text,
                )
            last_text = attempt.raw_text or last_text

        logger.warning(f"All {len(self.tiers)} tiers failed for {title!r} by {artist}")
        return TempoEstimate.exhausted(raw_text=last_text)
