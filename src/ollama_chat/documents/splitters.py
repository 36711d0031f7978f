"""Chunking text for the retrieval store.

``Character`` and ``RecursiveCharacter`` come from langchain-text-splitters.
``Semantic`` groups sentences and starts a new chunk where the embedding
distance between neighbouring sentences is unusually large.
"""

from __future__ import annotations

import re
import statistics
from typing import TYPE_CHECKING

from langchain_text_splitters import CharacterTextSplitter, RecursiveCharacterTextSplitter

from ollama_chat.documents.store import cosine_similarity
from ollama_chat.errors import ConfigError

if TYPE_CHECKING:
    from ollama_chat.config.schema import SplitterConfig
    from ollama_chat.core.client import OllamaClient

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def _recursive(chunk_size: int, chunk_overlap: int) -> RecursiveCharacterTextSplitter:
    return RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        separators=["\n\n", "\n", ". ", " ", ""],
        length_function=len,
    )


def percentile(values: list[float], pct: float) -> float:
    """Linear interpolated percentile of ``values`` (0 <= pct <= 100)."""
    ordered = sorted(values)
    if len(ordered) == 1:
        return ordered[0]
    position = (len(ordered) - 1) * pct / 100
    lower = int(position)
    upper = min(lower + 1, len(ordered) - 1)
    return ordered[lower] + (ordered[upper] - ordered[lower]) * (position - lower)


class SemanticSplitter:
    """Split where sentence to sentence embedding distance spikes."""

    def __init__(
        self,
        client: OllamaClient,
        model: str,
        chunk_size: int = 1024,
        breakpoint: str = "percentile",
        pct: float = 95.0,
    ) -> None:
        self.client = client
        self.model = model
        self.chunk_size = chunk_size
        self.breakpoint = breakpoint
        self.pct = pct

    def _threshold(self, distances: list[float]) -> float:
        if self.breakpoint == "percentile":
            return percentile(distances, self.pct)
        if self.breakpoint == "standard_deviation":
            return statistics.fmean(distances) + statistics.pstdev(distances)
        if self.breakpoint == "interquartile":
            q1, q3 = percentile(distances, 25), percentile(distances, 75)
            return statistics.fmean(distances) + 1.5 * (q3 - q1)
        raise ConfigError(f"Unknown semantic breakpoint {self.breakpoint!r}")

    async def split(self, text: str) -> list[str]:
        sentences = [s for s in _SENTENCE_RE.split(text) if s.strip()]
        if len(sentences) < 3:
            return _recursive(self.chunk_size, 0).split_text(text)

        vectors = await self.client.embed(self.model, sentences)
        distances = [
            1 - cosine_similarity(a, b) for a, b in zip(vectors, vectors[1:])
        ]
        threshold = self._threshold(distances)

        groups: list[list[str]] = [[sentences[0]]]
        for sentence, distance in zip(sentences[1:], distances):
            if distance > threshold:
                groups.append([])
            groups[-1].append(sentence)

        # Oversized groups still have to respect chunk_size
        fallback = _recursive(self.chunk_size, 0)
        chunks: list[str] = []
        for group in groups:
            chunk = " ".join(group)
            if len(chunk) > self.chunk_size:
                chunks.extend(fallback.split_text(chunk))
            else:
                chunks.append(chunk)
        return chunks


async def split_text(
    text: str,
    config: SplitterConfig,
    client: OllamaClient | None = None,
    model: str | None = None,
) -> list[str]:
    """Split ``text`` with the splitter named in ``config``."""
    if config.name == "Character":
        return CharacterTextSplitter(
            separator="\n\n",
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
        ).split_text(text)
    if config.name == "RecursiveCharacter":
        return _recursive(config.chunk_size, config.chunk_overlap).split_text(text)
    if config.name == "Semantic":
        if client is None or model is None:
            raise ConfigError("The Semantic splitter needs an embedding client and model")
        splitter = SemanticSplitter(
            client,
            model,
            chunk_size=config.chunk_size,
            breakpoint=config.breakpoint,
            pct=config.percentile,
        )
        return await splitter.split(text)
    raise ConfigError(f"Unknown splitter {config.name!r}")
