"""Retrieval store.

``RetrievalStore`` is the interface the chat uses. ``MemoryStore`` keeps
chunk embeddings in process, keyed by a hash of model and text so the same
chunk is only embedded once per collection. ``SQLiteStore`` writes the same
entries through to a database file so collections survive restarts.
"""

from __future__ import annotations

import hashlib
import json
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import aiosqlite

from ollama_chat.config.paths import get_data_dir
from ollama_chat.errors import ConfigError
from ollama_chat.logging import get_logger

if TYPE_CHECKING:
    from ollama_chat.config.schema import Config
    from ollama_chat.core.client import OllamaClient

log = get_logger("store")


@dataclass
class Record:
    """A stored chunk as returned from a search."""

    text: str
    source: str
    tags: set[str] = field(default_factory=set)
    similarity: float = 0.0


@dataclass
class _Entry:
    text: str
    source: str
    tags: set[str]
    embedding: list[float]


class RetrievalStore(Protocol):
    collection: str

    async def add(
        self,
        chunks: Sequence[str],
        source: str,
        tags: Iterable[str] = (),
        batch_size: int | None = None,
    ) -> None: ...

    async def find_where(
        self,
        query: str,
        tags: Iterable[str] = (),
        text_size: int | None = None,
        text_count: int | None = None,
    ) -> list[Record]: ...

    async def clear(self, tags: Iterable[str] = ()) -> None: ...

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    def tags(self) -> set[str]: ...

    def size(self) -> int: ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class MemoryStore:
    """In-process retrieval store backed by the server's embedding endpoint.

    Entries live per collection. ``find_where`` ranks by cosine similarity,
    highest first; equal scores keep insertion order.
    """

    def __init__(
        self,
        client: OllamaClient,
        model: str,
        collection: str = "default",
        prompt: str | None = None,
        model_options: dict | None = None,
        batch_size: int = 10,
    ) -> None:
        self.client = client
        self.model = model
        self.collection = collection
        self.prompt = prompt
        self.model_options = model_options or {}
        self.batch_size = batch_size
        self._collections: dict[str, dict[str, _Entry]] = {}

    @property
    def _entries(self) -> dict[str, _Entry]:
        return self._collections.setdefault(self.collection, {})

    def _key(self, text: str) -> str:
        return hashlib.sha256(f"{self.model}\0{text}".encode()).hexdigest()

    def collections(self) -> list[str]:
        return sorted(name for name, entries in self._collections.items() if entries)

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def _written(self, keys: list[str]) -> None:
        """Called with the keys of new or retagged entries."""

    async def _removed(self, keys: list[str] | None) -> None:
        """Called with the keys of removed entries, None for the whole collection."""

    async def add(
        self,
        chunks: Sequence[str],
        source: str,
        tags: Iterable[str] = (),
        batch_size: int | None = None,
    ) -> None:
        """Embed and store ``chunks``; the source itself becomes a tag too."""
        await self.open()
        entry_tags = {*tags, source}
        todo = []
        retagged = []
        for text in chunks:
            key = self._key(text)
            if key in self._entries:
                self._entries[key].tags |= entry_tags
                retagged.append(key)
            elif text.strip():
                todo.append((key, text))

        size = batch_size or self.batch_size
        for start in range(0, len(todo), size):
            batch = todo[start : start + size]
            vectors = await self.client.embed(
                self.model, [text for _, text in batch], self.model_options
            )
            for (key, text), vector in zip(batch, vectors):
                self._entries[key] = _Entry(text, source, set(entry_tags), vector)
        await self._written(retagged + [key for key, _ in todo])
        log.info("Added %d new of %d chunks from %s", len(todo), len(chunks), source)

    async def find_where(
        self,
        query: str,
        tags: Iterable[str] = (),
        text_size: int | None = None,
        text_count: int | None = None,
    ) -> list[Record]:
        """Chunks most similar to ``query``.

        With ``tags`` only chunks carrying at least one of them are searched.
        Results stop before ``text_count`` records or ``text_size`` total
        characters would be exceeded.
        """
        wanted = set(tags)
        candidates = [
            e for e in self._entries.values() if not wanted or e.tags & wanted
        ]
        if not candidates:
            return []

        prompt = self.prompt.format(query=query) if self.prompt else query
        [query_vector] = await self.client.embed(self.model, [prompt], self.model_options)

        scored = [
            Record(e.text, e.source, set(e.tags), cosine_similarity(query_vector, e.embedding))
            for e in candidates
        ]
        scored.sort(key=lambda r: r.similarity, reverse=True)

        results: list[Record] = []
        total = 0
        for record in scored:
            if text_count is not None and len(results) >= text_count:
                break
            if text_size is not None and total + len(record.text) > text_size:
                break
            total += len(record.text)
            results.append(record)
        return results

    async def clear(self, tags: Iterable[str] = ()) -> None:
        """Remove everything, or only the chunks carrying one of ``tags``."""
        await self.open()
        wanted = set(tags)
        if not wanted:
            self._entries.clear()
            await self._removed(None)
            return
        keys = [k for k, e in self._entries.items() if e.tags & wanted]
        for key in keys:
            del self._entries[key]
        await self._removed(keys)

    def tags(self) -> set[str]:
        result: set[str] = set()
        for entry in self._entries.values():
            result |= entry.tags
        return result

    def size(self) -> int:
        return len(self._entries)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    collection TEXT NOT NULL,
    key TEXT NOT NULL,
    text TEXT NOT NULL,
    source TEXT NOT NULL,
    tags TEXT NOT NULL,
    embedding TEXT NOT NULL,
    PRIMARY KEY (collection, key)
)
"""


class SQLiteStore(MemoryStore):
    """MemoryStore whose collections are kept in an SQLite database file.

    ``open`` reads every collection into memory; later changes are written
    through, so searching never touches the file.
    """

    def __init__(self, path: str | Path, client: OllamaClient, model: str, **kwargs) -> None:
        super().__init__(client, model, **kwargs)
        self.path = Path(path).expanduser()
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        if self._db is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(str(self.path))
            await self._db.execute(_SCHEMA)
            await self._db.commit()
        except (OSError, aiosqlite.Error) as e:
            await self.close()
            raise ConfigError(f"Cannot open documents database {str(self.path)!r}: {e}") from e
        count = 0
        async with self._db.execute(
            "SELECT collection, key, text, source, tags, embedding FROM records ORDER BY rowid"
        ) as cursor:
            async for collection, key, text, source, tags, embedding in cursor:
                self._collections.setdefault(collection, {})[key] = _Entry(
                    text, source, set(json.loads(tags)), json.loads(embedding)
                )
                count += 1
        log.info("Loaded %d chunks from %s", count, self.path)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.open()
        assert self._db is not None
        return self._db

    async def _written(self, keys: list[str]) -> None:
        if not keys:
            return
        db = await self._connection()
        for key in keys:
            entry = self._entries[key]
            tags = json.dumps(sorted(entry.tags))
            cursor = await db.execute(
                "UPDATE records SET tags = ? WHERE collection = ? AND key = ?",
                (tags, self.collection, key),
            )
            if cursor.rowcount == 0:
                await db.execute(
                    "INSERT INTO records (collection, key, text, source, tags, embedding)"
                    " VALUES (?, ?, ?, ?, ?, ?)",
                    (self.collection, key, entry.text, entry.source, tags, json.dumps(entry.embedding)),
                )
        await db.commit()

    async def _removed(self, keys: list[str] | None) -> None:
        db = await self._connection()
        if keys is None:
            await db.execute("DELETE FROM records WHERE collection = ?", (self.collection,))
        else:
            await db.executemany(
                "DELETE FROM records WHERE collection = ? AND key = ?",
                [(self.collection, key) for key in keys],
            )
        await db.commit()


def make_store(config: Config, client: OllamaClient) -> MemoryStore:
    """Store for ``embedding.database``: a file path, or ":memory:" for none."""
    embedding = config.embedding
    options = dict(
        collection=embedding.collection,
        prompt=embedding.model.prompt,
        model_options=embedding.model.options,
        batch_size=embedding.batch_size,
    )
    database = embedding.database or str(get_data_dir() / "documents.db")
    if database == ":memory:":
        return MemoryStore(client, embedding.model.name, **options)
    return SQLiteStore(database, client, embedding.model.name, **options)
