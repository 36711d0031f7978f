"""Document policy: what happens to a source referenced in chat input.

The active policy is one of ``importing``, ``embedding``, ``summarizing``
or ``ignoring``. Images are always attached to the message whatever the
policy. A reference that fails to fetch or parse is reported and skipped;
it never stops the other references of the same message.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
from redis.exceptions import RedisError
from rich.console import Console
from rich.markup import escape

from ollama_chat.core.messages import encode_image_bytes
from ollama_chat.documents.fetcher import FetchedContent, is_url
from ollama_chat.documents.parser import parse_content
from ollama_chat.documents.references import directory_structure, scan
from ollama_chat.documents.splitters import split_text
from ollama_chat.errors import FetchError, InferenceError, ParseError
from ollama_chat.logging import get_logger

if TYPE_CHECKING:
    from ollama_chat.config.schema import Config
    from ollama_chat.core.client import OllamaClient
    from ollama_chat.core.switches import Switches
    from ollama_chat.documents.fetcher import Fetcher
    from ollama_chat.documents.store import RetrievalStore

log = get_logger("policy")

DEFAULT_SUMMARY_WORDS = 100
SOURCE_ID_LENGTH = 10

# Errors a single reference may raise without affecting the rest of the input
REFERENCE_ERRORS = (FetchError, ParseError, InferenceError, httpx.HTTPError, RedisError, OSError)


class Links:
    """URLs seen during the session, in order of first appearance."""

    def __init__(self) -> None:
        self._urls: dict[str, None] = {}

    def add(self, url: str) -> None:
        self._urls[url] = None

    def remove(self, url: str) -> bool:
        if url not in self._urls:
            return False
        del self._urls[url]
        return True

    def clear(self) -> None:
        self._urls.clear()

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._urls))

    def __len__(self) -> int:
        return len(self._urls)

    def __contains__(self, url: object) -> bool:
        return url in self._urls


@dataclass
class ResolvedInput:
    """Outgoing message content after all references were handled."""

    content: str
    tags: set[str] = field(default_factory=set)
    images: list[str] = field(default_factory=list)


def embedding_source_id(source: str) -> str:
    """Identifier under which a source's chunks are stored.

    Shell command sources are reduced to a word-character slug of at most
    ten characters, ending in an ellipsis when shortened.
    """
    if not source.startswith("!"):
        return source
    slug = re.sub(r"\W+", "_", source[1:])
    if len(slug) > SOURCE_ID_LENGTH:
        return slug[: SOURCE_ID_LENGTH - 1] + "…"
    return slug


class DocumentPolicy:
    """Applies the selected document policy to sources."""

    def __init__(
        self,
        config: Config,
        switches: Switches,
        fetcher: Fetcher,
        store: RetrievalStore,
        client: OllamaClient | None = None,
        links: Links | None = None,
        console: Console | None = None,
    ) -> None:
        self.config = config
        self.switches = switches
        self.fetcher = fetcher
        self.store = store
        self.client = client
        self.links = links if links is not None else Links()
        self.console = console or Console()

    @property
    def selected(self) -> str:
        return self.switches.document_policy.selected

    def _parse(self, content: FetchedContent) -> str:
        text = parse_content(content)
        if text is None:
            raise ParseError(content.content_type)
        return text

    async def _fetch(self, source: str, check_exist: bool = False) -> FetchedContent | None:
        if is_url(source):
            self.links.add(source)
        return await self.fetcher.fetch(source, check_exist=check_exist)

    def _report(self, source: str, error: BaseException) -> None:
        log.warning("Reference %r failed: %s", source, error)
        self.console.print(f"[red]Cannot use {escape(repr(source))}: {escape(str(error))}[/red]")

    # Actions on an already fetched source

    def import_content(self, content: FetchedContent, source: str) -> str:
        self.console.print(
            f"Importing [italic]{content.content_type}[/italic] document {escape(repr(source))} now."
        )
        text = self._parse(content)
        return self.config.prompts.imported.format(source=source, source_content=text)

    def summarize_content(
        self, content: FetchedContent, source: str, words: int | None = None
    ) -> str | None:
        self.console.print(
            f"Summarizing [italic]{content.content_type}[/italic] document {escape(repr(source))} now."
        )
        if not words or words < 1:
            words = DEFAULT_SUMMARY_WORDS
        text = self._parse(content)
        if not text.strip():
            return None
        return self.config.prompts.summarize.format(source_content=text, words=words)

    async def embed_content(
        self, content: FetchedContent, source: str, count: int | None = None
    ) -> str | None:
        """Split and store the source; returns its text only when embedding is off."""
        if not self.switches.embedding.is_on():
            return self._parse(content)
        message = f"Embedding [italic]{content.content_type}[/italic] document {escape(repr(source))}."
        self.console.print(f"{count}. {message}" if count else message)

        text = self._parse(content).lower()
        splitter = self.config.embedding.splitter
        chunks = await split_text(
            text, splitter, client=self.client, model=self.config.embedding.model.name
        )
        if not chunks:
            return None
        await self.store.add(
            chunks,
            embedding_source_id(source),
            batch_size=self.config.embedding.batch_size,
        )
        return None

    # Whole input resolution

    async def resolve(self, content: str, images: list[str]) -> ResolvedInput:
        """Handle every reference in ``content`` under the current policy.

        ``images`` (the pending image list) is cleared first and receives any
        referenced images.
        """
        images.clear()
        scanned = scan(content)
        contents = [content]

        for reference in scanned.references:
            try:
                if reference.kind == "directory":
                    structure = directory_structure(reference.source)
                    contents.append(json.dumps(structure, indent=2))
                    continue
                fetched = await self._fetch(reference.source, check_exist=reference.check_exist)
                if fetched is None:
                    continue
                extra = await self.apply(fetched, reference.source, images)
                if extra:
                    contents.append(extra)
            except REFERENCE_ERRORS as e:
                self._report(reference.source, e)

        new_content = "\n\n".join(c for c in contents if c and c.strip())
        return ResolvedInput(new_content, scanned.tags, images)

    async def apply(self, fetched: FetchedContent, source: str, images: list[str]) -> str | None:
        """Dispatch one fetched source by media type and policy."""
        media_type = fetched.media_type
        if media_type == "image":
            self.console.print(f"Adding {fetched.content_type} image {escape(repr(source))}.")
            image = encode_image_bytes(fetched.data)
            if image not in images:
                images.append(image)
            return None
        if media_type not in ("text", "application", None):
            self.console.print(
                f"[yellow]Cannot fetch {escape(repr(source))} with content type "
                f"{fetched.content_type!r}[/yellow]"
            )
            return None

        policy = self.selected
        if policy == "importing":
            return self.import_content(fetched, source)
        if policy == "summarizing":
            return self.summarize_content(fetched, source)
        if policy == "embedding":
            await self.embed_content(fetched, source)
        return None

    # Explicit commands (/import, /summarize, /embed)

    async def import_source(self, source: str) -> str | None:
        try:
            fetched = await self._fetch(source)
            return self.import_content(fetched, source) if fetched else None
        except REFERENCE_ERRORS as e:
            self._report(source, e)
            return None

    async def summarize_source(self, source: str, words: int | None = None) -> str | None:
        try:
            fetched = await self._fetch(source)
            return self.summarize_content(fetched, source, words) if fetched else None
        except REFERENCE_ERRORS as e:
            self._report(source, e)
            return None

    async def embed_source(self, source: str, count: int | None = None) -> str | None:
        """Embed ``source`` and return the prompt announcing it.

        With embedding off, a summary prompt is returned instead.
        """
        if not self.switches.embedding.is_on():
            self.console.print("Embedding is off, so I will just give a small summary of this source.")
            return await self.summarize_source(source)
        self.console.print(f"Now embedding {escape(repr(source))}.")
        try:
            fetched = await self._fetch(source)
            if fetched is None:
                return None
            await self.embed_content(fetched, source, count=count)
        except REFERENCE_ERRORS as e:
            self._report(source, e)
            return None
        return self.config.prompts.embed.format(source=source)
