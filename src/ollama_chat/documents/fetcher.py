"""Content fetching for referenced sources.

A source is one of:

- ``http(s)://...``: fetched with httpx, optionally through a response cache
- ``file://...`` or a path starting with ``/``, ``./``, ``../`` or ``~/``
- ``!command``: a shell command whose combined output is the content

Every fetch returns a ``FetchedContent`` carrying the raw bytes and a
MIME content type, or raises FetchError.
"""

from __future__ import annotations

import asyncio
import hashlib
import mimetypes
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol
from urllib.parse import quote, unquote

import httpx
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ollama_chat import __version__
from ollama_chat.errors import FetchError
from ollama_chat.logging import get_logger

if TYPE_CHECKING:
    from ollama_chat.config.schema import Config

log = get_logger("fetcher")

USER_AGENT = f"ollama_chat/{__version__}"

# Types the mimetypes table misses or gets wrong for our purposes
for _ext, _type in (
    (".md", "text/markdown"),
    (".rss", "application/rss+xml"),
    (".atom", "application/atom+xml"),
    (".ps", "application/postscript"),
    (".yml", "text/yaml"),
    (".yaml", "text/yaml"),
    (".rb", "application/x-ruby"),
):
    mimetypes.add_type(_type, _ext)

_PATH_RE = re.compile(r"\A(?:\.\.|[~.]?)/")
_MAX_AGE_RE = re.compile(r"(?:s-maxage|max-age)\s*=\s*(\d+)")


@dataclass
class FetchedContent:
    """Bytes of a fetched source plus its content type."""

    source: str
    data: bytes
    content_type: str | None = "text/plain"
    max_age: int | None = None

    @property
    def media_type(self) -> str | None:
        """Top level type, e.g. ``image`` for ``image/png``."""
        if not self.content_type:
            return None
        return self.content_type.split("/", 1)[0]

    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


def normalize_url(url: str) -> str:
    """Decode, drop the fragment and re-escape a URL."""
    url = unquote(url)
    url = url.split("#", 1)[0]
    return quote(url, safe=":/?&=%@+,;~!$'()*[]")


def is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def guess_content_type(filename: str) -> str | None:
    content_type, _ = mimetypes.guess_type(filename)
    return content_type


def _cache_key(kind: str, url: str) -> str:
    return f"{kind}-{hashlib.md5(url.encode()).hexdigest()}"


class ResponseCache(Protocol):
    """Storage for fetched URL bodies and their content types."""

    async def get(self, url: str) -> FetchedContent | None: ...

    async def put(self, content: FetchedContent) -> None: ...


class MemoryCache:
    """Process local response cache with expiry."""

    def __init__(self, expire: int = 86400) -> None:
        self.expire = expire
        self._data: dict[str, tuple[float, bytes | str]] = {}

    def _get(self, key: str) -> bytes | str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        deadline, value = entry
        if deadline < time.monotonic():
            del self._data[key]
            return None
        return value

    async def get(self, url: str) -> FetchedContent | None:
        body = self._get(_cache_key("body", url))
        content_type = self._get(_cache_key("content_type", url))
        if body is None or content_type is None:
            return None
        return FetchedContent(url, body, str(content_type))

    async def put(self, content: FetchedContent) -> None:
        self.prune()
        if not content.data or not content.content_type:
            return
        ex = content.max_age if content.max_age is not None else self.expire
        if ex < 1:
            return
        deadline = time.monotonic() + ex
        self._data[_cache_key("body", content.source)] = (deadline, content.data)
        self._data[_cache_key("content_type", content.source)] = (deadline, content.content_type)

    def prune(self) -> int:
        """Drop expired entries and return how many went."""
        now = time.monotonic()
        expired = [key for key, (deadline, _) in self._data.items() if deadline < now]
        for key in expired:
            del self._data[key]
        return len(expired)

    def clear(self) -> None:
        self._data.clear()


class RedisCache:
    """Response cache shared through redis, keys prefixed per application.

    An unreachable or failing redis makes lookups miss and stores no-ops.
    """

    def __init__(self, url: str, expire: int = 86400, prefix: str = "ollama_chat:") -> None:
        self.expire = expire
        self.prefix = prefix
        self._redis = aioredis.from_url(url)

    async def get(self, url: str) -> FetchedContent | None:
        try:
            body = await self._redis.get(self.prefix + _cache_key("body", url))
            content_type = await self._redis.get(self.prefix + _cache_key("content_type", url))
        except RedisError as e:
            log.warning("Response cache lookup for %s failed: %s", url, e)
            return None
        if body is None or content_type is None:
            return None
        return FetchedContent(url, body, content_type.decode())

    async def put(self, content: FetchedContent) -> None:
        if not content.data or not content.content_type:
            return
        ex = content.max_age if content.max_age is not None else self.expire
        if ex < 1:
            return
        try:
            await self._redis.set(self.prefix + _cache_key("body", content.source), content.data, ex=ex)
            await self._redis.set(
                self.prefix + _cache_key("content_type", content.source), content.content_type, ex=ex
            )
        except RedisError as e:
            log.warning("Response cache store for %s failed: %s", content.source, e)


def make_cache(config: Config) -> ResponseCache:
    if config.cache.url:
        log.debug("Using redis response cache at %s", config.cache.url)
        return RedisCache(config.cache.url, expire=config.cache.expire)
    return MemoryCache(expire=config.cache.expire)


class Fetcher:
    """Fetches sources of any supported kind."""

    def __init__(
        self,
        config: Config,
        cache: ResponseCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.cache = cache
        self._transport = transport

    async def fetch(self, source: str, check_exist: bool = False) -> FetchedContent | None:
        """Fetch ``source``.

        With ``check_exist`` a missing file yields None instead of an error,
        so stray path-like words in chat input are skipped quietly.

        Raises:
            FetchError: the source could not be fetched
        """
        if source.startswith("!"):
            return await self.execute(source[1:])
        if is_url(source):
            return await self.get(source)
        if source.startswith("file://"):
            filename = unquote(source[len("file://"):].split("#", 1)[0])
            return self._read_if_present(filename, source, check_exist)
        if source.startswith('"') and source.endswith('"'):
            filename = source[1:-1].replace('\\"', '"')
            return self._read_if_present(filename, source, check_exist)
        if _PATH_RE.match(source):
            filename = source.replace("\\ ", " ")
            return self._read_if_present(filename, source, check_exist)
        raise FetchError(source, "invalid source")

    def _read_if_present(
        self, filename: str, source: str, check_exist: bool
    ) -> FetchedContent | None:
        path = Path(filename).expanduser().resolve()
        if check_exist and not path.exists():
            return None
        return self.read(path, source)

    def read(self, path: Path, source: str | None = None) -> FetchedContent:
        if not path.is_file():
            raise FetchError(source or str(path), f"file {str(path)!r} doesn't exist")
        try:
            data = path.read_bytes()
        except OSError as e:
            raise FetchError(source or str(path), str(e)) from e
        return FetchedContent(source or str(path), data, guess_content_type(path.name))

    async def execute(self, command: str) -> FetchedContent:
        """Run a shell command, capturing stdout and stderr together."""
        log.info("Executing %r", command)
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            output, _ = await process.communicate()
        except OSError as e:
            raise FetchError(f"!{command}", str(e)) from e
        return FetchedContent(f"!{command}", output, "text/plain")

    async def get(self, url: str, use_cache: bool = True) -> FetchedContent:
        """GET a URL, consulting the response cache first."""
        cache = self.cache if use_cache else None
        if cache:
            cached = await cache.get(url)
            if cached:
                log.debug("Cache hit for %s (%s)", url, cached.content_type)
                return cached

        normalized = normalize_url(url)
        host = httpx.URL(normalized).host
        headers = {"User-Agent": USER_AGENT, **self.config.request_headers}
        try:
            async with httpx.AsyncClient(
                headers=headers,
                follow_redirects=True,
                timeout=httpx.Timeout(
                    self.config.timeouts.read, connect=self.config.timeouts.connect
                ),
                proxy=self.config.proxy,
                verify=host not in self.config.ssl_no_verify,
                transport=self._transport,
            ) as client:
                response = await client.get(normalized)
        except httpx.HTTPError as e:
            raise FetchError(url, f"{type(e).__name__} {e}") from e
        if response.status_code != 200:
            raise FetchError(
                url, f"request failed: {response.status_code} {response.reason_phrase}"
            )

        content_type = response.headers.get("content-type", "")
        content_type = content_type.split(";", 1)[0].strip().lower() or guess_content_type(url)
        content = FetchedContent(url, response.content, content_type)

        cache_control = response.headers.get("cache-control", "")
        if cache_control and not re.search(r"no-store|no-cache", cache_control):
            if match := _MAX_AGE_RE.search(cache_control):
                content.max_age = int(match.group(1))
        if cache:
            await cache.put(content)
        return content
