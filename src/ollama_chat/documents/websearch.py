"""Web search through SearXNG's JSON API or DuckDuckGo's HTML results."""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote, urlparse

from bs4 import BeautifulSoup

from ollama_chat.errors import FetchError
from ollama_chat.logging import get_logger

if TYPE_CHECKING:
    from ollama_chat.config.schema import Config
    from ollama_chat.documents.fetcher import Fetcher

log = get_logger("websearch")

_DDG_REDIRECT_RE = re.compile(r"\A(?://duckduckgo\.com)?/l/\?uddg=")


def parse_searxng(body: str, n: int) -> list[str]:
    data = json.loads(body)
    return [r["url"] for r in data.get("results", [])[:n] if r.get("url")]


def parse_duckduckgo(html: str, n: int) -> list[str]:
    """Result URLs from a DuckDuckGo HTML page, unwrapping its redirect links."""
    soup = BeautifulSoup(html, "html.parser")
    urls: list[str] = []
    for result in soup.select(".results_links"):
        if len(urls) >= n:
            break
        anchor = result.select_one(".result__a")
        if anchor is None or not anchor.get("href"):
            continue
        url = _DDG_REDIRECT_RE.sub("", anchor["href"])
        url = unquote(re.sub(r"&rut=.*", "", url))
        if "duckduckgo.com" in (urlparse(url).hostname or ""):
            continue
        urls.append(url)
    return urls


class WebSearch:
    """Runs a query against the configured engine and returns result URLs."""

    def __init__(self, config: Config, fetcher: Fetcher) -> None:
        self.config = config
        self.fetcher = fetcher

    @property
    def engine(self) -> str:
        return self.config.web_search.use

    async def search(self, query: str, n: int = 1) -> list[str]:
        """Up to ``n`` result URLs for ``query``.

        Raises:
            FetchError: the engine could not be queried or answered garbage
        """
        n = max(n, 1)
        template = self.config.web_search.engines[self.engine]
        url = template.format(query=quote(query, safe=""))
        log.debug("Searching %s for %r", self.engine, query)

        content = await self.fetcher.get(url, use_cache=False)

        try:
            if self.engine == "searxng":
                return parse_searxng(content.text(), n)
            return parse_duckduckgo(content.text(), n)
        except (ValueError, KeyError, TypeError) as e:
            raise FetchError(url, f"unexpected {self.engine} response: {e}") from e
