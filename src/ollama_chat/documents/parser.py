"""Turning fetched bytes into text the model can read.

``parse_content`` dispatches on the content type. Unsupported types log a
diagnostic and yield None; damaged content raises ParseError. Callers treat
both as a failed reference.
"""

from __future__ import annotations

import csv
import io
import re
import shutil
import subprocess
import tempfile
from pathlib import Path

import feedparser
from bs4 import BeautifulSoup
from markdownify import markdownify
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from ollama_chat.documents.fetcher import FetchedContent
from ollama_chat.errors import ParseError
from ollama_chat.logging import get_logger

log = get_logger("parser")

_PASSTHROUGH_RE = re.compile(
    r"\Aapplication/(json|ld\+json|x-ruby|x-perl|x-gawk|x-python|x-javascript|javascript"
    r"|x-c?sh|x-shellscript|x-tex|x-latex|x-lyx|x-bibtex|x-yaml|yaml|toml|x-sh)"
)
_RSS_SNIFF_RE = re.compile(r"^\s*<rss\s", re.MULTILINE)


def html_to_markdown(html: str | None) -> str:
    """Convert HTML to markdown, dropping scripts and styles."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = markdownify(str(soup), heading_style="ATX", bullets="*")
    return re.sub(r"\n{3,}", "\n\n", text).strip() + "\n"


def parse_csv(text: str) -> str:
    """Render each CSV row as indented ``header: value`` lines.

    Empty fields are left out and rows without any value are skipped.
    """
    reader = csv.reader(io.StringIO(text))
    headers = [h.strip() for h in next(reader, [])]
    blocks = []
    for row in reader:
        lines = [
            f"  {header}: {value.strip()}"
            for header, value in zip(headers, row)
            if value.strip()
        ]
        if lines:
            blocks.append("\n".join(lines))
    return "".join(block + "\n\n" for block in blocks)


def parse_feed(data: bytes) -> str:
    """RSS or Atom feed as a markdown document."""
    feed = feedparser.parse(data)
    parts = [f"# {feed.feed.get('title', '')}\n\n"]
    for entry in feed.entries:
        updated = entry.get("published") or entry.get("updated") or ""
        body = entry.get("summary") or entry.get("description") or ""
        parts.append(
            f"## [{entry.get('title', '')}]({entry.get('link', '')})\n\n"
            f"updated on {updated}\n\n"
            f"{html_to_markdown(body)}\n"
        )
    return "".join(parts)


def parse_pdf(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    return "".join(page.extract_text() or "" for page in reader.pages)


def parse_postscript(data: bytes) -> str | None:
    """Convert Postscript to PDF with ghostscript, then extract its text."""
    gs = shutil.which("gs")
    if not gs:
        log.warning("Cannot convert application/postscript with ghostscript, gs not in path.")
        return None
    with tempfile.TemporaryDirectory() as tmp:
        pdf_path = Path(tmp) / "converted.pdf"
        result = subprocess.run(
            [gs, "-q", "-sDEVICE=pdfwrite", f"-sOutputFile={pdf_path}", "-"],
            input=data,
            capture_output=True,
            check=False,
        )
        if result.returncode != 0 or not pdf_path.exists():
            log.warning("ghostscript failed: %s", result.stderr.decode(errors="replace"))
            return None
        return parse_pdf(pdf_path.read_bytes())


def parse_content(content: FetchedContent) -> str | None:
    """Text of ``content``, or None when its type is not supported.

    Raises:
        ParseError: the content is damaged, e.g. a truncated PDF
    """
    try:
        return _parse(content)
    except (PyPdfError, csv.Error, ValueError) as e:
        log.warning("Parsing %s document %r failed: %s", content.content_type, content.source, e)
        raise ParseError(content.content_type, f"{type(e).__name__} {e}") from e


def _parse(content: FetchedContent) -> str | None:
    content_type = content.content_type

    if content_type == "text/html":
        return html_to_markdown(content.text())
    if content_type in ("text/xml", "application/xml"):
        text = content.text()
        if _RSS_SNIFF_RE.search(text[:8192]):
            return parse_feed(content.data)
        return text
    if content_type in ("application/rss+xml", "application/atom+xml"):
        return parse_feed(content.data)
    if content_type == "text/csv":
        return parse_csv(content.text())
    if content_type == "application/postscript":
        return parse_postscript(content.data)
    if content_type == "application/pdf":
        return parse_pdf(content.data)
    if content_type is None or content_type.startswith("text/") or _PASSTHROUGH_RE.match(content_type):
        return content.text()

    log.warning("Cannot parse %s document %r.", content_type, content.source)
    return None
