"""Fetching, parsing, embedding and retrieval of referenced documents."""

from ollama_chat.documents.fetcher import FetchedContent, Fetcher, MemoryCache, RedisCache
from ollama_chat.documents.parser import parse_content
from ollama_chat.documents.policy import DocumentPolicy, Links, ResolvedInput
from ollama_chat.documents.references import Reference, ScanResult, scan
from ollama_chat.documents.store import MemoryStore, Record, RetrievalStore, SQLiteStore, make_store
from ollama_chat.documents.websearch import WebSearch

__all__ = [
    "DocumentPolicy",
    "FetchedContent",
    "Fetcher",
    "Links",
    "MemoryCache",
    "MemoryStore",
    "Record",
    "RedisCache",
    "Reference",
    "ResolvedInput",
    "RetrievalStore",
    "SQLiteStore",
    "ScanResult",
    "WebSearch",
    "make_store",
    "parse_content",
    "scan",
]
