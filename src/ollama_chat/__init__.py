"""ollama_chat: terminal chat with an Ollama server, documents and retrieval."""

__version__ = "0.1.0"

# Public API
from ollama_chat.config import Config, load_config
from ollama_chat.core import ChatResponse, Message, OllamaClient, Role, Switches
from ollama_chat.documents import DocumentPolicy, Fetcher, MemoryStore, RetrievalStore
from ollama_chat.session import MessageList, Session

__all__ = [
    "__version__",
    # Config
    "Config",
    "load_config",
    # Core
    "ChatResponse",
    "Message",
    "OllamaClient",
    "Role",
    "Switches",
    # Documents
    "DocumentPolicy",
    "Fetcher",
    "MemoryStore",
    "RetrievalStore",
    # Session
    "MessageList",
    "Session",
]
