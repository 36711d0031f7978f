"""Exception hierarchy for ollama-chat.

Everything raised on purpose by this package derives from OllamaChatError, so
the session loop can tell its own failures apart from programming errors.
"""

from __future__ import annotations


class OllamaChatError(Exception):
    """Base class for all ollama-chat errors."""


class ConfigError(OllamaChatError, ValueError):
    """Invalid configuration or an invalid value for a switch/selector."""


class InferenceError(OllamaChatError):
    """The inference server rejected or failed a request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ServerTimeoutError(InferenceError):
    """The inference server did not answer in time. The turn may be retried."""


class ServerConnectionError(InferenceError):
    """The inference server could not be reached. The turn may be retried."""


class ModelNotFoundError(InferenceError):
    """A model is neither available locally nor pullable from the registry."""


class FetchError(OllamaChatError):
    """A content source could not be fetched."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"Cannot fetch source {source!r}: {reason}")
        self.source = source
        self.reason = reason


class ParseError(OllamaChatError):
    """Fetched content cannot be turned into text: unsupported type or broken data."""

    def __init__(self, content_type: str | None, reason: str | None = None) -> None:
        message = f"Cannot parse {content_type or 'unknown'} document"
        super().__init__(f"{message}: {reason}" if reason else f"{message}.")
        self.content_type = content_type
        self.reason = reason


class ConversationFileError(OllamaChatError):
    """Saving or loading a conversation file failed."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(message)
        self.path = path


class FileMissingError(ConversationFileError):
    """The conversation file to load does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(path, f"File {path!r} doesn't exist. Choose another filename.")


class FileExistsConflictError(ConversationFileError):
    """The target file exists and overwriting was not confirmed."""

    def __init__(self, path: str) -> None:
        super().__init__(path, f"File {path!r} already exists.")


class InvalidConversationError(ConversationFileError):
    """The conversation file does not contain a valid message list."""


class SocketError(OllamaChatError):
    """Local IPC socket failures (path in use, server not listening)."""
