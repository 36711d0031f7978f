"""Interactive chat session."""

from ollama_chat.session.chat import Session, StartupOptions
from ollama_chat.session.commands import ChatTurn, CommandHandler
from ollama_chat.session.follow_chat import FollowChat
from ollama_chat.session.message_list import MessageList
from ollama_chat.session.server_socket import PendingSlot, ServerSocket, send_to_server_socket
from ollama_chat.session.terminal import Terminal

__all__ = [
    "ChatTurn",
    "CommandHandler",
    "FollowChat",
    "MessageList",
    "PendingSlot",
    "ServerSocket",
    "Session",
    "StartupOptions",
    "Terminal",
    "send_to_server_socket",
]
