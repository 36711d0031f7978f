"""CLI entry points for ollama-chat."""

import sys


def main() -> int:
    """Main entry point for the ollama-chat CLI."""
    from ollama_chat.cli import run_cli

    return run_cli(sys.argv[1:])


def send_main() -> int:
    """Entry point for ollama-chat-send."""
    from ollama_chat.cli import run_send

    return run_send(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
