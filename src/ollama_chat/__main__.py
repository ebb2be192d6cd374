"""Entry point for ``python -m ollama_chat``."""

from ollama_chat.cli import main

main()
