"""CLI interface for the chat relay and terminal client."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import httpx

from ollama_chat.client import ChatSession, StreamState
from ollama_chat.config import AppConfig
from ollama_chat.prompts import SYSTEM_PROMPTS, resolve_system_prompt
from ollama_chat.storage import ChatStorage, FileStore

_ICONS = {"success": "✅", "info": "ℹ️ ", "warning": "⚠️ ", "error": "❌"}

_HELP = (
    "Commands: /retry, /clear, /export PATH, /model NAME, "
    f"/prompt {{{','.join(SYSTEM_PROMPTS)}}}, quit"
)


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def serve(config: AppConfig | None = None) -> None:
    """Run the relay HTTP server with uvicorn."""
    import uvicorn

    cfg = config or AppConfig()
    print(f"\n🚀 Relay listening on http://{cfg.relay.host}:{cfg.relay.port}")
    print(f"🤖 Forwarding to Ollama at {cfg.ollama.base_url}\n")
    uvicorn.run("ollama_chat.web:app", host=cfg.relay.host, port=cfg.relay.port)


def list_models(config: AppConfig | None = None) -> int:
    """Print the models the relay reports. Returns a process exit code."""
    cfg = config or AppConfig()
    try:
        resp = httpx.get(f"{cfg.client.relay_url}/models", timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Cannot reach the relay at {cfg.client.relay_url}: {exc}")
        return 1

    if resp.is_error:
        print("The relay could not reach Ollama. Is 'ollama serve' running?")
        return 1
    try:
        models = resp.json().get("models", [])
    except ValueError:
        print(f"Unexpected response from the relay at {cfg.client.relay_url}")
        return 1
    if not models:
        print("No models installed. Pull one with 'ollama pull <model>'.")
        return 0

    for entry in models:
        size_gb = entry.get("size", 0) / 1024**3
        print(f"  {entry['name']:<30} {size_gb:6.1f} GB  {entry.get('modified_at', '')}")
    return 0


def _notify(level: str, message: str) -> None:
    print(f"\n{_ICONS.get(level, '')} {message}")


class _StreamPrinter:
    """Prints the live streaming view incrementally."""

    def __init__(self) -> None:
        self._printed = 0

    def __call__(self, session: ChatSession) -> None:
        if session.state is StreamState.STREAMING:
            text = session.streaming_content
            if len(text) > self._printed:
                print(text[self._printed :], end="", flush=True)
                self._printed = len(text)
        elif session.state is StreamState.IDLE:
            self._printed = 0


async def _generate(session: ChatSession, text: str | None) -> None:
    """Run one generation; Ctrl+C cancels it instead of exiting."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, session.cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False

    print("\nAssistant:")
    try:
        if text is None:
            outcome = await session.retry_last()
        else:
            outcome = await session.send(text)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)

    if outcome is StreamState.COMPLETED and session.messages[-1].stats is not None:
        stats = session.messages[-1].stats
        print(f"\n[{stats.total_tokens} tokens, {stats.tokens_per_second} tokens/sec]")
    print()


def _handle_command(session: ChatSession, command: str) -> bool:
    """Apply a slash command. Returns True if it was recognised."""
    name, _, arg = command.partition(" ")
    arg = arg.strip()

    if name == "/clear":
        session.clear()
    elif name == "/export" and arg:
        Path(arg).write_text(session.export_text(), encoding="utf-8")
        print(f"💾 Exported {len(session.messages)} messages to {arg}")
    elif name == "/model" and arg:
        session.model = arg
        print(f"🤖 Using model: {arg}")
    elif name == "/prompt" and arg:
        try:
            session.system_prompt = resolve_system_prompt(arg)
        except KeyError as exc:
            print(exc.args[0])
        else:
            print(f"📝 System prompt: {arg}")
    else:
        return False
    return True


async def _chat_loop(session: ChatSession) -> None:
    while True:
        try:
            query = (await asyncio.to_thread(input, "You: ")).strip()
        except EOFError:
            print("\nGoodbye!")
            return

        if not query:
            continue
        if query.lower() in ("quit", "exit", "q"):
            print("Goodbye!")
            return
        if query == "/retry":
            if session.can_retry:
                await _generate(session, None)
            else:
                print("Nothing to retry.")
            continue
        if query.startswith("/"):
            if not _handle_command(session, query):
                print(_HELP)
            continue

        await _generate(session, query)


async def _run_chat(cfg: AppConfig, model: str, prompt_key: str) -> None:
    storage = ChatStorage(
        FileStore(cfg.client.storage_dir, cfg.client.storage_max_bytes),
        max_size=cfg.client.storage_max_bytes,
    )
    timeout = httpx.Timeout(None, connect=cfg.ollama.connect_timeout)
    async with httpx.AsyncClient(base_url=cfg.client.relay_url, timeout=timeout) as http_client:
        session = ChatSession(
            http_client,
            model,
            config=cfg.client,
            system_prompt=resolve_system_prompt(prompt_key),
            storage=storage,
            notify=_notify,
            on_update=_StreamPrinter(),
        )
        session.restore()

        print(f"\n💬 Ollama Chat via {cfg.client.relay_url}")
        print(f"🤖 Using model: {session.model}")
        print("\nType your message (Ctrl+C cancels a response, 'quit' exits).")
        print(_HELP + "\n")
        await _chat_loop(session)


def chat(model: str | None = None, prompt_key: str = "default", config: AppConfig | None = None) -> None:
    """Start an interactive chat session against a running relay.

    Args:
        model: Model name. Defaults to the configured default model.
        prompt_key: System prompt preset name.
        config: Application configuration. Uses defaults if not provided.
    """
    cfg = config or AppConfig()
    try:
        asyncio.run(_run_chat(cfg, model or cfg.ollama.default_model, prompt_key))
    except KeyboardInterrupt:
        print("\nGoodbye!")


def main() -> None:
    """CLI entry point — parse arguments and dispatch to a subcommand."""
    parser = argparse.ArgumentParser(
        description="Ollama Chat — streaming chat relay for a local Ollama server",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Run the relay HTTP server")

    chat_p = subparsers.add_parser("chat", help="Start interactive chat")
    chat_p.add_argument("--model", type=str, default=None, help="Ollama model name")
    chat_p.add_argument(
        "--prompt",
        choices=sorted(SYSTEM_PROMPTS),
        default="default",
        help="System prompt preset",
    )

    subparsers.add_parser("models", help="List models available through the relay")

    args = parser.parse_args()
    _setup_logging(args.verbose)

    if args.command == "serve":
        serve()
    elif args.command == "chat":
        chat(args.model, args.prompt)
    elif args.command == "models":
        sys.exit(list_models())
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
