"""Stream relay — bridges one chat request to one upstream Ollama stream."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Sequence

import httpx

from ollama_chat.errors import MidStreamError, OllamaUnavailableError, UpstreamHTTPError
from ollama_chat.events import decode_event
from ollama_chat.framing import aiter_lines
from ollama_chat.models import ConversationTurn, UpstreamFailure
from ollama_chat.reframer import translate

logger = logging.getLogger(__name__)


def build_upstream_messages(
    turns: Sequence[ConversationTurn],
    system_prompt: str | None = None,
) -> list[dict]:
    """Return the ``messages`` array for the upstream request.

    A non-empty *system_prompt* becomes a leading ``system`` turn. The
    result is a new list; *turns* is left untouched.
    """
    messages = [turn.to_upstream() for turn in turns]
    if system_prompt:
        messages.insert(0, {"role": "system", "content": system_prompt})
    return messages


def _error_text(body: bytes) -> str:
    """Extract Ollama's ``{"error": ...}`` message from a failure body."""
    try:
        data = json.loads(body)
    except ValueError:
        return body.decode("utf-8", errors="replace").strip()
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return ""


async def open_upstream(
    client: httpx.AsyncClient,
    base_url: str,
    model: str,
    messages: list[dict],
) -> httpx.Response:
    """Send the streaming chat request and wait for the response headers.

    Raises:
        OllamaUnavailableError: The server could not be reached.
        UpstreamHTTPError: The server answered with a non-2xx status.
            The response is closed before raising.
    """
    payload = {"model": model, "messages": messages, "stream": True}
    request = client.build_request("POST", f"{base_url}/api/chat", json=payload)

    try:
        response = await client.send(request, stream=True)
    except httpx.TimeoutException as exc:
        raise OllamaUnavailableError("Timed out connecting to Ollama", details=str(exc)) from exc
    except httpx.RequestError as exc:
        raise OllamaUnavailableError(
            "Failed to communicate with Ollama", details=str(exc) or repr(exc)
        ) from exc

    if response.is_error:
        try:
            body = await response.aread()
        finally:
            await response.aclose()
        detail = _error_text(body) or response.reason_phrase
        raise UpstreamHTTPError(
            f"Ollama API error: {detail}",
            status_code=response.status_code,
        )

    logger.debug("Upstream stream opened for model %s", model)
    return response


async def relay_frames(
    response: httpx.Response,
    max_line_length: int | None = None,
) -> AsyncIterator[bytes]:
    """Translate an open upstream response into encoded relay frames.

    Each content delta is yielded as soon as its line is complete. The
    stats frame ends the stream. The upstream response is closed however
    the generator finishes, including when the downstream client
    disconnects and the generator is cancelled or closed.

    Raises:
        MidStreamError: Upstream sent an in-band ``error`` record.
        httpx.HTTPError: The upstream connection failed mid-stream.

    Both are raised so the downstream response is aborted rather than
    ended cleanly.
    """
    frames = 0
    try:
        async for line in aiter_lines(response.aiter_bytes(), max_line_length):
            event = decode_event(line)
            if event is None:
                continue
            if isinstance(event, UpstreamFailure):
                raise MidStreamError(f"Ollama reported an error: {event.message}")
            frame = translate(event)
            if frame is None:
                continue
            yield frame.to_line()
            frames += 1
            if frame.stats is not None:
                logger.info(
                    "Generation complete (%d frames, %s tokens/s)",
                    frames,
                    frame.stats.tokens_per_second,
                )
                return
        logger.warning("Upstream closed without a completion record after %d frames", frames)
    except asyncio.CancelledError:
        logger.info("Client disconnected after %d frames; closing upstream", frames)
        raise
    except MidStreamError as exc:
        logger.error("Upstream failed after %d frames: %s", frames, exc.message)
        raise
    except httpx.HTTPError as exc:
        logger.error("Upstream stream failed after %d frames: %s", frames, exc)
        raise
    finally:
        await response.aclose()
