"""Chat client — consumes the relay stream and owns the conversation state."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import httpx
from pydantic import ValidationError

from ollama_chat.cancellation import CancellationToken, StreamCancelled, race
from ollama_chat.config import ClientConfig
from ollama_chat.errors import (
    ChatError,
    EmptyCompletionError,
    OllamaUnavailableError,
    RequestTimeoutError,
    SessionBusyError,
    UpstreamHTTPError,
    classify_error,
)
from ollama_chat.framing import LineFramer
from ollama_chat.models import ConversationTurn, GenerationStats, RelayFrame
from ollama_chat.storage import ChatStorage

logger = logging.getLogger(__name__)

# (level, message); level is one of "success", "info", "warning", "error".
Notifier = Callable[[str, str], None]

# Failures whose details carry a remediation hint worth showing the user.
_HINTED_ERRORS = (OllamaUnavailableError, UpstreamHTTPError, RequestTimeoutError)


class StreamState(Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class StreamSession:
    """Private state of one in-flight generation."""

    token: CancellationToken = field(default_factory=CancellationToken)
    content: str = ""
    stats: GenerationStats | None = None
    started: bool = False


def _ignore(level: str, message: str) -> None:
    pass


class ChatSession:
    """One conversation with a model, streamed through the relay.

    The session is the only place that mutates ``messages`` and the only
    place that emits user-facing notifications. While a generation is in
    flight, ``streaming_content`` and ``current_stats`` hold the live,
    not-yet-final view.

    Args:
        http_client: Client whose ``base_url`` points at the relay.
        model: Model identifier sent with each request.
        config: Client settings. Uses defaults if not provided.
        system_prompt: Optional system prompt sent with each request.
        storage: Optional history persistence.
        notify: Receives ``(level, message)`` notifications.
        on_update: Called after every change to the live view or state.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        model: str,
        *,
        config: ClientConfig | None = None,
        system_prompt: str | None = None,
        storage: ChatStorage | None = None,
        notify: Notifier | None = None,
        on_update: Callable[["ChatSession"], None] | None = None,
    ) -> None:
        self._http = http_client
        self.model = model
        self.config = config or ClientConfig()
        self.system_prompt = system_prompt
        self.storage = storage
        self._notify = notify or _ignore
        self._on_update = on_update

        self.messages: list[ConversationTurn] = []
        self.state = StreamState.IDLE
        self.streaming_content = ""
        self.current_stats: GenerationStats | None = None
        self.last_failed_message: str | None = None
        self._retry_count = 0
        self._active: StreamSession | None = None

    # ---------- Status ----------

    @property
    def busy(self) -> bool:
        return self.state is not StreamState.IDLE

    @property
    def can_retry(self) -> bool:
        return (
            self.last_failed_message is not None
            and not self.busy
            and self._retry_count < self.config.max_retries
        )

    def _changed(self) -> None:
        if self._on_update is not None:
            self._on_update(self)

    def _set_state(self, state: StreamState) -> None:
        self.state = state
        self._changed()

    # ---------- Sending ----------

    async def send(self, text: str) -> StreamState:
        """Send a user message and stream the reply.

        Returns:
            The terminal state reached: ``COMPLETED``, ``CANCELLED`` or
            ``FAILED``. Blank input is ignored and returns ``IDLE``.

        Raises:
            SessionBusyError: A generation is already in flight.
        """
        return await self._send(text, retry=False)

    async def retry_last(self) -> StreamState | None:
        """Resend the last failed message without adding a new user turn."""
        if not self.can_retry:
            return None
        self._retry_count += 1
        self._notify(
            "info",
            f"Retrying message (attempt {self._retry_count}/{self.config.max_retries})...",
        )
        if self.messages and self.messages[-1].error is not None:
            self.messages.pop()
        return await self._send(self.last_failed_message, retry=True)

    def cancel(self) -> bool:
        """Cancel the in-flight generation. Returns False if there is none."""
        if self._active is None:
            return False
        self._active.token.cancel()
        return True

    async def _send(self, text: str, retry: bool) -> StreamState:
        if self.busy:
            raise SessionBusyError("A response is already being generated")
        if not text or not text.strip():
            return StreamState.IDLE

        if not retry:
            self.messages.append(ConversationTurn(role="user", content=text))
        conversation = list(self.messages)

        session = StreamSession()
        self._active = session
        self.streaming_content = ""
        self.current_stats = None
        self.last_failed_message = None
        self._set_state(StreamState.SENDING)

        watchdog = None
        if self.config.slow_response_seconds > 0:
            watchdog = asyncio.create_task(self._watch_for_slow_response(session))

        outcome = None
        try:
            await self._stream(session, conversation)
        except StreamCancelled:
            outcome = self._finish_cancelled(session)
        except (ChatError, httpx.HTTPError) as exc:
            outcome = self._finish_failed(session, text, classify_error(exc))
        else:
            outcome = self._finish_completed(session)
        finally:
            if watchdog is not None:
                watchdog.cancel()
            self._active = None
            if outcome is None:
                self._clear_live_view()
                self.state = StreamState.IDLE

        self._set_state(outcome)
        self._set_state(StreamState.IDLE)
        return outcome

    async def _watch_for_slow_response(self, session: StreamSession) -> None:
        await asyncio.sleep(self.config.slow_response_seconds)
        if not session.content and not session.token.cancelled:
            self._notify("warning", "Response is taking longer than expected...")

    async def _stream(self, session: StreamSession, conversation: list[ConversationTurn]) -> None:
        payload: dict = {
            "messages": [turn.to_dict() for turn in conversation],
            "model": self.model,
        }
        if self.system_prompt:
            payload["systemPrompt"] = self.system_prompt

        request = self._http.build_request("POST", "/chat", json=payload)
        try:
            response = await race(self._http.send(request, stream=True), session.token)
        except httpx.ConnectError as exc:
            raise OllamaUnavailableError(
                "Cannot connect to the chat relay",
                details=f"Is the relay running at {self._http.base_url}? "
                "Start it with 'python -m ollama_chat serve'.",
            ) from exc

        try:
            if response.is_error:
                await response.aread()
                raise self._error_from_response(response)

            framer = LineFramer()
            chunks = response.aiter_bytes().__aiter__()
            while True:
                try:
                    chunk = await race(chunks.__anext__(), session.token)
                except StopAsyncIteration:
                    break
                if not session.started:
                    session.started = True
                    self._set_state(StreamState.STREAMING)
                for line in framer.feed(chunk):
                    self._apply_line(session, line)
            for line in framer.flush():
                self._apply_line(session, line)
        finally:
            await response.aclose()

        session.token.raise_if_cancelled()
        if not session.content:
            raise EmptyCompletionError("No content received from the model")

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ChatError:
        try:
            message = response.json().get("error")
        except (ValueError, AttributeError):
            message = None
        message = message or f"HTTP {response.status_code}: {response.reason_phrase}"
        if response.status_code == 503:
            return OllamaUnavailableError(
                message,
                details="Make sure Ollama is running locally. "
                "Try running 'ollama serve' in your terminal.",
            )
        return UpstreamHTTPError(message, status_code=response.status_code)

    def _apply_line(self, session: StreamSession, line: str) -> None:
        try:
            frame = RelayFrame.model_validate_json(line)
        except ValidationError:
            logger.debug("Skipping malformed relay frame: %.80r", line)
            return

        if frame.content:
            session.content += frame.content
            self.streaming_content = session.content
        if frame.stats is not None:
            session.stats = frame.stats
            self.current_stats = frame.stats
        self._changed()

    # ---------- Finalizing ----------

    def _clear_live_view(self) -> None:
        self.streaming_content = ""
        self.current_stats = None

    def _finish_completed(self, session: StreamSession) -> StreamState:
        self.messages.append(
            ConversationTurn(
                role="assistant",
                content=session.content,
                model_id=self.model,
                stats=session.stats,
            )
        )
        self._clear_live_view()
        self._retry_count = 0
        self._persist()
        return StreamState.COMPLETED

    def _finish_cancelled(self, session: StreamSession) -> StreamState:
        logger.info("Generation cancelled after %d characters", len(session.content))
        self.messages.append(
            ConversationTurn(
                role="assistant",
                content=session.content,
                model_id=self.model,
                stats=session.stats,
                interrupted=True,
            )
        )
        self._clear_live_view()
        self._persist()
        self._notify("info", "Generation cancelled")
        return StreamState.CANCELLED

    def _finish_failed(self, session: StreamSession, text: str, error: ChatError) -> StreamState:
        logger.warning("Generation failed [%s]: %s", error.code, error.message)
        if error.details:
            logger.debug("Error details: %s", error.details)

        self.last_failed_message = text
        self._clear_live_view()

        if session.started or isinstance(error, EmptyCompletionError):
            self.messages.append(
                ConversationTurn(
                    role="assistant",
                    content=session.content or f"⚠️ Error: {error.message}",
                    model_id=self.model,
                    error=error.message,
                )
            )
            self._persist()

        message = error.message
        if error.details and isinstance(error, _HINTED_ERRORS):
            message = f"{error.message}\n{error.details}"
        self._notify("error", message)
        return StreamState.FAILED

    # ---------- History ----------

    def _persist(self) -> None:
        if self.storage is None:
            return
        if not self.storage.save(self.messages, self.model):
            self._notify("warning", "Warning: Chat history could not be saved")
        elif self.storage.is_near_limit():
            self._notify(
                "warning",
                "Chat history is getting large. Consider exporting and clearing old messages.",
            )

    def restore(self) -> int:
        """Load persisted history. Returns the number of restored turns."""
        if self.storage is None:
            return 0
        stored = self.storage.load()
        if stored is None or not stored.messages:
            return 0
        self.messages = list(stored.messages)
        if stored.model:
            self.model = stored.model
        self._notify("info", f"Restored {len(self.messages)} messages")
        return len(self.messages)

    def edit_message(self, index: int, content: str) -> bool:
        if not 0 <= index < len(self.messages):
            return False
        self.messages[index] = self.messages[index].model_copy(update={"content": content})
        self._persist()
        self._notify("success", "Message edited")
        return True

    def delete_message(self, index: int) -> bool:
        if not 0 <= index < len(self.messages):
            return False
        del self.messages[index]
        self._persist()
        self._notify("success", "Message deleted")
        return True

    def clear(self) -> None:
        self.messages = []
        self._clear_live_view()
        self.last_failed_message = None
        self._retry_count = 0
        if self.storage is not None:
            self.storage.clear()
        self._notify("success", "Chat cleared")

    def export_text(self) -> str:
        """Render the conversation as plain text, one block per turn."""
        blocks = []
        for turn in self.messages:
            block = f"{turn.role.upper()}: {turn.content}"
            if turn.stats is not None:
                block += (
                    f"\n[Stats: {turn.stats.total_tokens} tokens, "
                    f"{turn.stats.tokens_per_second} tokens/sec]"
                )
            blocks.append(block)
        return "\n\n".join(blocks)
