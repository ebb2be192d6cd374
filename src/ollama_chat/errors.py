"""Error taxonomy shared by the relay and the chat client."""

import httpx


class ChatError(Exception):
    """Base class for failures surfaced to the user.

    Attributes:
        message: Short, user-facing description.
        code: Stable machine-readable identifier.
        details: Optional remediation hint or diagnostic text.
    """

    code = "UNKNOWN"

    def __init__(self, message: str, details: str | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code


class OllamaUnavailableError(ChatError):
    """The inference server (or the relay) could not be reached."""

    code = "CONNECTION_REFUSED"


class UpstreamHTTPError(ChatError):
    """The server was reachable but answered with a failure status."""

    code = "UPSTREAM_HTTP"

    def __init__(
        self,
        message: str,
        status_code: int,
        details: str | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, details, code)
        self.status_code = status_code


class RequestTimeoutError(ChatError):
    code = "TIMEOUT"


class EmptyCompletionError(ChatError):
    """The stream ended normally without producing any content."""

    code = "EMPTY_COMPLETION"


class MidStreamError(ChatError):
    """The connection failed after streaming had started."""

    code = "MID_STREAM"


class SessionBusyError(ChatError):
    """A generation is already in flight for this conversation."""

    code = "BUSY"


class StorageError(ChatError):
    """Persisting chat history failed. Always non-fatal for the chat flow."""

    code = "STORAGE"


class StorageQuotaExceeded(StorageError):
    code = "STORAGE_QUOTA"


_CONNECTION_HINT = (
    "Make sure Ollama is running locally. Try running 'ollama serve' in your terminal."
)
_MODEL_HINT = "The selected model is not installed. Pull it using the 'ollama pull' command."
_TIMEOUT_HINT = "The model is taking too long to respond. Try again or use a smaller model."


def classify_error(exc: BaseException) -> ChatError:
    """Map an arbitrary exception onto the chat error taxonomy."""
    if isinstance(exc, ChatError):
        lowered = exc.message.lower()
        if "model" not in lowered or "not found" not in lowered:
            return exc
        details = exc.details or _MODEL_HINT
        if isinstance(exc, UpstreamHTTPError):
            return UpstreamHTTPError(
                exc.message, exc.status_code, details=details, code="MODEL_NOT_FOUND"
            )
        return ChatError(exc.message, details=details, code="MODEL_NOT_FOUND")

    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError("Request timed out", details=_TIMEOUT_HINT)

    if isinstance(exc, httpx.ConnectError):
        return OllamaUnavailableError("Cannot connect to Ollama", details=_CONNECTION_HINT)

    if isinstance(exc, httpx.HTTPStatusError):
        return UpstreamHTTPError(
            f"HTTP {exc.response.status_code}: {exc.response.reason_phrase}",
            status_code=exc.response.status_code,
        )

    if isinstance(exc, httpx.TransportError):
        return MidStreamError("Connection lost while streaming", details=str(exc) or None)

    text = str(exc)
    lowered = text.lower()
    if "connection refused" in lowered or "econnrefused" in lowered:
        return OllamaUnavailableError("Cannot connect to Ollama", details=_CONNECTION_HINT)
    if "model not found" in lowered:
        return ChatError("Model not found", details=_MODEL_HINT, code="MODEL_NOT_FOUND")
    if "timeout" in lowered or "timed out" in lowered:
        return RequestTimeoutError("Request timed out", details=_TIMEOUT_HINT)

    return ChatError(text or "An unexpected error occurred", details=repr(exc))
