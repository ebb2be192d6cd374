"""Event decoder — classifies one upstream JSON line."""

import json
import logging

from ollama_chat.models import (
    Completion,
    ContentDelta,
    Unrecognized,
    UpstreamEvent,
    UpstreamFailure,
)

logger = logging.getLogger(__name__)

_COUNTER_FIELDS = (
    "eval_count",
    "eval_duration",
    "prompt_eval_count",
    "prompt_eval_duration",
    "total_duration",
)


def _coerce_counter(value: object) -> int | None:
    """Return *value* as a non-negative int, or None if it is not a usable number.

    ``bool`` is rejected explicitly because it is a subclass of ``int``.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value in (float("inf"), float("-inf")):  # NaN / inf
        return None
    if value < 0:
        return None
    return int(value)


def decode_event(line: str) -> UpstreamEvent | None:
    """Parse one line of the upstream stream.

    Args:
        line: A single complete line, without its newline.

    Returns:
        ``ContentDelta`` when the object carries non-empty
        ``message.content``, ``Completion`` when ``done`` is ``true``,
        ``UpstreamFailure`` when it carries an ``error``,
        ``Unrecognized`` for any other JSON object, and ``None`` when the
        line is not a JSON object at all.
    """
    try:
        data = json.loads(line)
    except ValueError:
        logger.debug("Skipping non-JSON line: %.80r", line)
        return None

    if not isinstance(data, dict):
        logger.debug("Skipping non-object JSON line: %.80r", line)
        return None

    error = data.get("error")
    if error:
        return UpstreamFailure(message=str(error))

    message = data.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str) and content:
            return ContentDelta(text=content)

    if data.get("done") is True:
        return Completion(**{name: _coerce_counter(data.get(name)) for name in _COUNTER_FIELDS})

    return Unrecognized()
