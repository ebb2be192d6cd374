"""Re-framer — translates upstream events into relay frames."""

from collections.abc import Iterable, Iterator

from ollama_chat.models import Completion, ContentDelta, GenerationStats, RelayFrame, UpstreamEvent

_NS_PER_SECOND = 1e9


def _rate(count: int | None, duration_ns: int | None) -> float | None:
    if count is None or not duration_ns:
        return None
    return round(count / (duration_ns / _NS_PER_SECOND), 1)


def _seconds(duration_ns: int | None) -> float | None:
    if not duration_ns:
        return None
    return duration_ns / _NS_PER_SECOND


def compute_stats(completion: Completion) -> GenerationStats:
    """Derive throughput and timing figures from the upstream counters.

    Rates are ``count / seconds`` rounded to one decimal place. A rate or
    time whose duration is zero or missing is left unset rather than
    becoming NaN or infinity.
    """
    return GenerationStats(
        tokens_per_second=_rate(completion.eval_count, completion.eval_duration),
        prompt_tokens_per_second=_rate(
            completion.prompt_eval_count, completion.prompt_eval_duration
        ),
        total_tokens=completion.eval_count,
        prompt_tokens=completion.prompt_eval_count,
        generation_time_seconds=_seconds(completion.eval_duration),
        total_time_seconds=_seconds(completion.total_duration),
    )


def translate(event: UpstreamEvent) -> RelayFrame | None:
    """Map a single event to the frame it produces, if any."""
    if isinstance(event, ContentDelta):
        return RelayFrame(content=event.text)
    if isinstance(event, Completion):
        return RelayFrame(content="", stats=compute_stats(event))
    return None


def reframe(events: Iterable[UpstreamEvent]) -> Iterator[RelayFrame]:
    """Translate an ordered event sequence for one session.

    Stops after the first completion, so the stats frame is emitted at
    most once and is always the last frame.
    """
    for event in events:
        frame = translate(event)
        if frame is None:
            continue
        yield frame
        if frame.stats is not None:
            return
