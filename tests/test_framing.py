"""Tests for the framing module."""

import asyncio

from ollama_chat.framing import LineFramer, aiter_lines

SAMPLE = (
    '{"message":{"content":"Grüße"}}\n'
    '{"message":{"content":"日本語"}}\n'
    "\n"
    '{"message":{"content":"🙂 ok"}}\n'
    '{"done":true,"eval_count":3}'
).encode("utf-8")


def _expected(data: bytes) -> list[str]:
    return [s for s in (part.strip() for part in data.decode("utf-8").split("\n")) if s]


def _frame(chunks: list[bytes], max_line_length: int | None = None) -> list[str]:
    framer = LineFramer(max_line_length)
    lines: list[str] = []
    for chunk in chunks:
        lines.extend(framer.feed(chunk))
    lines.extend(framer.flush())
    return lines


class TestLineFramer:
    def test_single_chunk_with_multiple_lines(self) -> None:
        framer = LineFramer()
        assert framer.feed(b"one\ntwo\nthree") == ["one", "two"]
        assert framer.pending == "three"

    def test_fragment_is_prefixed_onto_next_chunk(self) -> None:
        framer = LineFramer()
        assert framer.feed(b'{"message":{"con') == []
        assert framer.feed(b'tent":"hi"}}\n') == ['{"message":{"content":"hi"}}']

    def test_blank_and_whitespace_lines_are_skipped(self) -> None:
        framer = LineFramer()
        assert framer.feed(b"a\n\n   \r\nb\n") == ["a", "b"]

    def test_lines_are_stripped(self) -> None:
        framer = LineFramer()
        assert framer.feed(b"  padded \r\n") == ["padded"]

    def test_multibyte_character_split_across_chunks(self) -> None:
        encoded = "é\n".encode("utf-8")
        framer = LineFramer()
        assert framer.feed(encoded[:1]) == []
        assert framer.feed(encoded[1:]) == ["é"]

    def test_no_replacement_characters_for_split_emoji(self) -> None:
        encoded = "🙂\n".encode("utf-8")
        lines = _frame([encoded[i : i + 1] for i in range(len(encoded))])
        assert lines == ["🙂"]
        assert "�" not in lines[0]

    def test_every_two_way_split_matches_unbroken_text(self) -> None:
        expected = _expected(SAMPLE)
        for i in range(len(SAMPLE) + 1):
            assert _frame([SAMPLE[:i], SAMPLE[i:]]) == expected, f"split at {i}"

    def test_byte_at_a_time_matches_unbroken_text(self) -> None:
        chunks = [SAMPLE[i : i + 1] for i in range(len(SAMPLE))]
        assert _frame(chunks) == _expected(SAMPLE)

    def test_accepts_text_chunks(self) -> None:
        framer = LineFramer()
        assert framer.feed("a\nb") == ["a"]
        assert framer.flush() == ["b"]


class TestFlush:
    def test_emits_unterminated_last_line(self) -> None:
        framer = LineFramer()
        framer.feed(b'{"done":true}')
        assert framer.flush() == ['{"done":true}']

    def test_empty_when_nothing_pending(self) -> None:
        framer = LineFramer()
        framer.feed(b"line\n")
        assert framer.flush() == []

    def test_whitespace_only_fragment_is_dropped(self) -> None:
        framer = LineFramer()
        framer.feed(b"line\n   ")
        assert framer.flush() == []

    def test_resets_pending(self) -> None:
        framer = LineFramer()
        framer.feed(b"tail")
        framer.flush()
        assert framer.pending == ""


class TestMaxLineLength:
    def test_oversized_fragment_is_discarded(self) -> None:
        framer = LineFramer(max_line_length=10)
        assert framer.feed(b"x" * 20) == []
        assert framer.pending == ""

    def test_resumes_after_next_newline(self) -> None:
        framer = LineFramer(max_line_length=10)
        framer.feed(b"x" * 20)
        assert framer.feed(b"xxxx") == []
        assert framer.feed(b"xx\nok\n") == ["ok"]

    def test_complete_lines_before_oversized_fragment_survive(self) -> None:
        framer = LineFramer(max_line_length=10)
        assert framer.feed(b"first\n" + b"y" * 20) == ["first"]

    def test_discarded_line_is_not_emitted_on_flush(self) -> None:
        framer = LineFramer(max_line_length=5)
        framer.feed(b"z" * 10)
        assert framer.flush() == []

    def test_fragment_within_limit_is_kept(self) -> None:
        framer = LineFramer(max_line_length=10)
        framer.feed(b"short")
        assert framer.pending == "short"


class TestAiterLines:
    def test_yields_lines_then_unterminated_tail(self) -> None:
        async def chunks():
            yield b"a\nb"
            yield b"c\nd"

        async def collect():
            return [line async for line in aiter_lines(chunks())]

        assert asyncio.run(collect()) == ["a", "bc", "d"]
