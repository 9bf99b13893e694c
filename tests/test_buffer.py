"""Tests for StreamBuffer, the per-turn delta accumulator."""

import pytest

from streamrelay.streaming.buffer import StreamBuffer
from streamrelay.streaming.errors import InvariantError


class TestAppend:
    def test_empty_buffer(self):
        buf = StreamBuffer()
        assert buf.full_text() == ""
        assert buf.pending_suffix() == ""
        assert buf.flushed_text() == ""
        assert len(buf) == 0

    @pytest.mark.parametrize(
        "deltas",
        [
            ["Hello", ", ", "world", ". ", "Done."],
            ["a"] * 120,
            ["", "x", "", "yz", ""],
            ["multi\nline", "\n", "text with émoji 🎉"],
        ],
    )
    def test_full_text_is_concatenation(self, deltas):
        """No loss, no reordering, no duplication."""
        buf = StreamBuffer()
        for i, delta in enumerate(deltas):
            buf.append(delta)
            if i % 3 == 0:
                buf.consume_pending()
        assert buf.full_text() == "".join(deltas)
        assert len(buf) == len("".join(deltas))

    def test_empty_delta_is_noop(self):
        buf = StreamBuffer()
        buf.append("")
        assert buf.full_text() == ""


class TestConsumePending:
    def test_partial_consume_keeps_remainder(self):
        buf = StreamBuffer()
        buf.append("Hello, world")
        chunk = buf.consume_pending(7)
        assert chunk == "Hello, "
        assert buf.flushed_text() == "Hello, "
        assert buf.pending_suffix() == "world"
        assert buf.flushed_length == 7

    def test_none_consumes_everything(self):
        buf = StreamBuffer()
        buf.append("abc")
        assert buf.consume_pending(None) == "abc"
        assert buf.pending_suffix() == ""
        assert buf.flushed_text() == "abc"

    def test_zero_offset(self):
        buf = StreamBuffer()
        buf.append("abc")
        assert buf.consume_pending(0) == ""
        assert buf.pending_suffix() == "abc"

    def test_pending_grows_after_consume(self):
        buf = StreamBuffer()
        buf.append("one. ")
        buf.consume_pending()
        buf.append("two")
        assert buf.pending_suffix() == "two"
        assert buf.full_text() == "one. two"

    def test_offset_past_pending_is_invariant_error(self):
        buf = StreamBuffer()
        buf.append("abc")
        with pytest.raises(InvariantError):
            buf.consume_pending(4)
        # Nothing consumed by the failed call
        assert buf.pending_suffix() == "abc"

    def test_negative_offset_is_invariant_error(self):
        buf = StreamBuffer()
        buf.append("abc")
        with pytest.raises(InvariantError):
            buf.consume_pending(-1)
