"""Delta accumulator for one conversation turn."""

from __future__ import annotations

from streamrelay.streaming.errors import InvariantError


class StreamBuffer:
    """Append-only transcript split into a flushed prefix and a pending suffix.

    The buffer never drops input: full_text() is always the concatenation of
    every appended delta in arrival order.
    """

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._length = 0
        self._flushed = 0
        self._text_cache: str | None = ""

    def append(self, delta: str) -> None:
        if not delta:
            return
        self._parts.append(delta)
        self._length += len(delta)
        self._text_cache = None

    def full_text(self) -> str:
        if self._text_cache is None:
            self._text_cache = "".join(self._parts)
            self._parts = [self._text_cache] if self._text_cache else []
        return self._text_cache

    def pending_suffix(self) -> str:
        return self.full_text()[self._flushed:]

    def flushed_text(self) -> str:
        """Cumulative text handed to delivery so far."""
        return self.full_text()[: self._flushed]

    @property
    def flushed_length(self) -> int:
        return self._flushed

    def __len__(self) -> int:
        return self._length

    def consume_pending(self, upto_offset: int | None = None) -> str:
        """Move a prefix of the pending suffix into the flushed text and return it.

        None consumes everything pending.
        """
        pending = self._length - self._flushed
        if upto_offset is None:
            upto_offset = pending
        if not 0 <= upto_offset <= pending:
            raise InvariantError(
                f"consume offset {upto_offset} outside pending range 0..{pending}"
            )
        chunk = self.full_text()[self._flushed : self._flushed + upto_offset]
        self._flushed += upto_offset
        return chunk
