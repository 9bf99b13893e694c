"""Flush policy: when should buffered text go out to the chat?

Pure functions over text and elapsed time, no I/O. Triggers in priority
order, first match wins:

1. natural break  - sentence end, comma or newline; cut after the last one
2. length         - total text reached the next multiple of length_every
3. time           - nothing went out for longer than the debounce interval

The debounce interval is also a floor for triggers 1 and 2: once a message
exists, nothing is flushed sooner than debounce_ms after the previous flush.
That floor is what keeps edit volume under Telegram's rate limit no matter
how fast deltas arrive.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

FlushReason = Literal["natural_break", "length", "time"]

# ". " "! " "? " ", " or any newline
_NATURAL_BREAK = re.compile(r"[.!?,]\s|\n")


def find_natural_break(text: str) -> int | None:
    """Offset just past the last natural break in text, or None."""
    end = None
    for match in _NATURAL_BREAK.finditer(text):
        end = match.end()
    return end


def next_length_boundary(flushed_length: int, every: int) -> int:
    """First multiple of every strictly greater than flushed_length."""
    return (flushed_length // every + 1) * every


@dataclass(frozen=True)
class FlushDecision:
    """Result of FlushPolicy.should_flush.

    offset is the cut position in the pending suffix; None means flush all.
    """

    flush: bool
    offset: int | None = None
    reason: FlushReason | None = None


NO_FLUSH = FlushDecision(flush=False)


class FlushPolicy:
    """Decides whether (and how much of) the pending suffix should be flushed."""

    def __init__(
        self,
        debounce_ms: int = 500,
        length_every: int = 50,
        natural_breaks: bool = True,
    ) -> None:
        if debounce_ms < 0:
            raise ValueError("debounce_ms must be >= 0")
        if length_every <= 0:
            raise ValueError("length_every must be > 0")
        self.debounce_ms = debounce_ms
        self.length_every = length_every
        self.natural_breaks = natural_breaks

    @classmethod
    def from_settings(cls, settings) -> FlushPolicy:
        return cls(
            debounce_ms=settings.flush_debounce_ms,
            length_every=settings.flush_length_every,
            natural_breaks=settings.flush_natural_breaks,
        )

    def should_flush(
        self,
        pending: str,
        ms_since_last_flush: float,
        *,
        flushed_length: int = 0,
        initial: bool = False,
    ) -> FlushDecision:
        """Evaluate the triggers against the pending suffix.

        flushed_length is how much text already went out, so the length
        modulus counts total accumulated text. initial waives the debounce
        floor while nothing has been delivered yet.
        """
        if not pending:
            return NO_FLUSH

        if not initial and ms_since_last_flush < self.debounce_ms:
            return NO_FLUSH

        if self.natural_breaks:
            cut = find_natural_break(pending)
            if cut is not None:
                return FlushDecision(flush=True, offset=cut, reason="natural_break")

        boundary = next_length_boundary(flushed_length, self.length_every)
        if flushed_length + len(pending) >= boundary:
            return FlushDecision(flush=True, offset=boundary - flushed_length, reason="length")

        if ms_since_last_flush > self.debounce_ms:
            return FlushDecision(flush=True, offset=None, reason="time")

        return NO_FLUSH
