"""Error taxonomy for turn delivery.

Everything here is absorbed at the turn boundary by TurnOrchestrator.run_turn;
nothing propagates to other turns or to the HTTP layer.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all streamrelay errors."""


class UpstreamStreamError(RelayError):
    """The model delta stream failed mid-turn."""


class DeliveryError(RelayError):
    """A create/edit call against the messaging API failed.

    status is the HTTP status (None for transport errors), retry_after is
    Telegram's flood-control hint in seconds when present.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after

    @property
    def rate_limited(self) -> bool:
        return self.status == 429


class FinalizationError(RelayError):
    """The completion edit/create failed; the turn still persists its text."""


class InvariantError(RelayError):
    """Programming defect detected inside a turn. Aborts that turn only."""
