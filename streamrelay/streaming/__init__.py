"""Streaming module -- incremental stream-to-message delivery engine.

Public API:
    TurnOrchestrator - Drives one turn: model deltas -> Telegram message -> history
    TurnDispatcher   - Runs turns as fire-and-forget asyncio tasks
    StreamBuffer     - Delta accumulator (flushed prefix + pending suffix)
    FlushPolicy      - Natural-break / length / time flush triggers
    DeliveryChannel  - Create-then-edit message lifecycle with fallback

Errors:
    RelayError, UpstreamStreamError, DeliveryError, FinalizationError, InvariantError
"""

from streamrelay.streaming.buffer import StreamBuffer
from streamrelay.streaming.channel import (
    DeliveryChannel,
    DeliveryHandle,
    DeliveryState,
    MessagingAPI,
    append_marker,
)
from streamrelay.streaming.dispatcher import TurnDispatcher
from streamrelay.streaming.errors import (
    DeliveryError,
    FinalizationError,
    InvariantError,
    RelayError,
    UpstreamStreamError,
)
from streamrelay.streaming.orchestrator import (
    ConversationTurn,
    TurnOrchestrator,
    TurnResult,
    annotate_interrupted,
    build_system_prompt,
)
from streamrelay.streaming.policy import FlushDecision, FlushPolicy, find_natural_break

__all__ = [
    "ConversationTurn",
    "DeliveryChannel",
    "DeliveryError",
    "DeliveryHandle",
    "DeliveryState",
    "FinalizationError",
    "FlushDecision",
    "FlushPolicy",
    "InvariantError",
    "MessagingAPI",
    "RelayError",
    "StreamBuffer",
    "TurnDispatcher",
    "TurnOrchestrator",
    "TurnResult",
    "UpstreamStreamError",
    "annotate_interrupted",
    "append_marker",
    "build_system_prompt",
    "find_natural_break",
]
