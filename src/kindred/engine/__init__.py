"""Session response engine: compile, exchange, decode, settle, deliver."""

from .compiler import CompiledContext, ContextCompiler, UnknownContactError, gloss_message
from .context import Mode, SessionContext
from .delivery import DeliveryScheduler
from .loop import EngineConfig, ResponseEngine, ResponseResult
from .protocol import Directives, StickerRef, parse_reply, split_segments
from .resolver import (
    EventResolver,
    PendingEvents,
    PendingInvite,
    PendingTransfer,
    Resolution,
    classify_invite_reply,
    find_pending,
    score_invite_reply,
)

__all__ = [
    "CompiledContext",
    "ContextCompiler",
    "DeliveryScheduler",
    "Directives",
    "EngineConfig",
    "EventResolver",
    "Mode",
    "PendingEvents",
    "PendingInvite",
    "PendingTransfer",
    "Resolution",
    "ResponseEngine",
    "ResponseResult",
    "SessionContext",
    "StickerRef",
    "UnknownContactError",
    "classify_invite_reply",
    "find_pending",
    "gloss_message",
    "parse_reply",
    "score_invite_reply",
    "split_segments",
]
