"""Explicit per-call session context."""

from dataclasses import dataclass
from enum import Enum

from ..models import DeliveryMode


class Mode(Enum):
    """Conversation mode active when a response is requested."""

    NORMAL = "normal"
    CALL = "call"
    OFFLINE = "offline"

    @property
    def single_segment(self) -> bool:
        """Call and offline replies are delivered as one message."""
        return self is not Mode.NORMAL

    @property
    def delivery_mode(self) -> DeliveryMode:
        return DeliveryMode.OFFLINE if self is Mode.OFFLINE else DeliveryMode.ONLINE


@dataclass(frozen=True)
class SessionContext:
    """Which contact a request is for and how it should be answered.

    Passed explicitly through compilation, resolution and delivery so that a
    later mode or contact switch never changes an in-flight request.
    """

    contact_id: str
    mode: Mode = Mode.NORMAL
    stickers_enabled: bool = False
