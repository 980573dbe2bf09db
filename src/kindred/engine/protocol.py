"""Decoder for the marker grammar embedded in model replies.

The model is an unreliable peer: every step here is a best-effort match and
parsing never raises. A step that finds nothing leaves its field at the
default.

Decoding order (each match is removed before the next step):

1. leading ``[CMD:RETRACT_LAST]``
2. leading ``[THOUGHTS: ...]`` plus a directly following ``|||``
3. leading ``[ACCEPT]`` / ``[REJECT]`` when a transfer is pending
4. ``[ACCEPT_INVITE]`` / ``[REJECT_INVITE]`` anywhere
5. ``[STICKER:<descriptor>]`` anywhere, resolved against the catalog
6. split on ``|||`` (normal mode only)
"""

import re
from dataclasses import dataclass, field
from typing import Literal

from ..models import Sticker
from .context import Mode

SEGMENT_DELIMITER = "|||"

Decision = Literal["accept", "reject"]

_RETRACT_RE = re.compile(r"^\s*\[CMD:RETRACT_LAST\]\s*")
_THOUGHT_RE = re.compile(r"^\s*\[THOUGHTS:(.*?)\]", re.DOTALL)
_LEADING_DELIMITER_RE = re.compile(r"^\s*\|\|\|\s*")
_TRANSFER_RE = re.compile(r"^\s*\[(ACCEPT|REJECT)\]\s*", re.IGNORECASE)
_INVITE_ACCEPT_RE = re.compile(r"\[ACCEPT_INVITE\]", re.IGNORECASE)
_INVITE_REJECT_RE = re.compile(r"\[REJECT_INVITE\]", re.IGNORECASE)
_CLOCK_ECHO_RE = re.compile(r"^\s*\[\d{2}:\d{2}:\d{2}\]\s*")
_STICKER_RE = re.compile(r"\[STICKER:(.*?)\]")


@dataclass(frozen=True)
class StickerRef:
    """A sticker marker that matched the catalog.

    Attributes:
        descriptor: The descriptor as written by the model (trimmed).
        position: Offset of the marker in the text at extraction time.
        sticker: The catalog entry it resolved to.
    """

    descriptor: str
    position: int
    sticker: Sticker


@dataclass
class Directives:
    """Structured view of one reply."""

    thought: str | None = None
    retract_last: bool = False
    transfer_decision: Decision | None = None
    invite_decision: Decision | None = None
    stickers: list[StickerRef] = field(default_factory=list)
    segments: list[str] = field(default_factory=list)

    @property
    def has_content(self) -> bool:
        """True when there is anything to deliver."""
        return bool(self.segments or self.stickers)


def _extract_stickers(text: str, catalog: list[Sticker]) -> tuple[str, list[StickerRef]]:
    by_desc = {s.desc: s for s in catalog}
    refs: list[StickerRef] = []
    pieces: list[str] = []
    cursor = 0

    for match in _STICKER_RE.finditer(text):
        descriptor = match.group(1).strip()
        sticker = by_desc.get(descriptor)
        if sticker is None:
            continue  # left verbatim
        pieces.append(text[cursor:match.start()])
        refs.append(StickerRef(descriptor, match.start(), sticker))
        cursor = match.end()

    pieces.append(text[cursor:])
    return "".join(pieces), refs


def split_segments(text: str) -> list[str]:
    """Split on the segment delimiter, dropping empty segments."""
    return [part.strip() for part in text.split(SEGMENT_DELIMITER) if part.strip()]


def parse_reply(
    text: str | None,
    *,
    mode: Mode = Mode.NORMAL,
    expect_transfer: bool = False,
    catalog: list[Sticker] | None = None,
    strip_clock_echo: bool = False,
) -> Directives:
    """Decode a raw reply into directives.

    Args:
        text: Raw reply text.
        mode: Mode the reply was requested in; call and offline replies are
            never split.
        expect_transfer: Whether a transfer is pending. Only then are leading
            ``[ACCEPT]``/``[REJECT]`` interpreted, and the decision defaults
            to ``accept`` when the marker is missing.
        catalog: Sticker catalog, or None when stickers are disabled (markers
            are then left as plain text).
        strip_clock_echo: Drop a leading ``[HH:MM:SS]`` stamp the model
            copied from time-annotated history.

    Returns:
        The decoded directives.
    """
    result = Directives()
    content = text or ""

    match = _RETRACT_RE.match(content)
    if match:
        result.retract_last = True
        content = content[match.end():]

    match = _THOUGHT_RE.match(content)
    if match:
        result.thought = match.group(1).strip() or None
        content = content[match.end():]
        content = _LEADING_DELIMITER_RE.sub("", content, count=1)

    if expect_transfer:
        match = _TRANSFER_RE.match(content)
        if match:
            result.transfer_decision = "accept" if match.group(1).upper() == "ACCEPT" else "reject"
            content = content[match.end():]
        else:
            result.transfer_decision = "accept"

    if _INVITE_ACCEPT_RE.search(content):
        result.invite_decision = "accept"
    elif _INVITE_REJECT_RE.search(content):
        result.invite_decision = "reject"
    content = _INVITE_ACCEPT_RE.sub("", content)
    content = _INVITE_REJECT_RE.sub("", content)

    if strip_clock_echo:
        content = _CLOCK_ECHO_RE.sub("", content, count=1)

    if catalog is not None:
        content, result.stickers = _extract_stickers(content, catalog)

    if mode.single_segment:
        stripped = content.strip()
        result.segments = [stripped] if stripped else []
    else:
        result.segments = split_segments(content)

    return result
