"""Resumable page tokens.

A token is a serialized stack of frames. Each frame names the resource type
(or listing phase) being enumerated and the upstream ``page`` cursor inside
it. Multi-phase listings push one frame per phase; when a phase runs out of
upstream pages its frame is popped and the next phase becomes current. An
empty stack encodes to ``""``, which is also how callers start over.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from connectors.bitbucket.errors import InvalidTokenError
from connectors.bitbucket.models import ResourceType


@dataclass(frozen=True)
class PageFrame:
    resource_type: ResourceType
    cursor: str = ""


class Cursor:
    """Mutable stack of :class:`PageFrame`; the last element is current."""

    def __init__(self, frames: Optional[list[PageFrame]] = None) -> None:
        self._frames: list[PageFrame] = list(frames or [])

    def __len__(self) -> int:
        return len(self._frames)

    def __bool__(self) -> bool:
        return bool(self._frames)

    @property
    def frames(self) -> tuple[PageFrame, ...]:
        return tuple(self._frames)

    @property
    def current(self) -> Optional[PageFrame]:
        return self._frames[-1] if self._frames else None

    @property
    def current_frame_type(self) -> Optional[ResourceType]:
        frame = self.current
        return frame.resource_type if frame else None

    @property
    def current_page_cursor(self) -> str:
        frame = self.current
        return frame.cursor if frame else ""

    def push(self, frame: PageFrame) -> None:
        self._frames.append(frame)

    def pop(self) -> Optional[PageFrame]:
        return self._frames.pop() if self._frames else None

    def push_phases(self, *phases: ResourceType) -> None:
        """Push phases so that the first one given is enumerated first."""
        for phase in reversed(phases):
            self.push(PageFrame(phase))

    def advance(self, next_cursor: str) -> None:
        """Record the next upstream page, or pop the frame when it is exhausted."""
        if not self._frames:
            return
        if not next_cursor:
            self._frames.pop()
            return
        self._frames[-1] = PageFrame(self._frames[-1].resource_type, next_cursor)

    def next_token(self, next_cursor: str) -> str:
        self.advance(next_cursor)
        return encode(self)


def encode(cursor: Cursor) -> str:
    if not cursor:
        return ""
    states = [{"type": f.resource_type.value, "cursor": f.cursor} for f in cursor.frames]
    return json.dumps({"states": states}, separators=(",", ":"))


def decode(token: str) -> Cursor:
    if not token:
        return Cursor()
    try:
        payload = json.loads(token)
    except ValueError:
        raise InvalidTokenError(f"bitbucket-connector: malformed page token: {token!r}") from None

    states = payload.get("states") if isinstance(payload, dict) else None
    if not isinstance(states, list):
        raise InvalidTokenError(f"bitbucket-connector: malformed page token: {token!r}")

    frames: list[PageFrame] = []
    for state in states:
        if not isinstance(state, dict) or not isinstance(state.get("cursor", ""), str):
            raise InvalidTokenError(f"bitbucket-connector: malformed page frame: {state!r}")
        try:
            resource_type = ResourceType(state.get("type"))
        except ValueError:
            raise InvalidTokenError(
                f"bitbucket-connector: unknown resource type in page token: {state.get('type')!r}"
            ) from None
        frames.append(PageFrame(resource_type, state.get("cursor", "")))
    return Cursor(frames)


def start(token: str, resource_type: ResourceType) -> Cursor:
    """Decode ``token``; a fresh cursor gets an initial frame for ``resource_type``."""
    cursor = decode(token)
    if not cursor:
        cursor.push(PageFrame(resource_type))
    return cursor
