"""Short-lived "X is typing in channel Y" state.

Entries expire lazily: every read of a channel drops the entries that
have not been refreshed within ``timeout_ms``. ``sweep`` performs the same
cleanup over every channel for callers that want a tighter bound.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional

DEFAULT_TIMEOUT_MS = 5000


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class TypingIndicatorStore:

    def __init__(
        self,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.timeout_ms = timeout_ms
        self._clock = clock
        # channel id -> {identity id -> last signal (ms)}
        self._entries: Dict[str, Dict[str, float]] = {}

    def start_typing(self, channel_id: str, identity_id: str) -> None:
        self._entries.setdefault(channel_id, {})[identity_id] = self._clock()

    def stop_typing(self, channel_id: str, identity_id: str) -> None:
        typers = self._entries.get(channel_id)
        if typers is None:
            return
        typers.pop(identity_id, None)
        if not typers:
            del self._entries[channel_id]

    def on_message_sent(self, channel_id: str, identity_id: str) -> None:
        self.stop_typing(channel_id, identity_id)

    def get_active_typers(self, channel_id: str, excluding: Optional[str] = None) -> List[str]:
        typers = self._entries.get(channel_id)
        if not typers:
            return []
        now = self._clock()
        active = []
        for identity_id, last_seen in list(typers.items()):
            if now - last_seen > self.timeout_ms:
                del typers[identity_id]
            elif identity_id != excluding:
                active.append(identity_id)
        if not typers:
            del self._entries[channel_id]
        return active

    def clear_identity(self, identity_id: str) -> List[str]:
        """Drop every entry of ``identity_id``; returns the affected channels."""
        affected = []
        for channel_id in list(self._entries):
            typers = self._entries[channel_id]
            if typers.pop(identity_id, None) is not None:
                affected.append(channel_id)
                if not typers:
                    del self._entries[channel_id]
        return affected

    def sweep(self) -> Dict[str, List[str]]:
        """Expire stale entries everywhere.

        Returns ``{channel id: surviving typers}`` for the channels that
        lost at least one entry.
        """
        changed: Dict[str, List[str]] = {}
        for channel_id in list(self._entries):
            before = len(self._entries[channel_id])
            survivors = self.get_active_typers(channel_id)
            if len(survivors) != before:
                changed[channel_id] = survivors
        return changed

    def channels(self) -> List[str]:
        return list(self._entries)
