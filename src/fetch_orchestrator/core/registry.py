"""
Request registry: bookkeeping of pending identities and in-flight handles.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..types import TransportHandleProtocol

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class InFlightEntry:
    """Bookkeeping for one live call under an identity."""

    identity: str
    handle: Optional[TransportHandleProtocol] = None
    joiners: List["asyncio.Future[Any]"] = field(default_factory=list)
    """Duplicate callers waiting for this call's final outcome."""


class RequestRegistry:
    """
    Tracks at most one live entry per request identity.

    Cancellation aborts the transport handle and drops bookkeeping. It does
    not settle any caller: the owning call observes the abort through the
    transport and settles itself.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, InFlightEntry] = {}

    def is_pending(self, identity: str) -> bool:
        return identity in self._entries

    def get(self, identity: str) -> Optional[InFlightEntry]:
        return self._entries.get(identity)

    def mark_pending(self, identity: str) -> InFlightEntry:
        """Register a new live call, replacing any previous entry."""
        entry = InFlightEntry(identity=identity)
        self._entries[identity] = entry
        return entry

    def register_handle(self, entry: InFlightEntry, handle: TransportHandleProtocol) -> None:
        entry.handle = handle

    def join(self, identity: str) -> "asyncio.Future[Any]":
        """Attach a duplicate caller to the live entry for an identity."""
        entry = self._entries[identity]
        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        entry.joiners.append(future)
        return future

    def settle(self, entry: InFlightEntry) -> None:
        """Drop an entry unless a newer call already owns its identity."""
        if self._entries.get(entry.identity) is entry:
            del self._entries[entry.identity]

    def cancel(self, identity: str) -> bool:
        entry = self._entries.pop(identity, None)
        if entry is None:
            return False
        self._abort(entry)
        return True

    def cancel_all(self) -> List[str]:
        entries, self._entries = self._entries, {}
        for entry in entries.values():
            self._abort(entry)
        return list(entries)

    def cancel_by_url_substring(self, fragment: str) -> List[str]:
        matched = [identity for identity in self._entries if fragment in identity]
        for identity in matched:
            self._abort(self._entries.pop(identity))
        return matched

    def _abort(self, entry: InFlightEntry) -> None:
        if entry.handle is not None:
            entry.handle.abort()
        logger.debug(f"RequestRegistry: cancelled {entry.identity}")

    @property
    def pending_count(self) -> int:
        return len(self._entries)

    @property
    def in_flight_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.handle is not None)

    def identities(self) -> List[str]:
        return list(self._entries)
