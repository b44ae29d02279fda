"""
SequenceStore - Canonical in-process copy of a room's outcome history

Ordered log of outcomes, oldest first. Entries are only ever appended,
removed by position, or replaced wholesale by an authoritative sync.
Owned by a single SyncClient binding; never shared across bindings.
"""

import logging
from collections.abc import Callable, Iterable

from models.outcome import OutcomeValue, parse_outcome

logger = logging.getLogger(__name__)


class SequenceStore:
    """
    Mutable outcome log with change notification.

    Features:
    - replace / append / remove_at mutations
    - Stale indexes are silent no-ops (optimistic UI may lag the server)
    - Subscribers notified with a snapshot after every successful mutation
    - Monotonic ``version`` counter bumped on every mutation

    Runs on a single event loop; no locking.
    """

    def __init__(self, initial: Iterable[OutcomeValue] | None = None):
        self._items: list[OutcomeValue] = [parse_outcome(v) for v in initial or ()]
        self._version = 0
        self._subscribers: list[Callable[[list[OutcomeValue]], None]] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    @property
    def version(self) -> int:
        """Number of mutations applied so far."""
        return self._version

    @property
    def last(self) -> OutcomeValue | None:
        """Newest outcome, or None when empty."""
        return self._items[-1] if self._items else None

    def snapshot(self) -> list[OutcomeValue]:
        """Copy of the current sequence (oldest first)."""
        return list(self._items)

    def replace(self, new_sequence: Iterable[OutcomeValue]) -> None:
        """
        Overwrite the stored sequence.

        Used when an authoritative sync payload arrives. Always succeeds.
        """
        self._items = [parse_outcome(v) for v in new_sequence]
        self._changed("replace")

    def append(self, value: OutcomeValue) -> None:
        """
        Append an outcome.

        Repeated values are legal roulette data and are always appended;
        recognising echoes of local optimistic updates is the caller's job.
        """
        self._items.append(parse_outcome(value))
        self._changed("append")

    def remove_at(self, index: int) -> bool:
        """
        Remove the outcome at ``index``.

        Args:
            index: Position in the sequence (0 = oldest)

        Returns:
            True if an element was removed, False if the index was out of range
        """
        if not 0 <= index < len(self._items):
            logger.debug(f"remove_at({index}) ignored, length={len(self._items)}")
            return False

        del self._items[index]
        self._changed("remove")
        return True

    def clear(self) -> None:
        """Drop every entry."""
        self.replace([])

    def subscribe(self, callback: Callable[[list[OutcomeValue]], None]) -> Callable[[], None]:
        """
        Register a change listener.

        Args:
            callback: Called with a snapshot after every mutation

        Returns:
            Unsubscribe function
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _changed(self, reason: str) -> None:
        self._version += 1
        if not self._subscribers:
            return

        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in sequence listener after {reason}: {e}")
