from __future__ import annotations

from typing import List, Optional, Sequence

from ..schemas import Act

DEFAULT_HISTORY_DEPTH = 20

Snapshot = List[Act]


class ActHistory:
    """Bounded undo/redo over whole snapshots of the acts collection.

    Snapshots are lists of immutable records, so keeping one costs a list of
    references rather than a deep copy.
    """

    def __init__(self, depth: int = DEFAULT_HISTORY_DEPTH) -> None:
        if depth < 1:
            raise ValueError("History depth must be positive")
        self.depth = depth
        self.past: List[Snapshot] = []
        self.future: List[Snapshot] = []

    @property
    def can_undo(self) -> bool:
        return bool(self.past)

    @property
    def can_redo(self) -> bool:
        return bool(self.future)

    def record(self, previous: Sequence[Act]) -> None:
        self.past.append(list(previous))
        self._trim()
        self.future.clear()

    def undo(self, current: Sequence[Act]) -> Optional[Snapshot]:
        if not self.past:
            return None
        snapshot = self.past.pop()
        self.future.append(list(current))
        return snapshot

    def redo(self, current: Sequence[Act]) -> Optional[Snapshot]:
        if not self.future:
            return None
        snapshot = self.future.pop()
        self.past.append(list(current))
        self._trim()
        return snapshot

    def reset(self) -> None:
        self.past.clear()
        self.future.clear()

    def resize(self, depth: int) -> None:
        if depth < 1:
            raise ValueError("History depth must be positive")
        self.depth = depth
        self._trim()

    def _trim(self) -> None:
        overflow = len(self.past) - self.depth
        if overflow > 0:
            del self.past[:overflow]
