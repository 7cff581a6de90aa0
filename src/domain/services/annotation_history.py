from __future__ import annotations

from src.domain.entities.annotation import Annotation

HISTORY_LIMIT = 50

Snapshot = tuple[Annotation, ...]


class AnnotationHistory:
    """Bounded undo/redo stack of full annotation snapshots for one image."""

    def __init__(self, initial: Snapshot = (), limit: int = HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("History limit must be positive")
        self.limit = limit
        self._stack: list[Snapshot] = [tuple(initial)]
        self._cursor = 0

    @property
    def current(self) -> Snapshot:
        return self._stack[self._cursor]

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._stack) - 1

    def __len__(self) -> int:
        return len(self._stack)

    def push(self, snapshot: Snapshot) -> None:
        del self._stack[self._cursor + 1 :]
        self._stack.append(tuple(snapshot))
        overflow = len(self._stack) - self.limit
        if overflow > 0:
            del self._stack[:overflow]
        self._cursor = len(self._stack) - 1

    def replace_current(self, snapshot: Snapshot) -> None:
        self._stack[self._cursor] = tuple(snapshot)

    def undo(self) -> Snapshot | None:
        if not self.can_undo:
            return None
        self._cursor -= 1
        return self.current

    def redo(self) -> Snapshot | None:
        if not self.can_redo:
            return None
        self._cursor += 1
        return self.current
