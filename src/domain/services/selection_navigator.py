from __future__ import annotations

from collections.abc import Sequence

from src.domain.entities.row import ImageRow


class SelectionNavigator:
    """Tracks focused image ids across the grouped rows."""

    def __init__(self, rows: Sequence[ImageRow] = ()) -> None:
        self.rows: list[ImageRow] = list(rows)
        self.selected_ids: list[str] = []
        self.last_selected_id: str | None = None

    @property
    def primary_id(self) -> str | None:
        return self.selected_ids[-1] if self.selected_ids else None

    def _flat_ids(self) -> list[str]:
        return [item.id for row in self.rows for item in row.items]

    def refresh(self, rows: Sequence[ImageRow]) -> None:
        self.rows = list(rows)
        known = set(self._flat_ids())
        self.selected_ids = [i for i in self.selected_ids if i in known]
        if self.last_selected_id not in known:
            self.last_selected_id = self.primary_id

    def locate(self, image_id: str) -> tuple[int, int] | None:
        for r, row in enumerate(self.rows):
            for c, item in enumerate(row.items):
                if item.id == image_id:
                    return r, c
        return None

    def select(self, image_id: str) -> None:
        self.selected_ids = [image_id]
        self.last_selected_id = image_id

    def select_many(self, image_ids: Sequence[str]) -> None:
        self.selected_ids = list(image_ids)
        if self.selected_ids:
            self.last_selected_id = self.selected_ids[-1]

    def toggle(self, image_id: str) -> None:
        if image_id in self.selected_ids:
            self.selected_ids.remove(image_id)
        else:
            self.selected_ids.append(image_id)
        self.last_selected_id = image_id

    def select_range(self, image_id: str) -> None:
        flat = self._flat_ids()
        if self.last_selected_id not in flat or image_id not in flat:
            self.select(image_id)
            return
        start, end = sorted((flat.index(self.last_selected_id), flat.index(image_id)))
        for item_id in flat[start : end + 1]:
            if item_id not in self.selected_ids:
                self.selected_ids.append(item_id)

    def move(self, direction: int) -> str | None:
        """Step through the flattened row order, clamped at both ends."""
        flat = self._flat_ids()
        if not flat:
            return None
        current = self.last_selected_id or self.primary_id
        index = 0
        if current in flat:
            index = flat.index(current) + direction
        index = max(0, min(index, len(flat) - 1))
        self.select(flat[index])
        return flat[index]

    def move_row(self, direction: int) -> str | None:
        """Jump to the neighbouring row, keeping the column where possible."""
        current = self.last_selected_id or self.primary_id
        if current is None:
            if self.rows and self.rows[0].items:
                self.select(self.rows[0].items[0].id)
                return self.primary_id
            return None
        position = self.locate(current)
        if position is None:
            return None
        row_index, col_index = position
        target = row_index + direction
        if not 0 <= target < len(self.rows) or not self.rows[target].items:
            return current
        items = self.rows[target].items
        chosen = items[min(col_index, len(items) - 1)].id
        self.select(chosen)
        return chosen
