# bus_tracker/shared/events/change_events.py
"""
События realtime-канала изменений таблиц buses и bus_locations.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from bus_tracker.common.constants import CHANGES_CHANNEL_PREFIX, ChangeOperation, ChangeTable


class ChangeEvent(BaseModel):
    """Изменение строки: {table, operation, new_row}."""

    table: ChangeTable
    operation: ChangeOperation
    new_row: dict[str, Any] = Field(default_factory=dict)

    @property
    def channel(self) -> str:
        """Redis-канал, в который публикуется событие."""
        return f"{CHANGES_CHANNEL_PREFIX}{self.table.value}"

    @property
    def bus_id(self) -> str | None:
        """Идентификатор автобуса, к которому относится изменение."""
        if self.table == ChangeTable.BUSES:
            return self.new_row.get("id")
        return self.new_row.get("bus_id")
