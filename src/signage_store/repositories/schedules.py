from __future__ import annotations

from typing import Any

from ..models import ScheduleIndexEntry, ScheduleItem
from ..validators import schedule_index_validator, schedule_validator
from .base import EntityRepository, dump_record


class ScheduleRepository(EntityRepository[ScheduleItem, ScheduleIndexEntry]):
    directory = "schedules"
    prefix = "schedule"
    validator = schedule_validator
    index_validator = schedule_index_validator

    def summarize(self, record: ScheduleItem) -> ScheduleIndexEntry:
        return ScheduleIndexEntry(
            id=record.id,
            name=record.name,
            time=record.time,
            weekdays=record.weekdays,
            event_type=record.event.type,
            playlist_id=record.playlist_id,
            enabled=record.enabled,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def order_index(self, entries: list[ScheduleIndexEntry]) -> list[ScheduleIndexEntry]:
        # HH:MM is zero padded, so string order is time order.
        return sorted(entries, key=lambda entry: entry.time)

    async def toggle_enabled(self, schedule_id: str) -> ScheduleItem:
        async def transform(current: ScheduleItem) -> dict[str, Any]:
            return {**dump_record(current), "enabled": not current.enabled}

        return await self._mutate(schedule_id, transform)
