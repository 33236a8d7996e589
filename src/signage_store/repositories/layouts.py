from __future__ import annotations

from ..models import LayoutIndexEntry, LayoutItem
from ..validators import layout_index_validator, layout_validator
from .base import EntityRepository


class LayoutRepository(EntityRepository[LayoutItem, LayoutIndexEntry]):
    directory = "layouts"
    prefix = "layout"
    validator = layout_validator
    index_validator = layout_index_validator

    def summarize(self, record: LayoutItem) -> LayoutIndexEntry:
        return LayoutIndexEntry(
            id=record.id,
            name=record.name,
            orientation=record.orientation,
            region_count=len(record.regions),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
