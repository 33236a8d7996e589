from __future__ import annotations

import logging
from typing import Any

from ..canonical import fingerprint
from ..errors import ValidationError
from ..locks import ResourceLockManager
from ..models import PlaylistIndexEntry, PlaylistItem
from ..store import VirtualStore
from ..validators import playlist_index_validator, playlist_validator
from .base import EntityRepository, dump_record
from .layouts import LayoutRepository

logger = logging.getLogger(__name__)


class PlaylistRepository(EntityRepository[PlaylistItem, PlaylistIndexEntry]):
    """Playlists reference a layout, which must exist and own every assigned region."""

    directory = "playlists"
    prefix = "playlist"
    validator = playlist_validator
    index_validator = playlist_index_validator

    def __init__(self, store: VirtualStore, locks: ResourceLockManager, layouts: LayoutRepository) -> None:
        super().__init__(store, locks)
        self._layouts = layouts

    def summarize(self, record: PlaylistItem) -> PlaylistIndexEntry:
        return PlaylistIndexEntry(
            id=record.id,
            name=record.name,
            layout_id=record.layout_id,
            content_count=record.content_count,
            device=record.device,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    async def _check_references(self, record: PlaylistItem) -> None:
        layout = await self._layouts.get_by_id(record.layout_id)
        if layout is None:
            raise ValidationError.single("playlist", "layoutId", f"layout {record.layout_id} does not exist")
        if not layout.regions:
            raise ValidationError.single("playlist", "layoutId", f"layout {record.layout_id} has no regions")
        unknown = [a.region_id for a in record.content_assignments if a.region_id not in layout.region_ids]
        if unknown:
            raise ValidationError.single(
                "playlist",
                "contentAssignments",
                f"regions not in layout {record.layout_id}: {', '.join(unknown)}",
            )

    async def remove_content(self, playlist_id: str, content_id: str) -> bool:
        """Strip *content_id* from every assignment of one playlist.

        Returns:
            True if the playlist referenced the content and was rewritten.

        Raises:
            NotFoundError: If the playlist does not exist.
        """
        changed = False

        async def transform(current: PlaylistItem) -> dict[str, Any] | None:
            nonlocal changed
            stripped = [assignment.without_content(content_id) for assignment in current.content_assignments]
            if fingerprint(stripped) == fingerprint(current.content_assignments):
                return None
            changed = True
            return {**dump_record(current), "contentAssignments": [dump_record(a) for a in stripped]}

        await self._mutate(playlist_id, transform)
        if changed:
            logger.debug("removed content %s from playlist %s", content_id, playlist_id)
        return changed
