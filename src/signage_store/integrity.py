from __future__ import annotations

import logging
from typing import AsyncIterator

from .errors import BlockingReference, ConflictError, NotFoundError
from .models import (
    ContentUsage,
    LayoutUsage,
    PlaylistItem,
    PlaylistReference,
    PlaylistUsage,
    ScheduleReference,
)
from .repositories import ContentRepository, LayoutRepository, PlaylistRepository, ScheduleRepository

logger = logging.getLogger(__name__)


class ReferentialIntegrityChecker:
    """Answers "who references this id?" and guards deletes accordingly.

    Scans are display reads: they walk the playlist index without holding
    the index lock and read each playlist through its own lock, so a
    concurrent writer can change the answer right after it is returned.
    """

    def __init__(
        self,
        contents: ContentRepository,
        layouts: LayoutRepository,
        playlists: PlaylistRepository,
        schedules: ScheduleRepository,
    ) -> None:
        self._contents = contents
        self._layouts = layouts
        self._playlists = playlists
        self._schedules = schedules

    async def _iter_playlists(self) -> AsyncIterator[PlaylistItem]:
        for entry in await self._playlists.list_index():
            playlist = await self._playlists.get_by_id(entry.id)
            if playlist is None:
                logger.debug("playlist %s vanished during scan, skipping", entry.id)
                continue
            yield playlist

    # -- content ------------------------------------------------------------

    async def check_content_usage(self, content_id: str) -> ContentUsage:
        references: list[PlaylistReference] = []
        total = 0
        async for playlist in self._iter_playlists():
            occurrences = sum(a.content_ids.count(content_id) for a in playlist.content_assignments)
            if occurrences:
                references.append(
                    PlaylistReference(
                        id=playlist.id,
                        name=playlist.name,
                        device=playlist.device,
                        region_count=occurrences,
                    )
                )
                total += occurrences
        return ContentUsage(is_used=bool(references), usage_count=total, referencing_playlists=references)

    async def delete_content_safely(self, content_id: str) -> None:
        """Delete content only when no playlist references it.

        Raises:
            ConflictError: If any playlist still references the content.
            NotFoundError: If the content does not exist.
        """
        usage = await self.check_content_usage(content_id)
        if usage.is_used:
            raise ConflictError(
                f"content {content_id} is used by {len(usage.referencing_playlists)} playlist(s)",
                references=[BlockingReference(id=ref.id, name=ref.name) for ref in usage.referencing_playlists],
            )
        await self._contents.delete(content_id)

    async def delete_content_forced(self, content_id: str) -> list[str]:
        """Strip the content from every referencing playlist, then delete it.

        Each playlist is rewritten under its own lock. A failure while
        stripping propagates before the content is deleted.

        Returns:
            Ids of the playlists that were rewritten.
        """
        usage = await self.check_content_usage(content_id)
        rewritten: list[str] = []
        for reference in usage.referencing_playlists:
            try:
                if await self._playlists.remove_content(reference.id, content_id):
                    rewritten.append(reference.id)
            except NotFoundError:
                logger.debug("playlist %s vanished before it could be stripped", reference.id)
        await self._contents.delete(content_id)
        if rewritten:
            logger.info("force-deleted content %s from %d playlist(s)", content_id, len(rewritten))
        return rewritten

    async def get_used_content_ids(self) -> set[str]:
        used: set[str] = set()
        async for playlist in self._iter_playlists():
            for assignment in playlist.content_assignments:
                used.update(assignment.content_ids)
        return used

    async def get_unused_content_ids(self) -> set[str]:
        used = await self.get_used_content_ids()
        return {entry.id for entry in await self._contents.list_index() if entry.id not in used}

    # -- layouts ------------------------------------------------------------

    async def check_layout_usage(self, layout_id: str) -> LayoutUsage:
        references = [
            PlaylistReference(id=playlist.id, name=playlist.name, device=playlist.device)
            async for playlist in self._iter_playlists()
            if playlist.layout_id == layout_id
        ]
        return LayoutUsage(is_used=bool(references), usage_count=len(references), referencing_playlists=references)

    async def delete_layout_safely(self, layout_id: str) -> None:
        """Delete a layout only when no playlist is built on it.

        Raises:
            ConflictError: If any playlist uses the layout.
            NotFoundError: If the layout does not exist.
        """
        usage = await self.check_layout_usage(layout_id)
        if usage.is_used:
            raise ConflictError(
                f"layout {layout_id} is used by {usage.usage_count} playlist(s)",
                references=[BlockingReference(id=ref.id, name=ref.name) for ref in usage.referencing_playlists],
            )
        await self._layouts.delete(layout_id)

    # -- playlists ----------------------------------------------------------

    async def check_playlist_usage(self, playlist_id: str) -> PlaylistUsage:
        references = [
            ScheduleReference(id=entry.id, name=entry.name, time=entry.time, enabled=entry.enabled)
            for entry in await self._schedules.list_index()
            if entry.playlist_id == playlist_id
        ]
        return PlaylistUsage(is_used=bool(references), usage_count=len(references), referencing_schedules=references)


def describe_usage(usage: ContentUsage | LayoutUsage | PlaylistUsage, noun: str = "content") -> str:
    """One-line summary of where an entity is used; empty when unused."""
    if not usage.is_used:
        return ""
    if isinstance(usage, PlaylistUsage):
        names = [f'"{ref.name}"' for ref in usage.referencing_schedules]
        holder = "schedule"
    else:
        names = [f'"{ref.name}"' for ref in usage.referencing_playlists]
        holder = "playlist"
    if len(names) == 1:
        return f"This {noun} is used by {holder} {names[0]}."
    return f"This {noun} is used by {len(names)} {holder}s ({', '.join(names)})."
