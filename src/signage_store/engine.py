from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .integrity import ReferentialIntegrityChecker
from .locks import ResourceLockManager
from .repositories import (
    ContentRepository,
    CsvImageRenderer,
    EntityRepository,
    LayoutRepository,
    MigrationReport,
    PlaylistRepository,
    ScheduleRepository,
    ThumbnailGenerator,
)
from .settings import RuntimeSettings
from .store import StorageInfo, VirtualStore

logger = logging.getLogger(__name__)

ENTITY_NAMES = ("contents", "layouts", "playlists", "schedules")


@dataclass
class StorageEngine:
    """Wires one store and one lock manager into the four repositories.

    Everything sharing a store must share the lock manager too, so build
    engines through :meth:`open` or :meth:`from_settings`.
    """

    store: VirtualStore
    locks: ResourceLockManager
    contents: ContentRepository
    layouts: LayoutRepository
    playlists: PlaylistRepository
    schedules: ScheduleRepository
    integrity: ReferentialIntegrityChecker

    @classmethod
    def open(
        cls,
        root: Path | str,
        *,
        thumbnailer: ThumbnailGenerator | None = None,
        csv_renderer: CsvImageRenderer | None = None,
        settings: RuntimeSettings | None = None,
    ) -> "StorageEngine":
        settings = settings or RuntimeSettings()
        store = VirtualStore(root)
        locks = ResourceLockManager()
        contents = ContentRepository(
            store,
            locks,
            thumbnailer=thumbnailer,
            csv_renderer=csv_renderer,
            thumbnail_width=settings.thumbnail_width,
            thumbnail_quality=settings.thumbnail_quality,
            csv_renderer_url=settings.csv_renderer_url,
            weather_api_url=settings.weather_api_url,
        )
        layouts = LayoutRepository(store, locks)
        playlists = PlaylistRepository(store, locks, layouts)
        schedules = ScheduleRepository(store, locks)
        integrity = ReferentialIntegrityChecker(contents, layouts, playlists, schedules)
        logger.debug("opened storage engine at %s", store.root)
        return cls(
            store=store,
            locks=locks,
            contents=contents,
            layouts=layouts,
            playlists=playlists,
            schedules=schedules,
            integrity=integrity,
        )

    @classmethod
    def from_settings(
        cls,
        settings: RuntimeSettings,
        *,
        thumbnailer: ThumbnailGenerator | None = None,
        csv_renderer: CsvImageRenderer | None = None,
    ) -> "StorageEngine":
        return cls.open(settings.store_path(), thumbnailer=thumbnailer, csv_renderer=csv_renderer, settings=settings)

    def repository(self, entity: str) -> EntityRepository:
        """Look up a repository by its directory name (``contents``, ``layouts``, ...).

        Raises:
            KeyError: If *entity* is not a known entity name.
        """
        repositories: dict[str, EntityRepository] = {
            "contents": self.contents,
            "layouts": self.layouts,
            "playlists": self.playlists,
            "schedules": self.schedules,
        }
        try:
            return repositories[entity]
        except KeyError:
            raise KeyError(f"unknown entity {entity!r}; expected one of: {', '.join(ENTITY_NAMES)}") from None

    async def migrate_all(self) -> list[MigrationReport]:
        return [await self.repository(entity).migrate_legacy() for entity in ENTITY_NAMES]

    async def rebuild_indexes(self) -> dict[str, int]:
        return {entity: len(await self.repository(entity).rebuild_index()) for entity in ENTITY_NAMES}

    async def storage_info(self) -> StorageInfo:
        return await self.store.storage_info()

    async def clear_all(self) -> None:
        await self.store.clear_all()
        self.locks.clear_all_timestamps()
