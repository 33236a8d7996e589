from .base import EntityRepository, MigrationReport, camelize, new_record_id
from .content import ContentRepository, CsvImageRenderer, ThumbnailGenerator
from .layouts import LayoutRepository
from .playlists import PlaylistRepository
from .schedules import ScheduleRepository

__all__ = [
    "ContentRepository",
    "CsvImageRenderer",
    "EntityRepository",
    "LayoutRepository",
    "MigrationReport",
    "PlaylistRepository",
    "ScheduleRepository",
    "ThumbnailGenerator",
    "camelize",
    "new_record_id",
]
