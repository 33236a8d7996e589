from importlib.metadata import PackageNotFoundError, version

from .canonical import fingerprint, to_canonical_json, to_jsonable
from .engine import StorageEngine
from .errors import (
    BlockingReference,
    ConflictError,
    CorruptRecordError,
    LockReentryError,
    NotFoundError,
    RenderError,
    SignageStoreError,
    StoreError,
    ValidationError,
    ValidationIssue,
    describe_failure,
)
from .integrity import ReferentialIntegrityChecker, describe_usage
from .locks import ResourceLockManager
from .models import (
    ContentIndexEntry,
    ContentItem,
    ContentType,
    ContentUsage,
    CsvRenderRequest,
    FileUpload,
    LayoutIndexEntry,
    LayoutItem,
    LayoutUsage,
    Orientation,
    PlaylistIndexEntry,
    PlaylistItem,
    PlaylistUsage,
    ScheduleIndexEntry,
    ScheduleItem,
    ThumbnailReport,
    ThumbnailResult,
    Weekday,
)
from .repositories import (
    ContentRepository,
    CsvImageRenderer,
    LayoutRepository,
    MigrationReport,
    PlaylistRepository,
    ScheduleRepository,
    ThumbnailGenerator,
)
from .settings import RuntimeSettings
from .store import StorageInfo, VirtualStore


def get_version() -> str:
    try:
        return version("signage-store")
    except PackageNotFoundError:
        return "0.0.0"


__all__ = [
    "BlockingReference",
    "ConflictError",
    "ContentIndexEntry",
    "ContentItem",
    "ContentRepository",
    "ContentType",
    "ContentUsage",
    "CorruptRecordError",
    "CsvImageRenderer",
    "CsvRenderRequest",
    "FileUpload",
    "LayoutIndexEntry",
    "LayoutItem",
    "LayoutRepository",
    "LayoutUsage",
    "LockReentryError",
    "MigrationReport",
    "NotFoundError",
    "Orientation",
    "PlaylistIndexEntry",
    "PlaylistItem",
    "PlaylistRepository",
    "PlaylistUsage",
    "ReferentialIntegrityChecker",
    "RenderError",
    "ResourceLockManager",
    "RuntimeSettings",
    "ScheduleIndexEntry",
    "ScheduleItem",
    "ScheduleRepository",
    "SignageStoreError",
    "StorageEngine",
    "StorageInfo",
    "StoreError",
    "ThumbnailGenerator",
    "ThumbnailReport",
    "ThumbnailResult",
    "ValidationError",
    "ValidationIssue",
    "VirtualStore",
    "Weekday",
    "describe_failure",
    "describe_usage",
    "fingerprint",
    "get_version",
    "to_canonical_json",
    "to_jsonable",
]
