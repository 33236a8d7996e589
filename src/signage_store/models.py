from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
TIME_OF_DAY_PATTERN = r"^([01]\d|2[0-3]):([0-5]\d)$"
MAX_LAYOUT_REGIONS = 4

_YOUTUBE_URL_RE = re.compile(r"^(https?://)?(www\.)?(youtube\.com/watch\?v=|youtu\.be/)[\w-]+")


def utc_now() -> datetime:
    return datetime.now(UTC)


class Record(BaseModel):
    """Base for every persisted shape: camelCase on disk, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=False,
    )


class Entity(Record):
    """A detail record: one JSON file per id."""

    id: str = Field(min_length=1)
    created_at: datetime
    updated_at: datetime


class IndexEntry(Record):
    """One summary row of an entity's index file."""

    id: str
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


class ContentType(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
    TEXT = "text"
    CSV = "csv"
    WEATHER = "weather"
    URL = "url"
    YOUTUBE = "youtube"


# Which payload field carries the data for each content type.
PAYLOAD_FIELD_BY_TYPE: dict[ContentType, str] = {
    ContentType.VIDEO: "file_info",
    ContentType.IMAGE: "file_info",
    ContentType.TEXT: "text_info",
    ContentType.CSV: "csv_info",
    ContentType.WEATHER: "weather_info",
    ContentType.URL: "url_info",
    ContentType.YOUTUBE: "url_info",
}
PAYLOAD_FIELDS: tuple[str, ...] = ("file_info", "url_info", "text_info", "weather_info", "csv_info")

if set(PAYLOAD_FIELD_BY_TYPE) != set(ContentType):
    raise RuntimeError("PAYLOAD_FIELD_BY_TYPE must cover every ContentType")


class FileMetadata(Record):
    width: float | None = Field(default=None, ge=0)
    height: float | None = Field(default=None, ge=0)
    duration: float | None = Field(default=None, ge=0)


class FileInfo(Record):
    original_name: str = Field(min_length=1)
    size: int = Field(ge=0)
    mime_type: str = Field(min_length=1)
    storage_path: str = Field(min_length=1)
    thumbnail_path: str | None = None
    metadata: FileMetadata | None = None


class UrlInfo(Record):
    url: str
    title: str | None = None
    description: str | None = None
    thumbnail: str | None = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("url must be an absolute http(s) URL")
        return value


class TextInfo(Record):
    content: str = Field(min_length=1)
    writing_mode: Literal["horizontal", "vertical"]
    font_family: str = Field(min_length=1)
    text_align: Literal["start", "center", "end"]
    color: str = Field(pattern=HEX_COLOR_PATTERN)
    background_color: str = Field(pattern=HEX_COLOR_PATTERN)
    font_size: float = Field(default=16, ge=8, le=200)
    scroll_type: Literal["none", "horizontal", "vertical"] = "none"
    scroll_speed: float = Field(default=3, ge=1, le=10)


class WeatherInfo(Record):
    locations: list[str] = Field(min_length=1)
    weather_type: Literal["current", "weekly"]
    api_url: str = Field(min_length=1)


class CsvTableArea(Record):
    width: float = Field(ge=0)
    height: float = Field(ge=0)
    x: float = Field(ge=0)
    y: float = Field(ge=0)


class CsvColumns(Record):
    widths: Literal["auto"] | list[float] = "auto"
    alignment: list[Literal["left", "center", "right"]] = Field(default_factory=list)


class CsvRows(Record):
    header_height: float = Field(ge=0)
    row_height: float = Field(ge=0)


class CsvPadding(Record):
    cell: float = Field(ge=0)
    table: float = Field(ge=0)


class CsvLayoutConfig(Record):
    table: CsvTableArea
    columns: CsvColumns
    rows: CsvRows
    padding: CsvPadding


class CsvFontStyle(Record):
    family: str
    size: float = Field(gt=0)
    color: str


class CsvHeaderStyle(Record):
    background_color: str
    font_weight: str
    color: str
    font_size: float | None = None


class CsvTableStyle(Record):
    border_width: float = Field(ge=0)
    border_color: str
    background_color: str


class CsvCellStyle(Record):
    border_width: float = Field(ge=0)
    border_color: str
    alternate_row_color: str | None = None


class CsvStyleConfig(Record):
    font: CsvFontStyle
    header: CsvHeaderStyle
    table: CsvTableStyle
    cell: CsvCellStyle


class CsvInfo(Record):
    original_csv_data: str = Field(min_length=1)
    original_csv_file_path: str | None = None
    original_csv_file_name: str | None = None
    selected_rows: list[Annotated[int, Field(ge=0)]]
    selected_columns: list[Annotated[int, Field(ge=0)]]
    layout: CsvLayoutConfig | None = None
    style: CsvStyleConfig | None = None
    background_path: str | None = None
    background_file_name: str | None = None
    format: Literal["png", "jpeg"] = "png"
    rendered_image_path: str = Field(min_length=1)
    api_url: str = Field(min_length=1)


ContentPayload = Union[FileInfo, UrlInfo, TextInfo, WeatherInfo, CsvInfo]


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


class ContentItem(Entity):
    name: str = Field(min_length=1)
    type: ContentType
    file_info: FileInfo | None = None
    url_info: UrlInfo | None = None
    text_info: TextInfo | None = None
    weather_info: WeatherInfo | None = None
    csv_info: CsvInfo | None = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: list[str]) -> list[str]:
        return _dedupe(value)

    @model_validator(mode="after")
    def _payload_matches_type(self) -> "ContentItem":
        expected = PAYLOAD_FIELD_BY_TYPE[self.type]
        if getattr(self, expected) is None:
            raise ValueError(f"content of type {self.type.value!r} requires {to_camel(expected)}")
        extra = [to_camel(name) for name in PAYLOAD_FIELDS if name != expected and getattr(self, name) is not None]
        if extra:
            raise ValueError(f"content of type {self.type.value!r} must not carry {', '.join(extra)}")
        return self

    @property
    def payload(self) -> ContentPayload:
        return getattr(self, PAYLOAD_FIELD_BY_TYPE[self.type])


class ContentIndexEntry(IndexEntry):
    name: str
    type: ContentType
    size: int | None = None
    url: str | None = None
    tags: list[str] = Field(default_factory=list)


def is_youtube_url(url: str) -> bool:
    return _YOUTUBE_URL_RE.match(url) is not None


def content_type_for_mime(mime_type: str) -> ContentType | None:
    if mime_type.startswith("video/"):
        return ContentType.VIDEO
    if mime_type.startswith("image/"):
        return ContentType.IMAGE
    if mime_type.startswith("text/") or mime_type in {"application/json", "application/xml"}:
        return ContentType.TEXT
    return None


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


class Orientation(str, Enum):
    LANDSCAPE = "landscape"
    PORTRAIT_LEFT = "portrait-left"
    PORTRAIT_RIGHT = "portrait-right"


class Region(Record):
    id: str = Field(min_length=1)
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(ge=1)
    height: float = Field(ge=1)
    z_index: int = Field(ge=0)


class LayoutItem(Entity):
    name: str = Field(min_length=1)
    orientation: Orientation
    regions: list[Region] = Field(max_length=MAX_LAYOUT_REGIONS)

    @model_validator(mode="after")
    def _unique_region_ids(self) -> "LayoutItem":
        seen: set[str] = set()
        for region in self.regions:
            if region.id in seen:
                raise ValueError(f"duplicate region id {region.id!r}")
            seen.add(region.id)
        return self

    @property
    def region_ids(self) -> set[str]:
        return {region.id for region in self.regions}


class LayoutIndexEntry(IndexEntry):
    name: str
    orientation: Orientation
    region_count: int = Field(ge=0, le=MAX_LAYOUT_REGIONS)


# ---------------------------------------------------------------------------
# Playlist
# ---------------------------------------------------------------------------


class ContentDuration(Record):
    content_id: str = Field(min_length=1)
    duration: float = Field(ge=1)


class ContentAssignment(Record):
    region_id: str = Field(min_length=1)
    content_ids: list[str] = Field(default_factory=list)
    content_durations: list[ContentDuration] = Field(default_factory=list)

    @model_validator(mode="after")
    def _durations_reference_assigned_content(self) -> "ContentAssignment":
        assigned = set(self.content_ids)
        seen: set[str] = set()
        for entry in self.content_durations:
            if entry.content_id not in assigned:
                raise ValueError(
                    f"duration for {entry.content_id!r} has no matching content id in region {self.region_id!r}"
                )
            if entry.content_id in seen:
                raise ValueError(f"duplicate duration for {entry.content_id!r} in region {self.region_id!r}")
            seen.add(entry.content_id)
        return self

    def without_content(self, content_id: str) -> "ContentAssignment":
        return self.model_copy(
            update={
                "content_ids": [cid for cid in self.content_ids if cid != content_id],
                "content_durations": [d for d in self.content_durations if d.content_id != content_id],
            }
        )


class PlaylistItem(Entity):
    name: str = Field(min_length=1)
    device: str = Field(min_length=1)
    layout_id: str = Field(min_length=1)
    content_assignments: list[ContentAssignment] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_regions(self) -> "PlaylistItem":
        seen: set[str] = set()
        for assignment in self.content_assignments:
            if assignment.region_id in seen:
                raise ValueError(f"region {assignment.region_id!r} is assigned more than once")
            seen.add(assignment.region_id)
        return self

    @property
    def content_count(self) -> int:
        return sum(len(assignment.content_ids) for assignment in self.content_assignments)

    def references_content(self, content_id: str) -> bool:
        return any(content_id in assignment.content_ids for assignment in self.content_assignments)


class PlaylistIndexEntry(IndexEntry):
    name: str
    layout_id: str
    content_count: int = Field(ge=0)
    device: str


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


ALL_WEEKDAYS: tuple[str, ...] = tuple(day.value for day in Weekday)


def _normalize_weekdays(value: list[Weekday]) -> list[Weekday]:
    # Calendar order, one entry per day.
    present = set(value)
    return [day for day in Weekday if day in present]


class PlaylistEvent(Record):
    type: Literal["playlist"] = "playlist"
    playlist_id: str = Field(min_length=1)


class PowerOnEvent(Record):
    type: Literal["power_on"] = "power_on"


class PowerOffEvent(Record):
    type: Literal["power_off"] = "power_off"


class RebootEvent(Record):
    type: Literal["reboot"] = "reboot"


ScheduleEvent = Annotated[
    Union[PlaylistEvent, PowerOnEvent, PowerOffEvent, RebootEvent],
    Field(discriminator="type"),
]
EventType = Literal["playlist", "power_on", "power_off", "reboot"]


class ScheduleItem(Entity):
    name: str = Field(min_length=1)
    time: str = Field(pattern=TIME_OF_DAY_PATTERN)
    weekdays: list[Weekday] = Field(min_length=1)
    event: ScheduleEvent
    enabled: bool = True

    @field_validator("weekdays")
    @classmethod
    def _canonical_weekdays(cls, value: list[Weekday]) -> list[Weekday]:
        return _normalize_weekdays(value)

    @property
    def playlist_id(self) -> str | None:
        return self.event.playlist_id if isinstance(self.event, PlaylistEvent) else None


class ScheduleIndexEntry(IndexEntry):
    name: str
    time: str
    weekdays: list[Weekday]
    event_type: EventType
    playlist_id: str | None = None
    enabled: bool


# ---------------------------------------------------------------------------
# Usage reports
# ---------------------------------------------------------------------------


class PlaylistReference(Record):
    id: str
    name: str
    device: str
    region_count: int = 0


class ContentUsage(Record):
    is_used: bool
    usage_count: int
    referencing_playlists: list[PlaylistReference] = Field(default_factory=list)


class LayoutUsage(Record):
    is_used: bool
    usage_count: int
    referencing_playlists: list[PlaylistReference] = Field(default_factory=list)


class ScheduleReference(Record):
    id: str
    name: str
    time: str
    enabled: bool


class PlaylistUsage(Record):
    is_used: bool
    usage_count: int
    referencing_schedules: list[ScheduleReference] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# In-memory payloads exchanged with collaborators (never persisted)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileUpload:
    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def stem(self) -> str:
        base, dot, _ = self.name.rpartition(".")
        return base if dot and base else self.name


@dataclass(frozen=True)
class ThumbnailResult:
    thumbnail_data: bytes
    metadata: FileMetadata | None = None


@dataclass(frozen=True)
class CsvRenderRequest:
    csv_data: str
    selected_rows: list[int]
    selected_columns: list[int]
    format: Literal["png", "jpeg"]
    api_url: str
    layout: CsvLayoutConfig | None = None
    style: CsvStyleConfig | None = None
    background: FileUpload | None = None


@dataclass(frozen=True)
class ThumbnailReport:
    total: int
    success: int
    failed: list[str] = field(default_factory=list)
