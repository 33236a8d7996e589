from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Mapping, Protocol

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import NotFoundError, RenderError, SignageStoreError, StoreError, ValidationError, ValidationIssue
from ..locks import ResourceLockManager
from ..models import (
    ContentIndexEntry,
    ContentItem,
    ContentType,
    CsvInfo,
    CsvLayoutConfig,
    CsvRenderRequest,
    CsvStyleConfig,
    FileUpload,
    TextInfo,
    ThumbnailReport,
    ThumbnailResult,
    WeatherInfo,
    content_type_for_mime,
    is_youtube_url,
)
from ..store import VirtualStore
from ..validators import content_index_validator, content_validator
from .base import EntityRepository, camelize, dump_record, new_record_id

logger = logging.getLogger(__name__)

DEFAULT_CSV_RENDERER_URL = "https://csv-renderer.onrender.com"
DEFAULT_THUMBNAIL_WIDTH = 400
DEFAULT_THUMBNAIL_QUALITY = 0.8

TEXT_FILE_EXTENSIONS = (
    ".txt",
    ".md",
    ".markdown",
    ".json",
    ".xml",
    ".csv",
    ".log",
    ".ini",
    ".cfg",
    ".conf",
    ".yml",
    ".yaml",
    ".toml",
)

# Presentation defaults for text content created from an uploaded text file.
TEXT_FILE_DEFAULTS: dict[str, Any] = {
    "writingMode": "horizontal",
    "fontFamily": "Noto Sans JP",
    "textAlign": "start",
    "color": "#000000",
    "backgroundColor": "#ffffff",
    "fontSize": 24,
    "scrollType": "none",
    "scrollSpeed": 3,
}

REQUIRED_CSV_FIELDS = ("originalCsvData", "selectedRows", "selectedColumns")


class ThumbnailGenerator(Protocol):
    async def generate_thumbnail(self, upload: FileUpload, *, width: int, quality: float) -> ThumbnailResult: ...


class CsvImageRenderer(Protocol):
    async def render_to_image(self, request: CsvRenderRequest) -> str:
        """Render the selected CSV cells and return the stored image path."""
        ...


def is_text_upload(upload: FileUpload) -> bool:
    if upload.mime_type.startswith("text/"):
        return True
    return upload.name.lower().endswith(TEXT_FILE_EXTENSIONS)


def safe_file_name(name: str) -> str:
    """Reduce an uploaded file name to a single safe path segment."""
    candidate = PurePosixPath(name.replace("\\", "/")).name
    if candidate in {"", ".", ".."}:
        raise ValidationError.single("content", "fileInfo.originalName", f"unusable file name {name!r}")
    return candidate


def _as_mapping(value: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    if isinstance(value, BaseModel):
        return dump_record(value)
    return camelize(value)


def _parse_part(model: type[BaseModel], value: Any, location: str) -> Any:
    if value is None or isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except PydanticValidationError as exc:
        issues = ValidationError.from_pydantic("content", exc).issues
        raise ValidationError(
            "content",
            [ValidationIssue(location=f"{location}.{issue.location}", message=issue.message) for issue in issues],
        ) from exc


@dataclass
class _AssetSwap:
    """Files written by an in-flight update and the stored files they replace."""

    created: list[str] = field(default_factory=list)
    superseded: list[str] = field(default_factory=list)


class ContentRepository(EntityRepository[ContentItem, ContentIndexEntry]):
    """Content records plus the binary assets they own.

    File uploads live under ``contents/files``, thumbnails under
    ``contents/thumbnails`` and CSV sources under ``contents/csv-<id>``.
    Thumbnails are best effort; CSV rendering must succeed for the content
    to exist.
    """

    directory = "contents"
    prefix = "content"
    validator = content_validator
    index_validator = content_index_validator

    def __init__(
        self,
        store: VirtualStore,
        locks: ResourceLockManager,
        *,
        thumbnailer: ThumbnailGenerator | None = None,
        csv_renderer: CsvImageRenderer | None = None,
        thumbnail_width: int = DEFAULT_THUMBNAIL_WIDTH,
        thumbnail_quality: float = DEFAULT_THUMBNAIL_QUALITY,
        csv_renderer_url: str = DEFAULT_CSV_RENDERER_URL,
        weather_api_url: str = "",
    ) -> None:
        super().__init__(store, locks)
        self._thumbnailer = thumbnailer
        self._csv_renderer = csv_renderer
        self._thumbnail_width = thumbnail_width
        self._thumbnail_quality = thumbnail_quality
        self._csv_renderer_url = csv_renderer_url
        self._weather_api_url = weather_api_url

    def summarize(self, record: ContentItem) -> ContentIndexEntry:
        return ContentIndexEntry(
            id=record.id,
            name=record.name,
            type=record.type,
            size=record.file_info.size if record.file_info else None,
            url=record.url_info.url if record.url_info else None,
            tags=record.tags,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    # -- asset paths --------------------------------------------------------

    def file_path(self, record_id: str, file_name: str) -> str:
        return f"{self.directory}/files/{record_id}-{file_name}"

    def thumbnail_path(self, record_id: str) -> str:
        return f"{self.directory}/thumbnails/{record_id}.jpg"

    def csv_dir(self, record_id: str) -> str:
        return f"{self.directory}/csv-{record_id}"

    def csv_source_path(self, record_id: str, file_name: str, revision: str | None = None) -> str:
        stem = f"original-{revision}-" if revision else "original-"
        return f"{self.csv_dir(record_id)}/{stem}{file_name}"

    def csv_background_path(self, record_id: str, file_name: str, revision: str | None = None) -> str:
        stem = f"background-{revision}-" if revision else "background-"
        return f"{self.csv_dir(record_id)}/{stem}{file_name}"

    # -- creation -----------------------------------------------------------

    async def create_file_content(self, upload: FileUpload, name: str | None = None) -> ContentItem:
        """Store an uploaded file as image, video or text content.

        Text files (by mime type or extension) become text content with
        default presentation. Images and videos keep the file bytes and get
        a thumbnail when one can be generated.

        Raises:
            ValidationError: If the file type is unsupported or a text file is not UTF-8.
        """
        content_type = content_type_for_mime(upload.mime_type)
        if content_type is ContentType.TEXT or is_text_upload(upload):
            return await self._create_from_text_file(upload, name)
        if content_type not in (ContentType.IMAGE, ContentType.VIDEO):
            raise ValidationError.single(
                "content", "fileInfo.mimeType", f"unsupported file type {upload.mime_type!r}"
            )

        record_id = new_record_id()
        file_name = safe_file_name(upload.name)
        storage_path = self.file_path(record_id, file_name)
        thumbnail = await self._generate_thumbnail(upload)
        thumbnail_path = self.thumbnail_path(record_id) if thumbnail is not None else None

        file_info: dict[str, Any] = {
            "originalName": upload.name,
            "size": upload.size,
            "mimeType": upload.mime_type,
            "storagePath": storage_path,
            "thumbnailPath": thumbnail_path,
            "metadata": thumbnail.metadata if thumbnail is not None else None,
        }
        record = self._new_record(
            {"name": name or upload.name, "type": content_type, "fileInfo": file_info},
            record_id=record_id,
        )

        async def section() -> ContentItem:
            assets = [storage_path]
            try:
                await self._store.write_bytes(storage_path, upload.data)
                if thumbnail is not None and thumbnail_path is not None:
                    assets.append(thumbnail_path)
                    await self._store.write_bytes(thumbnail_path, thumbnail.thumbnail_data)
                await self._write_detail(record)
            except BaseException:
                await self._discard(assets)
                raise
            await self._apply_to_index(upsert=record)
            return record

        return await self._locks.with_lock(self.create_key, section)

    async def _create_from_text_file(self, upload: FileUpload, name: str | None) -> ContentItem:
        try:
            text = upload.data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError.single(
                "content", "textInfo.content", f"{upload.name} is not valid UTF-8 text"
            ) from exc
        return await self.create_text_content(name or upload.stem, {**TEXT_FILE_DEFAULTS, "content": text})

    async def create_url_content(
        self,
        url: str,
        name: str | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> ContentItem:
        content_type = ContentType.YOUTUBE if is_youtube_url(url) else ContentType.URL
        url_info = {"url": url, "title": title, "description": description}
        return await self.create({"name": name or title or url, "type": content_type, "urlInfo": url_info})

    async def create_text_content(self, name: str, text_info: Mapping[str, Any] | TextInfo) -> ContentItem:
        return await self.create({"name": name, "type": ContentType.TEXT, "textInfo": _as_mapping(text_info)})

    async def create_weather_content(self, name: str, weather_info: Mapping[str, Any] | WeatherInfo) -> ContentItem:
        info = _as_mapping(weather_info)
        if not info.get("apiUrl") and self._weather_api_url:
            info["apiUrl"] = self._weather_api_url
        return await self.create({"name": name, "type": ContentType.WEATHER, "weatherInfo": info})

    async def create_csv_content(
        self,
        name: str,
        csv_data: Mapping[str, Any],
        background: FileUpload | None = None,
        csv_file: FileUpload | None = None,
    ) -> ContentItem:
        """Render CSV content to an image and store it with its source files.

        Raises:
            ValidationError: If required CSV fields are missing or malformed.
            RenderError: If the image could not be rendered. Nothing is kept.
        """
        data = camelize(csv_data)
        missing = [key for key in REQUIRED_CSV_FIELDS if data.get(key) in (None, "")]
        if missing:
            raise ValidationError.single("content", "csvInfo", f"missing required CSV fields: {', '.join(missing)}")
        layout = _parse_part(CsvLayoutConfig, data.get("layout"), "csvInfo.layout")
        style = _parse_part(CsvStyleConfig, data.get("style"), "csvInfo.style")

        record_id = new_record_id()
        csv_info: dict[str, Any] = {
            **data,
            "format": data.get("format") or "png",
            "apiUrl": data.get("apiUrl") or self._csv_renderer_url,
        }
        csv_info.pop("editedCsvData", None)
        assets: list[str] = []
        try:
            if csv_file is not None:
                source_path = self.csv_source_path(record_id, safe_file_name(csv_file.name))
                await self._store.write_bytes(source_path, csv_file.data)
                csv_info.update(originalCsvFilePath=source_path, originalCsvFileName=csv_file.name)
            if background is not None:
                background_path = self.csv_background_path(record_id, safe_file_name(background.name))
                await self._store.write_bytes(background_path, background.data)
                csv_info.update(backgroundPath=background_path, backgroundFileName=background.name)

            request = CsvRenderRequest(
                csv_data=data.get("editedCsvData") or data["originalCsvData"],
                selected_rows=list(data["selectedRows"]),
                selected_columns=list(data["selectedColumns"]),
                format=csv_info["format"],
                api_url=csv_info["apiUrl"],
                layout=layout,
                style=style,
                background=background,
            )
            csv_info["renderedImagePath"] = await self._render(request)
            assets.append(csv_info["renderedImagePath"])
            record = self._new_record({"name": name, "type": ContentType.CSV, "csvInfo": csv_info}, record_id=record_id)
        except BaseException:
            await self._discard(assets)
            await self._store.delete_tree(self.csv_dir(record_id))
            raise

        async def section() -> ContentItem:
            try:
                await self._write_detail(record)
            except BaseException:
                await self._discard(assets)
                await self._store.delete_tree(self.csv_dir(record_id))
                raise
            await self._apply_to_index(upsert=record)
            return record

        return await self._locks.with_lock(self.create_key, section)

    # -- update -------------------------------------------------------------

    async def update(
        self,
        record_id: str,
        changes: Mapping[str, Any],
        csv_file: FileUpload | None = None,
        csv_background: FileUpload | None = None,
    ) -> ContentItem:
        """Shallow-merge *changes*; ``csvInfo`` changes merge into the existing CSV payload.

        Setting ``csvInfo.regenerateImage`` re-renders the CSV image. Any
        replacement source or background is written next to the old one, and
        the files the record stops referencing are removed only after the
        record is rewritten.

        Raises:
            NotFoundError: If no content has this id.
            ValidationError: If the merged record is invalid.
            RenderError: If re-rendering fails; the record and its files are left unchanged.
        """
        normalized = camelize(changes)
        swap = _AssetSwap()

        async def transform(current: ContentItem) -> dict[str, Any]:
            merged = {**dump_record(current), **normalized}
            csv_changes = normalized.get("csvInfo")
            if current.csv_info is not None and isinstance(csv_changes, Mapping):
                merged["csvInfo"] = await self._merge_csv_info(
                    current.id, current.csv_info, camelize(csv_changes), csv_file, csv_background, swap
                )
            return merged

        return await self._mutate(
            record_id,
            transform,
            on_abort=lambda: self._discard(swap.created),
            on_commit=lambda: self._release(swap.superseded),
        )

    async def _merge_csv_info(
        self,
        record_id: str,
        csv_info: CsvInfo,
        csv_changes: dict[str, Any],
        csv_file: FileUpload | None,
        csv_background: FileUpload | None,
        swap: _AssetSwap,
    ) -> dict[str, Any]:
        regenerate = bool(csv_changes.pop("regenerateImage", False))
        if not regenerate:
            return {**dump_record(csv_info), **csv_changes}

        revision = new_record_id()[:8]
        if csv_file is not None:
            source_path = self.csv_source_path(record_id, safe_file_name(csv_file.name), revision)
            swap.created.append(source_path)
            await self._store.write_bytes(source_path, csv_file.data)
            csv_changes.update(originalCsvFilePath=source_path, originalCsvFileName=csv_file.name)
            if csv_info.original_csv_file_path:
                swap.superseded.append(csv_info.original_csv_file_path)
        if csv_background is not None:
            background_path = self.csv_background_path(record_id, safe_file_name(csv_background.name), revision)
            swap.created.append(background_path)
            await self._store.write_bytes(background_path, csv_background.data)
            csv_changes.update(backgroundPath=background_path, backgroundFileName=csv_background.name)
            if csv_info.background_path:
                swap.superseded.append(csv_info.background_path)

        edited = csv_changes.pop("editedCsvData", None)
        merged = _parse_part(CsvInfo, {**dump_record(csv_info), **csv_changes}, "csvInfo")
        background = csv_background or await self._load_background(merged)
        new_path = await self._render(
            CsvRenderRequest(
                csv_data=edited or merged.original_csv_data,
                selected_rows=merged.selected_rows,
                selected_columns=merged.selected_columns,
                format=merged.format,
                api_url=merged.api_url,
                layout=merged.layout,
                style=merged.style,
                background=background,
            )
        )
        if new_path != csv_info.rendered_image_path:
            swap.created.append(new_path)
            swap.superseded.append(csv_info.rendered_image_path)
        return {**dump_record(merged), "renderedImagePath": new_path}

    async def _load_background(self, csv_info: CsvInfo) -> FileUpload | None:
        if not csv_info.background_path:
            return None
        try:
            data = await self._store.read_bytes(csv_info.background_path)
        except NotFoundError:
            logger.warning("CSV background %s is missing, rendering without it", csv_info.background_path)
            return None
        name = csv_info.background_file_name or PurePosixPath(csv_info.background_path).name
        return FileUpload(name=name, mime_type="application/octet-stream", data=data)

    # -- binary access ------------------------------------------------------

    async def get_file_content(self, storage_path: str) -> bytes:
        """Return the stored bytes of a content file.

        Raises:
            NotFoundError: If nothing is stored at *storage_path*.
        """
        return await self._store.read_bytes(storage_path)

    async def get_thumbnail(self, record_id: str) -> tuple[bytes, str] | None:
        """Return ``(image bytes, mime type)`` for the content's preview image, if any."""
        try:
            content = await self.get_by_id(record_id)
            if content is None:
                return None
            if content.csv_info is not None:
                data = await self._store.read_bytes(content.csv_info.rendered_image_path)
                return data, "image/png" if content.csv_info.format == "png" else "image/jpeg"
            if content.file_info is not None and content.file_info.thumbnail_path:
                return await self._store.read_bytes(content.file_info.thumbnail_path), "image/jpeg"
        except SignageStoreError as exc:
            logger.warning("failed to load thumbnail for content %s: %s", record_id, exc)
        return None

    async def regenerate_thumbnail(self, record_id: str) -> bool:
        """Rebuild one file content's thumbnail; returns False for non-file content.

        Raises:
            RenderError: If no thumbnail generator is configured.
        """
        if self._thumbnailer is None:
            raise RenderError("no thumbnail generator is configured")
        thumbnailer = self._thumbnailer
        regenerated = False
        superseded: list[str] = []

        async def transform(current: ContentItem) -> dict[str, Any] | None:
            nonlocal regenerated
            info = current.file_info
            if info is None:
                return None
            data = await self._store.read_bytes(info.storage_path)
            upload = FileUpload(name=info.original_name, mime_type=info.mime_type, data=data)
            result = await thumbnailer.generate_thumbnail(
                upload, width=self._thumbnail_width, quality=self._thumbnail_quality
            )
            thumbnail_path = self.thumbnail_path(current.id)
            await self._store.write_bytes(thumbnail_path, result.thumbnail_data)
            if info.thumbnail_path and info.thumbnail_path != thumbnail_path:
                superseded.append(info.thumbnail_path)
            file_info = {**dump_record(info), "thumbnailPath": thumbnail_path}
            file_info.pop("metadata", None)
            if result.metadata is not None:
                file_info["metadata"] = result.metadata
            regenerated = True
            return {**dump_record(current), "fileInfo": file_info}

        await self._mutate(record_id, transform, on_commit=lambda: self._release(superseded))
        return regenerated

    async def regenerate_all_thumbnails(self) -> ThumbnailReport:
        """Rebuild every file content's thumbnail; per-item failures are reported by name."""
        if self._thumbnailer is None:
            raise RenderError("no thumbnail generator is configured")
        entries = await self.list_index()
        success = 0
        failed: list[str] = []
        for entry in entries:
            try:
                if await self.regenerate_thumbnail(entry.id):
                    success += 1
            except Exception as exc:  # noqa: BLE001
                logger.error("failed to regenerate thumbnail for content %s: %s", entry.id, exc)
                failed.append(entry.name)
        return ThumbnailReport(total=len(entries), success=success, failed=failed)

    # -- deletion -----------------------------------------------------------

    async def _delete_assets(self, record: ContentItem) -> None:
        paths: list[str] = []
        if record.file_info is not None:
            paths.append(record.file_info.storage_path)
            if record.file_info.thumbnail_path:
                paths.append(record.file_info.thumbnail_path)
        if record.csv_info is not None:
            paths.append(record.csv_info.rendered_image_path)
            await self._store.delete_tree(self.csv_dir(record.id))
        await self._discard(paths)

    # -- helpers ------------------------------------------------------------

    async def _generate_thumbnail(self, upload: FileUpload) -> ThumbnailResult | None:
        if self._thumbnailer is None:
            logger.debug("no thumbnail generator configured, skipping %s", upload.name)
            return None
        try:
            return await self._thumbnailer.generate_thumbnail(
                upload, width=self._thumbnail_width, quality=self._thumbnail_quality
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("failed to generate thumbnail for %s: %s", upload.name, exc)
            return None

    async def _render(self, request: CsvRenderRequest) -> str:
        if self._csv_renderer is None:
            raise RenderError("no CSV renderer is configured")
        try:
            return await self._csv_renderer.render_to_image(request)
        except RenderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise RenderError(f"CSV rendering failed: {exc}") from exc

    async def _discard(self, paths: list[str]) -> None:
        for path in paths:
            try:
                await self._store.delete_file(path)
            except NotFoundError:
                continue

    async def _release(self, paths: list[str]) -> None:
        # Runs after commit: a leftover file is an orphan, not a failed update.
        try:
            await self._discard(paths)
        except StoreError as exc:
            logger.warning("failed to remove superseded file %s: %s", exc.path, exc)
