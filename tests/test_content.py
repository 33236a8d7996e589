from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from signage_store import ContentType, FileUpload, RenderError, RuntimeSettings, StorageEngine, ValidationError
from signage_store.errors import StoreError

PNG = FileUpload(name="photo.png", mime_type="image/png", data=b"\x89PNG\r\n\x1a\nfake")

CSV_DATA: dict[str, Any] = {
    "originalCsvData": "city,temp\nTokyo,21\nOsaka,23",
    "selectedRows": [0, 1, 2],
    "selectedColumns": [0, 1],
}


async def test_image_upload_stores_file_and_thumbnail(engine: StorageEngine, thumbnailer: Any) -> None:
    content = await engine.contents.create_file_content(PNG)

    assert content.type is ContentType.IMAGE
    assert content.name == "photo.png"
    info = content.file_info
    assert info is not None
    assert info.storage_path == f"contents/files/{content.id}-photo.png"
    assert info.thumbnail_path == f"contents/thumbnails/{content.id}.jpg"
    assert info.metadata is not None and info.metadata.width == 400
    assert await engine.contents.get_file_content(info.storage_path) == PNG.data
    assert thumbnailer.calls == [("photo.png", 400, 0.8)]

    [entry] = await engine.contents.list_index()
    assert entry.size == len(PNG.data)
    assert entry.type is ContentType.IMAGE


async def test_thumbnail_failure_does_not_block_upload(engine: StorageEngine, thumbnailer: Any) -> None:
    thumbnailer.fail = True
    video = FileUpload(name="clip.mp4", mime_type="video/mp4", data=b"\x00\x00\x00\x18ftypmp42")

    content = await engine.contents.create_file_content(video, name="Intro clip")

    assert content.type is ContentType.VIDEO
    assert content.name == "Intro clip"
    assert content.file_info is not None
    assert content.file_info.thumbnail_path is None
    assert await engine.store.list_children("contents/thumbnails") == []


async def test_uploaded_file_name_is_reduced_to_one_segment(engine: StorageEngine) -> None:
    upload = FileUpload(name="../../evil.png", mime_type="image/png", data=b"png")
    content = await engine.contents.create_file_content(upload)
    assert content.file_info is not None
    assert content.file_info.storage_path == f"contents/files/{content.id}-evil.png"
    assert content.file_info.original_name == "../../evil.png"


async def test_text_upload_becomes_text_content_with_defaults(engine: StorageEngine) -> None:
    upload = FileUpload(name="notice.txt", mime_type="text/plain", data="Closed on Monday".encode("utf-8"))

    content = await engine.contents.create_file_content(upload)

    assert content.type is ContentType.TEXT
    assert content.name == "notice"
    assert content.text_info is not None
    assert content.text_info.content == "Closed on Monday"
    assert content.text_info.font_family == "Noto Sans JP"
    assert content.text_info.font_size == 24
    assert content.file_info is None
    assert await engine.store.list_children("contents/files") == []


async def test_text_upload_is_detected_by_extension(engine: StorageEngine) -> None:
    upload = FileUpload(name="README.md", mime_type="application/octet-stream", data=b"# Hello")
    content = await engine.contents.create_file_content(upload)
    assert content.type is ContentType.TEXT


async def test_text_upload_must_be_utf8(engine: StorageEngine) -> None:
    upload = FileUpload(name="legacy.txt", mime_type="text/plain", data=b"\xff\xfe\x00bad")
    with pytest.raises(ValidationError, match="not valid UTF-8"):
        await engine.contents.create_file_content(upload)


async def test_unsupported_upload_is_rejected_without_writes(engine: StorageEngine) -> None:
    upload = FileUpload(name="manual.pdf", mime_type="application/pdf", data=b"%PDF-1.7")
    with pytest.raises(ValidationError, match="unsupported file type"):
        await engine.contents.create_file_content(upload)
    assert await engine.store.list_children("contents") == []


async def test_url_content_detects_youtube(engine: StorageEngine) -> None:
    video = await engine.contents.create_url_content("https://www.youtube.com/watch?v=dQw4w9WgXcQ")
    page = await engine.contents.create_url_content("https://example.com/menu", title="Menu")

    assert video.type is ContentType.YOUTUBE
    assert video.name == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
    assert page.type is ContentType.URL
    assert page.name == "Menu"
    assert {entry.url for entry in await engine.contents.list_index()} == {
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://example.com/menu",
    }


async def test_weather_content_uses_configured_api_url(tmp_path: Path) -> None:
    settings = RuntimeSettings(weather_api_url="https://weather.example/api")
    engine = StorageEngine.open(tmp_path / "store", settings=settings)

    content = await engine.contents.create_weather_content(
        "Forecast", {"locations": ["130000"], "weather_type": "weekly"}
    )

    assert content.weather_info is not None
    assert content.weather_info.api_url == "https://weather.example/api"
    assert content.weather_info.weather_type == "weekly"


async def test_csv_content_renders_and_keeps_sources(engine: StorageEngine, csv_renderer: Any) -> None:
    background = FileUpload(name="bg.png", mime_type="image/png", data=b"background")
    source = FileUpload(name="weather.csv", mime_type="text/csv", data=CSV_DATA["originalCsvData"].encode("utf-8"))

    content = await engine.contents.create_csv_content("Temperatures", CSV_DATA, background=background, csv_file=source)

    info = content.csv_info
    assert info is not None
    assert info.rendered_image_path == "contents/rendered/csv-1.png"
    assert info.api_url == "https://csv-renderer.onrender.com"
    assert info.format == "png"
    assert info.background_path == f"contents/csv-{content.id}/background-bg.png"
    assert info.original_csv_file_path == f"contents/csv-{content.id}/original-weather.csv"
    assert await engine.store.read_bytes(info.background_path) == b"background"

    [request] = csv_renderer.requests
    assert request.selected_columns == [0, 1]
    assert request.background == background


async def test_csv_renderer_failure_leaves_nothing_behind(engine: StorageEngine, csv_renderer: Any) -> None:
    csv_renderer.fail = True
    background = FileUpload(name="bg.png", mime_type="image/png", data=b"background")

    with pytest.raises(RenderError, match="renderer offline"):
        await engine.contents.create_csv_content("Broken", CSV_DATA, background=background)

    assert [name for name in await engine.store.list_children("contents") if name.startswith("csv-")] == []
    assert await engine.contents.list_index() == []


async def test_csv_content_requires_selection(engine: StorageEngine, csv_renderer: Any) -> None:
    with pytest.raises(ValidationError, match="selectedRows"):
        await engine.contents.create_csv_content("Incomplete", {**CSV_DATA, "selectedRows": None})
    assert csv_renderer.requests == []


async def test_csv_update_regenerates_image_with_stored_background(engine: StorageEngine, csv_renderer: Any) -> None:
    background = FileUpload(name="bg.png", mime_type="image/png", data=b"background")
    content = await engine.contents.create_csv_content("Temperatures", CSV_DATA, background=background)

    updated = await engine.contents.update(
        content.id,
        {"csvInfo": {"selectedColumns": [1], "editedCsvData": "city,temp\nNagoya,20", "regenerateImage": True}},
    )

    info = updated.csv_info
    assert info is not None
    assert info.rendered_image_path == "contents/rendered/csv-2.png"
    assert info.selected_columns == [1]
    assert info.original_csv_data == CSV_DATA["originalCsvData"]
    assert not await engine.store.exists("contents/rendered/csv-1.png")

    request = csv_renderer.requests[-1]
    assert request.csv_data == "city,temp\nNagoya,20"
    assert request.background is not None
    assert request.background.data == b"background"


async def test_csv_update_without_regeneration_keeps_image(engine: StorageEngine, csv_renderer: Any) -> None:
    content = await engine.contents.create_csv_content("Temperatures", CSV_DATA)

    updated = await engine.contents.update(content.id, {"name": "Renamed", "csvInfo": {"selectedRows": [0]}})

    assert updated.csv_info is not None
    assert updated.csv_info.selected_rows == [0]
    assert updated.csv_info.rendered_image_path == "contents/rendered/csv-1.png"
    assert len(csv_renderer.requests) == 1


async def test_rejected_csv_update_keeps_rendered_image(engine: StorageEngine, csv_renderer: Any) -> None:
    content = await engine.contents.create_csv_content("Temperatures", CSV_DATA)

    with pytest.raises(ValidationError, match="name"):
        await engine.contents.update(content.id, {"name": "", "csvInfo": {"regenerateImage": True}})

    assert len(csv_renderer.requests) == 2
    assert await engine.contents.get_by_id(content.id) == content
    assert await engine.store.exists("contents/rendered/csv-1.png")
    assert not await engine.store.exists("contents/rendered/csv-2.png")


async def test_failed_rerender_keeps_stored_csv_source(engine: StorageEngine, csv_renderer: Any) -> None:
    source = FileUpload(name="weather.csv", mime_type="text/csv", data=b"city,temp\nTokyo,21")
    content = await engine.contents.create_csv_content("Temperatures", CSV_DATA, csv_file=source)
    assert content.csv_info is not None
    csv_renderer.fail = True

    with pytest.raises(RenderError):
        await engine.contents.update(
            content.id,
            {"csvInfo": {"regenerateImage": True}},
            csv_file=FileUpload(name="weather.csv", mime_type="text/csv", data=b"new"),
        )

    assert await engine.contents.get_by_id(content.id) == content
    assert await engine.store.read_bytes(content.csv_info.original_csv_file_path) == source.data
    assert await engine.store.list_children(f"contents/csv-{content.id}") == ["original-weather.csv"]


async def test_replacing_csv_source_swaps_files_after_update(engine: StorageEngine) -> None:
    source = FileUpload(name="weather.csv", mime_type="text/csv", data=b"city,temp\nTokyo,21")
    content = await engine.contents.create_csv_content("Temperatures", CSV_DATA, csv_file=source)
    assert content.csv_info is not None
    old_source = content.csv_info.original_csv_file_path

    updated = await engine.contents.update(
        content.id,
        {"csvInfo": {"regenerateImage": True}},
        csv_file=FileUpload(name="weather.csv", mime_type="text/csv", data=b"city,temp\nSapporo,12"),
    )

    info = updated.csv_info
    assert info is not None
    assert info.original_csv_file_path != old_source
    assert info.original_csv_file_path.startswith(f"contents/csv-{content.id}/original-")
    assert info.original_csv_file_path.endswith("-weather.csv")
    assert await engine.store.read_bytes(info.original_csv_file_path) == b"city,temp\nSapporo,12"
    assert not await engine.store.exists(old_source)
    assert await engine.store.list_children("contents/rendered") == ["csv-2.png"]


async def test_failed_thumbnail_write_keeps_previous_thumbnail(
    engine: StorageEngine, monkeypatch: pytest.MonkeyPatch
) -> None:
    content = await engine.contents.create_file_content(PNG)
    assert content.file_info is not None and content.file_info.thumbnail_path is not None
    original_write = engine.store.write_bytes

    async def failing_write(path: str, data: bytes) -> None:
        if path.startswith("contents/thumbnails/"):
            raise StoreError(f"Failed to write {path}: disk full", path=path)
        await original_write(path, data)

    monkeypatch.setattr(engine.store, "write_bytes", failing_write)

    with pytest.raises(StoreError, match="disk full"):
        await engine.contents.regenerate_thumbnail(content.id)

    assert await engine.contents.get_by_id(content.id) == content
    assert await engine.store.read_bytes(content.file_info.thumbnail_path) == b"jpeg:photo.png"
    assert await engine.contents.get_thumbnail(content.id) == (b"jpeg:photo.png", "image/jpeg")


async def test_delete_removes_owned_assets(engine: StorageEngine) -> None:
    image = await engine.contents.create_file_content(PNG)
    table = await engine.contents.create_csv_content(
        "Table", CSV_DATA, background=FileUpload(name="bg.png", mime_type="image/png", data=b"bg")
    )

    await engine.contents.delete(image.id)
    await engine.contents.delete(table.id)

    assert await engine.store.list_children("contents/files") == []
    assert await engine.store.list_children("contents/thumbnails") == []
    assert await engine.store.list_children("contents/rendered") == []
    assert await engine.store.list_children("contents") == ["files", "index.json", "rendered", "thumbnails"]
    assert await engine.contents.list_index() == []


async def test_get_thumbnail_by_content_kind(engine: StorageEngine, text_info: dict[str, Any]) -> None:
    image = await engine.contents.create_file_content(PNG)
    table = await engine.contents.create_csv_content("Table", CSV_DATA)
    text = await engine.contents.create_text_content("Greeting", text_info)

    assert await engine.contents.get_thumbnail(image.id) == (b"jpeg:photo.png", "image/jpeg")
    table_thumbnail = await engine.contents.get_thumbnail(table.id)
    assert table_thumbnail is not None and table_thumbnail[1] == "image/png"
    assert await engine.contents.get_thumbnail(text.id) is None
    assert await engine.contents.get_thumbnail("missing") is None


async def test_regenerate_all_thumbnails_reports_failures_by_name(
    engine: StorageEngine, thumbnailer: Any, text_info: dict[str, Any]
) -> None:
    thumbnailer.fail = True
    image = await engine.contents.create_file_content(PNG, name="Broken photo")
    await engine.contents.create_file_content(FileUpload(name="clip.mp4", mime_type="video/mp4", data=b"mp4"))
    await engine.contents.create_text_content("Greeting", text_info)
    thumbnailer.fail = False

    assert image.file_info is not None
    await engine.store.delete_file(image.file_info.storage_path)

    report = await engine.contents.regenerate_all_thumbnails()

    assert report.total == 3
    assert report.success == 1
    assert report.failed == ["Broken photo"]
    [video_entry] = [entry for entry in await engine.contents.list_index() if entry.type is ContentType.VIDEO]
    video = await engine.contents.get_by_id(video_entry.id)
    assert video is not None and video.file_info is not None
    assert video.file_info.thumbnail_path == f"contents/thumbnails/{video.id}.jpg"


async def test_thumbnail_regeneration_needs_a_generator(tmp_path: Path) -> None:
    engine = StorageEngine.open(tmp_path / "store")
    content = await engine.contents.create_file_content(PNG)
    assert content.file_info is not None and content.file_info.thumbnail_path is None

    with pytest.raises(RenderError):
        await engine.contents.regenerate_thumbnail(content.id)
