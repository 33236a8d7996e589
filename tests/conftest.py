from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from signage_store import CsvRenderRequest, FileUpload, StorageEngine, ThumbnailResult
from signage_store.models import FileMetadata
from signage_store.store import VirtualStore


class FakeThumbnailer:
    """Deterministic stand-in for the image/video thumbnail generator."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, int, float]] = []

    async def generate_thumbnail(self, upload: FileUpload, *, width: int, quality: float) -> ThumbnailResult:
        self.calls.append((upload.name, width, quality))
        if self.fail:
            raise RuntimeError("decoder unavailable")
        return ThumbnailResult(
            thumbnail_data=b"jpeg:" + upload.name.encode("utf-8"),
            metadata=FileMetadata(width=width, height=225),
        )


class FakeCsvRenderer:
    """Writes a placeholder image into the store and returns its path."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.store: VirtualStore | None = None
        self.requests: list[CsvRenderRequest] = []

    async def render_to_image(self, request: CsvRenderRequest) -> str:
        self.requests.append(request)
        if self.fail:
            raise RuntimeError("renderer offline")
        path = f"contents/rendered/csv-{len(self.requests)}.{request.format}"
        if self.store is not None:
            await self.store.write_bytes(path, b"image:" + request.csv_data.encode("utf-8"))
        return path


@pytest.fixture
def thumbnailer() -> FakeThumbnailer:
    return FakeThumbnailer()


@pytest.fixture
def csv_renderer() -> FakeCsvRenderer:
    return FakeCsvRenderer()


@pytest.fixture
def engine(tmp_path: Path, thumbnailer: FakeThumbnailer, csv_renderer: FakeCsvRenderer) -> StorageEngine:
    built = StorageEngine.open(tmp_path / "store", thumbnailer=thumbnailer, csv_renderer=csv_renderer)
    csv_renderer.store = built.store
    return built


@pytest.fixture
def layout_payload() -> Callable[..., dict[str, Any]]:
    def build(*region_ids: str, name: str = "Lobby") -> dict[str, Any]:
        ids = region_ids or ("main",)
        width = 1920 // len(ids)
        return {
            "name": name,
            "orientation": "landscape",
            "regions": [
                {"id": region_id, "x": index * width, "y": 0, "width": width, "height": 1080, "zIndex": index}
                for index, region_id in enumerate(ids)
            ],
        }

    return build


@pytest.fixture
def playlist_payload() -> Callable[..., dict[str, Any]]:
    def build(layout_id: str, assignments: dict[str, list[str]] | None = None, name: str = "Morning") -> dict[str, Any]:
        return {
            "name": name,
            "device": "lobby-screen",
            "layoutId": layout_id,
            "contentAssignments": [
                {
                    "regionId": region_id,
                    "contentIds": content_ids,
                    "contentDurations": [{"contentId": cid, "duration": 10} for cid in dict.fromkeys(content_ids)],
                }
                for region_id, content_ids in (assignments or {}).items()
            ],
        }

    return build


@pytest.fixture
def text_info() -> dict[str, Any]:
    return {
        "content": "Welcome to the lobby",
        "writingMode": "horizontal",
        "fontFamily": "Noto Sans JP",
        "textAlign": "center",
        "color": "#112233",
        "backgroundColor": "#ffffff",
    }
