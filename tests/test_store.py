from __future__ import annotations

import json
from pathlib import Path

import pytest

from signage_store.errors import CorruptRecordError, NotFoundError, StoreError
from signage_store.models import Region
from signage_store.store import VirtualStore


@pytest.fixture
def store(tmp_path: Path) -> VirtualStore:
    return VirtualStore(tmp_path / "root")


async def test_write_record_uses_camel_case_and_omits_unset_fields(store: VirtualStore) -> None:
    region = Region(id="main", x=0, y=0, width=100, height=50, z_index=2)
    await store.write_record("layouts/region.json", {"region": region, "note": None})

    on_disk = json.loads((store.root / "layouts" / "region.json").read_text(encoding="utf-8"))
    assert on_disk["region"]["zIndex"] == 2
    assert "z_index" not in on_disk["region"]
    assert on_disk["note"] is None

    assert await store.read_record("layouts/region.json") == on_disk


async def test_read_record_missing_raises_not_found(store: VirtualStore) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        await store.read_record("contents/content-missing.json")
    assert excinfo.value.path == "contents/content-missing.json"


@pytest.mark.parametrize("payload", [b"{not json", b"", b"\xff\xfe"])
async def test_read_record_corrupt_raises(store: VirtualStore, payload: bytes) -> None:
    await store.write_bytes("contents/index.json", payload)
    with pytest.raises(CorruptRecordError):
        await store.read_record("contents/index.json")


@pytest.mark.parametrize("path", ["", "/etc/passwd", "../escape.json", "contents//index.json", "a/./b"])
def test_resolve_rejects_paths_outside_sandbox(store: VirtualStore, path: str) -> None:
    with pytest.raises(StoreError):
        store.resolve(path)


async def test_atomic_write_leaves_no_temp_files(store: VirtualStore) -> None:
    await store.write_record("schedules/index.json", [])
    await store.write_record("schedules/index.json", [{"id": "s1"}])
    assert sorted(p.name for p in (store.root / "schedules").iterdir()) == ["index.json"]
    assert await store.read_record("schedules/index.json") == [{"id": "s1"}]


async def test_binary_round_trip_and_delete(store: VirtualStore) -> None:
    await store.write_bytes("contents/files/abc-photo.png", b"\x89PNG")
    assert await store.exists("contents/files/abc-photo.png")
    assert await store.read_bytes("contents/files/abc-photo.png") == b"\x89PNG"

    await store.delete_file("contents/files/abc-photo.png")
    assert not await store.exists("contents/files/abc-photo.png")
    with pytest.raises(NotFoundError):
        await store.delete_file("contents/files/abc-photo.png")


async def test_list_children_is_sorted_and_tolerates_missing_dir(store: VirtualStore) -> None:
    assert await store.list_children("layouts") == []
    for name in ("layout-b.json", "index.json", "layout-a.json"):
        await store.write_record(f"layouts/{name}", {})
    assert await store.list_children("layouts") == ["index.json", "layout-a.json", "layout-b.json"]


async def test_delete_tree_ignores_missing_directory(store: VirtualStore) -> None:
    await store.delete_tree("contents/csv-nothing")
    await store.write_bytes("contents/csv-1/original-data.csv", b"a,b")
    await store.delete_tree("contents/csv-1")
    assert await store.list_children("contents") == []


async def test_storage_info_and_clear_all(store: VirtualStore) -> None:
    await store.write_bytes("contents/files/a.bin", b"12345")
    await store.write_bytes("contents/thumbnails/a.jpg", b"123")

    info = await store.storage_info()
    assert info.files == 2
    assert info.directories == 3
    assert info.total_bytes == 8

    await store.clear_all()
    assert list(store.root.iterdir()) == []
    assert await store.list_children("contents") == []
