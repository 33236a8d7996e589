from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

import anyio
import anyio.to_thread

from .canonical import to_jsonable
from .errors import CorruptRecordError, NotFoundError, StoreError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# File helpers (run in worker threads)
# ---------------------------------------------------------------------------


def _atomic_write_bytes(path: Path, content: bytes) -> None:
    """Write *content* to *path* atomically.

    Writes to a temporary file in the same directory, fsyncs it, then
    renames (``os.replace``) into place so readers never observe a partial
    record.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _directory_usage(root: Path) -> tuple[int, int, int]:
    directories = files = total = 0
    for current, dirnames, filenames in os.walk(root):
        directories += len(dirnames)
        for name in filenames:
            files += 1
            total += (Path(current) / name).stat().st_size
    return directories, files, total


def _remove_children(root: Path) -> None:
    for child in root.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


@dataclass(frozen=True)
class StorageInfo:
    directories: int
    files: int
    total_bytes: int


class VirtualStore:
    """Sandboxed, path-keyed store for JSON records and binary assets.

    Every path is a ``/``-separated string relative to the store root. Paths
    that are absolute, contain ``..`` or contain empty segments are rejected
    so no operation can escape the sandbox.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def __repr__(self) -> str:
        return f"VirtualStore(root={str(self.root)!r})"

    def resolve(self, path: str) -> Path:
        """Map a store-relative path onto the filesystem.

        Raises:
            StoreError: If the path is empty, absolute, or escapes the root.
        """
        if not path or path.startswith("/") or "\\" in path:
            raise StoreError(f"Invalid store path: {path!r}", path=path)
        parts = path.split("/")
        if any(part in {"", ".", ".."} for part in parts):
            raise StoreError(f"Invalid store path: {path!r}", path=path)
        return self.root.joinpath(*PurePosixPath(path).parts)

    # -- structured records -------------------------------------------------

    async def read_record(self, path: str) -> Any:
        """Read and decode the JSON record stored at *path*.

        Args:
            path: Store-relative path of the record.

        Returns:
            The decoded JSON value.

        Raises:
            NotFoundError: If nothing was ever written at *path*.
            CorruptRecordError: If the payload is not valid UTF-8 JSON.
            StoreError: On any other I/O failure.
        """
        raw = await self.read_bytes(path)
        try:
            text = raw.decode("utf-8")
            if not text.strip():
                raise ValueError("record is empty")
            return json.loads(text)
        except ValueError as exc:
            raise CorruptRecordError(f"Record at {path} is not valid JSON: {exc}", path=path) from exc

    async def write_record(self, path: str, value: Any) -> None:
        """Serialize *value* as indented UTF-8 JSON and write it atomically."""
        try:
            payload = json.dumps(to_jsonable(value), indent=2, ensure_ascii=False)
        except TypeError as exc:
            raise StoreError(f"Cannot serialize record for {path}: {exc}", path=path) from exc
        await self.write_bytes(path, payload.encode("utf-8"))

    async def delete_record(self, path: str) -> None:
        await self.delete_file(path)

    # -- binary payloads ----------------------------------------------------

    async def read_bytes(self, path: str) -> bytes:
        target = anyio.Path(self.resolve(path))
        try:
            data = await target.read_bytes()
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise NotFoundError(f"Nothing stored at {path}", path=path) from exc
        except IsADirectoryError as exc:
            raise StoreError(f"{path} is a directory", path=path) from exc
        except OSError as exc:
            raise StoreError(f"Failed to read {path}: {exc}", path=path) from exc
        logger.debug("read %s (%d bytes)", path, len(data))
        return data

    async def write_bytes(self, path: str, data: bytes) -> None:
        target = self.resolve(path)
        try:
            await anyio.to_thread.run_sync(_atomic_write_bytes, target, data)
        except OSError as exc:
            raise StoreError(f"Failed to write {path}: {exc}", path=path) from exc
        logger.debug("wrote %s (%d bytes)", path, len(data))

    async def delete_file(self, path: str) -> None:
        """Remove the file at *path*.

        Raises:
            NotFoundError: If the file does not exist.
        """
        target = anyio.Path(self.resolve(path))
        try:
            await target.unlink()
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise NotFoundError(f"Nothing stored at {path}", path=path) from exc
        except OSError as exc:
            raise StoreError(f"Failed to delete {path}: {exc}", path=path) from exc
        logger.debug("deleted %s", path)

    async def delete_tree(self, path: str) -> None:
        """Remove the directory at *path* and everything below it, if present."""
        target = self.resolve(path)
        try:
            await anyio.to_thread.run_sync(shutil.rmtree, target)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StoreError(f"Failed to delete {path}: {exc}", path=path) from exc
        logger.debug("deleted tree %s", path)

    async def exists(self, path: str) -> bool:
        target = anyio.Path(self.resolve(path))
        try:
            return await target.is_file()
        except OSError as exc:
            raise StoreError(f"Failed to stat {path}: {exc}", path=path) from exc

    async def list_children(self, dir_path: str) -> list[str]:
        """Return the sorted names directly under *dir_path*; missing directory yields []."""
        target = anyio.Path(self.resolve(dir_path))
        names: list[str] = []
        try:
            async for child in target.iterdir():
                names.append(child.name)
        except (FileNotFoundError, NotADirectoryError):
            return []
        except OSError as exc:
            raise StoreError(f"Failed to list {dir_path}: {exc}", path=dir_path) from exc
        return sorted(names)

    # -- whole-store maintenance -------------------------------------------

    async def storage_info(self) -> StorageInfo:
        try:
            directories, files, total = await anyio.to_thread.run_sync(_directory_usage, self.root)
        except OSError as exc:
            raise StoreError(f"Failed to measure {self.root}: {exc}") from exc
        return StorageInfo(directories=directories, files=files, total_bytes=total)

    async def clear_all(self) -> None:
        """Remove every file and directory under the store root."""
        try:
            await anyio.to_thread.run_sync(_remove_children, self.root)
        except OSError as exc:
            raise StoreError(f"Failed to clear {self.root}: {exc}") from exc
        logger.info("cleared store at %s", self.root)
