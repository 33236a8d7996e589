from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Generic, Mapping, TypeVar

from pydantic import BaseModel

from ..canonical import fingerprint
from ..errors import CorruptRecordError, NotFoundError, ValidationError
from ..locks import ResourceLockManager
from ..models import Entity, IndexEntry, utc_now
from ..store import VirtualStore
from ..validators import IndexValidator, SchemaValidator

logger = logging.getLogger(__name__)

DetailT = TypeVar("DetailT", bound=Entity)
EntryT = TypeVar("EntryT", bound=IndexEntry)

# Fields owned by the repository; an update payload never changes them.
PINNED_FIELDS = ("id", "createdAt", "updatedAt")

Transform = Callable[[Any], Awaitable["dict[str, Any] | None"]]
Hook = Callable[[], Awaitable[None]]


def new_record_id() -> str:
    return str(uuid.uuid4())


def camel_key(key: str) -> str:
    """Camel-case a snake_case key; keys without underscores pass through."""
    if "_" not in key:
        return key
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def camelize(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {camel_key(str(key)): value for key, value in payload.items()}


def dump_record(record: BaseModel) -> dict[str, Any]:
    return record.model_dump(by_alias=True, exclude_none=True)


@dataclass
class MigrationReport:
    entity: str
    scanned: int = 0
    rewritten: int = 0
    index_rewritten: bool = False
    failed: list[str] = field(default_factory=list)


class EntityRepository(Generic[DetailT, EntryT]):
    """Keeps one entity's detail records and its summary index consistent.

    Every mutation runs inside the entity's lock (``<prefix>-<id>``, or
    ``<directory>-create`` for creation) and rewrites the index while also
    holding ``<directory>-index``. Lock order is always entity, then index.
    """

    directory: ClassVar[str]
    prefix: ClassVar[str]
    validator: ClassVar[SchemaValidator[Any]]
    index_validator: ClassVar[IndexValidator[Any]]

    def __init__(self, store: VirtualStore, locks: ResourceLockManager) -> None:
        self._store = store
        self._locks = locks

    # -- paths and lock keys ------------------------------------------------

    @property
    def index_path(self) -> str:
        return f"{self.directory}/index.json"

    def detail_path(self, record_id: str) -> str:
        return f"{self.directory}/{self.prefix}-{record_id}.json"

    def lock_key(self, record_id: str) -> str:
        return f"{self.prefix}-{record_id}"

    @property
    def create_key(self) -> str:
        return f"{self.directory}-create"

    @property
    def index_key(self) -> str:
        return f"{self.directory}-index"

    # -- per-entity hooks ---------------------------------------------------

    def summarize(self, record: DetailT) -> EntryT:
        raise NotImplementedError

    def order_index(self, entries: list[EntryT]) -> list[EntryT]:
        return entries

    async def _check_references(self, record: DetailT) -> None:
        return None

    async def _delete_assets(self, record: DetailT) -> None:
        return None

    # -- reads --------------------------------------------------------------

    async def list_index(self) -> list[EntryT]:
        """Return the summary index without taking any lock.

        A missing or unreadable index is replaced by a persisted empty one.
        """
        entries = await self._load_index()
        if entries is None:
            entries = await self._locks.with_lock(self.index_key, self._bootstrap_index)
        self._locks.record_read_timestamp(self.index_path)
        return entries

    async def get_by_id(self, record_id: str) -> DetailT | None:
        """Return the validated detail record, or None when it does not exist.

        Queues behind any in-flight mutation of the same id.
        """

        async def read() -> DetailT | None:
            try:
                return await self._read_detail(record_id)
            except NotFoundError:
                return None

        record = await self._locks.with_lock(self.lock_key(record_id), read)
        if record is not None:
            self._locks.record_read_timestamp(self.detail_path(record_id))
        return record

    async def _read_detail(self, record_id: str) -> DetailT:
        path = self.detail_path(record_id)
        try:
            raw = await self._store.read_record(path)
        except NotFoundError as exc:
            raise NotFoundError(f"{self.prefix} {record_id} not found", path=path, record_id=record_id) from exc
        return self.validator.validate(raw)

    async def _load_index(self) -> list[EntryT] | None:
        try:
            raw = await self._store.read_record(self.index_path)
        except NotFoundError:
            return None
        except CorruptRecordError as exc:
            logger.warning("%s is corrupt, treating it as absent: %s", self.index_path, exc)
            return None
        try:
            return self.index_validator.validate(raw)
        except ValidationError as exc:
            logger.warning("%s is invalid, treating it as absent: %s", self.index_path, exc)
            return None

    async def _bootstrap_index(self) -> list[EntryT]:
        entries = await self._load_index()
        if entries is not None:
            return entries
        await self._store.write_record(self.index_path, [])
        logger.info("initialized empty index at %s", self.index_path)
        return []

    # -- writes -------------------------------------------------------------

    async def create(self, payload: Mapping[str, Any]) -> DetailT:
        """Validate *payload* as a new record, persist it, and add its index entry.

        Raises:
            ValidationError: If the payload (or a reference it makes) is invalid.
        """
        record = self._new_record(payload)
        return await self._locks.with_lock(self.create_key, lambda: self._insert(record))

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> DetailT:
        """Shallow-merge *changes* into the stored record and persist the result.

        Raises:
            NotFoundError: If no record has this id.
            ValidationError: If the merged record is invalid.
        """
        normalized = camelize(changes)

        async def transform(current: DetailT) -> dict[str, Any]:
            return {**dump_record(current), **normalized}

        return await self._mutate(record_id, transform)

    async def delete(self, record_id: str) -> None:
        """Remove the detail record, its assets and its index entry.

        Raises:
            NotFoundError: If no record has this id.
        """

        async def section() -> None:
            path = self.detail_path(record_id)
            try:
                record = await self._read_detail(record_id)
            except (CorruptRecordError, ValidationError) as exc:
                logger.warning("deleting unreadable %s %s without asset cleanup: %s", self.prefix, record_id, exc)
            else:
                await self._delete_assets(record)
            await self._store.delete_record(path)
            await self._apply_to_index(remove=record_id)
            self._locks.clear_timestamp(path)
            logger.debug("deleted %s %s", self.prefix, record_id)

        await self._locks.with_lock(self.lock_key(record_id), section)

    def _new_record(self, payload: Mapping[str, Any], record_id: str | None = None) -> DetailT:
        now = utc_now()
        raw = {**camelize(payload), "id": record_id or new_record_id(), "createdAt": now, "updatedAt": now}
        return self.validator.validate(raw)

    async def _insert(self, record: DetailT) -> DetailT:
        await self._check_references(record)
        await self._write_detail(record)
        await self._apply_to_index(upsert=record)
        logger.debug("created %s %s", self.prefix, record.id)
        return record

    async def _write_detail(self, record: DetailT) -> None:
        await self._store.write_record(self.detail_path(record.id), record)

    async def _mutate(
        self,
        record_id: str,
        transform: Transform,
        *,
        on_abort: Hook | None = None,
        on_commit: Hook | None = None,
    ) -> DetailT:
        """Read, transform and rewrite one record inside its lock.

        *transform* receives the current record and returns the merged raw
        record, or None to leave the record untouched. ``on_abort`` runs when
        the detail record was not rewritten because the transform, validation
        or the detail write failed; ``on_commit`` runs once detail and index
        are both written.
        """

        async def section() -> DetailT:
            try:
                current = await self._read_detail(record_id)
                merged = await transform(current)
                if merged is None:
                    return current
                record = self._restamp(current, merged)
                await self._check_references(record)
                await self._write_detail(record)
            except BaseException:
                if on_abort is not None:
                    await on_abort()
                raise
            await self._apply_to_index(upsert=record)
            if on_commit is not None:
                await on_commit()
            logger.debug("updated %s %s", self.prefix, record_id)
            return record

        return await self._locks.with_lock(self.lock_key(record_id), section)

    def _restamp(self, current: DetailT, merged: Mapping[str, Any]) -> DetailT:
        raw = dict(merged)
        for key in PINNED_FIELDS:
            raw.pop(key, None)
        raw["id"] = current.id
        raw["createdAt"] = current.created_at
        raw["updatedAt"] = utc_now()
        return self.validator.validate(raw)

    async def _apply_to_index(self, *, upsert: DetailT | None = None, remove: str | None = None) -> list[EntryT]:
        """Rewrite the whole index with one entry upserted or removed.

        Entries whose detail record no longer exists are pruned on the way.
        """
        async with self._locks.hold(self.index_key):
            entries = await self._load_index() or []
            kept: list[EntryT] = []
            for entry in entries:
                entry_id = entry.id
                if entry_id == remove:
                    continue
                if upsert is not None and entry_id == upsert.id:
                    kept.append(entry)
                    continue
                if await self._store.exists(self.detail_path(entry_id)):
                    kept.append(entry)
                else:
                    logger.warning("pruning ghost %s index entry %s", self.prefix, entry_id)

            if upsert is not None:
                summary = self.summarize(upsert)
                for position, entry in enumerate(kept):
                    if entry.id == summary.id:
                        kept[position] = summary
                        break
                else:
                    kept.append(summary)

            ordered = self.order_index(kept)
            await self._store.write_record(self.index_path, ordered)
            return ordered

    # -- maintenance --------------------------------------------------------

    async def _detail_ids(self) -> list[str]:
        head, tail = f"{self.prefix}-", ".json"
        return [
            name[len(head) : -len(tail)]
            for name in await self._store.list_children(self.directory)
            if name.startswith(head) and name.endswith(tail) and len(name) > len(head) + len(tail)
        ]

    async def rebuild_index(self) -> list[EntryT]:
        """Regenerate the index from the detail records on disk.

        Unreadable records are skipped with a warning. Entries are ordered by
        creation time before the entity's own ordering applies.
        """

        async def section() -> list[EntryT]:
            entries: list[EntryT] = []
            for record_id in await self._detail_ids():
                try:
                    record = await self._read_detail(record_id)
                except (CorruptRecordError, ValidationError) as exc:
                    logger.warning("skipping unreadable %s %s: %s", self.prefix, record_id, exc)
                    continue
                entries.append(self.summarize(record))
            entries.sort(key=lambda entry: entry.created_at)
            ordered = self.order_index(entries)
            await self._store.write_record(self.index_path, ordered)
            logger.info("rebuilt %s with %d entries", self.index_path, len(ordered))
            return ordered

        return await self._locks.with_lock(self.index_key, section)

    async def migrate_legacy(self) -> MigrationReport:
        """Rewrite records whose stored form predates the current schema.

        A record is rewritten only when its upgraded form differs from what
        is on disk.
        """
        report = MigrationReport(entity=self.directory)
        for record_id in await self._detail_ids():
            report.scanned += 1
            try:
                changed = await self._locks.with_lock(self.lock_key(record_id), lambda: self._migrate_one(record_id))
            except (CorruptRecordError, ValidationError) as exc:
                logger.warning("cannot migrate %s %s: %s", self.prefix, record_id, exc)
                report.failed.append(record_id)
                continue
            if changed:
                report.rewritten += 1
        report.index_rewritten = await self._locks.with_lock(self.index_key, self._migrate_index)
        return report

    async def _migrate_one(self, record_id: str) -> bool:
        path = self.detail_path(record_id)
        try:
            raw = await self._store.read_record(path)
        except NotFoundError:
            return False
        record = self.validator.validate(raw)
        if fingerprint(raw) == fingerprint(record):
            return False
        await self._store.write_record(path, record)
        logger.info("migrated %s", path)
        return True

    async def _migrate_index(self) -> bool:
        try:
            raw = await self._store.read_record(self.index_path)
        except (NotFoundError, CorruptRecordError):
            return False
        try:
            entries = self.index_validator.validate(raw)
        except ValidationError as exc:
            logger.warning("%s cannot be migrated: %s", self.index_path, exc)
            return False
        if fingerprint(raw) == fingerprint(entries):
            return False
        await self._store.write_record(self.index_path, entries)
        logger.info("migrated %s", self.index_path)
        return True
