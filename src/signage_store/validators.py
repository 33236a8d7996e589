from __future__ import annotations

import copy
from typing import Any, Callable, Generic, TypeVar

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import (
    ALL_WEEKDAYS,
    ContentIndexEntry,
    ContentItem,
    LayoutIndexEntry,
    LayoutItem,
    PlaylistIndexEntry,
    PlaylistItem,
    ScheduleIndexEntry,
    ScheduleItem,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

Upgrade = Callable[[dict[str, Any]], dict[str, Any]]


# ---------------------------------------------------------------------------
# Legacy upgrades
# ---------------------------------------------------------------------------


def _fill_updated_at(raw: dict[str, Any]) -> dict[str, Any]:
    if raw.get("updatedAt") is None and raw.get("createdAt") is not None:
        raw["updatedAt"] = raw["createdAt"]
    return raw


def upgrade_content(raw: dict[str, Any]) -> dict[str, Any]:
    if raw.get("type") == "rich-text":
        raw["type"] = "text"
    if "richTextInfo" in raw:
        legacy = raw.pop("richTextInfo")
        raw.setdefault("textInfo", legacy)
    if raw.get("tags") is None:
        raw["tags"] = []
    return _fill_updated_at(raw)


def upgrade_layout(raw: dict[str, Any]) -> dict[str, Any]:
    regions = raw.get("regions")
    if isinstance(regions, list):
        for position, region in enumerate(regions):
            if isinstance(region, dict) and region.get("zIndex") is None:
                region["zIndex"] = position
    return _fill_updated_at(raw)


def upgrade_playlist(raw: dict[str, Any]) -> dict[str, Any]:
    if raw.get("contentAssignments") is None:
        raw["contentAssignments"] = []
    assignments = raw["contentAssignments"]
    for assignment in assignments if isinstance(assignments, list) else ():
        if not isinstance(assignment, dict):
            continue
        if assignment.get("contentIds") is None:
            assignment["contentIds"] = []
        if assignment.get("contentDurations") is None:
            assignment["contentDurations"] = []
    return _fill_updated_at(raw)


def upgrade_schedule(raw: dict[str, Any]) -> dict[str, Any]:
    if raw.get("weekdays") is None:
        raw["weekdays"] = list(ALL_WEEKDAYS)
    if raw.get("enabled") is None:
        raw["enabled"] = True
    return _fill_updated_at(raw)


def upgrade_content_entry(raw: dict[str, Any]) -> dict[str, Any]:
    if raw.get("type") == "rich-text":
        raw["type"] = "text"
    if raw.get("tags") is None:
        raw["tags"] = []
    return _fill_updated_at(raw)


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


class SchemaValidator(Generic[ModelT]):
    """Validate one entity's detail record, repairing legacy shapes first.

    The upgrade step only fills defaults that older records lack, so
    re-validating a dumped record is a no-op.
    """

    def __init__(self, entity: str, model: type[ModelT], upgrade: Upgrade = _fill_updated_at) -> None:
        self.entity = entity
        self.model = model
        self._upgrade = upgrade

    def upgrade(self, raw: Any) -> Any:
        if not isinstance(raw, dict):
            return raw
        return self._upgrade(copy.deepcopy(raw))

    def validate(self, raw: Any) -> ModelT:
        """Return the validated record.

        Raises:
            ValidationError: If the (upgraded) record does not match the schema.
        """
        if isinstance(raw, self.model):
            raw = raw.model_dump(by_alias=True, exclude_none=True)
        if not isinstance(raw, dict):
            raise ValidationError.single(self.entity, "", f"expected an object, got {type(raw).__name__}")
        try:
            return self.model.model_validate(self.upgrade(raw))
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(self.entity, exc) from exc


class IndexValidator(Generic[ModelT]):
    """Validate a whole index file: a JSON array of summary entries."""

    def __init__(self, entity: str, entry_model: type[ModelT], upgrade: Upgrade = _fill_updated_at) -> None:
        self.entity = entity
        self.entry_model = entry_model
        self._adapter = TypeAdapter(list[entry_model])  # type: ignore[valid-type]
        self._upgrade = upgrade

    def validate(self, raw: Any) -> list[ModelT]:
        if not isinstance(raw, list):
            raise ValidationError.single(f"{self.entity} index", "", f"expected an array, got {type(raw).__name__}")
        entries = [self._upgrade(copy.deepcopy(item)) if isinstance(item, dict) else item for item in raw]
        try:
            return self._adapter.validate_python(entries)
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(f"{self.entity} index", exc) from exc


content_validator = SchemaValidator("content", ContentItem, upgrade_content)
layout_validator = SchemaValidator("layout", LayoutItem, upgrade_layout)
playlist_validator = SchemaValidator("playlist", PlaylistItem, upgrade_playlist)
schedule_validator = SchemaValidator("schedule", ScheduleItem, upgrade_schedule)

content_index_validator = IndexValidator("content", ContentIndexEntry, upgrade_content_entry)
layout_index_validator = IndexValidator("layout", LayoutIndexEntry)
playlist_index_validator = IndexValidator("playlist", PlaylistIndexEntry)
schedule_index_validator = IndexValidator("schedule", ScheduleIndexEntry, upgrade_schedule)
