"""
Checkpoint value and its serialized form.

A checkpoint records, per change stream, the (time, uuid) position of the
last record the connector consumed. It is persisted after every emitted
event and handed back on the next traversal so each stream resumes after
its own last position.

Serialized form (JSON object, keys sorted):
    {
        "lastModified": "2015-04-01T10:00:00.100-0700", "uuid": "{...}",
        "lastRemoveDate": "...", "uuidToDelete": "...",
        "lastModifiedDate": "...", "uuidToDeleteDocs": "...",
        "lastFolderTime": "...", "uuidFolder": "...",
        "uuidWalkRoot": "...", "uuidWalkFolder": "..."
    }

The FOLDER slot is the root folder cursor: it names the last root whose
whole sub-tree was walked. The walk fields name the root being walked and
the last folder consumed under it, so an interrupted walk can be finished.

Invariants:
    - Slots are independent; a missing slot means "from the beginning"
    - A slot position never regresses through advance()
    - serialize() is stable: equal checkpoints give byte-identical text
    - Unknown keys in persisted state are carried forward unchanged

How to change safely:
    - Never rename a JSON field; persisted checkpoints outlive releases
    - New slots must default to absent
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import CheckpointFormatError
from ..source.ids import DatabaseType, id_sort_key

logger = logging.getLogger(__name__)

_TIME_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
)


class CheckpointSlot(Enum):
    """Independently tracked resume positions.

    Each value is the pair of JSON fields (time, uuid) used to persist it.
    """

    ADD = ("lastModified", "uuid")
    DELETION_EVENT = ("lastRemoveDate", "uuidToDelete")
    CUSTOM_DELETE = ("lastModifiedDate", "uuidToDeleteDocs")
    FOLDER = ("lastFolderTime", "uuidFolder")

    @property
    def time_field(self) -> str:
        return self.value[0]

    @property
    def uuid_field(self) -> str:
        return self.value[1]


def format_time(value: datetime) -> str:
    """Format a timestamp as ISO 8601 with milliseconds and numeric offset.

    Naive timestamps are taken to be UTC. Sub-millisecond precision is kept
    by writing microseconds when they are not a whole number of milliseconds.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    micros = value.microsecond
    fraction = f"{micros // 1000:03d}" if micros % 1000 == 0 else f"{micros:06d}"
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + fraction + value.strftime("%z")


def parse_time(text: str) -> datetime:
    """Parse a checkpoint timestamp.

    Raises:
        CheckpointFormatError: If the text matches no accepted format
    """
    for fmt in _TIME_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise CheckpointFormatError(f"Invalid checkpoint timestamp: {text!r}")


@dataclass(frozen=True)
class Position:
    """Resume position within one change stream.

    Attributes:
        time: Modification time of the last consumed record
        uuid: Id of the last consumed record ("" when unknown)
    """

    time: datetime
    uuid: str = ""

    def sort_key(
        self, database_type: DatabaseType | None = None
    ) -> tuple[datetime, tuple[int, str]]:
        """Key ordering positions the same way records are merged."""
        return (self.time, id_sort_key(self.uuid, database_type))

    def __str__(self) -> str:
        return f"{format_time(self.time)}/{self.uuid}"


WALK_ROOT_FIELD = "uuidWalkRoot"
WALK_FOLDER_FIELD = "uuidWalkFolder"


@dataclass(frozen=True)
class FolderWalk:
    """Progress through the sub-tree of one root folder.

    Attributes:
        root_id: Root folder whose sub-tree is being walked
        folder_id: Last folder consumed in that sub-tree
    """

    root_id: str
    folder_id: str


@dataclass(frozen=True)
class Checkpoint:
    """Immutable set of per-slot resume positions.

    Attributes:
        positions: Position per slot; absent slots start from the beginning
        folder_walk: Unfinished root folder walk, or None between roots
        extra: Unrecognized fields from persisted state, written back as-is

    Example:
        >>> cp = Checkpoint()
        >>> cp = cp.advance(CheckpointSlot.ADD, Position(when, "{A...}"))
        >>> state = cp.serialize()
        >>> Checkpoint.parse(state) == cp
        True
    """

    positions: Mapping[CheckpointSlot, Position] = field(default_factory=dict)
    folder_walk: FolderWalk | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def get(self, slot: CheckpointSlot) -> Position | None:
        """Position stored for a slot, or None for a fresh slot."""
        return self.positions.get(slot)

    def with_position(self, slot: CheckpointSlot, position: Position) -> Checkpoint:
        """Return a copy with one slot replaced unconditionally."""
        positions = dict(self.positions)
        positions[slot] = position
        return replace(self, positions=positions)

    def with_folder_walk(self, walk: FolderWalk | None) -> Checkpoint:
        """Return a copy recording (or clearing) the folder walk."""
        return replace(self, folder_walk=walk)

    def advance(
        self,
        slot: CheckpointSlot,
        position: Position,
        database_type: DatabaseType | None = None,
    ) -> Checkpoint:
        """Return a copy with the slot moved forward to ``position``.

        The slot is left untouched when ``position`` is not after the stored
        one, so a checkpoint never regresses. Positions whose times cannot be
        compared replace the stored one.
        """
        current = self.positions.get(slot)
        if current is not None:
            try:
                if position.sort_key(database_type) <= current.sort_key(database_type):
                    return self
            except TypeError:
                logger.warning(
                    "Unable to compare checkpoint positions",
                    extra={"slot": slot.name, "current": str(current), "new": str(position)},
                )
        return self.with_position(slot, position)

    @property
    def is_empty(self) -> bool:
        return not self.positions and self.folder_walk is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON-ready mapping that is persisted."""
        data = dict(self.extra)
        for slot, position in self.positions.items():
            data[slot.time_field] = format_time(position.time)
            data[slot.uuid_field] = position.uuid
        if self.folder_walk is not None:
            data[WALK_ROOT_FIELD] = self.folder_walk.root_id
            data[WALK_FOLDER_FIELD] = self.folder_walk.folder_id
        return data

    def serialize(self) -> str:
        """Serialize to stable JSON text."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    @classmethod
    def parse(cls, serialized: str | None) -> Checkpoint:
        """Parse persisted checkpoint state.

        None or blank text yields an empty checkpoint (fresh crawl).

        Raises:
            CheckpointFormatError: If the state is structurally invalid
        """
        if serialized is None or not serialized.strip():
            return cls()

        try:
            data = json.loads(serialized)
        except json.JSONDecodeError as e:
            raise CheckpointFormatError(f"Checkpoint is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise CheckpointFormatError(
                f"Checkpoint must be a JSON object, got {type(data).__name__}"
            )

        positions: dict[CheckpointSlot, Position] = {}
        for slot in CheckpointSlot:
            time_value = data.pop(slot.time_field, None)
            uuid_value = data.pop(slot.uuid_field, None)

            if uuid_value is not None and not isinstance(uuid_value, str):
                raise CheckpointFormatError(
                    f"Checkpoint field {slot.uuid_field} must be a string",
                    field_name=slot.uuid_field,
                )
            if time_value is None:
                continue
            if not isinstance(time_value, str):
                raise CheckpointFormatError(
                    f"Checkpoint field {slot.time_field} must be a string",
                    field_name=slot.time_field,
                )

            try:
                when = parse_time(time_value)
            except CheckpointFormatError as e:
                raise CheckpointFormatError(e.message, field_name=slot.time_field) from e

            positions[slot] = Position(time=when, uuid=uuid_value or "")

        return cls(positions=positions, folder_walk=_parse_folder_walk(data), extra=data)


def parse(serialized: str | None) -> Checkpoint:
    """Parse persisted checkpoint state. See Checkpoint.parse."""
    return Checkpoint.parse(serialized)


def serialize(checkpoint: Checkpoint) -> str:
    """Serialize a checkpoint to stable JSON text."""
    return checkpoint.serialize()


def _parse_folder_walk(data: dict[str, Any]) -> FolderWalk | None:
    root_id = data.pop(WALK_ROOT_FIELD, None)
    folder_id = data.pop(WALK_FOLDER_FIELD, None)
    if root_id is None and folder_id is None:
        return None
    for name, value in ((WALK_ROOT_FIELD, root_id), (WALK_FOLDER_FIELD, folder_id)):
        if not isinstance(value, str) or not value:
            raise CheckpointFormatError(
                f"Checkpoint field {name} must be a non-empty string",
                field_name=name,
            )
    return FolderWalk(root_id=root_id, folder_id=folder_id)
