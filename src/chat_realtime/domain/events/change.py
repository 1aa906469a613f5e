"""Row-level change notifications delivered by the change feed."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar, Union

from chat_realtime.domain.value_objects.enums import ChangeKind

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Inserted(Generic[T]):
    record: T
    kind: ClassVar[ChangeKind] = ChangeKind.INSERT


@dataclass(frozen=True, slots=True)
class Updated(Generic[T]):
    record: T
    old: dict[str, Any] | None = None
    kind: ClassVar[ChangeKind] = ChangeKind.UPDATE


@dataclass(frozen=True, slots=True)
class Deleted:
    identity: str
    old: dict[str, Any] | None = None
    kind: ClassVar[ChangeKind] = ChangeKind.DELETE


ChangeEvent = Union[Inserted[T], Updated[T], Deleted]
RowChange = Union[Inserted[dict[str, Any]], Updated[dict[str, Any]], Deleted]


def identity_of(event: RowChange) -> str | None:
    """Primary key of the row an event refers to, if the feed supplied one."""
    if isinstance(event, Deleted):
        return event.identity
    raw = event.record.get("id") if event.record else None
    return str(raw) if raw is not None else None


def row_of(event: RowChange) -> dict[str, Any] | None:
    """The row image used for filtering: new image, or old image for deletes."""
    if isinstance(event, Deleted):
        return event.old
    return event.record
