"""Merge engine.

Reconciles a local and a remote gradebook document with last-writer-wins on
`updated_at`. Merging never drops an entity because it is absent on one side;
only entities named by a local tombstone are left out.
"""

import logging
import re
from datetime import datetime
from typing import List, Optional, Sequence, TypeVar

import pytz

from schemas.gradebook import Classroom, GradebookDocument, Tombstone
from schemas.sync import Conflict, ConflictResolution

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=pytz.utc)

_FRACTION_RE = re.compile(r"(?<=\d{2}:\d{2}:\d{2})\.(\d+)")
_SHORT_OFFSET_RE = re.compile(r"(\d{2}:\d{2}(?::\d{2})?(?:\.\d+)?)([+-]\d{2})$")

T = TypeVar("T")


def parse_timestamp(value: Optional[str]) -> datetime:
    """Parse an ISO-8601 stamp; missing or unparseable stamps sort as the epoch."""
    if not value:
        return EPOCH
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Postgres trims trailing zeros from fractions and may send a bare "+00" offset
    text = _FRACTION_RE.sub(lambda m: "." + (m.group(1) + "000000")[:6], text)
    text = _SHORT_OFFSET_RE.sub(r"\1\2:00", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed


def is_newer(candidate: Optional[str], current: Optional[str]) -> bool:
    """True only when `candidate` is strictly later than `current`."""
    return parse_timestamp(candidate) > parse_timestamp(current)


def merge_by_id(local_items: Sequence[T], remote_items: Sequence[T]) -> List[T]:
    """Set union keyed by `id`.

    Items on both sides keep the copy with the strictly later `updated_at`
    (ties keep local). Items on one side only are kept as they are. Local order
    is preserved, remote-only items follow in remote order.
    """
    remote_by_id = {item.id: item for item in remote_items}
    local_ids = set()
    merged: List[T] = []
    for item in local_items:
        local_ids.add(item.id)
        other = remote_by_id.get(item.id)
        if other is not None and is_newer(other.updated_at, item.updated_at):
            merged.append(other.model_copy(deep=True))
        else:
            merged.append(item.model_copy(deep=True))
    for item in remote_items:
        if item.id not in local_ids:
            merged.append(item.model_copy(deep=True))
    return merged


def _without_buried(classroom: Classroom, tombstones: Sequence[Tombstone]) -> Classroom:
    buried = [t for t in tombstones if t.classroom_id == classroom.id and t.kind != "classroom"]
    if not buried:
        return classroom
    classroom = classroom.model_copy(deep=True)
    classroom.students = [s for s in classroom.students if not any(t.matches("student", classroom.id, s.id) for t in buried)]
    classroom.lessons = [l for l in classroom.lessons if not any(t.matches("lesson", classroom.id, l.id) for t in buried)]
    classroom.columns = [c for c in classroom.columns if not any(t.matches("column", classroom.id, c.id) for t in buried)]
    return classroom


def _fix_counters(merged: Classroom, local: Classroom, remote: Classroom) -> None:
    # Counters never move backwards and always stay above every child id.
    merged.next_sid = max([local.next_sid, remote.next_sid] + [s.id + 1 for s in merged.students])
    merged.next_lid = max([local.next_lid, remote.next_lid] + [l.id + 1 for l in merged.lessons])
    merged.next_cid = max([local.next_cid, remote.next_cid] + [c.id + 1 for c in merged.columns])


def merge_classroom(local: Classroom, remote: Classroom, deep_merge_children: bool = False) -> Classroom:
    """Merge two copies of the same classroom.

    When the remote copy is strictly newer its top-level fields win and its
    students and lessons are merged with the local ones; columns are taken from
    the remote copy. Otherwise the local subtree is kept whole. With
    `deep_merge_children` the children (columns included) are merged whichever
    parent wins.
    """
    remote_wins = is_newer(remote.updated_at, local.updated_at)
    if not remote_wins and not deep_merge_children:
        return local.model_copy(deep=True)

    merged = (remote if remote_wins else local).model_copy(deep=True)
    merged.students = merge_by_id(local.students, remote.students)
    merged.lessons = merge_by_id(local.lessons, remote.lessons)
    if deep_merge_children:
        merged.columns = merge_by_id(local.columns, remote.columns)
    _fix_counters(merged, local, remote)
    return merged


def merge_documents(
    local: GradebookDocument,
    remote: Optional[GradebookDocument],
    deep_merge_children: bool = False,
) -> GradebookDocument:
    """Merge a freshly pulled remote document into the local one.

    The result is a new document; neither input is modified. User, sync
    bookkeeping, pending changes and tombstones come from `local`.
    """
    if remote is None:
        return local

    tombstones = local.tombstones
    buried_classrooms = {t.classroom_id for t in tombstones if t.kind == "classroom"}

    remote_by_id = {
        c.id: _without_buried(c, tombstones)
        for c in remote.classrooms
        if c.id not in buried_classrooms
    }
    classrooms: List[Classroom] = []
    for classroom in local.classrooms:
        other = remote_by_id.pop(classroom.id, None)
        if other is None:
            classrooms.append(classroom.model_copy(deep=True))
        else:
            classrooms.append(merge_classroom(classroom, other, deep_merge_children))
    classrooms.extend(c.model_copy(deep=True) for c in remote_by_id.values())

    merged = local.model_copy(deep=True)
    merged.classrooms = classrooms
    merged.next_id = max(local.next_id, remote.next_id)
    if "export_settings" in remote.model_fields_set:
        merged.export_settings = remote.export_settings.model_copy(deep=True)
    logger.debug(
        "Merged %d local and %d remote classrooms into %d",
        len(local.classrooms), len(remote.classrooms), len(classrooms),
    )
    return merged


def detect_conflicts(local: GradebookDocument, remote: Optional[GradebookDocument]) -> List[Conflict]:
    """Classrooms present on both sides whose `updated_at` differ."""
    if remote is None:
        return []
    remote_by_id = {c.id: c for c in remote.classrooms}
    conflicts = []
    for classroom in local.classrooms:
        other = remote_by_id.get(classroom.id)
        if other is not None and other.updated_at != classroom.updated_at:
            conflicts.append(Conflict(id=classroom.id, local=classroom, cloud=other))
    return conflicts


def apply_conflict_resolution(
    merged: GradebookDocument,
    conflict: Conflict,
    resolution: ConflictResolution,
) -> GradebookDocument:
    """Overwrite the merged copy of a conflicting classroom.

    'local' and 'cloud' replace it with that side's copy; 'merge' keeps the
    automatic merge result.
    """
    if resolution == "merge":
        return merged
    if resolution not in ("local", "cloud"):
        raise ValueError(f"Unknown conflict resolution '{resolution}'")
    chosen = conflict.local if resolution == "local" else conflict.cloud
    for position, classroom in enumerate(merged.classrooms):
        if classroom.id == conflict.id:
            merged.classrooms[position] = chosen.model_copy(deep=True)
            break
    return merged
