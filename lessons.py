"""Owner-scoped lesson storage on top of the key-value store."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from uuid import uuid4

from pydantic import ValidationError

from identity import IdentityProvider
from kv_store import KeyValueStore
from schemas import Lesson

logger = logging.getLogger(__name__)

LESSON_PREFIX = "lesson:"

# Fields a patch may not overwrite: ownership never transfers.
_IMMUTABLE_FIELDS = frozenset({"id", "ownerId", "owner_id", "userId", "createdAt"})


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def lesson_key(owner_id: str, lesson_id: str) -> str:
    return f"{LESSON_PREFIX}{owner_id}:{lesson_id}"


def index_key(owner_id: str) -> str:
    return f"user_lessons:{owner_id}"


class LessonStore:
    """CRUD over lessons, namespaced per owning user.

    Records are persisted exactly as written and normalized through
    :class:`schemas.Lesson` on the way out. "Not found" is reported through
    ``None``/``False`` return values rather than exceptions.
    """

    def __init__(self, store: KeyValueStore, identity: Optional[IdentityProvider] = None):
        self.store = store
        self.identity = identity

    # -------------- index helpers --------------
    def lesson_ids(self, owner_id: str) -> list[str]:
        ids = self.store.get(index_key(owner_id))
        return list(ids) if isinstance(ids, list) else []

    def _append_to_index(self, owner_id: str, lesson_id: str) -> None:
        ids = self.lesson_ids(owner_id)
        ids.append(lesson_id)
        self.store.set(index_key(owner_id), ids)

    def _remove_from_index(self, owner_id: str, lesson_ids: set[str]) -> None:
        ids = self.lesson_ids(owner_id)
        remaining = [lesson_id for lesson_id in ids if lesson_id not in lesson_ids]
        if len(remaining) != len(ids):
            self.store.set(index_key(owner_id), remaining)

    def raw(self, owner_id: str, lesson_id: str) -> Optional[dict[str, Any]]:
        """Return the stored record under the owner's key, unnormalized."""
        record = self.store.get(lesson_key(owner_id, lesson_id))
        return record if isinstance(record, dict) else None

    @staticmethod
    def _parse_many(records: list[Any]) -> list[Lesson]:
        lessons = []
        for record in records:
            if not isinstance(record, dict):
                continue
            try:
                lessons.append(Lesson.model_validate(record))
            except ValidationError as exc:
                logger.warning("Skipping malformed lesson %s: %s", record.get("id"), exc)
        return lessons

    # -------------- CRUD --------------
    def create(self, owner_id: str, data: Mapping[str, Any]) -> Lesson:
        now = _timestamp()
        record = {key: value for key, value in data.items() if key not in _IMMUTABLE_FIELDS}
        record.update(
            {
                "id": str(uuid4()),
                "ownerId": owner_id,
                "createdAt": now,
                "updatedAt": now,
            }
        )
        lesson = Lesson.model_validate(record)
        # Record first, index second: a crash in between leaves an orphan record, never a dangling id.
        self.store.set(lesson_key(owner_id, lesson.id), record)
        self._append_to_index(owner_id, lesson.id)
        return lesson

    def get(self, owner_id: str, lesson_id: str) -> Optional[Lesson]:
        record = self.raw(owner_id, lesson_id)
        if record is None:
            # Ids are globally unique, so viewing someone else's lesson by id is allowed.
            record = self._find_anywhere(lesson_id)
        if record is None:
            return None
        return Lesson.model_validate(record)

    def update(self, owner_id: str, lesson_id: str, patch: Mapping[str, Any]) -> Optional[Lesson]:
        existing = self.raw(owner_id, lesson_id)
        if existing is None:
            return None
        record = dict(existing)
        record.update({key: value for key, value in patch.items() if key not in _IMMUTABLE_FIELDS})
        record["updatedAt"] = _timestamp()
        lesson = Lesson.model_validate(record)
        self.store.set(lesson_key(owner_id, lesson_id), record)
        return lesson

    def delete(self, owner_id: str, lesson_id: str) -> bool:
        """Delete a lesson; returns whether it existed. Deleting twice is fine."""
        existed = self.raw(owner_id, lesson_id) is not None
        self.store.delete(lesson_key(owner_id, lesson_id))
        self._remove_from_index(owner_id, {lesson_id})
        return existed

    # -------------- listings --------------
    def list_owned(self, owner_id: str) -> list[Lesson]:
        records = []
        for lesson_id in self.lesson_ids(owner_id):
            record = self.raw(owner_id, lesson_id)
            if record is None:
                logger.debug("Index of %s references missing lesson %s", owner_id, lesson_id)
                continue
            records.append(record)
        return self._parse_many(records)

    def _all_records(self) -> list[dict[str, Any]]:
        return [record for record in self.store.get_by_prefix(LESSON_PREFIX) if isinstance(record, dict)]

    def _find_anywhere(self, lesson_id: str) -> Optional[dict[str, Any]]:
        for record in self._all_records():
            if record.get("id") == lesson_id:
                return record
        return None

    def list_all(self) -> list[dict[str, Any]]:
        """Every lesson across owners, annotated with author name and email."""
        authors: dict[str, tuple[str, str]] = {}
        annotated = []
        for lesson in self._parse_many(self._all_records()):
            if lesson.owner_id not in authors:
                author = self.identity.get_user(lesson.owner_id) if self.identity else None
                authors[lesson.owner_id] = (
                    (author.name, author.email) if author else ("Anonymous", "")
                )
            name, email = authors[lesson.owner_id]
            payload = lesson.to_wire()
            payload["authorName"] = name
            payload["authorEmail"] = email
            annotated.append(payload)
        return annotated

    # -------------- copies & curriculum --------------
    def copy_to_owner(self, lesson_id: str, new_owner_id: str) -> Optional[Lesson]:
        source = self._find_anywhere(lesson_id)
        if source is None:
            return None
        record = copy.deepcopy(source)
        source_owner = record.pop("ownerId", None) or record.pop("userId", None)
        record.pop("userId", None)
        # A copy belongs to its new owner, so reseeding and clearing never touch it.
        record.pop("isCurriculumLesson", None)
        now = _timestamp()
        record.update(
            {
                "id": str(uuid4()),
                "ownerId": new_owner_id,
                "originalLessonId": lesson_id,
                "originalAuthorId": source_owner,
                "addedAt": now,
                "createdAt": now,
                "updatedAt": now,
            }
        )
        lesson = Lesson.model_validate(record)
        self.store.set(lesson_key(new_owner_id, lesson.id), record)
        self._append_to_index(new_owner_id, lesson.id)
        return lesson

    def curriculum_lesson_ids(self, owner_id: str) -> list[str]:
        ids = []
        for lesson_id in self.lesson_ids(owner_id):
            record = self.raw(owner_id, lesson_id)
            if record is not None and record.get("isCurriculumLesson") is True:
                ids.append(lesson_id)
        return ids

    def clear_curriculum(self, owner_id: str) -> int:
        """Delete every lesson flagged ``isCurriculumLesson``; returns the count.

        The flag alone decides: a user-authored lesson filed under a
        curriculum category is kept.
        """
        doomed = self.curriculum_lesson_ids(owner_id)
        for lesson_id in doomed:
            self.store.delete(lesson_key(owner_id, lesson_id))
            logger.debug("Deleted curriculum lesson %s of %s", lesson_id, owner_id)
        self._remove_from_index(owner_id, set(doomed))
        return len(doomed)
