"""Built-in curriculum catalog and the per-user seeding state machine.

Every user's dashboard starts with the same set of built-in lessons. The
seeder copies the catalog into the user's lesson store once, remembers that it
did so, and on a forced reload replaces only the lessons it created earlier.
"""

from __future__ import annotations

import json
import logging
import threading
import weakref
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import yaml

from kv_store import KeyValueStore
from lessons import LessonStore

logger = logging.getLogger(__name__)

_SEED_LOGGER = logging.getLogger("sourcing.curriculum")


class CatalogError(ValueError):
    """Raised when a curriculum catalog file cannot be used."""


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CurriculumCatalog:
    version: int
    lessons: tuple[Dict[str, Any], ...]

    def __len__(self) -> int:
        return len(self.lessons)

    @property
    def expected_lesson_count(self) -> int:
        return len(self.lessons)

    def module_counts(self) -> Dict[str, int]:
        return dict(Counter(str(lesson.get("category") or "") for lesson in self.lessons))


def _load_payload(path: Path) -> Any:
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix == ".json":
        return json.loads(text)
    if suffix in {".yml", ".yaml"}:
        return yaml.safe_load(text)
    raise CatalogError(f"Unsupported catalog format: {path}")


def parse_catalog(payload: Any) -> CurriculumCatalog:
    if isinstance(payload, list):
        payload = {"version": 1, "lessons": payload}
    if not isinstance(payload, dict):
        raise CatalogError("Catalog must be a mapping with a 'lessons' list")
    lessons = payload.get("lessons")
    if not isinstance(lessons, list):
        raise CatalogError("Catalog must contain a 'lessons' list")
    templates = []
    for position, template in enumerate(lessons, start=1):
        if not isinstance(template, dict) or not str(template.get("title") or "").strip():
            raise CatalogError(f"Catalog lesson #{position} needs a title")
        if "id" in template or "ownerId" in template:
            raise CatalogError(f"Catalog lesson #{position} must not carry id/ownerId")
        templates.append(template)
    try:
        version = int(payload.get("version", 1))
    except (TypeError, ValueError):
        raise CatalogError(f"Catalog version must be an integer: {payload.get('version')!r}") from None
    return CurriculumCatalog(version=version, lessons=tuple(templates))


@lru_cache(maxsize=8)
def load_catalog(path: Union[str, Path]) -> CurriculumCatalog:
    """Load and cache the catalog stored at ``path`` (YAML or JSON)."""
    path = Path(path)
    try:
        payload = _load_payload(path)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise CatalogError(f"Could not read catalog {path}: {exc}") from exc
    catalog = parse_catalog(payload)
    logger.info("Loaded curriculum catalog v%s with %d lessons from %s", catalog.version, len(catalog), path)
    return catalog


# ---------------------------------------------------------------------------
# Seeding state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Uninitialized:
    pass


@dataclass(frozen=True)
class Seeded:
    at: str
    count: int
    catalog_version: Optional[int] = None


SeedState = Union[Uninitialized, Seeded]


def state_key(user_id: str) -> str:
    return f"curriculum_initialized:{user_id}"


def state_from_record(record: Any) -> SeedState:
    if not isinstance(record, dict) or not record.get("initialized"):
        return Uninitialized()
    return Seeded(
        at=str(record.get("timestamp") or ""),
        count=int(record.get("lessonCount") or 0),
        catalog_version=record.get("catalogVersion"),
    )


def state_to_record(state: Seeded) -> Dict[str, Any]:
    return {
        "initialized": True,
        "timestamp": state.at,
        "lessonCount": state.count,
        "catalogVersion": state.catalog_version,
    }


@dataclass
class SeedReport:
    skipped: bool
    lesson_count: int
    expected_lesson_count: int
    deleted: int = 0
    failed: list[str] = field(default_factory=list)
    state: SeedState = field(default_factory=Uninitialized)

    def to_dict(self) -> Dict[str, Any]:
        if self.skipped:
            return {
                "success": True,
                "message": "Curriculum already initialized",
                "skipped": True,
                "expectedLessonCount": self.expected_lesson_count,
            }
        return {
            "success": True,
            "message": f"Successfully initialized {self.lesson_count} curriculum lessons",
            "skipped": False,
            "lessonCount": self.lesson_count,
            "expectedLessonCount": self.expected_lesson_count,
            "deleted": self.deleted,
            "failed": list(self.failed),
        }


# Serializes seeding per user inside this process; separate processes are not coordinated.
# An entry lives only while some run holds a reference to it.
_USER_LOCKS: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_USER_LOCKS_GUARD = threading.Lock()


def _user_lock(user_id: str) -> threading.Lock:
    with _USER_LOCKS_GUARD:
        lock = _USER_LOCKS.get(user_id)
        if lock is None:
            lock = _USER_LOCKS[user_id] = threading.Lock()
        return lock


def _log_event(event: str, **fields: Any) -> None:
    _SEED_LOGGER.info(json.dumps({"event": event, **fields}, ensure_ascii=False, default=str))


class CurriculumSeeder:
    """Populates a user's lesson store from the catalog."""

    def __init__(self, lessons: LessonStore, store: KeyValueStore, catalog: CurriculumCatalog):
        self.lessons = lessons
        self.store = store
        self.catalog = catalog

    def load_state(self, user_id: str) -> SeedState:
        return state_from_record(self.store.get(state_key(user_id)))

    def save_state(self, user_id: str, state: Seeded) -> None:
        self.store.set(state_key(user_id), state_to_record(state))

    def ensure_seeded(self, user_id: str, force: bool = False) -> SeedReport:
        with _user_lock(user_id):
            return self._run(user_id, self.load_state(user_id), force)

    def _run(self, user_id: str, state: SeedState, force: bool) -> SeedReport:
        expected = self.catalog.expected_lesson_count
        if isinstance(state, Seeded) and not force:
            _log_event("seed_skipped", user_id=user_id, seeded_at=state.at)
            return SeedReport(skipped=True, lesson_count=state.count, expected_lesson_count=expected, state=state)

        _log_event("seed_started", user_id=user_id, force=force, templates=expected)
        deleted = self.lessons.clear_curriculum(user_id) if force else 0
        if force:
            _log_event("seed_cleared", user_id=user_id, deleted=deleted)

        created = 0
        failed: list[str] = []
        for template in self.catalog.lessons:
            title = str(template.get("title") or "")
            try:
                self.lessons.create(user_id, {**template, "isCurriculumLesson": True})
            except Exception as exc:
                # One bad template must not block the rest of the catalog.
                failed.append(title)
                _SEED_LOGGER.error(
                    json.dumps({"event": "seed_template_failed", "user_id": user_id, "title": title, "error": str(exc)}),
                    exc_info=True,
                )
                continue
            created += 1

        new_state = Seeded(
            at=datetime.now(timezone.utc).isoformat(),
            count=created,
            catalog_version=self.catalog.version,
        )
        self.save_state(user_id, new_state)
        _log_event("seed_completed", user_id=user_id, created=created, failed=len(failed))
        return SeedReport(
            skipped=False,
            lesson_count=created,
            expected_lesson_count=expected,
            deleted=deleted,
            failed=failed,
            state=new_state,
        )

    def status(self, user_id: str) -> Dict[str, Any]:
        """Report whether the user's curriculum lags behind the catalog."""
        state = self.load_state(user_id)
        present = len(self.lessons.curriculum_lesson_ids(user_id))
        expected = self.catalog.expected_lesson_count
        seeded_version = state.catalog_version if isinstance(state, Seeded) else None
        outdated = isinstance(state, Seeded) and (
            present < expected or (seeded_version is not None and seeded_version < self.catalog.version)
        )
        return {
            "initialized": isinstance(state, Seeded),
            "initializedAt": state.at if isinstance(state, Seeded) else None,
            "curriculumLessonCount": present,
            "expectedLessonCount": expected,
            "catalogVersion": self.catalog.version,
            "seededCatalogVersion": seeded_version,
            "outdated": outdated,
        }


def curriculum_modules(templates: Sequence[Dict[str, Any]]) -> list[str]:
    """Distinct categories in catalog order."""
    seen: list[str] = []
    for template in templates:
        category = str(template.get("category") or "")
        if category and category not in seen:
            seen.append(category)
    return seen
