"""Onboarding self-assessment → per-module lesson recommendations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from identity import IdentityProvider
from kv_store import KeyValueStore
from schemas import Lesson, OnboardingAnswers

ADVANCED = "advanced"
ALL = "all"

# Self-ratings at or above this value only get advanced material recommended.
ADVANCED_THRESHOLD = 4

MODULES: Dict[str, str] = {
    "responsibleSourcing": "Responsible Sourcing",
    "generalSolutions": "General Solutions",
    "emergingTech": "Emerging Technology & AI Integration",
}

# Substring heuristic: there is no stored difficulty to match on, so short
# keywords such as "ai" also hit unrelated words ("maintain", "chain").
ADVANCED_KEYWORDS = (
    "advanced",
    "complex",
    "optimization",
    "strategic",
    "integration",
    "ai",
    "analytics",
    "predictive",
)

_ANSWER_FIELDS = {
    "responsibleSourcing": "responsible_sourcing",
    "generalSolutions": "general_solutions",
    "emergingTech": "emerging_tech",
}


def derive_recommendations(answers: OnboardingAnswers) -> Dict[str, str]:
    """Map each module's self-rating to ``"advanced"`` or ``"all"``.

    ``overall_sustainability`` is stored for analytics but never consulted.
    """
    return {
        module_key: ADVANCED if getattr(answers, field_name) >= ADVANCED_THRESHOLD else ALL
        for module_key, field_name in _ANSWER_FIELDS.items()
    }


def module_key_for(category: Optional[str]) -> Optional[str]:
    for key, name in MODULES.items():
        if category == name:
            return key
    return None


def looks_advanced(lesson: Lesson) -> bool:
    title = (lesson.title or "").lower()
    subtitle = (lesson.subtitle or "").lower()
    return any(keyword in title or keyword in subtitle for keyword in ADVANCED_KEYWORDS)


def is_lesson_recommended(lesson: Lesson, recommendations: Optional[Mapping[str, str]]) -> bool:
    if recommendations is None:
        # No onboarding quiz taken yet: everything is recommended.
        return True
    module_key = module_key_for(lesson.category)
    if module_key is None:
        return True
    if recommendations.get(module_key) == ALL:
        return True
    # Any other tag, including a missing one, narrows to advanced material.
    return looks_advanced(lesson)


class RecommendationStore:
    """Persists the latest onboarding result per user (last write wins)."""

    def __init__(self, store: KeyValueStore, identity: IdentityProvider):
        self.store = store
        self.identity = identity

    @staticmethod
    def _key(user_id: str) -> str:
        return f"quiz_results:{user_id}"

    def save(self, user_id: str, answers: OnboardingAnswers, recommendations: Dict[str, str]) -> Dict[str, Any]:
        record = {
            "answers": answers.to_wire(),
            "recommendations": dict(recommendations),
            "completedAt": datetime.now(timezone.utc).isoformat(),
        }
        self.store.set(self._key(user_id), record)
        self.identity.update_metadata(
            user_id,
            {"onboardingComplete": True, "recommendations": dict(recommendations)},
        )
        return record

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        record = self.store.get(self._key(user_id))
        return record if isinstance(record, dict) else None

    def recommendations_for(self, user_id: str) -> Optional[Dict[str, str]]:
        record = self.get(user_id)
        if record is None:
            return None
        return record.get("recommendations")
