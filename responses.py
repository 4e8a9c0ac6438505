"""Essay submissions and their per-lesson aggregation."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List
from uuid import uuid4

from pydantic import ValidationError

from identity import Identity
from kv_store import KeyValueStore
from schemas import EssayResponse

logger = logging.getLogger(__name__)


def response_prefix(lesson_id: str) -> str:
    return f"essay_response:{lesson_id}:"


class ResponseCollector:
    """Stores every essay submission as its own record.

    Responses point at a question by its 1-based position at submission time.
    Reordering a lesson's questions later does not move historical responses,
    so a group may then belong to a different question.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def submit(self, lesson_id: str, question_number: int, user: Identity, text: str) -> str:
        response_id = str(uuid4())
        record = EssayResponse(
            id=response_id,
            lesson_id=lesson_id,
            question_number=question_number,
            response=text,
            user_id=user.id,
            user_name=user.name,
            user_email=user.email,
            submitted_at=datetime.now(timezone.utc).isoformat(),
        )
        self.store.set(f"{response_prefix(lesson_id)}{question_number}:{response_id}", record.to_wire())
        return response_id

    def list_by_lesson(self, lesson_id: str) -> Dict[int, List[EssayResponse]]:
        grouped: Dict[int, List[EssayResponse]] = defaultdict(list)
        for key, raw in self.store.items_by_prefix(response_prefix(lesson_id)):
            try:
                response = EssayResponse.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Skipping malformed essay response %s: %s", key, exc)
                continue
            grouped[response.question_number].append(response)
        for responses in grouped.values():
            responses.sort(key=lambda item: item.submitted_at)
        return dict(sorted(grouped.items()))
