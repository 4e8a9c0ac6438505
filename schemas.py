"""Pydantic schemas for stored records and request bodies."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "QUESTION_TYPES",
    "ROLES",
    "normalize_question",
    "MultipleChoiceQuestion",
    "EssayQuestion",
    "Question",
    "ContentBlock",
    "Section",
    "Lesson",
    "EssayResponse",
    "OnboardingAnswers",
    "SignupBody",
    "LoginBody",
    "RoleBody",
    "EssayResponseBody",
    "AnswerCheckBody",
]

QUESTION_TYPES = ("multiple-choice", "essay")
ROLES = ("creator", "student")

Role = Literal["creator", "student"]


class _WireModel(BaseModel):
    """Base for models exchanged as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# ---------- Lessons ----------
def normalize_question(raw: Any) -> Any:
    """Fold the legacy ``isEssay`` flag into the ``type`` tag.

    A truthy ``isEssay`` makes the question an essay whatever ``type`` says.
    Otherwise an explicit ``type`` is kept (unknown values fail validation) and
    a missing one means multiple-choice.
    """
    if not isinstance(raw, Mapping):
        return raw
    data = dict(raw)
    is_essay = data.pop("isEssay", None)
    if is_essay is None:
        is_essay = data.pop("is_essay", None)
    if is_essay:
        data["type"] = "essay"
    elif data.get("type") is None:
        data["type"] = "multiple-choice"
    return data


class MultipleChoiceQuestion(_WireModel):
    type: Literal["multiple-choice"] = "multiple-choice"
    question: str
    options: List[str]
    correct_answer: int = 0
    explanation: str = ""
    option_explanations: List[str] | None = None

    @model_validator(mode="after")
    def _check_correct_answer(self) -> "MultipleChoiceQuestion":
        if not 0 <= self.correct_answer < len(self.options):
            raise ValueError(
                f"correctAnswer {self.correct_answer} is outside the {len(self.options)} options"
            )
        return self

    def explanation_for(self, selected: int) -> str:
        """Text shown after ``selected`` is chosen.

        A non-blank entry in ``option_explanations`` overrides the general
        ``explanation``.
        """
        specific = None
        if self.option_explanations and 0 <= selected < len(self.option_explanations):
            specific = self.option_explanations[selected]
        if specific and specific.strip():
            return specific
        return self.explanation

    def is_correct(self, selected: int) -> bool:
        return selected == self.correct_answer


class EssayQuestion(_WireModel):
    type: Literal["essay"] = "essay"
    question: str


Question = Annotated[Union[MultipleChoiceQuestion, EssayQuestion], Field(discriminator="type")]


class ContentBlock(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["heading", "paragraph", "list", "interactive-activity"]
    text: str | None = None
    items: List[str] | None = None
    component: str | None = None


class Section(BaseModel):
    model_config = ConfigDict(extra="allow")

    heading: str = ""
    content: str = ""


class Lesson(_WireModel):
    """A lesson as read back from the store.

    Unknown fields (``difficulty``, ``objectives``, ``addedAt``...) are kept so
    templates and copies round-trip without loss.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    owner_id: str
    title: str = ""
    subtitle: str | None = None
    category: str | None = None
    sections: List[Section] = Field(default_factory=list)
    content: List[ContentBlock] = Field(default_factory=list)
    questions: List[Question] = Field(default_factory=list)
    is_curriculum_lesson: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    original_lesson_id: str | None = None
    original_author_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        legacy_quiz = data.pop("quiz", None)
        if not data.get("questions") and legacy_quiz:
            data["questions"] = legacy_quiz
        if "ownerId" not in data and "owner_id" not in data and "userId" in data:
            data["ownerId"] = data.pop("userId")
        for key in ("sections", "content"):
            if data.get(key) is None:
                data.pop(key, None)
        data["questions"] = [normalize_question(q) for q in data.get("questions") or []]
        return data

    def question_at(self, number: int) -> Question | None:
        """Return the question at 1-based position ``number``."""
        if 1 <= number <= len(self.questions):
            return self.questions[number - 1]
        return None


# ---------- Essay responses ----------
class EssayResponse(_WireModel):
    id: str
    lesson_id: str
    question_number: int
    response: str
    user_id: str
    user_name: str = "Anonymous"
    user_email: str = ""
    submitted_at: str


# ---------- Request bodies ----------
class OnboardingAnswers(_WireModel):
    overall_sustainability: int = Field(ge=1, le=5)
    responsible_sourcing: int = Field(ge=1, le=5)
    general_solutions: int = Field(ge=1, le=5)
    emerging_tech: int = Field(ge=1, le=5)


class SignupBody(_WireModel):
    email: str = Field(min_length=3)
    password: str = Field(min_length=6)
    name: str = ""
    role: Role = "student"


class LoginBody(_WireModel):
    email: str
    password: str


class RoleBody(_WireModel):
    role: Role


class EssayResponseBody(_WireModel):
    lesson_id: str = Field(min_length=1)
    question_number: int = Field(ge=1)
    response: str


class AnswerCheckBody(_WireModel):
    selected_answer: int = Field(ge=0)
