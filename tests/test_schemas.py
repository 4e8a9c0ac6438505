import pytest
from pydantic import ValidationError

from schemas import EssayQuestion, Lesson, MultipleChoiceQuestion, OnboardingAnswers, normalize_question


def _lesson(**overrides):
    payload = {"id": "l1", "ownerId": "u1", "title": "Lesson"}
    payload.update(overrides)
    return Lesson.model_validate(payload)


def test_legacy_is_essay_and_type_enum_normalize_to_the_same_variant():
    legacy = _lesson(quiz=[{"question": "Why?", "isEssay": True}])
    modern = _lesson(questions=[{"question": "Why?", "type": "essay"}])

    assert isinstance(legacy.questions[0], EssayQuestion)
    assert legacy.questions[0] == modern.questions[0]
    assert legacy.to_wire()["questions"] == [{"type": "essay", "question": "Why?"}]


def test_is_essay_flag_wins_over_conflicting_type():
    lesson = _lesson(quiz=[{"question": "Why?", "type": "multiple-choice", "isEssay": True}])

    assert isinstance(lesson.questions[0], EssayQuestion)
    assert normalize_question({"question": "q", "type": "multiple-choice", "isEssay": False})["type"] == "multiple-choice"


def test_question_without_type_or_flag_is_multiple_choice():
    lesson = _lesson(questions=[{"question": "Pick", "options": ["a", "b"], "correctAnswer": 1}])

    question = lesson.questions[0]
    assert isinstance(question, MultipleChoiceQuestion)
    assert question.correct_answer == 1
    assert normalize_question({"question": "q", "isEssay": False})["type"] == "multiple-choice"


def test_quiz_alias_is_read_as_questions_and_emitted_once():
    lesson = _lesson(quiz=[{"question": "Pick", "options": ["a"], "correctAnswer": 0}])

    wire = lesson.to_wire()
    assert "quiz" not in wire
    assert len(wire["questions"]) == 1


def test_correct_answer_must_index_an_option():
    with pytest.raises(ValidationError):
        _lesson(questions=[{"question": "Pick", "options": ["a", "b"], "correctAnswer": 2}])
    with pytest.raises(ValidationError):
        _lesson(questions=[{"question": "Pick", "options": [], "correctAnswer": 0}])


def test_unknown_question_type_is_rejected():
    with pytest.raises(ValidationError):
        _lesson(questions=[{"question": "Pick", "type": "true-false"}])


def test_option_explanation_overrides_general_explanation():
    question = MultipleChoiceQuestion(
        question="Which?",
        options=["A", "B"],
        correct_answer=1,
        explanation="General",
        option_explanations=["", "Specific for B"],
    )

    assert question.explanation_for(0) == "General"
    assert question.explanation_for(1) == "Specific for B"


def test_blank_or_missing_option_explanation_falls_back():
    question = MultipleChoiceQuestion(
        question="Which?",
        options=["A", "B", "C"],
        explanation="General",
        option_explanations=["   "],
    )

    assert question.explanation_for(0) == "General"
    assert question.explanation_for(2) == "General"


def test_legacy_user_id_becomes_owner_and_extra_fields_survive():
    lesson = Lesson.model_validate(
        {"id": "l1", "userId": "u9", "title": "T", "difficulty": "advanced", "objectives": ["x"]}
    )

    wire = lesson.to_wire()
    assert lesson.owner_id == "u9"
    assert wire["ownerId"] == "u9"
    assert wire["difficulty"] == "advanced"
    assert wire["objectives"] == ["x"]


def test_content_blocks_are_typed():
    lesson = _lesson(content=[{"type": "interactive-activity", "component": "GeospatialMappingActivity"}])
    assert lesson.content[0].component == "GeospatialMappingActivity"

    with pytest.raises(ValidationError):
        _lesson(content=[{"type": "video", "url": "x"}])


def test_onboarding_answers_accept_camel_case_and_bound_scores():
    answers = OnboardingAnswers.model_validate(
        {"overallSustainability": 3, "responsibleSourcing": 5, "generalSolutions": 1, "emergingTech": 4}
    )
    assert answers.responsible_sourcing == 5

    with pytest.raises(ValidationError):
        OnboardingAnswers.model_validate(
            {"overallSustainability": 3, "responsibleSourcing": 6, "generalSolutions": 1, "emergingTech": 4}
        )
