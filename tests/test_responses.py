from identity import Identity
from responses import ResponseCollector


def _user(user_id="u1", name="Ada", email="ada@example.com"):
    return Identity(id=user_id, email=email, metadata={"name": name})


def test_submissions_accumulate_and_group_by_question(store):
    collector = ResponseCollector(store)
    first = collector.submit("lesson-1", 2, _user(), "First answer")
    second = collector.submit("lesson-1", 2, _user(), "Second answer")
    collector.submit("lesson-1", 1, _user("u2", "Bo", "bo@example.com"), "Other question")

    grouped = collector.list_by_lesson("lesson-1")

    assert list(grouped) == [1, 2]
    assert {r.id for r in grouped[2]} == {first, second}
    assert [r.response for r in grouped[2]] == ["First answer", "Second answer"]
    assert grouped[1][0].user_name == "Bo"
    assert grouped[1][0].user_email == "bo@example.com"


def test_anonymous_submitter_gets_defaults(store):
    collector = ResponseCollector(store)
    collector.submit("lesson-1", 1, Identity(id="u3", email=""), "Text")

    response = collector.list_by_lesson("lesson-1")[1][0]
    assert response.user_name == "Anonymous"
    assert response.to_wire()["questionNumber"] == 1


def test_lessons_do_not_share_responses(store):
    collector = ResponseCollector(store)
    collector.submit("lesson-1", 1, _user(), "Mine")
    collector.submit("lesson-10", 1, _user(), "Not mine")

    grouped = collector.list_by_lesson("lesson-1")

    assert [r.response for r in grouped[1]] == ["Mine"]
    assert collector.list_by_lesson("unknown") == {}
