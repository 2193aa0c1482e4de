from __future__ import annotations

import pytest

from lmsdb.security import SessionUser
from lmsdb.apps.courses import services as course_services
from lmsdb.apps.recommendations import services
from lmsdb.apps.recommendations.client import (
    RecommenderClient,
    RecommenderError,
    RecommenderNotConfiguredError,
)


class StubRecommender(RecommenderClient):
    def __init__(self, output):
        super().__init__("http://recommender.invalid/recommend")
        self.output = output
        self.calls = []

    def recommend(self, *, enrolled_courses, available_courses):
        self.calls.append((list(enrolled_courses), list(available_courses)))
        return self.output


@pytest.fixture()
def learner(db_session, make_user):
    return SessionUser.from_model(make_user(db_session, username="learner"))


def test_nothing_available_means_no_call(db_session, make_course, learner):
    course = make_course(db_session, title="Fire Safety")
    course_services.enroll_users(db_session, course_id=course.id, user_ids=[learner.id])
    client = StubRecommender({"recommendations": []})

    assert services.recommend_courses(db_session, user=learner, client=client) == []
    assert client.calls == []


def test_unconfigured_recommender(db_session, make_course, learner):
    make_course(db_session, title="Fire Safety")

    with pytest.raises(RecommenderNotConfiguredError):
        services.recommend_courses(db_session, user=learner, client=None)


def test_suggestions_are_limited_to_available_courses(db_session, make_course, learner):
    enrolled = make_course(db_session, title="Fire Safety")
    for title in ("Confined Space Entry", "First Aid", "Working at Heights", "Chemical Handling"):
        make_course(db_session, title=title)
    course_services.enroll_users(db_session, course_id=enrolled.id, user_ids=[learner.id])
    client = StubRecommender(
        {
            "recommendations": [
                {"title": "Fire Safety", "reason": "Already taken"},
                {"title": "Scuba Diving", "reason": "Not offered here"},
                {"title": "First Aid", "reason": "Pairs well with fire response"},
                {"title": "Working at Heights", "reason": "Common next step"},
                {"title": "Chemical Handling", "reason": "Related hazard training"},
                {"title": "Confined Space Entry", "reason": "One too many"},
            ]
        }
    )

    result = services.recommend_courses(db_session, user=learner, client=client)

    assert [item.title for item in result] == ["First Aid", "Working at Heights", "Chemical Handling"]
    [(sent_enrolled, sent_available)] = client.calls
    assert sent_enrolled == ["Fire Safety"]
    assert sent_available == ["Chemical Handling", "Confined Space Entry", "First Aid", "Working at Heights"]


def test_bare_list_output_is_accepted(db_session, make_course, learner):
    make_course(db_session, title="First Aid")
    client = StubRecommender([{"title": "First Aid", "reason": "Good start"}])

    [item] = services.recommend_courses(db_session, user=learner, client=client)

    assert item.reason == "Good start"


@pytest.mark.parametrize(
    "output",
    [
        {"recommendations": [{"title": "First Aid"}]},
        {"recommendations": "First Aid"},
        [{"name": "First Aid", "why": "?"}],
    ],
)
def test_malformed_output_is_a_gateway_error(db_session, make_course, learner, output):
    make_course(db_session, title="First Aid")

    with pytest.raises(RecommenderError) as exc:
        services.recommend_courses(db_session, user=learner, client=StubRecommender(output))
    assert exc.value.status_code == 502
