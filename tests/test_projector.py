import pytest

from school_platform.backend.database.models import (
    Answer, AttemptStatus, Question, QuestionType, Quiz, QuizAttempt, QuizStatus, UserRole
)
from school_platform.backend.exceptions import (
    AuthorizationException,
    ResultsNotAvailableException
)
from school_platform.backend.services.access import Actor
from school_platform.backend.services.projector import (
    ViewLevel,
    ViewPhase,
    render_results_view,
    render_taking_view,
    resolve_view
)
from school_platform.backend.services.randomizer import arrange_questions

from conftest import MCQ_OPTIONS

ADMIN = Actor("admin-1", UserRole.ADMIN)
OWNER = Actor("teacher-1", UserRole.TEACHER)
OTHER_TEACHER = Actor("teacher-2", UserRole.TEACHER)
STUDENT = Actor("student-1", UserRole.STUDENT)
OTHER_STUDENT = Actor("student-2", UserRole.STUDENT)


def make_quiz(show_results=True):
    return Quiz(
        id="quiz-1", title="Arithmetic", status=QuizStatus.PUBLISHED, passing_score=60,
        shuffle_questions=False, shuffle_answers=False, show_results=show_results,
        subject_id="subject-1", teacher_id=OWNER.actor_id
    )


def make_attempt(status=AttemptStatus.SUBMITTED):
    return QuizAttempt(
        id="attempt-1", quiz_id="quiz-1", student_id=STUDENT.actor_id, status=status,
        score=2, percentage=40.0
    )


def make_questions():
    return [
        Question(id="q1", quiz_id="quiz-1", order_index=0, question_type=QuestionType.MULTIPLE_CHOICE,
                 prompt="2 + 2 = ?", explanation="Count it", points=2, options=MCQ_OPTIONS),
        Question(id="q2", quiz_id="quiz-1", order_index=1, question_type=QuestionType.ESSAY,
                 prompt="Explain addition", points=3, options=None),
    ]


def make_answers():
    return [
        Answer(id="ans-1", attempt_id="attempt-1", question_id="q1",
               payload={"selected_option": "b"}, is_correct=True, points_awarded=2),
        Answer(id="ans-2", attempt_id="attempt-1", question_id="q2",
               payload={"text": "It adds"}, is_correct=None, points_awarded=None),
    ]


def contains_key(value, key):
    if isinstance(value, dict):
        return key in value or any(contains_key(item, key) for item in value.values())
    if isinstance(value, list):
        return any(contains_key(item, key) for item in value)
    return False


@pytest.mark.parametrize("actor,phase,expected", [
    (ADMIN, ViewPhase.QUIZ, ViewLevel.FULL),
    (ADMIN, ViewPhase.TAKING, ViewLevel.FULL),
    (ADMIN, ViewPhase.RESULTS, ViewLevel.FULL),
    (OWNER, ViewPhase.QUIZ, ViewLevel.FULL),
    (OWNER, ViewPhase.TAKING, ViewLevel.FULL),
    (OWNER, ViewPhase.RESULTS, ViewLevel.FULL),
    (OTHER_TEACHER, ViewPhase.QUIZ, ViewLevel.REDACTED),
    (OTHER_TEACHER, ViewPhase.TAKING, ViewLevel.REDACTED),
    (STUDENT, ViewPhase.QUIZ, ViewLevel.REDACTED),
    (STUDENT, ViewPhase.TAKING, ViewLevel.REDACTED),
    (STUDENT, ViewPhase.RESULTS, ViewLevel.FULL),
])
def test_view_levels(actor, phase, expected):
    assert resolve_view(actor, make_quiz(), phase, make_attempt()) == expected


def test_other_teacher_cannot_see_results():
    with pytest.raises(AuthorizationException):
        resolve_view(OTHER_TEACHER, make_quiz(), ViewPhase.RESULTS, make_attempt())


def test_student_cannot_see_someone_elses_results():
    with pytest.raises(AuthorizationException) as exc_info:
        resolve_view(OTHER_STUDENT, make_quiz(), ViewPhase.RESULTS, make_attempt())
    assert exc_info.value.error_code == "ACCESS_DENIED"


def test_hidden_results_unlock_once_graded():
    quiz = make_quiz(show_results=False)

    with pytest.raises(ResultsNotAvailableException):
        resolve_view(STUDENT, quiz, ViewPhase.RESULTS, make_attempt(AttemptStatus.SUBMITTED))

    graded = make_attempt(AttemptStatus.GRADED)
    assert resolve_view(STUDENT, quiz, ViewPhase.RESULTS, graded) == ViewLevel.FULL


def test_in_progress_attempt_has_no_results_for_its_student():
    with pytest.raises(ResultsNotAvailableException):
        resolve_view(STUDENT, make_quiz(), ViewPhase.RESULTS, make_attempt(AttemptStatus.IN_PROGRESS))


def test_student_taking_view_carries_no_answer_key():
    quiz = make_quiz()
    presented = arrange_questions(make_questions(), shuffle_answers=True)

    payload = render_taking_view(STUDENT, quiz, make_attempt(AttemptStatus.IN_PROGRESS), presented)

    assert not contains_key(payload, "is_correct")
    assert not contains_key(payload, "explanation")
    assert not contains_key(payload, "score")
    mcq = next(item for item in payload["quiz"]["questions"] if item["id"] == "q1")
    assert sorted(option["id"] for option in mcq["options"]) == ["a", "b", "c"]
    assert payload["quiz"]["max_score"] == 5


def test_owner_taking_view_includes_answer_key():
    payload = render_taking_view(OWNER, make_quiz(), make_attempt(), arrange_questions(make_questions()))

    mcq = payload["quiz"]["questions"][0]
    assert [option["is_correct"] for option in mcq["options"]] == [False, True, False]
    assert mcq["explanation"] == "Count it"


def test_full_results_view():
    payload = render_results_view(STUDENT, make_quiz(), make_attempt(), make_questions(), make_answers())

    attempt = payload["attempt"]
    assert attempt["score"] == 2
    assert attempt["max_score"] == 5
    assert attempt["answers"][0]["is_correct"] is True
    assert attempt["answers"][1]["pending_review"] is True
    assert payload["quiz"]["questions"][1]["options"] is None
