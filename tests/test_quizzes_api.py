from school_platform.backend.api import quizzes as quizzes_api
from school_platform.backend.database.models import QuestionType, QuizStatus, UserRole

from conftest import auth_headers


def mcq_body(**overrides):
    body = {
        "question_type": "multiple_choice",
        "prompt": "Capital of France?",
        "points": 2,
        "explanation": "Paris is the capital",
        "options": [
            {"id": "a", "text": "Lyon", "isCorrect": False},
            {"id": "b", "text": "Paris", "isCorrect": True},
        ]
    }
    body.update(overrides)
    return body


async def test_teacher_builds_a_quiz(client, classroom):
    teacher = classroom["teacher"]
    headers = auth_headers(teacher)

    response = await client.post("/quizzes", json={
        "title": "  Geography  ",
        "subject_id": classroom["subject"].id,
        "time_limit_minutes": 30,
        "passing_score": 50
    }, headers=headers)
    assert response.status_code == 201
    quiz = response.json()
    assert quiz["title"] == "Geography"
    assert quiz["status"] == "draft"
    assert quiz["teacher_id"] == teacher.id
    assert quiz["questions"] == []

    response = await client.post(f"/quizzes/{quiz['id']}/questions", json=mcq_body(), headers=headers)
    assert response.status_code == 201
    question = response.json()
    assert question["order_index"] == 0
    assert [option["is_correct"] for option in question["options"]] == [False, True]

    response = await client.post(f"/quizzes/{quiz['id']}/questions", json={
        "question_type": "essay",
        "prompt": "Describe a river",
        "points": 5,
        "max_words": 150
    }, headers=headers)
    assert response.status_code == 201
    assert response.json()["order_index"] == 1
    assert response.json()["options"] is None

    response = await client.put(f"/quizzes/{quiz['id']}", json={"status": "published"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "published"
    assert response.json()["question_count"] == 2
    assert response.json()["max_score"] == 7

    response = await client.get("/quizzes", headers=headers)
    assert response.status_code == 200
    assert [item["id"] for item in response.json()] == [quiz["id"]]
    assert "questions" not in response.json()[0]


async def test_student_sees_redacted_quiz(client, factory, classroom):
    teacher, student = classroom["teacher"], classroom["student"]
    quiz = await factory.quiz(teacher, classroom["subject"])
    await factory.question(quiz, explanation="Count on your fingers")

    response = await client.get(f"/quizzes/{quiz.id}", headers=auth_headers(student))
    assert response.status_code == 200
    body = response.json()
    question = body["questions"][0]
    assert all("is_correct" not in option for option in question["options"])
    assert "explanation" not in question
    assert "attempt_count" not in body

    response = await client.get(f"/quizzes/{quiz.id}", headers=auth_headers(teacher))
    body = response.json()
    assert body["questions"][0]["explanation"] == "Count on your fingers"
    assert body["attempt_count"] == 0

    response = await client.get("/quizzes", headers=auth_headers(student))
    assert [item["id"] for item in response.json()] == [quiz.id]


async def test_student_access_rules(client, factory, classroom):
    teacher = classroom["teacher"]
    draft = await factory.quiz(teacher, classroom["subject"], status=QuizStatus.DRAFT)
    published = await factory.quiz(teacher, classroom["subject"])
    outsider = await factory.user(UserRole.STUDENT)

    response = await client.get(f"/quizzes/{draft.id}", headers=auth_headers(classroom["student"]))
    assert response.status_code == 409

    response = await client.get(f"/quizzes/{published.id}", headers=auth_headers(outsider))
    assert response.status_code == 403

    response = await client.get("/quizzes", headers=auth_headers(outsider))
    assert response.json() == []

    response = await client.post("/quizzes", json={
        "title": "Sneaky",
        "subject_id": classroom["subject"].id
    }, headers=auth_headers(classroom["student"]))
    assert response.status_code == 403


async def test_only_the_owner_manages_a_quiz(client, factory, classroom):
    quiz = await factory.quiz(classroom["teacher"], classroom["subject"])
    question = await factory.question(quiz)
    other = await factory.user(UserRole.TEACHER)
    admin = await factory.user(UserRole.ADMIN)

    response = await client.put(f"/quizzes/{quiz.id}", json={"title": "Mine"}, headers=auth_headers(other))
    assert response.status_code == 403

    response = await client.put(f"/quizzes/questions/{question.id}", json={"prompt": "Mine?"}, headers=auth_headers(other))
    assert response.status_code == 403

    response = await client.post("/quizzes", json={
        "title": "Elsewhere",
        "subject_id": classroom["subject"].id
    }, headers=auth_headers(other))
    assert response.status_code == 403

    response = await client.put(f"/quizzes/{quiz.id}", json={"title": "Reviewed"}, headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["title"] == "Reviewed"

    response = await client.post("/quizzes", json={
        "title": "Assigned",
        "subject_id": classroom["subject"].id
    }, headers=auth_headers(admin))
    assert response.status_code == 201
    assert response.json()["teacher_id"] == classroom["teacher"].id


async def test_quiz_settings_are_validated(client, classroom):
    headers = auth_headers(classroom["teacher"])
    subject_id = classroom["subject"].id

    response = await client.post("/quizzes", json={
        "title": "Late", "subject_id": subject_id, "passing_score": 150
    }, headers=headers)
    assert response.status_code == 422
    assert response.json()["error"] == "OUT_OF_RANGE"

    response = await client.post("/quizzes", json={
        "title": "Backwards",
        "subject_id": subject_id,
        "start_date": "2030-01-10T00:00:00Z",
        "end_date": "2030-01-01T00:00:00Z"
    }, headers=headers)
    assert response.status_code == 422

    response = await client.post("/quizzes", json={"title": "Nowhere", "subject_id": "missing"}, headers=headers)
    assert response.status_code == 404

    response = await client.post("/quizzes", json={"title": "Ok", "subject_id": subject_id}, headers=headers)
    quiz_id = response.json()["id"]

    response = await client.put(f"/quizzes/{quiz_id}", json={"title": None}, headers=headers)
    assert response.status_code == 422
    assert response.json()["details"]["field"] == "title"

    response = await client.put(f"/quizzes/{quiz_id}", json={"time_limit_minutes": None}, headers=headers)
    assert response.status_code == 200
    assert response.json()["time_limit_minutes"] is None


async def test_question_definitions_are_validated(client, factory, classroom):
    headers = auth_headers(classroom["teacher"])
    quiz = await factory.quiz(classroom["teacher"], classroom["subject"], status=QuizStatus.DRAFT)
    existing = await factory.question(quiz, order_index=0)

    response = await client.post(f"/quizzes/{quiz.id}/questions", json=mcq_body(options=[
        {"id": "a", "text": "Lyon", "isCorrect": False},
        {"id": "b", "text": "Nice", "isCorrect": False},
    ]), headers=headers)
    assert response.status_code == 422

    response = await client.post(f"/quizzes/{quiz.id}/questions", json=mcq_body(points=0), headers=headers)
    assert response.status_code == 422
    assert response.json()["error"] == "OUT_OF_RANGE"

    response = await client.post(f"/quizzes/{quiz.id}/questions", json=mcq_body(order_index=0), headers=headers)
    assert response.status_code == 409
    assert response.json()["error"] == "CONFLICT"

    response = await client.put(
        f"/quizzes/questions/{existing.id}",
        json={"question_type": "essay", "max_words": 100},
        headers=headers
    )
    assert response.status_code == 200
    assert response.json()["question_type"] == "essay"
    assert response.json()["options"] is None

    response = await client.put(f"/quizzes/questions/{existing.id}", json={"points": None}, headers=headers)
    assert response.status_code == 422

    response = await client.delete(f"/quizzes/questions/{existing.id}", headers=headers)
    assert response.status_code == 200

    response = await client.get(f"/quizzes/{quiz.id}", headers=headers)
    assert response.json()["questions"] == []


async def test_attempted_quizzes_are_frozen(client, factory, classroom):
    teacher, student = classroom["teacher"], classroom["student"]
    headers = auth_headers(teacher)
    quiz = await factory.quiz(teacher, classroom["subject"])
    question = await factory.question(quiz, QuestionType.TRUE_FALSE)

    response = await client.post(f"/attempts/quizzes/{quiz.id}/start", headers=auth_headers(student))
    assert response.status_code == 201

    response = await client.delete(f"/quizzes/{quiz.id}", headers=headers)
    assert response.status_code == 409
    assert response.json()["details"]["violated_rule"] == "quiz_has_attempts"

    response = await client.post(f"/quizzes/{quiz.id}/questions", json=mcq_body(), headers=headers)
    assert response.status_code == 409

    response = await client.put(f"/quizzes/questions/{question.id}", json={"points": 5}, headers=headers)
    assert response.status_code == 409

    response = await client.delete(f"/quizzes/questions/{question.id}", headers=headers)
    assert response.status_code == 409

    response = await client.put(f"/quizzes/questions/{question.id}", json={"prompt": "Is 2 + 2 = 4?"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["prompt"] == "Is 2 + 2 = 4?"

    response = await client.put(f"/quizzes/{quiz.id}", json={"status": "archived"}, headers=headers)
    assert response.status_code == 200


async def test_unattempted_quiz_can_be_deleted(client, factory, classroom):
    headers = auth_headers(classroom["teacher"])
    quiz = await factory.quiz(classroom["teacher"], classroom["subject"])
    await factory.question(quiz)

    response = await client.delete(f"/quizzes/{quiz.id}", headers=headers)
    assert response.status_code == 200

    response = await client.get(f"/quizzes/{quiz.id}", headers=headers)
    assert response.status_code == 404


async def test_reorder_collision_at_commit_is_a_conflict(client, factory, classroom, monkeypatch):
    headers = auth_headers(classroom["teacher"])
    quiz = await factory.quiz(classroom["teacher"], classroom["subject"], status=QuizStatus.DRAFT)
    await factory.question(quiz, order_index=0)
    second = await factory.question(quiz, order_index=1)

    # Another request took the slot after the pre-check passed
    async def slot_looks_free(*args, **kwargs):
        return None

    monkeypatch.setattr(quizzes_api, "ensure_order_free", slot_looks_free)

    response = await client.put(f"/quizzes/questions/{second.id}", json={"order_index": 0}, headers=headers)
    assert response.status_code == 409
    assert response.json()["error"] == "CONFLICT"
    assert response.json()["details"]["order_index"] == 0

    response = await client.get(f"/quizzes/{quiz.id}", headers=headers)
    assert [item["order_index"] for item in response.json()["questions"]] == [0, 1]

    response = await client.post(f"/quizzes/{quiz.id}/questions", json=mcq_body(order_index=1), headers=headers)
    assert response.status_code == 409
    assert response.json()["error"] == "CONFLICT"
