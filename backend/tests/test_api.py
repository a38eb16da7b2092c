import uuid
from datetime import datetime, timedelta

from redis.exceptions import ConnectionError as RedisConnectionError

from statsengine.core.config import settings
from statsengine.services.needs_help_service import needs_help_service
from statsengine.services.school_stats_service import school_stats_service
from statsengine.services.student_stats_service import student_stats_service


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    response = client.get("/health/db")
    assert response.status_code == 200
    assert response.json()["db"] == "ok"
    assert client.get("/health/worker").json()["status"] == "skipped"


def test_student_statistics_not_found_until_aggregated(client, db, factory):
    student = factory.student()
    _, questions = factory.assignment(questions=4, students=[student])
    factory.answer_all(student, questions[:2])

    assert client.get(f"/api/v1/statistics/students/{student.id}").status_code == 404

    student_stats_service.refresh_student(db, student.id)
    response = client.get(f"/api/v1/statistics/students/{student.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["student_id"] == str(student.id)
    assert data["completion_rate"] == 0.0
    assert data["accuracy_rate"] == 100.0


def test_assignment_progress_is_live(client, factory):
    students = [factory.student() for _ in range(3)]
    assignment, questions = factory.assignment(questions=2, students=students)
    factory.answer_all(students[0], questions)
    factory.attempt(students[1], questions[0], is_correct=False)

    response = client.get(f"/api/v1/statistics/assignments/{assignment.id}/progress")

    assert response.status_code == 200
    data = response.json()
    assert data["total_students"] == 3
    assert data["completed_students"] == 1
    assert data["in_progress_students"] == 1
    assert data["not_started_students"] == 1
    assert data["completion_rate"] == 33.33
    by_question = {q["question_id"]: q for q in data["questions"]}
    assert by_question[str(questions[0].id)]["answered_count"] == 2
    assert by_question[str(questions[0].id)]["correct_count"] == 1

    # The cached aggregate does not exist yet
    assert client.get(f"/api/v1/statistics/assignments/{assignment.id}").status_code == 404


def test_assignment_progress_for_one_student(client, factory):
    students = [factory.student() for _ in range(2)]
    assignment, questions = factory.assignment(questions=2, students=students)
    factory.attempt(students[1], questions[0])

    response = client.get(
        f"/api/v1/statistics/assignments/{assignment.id}/progress",
        params={"student_id": str(students[1].id)},
    )

    [row] = response.json()["students"]
    assert row["student_id"] == str(students[1].id)
    assert row["status"] == "in_progress"
    assert row["score"] == 50.0


def test_unknown_assignment_progress_is_404(client):
    response = client.get(f"/api/v1/statistics/assignments/{uuid.uuid4()}/progress")
    assert response.status_code == 404


def test_refresh_runs_inline_and_feeds_read_paths(client, factory):
    teacher = factory.teacher()
    student = factory.student()
    school_class = factory.school_class(student, teacher)
    factory.assignment(questions=2, classes=[school_class], teacher=teacher)

    response = client.post("/api/v1/statistics/refresh")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "success"
    assert [stage["entity_type"] for stage in data["stages"]][-1] == "needs_help"

    assert client.get(f"/api/v1/statistics/classes/{school_class.id}").status_code == 200
    school = client.get("/api/v1/statistics/school")
    assert school.status_code == 200
    assert school.json()["students_needing_help"] == 0

    trend = client.get("/api/v1/statistics/school/trend", params={"days": 7})
    assert len(trend.json()) == 1

    listing = client.get("/api/v1/needs-help", params={"teacher_id": str(teacher.id)})
    assert listing.status_code == 200
    payload = listing.json()
    assert payload["summary"] == {"total": 1, "critical": 0, "warning": 0, "recent": 1}
    [record] = payload["students"]
    assert record["student_id"] == str(student.id)
    assert record["severity"] == "RECENT"
    assert record["reasons"] == ["LOW_COMPLETION"]


def test_refresh_enqueues_when_async_enabled(client, monkeypatch):
    monkeypatch.setattr(settings, "ASYNC_QUEUE_ENABLED", True)
    monkeypatch.setattr(
        "statsengine.routers.statistics.enqueue_statistics_refresh", lambda: "job-123"
    )

    response = client.post("/api/v1/statistics/refresh")

    assert response.json()["status"] == "queued"
    assert response.json()["job_id"] == "job-123"


def test_refresh_reports_unreachable_queue_as_503(client, monkeypatch):
    monkeypatch.setattr(settings, "ASYNC_QUEUE_ENABLED", True)

    def unreachable():
        raise RedisConnectionError("Connection refused")

    monkeypatch.setattr("statsengine.routers.statistics.enqueue_statistics_refresh", unreachable)

    response = client.post("/api/v1/statistics/refresh")

    assert response.status_code == 503
    assert response.json()["detail"]["redis"] == "unavailable"


def test_school_statistics_fallback(client, db, factory):
    factory.student()
    yesterday = datetime.utcnow() - timedelta(days=1)
    school_stats_service.refresh_school_stats(db, yesterday)

    assert client.get("/api/v1/statistics/school").status_code == 404
    response = client.get("/api/v1/statistics/school", params={"fallback": "true"})
    assert response.status_code == 200
    assert response.json()["date"] == yesterday.date().isoformat()


def test_teacher_notes(client, db, factory):
    student = factory.student()
    factory.assignment(students=[student])
    needs_help_service.refresh_all(db)
    [record] = needs_help_service.get_needs_help(db)

    response = client.patch(
        f"/api/v1/needs-help/{record.id}/notes", json={"teacher_notes": "Extra tutoring"}
    )
    assert response.status_code == 200
    assert response.json()["teacher_notes"] == "Extra tutoring"

    missing = client.patch(f"/api/v1/needs-help/{uuid.uuid4()}/notes", json={"teacher_notes": "x"})
    assert missing.status_code == 404
