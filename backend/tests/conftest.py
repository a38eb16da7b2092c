import uuid
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from statsengine.core.config import settings
from statsengine.core.db import Database
from statsengine.main import create_app
from statsengine.models.assignment import (
    Assignment,
    AssignmentClass,
    AssignmentStudent,
    Question,
)
from statsengine.models.classroom import ClassMember, SchoolClass
from statsengine.models.progress import ProgressAttempt
from statsengine.models.user import User, UserRole

NOW = datetime(2026, 3, 2, 12, 0, 0)


class Factory:
    """Small builders for the source tables. Every call commits."""

    def __init__(self, db):
        self.db = db

    def _save(self, *objects):
        self.db.add_all(objects)
        self.db.commit()

    def user(self, role: UserRole = UserRole.STUDENT, **kwargs) -> User:
        user = User(
            id=uuid.uuid4(),
            username=kwargs.pop("username", f"{role.value}-{uuid.uuid4().hex[:8]}"),
            role=role,
            **kwargs,
        )
        self._save(user)
        return user

    def student(self, **kwargs) -> User:
        return self.user(UserRole.STUDENT, **kwargs)

    def teacher(self, **kwargs) -> User:
        return self.user(UserRole.TEACHER, **kwargs)

    def school_class(self, *members: User, name: str = "Class") -> SchoolClass:
        school_class = SchoolClass(id=uuid.uuid4(), name=name)
        self._save(school_class)
        self._save(*[ClassMember(class_id=school_class.id, user_id=m.id) for m in members])
        return school_class

    def assignment(
        self,
        questions: int = 1,
        *,
        classes=(),
        students=(),
        teacher: User | None = None,
        is_active: bool = True,
        due_date: datetime | None = None,
        scheduled_publish_at: datetime | None = None,
    ) -> tuple[Assignment, list[Question]]:
        assignment = Assignment(
            id=uuid.uuid4(),
            topic=f"Topic {uuid.uuid4().hex[:6]}",
            teacher_id=teacher.id if teacher else None,
            is_active=is_active,
            due_date=due_date,
            scheduled_publish_at=scheduled_publish_at,
        )
        self._save(assignment)
        question_rows = [
            Question(id=uuid.uuid4(), assignment_id=assignment.id, text_question=f"Q{i + 1}")
            for i in range(questions)
        ]
        links = [AssignmentClass(assignment_id=assignment.id, class_id=c.id) for c in classes]
        links += [AssignmentStudent(assignment_id=assignment.id, user_id=s.id) for s in students]
        if question_rows or links:
            self._save(*question_rows, *links)
        return assignment, question_rows

    def attempt(
        self,
        student: User,
        question: Question,
        *,
        is_correct: bool = True,
        is_complete: bool = True,
        created_at: datetime = NOW,
    ) -> ProgressAttempt:
        attempt = ProgressAttempt(
            id=uuid.uuid4(),
            student_id=student.id,
            assignment_id=question.assignment_id,
            question_id=question.id,
            is_correct=is_correct,
            is_complete=is_complete,
            created_at=created_at,
        )
        self._save(attempt)
        return attempt

    def answer_all(self, student: User, questions: list[Question], correct: int | None = None):
        """Answer every question; the first ``correct`` (default all) are right."""
        correct = len(questions) if correct is None else correct
        for index, question in enumerate(questions):
            self.attempt(student, question, is_correct=index < correct)


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    monkeypatch.setattr(settings, "PIPELINE_LOCK_ENABLED", False)
    monkeypatch.setattr(settings, "ASYNC_QUEUE_ENABLED", False)
    monkeypatch.setattr(settings, "DB_RETRY_BACKOFF_SECONDS", 0.0)


@pytest.fixture
def database():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database = Database(engine=engine)
    database.create_all()
    yield database
    engine.dispose()


@pytest.fixture
def db(database):
    session = database.new_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def client(database):
    with TestClient(create_app(database)) as test_client:
        yield test_client
