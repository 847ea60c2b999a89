import os
import tempfile

# Settings are read at import time, so the environment must be ready first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["MEDIA_ROOT"] = tempfile.mkdtemp(prefix="eduportal-media-")
os.environ["MAIL_USERNAME"] = ""
os.environ["MAIL_FROM"] = ""
os.environ["DB_CONNECT_DELAY"] = "0"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from eduportal import models  # noqa: E402,F401
from eduportal.database import Base, SessionLocal, engine  # noqa: E402
from eduportal.main import app  # noqa: E402
from eduportal.models import Course, Quiz, User, Video  # noqa: E402
from eduportal.security import create_access_token, get_password_hash  # noqa: E402

PASSWORD = "secret123"

# Correct option for each of the 8 questions.
ANSWER_KEY = [0, 1, 2, 3, 0, 1, 2, 3]


def make_questions(key=ANSWER_KEY):
    return [
        {
            "question": f"Question {i + 1}?",
            "options": [f"q{i + 1} option {o}" for o in "ABCD"],
            "correctAnswer": correct,
        }
        for i, correct in enumerate(key)
    ]


def answers_with(correct_count):
    """Answers with exactly ``correct_count`` right, in stored question order."""
    return [c if i < correct_count else (c + 1) % 4 for i, c in enumerate(ANSWER_KEY)]


class Factory:
    def __init__(self, db):
        self.db = db
        self.counter = 0

    def _next(self):
        self.counter += 1
        return self.counter

    def user(self, role="student", **fields):
        n = self._next()
        defaults = {
            "name": f"{role.title()} {n}",
            "email": f"{role}{n}@school.org",
            "password_hash": get_password_hash(PASSWORD),
            "role": role,
            "is_approved": True,
        }
        if role == "student":
            defaults.update(grade="grade 7", student_code=f"STU9{n:05d}")
        if role == "teacher":
            defaults.update(subject="Math", experience="5 years", qualifications="BSc")
        defaults.update(fields)
        user = User(**defaults)
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def course(self, teacher, approved=True, **fields):
        n = self._next()
        defaults = {
            "title": f"Course {n}",
            "description": "A course",
            "subject": "Math",
            "grade": "grade 7",
            "teacher_id": teacher.id,
            "is_approved": approved,
            "status": "approved" if approved else "pending",
            "is_active": True,
            "tags": [],
        }
        defaults.update(fields)
        course = Course(**defaults)
        self.db.add(course)
        self.db.commit()
        self.db.refresh(course)
        return course

    def video(self, course, order=None, **fields):
        n = self._next()
        defaults = {
            "title": f"Video {n}",
            "description": "A lesson",
            "course_id": course.id,
            "teacher_id": course.teacher_id,
            "video_url": f"https://cdn.school.org/v{n}.mp4",
            "order": order if order is not None else n,
            "is_active": True,
        }
        defaults.update(fields)
        video = Video(**defaults)
        self.db.add(video)
        self.db.commit()
        self.db.refresh(video)
        return video

    def quiz(self, course, video=None, **fields):
        n = self._next()
        defaults = {
            "title": f"Quiz {n}",
            "course_id": course.id,
            "video_id": video.id if video else None,
            "questions": make_questions(),
            "passing_score": 60,
            "max_attempts": 3,
            "is_active": True,
        }
        defaults.update(fields)
        quiz = Quiz(**defaults)
        self.db.add(quiz)
        self.db.commit()
        self.db.refresh(quiz)
        return quiz


def auth_header(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
