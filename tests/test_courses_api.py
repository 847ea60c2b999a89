import os

import pytest

from conftest import auth_header
from eduportal.config import settings
from eduportal.models import ApprovalRequest, Course, Enrollment, Quiz, QuizAttempt, Video
from eduportal.progress import enroll, record_quiz_attempt

COVER = ("cover.png", b"\x89PNG fake image bytes", "image/png")


def course_form(**fields):
    form = {"name": "Algebra I", "subject": "Math", "grade": "grade 7", "description": "Linear equations"}
    form.update(fields)
    return form


def submit(client, teacher, **fields):
    return client.post(
        "/api/courses/request",
        data=course_form(**fields),
        files={"coverImage": COVER},
        headers=auth_header(teacher),
    )


def decide(client, admin, request_id, approved=True, notes=None):
    return client.put(
        f"/api/admin/approve-course/{request_id}",
        json={"approved": approved, "adminNotes": notes},
        headers=auth_header(admin),
    )


@pytest.fixture
def admin(factory):
    return factory.user("admin")


@pytest.fixture
def teacher(factory):
    return factory.user("teacher")


def test_request_then_approve_publishes_course(client, db, admin, teacher):
    submitted = submit(client, teacher)
    assert submitted.status_code == 201
    request = submitted.json()["request"]
    assert request["status"] == "pending"
    assert request["data"]["teacherName"] == teacher.name
    cover_id = request["data"]["coverImagePublicId"]
    assert os.path.exists(os.path.join(settings.MEDIA_ROOT, cover_id))

    assert client.get("/api/courses/approved").json()["courses"] == []

    approved = decide(client, admin, request["id"])
    assert approved.status_code == 200
    body = approved.json()
    assert body["message"] == "Course approved successfully"
    assert body["course"]["isApproved"] is True
    assert body["course"]["isActive"] is True
    assert body["course"]["approvalDate"] is not None
    assert body["request"]["courseId"] == body["course"]["id"]

    listed = client.get("/api/courses/approved").json()["courses"]
    assert [c["title"] for c in listed] == ["Algebra I"]
    assert listed[0]["enrollmentCount"] == 0

    detail = client.get(f"/api/courses/{body['course']['id']}")
    assert detail.json()["course"]["teacher"]["id"] == teacher.id


def test_processed_request_is_terminal(client, db, admin, teacher):
    request_id = submit(client, teacher).json()["request"]["id"]
    decide(client, admin, request_id)

    again = decide(client, admin, request_id, approved=False)
    assert again.status_code == 400
    assert again.json()["message"] == "Request already processed"
    assert db.query(Course).count() == 1
    assert db.get(ApprovalRequest, request_id).status == "approved"


def test_rejected_request_creates_no_course(client, db, admin, teacher):
    request_id = submit(client, teacher).json()["request"]["id"]

    rejected = decide(client, admin, request_id, approved=False, notes="Needs a syllabus")
    assert rejected.json()["message"] == "Course request rejected"
    assert rejected.json()["course"] is None
    assert db.query(Course).count() == 0

    mine = client.get("/api/courses/teacher/my-requests", headers=auth_header(teacher)).json()["requests"]
    assert mine[0]["status"] == "rejected"
    assert mine[0]["adminNotes"] == "Needs a syllabus"


def test_unapproved_teacher_cannot_request(client, factory):
    pending = factory.user("teacher", is_approved=False)
    response = submit(client, pending)
    assert response.status_code == 403
    assert response.json()["status"] == "pending_approval"


def test_students_cannot_request_courses(client, factory):
    response = submit(client, factory.user("student"))
    assert response.status_code == 403


def test_cover_must_be_an_image(client, teacher):
    response = client.post(
        "/api/courses/request",
        data=course_form(),
        files={"coverImage": ("notes.pdf", b"%PDF-1.4", "application/pdf")},
        headers=auth_header(teacher),
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Only image files are allowed"


def test_duplicate_titles_are_rejected(client, factory, admin, teacher):
    submit(client, teacher)
    pending_dup = submit(client, teacher, name="algebra i")
    assert pending_dup.status_code == 400
    assert "already pending" in pending_dup.json()["message"]

    factory.course(teacher, title="Geometry")
    existing_dup = submit(client, teacher, name="Geometry")
    assert existing_dup.status_code == 400
    assert existing_dup.json()["message"].startswith("You already have a course with this title")

    # Another teacher may reuse the title.
    assert submit(client, factory.user("teacher"), name="Geometry").status_code == 201


def test_unapproved_course_is_not_visible(client, factory, teacher):
    course = factory.course(teacher, approved=False)
    assert client.get(f"/api/courses/{course.id}").status_code == 404
    assert client.get("/api/courses/").json()["courses"] == []


def test_course_detail_lists_active_videos_in_order(client, factory, teacher):
    course = factory.course(teacher)
    factory.video(course, order=2, title="Second")
    factory.video(course, order=1, title="First")
    factory.video(course, order=3, title="Hidden", is_active=False)

    body = client.get(f"/api/courses/{course.id}").json()
    assert [v["title"] for v in body["videos"]] == ["First", "Second"]
    assert body["course"]["videoCount"] == 2


def test_search_filters_and_paginates(client, factory, teacher):
    for title, subject in [("Algebra", "Math"), ("Biology", "Science"), ("Calculus", "Math")]:
        factory.course(teacher, title=title, subject=subject)

    math = client.get("/api/courses/all", params={"subject": "Math", "limit": 1}).json()
    assert len(math["courses"]) == 1
    assert math["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}

    found = client.get("/api/courses/all", params={"search": "bio"}).json()
    assert [c["title"] for c in found["courses"]] == ["Biology"]


def test_owner_updates_course(client, factory, teacher):
    course = factory.course(teacher)
    other = factory.user("teacher")

    denied = client.put(f"/api/courses/{course.id}", json={"title": "Mine now"}, headers=auth_header(other))
    assert denied.status_code == 403

    updated = client.put(
        f"/api/courses/{course.id}",
        json={"title": "Algebra II", "tags": ["equations"], "difficulty": "advanced"},
        headers=auth_header(teacher),
    )
    assert updated.status_code == 200
    assert updated.json()["course"]["title"] == "Algebra II"
    assert updated.json()["course"]["tags"] == ["equations"]


def test_delete_course_cascades(client, db, factory, teacher):
    course = factory.course(teacher)
    video = factory.video(course, order=1)
    quiz = factory.quiz(course, video=video)
    student = factory.user("student")
    enrollment = enroll(db, student, course.id)
    record_quiz_attempt(db, enrollment, quiz, 90)
    kept = factory.course(teacher)
    factory.video(kept, order=1)

    assert client.delete(f"/api/courses/{course.id}", headers=auth_header(student)).status_code == 403

    response = client.delete(f"/api/courses/{course.id}", headers=auth_header(teacher))
    assert response.status_code == 200

    db.expire_all()
    assert db.query(Course).filter_by(id=course.id).count() == 0
    assert db.query(Video).filter_by(course_id=course.id).count() == 0
    assert db.query(Quiz).filter_by(course_id=course.id).count() == 0
    assert db.query(Enrollment).count() == 0
    assert db.query(QuizAttempt).count() == 0
    assert db.query(Video).filter_by(course_id=kept.id).count() == 1


def test_delete_course_removes_cover_file(client, admin, teacher):
    request_id = submit(client, teacher).json()["request"]["id"]
    course = decide(client, admin, request_id).json()["course"]
    cover_path = os.path.join(settings.MEDIA_ROOT, course["coverImage"].split(settings.MEDIA_URL + "/", 1)[1])
    assert os.path.exists(cover_path)

    assert client.delete(f"/api/courses/{course['id']}", headers=auth_header(admin)).status_code == 200
    assert not os.path.exists(cover_path)
