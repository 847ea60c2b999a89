import pytest

from conftest import auth_header
from eduportal.create_admin import create_admin
from eduportal.models import ApprovalRequest, Course, Enrollment, User
from eduportal.progress import enroll, mark_video_watched, record_quiz_attempt
from eduportal.security import verify_password


@pytest.fixture
def admin(factory):
    return factory.user("admin")


@pytest.mark.parametrize(
    "path",
    [
        "/api/admin/dashboard",
        "/api/admin/users",
        "/api/admin/performance-stats",
        "/api/admin/pending-courses",
        "/api/admin/comprehensive-stats",
    ],
)
def test_admin_routes_are_guarded(client, factory, path):
    assert client.get(path).status_code == 401
    for role in ("student", "teacher", "parent"):
        response = client.get(path, headers=auth_header(factory.user(role)))
        assert response.status_code == 403


def test_dashboard(client, db, factory, admin):
    teacher = factory.user("teacher")
    factory.user("teacher", is_approved=False)
    course = factory.course(teacher)
    video = factory.video(course, order=1)
    student = factory.user("student")
    enrollment = enroll(db, student, course.id)
    mark_video_watched(db, enrollment, video.id)

    body = client.get("/api/admin/dashboard", headers=auth_header(admin)).json()
    assert body["users"]["teachers"] == 2
    assert body["users"]["pendingTeachers"] == 1
    assert body["enrollments"]["completed"] == 1
    assert body["activity"]["totalVideoViews"] == 1
    assert body["recentActivity"]["recentEnrollments"][0]["student"]["id"] == student.id


def test_dashboard_stats_counts_requests(client, db, factory, admin):
    teacher = factory.user("teacher")
    for status in ("pending", "pending", "approved", "rejected"):
        db.add(ApprovalRequest(type="course_creation", status=status, requested_by=teacher.id, data={"name": status}))
    db.commit()

    stats = client.get("/api/admin/dashboard-stats", headers=auth_header(admin)).json()["stats"]
    assert (stats["pendingRequests"], stats["approvedRequests"], stats["rejectedRequests"]) == (2, 1, 1)

    listed = client.get("/api/admin/course-requests", params={"status": "pending"}, headers=auth_header(admin)).json()
    assert listed["pagination"]["total"] == 2
    assert listed["requests"][0]["teacherEmail"] == teacher.email


def test_performance_endpoints(client, db, factory, admin):
    teacher = factory.user("teacher")
    course = factory.course(teacher, title="Chemistry")
    quiz = factory.quiz(course)
    student = factory.user("student")
    record_quiz_attempt(db, enroll(db, student, course.id), quiz, 100)

    stats = client.get("/api/admin/performance-stats", headers=auth_header(admin)).json()
    assert stats["overallCompletionRate"] == 100
    assert stats["topPerformers"][0]["overallRating"] == 100

    rows = client.get("/api/admin/course-performance", headers=auth_header(admin)).json()["coursePerformance"]
    assert rows[0]["title"] == "Chemistry"
    assert rows[0]["overallRating"] == 100


def test_reject_teacher_keeps_login_blocked(client, factory, admin):
    teacher = factory.user("teacher", is_approved=False)
    response = client.put(
        f"/api/admin/approve-teacher/{teacher.id}", json={"approved": False}, headers=auth_header(admin),
    )
    assert response.json()["teacher"]["isApproved"] is False
    assert client.put("/api/admin/approve-teacher/999", json={}, headers=auth_header(admin)).status_code == 404


def test_delete_user_cascades(client, db, factory, admin):
    teacher = factory.user("teacher")
    course = factory.course(teacher)
    student = factory.user("student")
    enroll(db, student, course.id)

    response = client.delete(f"/api/admin/user/{teacher.id}", headers=auth_header(admin))
    assert response.status_code == 200

    db.expire_all()
    assert db.query(User).filter_by(id=teacher.id).count() == 0
    assert db.query(Course).count() == 0
    assert db.query(Enrollment).count() == 0
    assert db.query(User).filter_by(id=student.id).count() == 1


def test_admin_cannot_be_deleted(client, factory, admin):
    other = factory.user("admin")
    response = client.delete(f"/api/admin/user/{other.id}", headers=auth_header(admin))
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot delete admin user"


def test_admin_course_management(client, db, factory, admin):
    teacher = factory.user("teacher")
    pending = factory.course(teacher, approved=False, title="Draft")
    factory.course(teacher, title="Live")

    unapproved = client.get("/api/admin/courses", params={"approved": False}, headers=auth_header(admin)).json()
    assert [c["title"] for c in unapproved["courses"]] == ["Draft"]

    updated = client.put(f"/api/admin/courses/{pending.id}", json={"price": 49.5}, headers=auth_header(admin))
    assert updated.json()["course"]["price"] == 49.5

    assert client.delete(f"/api/admin/course/{pending.id}", headers=auth_header(admin)).status_code == 200
    assert client.get(f"/api/admin/courses/{pending.id}", headers=auth_header(admin)).status_code == 404


def test_admin_enrollments(client, db, factory, admin):
    teacher = factory.user("teacher")
    course = factory.course(teacher)
    enrollment = enroll(db, factory.user("student"), course.id)

    listed = client.get("/api/admin/enrollments", params={"status": "active"}, headers=auth_header(admin)).json()
    assert listed["pagination"]["total"] == 1

    assert client.delete(f"/api/admin/enrollments/{enrollment.id}", headers=auth_header(admin)).status_code == 200
    assert client.get("/api/admin/recent-enrollments", headers=auth_header(admin)).json()["enrollments"] == []


def test_create_admin_promotes_existing_account(db, factory):
    user, created = create_admin(db, "root@school.org", "Root", "topsecret")
    assert created is True
    assert user.role == "admin"
    assert verify_password("topsecret", user.password_hash)

    teacher = factory.user("teacher")
    promoted, created = create_admin(db, teacher.email, "Head Teacher", "another1")
    assert created is False
    assert promoted.id == teacher.id
    assert promoted.role == "admin"


def test_list_filters_are_validated(client, factory, admin):
    factory.user("student")
    students = client.get("/api/admin/users", params={"role": "student"}, headers=auth_header(admin)).json()
    assert students["pagination"]["total"] == 1

    assert client.get("/api/admin/users", params={"role": "wizard"}, headers=auth_header(admin)).status_code == 400
    bad_status = client.get("/api/admin/course-requests", params={"status": "lost"}, headers=auth_header(admin))
    assert bad_status.status_code == 400


def test_comprehensive_stats_endpoint(client, db, factory, admin):
    teacher = factory.user("teacher")
    course = factory.course(teacher, title="Biology")
    video = factory.video(course, order=1)
    quiz = factory.quiz(course)
    student = factory.user("student", name="Sam Student")
    enrollment = enroll(db, student, course.id)
    mark_video_watched(db, enrollment, video.id)
    record_quiz_attempt(db, enrollment, quiz, 75)

    body = client.get("/api/admin/comprehensive-stats", headers=auth_header(admin)).json()
    assert body["success"] is True
    assert body["totals"]["courses"] == 1
    assert body["videoActivity"] == [
        {"videoId": video.id, "title": video.title, "courseId": course.id, "completions": 1},
    ]
    assert body["quizActivity"][0]["passedAttempts"] == 1
    assert body["studentProgress"][0]["studentName"] == "Sam Student"
    assert body["coursePopularity"][0]["averageCompletion"] == 100
    assert body["recentActivity"]["enrollments"][0]["courseTitle"] == "Biology"
