import pytest

from conftest import PASSWORD, auth_header
from eduportal.models import Enrollment


@pytest.fixture
def teacher(factory):
    return factory.user("teacher")


@pytest.fixture
def course(factory, teacher):
    course = factory.course(teacher, title="Physics")
    factory.video(course, order=1)
    factory.video(course, order=2)
    return course


@pytest.fixture
def student(factory):
    return factory.user("student")


def enroll_in(client, student, course_id):
    return client.post("/api/enrollments/enroll", json={"courseId": course_id}, headers=auth_header(student))


def test_enroll_snapshots_and_checks(client, course, student):
    response = enroll_in(client, student, course.id)
    assert response.status_code == 201
    enrollment = response.json()["enrollment"]
    assert enrollment["status"] == "active"
    assert enrollment["totalVideos"] == 2
    assert enrollment["course"]["title"] == "Physics"

    check = client.get(f"/api/enrollments/check/{course.id}", headers=auth_header(student)).json()
    assert check["enrolled"] is True


def test_enroll_twice_is_rejected(client, db, course, student):
    enroll_in(client, student, course.id)
    again = enroll_in(client, student, course.id)
    assert again.status_code == 400
    assert again.json()["message"] == "You are already enrolled in this course"
    assert db.query(Enrollment).count() == 1


def test_enroll_requires_approved_course(client, factory, teacher, student):
    hidden = factory.course(teacher, approved=False)
    assert enroll_in(client, student, hidden.id).status_code == 400
    assert enroll_in(client, student, 4242).status_code == 404


def test_only_students_enroll(client, factory, course):
    assert enroll_in(client, factory.user("teacher"), course.id).status_code == 403


def test_watch_video_is_idempotent(client, course, student):
    enrollment_id = enroll_in(client, student, course.id).json()["enrollment"]["id"]
    video_id = course.videos[0].id
    headers = auth_header(student)

    first = client.post(f"/api/enrollments/watch-video/{video_id}", headers=headers).json()
    second = client.post(f"/api/enrollments/watch-video/{video_id}", headers=headers).json()
    assert first["overallProgress"] == second["overallProgress"] == 50
    assert second["enrollment"]["completedVideos"] == [video_id]

    progress = client.get(f"/api/enrollments/{enrollment_id}/progress", headers=headers).json()["progress"]
    assert progress["videoProgress"] == 50


def test_finishing_all_content_completes_enrollment(client, course, student):
    enrollment_id = enroll_in(client, student, course.id).json()["enrollment"]["id"]
    headers = auth_header(student)
    for video in course.videos:
        response = client.put(
            f"/api/enrollments/{enrollment_id}/progress", json={"completedVideo": video.id}, headers=headers,
        )
    enrollment = response.json()["enrollment"]
    assert enrollment["status"] == "completed"
    assert enrollment["overallProgress"] == 100
    assert enrollment["completionDate"] is not None


def test_progress_update_validation(client, course, student, factory):
    enrollment_id = enroll_in(client, student, course.id).json()["enrollment"]["id"]

    empty = client.put(f"/api/enrollments/{enrollment_id}/progress", json={}, headers=auth_header(student))
    assert empty.status_code == 400
    assert empty.json()["message"] == "Nothing to update"

    no_score = client.put(
        f"/api/enrollments/{enrollment_id}/progress", json={"completedQuiz": 1}, headers=auth_header(student),
    )
    assert no_score.status_code == 400

    someone_else = client.put(
        f"/api/enrollments/{enrollment_id}/progress",
        json={"completedVideo": course.videos[0].id},
        headers=auth_header(factory.user("student")),
    )
    assert someone_else.status_code == 403


def test_complete_quiz_counts_as_attempt(client, factory, course, student):
    quiz = factory.quiz(course, max_attempts=1)
    enroll_in(client, student, course.id)
    headers = auth_header(student)

    recorded = client.post(f"/api/enrollments/complete-quiz/{quiz.id}", json={"score": 70}, headers=headers).json()
    assert recorded["passed"] is True
    assert recorded["attemptsLeft"] == 0

    capped = client.post(f"/api/enrollments/complete-quiz/{quiz.id}", json={"score": 90}, headers=headers)
    assert capped.status_code == 400


def test_student_stats_endpoint(client, course, student):
    enroll_in(client, student, course.id)
    body = client.get("/api/enrollments/student-stats", headers=auth_header(student)).json()
    assert body["stats"]["totalCourses"] == 1
    assert body["recentActivity"][0]["courseTitle"] == "Physics"


def test_parent_sees_only_own_child(client, factory, course, student):
    enroll_in(client, student, course.id)
    parent = factory.user("parent", child_student_code=student.student_code)
    stranger = factory.user("student")

    progress = client.get("/api/enrollments/parent/child-progress", headers=auth_header(parent)).json()
    assert progress["child"]["studentCode"] == student.student_code
    assert progress["stats"]["totalCourses"] == 1

    own = client.get(f"/api/enrollments/student/{student.id}", headers=auth_header(parent))
    assert len(own.json()["enrollments"]) == 1
    assert client.get(f"/api/enrollments/student/{stranger.id}", headers=auth_header(parent)).status_code == 403

    profile = client.get(f"/api/users/student/{stranger.student_code}", headers=auth_header(parent))
    assert profile.status_code == 403


def test_parent_without_child(client, factory):
    parent = factory.user("parent")
    response = client.get("/api/enrollments/parent/child-progress", headers=auth_header(parent))
    assert response.status_code == 404


def test_teacher_sees_course_students(client, factory, teacher, course, student):
    enroll_in(client, student, course.id)

    listed = client.get(f"/api/enrollments/course/{course.id}/students", headers=auth_header(teacher)).json()
    assert [e["student"]["id"] for e in listed["enrollments"]] == [student.id]

    all_mine = client.get("/api/enrollments/teacher/students", headers=auth_header(teacher)).json()
    assert len(all_mine["enrollments"]) == 1

    other = factory.user("teacher")
    assert client.get(f"/api/enrollments/course/{course.id}/students", headers=auth_header(other)).status_code == 403


def test_registered_parent_flow(client, student):
    registered = client.post(
        "/api/auth/register",
        json={
            "name": "Pat Parent",
            "email": "pat@school.org",
            "password": PASSWORD,
            "role": "parent",
            "childStudentId": student.student_code,
        },
    )
    token = registered.json()["token"]
    progress = client.get("/api/enrollments/parent/child-progress", headers={"Authorization": f"Bearer {token}"})
    assert progress.json()["child"]["id"] == student.id


def test_rejected_quiz_leaves_video_unwatched(client, factory, course, student):
    quiz = factory.quiz(course, max_attempts=1)
    enrollment_id = enroll_in(client, student, course.id).json()["enrollment"]["id"]
    headers = auth_header(student)
    client.post(f"/api/enrollments/complete-quiz/{quiz.id}", json={"score": 40}, headers=headers)

    response = client.put(
        f"/api/enrollments/{enrollment_id}/progress",
        json={"completedVideo": course.videos[0].id, "completedQuiz": quiz.id, "quizScore": 90},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Maximum attempts reached"

    after = client.get(f"/api/enrollments/{enrollment_id}/progress", headers=headers).json()
    assert after["enrollment"]["completedVideos"] == []
    assert after["progress"]["videoProgress"] == 0


def test_unknown_quiz_leaves_video_unwatched(client, course, student):
    enrollment_id = enroll_in(client, student, course.id).json()["enrollment"]["id"]
    headers = auth_header(student)

    response = client.put(
        f"/api/enrollments/{enrollment_id}/progress",
        json={"completedVideo": course.videos[0].id, "completedQuiz": 4242, "quizScore": 90},
        headers=headers,
    )
    assert response.status_code == 404

    after = client.get(f"/api/enrollments/{enrollment_id}/progress", headers=headers).json()
    assert after["enrollment"]["completedVideos"] == []


def test_video_and_quiz_update_together(client, factory, course, student):
    quiz = factory.quiz(course)
    enrollment_id = enroll_in(client, student, course.id).json()["enrollment"]["id"]

    response = client.put(
        f"/api/enrollments/{enrollment_id}/progress",
        json={"completedVideo": course.videos[0].id, "completedQuiz": quiz.id, "quizScore": 90},
        headers=auth_header(student),
    )
    enrollment = response.json()["enrollment"]
    assert enrollment["completedVideos"] == [course.videos[0].id]
    assert enrollment["completedQuizzes"] == [quiz.id]


def test_student_progress_for_course(client, factory, course, student):
    factory.video(course, order=3, is_active=False)
    headers = auth_header(student)
    enroll_in(client, student, course.id)
    first, second = course.videos[0], course.videos[1]
    client.post(f"/api/enrollments/watch-video/{first.id}", headers=headers)

    body = client.get(f"/api/enrollments/student-progress/{course.id}", headers=headers).json()
    assert [(v["id"], v["isCompleted"]) for v in body["videos"]] == [(first.id, True), (second.id, False)]
    assert body["videos"][0]["videoUrl"] == first.video_url
    assert body["completionPercentage"] == 50
    assert body["enrollment"]["courseId"] == course.id


def test_student_progress_requires_enrollment(client, course, student):
    response = client.get(f"/api/enrollments/student-progress/{course.id}", headers=auth_header(student))
    assert response.status_code == 404
    assert response.json()["message"] == "Enrollment not found"
