import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from eduportal.database import get_db
from eduportal.email_utils import send_enrollment_confirm
from eduportal.errors import AppError, Forbidden, NotFound, ValidationError
from eduportal.models import Course, Enrollment, Quiz, User, Video
from eduportal.progress import enroll, mark_video_watched, progress_stats, record_quiz_attempt
from eduportal.routes.courses import get_owned_course
from eduportal.schemas import CompleteQuiz, EnrollmentOut, EnrollRequest, ProgressUpdate, UserBrief, VideoOut
from eduportal.security import (
    get_current_user, require_parent, require_roles, require_student, require_teacher,
)
from eduportal.stats import student_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/enrollments", tags=["Enrollments"])


def enrollment_out(enrollment: Enrollment, with_student=False):
    data = EnrollmentOut.model_validate(enrollment).model_dump(by_alias=True)
    course = enrollment.course
    data["course"] = {
        "id": course.id,
        "title": course.title,
        "subject": course.subject,
        "grade": course.grade,
        "coverImage": course.cover_image,
        "teacherName": course.teacher.name if course.teacher else None,
    }
    if with_student:
        data["student"] = UserBrief.model_validate(enrollment.student).model_dump(by_alias=True)
    return data


def own_enrollment(db: Session, enrollment_id, student: User) -> Enrollment:
    enrollment = db.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFound("Enrollment not found")
    if enrollment.student_id != student.id:
        raise Forbidden("Not authorized to update this enrollment")
    return enrollment


def enrollment_for_course(db: Session, student: User, course_id) -> Enrollment:
    enrollment = db.query(Enrollment).filter_by(student_id=student.id, course_id=course_id).first()
    if not enrollment:
        raise Forbidden("Not enrolled in this course")
    return enrollment


def child_of(db: Session, parent: User) -> User:
    child = None
    if parent.child_student_code:
        child = (
            db.query(User)
            .filter(User.student_code == parent.child_student_code, User.role == "student")
            .first()
        )
    if not child:
        raise NotFound("No student is linked to this account")
    return child


def can_view(user: User, enrollment: Enrollment):
    if user.role == "admin":
        return True
    if user.role == "student":
        return enrollment.student_id == user.id
    if user.role == "teacher":
        return enrollment.course.teacher_id == user.id
    if user.role == "parent":
        return enrollment.student.student_code == user.child_student_code
    return False


@router.post("/enroll", status_code=201)
def enroll_in_course(
    payload: EnrollRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    enrollment = enroll(db, user, payload.course_id)
    course = enrollment.course
    background_tasks.add_task(
        send_enrollment_confirm, user.email, user.name, course.title,
        course.teacher.name if course.teacher else "EduPortal",
    )
    return {"success": True, "message": "Enrolled successfully", "enrollment": enrollment_out(enrollment)}


@router.get("/check/{course_id}")
def check_enrollment(course_id: int, user: User = Depends(require_student), db: Session = Depends(get_db)):
    enrollment = db.query(Enrollment).filter_by(student_id=user.id, course_id=course_id).first()
    return {
        "success": True,
        "enrolled": enrollment is not None,
        "enrollment": enrollment_out(enrollment) if enrollment else None,
    }


@router.get("/my-enrollments")
def my_enrollments(user: User = Depends(require_student), db: Session = Depends(get_db)):
    enrollments = (
        db.query(Enrollment)
        .filter(Enrollment.student_id == user.id)
        .order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc())
        .all()
    )
    return {"success": True, "enrollments": [enrollment_out(e) for e in enrollments]}


@router.get("/student-stats")
def my_stats(user: User = Depends(require_student), db: Session = Depends(get_db)):
    stats, recent = student_stats(db, user)
    return {"success": True, "stats": stats, "recentActivity": recent}


@router.get("/parent/child-progress")
def child_progress(user: User = Depends(require_parent), db: Session = Depends(get_db)):
    child = child_of(db, user)
    stats, recent = student_stats(db, child)
    return {
        "success": True,
        "child": {
            "id": child.id,
            "name": child.name,
            "email": child.email,
            "studentCode": child.student_code,
            "grade": child.grade,
            "division": child.division,
        },
        "stats": stats,
        "recentActivity": recent,
    }


@router.get("/student/{student_id}")
def child_enrollments(student_id: int, user: User = Depends(require_parent), db: Session = Depends(get_db)):
    child = child_of(db, user)
    if child.id != student_id:
        raise Forbidden("You can only view your own child's enrollments")
    enrollments = db.query(Enrollment).filter(Enrollment.student_id == child.id).all()
    return {"success": True, "enrollments": [enrollment_out(e) for e in enrollments]}


@router.get("/course/{course_id}/students")
def course_students(
    course_id: int,
    user: User = Depends(require_roles("teacher", "admin")),
    db: Session = Depends(get_db),
):
    course = get_owned_course(db, course_id, user)
    enrollments = (
        db.query(Enrollment)
        .filter(Enrollment.course_id == course.id)
        .order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc())
        .all()
    )
    return {"success": True, "enrollments": [enrollment_out(e, with_student=True) for e in enrollments]}


@router.get("/teacher/students")
def teacher_students(user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    enrollments = (
        db.query(Enrollment)
        .join(Course, Enrollment.course_id == Course.id)
        .filter(Course.teacher_id == user.id)
        .order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc())
        .all()
    )
    return {"success": True, "enrollments": [enrollment_out(e, with_student=True) for e in enrollments]}


@router.get("/student-progress/{course_id}")
def course_progress(course_id: int, user: User = Depends(require_student), db: Session = Depends(get_db)):
    enrollment = db.query(Enrollment).filter_by(student_id=user.id, course_id=course_id).first()
    if not enrollment:
        raise NotFound("Enrollment not found")

    videos = (
        db.query(Video)
        .filter(Video.course_id == course_id, Video.is_active.is_(True))
        .order_by(Video.order)
        .all()
    )
    watched = set(enrollment.completed_videos or [])
    return {
        "success": True,
        "enrollment": enrollment_out(enrollment),
        "videos": [
            {**VideoOut.model_validate(v).model_dump(by_alias=True), "isCompleted": v.id in watched} for v in videos
        ],
        "completionPercentage": enrollment.overall_progress,
    }


@router.put("/{enrollment_id}/progress")
def update_progress(
    enrollment_id: int,
    payload: ProgressUpdate,
    user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    enrollment = own_enrollment(db, enrollment_id, user)
    if payload.completed_video is None and payload.completed_quiz is None:
        raise ValidationError("Nothing to update")

    # Both updates land in one commit, so a rejected quiz attempt leaves the video unmarked too.
    try:
        if payload.completed_video is not None:
            mark_video_watched(db, enrollment, payload.completed_video, commit=payload.completed_quiz is None)
        if payload.completed_quiz is not None:
            quiz = db.get(Quiz, payload.completed_quiz)
            if not quiz or not quiz.is_active:
                raise NotFound("Quiz not found")
            record_quiz_attempt(db, enrollment, quiz, payload.quiz_score)
    except AppError:
        db.rollback()
        raise

    return {"success": True, "message": "Progress updated", "enrollment": enrollment_out(enrollment)}


@router.get("/{enrollment_id}/progress")
def get_progress(enrollment_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    enrollment = db.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFound("Enrollment not found")
    if not can_view(user, enrollment):
        raise Forbidden("Not authorized to view this enrollment")
    return {
        "success": True,
        "enrollment": enrollment_out(enrollment),
        "progress": progress_stats(db, enrollment),
    }


@router.post("/watch-video/{video_id}")
def watch_video(video_id: int, user: User = Depends(require_student), db: Session = Depends(get_db)):
    video = db.get(Video, video_id)
    if not video or not video.is_active:
        raise NotFound("Video not found")
    enrollment = enrollment_for_course(db, user, video.course_id)
    enrollment = mark_video_watched(db, enrollment, video.id)
    return {
        "success": True,
        "message": "Video marked as watched",
        "overallProgress": enrollment.overall_progress,
        "enrollment": enrollment_out(enrollment),
    }


@router.post("/complete-quiz/{quiz_id}")
def complete_quiz(
    quiz_id: int,
    payload: CompleteQuiz,
    user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    quiz = db.get(Quiz, quiz_id)
    if not quiz or not quiz.is_active:
        raise NotFound("Quiz not found")
    enrollment = enrollment_for_course(db, user, quiz.course_id)
    outcome = record_quiz_attempt(
        db, enrollment, quiz, payload.score, answers=payload.answers, time_taken=payload.time_taken,
    )
    return {
        "success": True,
        "message": "Quiz result recorded",
        "score": payload.score,
        "passed": outcome.attempt.passed,
        "bestScore": outcome.best_score,
        "attemptsLeft": outcome.attempts_left,
        "overallProgress": enrollment.overall_progress,
    }
