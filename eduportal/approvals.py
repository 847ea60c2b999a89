"""Admin approval workflow for course creation requests and teacher accounts.

A request starts ``pending`` and is decided exactly once. Approving a
``course_creation`` request materializes the course from the request payload.
"""
import logging
from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eduportal.errors import Conflict, NotFound, RequestAlreadyProcessed, ValidationError
from eduportal.models import ApprovalRequest, Course, Enrollment, Quiz, QuizAttempt, User, Video

logger = logging.getLogger(__name__)


def _title_taken(db: Session, teacher_id, title):
    return (
        db.query(Course.id)
        .filter(Course.teacher_id == teacher_id, func.lower(Course.title) == title.strip().lower())
        .first()
        is not None
    )


def submit_course_request(db: Session, teacher: User, data: dict) -> ApprovalRequest:
    title = data["name"]
    if _title_taken(db, teacher.id, title):
        raise Conflict("You already have a course with this title. Please choose a different title.")

    pending = (
        db.query(ApprovalRequest)
        .filter(
            ApprovalRequest.type == "course_creation",
            ApprovalRequest.status == "pending",
            ApprovalRequest.requested_by == teacher.id,
        )
        .all()
    )
    if any(r.data.get("name", "").strip().lower() == title.strip().lower() for r in pending):
        raise Conflict("A request for a course with this title is already pending")

    request = ApprovalRequest(
        type="course_creation",
        status="pending",
        requested_by=teacher.id,
        data=dict(data, teacherName=data.get("teacherName") or teacher.name),
        request_metadata={"role": teacher.role},
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    logger.info("Course request %s submitted by teacher %s", request.id, teacher.id)
    return request


def _claim(db: Session, request_id, admin: User, approved, admin_notes):
    """Move a pending request to its terminal state; False if already decided."""
    rows = (
        db.query(ApprovalRequest)
        .filter(ApprovalRequest.id == request_id, ApprovalRequest.status == "pending")
        .update(
            {
                ApprovalRequest.status: "approved" if approved else "rejected",
                ApprovalRequest.admin_notes: admin_notes or "",
                ApprovalRequest.processed_by: admin.id,
                ApprovalRequest.processed_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )
    )
    return rows == 1


def process_course_request(db: Session, request_id, admin: User, approved, admin_notes=None):
    """Approve or reject a course creation request.

    Returns ``(request, course)``; ``course`` is None on rejection.
    """
    request = db.get(ApprovalRequest, request_id)
    if not request or request.type != "course_creation":
        raise NotFound("Request not found")
    if request.status != "pending" or not _claim(db, request.id, admin, approved, admin_notes):
        db.rollback()
        raise RequestAlreadyProcessed("Request already processed")

    course = None
    if approved:
        data = request.data or {}
        now = datetime.utcnow()
        course = Course(
            title=data.get("name"),
            description=data.get("description", ""),
            subject=data.get("subject", ""),
            grade=data.get("grade") or "general",
            division=data.get("division"),
            price=data.get("price") or 0.0,
            teacher_id=request.requested_by,
            cover_image=data.get("coverImage", ""),
            cover_image_public_id=data.get("coverImagePublicId", ""),
            is_approved=True,
            status="approved",
            is_active=True,
            approval_date=now,
            tags=[],
        )
        db.add(course)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            raise Conflict("The teacher already has a course with this title") from exc
        db.query(ApprovalRequest).filter(ApprovalRequest.id == request.id).update(
            {ApprovalRequest.course_id: course.id}, synchronize_session=False
        )

    db.commit()
    db.refresh(request)
    if course is not None:
        db.refresh(course)
    logger.info(
        "Course request %s %s by admin %s",
        request.id, "approved" if approved else "rejected", admin.id,
    )
    return request, course


def open_teacher_request(db: Session, teacher: User) -> ApprovalRequest:
    request = ApprovalRequest(
        type="teacher_approval",
        status="pending",
        requested_by=teacher.id,
        data={"teacherName": teacher.name, "subject": teacher.subject},
        request_metadata={"role": "teacher"},
    )
    db.add(request)
    return request


def set_teacher_approval(db: Session, teacher_id, admin: User, approved) -> User:
    teacher = db.get(User, teacher_id)
    if not teacher or teacher.role != "teacher":
        raise NotFound("Teacher not found")

    teacher.is_approved = bool(approved)
    pending = (
        db.query(ApprovalRequest)
        .filter(
            ApprovalRequest.type == "teacher_approval",
            ApprovalRequest.status == "pending",
            ApprovalRequest.requested_by == teacher.id,
        )
        .all()
    )
    for request in pending:
        _claim(db, request.id, admin, approved, None)

    db.commit()
    db.refresh(teacher)
    logger.info("Teacher %s %s by admin %s", teacher.id, "approved" if approved else "rejected", admin.id)
    return teacher


def delete_course_cascade(db: Session, course: Course):
    """Hard-delete ``course`` with its videos, quizzes, enrollments and attempts.

    Requests that materialized the course keep their audit trail but lose the
    link. Returns the media ids the caller should remove from storage.
    """
    media_ids = [course.cover_image_public_id] if course.cover_image_public_id else []
    videos = db.query(Video).filter(Video.course_id == course.id).all()
    media_ids += [v.public_id for v in videos if v.public_id]

    enrollment_ids = [e.id for e in db.query(Enrollment.id).filter(Enrollment.course_id == course.id)]
    quiz_ids = [q.id for q in db.query(Quiz.id).filter(Quiz.course_id == course.id)]
    if enrollment_ids or quiz_ids:
        db.query(QuizAttempt).filter(
            or_(QuizAttempt.enrollment_id.in_(enrollment_ids), QuizAttempt.quiz_id.in_(quiz_ids))
        ).delete(synchronize_session=False)
    db.query(Enrollment).filter(Enrollment.course_id == course.id).delete(synchronize_session=False)
    db.query(Quiz).filter(Quiz.course_id == course.id).delete(synchronize_session=False)
    db.query(Video).filter(Video.course_id == course.id).delete(synchronize_session=False)
    db.query(ApprovalRequest).filter(ApprovalRequest.course_id == course.id).update(
        {ApprovalRequest.course_id: None}, synchronize_session=False
    )
    course_id = course.id
    db.query(Course).filter(Course.id == course_id).delete(synchronize_session=False)
    db.commit()
    logger.info(
        "Deleted course %s with %d videos, %d quizzes, %d enrollments",
        course_id, len(videos), len(quiz_ids), len(enrollment_ids),
    )
    return media_ids


def delete_user_cascade(db: Session, user: User):
    """Delete a non-admin user along with what only they own.

    Returns the media ids of any deleted courses.
    """
    if user.role == "admin":
        raise ValidationError("Cannot delete admin user")

    media_ids = []
    for course in db.query(Course).filter(Course.teacher_id == user.id).all():
        media_ids += delete_course_cascade(db, course)

    enrollment_ids = [e.id for e in db.query(Enrollment.id).filter(Enrollment.student_id == user.id)]
    if enrollment_ids:
        db.query(QuizAttempt).filter(QuizAttempt.enrollment_id.in_(enrollment_ids)).delete(
            synchronize_session=False
        )
    db.query(Enrollment).filter(Enrollment.student_id == user.id).delete(synchronize_session=False)
    db.query(Video).filter(Video.teacher_id == user.id).delete(synchronize_session=False)
    db.query(ApprovalRequest).filter(ApprovalRequest.requested_by == user.id).delete(synchronize_session=False)
    db.query(ApprovalRequest).filter(ApprovalRequest.processed_by == user.id).update(
        {ApprovalRequest.processed_by: None}, synchronize_session=False
    )
    user_id = user.id
    db.query(User).filter(User.id == user_id).delete(synchronize_session=False)
    db.commit()
    logger.info("Deleted user %s", user_id)
    return media_ids
