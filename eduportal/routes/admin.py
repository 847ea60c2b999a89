import logging
import math
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from eduportal.approvals import delete_course_cascade, delete_user_cascade, process_course_request, set_teacher_approval
from eduportal.database import get_db
from eduportal.email_utils import send_course_decision_email, send_teacher_approved_email
from eduportal.errors import NotFound, ValidationError
from eduportal.media import LocalMediaStore, get_media_store
from eduportal.models import REQUEST_STATUSES, ROLES, ApprovalRequest, Course, Enrollment, QuizAttempt, User
from eduportal.routes.courses import apply_course_update, course_with_stats
from eduportal.routes.enrollments import enrollment_out
from eduportal.schemas import (
    ApproveCourse, ApproveTeacher, CourseOut, CourseUpdate, RequestOut, TeacherBrief, UserOut,
)
from eduportal.security import require_admin
from eduportal.stats import comprehensive_stats, course_performance, dashboard, enrollment_stats, performance_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


def paginate(query, page, limit):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}


def request_summary(request: ApprovalRequest):
    data = RequestOut.model_validate(request).model_dump(by_alias=True)
    payload = request.data or {}
    data["title"] = payload.get("name")
    data["teacherName"] = payload.get("teacherName") or (request.requester.name if request.requester else None)
    data["teacherEmail"] = request.requester.email if request.requester else None
    data["processedByName"] = request.processor.name if request.processor else None
    return data


# --- DASHBOARD ---
@router.get("/dashboard")
def admin_dashboard(db: Session = Depends(get_db)):
    recent_enrollments = db.query(Enrollment).order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc()).limit(5)
    recent_requests = (
        db.query(ApprovalRequest)
        .filter(ApprovalRequest.type == "course_creation")
        .order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc())
        .limit(5)
    )
    stats = dashboard(db)
    stats["recentActivity"] = {
        "recentEnrollments": [enrollment_out(e, with_student=True) for e in recent_enrollments],
        "recentCourseRequests": [request_summary(r) for r in recent_requests],
    }
    return {"success": True, **stats}


@router.get("/dashboard-stats")
def dashboard_stats(db: Session = Depends(get_db)):
    counts = dict(
        db.query(ApprovalRequest.status, func.count(ApprovalRequest.id))
        .filter(ApprovalRequest.type == "course_creation")
        .group_by(ApprovalRequest.status)
        .all()
    )
    return {
        "success": True,
        "stats": {
            "totalUsers": db.query(func.count(User.id)).scalar(),
            "totalCourses": db.query(func.count(Course.id)).scalar(),
            "pendingRequests": counts.get("pending", 0),
            "approvedRequests": counts.get("approved", 0),
            "rejectedRequests": counts.get("rejected", 0),
        },
    }


# --- TEACHERS ---
@router.get("/pending-teachers")
def pending_teachers(db: Session = Depends(get_db)):
    teachers = (
        db.query(User)
        .filter(User.role == "teacher", User.is_approved.is_(False))
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )
    return {"success": True, "teachers": [UserOut.model_validate(t) for t in teachers]}


@router.put("/approve-teacher/{teacher_id}")
def approve_teacher(
    teacher_id: int,
    payload: ApproveTeacher,
    background_tasks: BackgroundTasks,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    teacher = set_teacher_approval(db, teacher_id, admin, payload.approved)
    if teacher.is_approved:
        background_tasks.add_task(send_teacher_approved_email, teacher.email, teacher.name)
    verdict = "approved" if payload.approved else "rejected"
    return {"success": True, "message": f"Teacher {verdict} successfully", "teacher": UserOut.model_validate(teacher)}


@router.get("/teachers")
def approved_teachers(db: Session = Depends(get_db)):
    teachers = db.query(User).filter(User.role == "teacher", User.is_approved.is_(True)).order_by(User.name).all()
    return {"success": True, "teachers": [TeacherBrief.model_validate(t) for t in teachers]}


# --- COURSE REQUESTS ---
@router.get("/pending-courses")
def pending_courses(db: Session = Depends(get_db)):
    requests = (
        db.query(ApprovalRequest)
        .filter(ApprovalRequest.type == "course_creation", ApprovalRequest.status == "pending")
        .order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc())
        .all()
    )
    return {"success": True, "requests": [request_summary(r) for r in requests]}


@router.get("/course-requests")
def course_requests(status: Optional[str] = None, page: int = 1, limit: int = 10, db: Session = Depends(get_db)):
    query = db.query(ApprovalRequest).filter(ApprovalRequest.type == "course_creation")
    if status and status != "all":
        if status not in REQUEST_STATUSES:
            raise ValidationError("Invalid status filter")
        query = query.filter(ApprovalRequest.status == status)
    requests, pagination = paginate(
        query.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc()), page, limit
    )
    return {"success": True, "requests": [request_summary(r) for r in requests], "pagination": pagination}


@router.put("/approve-course/{request_id}")
def approve_course(
    request_id: int,
    payload: ApproveCourse,
    background_tasks: BackgroundTasks,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    request, course = process_course_request(db, request_id, admin, payload.approved, payload.admin_notes)
    if request.requester:
        background_tasks.add_task(
            send_course_decision_email,
            request.requester.email,
            request.requester.name,
            request.data.get("name", ""),
            payload.approved,
            payload.admin_notes or "",
        )
    return {
        "success": True,
        "message": "Course approved successfully" if payload.approved else "Course request rejected",
        "request": request_summary(request),
        "course": CourseOut.model_validate(course) if course else None,
    }


# --- USERS ---
@router.get("/users")
def list_users(role: Optional[str] = None, page: int = 1, limit: int = 10, db: Session = Depends(get_db)):
    query = db.query(User)
    if role:
        if role not in ROLES:
            raise ValidationError("Invalid role filter")
        query = query.filter(User.role == role)
    users, pagination = paginate(query.order_by(User.created_at.desc(), User.id.desc()), page, limit)
    return {"success": True, "users": [UserOut.model_validate(u) for u in users], "pagination": pagination}


@router.delete("/user/{user_id}")
async def delete_user(
    user_id: int,
    store: LocalMediaStore = Depends(get_media_store),
    db: Session = Depends(get_db),
):
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    for public_id in delete_user_cascade(db, user):
        await store.delete(public_id)
    return {"success": True, "message": "User deleted successfully"}


# --- COURSES ---
@router.get("/courses")
def list_courses(approved: Optional[bool] = None, page: int = 1, limit: int = 10, db: Session = Depends(get_db)):
    query = db.query(Course)
    if approved is not None:
        query = query.filter(Course.is_approved.is_(approved))
    courses, pagination = paginate(query.order_by(Course.created_at.desc(), Course.id.desc()), page, limit)
    return {"success": True, "courses": [course_with_stats(db, c) for c in courses], "pagination": pagination}


@router.get("/courses/{course_id}")
def get_course(course_id: int, db: Session = Depends(get_db)):
    course = db.get(Course, course_id)
    if not course:
        raise NotFound("Course not found")
    return {"success": True, "course": course_with_stats(db, course)}


@router.put("/courses/{course_id}")
def update_course(course_id: int, payload: CourseUpdate, db: Session = Depends(get_db)):
    course = db.get(Course, course_id)
    if not course:
        raise NotFound("Course not found")
    apply_course_update(db, course, payload)
    return {"success": True, "message": "Course updated successfully", "course": CourseOut.model_validate(course)}


@router.delete("/course/{course_id}")
async def delete_course(
    course_id: int,
    store: LocalMediaStore = Depends(get_media_store),
    db: Session = Depends(get_db),
):
    course = db.get(Course, course_id)
    if not course:
        raise NotFound("Course not found")
    for public_id in delete_course_cascade(db, course):
        await store.delete(public_id)
    return {"success": True, "message": "Course and all associated content deleted successfully"}


# --- ENROLLMENTS ---
@router.get("/recent-enrollments")
def recent_enrollments(db: Session = Depends(get_db)):
    enrollments = db.query(Enrollment).order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc()).limit(10).all()
    return {"success": True, "enrollments": [enrollment_out(e, with_student=True) for e in enrollments]}


@router.get("/enrollments")
def list_enrollments(status: Optional[str] = None, page: int = 1, limit: int = 10, db: Session = Depends(get_db)):
    query = db.query(Enrollment)
    if status:
        query = query.filter(Enrollment.status == status)
    enrollments, pagination = paginate(
        query.order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc()), page, limit
    )
    return {
        "success": True,
        "enrollments": [enrollment_out(e, with_student=True) for e in enrollments],
        "pagination": pagination,
    }


@router.get("/enrollment-stats")
def get_enrollment_stats(db: Session = Depends(get_db)):
    return {"success": True, "stats": enrollment_stats(db)}


@router.delete("/enrollments/{enrollment_id}")
def delete_enrollment(enrollment_id: int, db: Session = Depends(get_db)):
    enrollment = db.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFound("Enrollment not found")
    db.query(QuizAttempt).filter(QuizAttempt.enrollment_id == enrollment.id).delete(synchronize_session=False)
    db.query(Enrollment).filter(Enrollment.id == enrollment.id).delete(synchronize_session=False)
    db.commit()
    logger.info("Enrollment %s deleted", enrollment_id)
    return {"success": True, "message": "Enrollment deleted successfully"}


# --- PERFORMANCE ---
@router.get("/performance-stats")
def get_performance_stats(db: Session = Depends(get_db)):
    return {"success": True, **performance_stats(db)}


@router.get("/comprehensive-stats")
def get_comprehensive_stats(db: Session = Depends(get_db)):
    return {"success": True, **comprehensive_stats(db)}


@router.get("/course-performance")
def get_course_performance(db: Session = Depends(get_db)):
    return {"success": True, "coursePerformance": course_performance(db)}
