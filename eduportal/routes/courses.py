import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eduportal.approvals import delete_course_cascade, submit_course_request
from eduportal.database import get_db
from eduportal.errors import Conflict, Forbidden, NotFound, ValidationError
from eduportal.media import LocalMediaStore, get_media_store
from eduportal.models import ApprovalRequest, Course, Enrollment, Quiz, User, Video
from eduportal.schemas import CourseOut, CourseUpdate, RequestOut, VideoOut
from eduportal.security import require_approved_teacher, require_roles, require_teacher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/courses", tags=["Courses"])


def course_with_stats(db: Session, course: Course):
    data = CourseOut.model_validate(course).model_dump(by_alias=True)
    data["enrollmentCount"] = db.query(func.count(Enrollment.id)).filter(Enrollment.course_id == course.id).scalar()
    data["videoCount"] = (
        db.query(func.count(Video.id)).filter(Video.course_id == course.id, Video.is_active.is_(True)).scalar()
    )
    data["quizCount"] = (
        db.query(func.count(Quiz.id)).filter(Quiz.course_id == course.id, Quiz.is_active.is_(True)).scalar()
    )
    return data


def get_owned_course(db: Session, course_id, user: User) -> Course:
    """Load a course the user may manage: its teacher, or any admin."""
    course = db.get(Course, course_id)
    if not course:
        raise NotFound("Course not found")
    if user.role != "admin" and course.teacher_id != user.id:
        raise Forbidden("Not authorized to manage this course")
    return course


def public_courses(db: Session):
    return db.query(Course).filter(Course.is_approved.is_(True), Course.is_active.is_(True))


@router.get("/approved")
def approved_courses(db: Session = Depends(get_db)):
    courses = public_courses(db).order_by(Course.created_at.desc(), Course.id.desc()).all()
    return {"success": True, "courses": [course_with_stats(db, c) for c in courses]}


@router.get("/")
def list_courses(db: Session = Depends(get_db)):
    return approved_courses(db)


@router.get("/latest")
def latest_courses(db: Session = Depends(get_db)):
    courses = public_courses(db).order_by(Course.created_at.desc(), Course.id.desc()).limit(6).all()
    return {"success": True, "courses": [CourseOut.model_validate(c) for c in courses]}


@router.get("/all")
def search_courses(
    subject: Optional[str] = None,
    grade: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    query = public_courses(db)
    if subject:
        query = query.filter(Course.subject == subject)
    if grade:
        query = query.filter(Course.grade == grade)
    if search:
        pattern = f"%{search}%"
        query = query.filter(Course.title.ilike(pattern) | Course.description.ilike(pattern))

    total = query.count()
    courses = query.order_by(Course.created_at.desc(), Course.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "success": True,
        "courses": [course_with_stats(db, c) for c in courses],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


@router.get("/teacher/my-courses")
def my_courses(user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    courses = db.query(Course).filter(Course.teacher_id == user.id).order_by(Course.created_at.desc()).all()
    return {"success": True, "courses": [course_with_stats(db, c) for c in courses]}


@router.post("/request", status_code=201)
async def request_course(
    name: str = Form(...),
    subject: str = Form(...),
    grade: str = Form(...),
    description: str = Form(...),
    division: Optional[str] = Form(None),
    price: float = Form(0.0),
    teacher_name: Optional[str] = Form(None, alias="teacherName"),
    cover_image: UploadFile = File(..., alias="coverImage"),
    user: User = Depends(require_approved_teacher),
    store: LocalMediaStore = Depends(get_media_store),
    db: Session = Depends(get_db),
):
    if not all(value.strip() for value in (name, subject, grade, description)):
        raise ValidationError("All fields are required")
    if price < 0:
        raise ValidationError("Price cannot be negative")

    asset = await store.upload(cover_image, "image", folder="course-covers")
    data = {
        "name": name.strip(),
        "subject": subject.strip(),
        "grade": grade.strip(),
        "division": division,
        "description": description.strip(),
        "price": price,
        "teacherName": teacher_name,
        "coverImage": asset.url,
        "coverImagePublicId": asset.public_id,
    }
    try:
        request = submit_course_request(db, user, data)
    except Conflict:
        await store.delete(asset.public_id)
        raise

    return {
        "success": True,
        "message": "Course creation request submitted successfully. Waiting for admin approval.",
        "request": RequestOut.model_validate(request),
    }


@router.get("/teacher/my-requests")
def my_requests(user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    requests = (
        db.query(ApprovalRequest)
        .filter(ApprovalRequest.requested_by == user.id, ApprovalRequest.type == "course_creation")
        .order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc())
        .all()
    )
    return {"success": True, "requests": [RequestOut.model_validate(r) for r in requests]}


@router.get("/{course_id}")
def get_course(course_id: int, db: Session = Depends(get_db)):
    course = db.get(Course, course_id)
    if not course:
        raise NotFound("Course not found")
    if not course.is_approved or not course.is_active:
        raise NotFound("Course not available")

    videos = (
        db.query(Video)
        .filter(Video.course_id == course.id, Video.is_active.is_(True))
        .order_by(Video.order)
        .all()
    )
    return {
        "success": True,
        "course": course_with_stats(db, course),
        "videos": [VideoOut.model_validate(v) for v in videos],
    }


def apply_course_update(db: Session, course: Course, payload: CourseUpdate):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "title" in changes:
        changes["title"] = changes["title"].strip()
    for field, value in changes.items():
        setattr(course, field, value)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("You already have a course with this title. Please choose a different title.") from exc
    db.refresh(course)
    return course


@router.put("/{course_id}")
def update_course(
    course_id: int,
    payload: CourseUpdate,
    user: User = Depends(require_approved_teacher),
    db: Session = Depends(get_db),
):
    course = get_owned_course(db, course_id, user)
    apply_course_update(db, course, payload)
    return {"success": True, "message": "Course updated successfully", "course": CourseOut.model_validate(course)}


@router.delete("/{course_id}")
async def delete_course(
    course_id: int,
    user: User = Depends(require_roles("teacher", "admin")),
    store: LocalMediaStore = Depends(get_media_store),
    db: Session = Depends(get_db),
):
    course = get_owned_course(db, course_id, user)
    for public_id in delete_course_cascade(db, course):
        await store.delete(public_id)
    return {"success": True, "message": "Course and all associated content deleted successfully"}
