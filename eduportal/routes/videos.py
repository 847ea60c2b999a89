import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eduportal.database import get_db
from eduportal.errors import Conflict, Forbidden, NotFound, ValidationError
from eduportal.media import LocalMediaStore, get_media_store
from eduportal.models import Enrollment, Quiz, User, Video
from eduportal.routes.courses import get_owned_course
from eduportal.schemas import VideoCreate, VideoOut, VideoUpdate
from eduportal.security import get_current_user, require_approved_teacher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/videos", tags=["Videos"])

ORDER_TAKEN = "Video order already exists for this course"


def next_order(db: Session, course_id):
    last = db.query(func.max(Video.order)).filter(Video.course_id == course_id).scalar()
    return (last or 0) + 1


def save_video(db: Session, video: Video):
    db.add(video)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict(ORDER_TAKEN) from exc
    db.refresh(video)
    return video


def get_owned_video(db: Session, video_id, user: User) -> Video:
    video = db.get(Video, video_id)
    if not video:
        raise NotFound("Video not found")
    get_owned_course(db, video.course_id, user)
    return video


@router.get("/course/{course_id}")
def course_videos(course_id: int, db: Session = Depends(get_db)):
    videos = (
        db.query(Video)
        .filter(Video.course_id == course_id, Video.is_active.is_(True))
        .order_by(Video.order)
        .all()
    )
    return {"success": True, "videos": [VideoOut.model_validate(v) for v in videos]}


@router.get("/{video_id}")
def get_video(video_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    video = db.get(Video, video_id)
    if not video or not video.is_active:
        raise NotFound("Video not found")

    if user.role == "student":
        enrolled = db.query(Enrollment.id).filter_by(student_id=user.id, course_id=video.course_id).first()
        if not enrolled:
            raise Forbidden("Not enrolled in this course")
    elif user.role == "teacher":
        if video.course.teacher_id != user.id:
            raise Forbidden("Not authorized to view this video")
    elif user.role != "admin":
        raise Forbidden("Not authorized to view this video")

    return {"success": True, "video": VideoOut.model_validate(video)}


@router.post("/upload", status_code=201)
async def upload_video(
    title: str = Form(...),
    description: str = Form(...),
    course_id: int = Form(..., alias="courseId"),
    duration: int = Form(0),
    video: UploadFile = File(...),
    user: User = Depends(require_approved_teacher),
    store: LocalMediaStore = Depends(get_media_store),
    db: Session = Depends(get_db),
):
    if not title.strip() or not description.strip():
        raise ValidationError("Title, description, and course are required")
    course = get_owned_course(db, course_id, user)

    asset = await store.upload(video, "video", folder="course-videos")
    record = Video(
        title=title.strip(),
        description=description.strip(),
        course_id=course.id,
        teacher_id=user.id,
        video_url=asset.url,
        duration=max(duration, 0),
        order=next_order(db, course.id),
        public_id=asset.public_id,
        file_size=asset.size,
        format=asset.format,
        is_active=True,
    )
    try:
        save_video(db, record)
    except Conflict:
        await store.delete(asset.public_id)
        raise
    logger.info("Video %s uploaded to course %s at position %s", record.id, course.id, record.order)
    return {"success": True, "message": "Video uploaded successfully", "video": VideoOut.model_validate(record)}


@router.post("/", status_code=201)
def create_video(payload: VideoCreate, user: User = Depends(require_approved_teacher), db: Session = Depends(get_db)):
    course = get_owned_course(db, payload.course_id, user)
    if db.query(Video.id).filter_by(course_id=course.id, order=payload.order).first():
        raise Conflict(ORDER_TAKEN)

    video = Video(
        title=payload.title.strip(),
        description=payload.description,
        course_id=course.id,
        teacher_id=user.id,
        video_url=payload.video_url,
        thumbnail=payload.thumbnail,
        duration=payload.duration,
        order=payload.order,
        public_id=payload.public_id,
        is_active=True,
    )
    save_video(db, video)
    return {"success": True, "message": "Video created successfully", "video": VideoOut.model_validate(video)}


@router.put("/{video_id}")
def update_video(
    video_id: int,
    payload: VideoUpdate,
    user: User = Depends(require_approved_teacher),
    db: Session = Depends(get_db),
):
    video = get_owned_video(db, video_id, user)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)

    new_order = changes.get("order")
    if new_order is not None and new_order != video.order:
        taken = (
            db.query(Video.id)
            .filter(Video.course_id == video.course_id, Video.order == new_order, Video.id != video.id)
            .first()
        )
        if taken:
            raise Conflict(ORDER_TAKEN)

    for field, value in changes.items():
        setattr(video, field, value)
    save_video(db, video)
    return {"success": True, "message": "Video updated successfully", "video": VideoOut.model_validate(video)}


@router.delete("/{video_id}")
def delete_video(video_id: int, user: User = Depends(require_approved_teacher), db: Session = Depends(get_db)):
    video = get_owned_video(db, video_id, user)
    video.is_active = False
    db.query(Quiz).filter(Quiz.video_id == video.id).update(
        {Quiz.is_active: False, Quiz.video_id: None}, synchronize_session=False
    )
    db.commit()
    logger.info("Video %s deactivated with its quiz", video.id)
    return {"success": True, "message": "Video deleted successfully"}
