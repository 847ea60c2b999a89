import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eduportal.database import get_db
from eduportal.errors import Conflict, Forbidden, NotFound, ValidationError
from eduportal.grading import grade, student_view, validate_questions
from eduportal.models import Course, Enrollment, Quiz, User, Video
from eduportal.progress import record_quiz_attempt
from eduportal.routes.courses import get_owned_course
from eduportal.schemas import QuizCreate, QuizOut, QuizSubmit, QuizUpdate
from eduportal.security import get_current_user, require_approved_teacher, require_student, require_teacher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/quizzes", tags=["Quizzes"])


def quiz_summary(quiz: Quiz):
    """Listing entry without any question content."""
    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description or "",
        "courseId": quiz.course_id,
        "videoId": quiz.video_id,
        "passingScore": quiz.passing_score,
        "timeLimit": quiz.time_limit,
        "attempts": quiz.max_attempts,
        "questionCount": len(quiz.questions or []),
    }


def quiz_for(user: User, quiz: Quiz):
    """Serialize a quiz for ``user``; students never see correct answers."""
    if user.role == "student":
        return student_view(quiz)
    if user.role == "admin" or quiz.course.teacher_id == user.id:
        return QuizOut.model_validate(quiz)
    raise Forbidden("Not authorized to view this quiz")


def student_enrollment(db: Session, user: User, course_id):
    enrollment = db.query(Enrollment).filter_by(student_id=user.id, course_id=course_id).first()
    if not enrollment:
        raise Forbidden("Not enrolled in this course")
    return enrollment


def get_active_quiz(db: Session, quiz_id) -> Quiz:
    quiz = db.get(Quiz, quiz_id)
    if not quiz or not quiz.is_active:
        raise NotFound("Quiz not found")
    return quiz


def check_title_free(db: Session, course_id, title, exclude_id=None):
    query = db.query(Quiz.id).filter(
        Quiz.course_id == course_id,
        Quiz.is_active.is_(True),
        func.lower(Quiz.title) == title.strip().lower(),
    )
    if exclude_id is not None:
        query = query.filter(Quiz.id != exclude_id)
    if query.first():
        raise Conflict("A quiz with this title already exists in this course")


@router.post("/create", status_code=201)
def create_quiz(payload: QuizCreate, user: User = Depends(require_approved_teacher), db: Session = Depends(get_db)):
    course = get_owned_course(db, payload.course_id, user)
    questions = validate_questions([q.model_dump(by_alias=True) for q in payload.questions])
    check_title_free(db, course.id, payload.title)

    if payload.video_id is not None:
        video = db.get(Video, payload.video_id)
        if not video or not video.is_active or video.course_id != course.id:
            raise NotFound("Video not found in this course")
        if db.query(Quiz.id).filter(Quiz.video_id == video.id).first():
            raise Conflict("This video already has a quiz")

    quiz = Quiz(
        title=payload.title.strip(),
        description=payload.description,
        course_id=course.id,
        video_id=payload.video_id,
        questions=questions,
        passing_score=payload.passing_score,
        time_limit=payload.time_limit,
        max_attempts=payload.attempts,
        is_active=True,
    )
    db.add(quiz)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("This video already has a quiz") from exc
    db.refresh(quiz)
    logger.info("Quiz %s created for course %s", quiz.id, course.id)
    return {"success": True, "message": "Quiz created successfully", "quiz": QuizOut.model_validate(quiz)}


@router.get("/teacher/my-quizzes")
def my_quizzes(user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    quizzes = (
        db.query(Quiz)
        .join(Course, Quiz.course_id == Course.id)
        .filter(Course.teacher_id == user.id, Quiz.is_active.is_(True))
        .order_by(Quiz.created_at.desc(), Quiz.id.desc())
        .all()
    )
    return {"success": True, "quizzes": [QuizOut.model_validate(q) for q in quizzes]}


@router.get("/course/{course_id}")
def course_quizzes(course_id: int, db: Session = Depends(get_db)):
    quizzes = (
        db.query(Quiz)
        .filter(Quiz.course_id == course_id, Quiz.is_active.is_(True))
        .order_by(Quiz.created_at, Quiz.id)
        .all()
    )
    return {"success": True, "quizzes": [quiz_summary(q) for q in quizzes]}


@router.get("/video/{video_id}")
def video_quiz(video_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    video = db.get(Video, video_id)
    if not video:
        raise NotFound("Video not found")

    if user.role == "student":
        enrollment = student_enrollment(db, user, video.course_id)
        if video.id not in enrollment.completed_videos:
            raise Forbidden("Please watch the video first")

    quiz = db.query(Quiz).filter(Quiz.video_id == video.id, Quiz.is_active.is_(True)).first()
    if not quiz:
        raise NotFound("Quiz not found for this video")
    return {"success": True, "quiz": quiz_for(user, quiz)}


@router.get("/{quiz_id}")
def get_quiz(quiz_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    quiz = get_active_quiz(db, quiz_id)
    if user.role == "student":
        student_enrollment(db, user, quiz.course_id)
    return {"success": True, "quiz": quiz_for(user, quiz)}


@router.put("/{quiz_id}")
def update_quiz(
    quiz_id: int,
    payload: QuizUpdate,
    user: User = Depends(require_approved_teacher),
    db: Session = Depends(get_db),
):
    quiz = get_active_quiz(db, quiz_id)
    get_owned_course(db, quiz.course_id, user)

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "title" in changes:
        check_title_free(db, quiz.course_id, changes["title"], exclude_id=quiz.id)
        quiz.title = changes["title"].strip()
    if payload.questions is not None:
        quiz.questions = validate_questions([q.model_dump(by_alias=True) for q in payload.questions])
    if "attempts" in changes:
        quiz.max_attempts = changes["attempts"]
    for field in ("description", "passing_score", "time_limit", "is_active"):
        if field in changes:
            setattr(quiz, field, changes[field])
    if changes.get("is_active") is False:
        quiz.video_id = None

    db.commit()
    db.refresh(quiz)
    return {"success": True, "message": "Quiz updated successfully", "quiz": QuizOut.model_validate(quiz)}


@router.delete("/{quiz_id}")
def delete_quiz(quiz_id: int, user: User = Depends(require_approved_teacher), db: Session = Depends(get_db)):
    quiz = get_active_quiz(db, quiz_id)
    get_owned_course(db, quiz.course_id, user)
    quiz.is_active = False
    # Frees the video for a replacement quiz.
    quiz.video_id = None
    db.commit()
    logger.info("Quiz %s deactivated", quiz.id)
    return {"success": True, "message": "Quiz deleted successfully"}


@router.post("/{quiz_id}/submit")
def submit_quiz(
    quiz_id: int,
    payload: QuizSubmit,
    user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    quiz = get_active_quiz(db, quiz_id)
    if len(payload.answers) != len(quiz.questions):
        raise ValidationError(f"Must provide exactly {len(quiz.questions)} answers")
    enrollment = student_enrollment(db, user, quiz.course_id)

    result = grade(quiz.questions, payload.answers)
    outcome = record_quiz_attempt(
        db,
        enrollment,
        quiz,
        result.score,
        answers=result.answers,
        correct_answers=result.correct_answers,
        time_taken=payload.time_taken,
    )
    return {
        "success": True,
        "message": "Quiz submitted successfully",
        "score": result.score,
        "passed": outcome.attempt.passed,
        "correctAnswers": result.correct_answers,
        "totalQuestions": result.total_questions,
        "bestScore": outcome.best_score,
        "attemptsLeft": outcome.attempts_left,
        "overallProgress": enrollment.overall_progress,
    }
