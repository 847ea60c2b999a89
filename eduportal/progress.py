"""Enrollment ledger: enrolling, completing content and recording quiz attempts."""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eduportal.errors import (
    AlreadyEnrolled, AttemptLimitExceeded, Conflict, CourseNotApproved, NotFound, ValidationError,
)
from eduportal.models import Course, Enrollment, Quiz, QuizAttempt, User, Video
from eduportal.percent import percentage

logger = logging.getLogger(__name__)


@dataclass
class AttemptOutcome:
    attempt: QuizAttempt
    best_score: int
    attempts_left: int


def compute_progress(completed_videos, completed_quizzes, total_videos, total_quizzes):
    return min(100, percentage(completed_videos + completed_quizzes, total_videos + total_quizzes))


def is_complete(enrollment: Enrollment):
    if enrollment.total_videos + enrollment.total_quizzes == 0:
        return False
    return (
        len(enrollment.completed_videos) >= enrollment.total_videos
        and len(enrollment.completed_quizzes) >= enrollment.total_quizzes
    )


def refresh_progress(enrollment: Enrollment):
    enrollment.overall_progress = compute_progress(
        len(enrollment.completed_videos),
        len(enrollment.completed_quizzes),
        enrollment.total_videos,
        enrollment.total_quizzes,
    )
    enrollment.last_accessed = datetime.utcnow()
    if enrollment.status == "active" and is_complete(enrollment):
        enrollment.status = "completed"
        enrollment.completion_date = datetime.utcnow()
        logger.info("Enrollment %s completed", enrollment.id)


def count_course_content(db: Session, course_id):
    videos = db.query(func.count(Video.id)).filter(Video.course_id == course_id, Video.is_active.is_(True)).scalar()
    quizzes = db.query(func.count(Quiz.id)).filter(Quiz.course_id == course_id, Quiz.is_active.is_(True)).scalar()
    return videos or 0, quizzes or 0


def enroll(db: Session, student: User, course_id) -> Enrollment:
    course = db.get(Course, course_id)
    if not course:
        raise NotFound("Course not found")
    if not course.is_approved or not course.is_active:
        raise CourseNotApproved("Course is not available for enrollment")

    existing = db.query(Enrollment).filter_by(student_id=student.id, course_id=course.id).first()
    if existing:
        raise AlreadyEnrolled("You are already enrolled in this course")

    total_videos, total_quizzes = count_course_content(db, course.id)
    enrollment = Enrollment(
        student_id=student.id,
        course_id=course.id,
        status="active",
        enrolled_at=datetime.utcnow(),
        completed_videos=[],
        completed_quizzes=[],
        total_videos=total_videos,
        total_quizzes=total_quizzes,
        quiz_scores={},
        overall_progress=0,
    )
    db.add(enrollment)
    try:
        db.commit()
    except IntegrityError as exc:
        # A concurrent request enrolled the same pair first.
        db.rollback()
        raise AlreadyEnrolled("You are already enrolled in this course") from exc
    db.refresh(enrollment)
    logger.info(
        "Student %s enrolled in course %s (%d videos, %d quizzes)",
        student.id, course.id, total_videos, total_quizzes,
    )
    return enrollment


def mark_video_watched(db: Session, enrollment: Enrollment, video_id, commit=True) -> Enrollment:
    """Record a watched video. With ``commit=False`` the change stays pending
    so a caller can commit it together with other ledger updates.
    """
    video = db.get(Video, video_id)
    if not video or not video.is_active or video.course_id != enrollment.course_id:
        raise NotFound("Video not found in this course")

    if video.id not in enrollment.completed_videos:
        enrollment.completed_videos = enrollment.completed_videos + [video.id]
        video.view_count = (video.view_count or 0) + 1

    refresh_progress(enrollment)
    if not commit:
        return enrollment
    db.commit()
    db.refresh(enrollment)
    return enrollment


def attempts_used(db: Session, enrollment: Enrollment, quiz: Quiz):
    return (
        db.query(func.count(QuizAttempt.id))
        .filter(QuizAttempt.enrollment_id == enrollment.id, QuizAttempt.quiz_id == quiz.id)
        .scalar()
    ) or 0


def record_quiz_attempt(
    db: Session,
    enrollment: Enrollment,
    quiz: Quiz,
    score,
    answers=None,
    correct_answers=None,
    time_taken=None,
) -> AttemptOutcome:
    """Append one attempt; every call counts toward ``quiz.max_attempts``."""
    if quiz.course_id != enrollment.course_id:
        raise ValidationError("Quiz does not belong to this course")
    if score is None or not 0 <= score <= 100:
        raise ValidationError("Score must be between 0 and 100")

    used = attempts_used(db, enrollment, quiz)
    if used >= quiz.max_attempts:
        raise AttemptLimitExceeded("Maximum attempts reached")

    passed = score >= quiz.passing_score
    attempt = QuizAttempt(
        enrollment_id=enrollment.id,
        quiz_id=quiz.id,
        attempt_number=used + 1,
        score=score,
        correct_answers=correct_answers,
        answers=answers,
        time_taken=time_taken,
        passed=passed,
        completed_at=datetime.utcnow(),
    )
    db.add(attempt)

    key = str(quiz.id)
    scores = dict(enrollment.quiz_scores or {})
    if key not in scores or score > scores[key]:
        scores[key] = score
    enrollment.quiz_scores = scores

    if passed and quiz.id not in enrollment.completed_quizzes:
        enrollment.completed_quizzes = enrollment.completed_quizzes + [quiz.id]

    refresh_progress(enrollment)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("Another attempt for this quiz was recorded at the same time") from exc
    db.refresh(attempt)
    db.refresh(enrollment)

    return AttemptOutcome(
        attempt=attempt,
        best_score=scores[key],
        attempts_left=quiz.max_attempts - attempt.attempt_number,
    )


def progress_stats(db: Session, enrollment: Enrollment):
    completed_videos = len(enrollment.completed_videos)
    completed_quizzes = len(enrollment.completed_quizzes)
    return {
        "videoProgress": min(100, percentage(completed_videos, enrollment.total_videos)),
        "quizProgress": min(100, percentage(completed_quizzes, enrollment.total_quizzes)),
        "overallProgress": enrollment.overall_progress,
        "totalVideos": enrollment.total_videos,
        "totalQuizzes": enrollment.total_quizzes,
        "completedVideos": list(enrollment.completed_videos),
        "completedQuizzes": list(enrollment.completed_quizzes),
        "quizScores": dict(enrollment.quiz_scores or {}),
        "quizzesTaken": quiz_history(db, enrollment),
    }


def quiz_history(db: Session, enrollment: Enrollment):
    """Group an enrollment's attempts by quiz."""
    attempts = (
        db.query(QuizAttempt)
        .filter(QuizAttempt.enrollment_id == enrollment.id)
        .order_by(QuizAttempt.id)
        .all()
    )
    history = {}
    for attempt in attempts:
        entry = history.setdefault(
            attempt.quiz_id,
            {"quizId": attempt.quiz_id, "attempts": [], "bestScore": 0, "passed": False},
        )
        entry["attempts"].append({
            "attemptNumber": attempt.attempt_number,
            "score": attempt.score,
            "correctAnswers": attempt.correct_answers,
            "timeTaken": attempt.time_taken,
            "passed": attempt.passed,
            "completedAt": attempt.completed_at,
        })
        entry["bestScore"] = max(entry["bestScore"], attempt.score)
        entry["passed"] = entry["passed"] or attempt.passed
    return list(history.values())
