"""Read-side aggregations for student, parent and admin dashboards.

Nothing here is cached; every call rescans the enrollments in scope.
"""
from datetime import datetime, timedelta

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from eduportal.models import ApprovalRequest, Course, Enrollment, Quiz, QuizAttempt, User, Video
from eduportal.percent import mean, percentage, round_half_up

RATING_TIERS = (
    # (min completion rate, min average score, rating, color)
    (90, 85, "excellent", "gold"),
    (75, 70, "very good", "blue"),
    (50, 60, "good", "green"),
    (25, 0, "acceptable", "orange"),
)
LOWEST_TIER = ("needs improvement", "red")


def performance_rating(completion_rate, average_score):
    """Return ``(rating, color)`` for a completion rate and average quiz score."""
    for min_completion, min_score, rating, color in RATING_TIERS:
        if completion_rate >= min_completion and average_score >= min_score:
            return rating, color
    return LOWEST_TIER


def passed_scores(enrollment: Enrollment):
    """Best scores of the quizzes the enrollment has passed."""
    scores = enrollment.quiz_scores or {}
    return [scores[str(q)] for q in enrollment.completed_quizzes if str(q) in scores]


def enrollment_completion(enrollment: Enrollment):
    done = len(enrollment.completed_videos) + len(enrollment.completed_quizzes)
    return min(100, percentage(done, enrollment.total_videos + enrollment.total_quizzes))


def student_stats(db: Session, student: User):
    enrollments = (
        db.query(Enrollment)
        .filter(Enrollment.student_id == student.id)
        .order_by(Enrollment.updated_at.desc())
        .all()
    )

    total_videos = sum(e.total_videos for e in enrollments)
    total_quizzes = sum(e.total_quizzes for e in enrollments)
    watched_videos = sum(len(e.completed_videos) for e in enrollments)
    passed_quizzes = sum(len(e.completed_quizzes) for e in enrollments)
    scores = [score for e in enrollments for score in passed_scores(e)]

    average_quiz_score = mean(scores)
    completion_rate = min(100, percentage(watched_videos + passed_quizzes, total_videos + total_quizzes))
    rating, color = performance_rating(completion_rate, average_quiz_score)

    stats = {
        "totalCourses": len(enrollments),
        "completedCourses": sum(1 for e in enrollments if e.status == "completed"),
        "totalVideos": total_videos,
        "watchedVideos": watched_videos,
        "totalQuizzes": total_quizzes,
        "passedQuizzes": passed_quizzes,
        "averageQuizScore": average_quiz_score,
        "completionRate": completion_rate,
        "performanceRating": rating,
        "performanceColor": color,
    }
    recent = [
        {
            "enrollmentId": e.id,
            "courseId": e.course_id,
            "courseTitle": e.course.title if e.course else None,
            "subject": e.course.subject if e.course else None,
            "teacherName": e.course.teacher.name if e.course and e.course.teacher else None,
            "lastActivity": e.updated_at,
            "overallProgress": e.overall_progress,
        }
        for e in enrollments[:5]
    ]
    return stats, recent


def performance_stats(db: Session):
    """Platform-wide learning performance plus the top ten enrollments."""
    enrollments = db.query(Enrollment).all()
    total_videos = db.query(func.count(Video.id)).filter(Video.is_active.is_(True)).scalar() or 0
    total_quizzes = db.query(func.count(Quiz.id)).filter(Quiz.is_active.is_(True)).scalar() or 0

    watched_videos = sum(len(e.completed_videos) for e in enrollments)
    passed_quizzes = sum(len(e.completed_quizzes) for e in enrollments)
    completed = sum(1 for e in enrollments if e.status == "completed")
    active = sum(1 for e in enrollments if e.completed_videos or e.completed_quizzes)
    all_scores = [score for e in enrollments for score in passed_scores(e)]

    overall_completion_rate = percentage(completed, len(enrollments))
    quiz_success_rate = min(100, percentage(passed_quizzes, total_quizzes))
    average_quiz_score = mean(all_scores)
    student_activity_rate = percentage(active, len(enrollments))
    overall_rating = round_half_up(
        overall_completion_rate * 0.3
        + quiz_success_rate * 0.3
        + average_quiz_score * 0.2
        + student_activity_rate * 0.2
    )

    performers = []
    for e in enrollments:
        completion_rate = enrollment_completion(e)
        average_score = mean(passed_scores(e))
        rating = round_half_up(completion_rate * 0.6 + average_score * 0.4)
        if rating <= 0:
            continue
        performers.append({
            "enrollmentId": e.id,
            "studentName": e.student.name if e.student else None,
            "courseTitle": e.course.title if e.course else None,
            "completionRate": completion_rate,
            "averageScore": average_score,
            "overallRating": rating,
            "completedVideos": len(e.completed_videos),
            "completedQuizzes": len(e.completed_quizzes),
            "totalCourseContent": e.total_videos + e.total_quizzes,
        })
    performers.sort(key=lambda p: p["overallRating"], reverse=True)

    return {
        "overallCompletionRate": overall_completion_rate,
        "quizSuccessRate": quiz_success_rate,
        "averageQuizScore": average_quiz_score,
        "studentActivityRate": student_activity_rate,
        "overallRating": overall_rating,
        "topPerformers": performers[:10],
        "summary": {
            "totalEnrollments": len(enrollments),
            "completedEnrollments": completed,
            "totalVideos": total_videos,
            "watchedVideos": watched_videos,
            "totalQuizzes": total_quizzes,
            "passedQuizzes": passed_quizzes,
            "activeStudents": active,
        },
    }


def course_performance(db: Session):
    """Per approved course averages, best rated first."""
    results = []
    for course in db.query(Course).filter(Course.is_approved.is_(True)).all():
        enrollments = db.query(Enrollment).filter(Enrollment.course_id == course.id).all()
        with_content = [e for e in enrollments if e.total_videos + e.total_quizzes > 0]
        completion_rate = mean(enrollment_completion(e) for e in with_content)
        average_score = mean(score for e in enrollments for score in passed_scores(e))
        videos = db.query(func.count(Video.id)).filter(Video.course_id == course.id, Video.is_active.is_(True)).scalar()
        quizzes = db.query(func.count(Quiz.id)).filter(Quiz.course_id == course.id, Quiz.is_active.is_(True)).scalar()
        results.append({
            "id": course.id,
            "title": course.title,
            "subject": course.subject,
            "teacherName": course.teacher.name if course.teacher else None,
            "enrollmentCount": len(enrollments),
            "activeEnrollments": len(with_content),
            "completionRate": completion_rate,
            "averageScore": average_score,
            "overallRating": round_half_up(completion_rate * 0.6 + average_score * 0.4),
            "totalVideos": videos or 0,
            "totalQuizzes": quizzes or 0,
        })
    results.sort(key=lambda c: c["overallRating"], reverse=True)
    return results


def _count(db, column, *criteria):
    return db.query(func.count(column)).filter(*criteria).scalar() or 0


def dashboard(db: Session, now=None):
    """Admin dashboard counters."""
    now = now or datetime.utcnow()
    today = datetime(now.year, now.month, now.day)
    month_ago = now - timedelta(days=30)

    enrollments = db.query(Enrollment).all()
    active_progress = [e.overall_progress for e in enrollments if e.status == "active"]

    return {
        "users": {
            "total": _count(db, User.id),
            "students": _count(db, User.id, User.role == "student"),
            "teachers": _count(db, User.id, User.role == "teacher"),
            "parents": _count(db, User.id, User.role == "parent"),
            "pendingTeachers": _count(db, User.id, User.role == "teacher", User.is_approved.is_(False)),
            "newToday": _count(db, User.id, User.created_at >= today),
            "newThisMonth": _count(db, User.id, User.created_at >= month_ago),
        },
        "courses": {
            "total": _count(db, Course.id),
            "approved": _count(db, Course.id, Course.is_approved.is_(True)),
            "pending": _count(db, ApprovalRequest.id, ApprovalRequest.type == "course_creation",
                              ApprovalRequest.status == "pending"),
            "active": _count(db, Course.id, Course.is_active.is_(True)),
            "newToday": _count(db, Course.id, Course.created_at >= today),
            "newThisMonth": _count(db, Course.id, Course.created_at >= month_ago),
        },
        "enrollments": {
            "total": len(enrollments),
            "active": sum(1 for e in enrollments if e.status == "active"),
            "completed": sum(1 for e in enrollments if e.status == "completed"),
            "newToday": sum(1 for e in enrollments if e.enrolled_at >= today),
            "newThisMonth": sum(1 for e in enrollments if e.enrolled_at >= month_ago),
        },
        "content": {
            "videos": _count(db, Video.id, Video.is_active.is_(True)),
            "quizzes": _count(db, Quiz.id, Quiz.is_active.is_(True)),
            "newVideosToday": _count(db, Video.id, Video.created_at >= today),
            "newQuizzesToday": _count(db, Quiz.id, Quiz.created_at >= today),
        },
        "activity": {
            "totalVideoViews": sum(len(e.completed_videos) for e in enrollments),
            "totalQuizzesPassed": sum(len(e.completed_quizzes) for e in enrollments),
            "averageCompletionRate": mean(active_progress),
        },
    }


def enrollment_stats(db: Session):
    enrollments = db.query(Enrollment).all()
    return {
        "total": len(enrollments),
        "active": sum(1 for e in enrollments if e.status == "active"),
        "completed": sum(1 for e in enrollments if e.status == "completed"),
        "averageProgress": mean(e.overall_progress for e in enrollments),
    }


def comprehensive_stats(db: Session, now=None, limit=10):
    """Detailed activity breakdown: most watched videos, busiest quizzes,
    most active students, most popular courses and the last week's activity.
    """
    now = now or datetime.utcnow()
    week_ago = now - timedelta(days=7)
    enrollments = db.query(Enrollment).all()

    # One enrollment per student and course, so each completion is a distinct student.
    completions = {}
    for e in enrollments:
        for video_id in e.completed_videos:
            completions[video_id] = completions.get(video_id, 0) + 1
    top_videos = sorted(completions.items(), key=lambda item: (-item[1], item[0]))[:limit]
    video_rows = {v.id: v for v in db.query(Video).filter(Video.id.in_([vid for vid, _ in top_videos]))}
    video_activity = [
        {
            "videoId": video_id,
            "title": video_rows[video_id].title if video_id in video_rows else None,
            "courseId": video_rows[video_id].course_id if video_id in video_rows else None,
            "completions": count,
        }
        for video_id, count in top_videos
    ]

    quiz_rows = (
        db.query(
            QuizAttempt.quiz_id,
            Quiz.title,
            func.count(QuizAttempt.id),
            func.sum(case((QuizAttempt.passed.is_(True), 1), else_=0)),
            func.avg(QuizAttempt.score),
        )
        .join(Quiz, Quiz.id == QuizAttempt.quiz_id)
        .group_by(QuizAttempt.quiz_id, Quiz.title)
        .order_by(func.count(QuizAttempt.id).desc(), QuizAttempt.quiz_id)
        .limit(limit)
        .all()
    )
    quiz_activity = [
        {
            "quizId": quiz_id,
            "title": title,
            "totalAttempts": attempts,
            "passedAttempts": int(passed or 0),
            "averageScore": round_half_up(average or 0),
        }
        for quiz_id, title, attempts, passed, average in quiz_rows
    ]

    attempt_scores = {}
    for enrollment_id, score in db.query(QuizAttempt.enrollment_id, QuizAttempt.score):
        attempt_scores.setdefault(enrollment_id, []).append(score)

    by_student = {}
    for e in enrollments:
        row = by_student.setdefault(e.student_id, {
            "studentId": e.student_id,
            "studentName": e.student.name if e.student else None,
            "totalCourses": 0,
            "completedCourses": 0,
            "totalVideosWatched": 0,
            "totalQuizzesTaken": 0,
            "scores": [],
        })
        row["totalCourses"] += 1
        row["completedCourses"] += int(e.status == "completed")
        row["totalVideosWatched"] += len(e.completed_videos)
        row["totalQuizzesTaken"] += len(e.quiz_scores or {})
        row["scores"] += attempt_scores.get(e.id, [])
    student_progress = []
    for row in by_student.values():
        row["averageQuizScore"] = mean(row.pop("scores"))
        student_progress.append(row)
    student_progress.sort(key=lambda r: (-r["totalVideosWatched"], r["studentId"]))

    by_course = {}
    for e in enrollments:
        by_course.setdefault(e.course_id, []).append(e)
    course_popularity = [
        {
            "courseId": course_id,
            "title": members[0].course.title if members[0].course else None,
            "enrollmentCount": len(members),
            "averageCompletion": mean(enrollment_completion(e) for e in members),
        }
        for course_id, members in by_course.items()
    ]
    course_popularity.sort(key=lambda c: (-c["enrollmentCount"], c["courseId"]))

    recent_enrollments = [
        {
            "enrollmentId": e.id,
            "studentName": e.student.name if e.student else None,
            "courseTitle": e.course.title if e.course else None,
            "enrolledAt": e.enrolled_at,
        }
        for e in sorted(enrollments, key=lambda e: e.enrolled_at, reverse=True)
        if e.enrolled_at >= week_ago
    ][:limit]
    recent_attempts = (
        db.query(QuizAttempt)
        .filter(QuizAttempt.completed_at >= week_ago)
        .order_by(QuizAttempt.completed_at.desc(), QuizAttempt.id.desc())
        .limit(limit)
        .all()
    )

    return {
        "totals": {
            "users": _count(db, User.id),
            "students": _count(db, User.id, User.role == "student"),
            "teachers": _count(db, User.id, User.role == "teacher"),
            "parents": _count(db, User.id, User.role == "parent"),
            "courses": _count(db, Course.id),
            "enrollments": len(enrollments),
        },
        "videoActivity": video_activity,
        "quizActivity": quiz_activity,
        "studentProgress": student_progress[:limit],
        "coursePopularity": course_popularity[:limit],
        "recentActivity": {
            "enrollments": recent_enrollments,
            "quizAttempts": [
                {
                    "attemptId": a.id,
                    "quizId": a.quiz_id,
                    "enrollmentId": a.enrollment_id,
                    "score": a.score,
                    "passed": a.passed,
                    "completedAt": a.completed_at,
                }
                for a in recent_attempts
            ],
        },
    }
