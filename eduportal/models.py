from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, func,
)
from sqlalchemy.orm import relationship

from eduportal.database import Base

ROLES = ("student", "parent", "teacher", "admin")
REQUEST_STATUSES = ("pending", "approved", "rejected")


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False, index=True)
    is_approved = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Student
    student_code = Column(String, unique=True, index=True, nullable=True)
    grade = Column(String, nullable=True)
    division = Column(String, nullable=True)

    # Parent
    child_student_code = Column(String, nullable=True)

    # Teacher
    subject = Column(String, nullable=True)
    experience = Column(String, nullable=True)
    qualifications = Column(Text, nullable=True)

    phone = Column(String, nullable=True)
    avatar = Column(String, nullable=True)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    courses = relationship("Course", back_populates="teacher")
    enrollments = relationship("Enrollment", back_populates="student")


STUDENT_CODE_SEQUENCE = "student_code"


class Sequence(Base):
    """Monotonic counters; a value handed out is never handed out again."""
    __tablename__ = "sequences"
    name = Column(String, primary_key=True)
    value = Column(Integer, nullable=False, default=0)


class Course(Base):
    __tablename__ = "courses"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    subject = Column(String, nullable=False)
    grade = Column(String, nullable=False)
    division = Column(String, nullable=True)
    cover_image = Column(String, default="")
    cover_image_public_id = Column(String, default="")
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    is_approved = Column(Boolean, default=False, nullable=False)
    status = Column(String, default="pending", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    approval_date = Column(DateTime, nullable=True)
    rejection_reason = Column(String, default="")
    duration = Column(String, default="4 weeks")
    difficulty = Column(String, default="beginner")
    tags = Column(JSON, default=list)
    price = Column(Float, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    teacher = relationship("User", back_populates="courses")
    videos = relationship("Video", back_populates="course")
    quizzes = relationship("Quiz", back_populates="course")


# Titles are unique per teacher, ignoring case.
Index("uq_course_teacher_title", Course.teacher_id, func.lower(Course.title), unique=True)


class Video(Base):
    __tablename__ = "videos"
    __table_args__ = (UniqueConstraint("course_id", "order", name="uq_video_course_order"),)
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    video_url = Column(String, nullable=False)
    thumbnail = Column(String, nullable=True)
    duration = Column(Integer, default=0)  # seconds
    order = Column("order", Integer, nullable=False)
    view_count = Column(Integer, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    public_id = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)
    format = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    course = relationship("Course", back_populates="videos")


class Quiz(Base):
    __tablename__ = "quizzes"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, default="")
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    video_id = Column(Integer, ForeignKey("videos.id"), unique=True, nullable=True)
    # [{"question": str, "options": [str x4], "correctAnswer": int}] x8
    questions = Column(JSON, nullable=False)
    passing_score = Column(Integer, default=60, nullable=False)
    time_limit = Column(Integer, default=15)  # minutes
    max_attempts = Column(Integer, default=3, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    course = relationship("Course", back_populates="quizzes")


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("student_id", "course_id", name="uq_enrollment_student_course"),)
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    status = Column(String, default="active", nullable=False)
    enrolled_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_videos = Column(JSON, default=list, nullable=False)
    completed_quizzes = Column(JSON, default=list, nullable=False)
    total_videos = Column(Integer, default=0, nullable=False)
    total_quizzes = Column(Integer, default=0, nullable=False)
    # {str(quiz_id): best score}
    quiz_scores = Column(JSON, default=dict, nullable=False)
    overall_progress = Column(Integer, default=0, nullable=False)
    completion_date = Column(DateTime, nullable=True)
    last_accessed = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = relationship("User", back_populates="enrollments")
    course = relationship("Course")


class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"
    __table_args__ = (
        UniqueConstraint("enrollment_id", "quiz_id", "attempt_number", name="uq_quiz_attempt_number"),
    )
    id = Column(Integer, primary_key=True, index=True)
    enrollment_id = Column(Integer, ForeignKey("enrollments.id"), nullable=False, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False)
    score = Column(Integer, nullable=False)
    correct_answers = Column(Integer, nullable=True)
    answers = Column(JSON, nullable=True)
    time_taken = Column(Float, nullable=True)
    passed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ApprovalRequest(Base):
    __tablename__ = "requests"
    id = Column(Integer, primary_key=True, index=True)
    type = Column(String, nullable=False, index=True)
    status = Column(String, default="pending", nullable=False, index=True)
    requested_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    data = Column(JSON, default=dict, nullable=False)
    request_metadata = Column("metadata", JSON, default=dict)
    admin_notes = Column(Text, default="")
    processed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    requester = relationship("User", foreign_keys=[requested_by])
    processor = relationship("User", foreign_keys=[processed_by])
