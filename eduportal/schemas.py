from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

# Grades whose students must also pick a division.
DIVISION_GRADES = {"first secondary", "second secondary", "third secondary"}


class CamelModel(BaseModel):
    """Base for every schema: snake_case in Python, camelCase on the wire."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# --- Registration (one variant per role) ---
class RegisterBase(CamelModel):
    name: str = Field(min_length=2)
    email: EmailStr
    password: str = Field(min_length=6)
    phone: Optional[str] = None


class StudentRegister(RegisterBase):
    role: Literal["student"]
    grade: str = Field(min_length=1)
    division: Optional[str] = None

    @model_validator(mode="after")
    def division_for_secondary(self):
        if self.grade.strip().lower() in DIVISION_GRADES and not self.division:
            raise ValueError("Division is required for secondary grades")
        return self


class ParentRegister(RegisterBase):
    role: Literal["parent"]
    child_student_id: str = Field(min_length=1)


class TeacherRegister(RegisterBase):
    role: Literal["teacher"]
    subject: str = Field(min_length=1)
    experience: str = Field(min_length=1)
    qualifications: str = Field(min_length=1)
    grade: Optional[str] = None
    division: Optional[str] = None


RegisterRequest = Annotated[
    Union[StudentRegister, ParentRegister, TeacherRegister],
    Field(discriminator="role"),
]


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=2)
    phone: Optional[str] = None
    avatar: Optional[str] = None


# --- Courses ---
class CourseUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    subject: Optional[str] = None
    grade: Optional[str] = None
    division: Optional[str] = None
    duration: Optional[str] = None
    difficulty: Optional[Literal["beginner", "intermediate", "advanced"]] = None
    tags: Optional[List[str]] = None
    price: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


# --- Videos ---
class VideoCreate(CamelModel):
    course_id: int
    title: str = Field(min_length=1)
    description: str = ""
    video_url: str = Field(min_length=1)
    thumbnail: Optional[str] = None
    duration: int = Field(default=0, ge=0)
    order: int = Field(ge=1)
    public_id: Optional[str] = None


class VideoUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)
    order: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


# --- Quizzes ---
class QuestionIn(CamelModel):
    question: str
    options: List[str]
    correct_answer: int


class QuizCreate(CamelModel):
    title: str = Field(min_length=1)
    description: str = ""
    course_id: int
    video_id: Optional[int] = None
    questions: List[QuestionIn]
    passing_score: int = Field(default=60, ge=0, le=100)
    time_limit: int = Field(default=15, ge=1)
    attempts: int = Field(default=3, ge=1)


class QuizUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    questions: Optional[List[QuestionIn]] = None
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)
    time_limit: Optional[int] = Field(default=None, ge=1)
    attempts: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class QuizSubmit(CamelModel):
    answers: List[int]
    time_taken: Optional[float] = Field(default=None, ge=0)


# --- Enrollments ---
class EnrollRequest(CamelModel):
    course_id: int


class ProgressUpdate(CamelModel):
    completed_video: Optional[int] = None
    completed_quiz: Optional[int] = None
    quiz_score: Optional[int] = None

    @model_validator(mode="after")
    def score_with_quiz(self):
        if self.completed_quiz is not None and self.quiz_score is None:
            raise ValueError("quizScore is required with completedQuiz")
        return self


class CompleteQuiz(CamelModel):
    score: int = Field(ge=0, le=100)
    answers: Optional[List[int]] = None
    time_taken: Optional[float] = Field(default=None, ge=0)


# --- Admin ---
class ApproveCourse(CamelModel):
    approved: bool
    admin_notes: Optional[str] = None


class ApproveTeacher(CamelModel):
    approved: bool = True


# --- Responses ---
class UserBrief(CamelModel):
    id: int
    name: str
    email: str
    role: str


class UserOut(CamelModel):
    id: int
    name: str
    email: str
    role: str
    is_approved: bool
    is_active: bool
    student_code: Optional[str] = None
    grade: Optional[str] = None
    division: Optional[str] = None
    child_student_code: Optional[str] = None
    subject: Optional[str] = None
    experience: Optional[str] = None
    qualifications: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class TeacherBrief(CamelModel):
    id: int
    name: str
    email: str
    subject: Optional[str] = None


class CourseOut(CamelModel):
    id: int
    title: str
    description: str
    subject: str
    grade: str
    division: Optional[str] = None
    cover_image: Optional[str] = None
    teacher_id: int
    teacher: Optional[TeacherBrief] = None
    is_approved: bool
    status: str
    is_active: bool
    approval_date: Optional[datetime] = None
    duration: Optional[str] = None
    difficulty: Optional[str] = None
    tags: Optional[List[str]] = None
    price: float = 0.0
    created_at: Optional[datetime] = None


class VideoOut(CamelModel):
    id: int
    title: str
    description: str
    course_id: int
    teacher_id: int
    video_url: str
    thumbnail: Optional[str] = None
    duration: int = 0
    order: int
    view_count: int = 0
    is_active: bool
    public_id: Optional[str] = None
    file_size: Optional[int] = None
    format: Optional[str] = None
    created_at: Optional[datetime] = None


class QuizOut(CamelModel):
    """Full quiz, correct answers included; owners and admins only."""
    id: int
    title: str
    description: Optional[str] = ""
    course_id: int
    video_id: Optional[int] = None
    questions: List[Dict[str, Any]]
    passing_score: int
    time_limit: Optional[int] = None
    attempts: int = Field(validation_alias="max_attempts")
    is_active: bool
    created_at: Optional[datetime] = None


class EnrollmentOut(CamelModel):
    id: int
    student_id: int
    course_id: int
    status: str
    enrolled_at: datetime
    completed_videos: List[int]
    completed_quizzes: List[int]
    total_videos: int
    total_quizzes: int
    quiz_scores: Dict[str, int]
    overall_progress: int
    completion_date: Optional[datetime] = None
    last_accessed: Optional[datetime] = None


class RequestOut(CamelModel):
    id: int
    type: str
    status: str
    requested_by: int
    requester: Optional[UserBrief] = None
    data: Dict[str, Any]
    admin_notes: Optional[str] = ""
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    course_id: Optional[int] = None
    created_at: Optional[datetime] = None
