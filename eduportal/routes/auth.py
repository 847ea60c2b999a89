import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eduportal.approvals import open_teacher_request
from eduportal.database import get_db
from eduportal.email_utils import send_welcome_email
from eduportal.errors import Conflict, Forbidden, NotFound, PendingApproval, Unauthorized, ValidationError
from eduportal.models import STUDENT_CODE_SEQUENCE, Sequence, User
from eduportal.schemas import LoginRequest, ProfileUpdate, RegisterRequest, UserOut
from eduportal.security import (
    create_access_token, create_admin_token, get_current_user, get_password_hash, verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def next_student_code(db: Session) -> str:
    """Hand out the next student code; values are never reused."""
    rows = (
        db.query(Sequence)
        .filter(Sequence.name == STUDENT_CODE_SEQUENCE)
        .update({Sequence.value: Sequence.value + 1}, synchronize_session=False)
    )
    if rows == 0:
        db.add(Sequence(name=STUDENT_CODE_SEQUENCE, value=1))
        db.flush()
        value = 1
    else:
        value = db.query(Sequence.value).filter(Sequence.name == STUDENT_CODE_SEQUENCE).scalar()
    return f"STU{value:06d}"


def find_student(db: Session, reference):
    """Look a student up by student code, falling back to numeric id."""
    student = db.query(User).filter(User.student_code == reference, User.role == "student").first()
    if student is None and str(reference).isdigit():
        student = db.query(User).filter(User.id == int(reference), User.role == "student").first()
    return student


def auth_payload(user: User, token: str, message: str):
    return {"success": True, "message": message, "token": token, "user": UserOut.model_validate(user)}


# --- REGISTER ---
@router.post("/register", status_code=201)
def register(payload: RegisterRequest, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    email = payload.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise Conflict("User already exists with this email")

    user = User(
        name=payload.name.strip(),
        email=email,
        password_hash=get_password_hash(payload.password),
        role=payload.role,
        phone=payload.phone,
        is_approved=payload.role != "teacher",
    )

    if payload.role == "student":
        user.grade = payload.grade
        user.division = payload.division
    elif payload.role == "parent":
        child = find_student(db, payload.child_student_id)
        if not child:
            raise ValidationError("Invalid student ID. Please make sure the student exists and the ID is correct.")
        user.child_student_code = child.student_code
    else:
        user.subject = payload.subject
        user.experience = payload.experience
        user.qualifications = payload.qualifications
        user.grade = payload.grade
        user.division = payload.division

    try:
        if user.role == "student":
            user.student_code = next_student_code(db)
        db.add(user)
        db.flush()
        if user.role == "teacher":
            open_teacher_request(db, user)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("User already exists with this email") from exc
    db.refresh(user)
    logger.info("Registered %s %s", user.role, user.id)

    background_tasks.add_task(send_welcome_email, user.email, user.name, user.role)

    message = (
        "Registration successful. Awaiting admin approval."
        if user.role == "teacher" else "Registration successful"
    )
    return auth_payload(user, create_access_token(user), message)


# --- LOGIN ---
@router.post("/login")
def login(creds: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == creds.email.lower()).first()
    if not user or not verify_password(creds.password, user.password_hash):
        raise Unauthorized("Invalid credentials")
    if not user.is_active:
        raise Forbidden("Account is deactivated")
    if user.role == "teacher" and not user.is_approved:
        raise PendingApproval(
            "Your teacher account is pending admin approval. Please wait for approval before logging in."
        )

    user.last_login = datetime.utcnow()
    db.commit()
    return auth_payload(user, create_access_token(user), "Login successful")


@router.post("/admin-login")
def admin_login(creds: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == creds.email.lower(), User.role == "admin").first()
    if not user or not verify_password(creds.password, user.password_hash):
        raise Unauthorized("Invalid admin credentials")
    if not user.is_active:
        raise Forbidden("Account is deactivated")

    user.last_login = datetime.utcnow()
    db.commit()
    logger.info("Admin %s logged in", user.id)
    return auth_payload(user, create_admin_token(user), "Admin login successful")


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {"success": True, "user": UserOut.model_validate(user)}


@router.put("/profile")
def update_profile(payload: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    for field, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(user, field, value.strip() if field == "name" else value)
    db.commit()
    db.refresh(user)
    return {"success": True, "message": "Profile updated successfully", "user": UserOut.model_validate(user)}


@router.get("/verify-student/{reference}")
def verify_student(reference: str, db: Session = Depends(get_db)):
    student = find_student(db, reference)
    if not student:
        raise NotFound("Student not found. Please check the ID and try again.")
    return {
        "success": True,
        "student": {
            "id": student.id,
            "name": student.name,
            "studentCode": student.student_code,
            "grade": student.grade,
            "division": student.division,
        },
    }
