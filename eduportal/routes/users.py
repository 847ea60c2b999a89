from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from eduportal.database import get_db
from eduportal.errors import Forbidden, NotFound
from eduportal.models import User
from eduportal.schemas import TeacherBrief, UserOut
from eduportal.security import get_current_user, require_roles

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get("/profile")
def get_profile(user: User = Depends(get_current_user)):
    return {"success": True, "user": UserOut.model_validate(user)}


@router.get("/student/{student_code}")
def get_student(
    student_code: str,
    user: User = Depends(require_roles("parent", "teacher", "admin")),
    db: Session = Depends(get_db),
):
    student = db.query(User).filter(User.student_code == student_code, User.role == "student").first()
    if not student:
        raise NotFound("Student not found")
    if user.role == "parent" and user.child_student_code != student.student_code:
        raise Forbidden("You can only view your own child")
    return {"success": True, "student": UserOut.model_validate(student)}


@router.get("/teachers")
def list_teachers(db: Session = Depends(get_db)):
    teachers = (
        db.query(User)
        .filter(User.role == "teacher", User.is_approved.is_(True), User.is_active.is_(True))
        .order_by(User.name)
        .all()
    )
    return {"success": True, "teachers": [TeacherBrief.model_validate(t) for t in teachers]}
