import logging

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType

from eduportal.config import settings

logger = logging.getLogger(__name__)


def mail_config():
    return ConnectionConfig(
        MAIL_USERNAME=settings.MAIL_USERNAME,
        MAIL_PASSWORD=settings.MAIL_PASSWORD,
        MAIL_FROM=settings.MAIL_FROM,
        MAIL_PORT=settings.MAIL_PORT,
        MAIL_SERVER=settings.MAIL_SERVER,
        MAIL_STARTTLS=settings.MAIL_PORT == 587,
        MAIL_SSL_TLS=settings.MAIL_PORT == 465,
        USE_CREDENTIALS=True,
        SUPPRESS_SEND=int(settings.MAIL_SUPPRESS_SEND),
    )


async def send_email(subject: str, recipients: list, body: str):
    """Send an HTML email; a no-op when SMTP is not configured.

    Runs as a background task, so delivery failures are logged rather than
    raised into the request that queued it.
    """
    if not settings.mail_enabled:
        logger.info("Mail disabled, skipping %r to %s", subject, recipients)
        return False

    message = MessageSchema(
        subject=subject,
        recipients=recipients,
        body=body,
        subtype=MessageType.html,
    )
    try:
        await FastMail(mail_config()).send_message(message)
    except Exception:
        logger.exception("Failed to send %r to %s", subject, recipients)
        return False
    return True


# --- TEMPLATES ---

async def send_welcome_email(email: str, name: str, role: str):
    pending = (
        "<p>Your teacher account is waiting for admin approval. "
        "We will email you as soon as it is approved.</p>"
        if role == "teacher" else ""
    )
    html = f"""
    <div style="font-family: Arial, sans-serif; padding: 20px;">
        <h2 style="color: #4F46E5;">Welcome to EduPortal, {name}!</h2>
        <p>Your {role} account has been created.</p>
        {pending}
    </div>
    """
    return await send_email("Welcome to EduPortal!", [email], html)


async def send_enrollment_confirm(email: str, name: str, course_title: str, teacher_name: str):
    html = f"""
    <div style="font-family: Arial, sans-serif; padding: 20px; border: 1px solid #eee;">
        <h2 style="color: #4F46E5;">Enrollment Confirmed</h2>
        <p>Hi <strong>{name}</strong>,</p>
        <p>You are now enrolled in:</p>
        <h3 style="background-color: #f3f4f6; padding: 15px;">{course_title}</h3>
        <p><strong>Instructor:</strong> {teacher_name}</p>
        <a href="{settings.FRONTEND_URL}/student/dashboard" style="background-color: #4F46E5; color: white; padding: 10px 20px; text-decoration: none; border-radius: 5px;">Go to Dashboard</a>
    </div>
    """
    return await send_email(f"Enrollment: {course_title}", [email], html)


async def send_teacher_approved_email(email: str, teacher_name: str):
    html = f"""
    <div style="font-family: Arial, sans-serif; padding: 20px; border: 1px solid #eee;">
        <h2 style="color: #4F46E5;">Your account is approved</h2>
        <p>Hello <strong>{teacher_name}</strong>,</p>
        <p>You can now log in and request new courses.</p>
        <a href="{settings.FRONTEND_URL}/login">Log in</a>
    </div>
    """
    return await send_email("Teacher account approved", [email], html)


async def send_course_decision_email(email: str, teacher_name: str, course_title: str, approved: bool, notes: str = ""):
    verdict = "approved" if approved else "rejected"
    notes_html = f"<p><strong>Admin notes:</strong> {notes}</p>" if notes else ""
    html = f"""
    <div style="font-family: Arial, sans-serif; padding: 20px; border: 1px solid #eee;">
        <h2 style="color: #4F46E5;">Course request {verdict}</h2>
        <p>Hello <strong>{teacher_name}</strong>,</p>
        <p>Your request for <strong>{course_title}</strong> was {verdict}.</p>
        {notes_html}
    </div>
    """
    return await send_email(f"Course request {verdict}: {course_title}", [email], html)
