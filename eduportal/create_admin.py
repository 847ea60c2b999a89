"""Create (or promote) an administrator account.

    python -m eduportal.create_admin --email admin@school.org --name "Site Admin" --password secret123
"""
import argparse
import logging
import sys

from eduportal.database import SessionLocal, init_db
from eduportal.models import User
from eduportal.security import get_password_hash

logger = logging.getLogger(__name__)


def create_admin(db, email, name, password):
    """Return ``(user, created)``; an existing account is promoted to admin."""
    email = email.strip().lower()
    user = db.query(User).filter(User.email == email).first()
    created = user is None
    if created:
        user = User(email=email, name=name)
        db.add(user)
    user.name = name
    user.role = "admin"
    user.is_approved = True
    user.is_active = True
    user.password_hash = get_password_hash(password)
    db.commit()
    db.refresh(user)
    return user, created


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create an EduPortal administrator")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default="Administrator")
    parser.add_argument("--password", required=True)
    args = parser.parse_args(argv)

    if len(args.password) < 6:
        parser.error("password must be at least 6 characters")

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    init_db()
    db = SessionLocal()
    try:
        user, created = create_admin(db, args.email, args.name, args.password)
    finally:
        db.close()

    logger.info("%s admin %s (id %s)", "Created" if created else "Updated", user.email, user.id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
