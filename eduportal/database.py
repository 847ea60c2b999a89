# eduportal/database.py
import logging
import time

from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from eduportal.config import settings

logger = logging.getLogger(__name__)


def build_engine(url):
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        # In-memory databases live inside a single connection.
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return create_engine(url, **options)

    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_pre_ping=True,
    )


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def connect_with_retry(bind=None, retries=None, delay=None, sleep=time.sleep):
    """Block until the database answers, retrying with a fixed backoff.

    Raises RuntimeError once every attempt has failed; the caller is expected
    to let that abort process startup.
    """
    bind = bind if bind is not None else engine
    retries = retries if retries is not None else settings.DB_CONNECT_RETRIES
    delay = delay if delay is not None else settings.DB_CONNECT_DELAY

    for attempt in range(1, retries + 1):
        logger.info("Connecting to database (attempt %d/%d)", attempt, retries)
        try:
            with bind.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connected: %s", bind.url.render_as_string(hide_password=True))
            return True
        except OperationalError as exc:
            logger.error("Database connection failed: %s", exc)
            if attempt < retries:
                logger.info("Retrying connection in %s seconds", delay)
                sleep(delay)

    raise RuntimeError(f"Could not connect to the database after {retries} attempts")


def init_db(bind=None):
    bind = bind if bind is not None else engine
    connect_with_retry(bind)
    # Import models so their tables are registered on Base.metadata.
    from eduportal import models  # noqa: F401

    Base.metadata.create_all(bind=bind)
    seed_sequences(bind)


def seed_sequences(bind=None):
    """Insert missing counter rows at zero, so handing out a value is always an update."""
    from eduportal.models import STUDENT_CODE_SEQUENCE, Sequence

    db = SessionLocal(bind=bind if bind is not None else engine)
    try:
        if db.get(Sequence, STUDENT_CODE_SEQUENCE) is None:
            db.add(Sequence(name=STUDENT_CODE_SEQUENCE, value=0))
            db.commit()
    except IntegrityError:
        # Another process seeded it first.
        db.rollback()
    finally:
        db.close()


def database_status(bind=None):
    bind = bind if bind is not None else engine
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "connected"
    except OperationalError:
        return "disconnected"
