import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from eduportal.config import settings
from eduportal.database import database_status, init_db
from eduportal.errors import register_exception_handlers
from eduportal.routes import admin, auth, courses, enrollments, quizzes, users, videos

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Raises after the last failed attempt, which aborts startup.
    init_db()
    logger.info("EduPortal API ready (%s)", settings.ENVIRONMENT)
    yield


app = FastAPI(title="EduPortal API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(courses.router)
app.include_router(videos.router)
app.include_router(quizzes.router)
app.include_router(enrollments.router)
app.include_router(admin.router)

os.makedirs(settings.MEDIA_ROOT, exist_ok=True)
app.mount(settings.MEDIA_URL, StaticFiles(directory=settings.MEDIA_ROOT), name="media")


@app.get("/api/health")
def health():
    db_state = database_status()
    return {"success": db_state == "connected", "status": "OK", "database": db_state}
