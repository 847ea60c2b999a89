# eduportal/config.py
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _bool(value, default=False):
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Runtime settings read from the environment (and an optional .env file)."""

    def __init__(self):
        self.ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

        # Database
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./eduportal.db")
        self.DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
        self.DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
        self.DB_CONNECT_RETRIES = int(os.getenv("DB_CONNECT_RETRIES", "5"))
        self.DB_CONNECT_DELAY = float(os.getenv("DB_CONNECT_DELAY", "5"))

        # Auth
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.TOKEN_EXPIRE_DAYS = int(os.getenv("TOKEN_EXPIRE_DAYS", "7"))
        self.ADMIN_TOKEN_EXPIRE_HOURS = int(os.getenv("ADMIN_TOKEN_EXPIRE_HOURS", "24"))
        self.BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

        # Media
        self.MEDIA_ROOT = os.getenv("MEDIA_ROOT", os.path.abspath("./media"))
        self.MEDIA_URL = os.getenv("MEDIA_URL", "/media")
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(100 * 1024 * 1024)))

        # Frontend
        self.FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

        # Mail
        self.MAIL_USERNAME = os.getenv("MAIL_USERNAME")
        self.MAIL_PASSWORD = os.getenv("MAIL_PASSWORD", "")
        self.MAIL_FROM = os.getenv("MAIL_FROM")
        self.MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.gmail.com")
        self.MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
        self.MAIL_SUPPRESS_SEND = _bool(os.getenv("MAIL_SUPPRESS_SEND"))

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @property
    def is_production(self):
        return self.ENVIRONMENT.lower() == "production"

    @property
    def mail_enabled(self):
        return bool(self.MAIL_USERNAME and self.MAIL_FROM)


settings = Settings()
