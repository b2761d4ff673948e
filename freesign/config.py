import os


class Settings:
    """Runtime configuration, read from the environment."""

    def __init__(self):
        # Vercel Postgres hands out postgres:// URLs; empty means local SQLite
        self.DATABASE_URL = os.getenv("DATABASE_URL", "")

        self.SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")
        self.ALGORITHM = "HS256"
        self.ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

        self.APP_URL = os.getenv("APP_URL", "http://localhost:8000").rstrip("/")
        self.RECIPIENT_TOKEN_TTL_HOURS = float(os.getenv("RECIPIENT_TOKEN_TTL_HOURS", "24"))

        # "clamp" or "reject"
        self.ELEMENT_BOUNDS_MODE = os.getenv("ELEMENT_BOUNDS_MODE", "clamp")
        # Pixels per PDF point at which the editor places elements
        self.PLACEMENT_SCALE = float(os.getenv("PLACEMENT_SCALE", "1.0"))

        self.CLIENT_CONTEXT_TIMEOUT = float(os.getenv("CLIENT_CONTEXT_TIMEOUT", "5"))
        self.GEOLOCATION_LOOKUP_URL = os.getenv("GEOLOCATION_LOOKUP_URL", "")

        self.SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY", "")
        self.EMAIL_FROM = os.getenv("EMAIL_FROM", "noreply@freesign.app")
        self.EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "FreeSign")

        self.UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
        self.SIGNED_DIR = os.getenv("SIGNED_DIR", "signed_docs")
        self.BLOB_READ_WRITE_TOKEN = os.getenv("BLOB_READ_WRITE_TOKEN")

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FORMAT = os.getenv("LOG_FORMAT", "text")


settings = Settings()
