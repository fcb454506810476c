import os


class Config:
    def __init__(self) -> None:
        self.APP_ENV = os.getenv("APP_ENV", "development")
        self.HOST = os.getenv("HOST", "0.0.0.0")
        self.PORT = int(os.getenv("PORT", "5002"))

        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./hrportal.db")

        # Bearer tokens are issued by the portal's auth service; we only verify them.
        self.JWT_SECRET = os.getenv("JWT_SECRET", "").strip()
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256").strip() or "HS256"

        self.APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Kolkata")

        self.ALLOWED_ORIGINS = [
            s.strip() for s in (os.getenv("ALLOWED_ORIGINS", "*") or "*").split(",") if s.strip()
        ]

        self.RATE_LIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "300 per minute")
        self.RATE_LIMIT_GLOBAL = os.getenv("RATE_LIMIT_GLOBAL", "2000 per minute")

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

        # Lockout after a failed interview before forward transitions are allowed again.
        self.RETRY_COOLDOWN_DAYS = int(os.getenv("RETRY_COOLDOWN_DAYS", "30"))

        # Onboarding events are POSTed here (mail/SMS relay). Empty disables delivery.
        self.NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL", "").strip()
        self.NOTIFY_WEBHOOK_API_KEY = os.getenv("NOTIFY_WEBHOOK_API_KEY", "").strip()
        self.NOTIFY_TIMEOUT_SECONDS = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "5"))

        # Default interview question bank is inserted on first start.
        self.SEED_INTERVIEW_QUESTIONS = os.getenv("SEED_INTERVIEW_QUESTIONS", "1") == "1"

    @property
    def IS_PRODUCTION(self) -> bool:
        return str(self.APP_ENV or "").strip().lower() in {"prod", "production"}

    def validate(self) -> None:
        secret = str(self.JWT_SECRET or "").strip()
        if not secret:
            raise RuntimeError("JWT_SECRET must be set")
        if self.IS_PRODUCTION and len(secret) < 32:
            raise RuntimeError("JWT_SECRET must be a long random string in production")

        if self.IS_PRODUCTION and str(self.DATABASE_URL or "").startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production")

        if self.IS_PRODUCTION and any(str(o or "").strip() == "*" for o in (self.ALLOWED_ORIGINS or [])):
            raise RuntimeError("ALLOWED_ORIGINS must not contain '*' in production")

        if self.RETRY_COOLDOWN_DAYS < 0:
            raise RuntimeError("RETRY_COOLDOWN_DAYS must not be negative")
