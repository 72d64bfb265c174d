import os


def _csv(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Settings:
    APP_ENV: str = os.getenv("APP_ENV", "development")

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./forumfiles.db")
    DATABASE_ECHO: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    SECRET_KEY: str = os.getenv("SECRET_KEY", "your-secret-key")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 7 * 24 * 60))

    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "local")
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "./uploads")
    MINIO_ENDPOINT: str = os.getenv("MINIO_ENDPOINT", "minio:9000")
    MINIO_ACCESS_KEY: str = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
    MINIO_SECRET_KEY: str = os.getenv("MINIO_SECRET_KEY", "minioadmin")
    MINIO_BUCKET: str = os.getenv("MINIO_BUCKET", "forumfiles")
    MINIO_SECURE: bool = os.getenv("MINIO_SECURE", "false").lower() == "true"

    MAX_UPLOAD_SIZE: int = int(os.getenv("MAX_UPLOAD_SIZE", 100 * 1024 * 1024))
    ALLOWED_MIME_TYPES: set = set(_csv("ALLOWED_MIME_TYPES", ",".join([
        "image/jpeg", "image/png", "image/gif", "image/webp", "image/svg+xml",

        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",

        "text/plain", "text/csv",

        "application/zip", "application/x-rar-compressed", "application/x-7z-compressed",
        "application/x-tar", "application/gzip",

        "audio/mpeg", "audio/wav",
        "video/mp4", "video/mpeg", "video/quicktime",
    ])))
    TEXT_EXTENSIONS: set = {".txt", ".csv", ".md", ".json"}

    LINK_PASSWORD_LENGTH: int = int(os.getenv("LINK_PASSWORD_LENGTH", 4))
    LINK_CODE_MAX_ATTEMPTS: int = int(os.getenv("LINK_CODE_MAX_ATTEMPTS", 5))
    # hours -> label; 0 means the link never expires
    LINK_EXPIRY_CHOICES: dict = {0: "never", 24: "1 day", 72: "3 days", 168: "7 days"}
    # lifetime of the link mailed by /admin/share-file
    SHARE_LINK_EXPIRES_IN: int = int(os.getenv("SHARE_LINK_EXPIRES_IN", 168))

    VERIFICATION_CODE_TTL_MINUTES: int = int(os.getenv("VERIFICATION_CODE_TTL_MINUTES", 10))
    VERIFICATION_CODE_COOLDOWN_SECONDS: int = int(os.getenv("VERIFICATION_CODE_COOLDOWN_SECONDS", 60))
    VERIFICATION_CODE_MAX_ATTEMPTS: int = int(os.getenv("VERIFICATION_CODE_MAX_ATTEMPTS", 5))

    RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    AUTH_RATE_LIMIT: str = os.getenv("AUTH_RATE_LIMIT", "5/15minute")
    UPLOAD_RATE_LIMIT: str = os.getenv("UPLOAD_RATE_LIMIT", "20/hour")
    REDEMPTION_RATE_LIMIT: str = os.getenv("REDEMPTION_RATE_LIMIT", "10/15minute")
    # failed passwords per link, whoever sends them
    REDEMPTION_CODE_RATE_LIMIT: str = os.getenv("REDEMPTION_CODE_RATE_LIMIT", "30/15minute")
    # forwarding headers are only honoured when the peer is one of these
    TRUSTED_PROXIES: list = _csv("TRUSTED_PROXIES", "")

    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "")
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:5173")
    ALLOWED_ORIGINS: list = _csv("ALLOWED_ORIGINS", "*")

    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "noreply@forumfiles.com")
    EMAIL_FROM_NAME: str = os.getenv("EMAIL_FROM_NAME", "ForumFiles")
    SENDGRID_API_KEY: str = os.getenv("SENDGRID_API_KEY", "")

    ADMIN_EMAIL: str = os.getenv("ADMIN_EMAIL", "admin@example.com")
    ADMIN_PASSWORD: str = os.getenv("ADMIN_PASSWORD", "admin123")

    CLEANUP_ENABLED: bool = os.getenv("CLEANUP_ENABLED", "true").lower() == "true"
    CLEANUP_INTERVAL_SECONDS: int = int(os.getenv("CLEANUP_INTERVAL_SECONDS", 300))
    CLEANUP_MAX_RECORDS_PER_LOOP: int = int(os.getenv("CLEANUP_MAX_RECORDS_PER_LOOP", 200))
    CLEANUP_RETRY_ATTEMPTS: int = int(os.getenv("CLEANUP_RETRY_ATTEMPTS", 3))
    CLEANUP_RETRY_BACKOFF_SECS: float = float(os.getenv("CLEANUP_RETRY_BACKOFF_SECS", 0.5))

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"


settings = Settings()
