from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis: cross-process relay for real-time push events.
    # Set to empty string to disable Redis (push falls back to local sockets only)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Namespaces Redis channels when several deployments share one Redis.
    SERVER_DOMAIN: str = "localhost"

    # Object store (local disk adapter)
    UPLOAD_DIR: str = "./uploads"
    PUBLIC_UPLOAD_PATH: str = "/uploads"
    MAX_UPLOAD_SIZE: int = 26_214_400  # 25 MB
    ALLOWED_MIME_TYPES: list[str] = [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "video/mp4",
        "video/webm",
        "audio/mpeg",
        "application/pdf",
        "application/zip",
        "text/plain",
    ]

    # Message history
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    # Generated group/broadcast names show this many member names before "+K more"
    GROUP_NAME_PREVIEW_COUNT: int = 3

    # Delayed messages. 0 disables the in-process polling worker.
    SCHEDULER_POLL_SECONDS: int = 5
    SCHEDULER_MAX_ATTEMPTS: int = 3
    # Retry n waits RETRY_DELAY * 2^(n-1)
    SCHEDULER_RETRY_DELAY_SECONDS: int = 10
    # A claim older than this is treated as abandoned by a crashed worker
    SCHEDULER_CLAIM_TIMEOUT_SECONDS: int = 300

    model_config = {"env_file": ".env"}


settings = Settings()
