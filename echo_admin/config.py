from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    CORS_ALLOW_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ]

    database_url: str = "sqlite:///./echo_admin.db"

    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_HOURS: int = 12

    # консоль разлогинивает после 10 минут бездействия
    IDLE_TIMEOUT_MINUTES: int = 10

    BOOTSTRAP_ADMIN_EMAIL: Optional[str] = None
    BOOTSTRAP_ADMIN_PASSWORD: Optional[str] = None
    BOOTSTRAP_ADMIN_NAME: str = "Admin"

    S3_ENDPOINT: str = "https://storage.yandexcloud.net"
    S3_REGION: str = "ru-central1"
    S3_BUCKET: Optional[str] = None
    S3_ACCESS_KEY: Optional[str] = None
    S3_SECRET_KEY: Optional[str] = None
    PUBLIC_CDN_URL: Optional[str] = None

    PUSH_API_URL: Optional[str] = None
    PUSH_API_KEY: Optional[str] = None
    PUSH_TIMEOUT_SECONDS: float = 10.0

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    MAX_FILE_SIZE: int = 5 * 1024 * 1024  # 5 MB

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
MAX_FILE_SIZE = settings.MAX_FILE_SIZE
