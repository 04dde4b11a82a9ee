# backend/config.py
from pydantic_settings import BaseSettings
from typing import ClassVar
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite:///./database_cornerstore.db"

    # Payment gateway used for capture at checkout
    PAYMENT_API_URL: str = "http://127.0.0.1:9000"
    PAYMENT_API_KEY: str = ""
    PAYMENT_CURRENCY: str = "USD"
    PAYMENT_TIMEOUT_SECONDS: float = 15.0

    FRONTEND_URL: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    # Max undelivered order pushes per realtime subscriber before it must resync
    REALTIME_QUEUE_SIZE: int = 100

    class Config:
        env_file: ClassVar[str] = str(env_path)

settings = Settings()
