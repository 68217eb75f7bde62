import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")

    # Security settings
    password_hash_iterations: int = int(os.getenv("PASSWORD_HASH_ITERATIONS", "120000"))
    # When both are set, an ADMIN account is created at startup if the email is unknown
    bootstrap_admin_email: Optional[str] = os.getenv("BOOTSTRAP_ADMIN_EMAIL")
    bootstrap_admin_password: Optional[str] = os.getenv("BOOTSTRAP_ADMIN_PASSWORD")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Circulation API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
