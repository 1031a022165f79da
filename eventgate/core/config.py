import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Most specific first; later files never override earlier ones
ENV_FILE_CHAIN = (".env.{env}", ".env.local", ".env")

# Station dev servers that talk to a local backend during events
LOCAL_STATION_ORIGINS = [
    "http://localhost:8080",
    "http://127.0.0.1:8080",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


def load_env_files(env: Optional[str] = None) -> List[str]:
    """Load the .env chain for an environment into os.environ and return the files read."""
    env = env or os.getenv("ENVIRONMENT", "development")
    loaded = []
    for template in ENV_FILE_CHAIN:
        path = template.format(env=env)
        if os.path.exists(path):
            load_dotenv(path, override=False)
            loaded.append(path)
            logger.info(f"Loaded configuration from: {path}")

    if not loaded:
        logger.warning("No environment configuration files found, using system environment variables only")
    return loaded


def derive_cors_origins(frontend_url: str) -> List[str]:
    origins = [frontend_url]
    if "localhost" in frontend_url or "127.0.0.1" in frontend_url:
        origins.extend(LOCAL_STATION_ORIGINS)
    return list(dict.fromkeys(origins))


LOADED_ENV_FILES = load_env_files()


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./eventgate.db"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    ENVIRONMENT: str = "development"
    FRONTEND_URL: str = "http://127.0.0.1:8080"
    BACKEND_URL: str = "http://localhost:8000"

    # Derived from FRONTEND_URL when left empty
    CORS_ORIGINS: List[str] = []

    # Scanner station
    CAMERA_INDEX: int = 0
    SCANNER_POLL_INTERVAL_SECONDS: float = 0.1
    SUCCESS_DISPLAY_SECONDS: float = 3.0
    ERROR_DISPLAY_SECONDS: float = 2.0

    # Bounded retry for the data store (one retry, short backoff)
    LOOKUP_RETRY_BACKOFF_SECONDS: float = 0.25
    COMMIT_RETRY_BACKOFF_SECONDS: float = 0.25

    # Ordered display-name resolution strategies
    USER_INFO_STRATEGIES: List[str] = ["profile", "identity_directory", "email", "default"]

    # Ticket QR rendering
    QR_BOX_SIZE: int = 10
    QR_BORDER: int = 4

    class Config:
        env_file = ".env"
        extra = "ignore"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        if not self.CORS_ORIGINS:
            self.CORS_ORIGINS = derive_cors_origins(self.FRONTEND_URL)

        if self.SECRET_KEY == "change-me":
            if self.ENVIRONMENT == "production":
                logger.critical("SECRET_KEY is not configured! Admin tokens cannot be trusted.")
            else:
                logger.warning("Using the default SECRET_KEY; set one before running stations for real")

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    def get_environment_config(self) -> dict:
        """Get environment-specific configuration as a dictionary"""
        return {
            "environment": self.ENVIRONMENT,
            "frontend_url": self.FRONTEND_URL,
            "backend_url": self.BACKEND_URL,
            "cors_origins": self.CORS_ORIGINS,
            "loaded_config_files": list(LOADED_ENV_FILES),
            "station": self.get_station_config(),
        }

    def get_station_config(self) -> dict:
        """Timing configuration a scanner station needs"""
        return {
            "camera_index": self.CAMERA_INDEX,
            "poll_interval": self.SCANNER_POLL_INTERVAL_SECONDS,
            "success_display_seconds": self.SUCCESS_DISPLAY_SECONDS,
            "error_display_seconds": self.ERROR_DISPLAY_SECONDS,
        }

settings = Settings()
