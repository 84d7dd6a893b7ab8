from pathlib import Path
import os
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repo root

ENV_FILE = os.getenv("ENV_FILE", str(BASE_DIR / ".env"))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=ENV_FILE, extra="ignore")

    APP_ENV: str = "local"
    DATABASE_URL: str = "sqlite:///./perfreview.db"
    CORS_ORIGINS: str = "*"  # Comma-separated list of allowed origins, or "*" for all
    LOG_LEVEL: str = "INFO"

    # rating scale used by competency ratings and overall ratings
    RATING_MIN: float = 1
    RATING_MAX: float = 5

    # default aggregation weights per evaluation type (organization settings may override)
    WEIGHT_MANAGER: float = 3.0
    WEIGHT_PEER: float = 2.0
    WEIGHT_UPWARD: float = 2.0
    WEIGHT_SKIP_LEVEL: float = 2.0
    WEIGHT_SELF: float = 1.0

    DEFAULT_PEER_POLICY: str = "teammates"  # teammates | nominated
    DEFAULT_MAX_PEERS: int = 3  # 0 = no cap

    AUTOSAVE_IDLE_SECONDS: float = 5
    AUTOSAVE_RETRY_BASE_SECONDS: float = 2
    AUTOSAVE_RETRY_MAX_SECONDS: float = 60
    AUTOSAVE_RETRY_WINDOW_SECONDS: float = 300

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list, handling '*' for development"""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def default_type_weights(self) -> dict[str, float]:
        return {
            "MANAGER": self.WEIGHT_MANAGER,
            "PEER": self.WEIGHT_PEER,
            "UPWARD": self.WEIGHT_UPWARD,
            "SKIP_LEVEL": self.WEIGHT_SKIP_LEVEL,
            "SELF": self.WEIGHT_SELF,
        }


settings = Settings()
