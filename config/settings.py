"""
Dealbase Maintenance - Configuration

Loads settings from environment variables with sensible defaults.
"""

from datetime import date
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        default=f"sqlite:///{PROJECT_ROOT}/data/dealbase.db"
    )

    @property
    def project_root(self) -> Path:
        """Return project root directory."""
        return PROJECT_ROOT

    # Application
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    LOG_DIR: Path = Field(default=PROJECT_ROOT / "logs")

    # Duplicate detection
    DUPLICATE_SIMILARITY_THRESHOLD: float = Field(default=0.90)
    MODERATE_SIMILARITY_THRESHOLD: float = Field(default=0.80)
    JARO_WINKLER_PREFIX_WEIGHT: float = Field(default=0.1)
    SIMILARITY_WEIGHT_JARO_WINKLER: float = Field(default=0.4)
    SIMILARITY_WEIGHT_LEVENSHTEIN: float = Field(default=0.3)
    SIMILARITY_WEIGHT_PHONETIC: float = Field(default=0.2)
    NORMALIZED_MATCH_BONUS: float = Field(default=0.1)

    # Funding round duplicates
    ROUND_AMOUNT_TOLERANCE: float = Field(default=0.10)
    ROUND_DATE_TOLERANCE_DAYS: int = Field(default=7)

    # Run limits
    DEDUP_BATCH_SIZE: int = Field(default=1000)
    CORRECTIVE_TRANSACTION_TIMEOUT_SECONDS: float = Field(default=300.0)
    FAILED_ERROR_THRESHOLD: int = Field(default=4)
    RUN_LOCK_TTL_MINUTES: int = Field(default=360)

    # Aberrant value bounds
    FOUNDED_YEAR_FLOOR: int = Field(default=1900)
    FUNDING_DATE_FLOOR: date = Field(default=date(1990, 1, 1))
    MAX_ROUND_AMOUNT_USD: float = Field(default=100_000_000_000)
    SCORE_MIN: int = Field(default=0)
    SCORE_MAX: int = Field(default=100)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
