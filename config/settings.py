"""
SiteLog Entity Resolution - Configuration

Loads settings from environment variables with sensible defaults.
"""

from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Load .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        default=f"sqlite:///{PROJECT_ROOT}/data/sitelog.db"
    )

    @property
    def project_root(self) -> Path:
        """Return project root directory."""
        return PROJECT_ROOT

    # Application
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    LOG_DIR: Path = Field(default=PROJECT_ROOT / "logs")

    # Entity resolution settings (scores are 0-1)
    MATCH_THRESHOLD: float = Field(default=0.80)
    AMBIGUITY_MARGIN: float = Field(default=0.05)

    # Matches below this confidence are flagged for a human reviewer
    REVIEW_CONFIDENCE: float = Field(default=0.90)

    # Create a new entity when a mention resolves to NoMatch
    AUTO_CREATE_ENTITIES: bool = Field(default=True)

    # Abbreviation expansions, inline (JSON in the environment) and/or from YAML
    ABBREVIATIONS: dict[str, str] = Field(default_factory=dict)
    ABBREVIATIONS_FILE: Optional[Path] = Field(
        default=PROJECT_ROOT / "config" / "abbreviations.yaml"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @model_validator(mode="after")
    def check_values(self) -> "Settings":
        """Fail fast on settings that would produce nonsense decisions."""
        if self.LOG_LEVEL.upper() not in LOG_LEVELS:
            raise ValueError(
                f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {self.LOG_LEVEL}"
            )
        for name in ("MATCH_THRESHOLD", "AMBIGUITY_MARGIN", "REVIEW_CONFIDENCE"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        if self.AMBIGUITY_MARGIN >= self.MATCH_THRESHOLD:
            raise ValueError(
                f"AMBIGUITY_MARGIN ({self.AMBIGUITY_MARGIN}) must be smaller than "
                f"MATCH_THRESHOLD ({self.MATCH_THRESHOLD})"
            )
        return self

    def load_abbreviations(self) -> dict[str, str]:
        """
        Merge the abbreviation table from ABBREVIATIONS_FILE with inline ABBREVIATIONS.

        Inline entries win over file entries with the same key.
        """
        table: dict[str, str] = {}
        path = self.ABBREVIATIONS_FILE
        if path and Path(path).exists():
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError(f"Abbreviation file {path} must contain a mapping")
            table.update({str(k): str(v) for k, v in loaded.items()})
        table.update(self.ABBREVIATIONS)
        return table


settings = Settings()
