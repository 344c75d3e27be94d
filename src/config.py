"""Configuration management for gedwave."""

from pathlib import Path
import sys

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from matcher import MatchingOptions
from models import ThresholdStrategy, WaveCompareOptions


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


class Config(BaseSettings):
    """Application configuration loaded from GEDWAVE_* environment variables or .env."""

    model_config = SettingsConfigDict(
        env_prefix="GEDWAVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Matching weights
    first_name_weight: int = Field(default=30, ge=0, le=100)
    last_name_weight: int = Field(default=25, ge=0, le=100)
    birth_date_weight: int = Field(default=20, ge=0, le=100)
    birth_place_weight: int = Field(default=15, ge=0, le=100)
    death_date_weight: int = Field(default=5, ge=0, le=100)
    gender_weight: int = Field(default=5, ge=0, le=100)
    family_relations_weight: int = Field(default=0, ge=0, le=100)
    max_birth_year_difference: int = Field(
        default=10, ge=0, le=100, description="Birth years further apart score zero"
    )
    match_threshold: int = Field(default=70, ge=0, le=100)
    auto_match_threshold: int = Field(default=90, ge=0, le=100)

    # Wave propagation
    max_level: int = Field(default=3, ge=0, le=50, description="Maximum ring distance from the anchor")
    threshold_strategy: ThresholdStrategy = Field(default=ThresholdStrategy.ADAPTIVE)
    base_threshold: int = Field(default=60, ge=0, le=100)
    family_score_floor: int = Field(default=0, ge=0, le=200)
    interactive: bool = Field(default=False)
    low_confidence_threshold: int = Field(
        default=70, ge=0, le=100, description="At or above: accepted without asking"
    )
    min_confidence_threshold: int = Field(
        default=50, ge=0, le=100, description="Below: rejected without asking"
    )
    max_candidates: int = Field(default=5, ge=1, le=50)
    resolve_conflicts: bool = Field(default=False)
    suspicious_score: int = Field(default=40, ge=0, le=100)

    # Report
    report_threshold: int = Field(default=90, ge=0, le=100, description="Minimum score for updates")
    report_depth: int = Field(default=1, ge=1, le=10, description="Graph distance of nodes to add")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str | None = Field(default=None, description="Log file path")

    def matching_options(self) -> MatchingOptions:
        return MatchingOptions(
            first_name_weight=self.first_name_weight,
            last_name_weight=self.last_name_weight,
            birth_date_weight=self.birth_date_weight,
            birth_place_weight=self.birth_place_weight,
            death_date_weight=self.death_date_weight,
            gender_weight=self.gender_weight,
            family_relations_weight=self.family_relations_weight,
            max_birth_year_difference=self.max_birth_year_difference,
            match_threshold=self.match_threshold,
            auto_match_threshold=self.auto_match_threshold,
        )

    def wave_options(self, **overrides) -> WaveCompareOptions:
        """Build WaveCompareOptions, letting non-None keyword overrides win."""
        values = {
            "max_level": self.max_level,
            "threshold_strategy": self.threshold_strategy,
            "base_threshold": self.base_threshold,
            "family_score_floor": self.family_score_floor,
            "interactive": self.interactive,
            "low_confidence_threshold": self.low_confidence_threshold,
            "min_confidence_threshold": self.min_confidence_threshold,
            "max_candidates": self.max_candidates,
            "resolve_conflicts": self.resolve_conflicts,
            "suspicious_score": self.suspicious_score,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return WaveCompareOptions(**values)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def setup_logging(level: str = "INFO", log_file: str | Path | None = None) -> None:
    """
    Route loguru output to stderr and, optionally, a rotating log file.

    Args:
        level: Minimum level for both sinks
        log_file: File sink path (rotation at 10 MB, keep 5 old files)
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper())

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            rotation="10 MB",
            retention=5,
            level=level.upper(),
            format=LOG_FORMAT,
            backtrace=True,
            diagnose=True,
        )
        logger.info(f"Logging to file: {log_path}")
