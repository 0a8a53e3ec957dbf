"""Configuration management for the performance recommender."""

import os
from typing import Dict
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration."""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./performance_recommender.db")

    # Application
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Analysis windows (days)
    ANALYSIS_WINDOW_DAYS: int = int(os.getenv("ANALYSIS_WINDOW_DAYS", "30"))
    ANOMALY_HISTORY_DAYS: int = int(os.getenv("ANOMALY_HISTORY_DAYS", "28"))

    # Performance thresholds (rating scale 0-10)
    LOW_PERFORMANCE_THRESHOLD: float = float(os.getenv("LOW_PERFORMANCE_THRESHOLD", "5"))
    VERY_LOW_PERFORMANCE_THRESHOLD: float = float(os.getenv("VERY_LOW_PERFORMANCE_THRESHOLD", "3"))
    RECURRING_FAILURE_RATING: float = float(os.getenv("RECURRING_FAILURE_RATING", "4"))

    # Detection thresholds
    MIN_ASSIGNMENTS_FOR_PROBLEM: int = int(os.getenv("MIN_ASSIGNMENTS_FOR_PROBLEM", "3"))
    MIN_INCOMPLETE_FOR_ALERT: int = int(os.getenv("MIN_INCOMPLETE_FOR_ALERT", "2"))
    MIN_RECORDS_FOR_ANALYSIS: int = int(os.getenv("MIN_RECORDS_FOR_ANALYSIS", "3"))

    # Output limits
    MAX_PROBLEMATIC_EXERCISES: int = int(os.getenv("MAX_PROBLEMATIC_EXERCISES", "10"))
    MAX_SUBSTITUTES_PER_EXERCISE: int = int(os.getenv("MAX_SUBSTITUTES_PER_EXERCISE", "3"))

    # Trend classification (linear regression slope per day)
    TREND_MIN_POINTS: int = 3
    TREND_IMPROVING_SLOPE: float = float(os.getenv("TREND_IMPROVING_SLOPE", "0.1"))
    TREND_WORSENING_SLOPE: float = float(os.getenv("TREND_WORSENING_SLOPE", "-0.1"))
    TREND_CONFIDENCE_R2: float = float(os.getenv("TREND_CONFIDENCE_R2", "0.5"))
    RATING_MIN: float = 0.0
    RATING_MAX: float = 10.0

    # Z-score interpretation cutoffs
    ZSCORE_MIN_POINTS: int = 3
    ZSCORE_ALERT: float = float(os.getenv("ZSCORE_ALERT", "1.5"))
    ZSCORE_CRITICAL: float = float(os.getenv("ZSCORE_CRITICAL", "2.0"))

    # Difficulty ceiling from the latest shuttle-run (navette) level.
    # Upper level bound -> max exercise difficulty; above every bound uses the top ceiling.
    DEFAULT_DIFFICULTY_CEILING: int = 3
    FITNESS_LEVEL_BANDS: Dict[int, int] = {
        4: 2,
        8: 3,
    }
    TOP_DIFFICULTY_CEILING: int = 5

    # Workflow listings
    PENDING_PAGE_SIZE: int = int(os.getenv("PENDING_PAGE_SIZE", "10"))
    FEEDBACK_LIMIT: int = int(os.getenv("FEEDBACK_LIMIT", "50"))

    @classmethod
    def validate(cls) -> bool:
        """Validate threshold consistency."""
        if cls.TREND_IMPROVING_SLOPE <= cls.TREND_WORSENING_SLOPE:
            raise ValueError(
                "TREND_IMPROVING_SLOPE must be greater than TREND_WORSENING_SLOPE"
            )
        if cls.ZSCORE_CRITICAL < cls.ZSCORE_ALERT:
            raise ValueError("ZSCORE_CRITICAL must not be lower than ZSCORE_ALERT")
        if cls.VERY_LOW_PERFORMANCE_THRESHOLD > cls.LOW_PERFORMANCE_THRESHOLD:
            raise ValueError(
                "VERY_LOW_PERFORMANCE_THRESHOLD must not exceed LOW_PERFORMANCE_THRESHOLD"
            )
        if cls.ANALYSIS_WINDOW_DAYS <= 0 or cls.ANOMALY_HISTORY_DAYS <= 0:
            raise ValueError("Analysis windows must be positive")
        return True

    @classmethod
    def get_difficulty_ceiling(cls, fitness_level) -> int:
        """Map the latest fitness test level to a maximum exercise difficulty.

        Lower test scores map to lower ceilings. Without a test the default
        basic-intermediate ceiling applies.
        """
        if not fitness_level:
            return cls.DEFAULT_DIFFICULTY_CEILING

        level = float(fitness_level)
        for upper_bound in sorted(cls.FITNESS_LEVEL_BANDS.keys()):
            if level <= upper_bound:
                return cls.FITNESS_LEVEL_BANDS[upper_bound]
        return cls.TOP_DIFFICULTY_CEILING


config = Config()
