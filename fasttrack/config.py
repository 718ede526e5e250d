"""Engine configuration.

Loads tunables from environment variables with sensible defaults. A local
``.env`` file is honoured for development.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

SORT_OPTIONS = ("savings", "confidence", "float", "risk")
RISK_FILTERS = ("low", "medium", "high")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class EngineSettings:
    """Settings loaded from environment variables."""

    # Fast-track analysis
    float_threshold: int = field(default_factory=lambda: int(os.getenv("FASTTRACK_FLOAT_THRESHOLD", "10")))
    max_results: Optional[int] = field(
        default_factory=lambda: int(os.getenv("FASTTRACK_MAX_RESULTS")) if os.getenv("FASTTRACK_MAX_RESULTS") else None
    )
    allow_negative_lag: bool = field(default_factory=lambda: _env_bool("FASTTRACK_ALLOW_NEGATIVE_LAG"))
    max_overlap_fraction: float = field(
        default_factory=lambda: float(os.getenv("FASTTRACK_MAX_OVERLAP_FRACTION", "1.0"))
    )

    # Update validation
    early_actual_tolerance_days: int = field(
        default_factory=lambda: int(os.getenv("FASTTRACK_EARLY_ACTUAL_TOLERANCE_DAYS", "5"))
    )

    # Guards
    compute_timeout_seconds: Optional[float] = field(
        default_factory=lambda: float(os.getenv("FASTTRACK_COMPUTE_TIMEOUT_SECONDS", "30"))
    )
    lock_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("FASTTRACK_LOCK_TIMEOUT_SECONDS", "5"))
    )

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("FASTTRACK_LOG_LEVEL", "INFO"))

    def validate(self) -> None:
        """Validate settings.

        Raises:
            ValueError: If a setting is out of range.
        """
        if self.float_threshold < 0:
            raise ValueError("float_threshold must be non-negative")
        if self.max_results is not None and self.max_results < 0:
            raise ValueError("max_results must be non-negative")
        if not 0.0 < self.max_overlap_fraction <= 1.0:
            raise ValueError("max_overlap_fraction must be in (0, 1]")
        if self.early_actual_tolerance_days < 0:
            raise ValueError("early_actual_tolerance_days must be non-negative")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")


@dataclass(frozen=True)
class FastTrackConfig:
    """Per-request fast-track options."""

    float_threshold: int = 10
    max_results: Optional[int] = None
    allow_negative_lag: bool = False
    max_overlap_fraction: float = 1.0
    risk_level: Optional[str] = None  # Filter: low, medium, high
    sort_by: str = "savings"  # savings, confidence, float, risk

    def __post_init__(self) -> None:
        if self.float_threshold < 0:
            raise ValueError("float_threshold must be non-negative")
        if self.max_results is not None and self.max_results < 0:
            raise ValueError("max_results must be non-negative")
        if not 0.0 < self.max_overlap_fraction <= 1.0:
            raise ValueError("max_overlap_fraction must be in (0, 1]")
        if self.sort_by not in SORT_OPTIONS:
            raise ValueError(f"sort_by must be one of {', '.join(SORT_OPTIONS)}")
        if self.risk_level is not None and self.risk_level not in RISK_FILTERS:
            raise ValueError(f"risk_level must be one of {', '.join(RISK_FILTERS)}")

    @classmethod
    def from_settings(cls, settings_: Optional[EngineSettings] = None, **overrides) -> "FastTrackConfig":
        settings_ = settings_ or settings
        config = cls(
            float_threshold=settings_.float_threshold,
            max_results=settings_.max_results,
            allow_negative_lag=settings_.allow_negative_lag,
            max_overlap_fraction=settings_.max_overlap_fraction,
        )
        return replace(config, **overrides) if overrides else config


# Global settings instance
settings = EngineSettings()
