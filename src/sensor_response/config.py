"""
Configuration management for the sensor response estimation engine.

Uses pydantic-settings for environment-based configuration with validation.
All settings can be overridden via environment variables with SENSOR_ prefix.
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sensor_response.core.types import LutFormat

load_dotenv()


class EstimatorSettings(BaseSettings):
    """Settings for the EMOR gradient-descent estimator.

    The defaults are tuned constants; changing them changes the numeric
    behaviour of the fit.
    """

    model_config = SettingsConfigDict(env_prefix="SENSOR_ESTIMATOR_")

    # Round budget and step schedule
    rounds: int = Field(default=300, ge=1, le=1_000_000)
    start_step_size: float = Field(default=1.0, gt=0.0)
    end_step_size: float = Field(default=0.001, gt=0.0)
    gradient_delta: float = Field(default=0.001, gt=0.0)

    # Error function
    points: int = Field(default=64, ge=2, le=4096)
    min_slope: float = Field(default=1.0 / 256.0, ge=0.0)
    non_mono_scale: float = Field(default=1024.0, ge=0.0)
    min_extent: float = Field(default=0.5, ge=0.0, lt=1.0)
    sample_count_norm: float = Field(default=256.0, gt=0.0)

    # Final curve extraction
    export_min_slope: float = Field(default=0.005, ge=0.0)

    # Work per progress update in the workflow driver
    rounds_per_update_budget: int = Field(default=1000, ge=1)


class MappingSettings(BaseSettings):
    """Settings for building exposure mappings from histograms."""

    model_config = SettingsConfigDict(env_prefix="SENSOR_MAPPING_")

    target_ratio: float = Field(default=2.0, gt=1.0)
    min_population: int = Field(default=1, ge=1)
    min_points: int = Field(default=2, ge=1)
    histogram_buckets: int = Field(default=256, ge=2)


class EmorSettings(BaseSettings):
    """Settings for the EMOR basis tables."""

    model_config = SettingsConfigDict(env_prefix="SENSOR_EMOR_")

    # Path to an EMOR text file (emor.txt) or a saved .npy table.
    # When unset, a synthetic basis is generated.
    table_path: Optional[Path] = Field(default=None)
    factor_count: int = Field(default=6, ge=1, le=25)
    samples: int = Field(default=1024, ge=16, le=65536)


class LutSettings(BaseSettings):
    """Settings for LUT build and export."""

    model_config = SettingsConfigDict(env_prefix="SENSOR_LUT_")

    inverse_resolution: int = Field(default=4096, ge=16, le=65536)
    default_format: LutFormat = Field(default=LutFormat.SPI1D)
    float_precision: int = Field(default=8, ge=3, le=12)


class VisualizationSettings(BaseSettings):
    """Settings for diagnostic plots."""

    model_config = SettingsConfigDict(env_prefix="SENSOR_VIS_")

    figure_width: float = Field(default=8.0, ge=3.0, le=20.0)
    figure_height: float = Field(default=8.0, ge=3.0, le=20.0)
    dpi: int = Field(default=100, ge=50, le=300)
    grid_alpha: float = Field(default=0.3, ge=0.0, le=1.0)
    point_size: float = Field(default=2.0, ge=0.1, le=20.0)
    line_width: float = Field(default=1.5, ge=0.5, le=5.0)
    channel_colors: tuple[str, str, str] = Field(default=("#d62728", "#2ca02c", "#1f77b4"))
    reference_color: str = Field(default="#888888")


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings."""

    model_config = SettingsConfigDict(
        env_prefix="SENSOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="Sensor Response Estimator")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: Optional[Path] = Field(default=None)
    log_json: bool = Field(default=False, description="JSON lines on the console")

    estimator: EstimatorSettings = Field(default_factory=EstimatorSettings)
    mapping: MappingSettings = Field(default_factory=MappingSettings)
    emor: EmorSettings = Field(default_factory=EmorSettings)
    lut: LutSettings = Field(default_factory=LutSettings)
    visualization: VisualizationSettings = Field(default_factory=VisualizationSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept lower-case level names."""
        level = str(v).upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def configure(settings: Optional[Settings] = None, **overrides) -> Settings:
    """Install new process-wide settings.

    Pass a prepared ``Settings`` instance, or keyword overrides applied on top
    of the environment. With neither, the environment is simply re-read.
    Components pick the new values up the next time they are constructed.
    """
    global _settings
    _settings = settings if settings is not None else Settings(**overrides)
    return _settings
