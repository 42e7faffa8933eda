"""
nobo-abundance Configuration
============================

This module handles configuration loading for an analysis run.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    NOBO_SEED            -> run.seed
    NOBO_OUTPUT_DIR      -> run.output_dir
    NOBO_JAGS_PATH       -> jags.executable
    NOBO_MCMC_CHAINS     -> mcmc.n_chains
    NOBO_CORE_FRACTION   -> mcmc.core_fraction
    NOBO_LOG_LEVEL       -> logging.level

There is deliberately no module-level settings instance. Callers load a
Settings object once and pass it to every stage of the run.

Example:
    from nobo_abundance.config import load_config, setup_logging

    settings = load_config("config.yaml")
    setup_logging(settings)
    print(settings.mcmc.n_iter)
    print(settings.acoustic.calendar.resolved_dates())
"""

import math
import os
import logging
from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, model_validator

from nobo_abundance.models.schema import (
    ColumnSpec,
    ScalingPolicy,
    SemanticType,
    TableSchema,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class RunConfig(BaseModel):
    """Per-run seed and artifact locations."""

    seed: int = Field(default=123, description="Seed for initial-value generation")
    output_dir: str = Field(
        default="./output",
        description="Directory for write-once summary artifacts",
    )
    model_dir: str = Field(
        default="./jags_models",
        description="Directory the model text files are written to",
    )


class MCMCConfig(BaseModel):
    """MCMC settings handed to the inference engine."""

    n_iter: int = Field(default=300000, gt=0, description="Total iterations per chain")
    n_burnin: int = Field(default=20000, ge=0, description="Burn-in iterations")
    n_thin: int = Field(default=10, ge=1, description="Thinning interval")
    n_chains: int = Field(default=3, ge=1, description="Number of chains")
    n_adapt: int = Field(default=1000, ge=0, description="Adaptation iterations")
    core_fraction: float = Field(
        default=0.5,
        gt=0,
        le=1.0,
        description="Fraction of hardware threads used for parallel chains",
    )
    dic: bool = Field(default=True, description="Monitor deviance")

    @model_validator(mode="after")
    def check_burnin(self) -> "MCMCConfig":
        if self.n_burnin >= self.n_iter:
            raise ValueError("n_burnin must be smaller than n_iter")
        return self

    @property
    def workers(self) -> int:
        """Worker count: a fraction of the available hardware threads."""
        cores = os.cpu_count() or 1
        return max(1, int(math.floor(cores * self.core_fraction)))

    @property
    def expected_draws(self) -> int:
        """Rough number of saved posterior draws across all chains."""
        return ((self.n_iter - self.n_burnin) // self.n_thin) * self.n_chains


class ConvergenceConfig(BaseModel):
    """Convergence check thresholds."""

    rhat_threshold: float = Field(
        default=1.1,
        gt=1.0,
        description="Parameters with Rhat above this are flagged",
    )


class JagsConfig(BaseModel):
    """JAGS command-line settings."""

    executable: str = Field(default="jags", description="Path to the jags binary")
    rng_name: str = Field(
        default="base::Mersenne-Twister",
        description="RNG used for every chain",
    )


class SurveyAreaConfig(BaseModel):
    """Constants for area-to-density conversion."""

    radius_m: float = Field(default=200.0, gt=0, description="Survey radius (m)")
    m2_per_acre: float = Field(default=4046.86, gt=0, description="Square metres per acre")
    study_area_acres: float = Field(
        default=2710.0,
        gt=0,
        description="Area the density is scaled up to for total abundance",
    )

    @property
    def area_acres(self) -> float:
        """Area of one circular survey plot in acres."""
        return math.pi * self.radius_m ** 2 / self.m2_per_acre


class CalendarConfig(BaseModel):
    """
    Survey calendar.

    Either an explicit ascending list of ISO dates or a start date with an
    occasion count and spacing.
    """

    dates: Optional[List[date]] = Field(default=None, description="Explicit dates")
    start: date = Field(default=date(2024, 5, 26), description="First survey date")
    n_occasions: int = Field(default=14, ge=1, description="Number of occasions")
    spacing_days: int = Field(default=4, ge=1, description="Days between occasions")
    date_format: str = Field(default="%Y-%m-%d", description="Format of date strings")

    def resolved_dates(self) -> Tuple[date, ...]:
        if self.dates:
            return tuple(self.dates)
        return tuple(
            self.start + timedelta(days=self.spacing_days * i)
            for i in range(self.n_occasions)
        )


# Habitat tables are wide landscape-metric exports, so their schemas opt in to
# extra columns. Column order after the identifier is the column order of X.abund.

def _default_acoustic_site_schema() -> TableSchema:
    return TableSchema(
        name="aru_site_covariates",
        columns=[
            ColumnSpec(name="Site_Number", kind=SemanticType.IDENTIFIER),
            ColumnSpec(name="herb_ClmIdx", kind=SemanticType.CONTINUOUS, scaling=ScalingPolicy.ZSCORE),
            ColumnSpec(name="woody_Npatches", kind=SemanticType.CONTINUOUS, scaling=ScalingPolicy.ZSCORE),
            ColumnSpec(name="woody_prp", kind=SemanticType.CONTINUOUS, scaling=ScalingPolicy.ZSCORE),
        ],
        allow_extra=True,
    )


def _default_point_count_site_schema() -> TableSchema:
    return TableSchema(
        name="pc_site_covariates",
        columns=[
            ColumnSpec(name="PointNum", kind=SemanticType.IDENTIFIER),
            ColumnSpec(name="herb_Pdens", kind=SemanticType.CONTINUOUS, scaling=ScalingPolicy.ZSCORE),
            ColumnSpec(name="woody_prp", kind=SemanticType.CONTINUOUS, scaling=ScalingPolicy.ZSCORE),
        ],
        allow_extra=True,
    )


class AcousticConfig(BaseModel):
    """ARU / BirdNET pathway configuration."""

    detections_path: str = Field(default="./Data/Acoustic_Data/NOBO_BirdNETall_2024.csv")
    weather_path: str = Field(default="./Data/Acoustic_Data/ARU_weathercovs.csv")
    site_covariates_path: str = Field(default="./Data/Acoustic_Data/ARU_siteCovs.csv")
    validated_n_path: str = Field(default="./Data/Acoustic_Data/Bnet14day_n.csv")
    validated_k_path: str = Field(default="./Data/Acoustic_Data/Bnet14day_k.csv")
    n_sites: int = Field(default=27, ge=1, description="Number of ARU sites")
    calendar: CalendarConfig = Field(default_factory=CalendarConfig)
    site_column: str = Field(default="Site_Number")
    date_column: str = Field(default="Date")
    weather_covariates: List[ColumnSpec] = Field(
        default_factory=lambda: [
            ColumnSpec(name="Temp_degF", kind=SemanticType.CONTINUOUS, scaling=ScalingPolicy.ZSCORE),
            ColumnSpec(name="Wind_mph", kind=SemanticType.CONTINUOUS, scaling=ScalingPolicy.ZSCORE),
        ]
    )
    strict_columns: bool = Field(
        default=True,
        description="Reject undeclared columns in the weather table",
    )
    site_schema: TableSchema = Field(default_factory=_default_acoustic_site_schema)

    @model_validator(mode="after")
    def check_site_schema(self) -> "AcousticConfig":
        # The model reads X.abund columns 1 and 2 (abundance, with their
        # interaction) and column 3 (detection).
        if len(self.site_schema.covariate_columns()) != 3:
            raise ValueError("acoustic site_schema must declare exactly 3 covariates")
        return self


class PointCountConfig(BaseModel):
    """Point-count distance-sampling pathway configuration."""

    detections_path: str = Field(default="./Data/Point_Count_Data/NOBO_PC_Summer2024data.csv")
    site_covariates_path: str = Field(default="./Data/Point_Count_Data/PointCount_siteCovs.csv")
    n_sites: int = Field(default=10, ge=1)
    n_surveys: int = Field(default=4, ge=1)
    n_distance_bins: int = Field(default=4, ge=1)
    bin_width_m: float = Field(default=50.0, gt=0)
    max_distance_m: float = Field(default=200.0, gt=0)
    site_column: str = Field(default="PointNum")
    survey_column: str = Field(default="Survey")
    date_column: str = Field(default="Date")
    distance_column: str = Field(default="DistBin")
    date_format: str = Field(default="%m/%d/%Y")
    survey_covariates: List[ColumnSpec] = Field(
        default_factory=lambda: [
            ColumnSpec(name="Observer", kind=SemanticType.CATEGORICAL, scaling=ScalingPolicy.CODES),
            ColumnSpec(name="Temp.deg.F", kind=SemanticType.CONTINUOUS, scaling=ScalingPolicy.ZSCORE),
            ColumnSpec(name="Wind.Beau.Code", kind=SemanticType.CONTINUOUS, scaling=ScalingPolicy.ZSCORE),
            ColumnSpec(name="Sky.Beau.Code", kind=SemanticType.CATEGORICAL, scaling=ScalingPolicy.NONE),
        ]
    )
    covariate_labels: List[str] = Field(
        default_factory=lambda: ["Observer", "Temp", "Wind", "Sky", "DOY"],
        description="Slice names of X.det (survey covariates then DOY)",
    )
    strict_columns: bool = Field(
        default=True,
        description="Reject undeclared columns in the point-count table",
    )
    site_schema: TableSchema = Field(default_factory=_default_point_count_site_schema)

    @model_validator(mode="after")
    def check_geometry(self) -> "PointCountConfig":
        if not self.site_schema.covariate_columns():
            raise ValueError("point_count site_schema must declare at least 1 covariate")
        if abs(self.bin_width_m * self.n_distance_bins - self.max_distance_m) > 1e-9:
            raise ValueError("n_distance_bins * bin_width_m must equal max_distance_m")
        if len(self.covariate_labels) != len(self.survey_covariates) + 1:
            raise ValueError("covariate_labels needs one label per survey covariate plus DOY")
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for an abundance run.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    run: RunConfig = Field(default_factory=RunConfig)
    mcmc: MCMCConfig = Field(default_factory=MCMCConfig)
    convergence: ConvergenceConfig = Field(default_factory=ConvergenceConfig)
    jags: JagsConfig = Field(default_factory=JagsConfig)
    survey_area: SurveyAreaConfig = Field(default_factory=SurveyAreaConfig)
    acoustic: AcousticConfig = Field(default_factory=AcousticConfig)
    point_count: PointCountConfig = Field(default_factory=PointCountConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    elif config_path:
        raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        logger.warning("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    if env_seed := os.environ.get("NOBO_SEED"):
        config_data.setdefault("run", {})["seed"] = int(env_seed)
    if env_out := os.environ.get("NOBO_OUTPUT_DIR"):
        config_data.setdefault("run", {})["output_dir"] = env_out

    if env_jags := os.environ.get("NOBO_JAGS_PATH"):
        config_data.setdefault("jags", {})["executable"] = env_jags

    if env_chains := os.environ.get("NOBO_MCMC_CHAINS"):
        config_data.setdefault("mcmc", {})["n_chains"] = int(env_chains)
    if env_frac := os.environ.get("NOBO_CORE_FRACTION"):
        config_data.setdefault("mcmc", {})["core_fraction"] = float(env_frac)

    if env_log := os.environ.get("NOBO_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
