"""
Configuration management system for lmm-jax.

Provides a hierarchical configuration system with support for
file-based configuration, environment variables, and runtime updates.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Union, List
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum

from ..core.exceptions import ConfigurationError


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SingularAction(str, Enum):
    """What to do when a fit lands on the boundary of the parameter space."""
    WARN = "warn"
    ERROR = "error"


class DataConfig(BaseModel):
    """Column contract and sentinel values of the observation table."""
    weight_column: str = "weight_g"
    id_column: str = "dlc_id"
    taxon_column: str = "taxon"
    age_column: str = "age_at_wt_mo"
    sex_column: str = "sex"
    pregnancy_column: str = "preg_status"
    age_category_column: Optional[str] = "age_category"

    undetermined_sex: str = "ND"
    male_value: str = "M"
    pregnant_value: str = "P"

    delimiter: Optional[str] = None
    # Upper age bounds in months: juvenile below the first, young adult below the second
    age_category_thresholds: List[float] = Field(default_factory=lambda: [12.0, 36.0])
    age_category_labels: List[str] = Field(
        default_factory=lambda: ["IJ", "young_adult", "adult"]
    )

    @field_validator('age_category_thresholds')
    @classmethod
    def validate_thresholds(cls, v):
        if list(v) != sorted(v):
            raise ValueError("age_category_thresholds must be increasing")
        return v


class ModelConfig(BaseModel):
    """Model fitting configuration."""
    reml: bool = True
    max_iterations: int = 1000
    tolerance: float = 1e-10
    singular_tolerance: float = 1e-4
    on_singular: SingularAction = SingularAction.WARN
    check_male_pregnancy: bool = True

    @field_validator('max_iterations')
    @classmethod
    def validate_max_iterations(cls, v):
        return max(1, v)


class BootstrapConfig(BaseModel):
    """Parametric bootstrap configuration."""
    n_simulations: int = 500
    confidence_level: float = 0.95
    random_seed: Optional[int] = None
    max_workers: Optional[int] = None
    min_success_fraction: float = 0.5
    include_variance_components: bool = False

    @field_validator('confidence_level')
    @classmethod
    def validate_confidence_level(cls, v):
        if not 0 < v < 1:
            raise ValueError("confidence_level must lie strictly between 0 and 1")
        return v

    @field_validator('max_workers', mode='before')
    @classmethod
    def validate_max_workers(cls, v):
        if v is None:
            return 1
        return max(1, int(v))


class ReportConfig(BaseModel):
    """Result table formatting."""
    decimal_precision: int = 3
    export_directory: Optional[Path] = None
    bic_threshold: float = 10.0


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    file_logging: bool = False
    log_file: Optional[Path] = None
    console_logging: bool = True
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator('log_file', mode='before')
    @classmethod
    def validate_log_file(cls, v):
        return Path(v) if v else None

    def resolved_log_file(self) -> Optional[Path]:
        """Log file path, defaulting under the user directory when file logging is on."""
        if self.log_file is not None:
            return self.log_file
        if self.file_logging:
            return Path.home() / ".lmm_jax" / "logs" / "lmm_jax.log"
        return None


class LmmJaxConfig(BaseModel):
    """Main configuration class for lmm-jax."""

    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)

    data: DataConfig = Field(default_factory=DataConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    bootstrap: BootstrapConfig = Field(default_factory=BootstrapConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def __init__(self, config_file: Optional[Union[str, Path]] = None, **kwargs):
        """
        Initialize configuration.

        Args:
            config_file: Path to YAML configuration file
            **kwargs: Override specific configuration sections
        """
        config_data = {}
        if config_file:
            config_data = _load_config_file(config_file)

        for section, values in _load_environment_variables().items():
            config_data.setdefault(section, {}).update(values)

        # Keyword overrides replace single keys, keeping file and env values for the rest
        for section, values in kwargs.items():
            if isinstance(values, BaseModel):
                values = values.model_dump(exclude_unset=True)
            if isinstance(values, dict) and isinstance(config_data.get(section), dict):
                config_data[section] = {**config_data[section], **values}
            else:
                config_data[section] = values

        super().__init__(**config_data)

    def save_config(self, config_file: Union[str, Path]) -> None:
        """Save current configuration to YAML file."""
        config_path = Path(config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode='json'), f, default_flow_style=False, indent=2)

    def update(self, **kwargs) -> None:
        """
        Update configuration values.

        Keys are either section names or dotted ``section.key`` paths.
        """
        for key, value in kwargs.items():
            if '.' in key:
                section, subkey = key.split('.', 1)
                section_obj = getattr(self, section, None)
                if section_obj is None or subkey not in type(section_obj).model_fields:
                    raise ConfigurationError(config_key=key, reason="unknown setting")
                setattr(section_obj, subkey, value)
            elif key in type(self).model_fields:
                setattr(self, key, value)
            else:
                raise ConfigurationError(config_key=key, reason="unknown setting")

    @staticmethod
    def get_user_config_path() -> Path:
        """Get the user's configuration file path."""
        return Path.home() / ".lmm_jax" / "config.yaml"


def _load_config_file(config_file: Union[str, Path]) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path(config_file)
    if not config_path.exists():
        raise ConfigurationError(
            config_key=str(config_path), reason="configuration file not found"
        )

    try:
        with open(config_path, 'r') as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(config_key=str(config_path), reason=str(e)) from e


def _load_environment_variables() -> Dict[str, Dict[str, Any]]:
    """Load configuration from environment variables."""
    config: Dict[str, Dict[str, Any]] = {}

    env_mappings = {
        'LMM_JAX_LOG_LEVEL': ('logging', 'level', str),
        'LMM_JAX_N_SIMULATIONS': ('bootstrap', 'n_simulations', int),
        'LMM_JAX_RANDOM_SEED': ('bootstrap', 'random_seed', int),
        'LMM_JAX_MAX_WORKERS': ('bootstrap', 'max_workers', int),
        'LMM_JAX_DECIMAL_PRECISION': ('report', 'decimal_precision', int),
    }

    for env_var, (section, key, convert) in env_mappings.items():
        value = os.getenv(env_var)
        if value is None:
            continue
        try:
            config.setdefault(section, {})[key] = convert(value)
        except ValueError as e:
            raise ConfigurationError(config_key=env_var, reason=str(e)) from e

    return config


_default_config: Optional[LmmJaxConfig] = None


def get_default_config() -> LmmJaxConfig:
    """Get the default configuration instance, reading the user file if present."""
    global _default_config
    if _default_config is None:
        user_config = LmmJaxConfig.get_user_config_path()
        _default_config = LmmJaxConfig(user_config if user_config.exists() else None)
    return _default_config


def reset_default_config() -> None:
    """Drop the cached default configuration."""
    global _default_config
    _default_config = None
