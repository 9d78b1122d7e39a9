"""Configuration management for lmm-jax."""

from .settings import (
    LmmJaxConfig,
    DataConfig,
    ModelConfig,
    BootstrapConfig,
    ReportConfig,
    LoggingConfig,
    get_default_config,
)

__all__ = [
    "LmmJaxConfig",
    "DataConfig",
    "ModelConfig",
    "BootstrapConfig",
    "ReportConfig",
    "LoggingConfig",
    "get_default_config",
]
