"""
lmm-jax: Linear mixed models of animal body weight using JAX

Loads per-observation weight records, summarises them, fits REML/ML linear
mixed models with JAX-differentiated profiled deviances, and compares
candidate models by parametric bootstrap intervals and information criteria.
"""

__version__ = "0.1.0"

# Data loading and exploratory summaries
from .data import (
    load_data,
    filter_by_taxon,
    filter_valid_sex,
    per_individual_max,
    check_no_cooccurrence,
    derive_age_category,
    count_by_group,
    mean_of_max_by_group,
    rank_predictors,
)

# Model specification
from .formulas import ModelSpecification, build_specification, parse_formula

# Models
from .models import LinearMixedModel, FittedModel

# Comparison
from .inference import (
    BootstrapResult,
    parametric_bootstrap_ci,
    compare_interval_widths,
    compare_models,
)

# Configuration
from .config.settings import LmmJaxConfig, get_default_config

# High-level API
from .core.api import fit_model, fit_candidates, candidate_specifications, run_analysis, AnalysisReport
from .core.export import ResultsExporter

# Import key exception classes
from .core.exceptions import (
    LmmJaxError,
    DataUnavailable,
    SchemaMismatch,
    NoData,
    ModelSpecificationError,
    SingularFit,
    RankDeficient,
    OptimizationError,
    DataQualityError,
)

__all__ = [
    "__version__",

    # Data
    "load_data",
    "filter_by_taxon",
    "filter_valid_sex",
    "per_individual_max",
    "check_no_cooccurrence",
    "derive_age_category",
    "count_by_group",
    "mean_of_max_by_group",
    "rank_predictors",

    # Model specification
    "ModelSpecification",
    "build_specification",
    "parse_formula",

    # Models
    "LinearMixedModel",
    "FittedModel",

    # Comparison
    "BootstrapResult",
    "parametric_bootstrap_ci",
    "compare_interval_widths",
    "compare_models",

    # Configuration
    "LmmJaxConfig",
    "get_config",
    "configure",

    # High-level API
    "fit_model",
    "fit_candidates",
    "candidate_specifications",
    "run_analysis",
    "AnalysisReport",
    "ResultsExporter",

    # Exceptions
    "LmmJaxError",
    "DataUnavailable",
    "SchemaMismatch",
    "NoData",
    "ModelSpecificationError",
    "SingularFit",
    "RankDeficient",
    "OptimizationError",
    "DataQualityError",
]


def get_config() -> LmmJaxConfig:
    """Get the global configuration instance."""
    return get_default_config()


def configure(**kwargs) -> None:
    """
    Update global configuration.

    Examples:
        >>> configure(**{"bootstrap.n_simulations": 200, "model.reml": False})
    """
    get_config().update(**kwargs)
