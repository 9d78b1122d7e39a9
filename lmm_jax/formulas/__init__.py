"""
Model specification system for lmm-jax.

Provides specification objects, lme4-style formula parsing and design
matrix construction for linear mixed models.
"""

from .terms import (
    Term,
    TermType,
    InterceptTerm,
    VariableTerm,
    InteractionTerm,
    GroupingFactor,
)
from .spec import ModelSpecification, build_specification, find_unsupported_interactions
from .parser import FormulaParser, parse_formula
from .design_matrix import (
    DesignMatrices,
    DesignMatrixBuilder,
    RandomEffectBlock,
    build_design_matrices,
    validate_design_matrix,
)

__all__ = [
    "Term",
    "TermType",
    "InterceptTerm",
    "VariableTerm",
    "InteractionTerm",
    "GroupingFactor",
    "ModelSpecification",
    "build_specification",
    "find_unsupported_interactions",
    "FormulaParser",
    "parse_formula",
    "DesignMatrices",
    "DesignMatrixBuilder",
    "RandomEffectBlock",
    "build_design_matrices",
    "validate_design_matrix",
]
