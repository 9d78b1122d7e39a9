"""
Exception classes for lmm-jax.

Provides rich error information with actionable suggestions.
"""

from typing import List, Optional, Dict, Any


class LmmJaxError(Exception):
    """
    Base exception class for lmm-jax with rich error information.

    Carries suggestions for resolution, a short error code and a context
    dictionary describing the failing input.
    """

    def __init__(
        self,
        message: str,
        suggestions: Optional[List[str]] = None,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.suggestions = suggestions or []
        self.error_code = error_code
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error message with suggestions."""
        message = super().__str__()

        if self.error_code:
            message = f"[{self.error_code}] {message}"

        if self.suggestions:
            message += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                message += f"\n  {i}. {suggestion}"

        return message


class DataUnavailable(LmmJaxError):
    """Input file missing, unreadable or empty."""

    def __init__(
        self,
        path: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs
    ):
        if path and reason:
            message = f"Data unavailable at {path}: {reason}"
        elif path:
            message = f"Data file not found: {path}"
        else:
            message = f"Data unavailable: {reason or 'unknown reason'}"

        suggestions = kwargs.pop('suggestions', None) or [
            "Check the file path and name",
            "Ensure the file exists and is readable",
            "Verify the delimiter and encoding of the file",
        ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="DATA_UNAVAILABLE",
            context={"path": path, "reason": reason},
            **kwargs
        )


class SchemaMismatch(LmmJaxError):
    """Expected column absent or holding values of the wrong type."""

    def __init__(
        self,
        missing_columns: Optional[List[str]] = None,
        invalid_columns: Optional[Dict[str, str]] = None,
        available_columns: Optional[List[str]] = None,
        **kwargs
    ):
        problems = []
        if missing_columns:
            problems.append(f"missing columns {sorted(missing_columns)}")
        if invalid_columns:
            problems.extend(
                f"column '{col}' {issue}" for col, issue in invalid_columns.items()
            )
        message = "Schema mismatch: " + ("; ".join(problems) or "unknown issue")

        suggestions = kwargs.pop('suggestions', None) or []
        if missing_columns and available_columns:
            suggestions.append(f"Available columns: {', '.join(available_columns)}")
        suggestions.extend([
            "Configure column names through DataConfig",
            "Check numeric columns for stray text values",
        ])

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="SCHEMA",
            context={
                "missing_columns": missing_columns,
                "invalid_columns": invalid_columns,
                "available_columns": available_columns,
            },
            **kwargs
        )


class NoData(LmmJaxError):
    """An aggregation or filter has no rows to work with."""

    def __init__(
        self,
        operation: Optional[str] = None,
        group: Optional[Any] = None,
        **kwargs
    ):
        if operation and group is not None:
            message = f"No data for group {group} in {operation}"
        elif operation:
            message = f"No data available for {operation}"
        else:
            message = "No data available"

        suggestions = kwargs.pop('suggestions', None) or [
            "Check the filters applied before this step",
            "Verify taxon codes and sentinel values in the configuration",
        ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="NO_DATA",
            context={"operation": operation, "group": group},
            **kwargs
        )


class ModelSpecificationError(LmmJaxError):
    """Exception raised for model specification issues."""

    def __init__(
        self,
        formula: Optional[str] = None,
        available_columns: Optional[List[str]] = None,
        missing_columns: Optional[List[str]] = None,
        specific_issue: Optional[str] = None,
        error_code: str = "MODEL_SPEC",
        **kwargs
    ):
        if missing_columns:
            message = f"Missing columns in model '{formula}': {sorted(missing_columns)}"
            suggestions = [
                "Check column spelling and case sensitivity",
                "Ensure all required data columns are present",
            ]
            if available_columns:
                suggestions.insert(0, f"Available columns: {', '.join(sorted(available_columns))}")
        elif specific_issue:
            message = f"Model specification issue: {specific_issue}"
            suggestions = [
                "Check the fixed effects, interactions and grouping factors",
                "See parse_formula() for the supported formula syntax",
            ]
        elif formula:
            message = f"Invalid model specification: {formula}"
            suggestions = [
                "Check formula syntax (e.g. 'weight_g ~ taxon + sex + (1 | dlc_id)')",
                "Interactions must pair two distinct variables",
                "At least one grouping factor is required",
            ]
        else:
            message = "Model specification error"
            suggestions = [
                "Check your model specification",
                "Verify all columns exist in your data",
            ]

        suggestions = kwargs.pop('suggestions', None) or suggestions
        context = {
            "formula": formula,
            "missing_columns": missing_columns,
            "available_columns": available_columns,
        }
        context.update(kwargs.pop('context', None) or {})

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code=error_code,
            context=context,
            **kwargs
        )


class SingularFit(ModelSpecificationError):
    """Random-effect structure cannot be identified from the data."""

    def __init__(
        self,
        grouping_factor: Optional[str] = None,
        n_levels: Optional[int] = None,
        n_obs: Optional[int] = None,
        reason: Optional[str] = None,
        **kwargs
    ):
        if reason is None:
            if n_levels is not None and n_levels < 2:
                reason = f"has {n_levels} level(s), at least 2 are required"
            elif n_levels is not None and n_obs is not None:
                reason = f"has {n_levels} levels for {n_obs} observations"
            else:
                reason = "is not identifiable"

        super().__init__(
            specific_issue=f"grouping factor '{grouping_factor}' {reason}",
            error_code="SINGULAR_FIT",
            suggestions=kwargs.pop('suggestions', None) or [
                f"Remove '{grouping_factor}' from the grouping factors",
                "Check the filters applied before fitting",
                "Fit an alternative specification with fewer random effects",
            ],
            context={
                "grouping_factor": grouping_factor,
                "n_levels": n_levels,
                "n_obs": n_obs,
            },
            **kwargs
        )


class RankDeficient(ModelSpecificationError):
    """Fixed-effect design matrix is collinear."""

    def __init__(
        self,
        collinear_columns: Optional[List[str]] = None,
        rank: Optional[int] = None,
        n_columns: Optional[int] = None,
        **kwargs
    ):
        issue = "fixed-effect design is rank deficient"
        if rank is not None and n_columns is not None:
            issue += f" (rank {rank} < {n_columns} columns)"
        if collinear_columns:
            issue += f"; collinear columns: {collinear_columns}"

        super().__init__(
            specific_issue=issue,
            error_code="RANK_DEFICIENT",
            suggestions=kwargs.pop('suggestions', None) or [
                "Build the specification with build_specification() to drop "
                "interactions without data support",
                "Remove redundant predictors",
                "Check for categorical levels present only in one group",
            ],
            context={
                "collinear_columns": collinear_columns,
                "rank": rank,
                "n_columns": n_columns,
            },
            **kwargs
        )


class OptimizationError(LmmJaxError):
    """Exception raised for optimization failures."""

    def __init__(
        self,
        optimizer: Optional[str] = None,
        reason: Optional[str] = None,
        iterations: Optional[int] = None,
        **kwargs
    ):
        if optimizer and reason:
            message = f"Optimization failed with {optimizer}: {reason}"
        elif reason:
            message = f"Optimization failed: {reason}"
        elif optimizer:
            message = f"Optimization failed with {optimizer}"
        else:
            message = "Optimization failed to converge"

        suggestions = kwargs.pop('suggestions', None) or [
            "Increase maximum iterations",
            "Simplify the random-effect structure",
            "Rescale continuous predictors",
        ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="OPTIMIZATION",
            context={
                "optimizer": optimizer,
                "reason": reason,
                "iterations": iterations,
            },
            **kwargs
        )


class ValidationError(LmmJaxError):
    """Exception raised for invalid arguments or failed checks."""

    def __init__(
        self,
        message: Optional[str] = None,
        failed_checks: Optional[List[str]] = None,
        error_code: str = "VALIDATION",
        **kwargs
    ):
        if message is None:
            if failed_checks:
                message = f"Validation failed: {', '.join(failed_checks)}"
            else:
                message = "Validation checks failed"

        suggestions = kwargs.pop('suggestions', None) or [
            "Check the argument values",
            "Review the function documentation",
        ]
        context = {"failed_checks": failed_checks}
        context.update(kwargs.pop('context', None) or {})

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code=error_code,
            context=context,
            **kwargs
        )


class DataQualityError(ValidationError):
    """Exception raised when the data violates a modelling assumption."""

    def __init__(self, quality_issues: Optional[List[str]] = None, **kwargs):
        if quality_issues:
            message = f"Data quality issues detected: {'; '.join(quality_issues)}"
        else:
            message = "Data quality validation failed"

        suggestions = kwargs.pop('suggestions', None) or [
            "Inspect the offending records in the input file",
            "Correct or remove inconsistent records before modelling",
        ]

        super().__init__(
            message=message,
            failed_checks=quality_issues,
            error_code="DATA_QUALITY",
            suggestions=suggestions,
            **kwargs
        )


class ConfigurationError(LmmJaxError):
    """Exception raised for configuration issues."""

    def __init__(self, config_key: Optional[str] = None, reason: Optional[str] = None, **kwargs):
        if config_key:
            message = f"Invalid configuration for '{config_key}'"
        else:
            message = "Configuration error"
        if reason:
            message += f": {reason}"

        suggestions = kwargs.pop('suggestions', None) or [
            "Check configuration file syntax",
            "Check environment variable formatting",
            "Use lmm_jax.get_config() to inspect current settings",
        ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="CONFIG",
            context={"config_key": config_key, "reason": reason},
            **kwargs
        )
