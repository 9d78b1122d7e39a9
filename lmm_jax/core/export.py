"""
Core export functionality for lmm-jax.

Rounds result tables to a fixed precision and optionally writes them to CSV.
"""

from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np
import pandas as pd

from ..config.settings import get_default_config
from ..inference.diagnostics import ModelComparisonResult
from ..inference.uncertainty import BootstrapResult
from ..models.base import FittedModel
from ..utils.logging import get_logger


logger = get_logger(__name__)


class ResultsExporter:
    """
    Results export functionality for lmm-jax models.

    Produces coefficient, variance-component, confidence-interval, summary
    and comparison tables with numeric columns rounded to
    ``decimal_precision`` places.
    """

    def __init__(
        self,
        decimal_precision: Optional[int] = None,
        export_directory: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize results exporter.

        Args:
            decimal_precision: Number of decimal places for numeric values
            export_directory: Directory for CSV output; nothing is written without one
        """
        report_config = get_default_config().report
        self.decimal_precision = (
            report_config.decimal_precision if decimal_precision is None else decimal_precision
        )
        directory = export_directory if export_directory is not None else report_config.export_directory
        self.export_directory = Path(directory) if directory is not None else None

    def round_table(self, table: pd.DataFrame) -> pd.DataFrame:
        """Copy of ``table`` with numeric columns rounded."""
        result = table.copy()
        numeric_columns = result.select_dtypes(include=[np.number]).columns
        result[numeric_columns] = result[numeric_columns].round(self.decimal_precision)
        return result

    def coefficient_table(self, model: FittedModel) -> pd.DataFrame:
        return self.round_table(model.coefficients)

    def variance_component_table(self, model: FittedModel) -> pd.DataFrame:
        return self.round_table(model.variance_components)

    def ci_table(
        self,
        result: Union[BootstrapResult, pd.DataFrame],
        confidence_level: Optional[float] = None,
    ) -> pd.DataFrame:
        if isinstance(result, BootstrapResult):
            table = result.confidence_intervals(confidence_level)
        else:
            table = result
        return self.round_table(table)

    def comparison_table(self, comparison: ModelComparisonResult) -> pd.DataFrame:
        """
        Information-criteria table sorted by AIC with Akaike weights.

        Returns:
            Comparison table with rank, deltas and AIC weights
        """
        table = comparison.table
        relative_likelihood = np.exp(-0.5 * table['delta_aic'])
        table['aic_weight'] = relative_likelihood / relative_likelihood.sum()
        table.insert(0, 'rank', range(1, len(table) + 1))
        return self.round_table(table)

    def export_table(self, table: pd.DataFrame, name: str) -> Optional[Path]:
        """
        Write a rounded table to ``<export_directory>/<name>.csv``.

        Returns:
            Path written, or None when no export directory is configured
        """
        if self.export_directory is None:
            return None
        self.export_directory.mkdir(parents=True, exist_ok=True)
        export_path = self.export_directory / f"{name}.csv"
        self.round_table(table).to_csv(export_path, index=False)
        logger.info(f"Results exported to: {export_path}")
        return export_path

    def export_tables(self, tables: Dict[str, pd.DataFrame]) -> Dict[str, Path]:
        """Write several named tables; returns the paths written."""
        written = {}
        for name, table in tables.items():
            path = self.export_table(table, name)
            if path is not None:
                written[name] = path
        return written

