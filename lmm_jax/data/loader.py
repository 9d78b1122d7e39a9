"""
Dataset loader for lmm-jax.

Reads delimited files of per-observation animal records and enforces the
column contract described by ``DataConfig``.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pandas as pd

from ..config.settings import DataConfig, get_default_config
from ..core.exceptions import DataUnavailable, SchemaMismatch
from ..utils.logging import get_logger
from ..utils.validation import validate_columns_present


logger = get_logger(__name__)

_DELIMITERS = {
    '.csv': ',',
    '.tsv': '\t',
    '.tab': '\t',
}


@dataclass(frozen=True)
class ObservationSchema:
    """Column-name contract of an observation table."""
    weight_column: str
    id_column: str
    taxon_column: str
    age_column: str
    sex_column: str
    pregnancy_column: str
    age_category_column: Optional[str] = None

    @classmethod
    def from_config(cls, config: Optional[DataConfig] = None) -> 'ObservationSchema':
        config = config or get_default_config().data
        return cls(
            weight_column=config.weight_column,
            id_column=config.id_column,
            taxon_column=config.taxon_column,
            age_column=config.age_column,
            sex_column=config.sex_column,
            pregnancy_column=config.pregnancy_column,
            age_category_column=config.age_category_column,
        )

    @property
    def numeric_columns(self) -> Tuple[str, ...]:
        return (self.weight_column, self.age_column)

    @property
    def categorical_columns(self) -> Tuple[str, ...]:
        return (
            self.id_column,
            self.taxon_column,
            self.sex_column,
            self.pregnancy_column,
        )

    @property
    def required_columns(self) -> Tuple[str, ...]:
        return self.numeric_columns + self.categorical_columns

    def optional_columns(self, table: pd.DataFrame) -> List[str]:
        """Optional schema columns actually present in ``table``."""
        if self.age_category_column and self.age_category_column in table.columns:
            return [self.age_category_column]
        return []

    def coerce(self, table: pd.DataFrame) -> pd.DataFrame:
        """
        Return a copy of ``table`` with schema columns converted to their types.

        Numeric columns become float; categorical columns become strings with
        missing values left missing.

        Raises:
            SchemaMismatch: If a required column is missing or a numeric
                column holds values that are not numbers
        """
        validate_columns_present(table, self.required_columns)

        result = table.copy()
        invalid: Dict[str, str] = {}

        for col in self.numeric_columns:
            converted = pd.to_numeric(result[col], errors='coerce')
            bad = converted.isna() & result[col].notna()
            if bad.any():
                examples = result.loc[bad, col].astype(str).unique()[:3].tolist()
                invalid[col] = f"holds {int(bad.sum())} non-numeric values (e.g. {examples})"
            result[col] = converted.astype(float)

        if invalid:
            raise SchemaMismatch(invalid_columns=invalid)

        for col in list(self.categorical_columns) + self.optional_columns(result):
            values = result[col]
            result[col] = values.where(values.isna(), values.astype(str)).astype(object)

        return result

    def validate(self, table: pd.DataFrame) -> None:
        """
        Check value ranges of a coerced table.

        Raises:
            SchemaMismatch: On non-positive weights or negative ages
        """
        invalid: Dict[str, str] = {}

        weights = table[self.weight_column]
        n_bad_weight = int((weights <= 0).sum())
        if n_bad_weight:
            invalid[self.weight_column] = f"holds {n_bad_weight} non-positive weights"

        ages = table[self.age_column]
        n_bad_age = int((ages < 0).sum())
        if n_bad_age:
            invalid[self.age_column] = f"holds {n_bad_age} negative ages"

        if invalid:
            raise SchemaMismatch(invalid_columns=invalid)


def _resolve_delimiter(file_path: Path, delimiter: Optional[str]) -> Optional[str]:
    if delimiter is not None:
        return delimiter
    return _DELIMITERS.get(file_path.suffix.lower())


def load_data(
    file_path: Union[str, Path],
    config: Optional[DataConfig] = None,
    **kwargs
) -> pd.DataFrame:
    """
    Load an observation table from a delimited file.

    Args:
        file_path: Path to data file
        config: Column contract (defaults to the global configuration)
        **kwargs: Additional arguments for pandas.read_csv

    Returns:
        Table with one row per observation and typed schema columns

    Raises:
        DataUnavailable: If the file is missing, unreadable or empty
        SchemaMismatch: If columns are missing or hold values of the wrong type
    """
    config = config or get_default_config().data
    schema = ObservationSchema.from_config(config)
    file_path = Path(file_path)

    if not file_path.exists():
        raise DataUnavailable(path=str(file_path))
    if not file_path.is_file():
        raise DataUnavailable(path=str(file_path), reason="path is not a file")

    delimiter = _resolve_delimiter(file_path, config.delimiter)
    read_kwargs = {'sep': delimiter} if delimiter else {'sep': None, 'engine': 'python'}
    read_kwargs.update(kwargs)

    try:
        # Read identifiers as text so codes like "0005" keep their leading zeros
        header = pd.read_csv(file_path, nrows=0, **read_kwargs)
        dtype_dict = dict(read_kwargs.pop('dtype', None) or {})
        for col in schema.categorical_columns:
            if col in header.columns:
                dtype_dict.setdefault(col, str)

        data = pd.read_csv(file_path, dtype=dtype_dict, **read_kwargs)
    except pd.errors.EmptyDataError as e:
        raise DataUnavailable(path=str(file_path), reason="file is empty") from e
    except (pd.errors.ParserError, UnicodeDecodeError, OSError) as e:
        raise DataUnavailable(path=str(file_path), reason=f"failed to parse file: {e}") from e

    if data.empty:
        raise DataUnavailable(path=str(file_path), reason="file contains no rows")

    data = schema.coerce(data)
    schema.validate(data)

    logger.info(
        f"Loaded {len(data)} observations from {file_path.name}",
        individuals=data[schema.id_column].nunique(),
        taxa=data[schema.taxon_column].nunique(),
    )

    return data

