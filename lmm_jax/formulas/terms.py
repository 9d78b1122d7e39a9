"""
Formula term representations for lmm-jax.

Defines the fixed-effect terms and grouping factors that make up a model
specification.
"""

from abc import ABC, abstractmethod
from typing import Set, Optional, Tuple
from dataclasses import dataclass
from enum import Enum

from ..core.exceptions import ModelSpecificationError


class TermType(str, Enum):
    """Types of formula terms."""

    INTERCEPT = "intercept"
    VARIABLE = "variable"
    INTERACTION = "interaction"
    GROUPING = "grouping"


@dataclass(frozen=True)
class Term(ABC):
    """Abstract base class for formula terms."""

    @property
    @abstractmethod
    def term_type(self) -> TermType:
        pass

    @abstractmethod
    def get_variable_names(self) -> Set[str]:
        """Get all variable names used in this term."""
        pass

    @abstractmethod
    def to_string(self) -> str:
        """Convert term to string representation."""
        pass


@dataclass(frozen=True)
class InterceptTerm(Term):
    """Intercept term (constant)."""

    @property
    def term_type(self) -> TermType:
        return TermType.INTERCEPT

    def get_variable_names(self) -> Set[str]:
        return set()

    def to_string(self) -> str:
        return "1"


@dataclass(frozen=True)
class VariableTerm(Term):
    """Main effect of a single column."""

    variable_name: str

    def __post_init__(self):
        if not self.variable_name or not isinstance(self.variable_name, str):
            raise ModelSpecificationError(
                specific_issue=f"invalid variable name: {self.variable_name!r}",
                suggestions=["Variable names must be non-empty strings"],
            )

    @property
    def term_type(self) -> TermType:
        return TermType.VARIABLE

    def get_variable_names(self) -> Set[str]:
        return {self.variable_name}

    def to_string(self) -> str:
        return self.variable_name


@dataclass(frozen=True)
class InteractionTerm(Term):
    """Pairwise interaction between two columns (e.g. taxon:sex)."""

    variables: Tuple[str, str]

    def __post_init__(self):
        variables = tuple(self.variables)
        if len(variables) != 2:
            raise ModelSpecificationError(
                specific_issue=f"interactions must pair exactly two variables, got {list(variables)}",
                suggestions=[
                    "Use format 'var1:var2'",
                    "Split higher-order interactions into pairs",
                ],
            )
        if variables[0] == variables[1]:
            raise ModelSpecificationError(
                specific_issue=f"interaction of '{variables[0]}' with itself",
                suggestions=["Each variable should appear once per interaction"],
            )
        object.__setattr__(self, 'variables', variables)

    @property
    def term_type(self) -> TermType:
        return TermType.INTERACTION

    def get_variable_names(self) -> Set[str]:
        return set(self.variables)

    def to_string(self) -> str:
        return ":".join(self.variables)

    def same_pair(self, other: 'InteractionTerm') -> bool:
        return set(self.variables) == set(other.variables)


@dataclass(frozen=True)
class GroupingFactor(Term):
    """
    Grouping factor contributing independent random effects.

    Identified by its column name and cardinality (number of levels). With
    ``slope`` unset each level gets a random intercept; otherwise each
    level gets a random slope on the continuous ``slope`` column,
    uncorrelated with any intercept of the same column.
    """

    column: str
    slope: Optional[str] = None
    n_levels: Optional[int] = None

    def __post_init__(self):
        if not self.column or not isinstance(self.column, str):
            raise ModelSpecificationError(
                specific_issue=f"invalid grouping column: {self.column!r}",
            )
        if self.slope is not None and self.slope == self.column:
            raise ModelSpecificationError(
                specific_issue=f"random slope on the grouping column '{self.column}' itself",
            )

    @property
    def term_type(self) -> TermType:
        return TermType.GROUPING

    @property
    def term_name(self) -> str:
        """Name of the random-effect term within its group."""
        return self.slope or "(Intercept)"

    @property
    def label(self) -> str:
        """Unique label of this random-effect term."""
        return self.column if self.slope is None else f"{self.column}:{self.slope}"

    def get_variable_names(self) -> Set[str]:
        names = {self.column}
        if self.slope:
            names.add(self.slope)
        return names

    def to_string(self) -> str:
        if self.slope is None:
            return f"(1 | {self.column})"
        return f"(0 + {self.slope} | {self.column})"

    def with_levels(self, n_levels: int) -> 'GroupingFactor':
        return GroupingFactor(self.column, self.slope, int(n_levels))

    def same_term(self, other: 'GroupingFactor') -> bool:
        return self.column == other.column and self.slope == other.slope
