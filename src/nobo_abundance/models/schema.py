"""
Table Schema Models
===================

Explicit column declarations for every input table.

Each column is declared with a name, a semantic type and a scaling policy.
Tables are validated against their schema when loaded, so a renamed or
missing column fails the run immediately instead of surfacing later as a
shape error inside the sampler.

Example:
    schema = TableSchema(
        name="weather",
        columns=[
            ColumnSpec(name="Date", kind=SemanticType.DATE),
            ColumnSpec(name="Temp_degF", kind=SemanticType.CONTINUOUS,
                       scaling=ScalingPolicy.ZSCORE),
        ],
    )
    schema.validate_columns(["Date", "Temp_degF"])
"""

from enum import Enum
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator, model_validator

from nobo_abundance.errors import SchemaError


class SemanticType(str, Enum):
    """
    What a column means.

    Attributes:
        IDENTIFIER: Site or survey number
        DATE: Calendar date
        CONTINUOUS: Real-valued covariate
        CATEGORICAL: Coded or labelled covariate
        METADATA: Declared but not consumed by the model
    """

    IDENTIFIER = "identifier"
    DATE = "date"
    CONTINUOUS = "continuous"
    CATEGORICAL = "categorical"
    METADATA = "metadata"


class ScalingPolicy(str, Enum):
    """
    How a covariate column is transformed before it enters the bundle.

    Attributes:
        NONE: Passed through as a float
        ZSCORE: (x - mean) / population sd over the current run
        CODES: Lexically ordered 1-based integer codes
    """

    NONE = "none"
    ZSCORE = "zscore"
    CODES = "codes"


class ColumnSpec(BaseModel):
    """One declared column."""

    name: str = Field(..., min_length=1, description="Column header in the input file")
    kind: SemanticType = Field(..., description="Semantic type of the column")
    scaling: ScalingPolicy = Field(default=ScalingPolicy.NONE, description="Scaling policy")
    required: bool = Field(default=True, description="Must be present in the file")

    @model_validator(mode="after")
    def check_policy(self) -> "ColumnSpec":
        if self.scaling == ScalingPolicy.ZSCORE and self.kind != SemanticType.CONTINUOUS:
            raise ValueError(f"{self.name}: zscore scaling needs a continuous column")
        if self.scaling == ScalingPolicy.CODES and self.kind != SemanticType.CATEGORICAL:
            raise ValueError(f"{self.name}: code scaling needs a categorical column")
        return self

    @property
    def is_covariate(self) -> bool:
        return self.kind in (SemanticType.CONTINUOUS, SemanticType.CATEGORICAL)


class TableSchema(BaseModel):
    """
    Declared layout of one input table.

    Attributes:
        name: Label used in error messages
        columns: Declared columns, in model order
        allow_extra: Accept undeclared columns (they are dropped on load)
    """

    name: str = Field(..., description="Table label")
    columns: List[ColumnSpec] = Field(..., min_length=1)
    allow_extra: bool = Field(default=False)

    @field_validator("columns")
    @classmethod
    def unique_names(cls, v: List[ColumnSpec]) -> List[ColumnSpec]:
        names = [c.name for c in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate column declarations: {duplicates}")
        return v

    def column(self, name: str) -> ColumnSpec:
        for spec in self.columns:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def identifier_column(self) -> Optional[ColumnSpec]:
        """First declared identifier column, if any."""
        for spec in self.columns:
            if spec.kind == SemanticType.IDENTIFIER:
                return spec
        return None

    def covariate_columns(self) -> List[ColumnSpec]:
        """Continuous and categorical columns, in declared order."""
        return [c for c in self.columns if c.is_covariate]

    def validate_columns(self, present: Sequence[str]) -> List[str]:
        """
        Check a table header against the schema.

        Args:
            present: Column names found in the file

        Returns:
            Undeclared columns that will be dropped (empty unless allow_extra)

        Raises:
            SchemaError: If a required column is missing, or an undeclared
                column is present and allow_extra is False
        """
        present_set = set(present)
        declared = {c.name for c in self.columns}

        missing = [c.name for c in self.columns if c.required and c.name not in present_set]
        if missing:
            raise SchemaError(f"{self.name}: missing columns {missing}")

        extra = [name for name in present if name not in declared]
        if extra and not self.allow_extra:
            raise SchemaError(f"{self.name}: undeclared columns {extra}")
        return extra
