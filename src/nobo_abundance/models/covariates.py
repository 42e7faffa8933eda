"""
Covariate Models
================

Scaled covariate containers and the parameters used to scale them.

Missing cells are NaN everywhere. A NaN means "no survey / no value",
which is different from a z-score of 0 ("exactly average").
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from nobo_abundance.models.schema import ScalingPolicy


@dataclass(frozen=True, slots=True)
class ScalingParams:
    """
    How one covariate was transformed.

    Attributes:
        name: Covariate name
        policy: Scaling policy applied
        mean: Mean of the raw values (zscore only)
        sd: Population standard deviation of the raw values (zscore only)
        levels: Category labels in code order, code = position + 1 (codes only)
    """

    name: str
    policy: ScalingPolicy
    mean: Optional[float] = None
    sd: Optional[float] = None
    levels: Tuple[object, ...] = ()

    def transform(self, raw: np.ndarray) -> np.ndarray:
        """Apply the same transformation to new raw values."""
        raw = np.asarray(raw, dtype=float)
        if self.policy == ScalingPolicy.ZSCORE:
            return (raw - self.mean) / self.sd
        return raw

    def inverse(self, scaled: np.ndarray) -> np.ndarray:
        """Map scaled values back to the raw scale."""
        scaled = np.asarray(scaled, dtype=float)
        if self.policy == ScalingPolicy.ZSCORE:
            return scaled * self.sd + self.mean
        return scaled

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "policy": self.policy.value,
            "mean": self.mean,
            "sd": self.sd,
            "levels": [str(level) for level in self.levels],
        }


@dataclass(frozen=True)
class CovariateMatrix:
    """
    Site-level covariates.

    Attributes:
        values: (S, C) float array
        names: Column names, in column order
        params: Scaling parameters keyed by name
        raw: (S, C) unscaled values (codes for categorical columns)
    """

    values: np.ndarray
    names: Tuple[str, ...]
    params: Dict[str, ScalingParams]
    raw: np.ndarray

    @property
    def n_sites(self) -> int:
        return self.values.shape[0]

    def column(self, name: str) -> np.ndarray:
        return self.values[:, self.names.index(name)]

    def raw_column(self, name: str) -> np.ndarray:
        return self.raw[:, self.names.index(name)]


@dataclass(frozen=True)
class CovariateArray:
    """
    Site x occasion covariates.

    Attributes:
        values: (S, J, C) float array, NaN where no value was recorded
        names: Slice names, in slice order
        params: Scaling parameters keyed by name
    """

    values: np.ndarray
    names: Tuple[str, ...]
    params: Dict[str, ScalingParams]

    def slice(self, name: str) -> np.ndarray:
        return self.values[:, :, self.names.index(name)]

    @property
    def missing_cells(self) -> int:
        return int(np.isnan(self.values).sum())
