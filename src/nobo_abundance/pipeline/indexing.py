"""
Index Resolver
==============

Maps 1-based (site, occasion, distance bin) labels onto fixed grid coordinates.

Point-count detections are stored as a site x (occasion, distance bin) matrix
whose columns interleave distance bins within occasions:

    column = (occasion - 1) * D + distance_bin        (1-based)

The model wants a site x distance bin x occasion array instead, so the
resolver also folds that matrix into three axes and back.
"""

import logging
import numbers
from typing import Optional, Tuple

import numpy as np

from nobo_abundance.errors import InputInconsistencyError


logger = logging.getLogger(__name__)


def as_index(value: object, name: str) -> int:
    """
    Coerce an identifier cell to int.

    Accepts ints and integral floats (pandas reads integer columns holding
    NaN as float). Anything else is an input inconsistency.
    """
    if isinstance(value, bool):
        raise InputInconsistencyError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real) and float(value).is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise InputInconsistencyError(f"{name} must be an integer, got {value!r}")


class GridIndexResolver:
    """
    Bounds-checked mapping from record labels to array coordinates.

    Attributes:
        n_sites: Number of sites (S)
        n_occasions: Number of occasions (J)
        n_distance_bins: Number of distance bins (D), or None

    Example:
        resolver = GridIndexResolver(n_sites=10, n_occasions=4, n_distance_bins=4)
        resolver.flatten(2, 3)      # -> 7
        resolver.unflatten(7)       # -> (2, 3)
    """

    def __init__(
        self,
        n_sites: int,
        n_occasions: int,
        n_distance_bins: Optional[int] = None,
    ) -> None:
        if n_sites < 1:
            raise ValueError("n_sites must be >= 1")
        if n_occasions < 1:
            raise ValueError("n_occasions must be >= 1")
        if n_distance_bins is not None and n_distance_bins < 1:
            raise ValueError("n_distance_bins must be >= 1")

        self.n_sites = n_sites
        self.n_occasions = n_occasions
        self.n_distance_bins = n_distance_bins

    @property
    def has_distance(self) -> bool:
        return self.n_distance_bins is not None

    def check_site(self, site_id: int) -> int:
        if not 1 <= site_id <= self.n_sites:
            raise InputInconsistencyError(
                f"site {site_id} outside declared grid [1..{self.n_sites}]"
            )
        return site_id

    def check_occasion(self, occasion_id: int) -> int:
        if not 1 <= occasion_id <= self.n_occasions:
            raise InputInconsistencyError(
                f"occasion {occasion_id} outside declared grid [1..{self.n_occasions}]"
            )
        return occasion_id

    def check_distance_bin(self, distance_bin: int) -> int:
        if self.n_distance_bins is None:
            raise InputInconsistencyError("grid has no distance axis")
        if not 1 <= distance_bin <= self.n_distance_bins:
            raise InputInconsistencyError(
                f"distance bin {distance_bin} outside declared grid [1..{self.n_distance_bins}]"
            )
        return distance_bin

    def resolve(
        self,
        site_id: int,
        occasion_id: int,
        distance_bin: Optional[int] = None,
    ) -> Tuple[int, ...]:
        """
        Resolve 1-based labels to 0-based array coordinates.

        Returns:
            (site, occasion) for 2-D grids, (site, distance_bin, occasion)
            for 3-D grids.

        Raises:
            InputInconsistencyError: If any label falls outside the grid
        """
        s = self.check_site(site_id) - 1
        j = self.check_occasion(occasion_id) - 1
        if self.n_distance_bins is None:
            if distance_bin is not None:
                raise InputInconsistencyError("distance bin given for a grid without distance axis")
            return s, j
        if distance_bin is None:
            raise InputInconsistencyError("distance bin required for a 3-D grid")
        d = self.check_distance_bin(distance_bin) - 1
        return s, d, j

    def flatten(self, occasion_id: int, distance_bin: int) -> int:
        """1-based flattened column for an (occasion, distance bin) pair."""
        self.check_occasion(occasion_id)
        self.check_distance_bin(distance_bin)
        return (occasion_id - 1) * self.n_distance_bins + distance_bin

    def unflatten(self, column: int) -> Tuple[int, int]:
        """Inverse of flatten."""
        if self.n_distance_bins is None:
            raise InputInconsistencyError("grid has no distance axis")
        n_columns = self.n_occasions * self.n_distance_bins
        if not 1 <= column <= n_columns:
            raise InputInconsistencyError(f"column {column} outside [1..{n_columns}]")
        occasion, remainder = divmod(column - 1, self.n_distance_bins)
        return occasion + 1, remainder + 1

    def fold_flat_matrix(self, matrix: np.ndarray) -> np.ndarray:
        """
        Fold a site x (J * D) matrix into a site x D x J array.

        Raises:
            InputInconsistencyError: If the matrix does not have S rows and J * D columns
        """
        if self.n_distance_bins is None:
            raise InputInconsistencyError("grid has no distance axis")
        expected = (self.n_sites, self.n_occasions * self.n_distance_bins)
        if matrix.shape != expected:
            raise InputInconsistencyError(
                f"flattened matrix has shape {matrix.shape}, expected {expected}"
            )
        folded = matrix.reshape(self.n_sites, self.n_occasions, self.n_distance_bins)
        return np.ascontiguousarray(folded.transpose(0, 2, 1))

    def flatten_grid(self, grid: np.ndarray) -> np.ndarray:
        """Inverse of fold_flat_matrix."""
        expected = (self.n_sites, self.n_distance_bins, self.n_occasions)
        if grid.shape != expected:
            raise InputInconsistencyError(f"grid has shape {grid.shape}, expected {expected}")
        return np.ascontiguousarray(grid.transpose(0, 2, 1)).reshape(
            self.n_sites, self.n_occasions * self.n_distance_bins
        )
