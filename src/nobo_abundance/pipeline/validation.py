"""
Validation Grid Builder
=======================

Aligns manually validated BirdNET calls with the acoustic detection grid.

Only a subset of sites was validated. Those sites are carried as an explicit
ascending index list (val_sites); the checked / confirmed matrices have one
row per validated site, not one per site.

Consistency rules (all fatal):
    - validated sites lie inside the grid and appear in both tables
    - confirmed <= checked <= detected calls in every cell
    - no negative counts
"""

import logging
from typing import Mapping, Sequence

import numpy as np

from nobo_abundance.errors import InputInconsistencyError
from nobo_abundance.models.grids import DetectionGrids, ValidationGrid
from nobo_abundance.pipeline.arrays import occupied_index


logger = logging.getLogger(__name__)


class ValidationGridBuilder:
    """
    Builds a ValidationGrid from per-site checked / confirmed rows.

    Example:
        builder = ValidationGridBuilder(grids)
        val = builder.build(
            checked={3: [0, 4, 0, ...], 7: [...]},
            confirmed={3: [0, 3, 0, ...], 7: [...]},
        )
    """

    def __init__(self, detections: DetectionGrids) -> None:
        if detections.has_distance:
            raise ValueError("validation grids apply to 2-D acoustic detections")
        self.detections = detections

    def build(
        self,
        checked: Mapping[int, Sequence[float]],
        confirmed: Mapping[int, Sequence[float]],
    ) -> ValidationGrid:
        """
        Raises:
            InputInconsistencyError: If the tables disagree with each other or
                with the detection grid
        """
        n_sites = self.detections.n_sites
        n_occasions = self.detections.n_occasions

        if set(checked) != set(confirmed):
            raise InputInconsistencyError(
                f"validated site lists differ: checked={sorted(checked)}, confirmed={sorted(confirmed)}"
            )
        val_sites = np.array(sorted(checked), dtype=np.int64)
        for site in val_sites:
            if not 1 <= site <= n_sites:
                raise InputInconsistencyError(f"validated site {site} outside [1..{n_sites}]")

        n = self._stack(checked, val_sites, n_occasions, "checked")
        k = self._stack(confirmed, val_sites, n_occasions, "confirmed")

        if (k > n).any():
            s, j = np.argwhere(k > n)[0]
            raise InputInconsistencyError(
                f"site {val_sites[s]}, occasion {j + 1}: more calls confirmed than checked"
            )

        detected = self.detections.counts[val_sites - 1] if val_sites.size else np.zeros((0, n_occasions))
        if (n > detected).any():
            s, j = np.argwhere(n > detected)[0]
            raise InputInconsistencyError(
                f"site {val_sites[s]}, occasion {j + 1}: {n[s, j]} calls checked "
                f"but only {detected[s, j]} detected"
            )

        grid = ValidationGrid(
            val_sites=val_sites,
            checked=n,
            confirmed=k,
            val_times=occupied_index(n) if val_sites.size else np.zeros((0, 0), dtype=np.int64),
            n_val_occasions=(n > 0).sum(axis=1),
        )
        logger.info(f"Validation grid built: {grid.to_dict()}")
        return grid

    @staticmethod
    def _stack(
        rows: Mapping[int, Sequence[float]],
        val_sites: np.ndarray,
        n_occasions: int,
        label: str,
    ) -> np.ndarray:
        out = np.zeros((val_sites.size, n_occasions), dtype=np.int64)
        for i, site in enumerate(val_sites):
            row = np.asarray(rows[int(site)], dtype=float)
            if row.shape != (n_occasions,):
                raise InputInconsistencyError(
                    f"{label} row for site {site} has {row.size} occasions, expected {n_occasions}"
                )
            # Unchecked occasions may be blank in the source tables.
            row = np.nan_to_num(row, nan=0.0)
            if (row < 0).any() or not np.all(np.mod(row, 1) == 0):
                raise InputInconsistencyError(f"{label} row for site {site} must hold non-negative integers")
            out[i] = row.astype(np.int64)
        return out
