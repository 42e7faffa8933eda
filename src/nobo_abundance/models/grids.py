"""
Grid Models
===========

Dense arrays derived from detection records.

All occasion and site numbers stored *inside* these arrays are 1-based, so
they can be handed to the model unchanged. Array positions are 0-based as
usual in numpy.
"""

from dataclasses import dataclass
from typing import Dict, List

import numpy as np


# Padding value for fixed-width index arrays; converted to NA for the engine.
UNSET = -1


@dataclass(frozen=True)
class DetectionGrids:
    """
    Detection arrays for one data source.

    Attributes:
        counts: Summed counts, (S, J) or (S, D, J)
        presence: 1 where the occasion total is >= 1, (S, J)
        occasion_totals: Counts summed over distance bins, (S, J)
        positive_counts: Number of occasions with detections per site, (S,)
        occupied_index: Ascending 1-based occasions with detections, padded
            with UNSET to the largest positive count, (S, W)
        occasions_per_site: Surveyed occasions per site, (S,)
    """

    counts: np.ndarray
    presence: np.ndarray
    occasion_totals: np.ndarray
    positive_counts: np.ndarray
    occupied_index: np.ndarray
    occasions_per_site: np.ndarray

    @property
    def n_sites(self) -> int:
        return self.counts.shape[0]

    @property
    def n_occasions(self) -> int:
        return self.counts.shape[-1]

    @property
    def has_distance(self) -> bool:
        return self.counts.ndim == 3

    @property
    def sites_with_detections(self) -> np.ndarray:
        """1-based site numbers with at least one positive occasion."""
        return np.flatnonzero(self.positive_counts > 0) + 1

    @property
    def n_sites_with_detections(self) -> int:
        return int(np.count_nonzero(self.positive_counts))

    @property
    def max_occasions(self) -> int:
        return int(self.occasions_per_site.max())

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    def occupied_occasions(self) -> Dict[int, List[int]]:
        """Per-site occasion lists with the padding stripped."""
        return {
            s + 1: [int(j) for j in row if j != UNSET]
            for s, row in enumerate(self.occupied_index)
        }

    def to_dict(self) -> dict:
        """Export shape summary for logging."""
        return {
            "shape": list(self.counts.shape),
            "total": self.total,
            "sites_with_detections": self.n_sites_with_detections,
            "max_positive_occasions": int(self.occupied_index.shape[1]),
        }


@dataclass(frozen=True)
class ValidationGrid:
    """
    Manually validated calls for the subset of sites that were checked.

    Sites absent from val_sites were never validated. A validated site whose
    rows are all zero is still listed, so the two cases stay distinct.

    Attributes:
        val_sites: Ascending 1-based site numbers that were validated, (V,)
        checked: Calls manually checked, (V, J)
        confirmed: Calls confirmed as the target species, (V, J)
        val_times: Ascending 1-based occasions with checked calls, padded
            with UNSET, (V, W)
        n_val_occasions: Number of checked occasions per validated site, (V,)
    """

    val_sites: np.ndarray
    checked: np.ndarray
    confirmed: np.ndarray
    val_times: np.ndarray
    n_val_occasions: np.ndarray

    @property
    def n_validated_sites(self) -> int:
        return int(self.val_sites.size)

    @property
    def precision(self) -> float:
        """Share of checked calls confirmed true, NaN when nothing was checked."""
        total = self.checked.sum()
        return float(self.confirmed.sum() / total) if total else float("nan")

    def to_dict(self) -> dict:
        return {
            "validated_sites": self.n_validated_sites,
            "calls_checked": int(self.checked.sum()),
            "calls_confirmed": int(self.confirmed.sum()),
        }
