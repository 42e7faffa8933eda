"""
Array Builder
=============

Accumulates detection records into fixed-shape grids.

The grid shape is fixed by the resolver before any record is read. Each
record adds its count to one cell, so the result does not depend on record
order. Sites without detections keep a full row of zeros; absence of
detection is data, not a gap.
"""

import logging
from typing import Iterable

import numpy as np

from nobo_abundance.models.grids import UNSET, DetectionGrids
from nobo_abundance.models.records import DetectionRecord
from nobo_abundance.pipeline.indexing import GridIndexResolver


logger = logging.getLogger(__name__)


def occupied_index(totals: np.ndarray) -> np.ndarray:
    """
    Ascending 1-based positive-occasion numbers per site.

    Rows are padded with UNSET up to the largest positive count across
    sites, so the result has a fixed width.
    """
    positive = totals > 0
    width = int(positive.sum(axis=1).max()) if totals.size else 0
    index = np.full((totals.shape[0], width), UNSET, dtype=np.int64)
    for s, row in enumerate(positive):
        occasions = np.flatnonzero(row) + 1
        index[s, : occasions.size] = occasions
    return index


class ArrayBuilder:
    """
    Builds DetectionGrids from normalized records.

    Example:
        builder = ArrayBuilder(GridIndexResolver(n_sites=2, n_occasions=2))
        grids = builder.build(records)
        grids.counts     # array([[2, 0], [0, 1]])
    """

    def __init__(self, resolver: GridIndexResolver) -> None:
        self.resolver = resolver

    @property
    def shape(self) -> tuple:
        r = self.resolver
        if r.has_distance:
            return (r.n_sites, r.n_distance_bins, r.n_occasions)
        return (r.n_sites, r.n_occasions)

    def accumulate(self, records: Iterable[DetectionRecord]) -> np.ndarray:
        """
        Zero-initialized grid with every record's count added to its cell.

        Raises:
            InputInconsistencyError: If a record falls outside the grid
        """
        counts = np.zeros(self.shape, dtype=np.int64)
        for record in records:
            cell = self.resolver.resolve(
                record.site_id,
                record.occasion_id,
                record.distance_bin if self.resolver.has_distance else None,
            )
            counts[cell] += record.count
        return counts

    def derive(self, counts: np.ndarray) -> DetectionGrids:
        """Derive presence and index arrays from a count grid."""
        if counts.shape != self.shape:
            raise ValueError(f"count grid has shape {counts.shape}, expected {self.shape}")

        totals = counts.sum(axis=1) if counts.ndim == 3 else counts.copy()
        presence = (totals >= 1).astype(np.int64)

        return DetectionGrids(
            counts=counts,
            presence=presence,
            occasion_totals=totals,
            positive_counts=presence.sum(axis=1),
            occupied_index=occupied_index(totals),
            occasions_per_site=np.full(self.resolver.n_sites, self.resolver.n_occasions, dtype=np.int64),
        )

    def build(self, records: Iterable[DetectionRecord]) -> DetectionGrids:
        grids = self.derive(self.accumulate(records))
        logger.info(f"Detection grids built: {grids.to_dict()}")
        return grids
