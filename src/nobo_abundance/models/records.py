"""
Record Models
=============

Typed records produced by the record normalizer.

These are the only inputs the array builder and covariate scaler see; raw
table rows never travel past the normalizer.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True, slots=True)
class DetectionRecord:
    """
    One accepted detection.

    Attributes:
        site_id: 1-based site number
        occasion_id: 1-based occasion number on the survey calendar
        distance_bin: 1-based distance bin, or None for non-distance data
        count: Individuals or calls contributed by this row
    """

    site_id: int
    occasion_id: int
    distance_bin: Optional[int] = None
    count: int = 1

    def __post_init__(self) -> None:
        """Validate invariants."""
        if self.site_id < 1:
            raise ValueError("site_id must be >= 1")
        if self.occasion_id < 1:
            raise ValueError("occasion_id must be >= 1")
        if self.distance_bin is not None and self.distance_bin < 1:
            raise ValueError("distance_bin must be >= 1")
        if self.count < 0:
            raise ValueError("count must be non-negative")


@dataclass(frozen=True, slots=True)
class SurveyRecord:
    """
    One accepted survey visit with its occasion-level covariates.

    Covariate values are raw (unscaled); categorical values keep their
    original labels until the covariate scaler codes them.
    """

    site_id: int
    occasion_id: int
    covariates: Dict[str, object] = field(default_factory=dict)

    @property
    def cell(self) -> Tuple[int, int]:
        return self.site_id, self.occasion_id


@dataclass(frozen=True, slots=True)
class NormalizedRecords:
    """
    Output of one normalizer pass.

    Attributes:
        detections: Accepted detection records
        surveys: Accepted survey records
        n_rows: Rows seen
        outside_window: Rows whose date is not on the survey calendar
        incomplete: Rows dropped for missing required fields
    """

    detections: Tuple[DetectionRecord, ...]
    surveys: Tuple[SurveyRecord, ...]
    n_rows: int
    outside_window: int
    incomplete: int

    @property
    def total_count(self) -> int:
        return sum(r.count for r in self.detections)

    def to_dict(self) -> dict:
        """Export counters for logging."""
        return {
            "rows": self.n_rows,
            "detections": len(self.detections),
            "surveys": len(self.surveys),
            "outside_window": self.outside_window,
            "incomplete": self.incomplete,
        }
