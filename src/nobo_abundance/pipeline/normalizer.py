"""
Record Normalizer
=================

Turns raw table rows into typed DetectionRecord and SurveyRecord values.

This normalizer:
    - Resolves each row's occasion, either from a survey-calendar date or
      from an explicit survey number
    - Drops rows whose date is not on the calendar (fixed subsampling window)
    - Drops rows missing a field required for the record's role
    - Fails the run when a site, occasion or distance bin is outside the grid

Roles:
    A row is a detection when it has site, occasion and (for distance
    data) a distance bin. It is a survey when it has site, occasion and
    every declared covariate field. A point-count survey in which no bird
    was recorded has no distance bin, so it contributes covariates but no
    detection.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, Mapping, Optional, Sequence, Tuple

import pandas as pd

from nobo_abundance.errors import InputInconsistencyError
from nobo_abundance.models.records import (
    DetectionRecord,
    NormalizedRecords,
    SurveyRecord,
)
from nobo_abundance.pipeline.indexing import GridIndexResolver, as_index


logger = logging.getLogger(__name__)


def is_missing(value: object) -> bool:
    """True for None, NaN, NaT and pandas NA."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == "" or value.strip().upper() == "NA"
    return bool(pd.api.types.is_scalar(value) and pd.isna(value))


class SurveyCalendar:
    """
    Ordered, fixed list of survey dates.

    A date maps to its 1-based position in the calendar; any other date is
    outside the analysis window.

    Example:
        calendar = SurveyCalendar.spaced(date(2024, 5, 26), n_occasions=14, spacing_days=4)
        calendar.resolve("2024-05-30")   # -> 2
        calendar.resolve("2024-05-27")   # -> None
    """

    def __init__(self, dates: Sequence[date], date_format: str = "%Y-%m-%d") -> None:
        dates = tuple(dates)
        if not dates:
            raise ValueError("calendar needs at least one date")
        if any(b <= a for a, b in zip(dates, dates[1:])):
            raise ValueError("calendar dates must be strictly ascending")
        self.dates = dates
        self.date_format = date_format
        self._position = {d: i + 1 for i, d in enumerate(dates)}

    @classmethod
    def spaced(
        cls,
        start: date,
        n_occasions: int,
        spacing_days: int,
        date_format: str = "%Y-%m-%d",
    ) -> "SurveyCalendar":
        return cls(
            [start + timedelta(days=spacing_days * i) for i in range(n_occasions)],
            date_format=date_format,
        )

    def __len__(self) -> int:
        return len(self.dates)

    def parse(self, value: object) -> Optional[date]:
        """Parse a date cell; returns None when it cannot be read."""
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return datetime.strptime(value.strip(), self.date_format).date()
            except ValueError:
                return None
        return None

    def resolve(self, value: object) -> Optional[int]:
        """1-based occasion for a date, or None when it is not on the calendar."""
        parsed = self.parse(value)
        if parsed is None:
            return None
        return self._position.get(parsed)

    def labels(self, fmt: str = "%b_%d") -> Tuple[str, ...]:
        """Column labels for the occasion axis (e.g. May_26)."""
        return tuple(d.strftime(fmt) for d in self.dates)


class RecordNormalizer:
    """
    Normalizes raw rows against a fixed grid.

    Attributes:
        resolver: Grid bounds
        site_field: Column holding the site number
        occasion_field: Column holding an explicit survey number
        date_field: Column holding the survey date (used with calendar)
        calendar: Survey calendar, required with date_field
        distance_field: Column holding the distance bin, if any
        count_field: Column holding a count; each row counts 1 when None
        covariate_fields: Occasion-level covariate columns copied onto SurveyRecords
        emit_detections: Whether rows are also detection records

    Example:
        normalizer = RecordNormalizer(
            resolver=GridIndexResolver(n_sites=27, n_occasions=14),
            site_field="Site_Number",
            date_field="Date",
            calendar=calendar,
        )
        result = normalizer.normalize(df.to_dict("records"))
    """

    def __init__(
        self,
        resolver: GridIndexResolver,
        site_field: str,
        occasion_field: Optional[str] = None,
        date_field: Optional[str] = None,
        calendar: Optional[SurveyCalendar] = None,
        distance_field: Optional[str] = None,
        count_field: Optional[str] = None,
        covariate_fields: Sequence[str] = (),
        emit_detections: bool = True,
    ) -> None:
        if (occasion_field is None) == (date_field is None):
            raise ValueError("exactly one of occasion_field or date_field is required")
        if date_field is not None and calendar is None:
            raise ValueError("date_field needs a calendar")
        if calendar is not None and len(calendar) != resolver.n_occasions:
            raise ValueError(
                f"calendar has {len(calendar)} dates but grid has {resolver.n_occasions} occasions"
            )
        if distance_field is not None and not resolver.has_distance:
            raise ValueError("distance_field given for a grid without distance axis")

        self.resolver = resolver
        self.site_field = site_field
        self.occasion_field = occasion_field
        self.date_field = date_field
        self.calendar = calendar
        self.distance_field = distance_field
        self.count_field = count_field
        self.covariate_fields = tuple(covariate_fields)
        self.emit_detections = emit_detections

    def normalize(self, rows: Iterable[Mapping[str, object]]) -> NormalizedRecords:
        """
        Normalize all rows.

        Args:
            rows: Raw rows, e.g. DataFrame.to_dict("records")

        Returns:
            NormalizedRecords with accepted detections, surveys and counters

        Raises:
            InputInconsistencyError: If a site, occasion or distance bin is
                outside the declared grid, or an identifier is not an integer
        """
        detections = []
        surveys = []
        n_rows = 0
        outside_window = 0
        incomplete = 0

        for row in rows:
            n_rows += 1

            occasion_raw = row.get(self.date_field or self.occasion_field)
            site_raw = row.get(self.site_field)
            if is_missing(site_raw) or is_missing(occasion_raw):
                incomplete += 1
                continue

            if self.calendar is not None:
                occasion_id = self.calendar.resolve(occasion_raw)
                if occasion_id is None:
                    outside_window += 1
                    continue
            else:
                occasion_id = as_index(occasion_raw, self.occasion_field)

            site_id = self.resolver.check_site(as_index(site_raw, self.site_field))
            self.resolver.check_occasion(occasion_id)

            used = False
            if self.emit_detections:
                detection = self._detection(row, site_id, occasion_id)
                if detection is not None:
                    detections.append(detection)
                    used = True

            if self.covariate_fields:
                values = {name: row.get(name) for name in self.covariate_fields}
                if not any(is_missing(v) for v in values.values()):
                    surveys.append(SurveyRecord(site_id, occasion_id, values))
                    used = True

            if not used:
                incomplete += 1

        result = NormalizedRecords(
            detections=tuple(detections),
            surveys=tuple(surveys),
            n_rows=n_rows,
            outside_window=outside_window,
            incomplete=incomplete,
        )
        logger.info(f"Normalized rows: {result.to_dict()}")
        return result

    def _detection(
        self,
        row: Mapping[str, object],
        site_id: int,
        occasion_id: int,
    ) -> Optional[DetectionRecord]:
        distance_bin = None
        if self.distance_field is not None:
            raw = row.get(self.distance_field)
            if is_missing(raw):
                return None
            distance_bin = self.resolver.check_distance_bin(as_index(raw, self.distance_field))

        count = 1
        if self.count_field is not None:
            raw = row.get(self.count_field)
            if is_missing(raw):
                return None
            count = as_index(raw, self.count_field)
            if count < 0:
                raise InputInconsistencyError(f"negative count {count} at site {site_id}")

        return DetectionRecord(
            site_id=site_id,
            occasion_id=occasion_id,
            distance_bin=distance_bin,
            count=count,
        )
