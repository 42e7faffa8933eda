"""
Covariate Scaler
================

Standardizes covariates and aligns them to the site / occasion grid.

Scaling:
    zscore:  z = (x - mean(x)) / sd(x), population sd (ddof=0), computed over
             the non-missing values of the current run only
    codes:   distinct non-missing labels sorted lexically (numbers
             numerically), coded 1..L
    none:    values passed through as floats

Missing values stay NaN under every policy and are never imputed.
"""

import logging
import numbers
from typing import Iterable, List, Mapping, Sequence, Tuple

import numpy as np

from nobo_abundance.errors import InputInconsistencyError
from nobo_abundance.models.covariates import CovariateArray, CovariateMatrix, ScalingParams
from nobo_abundance.models.records import SurveyRecord
from nobo_abundance.models.schema import ColumnSpec, ScalingPolicy
from nobo_abundance.pipeline.indexing import as_index
from nobo_abundance.pipeline.normalizer import is_missing


logger = logging.getLogger(__name__)


def zscore(values: np.ndarray, name: str = "covariate") -> Tuple[np.ndarray, ScalingParams]:
    """
    Z-score over non-missing entries with the population standard deviation.

    Raises:
        InputInconsistencyError: If the column has no values or no spread
    """
    values = np.asarray(values, dtype=float)
    present = ~np.isnan(values)
    if not present.any():
        raise InputInconsistencyError(f"{name}: no non-missing values to scale")

    mean = float(values[present].mean())
    sd = float(values[present].std(ddof=0))
    if sd == 0.0:
        raise InputInconsistencyError(f"{name}: constant column cannot be z-scored")

    scaled = np.full(values.shape, np.nan)
    scaled[present] = (values[present] - mean) / sd
    return scaled, ScalingParams(name=name, policy=ScalingPolicy.ZSCORE, mean=mean, sd=sd)


def _level_key(value: object) -> tuple:
    if isinstance(value, numbers.Real):
        return (0, float(value), "")
    return (1, 0.0, str(value))


def encode_codes(values: Sequence[object], name: str = "covariate") -> Tuple[np.ndarray, ScalingParams]:
    """Map labels to 1-based codes in lexical order; missing stays NaN."""
    flat = list(np.asarray(values, dtype=object).ravel())
    levels = tuple(sorted({v for v in flat if not is_missing(v)}, key=_level_key))
    lookup = {level: i + 1 for i, level in enumerate(levels)}

    codes = np.array(
        [np.nan if is_missing(v) else lookup[v] for v in flat],
        dtype=float,
    ).reshape(np.shape(values))
    return codes, ScalingParams(name=name, policy=ScalingPolicy.CODES, levels=levels)


def to_float(values: Sequence[object], name: str = "covariate") -> np.ndarray:
    """Coerce a column to float with NaN for missing cells."""
    flat = list(np.asarray(values, dtype=object).ravel())
    out = []
    for v in flat:
        if is_missing(v):
            out.append(np.nan)
            continue
        try:
            out.append(float(v))
        except (TypeError, ValueError):
            raise InputInconsistencyError(f"{name}: non-numeric value {v!r}") from None
    return np.array(out, dtype=float).reshape(np.shape(values))


def scale_column(values: Sequence[object], spec: ColumnSpec) -> Tuple[np.ndarray, np.ndarray, ScalingParams]:
    """
    Apply a column's scaling policy.

    Returns:
        (scaled, raw_numeric, params). For coded columns raw_numeric holds the codes.
    """
    if spec.scaling == ScalingPolicy.CODES:
        codes, params = encode_codes(values, spec.name)
        return codes, codes, params

    numeric = to_float(values, spec.name)
    if spec.scaling == ScalingPolicy.ZSCORE:
        scaled, params = zscore(numeric, spec.name)
        return scaled, numeric, params
    return numeric, numeric, ScalingParams(name=spec.name, policy=ScalingPolicy.NONE)


class CovariateScaler:
    """
    Builds scaled covariate matrices aligned to a fixed grid.

    Attributes:
        n_sites: Number of sites (S)
        n_occasions: Number of occasions (J)

    Example:
        scaler = CovariateScaler(n_sites=10, n_occasions=4)
        x_abund = scaler.site_matrix(site_rows, "PointNum", schema.covariate_columns())
        x_det = scaler.occasion_array(surveys, survey_specs)
    """

    def __init__(self, n_sites: int, n_occasions: int) -> None:
        self.n_sites = n_sites
        self.n_occasions = n_occasions

    def site_matrix(
        self,
        rows: Iterable[Mapping[str, object]],
        site_field: str,
        specs: Sequence[ColumnSpec],
    ) -> CovariateMatrix:
        """
        One row per site, ordered by site number.

        Raises:
            InputInconsistencyError: If a site is missing, duplicated or out of range
        """
        by_site = {}
        for row in rows:
            site_id = as_index(row.get(site_field), site_field)
            if not 1 <= site_id <= self.n_sites:
                raise InputInconsistencyError(
                    f"site covariates: site {site_id} outside [1..{self.n_sites}]"
                )
            if site_id in by_site:
                raise InputInconsistencyError(f"site covariates: site {site_id} listed twice")
            by_site[site_id] = row

        missing = sorted(set(range(1, self.n_sites + 1)) - set(by_site))
        if missing:
            raise InputInconsistencyError(f"site covariates: no row for sites {missing}")

        ordered = [by_site[s] for s in range(1, self.n_sites + 1)]
        columns: List[np.ndarray] = []
        raw_columns: List[np.ndarray] = []
        params = {}
        for spec in specs:
            scaled, raw, p = scale_column([row.get(spec.name) for row in ordered], spec)
            columns.append(scaled)
            raw_columns.append(raw)
            params[spec.name] = p

        shape = (self.n_sites, len(specs))
        matrix = CovariateMatrix(
            values=np.column_stack(columns) if columns else np.empty(shape),
            names=tuple(s.name for s in specs),
            params=params,
            raw=np.column_stack(raw_columns) if raw_columns else np.empty(shape),
        )
        logger.info(f"Site covariate matrix: {shape[0]} sites x {shape[1]} covariates")
        return matrix

    def occasion_array(
        self,
        surveys: Iterable[SurveyRecord],
        specs: Sequence[ColumnSpec],
        names: Sequence[str] = (),
    ) -> CovariateArray:
        """
        Site x occasion x covariate array from survey records.

        Cells with no survey stay NaN. Several rows for the same survey (one
        per detection) must agree on every covariate value.

        Args:
            surveys: Accepted survey records
            specs: Covariates to extract, in slice order
            names: Optional slice labels (defaults to column names)

        Raises:
            InputInconsistencyError: If two rows give different values for one cell
        """
        names = tuple(names) or tuple(s.name for s in specs)
        if len(names) != len(specs):
            raise ValueError("one slice name per covariate is required")

        raw = np.full((self.n_sites, self.n_occasions, len(specs)), None, dtype=object)
        for survey in surveys:
            s, j = survey.site_id - 1, survey.occasion_id - 1
            if not (0 <= s < self.n_sites and 0 <= j < self.n_occasions):
                raise InputInconsistencyError(f"survey {survey.cell} outside the grid")
            for c, spec in enumerate(specs):
                value = survey.covariates.get(spec.name)
                if is_missing(value):
                    continue
                current = raw[s, j, c]
                if current is not None and current != value:
                    raise InputInconsistencyError(
                        f"{spec.name}: conflicting values {current!r} and {value!r} "
                        f"for site {survey.site_id}, occasion {survey.occasion_id}"
                    )
                raw[s, j, c] = value

        values = np.full(raw.shape, np.nan)
        params = {}
        for c, (spec, name) in enumerate(zip(specs, names)):
            scaled, _, p = scale_column(raw[:, :, c], spec)
            values[:, :, c] = scaled
            params[name] = p

        array = CovariateArray(values=values, names=names, params=params)
        logger.info(
            f"Occasion covariate array: shape={list(values.shape)}, "
            f"missing_cells={array.missing_cells}"
        )
        return array
