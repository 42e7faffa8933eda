"""
Point-Count Workflow
====================

Prepares the "PC HDS" temporary-emigration distance-sampling model.

Bundle members:
    y3d        (site, distance_bin, survey) counts
    nobs       (site, survey) counts summed over distance bins
    X.det      (site, survey, covariate) Observer, Temp, Wind, Sky, DOY
    X.abund    (site, abund_cov) z-scored habitat covariates
    midpt      distance bin midpoints (m)
    nsites, K, nD, delta, B, area

Every row of the survey table contributes its covariates, including surveys
in which no bird was recorded; only rows with a distance bin are detections.
"""

import logging
from typing import Optional

import numpy as np

from nobo_abundance.analysis.summary import EffectTerm
from nobo_abundance.config import Settings
from nobo_abundance.inference.engine import InferenceEngine
from nobo_abundance.inference.specs import PC_HDS
from nobo_abundance.io.tables import (
    add_day_of_year,
    doy_column_spec,
    load_table,
    point_count_schema,
    records,
)
from nobo_abundance.models.bundle import BundleArray, BundleConstant, ModelDataBundle
from nobo_abundance.pipeline.arrays import ArrayBuilder
from nobo_abundance.pipeline.covariates import CovariateScaler
from nobo_abundance.pipeline.indexing import GridIndexResolver
from nobo_abundance.pipeline.normalizer import RecordNormalizer
from nobo_abundance.workflows.common import CurveRequest, PreparedRun, RunOutcome, execute


logger = logging.getLogger(__name__)


def prepare(settings: Settings) -> PreparedRun:
    """
    Load the point-count tables and build the validated bundle.

    Raises:
        SchemaError: If an input table does not match its schema
        InputInconsistencyError: If records fall outside the declared grid
    """
    cfg = settings.point_count
    S, K, D = cfg.n_sites, cfg.n_surveys, cfg.n_distance_bins
    logger.info(f"Preparing {PC_HDS.name}: {S} sites x {K} surveys x {D} distance bins")

    survey_df = add_day_of_year(
        load_table(cfg.detections_path, point_count_schema(cfg)),
        cfg.date_column,
        cfg.date_format,
    )
    covariate_specs = list(cfg.survey_covariates) + [doy_column_spec()]

    resolver = GridIndexResolver(n_sites=S, n_occasions=K, n_distance_bins=D)
    normalized = RecordNormalizer(
        resolver=resolver,
        site_field=cfg.site_column,
        occasion_field=cfg.survey_column,
        distance_field=cfg.distance_column,
        covariate_fields=[c.name for c in covariate_specs],
    ).normalize(records(survey_df))

    grids = ArrayBuilder(resolver).build(normalized.detections)

    scaler = CovariateScaler(n_sites=S, n_occasions=K)
    x_det = scaler.occasion_array(normalized.surveys, covariate_specs, names=cfg.covariate_labels)

    site_df = load_table(cfg.site_covariates_path, cfg.site_schema)
    site_specs = cfg.site_schema.covariate_columns()
    x_abund = scaler.site_matrix(
        records(site_df),
        cfg.site_schema.identifier_column().name,
        site_specs,
    )

    midpt = cfg.bin_width_m * (np.arange(D) + 0.5)
    bundle = ModelDataBundle.create(
        PC_HDS.name,
        arrays=[
            BundleArray("y3d", grids.counts, ("site", "distance_bin", "survey")),
            BundleArray("nobs", grids.occasion_totals, ("site", "survey")),
            BundleArray("X.det", x_det.values, ("site", "survey", "det_cov")),
            BundleArray("X.abund", x_abund.values, ("site", "abund_cov")),
            BundleArray("midpt", midpt, ("distance_bin",)),
        ],
        constants=[
            BundleConstant("nsites", S, axis="site"),
            BundleConstant("K", K, axis="survey"),
            BundleConstant("nD", D, axis="distance_bin"),
            BundleConstant("delta", cfg.bin_width_m),
            BundleConstant("B", cfg.max_distance_m),
            BundleConstant("area", settings.survey_area.area_acres),
        ],
    )

    # The abundance predictor is quadratic in the first site covariate.
    first = site_specs[0].name
    curve = CurveRequest(
        covariate=first,
        terms=(EffectTerm("beta1", first, 1), EffectTerm("beta2", first, 2)),
        observed=x_abund.column(first),
        scaling=x_abund.params[first],
    )

    return PreparedRun(
        model=PC_HDS,
        bundle=bundle,
        n_sites=S,
        curves=(curve,),
        counters={
            "records": normalized.to_dict(),
            "grid": grids.to_dict(),
            "missing_survey_covariate_cells": x_det.missing_cells,
        },
    )


def run(settings: Settings, engine: InferenceEngine, prepared: Optional[PreparedRun] = None) -> RunOutcome:
    """Prepare (unless given a prepared run), sample and summarize."""
    prepared = prepared or prepare(settings)
    return execute(prepared, settings, engine)
