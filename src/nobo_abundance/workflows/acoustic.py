"""
Acoustic Workflow
=================

Prepares the "AV Bnet" acoustic vocalization model from BirdNET detections.

Detections are subsampled onto the survey calendar (by default 14 dates,
every 4 days from 26 May); rows on any other date are dropped and counted.

Bundle members:
    v, y            (site, occasion) call counts and detection indicator
    J, J.r          occasions per site, occasions with calls per site
    A.times         (site, positive) occasions with calls, NA padded
    sites.a         sites with at least one call (also passed as sites.a.v)
    n, k            (val_site, occasion) calls checked / confirmed
    val.times       (val_site, val_positive) occasions with checked calls
    val.sites       validated site numbers
    J.val           checked occasions per validated site
    X.abund         (site, abund_cov) habitat covariates
    X.det           (site, occasion, det_cov) z-scored weather
    S, S.A, S.val, J.A, n.days, Offset
"""

import logging
from typing import Optional

from nobo_abundance.analysis.summary import EffectTerm
from nobo_abundance.config import Settings
from nobo_abundance.errors import InputInconsistencyError
from nobo_abundance.inference.engine import InferenceEngine
from nobo_abundance.inference.specs import AV_BNET
from nobo_abundance.io.tables import (
    acoustic_detection_schema,
    acoustic_weather_schema,
    broadcast_to_sites,
    load_table,
    load_validation_matrix,
    records,
)
from nobo_abundance.models.bundle import BundleArray, BundleConstant, ModelDataBundle
from nobo_abundance.pipeline.arrays import ArrayBuilder
from nobo_abundance.pipeline.covariates import CovariateScaler
from nobo_abundance.pipeline.indexing import GridIndexResolver
from nobo_abundance.pipeline.normalizer import RecordNormalizer, SurveyCalendar
from nobo_abundance.pipeline.validation import ValidationGridBuilder
from nobo_abundance.workflows.common import (
    CurveRequest,
    PreparedRun,
    RunOutcome,
    SurfaceRequest,
    execute,
)


logger = logging.getLogger(__name__)


def prepare(settings: Settings) -> PreparedRun:
    """
    Load the acoustic tables and build the validated bundle.

    Raises:
        SchemaError: If an input table does not match its schema
        InputInconsistencyError: If records fall outside the grid, the
            validation tables disagree with the detections, or there is
            nothing to fit
    """
    cfg = settings.acoustic
    calendar = SurveyCalendar(cfg.calendar.resolved_dates(), cfg.calendar.date_format)
    S, J = cfg.n_sites, len(calendar)
    logger.info(f"Preparing {AV_BNET.name}: {S} sites x {J} occasions")

    resolver = GridIndexResolver(n_sites=S, n_occasions=J)

    detections = RecordNormalizer(
        resolver=resolver,
        site_field=cfg.site_column,
        date_field=cfg.date_column,
        calendar=calendar,
    ).normalize(records(load_table(cfg.detections_path, acoustic_detection_schema(cfg))))
    grids = ArrayBuilder(resolver).build(detections.detections)
    if grids.total == 0:
        raise InputInconsistencyError("no BirdNET detections fall on the survey calendar")

    weather_df = broadcast_to_sites(
        load_table(cfg.weather_path, acoustic_weather_schema(cfg)),
        cfg.site_column,
        S,
    )
    weather = RecordNormalizer(
        resolver=resolver,
        site_field=cfg.site_column,
        date_field=cfg.date_column,
        calendar=calendar,
        covariate_fields=[c.name for c in cfg.weather_covariates],
        emit_detections=False,
    ).normalize(records(weather_df))

    scaler = CovariateScaler(n_sites=S, n_occasions=J)
    x_det = scaler.occasion_array(weather.surveys, cfg.weather_covariates)

    site_df = load_table(cfg.site_covariates_path, cfg.site_schema)
    site_specs = cfg.site_schema.covariate_columns()
    x_abund = scaler.site_matrix(
        records(site_df),
        cfg.site_schema.identifier_column().name,
        site_specs,
    )

    validation = ValidationGridBuilder(grids).build(
        checked=load_validation_matrix(cfg.validated_n_path, J, "validated_n"),
        confirmed=load_validation_matrix(cfg.validated_k_path, J, "validated_k"),
    )
    if validation.checked.sum() == 0:
        raise InputInconsistencyError("validation tables hold no checked calls")

    sites_a = grids.sites_with_detections
    bundle = ModelDataBundle.create(
        AV_BNET.name,
        arrays=[
            BundleArray("v", grids.counts, ("site", "occasion")),
            BundleArray("y", grids.presence, ("site", "occasion")),
            BundleArray("J", grids.occasions_per_site, ("site",)),
            BundleArray("J.r", grids.positive_counts, ("site",)),
            BundleArray("A.times", grids.occupied_index, ("site", "positive"), index_of="occasion"),
            BundleArray("sites.a", sites_a, ("detected_site",), index_of="site"),
            BundleArray("sites.a.v", sites_a, ("detected_site",), index_of="site"),
            BundleArray("n", validation.checked, ("val_site", "occasion")),
            BundleArray("k", validation.confirmed, ("val_site", "occasion")),
            BundleArray("val.times", validation.val_times, ("val_site", "val_positive"), index_of="occasion"),
            BundleArray("val.sites", validation.val_sites, ("val_site",), index_of="site"),
            BundleArray("J.val", validation.n_val_occasions, ("val_site",)),
            BundleArray("X.abund", x_abund.values, ("site", "abund_cov")),
            BundleArray("X.det", x_det.values, ("site", "occasion", "det_cov")),
        ],
        constants=[
            BundleConstant("S", S, axis="site"),
            BundleConstant("S.A", grids.n_sites_with_detections, axis="detected_site"),
            BundleConstant("S.val", validation.n_validated_sites, axis="val_site"),
            BundleConstant("J.A", grids.max_occasions, axis="occasion"),
            BundleConstant("n.days", J, axis="occasion"),
            BundleConstant("Offset", settings.survey_area.area_acres),
        ],
    )

    # log(lambda) = beta0 + beta1 x1 + beta2 x2 + beta3 x1 x2
    first, second = site_specs[0].name, site_specs[1].name
    curves = (
        CurveRequest(
            covariate=first,
            terms=(EffectTerm("beta1", first),),
            observed=x_abund.column(first),
            scaling=x_abund.params[first],
        ),
        CurveRequest(
            covariate=second,
            terms=(EffectTerm("beta2", second),),
            observed=x_abund.column(second),
            scaling=x_abund.params[second],
        ),
    )
    surface = SurfaceRequest(
        covariates=(first, second),
        terms=(EffectTerm("beta1", first), EffectTerm("beta2", second)),
        interaction="beta3",
        observed=(x_abund.column(first), x_abund.column(second)),
    )

    return PreparedRun(
        model=AV_BNET,
        bundle=bundle,
        n_sites=S,
        curves=curves,
        surface=surface,
        counters={
            "detections": detections.to_dict(),
            "weather": weather.to_dict(),
            "grid": grids.to_dict(),
            "validation": validation.to_dict(),
            "calendar": list(calendar.labels()),
            "missing_weather_cells": x_det.missing_cells,
        },
    )


def run(settings: Settings, engine: InferenceEngine, prepared: Optional[PreparedRun] = None) -> RunOutcome:
    """Prepare (unless given a prepared run), sample and summarize."""
    prepared = prepared or prepare(settings)
    return execute(prepared, settings, engine)
