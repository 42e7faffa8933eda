"""
Run Execution
=============

Steps shared by both pathways once a bundle has been prepared:

    1. check that no output artifact of this model already exists
    2. render and save the model text
    3. sample through the inference engine
    4. check convergence and summarize
    5. write the write-once artifacts and the JSON run report

Nothing is written to the output directory if sampling fails.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from nobo_abundance.analysis.artifacts import ArtifactWriter, slugify, write_model_text
from nobo_abundance.analysis.summary import EffectTerm, PosteriorSummarizer, PosteriorSummary
from nobo_abundance.config import Settings
from nobo_abundance.inference.engine import InferenceEngine, SamplerResult
from nobo_abundance.inference.specs import ModelSpecification
from nobo_abundance.models.bundle import ModelDataBundle
from nobo_abundance.models.covariates import ScalingParams


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurveRequest:
    """One covariate effect curve to compute after sampling."""

    covariate: str
    terms: Tuple[EffectTerm, ...]
    observed: np.ndarray
    scaling: Optional[ScalingParams] = None

    @property
    def table_name(self) -> str:
        return f"effect_{slugify(self.covariate)}"


@dataclass(frozen=True)
class SurfaceRequest:
    """Two-covariate interaction surface to compute after sampling."""

    covariates: Tuple[str, str]
    terms: Tuple[EffectTerm, ...]
    interaction: str
    observed: Tuple[np.ndarray, np.ndarray]

    table_name = "interaction"


@dataclass(frozen=True)
class PreparedRun:
    """
    Everything needed to sample one model.

    Attributes:
        model: Registered model specification
        bundle: Validated model data
        n_sites: Sites the density is averaged over
        curves: Effect curves to compute
        surface: Optional interaction surface
        counters: Preparation counters recorded in the run report
    """

    model: ModelSpecification
    bundle: ModelDataBundle
    n_sites: int
    curves: Tuple[CurveRequest, ...] = ()
    surface: Optional[SurfaceRequest] = None
    counters: Dict[str, object] = field(default_factory=dict)

    def table_names(self) -> List[str]:
        names = ["parameters", "betas", "density"]
        names += [c.table_name for c in self.curves]
        if self.surface is not None:
            names.append(self.surface.table_name)
        return names


@dataclass(frozen=True)
class RunOutcome:
    """Result of a complete run."""

    prepared: PreparedRun
    result: SamplerResult
    summary: PosteriorSummary
    artifacts: Dict[str, Path]

    @property
    def provisional(self) -> bool:
        return self.summary.provisional


def estimated_draws(settings: Settings) -> int:
    draws = settings.mcmc.expected_draws
    logger.info(f"Estimated posterior samples: {draws}")
    return draws


def execute(prepared: PreparedRun, settings: Settings, engine: InferenceEngine) -> RunOutcome:
    """
    Sample, summarize and write artifacts for a prepared run.

    Raises:
        FileExistsError: If an artifact for this model already exists
        SamplerInvocationError: If the sampler fails
    """
    model = prepared.model
    writer = ArtifactWriter(settings.run.output_dir, model.name)
    writer.check_available(prepared.table_names())
    writer.check_available(["report"], ".json")

    text = model.render(prepared.bundle)
    model_path = write_model_text(settings.run.model_dir, model.filename, text)

    estimated_draws(settings)
    inits = model.inits_for(prepared.bundle, settings.run.seed)
    result = engine.sample(prepared.bundle, text, inits, model.monitor, settings.mcmc)

    summarizer = PosteriorSummarizer(settings.convergence.rhat_threshold)
    summary = summarizer.summarize(result, model.name, model.check_parameters)

    tables: Dict[str, pd.DataFrame] = {
        "parameters": summary.table,
        "betas": summarizer.beta_table(result, model.name, model.beta_parameters),
        "density": summarizer.density_table(
            result,
            model.name,
            area_acres=settings.survey_area.area_acres,
            n_sites=prepared.n_sites,
            study_area_acres=settings.survey_area.study_area_acres,
        ),
    }
    intercept = model.beta_parameters[0]
    for curve in prepared.curves:
        tables[curve.table_name] = summarizer.effect_curve(
            result,
            intercept,
            curve.terms,
            curve.covariate,
            curve.observed,
            scaling=curve.scaling,
        )
    if prepared.surface is not None:
        s = prepared.surface
        tables[s.table_name] = summarizer.interaction_surface(
            result, intercept, s.terms, s.interaction, s.covariates, s.observed
        )

    report = {
        "model": model.name,
        "model_version": model.version,
        "model_file": model_path,
        "created": datetime.now(timezone.utc).isoformat(),
        "seed": settings.run.seed,
        "mcmc": settings.mcmc.model_dump(),
        "bundle": prepared.bundle.describe(),
        "preparation": dict(prepared.counters),
        "summary": summary.to_dict(),
        "deviance_mean": None if result.deviance is None else float(np.mean(result.deviance)),
    }
    artifacts = writer.write_all(tables, report)
    return RunOutcome(prepared=prepared, result=result, summary=summary, artifacts=artifacts)

