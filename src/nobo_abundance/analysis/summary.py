"""
Posterior Summarizer
====================

Turns raw sampler draws into the tables a run reports.

All summaries pool the chains ("combined chains") and use equal-tailed 95%
credible intervals. Convergence is checked first; a run with unconverged
parameters is still summarized but flagged provisional.

Derived quantities:
    density    N_tot / (plot area in acres * number of sites)
    abundance  density * study area in acres
    effects    intercept + sum(beta * x^power) over a grid of covariate values
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from nobo_abundance.analysis.convergence import ConvergenceReport, check_convergence
from nobo_abundance.inference.engine import SamplerResult
from nobo_abundance.models.covariates import ScalingParams


logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = ["parameter", "mean", "sd", "q2.5", "q50", "q97.5", "rhat"]


@dataclass(frozen=True)
class EffectTerm:
    """
    One term of a linear predictor: coefficient * covariate^power.

    Attributes:
        coefficient: Monitored coefficient, e.g. "beta2"
        covariate: Covariate label the term is evaluated on
        power: Exponent applied to the covariate (2 for a quadratic term)
    """

    coefficient: str
    covariate: str
    power: int = 1


@dataclass(frozen=True)
class PosteriorSummary:
    """
    Summary of one run.

    Attributes:
        model_name: Model label
        table: One row per monitored element (SUMMARY_COLUMNS)
        convergence: Rhat check outcome
        bayesian_p: Posterior predictive p-values by parameter name
        n_draws: Pooled draws per element
    """

    model_name: str
    table: pd.DataFrame
    convergence: ConvergenceReport
    bayesian_p: Dict[str, float] = field(default_factory=dict)
    n_draws: int = 0

    @property
    def provisional(self) -> bool:
        return self.convergence.provisional

    def row(self, parameter: str) -> pd.Series:
        matches = self.table[self.table["parameter"] == parameter]
        if matches.empty:
            raise KeyError(f"parameter '{parameter}' not in summary")
        return matches.iloc[0]

    def to_dict(self) -> dict:
        return {
            "model_name": self.model_name,
            "provisional": self.provisional,
            "n_draws": self.n_draws,
            "convergence": self.convergence.to_dict(),
            "bayesian_p": dict(self.bayesian_p),
        }


def interval(samples: np.ndarray, axis: int = 0) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Mean and 95% equal-tailed interval."""
    lower, upper = np.quantile(samples, [0.025, 0.975], axis=axis)
    return samples.mean(axis=axis), lower, upper


class PosteriorSummarizer:
    """
    Builds posterior tables from a SamplerResult.

    Attributes:
        rhat_threshold: Rhat above which an element is flagged

    Example:
        summarizer = PosteriorSummarizer(rhat_threshold=1.1)
        summary = summarizer.summarize(result, "PC HDS", check_parameters=["p_Bayes"])
        density = summarizer.density_table(result, "PC HDS", area_acres=31.06, n_sites=10)
    """

    def __init__(self, rhat_threshold: float = 1.1) -> None:
        if rhat_threshold <= 1.0:
            raise ValueError("rhat_threshold must be > 1")
        self.rhat_threshold = rhat_threshold

        logger.info(f"PosteriorSummarizer initialized: rhat_threshold={rhat_threshold}")

    def summarize(
        self,
        result: SamplerResult,
        model_name: str,
        check_parameters: Sequence[str] = (),
    ) -> PosteriorSummary:
        """
        Parameter table, convergence report and Bayesian p-values.

        Args:
            result: Sampler output
            model_name: Model label
            check_parameters: Posterior predictive check indicators (0/1 nodes)
        """
        report = check_convergence(result.rhat, self.rhat_threshold, undefined_ok=check_parameters)

        rows = []
        for name in result.parameters:
            samples = result.combined(name)
            q = np.quantile(samples, [0.025, 0.5, 0.975])
            rows.append({
                "parameter": name,
                "mean": float(samples.mean()),
                "sd": float(samples.std(ddof=1)) if samples.size > 1 else float("nan"),
                "q2.5": float(q[0]),
                "q50": float(q[1]),
                "q97.5": float(q[2]),
                "rhat": result.rhat.get(name, float("nan")),
            })
        table = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)

        bayesian_p = {}
        for name in check_parameters:
            if name not in result.draws:
                logger.warning(f"Bayesian p-value parameter '{name}' was not monitored")
                continue
            bayesian_p[name] = float(result.combined(name).mean())
            logger.info(f"{model_name}: Bayesian p-value {name} = {bayesian_p[name]:.3f}")

        summary = PosteriorSummary(
            model_name=model_name,
            table=table,
            convergence=report,
            bayesian_p=bayesian_p,
            n_draws=result.n_chains * result.n_draws,
        )
        if summary.provisional:
            logger.warning(f"{model_name}: summary is provisional (convergence not reached)")
        return summary

    def beta_table(self, result: SamplerResult, model_name: str, betas: Sequence[str]) -> pd.DataFrame:
        """Mean and 95% interval per abundance coefficient."""
        rows = []
        for name in betas:
            mean, lower, upper = interval(result.combined(name))
            rows.append({
                "Model": model_name,
                "parameter": name,
                "Mean": float(mean),
                "Lower_CI": float(lower),
                "Upper_CI": float(upper),
            })
        return pd.DataFrame(rows, columns=["Model", "parameter", "Mean", "Lower_CI", "Upper_CI"])

    def density_table(
        self,
        result: SamplerResult,
        model_name: str,
        area_acres: float,
        n_sites: int,
        study_area_acres: float = 2710.0,
        total_parameter: str = "N_tot",
    ) -> pd.DataFrame:
        """
        Density (birds per acre) and abundance over the study area.

        Raises:
            ValueError: If area or site count is not positive
        """
        if area_acres <= 0 or n_sites <= 0:
            raise ValueError("area_acres and n_sites must be positive")

        density = result.combined(total_parameter) / (area_acres * n_sites)
        rows = []
        for quantity, samples in (("density", density), ("abundance", density * study_area_acres)):
            mean, lower, upper = interval(samples)
            rows.append({
                "Model": model_name,
                "Quantity": quantity,
                "Mean": float(mean),
                "Lower_CI": float(lower),
                "Upper_CI": float(upper),
            })
        table = pd.DataFrame(rows, columns=["Model", "Quantity", "Mean", "Lower_CI", "Upper_CI"])
        logger.info(
            f"{model_name}: density {rows[0]['Mean']:.3f}/acre, "
            f"abundance {rows[1]['Mean']:.0f} [{rows[1]['Lower_CI']:.0f}, {rows[1]['Upper_CI']:.0f}]"
        )
        return table

    def effect_curve(
        self,
        result: SamplerResult,
        intercept: str,
        terms: Sequence[EffectTerm],
        covariate: str,
        observed: np.ndarray,
        n_points: int = 1000,
        scaling: Optional[ScalingParams] = None,
    ) -> pd.DataFrame:
        """
        Predicted linear predictor across the observed range of one covariate.

        Args:
            result: Sampler output
            intercept: Intercept coefficient name
            terms: Terms involving the covariate
            covariate: Covariate label
            observed: Observed values on the model scale
            n_points: Grid size
            scaling: Scaling of the covariate, used to report raw values

        Returns:
            DataFrame with x, x_raw, mean, Lower_CI, Upper_CI
        """
        observed = np.asarray(observed, dtype=float)
        observed = observed[~np.isnan(observed)]
        grid = np.linspace(observed.min(), observed.max(), n_points)
        mean, lower, upper = self._predict(result, intercept, terms, {covariate: grid})
        return pd.DataFrame({
            "covariate": covariate,
            "x": grid,
            "x_raw": grid if scaling is None else scaling.inverse(grid),
            "mean": mean,
            "Lower_CI": lower,
            "Upper_CI": upper,
        })

    def interaction_surface(
        self,
        result: SamplerResult,
        intercept: str,
        terms: Sequence[EffectTerm],
        interaction: str,
        covariates: Tuple[str, str],
        observed: Tuple[np.ndarray, np.ndarray],
        n_points: int = 50,
    ) -> pd.DataFrame:
        """
        Predictions over an n_points x n_points grid of two covariates.

        The interaction coefficient multiplies the product of both covariates.
        """
        axes = []
        for values in observed:
            values = np.asarray(values, dtype=float)
            values = values[~np.isnan(values)]
            axes.append(np.linspace(values.min(), values.max(), n_points))
        x1, x2 = (a.ravel() for a in np.meshgrid(axes[0], axes[1], indexing="ij"))

        all_terms = list(terms) + [EffectTerm(interaction, "__product__")]
        mean, lower, upper = self._predict(
            result,
            intercept,
            all_terms,
            {covariates[0]: x1, covariates[1]: x2, "__product__": x1 * x2},
        )
        return pd.DataFrame({
            covariates[0]: x1,
            covariates[1]: x2,
            "interaction_term": x1 * x2,
            "mean": mean,
            "Lower_CI": lower,
            "Upper_CI": upper,
        })

    @staticmethod
    def _predict(
        result: SamplerResult,
        intercept: str,
        terms: Sequence[EffectTerm],
        grid: Mapping[str, np.ndarray],
        chunk: int = 200,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        b0 = result.combined(intercept)
        coefficients = [(result.combined(t.coefficient), t) for t in terms if t.covariate in grid]
        n = len(next(iter(grid.values())))

        mean = np.empty(n)
        lower = np.empty(n)
        upper = np.empty(n)
        # Evaluated in column chunks to bound memory at draws x chunk.
        for start in range(0, n, chunk):
            stop = min(start + chunk, n)
            preds = np.repeat(b0[:, None], stop - start, axis=1)
            for samples, term in coefficients:
                preds += samples[:, None] * grid[term.covariate][None, start:stop] ** term.power
            mean[start:stop], lower[start:stop], upper[start:stop] = interval(preds, axis=0)
        return mean, lower, upper
