"""
Convergence Check
=================

Rhat per monitored element and a report of the elements that fail.

Rhat comes from ArviZ (rank-normalized split Rhat). Elements above the
threshold, or with an undefined Rhat, make the run provisional. The 0/1
posterior-check indicators are often constant, so an undefined Rhat on
those is tolerated. Nothing is raised: the summary is still written,
flagged provisional, and a WARNING lists every offending element.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence

import arviz as az
import numpy as np


logger = logging.getLogger(__name__)


def compute_rhat(draws: Mapping[str, np.ndarray]) -> Dict[str, float]:
    """
    Rhat for every element.

    Args:
        draws: Element name -> (chains, draws) array
    """
    rhat = {}
    for name, values in draws.items():
        values = np.asarray(values, dtype=float)
        if values.shape[1] < 4 or np.all(values == values.flat[0]):
            # Too short to split, or a constant node: Rhat is undefined.
            rhat[name] = float("nan")
            continue
        rhat[name] = float(az.rhat(values))
    return rhat


@dataclass(frozen=True)
class ConvergenceReport:
    """
    Outcome of the Rhat check.

    Attributes:
        threshold: Rhat threshold used
        max_rhat: Largest finite Rhat, NaN when none is finite
        offending: Elements with Rhat above threshold, name -> Rhat
        undefined: Elements whose Rhat could not be computed
    """

    threshold: float
    max_rhat: float
    offending: Dict[str, float] = field(default_factory=dict)
    undefined: List[str] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return not self.offending and not self.undefined

    @property
    def provisional(self) -> bool:
        return not self.converged

    def to_dict(self) -> dict:
        return {
            "threshold": self.threshold,
            "max_rhat": None if math.isnan(self.max_rhat) else self.max_rhat,
            "converged": self.converged,
            "offending": dict(self.offending),
            "undefined": list(self.undefined),
        }


def check_convergence(
    rhat: Mapping[str, float],
    threshold: float = 1.1,
    undefined_ok: Sequence[str] = (),
) -> ConvergenceReport:
    """
    Flag elements with Rhat above threshold or undefined.

    Elements named in undefined_ok are not flagged for an undefined Rhat.

    Example:
        report = check_convergence({"beta0": 1.01, "N[3]": 1.4})
        report.offending      # {"N[3]": 1.4}
        report.provisional    # True
    """
    tolerated = set(undefined_ok)
    offending = {}
    undefined = []
    finite = []
    for name, value in rhat.items():
        if value is None or math.isnan(value):
            if name not in tolerated:
                undefined.append(name)
        else:
            finite.append(value)
            if value > threshold:
                offending[name] = value

    report = ConvergenceReport(
        threshold=threshold,
        max_rhat=max(finite) if finite else float("nan"),
        offending=offending,
        undefined=undefined,
    )

    if report.offending:
        listed = ", ".join(f"{k}={v:.3f}" for k, v in sorted(offending.items()))
        logger.warning(f"Rhat above {threshold} for {len(offending)} parameters: {listed}")
    if report.undefined:
        logger.warning(f"Rhat undefined for {len(undefined)} parameters: {', '.join(undefined)}")
    if report.converged:
        logger.info(f"All {len(rhat)} parameters converged (max Rhat {report.max_rhat:.3f})")
    return report
