"""
Inference Engine Interface
==========================

Protocol for external MCMC samplers and the result type they return.

Sampling itself is never done in Python. An engine takes a validated
ModelDataBundle and a model text, runs an external program, and hands back
the raw draws. Swapping JAGS for another BUGS-language sampler only needs a
new InferenceEngine implementation.

Usage:
    engine = JagsEngine.from_settings(settings)
    result = engine.sample(bundle, model_text, inits, monitor, settings.mcmc)
    result.draws["N_tot"].shape    # (chains, draws)
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence

import numpy as np

from nobo_abundance.config import MCMCConfig
from nobo_abundance.errors import SamplerInvocationError
from nobo_abundance.models.bundle import ModelDataBundle


logger = logging.getLogger(__name__)

InitsFunction = Callable[[int], Dict[str, object]]


@dataclass(frozen=True)
class SamplerResult:
    """
    Raw posterior draws from one sampler run.

    Attributes:
        draws: Parameter element name -> (chains, draws) array
        deviance: (chains, draws) deviance, when DIC monitoring was on
        rhat: Parameter element name -> potential scale reduction factor
    """

    draws: Mapping[str, np.ndarray]
    deviance: Optional[np.ndarray] = None
    rhat: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        shapes = {np.shape(v) for v in self.draws.values()}
        if len(shapes) > 1:
            raise SamplerInvocationError(f"draw arrays have inconsistent shapes: {sorted(shapes)}")
        if any(len(s) != 2 for s in shapes):
            raise SamplerInvocationError("draw arrays must be shaped (chains, draws)")

    @property
    def parameters(self) -> List[str]:
        return list(self.draws)

    @property
    def n_chains(self) -> int:
        return next(iter(self.draws.values())).shape[0] if self.draws else 0

    @property
    def n_draws(self) -> int:
        return next(iter(self.draws.values())).shape[1] if self.draws else 0

    def combined(self, parameter: str) -> np.ndarray:
        """Draws of one element with all chains stacked end to end."""
        try:
            return np.asarray(self.draws[parameter]).reshape(-1)
        except KeyError:
            raise KeyError(f"parameter '{parameter}' was not monitored") from None


class InferenceEngine(Protocol):
    """
    Protocol for external samplers.

    Implementations must:
    - run every chain to completion or raise SamplerInvocationError
    - return draws shaped (chains, draws) for every monitored element
    - never return partial results
    """

    def sample(
        self,
        bundle: ModelDataBundle,
        model_text: str,
        inits: InitsFunction,
        monitor: Sequence[str],
        settings: MCMCConfig,
    ) -> SamplerResult:
        """
        Draw from the posterior.

        Args:
            bundle: Validated model data
            model_text: Rendered model specification
            inits: chain number (1-based) -> initial values
            monitor: Parameters to save
            settings: Iterations, burn-in, thinning, chains, adaptation

        Returns:
            SamplerResult with Rhat filled in

        Raises:
            SamplerInvocationError: On any sampler failure
        """
        ...
