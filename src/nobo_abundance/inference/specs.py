"""
Model Specifications
====================

Fixed, versioned JAGS model texts keyed by model name.

The model text is not generated from the data. The only interpolation is a
comment header recording the model name, its version and the bundle
dimensions it was written for, so a saved model file can be matched to the
run that produced it.

Registered models:
    "PC HDS"   temporary-emigration hierarchical distance sampling for
               point counts (Poisson abundance, half-normal detection)
    "AV Bnet"  acoustic vocalization model for BirdNET detections with
               manually validated calls (false-positive rate, random day
               effect on call rate)
"""

import logging
from dataclasses import dataclass, field
from string import Template
from typing import Callable, Dict, Tuple

import numpy as np

from nobo_abundance.models.bundle import ModelDataBundle


logger = logging.getLogger(__name__)

InitsFactory = Callable[[ModelDataBundle, np.random.Generator], Dict[str, object]]


_HEADER = Template(
    "# model: $model_name\n"
    "# version: $version\n"
    "# dimensions: $dimensions\n"
)


@dataclass(frozen=True)
class ModelSpecification:
    """
    One registered model.

    Attributes:
        name: Model label, also used to key output artifacts
        version: Version of the model text
        filename: File name the text is written to
        body: JAGS model text
        monitor: Parameters saved by the sampler
        make_inits: Builds one chain's initial values
        beta_parameters: Abundance coefficients summarized separately
        check_parameters: Posterior predictive check indicators
    """

    name: str
    version: str
    filename: str
    body: str
    monitor: Tuple[str, ...]
    make_inits: InitsFactory
    beta_parameters: Tuple[str, ...] = field(default=())
    check_parameters: Tuple[str, ...] = field(default=())

    def render(self, bundle: ModelDataBundle) -> str:
        """Model text with the interpolated header."""
        if bundle.model_name != self.name:
            raise ValueError(f"bundle is for '{bundle.model_name}', not '{self.name}'")
        dims = ", ".join(f"{k}={v}" for k, v in sorted(bundle.dimensions.items()))
        header = _HEADER.substitute(model_name=self.name, version=self.version, dimensions=dims)
        return header + self.body

    def inits_for(self, bundle: ModelDataBundle, seed: int) -> Callable[[int], Dict[str, object]]:
        """
        Per-chain initial value generator.

        Chain c draws from a generator seeded with (seed, c), so chains differ
        from each other but every run with the same seed starts identically.
        """
        def inits(chain: int) -> Dict[str, object]:
            rng = np.random.default_rng([seed, chain])
            return self.make_inits(bundle, rng)

        return inits


# =============================================================================
# Point counts: temporary emigration HDS
# =============================================================================

HDS_BODY = """
model {

  # Priors
  beta0 ~ dnorm(0, 10)
  beta1 ~ dnorm(0, 10)
  beta2 ~ dnorm(0, 5)

  # Availability parameters
  phi0 ~ dunif(0.1, 0.9)
  logit.phi0 <- log(phi0/(1-phi0))
  gamma2 ~ dnorm(0, 0.01)

  for(k in 1:K){
    gamma1[k] ~ dunif(0.1, 0.9)
    logit.gamma1[k] <- log(gamma1[k]/(1-gamma1[k]))
  }

  # Detection parameters
  sigma0 ~ dunif(0.1, 200)
  theta ~ dgamma(0.1, 0.1)
  r ~ dunif(0, 10)
  alpha1 ~ dnorm(0, 0.01)

  for (s in 1:nsites) {
    for (k in 1:K) {

      # Standardized wind; surveys without a record are imputed
      X.det[s,k,3] ~ dnorm(0, 1)

      # Availability
      logit.phi[s,k] <- logit.gamma1[k]
      phi[s,k] <- exp(logit.phi[s,k]) / (1 + exp(logit.phi[s,k]))

      # Distance sampling
      log(sigma[s,k]) <- log(sigma0) + alpha1*X.det[s,k,3]

      for(b in 1:nD){
        # Half-normal detection
        log(g[s,b,k]) <- -midpt[b]*midpt[b]/(2*sigma[s,k]*sigma[s,k])
        f[s,b,k] <- (2 * midpt[b] * delta) / (B * B)
        cellprobs[s,b,k] <- g[s,b,k] * f[s,b,k]
        cellprobs.cond[s,b,k] <- cellprobs[s,b,k] / sum(cellprobs[s,1:nD,k])
      }

      cellprobs[s,nD+1,k] <- 1 - sum(cellprobs[s,1:nD,k])

      pdet[s,k] <- sum(cellprobs[s,1:nD,k])
      pmarg[s,k] <- pdet[s,k] * phi[s,k]

      # Multinomial observation model
      y3d[s,1:nD,k] ~ dmulti(cellprobs.cond[s,1:nD,k], nobs[s,k])
      nobs[s,k] ~ dbin(pmarg[s,k], M[s])
      Navail[s,k] ~ dbin(phi[s,k], M[s])

      log_lik[s,k] <- logdensity.multi(y3d[s,1:nD,k], cellprobs.cond[s,1:nD,k], nobs[s,k])

      # Posterior predictive check
      y3d_rep[s,1:nD,k] ~ dmulti(cellprobs.cond[s,1:nD,k], nobs[s,k])
      for (b in 1:nD) {
        discrepancy_obs[s,b,k] <- pow(y3d[s,b,k] - (cellprobs.cond[s,b,k] * nobs[s,k]), 2)
        discrepancy_rep[s,b,k] <- pow(y3d_rep[s,b,k] - (cellprobs.cond[s,b,k] * nobs[s,k]), 2)
      }
    }

    # Abundance
    log(lambda[s]) <- beta0 + beta1 * X.abund[s, 1] + beta2 * X.abund[s, 1]^2
    M[s] ~ dpois(lambda[s])
  }

  # Derived quantities
  for (k in 1:K){
    Davail[k] <- mean(phi[,k]) * exp(beta0) / area
  }

  for (s in 1:nsites) {
    for (k in 1:K) {
      N_site_k[s,k] <- pdet[s,k] * phi[s,k] * M[s]
    }
    N[s] <- sum(N_site_k[s,])
  }
  N_tot <- sum(N[])

  sum_obs <- sum(discrepancy_obs[, ,])
  sum_rep <- sum(discrepancy_rep[, ,])
  p_Bayes <- step(sum_rep - sum_obs)
}
"""


def hds_inits(bundle: ModelDataBundle, rng: np.random.Generator) -> Dict[str, object]:
    y3d = bundle["y3d"]
    K = int(bundle["K"])
    return {
        "M": y3d.sum(axis=1).max(axis=1) + 5,
        "Navail": y3d.sum(axis=1),
        "sigma0": 200.0,
        "gamma1": np.full(K, 0.5),
        "gamma2": 0.0,
        "beta0": 1.0,
        "beta1": 0.0,
        "beta2": 0.0,
        "alpha1": 0.0,
        "phi0": 0.5,
        "theta": 1.0,
        "r": 5.0,
    }


PC_HDS = ModelSpecification(
    name="PC HDS",
    version="1.0",
    filename="HDS_abundmod1.txt",
    body=HDS_BODY,
    monitor=(
        "r", "sigma0", "theta", "phi0", "beta0", "beta1", "beta2",
        "gamma1", "logit.gamma1", "gamma2", "alpha1", "lambda",
        "N", "N_tot", "Davail", "log_lik", "p_Bayes",
    ),
    make_inits=hds_inits,
    beta_parameters=("beta0", "beta1", "beta2"),
    check_parameters=("p_Bayes",),
)


# =============================================================================
# Acoustic: BirdNET vocalizations with validated calls
# =============================================================================

AV_BODY = """
model {

  # Abundance priors
  beta0 ~ dnorm(0, 10)
  beta1 ~ dnorm(0, 10)
  beta2 ~ dnorm(0, 10)
  beta3 ~ dnorm(0, 10)

  # Detection priors
  alpha0 ~ dnorm(0, 10)
  alpha1 ~ dunif(0, 500)
  alpha2 ~ dnorm(0, 1)

  # Call rate priors
  omega ~ dunif(0, 1000)
  gamma0 ~ dnorm(log(8), 1/2)
  kappa1 ~ dnorm(2, 1) T(0, 1)
  kappa2 ~ dnorm(-0.06, 625) T(-1, 0)

  # Day random effect on call rate
  tau_j ~ dgamma(5, 5)
  sigma_j <- sqrt(1 / tau_j)
  for (j in 1:n.days) {
    Jraneff[j] ~ dnorm(0, tau_j)
  }

  for (s in 1:S) {

    # Abundance
    log(lambda[s]) <- beta0 + beta1 * X.abund[s, 1] + beta2 * X.abund[s, 2] + beta3 * X.abund[s, 1] * X.abund[s, 2]
    N[s] ~ dpois(lambda[s] * Offset)

    for (j in 1:J[s]) {
      # Detection
      logit(p.a[s, j]) <- alpha0 + alpha1 * N[s] + alpha2 * X.abund[s, 3]

      # Call rate
      delta[s, j] <- max(0, exp(gamma0 + Jraneff[j]))

      y[s, j] ~ dbin(p.a[s, j], 1)

      # True positive rate
      tp[s, j] <- delta[s, j] * N[s] / (delta[s, j] * N[s] + omega)

      y.pred[s, j] ~ dbin(p.a[s, j], 1)
      resid.y[s, j] <- pow(pow(y[s, j], 0.5) - pow(p.a[s, j], 0.5), 2)
      resid.y.pred[s, j] <- pow(pow(y.pred[s, j], 0.5) - pow(p.a[s, j], 0.5), 2)
    }

    # Occasions with vocalizations only
    for (j in 1:J.r[s]) {
      v[s, A.times[s, j]] ~ dpois((delta[s, A.times[s, j]] * N[s] + omega) * y[s, A.times[s, j]])

      v.pred[s, j] ~ dpois((delta[s, A.times[s, j]] * N[s] + omega) * y[s, A.times[s, j]])
      mu.v[s, j] <- ((delta[s, A.times[s, j]] * N[s] + omega) / (1 - exp(-1 * ((delta[s, A.times[s, j]] * N[s] + omega)))))
      resid.v[s, j] <- pow(pow(v[s, A.times[s, j]], 0.5) - pow(mu.v[s, j], 0.5), 2)
      resid.v.pred[s, j] <- pow(pow(v.pred[s, j], 0.5) - pow(mu.v[s, j], 0.5), 2)
    }
  }

  # Manual validation
  for (s in 1:S.val) {
    for (j in 1:J.val[s]) {
      K[s, j] ~ dbin(tp[val.sites[s], val.times[s, j]], v[val.sites[s], val.times[s, j]])
      k[s, val.times[s, j]] ~ dhyper(K[s, j], v[val.sites[s], val.times[s, j]] - K[s, j], n[s, val.times[s, j]], 1)
    }
  }

  N_tot <- sum(N[])

  # Bayesian p-values
  for (s in 1:S.A) {
    tmp.v[s] <- sum(resid.v[sites.a.v[s], 1:J.r[sites.a.v[s]]])
    tmp.v.pred[s] <- sum(resid.v.pred[sites.a.v[s], 1:J.r[sites.a.v[s]]])
  }
  fit.y <- sum(resid.y[sites.a, 1:J.A])
  fit.y.pred <- sum(resid.y.pred[sites.a, 1:J.A])
  fit.v <- sum(tmp.v[1:S.A])
  fit.v.pred <- sum(tmp.v.pred[1:S.A])
  bp.y <- step(fit.y.pred - fit.y)
  bp.v <- step(fit.v.pred - fit.v)
}
"""


def av_inits(bundle: ModelDataBundle, rng: np.random.Generator) -> Dict[str, object]:
    S = int(bundle["S"])
    return {
        "N": np.ones(S, dtype=np.int64),
        "beta0": float(rng.normal(0, 1)),
        "beta1": 0.0,
        "beta2": 0.0,
        "beta3": 0.0,
        "alpha0": 0.0,
        "alpha1": 0.0,
        "alpha2": 0.0,
        "gamma0": float(np.log(8)),
        "kappa1": 0.6,
        "kappa2": -0.06,
        "omega": float(rng.uniform(0, 10)),
        "tau_j": 2.0,
    }


AV_BNET = ModelSpecification(
    name="AV Bnet",
    version="1.0",
    filename="Bnet_AV_mod1.txt",
    body=AV_BODY,
    monitor=(
        "lambda", "N_tot", "N", "beta0", "beta1", "beta2", "beta3",
        "alpha0", "alpha1", "alpha2", "gamma0", "kappa1", "kappa2",
        "Jraneff", "tau_j", "sigma_j", "omega", "delta", "bp.y", "bp.v",
    ),
    make_inits=av_inits,
    beta_parameters=("beta0", "beta1", "beta2", "beta3"),
    check_parameters=("bp.y", "bp.v"),
)


MODEL_REGISTRY: Dict[str, ModelSpecification] = {
    PC_HDS.name: PC_HDS,
    AV_BNET.name: AV_BNET,
}


def get_model(name: str) -> ModelSpecification:
    """Look up a registered model by name."""
    try:
        return MODEL_REGISTRY[name]
    except KeyError:
        raise KeyError(f"Unknown model '{name}'. Registered: {sorted(MODEL_REGISTRY)}") from None
