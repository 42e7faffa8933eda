"""
nobo-abundance
==============

Hierarchical abundance estimation for Northern Bobwhite from autonomous
recording unit (BirdNET) detections and point-count distance sampling.

This package reshapes field records into the fixed-dimension arrays the
models expect, runs the models through an external JAGS sampler, and writes
posterior summaries.

Components:
    - io: Table loading and schema checks
    - pipeline: Record normalization, indexing, arrays, covariates, validation
    - models: Typed records, grids and the model data bundle
    - inference: Model texts and the sampler interface (JAGS)
    - analysis: Convergence, posterior summaries and output artifacts
    - workflows: Acoustic and point-count runs

Example:
    from nobo_abundance.config import load_config
    from nobo_abundance.inference import JagsEngine
    from nobo_abundance.workflows import point_count

    settings = load_config("config.yaml")
    outcome = point_count.run(settings, JagsEngine.from_settings(settings))
"""

__version__ = "0.1.0"

from nobo_abundance.errors import (
    DimensionMismatchError,
    InputInconsistencyError,
    NoboAbundanceError,
    SamplerInvocationError,
    SchemaError,
)

__all__ = [
    "__version__",
    "NoboAbundanceError",
    "InputInconsistencyError",
    "SchemaError",
    "DimensionMismatchError",
    "SamplerInvocationError",
]
