"""
Inference Module
================

Model texts and the external sampler interface.

Components:
    - InferenceEngine: Protocol for external samplers
    - SamplerResult: Raw draws plus Rhat
    - JagsEngine: JAGS command-line implementation
    - ModelSpecification, get_model: Registered model texts
"""

from nobo_abundance.inference.engine import InferenceEngine, SamplerResult
from nobo_abundance.inference.specs import (
    AV_BNET,
    MODEL_REGISTRY,
    PC_HDS,
    ModelSpecification,
    get_model,
)
from nobo_abundance.inference.jags import JagsEngine

__all__ = [
    "InferenceEngine",
    "SamplerResult",
    "JagsEngine",
    "ModelSpecification",
    "MODEL_REGISTRY",
    "PC_HDS",
    "AV_BNET",
    "get_model",
]
