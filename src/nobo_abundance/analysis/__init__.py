"""
Analysis Module
===============

Convergence checks, posterior summaries and write-once output artifacts.
"""

from nobo_abundance.analysis.convergence import ConvergenceReport, check_convergence, compute_rhat
from nobo_abundance.analysis.summary import EffectTerm, PosteriorSummarizer, PosteriorSummary
from nobo_abundance.analysis.artifacts import ArtifactWriter, write_model_text

__all__ = [
    "ConvergenceReport",
    "check_convergence",
    "compute_rhat",
    "EffectTerm",
    "PosteriorSummarizer",
    "PosteriorSummary",
    "ArtifactWriter",
    "write_model_text",
]
