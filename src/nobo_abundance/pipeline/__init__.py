"""
Pipeline Module
===============

Reshaping stages, leaf to root:

    RecordNormalizer -> GridIndexResolver -> ArrayBuilder + CovariateScaler
    (+ ValidationGridBuilder) -> ModelDataBundle

Every stage is synchronous and works on in-memory values only.
"""

from nobo_abundance.pipeline.indexing import GridIndexResolver, as_index
from nobo_abundance.pipeline.normalizer import RecordNormalizer, SurveyCalendar, is_missing
from nobo_abundance.pipeline.arrays import ArrayBuilder, occupied_index
from nobo_abundance.pipeline.covariates import CovariateScaler, encode_codes, zscore
from nobo_abundance.pipeline.validation import ValidationGridBuilder

__all__ = [
    "GridIndexResolver",
    "as_index",
    "RecordNormalizer",
    "SurveyCalendar",
    "is_missing",
    "ArrayBuilder",
    "occupied_index",
    "CovariateScaler",
    "encode_codes",
    "zscore",
    "ValidationGridBuilder",
]
