"""
Data Models
===========

Typed values passed between pipeline stages.

Models:
    Schema:
        - SemanticType, ScalingPolicy: Column meaning and transformation
        - ColumnSpec, TableSchema: Declared input table layouts

    Records:
        - DetectionRecord: One accepted detection
        - SurveyRecord: One accepted survey with its covariates
        - NormalizedRecords: Normalizer output with counters

    Grids:
        - DetectionGrids: Counts, presence and occupied-occasion index
        - ValidationGrid: Manually validated calls

    Covariates:
        - ScalingParams, CovariateMatrix, CovariateArray

    Bundle:
        - BundleArray, BundleConstant, ModelDataBundle
"""

from nobo_abundance.models.schema import ColumnSpec, ScalingPolicy, SemanticType, TableSchema
from nobo_abundance.models.records import DetectionRecord, NormalizedRecords, SurveyRecord
from nobo_abundance.models.grids import UNSET, DetectionGrids, ValidationGrid
from nobo_abundance.models.covariates import CovariateArray, CovariateMatrix, ScalingParams
from nobo_abundance.models.bundle import BundleArray, BundleConstant, ModelDataBundle

__all__ = [
    # Schema
    "SemanticType",
    "ScalingPolicy",
    "ColumnSpec",
    "TableSchema",
    # Records
    "DetectionRecord",
    "SurveyRecord",
    "NormalizedRecords",
    # Grids
    "UNSET",
    "DetectionGrids",
    "ValidationGrid",
    # Covariates
    "ScalingParams",
    "CovariateMatrix",
    "CovariateArray",
    # Bundle
    "BundleArray",
    "BundleConstant",
    "ModelDataBundle",
]
