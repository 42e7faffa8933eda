"""
Error Types
===========

Exception hierarchy for an abundance run.

    NoboAbundanceError
        InputInconsistencyError     fatal, raised while building arrays
            SchemaError             table columns disagree with the declared schema
            DimensionMismatchError  bundle members disagree on an axis length
        SamplerInvocationError      the external sampler failed or returned garbage

Missing covariate values are not errors (they travel as NaN), and convergence
problems are reported through ConvergenceReport rather than raised.
"""


class NoboAbundanceError(Exception):
    """Base class for all package errors."""


class InputInconsistencyError(NoboAbundanceError):
    """Input files disagree with each other or with the declared grid."""


class SchemaError(InputInconsistencyError):
    """A table is missing declared columns, carries undeclared ones, or has bad types."""


class DimensionMismatchError(InputInconsistencyError):
    """Arrays in a model data bundle disagree on a named dimension."""


class SamplerInvocationError(NoboAbundanceError):
    """The inference engine crashed or produced malformed output."""
