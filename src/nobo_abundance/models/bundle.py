"""
Model Data Bundle
=================

The single, immutable data artifact handed to the inference engine.

Every array is declared with named axes, and constants may be bound to an
axis. ModelDataBundle.create checks all of them together in one pass:

    - arrays sharing an axis name agree on its length
    - axis-bound constants equal that length (e.g. nsites == len("site"))
    - index arrays only point inside the axis they index (UNSET padding aside)

A mismatch raises DimensionMismatchError before anything is sampled. A silent
mismatch would not necessarily fail inside the sampler; it would just pair
the wrong covariates with the wrong sites.

Example:
    bundle = ModelDataBundle.create(
        "AV Bnet",
        arrays=[
            BundleArray("v", v, ("site", "occasion")),
            BundleArray("X.abund", x_abund, ("site", "abund_cov")),
            BundleArray("A.times", a_times, ("site", "positive"), index_of="occasion"),
        ],
        constants=[BundleConstant("S", 27, axis="site")],
    )
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from nobo_abundance.errors import DimensionMismatchError
from nobo_abundance.models.grids import UNSET


logger = logging.getLogger(__name__)

Scalar = Union[int, float]


@dataclass(frozen=True)
class BundleArray:
    """
    A named array with named axes.

    Attributes:
        name: Name the model text uses for the array
        values: Array data
        axes: One axis name per dimension
        index_of: Axis whose 1-based positions this array stores, if any
    """

    name: str
    values: np.ndarray
    axes: Tuple[str, ...]
    index_of: Optional[str] = None


@dataclass(frozen=True)
class BundleConstant:
    """
    A named scalar, optionally equal to the length of an axis.
    """

    name: str
    value: Scalar
    axis: Optional[str] = None


@dataclass(frozen=True)
class ModelDataBundle:
    """
    Validated, read-only model data.

    Build through create(); the plain constructor does not validate.

    Attributes:
        model_name: Label of the model this data is for
        arrays: Arrays keyed by name (read-only numpy arrays)
        constants: Constants keyed by name
        dimensions: Axis name -> length
    """

    model_name: str
    arrays: Mapping[str, BundleArray] = field(default_factory=dict)
    constants: Mapping[str, BundleConstant] = field(default_factory=dict)
    dimensions: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        model_name: str,
        arrays: Sequence[BundleArray],
        constants: Sequence[BundleConstant] = (),
    ) -> "ModelDataBundle":
        """
        Validate and freeze bundle members.

        Raises:
            DimensionMismatchError: If any dimension invariant is violated
        """
        names = [a.name for a in arrays] + [c.name for c in constants]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise DimensionMismatchError(f"{model_name}: duplicate bundle members {duplicates}")

        dimensions: Dict[str, int] = {}
        owner: Dict[str, str] = {}
        frozen_arrays: Dict[str, BundleArray] = {}

        for member in arrays:
            values = np.array(member.values, copy=True)
            if values.ndim != len(member.axes):
                raise DimensionMismatchError(
                    f"{model_name}: {member.name} has {values.ndim} dimensions "
                    f"but declares axes {member.axes}"
                )
            for axis, length in zip(member.axes, values.shape):
                if axis not in dimensions:
                    dimensions[axis] = length
                    owner[axis] = member.name
                elif dimensions[axis] != length:
                    raise DimensionMismatchError(
                        f"{model_name}: axis '{axis}' is {length} in {member.name} "
                        f"but {dimensions[axis]} in {owner[axis]}"
                    )
            values.setflags(write=False)
            frozen_arrays[member.name] = BundleArray(member.name, values, tuple(member.axes), member.index_of)

        for member in frozen_arrays.values():
            if member.index_of is None:
                continue
            if member.index_of not in dimensions:
                raise DimensionMismatchError(
                    f"{model_name}: {member.name} indexes unknown axis '{member.index_of}'"
                )
            limit = dimensions[member.index_of]
            used = member.values[member.values != UNSET]
            if used.size and (used.min() < 1 or used.max() > limit):
                raise DimensionMismatchError(
                    f"{model_name}: {member.name} holds indices outside [1..{limit}] "
                    f"of axis '{member.index_of}'"
                )

        for constant in constants:
            if constant.axis is None:
                continue
            if constant.axis not in dimensions:
                raise DimensionMismatchError(
                    f"{model_name}: constant {constant.name} is bound to unknown axis '{constant.axis}'"
                )
            if constant.value != dimensions[constant.axis]:
                raise DimensionMismatchError(
                    f"{model_name}: constant {constant.name}={constant.value} but axis "
                    f"'{constant.axis}' has length {dimensions[constant.axis]}"
                )

        bundle = cls(
            model_name=model_name,
            arrays=MappingProxyType(frozen_arrays),
            constants=MappingProxyType({c.name: c for c in constants}),
            dimensions=MappingProxyType(dict(dimensions)),
        )
        logger.info(f"Model data bundle '{model_name}' validated: dimensions={dict(dimensions)}")
        return bundle

    def __getitem__(self, name: str) -> Union[np.ndarray, Scalar]:
        if name in self.arrays:
            return self.arrays[name].values
        return self.constants[name].value

    def __contains__(self, name: str) -> bool:
        return name in self.arrays or name in self.constants

    def to_engine_data(self) -> Dict[str, Union[np.ndarray, Scalar]]:
        """
        Plain data for the engine.

        Index arrays are returned as float arrays with UNSET replaced by NaN,
        which the engine writes as NA.
        """
        data: Dict[str, Union[np.ndarray, Scalar]] = {}
        for member in self.arrays.values():
            if member.index_of is not None:
                values = member.values.astype(float)
                values[member.values == UNSET] = np.nan
                data[member.name] = values
            else:
                data[member.name] = member.values
        for constant in self.constants.values():
            data[constant.name] = constant.value
        return data

    def describe(self) -> dict:
        """Shapes and constants, for logging and run reports."""
        return {
            "model_name": self.model_name,
            "dimensions": dict(self.dimensions),
            "arrays": {name: list(a.values.shape) for name, a in self.arrays.items()},
            "constants": {name: c.value for name, c in self.constants.items()},
        }
