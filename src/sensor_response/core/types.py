"""
Enumerations shared across the response estimation engine.
"""

from enum import Enum


class EstimatorStatus(str, Enum):
    """Lifecycle of an estimation run."""

    UNINITIALIZED = "uninitialized"  # Created, no rounds run yet
    FITTING = "fitting"  # At least one round run, budget remaining
    CONVERGED = "converged"  # Budget exhausted or gradient vanished
    CANCELLED = "cancelled"  # Stopped by the caller
    NO_DATA = "no_data"  # Empty mapping set, nothing to fit

    @property
    def is_terminal(self) -> bool:
        return self in (
            EstimatorStatus.CONVERGED,
            EstimatorStatus.CANCELLED,
            EstimatorStatus.NO_DATA,
        )


class LutDirection(str, Enum):
    """Direction of a transfer-function LUT."""

    TO_LINEAR = "to_linear"
    FROM_LINEAR = "from_linear"


class LutFormat(str, Enum):
    """Supported 1D LUT file formats."""

    SPI1D = "spi1d"
    CUBE = "cube"
