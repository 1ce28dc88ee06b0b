"""
Exception hierarchy for torch-dla.

Two tiers are distinguished:

- ``PreconditionError`` (a ``ValueError``): the caller used the API wrongly,
  e.g. mismatching dimensions, a matrix in the wrong state or operands living
  on different process grids. These are raised immediately at the call site.
- ``BackendError`` (a ``RuntimeError``): the call was valid but the underlying
  numerical routine or the I/O layer reported a failure. The routine name and
  status code are kept so a caller can decide whether to retry.
"""

from typing import Any


class PreconditionError(ValueError):
    """Base class for violated preconditions (caller bugs)."""


class DimensionMismatchError(PreconditionError):
    """Two sizes that have to agree do not."""

    def __init__(self, a: Any, b: Any, what: str = ""):
        self.a = a
        self.b = b
        prefix = f"{what}: " if what else ""
        super().__init__(f"{prefix}Dimension {a} not equal to {b}.")


class IndexRangeError(PreconditionError):
    """An index lies outside the half-open range [lower, upper)."""

    def __init__(self, index: Any, lower: Any, upper: Any, what: str = ""):
        self.index = index
        self.lower = lower
        self.upper = upper
        prefix = f"{what}: " if what else ""
        super().__init__(
            f"{prefix}Index {index} is not in the half-open range [{lower},{upper})."
        )


class InvalidStateError(PreconditionError):
    """A matrix is not in the state an operation requires."""


class GridMismatchError(PreconditionError):
    """Operands are distributed over incompatible process grids."""


class BackendError(RuntimeError):
    """A backend routine (numerical or I/O) reported a failure."""

    def __init__(self, routine: str, status: int, message: str = ""):
        self.routine = routine
        self.status = status
        text = f"Routine '{routine}' failed with status {status}"
        if message:
            text += f": {message}"
        super().__init__(text)


class LAPACKError(BackendError):
    """A dense linear algebra routine returned a non-zero ``info``."""

    def __init__(self, routine: str, info: int):
        super().__init__(routine, info)
        self.info = info


class HDF5Error(BackendError):
    """Opening, reading or writing an HDF5 container failed."""

    def __init__(self, routine: str, message: str = ""):
        super().__init__(routine, -1, message)


class InconsistentCoarseningFlagsError(RuntimeError):
    """Siblings of a cell flagged for coarsening are not all flagged as well."""
