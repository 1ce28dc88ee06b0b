"""
torch-dla: PyTorch Distributed dense Linear Algebra

Dense matrices distributed block-cyclically over a 2D grid of
torch.distributed processes, with the linear algebra of a ScaLAPACK matrix.

Backends
--------
- CPU: SciPy (LAPACK/BLAS)
- CPU & CUDA: torch.linalg

Features
--------
- ProcessGrid with active and inactive processes
- DDenseMatrix: Cholesky, inverse, symmetric eigensolvers, SVD, least
  squares, condition number, norms, matrix products
- Copies between arbitrary grids and block sizes
- HDF5 persistence, serial or parallel (MPI-IO)
- CellDataTransfer for per-cell data across mesh refinement

Usage
-----
>>> import torch
>>> from torch_dla import ProcessGrid, DDenseMatrix, Property
>>>
>>> grid = ProcessGrid()  # all processes, near-square grid
>>> A = DDenseMatrix.from_dense(A_full, grid, 32, 32, property=Property.symmetric)
>>> a_norm = A.l1_norm()
>>> A.compute_cholesky_factorization()
>>> rcond = A.reciprocal_condition_number(a_norm)
>>> A.invert()
>>> A_inv = A.to_dense()
"""

from .lapack_support import (
    State,
    Property,
    TRANSITIONS,
    check_state,
)

from .exceptions import (
    PreconditionError,
    DimensionMismatchError,
    IndexRangeError,
    InvalidStateError,
    GridMismatchError,
    BackendError,
    LAPACKError,
    HDF5Error,
    InconsistentCoarseningFlagsError,
)

from .block_cyclic import (
    numroc,
    local_to_global,
    global_to_process,
    global_to_local,
    global_indices,
    local_shape,
    descinit,
)

from .process_grid import (
    ProcessGrid,
    grid_shape_for_matrix,
    destroy_process_groups,
)

from .backends import (
    # Backend utilities
    get_available_backends,
    get_backend,
    select_backend,
    # Availability checks
    is_scipy_available,
    is_pytorch_available,
    # Type aliases
    BackendType,
)

from .redistribute import redistribute

from .distributed import (
    DDenseMatrix,
    DEFAULT_BLOCK_SIZE,
)

from .io import (
    save_dense,
    load_dense,
    state_enum_dtype,
    property_enum_dtype,
    is_parallel_io_available,
)

from .cell_data_transfer import (
    CellDataTransfer,
    CellVector,
    DistributedCellVector,
    CellLike,
    TriangulationLike,
    coarsening_strategies,
)

__version__ = "0.1.0"

__all__ = [
    # Taxonomy
    "State",
    "Property",
    "TRANSITIONS",
    "check_state",
    # Errors
    "PreconditionError",
    "DimensionMismatchError",
    "IndexRangeError",
    "InvalidStateError",
    "GridMismatchError",
    "BackendError",
    "LAPACKError",
    "HDF5Error",
    "InconsistentCoarseningFlagsError",
    # Block-cyclic layout
    "numroc",
    "local_to_global",
    "global_to_process",
    "global_to_local",
    "global_indices",
    "local_shape",
    "descinit",
    # Process grid
    "ProcessGrid",
    "grid_shape_for_matrix",
    "destroy_process_groups",
    # Backend utilities
    "get_available_backends",
    "get_backend",
    "select_backend",
    "is_scipy_available",
    "is_pytorch_available",
    "BackendType",
    # Distributed dense matrix
    "redistribute",
    "DDenseMatrix",
    "DEFAULT_BLOCK_SIZE",
    # I/O
    "save_dense",
    "load_dense",
    "state_enum_dtype",
    "property_enum_dtype",
    "is_parallel_io_available",
    # Cell data transfer
    "CellDataTransfer",
    "CellVector",
    "DistributedCellVector",
    "CellLike",
    "TriangulationLike",
    "coarsening_strategies",
]
