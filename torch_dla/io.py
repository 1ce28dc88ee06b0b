"""
I/O utilities for torch-dla

Persistence of ``DDenseMatrix`` in HDF5 containers (via h5py):

- Dataset ``matrix`` of shape ``(n_columns, n_rows)``, i.e. the transpose of
  the matrix as seen from a row-major reader (column-major on disk).
- Datasets ``state`` and ``property`` of shape ``(1,)`` holding HDF5 enum
  values whose member names match ``State`` and ``Property``.

Two strategies are available:

- 'serial': the matrix is copied onto a 1x1 grid and the first process of
  the pool reads/writes the whole file.
- 'parallel': the matrix is copied onto a 1xP grid so that every process
  owns a contiguous range of columns, which it writes as an independent
  hyperslab through the MPI-IO driver. Requires h5py built with MPI and
  mpi4py; MPI ranks must coincide with ``torch.distributed`` ranks.

'auto' uses 'parallel' when it is available and more than one process takes
part, otherwise 'serial'. Set the ``TORCH_DLA_IO_STRATEGY`` environment
variable to override the default.

Example
-------
>>> A.save("matrix.h5", chunk_size=(64, 64))
>>> B = DDenseMatrix(A.m, A.n, other_grid, 16, 16)
>>> B.load("matrix.h5")
"""

import math
import os
from typing import Dict, Optional, Tuple, TYPE_CHECKING, Union

import numpy as np
import torch

from .exceptions import DimensionMismatchError, HDF5Error, IndexRangeError, PreconditionError
from .lapack_support import Property, State, property_members, state_members
from .process_grid import ProcessGrid

try:
    import h5py
    H5PY_AVAILABLE = True
except ImportError:
    H5PY_AVAILABLE = False

try:
    from mpi4py import MPI
    MPI4PY_AVAILABLE = True
except ImportError:
    MPI4PY_AVAILABLE = False

if TYPE_CHECKING:
    from .distributed import DDenseMatrix

DEFAULT_IO_STRATEGY = 'auto'
IO_STRATEGY_ENV = 'TORCH_DLA_IO_STRATEGY'

PathLike = Union[str, "os.PathLike"]

_NUMPY_DTYPES = {torch.float32: np.float32, torch.float64: np.float64}


def _require_h5py() -> None:
    if not H5PY_AVAILABLE:
        raise ImportError("h5py is required for saving and loading matrices: pip install h5py")


def is_parallel_io_available() -> bool:
    """h5py with MPI support and mpi4py are both importable."""
    return H5PY_AVAILABLE and MPI4PY_AVAILABLE and bool(h5py.get_config().mpi)


def resolve_strategy(strategy: str, grid: ProcessGrid) -> str:
    """Turn 'auto' (or the environment default) into 'serial' or 'parallel'."""
    if strategy == 'auto':
        strategy = os.environ.get(IO_STRATEGY_ENV, DEFAULT_IO_STRATEGY)
    if strategy == 'auto':
        if is_parallel_io_available() and grid.n_processes > 1:
            return 'parallel'
        return 'serial'
    if strategy == 'parallel' and not is_parallel_io_available():
        raise ValueError("Parallel HDF5 I/O needs h5py built with MPI and mpi4py")
    if strategy not in ('serial', 'parallel'):
        raise ValueError(f"Unknown I/O strategy '{strategy}'. Use 'serial', 'parallel' or 'auto'")
    return strategy


# =============================================================================
# Metadata schema
# =============================================================================

def state_enum_dtype():
    """HDF5 enum type of the ``state`` dataset."""
    _require_h5py()
    return h5py.enum_dtype(state_members(), basetype='i4')


def property_enum_dtype():
    """HDF5 enum type of the ``property`` dataset."""
    _require_h5py()
    return h5py.enum_dtype(property_members(), basetype='i4')


def _write_metadata(f, state: State, property: Property) -> None:
    dset = f.create_dataset('state', (1,), dtype=state_enum_dtype())
    dset[0] = int(state)
    dset = f.create_dataset('property', (1,), dtype=property_enum_dtype())
    dset[0] = int(property)


def _read_enum(f, name: str, enum_type):
    dset = f[name]
    mapping: Optional[Dict[str, int]] = h5py.check_enum_dtype(dset.dtype)
    if mapping is None:
        raise PreconditionError(f"The data type of the {name} to be read does not match the archive")
    if dset.shape != (1,):
        raise DimensionMismatchError(dset.shape, (1,), f"{name} dataset")
    value = int(dset[0])
    names = [key for key, code in mapping.items() if code == value]
    if not names or names[0] not in enum_type.__members__:
        raise PreconditionError(f"Unknown {name} value {value} in the archive")
    return enum_type[names[0]]


def _read_matrix_dataset(f, matrix: "DDenseMatrix"):
    dset = f['matrix']
    if dset.dtype.kind != 'f':
        raise PreconditionError("The data type of the matrix to be read does not match the archive")
    if dset.shape[0] != matrix.n:
        raise DimensionMismatchError(
            dset.shape[0], matrix.n,
            "The number of columns of the matrix does not match the content of the archive")
    if dset.shape[1] != matrix.m:
        raise DimensionMismatchError(
            dset.shape[1], matrix.m,
            "The number of rows of the matrix does not match the content of the archive")
    return dset


def _check_chunk_size(matrix: "DDenseMatrix", chunk_size: Optional[Tuple[int, int]]) -> Tuple[int, int]:
    if chunk_size is None:
        # one full column per chunk
        return matrix.m, 1
    rows, cols = chunk_size
    if not 0 < rows <= matrix.m:
        raise IndexRangeError(rows, 1, matrix.m + 1, "chunk rows")
    if not 0 < cols <= matrix.n:
        raise IndexRangeError(cols, 1, matrix.n + 1, "chunk columns")
    return rows, cols


def _open(filename: PathLike, mode: str, **kwargs):
    try:
        return h5py.File(filename, mode, **kwargs)
    except OSError as e:
        raise HDF5Error('H5Fopen' if mode in ('r', 'r+') else 'H5Fcreate', str(e)) from e


def _tile_from_numpy(data: np.ndarray, dtype: torch.dtype) -> torch.Tensor:
    return torch.from_numpy(np.ascontiguousarray(data.T)).to(dtype)


def _communicator(grid: ProcessGrid):
    world = MPI.COMM_WORLD
    if sorted(grid.ranks) == list(range(world.Get_size())):
        return world
    return world.Create_group(world.Get_group().Incl(sorted(grid.ranks)))


def _temporary(matrix: "DDenseMatrix", grid: ProcessGrid, column_block_size: int) -> "DDenseMatrix":
    from .distributed import DDenseMatrix
    return DDenseMatrix(matrix.m, matrix.n, grid, matrix.m, column_block_size,
                        dtype=matrix.dtype, backend=matrix.backend_name)


# =============================================================================
# Save
# =============================================================================

def save_dense(
    matrix: "DDenseMatrix",
    filename: PathLike,
    chunk_size: Optional[Tuple[int, int]] = None,
    strategy: str = 'auto',
    verbose: bool = False,
) -> None:
    """
    Write a distributed matrix and its state/property to an HDF5 file.

    Must be called by every process of the matrix's pool.

    Parameters
    ----------
    matrix : DDenseMatrix
        Matrix to save.
    filename : str or PathLike
        Output file, overwritten if it exists.
    chunk_size : Tuple[int, int], optional
        ``(rows, columns)`` of an HDF5 chunk, default one full column.
    strategy : str
        'serial', 'parallel' or 'auto'.
    verbose : bool
        Print progress on the first process of the pool.
    """
    _require_h5py()
    chunk_size = _check_chunk_size(matrix, chunk_size)
    strategy = resolve_strategy(strategy, matrix.grid)

    if strategy == 'parallel':
        _save_parallel(matrix, filename, chunk_size)
    else:
        _save_serial(matrix, filename, chunk_size)

    if verbose and matrix.grid.pool_rank == 0:
        print(f"[save_dense] {matrix.m}x{matrix.n} -> {filename} "
              f"({strategy}, chunks {chunk_size}, state {matrix.state.name})")


def _save_serial(matrix: "DDenseMatrix", filename: PathLike, chunk_size: Tuple[int, int]) -> None:
    grid = ProcessGrid(matrix.grid.ranks, 1, 1)
    tmp = _temporary(matrix, grid, matrix.n)
    matrix.copy_to(tmp)

    if grid.is_process_active:
        with _open(filename, 'w') as f:
            dset = f.create_dataset('matrix', (matrix.n, matrix.m),
                                    dtype=_NUMPY_DTYPES[matrix.dtype],
                                    chunks=(chunk_size[1], chunk_size[0]))
            dset[...] = tmp.values.T.numpy()
            _write_metadata(f, matrix.state, matrix.get_property())


def _save_parallel(matrix: "DDenseMatrix", filename: PathLike, chunk_size: Tuple[int, int]) -> None:
    n_processes = matrix.grid.n_processes
    grid = ProcessGrid(matrix.grid.ranks, 1, n_processes)
    tmp = _temporary(matrix, grid, math.ceil(matrix.n / n_processes))
    matrix.copy_to(tmp)

    local_n = max(tmp.local_n, 0)
    counts = grid.all_gather_int(local_n)
    offset = sum(counts[:grid.pool_rank])

    with _open(filename, 'w', driver='mpio', comm=_communicator(grid)) as f:
        dset = f.create_dataset('matrix', (matrix.n, matrix.m),
                                dtype=_NUMPY_DTYPES[matrix.dtype],
                                chunks=(chunk_size[1], chunk_size[0]))
        if local_n > 0:
            dset[offset:offset + local_n, :] = tmp.values.T.numpy()

    grid.barrier()
    if grid.pool_rank == 0:
        with _open(filename, 'r+') as f:
            _write_metadata(f, matrix.state, matrix.get_property())
    grid.barrier()


# =============================================================================
# Load
# =============================================================================

def load_dense(
    matrix: "DDenseMatrix",
    filename: PathLike,
    strategy: str = 'auto',
    verbose: bool = False,
) -> None:
    """
    Read content, state and property of ``matrix`` from an HDF5 file.

    The archive may have been written with any strategy and any number of
    processes; shape and dtype class have to match.
    """
    _require_h5py()
    strategy = resolve_strategy(strategy, matrix.grid)

    if strategy == 'parallel':
        _load_parallel(matrix, filename)
    else:
        _load_serial(matrix, filename)

    if verbose and matrix.grid.pool_rank == 0:
        print(f"[load_dense] {filename} -> {matrix.m}x{matrix.n} "
              f"({strategy}, state {matrix.state.name}, property {matrix.get_property().name})")


def _load_serial(matrix: "DDenseMatrix", filename: PathLike) -> None:
    grid = ProcessGrid(matrix.grid.ranks, 1, 1)
    tmp = _temporary(matrix, grid, matrix.n)

    # state, property, failure flag
    meta = torch.zeros(3, dtype=torch.int64)
    error = None
    if grid.is_process_active:
        try:
            with _open(filename, 'r') as f:
                dset = _read_matrix_dataset(f, matrix)
                tmp._values = _tile_from_numpy(dset[...], matrix.dtype)
                meta[0] = int(_read_enum(f, 'state', State))
                meta[1] = int(_read_enum(f, 'property', Property))
        except (PreconditionError, HDF5Error, OSError, KeyError) as e:
            error = e
            meta[2] = 1
    grid.send_to_inactive(meta)

    if meta[2].item():
        if error is not None:
            raise error
        raise HDF5Error('H5Dread', f"reading {filename} failed on the first process of the pool")

    tmp._state = State(int(meta[0].item()))
    tmp.set_property(Property(int(meta[1].item())))
    tmp.copy_to(matrix)


def _load_parallel(matrix: "DDenseMatrix", filename: PathLike) -> None:
    n_processes = matrix.grid.n_processes
    grid = ProcessGrid(matrix.grid.ranks, 1, n_processes)
    tmp = _temporary(matrix, grid, math.ceil(matrix.n / n_processes))

    local_n = max(tmp.local_n, 0)
    counts = grid.all_gather_int(local_n)
    offset = sum(counts[:grid.pool_rank])

    with _open(filename, 'r', driver='mpio', comm=_communicator(grid)) as f:
        dset = _read_matrix_dataset(f, matrix)
        if local_n > 0:
            tmp._values = _tile_from_numpy(dset[offset:offset + local_n, :], matrix.dtype)
        state = _read_enum(f, 'state', State)
        property = _read_enum(f, 'property', Property)

    tmp._state = state
    tmp.set_property(property)
    tmp.copy_to(matrix)
