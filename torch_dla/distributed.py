"""
Distributed dense matrix in 2D block-cyclic layout.

``DDenseMatrix`` holds the local tile of a global ``m x n`` matrix that is
cut into ``mb x nb`` blocks and dealt round-robin over a ``ProcessGrid``.
Processes that are inactive on the grid hold no data. On top of the storage
it offers the dense linear algebra of a ScaLAPACK matrix: Cholesky
factorization and inversion, symmetric eigensolvers, SVD, least squares,
condition number estimates, norms and BLAS-3 products, together with copies
between arbitrary grids and block sizes and HDF5 persistence.

Key Features:
- Local tile storage as a torch tensor, global index maps as int64 tensors
- State/property bookkeeping that rejects illegal operation sequences
- Redistribution between different grids with point-to-point messages
- Numerical routines dispatched to a SciPy (LAPACK) or torch.linalg backend

Example
-------
>>> from torch_dla import ProcessGrid, DDenseMatrix, Property
>>>
>>> grid = ProcessGrid(n_process_rows=2, n_process_columns=2)
>>> A = DDenseMatrix(100, 100, grid, 16, 16, property=Property.symmetric)
>>> A.assign(A_full)                    # every process passes the same tensor
>>>
>>> ev = A.eigenpairs_symmetric_by_index((0, 4))  # five smallest eigenpairs
>>> V = A.to_dense()                    # eigenvectors in the leading columns
"""

import math
import threading
from typing import Optional, Sequence, Tuple, Union

import torch

from .backends import get_backend, BackendType
from .block_cyclic import (
    descinit,
    global_indices,
    inactive_descriptor,
    local_to_global,
    numroc,
)
from .exceptions import (
    DimensionMismatchError,
    GridMismatchError,
    IndexRangeError,
    InvalidStateError,
    LAPACKError,
    PreconditionError,
)
from .lapack_support import Property, State, check_state
from .process_grid import ProcessGrid
from .redistribute import redistribute

DEFAULT_BLOCK_SIZE = 32

TensorLike = Union[torch.Tensor, Sequence[float]]


def _check_same_grid(A: "DDenseMatrix", B: "DDenseMatrix", names: str = "A and B") -> None:
    if A.grid is not B.grid:
        raise GridMismatchError(f"The matrices {names} need to have the same process grid")


def _check_equal(a, b, what: str = "") -> None:
    if a != b:
        raise DimensionMismatchError(a, b, what)


class DDenseMatrix:
    """
    Dense matrix distributed block-cyclically over a process grid.

    Every process of the grid's pool has to construct the matrix and call
    each collective method (all numerical routines, copies, norms, save and
    load).

    Parameters
    ----------
    n_rows, n_columns : int
        Global shape.
    grid : ProcessGrid
        Grid the matrix lives on. Several matrices may share one grid.
    row_block_size, column_block_size : int, optional
        Block sizes, defaulting to ``min(DEFAULT_BLOCK_SIZE, dimension)``.
        Must satisfy ``1 <= block size <= dimension``.
    property : Property
        Declared structure.
    dtype : torch.dtype
        ``torch.float64`` (default) or ``torch.float32``.
    backend : str
        Dense backend ('scipy', 'pytorch' or 'auto').

    Attributes
    ----------
    grid : ProcessGrid
    values : torch.Tensor or None
        Local tile ``[local_m, local_n]``; ``None`` on inactive processes.
    descriptor : Tuple[int, ...]
        9-integer array descriptor, all ``-1`` on inactive processes.
    state : State
        Current state, see ``get_property()`` for the declared structure.
    """

    def __init__(
        self,
        n_rows: int,
        n_columns: int,
        grid: ProcessGrid,
        row_block_size: Optional[int] = None,
        column_block_size: Optional[int] = None,
        property: Property = Property.general,
        dtype: torch.dtype = torch.float64,
        backend: BackendType = 'auto',
    ):
        if dtype not in (torch.float32, torch.float64):
            raise ValueError(f"Unsupported dtype {dtype}: use torch.float32 or torch.float64")
        self.dtype = dtype
        self.backend_name = backend
        self._backend = get_backend(backend, torch.device('cpu'), dtype)
        self.uplo = 'L'

        # workspace of the numerical routines, guarded by _lock
        self._lock = threading.Lock()
        self._work = torch.zeros(0, dtype=dtype)
        self._iwork = torch.zeros(0, dtype=torch.int32)

        self.reinit(n_rows, n_columns, grid, row_block_size, column_block_size, property)

    @classmethod
    def square(
        cls,
        size: int,
        grid: ProcessGrid,
        block_size: Optional[int] = None,
        property: Property = Property.symmetric,
        **kwargs,
    ) -> "DDenseMatrix":
        """Square matrix with equal row and column block size, symmetric by default."""
        return cls(size, size, grid, block_size, block_size, property=property, **kwargs)

    @classmethod
    def from_dense(
        cls,
        matrix: torch.Tensor,
        grid: ProcessGrid,
        row_block_size: Optional[int] = None,
        column_block_size: Optional[int] = None,
        property: Property = Property.general,
        **kwargs,
    ) -> "DDenseMatrix":
        """Distribute a full matrix that every process of the pool holds."""
        matrix = torch.as_tensor(matrix)
        if matrix.dim() != 2:
            raise ValueError(f"Expected a 2D matrix, got shape {tuple(matrix.shape)}")
        if matrix.is_floating_point():
            kwargs.setdefault('dtype', matrix.dtype)
        A = cls(matrix.shape[0], matrix.shape[1], grid, row_block_size, column_block_size,
                property=property, **kwargs)
        A.assign(matrix)
        return A

    def reinit(
        self,
        n_rows: int,
        n_columns: int,
        grid: ProcessGrid,
        row_block_size: Optional[int] = None,
        column_block_size: Optional[int] = None,
        property: Property = Property.general,
    ) -> None:
        """Reset shape, distribution and property; the content becomes zero."""
        if row_block_size is None:
            row_block_size = min(DEFAULT_BLOCK_SIZE, n_rows)
        if column_block_size is None:
            column_block_size = min(DEFAULT_BLOCK_SIZE, n_columns)
        if row_block_size <= 0:
            raise PreconditionError("Row block size has to be positive.")
        if column_block_size <= 0:
            raise PreconditionError("Column block size has to be positive.")
        if row_block_size > n_rows:
            raise PreconditionError(
                f"Row block size ({row_block_size}) can not be greater than "
                f"the number of rows of the matrix ({n_rows})"
            )
        if column_block_size > n_columns:
            raise PreconditionError(
                f"Column block size ({column_block_size}) can not be greater than "
                f"the number of columns of the matrix ({n_columns})"
            )

        self.grid = grid
        self._m = n_rows
        self._n = n_columns
        self.row_block_size = row_block_size
        self.column_block_size = column_block_size
        self._property = Property(property)
        self._state = State.matrix
        self.first_process_row = 0
        self.first_process_column = 0

        if grid.is_process_active:
            row, column = grid.coords
            self._local_m = numroc(n_rows, row_block_size, row, 0, grid.n_process_rows)
            self._local_n = numroc(n_columns, column_block_size, column, 0, grid.n_process_columns)
            self._global_rows = global_indices(n_rows, row_block_size, row, 0, grid.n_process_rows)
            self._global_columns = global_indices(
                n_columns, column_block_size, column, 0, grid.n_process_columns
            )
            lld = max(1, self._local_m)
            self.descriptor = descinit(n_rows, n_columns, row_block_size, column_block_size,
                                       self.first_process_row, self.first_process_column,
                                       grid.context, lld)
            self._values = torch.zeros(self._local_m, self._local_n, dtype=self.dtype)
        else:
            self._local_m = -1
            self._local_n = -1
            self._global_rows = torch.zeros(0, dtype=torch.int64)
            self._global_columns = torch.zeros(0, dtype=torch.int64)
            self.descriptor = inactive_descriptor()
            self._values = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def m(self) -> int:
        """Number of rows"""
        return self._m

    @property
    def n(self) -> int:
        """Number of columns"""
        return self._n

    @property
    def shape(self) -> Tuple[int, int]:
        return self._m, self._n

    @property
    def local_m(self) -> int:
        """Rows of the local tile, -1 on inactive processes"""
        return self._local_m

    @property
    def local_n(self) -> int:
        """Columns of the local tile, -1 on inactive processes"""
        return self._local_n

    @property
    def values(self) -> Optional[torch.Tensor]:
        return self._values

    @property
    def state(self) -> State:
        return self._state

    def get_state(self) -> State:
        return self._state

    def get_property(self) -> Property:
        return self._property

    def set_property(self, property: Property) -> None:
        self._property = Property(property)

    @property
    def global_rows(self) -> torch.Tensor:
        """Global row index of every local row"""
        return self._global_rows

    @property
    def global_columns(self) -> torch.Tensor:
        """Global column index of every local column"""
        return self._global_columns

    def global_row(self, loc_row: int) -> int:
        """Global row index of local row ``loc_row``"""
        if not 0 <= loc_row < max(self._local_m, 0):
            raise IndexRangeError(loc_row, 0, max(self._local_m, 0), "local row")
        return int(local_to_global(loc_row, self.row_block_size, self.grid.this_process_row,
                                   self.first_process_row, self.grid.n_process_rows))

    def global_column(self, loc_column: int) -> int:
        """Global column index of local column ``loc_column``"""
        if not 0 <= loc_column < max(self._local_n, 0):
            raise IndexRangeError(loc_column, 0, max(self._local_n, 0), "local column")
        return int(local_to_global(loc_column, self.column_block_size,
                                   self.grid.this_process_column,
                                   self.first_process_column, self.grid.n_process_columns))

    def local_el(self, loc_row: int, loc_column: int) -> float:
        """Element of the local tile"""
        return self._values[loc_row, loc_column].item()

    def set_local_el(self, loc_row: int, loc_column: int, value: float) -> None:
        self._values[loc_row, loc_column] = value

    def _scatter_index(self):
        return self._global_rows.unsqueeze(1), self._global_columns.unsqueeze(0)

    def __repr__(self) -> str:
        return (f"DDenseMatrix(shape={self.shape}, blocks=({self.row_block_size}, "
                f"{self.column_block_size}), grid={self.grid.shape}, local=({self._local_m}, "
                f"{self._local_n}), state={self._state.name}, property={self._property.name})")

    # =========================================================================
    # Copies
    # =========================================================================

    def assign(self, matrix: TensorLike) -> "DDenseMatrix":
        """
        Fill the local tiles from a full matrix held by every process.

        The state becomes ``State.matrix``; the property is kept.
        """
        matrix = torch.as_tensor(matrix)
        _check_equal(self._m, matrix.shape[0], "rows")
        _check_equal(self._n, matrix.shape[1], "columns")
        if self.grid.is_process_active:
            rows, cols = self._scatter_index()
            self._values = matrix[rows, cols].to(self.dtype).clone()
        self._state = State.matrix
        return self

    def copy_to(
        self,
        target: Union[torch.Tensor, "DDenseMatrix"],
        offset_A: Optional[Tuple[int, int]] = None,
        offset_B: Optional[Tuple[int, int]] = None,
        submatrix_size: Optional[Tuple[int, int]] = None,
    ):
        """
        Copy the matrix into a full tensor or another distributed matrix.

        Parameters
        ----------
        target : torch.Tensor or DDenseMatrix
            A full ``m x n`` tensor receives the whole matrix on every process
            of the pool. A ``DDenseMatrix`` of the same shape receives the
            content, state and property; it may live on another grid and use
            other block sizes.
        offset_A, offset_B, submatrix_size : Tuple[int, int], optional
            Copy only the submatrix of size ``submatrix_size`` starting at
            ``offset_A`` into ``target`` at ``offset_B``. Both matrices must
            share one process pool; ``target`` ends up in ``State.matrix``.

        Returns
        -------
        target
        """
        if isinstance(target, DDenseMatrix):
            if offset_A is None and offset_B is None and submatrix_size is None:
                self._copy_to_distributed(target)
            else:
                self._copy_submatrix(
                    target,
                    offset_A if offset_A is not None else (0, 0),
                    offset_B if offset_B is not None else (0, 0),
                    submatrix_size if submatrix_size is not None else self.shape,
                )
            return target
        return self._copy_to_tensor(target)

    def to_dense(self) -> torch.Tensor:
        """Full matrix on every process of the pool."""
        return self._copy_to_tensor(torch.zeros(self._m, self._n, dtype=self.dtype))

    def _copy_to_tensor(self, matrix: torch.Tensor) -> torch.Tensor:
        _check_equal(self._m, matrix.shape[0], "rows")
        _check_equal(self._n, matrix.shape[1], "columns")

        full = torch.zeros(self._m, self._n, dtype=self.dtype)
        if self.grid.is_process_active:
            rows, cols = self._scatter_index()
            full[rows, cols] = self._values
        self.grid.sum_over_pool(full)

        # the triangle opposite to a factor is either mirrored or cleared
        if self._property in (Property.lower_triangular, Property.upper_triangular):
            upper = self._property == Property.lower_triangular
            mask = torch.ones(self._m, self._n, dtype=torch.bool)
            mask = torch.triu(mask, 1) if upper else torch.tril(mask, -1)
            if self._state == State.inverse_matrix:
                full = torch.where(mask, full.T, full)
            else:
                full = full.masked_fill(mask, 0.0)

        matrix.copy_(full)
        return matrix

    def _copy_to_distributed(self, dest: "DDenseMatrix") -> None:
        _check_equal(self._m, dest.m, "rows")
        _check_equal(self._n, dest.n, "columns")

        if (self.grid is not dest.grid
                or self.row_block_size != dest.row_block_size
                or self.column_block_size != dest.column_block_size):
            redistribute(self, dest)
        elif self.grid.is_process_active:
            dest._values = self._values.to(dest.dtype).clone()

        dest._state = self._state
        dest._property = self._property

    def _copy_submatrix(
        self,
        B: "DDenseMatrix",
        offset_A: Tuple[int, int],
        offset_B: Tuple[int, int],
        submatrix_size: Tuple[int, int],
    ) -> None:
        m, n = submatrix_size
        if m == 0 or n == 0:
            return

        for offset, upper, what in (
            (offset_A[0], self._m - m + 1, "row offset of A"),
            (offset_A[1], self._n - n + 1, "column offset of A"),
            (offset_B[0], B.m - m + 1, "row offset of B"),
            (offset_B[1], B.n - n + 1, "column offset of B"),
        ):
            if not 0 <= offset < upper:
                raise IndexRangeError(offset, 0, upper, what)

        if self.grid.ranks != B.grid.ranks:
            raise GridMismatchError("Matrix A and B must have a common process pool")

        redistribute(self, B, offset_A, offset_B, submatrix_size)
        B._state = State.matrix

    # =========================================================================
    # Root assembly
    # =========================================================================

    def _gather_on_root(self) -> Optional[torch.Tensor]:
        """Full matrix on the grid root, ``None`` elsewhere. Active processes only."""
        full = torch.zeros(self._m, self._n, dtype=self.dtype)
        rows, cols = self._scatter_index()
        full[rows, cols] = self._values
        self.grid.reduce_to_root(full)
        return full if self.grid.is_root else None

    def _gather_on_active(self) -> torch.Tensor:
        """Full matrix on every active process."""
        full = self._gather_on_root()
        if full is None:
            full = torch.empty(self._m, self._n, dtype=self.dtype)
        return self.grid.broadcast_from_root(full)

    def _scatter_from_root(self, full: Optional[torch.Tensor]) -> None:
        """Set the local tiles from a full matrix known on the root. Active only."""
        if not self.grid.is_root:
            full = torch.empty(self._m, self._n, dtype=self.dtype)
        full = full.to(self.dtype).contiguous()
        self.grid.broadcast_from_root(full)
        rows, cols = self._scatter_index()
        self._values = full[rows, cols].clone()

    def _share(self, tensor: torch.Tensor) -> torch.Tensor:
        """Broadcast a result from the root to every process of the pool."""
        if self.grid.is_process_active:
            self.grid.broadcast_from_root(tensor)
        self.grid.send_to_inactive(tensor)
        return tensor

    def _share_info(self, routine: str, info: int) -> None:
        status = self._share(torch.tensor([info], dtype=torch.int64))
        if status.item() != 0:
            raise LAPACKError(routine, int(status.item()))

    def _resize_workspace(self, lwork: int, liwork: int = 0) -> None:
        if self._work.numel() != lwork:
            self._work = torch.zeros(lwork, dtype=self.dtype)
        if self._iwork.numel() != liwork:
            self._iwork = torch.zeros(liwork, dtype=torch.int32)

    @property
    def _lower(self) -> bool:
        return self.uplo == 'L'

    # =========================================================================
    # BLAS-like operations
    # =========================================================================

    def add(
        self,
        B: "DDenseMatrix",
        alpha: float = 1.0,
        beta: float = 1.0,
        transpose_B: bool = False,
    ) -> None:
        """
        ``A = alpha * A + beta * op(B)`` with ``op`` the identity or transpose.

        For ``alpha == 0`` the content of ``A`` is not read.
        """
        if transpose_B:
            _check_equal(self._m, B.n)
            _check_equal(self._n, B.m)
            _check_equal(self.column_block_size, B.row_block_size)
            _check_equal(self.row_block_size, B.column_block_size)
        else:
            _check_equal(self._m, B.m)
            _check_equal(self._n, B.n)
            _check_equal(self.column_block_size, B.column_block_size)
            _check_equal(self.row_block_size, B.row_block_size)
        _check_same_grid(self, B)

        if self.grid.is_process_active:
            if transpose_B:
                rows, cols = self._scatter_index()
                op_B = B._gather_on_active().T[rows, cols]
            else:
                op_B = B.values
            if alpha == 0:
                self._values = beta * op_B.to(self.dtype)
            else:
                self._values = alpha * self._values + beta * op_B.to(self.dtype)
        self._state = State.matrix

    def Tadd(self, a: float, B: "DDenseMatrix") -> None:
        """``A = A + a * B^T``"""
        self.add(B, 1.0, a, True)

    def copy_transposed(self, B: "DDenseMatrix") -> None:
        """``A = B^T``"""
        self.add(B, 0.0, 1.0, True)

    def mult(
        self,
        b: float,
        B: "DDenseMatrix",
        c: float,
        C: "DDenseMatrix",
        transpose_A: bool = False,
        transpose_B: bool = False,
    ) -> None:
        """
        ``C = b * op(A) * op(B) + c * C``

        All three matrices must share the grid, and shapes and block sizes
        have to match for the requested combination of transposes.
        """
        _check_same_grid(self, B)
        _check_same_grid(B, C, "B and C")

        A = self
        if not transpose_A and not transpose_B:
            _check_equal(A.n, B.m)
            _check_equal(A.m, C.m)
            _check_equal(B.n, C.n)
            _check_equal(A.row_block_size, C.row_block_size)
            _check_equal(A.column_block_size, B.row_block_size)
            _check_equal(B.column_block_size, C.column_block_size)
        elif transpose_A and not transpose_B:
            _check_equal(A.m, B.m)
            _check_equal(A.n, C.m)
            _check_equal(B.n, C.n)
            _check_equal(A.column_block_size, C.row_block_size)
            _check_equal(A.row_block_size, B.row_block_size)
            _check_equal(B.column_block_size, C.column_block_size)
        elif not transpose_A and transpose_B:
            _check_equal(A.n, B.n)
            _check_equal(A.m, C.m)
            _check_equal(B.m, C.n)
            _check_equal(A.row_block_size, C.row_block_size)
            _check_equal(A.column_block_size, B.column_block_size)
            _check_equal(B.row_block_size, C.column_block_size)
        else:
            _check_equal(A.m, B.n)
            _check_equal(A.n, C.m)
            _check_equal(B.m, C.n)
            _check_equal(A.column_block_size, C.row_block_size)
            _check_equal(A.row_block_size, B.column_block_size)
            _check_equal(B.row_block_size, C.column_block_size)

        if self.grid.is_process_active:
            A_full = A._gather_on_root()
            B_full = B._gather_on_root()
            C_full = C._gather_on_root() if c != 0 else None
            result = None
            if self.grid.is_root:
                result = self._backend.gemm(b, A_full, B_full, c, C_full, transpose_A, transpose_B)
            C._scatter_from_root(result)
        C._state = State.matrix

    def mmult(self, C: "DDenseMatrix", B: "DDenseMatrix", adding: bool = False) -> None:
        """``C = A * B`` (``C += A * B`` if ``adding``)"""
        self.mult(1.0, B, 1.0 if adding else 0.0, C, False, False)

    def Tmmult(self, C: "DDenseMatrix", B: "DDenseMatrix", adding: bool = False) -> None:
        """``C = A^T * B`` (``C += A^T * B`` if ``adding``)"""
        self.mult(1.0, B, 1.0 if adding else 0.0, C, True, False)

    def mTmult(self, C: "DDenseMatrix", B: "DDenseMatrix", adding: bool = False) -> None:
        """``C = A * B^T`` (``C += A * B^T`` if ``adding``)"""
        self.mult(1.0, B, 1.0 if adding else 0.0, C, False, True)

    def TmTmult(self, C: "DDenseMatrix", B: "DDenseMatrix", adding: bool = False) -> None:
        """``C = A^T * B^T`` (``C += A^T * B^T`` if ``adding``)"""
        self.mult(1.0, B, 1.0 if adding else 0.0, C, True, True)

    def scale_rows(self, factors: TensorLike) -> None:
        """Multiply row ``i`` by ``factors[i]`` (global row index)."""
        factors = torch.as_tensor(factors, dtype=self.dtype)
        _check_equal(self._m, factors.numel())
        if self.grid.is_process_active:
            self._values *= factors[self._global_rows].unsqueeze(1)

    def scale_columns(self, factors: TensorLike) -> None:
        """Multiply column ``j`` by ``factors[j]`` (global column index)."""
        factors = torch.as_tensor(factors, dtype=self.dtype)
        _check_equal(self._n, factors.numel())
        if self.grid.is_process_active:
            self._values *= factors[self._global_columns].unsqueeze(0)

    # =========================================================================
    # Factorizations
    # =========================================================================

    def compute_cholesky_factorization(self) -> None:
        """
        Cholesky factorization in place, using the lower triangle.

        The property becomes ``lower_triangular`` and the state ``cholesky``.
        """
        if self._m != self._n:
            raise PreconditionError("Cholesky factorization can be applied to SPD matrices only.")
        check_state('compute_cholesky_factorization', self._state)

        factor, info = None, 0
        if self.grid.is_process_active:
            full = self._gather_on_root()
            if self.grid.is_root:
                factor, info = self._backend.potrf(full, lower=self._lower)
        self._share_info('potrf', info)
        if self.grid.is_process_active:
            self._scatter_from_root(factor)

        self._property = Property.lower_triangular if self._lower else Property.upper_triangular
        self._state = State.cholesky

    def invert(self) -> None:
        """
        Invert an SPD matrix in place through its Cholesky factor.

        A matrix in ``matrix`` state is factorized first; one already in
        ``cholesky`` state is inverted directly. Only the factor's triangle
        holds the inverse; ``copy_to`` mirrors it into the other one.
        """
        check_state('invert', self._state)
        if self._state == State.matrix:
            self.compute_cholesky_factorization()

        inverse, info = None, 0
        if self.grid.is_process_active:
            full = self._gather_on_root()
            if self.grid.is_root:
                inverse, info = self._backend.potri(full, lower=self._lower)
        self._share_info('potri', info)
        if self.grid.is_process_active:
            self._scatter_from_root(inverse)

        self._state = State.inverse_matrix

    # =========================================================================
    # Eigenproblems and SVD
    # =========================================================================

    def eigenpairs_symmetric_by_index(
        self,
        index_limits: Tuple[int, int],
        compute_eigenvectors: bool = True,
    ) -> torch.Tensor:
        """
        Eigenvalues with indices in the inclusive range ``index_limits``.

        Indices are 0-based and count eigenvalues in ascending order; the pair
        may be given in either order. With ``compute_eigenvectors`` the
        matrix is overwritten by the eigenvectors, stored in its leading
        columns.
        """
        for index in index_limits:
            if not 0 <= index < self._m:
                raise IndexRangeError(index, 0, self._m, "eigenvalue index")
        lo, hi = min(index_limits), max(index_limits)
        if lo == 0 and hi == self._m - 1:
            return self.eigenpairs_symmetric(compute_eigenvectors)
        return self.eigenpairs_symmetric(compute_eigenvectors, index_limits=(lo, hi))

    def eigenpairs_symmetric_by_value(
        self,
        value_limits: Tuple[float, float],
        compute_eigenvectors: bool = True,
    ) -> torch.Tensor:
        """Eigenvalues in the half-open interval ``(min, max]`` of ``value_limits``."""
        for i, value in enumerate(value_limits):
            if math.isnan(value):
                raise PreconditionError(f"value_limits[{i}] is NaN")
        return self.eigenpairs_symmetric(compute_eigenvectors, value_limits=value_limits)

    def _eigenvector_target(self, compute_eigenvectors: bool) -> "DDenseMatrix":
        if compute_eigenvectors:
            target = DDenseMatrix(self._m, self._n, self.grid, self.row_block_size,
                                  self.column_block_size, dtype=self.dtype,
                                  backend=self.backend_name)
        else:
            # nothing is written into the placeholder
            target = DDenseMatrix(self.grid.n_process_rows, self.grid.n_process_columns,
                                  self.grid, 1, 1, dtype=self.dtype, backend=self.backend_name)
        target._property = self._property
        return target

    def eigenpairs_symmetric(
        self,
        compute_eigenvectors: bool = True,
        index_limits: Optional[Tuple[int, int]] = None,
        value_limits: Optional[Tuple[float, float]] = None,
    ) -> torch.Tensor:
        """
        Eigenvalues (and optionally eigenvectors) of a symmetric matrix.

        Parameters
        ----------
        compute_eigenvectors : bool
            Overwrite the matrix with the eigenvectors (as columns).
        index_limits : Tuple[int, int], optional
            0-based inclusive index range of the wanted eigenvalues.
        value_limits : Tuple[float, float], optional
            Interval of the wanted eigenvalues. Limits containing NaN are
            treated as absent.

        Returns
        -------
        torch.Tensor
            The selected eigenvalues in ascending order.

        After the call the matrix is in ``eigenvalues`` state with property
        ``general`` if eigenvectors were computed, otherwise ``unusable``.
        """
        check_state('eigenpairs_symmetric', self._state)
        if self._property != Property.symmetric:
            raise InvalidStateError("Matrix has to be symmetric for this operation.")

        use_values = value_limits is not None and not any(math.isnan(v) for v in value_limits)
        use_indices = index_limits is not None
        if use_values and use_indices:
            raise PreconditionError(
                "Prescribing both the index and value range for the eigenvalues is ambiguous"
            )
        all_eigenpairs = not use_values and not use_indices
        routine = 'syev' if all_eigenpairs else 'syevx'

        with self._lock:
            eigenvectors = self._eigenvector_target(compute_eigenvectors)
            ev = torch.zeros(self._m, dtype=self.dtype)
            count = torch.tensor([self._m], dtype=torch.int64)
            vectors, info = None, 0

            if self.grid.is_process_active:
                full = self._gather_on_root()
                if self.grid.is_root:
                    lower = self._lower
                    if all_eigenpairs:
                        lwork, liwork = self._backend.syev_lwork(self._m, lower, self.dtype)
                        self._resize_workspace(lwork, liwork)
                        w, vectors, info = self._backend.syev(
                            full, compute_eigenvectors, lower, lwork=lwork)
                    else:
                        lwork, liwork = self._backend.syevx_lwork(self._m, lower, self.dtype)
                        self._resize_workspace(lwork, liwork)
                        index_range = (min(index_limits), max(index_limits)) if use_indices else None
                        value_range = (min(value_limits), max(value_limits)) if use_values else None
                        w, vectors, info = self._backend.syevx(
                            full, compute_eigenvectors, lower, index_range=index_range,
                            value_range=value_range, lwork=lwork)
                    if info == 0:
                        count[0] = w.numel()
                        ev[:w.numel()] = w
            self._share_info(routine, info)

            if compute_eigenvectors and self.grid.is_process_active:
                full_vectors = None
                if self.grid.is_root:
                    full_vectors = torch.zeros(self._m, self._n, dtype=self.dtype)
                    full_vectors[:, :vectors.shape[1]] = vectors
                eigenvectors._scatter_from_root(full_vectors)
                # identical shape and distribution: swap the local tiles
                self._values, eigenvectors._values = eigenvectors._values, self._values

            self._share(count)
            self._share(ev)

        if compute_eigenvectors:
            self._property = Property.general
            self._state = State.eigenvalues
        else:
            self._state = State.unusable
        return ev[:int(count.item())].clone()

    def compute_SVD(
        self,
        U: Optional["DDenseMatrix"] = None,
        VT: Optional["DDenseMatrix"] = None,
    ) -> torch.Tensor:
        """
        Singular value decomposition ``A = U * diag(sv) * VT``.

        Parameters
        ----------
        U : DDenseMatrix, optional
            ``m x m`` matrix receiving the left singular vectors.
        VT : DDenseMatrix, optional
            ``n x n`` matrix receiving the transposed right singular vectors.

        Returns
        -------
        torch.Tensor
            The ``min(m, n)`` singular values in descending order.

        The matrix is ``unusable`` afterwards.
        """
        check_state('compute_SVD', self._state)
        _check_equal(self.row_block_size, self.column_block_size, "block sizes of A")

        for other, size, name in ((U, self._m, "U"), (VT, self._n, "VT")):
            if other is None:
                continue
            _check_equal(size, other.m, name)
            _check_equal(other.m, other.n, name)
            _check_equal(self.row_block_size, other.row_block_size, name)
            _check_equal(self.column_block_size, other.column_block_size, name)
            _check_same_grid(self, other, f"A and {name}")

        with self._lock:
            sv = torch.zeros(min(self._m, self._n), dtype=self.dtype)
            u = vt = None
            info = 0
            if self.grid.is_process_active:
                full = self._gather_on_root()
                if self.grid.is_root:
                    compute_uv = U is not None or VT is not None
                    lwork, liwork = self._backend.gesvd_lwork(self._m, self._n, compute_uv,
                                                              self.dtype)
                    self._resize_workspace(lwork, liwork)
                    u, s, vt, info = self._backend.gesvd(full, U is not None, VT is not None,
                                                         lwork=lwork)
                    if info == 0:
                        sv.copy_(s)
            self._share_info('gesvd', info)

            if self.grid.is_process_active:
                if U is not None:
                    U._scatter_from_root(u)
                if VT is not None:
                    VT._scatter_from_root(vt)
            self._share(sv)

        self._property = Property.general
        self._state = State.unusable
        return sv

    # =========================================================================
    # Least squares, condition number, norms
    # =========================================================================

    def least_squares(self, B: "DDenseMatrix", transpose: bool = False) -> None:
        """
        Solve ``min || B - op(A) X ||`` (or the minimum norm problem).

        ``B`` is overwritten with the solution in its leading rows; for an
        overdetermined system the remaining rows hold the residual
        components. ``A`` is ``unusable`` afterwards.
        """
        _check_same_grid(self, B)
        check_state('least_squares', self._state)
        check_state('least_squares', B.state, "Matrix B")
        if transpose:
            _check_equal(self._n, B.m)
        else:
            _check_equal(self._m, B.m)
        if self.row_block_size != self.column_block_size:
            raise PreconditionError("Use identical block sizes for rows and columns of matrix A")
        if B.row_block_size != B.column_block_size:
            raise PreconditionError("Use identical block sizes for rows and columns of matrix B")
        if self.row_block_size != B.row_block_size:
            raise PreconditionError("Use identical block-cyclic distribution for matrices A and B")

        with self._lock:
            solution, info = None, 0
            if self.grid.is_process_active:
                A_full = self._gather_on_root()
                B_full = B._gather_on_root()
                if self.grid.is_root:
                    rhs = torch.zeros(max(self._m, self._n), B.n, dtype=self.dtype)
                    rhs[:B.m] = B_full
                    lwork, liwork = self._backend.gels_lwork(self._m, self._n, B.n, transpose,
                                                             self.dtype)
                    self._resize_workspace(lwork, liwork)
                    x, info = self._backend.gels(A_full, rhs, transpose, lwork=lwork)
                    solution = x[:B.m]
            self._share_info('gels', info)
            if self.grid.is_process_active:
                B._scatter_from_root(solution)

        self._state = State.unusable

    def reciprocal_condition_number(self, a_norm: float) -> float:
        """
        Estimate of the reciprocal condition number in the 1-norm.

        The matrix must hold its Cholesky factor; ``a_norm`` is the 1-norm of
        the original matrix, computed before the factorization.
        """
        check_state('reciprocal_condition_number', self._state)
        with self._lock:
            rcond = torch.zeros(1, dtype=torch.float64)
            info = 0
            if self.grid.is_process_active:
                full = self._gather_on_root()
                if self.grid.is_root:
                    lwork, liwork = self._backend.pocon_lwork(self._n)
                    self._resize_workspace(lwork, liwork)
                    value, info = self._backend.pocon(full, a_norm, lower=self._lower)
                    rcond[0] = value
            self._share_info('pocon', info)
            self._share(rcond)
        return rcond.item()

    def l1_norm(self) -> float:
        """Maximum absolute column sum"""
        return self._norm('O')

    def linfty_norm(self) -> float:
        """Maximum absolute row sum"""
        return self._norm('I')

    def frobenius_norm(self) -> float:
        return self._norm('F')

    def _norm(self, type: str) -> float:
        if self._property == Property.symmetric:
            return self._norm_symmetric(type)
        return self._norm_general(type)

    def _norm_general(self, type: str) -> float:
        check_state('norm', self._state)
        with self._lock:
            result = torch.zeros(1, dtype=torch.float64)
            if self.grid.is_process_active:
                full = self._gather_on_root()
                if self.grid.is_root:
                    lwork = {'O': self._n, '1': self._n, 'I': self._m}.get(type, 0)
                    self._resize_workspace(lwork)
                    result[0] = self._backend.lange(type, full)
            self._share(result)
        return result.item()

    def _norm_symmetric(self, type: str) -> float:
        check_state('norm', self._state)
        if self._property != Property.symmetric:
            raise InvalidStateError("Matrix has to be symmetric for this operation.")
        with self._lock:
            result = torch.zeros(1, dtype=torch.float64)
            if self.grid.is_process_active:
                full = self._gather_on_root()
                if self.grid.is_root:
                    lwork = 0 if type in ('M', 'F', 'E') else 2 * self._n + self._m
                    self._resize_workspace(lwork)
                    result[0] = self._backend.lansy(type, full, lower=self._lower)
            self._share(result)
        return result.item()

    # =========================================================================
    # Persistence (I/O)
    # =========================================================================

    def save(
        self,
        filename: str,
        chunk_size: Optional[Tuple[int, int]] = None,
        strategy: str = 'auto',
        verbose: bool = False,
    ) -> None:
        """Write content, state and property to an HDF5 file (see ``torch_dla.io``)."""
        from .io import save_dense
        save_dense(self, filename, chunk_size=chunk_size, strategy=strategy, verbose=verbose)

    def load(self, filename: str, strategy: str = 'auto', verbose: bool = False) -> None:
        """Read content, state and property from an HDF5 file (see ``torch_dla.io``)."""
        from .io import load_dense
        load_dense(self, filename, strategy=strategy, verbose=verbose)
