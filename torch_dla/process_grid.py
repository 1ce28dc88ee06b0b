"""
Two-dimensional process grid on top of ``torch.distributed``.

A ``ProcessGrid`` takes a pool of processes (a list of global ranks) and lays
the first ``Pr * Pc`` of them out in column-major order on a ``Pr x Pc``
grid. The remaining processes of the pool are *inactive*: they own no part
of any matrix distributed on the grid, take no part in the numerical
routines, and only receive results through ``send_to_inactive``.

Example
-------
>>> import torch.distributed as dist
>>> from torch_dla import ProcessGrid
>>>
>>> dist.init_process_group('gloo')
>>> grid = ProcessGrid(n_process_rows=2, n_process_columns=2)
>>> grid.is_process_active, grid.coords
(True, (1, 0))

Without an initialized process group every helper degenerates to the
single-process case: the pool is ``[0]`` and the grid is ``1 x 1``.
"""

import itertools
import math
import warnings
from typing import Dict, List, Optional, Sequence, Tuple

import torch

try:
    import torch.distributed as dist
    DIST_AVAILABLE = True
except ImportError:
    DIST_AVAILABLE = False


# one group per distinct rank set, created once and shared by all grids
_GROUP_CACHE: Dict[Tuple[int, ...], object] = {}

_context_counter = itertools.count()


def is_distributed() -> bool:
    """True when a ``torch.distributed`` process group is up."""
    return DIST_AVAILABLE and dist.is_available() and dist.is_initialized()


def world_rank() -> int:
    return dist.get_rank() if is_distributed() else 0


def world_size() -> int:
    return dist.get_world_size() if is_distributed() else 1


def _group_for(ranks: Sequence[int]):
    """
    Process group spanning ``ranks`` (global ranks, sorted).

    Only members call this. The whole world maps onto the default group
    (``None``); other rank sets are created with local synchronization so
    non-members do not take part.
    """
    key = tuple(sorted(ranks))
    if len(key) == world_size():
        return None
    if key not in _GROUP_CACHE:
        _GROUP_CACHE[key] = dist.new_group(list(key), use_local_synchronization=True)
    return _GROUP_CACHE[key]


def _near_square(n_processes: int) -> Tuple[int, int]:
    rows = int(math.isqrt(n_processes))
    while n_processes % rows:
        rows -= 1
    return rows, n_processes // rows


def grid_shape_for_matrix(
    n_processes: int,
    matrix_shape: Tuple[int, int],
    block_sizes: Tuple[int, int],
) -> Tuple[int, int]:
    """
    Process grid shape suited to a matrix of the given shape and blocking.

    No more processes are used than there are blocks; the column count is
    chosen so that ``Pc / Pr`` follows the aspect ratio of the matrix, with at
    least two columns when two or more processes are used.
    """
    m, n = matrix_shape
    mb, nb = block_sizes
    if m <= 0 or n <= 0 or mb <= 0 or nb <= 0:
        raise ValueError(
            f"matrix shape {matrix_shape} and block sizes {block_sizes} must be positive"
        )
    n_blocks = math.ceil(m / mb) * math.ceil(n / nb)
    n_used = min(n_blocks, n_processes)
    pc = int(math.sqrt(n / m * n_used))
    n_columns = min(n_used, max(2, pc))
    n_rows = n_used // n_columns
    return n_rows, n_columns


class ProcessGrid:
    """
    Layout of a process pool on a 2D grid.

    Parameters
    ----------
    ranks : Sequence[int], optional
        Global ranks forming the pool. Defaults to the whole world. Every
        process of the pool has to construct the grid; processes outside
        the pool may construct it as well and are then neither members nor
        active, which lets them take part in redistributions between pools.
    n_process_rows, n_process_columns : int, optional
        Explicit grid shape. Must be given together.
    matrix_shape, block_sizes : Tuple[int, int], optional
        Derive the grid shape from the matrix to be distributed instead.
    verbose : bool
        Print the layout on the first process of the pool.

    Attributes
    ----------
    ranks : List[int]
        The pool, in grid order.
    shape : Tuple[int, int]
        ``(n_process_rows, n_process_columns)``.
    coords : Tuple[int, int]
        Grid coordinates of this process, ``(-1, -1)`` if inactive.
    context : int
        Identifier of this grid, recorded in array descriptors.
    """

    def __init__(
        self,
        ranks: Optional[Sequence[int]] = None,
        n_process_rows: Optional[int] = None,
        n_process_columns: Optional[int] = None,
        matrix_shape: Optional[Tuple[int, int]] = None,
        block_sizes: Optional[Tuple[int, int]] = None,
        verbose: bool = False,
    ):
        if ranks is None:
            ranks = list(range(world_size()))
        self.ranks: List[int] = [int(r) for r in ranks]
        if len(set(self.ranks)) != len(self.ranks) or not self.ranks:
            raise ValueError(f"Invalid process pool {self.ranks}")

        self.rank = world_rank()
        # processes outside the pool may hold a handle; they are never active
        self.is_member = self.rank in self.ranks
        self.pool_rank = self.ranks.index(self.rank) if self.is_member else -1
        n_processes = len(self.ranks)

        if n_process_rows is not None or n_process_columns is not None:
            if n_process_rows is None or n_process_columns is None:
                raise ValueError("n_process_rows and n_process_columns must be given together")
            if n_process_rows <= 0 or n_process_columns <= 0:
                raise ValueError(
                    f"Invalid process grid {n_process_rows} x {n_process_columns}"
                )
        elif matrix_shape is not None:
            if block_sizes is None:
                block_sizes = matrix_shape
            n_process_rows, n_process_columns = grid_shape_for_matrix(
                n_processes, matrix_shape, block_sizes
            )
        else:
            n_process_rows, n_process_columns = _near_square(n_processes)

        if n_process_rows * n_process_columns > n_processes:
            raise ValueError(
                f"Size of process grid ({n_process_rows} x {n_process_columns}) is larger "
                f"than the number of available processes ({n_processes})."
            )

        self.n_process_rows = n_process_rows
        self.n_process_columns = n_process_columns
        n_active = n_process_rows * n_process_columns
        self.active_ranks = self.ranks[:n_active]
        self.inactive_ranks = self.ranks[n_active:]
        self.root_rank = self.ranks[0]

        self.is_process_active = self.is_member and self.pool_rank < n_active
        if self.is_process_active:
            self.this_process_row = self.pool_rank % n_process_rows
            self.this_process_column = self.pool_rank // n_process_rows
        else:
            self.this_process_row = -1
            self.this_process_column = -1

        self.context = next(_context_counter)
        self._released = False

        self._pool_group = None
        self._active_group = None
        self._inactive_group = None
        if is_distributed() and n_processes > 1 and self.is_member:
            self._pool_group = _group_for(self.ranks)
            if self.is_process_active and n_active > 1:
                self._active_group = _group_for(self.active_ranks)
            if self.inactive_ranks and (self.rank == self.root_rank or not self.is_process_active):
                self._inactive_group = _group_for([self.root_rank] + self.inactive_ranks)

        if self.inactive_ranks and matrix_shape is not None and self.pool_rank == 0:
            warnings.warn(
                f"Process grid {n_process_rows} x {n_process_columns} leaves "
                f"{len(self.inactive_ranks)} of {n_processes} processes inactive"
            )
        if verbose and self.pool_rank == 0:
            print(f"[ProcessGrid {self.context}] {n_process_rows} x {n_process_columns} | "
                  f"active: {n_active}/{n_processes} | ranks: {self.active_ranks}")

    # =========================================================================
    # Layout
    # =========================================================================

    @property
    def shape(self) -> Tuple[int, int]:
        return self.n_process_rows, self.n_process_columns

    @property
    def coords(self) -> Tuple[int, int]:
        return self.this_process_row, self.this_process_column

    @property
    def n_processes(self) -> int:
        """Size of the pool, active and inactive processes together."""
        return len(self.ranks)

    @property
    def n_active(self) -> int:
        return len(self.active_ranks)

    @property
    def is_root(self) -> bool:
        return self.rank == self.root_rank

    def rank_of(self, row: int, column: int) -> int:
        """Global rank of the process at grid position ``(row, column)``."""
        if not (0 <= row < self.n_process_rows and 0 <= column < self.n_process_columns):
            raise ValueError(f"({row}, {column}) is outside the {self.shape} process grid")
        return self.active_ranks[column * self.n_process_rows + row]

    def contains(self, rank: int) -> bool:
        return rank in self.ranks

    # =========================================================================
    # Collectives
    # =========================================================================

    def _single(self) -> bool:
        if self._released:
            raise RuntimeError(f"{self!r} has been released")
        return not is_distributed() or self.n_processes == 1 or not self.is_member

    def barrier(self) -> None:
        """Synchronize the pool."""
        if self._single():
            return
        dist.barrier(group=self._pool_group)

    def sum_over_pool(self, tensor: torch.Tensor) -> torch.Tensor:
        """In-place sum of ``tensor`` over every process of the pool."""
        if self._single():
            return tensor
        dist.all_reduce(tensor, op=dist.ReduceOp.SUM, group=self._pool_group)
        return tensor

    def all_gather_int(self, value: int) -> List[int]:
        """Collect one integer from every process of the pool, in pool order."""
        if self._single():
            return [int(value)]
        local = torch.tensor([int(value)], dtype=torch.int64)
        gathered = [torch.zeros(1, dtype=torch.int64) for _ in self.ranks]
        dist.all_gather(gathered, local, group=self._pool_group)
        # all_gather orders by group rank, i.e. by ascending global rank
        by_rank = dict(zip(sorted(self.ranks), (int(t.item()) for t in gathered)))
        return [by_rank[r] for r in self.ranks]

    def reduce_to_root(self, tensor: torch.Tensor) -> torch.Tensor:
        """Sum ``tensor`` over the active processes onto the root. Active only."""
        if self._single() or self.n_active == 1:
            return tensor
        dist.reduce(tensor, dst=self.root_rank, op=dist.ReduceOp.SUM, group=self._active_group)
        return tensor

    def broadcast_from_root(self, tensor: torch.Tensor) -> torch.Tensor:
        """Copy ``tensor`` from the root to every active process. Active only."""
        if self._single() or self.n_active == 1:
            return tensor
        dist.broadcast(tensor, src=self.root_rank, group=self._active_group)
        return tensor

    def send_to_inactive(self, tensor: torch.Tensor) -> torch.Tensor:
        """
        Broadcast ``tensor`` from the root to every inactive process.

        Must be called by the whole pool; active processes other than the
        root return immediately. ``tensor`` must already have its final shape
        and dtype on the receivers.
        """
        if self._single() or not self.inactive_ranks:
            return tensor
        if self.is_process_active and not self.is_root:
            return tensor
        dist.broadcast(tensor, src=self.root_rank, group=self._inactive_group)
        return tensor

    def send_scalar_to_inactive(self, value, dtype: torch.dtype = torch.float64):
        """``send_to_inactive`` for one Python number; returns the received value."""
        buffer = torch.tensor([value], dtype=dtype)
        self.send_to_inactive(buffer)
        return buffer.item()

    def release(self) -> None:
        """
        Drop the references to the process groups of this grid.

        Groups are shared by every grid over the same rank set and stay
        cached until ``destroy_process_groups`` is called.
        """
        self._pool_group = None
        self._active_group = None
        self._inactive_group = None
        self._released = True

    def __repr__(self) -> str:
        return (f"ProcessGrid(shape={self.shape}, coords={self.coords}, "
                f"active={self.n_active}/{self.n_processes}, context={self.context})")


def destroy_process_groups() -> None:
    """Destroy every sub-group created for process grids."""
    for group in _GROUP_CACHE.values():
        dist.destroy_process_group(group)
    _GROUP_CACHE.clear()
