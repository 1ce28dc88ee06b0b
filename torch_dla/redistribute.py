"""
General block-cyclic to block-cyclic copy of (sub)matrices.

``redistribute`` moves the ``m x n`` submatrix of ``A`` starting at
``(ia, ja)`` into ``B`` at ``(ib, jb)``, where ``A`` and ``B`` may live on
different process grids with different block sizes. It is the equivalent of
ScaLAPACK's ``p?gemr2d``.

Every process of the union of both pools must call it. Each process derives
the complete exchange plan locally from the block-cyclic formulas:

1. Along each axis, the submatrix index ``r`` lives on source process row
   ``g2p(ia + r)`` and destination process row ``g2p(ib + r)``.
2. The block sent from source ``(pa_r, pa_c)`` to destination
   ``(pb_r, pb_c)`` consists of the rows/columns whose owners match, taken
   in ascending submatrix order on both sides.
3. Blocks to oneself are copied locally, all others go through
   non-blocking point-to-point messages.

Processes that are inactive on a grid simply have nothing to send or
receive for that side.
"""

from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

import torch

from .block_cyclic import global_to_local, global_to_process
from .process_grid import ProcessGrid

try:
    import torch.distributed as dist
    DIST_AVAILABLE = True
except ImportError:
    DIST_AVAILABLE = False

if TYPE_CHECKING:
    from .distributed import DDenseMatrix

REDISTRIBUTE_TAG = 2718


class AxisMap:
    """
    Owner and local position of every submatrix index along one axis.

    Attributes
    ----------
    source_owner, dest_owner : torch.Tensor
        Process coordinate owning submatrix index ``r`` in ``A`` / ``B``.
    source_local, dest_local : torch.Tensor
        Local position of index ``r`` on its owner.
    """

    def __init__(self, size: int, source_offset: int, source_block: int, source_procs: int,
                 dest_offset: int, dest_block: int, dest_procs: int):
        r = torch.arange(size, dtype=torch.int64)
        source_global = r + source_offset
        dest_global = r + dest_offset
        self.source_owner = global_to_process(source_global, source_block, 0, source_procs)
        self.source_local = global_to_local(source_global, source_block, source_procs)
        self.dest_owner = global_to_process(dest_global, dest_block, 0, dest_procs)
        self.dest_local = global_to_local(dest_global, dest_block, dest_procs)

    def overlap(self, source_coord: int, dest_coord: int) -> Tuple[torch.Tensor, torch.Tensor]:
        """Local indices on the source and destination side shared by a process pair."""
        mask = (self.source_owner == source_coord) & (self.dest_owner == dest_coord)
        return self.source_local[mask], self.dest_local[mask]


class TransferContext:
    """
    Communication context spanning the union of two process pools.

    Collects the outstanding point-to-point requests of one redistribution;
    ``release()`` completes them and must be called before the buffers are
    read. Usable as a context manager.
    """

    def __init__(self, source_grid: ProcessGrid, dest_grid: ProcessGrid):
        self.ranks = sorted(set(source_grid.ranks) | set(dest_grid.ranks))
        self.rank = source_grid.rank
        self._requests = []
        self._released = False

    def send(self, tensor: torch.Tensor, dst: int) -> None:
        self._requests.append(dist.isend(tensor, dst=dst, tag=REDISTRIBUTE_TAG))

    def recv(self, tensor: torch.Tensor, src: int) -> None:
        self._requests.append(dist.irecv(tensor, src=src, tag=REDISTRIBUTE_TAG))

    def release(self) -> None:
        if self._released:
            return
        for req in self._requests:
            req.wait()
        self._requests = []
        self._released = True

    def __enter__(self) -> "TransferContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def redistribute(
    A: "DDenseMatrix",
    B: "DDenseMatrix",
    offset_A: Tuple[int, int] = (0, 0),
    offset_B: Tuple[int, int] = (0, 0),
    submatrix_size: Optional[Tuple[int, int]] = None,
) -> None:
    """
    Copy ``A[ia:ia+m, ja:ja+n]`` into ``B[ib:ib+m, jb:jb+n]``.

    Parameters
    ----------
    A, B : DDenseMatrix
        Source and destination. ``B``'s local tiles are written in place.
    offset_A, offset_B : Tuple[int, int]
        0-based global offsets of the submatrix in ``A`` and ``B``.
    submatrix_size : Tuple[int, int], optional
        ``(m, n)``; defaults to the full shape of ``A``.
    """
    if submatrix_size is None:
        submatrix_size = A.shape
    m, n = submatrix_size
    if m == 0 or n == 0:
        return

    grid_a, grid_b = A.grid, B.grid
    rows = AxisMap(m, offset_A[0], A.row_block_size, grid_a.n_process_rows,
                   offset_B[0], B.row_block_size, grid_b.n_process_rows)
    cols = AxisMap(n, offset_A[1], A.column_block_size, grid_a.n_process_columns,
                   offset_B[1], B.column_block_size, grid_b.n_process_columns)

    me = grid_a.rank
    send_blocks: Dict[int, torch.Tensor] = {}
    recv_plan: List[Tuple[int, torch.Tensor, torch.Tensor]] = []

    if grid_a.is_process_active:
        ra, ca = grid_a.coords
        for cb in range(grid_b.n_process_columns):
            col_src, _ = cols.overlap(ca, cb)
            if col_src.numel() == 0:
                continue
            for rb in range(grid_b.n_process_rows):
                row_src, _ = rows.overlap(ra, rb)
                if row_src.numel() == 0:
                    continue
                block = A.values.index_select(0, row_src).index_select(1, col_src)
                send_blocks[grid_b.rank_of(rb, cb)] = block.contiguous()

    if grid_b.is_process_active:
        rb, cb = grid_b.coords
        for ca in range(grid_a.n_process_columns):
            _, col_dst = cols.overlap(ca, cb)
            if col_dst.numel() == 0:
                continue
            for ra in range(grid_a.n_process_rows):
                _, row_dst = rows.overlap(ra, rb)
                if row_dst.numel() == 0:
                    continue
                recv_plan.append((grid_a.rank_of(ra, ca), row_dst, col_dst))

    received = []
    with TransferContext(grid_a, grid_b) as context:
        for src, row_dst, col_dst in recv_plan:
            if src == me:
                block = send_blocks.pop(me)
            else:
                block = torch.empty(row_dst.numel(), col_dst.numel(), dtype=A.dtype)
                context.recv(block, src)
            received.append((row_dst, col_dst, block))
        for dst, block in send_blocks.items():
            context.send(block, dst)

    for row_dst, col_dst, block in received:
        B.values[row_dst.unsqueeze(1), col_dst.unsqueeze(0)] = block.to(B.dtype)
