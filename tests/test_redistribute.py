"""
Tests for the block-cyclic redistribution in single-process mode.

With one process every block is a self-block, which exercises the exchange
plan without messages. Cross-process exchanges are covered in
test_distributed_multiprocess.py.
"""

import pytest
import torch
import sys

sys.path.insert(0, "..")
from torch_dla import DDenseMatrix, ProcessGrid, redistribute
from torch_dla.redistribute import AxisMap, TransferContext


def numbered(m: int, n: int) -> torch.Tensor:
    return torch.arange(m * n, dtype=torch.float64).reshape(m, n)


class TestAxisMap:
    """Owners and local positions along one axis"""

    def test_owners(self):
        # 6 indices, source blocks of 2 over 2 processes, dest blocks of 3 over 2
        axis = AxisMap(6, 0, 2, 2, 0, 3, 2)
        assert axis.source_owner.tolist() == [0, 0, 1, 1, 0, 0]
        assert axis.dest_owner.tolist() == [0, 0, 0, 1, 1, 1]
        assert axis.source_local.tolist() == [0, 1, 0, 1, 2, 3]
        assert axis.dest_local.tolist() == [0, 1, 2, 0, 1, 2]

    def test_overlap(self):
        axis = AxisMap(6, 0, 2, 2, 0, 3, 2)
        src, dst = axis.overlap(0, 1)
        # submatrix indices 4 and 5
        assert src.tolist() == [2, 3]
        assert dst.tolist() == [1, 2]

    def test_offsets(self):
        axis = AxisMap(2, 3, 2, 2, 1, 2, 2)
        # source globals 3, 4 and destination globals 1, 2
        assert axis.source_owner.tolist() == [1, 0]
        assert axis.dest_owner.tolist() == [0, 1]


class TestTransferContext:
    def test_release_is_idempotent(self):
        grid = ProcessGrid()
        context = TransferContext(grid, grid)
        assert context.ranks == [0]
        context.release()
        context.release()

    def test_union_of_pools(self):
        context = TransferContext(ProcessGrid(ranks=[0]), ProcessGrid(ranks=[2, 1]))
        assert context.ranks == [0, 1, 2]


class TestRedistribute:
    """Copies between distributions on one process"""

    @pytest.mark.parametrize("source_blocks,dest_blocks", [
        ((1, 1), (4, 4)),
        ((3, 2), (2, 5)),
        ((7, 5), (1, 1)),
    ])
    def test_full_copy(self, source_blocks, dest_blocks):
        grid = ProcessGrid()
        M = numbered(7, 5)
        A = DDenseMatrix.from_dense(M, grid, *source_blocks)
        B = DDenseMatrix(7, 5, grid, *dest_blocks)
        redistribute(A, B)
        assert torch.equal(B.to_dense(), M)

    def test_submatrix(self):
        grid = ProcessGrid()
        M = numbered(6, 6)
        A = DDenseMatrix.from_dense(M, grid, 2, 2)
        B = DDenseMatrix(4, 4, grid, 3, 1)
        redistribute(A, B, offset_A=(3, 2), offset_B=(0, 1), submatrix_size=(2, 3))
        expected = torch.zeros(4, 4, dtype=torch.float64)
        expected[0:2, 1:4] = M[3:5, 2:5]
        assert torch.equal(B.to_dense(), expected)

    def test_dtype_conversion(self):
        grid = ProcessGrid()
        M = numbered(3, 3)
        A = DDenseMatrix.from_dense(M, grid, 2, 2)
        B = DDenseMatrix(3, 3, grid, 1, 1, dtype=torch.float32)
        redistribute(A, B)
        assert B.values.dtype == torch.float32
        assert torch.equal(B.to_dense(), M.float())

    def test_empty(self):
        grid = ProcessGrid()
        A = DDenseMatrix.from_dense(numbered(3, 3), grid, 2, 2)
        B = DDenseMatrix(3, 3, grid, 2, 2)
        redistribute(A, B, submatrix_size=(0, 3))
        assert torch.count_nonzero(B.values) == 0

    def test_between_grids(self):
        M = numbered(5, 4)
        A = DDenseMatrix.from_dense(M, ProcessGrid(), 2, 2)
        B = DDenseMatrix(5, 4, ProcessGrid(), 3, 3)
        A.copy_to(B)
        assert torch.equal(B.to_dense(), M)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
