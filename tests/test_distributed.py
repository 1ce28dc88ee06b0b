"""
Tests for the distributed dense matrix (DDenseMatrix) in single-process mode.

Tests cover:
- Construction, block sizes, accessors
- Copies to/from plain tensors and between distributions
- add / mult family / scaling
- Cholesky, inverse, condition number
- Symmetric eigensolvers, SVD, least squares
- Norms and the state/property bookkeeping

Multi-process runs of the same operations live in
test_distributed_multiprocess.py.
"""

import math

import pytest
import torch
import sys

sys.path.insert(0, "..")
from torch_dla import (
    DDenseMatrix,
    ProcessGrid,
    State,
    Property,
    DEFAULT_BLOCK_SIZE,
    DimensionMismatchError,
    GridMismatchError,
    IndexRangeError,
    InvalidStateError,
    LAPACKError,
    PreconditionError,
    get_available_backends,
)


BACKENDS = get_available_backends()


def spd_matrix(n: int, dtype=torch.float64, seed: int = 0) -> torch.Tensor:
    g = torch.Generator().manual_seed(seed)
    a = torch.randn(n, n, generator=g, dtype=dtype)
    return a @ a.T + n * torch.eye(n, dtype=dtype)


def random_matrix(m: int, n: int, dtype=torch.float64, seed: int = 1) -> torch.Tensor:
    g = torch.Generator().manual_seed(seed)
    return torch.randn(m, n, generator=g, dtype=dtype)


@pytest.fixture
def grid():
    return ProcessGrid()


# =============================================================================
# Construction
# =============================================================================

class TestConstruction:
    """Shapes, block sizes and accessors"""

    def test_local_tile_is_whole_matrix(self, grid):
        A = DDenseMatrix(7, 5, grid, 3, 2)
        assert A.shape == (7, 5)
        assert (A.local_m, A.local_n) == (7, 5)
        assert A.values.shape == (7, 5)
        assert A.state == State.matrix
        assert A.get_state() == State.matrix
        assert A.get_property() == Property.general

    def test_descriptor(self, grid):
        A = DDenseMatrix(7, 5, grid, 3, 2)
        assert A.descriptor == (1, grid.context, 7, 5, 3, 2, 0, 0, 7)

    def test_default_block_size(self, grid):
        A = DDenseMatrix(100, 10, grid)
        assert A.row_block_size == DEFAULT_BLOCK_SIZE
        assert A.column_block_size == 10

    def test_square_is_symmetric(self, grid):
        A = DDenseMatrix.square(6, grid, 2)
        assert A.shape == (6, 6)
        assert A.row_block_size == A.column_block_size == 2
        assert A.get_property() == Property.symmetric

    @pytest.mark.parametrize("mb,nb", [(0, 1), (1, 0), (8, 1), (1, 6)])
    def test_invalid_block_sizes(self, grid, mb, nb):
        with pytest.raises(PreconditionError):
            DDenseMatrix(7, 5, grid, mb, nb)

    def test_unsupported_dtype(self, grid):
        with pytest.raises(ValueError):
            DDenseMatrix(3, 3, grid, dtype=torch.int32)

    def test_global_indices(self, grid):
        A = DDenseMatrix(7, 5, grid, 3, 2)
        assert A.global_row(4) == 4
        assert A.global_column(3) == 3
        assert A.global_rows.tolist() == list(range(7))
        assert A.global_columns.tolist() == list(range(5))
        with pytest.raises(IndexRangeError):
            A.global_row(7)

    def test_local_elements(self, grid):
        A = DDenseMatrix(3, 3, grid, 1, 1)
        A.set_local_el(1, 2, 5.0)
        assert A.local_el(1, 2) == 5.0

    def test_reinit(self, grid):
        A = DDenseMatrix.from_dense(random_matrix(4, 4), grid, 2, 2)
        A.reinit(6, 3, grid, 3, 3, Property.general)
        assert A.shape == (6, 3)
        assert torch.count_nonzero(A.values) == 0

    def test_inactive_process(self):
        # this process is not part of the pool of the grid
        grid = ProcessGrid(ranks=[1])
        A = DDenseMatrix(4, 4, grid, 2, 2)
        assert A.values is None
        assert (A.local_m, A.local_n) == (-1, -1)
        assert A.descriptor == (-1,) * 9

    def test_repr(self, grid):
        assert "DDenseMatrix(shape=(4, 3)" in repr(DDenseMatrix(4, 3, grid, 2, 2))


# =============================================================================
# Copies
# =============================================================================

class TestCopy:
    """Copies to tensors and other distributed matrices"""

    def test_roundtrip(self, grid):
        M = random_matrix(6, 4)
        A = DDenseMatrix(6, 4, grid, 4, 3)
        A.assign(M)
        out = torch.zeros(6, 4, dtype=torch.float64)
        A.copy_to(out)
        assert torch.equal(out, M)
        assert torch.equal(A.to_dense(), M)

    def test_assign_resets_state(self, grid):
        A = DDenseMatrix.from_dense(spd_matrix(3), grid, 1, 1, property=Property.symmetric)
        A.compute_cholesky_factorization()
        A.assign(spd_matrix(3))
        assert A.state == State.matrix

    def test_shape_mismatch(self, grid):
        A = DDenseMatrix(3, 3, grid, 1, 1)
        with pytest.raises(DimensionMismatchError):
            A.copy_to(torch.zeros(3, 4, dtype=torch.float64))
        with pytest.raises(DimensionMismatchError):
            A.assign(torch.zeros(2, 3))

    def test_cholesky_factor_is_lower_triangular(self, grid):
        a = spd_matrix(5)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, property=Property.symmetric)
        A.compute_cholesky_factorization()
        L = A.to_dense()
        assert torch.equal(L, torch.tril(L))
        assert torch.allclose(L @ L.T, a)

    def test_inverse_is_mirrored(self, grid):
        a = spd_matrix(5)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, property=Property.symmetric)
        A.invert()
        inv = A.to_dense()
        assert torch.allclose(inv, inv.T)
        assert torch.allclose(inv, torch.linalg.inv(a))

    def test_copy_between_block_sizes(self, grid):
        M = random_matrix(9, 7)
        A = DDenseMatrix.from_dense(M, grid, 2, 3, property=Property.hessenberg)
        B = DDenseMatrix(9, 7, grid, 4, 1)
        A.copy_to(B)
        assert torch.equal(B.to_dense(), M)
        assert B.get_property() == Property.hessenberg
        assert B.state == A.state

    def test_copy_same_distribution(self, grid):
        M = random_matrix(4, 4)
        A = DDenseMatrix.from_dense(M, grid, 2, 2)
        B = DDenseMatrix(4, 4, grid, 2, 2)
        A.copy_to(B)
        assert torch.equal(B.to_dense(), M)
        # independent storage
        A.set_local_el(0, 0, 100.0)
        assert B.local_el(0, 0) == M[0, 0].item()

    def test_copy_dimension_mismatch(self, grid):
        A = DDenseMatrix(4, 4, grid, 2, 2)
        B = DDenseMatrix(4, 3, grid, 2, 2)
        with pytest.raises(DimensionMismatchError):
            A.copy_to(B)

    def test_submatrix(self, grid):
        M = random_matrix(8, 6)
        A = DDenseMatrix.from_dense(M, grid, 3, 2)
        B = DDenseMatrix(5, 5, grid, 2, 2)
        A.copy_to(B, offset_A=(2, 1), offset_B=(1, 0), submatrix_size=(3, 4))
        expected = torch.zeros(5, 5, dtype=torch.float64)
        expected[1:4, 0:4] = M[2:5, 1:5]
        assert torch.equal(B.to_dense(), expected)
        assert B.state == State.matrix

    def test_empty_submatrix(self, grid):
        A = DDenseMatrix.from_dense(random_matrix(4, 4), grid, 2, 2)
        B = DDenseMatrix(4, 4, grid, 2, 2)
        A.copy_to(B, offset_A=(10, 10), offset_B=(0, 0), submatrix_size=(0, 2))
        assert torch.count_nonzero(B.to_dense()) == 0

    @pytest.mark.parametrize("offset_A,offset_B", [((2, 0), (0, 0)), ((0, 0), (0, 3)), ((-1, 0), (0, 0))])
    def test_submatrix_out_of_range(self, grid, offset_A, offset_B):
        A = DDenseMatrix(4, 4, grid, 2, 2)
        B = DDenseMatrix(4, 4, grid, 2, 2)
        with pytest.raises(IndexRangeError):
            A.copy_to(B, offset_A=offset_A, offset_B=offset_B, submatrix_size=(3, 2))

    def test_submatrix_needs_common_pool(self, grid):
        A = DDenseMatrix(4, 4, grid, 2, 2)
        B = DDenseMatrix(4, 4, ProcessGrid(ranks=[1]), 2, 2)
        with pytest.raises(GridMismatchError):
            A.copy_to(B, offset_A=(0, 0), offset_B=(0, 0), submatrix_size=(2, 2))


# =============================================================================
# BLAS-like operations
# =============================================================================

class TestAlgebra:
    """add, mult and scaling"""

    def test_add(self, grid):
        a, b = random_matrix(4, 6), random_matrix(4, 6, seed=2)
        A = DDenseMatrix.from_dense(a, grid, 2, 3)
        B = DDenseMatrix.from_dense(b, grid, 2, 3)
        A.add(B, 2.0, -1.0)
        assert torch.allclose(A.to_dense(), 2.0 * a - b)

    def test_add_transposed(self, grid):
        a, b = random_matrix(4, 6), random_matrix(6, 4, seed=2)
        A = DDenseMatrix.from_dense(a, grid, 2, 3)
        B = DDenseMatrix.from_dense(b, grid, 3, 2)
        A.Tadd(0.5, B)
        assert torch.allclose(A.to_dense(), a + 0.5 * b.T)

    def test_copy_transposed(self, grid):
        b = random_matrix(6, 4, seed=2)
        A = DDenseMatrix(4, 6, grid, 2, 3)
        # NaNs in A must not leak through alpha = 0
        A.assign(torch.full((4, 6), float('nan'), dtype=torch.float64))
        B = DDenseMatrix.from_dense(b, grid, 3, 2)
        A.copy_transposed(B)
        assert torch.equal(A.to_dense(), b.T)

    def test_add_block_size_mismatch(self, grid):
        A = DDenseMatrix(4, 6, grid, 2, 3)
        B = DDenseMatrix(4, 6, grid, 2, 2)
        with pytest.raises(DimensionMismatchError):
            A.add(B)

    def test_add_grid_mismatch(self, grid):
        A = DDenseMatrix(4, 6, grid, 2, 3)
        B = DDenseMatrix(4, 6, ProcessGrid(), 2, 3)
        with pytest.raises(GridMismatchError):
            A.add(B)

    @pytest.mark.parametrize("transpose_A,transpose_B", [
        (False, False), (True, False), (False, True), (True, True)])
    def test_mult(self, grid, transpose_A, transpose_B):
        # op(A): 4 x 3, op(B): 3 x 5
        a = random_matrix(*((3, 4) if transpose_A else (4, 3)))
        b = random_matrix(*((5, 3) if transpose_B else (3, 5)), seed=2)
        c = random_matrix(4, 5, seed=3)
        mb = 2
        A = DDenseMatrix.from_dense(a, grid, mb, mb)
        B = DDenseMatrix.from_dense(b, grid, mb, mb)
        C = DDenseMatrix.from_dense(c, grid, mb, mb)
        A.mult(2.0, B, 0.5, C, transpose_A, transpose_B)
        op_a = a.T if transpose_A else a
        op_b = b.T if transpose_B else b
        assert torch.allclose(C.to_dense(), 2.0 * op_a @ op_b + 0.5 * c)
        assert C.state == State.matrix

    def test_mmult_family(self, grid):
        a, b = random_matrix(3, 3), random_matrix(3, 3, seed=2)
        A = DDenseMatrix.from_dense(a, grid, 2, 2)
        B = DDenseMatrix.from_dense(b, grid, 2, 2)
        C = DDenseMatrix(3, 3, grid, 2, 2)
        A.mmult(C, B)
        assert torch.allclose(C.to_dense(), a @ b)
        A.Tmmult(C, B, adding=True)
        assert torch.allclose(C.to_dense(), a @ b + a.T @ b)
        A.mTmult(C, B)
        assert torch.allclose(C.to_dense(), a @ b.T)
        A.TmTmult(C, B)
        assert torch.allclose(C.to_dense(), a.T @ b.T)

    def test_mult_dimension_mismatch(self, grid):
        A = DDenseMatrix(4, 3, grid, 2, 2)
        B = DDenseMatrix(4, 5, grid, 2, 2)
        C = DDenseMatrix(4, 5, grid, 2, 2)
        with pytest.raises(DimensionMismatchError):
            A.mmult(C, B)

    def test_scale(self, grid):
        a = random_matrix(4, 3)
        A = DDenseMatrix.from_dense(a, grid, 3, 2)
        A.scale_rows([1.0, 2.0, 3.0, 4.0])
        A.scale_columns(torch.tensor([1.0, 0.0, -1.0]))
        r = torch.tensor([1.0, 2.0, 3.0, 4.0], dtype=torch.float64)
        c = torch.tensor([1.0, 0.0, -1.0], dtype=torch.float64)
        assert torch.allclose(A.to_dense(), a * r.unsqueeze(1) * c.unsqueeze(0))

    def test_scale_length_mismatch(self, grid):
        A = DDenseMatrix(4, 3, grid, 2, 2)
        with pytest.raises(DimensionMismatchError):
            A.scale_rows([1.0, 2.0])


# =============================================================================
# Factorizations
# =============================================================================

@pytest.mark.parametrize("backend", BACKENDS)
class TestCholesky:
    """Cholesky factorization, inverse and condition number"""

    def test_factorization(self, grid, backend):
        a = spd_matrix(6)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, property=Property.symmetric, backend=backend)
        A.compute_cholesky_factorization()
        assert A.state == State.cholesky
        assert A.get_property() == Property.lower_triangular
        assert torch.allclose(A.to_dense(), torch.linalg.cholesky(a))

    def test_not_square(self, grid, backend):
        A = DDenseMatrix(4, 3, grid, 2, 2, backend=backend)
        with pytest.raises(PreconditionError, match="SPD matrices only"):
            A.compute_cholesky_factorization()

    def test_not_positive_definite(self, grid, backend):
        a = torch.diag(torch.tensor([1.0, 2.0, -3.0], dtype=torch.float64))
        A = DDenseMatrix.from_dense(a, grid, 1, 1, backend=backend)
        with pytest.raises(LAPACKError) as excinfo:
            A.compute_cholesky_factorization()
        assert excinfo.value.routine == 'potrf'
        assert excinfo.value.info == 3

    def test_invert(self, grid, backend):
        # identity plus diagonally dominant part
        a = torch.eye(4, dtype=torch.float64) + torch.tensor([
            [4.0, 1.0, 0.0, 0.0],
            [1.0, 4.0, 1.0, 0.0],
            [0.0, 1.0, 4.0, 1.0],
            [0.0, 0.0, 1.0, 4.0],
        ], dtype=torch.float64)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, property=Property.symmetric, backend=backend)
        A.invert()
        assert A.state == State.inverse_matrix
        assert torch.allclose(A.to_dense() @ a, torch.eye(4, dtype=torch.float64))

    def test_invert_from_factor(self, grid, backend):
        a = spd_matrix(5)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, property=Property.symmetric, backend=backend)
        A.compute_cholesky_factorization()
        A.invert()
        assert torch.allclose(A.to_dense(), torch.linalg.inv(a))

    def test_invert_wrong_state(self, grid, backend):
        A = DDenseMatrix.from_dense(spd_matrix(3), grid, 1, 1, backend=backend)
        A.invert()
        with pytest.raises(InvalidStateError):
            A.invert()

    def test_reciprocal_condition_number(self, grid, backend):
        a = spd_matrix(6)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, property=Property.symmetric, backend=backend)
        a_norm = A.l1_norm()
        A.compute_cholesky_factorization()
        rcond = A.reciprocal_condition_number(a_norm)
        exact = 1.0 / (torch.linalg.matrix_norm(a, ord=1) *
                       torch.linalg.matrix_norm(torch.linalg.inv(a), ord=1)).item()
        assert rcond == pytest.approx(exact, rel=0.5)

    def test_condition_number_needs_factor(self, grid, backend):
        A = DDenseMatrix.from_dense(spd_matrix(3), grid, 1, 1, backend=backend)
        with pytest.raises(InvalidStateError, match="Cholesky"):
            A.reciprocal_condition_number(1.0)


# =============================================================================
# Eigenproblems and SVD
# =============================================================================

@pytest.mark.parametrize("backend", BACKENDS)
class TestEigenpairs:
    """Symmetric eigensolvers"""

    def diagonal(self, grid, backend):
        d = torch.tensor([5.0, 1.0, 4.0, 2.0, 3.0], dtype=torch.float64)
        return DDenseMatrix.from_dense(torch.diag(d), grid, 2, 2,
                                       property=Property.symmetric, backend=backend)

    def test_all_eigenvalues(self, grid, backend):
        A = self.diagonal(grid, backend)
        ev = A.eigenpairs_symmetric(compute_eigenvectors=False)
        assert ev.tolist() == pytest.approx([1.0, 2.0, 3.0, 4.0, 5.0])
        assert A.state == State.unusable

    def test_by_index(self, grid, backend):
        A = self.diagonal(grid, backend)
        ev = A.eigenpairs_symmetric_by_index((1, 2), compute_eigenvectors=False)
        assert ev.tolist() == pytest.approx([2.0, 3.0])

    def test_by_index_reversed(self, grid, backend):
        A = self.diagonal(grid, backend)
        ev = A.eigenpairs_symmetric_by_index((3, 1), compute_eigenvectors=False)
        assert ev.tolist() == pytest.approx([2.0, 3.0, 4.0])

    def test_by_index_out_of_range(self, grid, backend):
        A = self.diagonal(grid, backend)
        with pytest.raises(IndexRangeError):
            A.eigenpairs_symmetric_by_index((0, 5))

    def test_by_value(self, grid, backend):
        A = self.diagonal(grid, backend)
        ev = A.eigenpairs_symmetric_by_value((1.5, 4.5), compute_eigenvectors=False)
        assert ev.tolist() == pytest.approx([2.0, 3.0, 4.0])

    def test_by_value_nan(self, grid, backend):
        A = self.diagonal(grid, backend)
        with pytest.raises(PreconditionError, match="NaN"):
            A.eigenpairs_symmetric_by_value((float('nan'), 1.0))

    def test_eigenvectors(self, grid, backend):
        a = spd_matrix(7, seed=3)
        A = DDenseMatrix.from_dense(a, grid, 3, 3, property=Property.symmetric, backend=backend)
        ev = A.eigenpairs_symmetric()
        assert torch.allclose(ev, torch.linalg.eigvalsh(a))
        V = A.to_dense()
        assert torch.allclose(a @ V, V * ev)
        assert A.state == State.eigenvalues
        assert A.get_property() == Property.general

    def test_selected_eigenvectors(self, grid, backend):
        a = spd_matrix(6, seed=4)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, property=Property.symmetric, backend=backend)
        ev = A.eigenpairs_symmetric_by_index((0, 1))
        assert ev.numel() == 2
        V = A.to_dense()[:, :2]
        assert torch.allclose(a @ V, V * ev)

    def test_requires_symmetric(self, grid, backend):
        A = DDenseMatrix.from_dense(spd_matrix(3), grid, 1, 1, backend=backend)
        with pytest.raises(InvalidStateError, match="symmetric"):
            A.eigenpairs_symmetric()

    def test_ambiguous_selection(self, grid, backend):
        A = self.diagonal(grid, backend)
        with pytest.raises(PreconditionError, match="ambiguous"):
            A.eigenpairs_symmetric(True, index_limits=(0, 1), value_limits=(0.0, 1.0))

    def test_nan_value_limits_are_ignored(self, grid, backend):
        A = self.diagonal(grid, backend)
        ev = A.eigenpairs_symmetric(False, value_limits=(math.nan, math.nan))
        assert ev.numel() == 5

    def test_state_after_decomposition(self, grid, backend):
        A = self.diagonal(grid, backend)
        A.eigenpairs_symmetric()
        with pytest.raises(InvalidStateError):
            A.eigenpairs_symmetric()


@pytest.mark.parametrize("backend", BACKENDS)
class TestSVD:
    """Singular value decomposition"""

    def test_singular_values(self, grid, backend):
        a = random_matrix(6, 4)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, backend=backend)
        sv = A.compute_SVD()
        assert sv.numel() == 4
        assert torch.allclose(sv, torch.linalg.svdvals(a))
        assert torch.all(sv[:-1] >= sv[1:])
        assert A.state == State.unusable

    def test_singular_vectors(self, grid, backend):
        a = random_matrix(4, 6)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, backend=backend)
        U = DDenseMatrix(4, 4, grid, 2, 2, backend=backend)
        VT = DDenseMatrix(6, 6, grid, 2, 2, backend=backend)
        sv = A.compute_SVD(U, VT)
        u, vt = U.to_dense(), VT.to_dense()
        assert torch.allclose(u @ torch.diag(sv) @ vt[:4], a)
        assert torch.allclose(u.T @ u, torch.eye(4, dtype=torch.float64))

    def test_block_sizes_must_match(self, grid, backend):
        A = DDenseMatrix(4, 4, grid, 2, 1, backend=backend)
        with pytest.raises(DimensionMismatchError):
            A.compute_SVD()

    def test_u_shape(self, grid, backend):
        A = DDenseMatrix(4, 6, grid, 2, 2, backend=backend)
        U = DDenseMatrix(6, 6, grid, 2, 2, backend=backend)
        with pytest.raises(DimensionMismatchError):
            A.compute_SVD(U)


# =============================================================================
# Least squares, norms
# =============================================================================

@pytest.mark.parametrize("backend", BACKENDS)
class TestLeastSquares:
    """Overdetermined systems, with and without transposing A"""

    def test_overdetermined(self, grid, backend):
        a, b = random_matrix(6, 3), random_matrix(6, 2, seed=5)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, backend=backend)
        B = DDenseMatrix.from_dense(b, grid, 2, 2, backend=backend)
        A.least_squares(B)
        expected = torch.linalg.lstsq(a, b).solution
        assert torch.allclose(B.to_dense()[:3], expected)
        assert A.state == State.unusable
        assert B.state == State.matrix

    def test_transposed(self, grid, backend):
        a, b = random_matrix(3, 6), random_matrix(6, 2, seed=5)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, backend=backend)
        B = DDenseMatrix.from_dense(b, grid, 2, 2, backend=backend)
        A.least_squares(B, transpose=True)
        expected = torch.linalg.lstsq(a.T, b).solution
        assert torch.allclose(B.to_dense()[:3], expected)

    def test_dimension_mismatch(self, grid, backend):
        A = DDenseMatrix(6, 3, grid, 2, 2, backend=backend)
        B = DDenseMatrix(4, 2, grid, 2, 2, backend=backend)
        with pytest.raises(DimensionMismatchError):
            A.least_squares(B)

    def test_distribution_mismatch(self, grid, backend):
        A = DDenseMatrix(6, 3, grid, 3, 3, backend=backend)
        B = DDenseMatrix(6, 2, grid, 2, 2, backend=backend)
        with pytest.raises(PreconditionError, match="identical block-cyclic distribution"):
            A.least_squares(B)


@pytest.mark.parametrize("backend", BACKENDS)
class TestNorms:
    """l1, linfty and Frobenius norms"""

    def test_general(self, grid, backend):
        a = random_matrix(5, 3)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, backend=backend)
        assert A.l1_norm() == pytest.approx(torch.linalg.matrix_norm(a, ord=1).item())
        assert A.linfty_norm() == pytest.approx(torch.linalg.matrix_norm(a, ord=float('inf')).item())
        assert A.frobenius_norm() == pytest.approx(torch.linalg.matrix_norm(a).item())

    def test_symmetric_reads_lower_triangle(self, grid, backend):
        s = spd_matrix(5)
        A = DDenseMatrix.from_dense(torch.tril(s), grid, 2, 2, property=Property.symmetric,
                                    backend=backend)
        assert A.l1_norm() == pytest.approx(torch.linalg.matrix_norm(s, ord=1).item())
        assert A.frobenius_norm() == pytest.approx(torch.linalg.matrix_norm(s).item())

    def test_norm_of_inverse(self, grid, backend):
        a = spd_matrix(4)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, property=Property.symmetric, backend=backend)
        A.invert()
        # the inverse keeps the lower triangular property: general norm of the stored triangle
        assert A.l1_norm() > 0.0

    def test_norm_wrong_state(self, grid, backend):
        A = DDenseMatrix.from_dense(spd_matrix(3), grid, 1, 1, property=Property.symmetric,
                                    backend=backend)
        A.compute_cholesky_factorization()
        with pytest.raises(InvalidStateError):
            A.frobenius_norm()


class TestWorkspace:
    """Workspace buffers follow the size queries"""

    @pytest.mark.skipif('scipy' not in BACKENDS, reason="SciPy not installed")
    def test_workspace_resized(self, grid):
        A = DDenseMatrix.from_dense(spd_matrix(8), grid, 4, 4, property=Property.symmetric,
                                    backend='scipy')
        A.eigenpairs_symmetric(compute_eigenvectors=False)
        assert A._work.numel() >= 1
        assert A._work.dtype == torch.float64

    def test_float32(self, grid):
        a = spd_matrix(4, dtype=torch.float32)
        A = DDenseMatrix.from_dense(a, grid, 2, 2, property=Property.symmetric)
        assert A.dtype == torch.float32
        ev = A.eigenpairs_symmetric(compute_eigenvectors=False)
        assert ev.dtype == torch.float32
        assert torch.allclose(ev, torch.linalg.eigvalsh(a), atol=1e-4)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
