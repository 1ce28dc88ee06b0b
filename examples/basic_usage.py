#!/usr/bin/env python
"""
Basic Usage Examples for torch-dla

This example demonstrates, in a single process:
1. Creating a DDenseMatrix and inspecting its block-cyclic layout
2. Matrix operations (products, sums, scaling, norms)
3. Cholesky factorization, condition number and inverse
4. Symmetric eigenproblems and SVD
5. Least squares

The same code runs unchanged on many processes; see examples/distributed/.
"""

import torch
from torch_dla import DDenseMatrix, ProcessGrid, Property, LAPACKError


def spd_matrix(n: int, dtype=torch.float64) -> torch.Tensor:
    a = torch.randn(n, n, dtype=dtype)
    return a @ a.T + n * torch.eye(n, dtype=dtype)


# =============================================================================
# 1. Creation
# =============================================================================

def example_1_create():
    """Distribute a dense matrix with 3 x 2 blocks."""
    grid = ProcessGrid(verbose=True)
    M = torch.arange(35, dtype=torch.float64).reshape(7, 5)

    A = DDenseMatrix.from_dense(M, grid, 3, 2)
    print(f"Created: {A}")
    print(f"Local tile {A.local_m} x {A.local_n}, global rows {A.global_rows.tolist()}")
    print(f"Descriptor: {A.descriptor}")
    print(f"Dense form:\n{A.to_dense()}")
    return A


# =============================================================================
# 2. Matrix operations
# =============================================================================

def example_2_operations():
    """C = A B, A + B^T, row scaling and norms."""
    grid = ProcessGrid()
    a, b = torch.randn(4, 3, dtype=torch.float64), torch.randn(3, 4, dtype=torch.float64)
    A = DDenseMatrix.from_dense(a, grid, 2, 2)
    B = DDenseMatrix.from_dense(b, grid, 2, 2)

    C = DDenseMatrix(4, 4, grid, 2, 2)
    A.mmult(C, B)
    print(f"||A B - C||: {(a @ b - C.to_dense()).norm():.2e}")

    A.add(B, alpha=1.0, beta=1.0, transpose_B=True)
    print(f"||A + B^T - result||: {(a + b.T - A.to_dense()).norm():.2e}")

    A.scale_rows(torch.tensor([1.0, 2.0, 3.0, 4.0], dtype=torch.float64))
    print(f"l1 norm: {A.l1_norm():.4f}, linf norm: {A.linfty_norm():.4f}, "
          f"frobenius: {A.frobenius_norm():.4f}")


# =============================================================================
# 3. Cholesky and inverse
# =============================================================================

def example_3_cholesky():
    """Factorize, estimate the condition number, invert."""
    n = 20
    a = spd_matrix(n)
    A = DDenseMatrix.square(n, ProcessGrid(), block_size=4)
    A.assign(a)

    a_norm = A.l1_norm()
    A.compute_cholesky_factorization()
    print(f"State: {A.state.name}, property: {A.get_property().name}")
    rcond = A.reciprocal_condition_number(a_norm)
    print(f"Reciprocal condition number: {rcond:.4e}")

    A.invert()
    err = (A.to_dense() @ a - torch.eye(n, dtype=torch.float64)).norm()
    print(f"||A^-1 A - I||: {err:.2e}")

    # failures raise on every process
    B = DDenseMatrix.from_dense(-a, ProcessGrid(), 4, 4, property=Property.symmetric)
    try:
        B.compute_cholesky_factorization()
    except LAPACKError as e:
        print(f"Negative definite matrix: {e}")


# =============================================================================
# 4. Eigenvalues and SVD
# =============================================================================

def example_4_eigen_svd():
    """Eigenpairs by index and by value, singular values."""
    n = 12
    a = spd_matrix(n)

    grid = ProcessGrid()
    A = DDenseMatrix.from_dense(a, grid, 4, 4, property=Property.symmetric)
    ev = A.eigenpairs_symmetric_by_index((0, 2))
    V = A.to_dense()[:, :3]
    print(f"Three smallest eigenvalues: {[f'{v:.4f}' for v in ev.tolist()]}")
    print(f"||A V - V diag(ev)||: {(a @ V - V * ev).norm():.2e}")

    A = DDenseMatrix.from_dense(a, grid, 4, 4, property=Property.symmetric)
    ev = A.eigenpairs_symmetric_by_value((float(n), 2.0 * n), compute_eigenvectors=False)
    print(f"Eigenvalues in ({n}, {2 * n}]: {len(ev)}")

    r = torch.randn(8, 5, dtype=torch.float64)
    R = DDenseMatrix.from_dense(r, grid, 2, 2)
    U = DDenseMatrix(8, 8, grid, 2, 2)
    VT = DDenseMatrix(5, 5, grid, 2, 2)
    sv = R.compute_SVD(U, VT)
    print(f"Singular values: {[f'{v:.4f}' for v in sv.tolist()]}")


# =============================================================================
# 5. Least squares
# =============================================================================

def example_5_least_squares():
    """min ||A X - B|| for a tall A; X overwrites the leading rows of B."""
    a = torch.randn(10, 4, dtype=torch.float64)
    b = torch.randn(10, 2, dtype=torch.float64)
    grid = ProcessGrid()
    A = DDenseMatrix.from_dense(a, grid, 2, 2)
    B = DDenseMatrix.from_dense(b, grid, 2, 2)
    A.least_squares(B)
    x = B.to_dense()[:4]
    print(f"||X - lstsq||: {(x - torch.linalg.lstsq(a, b).solution).norm():.2e}")


if __name__ == "__main__":
    torch.manual_seed(0)

    print("=" * 60)
    print("1. CREATION")
    print("=" * 60)
    example_1_create()

    print("\n" + "=" * 60)
    print("2. MATRIX OPERATIONS")
    print("=" * 60)
    example_2_operations()

    print("\n" + "=" * 60)
    print("3. CHOLESKY AND INVERSE")
    print("=" * 60)
    example_3_cholesky()

    print("\n" + "=" * 60)
    print("4. EIGENVALUES AND SVD")
    print("=" * 60)
    example_4_eigen_svd()

    print("\n" + "=" * 60)
    print("5. LEAST SQUARES")
    print("=" * 60)
    example_5_least_squares()

    print("\n" + "=" * 60)
    print("All examples completed!")
    print("=" * 60)
