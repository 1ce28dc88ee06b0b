#!/usr/bin/env python
"""
Distributed Cholesky, Inverse and Least Squares Example

Usage:
    torchrun --standalone --nproc_per_node=4 distributed_solve.py
"""

import torch
import torch.distributed as dist
from torch_dla import DDenseMatrix, ProcessGrid, Property, destroy_process_groups


def main():
    # Initialize distributed
    dist.init_process_group(backend='gloo')
    rank = dist.get_rank()
    world_size = dist.get_world_size()

    if rank == 0:
        print("=" * 60)
        print("Distributed Dense Solves")
        print(f"  World size: {world_size}")
        print("=" * 60)

    n = 64
    g = torch.Generator().manual_seed(0)
    a = torch.randn(n, n, generator=g, dtype=torch.float64)
    a = a @ a.T + n * torch.eye(n, dtype=torch.float64)

    # Near-square grid over all processes
    grid = ProcessGrid(verbose=True)
    A = DDenseMatrix.from_dense(a, grid, 8, 8, property=Property.symmetric)

    # Cholesky, condition number, inverse
    a_norm = A.l1_norm()
    A.compute_cholesky_factorization()
    rcond = A.reciprocal_condition_number(a_norm)
    A.invert()
    A_inv = A.to_dense()
    if rank == 0:
        print(f"\nReciprocal condition number: {rcond:.4e}")
        print(f"||A^-1 A - I||: {(A_inv @ a - torch.eye(n, dtype=torch.float64)).norm():.2e}")

    # Least squares on a grid shaped after the matrix
    m, k = 200, 20
    x = torch.randn(m, k, generator=g, dtype=torch.float64)
    b = torch.randn(m, 3, generator=g, dtype=torch.float64)
    lsq_grid = ProcessGrid(matrix_shape=(m, k), block_sizes=(3, 3))
    # A and B need equal square blocks
    X = DDenseMatrix.from_dense(x, lsq_grid, 3, 3)
    B = DDenseMatrix.from_dense(b, lsq_grid, 3, 3)
    X.least_squares(B)
    solution = B.to_dense()[:k]
    if rank == 0:
        print(f"\nLeast squares on a {lsq_grid.shape} grid")
        print(f"||X - lstsq||: {(solution - torch.linalg.lstsq(x, b).solution).norm():.2e}")

    # Copy onto a different grid and block size
    C = DDenseMatrix(n, n, ProcessGrid(n_process_rows=1, n_process_columns=world_size), 5, 7)
    D = DDenseMatrix.from_dense(a, grid, 8, 8)
    D.copy_to(C)
    if rank == 0:
        print(f"\nRedistributed copy error: {(C.to_dense() - a).abs().max():.2e}")
        print("\n" + "=" * 60)
        print("Distributed solves completed!")
        print("=" * 60)

    destroy_process_groups()
    dist.destroy_process_group()


if __name__ == "__main__":
    main()
