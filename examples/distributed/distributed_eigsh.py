#!/usr/bin/env python
"""
Distributed Symmetric Eigenvalue Example

Usage:
    torchrun --standalone --nproc_per_node=4 distributed_eigsh.py
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
        print("Distributed Eigenvalues: A @ v = λ v")
        print(f"  World size: {world_size}")
        print("=" * 60)

    # Problem size
    n = 100
    k = 5

    # Tridiagonal SPD matrix, identical on every rank
    a = 4.0 * torch.eye(n, dtype=torch.float64)
    a -= torch.diag(torch.ones(n - 1, dtype=torch.float64), 1)
    a -= torch.diag(torch.ones(n - 1, dtype=torch.float64), -1)

    # Leave one process idle when possible: it still receives the eigenvalues
    n_active = max(1, world_size - 1)
    grid = ProcessGrid(n_process_rows=1, n_process_columns=n_active, verbose=True)
    A = DDenseMatrix.from_dense(a, grid, 16, 16, property=Property.symmetric)

    print(f"[Rank {rank}] coords {grid.coords}, local tile {A.local_m} x {A.local_n}")
    dist.barrier()

    if rank == 0:
        print(f"\nComputing the {k} largest eigenvalues...")

    eigenvalues = A.eigenpairs_symmetric_by_index((n - k, n - 1))

    if rank == 0:
        print(f"\nEigenvalues: {[f'{v:.4f}' for v in eigenvalues.tolist()]}")
        exact = 4.0 - 2.0 * torch.cos(torch.arange(n - k + 1, n + 1, dtype=torch.float64)
                                      * torch.pi / (n + 1))
        print(f"Max error: {(eigenvalues - exact).abs().max():.2e}")

    print(f"[Rank {rank}] received {len(eigenvalues)} eigenvalues, state {A.state.name}")

    # Eigenvectors live in the leading k columns of A
    V = A.to_dense()[:, :k]
    if rank == 0:
        residual = (a @ V - V * eigenvalues).norm()
        print(f"||A V - V Λ||: {residual:.2e}")
        print("\n" + "=" * 60)
        print("Distributed eigensolver completed!")
        print("=" * 60)

    destroy_process_groups()
    dist.destroy_process_group()


if __name__ == "__main__":
    main()
