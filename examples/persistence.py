#!/usr/bin/env python
"""
Persistence (I/O) Example

Demonstrates saving and loading DDenseMatrix with HDF5:
- DDenseMatrix.save() / DDenseMatrix.load()
- Loading into a different block-cyclic distribution
- State and property stored alongside the matrix
- Reading the file with plain h5py

Run on several processes with:
    torchrun --standalone --nproc_per_node=4 persistence.py
"""

import os
import sys
import tempfile

import h5py
import torch
import torch.distributed as dist

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from torch_dla import DDenseMatrix, ProcessGrid, Property, is_parallel_io_available


def main():
    if 'RANK' in os.environ:
        dist.init_process_group(backend='gloo')
    grid = ProcessGrid()
    is_root = grid.is_root

    if is_root:
        print("=" * 60)
        print("Persistence (I/O) Example")
        print(f"  Processes: {grid.n_processes}, grid: {grid.shape}")
        print(f"  Parallel HDF5: {is_parallel_io_available()}")
        print("=" * 60)

    n = 16
    g = torch.Generator().manual_seed(0)
    a = torch.randn(n, n, generator=g, dtype=torch.float64)
    a = a @ a.T + n * torch.eye(n, dtype=torch.float64)

    # the file name has to be the same on every process
    tmpdir = tempfile.gettempdir()
    path = os.path.join(tmpdir, "torch_dla_persistence.h5")

    # 1. save/load between distributions
    A = DDenseMatrix.from_dense(a, grid, 4, 4, property=Property.symmetric)
    A.save(path, chunk_size=(4, 4), verbose=True)

    B = DDenseMatrix(n, n, grid, 3, 5)
    B.load(path, verbose=True)
    if is_root:
        print(f"\n1. Reloaded with 3 x 5 blocks, max error: {(B.to_dense() - a).abs().max():.2e}")
        print(f"   Property: {B.get_property().name}")

    # 2. the Cholesky factor keeps its state
    A.compute_cholesky_factorization()
    A.save(path)
    C = DDenseMatrix(n, n, grid, 4, 4)
    C.load(path)
    if is_root:
        print(f"\n2. State after reload: {C.state.name}, property: {C.get_property().name}")

    # 3. the file layout, read without torch_dla
    grid.barrier()
    if is_root:
        with h5py.File(path, 'r') as f:
            print(f"\n3. Datasets: {list(f.keys())}")
            print(f"   'matrix' shape (column-major): {f['matrix'].shape}, chunks: {f['matrix'].chunks}")
            states = {v: k for k, v in h5py.check_enum_dtype(f['state'].dtype).items()}
            print(f"   'state': {states[int(f['state'][0])]}")
        os.remove(path)

    if is_root:
        print("\n" + "=" * 60)
        print("Persistence example completed!")
        print("=" * 60)

    if dist.is_initialized():
        dist.destroy_process_group()


if __name__ == "__main__":
    main()
