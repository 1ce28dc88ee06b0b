#!/usr/bin/env python
"""
Cell Data Transfer Example

Carries one value per cell of a 1D mesh through a refinement and a
coarsening cycle. The mesh only needs to provide the small interface of
``TriangulationLike`` / ``CellLike``; here a minimal binary-tree mesh of
intervals is used.
"""

import torch
from torch_dla import CellDataTransfer, CellVector, coarsening_strategies


class Interval:
    """A cell of a 1D mesh, split in two halves on refinement."""

    def __init__(self, mesh, left, right, level=0, parent=None):
        self.mesh = mesh
        self.left, self.right = left, right
        self.level = level
        self.parent = parent
        self.children = []
        self.refine_flag = False
        self.coarsen_flag = False

    @property
    def n_children(self):
        return len(self.children)

    @property
    def is_active(self):
        return not self.children

    @property
    def active_cell_index(self):
        return next(i for i, c in enumerate(self.mesh.active_cells()) if c is self)

    def child(self, i):
        return self.children[i]

    @property
    def center(self):
        return 0.5 * (self.left + self.right)


class IntervalMesh:
    def __init__(self, n_cells):
        h = 1.0 / n_cells
        self.roots = [Interval(self, i * h, (i + 1) * h) for i in range(n_cells)]

    def active_cells(self):
        stack = list(reversed(self.roots))
        while stack:
            cell = stack.pop()
            if cell.is_active:
                yield cell
            else:
                stack.extend(reversed(cell.children))

    def n_active_cells(self):
        return sum(1 for _ in self.active_cells())

    def execute_coarsening_and_refinement(self):
        cells = list(self.active_cells())
        for parent in {c.parent for c in cells if c.coarsen_flag}:
            parent.children = []
        for cell in cells:
            if cell.refine_flag:
                mid = cell.center
                cell.children = [Interval(self, cell.left, mid, cell.level + 1, cell),
                                 Interval(self, mid, cell.right, cell.level + 1, cell)]
            cell.refine_flag = cell.coarsen_flag = False


def main():
    print("=" * 60)
    print("Cell Data Transfer Example")
    print("=" * 60)

    mesh = IntervalMesh(4)
    data = CellVector([c.center ** 2 for c in mesh.active_cells()])
    print(f"\nInitial cells: {mesh.n_active_cells()}, data: {data.values.tolist()}")

    # 1. refine the two rightmost cells
    for cell in list(mesh.active_cells())[2:]:
        cell.refine_flag = True
    transfer = CellDataTransfer(mesh)
    transfer.prepare_for_coarsening_and_refinement()
    mesh.execute_coarsening_and_refinement()
    data = transfer.unpack(data, CellVector(mesh.n_active_cells()))
    print(f"\n1. After refinement: {mesh.n_active_cells()} cells")
    print(f"   Children inherit their parent's value: {data.values.tolist()}")

    # update the fine cells, then merge the last pair again
    for i, cell in enumerate(mesh.active_cells()):
        data[i] = cell.center ** 2
    for cell in list(mesh.active_cells())[-2:]:
        cell.coarsen_flag = True
    transfer = CellDataTransfer(mesh, coarsening_strategies.mean)
    transfer.prepare_for_coarsening_and_refinement()
    mesh.execute_coarsening_and_refinement()
    data = transfer.unpack(data, CellVector(mesh.n_active_cells()))
    print(f"\n2. After coarsening with the mean: {mesh.n_active_cells()} cells")
    print(f"   Data: {[round(v, 4) for v in data.values.tolist()]}")

    # 3. tensor-valued cell data
    values = [torch.tensor([c.left, c.right]) for c in mesh.active_cells()]
    for cell in list(mesh.active_cells())[2:4]:
        cell.coarsen_flag = True
    transfer = CellDataTransfer(mesh, coarsening_strategies.max)
    transfer.prepare_for_coarsening_and_refinement()
    mesh.execute_coarsening_and_refinement()
    merged = transfer.unpack(values, [None] * mesh.n_active_cells())
    print(f"\n3. Tensor data after coarsening with max: {[v.tolist() for v in merged]}")

    print("\n" + "=" * 60)
    print("Cell data transfer completed!")
    print("=" * 60)


if __name__ == "__main__":
    main()
