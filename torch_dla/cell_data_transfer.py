"""
Transfer of per-cell data across mesh refinement and coarsening.

``CellDataTransfer`` remaps a vector holding one value per active cell of a
mesh onto the active cells of the same mesh after it has been adapted:

1. ``prepare_for_coarsening_and_refinement()`` is called while the
   refinement and coarsening flags are set but before the mesh changes. It
   records which cells persist, which are refined and which groups of
   siblings are coarsened, together with their current active indices.
2. The mesh is refined/coarsened by its owner.
3. ``unpack(input, output)`` writes every persisting value to the cell's new
   index, copies the value of a refined cell to all of its children and
   merges the values of coarsened siblings into their parent with the
   coarsening strategy.

The engine only reads the mesh through the ``TriangulationLike`` and
``CellLike`` protocols below; it never modifies it.

Example
-------
>>> transfer = CellDataTransfer(mesh, coarsening_strategies.mean)
>>> transfer.prepare_for_coarsening_and_refinement()
>>> mesh.execute_coarsening_and_refinement()
>>> new_data = CellVector(mesh.n_active_cells())
>>> transfer.unpack(old_data, new_data)
"""

from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
    runtime_checkable,
)

import torch

from .exceptions import DimensionMismatchError, InconsistentCoarseningFlagsError
from .process_grid import ProcessGrid


# =============================================================================
# Mesh collaborator protocols
# =============================================================================

@runtime_checkable
class CellLike(Protocol):
    """
    A mesh cell as seen by ``CellDataTransfer``.

    Cells are used as dictionary keys and must be hashable; the same cell has
    to be represented by equal objects before and after the mesh changes.
    """

    @property
    def refine_flag(self) -> bool: ...

    @property
    def coarsen_flag(self) -> bool: ...

    @property
    def active_cell_index(self) -> int: ...

    @property
    def level(self) -> int: ...

    @property
    def parent(self) -> "CellLike": ...

    @property
    def n_children(self) -> int: ...

    @property
    def is_active(self) -> bool: ...

    def child(self, i: int) -> "CellLike": ...


@runtime_checkable
class TriangulationLike(Protocol):
    """A mesh providing its active cells in active index order."""

    def active_cells(self) -> Iterable[CellLike]: ...

    def n_active_cells(self) -> int: ...


CoarseningStrategy = Callable[[List[Any]], Any]


# =============================================================================
# Coarsening strategies
# =============================================================================

def _stack(values: Sequence[Any]) -> torch.Tensor:
    return torch.stack([torch.as_tensor(v) for v in values])


def _like(result: torch.Tensor, values: Sequence[Any]):
    if isinstance(values[0], torch.Tensor):
        return result
    return result.item()


class coarsening_strategies:
    """
    Ready-made reductions of the children's values onto their parent.

    Each takes the list of values of the former children (in ascending order
    of their old active index) and returns the parent value. Values may be
    Python numbers or tensors of equal shape.
    """

    @staticmethod
    def check_equality(children_values: List[Any]):
        """All children carry the same value, which the parent inherits."""
        if not children_values:
            raise ValueError("No children values given")
        first = torch.as_tensor(children_values[0])
        for value in children_values[1:]:
            if not torch.equal(torch.as_tensor(value), first):
                raise ValueError("Values of children are not equal, use a different "
                                 "coarsening strategy")
        return children_values[0]

    @staticmethod
    def sum(children_values: List[Any]):
        return _like(_stack(children_values).sum(dim=0), children_values)

    @staticmethod
    def mean(children_values: List[Any]):
        stacked = _stack(children_values)
        if not stacked.is_floating_point():
            stacked = stacked.to(torch.get_default_dtype())
        return _like(stacked.mean(dim=0), children_values)

    @staticmethod
    def max(children_values: List[Any]):
        return _like(_stack(children_values).max(dim=0).values, children_values)

    @staticmethod
    def min(children_values: List[Any]):
        return _like(_stack(children_values).min(dim=0).values, children_values)


# =============================================================================
# Output containers
# =============================================================================

class CellVector:
    """
    One value per active cell, backed by a tensor.

    Parameters
    ----------
    data : int or tensor-like
        Number of cells (zero-initialized) or initial values.
    dtype : torch.dtype
        Used when ``data`` is a size.
    """

    def __init__(self, data: Union[int, torch.Tensor, Sequence[float]],
                 dtype: torch.dtype = torch.float64):
        if isinstance(data, int):
            self.values = torch.zeros(data, dtype=dtype)
        else:
            self.values = torch.as_tensor(data).clone()

    def __len__(self) -> int:
        return self.values.shape[0]

    def __getitem__(self, index: int):
        return self.values[index]

    def __setitem__(self, index: int, value) -> None:
        self.values[index] = torch.as_tensor(value, dtype=self.values.dtype)

    def finalize(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"CellVector(n_cells={len(self)}, dtype={self.values.dtype})"


class DistributedCellVector(CellVector):
    """
    Cell vector replicated over a process pool with one owner per entry.

    Every process keeps the full vector and may write any entry, but only
    the owner's writes count: ``finalize()`` makes each entry equal to the
    value held by its owning process on every process of the pool.

    Parameters
    ----------
    data : int or tensor-like
        Number of cells or initial values (identical on every process).
    grid : ProcessGrid, optional
        Pool sharing the vector; defaults to every process.
    owned_range : Tuple[int, int], optional
        Half-open range of entries owned by this process. Defaults to an even
        split of the cells over the pool in pool order. The ranges of all
        processes must partition the vector.
    """

    def __init__(
        self,
        data: Union[int, torch.Tensor, Sequence[float]],
        grid: Optional[ProcessGrid] = None,
        owned_range: Optional[Tuple[int, int]] = None,
        dtype: torch.dtype = torch.float64,
    ):
        super().__init__(data, dtype)
        self.grid = grid if grid is not None else ProcessGrid()
        if owned_range is None:
            owned_range = self._even_split(len(self))
        self.owned_range = owned_range

    def _even_split(self, n_cells: int) -> Tuple[int, int]:
        if not self.grid.is_member:
            return 0, 0
        size, rank = self.grid.n_processes, self.grid.pool_rank
        base, extra = divmod(n_cells, size)
        start = rank * base + min(rank, extra)
        return start, start + base + (1 if rank < extra else 0)

    def finalize(self) -> None:
        """Combine the owners' entries into a globally consistent vector."""
        start, end = self.owned_range
        owned = torch.zeros_like(self.values)
        owned[start:end] = self.values[start:end]
        self.values = self.grid.sum_over_pool(owned)

    def __repr__(self) -> str:
        return (f"DistributedCellVector(n_cells={len(self)}, owned={self.owned_range}, "
                f"dtype={self.values.dtype})")


# =============================================================================
# CellDataTransfer
# =============================================================================

class CellDataTransfer:
    """
    Remap per-cell data across one refinement/coarsening cycle of a mesh.

    Parameters
    ----------
    triangulation : TriangulationLike
        Mesh whose active cells index the data.
    coarsening_strategy : callable
        Merges the values of coarsened siblings into the parent value,
        ``coarsening_strategies.check_equality`` by default.

    Attributes
    ----------
    persisting_cells : Dict[CellLike, int]
        Cells neither refined nor coarsened, with their old active index.
    refined_cells : Dict[CellLike, int]
        Cells to be refined, with their old active index.
    coarsened_cells : Dict[CellLike, List[int]]
        Parents of coarsened siblings, with the siblings' old active indices
        in ascending order.
    """

    def __init__(
        self,
        triangulation: TriangulationLike,
        coarsening_strategy: CoarseningStrategy = coarsening_strategies.check_equality,
    ):
        self.triangulation = triangulation
        self.coarsening_strategy = coarsening_strategy
        self.persisting_cells: Dict[CellLike, int] = {}
        self.refined_cells: Dict[CellLike, int] = {}
        self.coarsened_cells: Dict[CellLike, List[int]] = {}
        self.n_active_cells_pre: Optional[int] = None
        self._prepared = False

    def prepare_for_coarsening_and_refinement(self) -> None:
        """
        Classify the active cells by their flags. Call before the mesh changes.

        Raises
        ------
        InconsistentCoarseningFlagsError
            A cell is flagged for coarsening but one of its siblings is not
            active or not flagged as well.
        """
        self.persisting_cells.clear()
        self.refined_cells.clear()
        self.coarsened_cells.clear()

        for cell in self.triangulation.active_cells():
            if cell.refine_flag:
                self.refined_cells[cell] = cell.active_cell_index
            elif cell.coarsen_flag:
                if cell.level <= 0:
                    raise InconsistentCoarseningFlagsError(
                        f"Cell {cell.active_cell_index} on the coarsest level can not be coarsened"
                    )
                parent = cell.parent
                if parent in self.coarsened_cells:
                    continue
                indices = set()
                for i in range(parent.n_children):
                    sibling = parent.child(i)
                    if not (sibling.is_active and sibling.coarsen_flag):
                        raise InconsistentCoarseningFlagsError(
                            f"Cell {cell.active_cell_index} is flagged for coarsening "
                            f"but its sibling {i} is not"
                        )
                    indices.add(sibling.active_cell_index)
                if len(indices) != parent.n_children:
                    raise DimensionMismatchError(len(indices), parent.n_children, "siblings")
                self.coarsened_cells[parent] = sorted(indices)
            else:
                self.persisting_cells[cell] = cell.active_cell_index

        self.n_active_cells_pre = self.triangulation.n_active_cells()
        if __debug__:
            self._check_coverage()
        self._prepared = True

    def _check_coverage(self) -> None:
        old_indices = list(self.persisting_cells.values()) + list(self.refined_cells.values())
        for indices in self.coarsened_cells.values():
            old_indices.extend(indices)
        if sorted(old_indices) != list(range(self.n_active_cells_pre)):
            raise RuntimeError("Active cells are not covered exactly once by the transfer mappings")

    def unpack(self, input, output):
        """
        Write the transferred values into ``output``. Call after the mesh changed.

        Parameters
        ----------
        input : indexable
            One value per active cell before the change.
        output : indexable
            Sized to the number of active cells after the change. Its
            ``finalize()`` is called, if present, after all values are set.

        Returns
        -------
        output
        """
        if not self._prepared:
            raise RuntimeError("unpack() needs a preceding prepare_for_coarsening_and_refinement()")
        if __debug__:
            if len(input) != self.n_active_cells_pre:
                raise DimensionMismatchError(len(input), self.n_active_cells_pre, "input")
            n_active = self.triangulation.n_active_cells()
            if len(output) != n_active:
                raise DimensionMismatchError(len(output), n_active, "output")

        for cell, old_index in self.persisting_cells.items():
            self._check_active(cell)
            output[cell.active_cell_index] = input[old_index]

        for cell, old_index in self.refined_cells.items():
            for i in range(cell.n_children):
                child = cell.child(i)
                self._check_active(child)
                output[child.active_cell_index] = input[old_index]

        for parent, old_indices in self.coarsened_cells.items():
            children_values = [input[i] for i in old_indices]
            self._check_active(parent)
            output[parent.active_cell_index] = self.coarsening_strategy(children_values)

        finalize = getattr(output, 'finalize', None)
        if finalize is not None:
            finalize()

        self._prepared = False
        return output

    @staticmethod
    def _check_active(cell: CellLike) -> None:
        if __debug__ and not cell.is_active:
            raise RuntimeError("Target cell of the data transfer is not active")
