"""
Index arithmetic of the 2D block-cyclic distribution.

A global matrix is cut into ``mb x nb`` tiles which are dealt round-robin over
a ``Pr x Pc`` process grid. Along one axis, global index ``ig`` (0-based)
lives on process ``(isrc + ig // nb) % P`` at local position
``nb * (ig // (nb * P)) + ig % nb``.

The helpers mirror the ScaLAPACK TOOLS routines (NUMROC, INDXL2G, INDXG2P,
INDXG2L, DESCINIT) with 0-based indices. Index arguments may be Python ints or
integer tensors; the arithmetic is element-wise in both cases.
"""

from typing import Tuple, Union

import torch

IndexLike = Union[int, torch.Tensor]

# descriptor entries (DTYPE_, CTXT_, M_, N_, MB_, NB_, RSRC_, CSRC_, LLD_)
DESCRIPTOR_LENGTH = 9
DENSE_DESCRIPTOR_TYPE = 1


def numroc(n: int, nb: int, iproc: int, isrcproc: int, nprocs: int) -> int:
    """
    Number of rows or columns of a distributed matrix owned by one process.

    Parameters
    ----------
    n : int
        Global number of rows/columns.
    nb : int
        Block size along this axis.
    iproc : int
        Coordinate of the process along this axis.
    isrcproc : int
        Coordinate of the process owning the first row/column.
    nprocs : int
        Number of processes along this axis.
    """
    mydist = (nprocs + iproc - isrcproc) % nprocs
    nblocks = n // nb
    num = (nblocks // nprocs) * nb
    extrablks = nblocks % nprocs
    if mydist < extrablks:
        num += nb
    elif mydist == extrablks:
        num += n % nb
    return num


def local_to_global(il: IndexLike, nb: int, iproc: int, isrcproc: int, nprocs: int) -> IndexLike:
    """Global index of local index ``il`` on process ``iproc``."""
    return nprocs * nb * (il // nb) + il % nb + ((nprocs + iproc - isrcproc) % nprocs) * nb


def global_to_process(ig: IndexLike, nb: int, isrcproc: int, nprocs: int) -> IndexLike:
    """Process coordinate owning global index ``ig``."""
    return (isrcproc + ig // nb) % nprocs


def global_to_local(ig: IndexLike, nb: int, nprocs: int) -> IndexLike:
    """Local index of global index ``ig`` on its owning process."""
    return nb * (ig // (nb * nprocs)) + ig % nb


def global_indices(n: int, nb: int, iproc: int, isrcproc: int, nprocs: int) -> torch.Tensor:
    """
    Global indices owned by process ``iproc``, in local (= ascending) order.

    Returns an empty tensor when the process owns nothing along this axis.
    """
    count = numroc(n, nb, iproc, isrcproc, nprocs)
    local = torch.arange(count, dtype=torch.int64)
    return local_to_global(local, nb, iproc, isrcproc, nprocs)


def local_shape(
    shape: Tuple[int, int],
    block_sizes: Tuple[int, int],
    coords: Tuple[int, int],
    grid_shape: Tuple[int, int],
    source: Tuple[int, int] = (0, 0),
) -> Tuple[int, int]:
    """Extent of the local tile of the process at ``coords``."""
    return (
        numroc(shape[0], block_sizes[0], coords[0], source[0], grid_shape[0]),
        numroc(shape[1], block_sizes[1], coords[1], source[1], grid_shape[1]),
    )


def descinit(
    m: int,
    n: int,
    mb: int,
    nb: int,
    irsrc: int,
    icsrc: int,
    ictxt: int,
    lld: int,
) -> Tuple[int, ...]:
    """
    Build the 9-integer array descriptor of a dense block-cyclic matrix.

    Raises ``ValueError`` naming the offending argument (in the 1-based
    numbering of DESCINIT) when an argument is illegal.
    """
    checks = [
        (m >= 0, 1, "m"),
        (n >= 0, 2, "n"),
        (mb >= 1, 3, "mb"),
        (nb >= 1, 4, "nb"),
        (irsrc >= 0, 5, "irsrc"),
        (icsrc >= 0, 6, "icsrc"),
        (lld >= 1, 9, "lld"),
    ]
    for ok, position, name in checks:
        if not ok:
            raise ValueError(f"descinit: illegal value of argument {position} ({name})")
    return (DENSE_DESCRIPTOR_TYPE, ictxt, m, n, mb, nb, irsrc, icsrc, lld)


def inactive_descriptor() -> Tuple[int, ...]:
    """Descriptor recorded on processes outside the grid."""
    return (-1,) * DESCRIPTOR_LENGTH
