"""
State and property taxonomy of distributed dense matrices.

``State`` describes what currently occupies the storage of a matrix (the
matrix itself, one of its factorizations, ...) and gates which operations are
legal. ``Property`` is the declared structural shape used to pick specialized
algorithms.

Legal transitions are kept in one table, ``TRANSITIONS``, which maps an
operation name to the states it may start from. Every state-dependent
operation calls ``check_state`` on entry.
"""

import enum
from typing import Dict, FrozenSet

from .exceptions import InvalidStateError


class State(enum.IntEnum):
    """Content of the storage of a matrix."""
    matrix = 0
    inverse_matrix = 1
    lu = 2
    cholesky = 3
    eigenvalues = 4
    svd = 5
    inverse_svd = 6
    unusable = 0x8000


class Property(enum.IntEnum):
    """Declared structure of a matrix."""
    general = 0
    hessenberg = 1
    lower_triangular = 2
    upper_triangular = 4
    diagonal = 6
    symmetric = 8


TRIANGULAR = frozenset({Property.lower_triangular, Property.upper_triangular})


# operation -> states it may be called in
TRANSITIONS: Dict[str, FrozenSet[State]] = {
    'compute_cholesky_factorization': frozenset({State.matrix}),
    'invert': frozenset({State.matrix, State.cholesky}),
    'eigenpairs_symmetric': frozenset({State.matrix}),
    'compute_SVD': frozenset({State.matrix}),
    'least_squares': frozenset({State.matrix}),
    'reciprocal_condition_number': frozenset({State.cholesky}),
    'norm': frozenset({State.matrix, State.inverse_matrix}),
}


_STATE_NAMES = {
    State.matrix: "Matrix",
    State.inverse_matrix: "Inverse matrix",
    State.lu: "LU",
    State.cholesky: "Cholesky",
    State.eigenvalues: "Eigenvalues",
    State.svd: "SVD",
    State.inverse_svd: "Inverse SVD",
    State.unusable: "Unusable",
}


def check_state(operation: str, state: State, what: str = "Matrix") -> None:
    """
    Raise ``InvalidStateError`` if ``operation`` is not legal in ``state``.

    Parameters
    ----------
    operation : str
        Key into ``TRANSITIONS``.
    state : State
        Current state of the operand.
    what : str
        Name of the operand used in the error message.
    """
    allowed = TRANSITIONS[operation]
    if state not in allowed:
        expected = " or ".join(sorted(_STATE_NAMES[s] for s in allowed))
        raise InvalidStateError(
            f"{what} has to be in {expected} state before calling {operation}() "
            f"(current state: {_STATE_NAMES[State(state)]})."
        )


def state_members() -> Dict[str, int]:
    """Symbolic name -> numeric code of every ``State`` member."""
    return {s.name: int(s) for s in State}


def property_members() -> Dict[str, int]:
    """Symbolic name -> numeric code of every ``Property`` member."""
    return {p.name: int(p) for p in Property}
