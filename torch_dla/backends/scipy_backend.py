"""
SciPy backend for CPU dense linear algebra.

Thin wrappers around the LAPACK/BLAS routines exposed by
``scipy.linalg.get_lapack_funcs``/``get_blas_funcs``. Inputs and outputs are
torch tensors; the precision prefix (s/d) follows the dtype of the input.

Routines:
- 'potrf', 'potri', 'pocon': Cholesky, inverse from factor, condition number
- 'syev', 'syevx': symmetric eigenproblem (all / selected eigenpairs)
- 'gesvd': singular value decomposition
- 'gels': least squares
- 'lange', 'lansy': norms
- 'gemm': matrix product
"""

import torch
import numpy as np
from typing import Tuple, Optional

try:
    from scipy.linalg import get_lapack_funcs, get_blas_funcs
    SCIPY_AVAILABLE = True
except ImportError:
    SCIPY_AVAILABLE = False


def is_scipy_available() -> bool:
    """Check if SciPy is available"""
    return SCIPY_AVAILABLE


def _to_numpy(a: torch.Tensor) -> np.ndarray:
    # LAPACK works on Fortran-ordered copies
    return np.asfortranarray(a.detach().cpu().numpy())


def _to_torch(a: np.ndarray, like: torch.Tensor) -> torch.Tensor:
    return torch.from_numpy(np.ascontiguousarray(a)).to(dtype=like.dtype, device=like.device)


def _lapack(name: str, a: np.ndarray):
    if not SCIPY_AVAILABLE:
        raise ImportError("SciPy is required for the scipy dense backend")
    return get_lapack_funcs(name, (a,))


def _lwork_value(work) -> int:
    return max(1, int(np.ceil(np.asarray(work).real)))


def abstol(dtype: torch.dtype) -> float:
    """Absolute eigenvalue tolerance giving the most accurate results."""
    return 2.0 * float(np.finfo(np.float32 if dtype == torch.float32 else np.float64).tiny)


# =============================================================================
# Cholesky
# =============================================================================

def potrf(a: torch.Tensor, lower: bool = True) -> Tuple[torch.Tensor, int]:
    """
    Cholesky factorization of an SPD matrix.

    Only the ``lower`` (or upper) triangle is referenced and overwritten by
    the factor; the other triangle is returned unchanged.
    """
    a_np = _to_numpy(a)
    c, info = _lapack('potrf', a_np)(a_np, lower=lower, clean=0)
    return _to_torch(c, a), int(info)


def potri(c: torch.Tensor, lower: bool = True) -> Tuple[torch.Tensor, int]:
    """Inverse of an SPD matrix from its Cholesky factor (one triangle)."""
    c_np = _to_numpy(c)
    inv, info = _lapack('potri', c_np)(c_np, lower=lower)
    return _to_torch(inv, c), int(info)


def pocon_lwork(n: int) -> Tuple[int, int]:
    return 3 * max(1, n), max(1, n)


def pocon(c: torch.Tensor, anorm: float, lower: bool = True) -> Tuple[float, int]:
    """
    Reciprocal condition number (1-norm) from a Cholesky factor.

    ``anorm`` is the 1-norm of the original matrix.
    """
    c_np = _to_numpy(c)
    rcond, info = _lapack('pocon', c_np)(c_np, anorm, uplo='L' if lower else 'U')
    return float(rcond), int(info)


# =============================================================================
# Symmetric eigenproblem
# =============================================================================

def syev_lwork(n: int, lower: bool = True, dtype: torch.dtype = torch.float64) -> Tuple[int, int]:
    probe = np.zeros((1, 1), dtype=np.float32 if dtype == torch.float32 else np.float64)
    work, info = _lapack('syev_lwork', probe)(n, lower=lower)
    return _lwork_value(work), 0


def syev(
    a: torch.Tensor,
    compute_v: bool = True,
    lower: bool = True,
    lwork: Optional[int] = None,
) -> Tuple[torch.Tensor, Optional[torch.Tensor], int]:
    """All eigenvalues (ascending) and optionally eigenvectors."""
    a_np = _to_numpy(a)
    kwargs = {'compute_v': int(compute_v), 'lower': int(lower)}
    if lwork is not None:
        kwargs['lwork'] = lwork
    w, v, info = _lapack('syev', a_np)(a_np, **kwargs)
    vectors = _to_torch(v, a) if compute_v else None
    return _to_torch(w, a), vectors, int(info)


def syevx_lwork(n: int, lower: bool = True, dtype: torch.dtype = torch.float64) -> Tuple[int, int]:
    probe = np.zeros((1, 1), dtype=np.float32 if dtype == torch.float32 else np.float64)
    work, info = _lapack('syevx_lwork', probe)(n, lower=lower)
    return _lwork_value(work), 5 * max(1, n)


def syevx(
    a: torch.Tensor,
    compute_v: bool = True,
    lower: bool = True,
    index_range: Optional[Tuple[int, int]] = None,
    value_range: Optional[Tuple[float, float]] = None,
    lwork: Optional[int] = None,
) -> Tuple[torch.Tensor, Optional[torch.Tensor], int]:
    """
    Selected eigenvalues (ascending) and optionally eigenvectors.

    Parameters
    ----------
    index_range : Tuple[int, int], optional
        0-based inclusive range of eigenvalue indices.
    value_range : Tuple[float, float], optional
        Half-open interval ``(vl, vu]`` of eigenvalues.

    Returns
    -------
    w : torch.Tensor
        The ``m`` selected eigenvalues.
    z : torch.Tensor or None
        ``n x m`` eigenvectors.
    info : int
    """
    a_np = _to_numpy(a)
    n = a_np.shape[0]
    kwargs = {'compute_v': int(compute_v), 'lower': int(lower), 'abstol': abstol(a.dtype)}
    if index_range is not None:
        kwargs.update(range='I', il=index_range[0] + 1, iu=index_range[1] + 1)
    elif value_range is not None:
        kwargs.update(range='V', vl=value_range[0], vu=value_range[1])
    else:
        kwargs.update(range='A')
    if lwork is not None:
        kwargs['lwork'] = lwork
    w, z, m, ifail, info = _lapack('syevx', a_np)(a_np, **kwargs)
    m = int(m)
    w = _to_torch(w[:m], a)
    vectors = _to_torch(z[:n, :m], a) if compute_v else None
    return w, vectors, int(info)


# =============================================================================
# SVD and least squares
# =============================================================================

def gesvd_lwork(m: int, n: int, compute_uv: bool = True,
                dtype: torch.dtype = torch.float64) -> Tuple[int, int]:
    probe = np.zeros((1, 1), dtype=np.float32 if dtype == torch.float32 else np.float64)
    work, info = _lapack('gesvd_lwork', probe)(m, n, compute_uv=int(compute_uv), full_matrices=1)
    return _lwork_value(work), 0


def gesvd(
    a: torch.Tensor,
    compute_u: bool = True,
    compute_vt: bool = True,
    lwork: Optional[int] = None,
) -> Tuple[Optional[torch.Tensor], torch.Tensor, Optional[torch.Tensor], int]:
    """Singular values in descending order, optionally full U and V^T."""
    a_np = _to_numpy(a)
    compute_uv = compute_u or compute_vt
    kwargs = {'compute_uv': int(compute_uv), 'full_matrices': 1}
    if lwork is not None:
        kwargs['lwork'] = lwork
    u, s, vt, info = _lapack('gesvd', a_np)(a_np, **kwargs)
    u = _to_torch(u, a) if compute_u else None
    vt = _to_torch(vt, a) if compute_vt else None
    return u, _to_torch(s, a), vt, int(info)


def gels_lwork(m: int, n: int, nrhs: int, transpose: bool = False,
               dtype: torch.dtype = torch.float64) -> Tuple[int, int]:
    probe = np.zeros((1, 1), dtype=np.float32 if dtype == torch.float32 else np.float64)
    work, info = _lapack('gels_lwork', probe)(m, n, nrhs, trans='T' if transpose else 'N')
    return _lwork_value(work), 0


def gels(
    a: torch.Tensor,
    b: torch.Tensor,
    transpose: bool = False,
    lwork: Optional[int] = None,
) -> Tuple[torch.Tensor, int]:
    """
    Least squares / minimum norm solution of ``op(A) X = B``.

    ``b`` has ``max(m, n)`` rows; on return the leading rows hold the
    solution and, for overdetermined systems, the trailing rows the residual
    components (LAPACK convention).
    """
    a_np = _to_numpy(a)
    b_np = _to_numpy(b)
    kwargs = {'trans': 'T' if transpose else 'N'}
    if lwork is not None:
        kwargs['lwork'] = lwork
    lqr, x, info = _lapack('gels', a_np)(a_np, b_np, **kwargs)
    return _to_torch(x, b), int(info)


# =============================================================================
# Norms and products
# =============================================================================

def lange(norm: str, a: torch.Tensor) -> float:
    """General matrix norm: 'M' max abs, 'O'/'1' one, 'I' infinity, 'F' Frobenius."""
    a_np = _to_numpy(a)
    return float(_lapack('lange', a_np)(norm, a_np))


def lansy(norm: str, a: torch.Tensor, lower: bool = True) -> float:
    """Norm of a symmetric matrix of which only one triangle is referenced."""
    if lower:
        full = torch.tril(a) + torch.tril(a, -1).T
    else:
        full = torch.triu(a) + torch.triu(a, 1).T
    return lange(norm, full)


def gemm(
    alpha: float,
    a: torch.Tensor,
    b: torch.Tensor,
    beta: float = 0.0,
    c: Optional[torch.Tensor] = None,
    trans_a: bool = False,
    trans_b: bool = False,
) -> torch.Tensor:
    """``alpha * op(A) @ op(B) + beta * C``"""
    a_np = _to_numpy(a)
    b_np = _to_numpy(b)
    fn = get_blas_funcs('gemm', (a_np, b_np))
    if c is None or beta == 0.0:
        out = fn(alpha, a_np, b_np, trans_a=int(trans_a), trans_b=int(trans_b))
    else:
        out = fn(alpha, a_np, b_np, beta=beta, c=_to_numpy(c),
                 trans_a=int(trans_a), trans_b=int(trans_b))
    return _to_torch(out, a)
