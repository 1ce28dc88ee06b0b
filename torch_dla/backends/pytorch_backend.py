"""
PyTorch-native backend for dense linear algebra.

Same routine set and signatures as the SciPy backend, implemented on
``torch.linalg`` so that it runs on CPU and CUDA without SciPy. Statuses
follow the LAPACK convention: ``info > 0`` reports the order of the leading
minor that is not positive definite (``potrf``), a zero pivot (``potri``) or
a failed convergence.

Workspace queries exist for interface compatibility; torch.linalg manages
its own scratch memory, so they report minimal sizes.
"""

import torch
from torch import Tensor
from typing import Tuple, Optional


def abstol(dtype: torch.dtype) -> float:
    """Absolute eigenvalue tolerance giving the most accurate results."""
    return 2.0 * torch.finfo(dtype).tiny


def _symmetric(a: Tensor, lower: bool) -> Tensor:
    if lower:
        return torch.tril(a) + torch.tril(a, -1).T
    return torch.triu(a) + torch.triu(a, 1).T


def _keep_other_triangle(result: Tensor, original: Tensor, lower: bool) -> Tensor:
    if lower:
        return torch.tril(result) + torch.triu(original, 1)
    return torch.triu(result) + torch.tril(original, -1)


# =============================================================================
# Cholesky
# =============================================================================

def potrf(a: Tensor, lower: bool = True) -> Tuple[Tensor, int]:
    """Cholesky factor in one triangle, the other triangle left unchanged."""
    factor, info = torch.linalg.cholesky_ex(_symmetric(a, lower), upper=not lower)
    return _keep_other_triangle(factor, a, lower), int(info.item())


def potri(c: Tensor, lower: bool = True) -> Tuple[Tensor, int]:
    """Inverse from the Cholesky factor, written to the factor's triangle."""
    factor = torch.tril(c) if lower else torch.triu(c)
    diagonal = torch.diagonal(factor)
    zero = torch.nonzero(diagonal == 0)
    if zero.numel() > 0:
        return c.clone(), int(zero[0].item()) + 1
    inverse = torch.cholesky_inverse(factor, upper=not lower)
    return _keep_other_triangle(inverse, c, lower), 0


def pocon_lwork(n: int) -> Tuple[int, int]:
    return 1, 0


def pocon(c: Tensor, anorm: float, lower: bool = True) -> Tuple[float, int]:
    """
    Reciprocal condition number in the 1-norm.

    Computed exactly from the inverse rather than estimated.
    """
    n = c.shape[0]
    if n == 0:
        return 1.0, 0
    if anorm == 0.0:
        return 0.0, 0
    inverse, info = potri(c, lower)
    if info != 0:
        return 0.0, 0
    ainv_norm = torch.linalg.matrix_norm(_symmetric(inverse, lower), ord=1).item()
    return 1.0 / (anorm * ainv_norm), 0


# =============================================================================
# Symmetric eigenproblem
# =============================================================================

def syev_lwork(n: int, lower: bool = True, dtype: torch.dtype = torch.float64) -> Tuple[int, int]:
    return 1, 0


def syev(
    a: Tensor,
    compute_v: bool = True,
    lower: bool = True,
    lwork: Optional[int] = None,
) -> Tuple[Tensor, Optional[Tensor], int]:
    """All eigenvalues (ascending) and optionally eigenvectors."""
    uplo = 'L' if lower else 'U'
    if compute_v:
        w, v = torch.linalg.eigh(a, UPLO=uplo)
        return w, v, 0
    return torch.linalg.eigvalsh(a, UPLO=uplo), None, 0


def syevx_lwork(n: int, lower: bool = True, dtype: torch.dtype = torch.float64) -> Tuple[int, int]:
    return 1, 5 * max(1, n)


def syevx(
    a: Tensor,
    compute_v: bool = True,
    lower: bool = True,
    index_range: Optional[Tuple[int, int]] = None,
    value_range: Optional[Tuple[float, float]] = None,
    lwork: Optional[int] = None,
) -> Tuple[Tensor, Optional[Tensor], int]:
    """
    Selected eigenpairs: by 0-based inclusive index range or by the
    half-open value interval ``(vl, vu]``.
    """
    n = a.shape[0]
    if index_range is not None:
        lo, hi = index_range
        if not (0 <= lo <= hi < n):
            return a.new_zeros(0), None, -8
    if value_range is not None and not value_range[0] < value_range[1]:
        return a.new_zeros(0), None, -7

    w, v, info = syev(a, compute_v=True, lower=lower)
    if index_range is not None:
        selected = torch.arange(index_range[0], index_range[1] + 1, device=a.device)
    elif value_range is not None:
        vl, vu = value_range
        selected = torch.nonzero((w > vl) & (w <= vu)).flatten()
    else:
        selected = torch.arange(n, device=a.device)

    w = w[selected]
    vectors = v[:, selected] if compute_v else None
    return w, vectors, info


# =============================================================================
# SVD and least squares
# =============================================================================

def gesvd_lwork(m: int, n: int, compute_uv: bool = True,
                dtype: torch.dtype = torch.float64) -> Tuple[int, int]:
    return 1, 0


def gesvd(
    a: Tensor,
    compute_u: bool = True,
    compute_vt: bool = True,
    lwork: Optional[int] = None,
) -> Tuple[Optional[Tensor], Tensor, Optional[Tensor], int]:
    """Singular values in descending order, optionally full U and V^T."""
    if compute_u or compute_vt:
        u, s, vt = torch.linalg.svd(a, full_matrices=True)
        return (u if compute_u else None), s, (vt if compute_vt else None), 0
    return None, torch.linalg.svdvals(a), None, 0


def gels_lwork(m: int, n: int, nrhs: int, transpose: bool = False,
               dtype: torch.dtype = torch.float64) -> Tuple[int, int]:
    return 1, 0


def gels(
    a: Tensor,
    b: Tensor,
    transpose: bool = False,
    lwork: Optional[int] = None,
) -> Tuple[Tensor, int]:
    """
    Least squares / minimum norm solution of ``op(A) X = B``.

    ``b`` has ``max(m, n)`` rows, the solution is returned in its leading
    rows. Rows below the solution are zero.
    """
    op_a = a.T if transpose else a
    rows, cols = op_a.shape
    rhs = b[:rows]
    # minimum norm solutions need an SVD based driver on CPU
    driver = 'gelsd' if a.device.type == 'cpu' else None
    solution = torch.linalg.lstsq(op_a, rhs, driver=driver).solution
    x = torch.zeros_like(b)
    x[:cols] = solution
    return x, 0


# =============================================================================
# Norms and products
# =============================================================================

def lange(norm: str, a: Tensor) -> float:
    """General matrix norm: 'M' max abs, 'O'/'1' one, 'I' infinity, 'F' Frobenius."""
    if a.numel() == 0:
        return 0.0
    norm = norm.upper()
    if norm == 'M':
        return a.abs().max().item()
    elif norm in ('O', '1'):
        return a.abs().sum(dim=0).max().item()
    elif norm == 'I':
        return a.abs().sum(dim=1).max().item()
    elif norm in ('F', 'E'):
        return torch.linalg.matrix_norm(a, ord='fro').item()
    raise ValueError(f"Unknown norm type '{norm}'")


def lansy(norm: str, a: Tensor, lower: bool = True) -> float:
    """Norm of a symmetric matrix of which only one triangle is referenced."""
    return lange(norm, _symmetric(a, lower))


def gemm(
    alpha: float,
    a: Tensor,
    b: Tensor,
    beta: float = 0.0,
    c: Optional[Tensor] = None,
    trans_a: bool = False,
    trans_b: bool = False,
) -> Tensor:
    """``alpha * op(A) @ op(B) + beta * C``"""
    op_a = a.T if trans_a else a
    op_b = b.T if trans_b else b
    out = alpha * (op_a @ op_b)
    if c is not None and beta != 0.0:
        out = out + beta * c
    return out
