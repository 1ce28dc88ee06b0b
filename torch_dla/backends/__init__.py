"""
Backend management for torch-dla

The distributed matrix assembles the operands of every factorization on the
root process of its grid and hands them to one of the dense backends below:

Backends:
- 'scipy': LAPACK/BLAS through scipy.linalg.get_lapack_funcs (CPU only)
- 'pytorch': torch.linalg (CPU & CUDA), usable without SciPy

Routines (identical signatures in every backend, LAPACK naming):
- 'potrf' / 'potri' / 'pocon': Cholesky factorization, inverse from the
  factor, reciprocal condition number
- 'syev' / 'syevx': symmetric eigensolver, all or selected eigenpairs
- 'gesvd': singular value decomposition
- 'gels': least squares via QR/LQ
- 'lange' / 'lansy': matrix norms ('M', 'O', 'I', 'F')
- 'gemm': general matrix product

Every routine that can fail returns the LAPACK ``info`` status as its last
result; the matrix layer turns a non-zero status into ``LAPACKError``.
Routines with a workspace expose a ``<routine>_lwork`` query returning
``(lwork, liwork)``.

Usage:
    backend = get_backend(select_backend(torch.device('cpu'), torch.float64))
    c, info = backend.potrf(a, lower=True)
"""

from types import ModuleType
from typing import Optional, List, Dict, Literal
import warnings

import torch

# Type aliases
BackendType = Literal['scipy', 'pytorch', 'auto']

ROUTINES: List[str] = [
    'potrf', 'potri', 'pocon',
    'syev', 'syevx',
    'gesvd', 'gels',
    'lange', 'lansy', 'gemm',
]

# Backend availability flags
_scipy_available: Optional[bool] = None


def is_scipy_available() -> bool:
    """Check if SciPy backend is available"""
    global _scipy_available
    if _scipy_available is None:
        try:
            import scipy.linalg
            _scipy_available = True
        except ImportError:
            _scipy_available = False
    return _scipy_available


def is_pytorch_available() -> bool:
    """Check if PyTorch-native backend is available (always True)"""
    return True


def get_available_backends() -> List[str]:
    """Get list of available backends"""
    backends = []

    if is_scipy_available():
        backends.append('scipy')

    backends.append('pytorch')  # Always available

    return backends


def select_backend(
    device: torch.device,
    dtype: Optional[torch.dtype] = None,
) -> str:
    """
    Auto-select the dense backend for a device and dtype.

    - CPU: scipy (LAPACK), pytorch if SciPy is missing
    - CUDA: pytorch (torch.linalg runs on the device)

    Parameters
    ----------
    device : torch.device
        Device the assembled operands live on
    dtype : torch.dtype, optional
        Data type; only real floating point types are supported

    Returns
    -------
    str
        Backend name ('scipy' or 'pytorch')
    """
    if dtype is not None and dtype not in (torch.float32, torch.float64):
        raise ValueError(f"Unsupported dtype {dtype}: use torch.float32 or torch.float64")

    if device.type == 'cpu':
        if is_scipy_available():
            return 'scipy'
        warnings.warn("SciPy not available, falling back to the PyTorch dense backend")
        return 'pytorch'

    elif device.type == 'cuda':
        return 'pytorch'

    else:
        raise ValueError(f"Unsupported device type: {device.type}")


def get_backend(name: BackendType = 'auto', device: Optional[torch.device] = None,
                dtype: Optional[torch.dtype] = None) -> ModuleType:
    """
    Resolve a backend name to its module.

    Raises
    ------
    ValueError
        If the backend is unknown or not available on this installation.
    """
    if name == 'auto':
        name = select_backend(device if device is not None else torch.device('cpu'), dtype)

    if name == 'scipy':
        if not is_scipy_available():
            raise ValueError("Backend 'scipy' requested but SciPy is not installed")
        from . import scipy_backend
        return scipy_backend

    elif name == 'pytorch':
        from . import pytorch_backend
        return pytorch_backend

    raise ValueError(f"Unknown backend '{name}'. Available: {get_available_backends()}")


def backend_routines(name: str) -> Dict[str, object]:
    """Routine name -> callable of the given backend."""
    module = get_backend(name)
    return {routine: getattr(module, routine) for routine in ROUTINES}
