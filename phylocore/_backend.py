"""
_backend.py
===========
Backend registry for the neighbor-joining pair scan.

Two interchangeable implementations of the scan exist:

  'python' : numpy-vectorised scan over the active sub-matrix
  'numba'  : LLVM-compiled loop (``_cpu_kernels._nj_select_pair``)

Both return the same pair, ties included.  Functions in this module have NO
side effects - they only query state.  Logging is done by the calling code.
"""

from typing import List, Optional

import numba

BACKENDS = ("python", "numba")


def get_available_backends() -> List[str]:
    """
    Get list of available scan backends in preference order (last is best).

    Examples
    --------
    >>> get_available_backends()
    ['python', 'numba']
    """
    return list(BACKENDS)


def get_best_backend() -> str:
    """Most optimised available backend."""
    return get_available_backends()[-1]


def resolve_backend(backend: Optional[str] = None) -> str:
    """
    Resolve a backend specification to an actual backend.

    Precedence: an explicit *backend* other than ``None``/``'best'`` wins;
    otherwise an active ``use_backend()`` override; otherwise the best
    available backend.

    Parameters
    ----------
    backend : str or None
        'best', 'python', 'numba' or None.

    Raises
    ------
    ValueError
        If the requested backend is unknown.

    Examples
    --------
    >>> resolve_backend('best')
    'numba'
    >>> resolve_backend('python')
    'python'
    """
    from phylocore._context import get_backend_override

    if backend is None or backend == "best":
        override = get_backend_override()
        if override is not None and override != "best":
            backend = override
        else:
            return get_best_backend()

    available = get_available_backends()
    if backend not in available:
        raise ValueError(
            f"Backend '{backend}' not available. "
            f"Available backends: {', '.join(available)}"
        )
    return backend


def get_backend_info() -> dict:
    """
    Get backend information.

    Returns
    -------
    dict
        Keys 'numba_version', 'backends', 'best_backend'.

    Examples
    --------
    >>> info = get_backend_info()
    >>> info['best_backend']
    'numba'
    """
    return {
        "numba_version": numba.__version__,
        "backends": get_available_backends(),
        "best_backend": get_best_backend(),
    }
