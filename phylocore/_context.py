"""
_context.py
===========
Scoped runtime settings for phylocore.

There are no configuration files.  Everything a caller may want to change
for a stretch of code is a context manager that puts the old value back on
exit, exceptions included:

  suppress_logger(name, level)   one logger's level
  quiet(level)                   every phylocore logger at once
  suppress_warnings(category)    Python warnings
  use_backend(name)              default neighbor-joining scan backend
  silent_run(backend)            quiet + use_backend + suppress_warnings
"""

import logging
import warnings
from contextlib import contextmanager
from typing import Optional, Type

PACKAGE_LOGGER = "phylocore"

# Backend forced by use_backend(); None means "no override"
_backend_override: Optional[str] = None


# ============================================================================ #
# Logging
# ============================================================================ #


@contextmanager
def suppress_logger(logger_name: str, level: int = logging.CRITICAL):
    """
    Raise (or lower) one logger's level for the duration of the block.

    Parameters
    ----------
    logger_name : str
        Logger to adjust, e.g. ``'phylocore._reconcile'`` to hide the
        per-branch rerooting lines.
    level : int, default logging.CRITICAL
        Level while inside the block.

    Examples
    --------
    >>> with suppress_logger('phylocore._reconcile', logging.WARNING):
    ...     rooted = root_and_reconcile_binary(gene_tree, species_tree, leaf_map)
    """
    target = logging.getLogger(logger_name)
    saved = target.level
    target.setLevel(level)
    try:
        yield
    finally:
        target.setLevel(saved)


@contextmanager
def quiet(level: int = logging.CRITICAL):
    """
    Silence phylocore's logging below *level*.

    Module loggers are children of ``'phylocore'`` and inherit its level,
    so only the package logger needs changing.

    Examples
    --------
    >>> with quiet():
    ...     tree = neighbor_join(distances)

    Keep warnings such as negative NJ branch lengths visible:

    >>> with quiet(logging.WARNING):
    ...     tree = neighbor_join(distances)
    """
    with suppress_logger(PACKAGE_LOGGER, level):
        yield


# ============================================================================ #
# Warnings
# ============================================================================ #


@contextmanager
def suppress_warnings(category: Optional[Type[Warning]] = None):
    """
    Ignore warnings of *category* (all warnings when None) inside the block.

    The most common use is hiding numba's compilation notices on small
    inputs:

    >>> from numba.core.errors import NumbaPerformanceWarning
    >>> with suppress_warnings(NumbaPerformanceWarning):
    ...     tree = neighbor_join(distances, backend='numba')
    """
    with warnings.catch_warnings():
        if category is None:
            warnings.simplefilter("ignore")
        else:
            warnings.filterwarnings("ignore", category=category)
        yield


# ============================================================================ #
# Backend selection
# ============================================================================ #


@contextmanager
def use_backend(backend: str):
    """
    Make *backend* the default pair-scan backend inside the block.

    Calls that pass ``backend='best'`` (the default) pick up the override;
    an explicit ``backend='python'`` or ``'numba'`` argument still wins.

    Parameters
    ----------
    backend : str
        ``'python'``, ``'numba'`` or ``'best'`` (no override).

    Raises
    ------
    ValueError
        If *backend* is not a known backend.  The check happens on entry,
        before the block runs.

    Examples
    --------
    Check both scans build the same tree:

    >>> with use_backend('python'):
    ...     slow = neighbor_join(distances)
    >>> with use_backend('numba'):
    ...     fast = neighbor_join(distances)
    >>> slow.equals(fast)
    True

    Notes
    -----
    The override is module-level state shared by all threads.  Threads that
    need different backends should pass ``backend=`` explicitly.
    """
    global _backend_override

    from ._backend import get_available_backends

    available = get_available_backends()
    if backend != "best" and backend not in available:
        raise ValueError(
            f"Backend '{backend}' not available. "
            f"Available backends: {', '.join(available)}"
        )

    previous = _backend_override
    _backend_override = backend
    try:
        yield
    finally:
        _backend_override = previous


def get_backend_override() -> Optional[str]:
    """
    Backend set by the innermost active ``use_backend()``, or None.

    Examples
    --------
    >>> get_backend_override() is None
    True
    >>> with use_backend('python'):
    ...     get_backend_override()
    'python'
    """
    return _backend_override


# ============================================================================ #
# Combined
# ============================================================================ #


@contextmanager
def silent_run(backend: str = "best"):
    """
    No log output, no warnings, and *backend* as the default scan.

    Handy in timing loops and notebooks:

    >>> for name in get_available_backends():
    ...     with silent_run(name):
    ...         tree = neighbor_join(distances)
    """
    with quiet(), use_backend(backend), suppress_warnings():
        yield
