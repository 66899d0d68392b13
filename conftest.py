"""
conftest.py
===========
Session-level pytest configuration for the test suite.

Custom marks
------------
large_scale
    Applied to tests that build trees with thousands of leaves.  Excluded
    from quick runs with ``-m "not large_scale"``.

    Registration here suppresses PytestUnknownMarkWarning and makes the mark
    visible in ``pytest --markers``.

Warning filters
---------------
NumbaPerformanceWarning messages are filtered out during tests.  They concern
compilation choices for tiny inputs and are not informative for correctness
testing.
"""

import warnings

from numba.core.errors import NumbaPerformanceWarning


def pytest_configure(config):
    """
    Configure pytest before test collection begins.

    This runs before any test module is imported, so the filter is in place
    before the pair-scan kernel is compiled.
    """
    config.addinivalue_line(
        "markers",
        "large_scale: tests on large trees (deselect with -m 'not large_scale')",
    )
    warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)


def pytest_unconfigure(config):
    """Restore default warning behavior."""
    warnings.resetwarnings()
