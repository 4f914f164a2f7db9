"""Fatal error types raised by the PDE advance.

Solver non-convergence is *not* an exception: it is reported through the
``converged`` flag of the result objects returned by the linear solves.
"""


class ConfigurationError(ValueError):
    """Invalid run configuration (unknown enum, mismatched operator, deprecated option)."""


class GeometryError(RuntimeError):
    """Internal geometry invariant violated (empty boundary box, misaligned level)."""
