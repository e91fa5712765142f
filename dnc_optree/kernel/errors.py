# dnc_optree/kernel/errors.py
"""Exceptions shared by the operator-tree kernel."""


class ContractViolation(AssertionError):
    """
    Raised when an internal invariant of the operator tree is broken.

    Malformed tree shapes, duplicate parameter names, unbounded parameters,
    unsupported operator/curve combinations and mismatched initial guesses all
    point at a bug in a builder or plugin, not at bad network data. They are
    never caught inside the library.
    """
    pass


class SolverError(RuntimeError):
    """Raised when the nonlinear solver cannot be set up or crashes."""
    pass
