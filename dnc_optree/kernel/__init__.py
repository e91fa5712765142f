# dnc_optree/kernel - Symbolic algebra, bounds and solver plumbing
"""
KERNEL: THE DISCIPLINE-AGNOSTIC FOUNDATION
==========================================

Everything in here is independent of how servers multiplex flows:

- symbolic: curve shapes and the H / convolution / leftover operations
- bounds:   box bounds and general constraints on free parameters
- solve:    the nonlinear solver handle (scipy behind a small API)
- errors:   ContractViolation and SolverError

The multiplexing DISCIPLINE (arbitrary, FIFO, ...) lives one level up in
dnc_optree.plugins and decides which of these operations to call.
"""

from .errors import ContractViolation, SolverError
from .symbolic import (
    t,
    SymbolicTerm,
    PseudoAffine,
    TokenBucketArrival,
    RateLatencyService,
    DelayTerm,
    h_operator,
    convolve,
    arbitrary_leftover,
    fifo_leftover,
    max_stages_term,
)
from .bounds import Bound, Constraint, ConstraintType
from .solve import NLPSolver, SolverResult, solve_nlp

__all__ = [
    'ContractViolation', 'SolverError',
    't', 'SymbolicTerm', 'PseudoAffine', 'TokenBucketArrival', 'RateLatencyService', 'DelayTerm',
    'h_operator', 'convolve', 'arbitrary_leftover', 'fifo_leftover', 'max_stages_term',
    'Bound', 'Constraint', 'ConstraintType',
    'NLPSolver', 'SolverResult', 'solve_nlp',
]
