# dnc_optree/kernel/solve.py
"""
NONLINEAR SOLVER CAPABILITY
===========================

A thin wrapper around scipy.optimize.minimize that looks like a classic NLP
solver handle: construct it with an algorithm and a dimension, set tolerances,
bounds and the objective, then call optimize(x0).

The solver is a black box. The only things this module adds are:

    1. ALGORITHM TABLE
       Which scipy methods take a gradient, which take general constraints,
       and which "meta" algorithms run two solvers from the same guess.

    2. EVALUATION CAP
       max_evaluations <= 0 means UNLIMITED, never "return immediately".
       Each scipy method spells the cap differently (maxiter / maxfun / maxfev).

    3. FAILURE SENTINEL
       Any exception from scipy is caught at the optimize() boundary, logged,
       and turned into SolverResult(status=-1, min_value=-inf). The analysis
       never crashes because a solver did.

    4. SCALED PROBLEM + RELATIVE X TOLERANCE
       scipy tolerances are mostly absolute, and each method reads its own.
       optimize() therefore solves the scaled problem

           y = x / variable_scale          h(y) = f(x) / |f(x0)|

       (|f(x0)| replaced by 1 when it is 0 or not finite) and maps xtol_rel
       onto each method's options in those units:

           SLSQP        ftol  = max(xtol_rel^2, 1e-14)
           L-BFGS-B     ftol  = max(xtol_rel^2, 1e-14)
           TNC          xtol  = xtol_rel
           Powell       xtol  = xtol_rel           (relative in scipy)
           Nelder-Mead  xatol = xtol_rel * max(1, |y0|), fatol = xtol_rel
           COBYLA       tol   = xtol_rel           (final trust-region radius)

       The quadratic ftol reflects that near a smooth minimum a change of
       xtol_rel in y changes h by about xtol_rel^2. With a variable scale in
       the problem's own units, changing those units leaves h, the bounds in
       y and every tolerance unchanged.

STATUS CODES:
-------------
    1   success
    2   stopped early with a finite objective (e.g. SLSQP on a kink)
    5   evaluation cap reached
   -1   failure
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import Bounds, minimize

from .errors import ContractViolation, SolverError


logger = logging.getLogger(__name__)


SUCCESS = 1
STOPPED_EARLY = 2
MAXEVAL_REACHED = 5
FAILURE = -1

GRADIENT_BASED = ("SLSQP", "L-BFGS-B", "TNC")
DERIVATIVE_FREE = ("Nelder-Mead", "Powell", "COBYLA")
CONSTRAINT_CAPABLE = ("SLSQP", "COBYLA")

# Meta algorithms run their members in order; ties go to the first
META_ALGORITHMS: Dict[str, Tuple[str, str]] = {
    "SLSQP+Nelder-Mead": ("SLSQP", "Nelder-Mead"),
}

# scipy option names for the evaluation cap, per method
_EVALUATION_OPTIONS: Dict[str, Tuple[str, ...]] = {
    "SLSQP": ("maxiter",),
    "L-BFGS-B": ("maxfun", "maxiter"),
    "TNC": ("maxfun",),
    "Nelder-Mead": ("maxfev",),
    "Powell": ("maxfev",),
    "COBYLA": ("maxiter",),
}

UNLIMITED_EVALUATIONS = 10 ** 9

_FTOL_FLOOR = 1e-14


def known_algorithms() -> List[str]:
    return list(GRADIENT_BASED) + list(DERIVATIVE_FREE) + list(META_ALGORITHMS)


def is_gradient_based(algorithm: str) -> bool:
    return algorithm in GRADIENT_BASED


@dataclass
class SolverResult:
    """Outcome of one optimize() call."""
    status: int
    min_value: float
    x: np.ndarray = field(default_factory=lambda: np.zeros(0))
    algorithm: str = ""
    evaluations: int = 0

    @property
    def failed(self) -> bool:
        return self.status < 0

    @classmethod
    def failure(cls, x0, algorithm: str = "") -> "SolverResult":
        return cls(FAILURE, -math.inf, np.asarray(x0, dtype=float), algorithm)


class NLPSolver:
    """
    Single-algorithm solver handle.

    Example:
        solver = NLPSolver("SLSQP", 2)
        solver.set_xtol_rel(1e-4)
        solver.set_bounds([0, 0], [np.inf, np.inf])
        solver.set_min_objective(f, grad)
        result = solver.optimize([0.0, 0.0])
    """

    def __init__(self, algorithm: str, dimension: int):
        if algorithm not in GRADIENT_BASED and algorithm not in DERIVATIVE_FREE:
            raise ValueError(
                f"Unknown solver algorithm '{algorithm}'. "
                f"Choose from {known_algorithms()}"
            )
        if dimension < 1:
            raise ContractViolation(f"solver dimension must be >= 1, got {dimension}")
        self.algorithm = algorithm
        self.dimension = dimension
        self.xtol_rel: Optional[float] = None
        self.variable_scale = 1.0
        self.max_evaluations = 0
        self.lower = np.full(dimension, -np.inf)
        self.upper = np.full(dimension, np.inf)
        self.objective: Optional[Callable] = None
        self.gradient: Optional[Callable] = None
        self.constraints: List[dict] = []

    def set_xtol_rel(self, tol: float):
        self.xtol_rel = tol

    def set_variable_scale(self, scale: float):
        """Typical magnitude of the decision variables, in their own units."""
        if not (math.isfinite(scale) and scale > 0):
            raise ContractViolation(f"variable scale must be finite and > 0, got {scale}")
        self.variable_scale = float(scale)

    def set_max_evaluations(self, max_evaluations: int):
        self.max_evaluations = int(max_evaluations)

    def set_bounds(self, lower: Sequence[float], upper: Sequence[float]):
        lower = np.asarray(lower, dtype=float)
        upper = np.asarray(upper, dtype=float)
        if lower.shape != (self.dimension,) or upper.shape != (self.dimension,):
            raise ContractViolation(
                f"bounds must have length {self.dimension}, got {lower.shape} and {upper.shape}"
            )
        self.lower, self.upper = lower, upper

    def set_min_objective(self, objective: Callable, gradient: Optional[Callable] = None):
        self.objective = objective
        self.gradient = gradient if is_gradient_based(self.algorithm) else None

    def set_constraints(self, constraints: Sequence[dict]):
        if constraints and self.algorithm not in CONSTRAINT_CAPABLE:
            raise ContractViolation(f"{self.algorithm} does not accept general constraints")
        self.constraints = list(constraints)

    def solver_options(self) -> dict:
        """Evaluation-cap options dict for scipy.optimize.minimize."""
        cap = self.max_evaluations if self.max_evaluations > 0 else UNLIMITED_EVALUATIONS
        return {name: cap for name in _EVALUATION_OPTIONS[self.algorithm]}

    def tolerance_options(self, y0: np.ndarray) -> dict:
        """xtol_rel mapped onto this method's options, in scaled units."""
        if self.xtol_rel is None:
            return {}
        tol = self.xtol_rel
        if self.algorithm in ("SLSQP", "L-BFGS-B"):
            return {"ftol": max(tol * tol, _FTOL_FLOOR)}
        if self.algorithm in ("TNC", "Powell"):
            return {"xtol": tol}
        if self.algorithm == "Nelder-Mead":
            size = float(np.max(np.abs(y0))) if y0.size else 0.0
            return {"xatol": tol * max(1.0, size), "fatol": tol}
        return {"tol": tol}

    def _objective_scale(self, x0: np.ndarray) -> float:
        try:
            value = float(self.objective(x0))
        except Exception as exc:
            raise SolverError(f"{self.algorithm} crashed: {exc}") from exc
        if math.isfinite(value) and value != 0.0:
            return abs(value)
        return 1.0

    def _scaled_constraints(self, s: float) -> List[dict]:
        scaled = []
        for constraint in self.constraints:
            scaled_constraint = dict(constraint)
            scaled_constraint["fun"] = lambda y, fun=constraint["fun"]: fun(s * np.asarray(y))
            if "jac" in constraint:
                scaled_constraint["jac"] = lambda y, jac=constraint["jac"]: s * np.asarray(jac(s * np.asarray(y)))
            scaled.append(scaled_constraint)
        return scaled

    def _minimize(self, x0: np.ndarray):
        """Run scipy on the scaled problem. Returns (result, objective scale)."""
        s = self.variable_scale
        f_scale = self._objective_scale(x0)
        y0 = x0 / s

        options = self.solver_options()
        options.update(self.tolerance_options(y0))
        kwargs = dict(
            method=self.algorithm,
            bounds=Bounds(self.lower / s, self.upper / s),
            options=options,
        )
        if self.gradient is not None:
            gradient = self.gradient
            kwargs["jac"] = lambda y: np.asarray(gradient(s * np.asarray(y)), dtype=float) * (s / f_scale)
        if self.constraints:
            kwargs["constraints"] = self._scaled_constraints(s)

        objective = self.objective

        def scaled_objective(y):
            return objective(s * np.asarray(y)) / f_scale

        try:
            return minimize(scaled_objective, y0, **kwargs), f_scale
        except Exception as exc:
            raise SolverError(f"{self.algorithm} crashed: {exc}") from exc

    def _status(self, res) -> int:
        if not np.isfinite(res.fun):
            return FAILURE
        if res.success:
            return SUCCESS
        if self.max_evaluations > 0 and max(res.get("nfev", 0), res.get("nit", 0)) >= self.max_evaluations:
            return MAXEVAL_REACHED
        return STOPPED_EARLY

    def optimize(self, x0: Sequence[float]) -> SolverResult:
        """
        Minimize the objective starting at x0 (clipped into the box).

        Never raises for solver-side problems: returns the failure sentinel.
        """
        if self.objective is None:
            raise ContractViolation("set_min_objective must be called before optimize")
        x0 = np.asarray(x0, dtype=float)
        if x0.shape != (self.dimension,):
            raise ContractViolation(f"initial guess must have length {self.dimension}, got {x0.shape}")
        x0 = np.clip(x0, self.lower, self.upper)

        try:
            res, f_scale = self._minimize(x0)
        except SolverError as exc:
            logger.warning("Solver failure, returning sentinel result: %s", exc)
            return SolverResult.failure(x0, self.algorithm)

        status = self._status(res)
        if status == FAILURE:
            logger.warning("%s returned non-finite objective (%s)", self.algorithm, res.message)
            return SolverResult.failure(x0, self.algorithm)
        if status == STOPPED_EARLY:
            logger.warning("%s stopped before converging: %s", self.algorithm, res.message)
        x = np.asarray(res.x, dtype=float) * self.variable_scale
        return SolverResult(status, float(res.fun) * f_scale, x,
                            self.algorithm, int(res.get("nfev", 0)))


def solve_nlp(
    config,
    objective: Callable,
    gradient: Optional[Callable],
    lower: Sequence[float],
    upper: Sequence[float],
    x0: Sequence[float],
    constraints: Sequence[dict] = (),
    variable_scale: float = 1.0,
) -> SolverResult:
    """
    Run the configured algorithm (or meta algorithm) on one NLP.

    Parameters:
    -----------
    config : SolverConfig
        algorithm, evaluation cap, x tolerance, constraint forwarding.
    objective, gradient : callables of the decision vector
    lower, upper : box bounds, +-inf for unbounded sides
    x0 : initial guess
    constraints : scipy-style constraint dicts, forwarded only when
        config.forward_constraints is set and the algorithm accepts them.
    variable_scale : typical magnitude of the decision variables, see
        NLPSolver.set_variable_scale.

    Returns:
    --------
    SolverResult of the winning run. For a meta algorithm this is the
    smallest objective among non-failed members; the failure sentinel if all failed.
    """
    members = META_ALGORITHMS.get(config.algorithm, (config.algorithm,))
    dimension = len(x0)

    best: Optional[SolverResult] = None
    for algorithm in members:
        solver = NLPSolver(algorithm, dimension)
        solver.set_xtol_rel(config.xtol_rel)
        solver.set_variable_scale(variable_scale)
        solver.set_max_evaluations(config.max_evaluations)
        solver.set_bounds(lower, upper)
        solver.set_min_objective(objective, gradient)
        if constraints:
            if config.forward_constraints and algorithm in CONSTRAINT_CAPABLE:
                solver.set_constraints(constraints)
            else:
                logger.debug("Not forwarding %d general constraint(s) to %s",
                             len(constraints), algorithm)

        result = solver.optimize(x0)
        logger.debug("%s: status=%d value=%s", algorithm, result.status, result.min_value)
        if result.failed:
            continue
        if best is None or result.min_value < best.min_value:
            best = result

    if best is None:
        logger.warning("All solver runs failed for %s", config.algorithm)
        return SolverResult.failure(x0, config.algorithm)
    return best
