# dnc_optree/analysis.py
"""
ANALYSIS: FROM NESTING TREE TO A TIGHT DELAY BOUND
==================================================

PURPOSE:
--------
OpTreeAnalysis glues everything together:

    1. build the operator tree from the nesting tree
    2. derive the symbolic delay term with a plugin
       -> objective, ordered parameter list, bounds, constraints
    3. no free parameters?  evaluate directly, done
    4. otherwise set up the NLP:
           x          = parameter values, in parameter-list order
           objective  = lambdified delay term
           gradient   = lambdified symbolic Jacobian (gradient-based solvers only)
           box bounds = Bound objects, +-inf for unbounded sides
    5. solve (a meta algorithm runs two solvers and keeps the smaller bound),
       with parameters measured in units of the delay at the initial guess
    6. write the winning vector back to the tree and re-evaluate

WHY SYMBOLIC DERIVATIVES?
-------------------------
The delay term is a composition of max/min/division over a handful of
parameters. sympy differentiates it exactly once; lambdify turns the result
into plain numpy functions that the solver calls thousands of times.

The same machinery gives the Hessian for the convexity diagnostic.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
import sympy as sp

from .builder import build_operator_tree
from .config import DEFAULT_SOLVER_CONFIG, SolverConfig
from .kernel.bounds import ConstraintType
from .kernel.errors import ContractViolation
from .kernel.solve import FAILURE, META_ALGORITHMS, SUCCESS, is_gradient_based, solve_nlp
from .network import Flow, NestingNode
from .nodes import DelayNode
from .plugins import FIFO_PARAMETER_PREFIX, OperatorPlugin


logger = logging.getLogger(__name__)

InitialGuess = Union[None, Sequence[float], Mapping[Union[str, Flow], float]]


def _heaviside(x, h0=0.5):
    return np.heaviside(x, h0)


def _dirac_delta(x, k=0):
    # Measure-zero kinks: treat the second derivative as 0 there
    return np.zeros_like(np.asarray(x, dtype=float))


_LAMBDIFY_MODULES = [{"Heaviside": _heaviside, "DiracDelta": _dirac_delta}, "numpy"]


def compile_expression(parameters: Sequence[sp.Symbol], expr):
    """Lambdify `expr` into f(x) where x is the parameter vector."""
    return sp.lambdify([list(parameters)], expr, modules=_LAMBDIFY_MODULES)


@dataclass
class AnalysisResult:
    """Outcome of run_delay_bound_analysis."""
    delay_bound: float
    parameter_values: Dict[str, float] = field(default_factory=dict)
    status: int = SUCCESS
    algorithm: str = ""
    solver_invoked: bool = False
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status >= 0


def check_convexity_condition(hessian: np.ndarray, z: np.ndarray) -> bool:
    """z^T H z >= 0. A NaN curvature is not counted as a violation."""
    value = float(z @ hessian @ z)
    return not value < 0


class OpTreeAnalysis:
    """
    Delay-bound analysis of one flow of interest.

    Example:
        analysis = OpTreeAnalysis(nesting_root, SolverConfig(algorithm="SLSQP+Nelder-Mead"))
        result = analysis.run_delay_bound_analysis(FIFOMultiplexingPlugin())
        print(result.delay_bound, result.parameter_values)
    """

    def __init__(self, nesting_tree: NestingNode, config: SolverConfig = DEFAULT_SOLVER_CONFIG):
        self.nesting_tree = nesting_tree
        self.config = config
        self.tree: Optional[DelayNode] = None
        self.objective = None
        self.parameters = ()
        self.bounds = ()
        self.constraints = ()
        self.jacobian: List[sp.Expr] = []
        self._hessian = None
        self.initial_guess: List[float] = []
        self.parameter_values: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Steps 1 and 2
    # ------------------------------------------------------------------

    def build_tree(self) -> DelayNode:
        self.tree = build_operator_tree(self.nesting_tree)
        return self.tree

    def derive(self, plugin: OperatorPlugin) -> DelayNode:
        """Build a fresh tree and derive its symbolics with `plugin`."""
        tree = self.build_tree()
        tree.derive_symbolics(plugin)
        self.objective = tree.term.expression
        self.parameters = tree.parameters
        self.bounds = tree.bounds
        self.constraints = tree.constraints
        self.jacobian = [sp.diff(self.objective, p) for p in self.parameters]
        self._hessian = None
        logger.debug("Derived objective with %d parameter(s) and %d constraint(s)",
                     len(self.parameters), len(self.constraints))
        return tree

    @property
    def hessian(self) -> sp.Matrix:
        if self._hessian is None:
            self._hessian = self.compute_hessian()
        return self._hessian

    def compute_hessian(self) -> sp.Matrix:
        """Second partial derivatives, obtained by differentiating the Jacobian."""
        n = len(self.parameters)
        return sp.Matrix(n, n, lambda i, j: sp.diff(self.jacobian[i], self.parameters[j]))

    # ------------------------------------------------------------------
    # Steps 3 to 6
    # ------------------------------------------------------------------

    def _initial_vector(self, initial_guess: InitialGuess) -> List[float]:
        names = [p.name for p in self.parameters]
        if initial_guess is None:
            return [0.0] * len(names)

        if isinstance(initial_guess, Mapping):
            by_name = {}
            for key, value in initial_guess.items():
                if isinstance(key, Flow):
                    name = FIFO_PARAMETER_PREFIX + key.alias
                elif key in names:
                    name = key
                else:
                    name = FIFO_PARAMETER_PREFIX + str(key)
                by_name[name] = float(value)
            missing = [name for name in names if name not in by_name]
            if missing:
                raise ContractViolation(f"initial guess has no value for {missing}")
            return [by_name[name] for name in names]

        guess = [float(v) for v in initial_guess]
        if len(guess) != len(names):
            raise ContractViolation(
                f"initial guess has {len(guess)} value(s) for {len(names)} parameter(s)"
            )
        return guess

    def evaluate(self, x: Sequence[float]) -> float:
        """Objective value at parameter vector x."""
        return float(compile_expression(self.parameters, self.objective)(list(x)))

    def _solver_constraints(self) -> List[dict]:
        constraints = []
        for constraint in self.constraints:
            fun = compile_expression(self.parameters, constraint.term)
            kind = "eq" if constraint.type is ConstraintType.EQ else "ineq"
            constraints.append({"type": kind, "fun": lambda x, f=fun: float(f(list(x)))})
        return constraints

    def _time_scale(self, lower, upper) -> float:
        """
        Delay at the (box-clipped) initial guess, the natural unit of every
        parameter. Falls back to 1 when that delay is 0 or not finite.
        """
        x0 = np.clip(np.asarray(self.initial_guess, dtype=float), lower, upper)
        value = abs(self.evaluate(x0))
        return value if np.isfinite(value) and value > 0 else 1.0

    def run_delay_bound_analysis(self, plugin: OperatorPlugin,
                                 initial_guess: InitialGuess = None) -> AnalysisResult:
        """
        Compute the tightest delay bound the configured solver can find.

        Parameters:
        -----------
        plugin : OperatorPlugin
            Multiplexing discipline (arbitrary, FIFO, ...).
        initial_guess : None, sequence, or mapping
            None -> all zeros. A sequence is taken in parameter-list order.
            A mapping is keyed by cross-flow alias, Flow, or parameter name.

        Returns:
        --------
        AnalysisResult. If every solver run failed: delay_bound = -1.0 and a
        negative status.
        """
        logger.info("Delay-bound analysis of %s with %s",
                    self.nesting_tree.content, type(plugin).__name__)
        tree = self.derive(plugin)
        self.initial_guess = self._initial_vector(initial_guess)
        names = [p.name for p in self.parameters]

        if not self.parameters:
            bound = tree.compute_delay()
            self.parameter_values = {}
            logger.info("No free parameters, delay bound = %s", bound)
            return AnalysisResult(bound, {}, SUCCESS, "", solver_invoked=False)

        algorithm = self.config.algorithm
        members = META_ALGORITHMS.get(algorithm, (algorithm,))
        objective = compile_expression(self.parameters, self.objective)
        jacobian = compile_expression(self.parameters, self.jacobian)

        def gradient(x):
            return np.asarray(jacobian(list(x)), dtype=float)

        if not any(is_gradient_based(member) for member in members):
            gradient = None

        intervals = [b.as_interval() for b in self.bounds]
        lower = [lo for lo, _ in intervals]
        upper = [hi for _, hi in intervals]

        logger.info("Solving NLP over %d parameter(s) with %s", len(names), algorithm)
        result = solve_nlp(
            self.config,
            lambda x: float(objective(list(x))),
            gradient,
            lower,
            upper,
            self.initial_guess,
            self._solver_constraints() if self.constraints else (),
            variable_scale=self._time_scale(lower, upper),
        )

        if result.failed:
            self.parameter_values = dict(zip(names, self.initial_guess))
            logger.warning("Solver failed for %s, reporting delay bound -1", self.nesting_tree.content)
            return AnalysisResult(-1.0, dict(self.parameter_values), FAILURE, algorithm,
                                  solver_invoked=True, reason="solver failure")

        self.parameter_values = {name: float(v) for name, v in zip(names, result.x)}
        tree.set_parameter_values(self.parameter_values)
        bound = tree.compute_delay()
        logger.info("Delay bound = %s (status %d, %s)", bound, result.status, result.algorithm)
        return AnalysisResult(bound, dict(self.parameter_values), result.status,
                              result.algorithm, solver_invoked=True)

    # ------------------------------------------------------------------
    # Convexity diagnostic
    # ------------------------------------------------------------------

    def run_convexity_analysis(self, plugin: OperatorPlugin) -> bool:
        """
        Statistical convexity check of the delay term.

        Samples `convexity_samples` points inside the bounds (each side clipped
        to [0, convexity_max_value]) and, at each, `convexity_directions`
        random vectors z. Returns False at the first z with z^T H z < 0.
        """
        self.derive(plugin)
        n = len(self.parameters)
        if n == 0:
            return True

        cfg = self.config
        rng = np.random.default_rng(cfg.seed)
        hessian = compile_expression(self.parameters, self.hessian.tolist())

        lows = []
        highs = []
        for bound in self.bounds:
            low = 0.0 if bound.lower is None else float(bound.lower)
            upper = np.inf if bound.upper is None else float(bound.upper)
            lows.append(low)
            highs.append(max(low, min(cfg.convexity_max_value, upper)))
        lows = np.array(lows)
        highs = np.array(highs)

        z_lo, z_hi = cfg.convexity_vector_range
        for _ in range(cfg.convexity_samples):
            point = rng.uniform(lows, highs)
            H = np.asarray(hessian(list(point)), dtype=float)
            for _ in range(cfg.convexity_directions):
                z = rng.uniform(z_lo, z_hi, size=n)
                if not check_convexity_condition(H, z):
                    logger.info("Convexity violated at %s", point)
                    return False
        return True

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def parameters_by_cross_flow(self) -> Dict[str, float]:
        """FIFO parameter values keyed by cross-flow alias."""
        prefix = FIFO_PARAMETER_PREFIX
        return {
            name[len(prefix):]: value
            for name, value in self.parameter_values.items()
            if name.startswith(prefix)
        }

    def parameter_frame(self) -> pd.DataFrame:
        """One row per parameter: name, cross-flow, bounds, initial and final value."""
        rows = []
        for i, (parameter, bound) in enumerate(zip(self.parameters, self.bounds)):
            name = parameter.name
            rows.append({
                'parameter': name,
                'cross_flow': name[len(FIFO_PARAMETER_PREFIX):] if name.startswith(FIFO_PARAMETER_PREFIX) else None,
                'lower': bound.lower,
                'upper': bound.upper,
                'initial': self.initial_guess[i] if i < len(self.initial_guess) else None,
                'value': self.parameter_values.get(name),
            })
        return pd.DataFrame(rows, columns=['parameter', 'cross_flow', 'lower', 'upper', 'initial', 'value'])
