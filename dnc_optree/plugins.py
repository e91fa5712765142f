# dnc_optree/plugins.py
"""
PLUGINS: MULTIPLEXING DISCIPLINES AS STRATEGIES
===============================================

PURPOSE:
--------
The operator tree knows WHICH operation sits where (H, convolution, leftover).
A plugin knows HOW to compute it for a given multiplexing discipline:

    ArbitraryMultiplexingPlugin   closed-form leftover, no free parameters
    FIFOMultiplexingPlugin        leftover adds one theta >= 0 per cross-flow
    LatencyParameterPlugin        arbitrary multiplexing with server latencies
                                  turned into bounded parameters plus a root
                                  inequality constraint

WHAT A CALL RETURNS:
--------------------
Every compute_* call returns a Derivation:

    Derivation(term, parameters, bounds, constraints)

holding exactly what THAT call produced. The plugin also remembers the last
Derivation, so `plugin.parameters` etc. always describe the most recent call
and nothing older. Nodes use the returned tuple, so a plugin never needs to
know where in the tree it is being called from.

WRITING A NEW PLUGIN:
---------------------
Override the hooks (_flow_term, _server_term, _delay_term, _convolution_term,
_leftover_term, _derive_constraints). Inside a hook, create parameters with
create_parameter(), and bounds/constraints with create_bound() /
create_constraint(). They are collected into the current call's Derivation.
"""

from typing import List, NamedTuple, Optional, Tuple

import sympy as sp

from .kernel.bounds import Bound, Constraint, ConstraintType
from .kernel.errors import ContractViolation
from .kernel import symbolic
from .kernel.symbolic import (
    DelayTerm,
    PseudoAffine,
    RateLatencyService,
    SymbolicTerm,
    TokenBucketArrival,
)
from .network import Flow, Server
from .nodes import DelayNode, OperatorKind


class Derivation(NamedTuple):
    term: Optional[SymbolicTerm]
    parameters: Tuple[sp.Symbol, ...] = ()
    bounds: Tuple[Bound, ...] = ()
    constraints: Tuple[Constraint, ...] = ()


class OperatorPlugin:
    """Base plugin: leaf terms from the network model, operators left to subclasses."""

    name = "abstract"

    def __init__(self):
        self._parameters: List[sp.Symbol] = []
        self._bounds: List[Bound] = []
        self._constraints: List[Constraint] = []
        self.last: Optional[Derivation] = None

    def __repr__(self):
        return f"{type(self).__name__}()"

    # ------------------------------------------------------------------
    # Per-call accumulators
    # ------------------------------------------------------------------

    def _reset(self):
        self._parameters = []
        self._bounds = []
        self._constraints = []

    def _finish(self, term: SymbolicTerm) -> Derivation:
        self.last = Derivation(term, tuple(self._parameters), tuple(self._bounds),
                               tuple(self._constraints))
        return self.last

    @property
    def parameters(self) -> Tuple[sp.Symbol, ...]:
        return self.last.parameters if self.last else ()

    @property
    def bounds(self) -> Tuple[Bound, ...]:
        return self.last.bounds if self.last else ()

    @property
    def constraints(self) -> Tuple[Constraint, ...]:
        return self.last.constraints if self.last else ()

    # ------------------------------------------------------------------
    # Helpers for hooks
    # ------------------------------------------------------------------

    def create_parameter(self, name: str) -> sp.Symbol:
        parameter = sp.Symbol(name, real=True)
        self._parameters.append(parameter)
        return parameter

    def create_bound(self, parameter: sp.Symbol, lower: Optional[float] = None,
                     upper: Optional[float] = None) -> Bound:
        bound = Bound(parameter, lower, upper)
        self._bounds.append(bound)
        return bound

    def create_constraint(self, constraint_type: ConstraintType, term) -> Constraint:
        constraint = Constraint(constraint_type, term)
        self._constraints.append(constraint)
        return constraint

    @staticmethod
    def constant(value: float) -> sp.Float:
        return sp.Float(value)

    # ------------------------------------------------------------------
    # Public calls
    # ------------------------------------------------------------------

    def compute_term_from_flow(self, flow: Flow) -> Derivation:
        self._reset()
        return self._finish(self._flow_term(flow))

    def compute_term_from_server(self, server: Server) -> Derivation:
        self._reset()
        return self._finish(self._server_term(server))

    def compute_term(self, operator: OperatorKind, left_term: SymbolicTerm,
                     right_term: SymbolicTerm, cross_flow: Optional[Flow] = None) -> Derivation:
        """
        Apply `operator` to the terms of an operator node's two children.

        left_term is always a service curve. right_term is the arrival curve
        of the node's flow for H and LEFTOVER, a service curve for CONVOLUTION.
        """
        self._reset()
        if operator is OperatorKind.H:
            term = self._delay_term(right_term, left_term)
        elif operator is OperatorKind.CONVOLUTION:
            term = self._convolution_term(left_term, right_term)
        elif operator is OperatorKind.LEFTOVER:
            term = self._leftover_term(left_term, right_term, cross_flow)
        else:
            raise ContractViolation(f"unsupported operator {operator!r}")
        return self._finish(term)

    def derive_constraints(self, subtree_root) -> Tuple[Constraint, ...]:
        """Constraints spanning a whole subtree (e.g. the root delay). Default: none."""
        self._reset()
        self._derive_constraints(subtree_root)
        term = subtree_root.term if subtree_root is not None else None
        return self._finish(term).constraints

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _flow_term(self, flow: Flow) -> SymbolicTerm:
        return TokenBucketArrival(self.constant(flow.rate), self.constant(flow.burst))

    def _server_term(self, server: Server) -> SymbolicTerm:
        return RateLatencyService(self.constant(server.rate), self.constant(server.latency))

    def _delay_term(self, arrival: SymbolicTerm, service: SymbolicTerm) -> DelayTerm:
        return symbolic.h_operator(arrival, service)

    def _convolution_term(self, left: SymbolicTerm, right: SymbolicTerm) -> PseudoAffine:
        return symbolic.convolve(left, right)

    def _leftover_term(self, service: SymbolicTerm, arrival: SymbolicTerm,
                       cross_flow: Optional[Flow]) -> PseudoAffine:
        raise NotImplementedError(f"{type(self).__name__} does not define a leftover operation")

    def _derive_constraints(self, subtree_root):
        pass


class ArbitraryMultiplexingPlugin(OperatorPlugin):
    """Leftover service under arbitrary multiplexing: no free parameters."""

    name = "arbitrary"

    def _leftover_term(self, service, arrival, cross_flow):
        return symbolic.arbitrary_leftover(service, arrival)


FIFO_PARAMETER_PREFIX = "theta_"


class FIFOMultiplexingPlugin(OperatorPlugin):
    """
    Leftover service under FIFO multiplexing.

    Each leftover creates one delay-shift parameter named after the cross-flow
    alias (theta_<alias>), bounded below by 0 and unbounded above. The name
    does not depend on node ids, so renumbering a tree keeps parameter identity.
    """

    name = "fifo"

    def _leftover_term(self, service, arrival, cross_flow):
        if cross_flow is None:
            raise ContractViolation("FIFO leftover needs the cross-flow to name its parameter")
        theta = self.create_parameter(FIFO_PARAMETER_PREFIX + cross_flow.alias)
        self.create_bound(theta, 0, None)
        return symbolic.fifo_leftover(service, arrival, theta)


LATENCY_PARAMETER_PREFIX = "L_"


class LatencyParameterPlugin(ArbitraryMultiplexingPlugin):
    """
    Arbitrary multiplexing where every server latency is a free parameter.

    Each server leaf creates L_<server id> bounded below by the server's
    latency. At the root, the delay bound is constrained to exceed min_delay:

        INEQ: delay - min_delay > 0

    Minimising the delay drives every L back to its lower bound, so the
    optimum equals the closed-form arbitrary-multiplexing bound. Useful for
    exercising bounds and constraints end to end.
    """

    name = "latency-parameter"

    def __init__(self, min_delay: float = 1.0):
        super().__init__()
        self.min_delay = min_delay

    def _server_term(self, server):
        latency = self.create_parameter(f"{LATENCY_PARAMETER_PREFIX}{server.id}")
        self.create_bound(latency, server.latency, None)
        return RateLatencyService(self.constant(server.rate), latency)

    def _derive_constraints(self, subtree_root):
        if isinstance(subtree_root, DelayNode):
            delay = subtree_root.term.expression
            self.create_constraint(ConstraintType.INEQ, delay - self.constant(self.min_delay))
