# dnc_optree/kernel/symbolic.py
"""
SYMBOLIC TERMS: CURVE SHAPES AS DIFFERENTIABLE EXPRESSIONS
==========================================================

PURPOSE:
--------
Every node of an operator tree carries a symbolic term. Leaves carry the
arrival curve of a flow or the service curve of a server; interior nodes carry
whatever the operator below them produces. The root carries the delay bound.

All curve parameters are sympy expressions. Constants are sympy Floats, free
parameters (e.g. the FIFO theta's) are sympy Symbols. Because the terms are
plain sympy expressions, sympy.diff gives us exact first and second
derivatives of the final delay bound for free.

SHAPES:
-------
    PseudoAffine(D, stages)        pi(t) = min_x gamma_x(t - D)  for t > D, else 0
    TokenBucketArrival(r, B)       gamma(t) = B + r*t
    RateLatencyService(R, L)       beta(t) = R*[t - L]^+
    DelayTerm(value)               scalar result of the H operator

TokenBucketArrival and RateLatencyService are single-stage pseudoaffine
curves, so every operation accepting a PseudoAffine accepts them too:

    TokenBucketArrival(r, B)   == stage list [gamma_{r,B}],  latency 0
    RateLatencyService(R, L)   == stage list [gamma_{R,0}],  latency L

OPERATIONS:
-----------
    h_operator(alpha, pi)              horizontal deviation (delay bound)
    convolve(pi_1, pi_2)               min-plus convolution
    arbitrary_leftover(pi, alpha)      leftover service, arbitrary multiplexing
    fifo_leftover(pi, alpha, theta)    leftover service, FIFO multiplexing

Dispatch checks the specialised shapes first and falls back to the general
pseudoaffine formula, so a RateLatencyService always takes its closed form.
"""

from typing import FrozenSet, Iterable, Mapping, Tuple, Union

import sympy as sp

from .errors import ContractViolation


# The function variable shared by all curves (its value is irrelevant)
t = sp.Symbol("t", real=True)

ExprLike = Union[sp.Expr, float, int]


def as_expr(value: ExprLike) -> sp.Expr:
    """Wrap plain numbers as sympy Floats, pass expressions through."""
    if isinstance(value, sp.Basic):
        return value
    return sp.Float(value)


class SymbolicTerm:
    """Base class of all symbolic terms attached to operator-tree nodes."""

    __slots__ = ()

    @property
    def expression(self) -> sp.Expr:
        raise NotImplementedError

    @property
    def free_parameters(self) -> FrozenSet[sp.Symbol]:
        """All free symbols of the term except the function variable t."""
        return frozenset(self.expression.free_symbols - {t})

    def diff(self, parameter: sp.Symbol) -> sp.Expr:
        return sp.diff(self.expression, parameter)

    def evaluate(self, values: Mapping[Union[str, sp.Symbol], float]) -> float:
        """Evaluate the term with the given parameter values substituted."""
        subs = {}
        by_name = {symbol.name: symbol for symbol in self.free_parameters}
        for key, value in values.items():
            symbol = by_name.get(key) if isinstance(key, str) else key
            if symbol is not None:
                subs[symbol] = value
        return float(self.expression.subs(subs))

    def _key(self) -> tuple:
        raise NotImplementedError

    def __eq__(self, other):
        if not isinstance(other, SymbolicTerm):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())


class PseudoAffine(SymbolicTerm):
    """
    A pseudoaffine service curve: a latency offset D followed by the pointwise
    minimum of token-bucket stages.

    The stage list is never simplified: convolutions simply concatenate it.
    """

    __slots__ = ("_latency", "_stages")

    def __init__(self, latency: ExprLike, stages: Iterable["TokenBucketArrival"]):
        stages = tuple(stages)
        if not stages:
            raise ContractViolation("a pseudoaffine curve needs at least one stage")
        for stage in stages:
            if not isinstance(stage, TokenBucketArrival):
                raise ContractViolation(f"pseudoaffine stages must be token buckets, got {stage!r}")
        self._latency = as_expr(latency)
        self._stages = stages

    @property
    def latency(self) -> sp.Expr:
        return self._latency

    @property
    def stages(self) -> Tuple["TokenBucketArrival", ...]:
        return self._stages

    @property
    def expression(self) -> sp.Expr:
        shifted = [stage.burst + stage.rate * (t - self.latency) for stage in self.stages]
        return sp.Piecewise((sp.S.Zero, t <= self.latency), (sp.Min(*shifted), True))

    def _key(self) -> tuple:
        return ("PA", self.latency, self.stages)

    def __repr__(self):
        stages = ", ".join(repr(stage) for stage in self.stages)
        return f"PseudoAffine(latency={self.latency}, stages=[{stages}])"


class TokenBucketArrival(PseudoAffine):
    """Token-bucket arrival curve gamma_{r,B}(t) = B + r*t."""

    __slots__ = ("_rate", "_burst")

    def __init__(self, rate: ExprLike, burst: ExprLike):
        self._rate = as_expr(rate)
        self._burst = as_expr(burst)

    @property
    def rate(self) -> sp.Expr:
        return self._rate

    @property
    def burst(self) -> sp.Expr:
        return self._burst

    @property
    def latency(self) -> sp.Expr:
        return sp.Float(0)

    @property
    def stages(self) -> Tuple["TokenBucketArrival", ...]:
        return (self,)

    @property
    def expression(self) -> sp.Expr:
        return self.burst + self.rate * t

    def _key(self) -> tuple:
        return ("TB", self.rate, self.burst)

    def __repr__(self):
        return f"alpha_{{{self.rate}, {self.burst}}}(t)"


class RateLatencyService(PseudoAffine):
    """Rate-latency service curve beta_{R,L}(t) = R*[t - L]^+."""

    __slots__ = ("_rate", "_service_latency")

    def __init__(self, rate: ExprLike, latency: ExprLike):
        self._rate = as_expr(rate)
        self._service_latency = as_expr(latency)

    @property
    def rate(self) -> sp.Expr:
        return self._rate

    @property
    def latency(self) -> sp.Expr:
        return self._service_latency

    @property
    def stages(self) -> Tuple[TokenBucketArrival, ...]:
        return (TokenBucketArrival(self.rate, 0.0),)

    @property
    def expression(self) -> sp.Expr:
        return self.rate * sp.Max(t - self.latency, 0)

    def _key(self) -> tuple:
        return ("RL", self.rate, self.latency)

    def __repr__(self):
        return f"beta_{{{self.rate}, {self.latency}}}(t)"


class DelayTerm(SymbolicTerm):
    """The scalar produced by the H operator: a delay bound."""

    __slots__ = ("_value",)

    def __init__(self, value: ExprLike):
        self._value = as_expr(value)

    @property
    def value(self) -> sp.Expr:
        return self._value

    @property
    def expression(self) -> sp.Expr:
        return self._value

    def _key(self) -> tuple:
        return ("D", self.value)

    def __repr__(self):
        return f"DelayTerm({self.value})"


def is_arrival(term) -> bool:
    return isinstance(term, TokenBucketArrival)


def is_service(term) -> bool:
    """Service curves are pseudoaffine curves that are not arrival curves."""
    return isinstance(term, PseudoAffine) and not isinstance(term, TokenBucketArrival)


def _require(arrival=None, services=()):
    if arrival is not None and not is_arrival(arrival):
        raise ContractViolation(f"expected a token-bucket arrival curve, got {arrival!r}")
    for service in services:
        if not is_service(service):
            raise ContractViolation(f"expected a service curve, got {service!r}")


def max_stages_term(burst: sp.Expr, stages: Iterable[TokenBucketArrival]) -> sp.Expr:
    """[max_x (burst - sigma_x) / rho_x]^+ over the stages of a pseudoaffine curve."""
    candidates = [(burst - stage.burst) / stage.rate for stage in stages]
    return sp.Max(*candidates, 0)


def h_operator(arrival: TokenBucketArrival, service: PseudoAffine) -> DelayTerm:
    """Horizontal deviation between a token bucket and a service curve."""
    _require(arrival, (service,))
    if isinstance(service, RateLatencyService):
        return DelayTerm(arrival.burst / service.rate + service.latency)
    return DelayTerm(service.latency + max_stages_term(arrival.burst, service.stages))


def convolve(left: PseudoAffine, right: PseudoAffine) -> PseudoAffine:
    """Min-plus convolution of two service curves."""
    _require(services=(left, right))
    if isinstance(left, RateLatencyService) and isinstance(right, RateLatencyService):
        return RateLatencyService(sp.Min(left.rate, right.rate), left.latency + right.latency)
    return PseudoAffine(left.latency + right.latency, left.stages + right.stages)


def _leftover_stages(service: PseudoAffine, arrival: TokenBucketArrival, shift: sp.Expr):
    return tuple(
        TokenBucketArrival(stage.rate - arrival.rate,
                           stage.rate * shift - (arrival.burst - stage.burst))
        for stage in service.stages
    )


def arbitrary_leftover(service: PseudoAffine, arrival: TokenBucketArrival) -> PseudoAffine:
    """Leftover service of `service` after serving `arrival` under arbitrary multiplexing."""
    _require(arrival, (service,))
    if isinstance(service, RateLatencyService):
        R, L = service.rate, service.latency
        r, B = arrival.rate, arrival.burst
        return RateLatencyService(R - r, (B + R * L) / (R - r))
    shift = max_stages_term(arrival.burst, service.stages)
    return PseudoAffine(service.latency + shift, _leftover_stages(service, arrival, shift))


def fifo_leftover(service: PseudoAffine, arrival: TokenBucketArrival, theta: sp.Symbol) -> PseudoAffine:
    """
    Leftover service under FIFO multiplexing, parameterised by the delay shift theta >= 0.

    For a rate-latency server the result is a one-stage pseudoaffine curve with
    latency theta + L + B/R and stage gamma_{R-r, R*theta}.
    """
    _require(arrival, (service,))
    if isinstance(service, RateLatencyService):
        R, L = service.rate, service.latency
        r, B = arrival.rate, arrival.burst
        stage = TokenBucketArrival(R - r, R * theta)
        return PseudoAffine(theta + L + B / R, (stage,))
    shift = max_stages_term(arrival.burst, service.stages) + theta
    return PseudoAffine(service.latency + shift, _leftover_stages(service, arrival, shift))
