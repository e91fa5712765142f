# dnc_optree/kernel/bounds.py
"""Box bounds and general constraints attached to free parameters."""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Tuple, Union

import sympy as sp

from .errors import ContractViolation
from .symbolic import as_expr


@dataclass(frozen=True)
class Bound:
    """
    Box bound on one free parameter. None means unbounded on that side.
    """
    parameter: sp.Symbol
    lower: Optional[float] = None
    upper: Optional[float] = None

    def __post_init__(self):
        if self.lower is not None and self.upper is not None and self.lower > self.upper:
            raise ContractViolation(
                f"bound on {self.parameter} has lower {self.lower} > upper {self.upper}"
            )

    @property
    def name(self) -> str:
        return self.parameter.name

    def as_interval(self) -> Tuple[float, float]:
        lo = -math.inf if self.lower is None else float(self.lower)
        hi = math.inf if self.upper is None else float(self.upper)
        return lo, hi

    def contains(self, value: float) -> bool:
        lo, hi = self.as_interval()
        return lo <= value <= hi

    def __str__(self):
        return f"{self.name}: ({self.lower},{self.upper})"


class ConstraintType(Enum):
    EQ = "EQ"      # term == 0
    INEQ = "INEQ"  # term > 0


@dataclass(frozen=True)
class Constraint:
    type: ConstraintType
    term: sp.Expr

    def __post_init__(self):
        object.__setattr__(self, "term", as_expr(self.term))

    def evaluate(self, values: Mapping[Union[str, sp.Symbol], float]) -> float:
        by_name = {symbol.name: symbol for symbol in self.term.free_symbols}
        subs = {}
        for key, value in values.items():
            symbol = by_name.get(key) if isinstance(key, str) else key
            if symbol is not None:
                subs[symbol] = value
        return float(self.term.subs(subs))

    def is_satisfied(self, values: Mapping[Union[str, sp.Symbol], float], tol: float = 1e-9) -> bool:
        value = self.evaluate(values)
        if self.type is ConstraintType.EQ:
            return abs(value) <= tol
        return value > -tol

    def __str__(self):
        return f"{self.type.value}: {self.term}"
