# dnc_optree - Operator-tree delay bounds for nested FIFO tandems
"""
DNC-OPTREE: Tight Delay Bounds by Nonlinear Programming
=======================================================

This package provides:
- an operator-tree representation of a nested tandem (H, convolution, leftover)
- symbolic delay terms with exact derivatives (sympy)
- pluggable multiplexing disciplines (arbitrary, FIFO)
- NLP optimisation of the free FIFO parameters (scipy)
- a statistical convexity diagnostic

ARCHITECTURE:
-------------
    kernel/         Discipline-agnostic core (term algebra, bounds, solver)
    network.py      Server, Flow, NestingNode (read-only input model)
    nodes.py        Operator tree nodes, derivation, change tracking
    builder.py      Nesting tree -> operator tree
    plugins.py      Multiplexing disciplines
    config.py       SolverConfig
    analysis.py     OpTreeAnalysis orchestration and reporting
"""

# Re-export the main entry points for convenience
from .kernel import ContractViolation, SolverError, Bound, Constraint, ConstraintType
from .network import Server, Flow, NestingNode
from .nodes import (
    OperatorKind,
    DerivationState,
    DelayNode,
    ServerNode,
    FlowNode,
    HNode,
    ConvolutionNode,
    LeftoverNode,
    check_alternation,
)
from .builder import build_operator_tree
from .plugins import (
    Derivation,
    OperatorPlugin,
    ArbitraryMultiplexingPlugin,
    FIFOMultiplexingPlugin,
    LatencyParameterPlugin,
)
from .config import SolverConfig, DEFAULT_SOLVER_CONFIG
from .analysis import OpTreeAnalysis, AnalysisResult

# Version
__version__ = "0.1.0"
