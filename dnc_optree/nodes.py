# dnc_optree/nodes.py
"""
OPERATOR TREE NODES
===================

PURPOSE:
--------
An operator tree is a binary expression tree whose evaluation gives the
symbolic delay bound of the flow of interest. It strictly ALTERNATES between
two kinds of nodes:

    CONTENT nodes   (hold a curve):    DelayNode, ServerNode, FlowNode
    OPERATOR nodes  (hold an op):      HNode, ConvolutionNode, LeftoverNode

    DelayNode                       <- root, result of H
      └── HNode
            ├── ServerNode          <- service available to the foi
            │     └── ConvolutionNode
            │           ├── ServerNode [S1]
            │           └── ServerNode [S2]
            └── FlowNode (foi)

STRUCTURAL RULES (ContractViolation on attach):
-----------------------------------------------
- a content node has at most one child, and it is an operator node
- FlowNodes are always leaves; a DelayNode is always the root and its
  child is an HNode
- an operator node has exactly two content children:
      HNode, LeftoverNode:  left ServerNode, right FlowNode
      ConvolutionNode:      left ServerNode, right ServerNode
- a node has at most one parent; attaching an attached node is an error

DERIVATION & CHANGE TRACKING:
-----------------------------
Each content node owns a DerivationState (UNBUILT, DERIVED, DIRTY).
derive_symbolics(plugin) works post-order and skips any subtree that is
DERIVED with the same plugin instance. Structural edits mark the edited
content node DIRTY and walk up until the first node that is not DERIVED.
A non-DERIVED node never has a DERIVED ancestor, so stopping there is safe.

IDs are a DFS numbering (node, left subtree, right subtree) and are only
used for display. Parameter names never depend on them, so renumbering
never dirties anything.
"""

import logging
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import sympy as sp

from .kernel.bounds import Bound, Constraint
from .kernel.errors import ContractViolation
from .kernel.symbolic import DelayTerm, SymbolicTerm
from .network import Flow, Server


logger = logging.getLogger(__name__)


class OperatorKind(Enum):
    H = "H"
    CONVOLUTION = "Convolution"
    LEFTOVER = "Leftover"


class DerivationState(Enum):
    UNBUILT = "unbuilt"
    DERIVED = "derived"
    DIRTY = "dirty"


class TreeNode:
    """Common base: id, parent link, traversal and printing."""

    def __init__(self):
        self.id = -1
        self.parent: Optional["TreeNode"] = None

    # -- structure ------------------------------------------------------

    @property
    def children(self) -> Tuple["TreeNode", ...]:
        raise NotImplementedError

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def root(self) -> "TreeNode":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def _adopt(self, child: "TreeNode"):
        if child.parent is not None:
            raise ContractViolation(f"{child} already has a parent ({child.parent})")
        child.parent = self

    # -- traversal ------------------------------------------------------

    def iter_nodes(self) -> Iterator["TreeNode"]:
        """DFS: node, left subtree, right subtree."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def leaves(self) -> List["TreeNode"]:
        return [node for node in self.iter_nodes() if node.is_leaf]

    # -- ids ------------------------------------------------------------

    def assign_ids(self, start: int = 0) -> int:
        """Number this subtree in DFS order starting at `start`. Returns the next free id."""
        next_id = start
        for node in self.iter_nodes():
            node.id = next_id
            next_id += 1
        return next_id

    def recompute_ids(self):
        self.root.assign_ids(0)

    # -- printing -------------------------------------------------------

    def _labelled_children(self) -> List[Tuple[str, "TreeNode"]]:
        raise NotImplementedError

    def format_tree(self) -> str:
        """One line per edge, e.g. "1: Operator H -> right child: 3: Flow foi"."""
        lines = [
            f"{node} -> {side} child: {child}"
            for node in self.iter_nodes()
            for side, child in node._labelled_children()
        ]
        return "\n".join(lines) if lines else str(self)

    def print_tree(self):
        print(self.format_tree())


class SymbolicNode(TreeNode):
    """
    Content node: carries a symbolic term plus the parameters, bounds and
    constraints of the subtree below it.
    """

    def __init__(self, child: Optional["OperatorNode"] = None):
        super().__init__()
        self.child: Optional[OperatorNode] = None
        self.state = DerivationState.UNBUILT
        self._plugin = None
        self.term: Optional[SymbolicTerm] = None
        self.local_parameters: Tuple[sp.Symbol, ...] = ()
        self.parameters: Tuple[sp.Symbol, ...] = ()
        self.bounds: Tuple[Bound, ...] = ()
        self.constraints: Tuple[Constraint, ...] = ()
        if child is not None:
            self.set_child(child)

    @property
    def children(self):
        return (self.child,) if self.child is not None else ()

    def _labelled_children(self):
        # The operator below a content node is its right-hand child
        return [("right", self.child)] if self.child is not None else []

    # -- structural edits ----------------------------------------------

    def _check_child(self, operator: "OperatorNode"):
        if not isinstance(operator, OperatorNode):
            raise ContractViolation(f"the child of a content node must be an operator node, got {operator!r}")

    def set_child(self, operator: "OperatorNode"):
        self._check_child(operator)
        self._adopt(operator)
        if self.child is not None:
            self.child.parent = None
        self.child = operator
        self.mark_dirty()
        self.recompute_ids()

    def mark_dirty(self):
        """Flag this node and its DERIVED ancestors for re-derivation."""
        node = self
        while node is not None and node.state is DerivationState.DERIVED:
            node.state = DerivationState.DIRTY
            node = node.parent.parent if node.parent is not None else None

    # -- derivation ----------------------------------------------------

    def derive_symbolics(self, plugin):
        """
        Derive the term of this subtree with `plugin` (post-order).

        No-op if the subtree is already DERIVED by this very plugin instance.
        """
        if self.state is DerivationState.DERIVED and plugin is self._plugin:
            return
        if self.id < 0:
            self.recompute_ids()

        if self.child is None:
            derivation = self._derive_leaf(plugin)
            children = ()
        else:
            operator = self.child
            operator.left.derive_symbolics(plugin)
            operator.right.derive_symbolics(plugin)
            cross_flow = operator.right.flow if isinstance(operator.right, FlowNode) else None
            derivation = plugin.compute_term(operator.kind, operator.left.term,
                                             operator.right.term, cross_flow)
            children = (operator.left, operator.right)

        self.term = derivation.term
        self.local_parameters = tuple(derivation.parameters)
        self._merge(derivation, children)
        self.constraints = (
            tuple(derivation.constraints)
            + tuple(plugin.derive_constraints(self))
            + tuple(c for child in children for c in child.constraints)
        )
        self._plugin = plugin
        self.state = DerivationState.DERIVED
        logger.debug("Derived node %s: %d parameter(s)", self, len(self.parameters))

    def _derive_leaf(self, plugin):
        raise ContractViolation(f"{type(self).__name__} {self.id} cannot be a leaf")

    def _merge(self, derivation, children: Sequence["SymbolicNode"]):
        parameters: List[sp.Symbol] = []
        names = set()
        for parameter in list(derivation.parameters) + [p for c in children for p in c.parameters]:
            if parameter.name in names:
                raise ContractViolation(
                    f"duplicate parameter '{parameter.name}' (do two cross-flows share an alias?)"
                )
            names.add(parameter.name)
            parameters.append(parameter)

        bounds: Dict[str, Bound] = {}
        for bound in list(derivation.bounds) + [b for c in children for b in c.bounds]:
            if bound.name in bounds:
                raise ContractViolation(f"parameter '{bound.name}' has more than one bound")
            if bound.name not in names:
                raise ContractViolation(f"bound on unknown parameter '{bound.name}'")
            bounds[bound.name] = bound
        unbounded = names - set(bounds)
        if unbounded:
            raise ContractViolation(f"parameters without a bound: {sorted(unbounded)}")

        self.parameters = tuple(parameters)
        self.bounds = tuple(bounds[p.name] for p in parameters)

    def partial_recompute(self):
        """Re-derive the dirty parts of the tree with the last plugin used."""
        root = self.root
        if root._plugin is None:
            raise ContractViolation("partial_recompute called before any derivation")
        if root.state is DerivationState.DERIVED:
            return
        root.derive_symbolics(root._plugin)


class DelayNode(SymbolicNode):
    """Root of an operator tree; its term is the delay bound."""

    def __init__(self, child: Optional["HNode"] = None):
        self.parameter_values: Dict[str, float] = {}
        super().__init__(child)

    def _check_child(self, operator):
        if not isinstance(operator, HNode):
            raise ContractViolation(f"the child of a DelayNode must be an HNode, got {operator!r}")

    def set_parameter_values(self, values: Mapping[str, float]):
        self.parameter_values = dict(values)

    def compute_delay(self, values: Optional[Mapping[str, float]] = None) -> float:
        """Evaluate the delay term; missing parameters take their stored value."""
        if self.term is None:
            raise ContractViolation("compute_delay called before derive_symbolics")
        merged = dict(self.parameter_values)
        if values:
            merged.update(values)
        return self.term.evaluate(merged)

    @property
    def delay(self) -> Optional[float]:
        if self.term is None:
            return None
        return self.compute_delay()

    def __str__(self):
        value = self.term.expression if isinstance(self.term, DelayTerm) else None
        return f"{self.id}: Root: delay = {value}"


class ServerNode(SymbolicNode):
    """Content node for an ordered group of servers."""

    def __init__(self, servers: Sequence[Server] = (), child: Optional["OperatorNode"] = None):
        self.servers: List[Server] = list(servers)
        super().__init__(child)

    def _check_child(self, operator):
        if not isinstance(operator, (ConvolutionNode, LeftoverNode)):
            raise ContractViolation(f"a ServerNode's child must be a convolution or leftover, got {operator!r}")

    def add_servers(self, servers: Sequence[Server]):
        self.servers.extend(servers)
        self.mark_dirty()

    def _derive_leaf(self, plugin):
        if len(self.servers) != 1:
            raise ContractViolation(
                f"leaf ServerNode {self.id} must hold exactly one server, holds {len(self.servers)}"
            )
        return plugin.compute_term_from_server(self.servers[0])

    def __str__(self):
        listed = "".join(f"Server {server.id}, " for server in self.servers)
        return f"{self.id}: Servers [{listed}]"


class FlowNode(SymbolicNode):
    """Leaf for a flow (the foi under H, a cross-flow under a leftover)."""

    def __init__(self, flow: Flow):
        super().__init__()
        self.flow = flow

    def _check_child(self, operator):
        raise ContractViolation("a FlowNode is always a leaf")

    def _derive_leaf(self, plugin):
        return plugin.compute_term_from_flow(self.flow)

    def __str__(self):
        return f"{self.id}: Flow {self.flow.alias}"


class OperatorNode(TreeNode):
    """Binary operator between two content nodes."""

    kind: OperatorKind = None
    left_type = SymbolicNode
    right_type = SymbolicNode

    def __init__(self, left: Optional[SymbolicNode] = None, right: Optional[SymbolicNode] = None):
        super().__init__()
        self.left: Optional[SymbolicNode] = None
        self.right: Optional[SymbolicNode] = None
        if left is not None:
            self.set_left_child(left)
        if right is not None:
            self.set_right_child(right)

    @property
    def children(self):
        return tuple(c for c in (self.left, self.right) if c is not None)

    def _labelled_children(self):
        return [(side, c) for side, c in (("left", self.left), ("right", self.right)) if c is not None]

    def _check(self, node, expected, side):
        if isinstance(node, DelayNode) or not isinstance(node, expected):
            raise ContractViolation(
                f"{type(self).__name__} {side} child must be a {expected.__name__}, got {node!r}"
            )

    def _replace(self, side: str, node: SymbolicNode):
        self._adopt(node)
        old = getattr(self, side)
        if old is not None:
            old.parent = None
        setattr(self, side, node)
        if isinstance(self.parent, SymbolicNode):
            self.parent.mark_dirty()
        self.recompute_ids()

    def set_left_child(self, node: SymbolicNode):
        self._check(node, self.left_type, "left")
        self._replace("left", node)

    def set_right_child(self, node: SymbolicNode):
        self._check(node, self.right_type, "right")
        self._replace("right", node)

    def __str__(self):
        return f"{self.id}: Operator {self.kind.value}"


class HNode(OperatorNode):
    kind = OperatorKind.H
    left_type = ServerNode
    right_type = FlowNode


class ConvolutionNode(OperatorNode):
    kind = OperatorKind.CONVOLUTION
    left_type = ServerNode
    right_type = ServerNode


class LeftoverNode(OperatorNode):
    kind = OperatorKind.LEFTOVER
    left_type = ServerNode
    right_type = FlowNode


def check_alternation(root: TreeNode) -> bool:
    """
    True if the tree strictly alternates content / operator nodes, operator
    nodes have two children and the root is a DelayNode.
    """
    if not isinstance(root, DelayNode) or root.parent is not None:
        return False
    for node in root.iter_nodes():
        if isinstance(node, OperatorNode):
            if node.left is None or node.right is None:
                return False
            if not all(isinstance(c, SymbolicNode) for c in node.children):
                return False
        elif isinstance(node, SymbolicNode):
            if node.child is not None and not isinstance(node.child, OperatorNode):
                return False
        else:
            return False
    return True
