# dnc_optree/builder.py
"""
Turn a nesting tree into an operator tree.

    nesting tree                          operator tree
    ------------                          -------------
    foi                                   DelayNode
     ├── [S1]                               └── HNode
     └── f1 (cross-flow)                          ├── ServerNode [S2, S1]
          └── [S2]                                │     └── ConvolutionNode
                                                  │           ├── ServerNode [S2]     <- leftover(S2, f1)
                                                  │           │     └── LeftoverNode
                                                  │           │           ├── ServerNode [S2]
                                                  │           │           └── FlowNode f1
                                                  │           └── ServerNode [S1]
                                                  └── FlowNode foi

Rules:
- every flow child becomes  ServerNode -> LeftoverNode(sub-tandem, FlowNode)
- server groups with several servers become convolution subtrees of
  single-server leaves; a single server is a bare leaf
- servers on a flow's path that its children do not cover are added through
  one more convolution
- the foi's children end up under HNode beneath the DelayNode root
"""

from typing import List, Sequence

from .kernel.errors import ContractViolation
from .network import Flow, NestingNode, Server
from .nodes import (
    ConvolutionNode,
    DelayNode,
    FlowNode,
    HNode,
    LeftoverNode,
    OperatorNode,
    ServerNode,
)


def build_operator_tree(nesting_root: NestingNode) -> DelayNode:
    """
    Build the operator tree for the flow of interest at `nesting_root`.

    Parameters:
    -----------
    nesting_root : NestingNode
        Must hold a Flow (the foi) and at least one child.

    Returns:
    --------
    DelayNode with ids assigned from 0.
    """
    if not nesting_root.is_flow:
        raise ContractViolation("the nesting tree root must hold the flow of interest")
    h_node = _operator_subtree(HNode, nesting_root.content, nesting_root.children)
    root = DelayNode(h_node)
    root.assign_ids(0)
    return root


def _operator_subtree(cls, flow: Flow, nesting_children: Sequence[NestingNode]) -> OperatorNode:
    """cls(left = service of the flow's sub-tandem, right = FlowNode(flow))."""
    if not nesting_children:
        raise ContractViolation(f"flow {flow.alias} has no children in the nesting tree")
    left = _convolve_nodes(_content_nodes(nesting_children))

    covered = {server.id for server in left.servers}
    missing = [server for server in flow.path if server.id not in covered]
    if missing:
        left = _convolve_nodes([left, _convolve_servers(missing)])

    return cls(left, FlowNode(flow))


def _content_nodes(nesting_children: Sequence[NestingNode]) -> List[ServerNode]:
    nodes = []
    for child in nesting_children:
        if child.is_flow:
            leftover = _operator_subtree(LeftoverNode, child.content, child.children)
            nodes.append(ServerNode(leftover.left.servers, child=leftover))
        else:
            nodes.append(_convolve_servers(child.servers))
    return nodes


def _convolve_servers(servers: Sequence[Server]) -> ServerNode:
    if not servers:
        raise ContractViolation("cannot convolve an empty server list")
    return _convolve_nodes([ServerNode([server]) for server in servers])


def _convolve_nodes(nodes: Sequence[ServerNode]) -> ServerNode:
    """Right child = first node, left child = convolution of the rest."""
    if not nodes:
        raise ContractViolation("cannot convolve an empty node list")
    if len(nodes) == 1:
        return nodes[0]
    right = nodes[0]
    left = _convolve_nodes(nodes[1:])
    return ServerNode(list(left.servers) + list(right.servers),
                      child=ConvolutionNode(left, right))
