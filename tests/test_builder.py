"""
Tests for build_operator_tree: nesting tree -> operator tree.
"""

import pytest

from dnc_optree import (
    ContractViolation,
    ConvolutionNode,
    DelayNode,
    Flow,
    FlowNode,
    HNode,
    LeftoverNode,
    NestingNode,
    Server,
    ServerNode,
    build_operator_tree,
    check_alternation,
)
from dnc_optree.nodes import OperatorNode, SymbolicNode


def _assert_alternating_path(leaf):
    """Walk from a leaf to the root, alternating content / operator nodes."""
    node = leaf
    expect_content = True
    while node is not None:
        if expect_content:
            assert isinstance(node, SymbolicNode), f"expected content node, got {node}"
        else:
            assert isinstance(node, OperatorNode), f"expected operator node, got {node}"
        expect_content = not expect_content
        node = node.parent
    assert not expect_content  # ended on a content node (the root)


def test_two_server_tandem_structure(two_server_tandem):
    """
    WHAT IS THIS TEST?
    ==================
    Build the tree for foi over S1 -> S2 with one single-hop cross-flow per
    server and check its exact shape.

        0 Root
        1   H
        2     Servers [S2, S1]
        3       Convolution
        4         Servers [S2]  -> 5 Leftover -> 6 [S2], 7 f2
        8         Servers [S1]  -> 9 Leftover -> 10 [S1], 11 f1
        12    Flow foi
    """
    nesting, (s1, s2), (foi, f1, f2) = two_server_tandem
    root = build_operator_tree(nesting)

    assert isinstance(root, DelayNode)
    assert isinstance(root.child, HNode)
    nodes = list(root.iter_nodes())
    assert [n.id for n in nodes] == list(range(13))

    service = root.child.left
    assert [s.id for s in service.servers] == [2, 1]
    assert isinstance(service.child, ConvolutionNode)
    assert root.child.right.flow is foi

    leftovers = [n for n in nodes if isinstance(n, LeftoverNode)]
    assert sorted(n.right.flow.alias for n in leftovers) == ["f1", "f2"]
    print("✓ two-server tandem builds the expected 13-node tree")


def test_alternation_and_reachability(two_server_tandem):
    nesting, _, _ = two_server_tandem
    root = build_operator_tree(nesting)

    assert check_alternation(root)
    for leaf in root.leaves():
        assert isinstance(leaf, (ServerNode, FlowNode))
        _assert_alternating_path(leaf)
    print(f"✓ {len(root.leaves())} leaves reachable by alternating paths")


def test_single_server_group_is_bare_leaf():
    s1 = Server(1, rate=10.0, latency=0.1)
    foi = Flow(0, "foi", rate=1.0, burst=1.0, path=(s1,))
    root = build_operator_tree(NestingNode(foi, (NestingNode(s1),)))

    leaf = root.child.left
    assert isinstance(leaf, ServerNode)
    assert leaf.is_leaf
    assert leaf.servers == [s1]


def test_server_group_becomes_convolution_of_single_leaves(plain_tandem):
    nesting, (s1, s2), _ = plain_tandem
    root = build_operator_tree(nesting)

    group = root.child.left
    assert isinstance(group.child, ConvolutionNode)
    assert sorted(s.id for s in group.servers) == [1, 2]
    for leaf in (group.child.left, group.child.right):
        assert leaf.is_leaf and len(leaf.servers) == 1
    assert check_alternation(root)


def test_missing_servers_added_by_outer_convolution():
    """
    WHAT IS THIS TEST?
    ==================
    foi crosses S1 -> S2 -> S3 but its only nesting child is a cross-flow at
    S1. The builder must add S2 and S3 through an outer convolution so the
    foi's service covers its whole path.
    """
    s1, s2, s3 = (Server(i, rate=10.0, latency=0.1) for i in (1, 2, 3))
    foi = Flow(0, "foi", rate=1.0, burst=1.0, path=(s1, s2, s3))
    f1 = Flow(1, "f1", rate=2.0, burst=2.0, path=(s1,))
    root = build_operator_tree(NestingNode(foi, (NestingNode(f1, (NestingNode(s1),)),)))

    service = root.child.left
    assert sorted(s.id for s in service.servers) == [1, 2, 3]
    outer = service.child
    assert isinstance(outer, ConvolutionNode)
    assert isinstance(outer.right.child, LeftoverNode)
    assert sorted(s.id for s in outer.left.servers) == [2, 3]
    assert check_alternation(root)
    print("✓ uncovered servers merged in by convolution")


def test_cross_flow_missing_servers():
    s1 = Server(1, rate=10.0, latency=0.1)
    s2 = Server(2, rate=10.0, latency=0.1)
    foi = Flow(0, "foi", rate=1.0, burst=1.0, path=(s1, s2))
    f1 = Flow(1, "f1", rate=2.0, burst=2.0, path=(s1, s2))
    root = build_operator_tree(NestingNode(foi, (NestingNode(f1, (NestingNode(s1),)),)))

    leftover = root.child.left.child
    assert isinstance(leftover, LeftoverNode)
    assert sorted(s.id for s in leftover.left.servers) == [1, 2]


def test_malformed_nesting_trees_are_contract_violations():
    s1 = Server(1, rate=10.0, latency=0.1)
    foi = Flow(0, "foi", rate=1.0, burst=1.0, path=(s1,))

    with pytest.raises(ContractViolation):
        build_operator_tree(NestingNode(s1))
    with pytest.raises(ContractViolation):
        build_operator_tree(NestingNode(foi))
    f1 = Flow(1, "f1", rate=2.0, burst=2.0, path=(s1,))
    with pytest.raises(ContractViolation):
        build_operator_tree(NestingNode(foi, (NestingNode(f1),)))
