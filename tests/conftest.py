"""
Shared networks for the test suite.

TWO-SERVER TANDEM (used throughout):
------------------------------------
    foi:  S1 -> S2      rate 1, burst 1
    f1:   S1            rate 2, burst 2
    f2:   S2            rate 3, burst 1
    S1, S2: rate 10, latency 0.1

Arbitrary multiplexing (closed form):
    leftover S1 = beta(8, 3/8),  leftover S2 = beta(7, 2/7)
    delay = 1/7 + 3/8 + 2/7 = 45/56

FIFO multiplexing:
    delay(th1, th2) = th1 + th2 + 0.5 + max((1 - 10 th2)/7, (1 - 10 th1)/8, 0)
    minimum 0.6375 at th1 = 0, th2 = 0.0125
"""

import pytest

from dnc_optree import Flow, NestingNode, Server


def make_two_server_tandem():
    s1 = Server(1, rate=10.0, latency=0.1)
    s2 = Server(2, rate=10.0, latency=0.1)
    foi = Flow(0, "foi", rate=1.0, burst=1.0, path=(s1, s2))
    f1 = Flow(1, "f1", rate=2.0, burst=2.0, path=(s1,))
    f2 = Flow(2, "f2", rate=3.0, burst=1.0, path=(s2,))
    nesting = NestingNode(foi, (
        NestingNode(f1, (NestingNode(s1),)),
        NestingNode(f2, (NestingNode(s2),)),
    ))
    return nesting, (s1, s2), (foi, f1, f2)


def make_plain_tandem():
    """foi over S1 -> S2 with no cross-traffic: no parameters under any plugin."""
    s1 = Server(1, rate=10.0, latency=0.1)
    s2 = Server(2, rate=5.0, latency=0.2)
    foi = Flow(0, "foi", rate=1.0, burst=2.0, path=(s1, s2))
    return NestingNode(foi, (NestingNode((s1, s2)),)), (s1, s2), foi


@pytest.fixture
def two_server_tandem():
    return make_two_server_tandem()


@pytest.fixture
def plain_tandem():
    return make_plain_tandem()
