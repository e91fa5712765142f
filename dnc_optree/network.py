# dnc_optree/network.py
# Server, Flow, NestingNode (frozen dataclasses)

from dataclasses import dataclass, field
from typing import Tuple, Union


@dataclass(frozen=True)
class Server:
    """
    Rate-latency server: beta(t) = rate * [t - latency]^+
    Identity is the integer id.
    """
    id: int
    rate: float
    latency: float
    alias: str = ""

    def __post_init__(self):
        if self.rate <= 0:
            raise ValueError(f"Server {self.id}: rate must be > 0, got {self.rate}")
        if self.latency < 0:
            raise ValueError(f"Server {self.id}: latency must be >= 0, got {self.latency}")

    def __str__(self):
        return self.alias or f"Server {self.id}"


@dataclass(frozen=True)
class Flow:
    """
    Token-bucket flow: alpha(t) = burst + rate * t, traversing `path` in order.
    """
    id: int
    alias: str
    rate: float
    burst: float
    path: Tuple[Server, ...]

    def __post_init__(self):
        object.__setattr__(self, "path", tuple(self.path))
        if not self.alias:
            object.__setattr__(self, "alias", f"f{self.id}")
        if self.rate < 0 or self.burst < 0:
            raise ValueError(f"Flow {self.alias}: rate and burst must be >= 0")
        if not self.path:
            raise ValueError(f"Flow {self.alias}: path must contain at least one server")

    def __str__(self):
        return self.alias


@dataclass(frozen=True)
class NestingNode:
    """
    One node of a nesting tree.

    content is either a Flow (the foi at the root, a cross-flow below it) or
    an ordered tuple of Servers. The children of a flow node cover the flow's
    sub-tandem.
    """
    content: Union[Flow, Tuple[Server, ...]]
    children: Tuple["NestingNode", ...] = field(default_factory=tuple)

    def __post_init__(self):
        if isinstance(self.content, Server):
            object.__setattr__(self, "content", (self.content,))
        elif not isinstance(self.content, Flow):
            content = tuple(self.content)
            if not content or not all(isinstance(s, Server) for s in content):
                raise ValueError("NestingNode content must be a Flow or a non-empty list of Servers")
            object.__setattr__(self, "content", content)
        object.__setattr__(self, "children", tuple(self.children))

    @property
    def is_flow(self) -> bool:
        return isinstance(self.content, Flow)

    @property
    def servers(self) -> Tuple[Server, ...]:
        """Servers of a server group, or the path of a flow."""
        if self.is_flow:
            return self.content.path
        return self.content
