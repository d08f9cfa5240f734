"""Report data structures: flame graphs, call graphs and top tables."""

from __future__ import annotations

from dataclasses import dataclass, field

from profquery.profile import Function, Line, Location, Mapping


@dataclass
class FlamegraphNodeMeta:
    location: Location | None = None
    mapping: Mapping | None = None
    function: Function | None = None
    line: Line | None = None


@dataclass
class FlamegraphNode:
    meta: FlamegraphNodeMeta | None = None
    cumulative: int = 0
    diff: int = 0
    children: list[FlamegraphNode] = field(default_factory=list)


@dataclass
class FlamegraphRootNode:
    cumulative: int = 0
    diff: int = 0
    children: list[FlamegraphNode] = field(default_factory=list)


@dataclass
class Flamegraph:
    root: FlamegraphRootNode = field(default_factory=FlamegraphRootNode)
    total: int = 0
    unit: str = ""
    height: int = 0


@dataclass
class CallgraphNodeMeta:
    location: Location | None = None
    mapping: Mapping | None = None
    function: Function | None = None
    line: Line | None = None


@dataclass
class CallgraphNode:
    id: str = ""
    meta: CallgraphNodeMeta | None = None
    cumulative: int = 0


@dataclass
class CallgraphEdge:
    id: str = ""
    source: str = ""
    target: str = ""
    cumulative: int = 0
    is_collapsed: bool = False


@dataclass
class Callgraph:
    nodes: list[CallgraphNode] = field(default_factory=list)
    edges: list[CallgraphEdge] = field(default_factory=list)
    cumulative: int = 0


@dataclass
class TopNodeMeta:
    location: Location | None = None
    mapping: Mapping | None = None
    function: Function | None = None
    line: Line | None = None


@dataclass
class TopNode:
    meta: TopNodeMeta | None = None
    cumulative: int = 0
    flat: int = 0
    diff: int = 0


@dataclass
class Top:
    nodes: list[TopNode] = field(default_factory=list)
    reported: int = 0
    total: int = 0
    unit: str = ""