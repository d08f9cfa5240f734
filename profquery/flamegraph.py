"""Flame graph generation from symbolized profiles and aggregation by function."""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Callable

from profquery.profile import Line, LocationLine, Mapping, Profile, SymbolizedLocation
from profquery.reports import (
    Flamegraph,
    FlamegraphNode,
    FlamegraphNodeMeta,
    FlamegraphRootNode,
)

NodePredicate = Callable[[FlamegraphNode, FlamegraphNode], bool]


@dataclass
class _StackEntry:
    node: FlamegraphNode
    current_child: int = -1


class FlamegraphIterator:
    """Depth-first walk over a flame graph, driven one step at a time."""

    def __init__(self, root: FlamegraphNode) -> None:
        self._stack: list[_StackEntry] = [_StackEntry(root)]

    def has_more(self) -> bool:
        """Whether any level of the walk is still open."""
        return bool(self._stack)

    def next_child(self) -> bool:
        """Advance to the next child at the current level; False when exhausted."""
        top = self._stack[-1]
        top.current_child += 1
        return len(top.node.children) > top.current_child

    def at(self) -> FlamegraphNode:
        """The child the walk currently points at."""
        top = self._stack[-1]
        return top.node.children[top.current_child]

    def step_into(self) -> bool:
        """Descend into the current child; False if there is no such child."""
        top = self._stack[-1]
        if len(top.node.children) <= top.current_child:
            return False
        self._stack.append(_StackEntry(top.node.children[top.current_child]))
        return True

    def step_up(self) -> None:
        """Return to the parent level."""
        if self._stack:
            self._stack.pop()


def aggregate_by_function(flamegraph: Flamegraph) -> Flamegraph:
    """Return a copy of the flame graph with siblings merged by function name."""
    old_root = FlamegraphNode(
        cumulative=flamegraph.root.cumulative,
        diff=flamegraph.root.diff,
        children=list(flamegraph.root.children),
    )
    merge_children(old_root, compare_by_name, equals_by_name)

    iterator = FlamegraphIterator(old_root)
    tree = Flamegraph(
        root=FlamegraphRootNode(
            cumulative=flamegraph.root.cumulative,
            diff=flamegraph.root.diff,
        ),
        total=flamegraph.total,
        unit=flamegraph.unit,
        height=flamegraph.height,
    )

    new_root = FlamegraphNode(
        cumulative=flamegraph.root.cumulative,
        diff=flamegraph.root.diff,
    )
    stack: list[FlamegraphNode] = [new_root]

    while iterator.has_more():
        if iterator.next_child():
            node = iterator.at()
            copy = FlamegraphNode(meta=node.meta, cumulative=node.cumulative, diff=node.diff)
            merge_children(node, compare_by_name, equals_by_name)
            stack[-1].children.append(copy)
            if iterator.step_into():
                stack.append(copy)
            continue
        iterator.step_up()
        stack.pop()

    tree.root.children = new_root.children
    return tree


def merge_children(node: FlamegraphNode, compare: NodePredicate, equals: NodePredicate) -> None:
    """Sort the children of ``node`` and merge neighbours that are equal, in place.

    ``compare`` is the "less or equal" ordering used for sorting and ``equals``
    decides whether two adjacent children are merged into the first one.
    """
    if len(node.children) < 2:
        return

    def _cmp(a: FlamegraphNode, b: FlamegraphNode) -> int:
        a_first, b_first = compare(a, b), compare(b, a)
        if a_first == b_first:
            return 0
        return -1 if a_first else 1

    node.children.sort(key=cmp_to_key(_cmp))

    merged = 0
    i = 0
    while i < len(node.children) - 1:
        current, following = node.children[i], node.children[i + 1]
        if not equals(current, following):
            i += 1
            continue
        current.meta.line = None
        if (
            current.meta.mapping is not None
            and following.meta.mapping is not None
            and current.meta.mapping.id != following.meta.mapping.id
        ):
            current.meta.mapping = Mapping()
        merged += following.cumulative
        current.cumulative += following.cumulative
        current.diff += following.diff
        current.children.extend(following.children)
        del node.children[i + 1]

    # Safeguard against a parent smaller than the children merged under it.
    if node.cumulative < merged:
        node.cumulative = merged


def compare_by_name(a: FlamegraphNode, b: FlamegraphNode) -> bool:
    """Order by function name; nodes without a function go first, by address."""
    a_func, b_func = a.meta.function, b.meta.function
    if a_func is not None and b_func is None:
        return False
    if a_func is None and b_func is not None:
        return True
    if a_func is None and b_func is None:
        return a.meta.location.address <= b.meta.location.address
    return a_func.name <= b_func.name


def equals_by_name(a: FlamegraphNode, b: FlamegraphNode) -> bool:
    """Equal function names, or equal addresses when neither has a function."""
    a_func, b_func = a.meta.function, b.meta.function
    if (a_func is None) != (b_func is None):
        return False
    if a_func is None:
        return a.meta.location.address == b.meta.location.address
    return a_func.name == b_func.name


def location_to_tree_nodes(location: SymbolizedLocation) -> list[FlamegraphNode]:
    """Turn a location into tree nodes, one per inlined function."""
    if location.lines:
        return _lines_to_tree_nodes(location, location.mapping, location.lines)
    return [
        FlamegraphNode(
            meta=FlamegraphNodeMeta(
                location=location.to_location(),
                mapping=location.mapping,
            )
        )
    ]


def _lines_to_tree_nodes(
    location: SymbolizedLocation,
    mapping: Mapping | None,
    lines: list[LocationLine],
) -> list[FlamegraphNode]:
    """Build linked nodes for inlined lines, returned outermost first."""
    result: list[FlamegraphNode] = []
    previous: FlamegraphNode | None = None
    for line in lines:
        previous = _line_to_tree_node(location, mapping, line, previous)
        result.append(previous)
    result.reverse()
    return result


def _line_to_tree_node(
    location: SymbolizedLocation,
    mapping: Mapping | None,
    line: LocationLine,
    child: FlamegraphNode | None,
) -> FlamegraphNode:
    return FlamegraphNode(
        meta=FlamegraphNodeMeta(
            location=location.to_location(),
            function=line.function,
            line=Line(function_id=line.function.id, line=line.line),
            mapping=mapping,
        ),
        children=[child] if child is not None else [],
    )


def _location_id(node: FlamegraphNode) -> str:
    return node.meta.location.id


def generate_flamegraph_flat(profile: Profile) -> Flamegraph:
    """Build a flame graph from a profile, aggregated by function name."""
    root = FlamegraphNode()
    height = 0

    for sample in profile.samples:
        height = max(height, len(sample.locations))
        current = root
        # Locations are leaf first; walk from the root of the stack downwards.
        for location in reversed(sample.locations):
            for node in reversed(location_to_tree_nodes(location)):
                location_id = node.meta.location.id
                index = bisect_left(current.children, location_id, key=_location_id)
                if (
                    index < len(current.children)
                    and current.children[index].meta.location.id == location_id
                ):
                    current = current.children[index]
                    current.cumulative += sample.value
                    current.diff += sample.diff_value
                else:
                    node.cumulative += sample.value
                    node.diff += sample.diff_value
                    # Linked inline children are re-added by the walk itself.
                    node.children = []
                    current.children.insert(index, node)
                    current = node
        root.cumulative += sample.value
        root.diff += sample.diff_value

    flamegraph = Flamegraph(
        root=FlamegraphRootNode(
            cumulative=root.cumulative,
            diff=root.diff,
            children=root.children,
        ),
        total=root.cumulative,
        unit=profile.meta.sample_type.unit,
        height=height + 1,
    )
    return aggregate_by_function(flamegraph)