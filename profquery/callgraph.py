"""Call graph generation and pruning of insignificant intermediate nodes."""

from __future__ import annotations

import uuid

from profquery.profile import Line, Mapping, Profile, SymbolizedLocation, LocationLine
from profquery.reports import Callgraph, CallgraphEdge, CallgraphNode, CallgraphNodeMeta

NODE_CUT_OFF_FRACTION = 0.005


def _new_id() -> str:
    return str(uuid.uuid4())


def generate_callgraph(profile: Profile) -> Callgraph:
    """Build a call graph from a profile, merging nodes by function name."""
    nodes_by_key: dict[str, CallgraphNode] = {}
    edges_by_key: dict[str, CallgraphEdge] = {}
    edges: list[CallgraphEdge] = []
    cumulative = 0

    for sample in profile.samples:
        cumulative += sample.value
        previous: CallgraphNode | None = None
        for location in sample.locations:
            for candidate in _location_to_callgraph_nodes(location):
                current = nodes_by_key.setdefault(_node_key(candidate), candidate)
                current.cumulative += sample.value
                if previous is not None:
                    key = f"{current.id} -> {previous.id}"
                    edge = edges_by_key.get(key)
                    if edge is None:
                        edge = CallgraphEdge(
                            id=_new_id(),
                            source=current.id,
                            target=previous.id,
                            cumulative=sample.value,
                        )
                        edges.append(edge)
                        edges_by_key[key] = edge
                    else:
                        edge.cumulative += sample.value
                previous = current

    return prune_graph(
        Callgraph(nodes=list(nodes_by_key.values()), edges=edges, cumulative=cumulative)
    )


def _node_key(node: CallgraphNode) -> str:
    if node.meta.function is None:
        return node.meta.location.id
    return node.meta.function.name


def _location_to_callgraph_nodes(location: SymbolizedLocation) -> list[CallgraphNode]:
    """Turn a location into nodes, one per inlined function, outermost first."""
    if location.lines:
        return [
            _line_to_graph_node(location, location.mapping, line)
            for line in reversed(location.lines)
        ]
    return [
        CallgraphNode(
            id=location.id,
            meta=CallgraphNodeMeta(location=location.to_location(), mapping=location.mapping),
        )
    ]


def _line_to_graph_node(
    location: SymbolizedLocation, mapping: Mapping | None, line: LocationLine
) -> CallgraphNode:
    return CallgraphNode(
        # The line number keeps nodes of inlined frames unique.
        id=f"{location.id}_{line.line}",
        meta=CallgraphNodeMeta(
            location=location.to_location(),
            function=line.function,
            line=Line(function_id=line.function.id, line=line.line),
            mapping=mapping,
        ),
    )


def prunable_nodes(nodes: list[CallgraphNode], cumulative: int) -> list[CallgraphNode]:
    """Sort ``nodes`` in place by cumulative value, descending, and return
    the tail whose values fall below the cut-off fraction of ``cumulative``."""
    if not nodes:
        return nodes
    nodes.sort(key=lambda node: node.cumulative, reverse=True)
    cutoff = cumulative * NODE_CUT_OFF_FRACTION
    start = next(
        (index for index, node in enumerate(nodes) if node.cumulative < cutoff),
        len(nodes),
    )
    return nodes[start:]


def prune_graph(graph: Callgraph) -> Callgraph:
    """Remove small intermediate nodes, linking their parents to their children."""
    candidates = prunable_nodes(graph.nodes, graph.cumulative)
    incoming: dict[str, list[CallgraphEdge]] = {}
    outgoing: dict[str, list[CallgraphEdge]] = {}
    for edge in graph.edges:
        incoming.setdefault(edge.target, []).append(edge)
        outgoing.setdefault(edge.source, []).append(edge)

    # Only nodes with exactly one caller and at least one callee may go.
    to_remove = {
        node.id
        for node in candidates
        if len(incoming.get(node.id, ())) == 1 and outgoing.get(node.id)
    }

    final_nodes: list[CallgraphNode] = []
    edges_to_remove: set[str] = set()
    edges_to_create: list[CallgraphEdge] = []

    for node in graph.nodes:
        if node.id not in to_remove:
            final_nodes.append(node)
            continue
        parent_id, cumulative, removed_incoming = _find_valid_parent(node, incoming, to_remove)
        node_outgoing = outgoing.get(node.id, [])
        for edge in node_outgoing:
            if edge.target in to_remove:
                # The removed downstream node patches this edge itself.
                continue
            edges_to_create.append(
                CallgraphEdge(
                    id=_new_id(),
                    source=parent_id,
                    target=edge.target,
                    cumulative=cumulative,
                    is_collapsed=True,
                )
            )
        edges_to_remove.update(edge.id for edge in node_outgoing)
        edges_to_remove.update(edge.id for edge in removed_incoming)

    final_edges = [edge for edge in graph.edges if edge.id not in edges_to_remove]
    final_edges.extend(edges_to_create)
    return Callgraph(nodes=final_nodes, edges=final_edges, cumulative=graph.cumulative)


def _find_valid_parent(
    node: CallgraphNode,
    incoming: dict[str, list[CallgraphEdge]],
    to_remove: set[str],
) -> tuple[str, int, list[CallgraphEdge]]:
    """Walk up single-caller chains to the first ancestor that is kept."""
    edge = incoming[node.id][0]
    parent = edge.source
    cumulative = edge.cumulative
    removed = [edge]
    while parent in to_remove:
        edge = incoming[parent][0]
        cumulative += edge.cumulative
        removed.append(edge)
        parent = edge.source
    return parent, cumulative, removed