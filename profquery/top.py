"""Top table generation: per-location totals aggregated by function."""

from __future__ import annotations

from profquery.profile import Line, Mapping, Profile
from profquery.reports import Top, TopNode, TopNodeMeta


def generate_top_table(profile: Profile) -> Top:
    """Sum cumulative, flat and diff values per location, then aggregate."""
    nodes: dict[str, TopNode] = {}
    for sample in profile.samples:
        for depth, location in enumerate(sample.locations):
            node = nodes.get(location.id)
            if node is not None:
                node.cumulative += sample.value
                node.diff += sample.diff_value
                if depth == 0:
                    node.flat += sample.value
                continue

            meta = TopNodeMeta(mapping=location.mapping, location=location.to_location())
            if location.lines:
                first = location.lines[0]
                meta.function = first.function
                meta.line = Line(function_id=first.function.id, line=first.line)
            nodes[location.id] = TopNode(
                meta=meta,
                cumulative=sample.value,
                diff=sample.diff_value,
                flat=sample.value if depth == 0 else 0,
            )

    listed = list(nodes.values())
    top = Top(
        nodes=listed,
        reported=len(listed),
        total=len(listed),
        unit=profile.meta.sample_type.unit,
    )
    return aggregate_top_by_function(top)


def _accumulate(target: TopNode, other: TopNode) -> None:
    target.cumulative += other.cumulative
    target.diff += other.diff
    target.flat += other.flat


def aggregate_top_by_function(top: Top) -> Top:
    """Merge nodes by function name, or by mapping and address without a function.

    Nodes without metadata are dropped. The result is sorted by flat value,
    descending, then by address, ascending.
    """
    by_address: dict[str, dict[int, TopNode]] = {}
    by_function: dict[str, TopNode] = {}

    for node in top.nodes:
        if node.meta is None:
            continue
        mapping_id = node.meta.mapping.id if node.meta.mapping is not None else ""
        addresses = by_address.setdefault(mapping_id, {})

        if node.meta.function is None:
            address = node.meta.location.address
            existing = addresses.get(address)
            if existing is None:
                addresses[address] = node
            else:
                _accumulate(existing, node)
            continue

        name = node.meta.function.name
        existing = by_function.get(name)
        if existing is None:
            by_function[name] = node
            continue
        _accumulate(existing, node)
        if (
            existing.meta.mapping is not None
            and node.meta.mapping is not None
            and existing.meta.mapping.id != node.meta.mapping.id
        ):
            existing.meta.mapping = Mapping()
        existing.meta.line = None

    listed = [node for addresses in by_address.values() for node in addresses.values()]
    listed.extend(by_function.values())
    listed.sort(key=lambda node: (-node.flat, node.meta.location.address))

    return Top(nodes=listed, reported=len(listed), total=top.total, unit=top.unit)