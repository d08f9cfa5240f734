# profquery

`profquery` turns symbolized profiling samples into the reports that a profiler UI needs.

- **Flame graphs.** `profquery.flamegraph.generate_flamegraph_flat` builds a tree of stacks. Sibling frames of the same function are merged by `aggregate_by_function`. Frames with no function are merged when they have the same address.
- **Call graphs.** `profquery.callgraph.generate_callgraph` builds nodes, which are merged by function name, and edges, which get random UUID ids. `prune_graph` removes small pass-through nodes, meaning nodes below 0.5% of the total value that have one caller and at least one callee. It replaces them with edges marked `is_collapsed`.
- **Top tables.** `profquery.top.generate_top_table` sums the flat, cumulative and diff values for each location. `aggregate_top_by_function` then merges the rows by function name, or by mapping and address when there is no function. Rows are sorted by flat value, largest first, and then by address.
- **pprof output.** `profquery.pprof.generate_flat_pprof` returns a `PprofProfile`. Its mappings, functions and locations are numbered from 1. `encode()` returns the uncompressed protobuf bytes. `write(stream)` writes the gzip-compressed form.

The package also has a query front end, `profquery.columnquery.ColumnQueryAPI`. It runs single, merge and diff queries against a `Querier` that you supply, and renders the result as one of the reports above.

## Installation

```
pip install profquery
```

The package has no runtime dependencies.

## Building a profile

The data model is in `profquery.profile`. The report types are in `profquery.reports`.

```python
from profquery.profile import (
    Function, LocationLine, Mapping, Meta, Profile, Sample,
    SymbolizedLocation, ValueType,
)

mapping = Mapping(id="m1", file="/bin/app")
main = Function(id="f1", name="main")
work = Function(id="f2", name="work")

loc_main = SymbolizedLocation(id="l1", address=0x10, mapping=mapping,
                              lines=[LocationLine(line=3, function=main)])
loc_work = SymbolizedLocation(id="l2", address=0x20, mapping=mapping,
                              lines=[LocationLine(line=9, function=work)])

profile = Profile(
    meta=Meta(sample_type=ValueType(type="samples", unit="count")),
    # Locations run from the leaf to the root.
    samples=[Sample(locations=[loc_work, loc_main], value=5)],
)
```

A location with several `lines` stands for inlined frames. The innermost frame comes first. Each inlined frame becomes its own node in flame graphs and call graphs.

## Generating reports

```python
from profquery.flamegraph import generate_flamegraph_flat
from profquery.callgraph import generate_callgraph
from profquery.top import generate_top_table
from profquery.pprof import generate_flat_pprof

flamegraph = generate_flamegraph_flat(profile)
print(flamegraph.total, flamegraph.height)   # 5 3

callgraph = generate_callgraph(profile)
top = generate_top_table(profile)

with open("profile.pb.gz", "wb") as out:
    generate_flat_pprof(profile).write(out)
```

`FlamegraphIterator` walks a flame graph depth-first one step at a time, using `next_child`, `at`, `step_into` and `step_up`.

## Querying a store

Implement the `Querier` protocol on top of your storage. It has the methods `labels`, `values`, `query_range`, `profile_types`, `query_single` and `query_merge`. Then pass your querier to `ColumnQueryAPI`:

```python
from profquery.columnquery import (
    ColumnQueryAPI, QueryMode, QueryRequest, MergeProfile, ReportType,
)

api = ColumnQueryAPI(querier=my_querier)
response = api.query(QueryRequest(
    mode=QueryMode.MERGE,
    report_type=ReportType.TOP,
    merge=MergeProfile(query='{job="default"}', start=start, end=end),
))
print(response.top.reported)
```

- The response fills exactly one of `flamegraph`, `pprof`, `top` or `callgraph`. The `pprof` field holds gzip-compressed bytes.
- In diff mode (`DiffProfile` with two `ProfileDiffSelection`s), the samples of `b` carry their value as both value and diff. The samples of `a` carry the negated value as diff only.
- `labels`, `values`, `query_range` and `profile_types` pass straight through to the querier.
- `share_profile(request, description)` renders the request as pprof. It then passes the result to the `ShareClient` given to the constructor and returns the link that the client reports.

Invalid requests raise `QueryError` with `StatusCode.INVALID_ARGUMENT`. This covers an unknown mode, an unknown report type, and missing parameters. Failures while generating a report raise `QueryError` with `StatusCode.INTERNAL`. The same code is used for failures while uploading, and for a `share_profile` call made without a share client.

## Periodic work

`profquery.runutil.repeat(interval, stop, func)` calls `func` straight away. It then calls `func` again every `interval` until the `threading.Event` `stop` is set. The interval is given in seconds or as a `timedelta`, and a non-positive interval raises `ValueError`. If `func` raises, the exception ends the loop and passes to the caller.

## What it does not do

`profquery` stores nothing and serves nothing. It has no database, no ingestion or symbolization of raw profiles, no network server and no command-line tool. Profiles must arrive already symbolized, either built by hand or returned by your own `Querier`. Sharing needs a `ShareClient` that you provide.