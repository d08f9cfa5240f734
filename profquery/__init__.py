"""Flame graph, call graph, top table and pprof reports for symbolized profiles, with a query front end."""

__version__ = "0.1.0"

__all__ = ["callgraph", "columnquery", "flamegraph", "pprof", "profile", "reports", "runutil", "top"]