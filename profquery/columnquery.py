"""Query API: selects profiles from a querier and renders them as reports."""

from __future__ import annotations

import io
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Iterator, Protocol, Sequence

from profquery.callgraph import generate_callgraph
from profquery.flamegraph import generate_flamegraph_flat
from profquery.pprof import generate_flat_pprof
from profquery.profile import Profile, Sample
from profquery.reports import Callgraph, Flamegraph, Top
from profquery.top import generate_top_table


class StatusCode(Enum):
    """Classes of failure reported by the query API."""

    INVALID_ARGUMENT = "invalid_argument"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


class QueryError(Exception):
    """A query failure carrying a status code."""

    def __init__(self, code: StatusCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class QueryMode(IntEnum):
    SINGLE_UNSPECIFIED = 0
    MERGE = 1
    DIFF = 2


class ReportType(IntEnum):
    FLAMEGRAPH_UNSPECIFIED = 0
    PPROF = 1
    TOP = 2
    CALLGRAPH = 3


class DiffSelectionMode(IntEnum):
    SINGLE_UNSPECIFIED = 0
    MERGE = 1


class Querier(Protocol):
    """Storage backend that answers label, range and profile queries."""

    def labels(self, match: Sequence[str], start: datetime, end: datetime) -> list[str]:
        """Return the label names present in the given time range."""

    def values(
        self, label_name: str, match: Sequence[str], start: datetime, end: datetime
    ) -> list[str]:
        """Return the values of one label in the given time range."""

    def query_range(
        self, query: str, start: datetime, end: datetime, limit: int
    ) -> list[Any]:
        """Return the metric series matching the query."""

    def profile_types(self) -> list[Any]:
        """Return the available profile types."""

    def query_single(self, query: str, time: datetime) -> Profile:
        """Return the single profile matching the query at a point in time."""

    def query_merge(self, query: str, start: datetime, end: datetime) -> Profile:
        """Return all profiles matching the query in a range, merged into one."""


class ShareClient(Protocol):
    """Service that stores an encoded profile and returns a link to it."""

    def upload(self, profile: bytes, description: str) -> str:
        """Upload a gzip-compressed pprof profile and return its link."""


@dataclass
class SingleProfile:
    query: str = ""
    time: datetime | None = None


@dataclass
class MergeProfile:
    query: str = ""
    start: datetime | None = None
    end: datetime | None = None


@dataclass
class ProfileDiffSelection:
    mode: DiffSelectionMode | int = DiffSelectionMode.SINGLE_UNSPECIFIED
    single: SingleProfile | None = None
    merge: MergeProfile | None = None


@dataclass
class DiffProfile:
    a: ProfileDiffSelection | None = None
    b: ProfileDiffSelection | None = None


@dataclass
class QueryRequest:
    mode: QueryMode | int = QueryMode.SINGLE_UNSPECIFIED
    report_type: ReportType | int = ReportType.FLAMEGRAPH_UNSPECIFIED
    single: SingleProfile | None = None
    merge: MergeProfile | None = None
    diff: DiffProfile | None = None


@dataclass
class QueryResponse:
    """Exactly one of the report fields is set."""

    flamegraph: Flamegraph | None = None
    pprof: bytes | None = None
    top: Top | None = None
    callgraph: Callgraph | None = None


@contextmanager
def _internal(prefix: str) -> Iterator[None]:
    try:
        yield
    except QueryError:
        raise
    except Exception as err:
        raise QueryError(StatusCode.INTERNAL, f"{prefix}: {err}") from err


@contextmanager
def _prefixed(prefix: str) -> Iterator[None]:
    try:
        yield
    except QueryError as err:
        raise QueryError(err.code, f"{prefix}: {err.message}") from err


def _invalid(message: str) -> QueryError:
    return QueryError(StatusCode.INVALID_ARGUMENT, message)


class ColumnQueryAPI:
    """Read API answering label, range and profile report queries."""

    def __init__(self, querier: Querier, share_client: ShareClient | None = None) -> None:
        self._querier = querier
        self._share_client = share_client

    def labels(self, match: Sequence[str], start: datetime, end: datetime) -> list[str]:
        """Label names known to the storage."""
        return self._querier.labels(match, start, end)

    def values(
        self, label_name: str, match: Sequence[str], start: datetime, end: datetime
    ) -> list[str]:
        """Values of one label known to the storage."""
        return self._querier.values(label_name, match, start, end)

    def query_range(self, query: str, start: datetime, end: datetime, limit: int) -> list[Any]:
        """Metric series for a range query."""
        return self._querier.query_range(query, start, end, limit)

    def profile_types(self) -> list[Any]:
        """Available profile types."""
        return self._querier.profile_types()

    def query(self, request: QueryRequest) -> QueryResponse:
        """Select a profile according to the request and render the requested report."""
        try:
            mode = QueryMode(request.mode)
        except ValueError:
            raise _invalid("unknown query mode") from None

        if mode is QueryMode.SINGLE_UNSPECIFIED:
            profile = self._select_single(request.single)
        elif mode is QueryMode.MERGE:
            profile = self._select_merge(request.merge)
        else:
            profile = self._select_diff(request.diff)

        return self._render_report(profile, request.report_type)

    def share_profile(self, request: QueryRequest, description: str) -> str:
        """Render the request as pprof, upload it and return the share link."""
        if self._share_client is None:
            raise QueryError(StatusCode.INTERNAL, "no share client configured")
        response = self.query(replace(request, report_type=ReportType.PPROF))
        try:
            return self._share_client.upload(response.pprof, description)
        except Exception as err:
            raise QueryError(
                StatusCode.INTERNAL, f"failed to upload profile: {err}"
            ) from err

    def _render_report(self, profile: Profile, report_type: ReportType | int) -> QueryResponse:
        try:
            kind = ReportType(report_type)
        except ValueError:
            raise _invalid("requested report type does not exist") from None

        if kind is ReportType.FLAMEGRAPH_UNSPECIFIED:
            with _internal("failed to generate flamegraph"):
                return QueryResponse(flamegraph=generate_flamegraph_flat(profile))
        if kind is ReportType.PPROF:
            with _internal("failed to generate pprof"):
                buffer = io.BytesIO()
                generate_flat_pprof(profile).write(buffer)
                return QueryResponse(pprof=buffer.getvalue())
        if kind is ReportType.TOP:
            with _internal("failed to generate top table"):
                return QueryResponse(top=generate_top_table(profile))
        with _internal("failed to generate callgraph"):
            return QueryResponse(callgraph=generate_callgraph(profile))

    def _select_single(self, single: SingleProfile | None) -> Profile:
        if single is None:
            raise _invalid("requested single mode, but did not provide parameters for single")
        return self._querier.query_single(single.query, single.time)

    def _select_merge(self, merge: MergeProfile | None) -> Profile:
        if merge is None:
            raise _invalid("requested merge mode, but did not provide parameters for merge")
        return self._querier.query_merge(merge.query, merge.start, merge.end)

    def _select_diff(self, diff: DiffProfile | None) -> Profile:
        if diff is None:
            raise _invalid("requested diff mode, but did not provide parameters for diff")

        with _prefixed("reading base profile"):
            base = self._select_profile_for_diff(diff.a)
        with _prefixed("reading compared profile"):
            compare = self._select_profile_for_diff(diff.b)

        samples = [
            Sample(
                locations=sample.locations,
                value=sample.value,
                diff_value=sample.value,
                label=sample.label,
                num_label=sample.num_label,
            )
            for sample in compare.samples
        ]
        samples.extend(
            Sample(
                locations=sample.locations,
                diff_value=-sample.value,
                label=sample.label,
                num_label=sample.num_label,
            )
            for sample in base.samples
        )
        return Profile(samples=samples)

    def _select_profile_for_diff(self, selection: ProfileDiffSelection | None) -> Profile:
        if selection is None:
            raise _invalid("missing profile selection for diff")
        try:
            mode = DiffSelectionMode(selection.mode)
        except ValueError:
            raise _invalid("unknown mode for diff profile selection") from None
        if mode is DiffSelectionMode.SINGLE_UNSPECIFIED:
            return self._select_single(selection.single)
        return self._select_merge(selection.merge)