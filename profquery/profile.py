"""Symbolized profile model shared by the report generators."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Mapping:
    """A binary or library mapped into the profiled process."""

    id: str = ""
    start: int = 0
    limit: int = 0
    offset: int = 0
    file: str = ""
    build_id: str = ""
    has_functions: bool = False
    has_filenames: bool = False
    has_line_numbers: bool = False
    has_inline_frames: bool = False


@dataclass
class Function:
    """A symbolized function."""

    id: str = ""
    start_line: int = 0
    name: str = ""
    system_name: str = ""
    filename: str = ""


@dataclass
class Line:
    """A reference to a source line within a function."""

    function_id: str = ""
    line: int = 0


@dataclass
class Location:
    """Location metadata as attached to report nodes."""

    id: str = ""
    address: int = 0
    mapping_id: str = ""
    is_folded: bool = False
    lines: list[Line] = field(default_factory=list)


@dataclass
class LocationLine:
    """One (possibly inlined) frame of a symbolized location."""

    line: int = 0
    function: Function | None = None


@dataclass
class SymbolizedLocation:
    """A location with its mapping and resolved lines, innermost line first."""

    id: str = ""
    address: int = 0
    is_folded: bool = False
    mapping: Mapping | None = None
    lines: list[LocationLine] = field(default_factory=list)

    def to_location(self) -> Location:
        """Return the flat location metadata used inside report nodes."""
        return Location(
            id=self.id,
            address=self.address,
            mapping_id=self.mapping.id if self.mapping is not None else "",
            is_folded=self.is_folded,
        )


@dataclass
class ValueType:
    """Type and unit of a sample or period value."""

    type: str = ""
    unit: str = ""


@dataclass
class Meta:
    """Profile metadata; the timestamp is in milliseconds."""

    name: str = ""
    period_type: ValueType = field(default_factory=ValueType)
    sample_type: ValueType = field(default_factory=ValueType)
    timestamp: int = 0
    duration: int = 0
    period: int = 0


@dataclass
class Sample:
    """A stack of locations (leaf first) with its value and diff value."""

    locations: list[SymbolizedLocation] = field(default_factory=list)
    value: int = 0
    diff_value: int = 0
    label: dict[str, list[str]] = field(default_factory=dict)
    num_label: dict[str, list[int]] = field(default_factory=dict)


@dataclass
class Profile:
    """A symbolized profile: metadata plus samples."""

    meta: Meta = field(default_factory=Meta)
    samples: list[Sample] = field(default_factory=list)