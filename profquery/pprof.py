"""Conversion of symbolized profiles into the pprof format."""

from __future__ import annotations

import gzip
from dataclasses import dataclass, field
from typing import BinaryIO, Iterable

from profquery.profile import Profile, SymbolizedLocation


@dataclass
class PprofValueType:
    """Type and unit of a pprof value."""

    type: str = ""
    unit: str = ""


@dataclass
class PprofMapping:
    """A pprof mapping; ``id`` is assigned when the profile is built."""

    id: int = 0
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
class PprofFunction:
    """A pprof function; ``id`` is assigned when the profile is built."""

    id: int = 0
    name: str = ""
    system_name: str = ""
    filename: str = ""
    start_line: int = 0


@dataclass
class PprofLine:
    """A line of a pprof location."""

    function: PprofFunction | None = None
    line: int = 0


@dataclass
class PprofLocation:
    """A pprof location; ``id`` is assigned when the profile is built."""

    id: int = 0
    mapping: PprofMapping | None = None
    address: int = 0
    lines: list[PprofLine] = field(default_factory=list)
    is_folded: bool = False


@dataclass
class PprofSample:
    """A pprof sample: values and a stack of locations, leaf first."""

    values: list[int] = field(default_factory=list)
    locations: list[PprofLocation] = field(default_factory=list)


def _varint(value: int) -> bytes:
    value &= (1 << 64) - 1
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


class _Message:
    """Accumulates the encoded fields of one protobuf message."""

    def __init__(self) -> None:
        self.buffer = bytearray()

    def uint(self, number: int, value: int) -> None:
        if value:
            self.buffer += _varint(number << 3) + _varint(value)

    def boolean(self, number: int, value: bool) -> None:
        self.uint(number, int(value))

    def bytes(self, number: int, data: bytes) -> None:
        self.buffer += _varint((number << 3) | 2) + _varint(len(data)) + data

    def packed(self, number: int, values: Iterable[int]) -> None:
        data = b"".join(_varint(value) for value in values)
        if data:
            self.bytes(number, data)


class _StringTable:
    def __init__(self) -> None:
        self.indices: dict[str, int] = {"": 0}

    def intern(self, text: str) -> int:
        return self.indices.setdefault(text, len(self.indices))


@dataclass
class PprofProfile:
    """An in-memory pprof profile."""

    sample_types: list[PprofValueType] = field(default_factory=list)
    samples: list[PprofSample] = field(default_factory=list)
    mappings: list[PprofMapping] = field(default_factory=list)
    locations: list[PprofLocation] = field(default_factory=list)
    functions: list[PprofFunction] = field(default_factory=list)
    period_type: PprofValueType | None = None
    period: int = 0
    time_nanos: int = 0
    duration_nanos: int = 0

    def encode(self) -> bytes:
        """Serialize the profile to the uncompressed pprof protobuf encoding."""
        strings = _StringTable()
        profile = _Message()

        for value_type in self.sample_types:
            profile.bytes(1, _encode_value_type(value_type, strings))

        for sample in self.samples:
            message = _Message()
            message.packed(1, (location.id for location in sample.locations))
            message.packed(2, sample.values)
            profile.bytes(2, bytes(message.buffer))

        for mapping in self.mappings:
            message = _Message()
            message.uint(1, mapping.id)
            message.uint(2, mapping.start)
            message.uint(3, mapping.limit)
            message.uint(4, mapping.offset)
            message.uint(5, strings.intern(mapping.file))
            message.uint(6, strings.intern(mapping.build_id))
            message.boolean(7, mapping.has_functions)
            message.boolean(8, mapping.has_filenames)
            message.boolean(9, mapping.has_line_numbers)
            message.boolean(10, mapping.has_inline_frames)
            profile.bytes(3, bytes(message.buffer))

        for location in self.locations:
            message = _Message()
            message.uint(1, location.id)
            message.uint(2, location.mapping.id if location.mapping is not None else 0)
            message.uint(3, location.address)
            for line in location.lines:
                line_message = _Message()
                line_message.uint(1, line.function.id if line.function is not None else 0)
                line_message.uint(2, line.line)
                message.bytes(4, bytes(line_message.buffer))
            message.boolean(5, location.is_folded)
            profile.bytes(4, bytes(message.buffer))

        for function in self.functions:
            message = _Message()
            message.uint(1, function.id)
            message.uint(2, strings.intern(function.name))
            message.uint(3, strings.intern(function.system_name))
            message.uint(4, strings.intern(function.filename))
            message.uint(5, function.start_line)
            profile.bytes(5, bytes(message.buffer))

        period_type = (
            _encode_value_type(self.period_type, strings)
            if self.period_type is not None
            else None
        )

        for text in strings.indices:
            profile.bytes(6, text.encode("utf-8"))

        profile.uint(9, self.time_nanos)
        profile.uint(10, self.duration_nanos)
        if period_type is not None:
            profile.bytes(11, period_type)
        profile.uint(12, self.period)
        return bytes(profile.buffer)

    def write(self, stream: BinaryIO) -> None:
        """Write the gzip-compressed encoding of the profile to ``stream``."""
        stream.write(gzip.compress(self.encode(), mtime=0))


def _encode_value_type(value_type: PprofValueType, strings: _StringTable) -> bytes:
    message = _Message()
    message.uint(1, strings.intern(value_type.type))
    message.uint(2, strings.intern(value_type.unit))
    return bytes(message.buffer)


def _convert_location(
    location: SymbolizedLocation,
    mappings: dict[str, PprofMapping],
    functions: dict[str, PprofFunction],
) -> PprofLocation:
    mapping: PprofMapping | None = None
    if location.mapping is not None:
        source = location.mapping
        mapping = mappings.get(source.id)
        if mapping is None:
            mapping = PprofMapping(
                start=source.start,
                limit=source.limit,
                offset=source.offset,
                file=source.file,
                build_id=source.build_id,
                has_functions=source.has_functions,
                has_filenames=source.has_filenames,
                has_line_numbers=source.has_line_numbers,
                has_inline_frames=source.has_inline_frames,
            )
            mappings[source.id] = mapping

    lines: list[PprofLine] = []
    for line in location.lines:
        function: PprofFunction | None = None
        if line.function is not None:
            source_function = line.function
            function = functions.get(source_function.id)
            if function is None:
                function = PprofFunction(
                    name=source_function.name,
                    system_name=source_function.system_name,
                    filename=source_function.filename,
                    start_line=source_function.start_line,
                )
                functions[source_function.id] = function
        lines.append(PprofLine(function=function, line=line.line))

    address = location.address
    if mapping is not None:
        address += mapping.offset

    return PprofLocation(
        mapping=mapping,
        address=address,
        lines=lines,
        is_folded=location.is_folded,
    )


def generate_flat_pprof(profile: Profile) -> PprofProfile:
    """Convert a symbolized profile into a pprof profile with numbered entities."""
    meta = profile.meta
    mappings: dict[str, PprofMapping] = {}
    functions: dict[str, PprofFunction] = {}
    locations: dict[str, PprofLocation] = {}
    samples: list[PprofSample] = []

    for sample in profile.samples:
        stack: list[PprofLocation] = []
        for location in sample.locations:
            converted = locations.get(location.id)
            if converted is None:
                converted = _convert_location(location, mappings, functions)
                locations[location.id] = converted
            stack.append(converted)
        # Diff-only samples carry their value in the diff.
        value = sample.value or sample.diff_value
        samples.append(PprofSample(values=[value], locations=stack))

    for number, mapping in enumerate(mappings.values(), start=1):
        mapping.id = number
    for number, function in enumerate(functions.values(), start=1):
        function.id = number
    for number, location in enumerate(locations.values(), start=1):
        location.id = number

    return PprofProfile(
        period_type=PprofValueType(type=meta.period_type.type, unit=meta.period_type.unit),
        sample_types=[PprofValueType(type=meta.sample_type.type, unit=meta.sample_type.unit)],
        # Timestamps are stored in milliseconds.
        time_nanos=meta.timestamp * 1_000_000,
        duration_nanos=meta.duration,
        period=meta.period,
        samples=samples,
        mappings=list(mappings.values()),
        functions=list(functions.values()),
        locations=list(locations.values()),
    )