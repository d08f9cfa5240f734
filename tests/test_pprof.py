import gzip
import io
from datetime import datetime, timezone

from profquery.pprof import (
    PprofFunction,
    PprofLine,
    PprofLocation,
    PprofMapping,
    PprofProfile,
    PprofSample,
    PprofValueType,
    generate_flat_pprof,
)
from profquery.profile import (
    Function,
    LocationLine,
    Mapping,
    Meta,
    Profile,
    Sample,
    SymbolizedLocation,
    ValueType,
)


def _read_varint(data, pos):
    result = 0
    shift = 0
    while True:
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7


def _fields(data):
    fields = {}
    pos = 0
    while pos < len(data):
        key, pos = _read_varint(data, pos)
        number, wire = key >> 3, key & 7
        if wire == 0:
            value, pos = _read_varint(data, pos)
        elif wire == 2:
            length, pos = _read_varint(data, pos)
            value = bytes(data[pos : pos + length])
            pos += length
        else:
            raise AssertionError(f"unexpected wire type {wire}")
        fields.setdefault(number, []).append(value)
    return fields


def _packed(data):
    values = []
    pos = 0
    while pos < len(data):
        value, pos = _read_varint(data, pos)
        values.append(value)
    return values


def _signed(value):
    return value - (1 << 64) if value >= 1 << 63 else value


def _nil_mapping_profile():
    f1 = Function(id="f1", name="1")
    f2 = Function(id="f2", name="2")
    l1 = SymbolizedLocation(id="l1", lines=[LocationLine(function=f1)])
    l2 = SymbolizedLocation(id="l2", lines=[LocationLine(function=f2)])
    return Profile(samples=[Sample(locations=[l2, l1], value=1)])


def test_nil_mapping_profile():
    res = generate_flat_pprof(_nil_mapping_profile())

    assert res.mappings == []
    assert [f.name for f in res.functions] == ["2", "1"]
    assert [f.id for f in res.functions] == [1, 2]
    assert [loc.id for loc in res.locations] == [1, 2]
    assert len(res.samples) == 1
    assert res.samples[0].values == [1]
    assert all(loc.mapping is None for loc in res.samples[0].locations)
    assert [loc.id for loc in res.samples[0].locations] == [1, 2]


def test_nil_mapping_profile_encodes_valid_references():
    res = generate_flat_pprof(_nil_mapping_profile())
    fields = _fields(res.encode())
    strings = [s.decode() for s in fields[6]]

    assert strings[0] == ""
    assert 3 not in fields
    assert len(fields[4]) == 2
    function_names = {
        _fields(f)[1][0]: strings[_fields(f)[2][0]] for f in fields[5]
    }
    assert function_names == {1: "2", 2: "1"}
    location_ids = {_fields(loc)[1][0] for loc in fields[4]}
    sample = _fields(fields[2][0])
    assert set(_packed(sample[1][0])) <= location_ids
    for loc in fields[4]:
        line = _fields(_fields(loc)[4][0])
        assert line[1][0] in function_names


def test_meta_is_converted():
    timestamp = datetime(2020, 12, 17, 10, 8, 38, 549000, tzinfo=timezone.utc)
    millis = int(timestamp.timestamp()) * 1000 + 549
    profile = Profile(
        meta=Meta(
            name="memory",
            period_type=ValueType(type="space", unit="bytes"),
            sample_type=ValueType(type="alloc_objects", unit="count"),
            timestamp=millis,
            duration=0,
            period=524288,
        )
    )

    res = generate_flat_pprof(profile)

    assert res.period_type == PprofValueType(type="space", unit="bytes")
    assert res.sample_types == [PprofValueType(type="alloc_objects", unit="count")]
    assert res.time_nanos == 1608199718549000000
    assert res.duration_nanos == 0
    assert res.period == 524288


def test_mapping_is_shared_and_numbered():
    mapping = Mapping(
        id="m",
        start=4194304,
        limit=23252992,
        offset=0,
        file="/bin/operator",
        has_functions=True,
    )
    func = Function(id="f", name="main")
    l1 = SymbolizedLocation(id="a", address=10, mapping=mapping, lines=[LocationLine(line=3, function=func)])
    l2 = SymbolizedLocation(id="b", address=20, mapping=mapping, lines=[LocationLine(line=4, function=func)])
    profile = Profile(samples=[Sample(locations=[l1, l2], value=5), Sample(locations=[l2], value=1)])

    res = generate_flat_pprof(profile)

    assert res.mappings == [
        PprofMapping(
            id=1,
            start=4194304,
            limit=23252992,
            offset=0,
            file="/bin/operator",
            build_id="",
            has_functions=True,
        )
    ]
    assert len(res.functions) == 1
    assert len(res.locations) == 2
    assert all(loc.mapping is res.mappings[0] for loc in res.locations)
    assert res.samples[1].locations[0] is res.samples[0].locations[1]


def test_address_includes_mapping_offset():
    mapping = Mapping(id="m", offset=0x100)
    location = SymbolizedLocation(id="a", address=0x10, mapping=mapping)
    res = generate_flat_pprof(Profile(samples=[Sample(locations=[location], value=1)]))
    assert res.locations[0].address == 0x110


def test_diff_value_used_when_value_is_zero():
    location = SymbolizedLocation(id="a", address=1)
    profile = Profile(
        samples=[
            Sample(locations=[location], value=2, diff_value=2),
            Sample(locations=[location], value=0, diff_value=-1),
            Sample(locations=[location], value=0, diff_value=0),
        ]
    )
    res = generate_flat_pprof(profile)
    assert [s.values for s in res.samples] == [[2], [-1], [0]]


def test_negative_values_round_trip():
    location = SymbolizedLocation(id="a", address=1)
    res = generate_flat_pprof(Profile(samples=[Sample(locations=[location], diff_value=-1)]))
    sample = _fields(_fields(res.encode())[2][0])
    assert [_signed(v) for v in _packed(sample[2][0])] == [-1]


def test_line_without_function():
    location = SymbolizedLocation(id="a", lines=[LocationLine(line=7, function=None)])
    res = generate_flat_pprof(Profile(samples=[Sample(locations=[location], value=1)]))
    assert res.functions == []
    assert res.locations[0].lines == [PprofLine(function=None, line=7)]


def test_write_is_gzipped_encoding():
    function = PprofFunction(id=1, name="main", filename="main.go")
    location = PprofLocation(id=1, address=0x42, lines=[PprofLine(function=function, line=9)])
    profile = PprofProfile(
        sample_types=[PprofValueType(type="samples", unit="count")],
        samples=[PprofSample(values=[3], locations=[location])],
        locations=[location],
        functions=[function],
        period_type=PprofValueType(type="cpu", unit="nanoseconds"),
        period=10,
    )
    stream = io.BytesIO()
    profile.write(stream)

    assert gzip.decompress(stream.getvalue()) == profile.encode()
    fields = _fields(profile.encode())
    strings = [s.decode() for s in fields[6]]
    period_type = _fields(fields[11][0])
    assert strings[period_type[1][0]] == "cpu"
    assert strings[period_type[2][0]] == "nanoseconds"
    assert fields[12] == [10]
    assert _fields(fields[4][0])[3] == [0x42]