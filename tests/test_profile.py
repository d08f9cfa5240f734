from profquery.profile import (
    Function,
    Location,
    LocationLine,
    Mapping,
    Profile,
    Sample,
    SymbolizedLocation,
)


def test_to_location_with_mapping():
    mapping = Mapping(id="map-1", file="/bin/app")
    loc = SymbolizedLocation(
        id="loc-1",
        address=4096,
        is_folded=True,
        mapping=mapping,
        lines=[LocationLine(line=7, function=Function(id="fn", name="main"))],
    )
    result = loc.to_location()
    assert result == Location(id="loc-1", address=4096, mapping_id="map-1", is_folded=True)


def test_to_location_without_mapping_has_empty_mapping_id():
    loc = SymbolizedLocation(id="loc-2", address=12)
    result = loc.to_location()
    assert result.mapping_id == ""
    assert result.id == "loc-2"
    assert result.address == 12


def test_to_location_does_not_carry_lines():
    loc = SymbolizedLocation(
        id="loc-3",
        lines=[LocationLine(line=1, function=Function(id="f", name="x"))],
    )
    assert loc.to_location().lines == []


def test_profiles_do_not_share_mutable_defaults():
    first = Profile()
    second = Profile()
    first.samples.append(Sample(value=3))
    first.meta.sample_type.unit = "bytes"
    assert second.samples == []
    assert second.meta.sample_type.unit == ""