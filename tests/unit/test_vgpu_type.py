"""
Unit tests for vGPU type name parsing and normalization
"""

import pytest

from vgpu_dm.exceptions import MalformedVGPUTypeError, VGPUConfigError
from vgpu_dm.models.vgpu_type import (
    _MIG_BACKED_RE,
    _TIME_SLICED_RE,
    Series,
    VGPUType,
    format_vgpu_type,
    parse_type_name,
    parse_vgpu_type,
    strip_attribute_suffix,
)


class TestParseVGPUType:

    def test_time_sliced(self):
        t = parse_vgpu_type("A100-40C")

        assert t.gpu == "A100"
        assert t.g == 0
        assert t.gb == 40
        assert t.series == Series.C
        assert t.attr == ()
        assert not t.is_mig_backed

    def test_time_sliced_with_qualifier(self):
        t = parse_vgpu_type("RTX6000-Ada-2Q")

        assert t.gpu == "RTX6000-Ada"
        assert t.gb == 2
        assert t.series == Series.Q

    def test_zero_framebuffer(self):
        t = parse_vgpu_type("M60-0Q")

        assert t.gb == 0

    def test_mig_backed(self):
        t = parse_vgpu_type("A100-1-5C")

        assert t.gpu == "A100"
        assert t.g == 1
        assert t.gb == 5
        assert t.series == Series.C
        assert t.is_mig_backed

    def test_mig_backed_with_attribute(self):
        assert parse_vgpu_type("A100-1-5CME").attr == ("ME",)
        assert parse_vgpu_type("A100-7-80CMEALL").attr == ("MEALL",)
        assert parse_vgpu_type("A100-1-5CNOME").attr == ("NOME",)
        assert parse_vgpu_type("DC-1-24QGFX").attr == ("GFX",)

    @pytest.mark.parametrize("name", ["A16-8Q", "A16-8A", "A16-8B", "A16-8C"])
    def test_all_series(self, name):
        assert parse_vgpu_type(name).series.value == name[-1]

    @pytest.mark.parametrize(
        "name",
        [
            "",
            "A16-8E",
            " A100-5C",
            "A100 -5C",
            "A100- 5C",
            "A100-5C ",
            " A100-1-5C",
            "A100 -1-5C",
            "A100-1 -5C",
            "A100-1-5 C",
            "A100-1-5C ",
            "A100-1-5Cme",
            "A100-1-5C Me",
            "A100-1-5Cab",
            "A100-0-5C",
            "A100-04C",
            "a100-4c",
            "bogus",
        ],
    )
    def test_malformed(self, name):
        with pytest.raises(MalformedVGPUTypeError) as exc_info:
            parse_vgpu_type(name)

        assert exc_info.value.value == name
        assert exc_info.value.kind == "Malformed"

    def test_malformed_is_a_config_error(self):
        with pytest.raises(VGPUConfigError):
            VGPUType.parse("A100-4X")

        with pytest.raises(ValueError):
            VGPUType.parse("A100-4X")

    @pytest.mark.parametrize(
        "name",
        ["A100-40C", "A100D-80C", "M60-0Q", "RTX6000-Ada-2Q", "A100-1-5C", "A100-1-5CME", "DC-1-24CGFX"],
    )
    def test_format_round_trip(self, name):
        assert format_vgpu_type(parse_vgpu_type(name)) == name
        assert str(VGPUType.parse(name)) == name

    def test_format_from_fields(self):
        t = VGPUType(gpu="A100", g=2, gb=10, series=Series.C, attr=("ME",))

        assert str(t) == "A100-2-10CME"


class TestBackingForm:

    @pytest.mark.parametrize(
        "name",
        [
            "A100-40C",
            "A100D-80C",
            "M60-0Q",
            "L40S-12Q",
            "DC-48C",
            "RTX6000-Ada-2Q",
            "A100-1-5C",
            "A100-7-40C",
            "A100-1-5CME",
            "A100-1-5CNOME",
            "A100-1-5CMEALL",
            "DC-1-24QGFX",
        ],
    )
    def test_exactly_one_form_matches(self, name):
        time_sliced = bool(_TIME_SLICED_RE.fullmatch(name))
        mig_backed = bool(_MIG_BACKED_RE.fullmatch(name))

        assert time_sliced != mig_backed
        assert parse_vgpu_type(name).is_mig_backed == mig_backed


class TestParseTypeName:

    def test_strips_product_prefix(self):
        assert parse_type_name("NVIDIA A100-4C") == "A100-4C"
        assert parse_type_name("NVIDIA RTX Pro 6000 Blackwell DC-48C") == "DC-48C"

    def test_trims_whitespace(self):
        assert parse_type_name("  NVIDIA A100-1-5C\n") == "A100-1-5C"

    def test_bare_name(self):
        assert parse_type_name("A100-4C") == "A100-4C"

    def test_empty(self):
        with pytest.raises(MalformedVGPUTypeError):
            parse_type_name("   ")


class TestStripAttributeSuffix:

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("A100-5C", "A100-5C"),
            ("A100-1-5C", "A100-1-5C"),
            ("A100-1-5CME", "A100-1-5C"),
            ("A100-1-5CNOME", "A100-1-5C"),
            ("A100-1-5CMEALL", "A100-1-5C"),
            ("A100-1-5CGFX", "A100-1-5C"),
            ("A100-7-40CMEALL", "A100-7-40C"),
            ("RTX6000-Ada-2QGFX", "RTX6000-Ada-2Q"),
            ("", ""),
            ("A100ME-5C", "A100ME-5C"),
            ("A100NOME-5C", "A100NOME-5C"),
            ("A100MEALL-5C", "A100MEALL-5C"),
            ("A100GFX-5C", "A100GFX-5C"),
        ],
    )
    def test_strip(self, name, expected):
        assert strip_attribute_suffix(name) == expected

    def test_strips_only_one_suffix(self):
        assert strip_attribute_suffix("A100-1-5CNOMEME") == "A100-1-5CNOME"
