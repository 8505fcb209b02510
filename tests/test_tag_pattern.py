"""Tests for tag pattern expansion."""
import pytest
from tagflow.models.enums import TaggingMode
from tagflow.services.tag_pattern import (
    ExpansionContext,
    default_pattern,
    example_tag,
    expand,
    find_placeholders,
    format_sequence,
    type_code,
    unknown_placeholders,
)


class TestExpansion:
    """Placeholder substitution."""

    def test_kks_style_pattern(self):
        ctx = ExpansionContext(equipment_type="Pump", area="A01")
        assert expand("{AREA}-{TYPE}-{SEQ:000}", ctx, 1) == "A01-P-001"

    def test_sequence_padding_to_mask_width(self):
        ctx = ExpansionContext(equipment_type="Pump")
        assert expand("{SEQ:000}", ctx, 7) == "007"
        assert expand("{SEQ:001}", ctx, 7) == "007"

    def test_wide_sequence_is_never_truncated(self):
        ctx = ExpansionContext(equipment_type="Pump")
        assert expand("{SEQ:000}", ctx, 12345) == "12345"

    def test_unpadded_sequence(self):
        ctx = ExpansionContext(equipment_type="Pump")
        assert expand("P{SEQ}", ctx, 42) == "P42"

    def test_empty_area_uses_default(self):
        ctx = ExpansionContext(equipment_type="Tank", area=None)
        assert expand("{AREA}-{TYPE}", ctx, 1) == "00-T"

    def test_unknown_placeholders_left_verbatim(self):
        ctx = ExpansionContext(equipment_type="Pump", area="A01")
        assert expand("{UNIT}-{TYPE}-{SEQ:00}", ctx, 3) == "{UNIT}-P-03"

    def test_substituted_text_is_not_rescanned(self):
        """An area that looks like a placeholder stays literal."""
        ctx = ExpansionContext(equipment_type="Pump", area="{SEQ}")
        assert expand("{AREA}/{SEQ}", ctx, 5) == "{SEQ}/5"

    def test_negative_and_zero_sequence(self):
        ctx = ExpansionContext(equipment_type="Pump")
        assert expand("{SEQ:000}", ctx, 0) == "000"
        assert expand("{SEQ:000}", ctx, -5) == "-005"

    def test_expansion_is_deterministic(self):
        ctx = ExpansionContext(equipment_type="Heat Exchanger", area="B2")
        results = {expand("{AREA}-{TYPE}-{SEQ:0000}", ctx, 12) for _ in range(5)}
        assert results == {"B2-HX-0012"}

    def test_literal_text_only(self):
        ctx = ExpansionContext(equipment_type="Pump")
        assert expand("FIXED", ctx, 1) == "FIXED"


class TestTypeCodes:
    """Equipment type to tag code mapping."""

    @pytest.mark.parametrize("equipment_type,code", [
        ("Pump", "P"),
        ("pump", "P"),
        ("Heat Exchanger", "HX"),
        ("VALVE", "VLV"),
        ("Agitator", "AGI"),
        ("Mx", "MX"),
        ("", ""),
        (None, ""),
    ])
    def test_type_code(self, equipment_type, code):
        assert type_code(equipment_type) == code

    def test_overrides_win_over_defaults(self):
        assert type_code("Pump", {"Pump": "PU"}) == "PU"
        assert type_code("Agitator", {"Agitator": "AG"}) == "AG"


class TestHelpers:
    """Preview helpers around expansion."""

    def test_format_sequence(self):
        assert format_sequence(7, 3) == "007"
        assert format_sequence(7) == "7"
        assert format_sequence(-12, 4) == "-0012"

    def test_find_and_unknown_placeholders(self):
        pattern = "{AREA}-{UNIT}-{SEQ:000}-{TYPE:00}"
        assert find_placeholders(pattern) == ["{AREA}", "{UNIT}", "{SEQ:000}", "{TYPE:00}"]
        assert unknown_placeholders(pattern) == ["{UNIT}"]

    def test_example_tag(self):
        assert example_tag("{AREA}-{TYPE}-{SEQ:000}") == "A01-PMP-001"

    def test_default_pattern_per_tagging_mode(self):
        assert default_pattern(TaggingMode.KKS) == "={AREA}-{TYPE}-{SEQ:000}"
        assert default_pattern(TaggingMode.CUSTOM) == "{TYPE}-{SEQ:001}"
