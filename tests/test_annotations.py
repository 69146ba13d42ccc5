"""Tests for bracket-tag annotation parsing."""

from metamodel.parsing.annotations import (
    extract_type_name,
    parse_annotations,
    parse_computed,
    parse_constraints,
    parse_media,
    parse_type_annotations,
    parse_ui_flags,
    strip_tags,
)


class TestConstraints:
    def test_no_tags(self):
        """Text without tags yields default constraints."""
        constraints = parse_constraints("Plain description")
        assert not constraints.unique
        assert constraints.unique_key is None
        assert not constraints.index
        assert constraints.index_key is None

    def test_unique_and_groups(self):
        """UNIQUE, UKn, INDEX and IXn are recognized together."""
        constraints = parse_constraints("Serial [UNIQUE] [UK2] [index] [IX3]")
        assert constraints.unique
        assert constraints.unique_key == "UK2"
        assert constraints.index
        assert constraints.index_key == "IX3"

    def test_case_insensitive(self):
        """Tags match regardless of case."""
        assert parse_constraints("[unique]").unique
        assert parse_constraints("[uk1]").unique_key == "UK1"


class TestUIFlags:
    def test_absent(self):
        """No UI tags means no flags record."""
        assert parse_ui_flags("Just text") is None

    def test_label_not_confused_with_label2(self):
        """[LABEL2] does not set the primary label flag."""
        flags = parse_ui_flags("Name [LABEL2]")
        assert flags is not None
        assert flags.label2
        assert not flags.label

    def test_all_flags(self):
        """Every UI tag sets its own flag."""
        flags = parse_ui_flags("[LABEL] [READONLY] [HIDDEN] [DETAIL] [NOWRAP] [TRUNCATE=40]")
        assert flags.label
        assert flags.readonly
        assert flags.hidden
        assert flags.detail
        assert flags.nowrap
        assert flags.truncate == 40


class TestMedia:
    def test_size_units_are_1024_based(self):
        """Size units multiply by powers of 1024."""
        assert parse_media("[SIZE=2KB]").max_size == 2048
        assert parse_media("[MAXSIZE=1MB]").max_size == 1024 * 1024
        assert parse_media("[SIZE=500]").max_size == 500

    def test_fractional_size_is_floored(self):
        """Fractional sizes are floored to whole bytes."""
        assert parse_media("[SIZE=1.5KB]").max_size == 1536
        assert parse_media("[SIZE=0.3KB]").max_size == 307

    def test_dimension(self):
        """DIMENSION=WxH sets width and height."""
        media = parse_media("[DIMENSION=800x600]")
        assert media.max_width == 800
        assert media.max_height == 600

    def test_max_width_and_height(self):
        media = parse_media("[MAXWIDTH=1024] [MAXHEIGHT=768]")
        assert media.max_width == 1024
        assert media.max_height == 768

    def test_duration_units(self):
        """Durations convert to seconds."""
        assert parse_media("[DURATION=90sec]").max_duration == 90
        assert parse_media("[DURATION=2min]").max_duration == 120
        assert parse_media("[DURATION=1.5h]").max_duration == 5400

    def test_absent(self):
        assert parse_media("[LABEL]") is None


class TestComputed:
    def test_filter_condition(self):
        """A boolean condition is kept as the filter."""
        rule = parse_computed("[DAILY=Allocation[end_date=null].aircraft]")
        assert rule.schedule == "DAILY"
        assert rule.source_entity == "Allocation"
        assert rule.condition == "end_date=null"
        assert rule.target_field == "aircraft"
        assert rule.aggregate is None

    def test_aggregate_condition(self):
        """MAX(field) becomes an aggregate directive without a filter."""
        rule = parse_computed("[onchange=Reading[max(value)].engine]")
        assert rule.schedule == "ONCHANGE"
        assert rule.aggregate == "MAX"
        assert rule.aggregate_field == "value"
        assert rule.condition is None

    def test_absent(self):
        assert parse_computed("Total cycles") is None


class TestTypeAnnotations:
    def test_markdown_link(self):
        """A markdown link reduces to its text."""
        assert extract_type_name("[TailSign](../Types.md#tailsign)") == "TailSign"

    def test_default_implies_optional(self):
        """[DEFAULT=x] sets the default and makes the attribute optional."""
        info = parse_type_annotations("Status [DEFAULT=Active]")
        assert info.type_name == "Status"
        assert info.default == "Active"
        assert info.optional

    def test_optional(self):
        info = parse_type_annotations("int [OPTIONAL]")
        assert info.type_name == "int"
        assert info.default is None
        assert info.optional

    def test_plain_type(self):
        info = parse_type_annotations("string")
        assert info.type_name == "string"
        assert not info.optional


class TestCombined:
    def test_tags_co_occur(self):
        """Several families can annotate one field."""
        annotations = parse_annotations("Photo [UNIQUE] [HIDDEN] [SIZE=1MB] [CALCULATED]")
        assert annotations.constraints.unique
        assert annotations.ui.hidden
        assert annotations.media.max_size == 1024 * 1024
        assert annotations.calculated
        assert annotations.computed is None

    def test_empty_is_default(self):
        """No tags is a fully default state."""
        annotations = parse_annotations("")
        assert annotations.ui is None
        assert annotations.media is None
        assert annotations.computed is None
        assert not annotations.calculated

    def test_strip_tags(self):
        """Recognized tags are removed and whitespace collapsed."""
        assert strip_tags("Company name [LABEL] [UNIQUE] here") == "Company name here"
        assert strip_tags("Keep [UNKNOWN] tag") == "Keep [UNKNOWN] tag"
