"""
Tests for the zwo_parser module.

This module covers snippet parsing (element interpreters, error recovery and
block bookkeeping) and lenient parsing of complete ZWO documents.
"""

import pytest

from workout_model import CanonicalWorkout, TextEvent
from zwo_parser import (
    Block,
    ParseError,
    block_at_offset,
    build_block_timings,
    find_workout_body,
    load_zwo_file,
    parse_zwo_snippet,
    parse_zwo_xml_to_canonical_workout,
)


class TestEmptyInput:
    """Test inputs without any elements"""

    @pytest.mark.parametrize("text", ["", None, "   \n\t ", "<workout></workout>"])
    def test_empty_snippet(self, text):
        """Test that empty input parses to an empty result without errors"""
        result = parse_zwo_snippet(text)

        assert result.raw_segments == []
        assert result.text_events == []
        assert result.errors == []
        assert result.blocks == []
        assert result.ok

    def test_source_text_has_wrappers_blanked(self):
        """Test that source_text is the text the spans refer to"""
        text = "<workout>\n</workout>"
        result = parse_zwo_snippet(text)

        assert len(result.source_text) == len(text)
        assert result.source_text.strip() == ""


class TestSteadyState:
    """Test parsing of SteadyState elements"""

    def test_parse_steady_state(self):
        """Test a basic SteadyState element"""
        result = parse_zwo_snippet('<SteadyState Duration="300" Power="0.75" />')

        assert result.errors == []
        assert len(result.raw_segments) == 1
        assert result.raw_segments[0].to_list() == [5.0, 75.0, 75.0]

        block = result.blocks[0]
        assert block.kind == "steady"
        assert block.attrs == {"duration_sec": 300.0, "power_rel": 0.75, "cadence_rpm": None}
        assert block.segments[0].p_start_rel == 0.75
        assert block.segments[0].p_end_rel == 0.75

    def test_steady_state_with_cadence(self):
        """Test that cadence goes to the last slot of the stored tuple"""
        result = parse_zwo_snippet('<SteadyState Duration="60" Power="1.0" Cadence="90"/>')

        assert result.raw_segments[0].cadence_rpm == 90.0
        assert result.raw_segments[0].to_list() == [1.0, 100.0, 100.0, None, 90.0]

    def test_attribute_names_case_insensitive(self):
        """Test the case-insensitive attribute fallback"""
        result = parse_zwo_snippet('<SteadyState duration="120" POWER="0.5"/>')

        assert result.errors == []
        assert result.raw_segments[0].minutes == 2.0
        assert result.raw_segments[0].start_pct == 50.0

    @pytest.mark.parametrize("power", ["0", "-0.5", "abc", "inf", ""])
    def test_invalid_power(self, power):
        """Test that Power must be a positive finite number"""
        text = f'<SteadyState Duration="300" Power="{power}"/>'
        result = parse_zwo_snippet(text)

        assert result.raw_segments == []
        assert result.blocks == []
        assert len(result.errors) == 1
        assert "positive numeric Power" in result.errors[0].message

    def test_missing_duration(self):
        """Test that a missing Duration is reported"""
        result = parse_zwo_snippet('<SteadyState Power="0.8"/>')

        assert result.raw_segments == []
        assert "positive numeric Duration" in result.errors[0].message

    @pytest.mark.parametrize("duration", ["1_000", "1,000", "5s"])
    def test_non_decimal_duration(self, duration):
        """Test that digit separators and unit suffixes are not durations"""
        result = parse_zwo_snippet(f'<SteadyState Duration="{duration}" Power="0.8" />')

        assert result.raw_segments == []
        assert len(result.errors) == 1
        assert "positive numeric Duration" in result.errors[0].message

    def test_duration_cap_rejected(self):
        """Test that an absurd duration is rejected with the element's span"""
        text = '<SteadyState Duration="99999999" Power="0.8" />'
        result = parse_zwo_snippet(text)

        assert result.raw_segments == []
        assert len(result.errors) == 1
        error = result.errors[0]
        assert "unrealistically large" in error.message
        assert (error.start, error.end) == (0, len(text))

    def test_duration_at_cap_accepted(self):
        """Test that exactly twelve hours is allowed"""
        result = parse_zwo_snippet('<SteadyState Duration="43200" Power="0.5"/>')

        assert result.errors == []
        assert result.raw_segments[0].minutes == 720.0


class TestRamps:
    """Test parsing of Warmup and Cooldown elements"""

    def test_parse_warmup(self):
        """Test a Warmup ramp"""
        result = parse_zwo_snippet('<Warmup Duration="300" PowerLow="0.4" PowerHigh="0.7"/>')

        segment = result.raw_segments[0]
        assert segment.minutes == 5.0
        assert segment.start_pct == pytest.approx(40.0)
        assert segment.end_pct == pytest.approx(70.0)
        assert result.blocks[0].kind == "warmup"
        assert result.blocks[0].attrs["power_low_rel"] == 0.4
        assert result.blocks[0].attrs["power_high_rel"] == 0.7

    def test_parse_cooldown(self):
        """Test a Cooldown ramp running downward"""
        result = parse_zwo_snippet('<Cooldown Duration="180" PowerLow="0.6" PowerHigh="0.3"/>')

        segment = result.raw_segments[0]
        assert segment.start_pct == pytest.approx(60.0)
        assert segment.end_pct == pytest.approx(30.0)
        assert result.blocks[0].kind == "cooldown"

    def test_ramp_direction_comes_from_values(self):
        """Test that a Warmup may ramp down; values are kept as written"""
        result = parse_zwo_snippet('<Warmup Duration="60" PowerLow="0.9" PowerHigh="0.5"/>')

        assert result.errors == []
        assert result.blocks[0].kind == "warmup"
        assert result.raw_segments[0].start_pct > result.raw_segments[0].end_pct

    def test_ramp_with_cadence(self):
        """Test cadence on a ramp"""
        result = parse_zwo_snippet(
            '<Warmup Duration="60" PowerLow="0.5" PowerHigh="0.7" Cadence="95"/>'
        )
        assert result.raw_segments[0].cadence_rpm == 95.0

    def test_missing_power(self):
        """Test that both ramp powers are required"""
        result = parse_zwo_snippet('<Cooldown Duration="180" PowerLow="0.6"/>')

        assert result.raw_segments == []
        assert result.errors[0].message == (
            "Cooldown must have PowerLow and PowerHigh as numbers (relative FTP)."
        )


class TestFreeRide:
    """Test parsing of FreeRide elements"""

    def test_parse_free_ride(self):
        """Test that free ride always stores the nominal 50% power"""
        result = parse_zwo_snippet('<FreeRide Duration="600"/>')

        assert result.raw_segments[0].to_list() == [10.0, 50.0, 50.0, "freeride"]
        assert result.blocks[0].kind == "freeride"
        assert result.blocks[0].segments[0].is_free_ride is True
        assert result.blocks[0].attrs == {"duration_sec": 600.0}

    def test_free_ride_power_ignored(self):
        """Test the lower-case spelling and that extra power attributes are ignored"""
        result = parse_zwo_snippet('<Freeride Duration="60" Power="1.2" Cadence="100"/>')

        assert result.raw_segments[0].to_list() == [1.0, 50.0, 50.0, "freeride"]

    def test_free_ride_requires_duration(self):
        """Test that a FreeRide without duration is rejected"""
        result = parse_zwo_snippet("<FreeRide />")

        assert result.raw_segments == []
        assert "FreeRide must have a positive numeric Duration" in result.errors[0].message


class TestIntervals:
    """Test parsing of IntervalsT elements"""

    def test_parse_intervals_t(self):
        """Test expansion into alternating on/off segments"""
        result = parse_zwo_snippet(
            '<IntervalsT Repeat="3" OnDuration="60" OffDuration="60" OnPower="1.1" OffPower="0.55"/>'
        )

        assert result.errors == []
        assert len(result.raw_segments) == 6
        for on, off in zip(result.raw_segments[0::2], result.raw_segments[1::2]):
            assert on.minutes == 1.0
            assert on.start_pct == pytest.approx(110.0)
            assert off.start_pct == pytest.approx(55.0)

        block = result.blocks[0]
        assert block.kind == "intervals"
        assert block.segment_count == 2 * block.attrs["repeat"]
        assert block.attrs["repeat"] == 3
        assert block.attrs["on_duration_sec"] == 60.0
        assert block.attrs["off_power_rel"] == 0.55

    def test_intervals_with_cadence(self):
        """Test on and resting cadence targets"""
        result = parse_zwo_snippet(
            '<IntervalsT Repeat="2" OnDuration="30" OffDuration="30" OnPower="1.5" '
            'OffPower="0.5" Cadence="100" CadenceResting="85"/>'
        )

        cadences = [segment.cadence_rpm for segment in result.raw_segments]
        assert cadences == [100.0, 85.0, 100.0, 85.0]
        assert result.blocks[0].attrs["on_cadence_rpm"] == 100.0
        assert result.blocks[0].attrs["off_cadence_rpm"] == 85.0

    @pytest.mark.parametrize("repeat", ["0", "501", "2.5", "-1", "many"])
    def test_invalid_repeat(self, repeat):
        """Test that Repeat must be an integer between 1 and 500"""
        result = parse_zwo_snippet(
            f'<IntervalsT Repeat="{repeat}" OnDuration="60" OffDuration="60" OnPower="1" OffPower="0.5"/>'
        )

        assert result.raw_segments == []
        assert "Repeat as a positive integer" in result.errors[0].message

    def test_repeat_at_limit(self):
        """Test 500 repeats of a short interval"""
        result = parse_zwo_snippet(
            '<IntervalsT Repeat="500" OnDuration="10" OffDuration="10" OnPower="1" OffPower="0.5"/>'
        )

        assert result.errors == []
        assert len(result.raw_segments) == 1000

    def test_total_duration_cap(self):
        """Test that the whole block may not exceed 24 hours"""
        result = parse_zwo_snippet(
            '<IntervalsT Repeat="500" OnDuration="100" OffDuration="100" OnPower="1" OffPower="0.5"/>'
        )

        assert result.raw_segments == []
        assert result.errors[0].message == "IntervalsT total duration is unrealistically large."

    def test_invalid_off_duration(self):
        """Test the OffDuration label in the error message"""
        result = parse_zwo_snippet(
            '<IntervalsT Repeat="2" OnDuration="60" OffDuration="0" OnPower="1" OffPower="0.5"/>'
        )

        assert result.errors[0].message.startswith("IntervalsT OffDuration must have")

    def test_missing_power(self):
        """Test that both interval powers are required"""
        result = parse_zwo_snippet(
            '<IntervalsT Repeat="2" OnDuration="60" OffDuration="60" OnPower="1"/>'
        )

        assert "numeric OnPower and OffPower" in result.errors[0].message


class TestTextEvents:
    """Test parsing of TextEvent elements"""

    def test_parse_text_event(self):
        """Test a text event with the default duration"""
        result = parse_zwo_snippet('<textevent timeoffset="30" message="Go!"/>')

        assert result.errors == []
        assert result.text_events == [TextEvent(offset_sec=30, duration_sec=10, text="Go!")]
        assert result.raw_segments == []
        assert result.blocks == []

    def test_text_event_rounding_and_unescape(self):
        """Test rounding of offset and duration and entity decoding"""
        result = parse_zwo_snippet(
            '<TextEvent timeoffset="12.6" duration="0.2" message="a &amp; &quot;b&quot;"/>'
        )

        event = result.text_events[0]
        assert event.offset_sec == 13
        assert event.duration_sec == 1
        assert event.text == 'a & "b"'

    def test_text_event_without_message(self):
        """Test that a missing message becomes empty text"""
        result = parse_zwo_snippet('<textevent timeoffset="0"/>')
        assert result.text_events[0].text == ""

    @pytest.mark.parametrize("offset", ["-1", "soon"])
    def test_invalid_offset(self, offset):
        """Test that the offset must be a non-negative number"""
        result = parse_zwo_snippet(f'<textevent timeoffset="{offset}" message="x"/>')

        assert result.text_events == []
        assert "non-negative timeoffset" in result.errors[0].message

    def test_text_events_kept_in_document_order(self):
        """Test that events are not sorted while parsing"""
        result = parse_zwo_snippet(
            '<textevent timeoffset="90" message="b"/>\n<textevent timeoffset="10" message="a"/>'
        )
        assert [event.offset_sec for event in result.text_events] == [90, 10]


class TestErrorRecovery:
    """Test that errors are collected and parsing continues"""

    def test_text_between_elements(self):
        """Test that stray text is reported and both elements still parse"""
        text = '<SteadyState Duration="300" Power="0.75" />garbage<SteadyState Duration="60" Power="1.0" />'
        result = parse_zwo_snippet(text)

        assert len(result.errors) == 1
        error = result.errors[0]
        assert text[error.start:error.end] == "garbage"
        assert error.message.startswith("Unexpected text between elements")
        assert len(result.raw_segments) == 2

    def test_trailing_text(self):
        """Test text after the last element"""
        text = '<SteadyState Duration="60" Power="1"/>\noops'
        result = parse_zwo_snippet(text)

        assert result.errors[0].message == "Trailing text after last element."
        assert result.errors[0].end == len(text)
        assert len(result.raw_segments) == 1

    def test_text_only(self):
        """Test input with no elements at all"""
        result = parse_zwo_snippet("just words")

        assert result.errors == [ParseError(start=0, end=10, message="Trailing text after last element.")]

    def test_unknown_element(self):
        """Test an unsupported element name"""
        result = parse_zwo_snippet('<Ramp Duration="60"/>')

        assert result.errors[0].message == "Unknown element <Ramp>"
        assert result.raw_segments == []

    def test_malformed_element(self):
        """Test that an element with garbage attributes is dropped whole"""
        text = '<SteadyState Duration="300" Power=0.75 />'
        result = parse_zwo_snippet(text)

        assert result.raw_segments == []
        assert result.errors[0].message.startswith("Malformed element")
        assert (result.errors[0].start, result.errors[0].end) == (0, len(text))

    def test_errors_accumulate_in_document_order(self):
        """Test several problems reported at once"""
        text = (
            '<SteadyState Duration="0" Power="1"/>\n'
            'junk\n'
            '<Unknown/>\n'
            '<SteadyState Duration="60" Power="0.9"/>\n'
            '<IntervalsT Repeat="0"/>'
        )
        result = parse_zwo_snippet(text)

        assert len(result.errors) == 4
        starts = [error.start for error in result.errors]
        assert starts == sorted(starts)
        assert result.first_error is result.errors[0]
        assert len(result.raw_segments) == 1

    def test_offsets_valid_with_workout_wrapper(self):
        """Test that error offsets point into the caller's text"""
        text = (
            '<workout sportType="bike">\n'
            '  <SteadyState Duration="0" Power="1"/>\n'
            '</workout>'
        )
        result = parse_zwo_snippet(text)

        tag_start = text.index("<SteadyState")
        assert result.errors[0].start == tag_start
        assert text[result.errors[0].start:result.errors[0].end] == '<SteadyState Duration="0" Power="1"/>'


class TestBlocks:
    """Test block bookkeeping"""

    SNIPPET = (
        '<Warmup Duration="300" PowerLow="0.4" PowerHigh="0.7"/>\n'
        '<SteadyState Duration="600" Power="0.8"/>\n'
        '<textevent timeoffset="30" message="hi"/>\n'
        '<IntervalsT Repeat="2" OnDuration="60"\n'
        '  OffDuration="30" OnPower="1.2" OffPower="0.4"/>'
    )

    def test_block_positions(self):
        """Test spans, line numbers and segment indexes"""
        result = parse_zwo_snippet(self.SNIPPET)

        assert [block.kind for block in result.blocks] == ["warmup", "steady", "intervals"]
        steady = result.blocks[1]
        assert steady.line_start == 1
        assert steady.line_end == 1
        assert self.SNIPPET[steady.span_start:steady.span_end] == '<SteadyState Duration="600" Power="0.8"/>'

        intervals = result.blocks[2]
        assert intervals.line_start == 3
        assert intervals.line_end == 4
        assert intervals.segment_start == 2
        assert intervals.segment_count == 4
        assert intervals.duration_sec == 180.0

    def test_block_segments_match_raw_segments(self):
        """Test that block segments line up with the flat segment list"""
        result = parse_zwo_snippet(self.SNIPPET)

        total = sum(block.segment_count for block in result.blocks)
        assert total == len(result.raw_segments)

    def test_block_at_offset(self):
        """Test mapping a cursor offset to its block"""
        result = parse_zwo_snippet(self.SNIPPET)
        offset = self.SNIPPET.index("Power=\"0.8\"")

        assert block_at_offset(result.blocks, offset).kind == "steady"
        assert block_at_offset(result.blocks, self.SNIPPET.index("<textevent") + 3) is None

    def test_build_block_timings(self):
        """Test block start and end times in seconds"""
        result = parse_zwo_snippet(self.SNIPPET)
        timings, total = build_block_timings(result.blocks)

        assert timings == [(0, 300), (300, 900), (900, 1080)]
        assert total == 1080

    def test_build_block_timings_minimum_second(self):
        """Test that sub-second segments still take a second"""
        blocks = parse_zwo_snippet('<SteadyState Duration="0.2" Power="1"/>').blocks
        assert build_block_timings(blocks) == ([(0, 1)], 1)

    def test_blocks_are_fresh_per_call(self):
        """Test that parsing twice gives independent results"""
        first = parse_zwo_snippet(self.SNIPPET)
        second = parse_zwo_snippet(self.SNIPPET)

        first.blocks[0].attrs["duration_sec"] = 1
        assert second.blocks[0].attrs["duration_sec"] == 300.0
        assert isinstance(second.blocks[0], Block)


class TestParseZwoXml:
    """Test parsing of complete ZWO documents"""

    @pytest.mark.parametrize("text", ["", None])
    def test_empty_input_returns_none(self, text):
        """Test that empty input gives None"""
        assert parse_zwo_xml_to_canonical_workout(text) is None

    def test_bare_envelope(self):
        """Test that an empty document gives empty fields rather than an error"""
        workout = parse_zwo_xml_to_canonical_workout("<workout_file></workout_file>")

        assert workout == CanonicalWorkout()
        assert workout.source == ""
        assert workout.source_url == ""
        assert workout.workout_title == ""
        assert workout.description == ""
        assert workout.raw_segments == []

    def test_partial_document(self):
        """Test a truncated document"""
        workout = parse_zwo_xml_to_canonical_workout("<workout_file><name>Half")

        assert workout.workout_title == ""
        assert workout.raw_segments == []

    def test_metadata(self, test_files_dir):
        """Test author, name, CDATA description and source URL"""
        text = (test_files_dir / "test_metadata.zwo").read_text(encoding="utf-8")
        workout = parse_zwo_xml_to_canonical_workout(text)

        assert workout.source == "Coach & Co"
        assert workout.workout_title == "Over-Unders <Hard>"
        assert workout.description == "Stay <seated> & smooth. Literal ]]> survives."
        assert workout.source_url == "https://example.com/workouts?id=7&ref=zwo"
        assert [s.to_list() for s in workout.raw_segments] == [
            [5.0, 50.0, 50.0, "freeride"],
            [4.0, 95.0, 95.0, None, 90.0],
        ]
        assert workout.text_events == [TextEvent(offset_sec=310, duration_sec=15, text="Settle in")]

    def test_escaped_description_without_cdata(self):
        """Test that plain description text has entities decoded"""
        workout = parse_zwo_xml_to_canonical_workout(
            "<workout_file><description>Easy &amp; steady</description></workout_file>"
        )
        assert workout.description == "Easy & steady"

    def test_body_errors_are_dropped(self):
        """Test that invalid elements are skipped without failing the import"""
        workout = parse_zwo_xml_to_canonical_workout(
            '<workout_file><workout>'
            '<SteadyState Duration="60" Power="1"/> junk <Bogus/>'
            '</workout></workout_file>'
        )
        assert len(workout.raw_segments) == 1

    def test_workout_file_tag_not_taken_for_body(self):
        """Test that <workout_file> is not mistaken for the <workout> element"""
        text = (
            "<workout_file>\n"
            '<tags><tag name="OriginalURL:x"/></tags>\n'
            '<workout><SteadyState Duration="60" Power="1"/></workout>\n'
            "</workout_file>"
        )
        body, offset = find_workout_body(text)

        assert body == '<SteadyState Duration="60" Power="1"/>'
        assert text[offset:offset + len(body)] == body

    def test_find_workout_body_missing(self):
        """Test a document without a workout element"""
        assert find_workout_body("<workout_file/>") == ("", 0)


class TestFileBasedParsing:
    """Test parsing of actual ZWO files"""

    def test_parse_basic_workout(self, test_files_dir):
        """Test parsing of basic workout file"""
        workout = load_zwo_file(str(test_files_dir / "test_basic.zwo"))

        assert workout.workout_title == "Basic Test Workout"
        assert workout.description == "A simple workout for testing basic functionality"
        assert workout.source == "Test Author"
        assert workout.segment_count == 3
        assert workout.total_duration_sec == pytest.approx(1080)

    def test_parse_interval_workout(self, test_files_dir):
        """Test parsing of workout with intervals and text events"""
        workout = load_zwo_file(str(test_files_dir / "test_intervals.zwo"))

        assert workout.workout_title == "Interval Test Workout"
        # warmup + 3*2 intervals + steady + 5*2 intervals + cooldown
        assert workout.segment_count == 19
        assert [event.text for event in workout.text_events] == ["Let's go", "First set & go"]

    def test_parse_minimal_workout(self, test_files_dir):
        """Test parsing of minimal workout file"""
        workout = load_zwo_file(str(test_files_dir / "test_minimal.zwo"))

        assert workout.workout_title == "Minimal Workout"
        assert workout.description == ""
        assert workout.source == ""
        assert [s.to_list() for s in workout.raw_segments] == [[30.0, 65.0, 65.0]]

    def test_parse_empty_workout(self, test_files_dir):
        """Test parsing of workout with no segments"""
        workout = load_zwo_file(str(test_files_dir / "test_empty.zwo"))

        assert workout.workout_title == "Empty Workout"
        assert workout.description == "Workout with no segments"
        assert workout.raw_segments == []
        assert workout.total_duration_sec == 0

    def test_empty_file(self, tmp_path):
        """Test that an empty file gives an empty workout"""
        path = tmp_path / "empty.zwo"
        path.write_text("", encoding="utf-8")

        assert load_zwo_file(str(path)) == CanonicalWorkout()

    def test_file_not_found(self):
        """Test handling of non-existent file"""
        with pytest.raises(FileNotFoundError):
            load_zwo_file("non_existent_file.zwo")
