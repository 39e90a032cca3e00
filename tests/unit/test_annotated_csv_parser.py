"""Tests for the annotated CSV stream parser."""

import pytest
from conftest import COLUMNS_LINE, HEADER, LIGHT_1, WIND_1, WIND_2, data_line

from tsretire.core.errors import (
    AnnotationCountError,
    BlankMeasurementError,
    BlankTimeError,
    ExitCode,
    UnknownHeaderLineError,
)
from tsretire.parsers.annotated_csv import (
    AnnotatedCSVParser,
    ColumnIndex,
    ParserState,
    normalize_line,
    split_fields,
)
from tsretire.parsers.base_parser import Parser


@pytest.fixture
def parser():
    return AnnotatedCSVParser()


class TestLineHelpers:
    """Tests for line normalisation and field splitting."""

    @pytest.mark.parametrize("raw", ["a,b\n", "a,b\r\n", "a,b"])
    def test_normalize_line_strips_any_terminator(self, raw):
        assert normalize_line(raw) == "a,b"

    def test_split_fields_honours_quotes(self):
        assert split_fields('a,"b,c",d') == ["a", "b,c", "d"]

    def test_column_index_skips_blank_names(self):
        index = ColumnIndex.from_fields(split_fields(COLUMNS_LINE))
        assert "" not in index
        assert index.positions["_time"] == 5
        assert index.positions["_measurement"] == 9

    def test_column_index_value_of_short_line_is_empty(self):
        index = ColumnIndex.from_fields(split_fields(COLUMNS_LINE))
        assert index.value(["", "", "0"], "_measurement") == ""


class TestWellFormedStreams:
    """Streams that parse without errors."""

    def test_parser_is_a_parser(self, parser):
        assert isinstance(parser, Parser)
        assert parser.SCHEMA_VERSION == "annotated-csv-v1"

    def test_yields_every_data_line_with_its_block(self, parser, sample_stream):
        pairs = list(parser.parse(sample_stream))

        assert [record.line for _, record in pairs] == [WIND_1, WIND_2, LIGHT_1]
        assert [record.measurement for _, record in pairs] == [
            "S_UpFgl_WindDirection",
            "S_UpFgl_WindDirection",
            "W_WBase_Light",
        ]
        assert {block.version for block, _ in pairs} == {1}
        assert pairs[0][0].lines == tuple(HEADER)

    def test_line_numbers_are_one_based_and_count_blank_lines(self, parser, sample_stream):
        records = [record for _, record in parser.parse(sample_stream)]
        assert [r.line_number for r in records] == [5, 6, 8]

    def test_record_period_is_year_month_of_time(self, parser, sample_stream):
        _, record = next(iter(parser.parse(sample_stream)))
        assert record.time == "2024-09-03T10:00:00Z"
        assert record.period == "2024-09"

    def test_crlf_terminated_lines(self, parser, sample_stream):
        crlf = [line + "\r\n" for line in sample_stream]
        records = [record for _, record in parser.parse(crlf)]
        assert [r.line for r in records] == [WIND_1, WIND_2, LIGHT_1]

    def test_blank_lines_inside_annotation_block_are_skipped(self, parser):
        stream = [HEADER[0], "", HEADER[1], "   ", HEADER[2], HEADER[3], WIND_1]
        records = [record for _, record in parser.parse(stream)]
        assert len(records) == 1
        assert parser.blocks_read == 1

    def test_new_block_mid_stream_bumps_version(self, parser):
        stream = [*HEADER, WIND_1, "", *HEADER, LIGHT_1]
        pairs = list(parser.parse(stream))

        assert [block.version for block, _ in pairs] == [1, 2]
        assert parser.blocks_read == 2
        assert parser.state is ParserState.DATA

    def test_header_only_stream_yields_nothing(self, parser):
        assert list(parser.parse(HEADER)) == []
        assert parser.blocks_read == 1

    def test_empty_stream_yields_nothing(self, parser):
        assert list(parser.parse([])) == []
        assert parser.state is ParserState.EXPECT_GROUP

    def test_counters_reset_between_streams(self, parser, sample_stream):
        list(parser.parse(sample_stream))
        list(parser.parse(sample_stream))
        assert parser.records_read == 3
        assert parser.blocks_read == 1

    def test_parse_file(self, parser, tmp_path, sample_stream):
        path = tmp_path / "export.csv"
        path.write_bytes(("\r\n".join(sample_stream) + "\r\n").encode("utf-8"))

        records = [record for _, record in parser.parse_file(path)]
        assert len(records) == 3

    def test_parse_file_missing(self, parser, tmp_path):
        with pytest.raises(FileNotFoundError):
            list(parser.parse_file(tmp_path / "missing.csv"))


class TestStructuralErrors:
    """Streams that violate the annotated layout."""

    def test_first_line_not_group_marker(self, parser):
        stream = [HEADER[1], HEADER[0], HEADER[2], HEADER[3], WIND_1]
        with pytest.raises(UnknownHeaderLineError) as exc_info:
            list(parser.parse(stream))

        assert exc_info.value.line_number == 1
        assert exc_info.value.line == HEADER[1]
        assert exc_info.value.exit_code == ExitCode.UNKNOWN_HEADER_LINE

    def test_markers_out_of_order(self, parser):
        stream = [HEADER[0], HEADER[2], HEADER[1], HEADER[3]]
        with pytest.raises(UnknownHeaderLineError) as exc_info:
            list(parser.parse(stream))
        assert exc_info.value.line_number == 2

    def test_fifth_consecutive_marker_line(self, parser):
        # After a complete block a marker line must start a new block
        stream = [*HEADER, "#datatype,string", WIND_1]
        with pytest.raises(UnknownHeaderLineError) as exc_info:
            list(parser.parse(stream))
        assert exc_info.value.line_number == 5

    @pytest.mark.parametrize("missing", ["_time", "_measurement"])
    def test_columns_line_without_required_column(self, parser, missing):
        columns = COLUMNS_LINE.replace(f",{missing},", ",other,")
        stream = [*HEADER[:3], columns, WIND_1]

        with pytest.raises(UnknownHeaderLineError) as exc_info:
            list(parser.parse(stream))
        assert exc_info.value.line_number == 4
        assert exc_info.value.line == columns

    def test_data_line_before_any_annotation(self, parser):
        with pytest.raises(AnnotationCountError) as exc_info:
            list(parser.parse([WIND_1]))

        error = exc_info.value
        assert error.line_number == 1
        assert error.annotation == []
        assert error.exit_code == ExitCode.ANNOTATION_COUNT
        assert "got 0 in the line #1" in error.message

    def test_data_line_inside_incomplete_block(self, parser):
        stream = [*HEADER, WIND_1, HEADER[0], HEADER[1], WIND_2]
        with pytest.raises(AnnotationCountError) as exc_info:
            list(parser.parse(stream))

        error = exc_info.value
        assert error.line_number == 8
        assert error.annotation == [HEADER[0], HEADER[1]]
        assert "exactly 4 records, but got 2" in error.message

    def test_blank_measurement_reports_line_number(self, parser):
        stream = [*HEADER, WIND_1, "", data_line("", "2024-09-03T10:00:00Z")]
        with pytest.raises(BlankMeasurementError) as exc_info:
            list(parser.parse(stream))

        assert exc_info.value.line_number == 7
        assert exc_info.value.message == "Measurement is empty in the line #7"
        assert exc_info.value.exit_code == ExitCode.BLANK_MEASUREMENT

    def test_blank_time(self, parser):
        stream = [*HEADER, data_line("W_WBase_Light", " ")]
        with pytest.raises(BlankTimeError) as exc_info:
            list(parser.parse(stream))

        assert exc_info.value.line_number == 5
        assert exc_info.value.exit_code == ExitCode.BLANK_TIME

    def test_records_before_error_are_yielded(self, parser):
        stream = [*HEADER, WIND_1, data_line("", "2024-09-03T10:00:00Z")]
        pairs = parser.parse(stream)

        _, first = next(pairs)
        assert first.line == WIND_1
        with pytest.raises(BlankMeasurementError):
            next(pairs)
