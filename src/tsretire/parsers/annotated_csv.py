"""Parser for annotated CSV streams as returned by InfluxDB ``--raw`` queries.

An annotated stream consists of tables, each introduced by a 4-line
annotation block:

    #group,false,false,true,true,false,false,true,true,true,true
    #datatype,string,long,dateTime:RFC3339,dateTime:RFC3339,dateTime:RFC3339,long,string,string,string,string
    #default,_result,,,,,,,,,
    ,result,table,_start,_stop,_time,_value,RetDate,_field,_measurement,item

followed by data lines interpreted through the column names of the 4th line:

    ,,2,2023-03-12T18:39:35Z,2024-03-12T00:39:35Z,2024-03-11T22:47:59.218Z,0,2024-09,value,W_WBase_Light,W_WBase_Light

The parser is a small state machine:

    EXPECT_GROUP --#group--> EXPECT_DATATYPE --#datatype--> EXPECT_DEFAULT
        --#default--> EXPECT_COLUMNS --any line--> DATA --#group--> EXPECT_DATATYPE

Blank lines are skipped in every state. Any deviation raises a classified
``StructuralError`` carrying the 1-based line number and the raw line.
"""

from __future__ import annotations

import csv
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from tsretire.core.errors import (
    AnnotationCountError,
    BlankMeasurementError,
    BlankTimeError,
    UnknownHeaderLineError,
)
from tsretire.core.logging import get_logger
from tsretire.parsers.base_parser import Parser

logger = get_logger(__name__)

MEASUREMENT_COLUMN = "_measurement"
TIME_COLUMN = "_time"
ANNOTATION_SIZE = 4


class AnnotationRole(str, Enum):
    """Role of a line inside an annotation block, valued by its marker."""

    GROUP = "#group"
    DATATYPE = "#datatype"
    DEFAULT = "#default"
    COLUMNS = ""


class ParserState(Enum):
    """States of the annotated stream parser."""

    EXPECT_GROUP = "expect_group"
    EXPECT_DATATYPE = "expect_datatype"
    EXPECT_DEFAULT = "expect_default"
    EXPECT_COLUMNS = "expect_columns"
    DATA = "data"


# Marker line expected in a state, and the state reached once it is read
_MARKER_TRANSITIONS: dict[ParserState, tuple[AnnotationRole, ParserState]] = {
    ParserState.EXPECT_GROUP: (AnnotationRole.GROUP, ParserState.EXPECT_DATATYPE),
    ParserState.DATA: (AnnotationRole.GROUP, ParserState.EXPECT_DATATYPE),
    ParserState.EXPECT_DATATYPE: (AnnotationRole.DATATYPE, ParserState.EXPECT_DEFAULT),
    ParserState.EXPECT_DEFAULT: (AnnotationRole.DEFAULT, ParserState.EXPECT_COLUMNS),
}


def normalize_line(raw: str) -> str:
    """Strip the line terminator, whichever convention it uses."""
    return raw.rstrip("\r\n")


def is_blank(value: str) -> bool:
    return not value.strip()


def split_fields(line: str) -> list[str]:
    """Split one CSV line into fields, honouring quotes."""
    return next(csv.reader([line]), [])


@dataclass(frozen=True)
class ColumnIndex:
    """Mapping from column name to field position, built from a columns line."""

    positions: dict[str, int]

    @classmethod
    def from_fields(cls, fields: list[str]) -> ColumnIndex:
        return cls({name: i for i, name in enumerate(fields) if not is_blank(name)})

    def __contains__(self, name: object) -> bool:
        return name in self.positions

    def value(self, fields: list[str], name: str) -> str:
        """Value of column ``name`` in ``fields``; empty when the line is short."""
        position = self.positions.get(name)
        if position is None or position >= len(fields):
            return ""
        return fields[position]


@dataclass(frozen=True)
class AnnotationBlock:
    """A complete 4-line annotation block.

    Attributes:
        lines: The raw group, datatype, default and columns lines
        columns: Column index derived from the columns line
        version: Sequence number of the block within its stream (1-based)
    """

    lines: tuple[str, str, str, str]
    columns: ColumnIndex
    version: int


@dataclass(frozen=True)
class DataRecord:
    """One data line interpreted through the live annotation block."""

    line_number: int
    line: str
    measurement: str
    time: str
    fields: tuple[str, ...]

    @property
    def period(self) -> str:
        """Year-month truncation of the record time (``YYYY-MM``)."""
        return self.time[:7]


class AnnotatedCSVParser(Parser):
    """State machine parser for annotated CSV record streams.

    Yields ``(AnnotationBlock, DataRecord)`` pairs; the block is the one live
    when the record was read. A new block version signals a schema change to
    consumers.

    Example:
        >>> parser = AnnotatedCSVParser()
        >>> for block, record in parser.parse(lines):
        ...     print(block.version, record.measurement, record.period)
    """

    SCHEMA_VERSION = "annotated-csv-v1"

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self.state = ParserState.EXPECT_GROUP
        self._pending: list[str] = []
        self._block: AnnotationBlock | None = None
        self.blocks_read = 0
        self.records_read = 0
        self.lines_read = 0

    def parse(self, lines: Iterable[str]) -> Iterator[tuple[AnnotationBlock, DataRecord]]:
        """Parse an annotated stream lazily.

        Args:
            lines: Raw stream lines, with or without terminators

        Yields:
            ``(AnnotationBlock, DataRecord)`` pairs in stream order

        Raises:
            UnknownHeaderLineError: Annotation line out of shape
            AnnotationCountError: Data line without a complete annotation
            BlankMeasurementError: Data line with a blank measurement
            BlankTimeError: Data line with a blank time
        """
        self._reset()

        for line_number, raw in enumerate(lines, start=1):
            self.lines_read = line_number
            line = normalize_line(raw)
            if is_blank(line):
                continue

            fields = split_fields(line)

            if self.state is ParserState.EXPECT_COLUMNS:
                self._read_columns(line, fields, line_number)
            elif line.startswith("#"):
                self._read_marker(line, fields, line_number)
            else:
                record = self._read_record(line, fields, line_number)
                self.records_read += 1
                yield self._block, record  # type: ignore[misc]

        logger.debug(
            "stream_parsed",
            lines=self.lines_read,
            blocks=self.blocks_read,
            records=self.records_read,
            final_state=self.state.value,
        )

    def _read_marker(self, line: str, fields: list[str], line_number: int) -> None:
        role, next_state = _MARKER_TRANSITIONS[self.state]
        if self.state in (ParserState.EXPECT_GROUP, ParserState.DATA):
            # A new block starts: the previous one is no longer live
            self._pending = []
            self._block = None

        if fields[0] != role.value:
            raise UnknownHeaderLineError(
                f"Unknown header line #{line_number}: expected {role.value}",
                line_number,
                line,
            )

        self._pending.append(line)
        self.state = next_state

    def _read_columns(self, line: str, fields: list[str], line_number: int) -> None:
        columns = ColumnIndex.from_fields(fields)
        if MEASUREMENT_COLUMN not in columns or TIME_COLUMN not in columns:
            raise UnknownHeaderLineError(
                f"Unknown header line #{line_number}: "
                f"columns {MEASUREMENT_COLUMN} and {TIME_COLUMN} are required",
                line_number,
                line,
            )

        self._pending.append(line)
        self.blocks_read += 1
        self._block = AnnotationBlock(
            lines=tuple(self._pending),  # type: ignore[arg-type]
            columns=columns,
            version=self.blocks_read,
        )
        self._pending = []
        self.state = ParserState.DATA

    def _read_record(self, line: str, fields: list[str], line_number: int) -> DataRecord:
        if self._block is None:
            raise AnnotationCountError(
                f"Annotation should have exactly {ANNOTATION_SIZE} records, "
                f"but got {len(self._pending)} in the line #{line_number}",
                line_number,
                line,
                annotation=list(self._pending),
            )

        columns = self._block.columns
        measurement = columns.value(fields, MEASUREMENT_COLUMN)
        if is_blank(measurement):
            raise BlankMeasurementError(
                f"Measurement is empty in the line #{line_number}", line_number, line
            )

        time = columns.value(fields, TIME_COLUMN)
        if is_blank(time):
            raise BlankTimeError(f"Time is empty in the line #{line_number}", line_number, line)

        return DataRecord(
            line_number=line_number,
            line=line,
            measurement=measurement,
            time=time,
            fields=tuple(fields),
        )
