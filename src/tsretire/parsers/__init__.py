"""Record stream parsers."""

from .annotated_csv import (
    AnnotatedCSVParser,
    AnnotationBlock,
    AnnotationRole,
    ColumnIndex,
    DataRecord,
    ParserState,
)
from .base_parser import Parser

__all__ = [
    "Parser",
    "AnnotatedCSVParser",
    "AnnotationBlock",
    "AnnotationRole",
    "ColumnIndex",
    "DataRecord",
    "ParserState",
]
