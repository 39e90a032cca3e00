"""Base parser class for record stream parsers.

This module provides an abstract base class that establishes a common interface
for the stream parsers of the retirement pipeline. Parsers are lazy: they
consume an iterable of raw lines and yield parsed items one at a time, so a
stream of any size is processed in constant memory.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any


class Parser(ABC):
    """Base class for all line-oriented stream parsers.

    Attributes:
        SCHEMA_VERSION: Version identifier for the parser's output schema.
                       Logged with every batch to track format changes.
    """

    SCHEMA_VERSION: str = "v1.0"

    @abstractmethod
    def parse(self, lines: Iterable[str]) -> Iterator[Any]:
        """Parse a stream of raw lines.

        This method must be implemented by all subclasses. Line terminators
        (``\\n`` or ``\\r\\n``) may or may not be present on the input lines.

        Args:
            lines: Raw input lines in stream order

        Yields:
            Parsed items in stream order

        Raises:
            StructuralError: If the stream violates the expected structure
        """

    def parse_file(self, file_path: Path) -> Iterator[Any]:
        """Parse a file lazily, keeping it open only while iterating.

        The file is opened without newline translation so that both line
        ending conventions reach the parser unchanged.

        Args:
            file_path: Path to the file to parse

        Yields:
            Parsed items in file order

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        with open(file_path, encoding="utf-8", newline="") as handle:
            yield from self.parse(handle)
