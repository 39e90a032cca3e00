import sys
from pathlib import Path

# Ensure src/ is on sys.path for imports like `import tsretire.*`
PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_PATH = PROJECT_ROOT / "src"
if SRC_PATH.exists():
    sys.path.insert(0, str(SRC_PATH))

import pytest

from tsretire.core.errors import DeletionError
from tsretire.core.interfaces import (
    ArchiveTransport,
    ConfirmationChannel,
    ConfirmationResult,
    SourceStore,
)

GROUP_LINE = "#group,false,false,true,true,false,false,true,true,true,true"
DATATYPE_LINE = (
    "#datatype,string,long,dateTime:RFC3339,dateTime:RFC3339,dateTime:RFC3339,"
    "double,string,string,string,string"
)
DEFAULT_LINE = "#default,_result,,,,,,,,,"
COLUMNS_LINE = ",result,table,_start,_stop,_time,_value,RetDate,_field,_measurement,item"

HEADER = [GROUP_LINE, DATATYPE_LINE, DEFAULT_LINE, COLUMNS_LINE]


def data_line(measurement: str, time: str, value: str = "0", table: int = 0) -> str:
    return (
        f",,{table},2019-09-01T00:00:00Z,2024-10-01T00:00:00Z,{time},{value},"
        f"2024-09,value,{measurement},{measurement}"
    )


WIND_1 = data_line("S_UpFgl_WindDirection", "2024-09-03T10:00:00Z", "182.5")
WIND_2 = data_line("S_UpFgl_WindDirection", "2024-09-03T10:05:00Z", "190")
LIGHT_1 = data_line("W_WBase_Light", "2024-09-11T22:47:59.218Z", "0", table=1)


@pytest.fixture
def header_lines():
    """The four lines of the sample annotation block."""
    return list(HEADER)


@pytest.fixture
def sample_stream():
    """One annotation block, two wind direction points and one light point."""
    return [*HEADER, WIND_1, WIND_2, "", LIGHT_1]


class FakeSource(SourceStore):
    """In-memory source store recording every delete request."""

    def __init__(self, lines=(), fail_delete: str | None = None, fail_query=None):
        self.lines = list(lines)
        self.fail_delete = fail_delete
        self.fail_query = fail_query
        self.queries: list[str] = []
        self.deletes: list[tuple[str, str, str]] = []
        self.closed = False

    def query_retired(self, period):
        self.queries.append(period)
        if self.fail_query is not None:
            raise self.fail_query
        yield from self.lines

    def predicate(self, period):
        return f'RetDate="{period}"'

    def delete_retired(self, period, start, stop):
        self.deletes.append((period, start, stop))
        if self.fail_delete is not None:
            raise DeletionError(self.fail_delete)

    def close(self):
        self.closed = True


class FakeTransport(ArchiveTransport):
    """Archive transport keeping copies of the pushed files."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.pushed: dict[str, bytes] = {}
        self.calls = 0

    @property
    def target(self):
        return "rsync://archive.test:/retired/"

    def push(self, files):
        self.calls += 1
        if self.error is not None:
            raise self.error
        for path in files:
            self.pushed[path.name] = path.read_bytes()


class FakeChannel(ConfirmationChannel):
    """Confirmation channel answering with a preset result."""

    def __init__(self, result: ConfirmationResult | None = None, open_error=None, wait_error=None):
        self.result = result or ConfirmationResult.committed()
        self.open_error = open_error
        self.wait_error = wait_error
        self.events: list[str] = []
        self.timeouts: list[float] = []

    def open(self):
        self.events.append("open")
        if self.open_error is not None:
            raise self.open_error

    def wait(self, timeout):
        self.events.append("wait")
        self.timeouts.append(timeout)
        if self.wait_error is not None:
            raise self.wait_error
        return self.result

    def close(self):
        self.events.append("close")


@pytest.fixture
def fake_source():
    return FakeSource


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def fake_channel():
    return FakeChannel
