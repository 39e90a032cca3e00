"""InfluxDB v2 source store over the HTTP API.

Retired points are selected by their retirement tag:

    from(bucket: "autogen")
      |> range(start: -5y)
      |> filter(fn: (r) => r["RetDate"] == "2024-09")

The response is requested as annotated CSV (``#group``, ``#datatype`` and
``#default`` annotations plus the header row), the same shape ``influx query
--raw`` prints, and streamed line by line.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from tsretire.core.config import InfluxConfig
from tsretire.core.errors import DeletionError, SourceQueryError
from tsretire.core.interfaces import SourceStore
from tsretire.core.logging import get_logger

logger = get_logger(__name__)

QUERY_PATH = "/api/v2/query"
DELETE_PATH = "/api/v2/delete"

ANNOTATED_CSV_DIALECT = {
    "header": True,
    "delimiter": ",",
    "annotations": ["group", "datatype", "default"],
}


class InfluxSourceStore(SourceStore):
    """Reads and deletes retired points in an InfluxDB v2 bucket.

    Attributes:
        org: Organisation owning the bucket
        bucket: Bucket holding the live points
        retirement_tag: Tag carrying the retirement period
        query_range_start: Flux range start covering the retention horizon

    Example:
        >>> store = InfluxSourceStore.from_config(get_config().influx)
        >>> for line in store.query_retired("2024-09"):
        ...     print(line)
    """

    def __init__(
        self,
        url: str,
        org: str,
        bucket: str,
        token: str | None = None,
        retirement_tag: str = "RetDate",
        query_range_start: str = "-5y",
        timeout_seconds: float = 300.0,
        retry_attempts: int = 3,
        retry_wait_seconds: float = 1.0,
        client: httpx.Client | None = None,
    ):
        self.org = org
        self.bucket = bucket
        self.retirement_tag = retirement_tag
        self.query_range_start = query_range_start
        self.retry_attempts = retry_attempts
        self.retry_wait_seconds = retry_wait_seconds

        headers = {"Authorization": f"Token {token}"} if token else {}
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
        )

    @classmethod
    def from_config(cls, config: InfluxConfig) -> InfluxSourceStore:
        return cls(
            url=config.url,
            org=config.org,
            bucket=config.bucket,
            token=config.token,
            retirement_tag=config.retirement_tag,
            query_range_start=config.query_range_start,
            timeout_seconds=config.timeout_seconds,
            retry_attempts=config.retry_attempts,
        )

    def build_query(self, period: str) -> str:
        """Flux query selecting every point tagged with ``period``."""
        # Relative range start: explicit dates were misinterpreted by influx
        return (
            f'from(bucket: "{self.bucket}")\n'
            f"  |> range(start: {self.query_range_start})\n"
            f'  |> filter(fn: (r) => r["{self.retirement_tag}"] == "{period}")'
        )

    def predicate(self, period: str) -> str:
        return f'{self.retirement_tag}="{period}"'

    def query_retired(self, period: str) -> Iterator[str]:
        """Stream the annotated CSV lines of the retired points.

        Raises:
            SourceQueryError: On HTTP errors or an error status
        """
        body: dict[str, Any] = {
            "query": self.build_query(period),
            "type": "flux",
            "dialect": ANNOTATED_CSV_DIALECT,
        }
        logger.info("querying_retired_points", bucket=self.bucket, period=period)

        try:
            with self._client.stream(
                "POST",
                QUERY_PATH,
                params={"org": self.org},
                json=body,
                headers={"Accept": "application/csv"},
            ) as response:
                if response.status_code >= 400:
                    response.read()
                    raise SourceQueryError(
                        f"Can't extract retired points from InfluxDB "
                        f"({response.status_code}): {response.text.strip()}"
                    )
                yield from response.iter_lines()
        except httpx.HTTPError as e:
            raise SourceQueryError(f"Can't extract retired points from InfluxDB: {e}") from e

    def delete_retired(self, period: str, start: str, stop: str) -> None:
        """Delete the retired points; transport errors are retried.

        Raises:
            DeletionError: If InfluxDB is unreachable or refuses the delete
        """
        body = {"start": start, "stop": stop, "predicate": self.predicate(period)}

        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(multiplier=self.retry_wait_seconds, max=10),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "delete_retry",
                            attempt=attempt.retry_state.attempt_number,
                            period=period,
                        )
                    response = self._client.post(
                        DELETE_PATH,
                        params={"org": self.org, "bucket": self.bucket},
                        json=body,
                    )
        except httpx.HTTPError as e:
            raise DeletionError(f"Can't delete retired points from InfluxDB: {e}") from e

        if response.status_code >= 300:
            raise DeletionError(
                f"Can't delete retired points from InfluxDB "
                f"({response.status_code}): {response.text.strip()}"
            )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
