"""Subgraph client for paging tournament win summaries."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator, Mapping
from typing import Protocol, runtime_checkable

from beartype import beartype
from httpx import Client, HTTPError

from src.decoding.models import EventSummary
from src.utils.config import (
    SUBGRAPH_ENDPOINT,
    SUBGRAPH_PAGE_SIZE,
    SUBGRAPH_RATE_LIMIT,
    SUBGRAPH_RETRY_ATTEMPTS,
    SUBGRAPH_RETRY_DELAY,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

TOURNAMENT_WINS_QUERY = """
query GetTournamentWins($first: Int!, $skip: Int!) {
    tournamentWins(first: $first, skip: $skip, orderBy: timestamp, orderDirection: asc) {
        id
        timestamp
        tournamentId
        blockNumber
        player {
            id
        }
    }
}
"""


class SubgraphError(RuntimeError):
    """The subgraph kept failing after all retries."""


@runtime_checkable
class EventSummaryPager(Protocol):
    """Paged access to tournament win summaries."""

    def page(self, first: int, skip: int) -> list[EventSummary]: ...

    def iter_all(self, page_size: int = ...) -> Iterator[EventSummary]: ...


@beartype
def parse_win_summary(row: Mapping[str, object]) -> EventSummary | None:
    """
    Parse one tournamentWins row.

    Args:
        row: Raw row from the subgraph response

    Returns:
        EventSummary, or None when a required field is missing or malformed
    """
    try:
        player = row.get("player") or {}
        participant = str((player.get("id") if isinstance(player, Mapping) else player) or "").lower()
        summary = EventSummary(
            id=str(row["id"]),
            timestamp=int(row["timestamp"]),
            identifier=int(row["tournamentId"]),
            block_number=int(row["blockNumber"]),
            participant=participant,
        )
    except (KeyError, TypeError, ValueError):
        return None

    if not summary.participant:
        return None
    return summary


class SubgraphClient:
    """Client for the tournament leaderboard subgraph."""

    def __init__(
        self,
        endpoint: str = SUBGRAPH_ENDPOINT,
        rate_limit: float = SUBGRAPH_RATE_LIMIT,
        max_retries: int = SUBGRAPH_RETRY_ATTEMPTS,
        retry_delay: float = SUBGRAPH_RETRY_DELAY,
        http_client: Client | None = None,
    ) -> None:
        """
        Initialize the subgraph client.

        Args:
            endpoint: GraphQL endpoint URL
            rate_limit: Maximum requests per second
            max_retries: Attempts per page before raising SubgraphError
            retry_delay: Initial backoff delay in seconds
            http_client: Optional preconfigured httpx client
        """
        self.endpoint = endpoint
        self.rate_limit = rate_limit
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.last_request_time = 0.0
        self._rate_limit_lock = threading.Lock()
        self.client = http_client or Client(timeout=30.0)

    def _wait_for_rate_limit(self) -> None:
        """Wait if necessary to respect rate limits."""
        with self._rate_limit_lock:
            current_time = time.time()
            time_since_last = current_time - self.last_request_time
            min_interval = 1.0 / self.rate_limit

            if time_since_last < min_interval:
                time.sleep(min_interval - time_since_last)

            self.last_request_time = time.time()

    @beartype
    def query(self, graphql_query: str, variables: Mapping[str, object]) -> dict[str, object]:
        """
        Run a GraphQL query with retry and exponential backoff.

        Args:
            graphql_query: Query document
            variables: Query variables

        Returns:
            The response's ``data`` object

        Raises:
            SubgraphError: If the request keeps failing or returns GraphQL errors
        """
        payload = {"query": graphql_query, "variables": dict(variables)}
        headers = {"Content-Type": "application/json"}
        last_error = ""

        for attempt in range(self.max_retries):
            try:
                self._wait_for_rate_limit()
                response = self.client.post(self.endpoint, json=payload, headers=headers)
                response.raise_for_status()
                result = response.json()

                if not isinstance(result, dict):
                    last_error = f"Unexpected response type: {type(result).__name__}"
                elif result.get("errors"):
                    last_error = "; ".join(str(err) for err in result["errors"])
                elif isinstance(result.get("data"), dict):
                    return result["data"]
                else:
                    last_error = f"Unexpected response format: {str(result)[:300]}"

            except (HTTPError, ValueError) as e:
                last_error = str(e)

            if attempt < self.max_retries - 1:
                wait_time = self.retry_delay * (2**attempt)
                logger.warning(
                    f"Subgraph error (attempt {attempt + 1}/{self.max_retries}): {last_error}. "
                    f"Retrying in {wait_time}s...",
                )
                time.sleep(wait_time)

        raise SubgraphError(f"Subgraph query failed after {self.max_retries} attempts: {last_error}")

    def _fetch_rows(self, first: int, skip: int) -> list[object]:
        data = self.query(TOURNAMENT_WINS_QUERY, {"first": first, "skip": skip})
        rows = data.get("tournamentWins") or []
        return rows if isinstance(rows, list) else []

    @staticmethod
    def _parse_rows(rows: list[object]) -> list[EventSummary]:
        summaries: list[EventSummary] = []
        for row in rows:
            summary = parse_win_summary(row) if isinstance(row, Mapping) else None
            if summary is None:
                logger.warning(f"Skipping malformed tournamentWins row: {row}")
                continue
            summaries.append(summary)
        return summaries

    @beartype
    def page(self, first: int, skip: int) -> list[EventSummary]:
        """Fetch one page of tournament wins, oldest first."""
        return self._parse_rows(self._fetch_rows(first, skip))

    def iter_all(self, page_size: int = SUBGRAPH_PAGE_SIZE) -> Iterator[EventSummary]:
        """
        Page through every win until a short page signals the end.

        Exhaustion is judged on the raw row count, so dropping a malformed
        row never ends paging early.
        """
        skip = 0
        while True:
            rows = self._fetch_rows(page_size, skip)
            logger.debug(f"Subgraph page skip={skip} rows={len(rows)}")
            yield from self._parse_rows(rows)
            if len(rows) < page_size:
                return
            skip += page_size

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> SubgraphClient:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()
