"""Blockchain client for Metis log retrieval."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from typing import Protocol, runtime_checkable

from beartype import beartype
from web3 import Web3
from web3.types import FilterParams

from src.decoding.models import LogRecord
from src.utils.config import (
    BLOCKCHAIN_RETRY_ATTEMPTS,
    BLOCKCHAIN_RETRY_DELAY,
    BLOCKCHAIN_RPC_RATE_LIMIT,
    METIS_RPC_ENDPOINTS,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

# Provider messages that mean "ask for a smaller block range"
RANGE_LIMIT_KEYWORDS = (
    "block range",
    "range too large",
    "range is too large",
    "exceed maximum block range",
    "query returned more than",
    "too many results",
    "log response size exceeded",
    "limit exceeded",
)


@runtime_checkable
class LogRetrieval(Protocol):
    """Anything that can fetch contract logs for an inclusive block range."""

    def get_logs(
        self,
        contract_address: str,
        from_block: int,
        to_block: int,
        topics: Sequence[str] | None = None,
    ) -> list[LogRecord]: ...


def is_range_limit_error(error: BaseException) -> bool:
    """Check whether an RPC error is the provider rejecting the range size."""
    message = str(error).lower()
    return any(keyword in message for keyword in RANGE_LIMIT_KEYWORDS)


class MetisBlockchainClient:
    """Client for reading tournament logs from Metis via RPC."""

    def __init__(
        self,
        rpc_endpoints: Sequence[str] | None = None,
        rate_limit: float = BLOCKCHAIN_RPC_RATE_LIMIT,
        retry_attempts: int = BLOCKCHAIN_RETRY_ATTEMPTS,
        retry_delay: float = BLOCKCHAIN_RETRY_DELAY,
    ) -> None:
        """
        Initialize Metis blockchain client.

        Args:
            rpc_endpoints: List of RPC endpoints (uses default if None)
            rate_limit: Maximum requests per second
            retry_attempts: Attempts per request before giving up
            retry_delay: Initial backoff delay in seconds
        """
        self.rpc_endpoints = list(rpc_endpoints) if rpc_endpoints else METIS_RPC_ENDPOINTS.copy()
        self.rate_limit = rate_limit
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.current_endpoint_index = 0
        self.last_request_time = 0.0
        self._rate_limit_lock = threading.Lock()
        self._endpoint_lock = threading.Lock()
        self.web3: Web3 | None = None
        self._connect()

    def _connect(self) -> None:
        """Connect to a Metis RPC endpoint with fallback."""
        last_error: Exception | None = None

        for _ in range(len(self.rpc_endpoints)):
            endpoint = self.rpc_endpoints[self.current_endpoint_index]
            try:
                logger.info(f"Connecting to Metis RPC: {endpoint}")
                self.web3 = Web3(Web3.HTTPProvider(endpoint, request_kwargs={"timeout": 60}))

                # Test connection
                block_number = self.web3.eth.block_number
                logger.info(f"Connected successfully. Current block: {block_number}")
                return

            except Exception as e:
                last_error = e
                logger.warning(f"Failed to connect to {endpoint}: {e}")
                self.current_endpoint_index = (self.current_endpoint_index + 1) % len(self.rpc_endpoints)

        if last_error:
            raise ConnectionError(f"Failed to connect to any Metis RPC endpoint: {last_error}") from last_error

    def _wait_for_rate_limit(self) -> None:
        """Wait if necessary to respect rate limits (shared across worker threads)."""
        with self._rate_limit_lock:
            current_time = time.time()
            time_since_last = current_time - self.last_request_time
            min_interval = 1.0 / self.rate_limit

            if time_since_last < min_interval:
                time.sleep(min_interval - time_since_last)

            self.last_request_time = time.time()

    def _rotate_endpoint(self, failed_web3: Web3 | None) -> None:
        """
        Move to the next endpoint after a failure seen on failed_web3.

        Worker threads share the client; if another thread already replaced
        the failed connection, the current one is kept.
        """
        with self._endpoint_lock:
            if self.web3 is not failed_web3:
                return
            self.current_endpoint_index = (self.current_endpoint_index + 1) % len(self.rpc_endpoints)
            self._connect()

    def _retry_request(self, func: Callable[[], object]) -> object:
        """
        Execute a request with retry logic and fallback RPC.

        Range-limit errors are raised immediately: retrying the same range
        cannot succeed, the caller has to split it.

        Args:
            func: Zero-argument callable performing the request

        Returns:
            Result of func execution

        Raises:
            Exception: The last error once all retries fail
        """
        last_error: Exception | None = None
        delay = self.retry_delay

        for attempt in range(self.retry_attempts):
            web3 = self.web3
            try:
                self._wait_for_rate_limit()
                return func()

            except Exception as e:
                if is_range_limit_error(e):
                    raise
                last_error = e
                error_str = str(e).lower()

                is_connection_error = any(
                    keyword in error_str
                    for keyword in ["connection", "timeout", "timed out", "network", "refused"]
                )
                is_rate_limit = any(
                    keyword in error_str
                    for keyword in ["rate limit", "too many requests", "429"]
                )

                if is_connection_error or is_rate_limit:
                    logger.warning(
                        f"RPC error (attempt {attempt + 1}/{self.retry_attempts}): {e}. "
                        f"Trying next endpoint...",
                    )
                    self._rotate_endpoint(web3)
                    delay = self.retry_delay
                elif attempt < self.retry_attempts - 1:
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.retry_attempts}): {e}. "
                        f"Retrying in {delay}s...",
                    )
                    time.sleep(delay)
                    delay *= 2

        if last_error:
            raise last_error

        raise RuntimeError("Request failed but no error was captured")

    @beartype
    def get_current_block_number(self) -> int:
        """
        Get the current block number.

        Returns:
            Current block number
        """
        if not self.web3:
            raise RuntimeError("Not connected to RPC")

        return int(self._retry_request(lambda: self.web3.eth.block_number))

    @beartype
    def get_logs(
        self,
        contract_address: str,
        from_block: int,
        to_block: int,
        topics: Sequence[str] | None = None,
    ) -> list[LogRecord]:
        """
        Get all logs emitted by a contract in a block range.

        Args:
            contract_address: Emitting contract address
            from_block: Starting block number
            to_block: Ending block number (inclusive)
            topics: Optional topic filter (e.g., [topic0])

        Returns:
            Logs as LogRecord, in provider order
        """
        if not self.web3:
            raise RuntimeError("Not connected to RPC")

        filter_params: FilterParams = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": Web3.to_checksum_address(contract_address),
        }
        if topics:
            filter_params["topics"] = list(topics)

        def _get_logs() -> list[LogRecord]:
            try:
                receipts = self.web3.eth.get_logs(filter_params)
            except Exception as e:
                logger.debug(f"eth_getLogs failed for blocks {from_block}-{to_block}: {e}")
                raise
            logger.debug(f"Retrieved {len(receipts)} logs from blocks {from_block}-{to_block}")
            return [LogRecord.from_receipt(receipt) for receipt in receipts]

        return self._retry_request(_get_logs)

    def close(self) -> None:
        """Close the connection (no-op for HTTP provider, but kept for compatibility)."""
        logger.debug("Closing blockchain client connection")

    def __enter__(self) -> MetisBlockchainClient:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()
