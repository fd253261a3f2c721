"""
rpc.py
======

A minimal JSON-RPC client for Ethereum nodes, with support for batched
requests so that many read-only calls cost a single round trip.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple

import requests


logger = logging.getLogger("approval_risk.rpc")

# (error message or None, result) for each request in a batch.
BatchReply = Tuple[Optional[str], Any]


class EthereumRPC:
    """A minimal JSON-RPC client for Ethereum nodes.

    This class provides a simple interface to send JSON-RPC requests to an
    Ethereum node using the requests library directly. See
    https://ethereum.org/en/developers/docs/apis/json-rpc/ for the list of
    supported methods.
    """

    def __init__(
        self, url: str, timeout: int = 30, max_batch_size: Optional[int] = None
    ) -> None:
        if max_batch_size is not None and max_batch_size < 1:
            raise ValueError(f"max_batch_size must be at least 1, got {max_batch_size}")
        self.url = url
        self.timeout = timeout
        self.max_batch_size = max_batch_size
        self.session = requests.Session()
        self._id_counter = 0

    def _next_id(self) -> int:
        self._id_counter += 1
        return self._id_counter

    def _post(self, payload):
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise RuntimeError(f"RPC connection error: {e}") from e
        if response.status_code != 200:
            raise RuntimeError(
                f"RPC HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise RuntimeError(f"RPC returned invalid JSON: {e}") from e

    def _rpc(self, method: str, params: list) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params,
        }
        data = self._post(payload)
        if "error" in data and data["error"]:
            raise RuntimeError(
                f"RPC error {data['error'].get('code')}: {data['error'].get('message')}"
            )
        return data["result"]

    def block_number(self) -> int:
        """Return the latest block number."""
        result = self._rpc("eth_blockNumber", [])
        return int(result, 16)

    def get_logs(self, log_filter: dict) -> List[dict]:
        """Return event logs matching the provided filter."""
        return self._rpc("eth_getLogs", [log_filter])

    def eth_call(self, to: str, data: str, block: Optional[int] = None) -> str:
        """Perform a call without creating a transaction and return raw hex data."""
        call_obj = {"to": to, "data": data}
        block_tag = hex(block) if block is not None else "latest"
        return self._rpc("eth_call", [call_obj, block_tag])

    def batch(self, calls: List[Tuple[str, list]]) -> List[BatchReply]:
        """Send several (method, params) requests as JSON-RPC batches.

        Returns one (error, result) pair per request, in request order. A
        failure of one request never affects the others. A transport failure
        raises RuntimeError when everything went in one HTTP batch. When
        `max_batch_size` splits the calls, a failed chunk reports the error
        on its own requests only.
        """
        if not calls:
            return []
        size = self.max_batch_size or len(calls)
        replies: List[BatchReply] = []
        for start in range(0, len(calls), size):
            chunk = calls[start:start + size]
            try:
                replies.extend(self._batch_chunk(chunk))
            except RuntimeError as exc:
                if size >= len(calls):
                    raise
                logger.warning(
                    f"Batch chunk of {len(chunk)} requests at offset {start} failed: {exc}"
                )
                replies.extend([(str(exc), None)] * len(chunk))
        return replies

    def _batch_chunk(self, calls: List[Tuple[str, list]]) -> List[BatchReply]:
        ids = [self._next_id() for _ in calls]
        payload = [
            {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
            for request_id, (method, params) in zip(ids, calls)
        ]
        logger.debug(f"Sending batch of {len(payload)} requests")
        data = self._post(payload)
        if not isinstance(data, list):
            # Some providers answer a rejected batch with a single error object.
            error = data.get("error") if isinstance(data, dict) else None
            message = error.get("message") if isinstance(error, dict) else data
            raise RuntimeError(f"RPC batch rejected: {message}")

        slots = {request_id: index for index, request_id in enumerate(ids)}
        replies: List[Optional[BatchReply]] = [None] * len(calls)
        for item in data:
            index = slots.get(item.get("id")) if isinstance(item, dict) else None
            if index is None:
                logger.debug(f"Ignoring batch reply with unknown id: {item!r}")
                continue
            error = item.get("error")
            if isinstance(error, dict):
                replies[index] = (
                    f"RPC error {error.get('code')}: {error.get('message')}",
                    None,
                )
            elif error:
                replies[index] = (f"RPC error: {error}", None)
            else:
                replies[index] = (None, item.get("result"))
        return [
            reply if reply is not None else ("No reply for request in batch", None)
            for reply in replies
        ]
