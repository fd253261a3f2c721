"""Scatter-gather of read-only contract calls over one JSON-RPC batch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

from approval_risk.rpc import BatchReply, EthereumRPC


logger = logging.getLogger("approval_risk.batch")


@dataclass(frozen=True)
class ContractCall:
    """An eth_call against `to` with `data`, evaluated at `block`."""

    to: str
    data: str
    block: int

    def as_request(self):
        return ("eth_call", [{"to": self.to, "data": self.data}, hex(self.block)])


@dataclass(frozen=True)
class CallOutcome:
    """Result of one batched call: either `result` or `error` is set."""

    item: Any
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_batch(
    rpc: EthereumRPC,
    items: Iterable[Any],
    build_call: Callable[[Any], ContractCall],
    on_result: Optional[Callable[[Any, Optional[str], Optional[str]], None]] = None,
) -> List[CallOutcome]:
    """Issue one call per item as a single batch and wait for all of them.

    `on_result(item, error, result)` is invoked exactly once per item after
    the batch has completed. Per-item failures, including a `ValueError`
    raised by `build_call` for that item, are handed to the callback and
    never raised; if the whole HTTP batch fails every item reports that
    error. An empty `items` returns immediately without touching the network.
    """
    items = list(items)
    if not items:
        return []

    # Items whose call cannot be encoded fail on their own; the rest are sent.
    replies: List[Optional[BatchReply]] = [None] * len(items)
    calls = []
    for index, item in enumerate(items):
        try:
            calls.append((index, build_call(item)))
        except ValueError as exc:
            logger.debug(f"Could not build call for {item!r}: {exc}")
            replies[index] = (f"Could not build call: {exc}", None)

    if calls:
        try:
            sent = rpc.batch([call.as_request() for _, call in calls])
        except RuntimeError as exc:
            logger.warning(f"Batch of {len(calls)} calls failed: {exc}")
            sent = [(str(exc), None)] * len(calls)
        for (index, _), reply in zip(calls, sent):
            replies[index] = reply

    outcomes = [
        CallOutcome(item=item, result=result, error=error)
        for item, (error, result) in zip(
            items,
            (r if r is not None else ("No reply for request in batch", None) for r in replies),
        )
    ]
    if on_result is not None:
        for outcome in outcomes:
            on_result(outcome.item, outcome.error, outcome.result)
    return outcomes
