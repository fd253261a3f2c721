"""
approvals.py
============

Reconstructs the current set of ERC-20 approvals granted by an owner from
the history of `Approval` event logs. A newer Approval event fully replaces
the amount of an older one for the same token and spender, so the current
state is the chronologically last event per (token, spender).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, NamedTuple, Optional

from approval_risk.abi import (
    APPROVAL_TOPIC,
    NULL_ADDRESS,
    address_topic,
    normalise_address,
    parse_quantity,
    unpad_address,
)
from approval_risk.rpc import EthereumRPC


logger = logging.getLogger("approval_risk.approvals")

# Fragments of provider error messages that mean "range too large, split it".
_RANGE_LIMIT_HINTS = ("more than", "limit", "too many", "range is too large")
# A rate-limited request fails the same way for any range size.
_RATE_LIMITED = "rpc http 429"


class ProtocolError(RuntimeError):
    """The data source returned something that violates the query contract."""


# ----------------------------------------------------------------------------
# Data model
# ----------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class ApprovalEvent:
    """One decoded Approval log. Ordering follows chain position."""

    block_number: int
    transaction_index: int
    log_index: int
    contract: str = field(compare=False)
    owner: str = field(compare=False)
    spender: str = field(compare=False)
    amount: int = field(compare=False)

    @property
    def key(self) -> "ApprovalKey":
        return ApprovalKey(self.contract, self.spender)


class ApprovalKey(NamedTuple):
    contract: str
    spender: str


@dataclass
class Approval:
    contract: str
    spender: str
    amount: int
    allowance: Optional[int] = None
    allowance_error: bool = False
    balance: Optional[int] = None
    risk: Optional[float] = None

    @property
    def key(self) -> ApprovalKey:
        return ApprovalKey(self.contract, self.spender)

    def as_dict(self) -> Dict:
        """Return a JSON-serialisable dict; integers become decimal strings."""
        record: Dict = {
            "contract": self.contract,
            "spender": self.spender,
            "amount": str(self.amount),
        }
        if self.allowance is not None:
            record["allowance"] = str(self.allowance)
        if self.allowance_error:
            record["allowanceError"] = True
        if self.balance is not None:
            record["balance"] = str(self.balance)
        if self.risk is not None:
            record["risk"] = self.risk
        return record


@dataclass
class ApprovalReport:
    owner: str
    approvals: List[Approval]

    def as_dict(self) -> Dict:
        return {
            "owner": self.owner,
            "approvals": [a.as_dict() for a in self.approvals],
        }


# ----------------------------------------------------------------------------
# Log retrieval and decoding
# ----------------------------------------------------------------------------

def get_approval_logs(
    rpc: EthereumRPC, owner: str, from_block: int, to_block: int
) -> List[dict]:
    """Return all Approval logs emitted for `owner` in the block range.

    The whole range is requested at once. If the provider refuses because
    the result would be too large, the range is split in half and each half
    fetched recursively. Any other error propagates: a partial log history
    cannot be used to reconstruct current state.
    """
    log_filter = {
        "fromBlock": hex(from_block),
        "toBlock": hex(to_block),
        "topics": [APPROVAL_TOPIC, address_topic(owner), None],
    }
    try:
        return rpc.get_logs(log_filter)
    except RuntimeError as exc:
        err_msg = str(exc).lower()
        if (
            from_block >= to_block
            or err_msg.startswith(_RATE_LIMITED)
            or not any(h in err_msg for h in _RANGE_LIMIT_HINTS)
        ):
            raise
        middle = (from_block + to_block) // 2
        logger.warning(
            f"Too many logs in blocks {from_block}-{to_block}; "
            f"splitting at block {middle}"
        )
        return get_approval_logs(rpc, owner, from_block, middle) + get_approval_logs(
            rpc, owner, middle + 1, to_block
        )


def decode_approval_log(log: dict) -> ApprovalEvent:
    """Decode an Approval log into an ApprovalEvent.

    Raises ProtocolError if the log does not have the Approval shape.
    """
    topics = log.get("topics") or []
    if len(topics) != 3 or topics[0].lower() != APPROVAL_TOPIC:
        raise ProtocolError(f"Unexpected non-Approval log in query result: {topics}")
    try:
        owner = unpad_address(topics[1])
        spender = unpad_address(topics[2])
    except ValueError as exc:
        raise ProtocolError(str(exc)) from exc

    data = log.get("data") or "0x"
    try:
        amount = int(data, 16) if data not in ("0x", "0X") else 0
    except ValueError as exc:
        raise ProtocolError(f"Malformed Approval data: {data}") from exc

    return ApprovalEvent(
        block_number=parse_quantity(log["blockNumber"]),
        transaction_index=parse_quantity(log["transactionIndex"]),
        log_index=parse_quantity(log["logIndex"]),
        contract=normalise_address(log["address"]),
        owner=owner,
        spender=spender,
        amount=amount,
    )


def latest_approvals(events: Iterable[ApprovalEvent], owner: str) -> List[Approval]:
    """Reduce events to the latest approval per (contract, spender).

    Events may arrive in any order. Approvals to the null address are
    dropped; zero-amount approvals are kept so that a token reporting a
    non-zero allowance after a zero approval still shows up.
    """
    owner = normalise_address(owner)
    latest: Dict[ApprovalKey, ApprovalEvent] = {}
    for event in sorted(events):
        if event.owner != owner:
            raise ProtocolError(
                f"Obtained an approval which is not from the requested owner: {event.owner}"
            )
        latest[event.key] = event
    return [
        Approval(contract=e.contract, spender=e.spender, amount=e.amount)
        for key, e in latest.items()
        if key.spender != NULL_ADDRESS
    ]


def reconstruct_approvals(
    rpc: EthereumRPC, owner: str, block_number: int
) -> List[Approval]:
    """Fetch and reduce all Approval logs for `owner` up to `block_number`."""
    if block_number < 1:
        return []
    logs = get_approval_logs(rpc, owner, 1, block_number)
    events = [decode_approval_log(log) for log in logs]
    approvals = latest_approvals(events, owner)
    logger.info(
        f"Found {len(events)} Approval logs, {len(approvals)} current approvals"
    )
    return approvals
