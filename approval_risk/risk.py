"""
risk.py
=======

Heuristic risk score for an approval:

    amount_at_risk = min(approved amount, owner balance)
    severity       = exchange rate * amount_at_risk
    likelihood     = reputation(token) * reputation(spender)
    risk           = severity * likelihood

Reputations come from an explicit map; addresses missing from it get a
baseline of 1, or 2 when their contract source is verified. A reputation of
0 zeroes the risk of every approval touching that address.

Nothing here performs I/O.
"""

from __future__ import annotations

from typing import Iterable, List, Mapping, Optional

from approval_risk.approvals import Approval


BASELINE_REPUTATION = 1.0
VERIFIED_REPUTATION = 2.0


def amount_at_risk(amount: int, balance: int) -> int:
    """An approval can never move more than the owner actually holds."""
    return min(amount, balance)


def reputation_of(
    address: str,
    reputations: Mapping[str, float],
    verified: Optional[Mapping[str, bool]] = None,
) -> float:
    if address in reputations:
        return reputations[address]
    if verified and verified.get(address):
        return VERIFIED_REPUTATION
    return BASELINE_REPUTATION


def compute_risk(
    approval: Approval,
    exchange_rate: float,
    reputations: Mapping[str, float],
    verified: Optional[Mapping[str, bool]] = None,
) -> float:
    at_risk = amount_at_risk(approval.amount, approval.balance or 0)
    severity = exchange_rate * at_risk
    likelihood = reputation_of(approval.contract, reputations, verified) * reputation_of(
        approval.spender, reputations, verified
    )
    return severity * likelihood


def score_approvals(
    approvals: Iterable[Approval],
    exchange_rates: Mapping[str, float],
    reputations: Optional[Mapping[str, float]] = None,
    verified: Optional[Mapping[str, bool]] = None,
) -> None:
    """Set `risk` on every approval. Contracts without a rate count as 0."""
    reputations = reputations or {}
    for approval in approvals:
        approval.risk = compute_risk(
            approval, exchange_rates.get(approval.contract, 0.0), reputations, verified
        )


def unscored_addresses(
    approvals: Iterable[Approval], reputations: Mapping[str, float]
) -> List[str]:
    """Tokens and spenders with no explicit reputation, in first-seen order."""
    missing = (
        address
        for approval in approvals
        for address in (approval.contract, approval.spender)
        if address not in reputations
    )
    return list(dict.fromkeys(missing))
