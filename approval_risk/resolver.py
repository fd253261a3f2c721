"""
resolver.py
===========

Enriches reconstructed approvals with live chain state. Every pass is one
JSON-RPC batch pinned to the same block, and every pass tolerates failures
of individual calls by falling back to a fixed value.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from approval_risk.abi import (
    DEFAULT_DECIMALS,
    MAX_DECIMALS,
    NATIVE_DECIMALS,
    SELECTORS,
    UNISWAP_V2_ROUTER,
    WETH,
    build_amounts_out_data,
    build_call_data,
    clean_address,
    parse_uint256,
    parse_uint256_array,
)
from approval_risk.approvals import Approval
from approval_risk.batch import ContractCall, run_batch
from approval_risk.rpc import EthereumRPC


logger = logging.getLogger("approval_risk.resolver")


def distinct_contracts(approvals: Iterable[Approval]) -> List[str]:
    """Contracts in first-seen order, each once."""
    return list(dict.fromkeys(a.contract for a in approvals))


def resolve_allowances(
    rpc: EthereumRPC, owner: str, approvals: List[Approval], block: int
) -> None:
    """Set `allowance` on each approval, or `allowance_error` if the call fails."""

    def build(approval: Approval) -> ContractCall:
        data = build_call_data(
            SELECTORS["allowance"], clean_address(owner), clean_address(approval.spender)
        )
        return ContractCall(approval.contract, data, block)

    def handle(approval: Approval, error: Optional[str], result: Optional[str]) -> None:
        if error is None:
            try:
                approval.allowance = parse_uint256(result)
                approval.allowance_error = False
                return
            except ValueError as exc:
                error = str(exc)
        logger.warning(
            f"Failed to fetch allowance for token {approval.contract}, "
            f"spender {approval.spender}: {error}"
        )
        approval.allowance = None
        approval.allowance_error = True

    run_batch(rpc, approvals, build, handle)


def resolve_balances(
    rpc: EthereumRPC, owner: str, approvals: List[Approval], block: int
) -> None:
    """Set the owner's token `balance` on each approval.

    A failed call is recorded as a zero balance. That assumes no exposure,
    which can hide risk when the call failed for some other reason.
    """

    def build(approval: Approval) -> ContractCall:
        data = build_call_data(SELECTORS["balanceOf"], clean_address(owner))
        return ContractCall(approval.contract, data, block)

    def handle(approval: Approval, error: Optional[str], result: Optional[str]) -> None:
        if error is None:
            try:
                approval.balance = parse_uint256(result)
                return
            except ValueError as exc:
                error = str(exc)
        logger.debug(f"Balance of {approval.contract} unavailable ({error}); using 0")
        approval.balance = 0

    run_batch(rpc, approvals, build, handle)


def resolve_decimals(
    rpc: EthereumRPC, contracts: Iterable[str], block: int
) -> Dict[str, int]:
    """Return decimals per contract, defaulting to 18 where the call fails."""
    decimals: Dict[str, int] = {}

    def handle(contract: str, error: Optional[str], result: Optional[str]) -> None:
        if error is None:
            try:
                value = parse_uint256(result)
                if value > MAX_DECIMALS:
                    raise ValueError(f"decimals() returned {value}, too large for a uint256 unit")
                decimals[contract] = value
                return
            except ValueError as exc:
                error = str(exc)
        logger.debug(
            f"Decimals of {contract} unavailable ({error}); using {DEFAULT_DECIMALS}"
        )
        decimals[contract] = DEFAULT_DECIMALS

    run_batch(
        rpc,
        contracts,
        lambda contract: ContractCall(contract, SELECTORS["decimals"], block),
        handle,
    )
    return decimals


def resolve_exchange_rates(
    rpc: EthereumRPC,
    contracts: Iterable[str],
    decimals: Dict[str, int],
    block: int,
    router: str = UNISWAP_V2_ROUTER,
    weth: str = WETH,
) -> Dict[str, float]:
    """Return the native-currency value of one base unit of each token.

    The router is asked how much WETH one whole token (10**decimals base
    units) buys along the path [token, WETH]. Tokens the router cannot quote
    get a rate of 0. WETH itself is worth exactly one wei per base unit.
    """
    weth = weth.lower()
    rates: Dict[str, float] = {}
    quoted: List[str] = []
    for contract in contracts:
        if contract == weth:
            rates[contract] = 1 / 10 ** NATIVE_DECIMALS
        else:
            quoted.append(contract)

    def build(contract: str) -> ContractCall:
        unit = 10 ** decimals.get(contract, DEFAULT_DECIMALS)
        return ContractCall(router, build_amounts_out_data(unit, [contract, weth]), block)

    def handle(contract: str, error: Optional[str], result: Optional[str]) -> None:
        if error is None:
            try:
                amounts = parse_uint256_array(result)
                if not amounts:
                    raise ValueError("Router returned no amounts")
                unit_decimals = decimals.get(contract, DEFAULT_DECIMALS)
                rates[contract] = amounts[-1] / 10 ** (NATIVE_DECIMALS + unit_decimals)
                return
            except ValueError as exc:
                error = str(exc)
        logger.debug(f"No exchange rate for {contract} ({error}); using 0")
        rates[contract] = 0.0

    run_batch(rpc, quoted, build, handle)
    return rates
