#!/usr/bin/env python3
"""
approval_risk.py
================

This tool reports the outstanding ERC-20 approvals granted by an Ethereum
wallet and, optionally, how much value each of them puts at risk. It
connects directly to a JSON-RPC endpoint via HTTP and requires only the
standard Python library and the `requests` package.

The script scans all `Approval` events emitted for the target address up to
a pinned block, keeps the latest approval per token and spender, and reads
the live allowance of each one in a single batched request. With `--risk`
it also reads balances, decimals and a WETH quote per token and combines
them with reputation weights into a numeric risk score. Results are printed
as JSON (or a table) and may optionally be exported to JSON or CSV.
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import os
import sys
from typing import Dict, List, Optional

from approval_risk.abi import SPENDER_LABELS, UNISWAP_V2_ROUTER, WETH, normalise_address
from approval_risk.approvals import Approval, ApprovalReport, reconstruct_approvals
from approval_risk.reputation import EtherscanVerifier, load_reputations
from approval_risk.resolver import (
    distinct_contracts,
    resolve_allowances,
    resolve_balances,
    resolve_decimals,
    resolve_exchange_rates,
)
from approval_risk.risk import score_approvals, unscored_addresses
from approval_risk.rpc import EthereumRPC


logger = logging.getLogger("approval_risk")

CSV_FIELDS = [
    "contract",
    "spender",
    "spender_label",
    "amount",
    "allowance",
    "allowanceError",
    "balance",
    "risk",
]


def get_approvals(
    rpc: EthereumRPC,
    address: str,
    calculate_risk: bool = False,
    reputations: Optional[Dict[str, float]] = None,
    verifier: Optional[EtherscanVerifier] = None,
    router: str = UNISWAP_V2_ROUTER,
    weth: str = WETH,
) -> ApprovalReport:
    """Return the current approvals of `address` with their live allowances.

    All chain reads are made as of the block height read at the start, so
    the result is a consistent snapshot.
    """
    block_number = rpc.block_number()
    logger.info(f"Reading approvals of {address} as of block {block_number}")
    owner = normalise_address(address)

    approvals = reconstruct_approvals(rpc, owner, block_number)
    resolve_allowances(rpc, owner, approvals, block_number)

    if calculate_risk:
        reputations = reputations or {}
        contracts = distinct_contracts(approvals)
        resolve_balances(rpc, owner, approvals, block_number)
        decimals = resolve_decimals(rpc, contracts, block_number)
        rates = resolve_exchange_rates(
            rpc, contracts, decimals, block_number, router=router, weth=weth
        )
        verified: Dict[str, bool] = {}
        if verifier is not None:
            verified = verifier.verify_many(unscored_addresses(approvals, reputations))
        score_approvals(approvals, rates, reputations, verified)

    return ApprovalReport(owner=address, approvals=approvals)


def print_table(report: ApprovalReport) -> None:
    """Print a simple table of approvals to stdout."""
    approvals = report.approvals
    if not approvals:
        print(f"No approvals found for {report.owner}.")
        return
    headers = ["Token", "Spender", "Approved", "Allowance", "Balance", "Risk"]
    rows: List[List[str]] = []
    for a in approvals:
        spender_label = SPENDER_LABELS.get(a.spender, "Unknown")
        allowance = "ERROR" if a.allowance_error else str(a.allowance)
        rows.append([
            a.contract,
            f"{spender_label}\n{a.spender}",
            str(a.amount),
            allowance,
            "" if a.balance is None else str(a.balance),
            "" if a.risk is None else f"{a.risk:.6g}",
        ])
    col_widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            for line in cell.split("\n"):
                col_widths[idx] = max(col_widths[idx], len(line))
    sep_line = "+" + "+".join("-" * (w + 2) for w in col_widths) + "+"
    print(sep_line)
    print("|" + "|".join(
        f" {headers[i].ljust(col_widths[i])} " for i in range(len(headers))
    ) + "|")
    print(sep_line)
    for row in rows:
        lines_split = [cell.split("\n") for cell in row]
        max_lines = max(len(lines) for lines in lines_split)
        for i in range(max_lines):
            print(
                "|"
                + "|".join(
                    f" {(lines[i] if i < len(lines) else '').ljust(col_widths[col])} "
                    for col, lines in enumerate(lines_split)
                )
                + "|"
            )
        print(sep_line)
    errors = sum(1 for a in approvals if a.allowance_error)
    live = sum(1 for a in approvals if a.allowance)
    print(
        f"Summary: {len(approvals)} approvals, {live} with remaining allowance, "
        f"{errors} allowance lookups failed."
    )


def _csv_record(approval: Approval) -> Dict:
    record = approval.as_dict()
    record["spender_label"] = SPENDER_LABELS.get(approval.spender, "")
    return record


def export_report(report: ApprovalReport, outfile: str) -> None:
    """Export the report to JSON or CSV based on file extension."""
    lower = outfile.lower()
    if lower.endswith(".json"):
        with open(outfile, "w", encoding="utf-8") as f:
            json.dump(report.as_dict(), f, indent=2)
    elif lower.endswith(".csv"):
        with open(outfile, "w", newline="", encoding="utf-8") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=CSV_FIELDS)
            writer.writeheader()
            writer.writerows(_csv_record(a) for a in report.approvals)
    else:
        raise ValueError("Unknown export format; use .json or .csv extension.")
    logger.info(f"Exported {len(report.approvals)} records to {outfile}")


def positive_int(value: str) -> int:
    """argparse type for options that must be 1 or more."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _default_rpc_url() -> Optional[str]:
    project_id = os.environ.get("INFURA_PROJECT_ID")
    if project_id:
        return f"https://mainnet.infura.io/v3/{project_id}"
    return None


def build_parser() -> argparse.ArgumentParser:
    default_rpc = _default_rpc_url()
    parser = argparse.ArgumentParser(
        description="List the ERC-20 approvals granted by a wallet and score their risk."
    )
    parser.add_argument(
        "--address",
        required=True,
        help="Wallet address to inspect (0x...).",
    )
    parser.add_argument(
        "--rpc",
        required=default_rpc is None,
        default=default_rpc,
        help="Ethereum JSON-RPC endpoint (default: Infura mainnet using $INFURA_PROJECT_ID).",
    )
    parser.add_argument(
        "--risk",
        action="store_true",
        help="Also read balances and exchange rates and compute a risk score.",
    )
    parser.add_argument(
        "--reputations",
        type=str,
        default=None,
        help="JSON file mapping addresses to reputation weights (used with --risk).",
    )
    parser.add_argument(
        "--etherscan-key",
        default=os.environ.get("ETHERSCAN_API_KEY"),
        help="Etherscan API key for contract verification lookups (default: $ETHERSCAN_API_KEY).",
    )
    parser.add_argument(
        "--router",
        default=UNISWAP_V2_ROUTER,
        help="Uniswap V2-style router used for exchange-rate quotes.",
    )
    parser.add_argument(
        "--weth",
        default=WETH,
        help="Wrapped native currency used as the quote token.",
    )
    parser.add_argument(
        "--batch-size",
        type=positive_int,
        default=None,
        help="Maximum number of calls per JSON-RPC batch (default: unlimited).",
    )
    parser.add_argument(
        "--table",
        action="store_true",
        help="Print a table instead of JSON.",
    )
    parser.add_argument(
        "--export",
        type=str,
        default=None,
        help="Export results to a file (.json or .csv).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )
    try:
        reputations = load_reputations(args.reputations) if args.reputations else {}
        verifier = None
        if args.risk and args.etherscan_key:
            verifier = EtherscanVerifier(args.etherscan_key)
        rpc = EthereumRPC(args.rpc, max_batch_size=args.batch_size)
        report = get_approvals(
            rpc,
            args.address,
            calculate_risk=args.risk,
            reputations=reputations,
            verifier=verifier,
            router=normalise_address(args.router),
            weth=normalise_address(args.weth),
        )
    except (RuntimeError, ValueError, OSError) as e:
        logger.error(str(e))
        sys.exit(1)

    if args.table:
        print_table(report)
    else:
        print(json.dumps(report.as_dict(), indent=1))
    if args.export:
        export_report(report, args.export)


if __name__ == "__main__":
    main()
