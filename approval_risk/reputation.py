"""
reputation.py
=============

Reputation weights for tokens and spenders, and an optional contract
verification lookup against the Etherscan API. Both are best effort inputs
to the risk score: a missing entry or a failed lookup simply leaves the
address at its baseline weight.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable

import requests

from approval_risk.abi import normalise_address


logger = logging.getLogger("approval_risk.reputation")

ETHERSCAN_API_URL = "https://api.etherscan.io/v2/api"
MAINNET_CHAIN_ID = 1


def parse_reputations(raw: Dict) -> Dict[str, float]:
    """Validate a mapping of address -> non-negative reputation."""
    if not isinstance(raw, dict):
        raise ValueError("Reputation data must be a JSON object of address -> number")
    reputations: Dict[str, float] = {}
    for address, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Reputation for {address} is not a number: {value!r}")
        if value < 0:
            raise ValueError(f"Reputation for {address} is negative: {value}")
        reputations[normalise_address(address)] = float(value)
    return reputations


def load_reputations(path: str) -> Dict[str, float]:
    """Load a reputation map from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    reputations = parse_reputations(raw)
    logger.info(f"Loaded {len(reputations)} reputation entries from {path}")
    return reputations


class EtherscanVerifier:
    """Checks whether contracts have verified source code on Etherscan."""

    def __init__(
        self,
        api_key: str,
        url: str = ETHERSCAN_API_URL,
        chain_id: int = MAINNET_CHAIN_ID,
        timeout: int = 20,
        max_workers: int = 4,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self.chain_id = chain_id
        self.timeout = timeout
        self.max_workers = max_workers
        self.session = requests.Session()

    def is_verified(self, address: str) -> bool:
        """Return True if Etherscan has a verified ABI for `address`.

        Errors of any kind are logged and reported as unverified.
        """
        params = {
            "chainid": self.chain_id,
            "module": "contract",
            "action": "getabi",
            "address": address,
            "apikey": self.api_key,
        }
        try:
            response = self.session.get(self.url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Verification lookup failed for {address}: {e}")
            return False
        if not isinstance(data, dict):
            logger.warning(f"Unexpected verification response for {address}: {data!r}")
            return False
        return str(data.get("status")) == "1"

    def verify_many(self, addresses: Iterable[str]) -> Dict[str, bool]:
        """Look up several addresses concurrently."""
        addresses = list(dict.fromkeys(addresses))
        if not addresses:
            return {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = list(executor.map(self.is_verified, addresses))
        verified = dict(zip(addresses, results))
        logger.info(
            f"{sum(results)} of {len(addresses)} unscored addresses are verified"
        )
        return verified
