"""
abi.py
======

Constant tables and hand-rolled ABI helpers for the ERC-20 calls this tool
makes. Encoding is done directly on hex strings so the tool needs nothing
beyond `requests` to talk to a node.
"""

from __future__ import annotations

from typing import Dict, List


# ----------------------------------------------------------------------------
# Constant tables
# ----------------------------------------------------------------------------

# Precomputed Keccak-256 hashes of the canonical event signatures.
ERC20_TOPICS: Dict[str, str] = {
    "Approval": "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925",
    "Transfer": "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef",
}
APPROVAL_TOPIC = ERC20_TOPICS["Approval"]

# Function selectors, keccak(signature)[:4]. See
# https://docs.soliditylang.org/en/latest/abi-spec.html#function-selector
SELECTORS: Dict[str, str] = {
    "allowance": "0xdd62ed3e",      # allowance(address,address)
    "balanceOf": "0x70a08231",      # balanceOf(address)
    "decimals": "0x313ce567",       # decimals()
    "getAmountsOut": "0xd06ca61f",  # getAmountsOut(uint256,address[])
}

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
UNISWAP_V2_ROUTER = "0x7a250d5630b4cf539739df2c5dacab1e4afc886a"
NULL_ADDRESS = "0x" + "0" * 40

DEFAULT_DECIMALS = 18
# Largest exponent for which one whole token (10**decimals) fits in a uint256.
MAX_DECIMALS = 77
NATIVE_DECIMALS = 18

# Labels shown next to well-known spenders in table output (lower-case keys).
SPENDER_LABELS: Dict[str, str] = {
    "0x7a250d5630b4cf539739df2c5dacab1e4afc886a": "Uniswap V2 Router",
    "0xe592427a0aece92de3edee1f18e0157c05861564": "Uniswap V3 Router",
    "0x68b3465833fb72a70ecdf485e0e4c7bd8665fc45": "Uniswap V3 Router 2",
    "0xd9e1ce17f2641f24ae83637ab66a2cca9c378b9f": "SushiSwap Router",
    "0x1111111254fb6c44bac0bed2854e76f90643097d": "1inch Router",
    "0xdef1c0ded9bec7f1a1670819833240f027b25eff": "0x Exchange Proxy",
    "0x7d2768de32b0b80b7a3454c06bdac139dff81b6c": "Aave LendingPoolV2",
    "0x000000000000000000000000000000000000dead": "Burn Address",
}

_TOPIC_ADDRESS_PREFIX = "0x" + "0" * 24


# ----------------------------------------------------------------------------
# Encoding
# ----------------------------------------------------------------------------

def clean_address(addr: str) -> str:
    """Normalise an Ethereum address to lower-case without the 0x prefix."""
    if addr.startswith("0x") or addr.startswith("0X"):
        addr = addr[2:]
    return addr.lower()


def normalise_address(addr: str) -> str:
    """Return the address in lower-case with the 0x prefix."""
    return "0x" + clean_address(addr)


def pad_hex(value: str, length: int = 64) -> str:
    """Left pad a hex string (without 0x) with zeros to the specified length."""
    return value.rjust(length, "0")


def address_topic(addr: str) -> str:
    """Return the 32-byte topic word for an indexed address parameter."""
    return "0x" + pad_hex(clean_address(addr))


def encode_uint(value: int) -> str:
    if value < 0 or value >= 2 ** 256:
        raise ValueError(f"Value out of uint256 range: {value}")
    return pad_hex(format(value, "x"))


def build_call_data(function_selector: str, *args: str) -> str:
    """Construct call data for a function selector and static arguments.

    All arguments should be hex strings without the `0x` prefix. They will be
    left padded to 32 bytes (64 hex chars) as required by the ABI. The
    returned call data includes the 0x prefix.
    """
    encoded = function_selector[2:]
    for arg in args:
        encoded += pad_hex(arg)
    return "0x" + encoded


def build_amounts_out_data(amount_in: int, path: List[str]) -> str:
    """Call data for `getAmountsOut(uint256 amountIn, address[] path)`.

    The dynamic array goes in the tail: the head holds the amount and the
    byte offset of the array (two words, 0x40).
    """
    encoded = SELECTORS["getAmountsOut"][2:]
    encoded += encode_uint(amount_in)
    encoded += encode_uint(64)
    encoded += encode_uint(len(path))
    for addr in path:
        encoded += pad_hex(clean_address(addr))
    return "0x" + encoded


# ----------------------------------------------------------------------------
# Decoding
# ----------------------------------------------------------------------------

def _words(data: str) -> List[str]:
    if data.startswith("0x"):
        data = data[2:]
    if len(data) % 64:
        raise ValueError(f"Return data is not word aligned ({len(data)} hex chars)")
    return [data[i:i + 64] for i in range(0, len(data), 64)]


def parse_uint256(data: str) -> int:
    """Decode the first 32-byte word of an eth_call result.

    Raises ValueError on empty results, which is what a call to an address
    without code (or a reverting fallback) returns.
    """
    words = _words(data or "0x")
    if not words:
        raise ValueError("Empty return data")
    return int(words[0], 16)


def parse_uint256_array(data: str) -> List[int]:
    """Decode a single ABI-encoded `uint256[]` return value."""
    words = _words(data or "0x")
    if len(words) < 2:
        raise ValueError("Return data too short for a dynamic array")
    start = int(words[0], 16) // 32
    if start >= len(words):
        raise ValueError("Array offset points past the return data")
    length = int(words[start], 16)
    values = words[start + 1:start + 1 + length]
    if len(values) != length:
        raise ValueError(f"Array declares {length} items, found {len(values)}")
    return [int(word, 16) for word in values]


def parse_quantity(value) -> int:
    """Decode a JSON-RPC quantity (hex string, or int from some clients)."""
    if isinstance(value, int):
        return value
    return int(value, 16)


def unpad_address(topic: str) -> str:
    """Extract the address held in a 32-byte topic word.

    The upper 12 bytes of an address slot must be zero; anything else means
    the word does not hold an address.
    """
    topic = topic.lower()
    if len(topic) != 66 or not topic.startswith(_TOPIC_ADDRESS_PREFIX):
        raise ValueError(f"Not an address topic: {topic}")
    return "0x" + topic[-40:]
