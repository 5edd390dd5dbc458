from string import hexdigits

from web3 import Web3

from batchpay.errors import InvalidAddress

ZERO_ADDRESS = "0x" + "0" * 40


def is_valid_address(s) -> bool:
    """True for a 0x-prefixed 20-byte hex address. Mixed-case input must carry
    a valid EIP-55 checksum; all-lower / all-upper input is accepted as is."""
    if not isinstance(s, str) or len(s) != 42 or not s.startswith("0x"):
        return False
    body = s[2:]
    if not all(c in hexdigits for c in body):
        return False
    if body == body.lower() or body == body.upper():
        return True
    try:
        return Web3.is_checksum_address(s)
    except (TypeError, ValueError):
        return False


def require_address(s, index=None) -> str:
    if not is_valid_address(s):
        raise InvalidAddress(s, index)
    return Web3.to_checksum_address(s)


def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()
