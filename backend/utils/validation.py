import re
from typing import Optional


# Ethereum address regex
ETH_ADDRESS_REGEX = re.compile(r"^0x[a-fA-F0-9]{40}$")


def validate_eth_address(address: str) -> str:
    """Validate Ethereum address format"""
    if not address:
        raise ValueError("Address cannot be empty")

    address = address.strip()

    if not ETH_ADDRESS_REGEX.match(address):
        raise ValueError(f"Invalid Ethereum address format: {address}")

    return address


def normalize_address(address: Optional[str]) -> Optional[str]:
    """Lower-cased, validated address, or None for blank input."""
    if address is None or not address.strip():
        return None
    return validate_eth_address(address).lower()


def shorten_address(address: str) -> str:
    """``0x1234...abcd`` display form used when no profile is known."""
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"
