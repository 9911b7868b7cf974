"""Supported chains and block explorer links."""

from dataclasses import dataclass
from typing import Optional

from app.core.config import get_settings


@dataclass(frozen=True)
class ChainInfo:
    chain_id: int
    name: str
    explorer_base_url: Optional[str] = None
    testnet: bool = False


CHAINS = {
    31337: ChainInfo(31337, "Anvil Local", None, testnet=True),
    421614: ChainInfo(421614, "Arbitrum Sepolia", "https://sepolia.arbiscan.io", testnet=True),
    42161: ChainInfo(42161, "Arbitrum One", "https://arbiscan.io"),
}

EXPLORER_KINDS = ("address", "tx", "token")


def get_chain(chain_id: Optional[int] = None) -> Optional[ChainInfo]:
    if chain_id is None:
        chain_id = get_settings().chain_id
    return CHAINS.get(chain_id)


def explorer_url(kind: str, value: Optional[str], chain_id: Optional[int] = None) -> Optional[str]:
    """
    Block explorer link for an address, transaction or token.

    Returns None when there is nothing to link or the chain has no public
    explorer.
    """
    if not value or kind not in EXPLORER_KINDS:
        return None
    chain = get_chain(chain_id)
    if chain is None or not chain.explorer_base_url:
        return None
    return f"{chain.explorer_base_url}/{kind}/{value}"
