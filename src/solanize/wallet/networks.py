"""Cluster definitions for supported Solana networks."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Network:
    """A Solana cluster."""

    name: str
    rpc_url: str
    native_symbol: str = "SOL"


NETWORKS: dict[str, Network] = {
    "devnet": Network(name="devnet", rpc_url="https://api.devnet.solana.com"),
    "testnet": Network(name="testnet", rpc_url="https://api.testnet.solana.com"),
    "mainnet-beta": Network(
        name="mainnet-beta", rpc_url="https://api.mainnet-beta.solana.com"
    ),
}


def get_network(name: str) -> Network:
    """Get a network by name. Raises ``KeyError`` if not found."""
    if name not in NETWORKS:
        raise KeyError(
            f"Unknown network '{name}'. Available: {list_network_names()}"
        )
    return NETWORKS[name]


def list_network_names() -> list[str]:
    return list(NETWORKS.keys())


def resolve_rpc_url(network: str, override: str | None = None) -> str:
    """Return *override* if given, else the network's default RPC endpoint."""
    if override:
        return override
    return get_network(network).rpc_url


def explorer_tx_url(explorer_url: str, signature: str, network: str = "mainnet-beta") -> str:
    """Build a transaction link for the configured explorer."""
    url = f"{explorer_url.rstrip('/')}/tx/{signature}"
    if network != "mainnet-beta":
        url += f"?cluster={network}"
    return url
