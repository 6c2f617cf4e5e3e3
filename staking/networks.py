"""
BTC Staking - Network Parameters

Bitcoin networks a staking output can be created for, and the address
prefix each one uses.
"""

from dataclasses import dataclass
from typing import Dict, Union

from staking.exceptions import UnknownNetworkError


@dataclass(frozen=True)
class NetworkParams:
    """Chain parameters relevant to staking outputs."""
    name: str
    bech32_hrp: str


MAINNET = NetworkParams(name="mainnet", bech32_hrp="bc")
TESTNET = NetworkParams(name="testnet", bech32_hrp="tb")
SIGNET = NetworkParams(name="signet", bech32_hrp="tb")
REGTEST = NetworkParams(name="regtest", bech32_hrp="bcrt")
SIMNET = NetworkParams(name="simnet", bech32_hrp="sb")

NETWORKS: Dict[str, NetworkParams] = {
    params.name: params for params in (MAINNET, TESTNET, SIGNET, REGTEST, SIMNET)
}


def get_network(network: Union[str, NetworkParams]) -> NetworkParams:
    """
    Resolve a network by name.

    Raises:
        UnknownNetworkError: If the name is not one of NETWORKS
    """
    if isinstance(network, NetworkParams):
        return network
    params = NETWORKS.get(str(network).lower())
    if params is None:
        raise UnknownNetworkError(str(network))
    return params
