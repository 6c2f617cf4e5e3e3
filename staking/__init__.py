"""
BTC Staking - Taproot Staking Outputs

This package builds Taproot staking outputs with three spending paths
(timelock, unbonding, slashing), signs script-path spends and assembles
their witnesses.
"""

from .exceptions import (
    StakingError,
    ConfigurationError,
    InvalidThresholdError,
    EmptyKeySetError,
    KeySerializationError,
    InvalidLockTimeError,
    InvalidStakingAmountError,
    UnknownNetworkError,
    WitnessAssemblyError,
    SignatureCountMismatchError,
)
from .networks import NETWORKS, NetworkParams, get_network
from .keyset import KeySet, LockParams, sort_keys
from .templates import (
    StakingScripts,
    build_threshold_script,
    build_timelock_script,
    build_unbonding_script,
    build_slashing_script,
    build_staking_scripts,
)
from .output import (
    SpendInfo,
    StakingPath,
    StakingOutputDescriptor,
    build_staking_output,
    build_staking_info,
)
from .signing import (
    sign_tx_with_one_script_spend_input_from_tap_leaf,
    verify_tx_signature_from_tap_leaf,
)
from .witness import (
    create_timelock_path_witness,
    create_unbonding_path_witness,
    create_slashing_path_witness,
    order_signatures,
    serialize_witness,
)
from .config import StakingParams, ConfigurationManager, setup_logging

__version__ = "0.1.0"
__all__ = [
    # Exceptions
    "StakingError",
    "ConfigurationError",
    "InvalidThresholdError",
    "EmptyKeySetError",
    "KeySerializationError",
    "InvalidLockTimeError",
    "InvalidStakingAmountError",
    "UnknownNetworkError",
    "WitnessAssemblyError",
    "SignatureCountMismatchError",

    # Keys and parameters
    "NETWORKS",
    "NetworkParams",
    "get_network",
    "KeySet",
    "LockParams",
    "sort_keys",

    # Scripts
    "StakingScripts",
    "build_threshold_script",
    "build_timelock_script",
    "build_unbonding_script",
    "build_slashing_script",
    "build_staking_scripts",

    # Outputs
    "SpendInfo",
    "StakingPath",
    "StakingOutputDescriptor",
    "build_staking_output",
    "build_staking_info",

    # Signing and witnesses
    "sign_tx_with_one_script_spend_input_from_tap_leaf",
    "verify_tx_signature_from_tap_leaf",
    "create_timelock_path_witness",
    "create_unbonding_path_witness",
    "create_slashing_path_witness",
    "order_signatures",
    "serialize_witness",

    # Configuration
    "StakingParams",
    "ConfigurationManager",
    "setup_logging",
]
