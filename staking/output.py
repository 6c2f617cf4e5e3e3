"""
BTC Staking - Staking Output Descriptor

This module provides:
- StakingOutputDescriptor: the P2TR staking output together with the
  script tree it commits to
- SpendInfo: everything needed to spend one path (leaf script, control block,
  and the role keys in script order)
- build_staking_output / build_staking_info entry points
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Sequence, Tuple

from crypto.keys import KeyLike
from scripts.taproot_covenant import TapLeaf, TaprootScriptTree, assemble_taproot_script_tree
from scripts.transaction import OutPoint, PrevOutputFetcher, TxOut
from staking.keyset import KeySet, LockParams, sort_keys
from staking.networks import NetworkParams
from staking.templates import StakingScripts, build_staking_scripts


logger = logging.getLogger(__name__)


class StakingPath(Enum):
    """Spending paths of a staking output, in tree order."""
    TIME_LOCK = "time_lock"
    UNBONDING = "unbonding"
    SLASHING = "slashing"


@dataclass(frozen=True)
class SpendInfo:
    """
    Script-path spend data for one leaf.

    ``covenant_keys`` and ``validator_keys`` list the keys the leaf checks, in
    the order they appear in the script (empty for roles the leaf does not use).
    """
    path: StakingPath
    leaf: TapLeaf
    control_block: bytes
    covenant_keys: Tuple[bytes, ...] = ()
    validator_keys: Tuple[bytes, ...] = ()

    @property
    def leaf_script(self) -> bytes:
        return self.leaf.script

    @property
    def leaf_version(self) -> int:
        return self.leaf.leaf_version

    @property
    def leaf_hash(self) -> bytes:
        return self.leaf.leaf_hash()


@dataclass(frozen=True)
class StakingOutputDescriptor:
    """A staking output and the script tree behind it."""
    staking_output: TxOut
    script_tree: TaprootScriptTree
    scripts: StakingScripts
    key_set: KeySet
    lock_params: LockParams

    @property
    def pk_script(self) -> bytes:
        return self.staking_output.script_pubkey

    @property
    def value(self) -> int:
        return self.staking_output.value

    @property
    def output_key(self) -> bytes:
        return self.script_tree.output_key

    @property
    def address(self) -> str:
        """Bech32m P2TR address for the configured network."""
        return self.script_tree.address(self.lock_params.network.bech32_hrp)

    def _leaf_for(self, path: StakingPath) -> TapLeaf:
        return {
            StakingPath.TIME_LOCK: self.scripts.time_lock,
            StakingPath.UNBONDING: self.scripts.unbonding,
            StakingPath.SLASHING: self.scripts.slashing,
        }[path]

    def spend_info(self, path: StakingPath) -> SpendInfo:
        """
        Get spend information for one path.

        Args:
            path: Which leaf to spend

        Returns:
            SpendInfo with the leaf, its control block and role keys
        """
        leaf = self._leaf_for(path)
        control_block = self.script_tree.control_block(self.script_tree.leaf_index(leaf))

        covenant_keys: Tuple[bytes, ...] = ()
        validator_keys: Tuple[bytes, ...] = ()
        if path in (StakingPath.UNBONDING, StakingPath.SLASHING):
            covenant_keys = tuple(sort_keys(self.key_set.covenant))
        if path == StakingPath.SLASHING:
            validator_keys = tuple(sort_keys(self.key_set.validators))

        return SpendInfo(
            path=path,
            leaf=leaf,
            control_block=control_block.to_bytes(),
            covenant_keys=covenant_keys,
            validator_keys=validator_keys,
        )

    def time_lock_path_spend_info(self) -> SpendInfo:
        return self.spend_info(StakingPath.TIME_LOCK)

    def unbonding_path_spend_info(self) -> SpendInfo:
        return self.spend_info(StakingPath.UNBONDING)

    def slashing_path_spend_info(self) -> SpendInfo:
        return self.spend_info(StakingPath.SLASHING)

    def all_spend_info(self) -> Dict[StakingPath, SpendInfo]:
        return {path: self.spend_info(path) for path in StakingPath}

    def output_fetcher(self, outpoint: OutPoint) -> PrevOutputFetcher:
        """Fetcher resolving ``outpoint`` to this staking output."""
        return PrevOutputFetcher.single(outpoint, self.staking_output)


def build_staking_output(key_set: KeySet, lock_params: LockParams) -> StakingOutputDescriptor:
    """
    Build the staking output for a key set and lock parameters.

    The tree is assembled from [TimeLock, Unbonding, Slashing] under the
    unspendable internal key, so only script-path spends are possible.

    Args:
        key_set: Validated keys and covenant threshold
        lock_params: Validated amount, timelock and network

    Returns:
        StakingOutputDescriptor
    """
    scripts = build_staking_scripts(key_set, lock_params)
    tree = assemble_taproot_script_tree(scripts.leaves())
    output = TxOut(value=lock_params.staking_amount, script_pubkey=tree.output_script)

    logger.debug(
        "Built staking output: value=%d sats, output key %s, merkle root %s",
        output.value, tree.output_key.hex(), tree.merkle_root.hex()
    )

    return StakingOutputDescriptor(
        staking_output=output,
        script_tree=tree,
        scripts=scripts,
        key_set=key_set,
        lock_params=lock_params,
    )


def build_staking_info(
    staker_key: KeyLike,
    validator_keys: Sequence[KeyLike],
    covenant_keys: Sequence[KeyLike],
    covenant_threshold: int,
    staking_time: int,
    staking_amount: int,
    network: NetworkParams
) -> StakingOutputDescriptor:
    """
    Validate raw inputs and build the staking output in one call.

    Raises:
        ConfigurationError: If any key, threshold, amount or timelock is invalid
    """
    key_set = KeySet.build(
        staker=staker_key,
        validators=validator_keys,
        covenant=covenant_keys,
        covenant_threshold=covenant_threshold,
    )
    lock_params = LockParams(
        staking_amount=staking_amount,
        timelock_blocks=staking_time,
        network=network,
    )
    return build_staking_output(key_set, lock_params)
