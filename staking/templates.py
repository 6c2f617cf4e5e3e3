"""
BTC Staking - Script Templates

This module compiles the three tapscript leaves of a staking output:

- TimeLock:  <staker> OP_CHECKSIGVERIFY <t> OP_CHECKSEQUENCEVERIFY
- Unbonding: <staker> OP_CHECKSIGVERIFY <covenant k-of-n>
- Slashing:  <staker> OP_CHECKSIGVERIFY <validator 1-of-m VERIFY> <covenant k-of-n>

Threshold checks over several keys use OP_CHECKSIGADD (BIP342) with keys in
``sort_keys`` order. All output is deterministic.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

from scripts.opcodes import ScriptOpcode, build_script, push_data, push_int
from scripts.taproot_covenant import TapLeaf
from staking.exceptions import EmptyKeySetError, InvalidLockTimeError, InvalidThresholdError
from staking.keyset import MAX_TIMELOCK_BLOCKS, MIN_TIMELOCK_BLOCKS, KeySet, LockParams, sort_keys


logger = logging.getLogger(__name__)

VALIDATOR_THRESHOLD = 1


def build_threshold_script(
    keys: Sequence[bytes],
    threshold: int,
    verify: bool,
    role: str = "covenant"
) -> bytes:
    """
    Compile a k-of-n Schnorr signature check.

    A single key compiles to ``<pk> OP_CHECKSIG[VERIFY]``. Otherwise:
    ``<pk0> OP_CHECKSIG <pk1> OP_CHECKSIGADD ... <k> OP_GREATERTHANOREQUAL
    [OP_VERIFY]``, where pk0..pkN are the keys in ``sort_keys`` order.

    Args:
        keys: 32-byte x-only keys (any order)
        threshold: Number of signatures required
        verify: Leave nothing on the stack (VERIFY form) instead of a boolean
        role: Role name reported in errors

    Returns:
        Compiled script fragment
    """
    if not keys:
        raise EmptyKeySetError(role)
    if isinstance(threshold, bool) or not isinstance(threshold, int) \
            or not 1 <= threshold <= len(keys):
        raise InvalidThresholdError(threshold, len(keys), role=role)

    sorted_keys = sort_keys(keys)

    if len(sorted_keys) == 1:
        check = ScriptOpcode.OP_CHECKSIGVERIFY if verify else ScriptOpcode.OP_CHECKSIG
        return build_script(push_data(sorted_keys[0]), check)

    parts = [push_data(sorted_keys[0]), ScriptOpcode.OP_CHECKSIG]
    for key in sorted_keys[1:]:
        parts.extend([push_data(key), ScriptOpcode.OP_CHECKSIGADD])
    parts.extend([push_int(threshold), ScriptOpcode.OP_GREATERTHANOREQUAL])
    if verify:
        parts.append(ScriptOpcode.OP_VERIFY)

    return build_script(*parts)


def build_single_key_script(key: bytes, verify: bool) -> bytes:
    return build_threshold_script([key], 1, verify, role="staker")


def build_timelock_script(staker: bytes, timelock_blocks: int) -> bytes:
    """Staker-only path, spendable once ``timelock_blocks`` have passed."""
    if isinstance(timelock_blocks, bool) or not isinstance(timelock_blocks, int) \
            or not MIN_TIMELOCK_BLOCKS <= timelock_blocks <= MAX_TIMELOCK_BLOCKS:
        raise InvalidLockTimeError(timelock_blocks)

    return build_script(
        build_single_key_script(staker, verify=True),
        push_int(timelock_blocks),
        ScriptOpcode.OP_CHECKSEQUENCEVERIFY,
    )


def build_unbonding_script(staker: bytes, covenant: Sequence[bytes], covenant_threshold: int) -> bytes:
    """Early unbonding: staker plus ``covenant_threshold`` covenant signatures."""
    return build_script(
        build_single_key_script(staker, verify=True),
        build_threshold_script(covenant, covenant_threshold, verify=False, role="covenant"),
    )


def build_slashing_script(
    staker: bytes,
    validators: Sequence[bytes],
    covenant: Sequence[bytes],
    covenant_threshold: int
) -> bytes:
    """Slashing: staker, any one restaked validator, and the covenant threshold."""
    return build_script(
        build_single_key_script(staker, verify=True),
        build_threshold_script(validators, VALIDATOR_THRESHOLD, verify=True, role="validator"),
        build_threshold_script(covenant, covenant_threshold, verify=False, role="covenant"),
    )


@dataclass(frozen=True)
class StakingScripts:
    """The three compiled leaves of a staking output."""
    time_lock: TapLeaf
    unbonding: TapLeaf
    slashing: TapLeaf

    def leaves(self) -> List[TapLeaf]:
        """Leaves in tree order."""
        return [self.time_lock, self.unbonding, self.slashing]


def build_staking_scripts(key_set: KeySet, lock_params: LockParams) -> StakingScripts:
    """
    Compile all staking leaves for a key set and lock parameters.

    Args:
        key_set: Validated staker, validator and covenant keys
        lock_params: Validated amount and timelock

    Returns:
        StakingScripts with TimeLock, Unbonding and Slashing leaves
    """
    scripts = StakingScripts(
        time_lock=TapLeaf(build_timelock_script(key_set.staker, lock_params.timelock_blocks)),
        unbonding=TapLeaf(build_unbonding_script(
            key_set.staker, key_set.covenant, key_set.covenant_threshold
        )),
        slashing=TapLeaf(build_slashing_script(
            key_set.staker, key_set.validators, key_set.covenant, key_set.covenant_threshold
        )),
    )

    logger.debug(
        "Built staking scripts: timelock=%s unbonding=%s slashing=%s",
        scripts.time_lock.leaf_hash().hex(),
        scripts.unbonding.leaf_hash().hex(),
        scripts.slashing.leaf_hash().hex(),
    )
    return scripts
