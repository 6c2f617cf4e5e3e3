"""
BTC Staking - Key and Threshold Model

This module provides:
- The single key ordering shared by script construction and witness assembly
- KeySet: normalized staker, validator and covenant keys plus the covenant threshold
- LockParams: staking amount, timelock and network of a staking request
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple, Union

from crypto.exceptions import InvalidKeyError
from crypto.keys import KeyLike, is_valid_x_only, to_x_only
from staking.exceptions import (
    EmptyKeySetError,
    InvalidLockTimeError,
    InvalidStakingAmountError,
    InvalidThresholdError,
    KeySerializationError,
)
from staking.networks import MAINNET, NetworkParams, get_network


SATOSHIS_PER_BTC = 100_000_000
MAX_STAKING_AMOUNT = 21_000_000 * SATOSHIS_PER_BTC
MIN_TIMELOCK_BLOCKS = 1
MAX_TIMELOCK_BLOCKS = 0xffff
MAX_INT64 = 2**63 - 1

_DECIMAL_RE = re.compile(r'[+-]?[0-9]+')


def sort_keys(keys: Iterable[bytes]) -> List[bytes]:
    """
    Order x-only keys the way they appear in threshold scripts.

    Keys are sorted descending by their 32-byte serialization. Witness
    signature lists are expected in this same order.
    """
    return sorted(keys, reverse=True)


def _normalize_key(key: KeyLike, role: str, index: int = None) -> bytes:
    try:
        return to_x_only(key)
    except InvalidKeyError as e:
        raise KeySerializationError(role, index, str(e)) from e


def normalize_keys(keys: Sequence[KeyLike], role: str) -> Tuple[bytes, ...]:
    """Normalize a list of keys for one role, reporting the index of any bad key."""
    if isinstance(keys, (bytes, str)):
        raise KeySerializationError(role, reason="expected a list of keys, got a single key")
    return tuple(_normalize_key(key, role, i) for i, key in enumerate(keys))


@dataclass(frozen=True)
class KeySet:
    """
    Keys participating in one staking output.

    All keys are 32-byte x-only. ``validators`` and ``covenant`` keep the
    caller's order; scripts use ``sort_keys`` order. Duplicates are kept.
    """
    staker: bytes
    validators: Tuple[bytes, ...]
    covenant: Tuple[bytes, ...]
    covenant_threshold: int

    def __post_init__(self):
        """Validate key set parameters."""
        object.__setattr__(self, 'validators', tuple(self.validators))
        object.__setattr__(self, 'covenant', tuple(self.covenant))

        if not self.validators:
            raise EmptyKeySetError("validator")
        if not self.covenant:
            raise EmptyKeySetError("covenant")

        threshold = self.covenant_threshold
        if isinstance(threshold, bool) or not isinstance(threshold, int) \
                or not 1 <= threshold <= len(self.covenant):
            raise InvalidThresholdError(threshold, len(self.covenant), role="covenant")

        for role, keys in (("staker", (self.staker,)), ("validator", self.validators), ("covenant", self.covenant)):
            for i, key in enumerate(keys):
                index = None if role == "staker" else i
                if not isinstance(key, bytes) or len(key) != 32:
                    raise KeySerializationError(role, index, "key must be 32-byte x-only")
                if not is_valid_x_only(key):
                    raise KeySerializationError(role, index, "not a point on secp256k1")

    @classmethod
    def build(
        cls,
        staker: KeyLike,
        validators: Sequence[KeyLike],
        covenant: Sequence[KeyLike],
        covenant_threshold: int
    ) -> 'KeySet':
        """
        Normalize keys from any supported encoding and validate the set.

        Args:
            staker: Staker public key
            validators: Restaked validator public keys
            covenant: Covenant committee public keys
            covenant_threshold: Number of covenant signatures required

        Returns:
            Validated KeySet

        Raises:
            KeySerializationError: If a key is not a valid secp256k1 point
            EmptyKeySetError: If validators or covenant keys are missing
            InvalidThresholdError: If the threshold is 0 or above the key count
        """
        return cls(
            staker=_normalize_key(staker, "staker"),
            validators=normalize_keys(validators, "validator"),
            covenant=normalize_keys(covenant, "covenant"),
            covenant_threshold=covenant_threshold,
        )

    @property
    def sorted_validators(self) -> List[bytes]:
        return sort_keys(self.validators)

    @property
    def sorted_covenant(self) -> List[bytes]:
        return sort_keys(self.covenant)


def parse_lock_time(value: str) -> int:
    """
    Parse a decimal staking time in blocks.

    Raises:
        InvalidLockTimeError: If the value is not an integer in 1..65535
    """
    value = value.strip() if isinstance(value, str) else value
    if not isinstance(value, str) or not _DECIMAL_RE.fullmatch(value):
        raise InvalidLockTimeError(value, f"Invalid staking time: {value!r}")
    lock_time = int(value)
    if lock_time < 0:
        raise InvalidLockTimeError(value, "Staking time is not a valid unsigned integer")
    if lock_time > MAX_TIMELOCK_BLOCKS:
        raise InvalidLockTimeError(value, f"Staking time is too large. Max is {MAX_TIMELOCK_BLOCKS}")
    if lock_time < MIN_TIMELOCK_BLOCKS:
        raise InvalidLockTimeError(value, "Staking time must be at least 1 block")
    return lock_time


def parse_btc_amount(value: str) -> int:
    """
    Parse a decimal staking value in satoshis.

    Raises:
        InvalidStakingAmountError: If the value is not a positive 64-bit integer
    """
    value = value.strip() if isinstance(value, str) else value
    if not isinstance(value, str) or not _DECIMAL_RE.fullmatch(value):
        raise InvalidStakingAmountError(value, f"Invalid staking value: {value!r}")
    amount = int(value)
    if amount < 0:
        raise InvalidStakingAmountError(value, "Staking value is negative")
    if amount > MAX_INT64:
        raise InvalidStakingAmountError(value, "Staking value does not fit in 64 bits")
    return amount


@dataclass(frozen=True)
class LockParams:
    """Amount, relative timelock and network of a staking output."""
    staking_amount: int
    timelock_blocks: int
    network: NetworkParams = field(default=MAINNET)

    def __post_init__(self):
        """Validate lock parameters."""
        amount = self.staking_amount
        if isinstance(amount, bool) or not isinstance(amount, int) \
                or not 0 < amount <= MAX_STAKING_AMOUNT:
            raise InvalidStakingAmountError(amount)

        lock_time = self.timelock_blocks
        if isinstance(lock_time, bool) or not isinstance(lock_time, int) \
                or not MIN_TIMELOCK_BLOCKS <= lock_time <= MAX_TIMELOCK_BLOCKS:
            raise InvalidLockTimeError(lock_time)

        object.__setattr__(self, 'network', get_network(self.network))

    @classmethod
    def from_strings(
        cls,
        staking_amount: str,
        timelock_blocks: str,
        network: Union[str, NetworkParams] = MAINNET
    ) -> 'LockParams':
        """Build lock parameters from user-supplied decimal strings."""
        return cls(
            staking_amount=parse_btc_amount(staking_amount),
            timelock_blocks=parse_lock_time(timelock_blocks),
            network=get_network(network),
        )
