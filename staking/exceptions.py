"""
BTC Staking - Exceptions

This module defines custom exceptions for staking output construction,
configuration and witness assembly.
"""

from typing import Optional


class StakingError(Exception):
    """Base exception for staking-related errors."""
    pass


class ConfigurationError(StakingError):
    """Exception raised when staking inputs or parameters are invalid."""
    pass


class InvalidThresholdError(ConfigurationError):
    """Exception raised when a threshold is zero or exceeds the key count."""

    def __init__(self, threshold: int, key_count: int, role: str = "covenant", message: str = None):
        self.threshold = threshold
        self.key_count = key_count
        self.role = role
        if message is None:
            message = (
                f"Invalid {role} threshold {threshold}: must be between 1 and "
                f"the number of keys ({key_count})"
            )
        super().__init__(message)


class EmptyKeySetError(ConfigurationError):
    """Exception raised when a role that needs keys has none."""

    def __init__(self, role: str, message: str = None):
        self.role = role
        if message is None:
            message = f"No {role} keys provided"
        super().__init__(message)


class KeySerializationError(ConfigurationError):
    """Exception raised when a key cannot be serialized as an x-only point."""

    def __init__(self, role: str, index: Optional[int] = None, reason: str = ""):
        self.role = role
        self.index = index
        self.reason = reason
        where = role if index is None else f"{role}[{index}]"
        message = f"Invalid {where} public key"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class InvalidLockTimeError(ConfigurationError):
    """Exception raised when a timelock is outside the range CSV can encode."""

    def __init__(self, lock_time, message: str = None):
        self.lock_time = lock_time
        if message is None:
            message = f"Invalid lock time {lock_time!r}: must be an integer between 1 and 65535 blocks"
        super().__init__(message)


class InvalidStakingAmountError(ConfigurationError):
    """Exception raised when a staking amount is not a valid positive satoshi value."""

    def __init__(self, amount, message: str = None):
        self.amount = amount
        if message is None:
            message = f"Invalid staking amount {amount!r}: must be a positive number of satoshis"
        super().__init__(message)


class UnknownNetworkError(ConfigurationError):
    """Exception raised for unsupported network names."""

    def __init__(self, network: str):
        self.network = network
        super().__init__(f"Unknown network: {network}")


class WitnessAssemblyError(StakingError):
    """Exception raised when a witness stack cannot be assembled."""
    pass


class SignatureCountMismatchError(WitnessAssemblyError):
    """Exception raised when a signature list does not have one slot per key."""

    def __init__(self, role: str, expected: int, actual: int):
        self.role = role
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Expected {expected} {role} signature slots, got {actual}"
        )
