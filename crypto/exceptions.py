"""
Cryptographic Exceptions for BTC Staking

This module defines custom exceptions for cryptographic operations.
"""


class CryptoError(Exception):
    """Base exception for all cryptographic errors."""
    pass


class InvalidKeyError(CryptoError):
    """Raised when a key is invalid or malformed."""
    pass


class InvalidSignatureError(CryptoError):
    """Raised when a signature is invalid or malformed."""
    pass


class SighashComputationError(CryptoError):
    """Raised when a taproot signature hash cannot be computed for a transaction."""

    def __init__(self, message: str, input_index: int = 0):
        self.input_index = input_index
        super().__init__(message)


class SigningError(CryptoError):
    """Raised when the underlying Schnorr signing operation fails."""
    pass
