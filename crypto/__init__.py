"""
BTC Staking - Cryptographic Operations Module

This module provides cryptographic utilities for BTC staking including:
- x-only (BIP340) key normalization
- Taproot key tweaking
- Schnorr signature operations
- The adaptor signature capability interface

Dependencies:
- coincurve: Fast secp256k1 operations
- hashlib: Cryptographic hash functions
- secrets: Secure random number generation
"""

from .exceptions import (
    CryptoError,
    InvalidKeyError,
    InvalidSignatureError,
    SighashComputationError,
    SigningError,
)
from .keys import (
    PrivateKey,
    PublicKey,
    UNSPENDABLE_INTERNAL_KEY,
    tagged_hash,
    to_x_only,
    compute_taproot_tweak,
    taproot_tweak_public_key,
    taproot_output_script,
)
from .signatures import (
    SchnorrSignature,
    sign_schnorr,
    verify_schnorr,
)
from .adaptor import AdaptorSignatureScheme

__version__ = "0.1.0"
__all__ = [
    # Exceptions
    "CryptoError",
    "InvalidKeyError",
    "InvalidSignatureError",
    "SighashComputationError",
    "SigningError",

    # Keys
    "PrivateKey",
    "PublicKey",
    "UNSPENDABLE_INTERNAL_KEY",
    "tagged_hash",
    "to_x_only",
    "compute_taproot_tweak",
    "taproot_tweak_public_key",
    "taproot_output_script",

    # Signatures
    "SchnorrSignature",
    "sign_schnorr",
    "verify_schnorr",

    # Adaptor signatures
    "AdaptorSignatureScheme",
]
