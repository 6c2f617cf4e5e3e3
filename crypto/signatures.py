"""
Schnorr Signature Operations for BTC Staking

This module provides BIP340 Schnorr signatures on top of libsecp256k1
(through coincurve). Every spend path of a staking output is authorized with
these signatures.

References:
- BIP340: https://github.com/bitcoin/bips/blob/master/bip-0340.mediawiki
"""

from dataclasses import dataclass
from typing import Optional, Union

from coincurve.keys import PublicKeyXOnly as CoinCurvePublicKeyXOnly

from .exceptions import InvalidKeyError, InvalidSignatureError, SigningError
from .keys import PrivateKey, KeyLike, to_x_only


SCHNORR_SIGNATURE_SIZE = 64


@dataclass(frozen=True)
class SchnorrSignature:
    """
    BIP340 Schnorr signature representation.
    """
    r: bytes  # 32-byte x-coordinate of R point
    s: bytes  # 32-byte scalar

    def __post_init__(self):
        """Validate signature components."""
        if len(self.r) != 32:
            raise InvalidSignatureError("Schnorr r must be 32 bytes")
        if len(self.s) != 32:
            raise InvalidSignatureError("Schnorr s must be 32 bytes")

    @classmethod
    def from_bytes(cls, sig_bytes: bytes) -> 'SchnorrSignature':
        """
        Parse 64-byte Schnorr signature.

        Args:
            sig_bytes: 64-byte signature (32-byte r + 32-byte s)

        Returns:
            SchnorrSignature object
        """
        if len(sig_bytes) != SCHNORR_SIGNATURE_SIZE:
            raise InvalidSignatureError("Schnorr signature must be 64 bytes")

        return cls(r=bytes(sig_bytes[:32]), s=bytes(sig_bytes[32:]))

    @classmethod
    def from_hex(cls, sig_hex: str) -> 'SchnorrSignature':
        try:
            return cls.from_bytes(bytes.fromhex(sig_hex))
        except ValueError as e:
            raise InvalidSignatureError(f"Signature is not valid hex: {e}") from e

    def to_bytes(self) -> bytes:
        """Encode signature as 64 bytes."""
        return self.r + self.s

    def hex(self) -> str:
        return self.to_bytes().hex()


def sign_schnorr(
    private_key: PrivateKey,
    message: bytes,
    aux_rand: Optional[bytes] = None
) -> SchnorrSignature:
    """
    Sign a 32-byte message with a BIP340 Schnorr signature.

    Args:
        private_key: Private key for signing
        message: 32-byte message, normally a taproot sighash
        aux_rand: Optional 32-byte auxiliary randomness

    Returns:
        Schnorr signature

    Raises:
        SigningError: If libsecp256k1 refuses to produce a signature
    """
    if len(message) != 32:
        raise SigningError("Schnorr signing requires a 32-byte message")
    if aux_rand is not None and len(aux_rand) != 32:
        raise SigningError("Auxiliary randomness must be 32 bytes")

    try:
        sig_bytes = private_key.sign_schnorr(message, aux_rand)
    except (ValueError, InvalidKeyError) as e:
        raise SigningError(f"Schnorr signing failed: {e}") from e

    return SchnorrSignature.from_bytes(sig_bytes)


def verify_schnorr(
    public_key: KeyLike,
    signature: Union[SchnorrSignature, bytes],
    message: bytes
) -> bool:
    """
    Verify BIP340 Schnorr signature.

    Args:
        public_key: Public key (any form accepted by ``to_x_only``)
        signature: Schnorr signature to verify
        message: Message that was signed

    Returns:
        True if signature is valid
    """
    if isinstance(signature, SchnorrSignature):
        signature = signature.to_bytes()
    if len(signature) != SCHNORR_SIGNATURE_SIZE:
        return False

    try:
        x_only = to_x_only(public_key)
        return CoinCurvePublicKeyXOnly(x_only).verify(signature, message)
    except (InvalidKeyError, ValueError):
        return False
