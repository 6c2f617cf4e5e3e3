"""
Key Handling and Taproot Tweaking for BTC Staking

This module handles private/public key operations, x-only (BIP340) key
normalization and Taproot output key tweaking.

References:
- BIP340: https://github.com/bitcoin/bips/blob/master/bip-0340.mediawiki
- BIP341: https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki
"""

import hashlib
import secrets
from typing import Optional, Tuple, Union

from coincurve import PrivateKey as CoinCurvePrivateKey, PublicKey as CoinCurvePublicKey
from coincurve.keys import PublicKeyXOnly as CoinCurvePublicKeyXOnly

from .exceptions import InvalidKeyError


# secp256k1 parameters
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
FIELD_PRIME = 2**256 - 2**32 - 977

# BIP341 "H" point: x = SHA256(G uncompressed), nobody knows its discrete log.
# Used as internal key when key-path spending must be provably disabled.
UNSPENDABLE_INTERNAL_KEY = bytes.fromhex(
    "50929b74c1a04954b78b4b6035e97a5e078a5a0f28ec96d547bfee9ace803ac0"
)


def tagged_hash(tag: str, data: bytes) -> bytes:
    """
    Compute BIP340/341 tagged hash: SHA256(SHA256(tag) + SHA256(tag) + data).

    Args:
        tag: Tag string for the hash
        data: Data to hash

    Returns:
        32-byte tagged hash
    """
    tag_hash = hashlib.sha256(tag.encode('utf-8')).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def lift_x(x: bytes) -> Optional[bytes]:
    """
    Lift x-coordinate to full point, returning the even y-coordinate point.

    Args:
        x: 32-byte x-coordinate

    Returns:
        33-byte compressed public key with even y, or None if invalid
    """
    if not isinstance(x, bytes) or len(x) != 32:
        return None
    if int.from_bytes(x, 'big') >= FIELD_PRIME:
        return None

    candidate = b'\x02' + x
    try:
        CoinCurvePublicKey(candidate)
    except ValueError:
        return None
    return candidate


def is_valid_x_only(x: bytes) -> bool:
    """Check that 32 bytes encode the x-coordinate of a point on secp256k1."""
    return lift_x(x) is not None


class PrivateKey:
    """
    Wrapper for secp256k1 private key operations.
    """

    def __init__(self, key_bytes: Optional[bytes] = None):
        """
        Initialize private key.

        Args:
            key_bytes: 32-byte private key. If None, generates random key.
        """
        if key_bytes is None:
            key_bytes = secrets.randbits(256).to_bytes(32, 'big')
            while not 0 < int.from_bytes(key_bytes, 'big') < CURVE_ORDER:
                key_bytes = secrets.randbits(256).to_bytes(32, 'big')

        if not isinstance(key_bytes, bytes) or len(key_bytes) != 32:
            raise InvalidKeyError("Private key must be 32 bytes")

        key_int = int.from_bytes(key_bytes, 'big')
        if key_int == 0 or key_int >= CURVE_ORDER:
            raise InvalidKeyError("Private key out of valid range")

        try:
            self._key = CoinCurvePrivateKey(key_bytes)
        except ValueError as e:
            raise InvalidKeyError(f"Failed to create private key: {e}") from e

    @classmethod
    def from_int(cls, value: int) -> 'PrivateKey':
        """Create a private key from an integer scalar."""
        if not 0 < value < CURVE_ORDER:
            raise InvalidKeyError("Private key out of valid range")
        return cls(value.to_bytes(32, 'big'))

    @property
    def bytes(self) -> bytes:
        """Get private key as bytes."""
        return self._key.secret

    @property
    def hex(self) -> str:
        """Get private key as hex string."""
        return self._key.secret.hex()

    def public_key(self) -> 'PublicKey':
        """Get corresponding public key."""
        return PublicKey(self._key.public_key)

    @property
    def x_only(self) -> bytes:
        """Get the 32-byte x-only public key for this private key."""
        return self.public_key().x_only

    def sign_schnorr(self, message: bytes, aux_rand: Optional[bytes] = None) -> bytes:
        """
        Produce a BIP340 Schnorr signature over a 32-byte message.

        The key is negated internally when its public point has odd y, so the
        signature always verifies against ``self.x_only``.

        Args:
            message: 32-byte message (normally a sighash)
            aux_rand: Optional 32 bytes of auxiliary randomness

        Returns:
            64-byte signature
        """
        if len(message) != 32:
            raise InvalidKeyError("Message must be 32 bytes")
        if aux_rand is None:
            aux_rand = secrets.token_bytes(32)
        return self._key.sign_schnorr(message, aux_rand)

    def __repr__(self) -> str:
        return f"PrivateKey(x_only={self.x_only.hex()})"


class PublicKey:
    """
    Wrapper for public key operations.
    """

    def __init__(self, key_data: Union[bytes, CoinCurvePublicKey]):
        """
        Initialize public key.

        Args:
            key_data: Public key bytes (33 or 65 bytes) or CoinCurvePublicKey
        """
        if isinstance(key_data, CoinCurvePublicKey):
            self._key = key_data
            return

        if not isinstance(key_data, bytes):
            raise InvalidKeyError("Public key data must be bytes")
        if len(key_data) not in (33, 65):
            raise InvalidKeyError("Public key must be 33 or 65 bytes")
        try:
            self._key = CoinCurvePublicKey(key_data)
        except ValueError as e:
            raise InvalidKeyError(f"Failed to create public key: {e}") from e

    @classmethod
    def from_x_only(cls, x: bytes) -> 'PublicKey':
        """Create the even-y public key for an x-only key."""
        lifted = lift_x(x)
        if lifted is None:
            raise InvalidKeyError("Invalid x-only public key")
        return cls(lifted)

    @property
    def bytes(self) -> bytes:
        """Get compressed public key as bytes."""
        return self._key.format(compressed=True)

    @property
    def hex(self) -> str:
        """Get compressed public key as hex string."""
        return self.bytes.hex()

    @property
    def x_only(self) -> bytes:
        """Get x-only public key for Taproot (32 bytes)."""
        return self.bytes[1:]

    def __eq__(self, other) -> bool:
        return isinstance(other, PublicKey) and self.bytes == other.bytes

    def __hash__(self) -> int:
        return hash(self.bytes)

    def __repr__(self) -> str:
        return f"PublicKey({self.hex})"


KeyLike = Union[bytes, str, PublicKey, PrivateKey]


def to_x_only(key: KeyLike) -> bytes:
    """
    Normalize a public key to its 32-byte BIP340 x-only serialization.

    Accepts 32-byte x-only keys, 33/65-byte SEC keys, hex strings of either,
    PublicKey objects and PrivateKey objects (their public key is used).

    Raises:
        InvalidKeyError: If the input is not a valid secp256k1 public key
    """
    if isinstance(key, PrivateKey):
        return key.x_only
    if isinstance(key, PublicKey):
        return key.x_only
    if isinstance(key, str):
        try:
            key = bytes.fromhex(key)
        except ValueError as e:
            raise InvalidKeyError(f"Public key is not valid hex: {e}") from e
    if not isinstance(key, (bytes, bytearray)):
        raise InvalidKeyError(f"Unsupported public key type: {type(key).__name__}")

    key = bytes(key)
    if len(key) == 32:
        if not is_valid_x_only(key):
            raise InvalidKeyError("x-only public key is not on the curve")
        return key
    return PublicKey(key).x_only


# Taproot utility functions

def compute_taproot_tweak(internal_pubkey_x: bytes, merkle_root: Optional[bytes] = None) -> bytes:
    """
    Compute Taproot tweak according to BIP341.

    Args:
        internal_pubkey_x: 32-byte x-only internal public key
        merkle_root: Optional 32-byte Merkle root of script tree

    Returns:
        32-byte tweak value
    """
    if len(internal_pubkey_x) != 32:
        raise InvalidKeyError("Internal pubkey x-coordinate must be 32 bytes")

    tweak_data = internal_pubkey_x
    if merkle_root is not None:
        if len(merkle_root) != 32:
            raise InvalidKeyError("Merkle root must be 32 bytes")
        tweak_data += merkle_root

    return tagged_hash("TapTweak", tweak_data)


def taproot_tweak_public_key(
    internal_pubkey_x: bytes,
    merkle_root: Optional[bytes] = None
) -> Tuple[bytes, int]:
    """
    Derive the Taproot output key Q = lift_x(P) + t*G.

    Args:
        internal_pubkey_x: 32-byte x-only internal key P
        merkle_root: Optional script tree root committed in the tweak

    Returns:
        Tuple of (32-byte x-only output key, y parity bit of Q)
    """
    tweak = compute_taproot_tweak(internal_pubkey_x, merkle_root)
    if int.from_bytes(tweak, 'big') >= CURVE_ORDER:
        raise InvalidKeyError("Taproot tweak exceeds curve order")

    try:
        output_key = CoinCurvePublicKeyXOnly(internal_pubkey_x)
        output_key.tweak_add(tweak)
    except ValueError as e:
        raise InvalidKeyError(f"Failed to tweak public key: {e}") from e

    return output_key.format(), int(output_key.parity)


def taproot_output_script(tweaked_pubkey_x: bytes) -> bytes:
    """
    Create Taproot output script (witness program).

    Args:
        tweaked_pubkey_x: 32-byte x-only tweaked public key

    Returns:
        34-byte P2TR output script
    """
    if len(tweaked_pubkey_x) != 32:
        raise InvalidKeyError("Tweaked pubkey must be 32 bytes")

    # P2TR script: OP_1 <32-byte-tweaked-pubkey>
    return b'\x51\x20' + tweaked_pubkey_x


def extract_taproot_output_key(script_pubkey: bytes) -> Optional[bytes]:
    """Return the 32-byte output key of a P2TR script, or None for other scripts."""
    if len(script_pubkey) == 34 and script_pubkey[0] == 0x51 and script_pubkey[1] == 0x20:
        return script_pubkey[2:]
    return None
