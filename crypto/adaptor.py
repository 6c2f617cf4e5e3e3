"""
Adaptor Signature Capability

Covenant committee members co-sign unbonding and slashing transactions with
adaptor (encrypted) signatures bound to a validator secret. The construction
lives in a separate cryptographic module; this file only fixes the interface
the ledger module programs against, so that an implementation can be plugged
in without touching the staking core.
"""

from abc import ABC, abstractmethod

from .keys import PrivateKey
from .signatures import SchnorrSignature


class AdaptorSignatureScheme(ABC):
    """
    Encrypted/extractable signature capability.

    An encrypted signature made under ``encryption_key`` decrypts to a valid
    BIP340 signature with the matching decryption secret. Anyone holding both
    the encrypted and the decrypted signature can extract that secret.
    """

    @abstractmethod
    def encrypt_sign(
        self,
        private_key: PrivateKey,
        message: bytes,
        encryption_key: bytes
    ) -> bytes:
        """Produce an encrypted signature over a 32-byte message."""

    @abstractmethod
    def verify_encrypted(
        self,
        public_key: bytes,
        message: bytes,
        encryption_key: bytes,
        encrypted_signature: bytes
    ) -> bool:
        """Check an encrypted signature without decrypting it."""

    @abstractmethod
    def decrypt(self, encrypted_signature: bytes, decryption_key: PrivateKey) -> SchnorrSignature:
        """Turn an encrypted signature into a plain BIP340 signature."""

    @abstractmethod
    def extract_secret(
        self,
        signature: SchnorrSignature,
        encrypted_signature: bytes,
        encryption_key: bytes
    ) -> PrivateKey:
        """Recover the decryption secret from a decrypted/encrypted pair."""
