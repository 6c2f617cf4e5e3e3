"""
BTC Staking - Script-Path Signing

Signs and verifies BIP340 signatures over the BIP341/BIP342 signature hash
of a single-input transaction spending one leaf of a staking output.
"""

import logging
from typing import Optional, Union

from crypto.exceptions import SighashComputationError
from crypto.keys import KeyLike, PrivateKey, extract_taproot_output_key
from crypto.signatures import SchnorrSignature, sign_schnorr, verify_schnorr
from scripts.taproot_covenant import TapLeaf
from scripts.transaction import (
    SIGHASH_DEFAULT,
    OutPoint,
    Transaction,
    TxOut,
    taproot_signature_hash,
)


logger = logging.getLogger(__name__)


def _single_input_sighash(
    tx: Transaction,
    funding_output: TxOut,
    leaf: TapLeaf,
    funding_outpoint: Optional[OutPoint],
    hash_type: int
) -> bytes:
    if len(tx.inputs) != 1:
        raise SighashComputationError(
            f"Transaction must have exactly one input, got {len(tx.inputs)}"
        )
    if funding_outpoint is not None and tx.inputs[0].outpoint != funding_outpoint:
        raise SighashComputationError(
            f"Transaction input spends {tx.inputs[0].outpoint}, expected {funding_outpoint}"
        )
    if extract_taproot_output_key(funding_output.script_pubkey) is None:
        raise SighashComputationError("Funding output is not a witness v1 taproot program")

    return taproot_signature_hash(
        tx, 0, [funding_output], hash_type=hash_type, leaf_hash=leaf.leaf_hash()
    )


def sign_tx_with_one_script_spend_input_from_tap_leaf(
    tx: Transaction,
    funding_output: TxOut,
    private_key: PrivateKey,
    leaf: TapLeaf,
    funding_outpoint: Optional[OutPoint] = None,
    hash_type: int = SIGHASH_DEFAULT,
    aux_rand: Optional[bytes] = None
) -> SchnorrSignature:
    """
    Sign the only input of ``tx`` for a script-path spend of ``leaf``.

    Args:
        tx: Spending transaction with exactly one input
        funding_output: The staking output being spent
        private_key: Key of the signer
        leaf: Leaf whose script is executed
        funding_outpoint: If given, the input must reference this outpoint
        hash_type: BIP341 hash type; non-default types must be appended to
            the signature by the caller
        aux_rand: Optional 32 bytes of BIP340 auxiliary randomness

    Returns:
        64-byte BIP340 Schnorr signature

    Raises:
        SighashComputationError: If the transaction shape or funding output is unsupported
        SigningError: If signing fails
    """
    sighash = _single_input_sighash(tx, funding_output, leaf, funding_outpoint, hash_type)
    signature = sign_schnorr(private_key, sighash, aux_rand)

    logger.debug(
        "Signed leaf %s with key %s",
        leaf.leaf_hash().hex(), private_key.x_only.hex()
    )
    return signature


def verify_tx_signature_from_tap_leaf(
    tx: Transaction,
    funding_output: TxOut,
    public_key: KeyLike,
    leaf: TapLeaf,
    signature: Union[SchnorrSignature, bytes],
    funding_outpoint: Optional[OutPoint] = None,
    hash_type: int = SIGHASH_DEFAULT
) -> bool:
    """
    Check a script-path signature produced by
    ``sign_tx_with_one_script_spend_input_from_tap_leaf``.

    Raises:
        SighashComputationError: If the transaction shape or funding output is unsupported
    """
    sighash = _single_input_sighash(tx, funding_output, leaf, funding_outpoint, hash_type)
    return verify_schnorr(public_key, signature, sighash)
