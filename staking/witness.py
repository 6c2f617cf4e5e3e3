"""
BTC Staking - Witness Assembly

Builds witness stacks for the three staking spend paths. Each role's
signatures are supplied in ``sort_keys`` order, one slot per key, with None
for keys that did not sign. Because the script consumes signatures from the
top of the stack while walking keys in that order, each role is laid out
reversed:

    unbonding: [cov(n-1) .. cov(0), staker, script, control_block]
    slashing:  [cov(n-1) .. cov(0), val(m-1) .. val(0), staker, script, control_block]

No threshold pre-check is done here; whether enough signatures are present
is decided by script execution.
"""

import logging
from typing import List, Mapping, Optional, Sequence, Union

from crypto.keys import KeyLike, to_x_only
from crypto.signatures import SchnorrSignature
from scripts.encoding import serialize_witness
from staking.exceptions import SignatureCountMismatchError
from staking.keyset import sort_keys
from staking.output import SpendInfo


logger = logging.getLogger(__name__)

SignatureLike = Union[SchnorrSignature, bytes]
SignatureSlot = Optional[SignatureLike]


def _signature_bytes(signature: SignatureSlot) -> bytes:
    if signature is None:
        return b''
    if isinstance(signature, SchnorrSignature):
        return signature.to_bytes()
    return bytes(signature)


def _role_elements(role: str, keys: Sequence[bytes], signatures: Sequence[SignatureSlot]) -> List[bytes]:
    if len(signatures) != len(keys):
        raise SignatureCountMismatchError(role, expected=len(keys), actual=len(signatures))
    return [_signature_bytes(sig) for sig in reversed(signatures)]


def _finish(spend_info: SpendInfo, elements: List[bytes]) -> List[bytes]:
    witness = elements + [spend_info.leaf_script, spend_info.control_block]
    logger.debug(
        "Assembled %s witness: %d elements, %d bytes",
        spend_info.path.value, len(witness), len(serialize_witness(witness))
    )
    return witness


def create_timelock_path_witness(spend_info: SpendInfo, staker_signature: SignatureLike) -> List[bytes]:
    """Witness for the staker-only timelock path."""
    return _finish(spend_info, [_signature_bytes(staker_signature)])


def create_unbonding_path_witness(
    spend_info: SpendInfo,
    covenant_signatures: Sequence[SignatureSlot],
    staker_signature: SignatureLike
) -> List[bytes]:
    """
    Witness for the unbonding path.

    Args:
        spend_info: Unbonding path spend info
        covenant_signatures: One slot per covenant key, in ``sort_keys`` order
        staker_signature: Staker signature

    Raises:
        SignatureCountMismatchError: If the slot count differs from the covenant key count
    """
    elements = _role_elements("covenant", spend_info.covenant_keys, covenant_signatures)
    elements.append(_signature_bytes(staker_signature))
    return _finish(spend_info, elements)


def create_slashing_path_witness(
    spend_info: SpendInfo,
    covenant_signatures: Sequence[SignatureSlot],
    validator_signatures: Sequence[SignatureSlot],
    staker_signature: SignatureLike
) -> List[bytes]:
    """
    Witness for the slashing path.

    Args:
        spend_info: Slashing path spend info
        covenant_signatures: One slot per covenant key, in ``sort_keys`` order
        validator_signatures: One slot per validator key, in ``sort_keys`` order
        staker_signature: Staker signature

    Raises:
        SignatureCountMismatchError: If a role's slot count differs from its key count
    """
    elements = _role_elements("covenant", spend_info.covenant_keys, covenant_signatures)
    elements += _role_elements("validator", spend_info.validator_keys, validator_signatures)
    elements.append(_signature_bytes(staker_signature))
    return _finish(spend_info, elements)


def order_signatures(
    keys: Sequence[KeyLike],
    signatures_by_key: Mapping[bytes, SignatureLike]
) -> List[SignatureSlot]:
    """
    Position signatures keyed by x-only public key into ``sort_keys`` order.

    Keys without a signature get a None slot. Duplicate keys each receive
    the same signature.
    """
    normalized = {to_x_only(key): sig for key, sig in signatures_by_key.items()}
    return [normalized.get(key) for key in sort_keys(to_x_only(k) for k in keys)]
