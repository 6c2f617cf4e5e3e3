"""
BTC Staking - Transaction Model and Taproot Signature Hashing

This module provides:
- Minimal transaction structures (outpoints, inputs, outputs) with
  legacy and segwit serialization
- A previous-output fetcher used by signature hashing and verification
- BIP341 signature message construction, including the BIP342 tapscript
  extension used by script-path spends
"""

import hashlib
import logging
import struct
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from bitcoinlib.encoding import varstr

from crypto.exceptions import SighashComputationError
from crypto.keys import tagged_hash
from scripts.encoding import serialize_compact_size, serialize_witness


logger = logging.getLogger(__name__)

SIGHASH_DEFAULT = 0x00
SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_ANYONECANPAY = 0x80

VALID_TAPROOT_HASH_TYPES = frozenset([
    SIGHASH_DEFAULT,
    SIGHASH_ALL,
    SIGHASH_NONE,
    SIGHASH_SINGLE,
    SIGHASH_ANYONECANPAY | SIGHASH_ALL,
    SIGHASH_ANYONECANPAY | SIGHASH_NONE,
    SIGHASH_ANYONECANPAY | SIGHASH_SINGLE,
])

DEFAULT_SEQUENCE = 0xffffffff
TAPSCRIPT_KEY_VERSION = 0x00
NO_CODESEPARATOR = 0xffffffff


def double_sha256(data: bytes) -> bytes:
    """Calculate double SHA256 hash (used for transaction IDs)."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def _sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


@dataclass(frozen=True)
class OutPoint:
    """Reference to a transaction output; ``txid`` is in display (big-endian) hex."""
    txid: str
    index: int

    def __post_init__(self):
        if len(self.txid) != 64:
            raise ValueError("Outpoint txid must be 32 bytes of hex")
        bytes.fromhex(self.txid)
        if not 0 <= self.index <= 0xffffffff:
            raise ValueError(f"Outpoint index out of range: {self.index}")

    @classmethod
    def from_string(cls, value: str) -> 'OutPoint':
        """Parse ``<txid>:<index>``."""
        txid, sep, index = value.rpartition(':')
        if not sep:
            raise ValueError(f"Outpoint must be formatted as txid:index, got {value!r}")
        return cls(txid=txid.lower(), index=int(index))

    def serialize(self) -> bytes:
        # Txid is serialized in internal (little-endian) byte order
        return bytes.fromhex(self.txid)[::-1] + struct.pack('<I', self.index)

    def __str__(self) -> str:
        return f"{self.txid}:{self.index}"


@dataclass(frozen=True)
class TxOut:
    """Transaction output: value in satoshis and its locking script."""
    value: int
    script_pubkey: bytes

    def __post_init__(self):
        if self.value < 0:
            raise ValueError("Output value cannot be negative")

    def serialize(self) -> bytes:
        return struct.pack('<q', self.value) + varstr(self.script_pubkey)


@dataclass(frozen=True)
class TxIn:
    """Transaction input with optional witness stack."""
    outpoint: OutPoint
    sequence: int = DEFAULT_SEQUENCE
    script_sig: bytes = b''
    witness: Tuple[bytes, ...] = field(default_factory=tuple)

    def serialize(self) -> bytes:
        return self.outpoint.serialize() + varstr(self.script_sig) + struct.pack('<I', self.sequence)


@dataclass(frozen=True)
class Transaction:
    """
    Immutable Bitcoin transaction.

    Staking spends use version 2 so that relative timelocks (BIP68/BIP112)
    are enforced.
    """
    inputs: Tuple[TxIn, ...]
    outputs: Tuple[TxOut, ...]
    version: int = 2
    locktime: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'inputs', tuple(self.inputs))
        object.__setattr__(self, 'outputs', tuple(self.outputs))

    @property
    def has_witness(self) -> bool:
        return any(txin.witness for txin in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """
        Serialize transaction in network format.

        Args:
            include_witness: Use the BIP144 segwit encoding when any input
                carries a witness

        Returns:
            Serialized transaction bytes
        """
        with_witness = include_witness and self.has_witness

        result = struct.pack('<i', self.version)
        if with_witness:
            result += b'\x00\x01'

        result += serialize_compact_size(len(self.inputs))
        for txin in self.inputs:
            result += txin.serialize()

        result += serialize_compact_size(len(self.outputs))
        for txout in self.outputs:
            result += txout.serialize()

        if with_witness:
            for txin in self.inputs:
                result += serialize_witness(txin.witness)

        result += struct.pack('<I', self.locktime)
        return result

    def txid(self) -> str:
        return double_sha256(self.serialize(include_witness=False))[::-1].hex()

    def wtxid(self) -> str:
        return double_sha256(self.serialize())[::-1].hex()

    def with_witness(self, input_index: int, witness: Sequence[bytes]) -> 'Transaction':
        """Return a copy of the transaction with ``witness`` set on one input."""
        if not 0 <= input_index < len(self.inputs):
            raise IndexError(f"Input index {input_index} out of range")
        inputs = list(self.inputs)
        inputs[input_index] = replace(inputs[input_index], witness=tuple(witness))
        return replace(self, inputs=tuple(inputs))


class PrevOutputFetcher:
    """
    Resolves outpoints to the outputs they reference.

    BIP341 signature messages commit to the amount and script of every
    spent output, so hashing needs all of them, not only the signed input's.
    """

    def __init__(self, outputs: Optional[Dict[OutPoint, TxOut]] = None):
        self._outputs: Dict[OutPoint, TxOut] = dict(outputs or {})

    @classmethod
    def single(cls, outpoint: OutPoint, output: TxOut) -> 'PrevOutputFetcher':
        return cls({outpoint: output})

    def add_prev_out(self, outpoint: OutPoint, output: TxOut) -> None:
        self._outputs[outpoint] = output

    def fetch_prev_output(self, outpoint: OutPoint) -> Optional[TxOut]:
        return self._outputs.get(outpoint)

    def prevouts_for(self, tx: Transaction) -> List[TxOut]:
        """
        Resolve the spent output of every input in ``tx``, in input order.

        Raises:
            SighashComputationError: If any input's outpoint is unknown
        """
        prevouts = []
        for index, txin in enumerate(tx.inputs):
            output = self.fetch_prev_output(txin.outpoint)
            if output is None:
                raise SighashComputationError(
                    f"Previous output {txin.outpoint} not found", input_index=index
                )
            prevouts.append(output)
        return prevouts

    def __len__(self) -> int:
        return len(self._outputs)

    def __contains__(self, outpoint: OutPoint) -> bool:
        return outpoint in self._outputs


def taproot_signature_message(
    tx: Transaction,
    input_index: int,
    prevouts: Sequence[TxOut],
    hash_type: int = SIGHASH_DEFAULT,
    leaf_hash: Optional[bytes] = None
) -> bytes:
    """
    Build the BIP341 SigMsg (without the leading epoch byte).

    Args:
        tx: Spending transaction
        input_index: Index of the input being signed
        prevouts: Outputs spent by every input, in input order
        hash_type: BIP341 hash type
        leaf_hash: TapLeaf hash for script-path spends (enables the BIP342
            extension); None for key-path spends

    Raises:
        SighashComputationError: If the arguments cannot form a valid message
    """
    if hash_type not in VALID_TAPROOT_HASH_TYPES:
        raise SighashComputationError(f"Invalid taproot hash type: {hash_type:#04x}", input_index)
    if not 0 <= input_index < len(tx.inputs):
        raise SighashComputationError(f"Input index {input_index} out of range", input_index)
    if len(prevouts) != len(tx.inputs):
        raise SighashComputationError(
            f"Expected {len(tx.inputs)} previous outputs, got {len(prevouts)}", input_index
        )
    if leaf_hash is not None and len(leaf_hash) != 32:
        raise SighashComputationError("Leaf hash must be 32 bytes", input_index)

    output_type = SIGHASH_ALL if hash_type == SIGHASH_DEFAULT else hash_type & 0x03
    anyone_can_pay = bool(hash_type & SIGHASH_ANYONECANPAY)

    msg = bytes([hash_type])
    msg += struct.pack('<i', tx.version)
    msg += struct.pack('<I', tx.locktime)

    if not anyone_can_pay:
        msg += _sha256(b''.join(txin.outpoint.serialize() for txin in tx.inputs))
        msg += _sha256(b''.join(struct.pack('<q', out.value) for out in prevouts))
        msg += _sha256(b''.join(varstr(out.script_pubkey) for out in prevouts))
        msg += _sha256(b''.join(struct.pack('<I', txin.sequence) for txin in tx.inputs))

    if output_type == SIGHASH_ALL:
        msg += _sha256(b''.join(out.serialize() for out in tx.outputs))

    # spend_type = ext_flag * 2 + annex_present; annexes are not produced here
    ext_flag = 1 if leaf_hash is not None else 0
    msg += bytes([ext_flag * 2])

    if anyone_can_pay:
        txin = tx.inputs[input_index]
        prevout = prevouts[input_index]
        msg += txin.outpoint.serialize()
        msg += struct.pack('<q', prevout.value)
        msg += varstr(prevout.script_pubkey)
        msg += struct.pack('<I', txin.sequence)
    else:
        msg += struct.pack('<I', input_index)

    if output_type == SIGHASH_SINGLE:
        if input_index >= len(tx.outputs):
            raise SighashComputationError(
                "SIGHASH_SINGLE without a corresponding output", input_index
            )
        msg += _sha256(tx.outputs[input_index].serialize())

    if leaf_hash is not None:
        msg += leaf_hash
        msg += bytes([TAPSCRIPT_KEY_VERSION])
        msg += struct.pack('<I', NO_CODESEPARATOR)

    return msg


def taproot_signature_hash(
    tx: Transaction,
    input_index: int,
    prevouts: Sequence[TxOut],
    hash_type: int = SIGHASH_DEFAULT,
    leaf_hash: Optional[bytes] = None
) -> bytes:
    """
    Compute the 32-byte BIP341 signature hash for one input.

    Returns:
        TapSighash tagged hash of epoch 0 and the signature message
    """
    msg = taproot_signature_message(tx, input_index, prevouts, hash_type, leaf_hash)
    sighash = tagged_hash("TapSighash", b'\x00' + msg)
    logger.debug(
        "Computed taproot sighash %s for input %d (hash_type=%#04x, script_path=%s)",
        sighash.hex(), input_index, hash_type, leaf_hash is not None
    )
    return sighash


def build_spend_transaction(
    outpoint: OutPoint,
    outputs: Iterable[TxOut],
    sequence: int = DEFAULT_SEQUENCE,
    version: int = 2,
    locktime: int = 0
) -> Transaction:
    """Convenience constructor for the single-input spends of a staking output."""
    return Transaction(
        inputs=(TxIn(outpoint=outpoint, sequence=sequence),),
        outputs=tuple(outputs),
        version=version,
        locktime=locktime,
    )
