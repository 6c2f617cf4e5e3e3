"""
Tests for Taproot Signature Hashing

Tests transaction serialization and BIP341/BIP342 signature hash properties.
"""

import pytest

from crypto.exceptions import SighashComputationError
from scripts.transaction import (
    SIGHASH_ALL,
    SIGHASH_ANYONECANPAY,
    SIGHASH_DEFAULT,
    SIGHASH_NONE,
    SIGHASH_SINGLE,
    OutPoint,
    PrevOutputFetcher,
    Transaction,
    TxIn,
    TxOut,
    build_spend_transaction,
    taproot_signature_hash,
    taproot_signature_message,
)


P2TR_SCRIPT = b'\x51\x20' + b'\x11' * 32
LEAF_HASH = b'\x22' * 32


@pytest.fixture
def outpoints():
    return [OutPoint("aa" * 32, 0), OutPoint("bb" * 32, 1)]


@pytest.fixture
def prevouts():
    return [TxOut(50_000, P2TR_SCRIPT), TxOut(70_000, P2TR_SCRIPT)]


@pytest.fixture
def two_input_tx(outpoints):
    return Transaction(
        inputs=[TxIn(outpoints[0]), TxIn(outpoints[1], sequence=10)],
        outputs=[TxOut(100_000, P2TR_SCRIPT), TxOut(19_000, b'\x00\x14' + b'\x33' * 20)],
    )


class TestTransactionModel:
    """Test outpoints and transaction serialization."""

    def test_outpoint_from_string(self):
        outpoint = OutPoint.from_string("AB" * 32 + ":3")
        assert outpoint == OutPoint("ab" * 32, 3)
        assert str(outpoint) == "ab" * 32 + ":3"

    def test_outpoint_serialization_is_little_endian(self):
        txid = "00" * 31 + "01"
        assert OutPoint(txid, 1).serialize() == b'\x01' + b'\x00' * 31 + b'\x01\x00\x00\x00'

    @pytest.mark.parametrize("value", ["abcd", "zz" * 32 + ":0", "aa" * 32])
    def test_invalid_outpoint(self, value):
        with pytest.raises(ValueError):
            OutPoint.from_string(value)

    def test_negative_output_value(self):
        with pytest.raises(ValueError):
            TxOut(-1, P2TR_SCRIPT)

    def test_witness_does_not_change_txid(self, outpoints):
        tx = build_spend_transaction(outpoints[0], [TxOut(1000, P2TR_SCRIPT)])
        signed = tx.with_witness(0, [b'\x01' * 64, b'\x51'])

        assert signed.txid() == tx.txid()
        assert signed.wtxid() != tx.wtxid()
        assert signed.serialize()[4:6] == b'\x00\x01'
        assert tx.serialize() == tx.serialize(include_witness=False)

    def test_with_witness_bad_index(self, outpoints):
        tx = build_spend_transaction(outpoints[0], [])
        with pytest.raises(IndexError):
            tx.with_witness(1, [])

    def test_fetcher_resolves_in_input_order(self, two_input_tx, outpoints, prevouts):
        fetcher = PrevOutputFetcher()
        fetcher.add_prev_out(outpoints[1], prevouts[1])
        fetcher.add_prev_out(outpoints[0], prevouts[0])

        assert len(fetcher) == 2
        assert outpoints[0] in fetcher
        assert fetcher.prevouts_for(two_input_tx) == prevouts

    def test_fetcher_missing_output(self, two_input_tx, outpoints, prevouts):
        fetcher = PrevOutputFetcher.single(outpoints[0], prevouts[0])
        with pytest.raises(SighashComputationError) as exc_info:
            fetcher.prevouts_for(two_input_tx)
        assert exc_info.value.input_index == 1


class TestSignatureHash:
    """Test BIP341 signature hash commitments."""

    def test_hash_is_32_bytes_and_deterministic(self, two_input_tx, prevouts):
        first = taproot_signature_hash(two_input_tx, 0, prevouts)
        assert len(first) == 32
        assert first == taproot_signature_hash(two_input_tx, 0, prevouts)

    def test_default_and_all_differ(self, two_input_tx, prevouts):
        # The hash type byte itself is committed
        default = taproot_signature_hash(two_input_tx, 0, prevouts, SIGHASH_DEFAULT)
        explicit = taproot_signature_hash(two_input_tx, 0, prevouts, SIGHASH_ALL)
        assert default != explicit

    def test_leaf_hash_commitment(self, two_input_tx, prevouts):
        key_path = taproot_signature_hash(two_input_tx, 0, prevouts)
        script_path = taproot_signature_hash(two_input_tx, 0, prevouts, leaf_hash=LEAF_HASH)
        other_leaf = taproot_signature_hash(two_input_tx, 0, prevouts, leaf_hash=b'\x23' * 32)
        assert len({key_path, script_path, other_leaf}) == 3

    def test_script_path_message_extension(self, two_input_tx, prevouts):
        key_path = taproot_signature_message(two_input_tx, 0, prevouts)
        script_path = taproot_signature_message(two_input_tx, 0, prevouts, leaf_hash=LEAF_HASH)

        # leaf hash, key version and codeseparator position
        assert len(script_path) == len(key_path) + 32 + 1 + 4
        assert script_path.endswith(LEAF_HASH + b'\x00' + b'\xff' * 4)

    def test_commits_to_input_index(self, two_input_tx, prevouts):
        assert (taproot_signature_hash(two_input_tx, 0, prevouts)
                != taproot_signature_hash(two_input_tx, 1, prevouts))

    def test_commits_to_spent_amounts(self, two_input_tx, prevouts):
        changed = [TxOut(50_001, P2TR_SCRIPT), prevouts[1]]
        assert (taproot_signature_hash(two_input_tx, 0, prevouts)
                != taproot_signature_hash(two_input_tx, 0, changed))

    def test_commits_to_outputs(self, two_input_tx, prevouts, outpoints):
        other = Transaction(inputs=two_input_tx.inputs, outputs=two_input_tx.outputs[:1])
        assert (taproot_signature_hash(two_input_tx, 0, prevouts)
                != taproot_signature_hash(other, 0, prevouts))

    def test_none_ignores_outputs(self, two_input_tx, prevouts):
        other = Transaction(inputs=two_input_tx.inputs, outputs=two_input_tx.outputs[:1])
        assert (taproot_signature_hash(two_input_tx, 0, prevouts, SIGHASH_NONE)
                == taproot_signature_hash(other, 0, prevouts, SIGHASH_NONE))

    def test_single_commits_only_to_matching_output(self, two_input_tx, prevouts):
        changed = Transaction(
            inputs=two_input_tx.inputs,
            outputs=[two_input_tx.outputs[0], TxOut(1, P2TR_SCRIPT)],
        )
        assert (taproot_signature_hash(two_input_tx, 0, prevouts, SIGHASH_SINGLE)
                == taproot_signature_hash(changed, 0, prevouts, SIGHASH_SINGLE))

    def test_single_without_output(self, outpoints, prevouts):
        tx = Transaction(
            inputs=[TxIn(outpoints[0]), TxIn(outpoints[1])],
            outputs=[TxOut(1000, P2TR_SCRIPT)],
        )
        with pytest.raises(SighashComputationError, match="SIGHASH_SINGLE"):
            taproot_signature_hash(tx, 1, prevouts, SIGHASH_SINGLE)

    def test_anyonecanpay_ignores_other_inputs(self, two_input_tx, prevouts, outpoints):
        hash_type = SIGHASH_ANYONECANPAY | SIGHASH_ALL
        other = Transaction(
            inputs=[two_input_tx.inputs[0], TxIn(OutPoint("cc" * 32, 7))],
            outputs=two_input_tx.outputs,
        )
        other_prevouts = [prevouts[0], TxOut(1, b'\x51')]
        assert (taproot_signature_hash(two_input_tx, 0, prevouts, hash_type)
                == taproot_signature_hash(other, 0, other_prevouts, hash_type))

    @pytest.mark.parametrize("hash_type", [0x04, 0x80, 0x84, 0xff])
    def test_invalid_hash_type(self, two_input_tx, prevouts, hash_type):
        with pytest.raises(SighashComputationError, match="hash type"):
            taproot_signature_hash(two_input_tx, 0, prevouts, hash_type)

    def test_prevout_count_mismatch(self, two_input_tx, prevouts):
        with pytest.raises(SighashComputationError, match="previous outputs"):
            taproot_signature_hash(two_input_tx, 0, prevouts[:1])

    def test_input_index_out_of_range(self, two_input_tx, prevouts):
        with pytest.raises(SighashComputationError, match="out of range"):
            taproot_signature_hash(two_input_tx, 2, prevouts)

    def test_bad_leaf_hash_length(self, two_input_tx, prevouts):
        with pytest.raises(SighashComputationError, match="32 bytes"):
            taproot_signature_hash(two_input_tx, 0, prevouts, leaf_hash=b'\x00' * 31)
