"""
Tests for Script Encoding Utilities

Tests Taproot addresses, script disassembly and witness
serialization.
"""

import pytest

from bitcoinlib.encoding import addr_bech32_to_pubkeyhash

from scripts.encoding import (
    parse_script,
    script_to_asm,
    serialize_compact_size,
    serialize_witness,
    taproot_address,
)
from scripts.opcodes import ScriptOpcode, push_data


class TestTaprootAddresses:
    """Test P2TR address encoding."""

    def test_bip341_taproot_address(self):
        output_key = bytes.fromhex("53a1f6e454df1aa2776a2814a721372d6258050de330b3c6d10ee8f4e0dda343")
        assert taproot_address(output_key, "bc") == (
            "bc1p2wsldez5mud2yam29q22wgfh9439spgduvct83k3pm50fcxa5dps59h4z5"
        )

    def test_network_prefix(self):
        address = taproot_address(b'\x01' * 32, "tb")
        assert address.startswith("tb1p")
        assert addr_bech32_to_pubkeyhash(address, prefix="tb") == b'\x01' * 32

    @pytest.mark.parametrize("length", [0, 20, 33])
    def test_rejects_wrong_key_length(self, length):
        with pytest.raises(ValueError, match="32 bytes"):
            taproot_address(b'\x02' * length, "bc")


class TestScriptParsing:
    """Test script parsing and disassembly."""

    def test_asm(self):
        key = b'\xaa' * 32
        script = push_data(key) + bytes([ScriptOpcode.OP_CHECKSIGVERIFY, 0x52, ScriptOpcode.OP_CHECKSEQUENCEVERIFY])
        assert script_to_asm(script) == f"{key.hex()} OP_CHECKSIGVERIFY OP_2 OP_CHECKSEQUENCEVERIFY"

    def test_pushdata1(self):
        data = b'\x01' * 80
        assert parse_script(push_data(data)) == [(ScriptOpcode.OP_PUSHDATA1, data)]

    def test_truncated_push(self):
        with pytest.raises(ValueError):
            parse_script(bytes([0x20]) + b'\x00' * 10)

    def test_unknown_opcode_name(self):
        assert script_to_asm(bytes([0xfe])) == "OP_UNKNOWN_fe"


class TestWitnessSerialization:
    """Test compact size and witness encoding."""

    @pytest.mark.parametrize("value,encoded", [
        (0, b'\x00'),
        (0xfc, b'\xfc'),
        (0xfd, b'\xfd\xfd\x00'),
        (0x10000, b'\xfe\x00\x00\x01\x00'),
        (0x100000000, b'\xff\x00\x00\x00\x00\x01\x00\x00\x00'),
    ])
    def test_compact_size(self, value, encoded):
        assert serialize_compact_size(value) == encoded

    def test_witness_with_empty_items(self):
        stack = [b'', b'\x01' * 64, b'']
        assert serialize_witness(stack) == b'\x03' + b'\x00' + b'\x40' + b'\x01' * 64 + b'\x00'

    def test_witness_long_item_uses_compact_size_prefix(self):
        item = b'\xab' * 400
        assert serialize_witness([item]) == b'\x01' + b'\xfd\x90\x01' + item
