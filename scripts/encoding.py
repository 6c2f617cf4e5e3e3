"""
BTC Staking - Script and Address Encoding Utilities

This module provides:
- Taproot (bech32m) address encoding
- Human readable disassembly of tapscripts
- Witness stack serialization helpers
"""

import struct
from typing import List, Optional, Sequence, Tuple

from bitcoinlib.encoding import pubkeyhash_to_addr_bech32, varstr

from scripts.opcodes import OPCODE_NAMES, ScriptOpcode


TAPROOT_WITNESS_VERSION = 1


def taproot_address(output_key: bytes, hrp: str) -> str:
    """Encode a 32-byte Taproot output key as a bech32m P2TR address."""
    if len(output_key) != 32:
        raise ValueError("Taproot output key must be 32 bytes")
    return pubkeyhash_to_addr_bech32(output_key, prefix=hrp, witver=TAPROOT_WITNESS_VERSION)


def parse_script(script: bytes) -> List[Tuple[int, Optional[bytes]]]:
    """
    Split a script into (opcode, pushed data) pairs.

    Raises:
        ValueError: If a push runs past the end of the script
    """
    elements = []
    pc = 0
    while pc < len(script):
        opcode = script[pc]
        pc += 1
        data = None

        if 0 < opcode < ScriptOpcode.OP_PUSHDATA1:
            size = opcode
        elif opcode == ScriptOpcode.OP_PUSHDATA1:
            if pc + 1 > len(script):
                raise ValueError("Truncated OP_PUSHDATA1")
            size = script[pc]
            pc += 1
        elif opcode == ScriptOpcode.OP_PUSHDATA2:
            if pc + 2 > len(script):
                raise ValueError("Truncated OP_PUSHDATA2")
            size = struct.unpack('<H', script[pc:pc + 2])[0]
            pc += 2
        elif opcode == ScriptOpcode.OP_PUSHDATA4:
            if pc + 4 > len(script):
                raise ValueError("Truncated OP_PUSHDATA4")
            size = struct.unpack('<I', script[pc:pc + 4])[0]
            pc += 4
        else:
            size = None

        if size is not None:
            if pc + size > len(script):
                raise ValueError(f"Push of {size} bytes exceeds script length")
            data = script[pc:pc + size]
            pc += size

        elements.append((opcode, data))
    return elements


def script_to_asm(script: bytes) -> str:
    """Convert script to ASM representation."""
    parts = []
    for opcode, data in parse_script(script):
        if data is not None:
            parts.append(data.hex())
        else:
            parts.append(OPCODE_NAMES.get(opcode, f"OP_UNKNOWN_{opcode:02x}"))
    return ' '.join(parts)


def serialize_compact_size(n: int) -> bytes:
    """Serialize integer as Bitcoin compact size."""
    if n < 0xfd:
        return struct.pack('<B', n)
    elif n <= 0xffff:
        return b'\xfd' + struct.pack('<H', n)
    elif n <= 0xffffffff:
        return b'\xfe' + struct.pack('<I', n)
    else:
        return b'\xff' + struct.pack('<Q', n)


def serialize_witness(stack: Sequence[bytes]) -> bytes:
    """Serialize a witness stack as it appears in a transaction input's witness field."""
    return serialize_compact_size(len(stack)) + b''.join(varstr(item) for item in stack)
