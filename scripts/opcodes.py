"""
BTC Staking - Script Opcodes and Push Encoding

Opcode constants and the minimal push encodings used when compiling
tapscript leaves.
"""

import struct
from typing import List


class ScriptOpcode:
    """Bitcoin Script opcodes used in staking script construction."""

    # Constants
    OP_0 = 0x00
    OP_FALSE = OP_0
    OP_PUSHDATA1 = 0x4c
    OP_PUSHDATA2 = 0x4d
    OP_PUSHDATA4 = 0x4e
    OP_1NEGATE = 0x4f
    OP_1 = 0x51
    OP_TRUE = OP_1
    OP_16 = 0x60

    # Flow control
    OP_NOP = 0x61
    OP_VERIFY = 0x69
    OP_RETURN = 0x6a

    # Stack operations
    OP_DROP = 0x75
    OP_DUP = 0x76

    # Bitwise logic
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88

    # Arithmetic
    OP_ADD = 0x93
    OP_NUMEQUAL = 0x9c
    OP_NUMEQUALVERIFY = 0x9d
    OP_LESSTHAN = 0x9f
    OP_GREATERTHAN = 0xa0
    OP_LESSTHANOREQUAL = 0xa1
    OP_GREATERTHANOREQUAL = 0xa2

    # Crypto
    OP_CHECKSIG = 0xac
    OP_CHECKSIGVERIFY = 0xad

    # Expansion
    OP_CHECKLOCKTIMEVERIFY = 0xb1
    OP_CHECKSEQUENCEVERIFY = 0xb2

    # Tapscript (BIP342)
    OP_CHECKSIGADD = 0xba


OPCODE_NAMES = {
    value: name
    for name, value in vars(ScriptOpcode).items()
    if name.startswith('OP_') and name not in ('OP_FALSE', 'OP_TRUE')
}
for _n in range(2, 16):
    OPCODE_NAMES[ScriptOpcode.OP_1 + _n - 1] = f"OP_{_n}"


def encode_script_num(value: int) -> bytes:
    """Encode integer as a minimal Bitcoin Script number (little-endian sign-magnitude)."""
    if value == 0:
        return b''

    negative = value < 0
    value = abs(value)

    result = []
    while value > 0:
        result.append(value & 0xff)
        value >>= 8

    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80

    return bytes(result)


def decode_script_num(data: bytes, max_size: int = 4) -> int:
    """
    Decode a Bitcoin Script number.

    Raises:
        ValueError: If the encoding is longer than ``max_size`` or not minimal
    """
    if len(data) > max_size:
        raise ValueError(f"Script number overflow: {len(data)} > {max_size} bytes")
    if not data:
        return 0

    # Minimal encoding: the top byte may only be 0x00/0x80 when needed for the sign bit
    if data[-1] & 0x7f == 0 and (len(data) == 1 or not data[-2] & 0x80):
        raise ValueError("Non-minimally encoded script number")

    result = int.from_bytes(data, 'little')
    if data[-1] & 0x80:
        return -(result & ~(0x80 << (8 * (len(data) - 1))))
    return result


def push_data(data: bytes) -> bytes:
    """Encode the shortest push of ``data`` onto the stack."""
    length = len(data)
    if length == 0:
        return bytes([ScriptOpcode.OP_0])
    if length < ScriptOpcode.OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xff:
        return bytes([ScriptOpcode.OP_PUSHDATA1, length]) + data
    if length <= 0xffff:
        return bytes([ScriptOpcode.OP_PUSHDATA2]) + struct.pack('<H', length) + data
    return bytes([ScriptOpcode.OP_PUSHDATA4]) + struct.pack('<I', length) + data


def push_int(value: int) -> bytes:
    """Push integer onto the stack using small-integer opcodes where possible."""
    if value == 0:
        return bytes([ScriptOpcode.OP_0])
    if value == -1:
        return bytes([ScriptOpcode.OP_1NEGATE])
    if 1 <= value <= 16:
        return bytes([ScriptOpcode.OP_1 + value - 1])
    return push_data(encode_script_num(value))


def build_script(*parts) -> bytes:
    """
    Concatenate opcodes (ints) and pre-encoded fragments (bytes).

    Example:
        build_script(push_data(key), ScriptOpcode.OP_CHECKSIG)
    """
    chunks: List[bytes] = []
    for part in parts:
        if isinstance(part, int):
            chunks.append(bytes([part]))
        else:
            chunks.append(part)
    return b''.join(chunks)
