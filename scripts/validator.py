"""
BTC Staking - Tapscript Validation

This module provides a tapscript interpreter that validates script-path
spends of Taproot outputs against the BIP341/BIP342 rules that staking
scripts rely on:

- control block parsing and output key commitment checks
- signature opcodes (OP_CHECKSIG, OP_CHECKSIGVERIFY, OP_CHECKSIGADD) with
  real BIP340 verification over the transaction's signature hash
- the validation weight (sigops) budget
- relative timelocks via OP_CHECKSEQUENCEVERIFY (BIP112)
- clean stack and element size limits

It is used to pre-flight witnesses before broadcast and as the judge in the
test suite. Outcomes are reported as a ValidationResult, never raised.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from crypto.exceptions import SighashComputationError
from crypto.keys import extract_taproot_output_key
from crypto.signatures import verify_schnorr
from scripts.encoding import parse_script, serialize_witness
from scripts.opcodes import OPCODE_NAMES, ScriptOpcode, decode_script_num, encode_script_num
from scripts.taproot_covenant import TAPSCRIPT_LEAF_VERSION, ControlBlock, tap_leaf_hash
from scripts.transaction import (
    SIGHASH_DEFAULT,
    PrevOutputFetcher,
    Transaction,
    TxOut,
    taproot_signature_hash,
)


MAX_STACK_ELEMENT_SIZE = 520
MAX_STACK_SIZE = 1000
VALIDATION_WEIGHT_OFFSET = 50
VALIDATION_WEIGHT_PER_SIGOP = 50
ANNEX_TAG = 0x50

SEQUENCE_LOCKTIME_DISABLE_FLAG = 1 << 31
SEQUENCE_LOCKTIME_TYPE_FLAG = 1 << 22
SEQUENCE_LOCKTIME_MASK = 0x0000ffff

# BIP342 OP_SUCCESSx opcodes
OP_SUCCESS_OPCODES = frozenset(
    [80, 98, 126, 127, 128, 129, 131, 132, 133, 134, 137, 138, 141, 142,
     149, 150, 151, 152, 153] + list(range(187, 255))
)


class ScriptValidationResult(Enum):
    """Script validation results."""
    VALID = "valid"
    INVALID = "invalid"
    ERROR = "error"


@dataclass
class ExecutionStep:
    """Single step in script execution."""
    step: int
    opcode: int
    opcode_name: str
    stack_before: List[bytes]
    stack_after: List[bytes]


@dataclass
class ValidationResult:
    """Result of script validation."""
    result: ScriptValidationResult
    error_message: Optional[str] = None
    execution_trace: Optional[List[ExecutionStep]] = None
    stack_final: Optional[List[bytes]] = None
    validation_time_ms: float = 0.0

    def is_valid(self) -> bool:
        """Check if validation passed."""
        return self.result == ScriptValidationResult.VALID


class ScriptExecutionError(Exception):
    """Raised inside the interpreter to abort execution of a failing script."""
    pass


@dataclass
class TapscriptExecutionContext:
    """Everything a single tapscript execution needs to evaluate its opcodes."""
    tx: Transaction
    input_index: int
    prevouts: List[TxOut]
    script: bytes
    leaf_version: int
    sigops_budget: int
    sighash_cache: Dict[int, bytes] = field(default_factory=dict)

    @property
    def leaf_hash(self) -> bytes:
        return tap_leaf_hash(self.script, self.leaf_version)


def cast_to_bool(value: bytes) -> bool:
    """Interpret a stack element as a boolean (negative zero is false)."""
    for i, byte in enumerate(value):
        if byte != 0:
            # Negative zero
            if i == len(value) - 1 and byte == 0x80:
                return False
            return True
    return False


class TapscriptInterpreter:
    """
    Interpreter for Taproot script-path spends.

    Only the opcodes staking scripts and their tests need are executed;
    any other opcode fails the script.
    """

    def __init__(self):
        """Initialize tapscript interpreter."""
        self.logger = logging.getLogger(__name__)
        self.max_stack_size = MAX_STACK_SIZE
        self.max_element_size = MAX_STACK_ELEMENT_SIZE

    def verify_input(
        self,
        tx: Transaction,
        input_index: int,
        prev_outputs: Union[PrevOutputFetcher, Sequence[TxOut]],
        debug: bool = False
    ) -> ValidationResult:
        """
        Validate the witness of one transaction input.

        Args:
            tx: Transaction whose input is being spent
            input_index: Index of the input to validate
            prev_outputs: Fetcher (or list in input order) for every spent output
            debug: Record a per-opcode execution trace

        Returns:
            ValidationResult with validation outcome
        """
        start_time = time.time()
        trace: List[ExecutionStep] = []

        try:
            if isinstance(prev_outputs, PrevOutputFetcher):
                prevouts = prev_outputs.prevouts_for(tx)
            else:
                prevouts = list(prev_outputs)
            final_stack = self._verify_witness(tx, input_index, prevouts, trace if debug else None)
        except ScriptExecutionError as e:
            self.logger.debug("Input %d rejected: %s", input_index, e)
            return ValidationResult(
                result=ScriptValidationResult.INVALID,
                error_message=str(e),
                execution_trace=trace if debug else None,
                validation_time_ms=(time.time() - start_time) * 1000
            )
        except SighashComputationError as e:
            self.logger.debug("Input %d rejected, sighash unavailable: %s", input_index, e)
            return ValidationResult(
                result=ScriptValidationResult.INVALID,
                error_message=str(e),
                validation_time_ms=(time.time() - start_time) * 1000
            )
        except Exception as e:
            self.logger.error(f"Script validation error: {e}")
            return ValidationResult(
                result=ScriptValidationResult.ERROR,
                error_message=str(e),
                validation_time_ms=(time.time() - start_time) * 1000
            )

        return ValidationResult(
            result=ScriptValidationResult.VALID,
            execution_trace=trace if debug else None,
            stack_final=final_stack,
            validation_time_ms=(time.time() - start_time) * 1000
        )

    def _verify_witness(
        self,
        tx: Transaction,
        input_index: int,
        prevouts: List[TxOut],
        trace: Optional[List[ExecutionStep]]
    ) -> List[bytes]:
        if not 0 <= input_index < len(tx.inputs):
            raise ScriptExecutionError(f"Input index {input_index} out of range")
        if len(prevouts) != len(tx.inputs):
            raise ScriptExecutionError("Previous outputs do not match transaction inputs")

        output_key = extract_taproot_output_key(prevouts[input_index].script_pubkey)
        if output_key is None:
            raise ScriptExecutionError("Spent output is not a witness v1 taproot program")

        witness = list(tx.inputs[input_index].witness)
        if not witness:
            raise ScriptExecutionError("Witness program witness is empty")
        if len(witness) >= 2 and witness[-1] and witness[-1][0] == ANNEX_TAG:
            raise ScriptExecutionError("Taproot annex is not supported")

        if len(witness) == 1:
            self._verify_key_path(tx, input_index, prevouts, output_key, witness[0])
            return []

        control_bytes = witness[-1]
        script = witness[-2]
        stack = witness[:-2]

        try:
            control_block = ControlBlock.from_bytes(control_bytes)
        except ValueError as e:
            raise ScriptExecutionError(f"Invalid taproot control block: {e}") from e

        if not control_block.verify_commitment(script, output_key):
            raise ScriptExecutionError("Witness program hash mismatch")

        if control_block.leaf_version != TAPSCRIPT_LEAF_VERSION:
            raise ScriptExecutionError(
                f"Discouraged unknown taproot leaf version {control_block.leaf_version:#x}"
            )

        for item in stack:
            if len(item) > self.max_element_size:
                raise ScriptExecutionError("Push value size limit exceeded")

        context = TapscriptExecutionContext(
            tx=tx,
            input_index=input_index,
            prevouts=prevouts,
            script=script,
            leaf_version=control_block.leaf_version,
            sigops_budget=VALIDATION_WEIGHT_OFFSET + len(serialize_witness(witness)),
        )
        return self._execute_tapscript(context, stack, trace)

    def _verify_key_path(
        self,
        tx: Transaction,
        input_index: int,
        prevouts: List[TxOut],
        output_key: bytes,
        signature: bytes
    ) -> None:
        hash_type = self._signature_hash_type(signature)
        sighash = taproot_signature_hash(tx, input_index, prevouts, hash_type)
        if not verify_schnorr(output_key, signature[:64], sighash):
            raise ScriptExecutionError("Invalid Schnorr signature for key path spend")

    def _execute_tapscript(
        self,
        context: TapscriptExecutionContext,
        stack: List[bytes],
        trace: Optional[List[ExecutionStep]]
    ) -> List[bytes]:
        """Execute the leaf script and enforce the final clean stack rule."""
        try:
            elements = parse_script(context.script)
        except ValueError as e:
            raise ScriptExecutionError(f"Malformed script: {e}") from e

        for opcode, _ in elements:
            if opcode in OP_SUCCESS_OPCODES:
                raise ScriptExecutionError(f"Discouraged OP_SUCCESS opcode {opcode:#04x}")

        for step, (opcode, data) in enumerate(elements):
            stack_before = list(stack) if trace is not None else []

            try:
                self._execute_opcode(context, opcode, data, stack)
            except ValueError as e:
                raise ScriptExecutionError(
                    f"{OPCODE_NAMES.get(opcode, hex(opcode))} failed: {e}"
                ) from e

            if len(stack) > self.max_stack_size:
                raise ScriptExecutionError("Stack size limit exceeded")

            if trace is not None:
                trace.append(ExecutionStep(
                    step=step,
                    opcode=opcode,
                    opcode_name=OPCODE_NAMES.get(opcode, f"OP_UNKNOWN_{opcode:02x}"),
                    stack_before=stack_before,
                    stack_after=list(stack),
                ))

        if len(stack) != 1:
            raise ScriptExecutionError(f"Stack must contain exactly one item after execution, got {len(stack)}")
        if not cast_to_bool(stack[-1]):
            raise ScriptExecutionError("Script evaluated without error but finished with a false top stack element")
        return stack

    def _execute_opcode(
        self,
        context: TapscriptExecutionContext,
        opcode: int,
        data: Optional[bytes],
        stack: List[bytes]
    ) -> None:
        """Execute a single opcode."""
        if data is not None:
            if len(data) > self.max_element_size:
                raise ScriptExecutionError("Push value size limit exceeded")
            stack.append(data)
            return

        if opcode == ScriptOpcode.OP_0:
            stack.append(b'')
        elif opcode == ScriptOpcode.OP_1NEGATE:
            stack.append(encode_script_num(-1))
        elif ScriptOpcode.OP_1 <= opcode <= ScriptOpcode.OP_16:
            stack.append(encode_script_num(opcode - ScriptOpcode.OP_1 + 1))
        elif opcode == ScriptOpcode.OP_NOP:
            pass
        elif opcode == ScriptOpcode.OP_VERIFY:
            self._require(stack, 1)
            if not cast_to_bool(stack.pop()):
                raise ScriptExecutionError("OP_VERIFY failed")
        elif opcode == ScriptOpcode.OP_DROP:
            self._require(stack, 1)
            stack.pop()
        elif opcode == ScriptOpcode.OP_DUP:
            self._require(stack, 1)
            stack.append(stack[-1])
        elif opcode in (ScriptOpcode.OP_EQUAL, ScriptOpcode.OP_EQUALVERIFY):
            self._require(stack, 2)
            b = stack.pop()
            a = stack.pop()
            if opcode == ScriptOpcode.OP_EQUALVERIFY:
                if a != b:
                    raise ScriptExecutionError("OP_EQUALVERIFY failed")
            else:
                stack.append(b'\x01' if a == b else b'')
        elif opcode in _BINARY_NUMERIC_OPS:
            self._require(stack, 2)
            b = decode_script_num(stack.pop())
            a = decode_script_num(stack.pop())
            result = _BINARY_NUMERIC_OPS[opcode](a, b)
            if opcode == ScriptOpcode.OP_NUMEQUALVERIFY:
                if not result:
                    raise ScriptExecutionError("OP_NUMEQUALVERIFY failed")
            elif isinstance(result, bool):
                stack.append(b'\x01' if result else b'')
            else:
                stack.append(encode_script_num(result))
        elif opcode in (ScriptOpcode.OP_CHECKSIG, ScriptOpcode.OP_CHECKSIGVERIFY):
            self._require(stack, 2)
            pubkey = stack.pop()
            signature = stack.pop()
            success = self._check_signature(context, signature, pubkey)
            if opcode == ScriptOpcode.OP_CHECKSIGVERIFY:
                if not success:
                    raise ScriptExecutionError("OP_CHECKSIGVERIFY failed")
            else:
                stack.append(b'\x01' if success else b'')
        elif opcode == ScriptOpcode.OP_CHECKSIGADD:
            self._require(stack, 3)
            pubkey = stack.pop()
            count = decode_script_num(stack.pop())
            signature = stack.pop()
            success = self._check_signature(context, signature, pubkey)
            stack.append(encode_script_num(count + (1 if success else 0)))
        elif opcode == ScriptOpcode.OP_CHECKSEQUENCEVERIFY:
            self._check_sequence(context, stack)
        else:
            raise ScriptExecutionError(
                f"Unsupported opcode {OPCODE_NAMES.get(opcode, hex(opcode))}"
            )

    def _require(self, stack: List[bytes], count: int) -> None:
        if len(stack) < count:
            raise ScriptExecutionError("Operation not valid with the current stack size")

    def _signature_hash_type(self, signature: bytes) -> int:
        if len(signature) == 64:
            return SIGHASH_DEFAULT
        if len(signature) == 65:
            if signature[64] == SIGHASH_DEFAULT:
                raise ScriptExecutionError("Explicit default hash type is not allowed")
            return signature[64]
        raise ScriptExecutionError(f"Invalid Schnorr signature size {len(signature)}")

    def _check_signature(self, context: TapscriptExecutionContext, signature: bytes, pubkey: bytes) -> bool:
        """
        BIP342 signature validation.

        An empty signature is a valid "no" vote; a non-empty signature must
        verify or the whole script fails.
        """
        if not pubkey:
            raise ScriptExecutionError("Public key is empty")

        if not signature:
            return False

        context.sigops_budget -= VALIDATION_WEIGHT_PER_SIGOP
        if context.sigops_budget < 0:
            raise ScriptExecutionError("Validation weight budget exceeded")

        if len(pubkey) != 32:
            raise ScriptExecutionError("Discouraged upgradable public key type")

        hash_type = self._signature_hash_type(signature)
        sighash = context.sighash_cache.get(hash_type)
        if sighash is None:
            sighash = taproot_signature_hash(
                context.tx, context.input_index, context.prevouts, hash_type, context.leaf_hash
            )
            context.sighash_cache[hash_type] = sighash

        if not verify_schnorr(pubkey, signature[:64], sighash):
            raise ScriptExecutionError(f"Invalid Schnorr signature for key {pubkey.hex()}")
        return True

    def _check_sequence(self, context: TapscriptExecutionContext, stack: List[bytes]) -> None:
        """OP_CHECKSEQUENCEVERIFY as defined in BIP112."""
        self._require(stack, 1)
        # Sequence numbers are 32-bit, so up to 5 bytes are accepted here
        sequence = decode_script_num(stack[-1], max_size=5)
        if sequence < 0:
            raise ScriptExecutionError("Negative sequence lock")

        if sequence & SEQUENCE_LOCKTIME_DISABLE_FLAG:
            return

        if context.tx.version < 2:
            raise ScriptExecutionError("Transaction version must be at least 2 for relative locks")

        tx_sequence = context.tx.inputs[context.input_index].sequence
        if tx_sequence & SEQUENCE_LOCKTIME_DISABLE_FLAG:
            raise ScriptExecutionError("Input sequence has relative locks disabled")

        lock_mask = SEQUENCE_LOCKTIME_TYPE_FLAG | SEQUENCE_LOCKTIME_MASK
        tx_masked = tx_sequence & lock_mask
        script_masked = sequence & lock_mask

        same_type = (
            (tx_masked < SEQUENCE_LOCKTIME_TYPE_FLAG) == (script_masked < SEQUENCE_LOCKTIME_TYPE_FLAG)
        )
        if not same_type:
            raise ScriptExecutionError("Relative lock type mismatch")
        if script_masked > tx_masked:
            raise ScriptExecutionError(
                f"Unsatisfied relative lock: required {script_masked}, input sequence {tx_masked}"
            )


_BINARY_NUMERIC_OPS = {
    ScriptOpcode.OP_ADD: lambda a, b: a + b,
    ScriptOpcode.OP_NUMEQUAL: lambda a, b: a == b,
    ScriptOpcode.OP_NUMEQUALVERIFY: lambda a, b: a == b,
    ScriptOpcode.OP_LESSTHAN: lambda a, b: a < b,
    ScriptOpcode.OP_GREATERTHAN: lambda a, b: a > b,
    ScriptOpcode.OP_LESSTHANOREQUAL: lambda a, b: a <= b,
    ScriptOpcode.OP_GREATERTHANOREQUAL: lambda a, b: a >= b,
}


def verify_input(
    tx: Transaction,
    input_index: int,
    prev_outputs: Union[PrevOutputFetcher, Sequence[TxOut]],
    debug: bool = False
) -> ValidationResult:
    """Validate one input with a fresh TapscriptInterpreter."""
    return TapscriptInterpreter().verify_input(tx, input_index, prev_outputs, debug)
