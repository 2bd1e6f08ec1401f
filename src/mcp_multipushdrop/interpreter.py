"""Spend validation for MultiPushDrop inputs.

Evaluates an unlocking script followed by its locking script on a shared
stack. Only pushes and the opcodes the MultiPushDrop pattern (and the
OP_RETURN outputs it is commonly paired with) use are supported; anything
else raises InvalidOpcode.
"""

import logging
from typing import List, Sequence

from mcp_multipushdrop.errors import (
    CheckSigVerifyFailed,
    CleanStackError,
    InvalidOpcode,
    InvalidStackOperation,
    ScriptExecutionError,
    VerifyFailed,
)
from mcp_multipushdrop.keys import PublicKey, hash256
from mcp_multipushdrop.opcodes import (
    OP_1SUB,
    OP_2DROP,
    OP_CHECKSIG,
    OP_CHECKSIGVERIFY,
    OP_DEPTH,
    OP_DROP,
    OP_PICK,
    OP_RETURN,
    OP_SWAP,
    OP_VERIFY,
    opcode_name,
)
from mcp_multipushdrop.script import (
    LockingScript,
    Script,
    UnlockingScript,
    decode_script_number,
    encode_script_number,
)
from mcp_multipushdrop.sighash import SIGHASH_FORKID, format_preimage
from mcp_multipushdrop.transaction import (
    DEFAULT_SEQUENCE,
    TransactionInput,
    TransactionOutput,
)

logger = logging.getLogger(__name__)

TRUE_ITEM = b"\x01"
FALSE_ITEM = b""


def cast_to_bool(item: bytes) -> bool:
    """Any non-zero byte is true, except a trailing sign bit (negative zero)."""
    for i, byte in enumerate(item):
        if byte:
            return not (i == len(item) - 1 and byte == 0x80)
    return False


class Spend:
    """Validation context for spending one output."""

    def __init__(
        self,
        *,
        source_txid: str,
        source_output_index: int,
        source_satoshis: int,
        locking_script: LockingScript,
        transaction_version: int,
        other_inputs: Sequence[TransactionInput],
        outputs: Sequence[TransactionOutput],
        input_index: int,
        unlocking_script: UnlockingScript,
        input_sequence: int = DEFAULT_SEQUENCE,
        lock_time: int = 0,
    ):
        self.source_txid = source_txid
        self.source_output_index = source_output_index
        self.source_satoshis = source_satoshis
        self.locking_script = locking_script
        self.transaction_version = transaction_version
        self.other_inputs = list(other_inputs)
        self.outputs = list(outputs)
        self.input_index = input_index
        self.unlocking_script = unlocking_script
        self.input_sequence = input_sequence
        self.lock_time = lock_time
        self.stack: List[bytes] = []
        self._handlers = {
            OP_VERIFY: self.on_VERIFY,
            OP_RETURN: self.on_RETURN,
            OP_2DROP: self.on_2DROP,
            OP_DEPTH: self.on_DEPTH,
            OP_DROP: self.on_DROP,
            OP_PICK: self.on_PICK,
            OP_SWAP: self.on_SWAP,
            OP_1SUB: self.on_1SUB,
            OP_CHECKSIG: self.on_CHECKSIG,
            OP_CHECKSIGVERIFY: self.on_CHECKSIGVERIFY,
        }

    def validate(self) -> bool:
        """Evaluate the spend.

        Returns:
            True if the unlocking script satisfies the locking script

        Raises:
            ScriptExecutionError: If evaluation fails at any point
        """
        if not self.unlocking_script.is_push_only():
            raise ScriptExecutionError("Unlocking script must be push only")

        self.stack = []
        self.evaluate_script(self.unlocking_script)
        self.evaluate_script(self.locking_script)

        if len(self.stack) != 1:
            raise CleanStackError(f"Stack has {len(self.stack)} items after evaluation, expected 1")
        if not cast_to_bool(self.stack[-1]):
            raise VerifyFailed("Script evaluated to false")
        return True

    def evaluate_script(self, script: Script) -> None:
        for chunk in script.chunks:
            if chunk.is_push:
                self.stack.append(chunk.value.to_bytes())
                continue
            handler = self._handlers.get(chunk.op)
            if handler is None:
                raise InvalidOpcode(f"invalid opcode {opcode_name(chunk.op)}")
            handler()

    def require_stack_depth(self, depth: int) -> None:
        if len(self.stack) < depth:
            raise InvalidStackOperation(
                f"stack depth {len(self.stack)} less than required depth of {depth}"
            )

    #
    # Flow control
    #
    def on_VERIFY(self):
        self.require_stack_depth(1)
        if not cast_to_bool(self.stack[-1]):
            raise VerifyFailed("OP_VERIFY failed")
        self.stack.pop()

    def on_RETURN(self):
        raise ScriptExecutionError("OP_RETURN encountered")

    #
    # Stack operations
    #
    def on_DROP(self):
        # (x -- )
        self.require_stack_depth(1)
        self.stack.pop()

    def on_2DROP(self):
        # (x1 x2 -- )
        self.require_stack_depth(2)
        self.stack.pop()
        self.stack.pop()

    def on_SWAP(self):
        # (x1 x2 -- x2 x1)
        self.require_stack_depth(2)
        self.stack.append(self.stack.pop(-2))

    def on_DEPTH(self):
        # ( -- stacksize)
        self.stack.append(encode_script_number(len(self.stack)))

    def on_PICK(self):
        # (xn ... x2 x1 x0 n - xn ... x2 x1 x0 xn)
        self.require_stack_depth(2)
        n = decode_script_number(self.stack.pop())
        depth = len(self.stack)
        if not 0 <= n < depth:
            raise InvalidStackOperation(
                f"OP_PICK with argument {n:,d} used on stack with depth {depth:,d}"
            )
        self.stack.append(self.stack[-(n + 1)])

    #
    # Arithmetic
    #
    def on_1SUB(self):
        self.require_stack_depth(1)
        self.stack.append(encode_script_number(decode_script_number(self.stack.pop()) - 1))

    #
    # Crypto
    #
    def on_CHECKSIG(self):
        # (sig pubkey -- bool)
        self.require_stack_depth(2)
        pubkey_bytes = self.stack.pop()
        sig_bytes = self.stack.pop()
        is_good = self.check_sig(sig_bytes, pubkey_bytes)
        self.stack.append(TRUE_ITEM if is_good else FALSE_ITEM)

    def on_CHECKSIGVERIFY(self):
        # (sig pubkey -- )
        self.on_CHECKSIG()
        if not cast_to_bool(self.stack[-1]):
            raise CheckSigVerifyFailed("OP_CHECKSIGVERIFY failed")
        self.stack.pop()

    def check_sig(self, sig_bytes: bytes, pubkey_bytes: bytes) -> bool:
        if not sig_bytes:
            return False
        scope = sig_bytes[-1]
        if not scope & SIGHASH_FORKID:
            logger.debug("signature scope %#04x lacks SIGHASH_FORKID", scope)
            return False
        try:
            public_key = PublicKey.from_bytes(pubkey_bytes)
        except ValueError:
            return False

        preimage = format_preimage(
            source_txid=self.source_txid,
            source_output_index=self.source_output_index,
            source_satoshis=self.source_satoshis,
            transaction_version=self.transaction_version,
            other_inputs=self.other_inputs,
            input_index=self.input_index,
            outputs=self.outputs,
            input_sequence=self.input_sequence,
            subscript=self.locking_script,
            lock_time=self.lock_time,
            scope=scope,
        )
        return public_key.verify_digest(sig_bytes[:-1], hash256(preimage))
