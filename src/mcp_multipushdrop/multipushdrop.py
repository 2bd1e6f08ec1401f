"""MultiPushDrop script template.

A MultiPushDrop output can be spent by any one of N public keys and carries
M data fields that are dropped once the signature is verified:

    <key_0> ... <key_N-1>
    <N> OP_PICK OP_PICK OP_DEPTH OP_1SUB OP_PICK OP_SWAP OP_CHECKSIGVERIFY
    <field_0> ... <field_M-1>
    OP_2DROP ... [OP_DROP]
    OP_TRUE

The unlocking script is <signature> <selector>. The first OP_PICK uses N to
reach past the keys and copy the selector, the second picks the key the
selector names. The signature is always the bottom stack item, so it is
copied with OP_DEPTH OP_1SUB OP_PICK regardless of N or M.

Anyone holding one of the keys can spend the output alone. There is no
constraint keeping the other key holders informed.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from mcp_multipushdrop.errors import (
    EmptyCounterpartyList,
    KeyNotFound,
    MalformedScriptStructure,
    MissingSigningContext,
    vert,
)
from mcp_multipushdrop.keys import canonical_der, hash256
from mcp_multipushdrop.opcodes import (
    OP_1SUB,
    OP_2DROP,
    OP_CHECKSIGVERIFY,
    OP_DEPTH,
    OP_DROP,
    OP_PICK,
    OP_SWAP,
    OP_TRUE,
    opcode_name,
)
from mcp_multipushdrop.script import (
    LockingScript,
    Script,
    ScriptChunk,
    UnlockingScript,
    decode_script_number,
    encode_minimal_push,
    encode_number_push,
)
from mcp_multipushdrop.sighash import compute_scope, format_preimage
from mcp_multipushdrop.transaction import Transaction
from mcp_multipushdrop.wallet import Counterparty, ProtocolID, WalletInterface

logger = logging.getLogger(__name__)

PUBLIC_KEY_LENGTH = 33

# Follows the <N> push
SELECTION_PROGRAM = (
    ScriptChunk(OP_PICK),
    ScriptChunk(OP_PICK),
    ScriptChunk(OP_DEPTH),
    ScriptChunk(OP_1SUB),
    ScriptChunk(OP_PICK),
    ScriptChunk(OP_SWAP),
    ScriptChunk(OP_CHECKSIGVERIFY),
)
SELECTION_PROGRAM_LENGTH = 1 + len(SELECTION_PROGRAM)

DROP_OPCODES = (OP_DROP, OP_2DROP)

# Low-S DER signature (71) + scope byte + push opcode, then a selector push
# of up to 3 bytes (selectors below 32768)
UNLOCKING_SCRIPT_LENGTH_ESTIMATE = 76


@dataclass
class MultiPushDropDecoded:
    """Keys and fields recovered from a MultiPushDrop locking script."""

    locking_public_keys: List[str]
    fields: List[bytes]


def _describe(chunk: ScriptChunk) -> str:
    if chunk.data is not None:
        return f"a {len(chunk.data)}-byte push"
    return opcode_name(chunk.op)


def drop_program(count: int) -> List[ScriptChunk]:
    """OP_2DROP for each pair of items, then OP_DROP for an odd one out."""
    chunks = [ScriptChunk(OP_2DROP)] * (count // 2)
    if count % 2:
        chunks.append(ScriptChunk(OP_DROP))
    return chunks


class MultiPushDrop:
    """1-of-N push-drop script template backed by a wallet."""

    def __init__(self, wallet: WalletInterface, originator: Optional[str] = None):
        self.wallet = wallet
        self.originator = originator

    @staticmethod
    def decode(script: Script) -> MultiPushDropDecoded:
        """Recover the locking public keys and data fields from a script.

        Args:
            script: A MultiPushDrop locking script

        Returns:
            Decoded keys (hex, in push order) and fields (in push order)

        Raises:
            MalformedScriptStructure: If the script does not have the
                key/selection program/field/drop layout
        """
        chunks = script.chunks
        cursor = 0

        keys: List[str] = []
        while cursor < len(chunks) and chunks[cursor].data is not None \
                and len(chunks[cursor].data) == PUBLIC_KEY_LENGTH:
            keys.append(chunks[cursor].data.hex())
            cursor += 1
        vert(len(keys) > 0, "Expected at least one 33-byte public key push")

        remaining = len(chunks) - cursor
        vert(
            remaining >= SELECTION_PROGRAM_LENGTH,
            f"Selection program truncated: expected {SELECTION_PROGRAM_LENGTH} chunks "
            f"after {len(keys)} keys, got {remaining}",
        )

        count_chunk = chunks[cursor]
        try:
            key_count = decode_script_number(count_chunk.value.to_bytes())
        except ValueError:
            raise MalformedScriptStructure(
                f"Expected key count push at chunk {cursor}, got {_describe(count_chunk)}"
            ) from None
        vert(
            key_count == len(keys),
            f"Key count push says {key_count} but {len(keys)} keys were found",
        )

        for offset, expected in enumerate(SELECTION_PROGRAM, start=1):
            actual = chunks[cursor + offset]
            vert(
                actual == expected,
                f"Expected {opcode_name(expected.op)} at chunk {cursor + offset}, "
                f"got {_describe(actual)}",
            )
        cursor += SELECTION_PROGRAM_LENGTH

        fields: List[bytes] = []
        while cursor < len(chunks) and chunks[cursor].op not in DROP_OPCODES:
            chunk = chunks[cursor]
            vert(
                chunk.is_push,
                f"Expected a field push or drop at chunk {cursor}, got {_describe(chunk)}",
            )
            fields.append(chunk.value.to_bytes())
            cursor += 1
        vert(cursor < len(chunks), "Drop program missing after fields")

        dropped = 0
        while cursor < len(chunks) and chunks[cursor].op in DROP_OPCODES:
            dropped += 2 if chunks[cursor].op == OP_2DROP else 1
            cursor += 1
        expected_drops = len(fields) + len(keys) + 2
        vert(
            dropped == expected_drops,
            f"Drop program removes {dropped} items, expected {expected_drops}",
        )

        vert(
            cursor == len(chunks) - 1 and chunks[cursor] == ScriptChunk(OP_TRUE),
            "Expected a single OP_TRUE after the drop program",
        )

        return MultiPushDropDecoded(locking_public_keys=keys, fields=fields)

    async def lock(
        self,
        fields: Sequence[bytes],
        protocol_id: ProtocolID,
        key_id: str,
        counterparties: Sequence[Counterparty],
    ) -> LockingScript:
        """Create a locking script spendable by any of the counterparties.

        Args:
            fields: Data fields to embed
            protocol_id: (security level, protocol name) for key derivation
            key_id: Key ID for key derivation
            counterparties: 'self', 'anyone' or public key hex, at least one

        Returns:
            The MultiPushDrop locking script

        Raises:
            EmptyCounterpartyList: If counterparties is empty
        """
        if not counterparties:
            raise EmptyCounterpartyList("MultiPushDrop requires at least one counterparty.")

        public_keys = []
        for counterparty in counterparties:
            public_key = await self.wallet.get_public_key(
                protocol_id=protocol_id,
                key_id=key_id,
                counterparty=counterparty,
                originator=self.originator,
            )
            key_bytes = bytes.fromhex(public_key)
            if len(key_bytes) != PUBLIC_KEY_LENGTH:
                raise ValueError(
                    f"Wallet returned a {len(key_bytes)}-byte public key, expected compressed"
                )
            public_keys.append(key_bytes)

        chunks = [encode_minimal_push(key) for key in public_keys]
        chunks.append(encode_number_push(len(public_keys)))
        chunks.extend(SELECTION_PROGRAM)
        chunks.extend(encode_minimal_push(bytes(f)) for f in fields)
        chunks.extend(drop_program(len(fields) + len(public_keys) + 2))
        chunks.append(ScriptChunk(OP_TRUE))

        logger.debug(
            "built MultiPushDrop lock with %d keys and %d fields",
            len(public_keys), len(fields),
        )
        return LockingScript(chunks)

    def unlock(
        self,
        protocol_id: ProtocolID,
        key_id: str,
        creator: Counterparty,
        sign_outputs: str = "all",
        anyone_can_pay: bool = False,
    ) -> "MultiPushDropUnlocker":
        """Create an unlocker for spending a MultiPushDrop output.

        Args:
            protocol_id: Protocol ID used when the script was locked
            key_id: Key ID used when the script was locked
            creator: Identity key of whoever created the locking script
            sign_outputs: 'all', 'none' or 'single'
            anyone_can_pay: Whether to set SIGHASH_ANYONECANPAY
        """
        return MultiPushDropUnlocker(
            self, protocol_id, key_id, creator, sign_outputs, anyone_can_pay
        )


class MultiPushDropUnlocker:
    """Signs a MultiPushDrop input: <signature> <selector>."""

    def __init__(
        self,
        template: MultiPushDrop,
        protocol_id: ProtocolID,
        key_id: str,
        creator: Counterparty,
        sign_outputs: str = "all",
        anyone_can_pay: bool = False,
    ):
        self.template = template
        self.protocol_id = protocol_id
        self.key_id = key_id
        self.creator = creator
        self.sign_outputs = sign_outputs
        self.anyone_can_pay = anyone_can_pay

    async def sign(self, tx: Transaction, input_index: int) -> UnlockingScript:
        """Produce the unlocking script for tx.inputs[input_index].

        Raises:
            MissingSigningContext: If the source txid, satoshis or locking
                script cannot be resolved
            MalformedScriptStructure: If the spent script is not MultiPushDrop
            KeyNotFound: If our derived key is not one of the locking keys
        """
        wallet = self.template.wallet
        scope = compute_scope(self.sign_outputs, self.anyone_can_pay)

        tx_input = tx.inputs[input_index]
        source_txid = tx_input.resolve_source_txid()
        source_satoshis = tx_input.resolve_source_satoshis()
        locking_script = tx_input.resolve_source_locking_script()
        if source_txid is None:
            raise MissingSigningContext("Input sourceTXID or sourceTransaction required for signing.")
        if source_satoshis is None:
            raise MissingSigningContext("Input sourceSatoshis or sourceTransaction required for signing.")
        if locking_script is None:
            raise MissingSigningContext("Input lockingScript or sourceTransaction required for signing.")

        decoded = MultiPushDrop.decode(locking_script)

        own_key = await wallet.get_public_key(
            protocol_id=self.protocol_id,
            key_id=self.key_id,
            counterparty=self.creator,
            for_self=True,
            originator=self.template.originator,
        )
        try:
            position = decoded.locking_public_keys.index(own_key.lower())
        except ValueError:
            raise KeyNotFound(
                f'Unlocker key derived for counterparty (creator) "{self.creator}" '
                "not found in the list of locking keys."
            ) from None
        selector = len(decoded.locking_public_keys) - 1 - position

        other_inputs = [inp for i, inp in enumerate(tx.inputs) if i != input_index]
        preimage = format_preimage(
            source_txid=source_txid,
            source_output_index=tx_input.source_output_index,
            source_satoshis=source_satoshis,
            transaction_version=tx.version,
            other_inputs=other_inputs,
            input_index=input_index,
            outputs=tx.outputs,
            input_sequence=tx_input.sequence,
            subscript=locking_script,
            lock_time=tx.lock_time,
            scope=scope,
        )

        signature = await wallet.create_signature(
            hash_to_directly_sign=hash256(preimage),
            protocol_id=self.protocol_id,
            key_id=self.key_id,
            counterparty=self.creator,
            originator=self.template.originator,
        )
        checksig_signature = canonical_der(signature) + bytes([scope & 0xFF])

        logger.info(
            "signed MultiPushDrop input %d with key %d of %d (scope %#04x)",
            input_index, position, len(decoded.locking_public_keys), scope,
        )
        return UnlockingScript([
            encode_minimal_push(checksig_signature),
            encode_number_push(selector),
        ])

    async def estimate_length(self, tx: Optional[Transaction] = None, input_index: int = 0) -> int:
        """Conservative unlocking script length in bytes."""
        return UNLOCKING_SCRIPT_LENGTH_ESTIMATE
