"""Signature hash scope flags and FORKID (BIP143-style) preimages."""

from typing import List, Sequence

from mcp_multipushdrop.keys import hash256
from mcp_multipushdrop.script import Script
from mcp_multipushdrop.transaction import TransactionInput, TransactionOutput, encode_varint

SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_FORKID = 0x40
SIGHASH_ANYONECANPAY = 0x80

SIGN_OUTPUTS = {
    "all": SIGHASH_ALL,
    "none": SIGHASH_NONE,
    "single": SIGHASH_SINGLE,
}

ZERO_HASH = bytes(32)


def compute_scope(sign_outputs: str = "all", anyone_can_pay: bool = False) -> int:
    """Combine the outputs mode and ANYONECANPAY into a FORKID scope flag.

    Raises:
        ValueError: If sign_outputs is not 'all', 'none' or 'single'
    """
    try:
        scope = SIGHASH_FORKID | SIGN_OUTPUTS[sign_outputs]
    except KeyError:
        raise ValueError(
            f"sign_outputs must be one of {sorted(SIGN_OUTPUTS)}, got {sign_outputs!r}"
        ) from None
    if anyone_can_pay:
        scope |= SIGHASH_ANYONECANPAY
    return scope


def format_preimage(
    *,
    source_txid: str,
    source_output_index: int,
    source_satoshis: int,
    transaction_version: int,
    other_inputs: Sequence[TransactionInput],
    input_index: int,
    outputs: Sequence[TransactionOutput],
    input_sequence: int,
    subscript: Script,
    lock_time: int,
    scope: int,
) -> bytes:
    """Serialize the signature hash preimage for one input.

    The inputs committed to are other_inputs with the signing input
    inserted at input_index.
    """
    base_type = scope & 0x1F
    anyone_can_pay = bool(scope & SIGHASH_ANYONECANPAY)

    outpoint = bytes.fromhex(source_txid)[::-1] + source_output_index.to_bytes(4, 'little')

    outpoints: List[bytes] = [tx_input.outpoint() for tx_input in other_inputs]
    outpoints.insert(input_index, outpoint)
    sequences: List[int] = [tx_input.sequence for tx_input in other_inputs]
    sequences.insert(input_index, input_sequence)

    if anyone_can_pay:
        hash_prevouts = ZERO_HASH
    else:
        hash_prevouts = hash256(b"".join(outpoints))

    if anyone_can_pay or base_type in (SIGHASH_SINGLE, SIGHASH_NONE):
        hash_sequence = ZERO_HASH
    else:
        hash_sequence = hash256(b"".join(seq.to_bytes(4, 'little') for seq in sequences))

    if base_type not in (SIGHASH_SINGLE, SIGHASH_NONE):
        hash_outputs = hash256(b"".join(output.serialize() for output in outputs))
    elif base_type == SIGHASH_SINGLE and input_index < len(outputs):
        hash_outputs = hash256(outputs[input_index].serialize())
    else:
        hash_outputs = ZERO_HASH

    script = subscript.to_bytes()
    return b"".join([
        transaction_version.to_bytes(4, 'little'),
        hash_prevouts,
        hash_sequence,
        outpoint,
        encode_varint(len(script)),
        script,
        source_satoshis.to_bytes(8, 'little'),
        input_sequence.to_bytes(4, 'little'),
        hash_outputs,
        lock_time.to_bytes(4, 'little'),
        (scope & 0xFFFFFFFF).to_bytes(4, 'little'),
    ])
