"""Minimal transaction model: inputs, outputs, serialization and txids."""

from dataclasses import dataclass, field
from typing import List, Optional

from mcp_multipushdrop.keys import hash256
from mcp_multipushdrop.script import LockingScript, UnlockingScript

DEFAULT_SEQUENCE = 0xFFFFFFFF


def encode_varint(n: int) -> bytes:
    """Encode a Bitcoin compact size integer."""
    if n < 0xFD:
        return bytes([n])
    elif n <= 0xFFFF:
        return b"\xfd" + n.to_bytes(2, 'little')
    elif n <= 0xFFFFFFFF:
        return b"\xfe" + n.to_bytes(4, 'little')
    else:
        return b"\xff" + n.to_bytes(8, 'little')


class _Reader:
    """Sequential reader over serialized transaction bytes."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def read(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise ValueError(
                f"Transaction truncated: expected {n} bytes, got {len(self.data) - self.pos}"
            )
        chunk = self.data[self.pos:self.pos+n]
        self.pos += n
        return chunk

    def read_int(self, n: int) -> int:
        return int.from_bytes(self.read(n), 'little')

    def read_varint(self) -> int:
        prefix = self.read_int(1)
        if prefix == 0xFD:
            return self.read_int(2)
        if prefix == 0xFE:
            return self.read_int(4)
        if prefix == 0xFF:
            return self.read_int(8)
        return prefix


@dataclass
class TransactionOutput:
    """Transaction output."""
    satoshis: int
    locking_script: LockingScript

    def serialize(self) -> bytes:
        script = self.locking_script.to_bytes()
        return self.satoshis.to_bytes(8, 'little') + encode_varint(len(script)) + script


@dataclass
class TransactionInput:
    """Transaction input.

    The spent output is identified either by source_txid or through the
    linked source_transaction. source_satoshis and source_locking_script
    override what the linked transaction would provide.
    """
    source_txid: Optional[str] = None
    source_output_index: int = 0
    source_transaction: Optional["Transaction"] = None
    unlocking_script: Optional[UnlockingScript] = None
    sequence: int = DEFAULT_SEQUENCE
    source_satoshis: Optional[int] = None
    source_locking_script: Optional[LockingScript] = None

    def _source_output(self) -> Optional[TransactionOutput]:
        if self.source_transaction is None:
            return None
        outputs = self.source_transaction.outputs
        if not 0 <= self.source_output_index < len(outputs):
            return None
        return outputs[self.source_output_index]

    def resolve_source_txid(self) -> Optional[str]:
        if self.source_txid is not None:
            return self.source_txid
        if self.source_transaction is not None:
            return self.source_transaction.txid()
        return None

    def resolve_source_satoshis(self) -> Optional[int]:
        if self.source_satoshis is not None:
            return self.source_satoshis
        output = self._source_output()
        return output.satoshis if output is not None else None

    def resolve_source_locking_script(self) -> Optional[LockingScript]:
        if self.source_locking_script is not None:
            return self.source_locking_script
        output = self._source_output()
        return output.locking_script if output is not None else None

    def outpoint(self) -> bytes:
        """Serialized outpoint: internal byte order txid + output index."""
        txid = self.resolve_source_txid()
        if txid is None:
            raise ValueError("Input has neither source_txid nor source_transaction")
        return bytes.fromhex(txid)[::-1] + self.source_output_index.to_bytes(4, 'little')

    def serialize(self) -> bytes:
        script = self.unlocking_script.to_bytes() if self.unlocking_script else b""
        return (
            self.outpoint()
            + encode_varint(len(script))
            + script
            + self.sequence.to_bytes(4, 'little')
        )


@dataclass
class Transaction:
    """Bitcoin transaction."""
    version: int = 1
    inputs: List[TransactionInput] = field(default_factory=list)
    outputs: List[TransactionOutput] = field(default_factory=list)
    lock_time: int = 0

    def serialize(self) -> bytes:
        parts = [self.version.to_bytes(4, 'little'), encode_varint(len(self.inputs))]
        parts.extend(tx_input.serialize() for tx_input in self.inputs)
        parts.append(encode_varint(len(self.outputs)))
        parts.extend(output.serialize() for output in self.outputs)
        parts.append(self.lock_time.to_bytes(4, 'little'))
        return b"".join(parts)

    def to_hex(self) -> str:
        return self.serialize().hex()

    def hash(self) -> bytes:
        return hash256(self.serialize())

    def txid(self) -> str:
        """Transaction ID in display (byte-reversed) hex."""
        return self.hash()[::-1].hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> "Transaction":
        """Parse a serialized transaction.

        Raises:
            ValueError: If the data is truncated or has trailing bytes
        """
        reader = _Reader(data)
        version = reader.read_int(4)

        inputs = []
        for _ in range(reader.read_varint()):
            txid = reader.read(32)[::-1].hex()
            index = reader.read_int(4)
            script = reader.read(reader.read_varint())
            sequence = reader.read_int(4)
            inputs.append(TransactionInput(
                source_txid=txid,
                source_output_index=index,
                unlocking_script=UnlockingScript.from_bytes(script) if script else None,
                sequence=sequence,
            ))

        outputs = []
        for _ in range(reader.read_varint()):
            satoshis = reader.read_int(8)
            script = reader.read(reader.read_varint())
            outputs.append(TransactionOutput(
                satoshis=satoshis,
                locking_script=LockingScript.from_bytes(script),
            ))

        lock_time = reader.read_int(4)
        if reader.pos != len(data):
            raise ValueError(f"Unexpected {len(data) - reader.pos} trailing bytes")

        return cls(version=version, inputs=inputs, outputs=outputs, lock_time=lock_time)

    @classmethod
    def from_hex(cls, tx_hex: str) -> "Transaction":
        return cls.from_bytes(bytes.fromhex(tx_hex))
