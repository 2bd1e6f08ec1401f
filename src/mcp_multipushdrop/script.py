"""Bitcoin script chunks, codecs and minimal push encoding.

A script is an ordered sequence of chunks. Each chunk is an opcode with an
optional payload:
- 0x01-0x4b: direct push, the opcode is the payload length
- OP_PUSHDATA1: 1 byte length prefix
- OP_PUSHDATA2: 2 byte length prefix (little-endian)
- OP_PUSHDATA4: 4 byte length prefix (little-endian)
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Union

from mcp_multipushdrop.opcodes import (
    MAX_DIRECT_PUSH,
    NAME_OPCODES,
    OP_0,
    OP_1,
    OP_1NEGATE,
    OP_PUSHDATA1,
    OP_PUSHDATA2,
    OP_PUSHDATA4,
    is_small_int,
    opcode_name,
)


@dataclass(frozen=True)
class Explicit:
    """Chunk value carried as an explicit payload."""

    data: bytes

    def to_bytes(self) -> bytes:
        return self.data


@dataclass(frozen=True)
class Implied:
    """Chunk value implied by a payload-less opcode."""

    op: int

    def to_bytes(self) -> bytes:
        """Return the bytes the opcode pushes onto the stack.

        Raises:
            ValueError: If the opcode does not push a value
        """
        if self.op == OP_0:
            return b""
        if is_small_int(self.op):
            return bytes([self.op - OP_1 + 1])
        if self.op == OP_1NEGATE:
            return b"\x81"
        raise ValueError(f"{opcode_name(self.op)} does not push a value")


ChunkValue = Union[Explicit, Implied]


@dataclass(frozen=True)
class ScriptChunk:
    """A single opcode with its optional payload."""

    op: int
    data: Optional[bytes] = None

    def __post_init__(self):
        if not 0 <= self.op <= 0xFF:
            raise ValueError(f"Opcode out of range: {self.op}")
        if self.data is None:
            if 0 < self.op <= MAX_DIRECT_PUSH:
                raise ValueError(f"Direct push of {self.op} bytes has no payload")
            if self.op in (OP_PUSHDATA1, OP_PUSHDATA2, OP_PUSHDATA4):
                raise ValueError(f"{opcode_name(self.op)} has no payload")
            return
        length = len(self.data)
        if 0 < self.op <= MAX_DIRECT_PUSH:
            if length != self.op:
                raise ValueError(
                    f"Direct push declares {self.op} bytes, payload has {length}"
                )
        elif self.op == OP_PUSHDATA1:
            if length > 0xFF:
                raise ValueError(f"Payload too long for OP_PUSHDATA1: {length} bytes")
        elif self.op == OP_PUSHDATA2:
            if length > 0xFFFF:
                raise ValueError(f"Payload too long for OP_PUSHDATA2: {length} bytes")
        elif self.op == OP_PUSHDATA4:
            if length > 0xFFFFFFFF:
                raise ValueError(f"Payload too long for OP_PUSHDATA4: {length} bytes")
        else:
            raise ValueError(f"{opcode_name(self.op)} cannot carry a payload")

    @property
    def value(self) -> ChunkValue:
        if self.data is not None:
            return Explicit(self.data)
        return Implied(self.op)

    @property
    def is_push(self) -> bool:
        return self.data is not None or self.op == OP_0 or self.op == OP_1NEGATE \
            or is_small_int(self.op)

    def to_bytes(self) -> bytes:
        if self.data is None:
            return bytes([self.op])
        length = len(self.data)
        if self.op == OP_PUSHDATA1:
            return bytes([self.op, length]) + self.data
        if self.op == OP_PUSHDATA2:
            return bytes([self.op]) + length.to_bytes(2, "little") + self.data
        if self.op == OP_PUSHDATA4:
            return bytes([self.op]) + length.to_bytes(4, "little") + self.data
        return bytes([self.op]) + self.data


def push_data_chunk(data: bytes) -> ScriptChunk:
    """Push data using the smallest length prefix, without small-int opcodes."""
    length = len(data)
    if length == 0:
        return ScriptChunk(OP_0)
    if length <= MAX_DIRECT_PUSH:
        return ScriptChunk(length, data)
    if length <= 0xFF:
        return ScriptChunk(OP_PUSHDATA1, data)
    if length <= 0xFFFF:
        return ScriptChunk(OP_PUSHDATA2, data)
    return ScriptChunk(OP_PUSHDATA4, data)


def encode_minimal_push(data: bytes) -> ScriptChunk:
    """Encode data as the shortest valid push.

    Empty data and a single zero byte become OP_0, single bytes 1-16 become
    OP_1..OP_16, and 0x81 becomes OP_1NEGATE. Everything else is a length
    prefixed push.
    """
    data = bytes(data)
    if len(data) == 0 or data == b"\x00":
        return ScriptChunk(OP_0)
    if len(data) == 1 and 1 <= data[0] <= 16:
        return ScriptChunk(OP_1 + data[0] - 1)
    if data == b"\x81":
        return ScriptChunk(OP_1NEGATE)
    return push_data_chunk(data)


def encode_script_number(n: int) -> bytes:
    """Encode an integer as a minimal sign-magnitude script number."""
    if n == 0:
        return b""
    negative = n < 0
    magnitude = abs(n)
    result = bytearray()
    while magnitude:
        result.append(magnitude & 0xFF)
        magnitude >>= 8
    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80
    return bytes(result)


def decode_script_number(data: bytes) -> int:
    """Decode a little-endian sign-magnitude script number."""
    if not data:
        return 0
    magnitude = int.from_bytes(data, "little")
    if data[-1] & 0x80:
        return -(magnitude & ~(0x80 << (8 * (len(data) - 1))))
    return magnitude


def encode_number_push(n: int) -> ScriptChunk:
    """Push an integer with the minimal encoding."""
    return encode_minimal_push(encode_script_number(n))


class Script:
    """An immutable sequence of script chunks."""

    def __init__(self, chunks: Iterable[ScriptChunk] = ()):
        self.chunks = tuple(chunks)

    def __eq__(self, other):
        if not isinstance(other, Script):
            return NotImplemented
        return self.chunks == other.chunks

    def __hash__(self):
        return hash(self.chunks)

    def __len__(self):
        return len(self.chunks)

    def __repr__(self):
        return f"{type(self).__name__}({self.to_asm()!r})"

    @classmethod
    def from_bytes(cls, script: bytes):
        """Parse raw script bytes into chunks.

        Raises:
            ValueError: If a push runs past the end of the script
        """
        chunks = []
        pos = 0
        while pos < len(script):
            op = script[pos]
            pos += 1

            if 0 < op <= MAX_DIRECT_PUSH:
                length = op
            elif op == OP_PUSHDATA1:
                if pos >= len(script):
                    raise ValueError("Truncated PUSHDATA1 script")
                length = script[pos]
                pos += 1
            elif op == OP_PUSHDATA2:
                if pos + 2 > len(script):
                    raise ValueError("Truncated PUSHDATA2 script")
                length = int.from_bytes(script[pos:pos+2], 'little')
                pos += 2
            elif op == OP_PUSHDATA4:
                if pos + 4 > len(script):
                    raise ValueError("Truncated PUSHDATA4 script")
                length = int.from_bytes(script[pos:pos+4], 'little')
                pos += 4
            else:
                chunks.append(ScriptChunk(op))
                continue

            if pos + length > len(script):
                raise ValueError(
                    f"Script truncated: expected {length} bytes, got {len(script) - pos}"
                )
            chunks.append(ScriptChunk(op, bytes(script[pos:pos+length])))
            pos += length

        return cls(chunks)

    @classmethod
    def from_hex(cls, script_hex: str):
        return cls.from_bytes(bytes.fromhex(script_hex))

    @classmethod
    def from_asm(cls, asm: str):
        """Parse space separated ASM: opcode names and hex pushes."""
        chunks = []
        for token in asm.split():
            if token in NAME_OPCODES:
                chunks.append(ScriptChunk(NAME_OPCODES[token]))
            elif token == "0":
                chunks.append(ScriptChunk(OP_0))
            elif token == "-1":
                chunks.append(ScriptChunk(OP_1NEGATE))
            else:
                try:
                    data = bytes.fromhex(token)
                except ValueError:
                    raise ValueError(f"Invalid ASM token: {token!r}") from None
                chunks.append(push_data_chunk(data))
        return cls(chunks)

    def to_bytes(self) -> bytes:
        return b"".join(chunk.to_bytes() for chunk in self.chunks)

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    def to_asm(self) -> str:
        parts = []
        for chunk in self.chunks:
            if chunk.data is not None:
                # Empty PUSHDATA payloads print as 0
                parts.append(chunk.data.hex() or "0")
            else:
                parts.append(opcode_name(chunk.op))
        return " ".join(parts)

    def is_push_only(self) -> bool:
        return all(chunk.is_push for chunk in self.chunks)


class LockingScript(Script):
    """Script placed on a transaction output."""


class UnlockingScript(Script):
    """Script placed on a transaction input."""
