"""Bitcoin script opcodes used by the MultiPushDrop template."""

# Push opcodes
OP_0 = 0x00
OP_FALSE = OP_0
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1NEGATE = 0x4F
OP_1 = 0x51
OP_TRUE = OP_1
OP_16 = 0x60

# Flow control
OP_VERIFY = 0x69
OP_RETURN = 0x6A

# Stack
OP_2DROP = 0x6D
OP_DEPTH = 0x74
OP_DROP = 0x75
OP_PICK = 0x79
OP_SWAP = 0x7C

# Arithmetic
OP_1SUB = 0x8C

# Crypto
OP_CHECKSIG = 0xAC
OP_CHECKSIGVERIFY = 0xAD

# Largest opcode that is a direct push of that many bytes
MAX_DIRECT_PUSH = 0x4B


OPCODE_NAMES = {
    OP_0: "OP_0",
    OP_PUSHDATA1: "OP_PUSHDATA1",
    OP_PUSHDATA2: "OP_PUSHDATA2",
    OP_PUSHDATA4: "OP_PUSHDATA4",
    OP_1NEGATE: "OP_1NEGATE",
    OP_VERIFY: "OP_VERIFY",
    OP_RETURN: "OP_RETURN",
    OP_2DROP: "OP_2DROP",
    OP_DEPTH: "OP_DEPTH",
    OP_DROP: "OP_DROP",
    OP_PICK: "OP_PICK",
    OP_SWAP: "OP_SWAP",
    OP_1SUB: "OP_1SUB",
    OP_CHECKSIG: "OP_CHECKSIG",
    OP_CHECKSIGVERIFY: "OP_CHECKSIGVERIFY",
}
OPCODE_NAMES.update({OP_1 + i: f"OP_{i + 1}" for i in range(16)})

NAME_OPCODES = {name: op for op, name in OPCODE_NAMES.items()}
NAME_OPCODES.update({
    "OP_FALSE": OP_FALSE,
    "OP_TRUE": OP_TRUE,
})


def opcode_name(op: int) -> str:
    """Return the mnemonic for an opcode, or its hex value if unnamed."""
    return OPCODE_NAMES.get(op, f"OP_UNKNOWN_{op:#04x}")


def is_small_int(op: int) -> bool:
    """True for OP_1 through OP_16."""
    return OP_1 <= op <= OP_16
