"""Tests for transaction serialization and signature hash preimages."""

import pytest
from mcp_multipushdrop.keys import hash256
from mcp_multipushdrop.script import LockingScript, UnlockingScript
from mcp_multipushdrop.sighash import (
    SIGHASH_ALL,
    SIGHASH_ANYONECANPAY,
    SIGHASH_FORKID,
    SIGHASH_NONE,
    SIGHASH_SINGLE,
    ZERO_HASH,
    compute_scope,
    format_preimage,
)
from mcp_multipushdrop.transaction import (
    Transaction,
    TransactionInput,
    TransactionOutput,
    encode_varint,
)

TXID_A = "aa" * 32
TXID_B = "bb" * 32


def make_tx():
    return Transaction(
        version=2,
        inputs=[
            TransactionInput(source_txid=TXID_A, source_output_index=1, sequence=0xFFFFFFFE),
            TransactionInput(
                source_txid=TXID_B,
                source_output_index=0,
                unlocking_script=UnlockingScript.from_asm("OP_1"),
            ),
        ],
        outputs=[
            TransactionOutput(satoshis=500, locking_script=LockingScript.from_asm("OP_RETURN")),
            TransactionOutput(satoshis=250, locking_script=LockingScript.from_asm("OP_1")),
        ],
        lock_time=7,
    )


class TestVarint:
    """Test compact size encoding."""

    @pytest.mark.parametrize("n,encoded", [
        (0, b"\x00"),
        (0xFC, b"\xfc"),
        (0xFD, b"\xfd\xfd\x00"),
        (0x10000, b"\xfe\x00\x00\x01\x00"),
        (0x100000000, b"\xff\x00\x00\x00\x00\x01\x00\x00\x00"),
    ])
    def test_encode(self, n, encoded):
        assert encode_varint(n) == encoded


class TestTransactionSerialization:
    """Test transaction encoding and txids."""

    def test_layout(self):
        raw = make_tx().serialize()
        assert raw[:4] == (2).to_bytes(4, 'little')
        assert raw[4] == 2  # input count
        # First outpoint is the reversed txid
        assert raw[5:37] == bytes.fromhex(TXID_A)[::-1]
        assert raw[-4:] == (7).to_bytes(4, 'little')

    def test_hex_roundtrip(self):
        tx = make_tx()
        parsed = Transaction.from_hex(tx.to_hex())
        assert parsed.to_hex() == tx.to_hex()
        assert parsed.inputs[0].source_txid == TXID_A
        assert parsed.inputs[0].sequence == 0xFFFFFFFE
        assert parsed.outputs[1].satoshis == 250

    def test_txid_is_reversed_double_sha(self):
        tx = make_tx()
        assert tx.txid() == hash256(tx.serialize())[::-1].hex()

    def test_truncated_transaction(self):
        raw = make_tx().serialize()
        with pytest.raises(ValueError, match="Transaction truncated"):
            Transaction.from_bytes(raw[:-2])

    def test_trailing_bytes(self):
        raw = make_tx().serialize()
        with pytest.raises(ValueError, match="trailing bytes"):
            Transaction.from_bytes(raw + b"\x00")

    def test_input_without_source(self):
        with pytest.raises(ValueError, match="neither source_txid"):
            TransactionInput().serialize()


class TestInputResolution:
    """Test resolving the spent output through a linked source transaction."""

    def test_linked_source_transaction(self):
        source = make_tx()
        tx_input = TransactionInput(source_transaction=source, source_output_index=1)
        assert tx_input.resolve_source_txid() == source.txid()
        assert tx_input.resolve_source_satoshis() == 250
        assert tx_input.resolve_source_locking_script() == LockingScript.from_asm("OP_1")

    def test_explicit_fields_override(self):
        source = make_tx()
        script = LockingScript.from_asm("OP_16")
        tx_input = TransactionInput(
            source_transaction=source,
            source_output_index=1,
            source_satoshis=99,
            source_locking_script=script,
        )
        assert tx_input.resolve_source_satoshis() == 99
        assert tx_input.resolve_source_locking_script() == script

    def test_nothing_to_resolve(self):
        tx_input = TransactionInput(source_txid=TXID_A)
        assert tx_input.resolve_source_satoshis() is None
        assert tx_input.resolve_source_locking_script() is None

    def test_output_index_out_of_range(self):
        tx_input = TransactionInput(source_transaction=make_tx(), source_output_index=5)
        assert tx_input.resolve_source_satoshis() is None


class TestScope:
    """Test scope flag computation."""

    @pytest.mark.parametrize("sign_outputs,anyone_can_pay,expected", [
        ("all", False, 0x41),
        ("none", False, 0x42),
        ("single", False, 0x43),
        ("all", True, 0xC1),
        ("none", True, 0xC2),
        ("single", True, 0xC3),
    ])
    def test_scope(self, sign_outputs, anyone_can_pay, expected):
        assert compute_scope(sign_outputs, anyone_can_pay) == expected

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="sign_outputs"):
            compute_scope("some")


class TestPreimage:
    """Test which preimage fields each scope commits to."""

    subscript = LockingScript.from_asm("OP_1")

    def preimage(self, scope, input_index=0, outputs=None):
        tx = make_tx()
        return format_preimage(
            source_txid=TXID_A,
            source_output_index=1,
            source_satoshis=1000,
            transaction_version=tx.version,
            other_inputs=[tx.inputs[1]],
            input_index=input_index,
            outputs=tx.outputs if outputs is None else outputs,
            input_sequence=0xFFFFFFFE,
            subscript=self.subscript,
            lock_time=tx.lock_time,
            scope=scope,
        )

    @staticmethod
    def split(preimage):
        return {
            "version": preimage[0:4],
            "hash_prevouts": preimage[4:36],
            "hash_sequence": preimage[36:68],
            "outpoint": preimage[68:104],
            # OP_1 subscript: 1 byte varint + 1 byte script
            "script": preimage[104:106],
            "satoshis": preimage[106:114],
            "sequence": preimage[114:118],
            "hash_outputs": preimage[118:150],
            "lock_time": preimage[150:154],
            "scope": preimage[154:158],
        }

    def test_all_commits_to_everything(self):
        tx = make_tx()
        fields = self.split(self.preimage(SIGHASH_FORKID | SIGHASH_ALL))
        assert fields["hash_prevouts"] == hash256(tx.inputs[0].outpoint() + tx.inputs[1].outpoint())
        assert fields["hash_sequence"] == hash256(
            (0xFFFFFFFE).to_bytes(4, 'little') + (0xFFFFFFFF).to_bytes(4, 'little')
        )
        assert fields["hash_outputs"] == hash256(b"".join(o.serialize() for o in tx.outputs))
        assert fields["outpoint"] == tx.inputs[0].outpoint()
        assert fields["satoshis"] == (1000).to_bytes(8, 'little')
        assert fields["scope"] == (0x41).to_bytes(4, 'little')

    def test_signing_input_position(self):
        """The signing input's outpoint is inserted at input_index."""
        tx = make_tx()
        fields = self.split(self.preimage(SIGHASH_FORKID | SIGHASH_ALL, input_index=1))
        assert fields["hash_prevouts"] == hash256(tx.inputs[1].outpoint() + tx.inputs[0].outpoint())

    def test_none_zeroes_outputs_and_sequence(self):
        fields = self.split(self.preimage(SIGHASH_FORKID | SIGHASH_NONE))
        assert fields["hash_outputs"] == ZERO_HASH
        assert fields["hash_sequence"] == ZERO_HASH
        assert fields["hash_prevouts"] != ZERO_HASH

    def test_single_commits_to_matching_output(self):
        tx = make_tx()
        fields = self.split(self.preimage(SIGHASH_FORKID | SIGHASH_SINGLE))
        assert fields["hash_outputs"] == hash256(tx.outputs[0].serialize())
        assert fields["hash_sequence"] == ZERO_HASH

    def test_single_without_matching_output(self):
        fields = self.split(self.preimage(SIGHASH_FORKID | SIGHASH_SINGLE, outputs=[]))
        assert fields["hash_outputs"] == ZERO_HASH

    def test_anyonecanpay_zeroes_prevouts(self):
        fields = self.split(
            self.preimage(SIGHASH_FORKID | SIGHASH_ALL | SIGHASH_ANYONECANPAY)
        )
        assert fields["hash_prevouts"] == ZERO_HASH
        assert fields["hash_sequence"] == ZERO_HASH
        assert fields["hash_outputs"] != ZERO_HASH


class TestPreimageVector:
    """Native P2WPKH example from BIP143, signing input 1 with SIGHASH_ALL."""

    def test_bip143_native_p2wpkh(self):
        unsigned = (
            "0100000002fff7f7881a8099afa6940d42d1e7f6362bec38171ea3edf433541db4e4ad969f"
            "0000000000eeffffffef51e1b804cc89d182d279655c3aa89e815b1b309fe287d9b2b55d57"
            "b90ec68a0100000000ffffffff02202cb206000000001976a9148280b37df378db99f66f85"
            "c95a783a76ac7a6d5988ac9093510d000000001976a9143bde42dbee7e4dbe6a21b2d50ce2"
            "f0167faa815988ac11000000"
        )
        tx = Transaction.from_hex(unsigned)
        signing_input = tx.inputs[1]

        preimage = format_preimage(
            source_txid=signing_input.source_txid,
            source_output_index=signing_input.source_output_index,
            source_satoshis=600000000,
            transaction_version=tx.version,
            other_inputs=[tx.inputs[0]],
            input_index=1,
            outputs=tx.outputs,
            input_sequence=signing_input.sequence,
            subscript=LockingScript.from_hex(
                "76a9141d0f172a0ecb48aee1be1f2687d2963ae33f71a188ac"
            ),
            lock_time=tx.lock_time,
            scope=SIGHASH_ALL,
        )

        assert preimage.hex() == (
            "01000000"
            "96b827c8483d4e9b96712b6713a7b68d6e8003a781feba36c31143470b4efd37"
            "52b0a642eea2fb7ae638c36f6252b6750293dbe574a806984b8e4d8548339a3b"
            "ef51e1b804cc89d182d279655c3aa89e815b1b309fe287d9b2b55d57b90ec68a01000000"
            "1976a9141d0f172a0ecb48aee1be1f2687d2963ae33f71a188ac"
            "0046c32300000000"
            "ffffffff"
            "863ef3e1a92afbfdb97f31ad0fc7683ee943e9abcf2501590ff8f6551f47e5e5"
            "11000000"
            "01000000"
        )
        assert hash256(preimage).hex() == (
            "c37af31116d1b27caf68aae9e3ac82f1477929014d5b917657d0eb49478cb670"
        )
