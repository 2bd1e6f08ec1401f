"""MCP server for MultiPushDrop script operations.

This server exposes tools for building, decoding, signing and validating
1-of-N push-drop scripts, along with the low-level push encoding and script
parsing primitives they are built from.
"""

import logging
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

from mcp_multipushdrop.config import Config, SignOutputs, load_config
from mcp_multipushdrop.errors import MultiPushDropError, ScriptExecutionError
from mcp_multipushdrop.interpreter import Spend
from mcp_multipushdrop.keys import PrivateKey
from mcp_multipushdrop.multipushdrop import MultiPushDrop
from mcp_multipushdrop.opcodes import opcode_name
from mcp_multipushdrop.script import LockingScript, Script, UnlockingScript, encode_minimal_push
from mcp_multipushdrop.transaction import Transaction
from mcp_multipushdrop.wallet import ProtoWallet, WalletInterface

logger = logging.getLogger(__name__)


def _to_bytes(data: str, encoding: str) -> bytes:
    if encoding == "hex":
        try:
            return bytes.fromhex(data)
        except ValueError:
            raise ValueError(f"Invalid hex string: {data!r}") from None
    return data.encode(encoding)


def _utf8_or_none(data: bytes) -> Optional[str]:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def create_server(
    config: Optional[Config] = None,
    wallet: Optional[WalletInterface] = None,
) -> FastMCP:
    """Create and configure the MCP server with all tools.

    Args:
        config: Optional configuration. If not provided, uses defaults.
        wallet: Optional wallet. If not provided, a ProtoWallet is built from
            the configured private key (or a random one).

    Returns:
        Configured FastMCP server instance.
    """
    if config is None:
        config = Config()

    if wallet is None:
        root_key = (
            PrivateKey.from_hex(config.private_key_hex)
            if config.private_key_hex
            else PrivateKey.from_random()
        )
        wallet = ProtoWallet(root_key)

    mcp = FastMCP("mcp-multipushdrop")

    # Store config and wallet on server for access by tools
    mcp._config = config
    mcp._wallet = wallet
    template = MultiPushDrop(wallet, config.originator or None)

    # =========================================================================
    # Low-Level Primitives (offline-capable)
    # =========================================================================

    @mcp.tool()
    def encode_push_data(data: str, encoding: str = "hex") -> dict:
        """Encode data as the shortest valid script push.

        Args:
            data: Data to encode
            encoding: Encoding for the data ('hex', 'utf-8'). Default: 'hex'

        Returns:
            Dictionary with 'chunk_hex' and the opcode used.
        """
        try:
            chunk = encode_minimal_push(_to_bytes(data, encoding))
        except ValueError as e:
            return {"error": str(e)}

        return {
            "chunk_hex": chunk.to_bytes().hex(),
            "opcode": chunk.op,
            "opcode_name": opcode_name(chunk.op) if chunk.data is None else None,
        }

    @mcp.tool()
    def parse_script(script_hex: str) -> dict:
        """Split a script into its chunks.

        Args:
            script_hex: Script as hex string

        Returns:
            Dictionary with 'asm' and a list of chunks.
        """
        try:
            script = Script.from_hex(script_hex)
        except ValueError as e:
            return {"error": str(e)}

        return {
            "asm": script.to_asm(),
            "chunks": [
                {
                    "opcode": chunk.op,
                    "name": opcode_name(chunk.op),
                    "data_hex": chunk.data.hex() if chunk.data is not None else None,
                }
                for chunk in script.chunks
            ],
        }

    # =========================================================================
    # Keys
    # =========================================================================

    @mcp.tool()
    async def get_identity_key() -> dict:
        """Return this server's wallet identity public key.

        Returns:
            Dictionary with 'identity_key' hex.
        """
        return {"identity_key": await wallet.get_public_key(
            identity_key=True, originator=config.originator or None
        )}

    @mcp.tool()
    async def derive_public_key(
        counterparty: str = "self",
        key_id: Optional[str] = None,
        for_self: bool = False,
    ) -> dict:
        """Derive a public key under the configured protocol.

        Args:
            counterparty: 'self', 'anyone' or a public key hex
            key_id: Key ID (default: configured key ID)
            for_self: Derive our own child key rather than the counterparty's

        Returns:
            Dictionary with 'public_key' hex.
        """
        try:
            public_key = await wallet.get_public_key(
                protocol_id=config.protocol_id,
                key_id=key_id or config.key_id,
                counterparty=counterparty,
                for_self=for_self,
                originator=config.originator or None,
            )
        except ValueError as e:
            return {"error": str(e)}
        return {"public_key": public_key, "for_self": for_self}

    # =========================================================================
    # MultiPushDrop Template
    # =========================================================================

    @mcp.tool()
    async def create_lock(
        fields: List[str],
        counterparties: List[str],
        encoding: str = "hex",
        key_id: Optional[str] = None,
    ) -> dict:
        """Build a MultiPushDrop locking script.

        Args:
            fields: Data fields to embed
            counterparties: 'self', 'anyone' or public key hex for each key
                that may spend the output
            encoding: Field encoding ('hex' or 'utf-8'). Default: 'hex'
            key_id: Key ID (default: configured key ID)

        Returns:
            Dictionary with 'script_hex' and 'asm'.
        """
        try:
            field_bytes = [_to_bytes(f, encoding) for f in fields]
            script = await template.lock(
                field_bytes,
                config.protocol_id,
                key_id or config.key_id,
                counterparties,
            )
        except (ValueError, MultiPushDropError) as e:
            return {"error": str(e)}

        return {
            "script_hex": script.to_hex(),
            "asm": script.to_asm(),
            "key_count": len(counterparties),
            "field_count": len(field_bytes),
        }

    @mcp.tool()
    def decode_lock(script_hex: str) -> dict:
        """Recover keys and fields from a MultiPushDrop locking script.

        Args:
            script_hex: Locking script as hex string

        Returns:
            Dictionary with 'locking_public_keys' and fields in hex and UTF-8.
        """
        try:
            decoded = MultiPushDrop.decode(LockingScript.from_hex(script_hex))
        except (ValueError, MultiPushDropError) as e:
            return {"error": str(e)}

        return {
            "locking_public_keys": decoded.locking_public_keys,
            "fields_hex": [f.hex() for f in decoded.fields],
            "fields_utf8": [_utf8_or_none(f) for f in decoded.fields],
        }

    @mcp.tool()
    async def create_unlock(
        source_tx_hex: str,
        spend_tx_hex: str,
        creator: str,
        input_index: int = 0,
        sign_outputs: Optional[str] = None,
        anyone_can_pay: Optional[bool] = None,
        key_id: Optional[str] = None,
    ) -> dict:
        """Sign a spend of a MultiPushDrop output held by this wallet.

        Args:
            source_tx_hex: Transaction containing the MultiPushDrop output
            spend_tx_hex: Unsigned spending transaction
            creator: Identity key of whoever created the locking script
            input_index: Index of the input spending the output (default: 0)
            sign_outputs: 'all', 'none' or 'single' (default: configured)
            anyone_can_pay: Set SIGHASH_ANYONECANPAY (default: configured)
            key_id: Key ID (default: configured key ID)

        Returns:
            Dictionary with 'unlocking_script_hex' and the signed 'tx_hex'.
        """
        try:
            source_tx = Transaction.from_hex(source_tx_hex)
            spend_tx = Transaction.from_hex(spend_tx_hex)
            if not 0 <= input_index < len(spend_tx.inputs):
                raise ValueError(f"Input index {input_index} out of range")
            tx_input = spend_tx.inputs[input_index]
            if tx_input.source_txid != source_tx.txid():
                raise ValueError("Source transaction does not match the spent input")
            tx_input.source_transaction = source_tx

            unlocker = template.unlock(
                config.protocol_id,
                key_id or config.key_id,
                creator,
                SignOutputs(sign_outputs).value if sign_outputs else config.sign_outputs.value,
                config.anyone_can_pay if anyone_can_pay is None else anyone_can_pay,
            )
            unlocking_script = await unlocker.sign(spend_tx, input_index)
        except (ValueError, MultiPushDropError) as e:
            return {"error": str(e)}

        tx_input.unlocking_script = unlocking_script
        return {
            "unlocking_script_hex": unlocking_script.to_hex(),
            "asm": unlocking_script.to_asm(),
            "tx_hex": spend_tx.to_hex(),
            "txid": spend_tx.txid(),
        }

    @mcp.tool()
    def verify_spend(source_tx_hex: str, spend_tx_hex: str, input_index: int = 0) -> dict:
        """Validate a signed spend of a MultiPushDrop output.

        Args:
            source_tx_hex: Transaction containing the spent output
            spend_tx_hex: Signed spending transaction
            input_index: Index of the input to validate (default: 0)

        Returns:
            Dictionary with 'valid' and, on failure, the reason.
        """
        try:
            source_tx = Transaction.from_hex(source_tx_hex)
            spend_tx = Transaction.from_hex(spend_tx_hex)
            if not 0 <= input_index < len(spend_tx.inputs):
                raise ValueError(f"Input index {input_index} out of range")
        except ValueError as e:
            return {"error": str(e)}

        tx_input = spend_tx.inputs[input_index]
        if tx_input.source_txid != source_tx.txid():
            return {"error": "Source transaction does not match the spent input"}
        if not 0 <= tx_input.source_output_index < len(source_tx.outputs):
            return {"error": "Spent output index not found in source transaction"}
        source_output = source_tx.outputs[tx_input.source_output_index]

        spend = Spend(
            source_txid=source_tx.txid(),
            source_output_index=tx_input.source_output_index,
            source_satoshis=source_output.satoshis,
            locking_script=source_output.locking_script,
            transaction_version=spend_tx.version,
            other_inputs=[inp for i, inp in enumerate(spend_tx.inputs) if i != input_index],
            outputs=spend_tx.outputs,
            input_index=input_index,
            unlocking_script=tx_input.unlocking_script or UnlockingScript(),
            input_sequence=tx_input.sequence,
            lock_time=spend_tx.lock_time,
        )
        try:
            valid = spend.validate()
        except ScriptExecutionError as e:
            logger.info("spend of input %d failed validation: %s", input_index, e)
            return {"valid": False, "reason": str(e)}

        return {"valid": valid}

    return mcp


def main():
    """Entry point for the MCP server."""
    from pathlib import Path

    # Try to load config from standard locations
    config_paths = [
        Path("mcp-multipushdrop.toml"),
        Path.home() / ".config" / "mcp-multipushdrop" / "config.toml",
    ]

    config = None
    for path in config_paths:
        if path.exists():
            config = load_config(path)
            break

    if config is None:
        config = Config()

    logging.basicConfig(level=config.log_level)

    server = create_server(config)
    server.run()


if __name__ == "__main__":
    main()
