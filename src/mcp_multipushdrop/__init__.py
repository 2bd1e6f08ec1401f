"""MCP server and script template for 1-of-N Bitcoin push-drop outputs."""

__version__ = "0.1.0"

# Server entry points
from mcp_multipushdrop.server import create_server, main

# Configuration
from mcp_multipushdrop.config import Config, SecurityLevel, SignOutputs

# Errors
from mcp_multipushdrop.errors import (
    EmptyCounterpartyList,
    KeyNotFound,
    MalformedScriptStructure,
    MissingSigningContext,
    MultiPushDropError,
    ScriptExecutionError,
)

# Script primitives
from mcp_multipushdrop.script import (
    LockingScript,
    Script,
    ScriptChunk,
    UnlockingScript,
    encode_minimal_push,
)

# Template
from mcp_multipushdrop.multipushdrop import (
    MultiPushDrop,
    MultiPushDropDecoded,
    MultiPushDropUnlocker,
)

# Wallet, transactions and validation
from mcp_multipushdrop.wallet import ProtoWallet, WalletInterface
from mcp_multipushdrop.transaction import Transaction, TransactionInput, TransactionOutput
from mcp_multipushdrop.interpreter import Spend

__all__ = [
    # Version
    "__version__",
    # Server
    "create_server",
    "main",
    # Config
    "Config",
    "SecurityLevel",
    "SignOutputs",
    # Errors
    "EmptyCounterpartyList",
    "KeyNotFound",
    "MalformedScriptStructure",
    "MissingSigningContext",
    "MultiPushDropError",
    "ScriptExecutionError",
    # Script
    "LockingScript",
    "Script",
    "ScriptChunk",
    "UnlockingScript",
    "encode_minimal_push",
    # Template
    "MultiPushDrop",
    "MultiPushDropDecoded",
    "MultiPushDropUnlocker",
    # Wallet
    "ProtoWallet",
    "WalletInterface",
    # Transactions
    "Transaction",
    "TransactionInput",
    "TransactionOutput",
    "Spend",
]
