"""Configuration loading and management."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

try:
    import tomli
except ImportError:  # pragma: no cover
    import tomllib as tomli  # Python 3.11+


class SignOutputs(Enum):
    """Which outputs an unlocking signature commits to."""
    ALL = "all"
    NONE = "none"
    SINGLE = "single"


class SecurityLevel(Enum):
    """Protocol security level for key derivation."""
    SILENT = 0
    APP = 1
    COUNTERPARTY = 2


@dataclass
class Config:
    """Server configuration."""

    # Wallet settings (random root key when unset)
    private_key_hex: Optional[str] = None
    originator: str = ""

    # Protocol defaults for key derivation
    security_level: SecurityLevel = SecurityLevel.SILENT
    protocol_name: str = "multipushdrop"
    key_id: str = "1"

    # Signing defaults
    sign_outputs: SignOutputs = SignOutputs.ALL
    anyone_can_pay: bool = False

    # Logging
    log_level: str = "WARNING"

    @property
    def protocol_id(self) -> tuple:
        """(security level, protocol name) pair used for derivation."""
        return (self.security_level.value, self.protocol_name)


DEFAULT_CONFIG = Config()


def load_config(path: Path) -> Config:
    """Load configuration from TOML file.

    Args:
        path: Path to config file

    Returns:
        Loaded configuration, merged with defaults
    """
    if not path.exists():
        return Config()

    with open(path, "rb") as f:
        data = tomli.load(f)

    wallet = data.get("wallet", {})
    protocol = data.get("protocol", {})
    signing = data.get("signing", {})
    logging_section = data.get("logging", {})

    return Config(
        private_key_hex=wallet.get("private_key_hex"),
        originator=wallet.get("originator", ""),
        security_level=SecurityLevel(protocol.get("security_level", 0)),
        protocol_name=protocol.get("protocol_name", "multipushdrop"),
        key_id=str(protocol.get("key_id", "1")),
        sign_outputs=SignOutputs(signing.get("sign_outputs", "all")),
        anyone_can_pay=signing.get("anyone_can_pay", False),
        log_level=logging_section.get("level", "WARNING").upper(),
    )
