"""Key-derivation and signing oracle.

Templates never hold private keys. They ask a wallet for derived public
keys and for signatures, identifying the key by protocol, key ID and
counterparty.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional, Tuple, Union

from mcp_multipushdrop.keys import PrivateKey, PublicKey, sha256

logger = logging.getLogger(__name__)

# (security level, protocol name)
ProtocolID = Tuple[int, str]

# "self", "anyone" or a public key hex string
Counterparty = Union[str, PublicKey]

ANYONE_KEY = PrivateKey(1)

_PROTOCOL_NAME_RE = re.compile(r"^[a-z0-9 ]+$")


def compute_invoice_number(protocol_id: ProtocolID, key_id: str) -> str:
    """Build the invoice number "<level>-<protocol>-<key_id>".

    Raises:
        ValueError: If the security level, protocol name or key ID is invalid
    """
    security_level, protocol_name = protocol_id
    if security_level not in (0, 1, 2):
        raise ValueError(f"Protocol security level must be 0, 1 or 2, got {security_level}")

    if not 1 <= len(key_id) <= 800:
        raise ValueError(f"Key IDs must be 1-800 characters, got {len(key_id)}")

    protocol_name = protocol_name.strip().lower()
    if not 5 <= len(protocol_name) <= 400:
        raise ValueError(
            f"Protocol names must be 5-400 characters, got {len(protocol_name)}"
        )
    if "  " in protocol_name:
        raise ValueError('Protocol names cannot contain multiple consecutive spaces ("  ")')
    if not _PROTOCOL_NAME_RE.match(protocol_name):
        raise ValueError("Protocol names can only contain letters, numbers and spaces")
    if protocol_name.endswith(" protocol"):
        raise ValueError('No need to end your protocol name with " protocol"')

    return f"{security_level}-{protocol_name}-{key_id}"


class WalletInterface(ABC):
    """Abstract interface for key derivation and signing.

    Every call may name an originator, the domain of the application making
    the request, so a wallet can apply per-application permissions.
    """

    @abstractmethod
    async def get_public_key(
        self,
        *,
        identity_key: bool = False,
        protocol_id: Optional[ProtocolID] = None,
        key_id: Optional[str] = None,
        counterparty: Optional[Counterparty] = None,
        for_self: bool = False,
        originator: Optional[str] = None,
    ) -> str:
        """Return a derived (or the identity) public key as hex."""
        pass  # pragma: no cover

    @abstractmethod
    async def create_signature(
        self,
        *,
        protocol_id: ProtocolID,
        key_id: str,
        hash_to_directly_sign: Optional[bytes] = None,
        data: Optional[bytes] = None,
        counterparty: Optional[Counterparty] = None,
        originator: Optional[str] = None,
    ) -> bytes:
        """Sign a digest (or the SHA-256 of data), returning DER bytes."""
        pass  # pragma: no cover


class ProtoWallet(WalletInterface):
    """Wallet backed by a single root private key."""

    def __init__(self, root_key: Optional[PrivateKey] = None):
        self.root_key = root_key if root_key is not None else PrivateKey.from_random()
        self.identity_key = self.root_key.public_key()

    def _normalize_counterparty(self, counterparty: Counterparty) -> PublicKey:
        if isinstance(counterparty, PublicKey):
            return counterparty
        if counterparty == "self":
            return self.identity_key
        if counterparty == "anyone":
            return ANYONE_KEY.public_key()
        return PublicKey.from_hex(counterparty)

    def derive_private_key(
        self,
        protocol_id: ProtocolID,
        key_id: str,
        counterparty: Counterparty,
    ) -> PrivateKey:
        invoice_number = compute_invoice_number(protocol_id, key_id)
        return self.root_key.derive_child(
            self._normalize_counterparty(counterparty), invoice_number
        )

    def derive_public_key(
        self,
        protocol_id: ProtocolID,
        key_id: str,
        counterparty: Counterparty,
        for_self: bool = False,
    ) -> PublicKey:
        if for_self:
            return self.derive_private_key(protocol_id, key_id, counterparty).public_key()
        invoice_number = compute_invoice_number(protocol_id, key_id)
        return self._normalize_counterparty(counterparty).derive_child(
            self.root_key, invoice_number
        )

    async def get_public_key(
        self,
        *,
        identity_key: bool = False,
        protocol_id: Optional[ProtocolID] = None,
        key_id: Optional[str] = None,
        counterparty: Optional[Counterparty] = None,
        for_self: bool = False,
        originator: Optional[str] = None,
    ) -> str:
        if identity_key:
            return self.identity_key.to_hex()
        if protocol_id is None or key_id is None:
            raise ValueError("protocol_id and key_id are required unless identity_key is set")
        if counterparty is None:
            counterparty = "self"
        public_key = self.derive_public_key(protocol_id, key_id, counterparty, for_self)
        logger.debug(
            "derived public key %s for_self=%s originator=%s",
            public_key.to_hex(), for_self, originator,
        )
        return public_key.to_hex()

    async def create_signature(
        self,
        *,
        protocol_id: ProtocolID,
        key_id: str,
        hash_to_directly_sign: Optional[bytes] = None,
        data: Optional[bytes] = None,
        counterparty: Optional[Counterparty] = None,
        originator: Optional[str] = None,
    ) -> bytes:
        if hash_to_directly_sign is None:
            if data is None:
                raise ValueError("Either data or hash_to_directly_sign is required")
            hash_to_directly_sign = sha256(bytes(data))
        if counterparty is None:
            counterparty = "anyone"
        private_key = self.derive_private_key(protocol_id, key_id, counterparty)
        logger.debug("signing for originator=%s", originator)
        return private_key.sign_digest(bytes(hash_to_directly_sign))
