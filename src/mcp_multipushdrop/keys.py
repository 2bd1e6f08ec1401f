"""secp256k1 keys, BRC-42 child derivation and DER signatures.

Child keys are derived from an ECDH shared secret and an invoice number:

    hmac  = HMAC-SHA256(key=compressed(shared_secret), msg=invoice_number)
    child_public  = P + hmac * G
    child_private = (d + hmac) mod n

Both sides of a counterparty relationship arrive at the same child key:
one from its private key and the other's public key, and vice versa.
"""

import hashlib
import hmac
import secrets

from ecdsa import SECP256k1, BadDigestError, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.der import UnexpectedDER
from ecdsa.errors import MalformedPointError
from ecdsa.util import sigdecode_der, sigencode_der_canonize

CURVE_ORDER = SECP256k1.order
GENERATOR = SECP256k1.generator


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    """Double SHA-256."""
    return sha256(sha256(data))


def sha256_hmac(key: bytes, message: bytes) -> bytes:
    return hmac.new(key, message, hashlib.sha256).digest()


def canonical_der(signature: bytes) -> bytes:
    """Re-encode a DER signature with a low S value.

    Raises:
        ValueError: If the signature is not valid DER
    """
    try:
        r, s = sigdecode_der(bytes(signature), CURVE_ORDER)
    except UnexpectedDER as e:
        raise ValueError(f"Invalid DER signature: {e}") from e
    return sigencode_der_canonize(r, s, CURVE_ORDER)


class PublicKey:
    """A secp256k1 public key, serialized compressed."""

    def __init__(self, verifying_key: VerifyingKey):
        self._key = verifying_key

    @classmethod
    def from_point(cls, point) -> "PublicKey":
        return cls(VerifyingKey.from_public_point(point, curve=SECP256k1))

    @classmethod
    def from_bytes(cls, data: bytes) -> "PublicKey":
        """Parse a compressed or uncompressed SEC encoding.

        Raises:
            ValueError: If the bytes are not a point on the curve
        """
        try:
            return cls(VerifyingKey.from_string(bytes(data), curve=SECP256k1))
        except MalformedPointError as e:
            raise ValueError(f"Invalid public key: {e}") from e

    @classmethod
    def from_hex(cls, data_hex: str) -> "PublicKey":
        try:
            data = bytes.fromhex(data_hex)
        except ValueError:
            raise ValueError(f"Invalid public key hex: {data_hex!r}") from None
        return cls.from_bytes(data)

    @property
    def point(self):
        return self._key.pubkey.point

    def to_bytes(self) -> bytes:
        return self._key.to_string("compressed")

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    def __str__(self):
        return self.to_hex()

    def __repr__(self):
        return f"PublicKey({self.to_hex()!r})"

    def __eq__(self, other):
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __hash__(self):
        return hash(self.to_bytes())

    def derive_shared_secret(self, private_key: "PrivateKey") -> "PublicKey":
        return PublicKey.from_point(self.point * private_key.secret)

    def derive_child(self, private_key: "PrivateKey", invoice_number: str) -> "PublicKey":
        """Derive the child public key another party will sign with."""
        shared_secret = self.derive_shared_secret(private_key)
        tweak = sha256_hmac(shared_secret.to_bytes(), invoice_number.encode("utf-8"))
        return PublicKey.from_point(self.point + GENERATOR * int.from_bytes(tweak, "big"))

    def verify_digest(self, signature: bytes, digest: bytes) -> bool:
        """Check a DER signature over a 32 byte digest."""
        try:
            return self._key.verify_digest(bytes(signature), digest, sigdecode=sigdecode_der)
        except (BadSignatureError, BadDigestError):
            return False


class PrivateKey:
    """A secp256k1 private key scalar."""

    def __init__(self, secret: int):
        if not 1 <= secret < CURVE_ORDER:
            raise ValueError("Private key scalar out of range")
        self.secret = secret

    @classmethod
    def from_random(cls) -> "PrivateKey":
        return cls(secrets.randbelow(CURVE_ORDER - 1) + 1)

    @classmethod
    def from_hex(cls, key_hex: str) -> "PrivateKey":
        try:
            data = bytes.fromhex(key_hex)
        except ValueError:
            raise ValueError("Invalid private key hex") from None
        if len(data) != 32:
            raise ValueError(f"Private key must be 32 bytes, got {len(data)}")
        return cls(int.from_bytes(data, "big"))

    def to_hex(self) -> str:
        return self.secret.to_bytes(32, "big").hex()

    def __repr__(self):
        return "PrivateKey(<hidden>)"

    def public_key(self) -> PublicKey:
        return PublicKey.from_point(GENERATOR * self.secret)

    def derive_shared_secret(self, public_key: PublicKey) -> PublicKey:
        return public_key.derive_shared_secret(self)

    def derive_child(self, public_key: PublicKey, invoice_number: str) -> "PrivateKey":
        shared_secret = self.derive_shared_secret(public_key)
        tweak = sha256_hmac(shared_secret.to_bytes(), invoice_number.encode("utf-8"))
        return PrivateKey((self.secret + int.from_bytes(tweak, "big")) % CURVE_ORDER)

    def sign_digest(self, digest: bytes) -> bytes:
        """Sign a 32 byte digest with RFC6979 nonces, returning low-S DER."""
        signing_key = SigningKey.from_secret_exponent(
            self.secret, curve=SECP256k1, hashfunc=hashlib.sha256
        )
        return signing_key.sign_digest_deterministic(
            digest, hashfunc=hashlib.sha256, sigencode=sigencode_der_canonize
        )
