"""pharmachain.identity

Caller identities used uniformly for ownership, role grants and authorization.

Two forms are accepted:
- `did:key` identifiers carrying an Ed25519 public key (multicodec 0xed01,
  multibase base58btc), derived with `cryptography`
- 0x-prefixed 20-byte hex addresses, lower-cased on normalization

`ZERO_IDENTITY` is the null address. It is a valid string but never a valid
owner or grantee.
"""

from __future__ import annotations

import re
from typing import Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from pharmachain.core import sha256_bytes


ZERO_IDENTITY = "0x" + "0" * 40

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-f]{40}$")
DID_KEY_PATTERN = re.compile(r"^did:key:z[1-9A-HJ-NP-Za-km-z]+$")

B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


def b58decode(s: str) -> bytes:
    s_bytes = s.encode("ascii")
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    n_pad = 0
    for c in s_bytes:
        if c == B58_ALPHABET[0]:
            n_pad += 1
        else:
            break
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


def b58encode(b: bytes) -> str:
    n_pad = 0
    for c in b:
        if c == 0:
            n_pad += 1
        else:
            break
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


# ---------------------------------------------------------------------------
# did:key (Ed25519)
# ---------------------------------------------------------------------------


def did_key_from_ed25519_public_key(pub: bytes) -> str:
    # multicodec 0xed01 + 32-byte pubkey (ed25519-pub)
    prefixed = bytes([0xED, 0x01]) + pub
    return "did:key:z" + b58encode(prefixed)


def ed25519_public_key_from_did_key(did: str) -> Ed25519PublicKey:
    """Parse a `did:key` (Ed25519) and return a cryptography public key."""

    if not did.startswith("did:key:z"):
        raise ValueError("Only did:key:z... supported")
    decoded = b58decode(did[len("did:key:z"):])

    if not decoded.startswith(bytes([0xED, 0x01])):
        raise ValueError("did:key multicodec prefix not recognized for Ed25519")
    raw = decoded[2:]
    if len(raw) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(raw)}")

    return Ed25519PublicKey.from_public_bytes(raw)


def generate_identity() -> Tuple[Ed25519PrivateKey, str]:
    """Create a fresh Ed25519 key pair and return it with its did:key."""
    priv = Ed25519PrivateKey.generate()
    pub = priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return priv, did_key_from_ed25519_public_key(pub)


def address_from_seed(seed: str) -> str:
    """Deterministic 0x address derived from an arbitrary seed string."""
    return "0x" + sha256_bytes(seed.encode("utf-8"))[-40:]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def is_well_formed(identity: object) -> bool:
    """True for a syntactically valid did:key or 0x address."""
    if not isinstance(identity, str):
        return False
    if ADDRESS_PATTERN.match(identity.lower()):
        return True
    if DID_KEY_PATTERN.match(identity):
        try:
            ed25519_public_key_from_did_key(identity)
        except ValueError:
            return False
        return True
    return False


def is_null(identity: object) -> bool:
    return isinstance(identity, str) and identity.lower() == ZERO_IDENTITY


def normalize_identity(identity: str) -> str:
    """Return the canonical spelling of an identity.

    Addresses compare case-insensitively and are lower-cased; did:key values
    are case-sensitive and returned unchanged.

    Raises:
        ValueError: if the identity is not well formed
    """
    if not is_well_formed(identity):
        raise ValueError(f"Malformed identity: {identity!r}")
    if identity.lower().startswith("0x"):
        return identity.lower()
    return identity
