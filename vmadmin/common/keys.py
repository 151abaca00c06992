"""
Key normalization between bech32 (nsec/npub) and hex forms.

Private and public keys travel through the rest of the package as 64-char
lowercase hex strings. Public keys are BIP-340 x-only secp256k1 points.
"""

from __future__ import annotations

import bech32
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from vmadmin.common.exceptions import InvalidKeyEncoding, InvalidKeyMaterial

PRIVATE_KEY_PREFIX = "nsec"
PUBLIC_KEY_PREFIX = "npub"
KEY_SIZE = 32
SECP256K1_ORDER = int(
    "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16
)


def _decode_hex(value: str) -> str:
    if len(value) != KEY_SIZE * 2:
        msg = f"Expected {KEY_SIZE * 2} hex characters, got {len(value)}"
        raise InvalidKeyEncoding(msg)
    try:
        raw = bytes.fromhex(value)
    except ValueError as err:
        msg = f"Invalid hex key: {err}"
        raise InvalidKeyEncoding(msg) from err
    if len(raw) != KEY_SIZE:
        msg = f"Invalid hex key: expected {KEY_SIZE} bytes"
        raise InvalidKeyEncoding(msg)
    return raw.hex()


def _decode_bech32(value: str, hrp: str) -> str:
    decoded = bech32.bech32_decode(value)
    found_hrp, data = decoded[0], decoded[1]
    if data is None:
        msg = f"Invalid {hrp} format: bad bech32 checksum or characters"
        raise InvalidKeyEncoding(msg)
    if found_hrp != hrp:
        msg = f"Invalid {hrp} format: unexpected prefix {found_hrp!r}"
        raise InvalidKeyEncoding(msg)
    raw = bech32.convertbits(data, 5, 8, False)
    if raw is None or len(raw) != KEY_SIZE:
        msg = f"Invalid {hrp} format: payload is not {KEY_SIZE} bytes"
        raise InvalidKeyEncoding(msg)
    return bytes(raw).hex()


def _encode_bech32(key_hex: str, hrp: str) -> str:
    data = bech32.convertbits(bytes.fromhex(_decode_hex(key_hex)), 8, 5)
    return bech32.bech32_encode(hrp, data)


def normalize_private_key(value: str) -> str:
    """Return the hex form of a private key given as hex or nsec."""
    value = value.strip()
    if value.startswith(PRIVATE_KEY_PREFIX):
        return _decode_bech32(value, PRIVATE_KEY_PREFIX)
    return _decode_hex(value)


def normalize_public_key(value: str) -> str:
    """Return the hex form of a public key given as hex or npub."""
    value = value.strip()
    if value.startswith(PUBLIC_KEY_PREFIX):
        return _decode_bech32(value, PUBLIC_KEY_PREFIX)
    return _decode_hex(value)


def encode_private_key(private_key: str) -> str:
    return _encode_bech32(private_key, PRIVATE_KEY_PREFIX)


def encode_public_key(public_key: str) -> str:
    return _encode_bech32(public_key, PUBLIC_KEY_PREFIX)


def load_private_key(private_key: str) -> ec.EllipticCurvePrivateKey:
    """Load a hex private key as a cryptography secp256k1 key object."""
    try:
        secret = int.from_bytes(bytes.fromhex(private_key), "big")
    except ValueError as err:
        msg = f"Invalid private key: {err}"
        raise InvalidKeyMaterial(msg) from err
    if len(private_key) != KEY_SIZE * 2 or not 0 < secret < SECP256K1_ORDER:
        msg = "Invalid private key: not a valid secp256k1 scalar"
        raise InvalidKeyMaterial(msg)
    return ec.derive_private_key(secret, ec.SECP256K1())


def derive_public_key(private_key: str) -> str:
    """Derive the x-only public key (hex) for a hex private key."""
    point = (
        load_private_key(private_key)
        .public_key()
        .public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.CompressedPoint,
        )
    )
    # Drop the parity byte; BIP-340 keys are the x coordinate only.
    return point[1:].hex()


def generate_private_key() -> str:
    """Generate a fresh secp256k1 private key (hex)."""
    private_value = ec.generate_private_key(ec.SECP256K1()).private_numbers().private_value
    return private_value.to_bytes(KEY_SIZE, "big").hex()
