"""Conversation keys and NIP-44 (version 2) payload encryption.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import os

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from vmadmin.common.exceptions import (
    DecryptionFailed,
    InvalidKeyMaterial,
    KeyAgreementFailed,
)
from vmadmin.common.keys import KEY_SIZE, load_private_key

VERSION = 2
SALT = b"nip44-v2"
NONCE_SIZE = 32
MAC_SIZE = 32
MIN_PLAINTEXT_SIZE = 1
MAX_PLAINTEXT_SIZE = 65535
MIN_PAYLOAD_CHARS = 132
MAX_PAYLOAD_CHARS = 87472
MIN_PAYLOAD_BYTES = 99
MAX_PAYLOAD_BYTES = 65603


def calc_padded_len(unpadded_len: int) -> int:
    """Padded plaintext length for a given plaintext length."""
    if unpadded_len <= 32:  # noqa: PLR2004
        return 32
    next_power = 1 << (unpadded_len - 1).bit_length()
    chunk = 32 if next_power <= 256 else next_power // 8  # noqa: PLR2004
    return chunk * ((unpadded_len - 1) // chunk + 1)


def pad(plaintext: bytes) -> bytes:
    size = len(plaintext)
    if not MIN_PLAINTEXT_SIZE <= size <= MAX_PLAINTEXT_SIZE:
        msg = f"Plaintext must be {MIN_PLAINTEXT_SIZE}..{MAX_PLAINTEXT_SIZE} bytes, got {size}"
        raise ValueError(msg)
    prefix = size.to_bytes(2, "big")
    return prefix + plaintext + bytes(calc_padded_len(size) - size)


def unpad(padded: bytes) -> bytes:
    size = int.from_bytes(padded[:2], "big")
    plaintext = padded[2 : 2 + size]
    if (
        size < MIN_PLAINTEXT_SIZE
        or len(plaintext) != size
        or len(padded) != 2 + calc_padded_len(size)
    ):
        msg = "Invalid padding"
        raise DecryptionFailed(msg)
    return plaintext


class SecretAgreement:
    """Key agreement and authenticated encryption between two identities."""

    @staticmethod
    def get_conversation_key(private_key: str, public_key: str) -> bytes:
        """Derive the symmetric conversation key for a (private, public) pair.

        Both directions of a conversation derive the same key.
        """
        try:
            secret = load_private_key(private_key)
            peer_bytes = bytes.fromhex(public_key)
            if len(peer_bytes) != KEY_SIZE:
                msg = f"Public key must be {KEY_SIZE} bytes"
                raise ValueError(msg)
            # x-only keys are lifted to the even-y point; ECDH x is unaffected.
            peer = ec.EllipticCurvePublicKey.from_encoded_point(
                ec.SECP256K1(), b"\x02" + peer_bytes
            )
            shared_x = secret.exchange(ec.ECDH(), peer)
        except (InvalidKeyMaterial, ValueError) as err:
            msg = f"Key agreement failed: {err}"
            raise KeyAgreementFailed(msg) from err
        return hmac.new(SALT, shared_x, hashlib.sha256).digest()

    @staticmethod
    def _message_keys(
        conversation_key: bytes, nonce: bytes
    ) -> tuple[bytes, bytes, bytes]:
        keys = HKDFExpand(
            algorithm=hashes.SHA256(),
            length=76,
            info=nonce,
        ).derive(conversation_key)
        return keys[:32], keys[32:44], keys[44:]

    @staticmethod
    def _chacha20(key: bytes, nonce: bytes, data: bytes) -> bytes:
        # cryptography takes a 16 byte nonce: 4 byte LE counter + 12 byte nonce
        cipher = Cipher(algorithms.ChaCha20(key, bytes(4) + nonce), mode=None)
        encryptor = cipher.encryptor()
        return encryptor.update(data) + encryptor.finalize()

    @staticmethod
    def _mac(hmac_key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
        return hmac.new(hmac_key, nonce + ciphertext, hashlib.sha256).digest()

    @staticmethod
    def encrypt(
        conversation_key: bytes, plaintext: bytes, nonce: bytes | None = None
    ) -> str:
        """Encrypt plaintext into a base64 NIP-44 payload.

        A fresh random nonce is drawn on every call unless one is given
        (test vectors only).
        """
        if nonce is None:
            nonce = os.urandom(NONCE_SIZE)
        chacha_key, chacha_nonce, hmac_key = SecretAgreement._message_keys(
            conversation_key, nonce
        )
        ciphertext = SecretAgreement._chacha20(chacha_key, chacha_nonce, pad(plaintext))
        mac = SecretAgreement._mac(hmac_key, nonce, ciphertext)
        payload = bytes([VERSION]) + nonce + ciphertext + mac
        return base64.b64encode(payload).decode("ascii")

    @staticmethod
    def decrypt(conversation_key: bytes, payload: str) -> bytes:
        """Authenticate and decrypt a NIP-44 payload."""
        if not payload or payload.startswith("#"):
            msg = "Unknown encryption version"
            raise DecryptionFailed(msg)
        if not MIN_PAYLOAD_CHARS <= len(payload) <= MAX_PAYLOAD_CHARS:
            msg = f"Invalid payload size: {len(payload)}"
            raise DecryptionFailed(msg)
        try:
            data = base64.b64decode(payload, validate=True)
        except ValueError as err:
            msg = f"Invalid base64 payload: {err}"
            raise DecryptionFailed(msg) from err
        if not MIN_PAYLOAD_BYTES <= len(data) <= MAX_PAYLOAD_BYTES:
            msg = f"Invalid data size: {len(data)}"
            raise DecryptionFailed(msg)
        if data[0] != VERSION:
            msg = f"Unknown encryption version {data[0]}"
            raise DecryptionFailed(msg)
        if len(conversation_key) != KEY_SIZE:
            msg = "Invalid conversation key"
            raise DecryptionFailed(msg)

        nonce = data[1 : 1 + NONCE_SIZE]
        ciphertext = data[1 + NONCE_SIZE : -MAC_SIZE]
        mac = data[-MAC_SIZE:]
        chacha_key, chacha_nonce, hmac_key = SecretAgreement._message_keys(
            conversation_key, nonce
        )
        expected = SecretAgreement._mac(hmac_key, nonce, ciphertext)
        if not hmac.compare_digest(expected, mac):
            msg = "Invalid MAC"
            raise DecryptionFailed(msg)
        return unpad(SecretAgreement._chacha20(chacha_key, chacha_nonce, ciphertext))
