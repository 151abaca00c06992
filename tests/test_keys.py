import pytest

from vmadmin.common.exceptions import InvalidKeyEncoding, InvalidKeyMaterial
from vmadmin.common.keys import (
    derive_public_key,
    encode_private_key,
    encode_public_key,
    generate_private_key,
    load_private_key,
    normalize_private_key,
    normalize_public_key,
)

NSEC = "nsec1vl029mgpspedva04g90vltkh6fvh240zqtv9k0t9af8935ke9laqsnlfe5"
NSEC_HEX = "67dea2ed018072d675f5415ecfaed7d2597555e202d85b3d65ea4e58d2d92ffa"
NPUB = "npub180cvv07tjdrrgpa0j7j7tmnyl2yr6yr7l8j4s3evf6u64th6gkwsyjh6w6"
NPUB_HEX = "3bf0c63fcb93463407af97a5e5ee64fa883d107ef9e558472c4eb9aaaefa459d"
GENERATOR_X = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"


def test_normalize_private_key_nsec() -> None:
    assert normalize_private_key(NSEC) == NSEC_HEX


def test_normalize_public_key_npub() -> None:
    assert normalize_public_key(NPUB) == NPUB_HEX


def test_normalize_hex_is_lowercased() -> None:
    assert normalize_public_key(NPUB_HEX.upper()) == NPUB_HEX
    assert normalize_private_key(f"  {NSEC_HEX}\n") == NSEC_HEX


def test_encode_matches_reference_strings() -> None:
    assert encode_private_key(NSEC_HEX) == NSEC
    assert encode_public_key(NPUB_HEX) == NPUB


def test_public_key_rejects_nsec() -> None:
    with pytest.raises(InvalidKeyEncoding):
        normalize_public_key(NSEC)


def test_private_key_rejects_npub_as_hex() -> None:
    with pytest.raises(InvalidKeyEncoding):
        normalize_private_key(NPUB)


@pytest.mark.parametrize(
    "value",
    [
        "",
        "abc",
        "zz" * 32,
        "ab " * 21 + "a",
        NPUB[:-1] + ("q" if NPUB[-1] != "q" else "p"),
    ],
)
def test_invalid_encodings(value: str) -> None:
    with pytest.raises(InvalidKeyEncoding):
        normalize_public_key(value)


def test_derive_public_key_of_one_is_generator() -> None:
    assert derive_public_key("00" * 31 + "01") == GENERATOR_X


def test_zero_private_key_is_invalid_material() -> None:
    with pytest.raises(InvalidKeyMaterial):
        load_private_key("00" * 32)


def test_private_key_above_order_is_invalid_material() -> None:
    with pytest.raises(InvalidKeyMaterial):
        derive_public_key("ff" * 32)


def test_generate_private_key() -> None:
    first = generate_private_key()
    second = generate_private_key()
    assert first != second
    assert len(first) == 64  # noqa: PLR2004
    assert len(derive_public_key(first)) == 64  # noqa: PLR2004
