# tests/test_fingerprint.py

import imagehash
import numpy as np
import pytest
from hypothesis import given, strategies as st

from fotosearch.core.fingerprint import Fingerprint, hamming_distances, pack_fingerprints

bits64 = st.integers(min_value=0, max_value=2**64 - 1)


def test_fingerprint_properties():
    fp = Fingerprint.from_int(0xFF00, bits=64)

    assert fp.bits == 64
    assert fp.hex() == "000000000000ff00"
    assert fp.as_int() == 0xFF00
    assert Fingerprint.from_hex(fp.hex()) == fp


def test_fingerprint_rejects_empty_value():
    with pytest.raises(ValueError):
        Fingerprint(b"")


def test_distance_of_equal_fingerprints_is_zero():
    fp = Fingerprint.from_int(0xDEADBEEF)
    assert fp.distance(Fingerprint.from_int(0xDEADBEEF)) == 0


def test_distance_counts_bits_not_byte_values():
    # Per-byte integer differences would give 0xFF here
    a = Fingerprint.from_int(0x00)
    b = Fingerprint.from_int(0xFF)
    assert a.distance(b) == 8


def test_distance_length_mismatch():
    with pytest.raises(ValueError):
        Fingerprint.from_int(1, bits=64).distance(Fingerprint.from_int(1, bits=128))


@given(bits64, bits64)
def test_distance_is_popcount_of_xor(a, b):
    fa, fb = Fingerprint.from_int(a), Fingerprint.from_int(b)

    assert fa.distance(fb) == bin(a ^ b).count("1")
    assert fa.distance(fb) == fb.distance(fa)


@given(st.lists(bits64, min_size=1, max_size=20), bits64)
def test_vectorized_distances_match_scalar(values, query_value):
    fingerprints = [Fingerprint.from_int(v) for v in values]
    query = Fingerprint.from_int(query_value)

    distances = hamming_distances(query, pack_fingerprints(fingerprints))

    assert list(distances) == [query.distance(fp) for fp in fingerprints]


def test_vectorized_distances_empty_matrix():
    distances = hamming_distances(Fingerprint.from_int(0), np.zeros((0, 8), dtype=np.uint8))
    assert distances.size == 0


def test_from_image_hash_packs_row_major():
    bits = np.zeros((8, 8), dtype=bool)
    bits[0, 0] = True  # most significant bit
    bits[7, 7] = True  # least significant bit

    fp = Fingerprint.from_image_hash(imagehash.ImageHash(bits))

    assert fp.bits == 64
    assert fp.as_int() == (1 << 63) | 1
    assert fp.hex() == str(imagehash.ImageHash(bits))


def test_image_hash_distance_agrees():
    a = imagehash.hex_to_hash("ffff0000ffff0000")
    b = imagehash.hex_to_hash("0fff0000ffff00f0")

    assert Fingerprint.from_image_hash(a).distance(Fingerprint.from_image_hash(b)) == a - b
