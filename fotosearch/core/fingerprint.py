# fotosearch/core/fingerprint.py

from dataclasses import dataclass
import numpy as np
import imagehash


@dataclass(frozen=True)
class Fingerprint:
    """
    Fixed-length perceptual bit vector, packed big-endian into bytes.

    Fingerprints are compared only by Hamming distance; equal
    fingerprints have distance 0.
    """
    value: bytes

    def __post_init__(self):
        if not isinstance(self.value, bytes) or not self.value:
            raise ValueError("Fingerprint value must be non-empty bytes")

    @property
    def bits(self) -> int:
        return len(self.value) * 8

    def as_int(self) -> int:
        return int.from_bytes(self.value, 'big')

    def hex(self) -> str:
        return self.value.hex()

    def distance(self, other: 'Fingerprint') -> int:
        """Number of differing bits"""
        if self.bits != other.bits:
            raise ValueError(
                f"Cannot compare {self.bits} bit fingerprint with {other.bits} bit fingerprint"
            )
        return (self.as_int() ^ other.as_int()).bit_count()

    def __str__(self):
        return self.hex()

    @classmethod
    def from_hex(cls, text: str) -> 'Fingerprint':
        return cls(bytes.fromhex(text))

    @classmethod
    def from_int(cls, value: int, bits: int = 64) -> 'Fingerprint':
        if bits % 8:
            raise ValueError("Fingerprint length must be a multiple of 8 bits")
        return cls(value.to_bytes(bits // 8, 'big'))

    @classmethod
    def from_image_hash(cls, image_hash: imagehash.ImageHash) -> 'Fingerprint':
        bits = np.asarray(image_hash.hash, dtype=bool).flatten()
        if bits.size % 8:
            raise ValueError(f"Hash of {bits.size} bits cannot be packed into bytes")
        return cls(np.packbits(bits).tobytes())


def pack_fingerprints(fingerprints) -> np.ndarray:
    """Stack fingerprints into an (n, nbytes) uint8 matrix"""
    return np.array([np.frombuffer(fp.value, dtype=np.uint8) for fp in fingerprints],
                    dtype=np.uint8)


def hamming_distances(query: Fingerprint, matrix: np.ndarray) -> np.ndarray:
    """
    Hamming distance from query to every row of a packed fingerprint matrix

    Args:
        query: Query fingerprint
        matrix: Array of shape (n, nbytes) as built by pack_fingerprints

    Returns:
        Array of shape (n,) with the popcount of each row XOR query
    """
    if matrix.size == 0:
        return np.zeros(0, dtype=np.int64)

    if matrix.shape[1] * 8 != query.bits:
        raise ValueError(
            f"Cannot compare {query.bits} bit fingerprint with {matrix.shape[1] * 8} bit fingerprints"
        )

    query_row = np.frombuffer(query.value, dtype=np.uint8)
    xor = np.bitwise_xor(matrix, query_row)
    return np.unpackbits(xor, axis=1).sum(axis=1, dtype=np.int64)
