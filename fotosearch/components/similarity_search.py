# fotosearch/components/similarity_search.py

import logging
import time
from dataclasses import dataclass
from itertools import islice
from typing import List, Optional

from fotosearch.config import SearchConfig
from fotosearch.core.codec import FingerprintCodec, ImageEncoding
from fotosearch.core.database import FingerprintStore
from fotosearch.core.fingerprint import Fingerprint, hamming_distances, pack_fingerprints
from fotosearch.core.records import ImageRecord

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """Container for search results"""
    record: ImageRecord
    distance: int


class SimilaritySearchEngine:
    """
    Exact Hamming distance search over every fingerprint bucket in a store
    """

    def __init__(self, store: FingerprintStore,
                 config: SearchConfig = None,
                 codec: Optional[FingerprintCodec] = None):
        self.store = store
        self.config = config or SearchConfig()
        self.codec = codec

    def resolve_threshold(self, threshold: Optional[int]) -> int:
        """
        Default a missing threshold and clamp it to the fingerprint length
        """
        if threshold is None:
            threshold = self.config.hamming_distance

        threshold = int(threshold)
        if threshold < 0:
            raise ValueError(f"Threshold must be non-negative, got {threshold}")

        # Above the bit length every fingerprint matches
        return min(threshold, self.store.fingerprint_bits)

    def search_with_distances(self, query: Fingerprint,
                              threshold: Optional[int] = None) -> List[SearchResult]:
        """
        Find every record whose fingerprint is within threshold bits of query

        Time Complexity: O(n_buckets * fingerprint_bits)

        Returns:
            Matching records with their distance, nearest first
        """
        if query.bits != self.store.fingerprint_bits:
            raise ValueError(
                f"Query has {query.bits} bits, store holds {self.store.fingerprint_bits}"
            )
        threshold = self.resolve_threshold(threshold)

        start = time.monotonic()
        scanned = 0
        results = []

        buckets = self.store.iter_fingerprints()
        batch_size = self.store.config.scan_batch_size

        while True:
            batch = list(islice(buckets, batch_size))
            if not batch:
                break
            scanned += len(batch)

            distances = hamming_distances(query, pack_fingerprints(fp for fp, _ in batch))

            for (fingerprint, bucket), distance in zip(batch, distances):
                if distance <= threshold:
                    results.extend(SearchResult(record, int(distance)) for record in bucket)

        results.sort(key=lambda result: result.distance)

        logger.info(
            f"Search for {query} (threshold {threshold}) scanned {scanned} buckets, "
            f"matched {len(results)} images in {time.monotonic() - start:.3f}s"
        )
        return results

    def search(self, query: Fingerprint, threshold: Optional[int] = None) -> List[ImageRecord]:
        """Records within threshold of query. Order carries no meaning."""
        return [result.record for result in self.search_with_distances(query, threshold)]

    def search_image(self, encoding: ImageEncoding, payload: bytes,
                     threshold: Optional[int] = None) -> List[ImageRecord]:
        """Fingerprint a query image and search for it"""
        if self.codec is None:
            raise RuntimeError("SimilaritySearchEngine was built without a codec")

        _, fingerprint = self.codec.decode_and_fingerprint(encoding, payload)
        return self.search(fingerprint, threshold)
