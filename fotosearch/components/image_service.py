# fotosearch/components/image_service.py

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from tqdm import tqdm

from fotosearch.components.similarity_search import SimilaritySearchEngine
from fotosearch.config import SystemConfig
from fotosearch.core.blob_storage import S3BlobStore, create_blob_store
from fotosearch.core.codec import FingerprintCodec, ImageEncoding, DecodedImage
from fotosearch.core.database import FingerprintStore
from fotosearch.core.errors import BlobStorageError, FotoSearchError
from fotosearch.core.records import ImageRecord, generate_image_id
from fotosearch.utils.file_utils import get_image_files, guess_media_type

logger = logging.getLogger(__name__)


@dataclass
class UploadForm:
    """An authenticated upload, as handed over by the request layer"""
    payload: bytes
    encoding: ImageEncoding
    title: str = ""
    description: str = ""
    media_type: str = ""


@dataclass
class ImportSummary:
    stored: List[ImageRecord] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class ImageService:
    """
    Assembles uploads into stored records and answers image searches
    """

    def __init__(self,
                 codec: FingerprintCodec,
                 store: FingerprintStore,
                 search_engine: SimilaritySearchEngine,
                 blob_store: Optional[S3BlobStore] = None,
                 id_factory: Callable[[], str] = generate_image_id,
                 clock: Callable[[], float] = time.time):
        if codec.bits != store.fingerprint_bits:
            raise ValueError(
                f"Codec produces {codec.bits} bit fingerprints, store holds {store.fingerprint_bits}"
            )
        self.codec = codec
        self.store = store
        self.search_engine = search_engine
        self.blob_store = blob_store
        self.id_factory = id_factory
        self.clock = clock

    def upload(self, form: UploadForm, owner: str) -> ImageRecord:
        """
        Decode, fingerprint and store an uploaded image

        The caller must have authenticated owner. Decode errors propagate
        before anything is written.
        """
        decoded, fingerprint = self.codec.decode_and_fingerprint(form.encoding, form.payload)
        media_type = form.media_type or decoded.mime_type

        record = ImageRecord(
            id=self.id_factory(),
            fingerprint=fingerprint,
            owner=owner,
            title=form.title or "",
            description=form.description or "",
            tags=(),
            storage_location=self._store_blob(decoded, media_type),
            media_type=media_type,
            width=decoded.width,
            height=decoded.height,
            created_at=int(self.clock()),
        )

        image_id = self.store.insert(record, id_factory=self.id_factory)
        if image_id != record.id:
            record = self.store.get_by_id(image_id)

        return record

    def _store_blob(self, decoded: DecodedImage, media_type: str) -> str:
        """Upload the original bytes; failure only leaves the location empty"""
        if self.blob_store is None:
            return ""

        try:
            return self.blob_store.put(decoded.raw, media_type)
        except BlobStorageError as e:
            logger.warning(f"Blob upload failed, storing record without location: {e}")
            return ""

    def search(self, encoding: ImageEncoding, payload: bytes,
               threshold: Optional[int] = None) -> List[ImageRecord]:
        """Records similar to the query image"""
        return self.search_engine.search_image(encoding, payload, threshold)

    def get(self, image_id: str) -> ImageRecord:
        return self.store.get_by_id(image_id)

    def import_directory(self, directory: str, owner: str,
                         recursive: bool = True) -> ImportSummary:
        """Upload every image file found in a directory"""
        summary = ImportSummary()
        image_paths = get_image_files(directory, recursive=recursive)
        logger.info(f"Importing {len(image_paths)} images from {directory} for {owner}")

        for path in tqdm(image_paths, desc="Importing images"):
            try:
                form = UploadForm(
                    payload=Path(path).read_bytes(),
                    encoding=ImageEncoding.FILE,
                    title=Path(path).stem,
                    media_type=guess_media_type(path),
                )
                summary.stored.append(self.upload(form, owner))
            except (FotoSearchError, OSError) as e:
                logger.warning(f"Skipping {path}: {e}")
                summary.failed[path] = f"{type(e).__name__}: {e}"

        return summary


def create_image_service(config: SystemConfig) -> ImageService:
    """Wire codec, store, search engine and blob storage from a SystemConfig"""
    codec = FingerprintCodec(config.fingerprint, config.fetch)
    store = FingerprintStore(config.store, fingerprint_bits=codec.bits)
    search_engine = SimilaritySearchEngine(store, config.search, codec=codec)

    return ImageService(
        codec=codec,
        store=store,
        search_engine=search_engine,
        blob_store=create_blob_store(config.blob_storage),
    )
