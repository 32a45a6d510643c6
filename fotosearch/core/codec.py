# fotosearch/core/codec.py

import base64
import binascii
import io
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import imagehash
import requests
from PIL import Image, UnidentifiedImageError

from fotosearch.config import FingerprintConfig, FetchConfig
from fotosearch.core.errors import UnsupportedFormat, EncodingMismatch, FetchFailed
from fotosearch.core.fingerprint import Fingerprint

logger = logging.getLogger(__name__)

HASH_METHODS = {
    'dhash': imagehash.dhash,
    'phash': imagehash.phash,
    'average_hash': imagehash.average_hash,
    'whash': imagehash.whash,
}

_CHUNK_SIZE = 8 * 1024


class ImageEncoding(Enum):
    """How an uploaded image payload is encoded"""
    BASE64 = "base64"
    URL = "url"
    FILE = "file"

    @classmethod
    def parse(cls, text: str) -> 'ImageEncoding':
        try:
            return cls(text.strip().lower())
        except (ValueError, AttributeError) as e:
            raise EncodingMismatch(f"Unknown image encoding: {text!r}") from e


@dataclass
class DecodedImage:
    """A decoded image together with the container bytes it came from"""
    image: Image.Image
    raw: bytes
    format: Optional[str]

    @property
    def width(self) -> int:
        return self.image.size[0]

    @property
    def height(self) -> int:
        return self.image.size[1]

    @property
    def mime_type(self) -> str:
        return Image.MIME.get(self.format or '', '')


class FingerprintCodec:
    """
    Decodes image payloads and reduces them to perceptual fingerprints
    """

    def __init__(self,
                 fingerprint_config: FingerprintConfig = None,
                 fetch_config: FetchConfig = None):
        self.fingerprint_config = fingerprint_config or FingerprintConfig()
        self.fetch_config = fetch_config or FetchConfig()

        method = self.fingerprint_config.hash_method
        if method not in HASH_METHODS:
            raise ValueError(f"Unknown hash method {method!r}, expected one of {sorted(HASH_METHODS)}")
        if self.fingerprint_config.bits % 8:
            raise ValueError("hash_size squared must be a multiple of 8")

        self._hash_func = HASH_METHODS[method]

        # Guard against decompression bombs
        Image.MAX_IMAGE_PIXELS = self.fingerprint_config.max_image_pixels

    @property
    def bits(self) -> int:
        return self.fingerprint_config.bits

    def decode(self, encoding: ImageEncoding, payload: bytes) -> DecodedImage:
        """
        Decode a payload into an image

        Raises:
            EncodingMismatch: payload does not match the declared encoding
            FetchFailed: URL payload could not be downloaded
            UnsupportedFormat: bytes are not a recognized image
        """
        if encoding is ImageEncoding.BASE64:
            data = self._decode_base64(payload)
        elif encoding is ImageEncoding.URL:
            data = self._fetch(self._decode_text(payload, "URL").strip())
        elif encoding is ImageEncoding.FILE:
            data = bytes(payload)
        else:
            raise EncodingMismatch(f"Unknown image encoding: {encoding!r}")

        return self._load_image(data)

    def fingerprint(self, decoded: DecodedImage) -> Fingerprint:
        """Compute the perceptual fingerprint of a decoded image"""
        image_hash = self._hash_func(decoded.image, hash_size=self.fingerprint_config.hash_size)
        return Fingerprint.from_image_hash(image_hash)

    def decode_and_fingerprint(self, encoding: ImageEncoding, payload: bytes):
        decoded = self.decode(encoding, payload)
        return decoded, self.fingerprint(decoded)

    @staticmethod
    def _decode_text(payload: bytes, what: str) -> str:
        if isinstance(payload, str):
            return payload
        try:
            return bytes(payload).decode('utf-8')
        except UnicodeDecodeError as e:
            raise EncodingMismatch(f"{what} payload is not valid UTF-8") from e

    def _decode_base64(self, payload: bytes) -> bytes:
        text = self._decode_text(payload, "Base64")

        # Accept data URIs (data:image/png;base64,....)
        if text.startswith('data:') and ',' in text:
            text = text.split(',', 1)[1]

        try:
            return base64.b64decode(''.join(text.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise EncodingMismatch("Payload is not valid base64") from e

    def _fetch(self, url: str) -> bytes:
        """
        Single bounded download attempt, never retried

        The requests timeout only bounds each socket read, so the whole
        download runs on a worker and is abandoned at the deadline.
        """
        timeout = self.fetch_config.timeout_seconds
        logger.info(f"Downloading image from {url}")

        start = time.monotonic()
        responses = []
        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self._download, url, start + timeout, responses)
            data = future.result(timeout=timeout)
        except FuturesTimeoutError:
            for response in responses:
                response.close()
            logger.warning(f"Download of {url} exceeded {timeout}s")
            raise FetchFailed(url, f"download exceeded {timeout}s")
        except requests.RequestException as e:
            logger.warning(f"Download of {url} failed: {e}")
            raise FetchFailed(url, str(e)) from e
        finally:
            executor.shutdown(wait=False)

        logger.debug(f"Downloaded {len(data)} bytes from {url} in {time.monotonic() - start:.2f}s")
        return data

    def _download(self, url: str, deadline: float, responses: list) -> bytes:
        timeout = self.fetch_config.timeout_seconds
        max_bytes = self.fetch_config.max_bytes

        with requests.get(url, timeout=timeout, stream=True) as response:
            responses.append(response)
            if not 200 <= response.status_code < 300:
                raise FetchFailed(url, f"HTTP {response.status_code}",
                                  status_code=response.status_code)

            chunks = []
            received = 0
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                received += len(chunk)
                if received > max_bytes:
                    raise FetchFailed(url, f"response larger than {max_bytes} bytes")
                if time.monotonic() > deadline:
                    raise FetchFailed(url, f"download exceeded {timeout}s")
                chunks.append(chunk)

        return b''.join(chunks)

    @staticmethod
    def _load_image(data: bytes) -> DecodedImage:
        if not data:
            raise UnsupportedFormat("Empty image payload")

        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, Image.DecompressionBombError,
                OSError, SyntaxError, ValueError, EOFError) as e:
            raise UnsupportedFormat(f"Could not decode image: {e}") from e

        return DecodedImage(image=img, raw=data, format=img.format)
