# tests/conftest.py

import io
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import numpy as np
import pytest
from PIL import Image

from fotosearch.components.image_service import ImageService
from fotosearch.components.similarity_search import SimilaritySearchEngine
from fotosearch.config import FetchConfig, FingerprintConfig, SearchConfig, StoreConfig
from fotosearch.core.codec import FingerprintCodec
from fotosearch.core.database import FingerprintStore
from fotosearch.core.fingerprint import Fingerprint
from fotosearch.core.records import ImageRecord, generate_image_id


def encode_image(img: Image.Image, fmt: str = "PNG", **params) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format=fmt, **params)
    return buffer.getvalue()


def solid_image(color=(120, 40, 200), size=(64, 48)) -> Image.Image:
    """Uniform image; its gradient hash is all zero bits"""
    return Image.new("RGB", size, color)


def block_image(seed: int = 0, block: int = 16) -> Image.Image:
    """9x8 grid of flat blocks whose horizontal neighbours always differ clearly"""
    rng = np.random.default_rng(seed)
    levels = np.arange(10, 250, 26)
    grid = np.array([rng.permutation(levels)[:9] for _ in range(8)], dtype=np.uint8)
    pixels = np.kron(grid, np.ones((block, block), dtype=np.uint8))
    return Image.fromarray(pixels).convert("RGB")


def noise_image(seed: int = 0, size=(96, 96)) -> Image.Image:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(size[1], size[0], 3), dtype=np.uint8)
    return Image.fromarray(pixels)


def make_record(fingerprint: Fingerprint, owner: str = "alice", image_id: str = None,
                **fields) -> ImageRecord:
    return ImageRecord(
        id=image_id or generate_image_id(),
        fingerprint=fingerprint,
        owner=owner,
        title=fields.pop("title", "holiday"),
        media_type=fields.pop("media_type", "image/png"),
        width=fields.pop("width", 64),
        height=fields.pop("height", 48),
        created_at=fields.pop("created_at", 1_700_000_000),
        **fields,
    )


@pytest.fixture
def store_config(tmp_path):
    return StoreConfig(database_path=str(tmp_path / "data" / "fotosearch.db"))


@pytest.fixture
def store(store_config):
    fingerprint_store = FingerprintStore(store_config, fingerprint_bits=64)
    yield fingerprint_store
    fingerprint_store.close()


@pytest.fixture
def codec():
    return FingerprintCodec(FingerprintConfig(), FetchConfig(timeout_seconds=2.0))


@pytest.fixture
def search_engine(store, codec):
    return SimilaritySearchEngine(store, SearchConfig(hamming_distance=20), codec=codec)


@pytest.fixture
def service(codec, store, search_engine):
    return ImageService(codec=codec, store=store, search_engine=search_engine)


class _RouteHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        status, body, content_type = self.server.routes.get(
            self.path, (404, b"not found", "text/plain")
        )
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


class ImageServer:
    def __init__(self):
        self.httpd = ThreadingHTTPServer(("127.0.0.1", 0), _RouteHandler)
        self.httpd.routes = {}
        self.thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)

    def add(self, path: str, body: bytes, status: int = 200, content_type: str = "image/png"):
        self.httpd.routes[path] = (status, body, content_type)
        return self.url(path)

    def url(self, path: str) -> str:
        host, port = self.httpd.server_address[:2]
        return f"http://{host}:{port}{path}"


@pytest.fixture
def no_proxy(monkeypatch):
    """Keep requests to the loopback servers off any configured proxy"""
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")


@pytest.fixture
def image_server(no_proxy):
    server = ImageServer()
    server.thread.start()
    yield server
    server.httpd.shutdown()
    server.httpd.server_close()


@pytest.fixture
def silent_server(no_proxy):
    """A listening socket that never answers"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(8)
    host, port = sock.getsockname()
    yield f"http://{host}:{port}/never.png"
    sock.close()


class _TrickleHandler(BaseHTTPRequestHandler):
    """Announces a small body, then sends it one byte at a time"""
    body = b"\x89PNG\r\n\x1a\n"
    interval = 0.8

    def do_GET(self):
        self.send_response(200)
        self.send_header("Content-Type", "image/png")
        self.send_header("Content-Length", str(len(self.body)))
        self.end_headers()
        try:
            for i in range(len(self.body)):
                time.sleep(self.interval)
                self.wfile.write(self.body[i:i + 1])
                self.wfile.flush()
        except OSError:
            return

    def log_message(self, format, *args):
        pass


@pytest.fixture
def trickle_server(no_proxy):
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _TrickleHandler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    host, port = httpd.server_address[:2]
    yield f"http://{host}:{port}/slow.png"
    httpd.shutdown()
    httpd.server_close()
