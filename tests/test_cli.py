# tests/test_cli.py

import base64
import json
import logging

import pytest

from conftest import block_image, encode_image, solid_image
from fotosearch.cli import main_cli
from fotosearch.config import SystemConfig


@pytest.fixture
def config_path(tmp_path):
    config = SystemConfig()
    config.log_dir = str(tmp_path / "logs")
    config.store.database_path = str(tmp_path / "data" / "foto.db")
    path = tmp_path / "config.yaml"
    config.save(str(path))
    yield str(path)
    # Release handlers that point into tmp_path
    logger = logging.getLogger("fotosearch")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def run(config_path, *args) -> int:
    return main_cli(["--config", config_path, *args])


def test_upload_show_search_stats(config_path, tmp_path, capsys):
    image_path = tmp_path / "flat.png"
    image_path.write_bytes(encode_image(solid_image()))

    assert run(config_path, "upload", str(image_path), "--owner", "alice",
               "--title", "flat") == 0
    uploaded = json.loads(capsys.readouterr().out)
    assert uploaded["owner"] == "alice"
    assert uploaded["mediaType"] == "image/png"
    assert "fingerprint" not in uploaded

    assert run(config_path, "show", uploaded["id"]) == 0
    assert json.loads(capsys.readouterr().out) == uploaded

    output = tmp_path / "results.json"
    assert run(config_path, "search", str(image_path), "--threshold", "0",
               "--output", str(output)) == 0
    assert "Found 1 similar images" in capsys.readouterr().out
    assert json.loads(output.read_text()) == {"results": [uploaded]}

    assert run(config_path, "stats") == 0
    stats_out = capsys.readouterr().out
    assert "Images: 1" in stats_out
    assert "Fingerprint length: 64 bits" in stats_out


def test_upload_base64_file(config_path, tmp_path, capsys):
    encoded = tmp_path / "image.b64"
    encoded.write_bytes(base64.b64encode(encode_image(block_image(1))))

    assert run(config_path, "upload", str(encoded), "--type", "base64", "--owner", "bob") == 0
    assert json.loads(capsys.readouterr().out)["width"] == 144


def test_upload_garbage_fails(config_path, tmp_path, capsys):
    garbage = tmp_path / "garbage.png"
    garbage.write_bytes(b"garbage")

    assert run(config_path, "upload", str(garbage), "--owner", "alice") == 1
    assert "could not process image (UnsupportedFormat)" in capsys.readouterr().err


def test_show_unknown_id(config_path, capsys):
    assert run(config_path, "show", "missing") == 1
    assert "missing" in capsys.readouterr().err


def test_import_directory(config_path, tmp_path, capsys):
    photos = tmp_path / "photos"
    photos.mkdir()
    (photos / "one.png").write_bytes(encode_image(block_image(2)))
    (photos / "two.png").write_bytes(encode_image(block_image(3)))

    assert run(config_path, "import", str(photos), "--owner", "carol") == 0
    assert "Stored 2 images, 0 failed" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    assert main_cli([]) == 0
    assert "usage" in capsys.readouterr().out.lower()


def test_store_open_failure_is_reported(config_path, capsys):
    assert run(config_path, "stats") == 0
    capsys.readouterr()

    config = SystemConfig.load(config_path)
    config.fingerprint.hash_size = 16
    config.save(config_path)

    assert run(config_path, "stats") == 1
    assert "could not process image (StoreError)" in capsys.readouterr().err
