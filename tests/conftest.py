"""
Shared test configuration and fixtures for the conversion gateway tests.

Sample inputs are generated at runtime so the suite needs no binary fixtures.
"""

import io
import shutil
import tarfile
import wave
import zipfile
from pathlib import Path
from typing import Callable, Dict

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from app import create_app
from converter.config import GatewaySettings
from converter.utils.mime_detector import MAGIC_AVAILABLE, identify
from converter.utils.storage import StorageLayout


# ===== ENVIRONMENT CHECKS =====

def magic_works() -> bool:
    """python-magic imports and libmagic identifies a PNG header."""
    if not MAGIC_AVAILABLE:
        return False
    return identify(b"\x89PNG\r\n\x1a\n" + b"\x00" * 32) == "image/png"


requires_magic = pytest.mark.skipif(not magic_works(), reason="libmagic is not available")
requires_ffmpeg = pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg is not installed")
requires_soffice = pytest.mark.skipif(shutil.which("soffice") is None, reason="LibreOffice is not installed")


# ===== APP FIXTURES =====

@pytest.fixture
def settings(tmp_path) -> GatewaySettings:
    """Settings with an isolated storage root."""
    return GatewaySettings(
        storage_root=tmp_path / "storage",
        max_upload_bytes=5 * 1024 * 1024,
        tool_timeout_seconds=60,
        sweep_interval_seconds=3600,
    )


@pytest.fixture
def storage(settings) -> StorageLayout:
    layout = StorageLayout(settings.storage_root)
    layout.bootstrap()
    return layout


@pytest.fixture
def app_instance(settings):
    return create_app(settings)


@pytest.fixture
def client(app_instance):
    """FastAPI test client; entering it runs the app lifespan."""
    with TestClient(app_instance) as test_client:
        yield test_client


@pytest.fixture
def convert(client) -> Callable:
    """Post a file to /convert."""
    def _convert(filename: str, content: bytes, mime: str, target: str, category: str):
        return client.post(
            "/convert",
            files={"file": (filename, content, mime)},
            data={"targetFormat": target, "conversionType": category},
        )
    return _convert


# ===== SAMPLE GENERATORS =====

def make_image(fmt: str, mode: str = "RGB", size=(32, 24), **save_options) -> bytes:
    color = (200, 30, 30, 128) if mode == "RGBA" else (200, 30, 30)
    if mode == "P":
        img = Image.new("RGB", size, (200, 30, 30)).convert("P")
    else:
        img = Image.new(mode, size, color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt, **save_options)
    return buffer.getvalue()


def make_zip(members: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def make_tar(members: Dict[str, bytes], mode: str = "w") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode=mode) as tf:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def make_wav(seconds: float = 0.5, rate: int = 8000) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(rate)
        frames = int(seconds * rate)
        wav.writeframes(b"".join(
            (int(8000 * ((i // 20) % 2 * 2 - 1)) & 0xFFFF).to_bytes(2, "little") for i in range(frames)
        ))
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image("PNG", mode="RGBA")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image("JPEG")


@pytest.fixture
def zip_bytes() -> bytes:
    return make_zip({"docs/readme.txt": b"hello", "data/values.csv": b"a,b\n1,2\n"})


@pytest.fixture
def tar_bytes() -> bytes:
    return make_tar({"docs/readme.txt": b"hello", "data/values.csv": b"a,b\n1,2\n"})


@pytest.fixture
def wav_bytes() -> bytes:
    return make_wav()


def storage_entries(path: Path):
    """Names in a storage area, ignoring subdirectories of the converted area."""
    return sorted(p.name for p in path.iterdir() if p.is_file())
