import io
import logging

import pytest
from PIL import Image

from qrforall.config import Settings
from qrforall.options import QROptions
from qrforall.server import create_app
from qrforall.service import QRCodeService
from qrforall.store import QRCodeStore
from qrforall.tokens import TokenManager

BASE_URL = "https://qr.test"
LOGO_COLOR = (220, 20, 60)


@pytest.fixture(autouse=True)
def reset_qrforall_logger():
    """Drop handlers installed by setup_logging so they never outlive a test's captured streams."""
    yield
    root = logging.getLogger("qrforall")
    root.handlers.clear()
    root.setLevel(logging.NOTSET)


@pytest.fixture
def options():
    """Default style options at a small size."""
    return QROptions(size=256)


@pytest.fixture
def logo_png():
    """A solid, fully opaque 64x64 PNG logo."""
    buf = io.BytesIO()
    Image.new("RGBA", (64, 64), (*LOGO_COLOR, 255)).save(buf, format="PNG")
    return buf.getvalue()


class FakeFetcher:
    """Stands in for the network: returns fixed bytes and records every call."""

    def __init__(self, data: bytes):
        self.data = data
        self.calls = []

    def __call__(self, url, timeout=None, max_bytes=None, cancel=None):
        self.calls.append({"url": url, "timeout": timeout, "max_bytes": max_bytes, "cancel": cancel})
        return self.data


@pytest.fixture
def fetcher(logo_png):
    return FakeFetcher(logo_png)


@pytest.fixture
def settings():
    return Settings(app_env="test", base_url=BASE_URL, db_path=None, default_export_size=256)


@pytest.fixture
def store():
    """In-memory record store."""
    return QRCodeStore(None)


@pytest.fixture
def service(store, settings, fetcher):
    return QRCodeService(store, TokenManager(), settings, fetcher=fetcher)


@pytest.fixture
def client(service, settings):
    return create_app(service, settings).test_client()
