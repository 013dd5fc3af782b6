"""
Unit Tests for the Compositor

Network access is replaced with a fake ``requests.get`` response.
"""

import threading
import time

import pytest
import requests
from PIL import Image

from qrforall import compositor
from qrforall.compositor import (
    apply_logo,
    composite_logo,
    fetch_logo,
    fit_logo,
    load_logo,
    logo_placement,
)
from qrforall.errors import LogoFetchError

WHITE = (255, 255, 255)
BLACK = (0, 0, 0)
LOGO_COLOR = (220, 20, 60)


def _close(pixel, expected, tol=2):
    return all(abs(a - b) <= tol for a, b in zip(pixel, expected))


class FakeResponse:
    """Minimal streaming response."""

    def __init__(self, chunks=(), status_code=200, reason="OK"):
        self.chunks = list(chunks)
        self.status_code = status_code
        self.reason = reason
        self.closed = False

    @property
    def ok(self):
        return self.status_code < 400

    def iter_content(self, chunk_size=1):
        yield from self.chunks

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False


class TrickleResponse(FakeResponse):
    """Sends each chunk after a pause, keeping every single read under the socket timeout."""

    def __init__(self, chunks, pause):
        super().__init__(chunks)
        self.pause = pause

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            time.sleep(self.pause)
            yield chunk


@pytest.fixture
def fake_get(monkeypatch):
    """Install a fake requests.get; set ``fake_get.response`` or ``fake_get.error``."""

    class Stub:
        response = FakeResponse([b"logo-bytes"])
        error = None
        calls = []

        def __call__(self, url, **kwargs):
            self.calls.append((url, kwargs))
            if self.error is not None:
                raise self.error
            return self.response

    stub = Stub()
    stub.calls = []
    monkeypatch.setattr(compositor.requests, "get", stub)
    return stub


class TestFetchLogo:
    """Tests for fetch_logo()."""

    def test_fetch_when_ok_then_returns_body_with_timeout_and_streaming(self, fake_get):
        fake_get.response = FakeResponse([b"abc", b"def"])
        data = fetch_logo("https://cdn.test/logo.png", timeout=3.0)
        assert data == b"abcdef"
        url, kwargs = fake_get.calls[0]
        assert url == "https://cdn.test/logo.png"
        assert kwargs == {"timeout": 3.0, "stream": True}
        assert fake_get.response.closed

    def test_fetch_when_http_error_then_raises_logo_fetch_error(self, fake_get):
        fake_get.response = FakeResponse(status_code=404, reason="Not Found")
        with pytest.raises(LogoFetchError, match="HTTP 404 Not Found") as exc_info:
            fetch_logo("https://cdn.test/missing.png")
        assert exc_info.value.status == 502
        assert exc_info.value.url == "https://cdn.test/missing.png"

    def test_fetch_when_timeout_then_raises_logo_fetch_error(self, fake_get):
        fake_get.error = requests.Timeout("slow")
        with pytest.raises(LogoFetchError, match="Timeout"):
            fetch_logo("https://cdn.test/slow.png")

    def test_fetch_when_connection_error_then_raises_logo_fetch_error(self, fake_get):
        fake_get.error = requests.ConnectionError("refused")
        with pytest.raises(LogoFetchError, match="Failed to fetch logo"):
            fetch_logo("https://cdn.test/down.png")

    def test_fetch_when_trickled_past_timeout_then_raises_logo_fetch_error(self, fake_get):
        """The timeout bounds the whole download, not just each read."""
        fake_get.response = TrickleResponse([b"x"] * 8, pause=0.1)
        start = time.monotonic()
        with pytest.raises(LogoFetchError, match="timed out after 0.25s"):
            fetch_logo("https://cdn.test/slow.png", timeout=0.25)
        assert time.monotonic() - start < 0.6
        assert fake_get.response.closed

    def test_fetch_when_trickled_within_timeout_then_returns_body(self, fake_get):
        fake_get.response = TrickleResponse([b"ab", b"cd"], pause=0.01)
        assert fetch_logo("https://cdn.test/logo.png", timeout=5.0) == b"abcd"

    def test_fetch_when_body_exceeds_cap_then_raises_logo_fetch_error(self, fake_get):
        fake_get.response = FakeResponse([b"x" * 60, b"x" * 60])
        with pytest.raises(LogoFetchError, match="exceeds 100 bytes"):
            fetch_logo("https://cdn.test/huge.png", max_bytes=100)

    def test_fetch_when_cancelled_then_raises_logo_fetch_error(self, fake_get):
        cancel = threading.Event()
        cancel.set()
        fake_get.response = FakeResponse([b"abc"])
        with pytest.raises(LogoFetchError, match="cancelled"):
            fetch_logo("https://cdn.test/logo.png", cancel=cancel)


class TestLoadLogo:
    def test_load_when_png_then_rgba(self, logo_png):
        img = load_logo(logo_png)
        assert img.mode == "RGBA"
        assert img.size == (64, 64)

    def test_load_when_garbage_then_raises_logo_fetch_error(self):
        with pytest.raises(LogoFetchError, match="not a decodable image"):
            load_logo(b"definitely not an image", url="https://cdn.test/x")


class TestPlacement:
    """Tests for logo_placement()."""

    def test_placement_when_512_at_0_2_then_edge_102_offset_205(self):
        placement = logo_placement(512, 0.2)
        assert placement.edge == 102
        assert placement.offset == 205
        assert placement.box == (205, 205, 307, 307)

    def test_placement_when_margin_default_then_at_least_four(self):
        assert logo_placement(256, 0.1).bezel_margin == 4
        assert logo_placement(2048, 0.25).bezel_margin == round(512 * 0.08)

    def test_bezel_box_when_margin_given_then_surrounds_logo(self):
        placement = logo_placement(512, 0.2, bezel_margin=6)
        assert placement.bezel_box == (199, 199, 312, 312)


class TestFitLogo:
    def test_fit_when_wide_logo_then_aspect_kept_with_transparent_padding(self):
        wide = Image.new("RGBA", (200, 100), (*LOGO_COLOR, 255))
        fitted = fit_logo(wide, 102)
        assert fitted.size == (102, 102)
        assert fitted.getpixel((51, 0))[3] == 0
        assert fitted.getpixel((51, 51))[3] >= 250

    def test_fit_when_square_logo_then_fills_edge(self):
        fitted = fit_logo(Image.new("RGB", (30, 30), LOGO_COLOR), 102)
        assert _close(fitted.getpixel((0, 0)), (*LOGO_COLOR, 255))
        assert _close(fitted.getpixel((101, 101)), (*LOGO_COLOR, 255))


class TestComposite:
    """Tests for composite_logo() and apply_logo()."""

    @pytest.fixture
    def dark_qr(self):
        return Image.new("RGB", (512, 512), BLACK)

    def test_composite_when_applied_then_same_size_and_mode(self, dark_qr, logo_png):
        result = composite_logo(dark_qr, load_logo(logo_png), 0.2, WHITE)
        assert result.size == (512, 512)
        assert result.mode == "RGB"

    def test_composite_when_applied_then_logo_centered_on_bezel(self, dark_qr, logo_png):
        """Logo at the center, background-colored bezel around it, modules untouched elsewhere."""
        result = composite_logo(dark_qr, load_logo(logo_png), 0.2, WHITE)
        assert _close(result.getpixel((256, 256)), LOGO_COLOR)
        assert _close(result.getpixel((205, 205)), LOGO_COLOR)
        assert result.getpixel((200, 256)) == WHITE
        assert result.getpixel((256, 310)) == WHITE
        assert result.getpixel((10, 10)) == BLACK
        assert result.getpixel((180, 256)) == BLACK

    def test_composite_when_transparent_logo_then_bezel_shows_through(self, dark_qr):
        clear = Image.new("RGBA", (50, 50), (0, 0, 0, 0))
        result = composite_logo(dark_qr, clear, 0.2, WHITE)
        assert result.getpixel((256, 256)) == WHITE

    def test_composite_when_not_square_then_raises_error(self, logo_png):
        with pytest.raises(ValueError, match="square"):
            composite_logo(Image.new("RGB", (300, 200)), load_logo(logo_png), 0.2, WHITE)

    def test_apply_when_fetcher_given_then_used_with_limits(self, dark_qr, fetcher):
        result = apply_logo(dark_qr, "https://cdn.test/logo.png", 0.2, WHITE,
                            fetcher=fetcher, timeout=2.0, max_bytes=1000)
        assert _close(result.getpixel((256, 256)), LOGO_COLOR)
        assert fetcher.calls[0]["url"] == "https://cdn.test/logo.png"
        assert fetcher.calls[0]["timeout"] == 2.0
        assert fetcher.calls[0]["max_bytes"] == 1000

    def test_apply_when_fetch_fails_then_error_propagates(self, dark_qr):
        """No silent logo-less fallback."""
        def failing(url, **kwargs):
            raise LogoFetchError(url, "HTTP 500")

        with pytest.raises(LogoFetchError, match="HTTP 500"):
            apply_logo(dark_qr, "https://cdn.test/logo.png", 0.2, WHITE, fetcher=failing)

    def test_apply_when_cancelled_after_fetch_then_raises(self, dark_qr, fetcher):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(LogoFetchError, match="cancelled"):
            apply_logo(dark_qr, "https://cdn.test/logo.png", 0.2, WHITE, fetcher=fetcher, cancel=cancel)

