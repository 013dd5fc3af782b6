"""
Unit Tests for the export pipeline
"""

import io
from unittest.mock import Mock

import pytest
from PIL import Image

from qrforall import pipeline
from qrforall.errors import EncodingCapacityError, ValidationError
from qrforall.options import ErrorCorrection, QROptions
from qrforall.pipeline import generate


class TestGenerate:
    """Tests for generate()."""

    def test_generate_when_size_given_then_overrides_options(self, options):
        result = generate("hello", options, "png", size=300)
        assert result.size == 300
        assert Image.open(io.BytesIO(result.data)).size == (300, 300)

    def test_generate_when_size_omitted_then_options_size(self, options):
        result = generate("hello", options, "png")
        assert Image.open(io.BytesIO(result.data)).size == (options.size, options.size)

    def test_generate_when_size_over_cap_then_rejected_before_encoding(self, options, monkeypatch):
        """Oversize requests never reach the encoder."""
        spy = Mock(wraps=pipeline.encode)
        monkeypatch.setattr(pipeline, "encode", spy)
        with pytest.raises(ValidationError, match="size must be between"):
            generate("hello", options, "png", size=5000)
        spy.assert_not_called()

    def test_generate_when_format_unknown_then_rejected_before_encoding(self, options, monkeypatch):
        spy = Mock(wraps=pipeline.encode)
        monkeypatch.setattr(pipeline, "encode", spy)
        with pytest.raises(ValidationError, match="Invalid format"):
            generate("hello", options, "bmp")
        spy.assert_not_called()

    def test_generate_when_options_ecc_then_used_for_encoding(self, monkeypatch):
        spy = Mock(wraps=pipeline.encode)
        monkeypatch.setattr(pipeline, "encode", spy)
        generate("hello", QROptions(size=128, error_correction="L"), "svg")
        spy.assert_called_once_with("hello", ErrorCorrection.L)

    def test_generate_when_logo_url_then_fetched_and_applied(self, options, fetcher):
        result = generate("hello", options, "png", logo_url="https://cdn.test/logo.png", fetcher=fetcher,
                          timeout=4.0, max_bytes=2048)
        assert result.logo_applied is True
        assert fetcher.calls[0]["timeout"] == 4.0
        assert fetcher.calls[0]["max_bytes"] == 2048

    def test_generate_when_content_too_large_then_capacity_error(self, options):
        with pytest.raises(EncodingCapacityError):
            generate("z" * 2000, options, "svg")
