"""
Unit tests for dev server QR code rendering.
"""

import base64

import pytest

from expo_supervisor.qr import QR_FORMATS, format_qr, render_png, render_svg, render_terminal

URL = "exp://192.168.1.2:8081"


class TestRenderers:
    def test_terminal_uses_block_characters(self):
        art = render_terminal(URL)
        assert any(block in art for block in "▀▄█")
        assert len(art.splitlines()) > 10

    def test_svg_document(self):
        svg = render_svg(URL)
        assert "<svg" in svg
        assert "</svg>" in svg

    def test_png_data_uri(self):
        uri = render_png(URL)
        prefix = "data:image/png;base64,"
        assert uri.startswith(prefix)
        assert base64.b64decode(uri[len(prefix):]).startswith(b"\x89PNG")


class TestFormatQr:
    def test_terminal_has_heading_and_url(self):
        output = format_qr(URL, "terminal")
        assert "=== Expo Dev Server QR Code ===" in output
        assert f"URL: {URL}" in output
        assert "Expo Go" in output

    def test_png_embeds_data_uri(self):
        output = format_qr(URL, "png")
        assert "![QR Code](data:image/png;base64," in output

    def test_url_format_is_plain(self):
        assert format_qr(URL, "url") == f"=== Expo Dev Server URL ===\n\n{URL}\n"

    def test_every_format_mentions_url(self):
        for qr_format in QR_FORMATS:
            assert URL in format_qr(URL, qr_format)

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            format_qr(URL, "jpeg")
