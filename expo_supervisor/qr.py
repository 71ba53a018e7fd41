"""
QR codes for dev server URLs, for scanning with Expo Go on a device.
"""

import base64
import io
import logging

import qrcode
import qrcode.image.svg
from qrcode.constants import ERROR_CORRECT_M
from qrcode.image.pil import PilImage

logger = logging.getLogger(__name__)

QR_FORMATS = ("terminal", "svg", "png", "url")
DEFAULT_QR_FORMAT = "terminal"
QR_BORDER = 1
PNG_BOX_SIZE = 8


def _build(url: str, box_size: int = 10) -> qrcode.QRCode:
    code = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=box_size, border=QR_BORDER)
    code.add_data(url)
    code.make(fit=True)
    return code


def render_terminal(url: str) -> str:
    """Block-character rendering for a terminal."""
    out = io.StringIO()
    _build(url).print_ascii(out=out)
    return out.getvalue()


def render_svg(url: str) -> str:
    buffer = io.BytesIO()
    _build(url).make_image(image_factory=qrcode.image.svg.SvgPathImage).save(buffer)
    return buffer.getvalue().decode("utf-8")


def render_png(url: str) -> str:
    """PNG as a base64 data URI."""
    buffer = io.BytesIO()
    _build(url, PNG_BOX_SIZE).make_image(image_factory=PilImage).save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def format_qr(url: str, qr_format: str = DEFAULT_QR_FORMAT) -> str:
    """
    Render a QR code for url with a short heading and the URL itself.

    Raises ValueError for an unknown format. Errors from the renderers
    propagate; callers fall back to the bare URL.
    """
    logger.debug(f"Generating {qr_format} QR code for {url}")

    if qr_format == "terminal":
        return (
            "\n=== Expo Dev Server QR Code ===\n\n"
            f"{render_terminal(url)}\n"
            f"URL: {url}\n"
            "Scan with Expo Go app to open on your device\n"
        )
    if qr_format == "svg":
        return f"=== SVG QR Code ===\n\n{render_svg(url)}\n\nURL: {url}\n"
    if qr_format == "png":
        return (
            "=== PNG QR Code (Base64 Data URI) ===\n\n"
            f"![QR Code]({render_png(url)})\n\n"
            f"URL: {url}\n"
        )
    if qr_format == "url":
        return f"=== Expo Dev Server URL ===\n\n{url}\n"
    raise ValueError(f"Unknown QR format: {qr_format}")
