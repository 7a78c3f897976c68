"""QR code PNG pointing customers at a restaurant's public menu."""

from __future__ import annotations

import logging
from io import BytesIO

import qrcode
from PIL import Image, ImageDraw, ImageFont


logger = logging.getLogger(__name__)

FONT_PATHS = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "DejaVuSans.ttf",
)
CAPTION_HEIGHT = 56


def _load_font(size: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    for font_path in FONT_PATHS:
        try:
            return ImageFont.truetype(font_path, size)
        except OSError:
            continue
    logger.debug("No TrueType font found; using Pillow default font")
    return ImageFont.load_default()


def _fit_caption(draw: ImageDraw.ImageDraw, text: str, font, max_width: int) -> str:
    if draw.textlength(text, font=font) <= max_width:
        return text
    while text and draw.textlength(text + "...", font=font) > max_width:
        text = text[:-1]
    return text + "..."


def render_menu_qr(url: str, caption: str | None = None, *, box_size: int = 10, border: int = 4) -> Image.Image:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(url)
    qr.make(fit=True)
    code = qr.make_image(fill_color="black", back_color="white").get_image().convert("RGB")
    if not caption:
        return code

    width, height = code.size
    img = Image.new("RGB", (width, height + CAPTION_HEIGHT), "#ffffff")
    img.paste(code, (0, 0))
    draw = ImageDraw.Draw(img)
    title_font = _load_font(18)
    small_font = _load_font(12)

    title = _fit_caption(draw, caption, title_font, width - 16)
    draw.text(((width - draw.textlength(title, font=title_font)) / 2, height + 6), title, fill="#2b2f3a", font=title_font)
    hint = _fit_caption(draw, url, small_font, width - 16)
    draw.text(((width - draw.textlength(hint, font=small_font)) / 2, height + 32), hint, fill="#5d7aa5", font=small_font)
    return img


def png_bytes(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def menu_qr_png(url: str, caption: str | None = None) -> bytes:
    return png_bytes(render_menu_qr(url, caption))
