"""Pillow image steps around the generation call.

- :func:`normalize_image` prepares the upload for the model: EXIF
  orientation applied, cover-fit to a fixed square, PNG encoded.
- :func:`watermark_preview` turns the model output into the preview the
  caller sees: width capped, "PREVIEW" label composited, JPEG encoded.

Both functions are pure (bytes in, bytes out) and deterministic for the same
input and settings.
"""

from __future__ import annotations

import logging
import warnings
from io import BytesIO

from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

from caricature.core.errors import DecodeError

logger = logging.getLogger(__name__)

# Font candidates tried in order; Pillow's bundled font is the last resort.
_FONT_CANDIDATES = (
    "DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "Arial Bold.ttf",
    "arialbd.ttf",
)
_WATERMARK_FONT_SIZE = 48
# rgba(255, 255, 255, 0.55)
_WATERMARK_FILL = (255, 255, 255, 140)
# Baseline of the label, as a fraction of the image height.
_WATERMARK_BASELINE = 0.92


def _open(data: bytes) -> Image.Image:
    """Decode *data* fully, mapping Pillow failures to :class:`DecodeError`.

    Images above Pillow's pixel limit are refused, including the band where
    Pillow would only warn, so a small upload cannot claim a huge canvas.
    """
    if not data:
        raise DecodeError("Image data is empty")
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            image = Image.open(BytesIO(data))
            image.load()
    except (Image.DecompressionBombError, Image.DecompressionBombWarning) as exc:
        raise DecodeError(f"Image dimensions too large: {exc}") from exc
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise DecodeError(f"Could not decode image: {exc}") from exc
    return image


def normalize_image(data: bytes, edge: int = 1024) -> bytes:
    """Orient, cover-fit and PNG-encode an uploaded photo.

    Args:
        data: Encoded image bytes in any format Pillow can read.
        edge: Edge length of the square output in pixels.

    Returns:
        PNG bytes of an ``edge`` x ``edge`` RGB image.

    Raises:
        DecodeError: If *data* is not a decodable image.
    """
    image = _open(data)
    image = ImageOps.exif_transpose(image)
    if image.mode != "RGB":
        image = image.convert("RGB")

    # Cover fit: scale to fill the square, crop the overflow around the centre.
    fitted = ImageOps.fit(image, (edge, edge), method=Image.Resampling.LANCZOS)

    out = BytesIO()
    fitted.save(out, format="PNG")
    return out.getvalue()


def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    for candidate in _FONT_CANDIDATES:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def watermark_preview(
    data: bytes,
    *,
    max_width: int = 1200,
    text: str = "PREVIEW",
    quality: int = 85,
) -> bytes:
    """Downscale, label and JPEG-encode a generated image.

    The image is shrunk to at most *max_width* pixels wide (aspect ratio
    kept, never enlarged).  *text* is drawn in semi-transparent white,
    horizontally centred, with its baseline at 92% of the height.

    Args:
        data: Encoded bytes of the generated (possibly upscaled) image.
        max_width: Width cap in pixels.
        text: Label to composite.
        quality: JPEG quality of the result.

    Returns:
        JPEG bytes of the watermarked preview.

    Raises:
        DecodeError: If *data* is not a decodable image.
    """
    image = _open(data).convert("RGBA")

    if image.width > max_width:
        height = max(1, round(image.height * max_width / image.width))
        image = image.resize((max_width, height), Image.Resampling.LANCZOS)

    width, height = image.size
    overlay = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    font = _load_font(_WATERMARK_FONT_SIZE)

    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (width - (right - left)) / 2 - left
    y = height * _WATERMARK_BASELINE - bottom
    draw.text((x, y), text, font=font, fill=_WATERMARK_FILL)

    composed = Image.alpha_composite(image, overlay).convert("RGB")

    out = BytesIO()
    composed.save(out, format="JPEG", quality=quality)
    logger.debug("Watermarked preview %dx%d (%d bytes).", width, height, out.tell())
    return out.getvalue()
