"""
Image transcoding with Pillow

The source format is probed from the bytes themselves, never from the entry
name, so a mislabelled page still converts as long as Pillow can read it.
"""

import io
import logging

from PIL import Image, UnidentifiedImageError

from .errors import DecodeError, EncodeError
from .formats import ImageFormat

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 95

# Modes each target can store without conversion
_NATIVE_MODES = {
    ImageFormat.JPEG: {'L', 'RGB', 'CMYK'},
    ImageFormat.PNG: {'1', 'L', 'LA', 'I', 'I;16', 'P', 'RGB', 'RGBA'},
    ImageFormat.WEBP: {'RGB', 'RGBA'},
}


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ('RGBA', 'LA', 'PA') or (img.mode == 'P' and 'transparency' in img.info)


def _prepare(img: Image.Image, target: ImageFormat) -> Image.Image:
    """Convert img to a mode the target encoder accepts"""
    if img.mode in _NATIVE_MODES[target]:
        return img

    if target == ImageFormat.JPEG:
        # JPEG has no transparency, flatten onto white
        if _has_alpha(img):
            rgba = img.convert('RGBA')
            background = Image.new('RGB', rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[-1])
            return background
        return img.convert('RGB')

    return img.convert('RGBA' if _has_alpha(img) else 'RGB')


def decode(data: bytes) -> Image.Image:
    """Decode an image of unknown format into memory"""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Not a recognised image: {e}") from e
    return img


def encode(img: Image.Image, target: ImageFormat, quality: int = DEFAULT_QUALITY) -> bytes:
    """Encode a decoded image to the target codec"""
    options = {}
    if target in (ImageFormat.JPEG, ImageFormat.WEBP):
        options['quality'] = quality
    if target == ImageFormat.JPEG:
        options['optimize'] = True

    out = io.BytesIO()
    try:
        _prepare(img, target).save(out, target.pil_format, **options)
    except (OSError, ValueError, KeyError) as e:
        raise EncodeError(f"Could not encode image as {target}: {e}") from e
    return out.getvalue()


def transcode(data: bytes, target: ImageFormat, quality: int = DEFAULT_QUALITY) -> bytes:
    """Re-encode image bytes of any readable format as target"""
    img = decode(data)
    try:
        logger.debug(f"Transcoding {img.format} {img.size[0]}x{img.size[1]} {img.mode} to {target}")
        return encode(img, target, quality)
    finally:
        img.close()
