"""
Document preparation before submission.

- Rejects empty, unsupported or corrupt uploads (InputError) before any remote call
- Applies EXIF orientation and downscales oversized photos
- Builds the small preview stored alongside each history entry

PDFs are passed through untouched.
"""

import base64
import io
import logging
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from pipeline.analysis.errors import InputError
from pipeline.analysis.schema import Document

logger = logging.getLogger(__name__)


PDF_MIME_TYPE = "application/pdf"
SUPPORTED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})
SUPPORTED_MIME_TYPES = SUPPORTED_IMAGE_TYPES | {PDF_MIME_TYPE}

PDF_PREVIEW_PLACEHOLDER = "placeholder:application/pdf"

_EXIF_ORIENTATION = 0x0112

_MIME_ALIASES = {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg"}


def normalize_mime_type(mime_type: Optional[str]) -> str:
    mime = (mime_type or "").split(";")[0].strip().lower()
    return _MIME_ALIASES.get(mime, mime)


def _open_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise InputError("The uploaded image could not be read. Please upload a clear photo or scan.") from e
    return img


def _to_rgb(img: Image.Image) -> Image.Image:
    """Flatten transparency onto white for JPEG compatibility."""
    if img.mode in ('RGBA', 'LA') or (img.mode == 'P' and 'transparency' in img.info):
        img = img.convert('RGBA')
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[3])
        return background
    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


def _resize_if_needed(img: Image.Image, max_dimension: int) -> Image.Image:
    """Resize image if larger than max dimension."""
    max_dim = max(img.size)

    if max_dim > max_dimension:
        ratio = max_dimension / max_dim
        new_size = (max(1, int(img.width * ratio)), max(1, int(img.height * ratio)))

        logger.debug(f"Resizing from {img.size} to {new_size}")
        return img.resize(new_size, Image.Resampling.LANCZOS)

    return img


def prepare_document(
    data: bytes,
    mime_type: Optional[str],
    filename: Optional[str] = None,
    max_dimension: int = 2048,
    jpeg_quality: int = 85,
) -> Document:
    """
    Validate and normalise uploaded bytes.

    Images within ``max_dimension`` and already upright are returned
    byte-for-byte; others are transposed/resized and re-encoded (PNG stays
    PNG, everything else becomes JPEG).

    Raises:
        InputError: empty bytes, unsupported type, or undecodable image.
    """
    if not data:
        raise InputError("The uploaded file is empty.")

    mime = normalize_mime_type(mime_type)
    if mime not in SUPPORTED_MIME_TYPES:
        raise InputError(
            f"Unsupported file type '{mime or 'unknown'}'. Please upload a JPEG, PNG, WebP image or a PDF."
        )

    if mime == PDF_MIME_TYPE:
        if not data.startswith(b"%PDF"):
            raise InputError("The uploaded PDF could not be read.")
        return Document(data=data, mime_type=mime, filename=filename)

    img = _open_image(data)
    original_size = img.size

    orientation = img.getexif().get(_EXIF_ORIENTATION, 1)
    if orientation == 1 and max(original_size) <= max_dimension:
        return Document(data=data, mime_type=mime, filename=filename)

    resized = _resize_if_needed(ImageOps.exif_transpose(img), max_dimension)

    buffer = io.BytesIO()
    if mime == "image/png":
        resized.save(buffer, 'PNG', optimize=True)
        out_mime = "image/png"
    else:
        _to_rgb(resized).save(buffer, 'JPEG', quality=jpeg_quality, optimize=True)
        out_mime = "image/jpeg"

    logger.info(
        f"Prepared image {filename or ''}: {original_size} -> {resized.size}, "
        f"{len(data):,} -> {buffer.tell():,} bytes"
    )
    return Document(data=buffer.getvalue(), mime_type=out_mime, filename=filename)


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def build_preview_url(document: Document, max_dimension: int = 512) -> str:
    """Small JPEG data URL for images, a fixed placeholder for PDFs."""
    if document.mime_type == PDF_MIME_TYPE:
        return PDF_PREVIEW_PLACEHOLDER

    img = _to_rgb(_open_image(document.data))
    img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
    buffer = io.BytesIO()
    img.save(buffer, 'JPEG', quality=80)
    return to_data_url(buffer.getvalue(), "image/jpeg")
