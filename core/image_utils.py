from __future__ import annotations

import re
from io import BytesIO
from pathlib import PurePosixPath

from PIL import Image

REFERENCE_MAX_BYTES = 2 * 1024 * 1024
REFERENCE_MAX_SIDE = 2048
DEFAULT_IMAGE_EXTENSION = "png"
DEFAULT_MIME_TYPE = "image/png"

MIME_BY_EXTENSION = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
}

_URL_EXTENSION_RE = re.compile(r"\.(jpe?g|png|webp|gif)(\?|$)", re.IGNORECASE)

_resampling = getattr(Image, "Resampling", None)
LANCZOS_RESAMPLE = getattr(_resampling, "LANCZOS", 1)


def extension_from_url(url: str) -> str:
    match = _URL_EXTENSION_RE.search(url)
    return match.group(1).lower() if match else DEFAULT_IMAGE_EXTENSION


def mime_type_for_name(name: str) -> str | None:
    return MIME_BY_EXTENSION.get(PurePosixPath(name).suffix.lower())


def _fit_dimensions(width: int, height: int) -> tuple[int, int]:
    ratio = min(REFERENCE_MAX_SIDE / width, REFERENCE_MAX_SIDE / height, 1.0)
    if ratio >= 1.0:
        return width, height
    return max(1, int(width * ratio)), max(1, int(height * ratio))


def compress_reference_image(
    image_bytes: bytes,
    mime_type: str,
    max_size: int = REFERENCE_MAX_BYTES,
) -> tuple[bytes, str]:
    """
    Shrink a reference image to at most ``REFERENCE_MAX_SIDE`` pixels per side
    and ``max_size`` bytes. WebP input stays WebP, everything else becomes JPEG.
    Returns the (possibly unchanged) bytes and their MIME type.
    """
    with Image.open(BytesIO(image_bytes)) as opened:
        image = opened.copy()

    target_w, target_h = _fit_dimensions(image.width, image.height)
    needs_resize = (target_w, target_h) != (image.width, image.height)
    if not needs_resize and len(image_bytes) <= max_size:
        return image_bytes, mime_type

    if needs_resize:
        image = image.resize((target_w, target_h), LANCZOS_RESAMPLE)

    if mime_type == "image/webp":
        out_format, out_mime = "WEBP", "image/webp"
    else:
        out_format, out_mime = "JPEG", "image/jpeg"
        if image.mode == "RGBA":
            background = Image.new("RGB", image.size, (255, 255, 255))
            background.paste(image, mask=image.split()[3])
            image = background
        elif image.mode != "RGB":
            image = image.convert("RGB")

    data = b""
    for quality in (85, 80, 70, 60):
        buffer = BytesIO()
        image.save(buffer, format=out_format, quality=quality)
        data = buffer.getvalue()
        if len(data) <= max_size:
            break
    return data, out_mime
