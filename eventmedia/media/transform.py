"""Image transform engine (Pillow)."""

from __future__ import annotations

import io
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from eventmedia.core.errors import ValidationError
from eventmedia.media.variants import VariantSpec


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: str


@dataclass(frozen=True)
class TransformedImage:
    data: bytes
    width: int
    height: int
    format: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def size_mb(self) -> float:
        return bytes_to_mb(len(self.data))


def bytes_to_mb(size: int) -> float:
    return round(size / (1024 * 1024), 2)


def _open(data: bytes) -> Image.Image:
    """Decode fully so truncated/corrupt files fail here rather than at save time."""
    if not data:
        raise ValidationError("Image file is empty.")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise ValidationError(f"Unsupported or unreadable image: {e}") from e
    except (OSError, SyntaxError, ValueError) as e:
        raise ValidationError(f"Corrupt image data: {e}") from e
    return img


def probe(data: bytes) -> ImageInfo:
    """Dimensions (after EXIF orientation) and container format of the source."""
    img = _open(data)
    fmt = (img.format or "jpeg").lower()
    oriented = ImageOps.exif_transpose(img)
    width, height = oriented.size
    if not width or not height:
        raise ValidationError("Could not read image dimensions.")
    return ImageInfo(width=width, height=height, format=fmt)


def _prepare_mode(img: Image.Image, fmt: str) -> Image.Image:
    has_alpha = img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info)

    if fmt == "jpeg":
        if has_alpha:
            rgba = img.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.getchannel("A"))
            return background
        if img.mode not in ("RGB", "L"):
            return img.convert("RGB")
        return img

    if img.mode not in ("RGB", "RGBA"):
        return img.convert("RGBA" if has_alpha else "RGB")
    return img


def transform(data: bytes, spec: VariantSpec) -> TransformedImage:
    """
    Resize and re-encode one variant.

    The longer edge ends up at most `spec.target_width`; smaller images are
    never upscaled and the aspect ratio is kept. JPEG output is progressive
    and optimized; WebP uses the slower, perceptually better encoder method.
    """
    img = _open(data)
    img = ImageOps.exif_transpose(img)
    img = _prepare_mode(img, spec.format)

    target = int(spec.target_width)
    img.thumbnail((target, target), Image.Resampling.LANCZOS)

    out = io.BytesIO()
    try:
        if spec.format == "webp":
            img.save(out, format="WEBP", quality=spec.quality, method=4)
        elif spec.format == "jpeg":
            img.save(out, format="JPEG", quality=spec.quality, progressive=True, optimize=True)
        else:
            raise ValidationError(f"Unsupported output format: {spec.format}")
    except OSError as e:
        raise ValidationError(f"Could not encode {spec.size_name}/{spec.format}: {e}") from e

    width, height = img.size
    return TransformedImage(data=out.getvalue(), width=width, height=height, format=spec.format)
