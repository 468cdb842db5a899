"""Pillow compositing primitives shared by the collage and sanitizer stages.

All functions are stateless: they take decoded images (or raw bytes) and
return new images or encoded JPEG bytes. Callers run them in worker threads.
"""
import io
import math
from collections.abc import Sequence
from dataclasses import dataclass

from PIL import Image, ImageDraw, ImageFilter, ImageFont, ImageOps

from models.references import FaceBox

ANNOTATION_COLOR = (239, 68, 68)  # #ef4444
LABEL_COLOR = (255, 255, 255)
CANVAS_BACKGROUND = (255, 255, 255)

_TILE_BORDER_WIDTH = 5
_TILE_BADGE_MAX_WIDTH = 180
_TILE_BADGE_HEIGHT = 36
_FACE_BORDER_WIDTH = 4
_FACE_BADGE_SIZE = (48, 30)
_LABEL_FONT_SIZE = 16

# (left, top, right, bottom) in pixels, right/bottom exclusive
PixelBox = tuple[int, int, int, int]


@dataclass(frozen=True)
class CollageLayout:
    columns: int
    rows: int
    width: int
    height: int
    positions: tuple[tuple[int, int], ...]
    tile_size: int


def collage_layout(count: int, tile_size: int, gap: int, outer: int) -> CollageLayout:
    """Grid geometry: one row for up to two tiles, two columns beyond that."""
    if count < 1:
        raise ValueError("collage needs at least one tile")
    columns = count if count <= 2 else 2
    rows = math.ceil(count / columns)
    width = outer * 2 + columns * tile_size + (columns - 1) * gap
    height = outer * 2 + rows * tile_size + (rows - 1) * gap
    positions = tuple(
        (outer + (i % columns) * (tile_size + gap), outer + (i // columns) * (tile_size + gap))
        for i in range(count)
    )
    return CollageLayout(columns, rows, width, height, positions, tile_size)


# ---------------------------------------------------------------------------
# Decoding / encoding
# ---------------------------------------------------------------------------

def load_image(data: bytes) -> Image.Image:
    """Decode bytes and apply EXIF orientation. Returns a fully loaded image."""
    with Image.open(io.BytesIO(data)) as img:
        corrected = ImageOps.exif_transpose(img)
        corrected.load()
    return corrected


def encode_jpeg(img: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    img.convert("RGB").save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def _label_font() -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    return ImageFont.load_default(size=_LABEL_FONT_SIZE)


# ---------------------------------------------------------------------------
# Collage
# ---------------------------------------------------------------------------

def resize_to_tile(img: Image.Image, size: int) -> Image.Image:
    """Auto-rotate, then cover-fit to an exact ``size`` x ``size`` square."""
    img = ImageOps.exif_transpose(img).convert("RGB")
    return ImageOps.fit(img, (size, size), method=Image.Resampling.LANCZOS)


def build_collage_canvas(
    tiles: Sequence[Image.Image],
    labels: Sequence[str],
    layout: CollageLayout,
) -> Image.Image:
    """Paste square tiles onto a white canvas and draw a labeled frame on each."""
    canvas = Image.new("RGB", (layout.width, layout.height), CANVAS_BACKGROUND)
    for tile, (left, top) in zip(tiles, layout.positions):
        canvas.paste(tile, (left, top))

    draw = ImageDraw.Draw(canvas)
    font = _label_font()
    size = layout.tile_size
    for label, (left, top) in zip(labels, layout.positions):
        draw.rectangle(
            (left, top, left + size - 1, top + size - 1),
            outline=ANNOTATION_COLOR,
            width=_TILE_BORDER_WIDTH,
        )
        badge_width = min(_TILE_BADGE_MAX_WIDTH, size)
        draw.rectangle(
            (left, top, left + badge_width - 1, top + _TILE_BADGE_HEIGHT - 1),
            fill=ANNOTATION_COLOR,
        )
        draw.text((left + 10, top + 24), label, fill=LABEL_COLOR, font=font, anchor="ls")
    return canvas


# ---------------------------------------------------------------------------
# Face blurring
# ---------------------------------------------------------------------------

def face_pixel_box(face: FaceBox, width: int, height: int, padding_ratio: float) -> PixelBox | None:
    """Scale a normalized face box to pixels, padded and clamped to the image.

    Returns None when the clamped region is one pixel wide/high or less.
    """
    pad_x = face.width * padding_ratio
    pad_y = face.height * padding_ratio
    left = _clamp(math.floor((face.x - pad_x) * width), 0, width - 1)
    top = _clamp(math.floor((face.y - pad_y) * height), 0, height - 1)
    right = _clamp(math.ceil((face.x + face.width + pad_x) * width), 1, width)
    bottom = _clamp(math.ceil((face.y + face.height + pad_y) * height), 1, height)
    if right - left <= 1 or bottom - top <= 1:
        return None
    return left, top, right, bottom


def blur_region(img: Image.Image, box: PixelBox, sigma: float) -> Image.Image:
    """Return a copy of ``img`` with ``box`` replaced by a Gaussian-blurred patch."""
    result = img.copy()
    patch = result.crop(box).filter(ImageFilter.GaussianBlur(radius=sigma))
    result.paste(patch, box[:2])
    return result


def annotate_faces(img: Image.Image, boxes: Sequence[PixelBox]) -> Image.Image:
    """Draw a numbered frame (``S1``, ``S2`` ...) around each blurred region."""
    result = img.copy()
    draw = ImageDraw.Draw(result)
    font = _label_font()
    badge_w, badge_h = _FACE_BADGE_SIZE
    for number, (left, top, right, bottom) in enumerate(boxes, start=1):
        draw.rectangle(
            (left, top, right - 1, bottom - 1),
            outline=ANNOTATION_COLOR,
            width=_FACE_BORDER_WIDTH,
        )
        badge_top = max(0, top - badge_h)
        draw.rectangle(
            (left, badge_top, left + badge_w - 1, badge_top + badge_h - 1),
            fill=ANNOTATION_COLOR,
        )
        draw.text(
            (left + badge_w // 2, max(18, top - 10)),
            f"S{number}",
            fill=LABEL_COLOR,
            font=font,
            anchor="ms",
        )
    return result


def blur_faces(
    img: Image.Image,
    faces: Sequence[FaceBox],
    *,
    sigma: float,
    padding_ratio: float,
) -> tuple[Image.Image, list[PixelBox]]:
    """Blur every face region and annotate it.

    Returns the new image and the pixel boxes that were blurred. When no box
    survives clamping the input image is returned unchanged with an empty list.
    """
    width, height = img.size
    boxes = [
        box for box in (face_pixel_box(f, width, height, padding_ratio) for f in faces)
        if box is not None
    ]
    if not boxes:
        return img, []

    result = img.convert("RGB")
    for box in boxes:
        result = blur_region(result, box, sigma)
    return annotate_faces(result, boxes), boxes


def _clamp(value: int, low: int, high: int) -> int:
    return min(high, max(low, value))
