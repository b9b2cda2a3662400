import math
from typing import Tuple

from PIL import Image

from .errors import InvalidImageError
from .templates import FitPolicy


Size = Tuple[int, int]

RESAMPLE = Image.LANCZOS


def fit_to_region(
    img: Image.Image,
    size: Size,
    policy: FitPolicy = "cover",
    centering: Tuple[float, float] = (0.5, 0.5),
) -> Image.Image:
    """
    Resize `img` to exactly `size` while keeping its aspect ratio.

    - "cover" scales until the region is filled and center-crops the overflow,
      so nothing behind the region shows through.
    - "contain" scales until the whole image fits and places it on a
      transparent canvas, aligned by `centering` (0.0 = left/top,
      1.0 = right/bottom).

    The result is always RGBA.
    """
    target_w, target_h = size
    if target_w <= 0 or target_h <= 0:
        raise InvalidImageError(f"Target size must be positive, got {target_w}x{target_h}")
    if img.width <= 0 or img.height <= 0:
        raise InvalidImageError(f"Cannot fit an image of size {img.width}x{img.height}")

    if img.mode != "RGBA":
        img = img.convert("RGBA")

    if policy == "cover":
        return _cover(img, target_w, target_h)
    if policy == "contain":
        return _contain(img, target_w, target_h, centering)
    raise ValueError(f"Unknown fit policy: {policy!r}")


def cover_scale(src: Size, target: Size) -> float:
    return max(target[0] / src[0], target[1] / src[1])


def contain_scale(src: Size, target: Size) -> float:
    return min(target[0] / src[0], target[1] / src[1])


def crop_offset(excess: int) -> int:
    """
    Leading-edge offset when trimming `excess` pixels evenly from both sides.

    Odd excess leaves the extra pixel on the trailing (right/bottom) side:
    an excess of 5 trims 2 from the left and 3 from the right.
    """
    return excess // 2


def round_half_up(value: float) -> int:
    # round() rounds halves to even, which shifts seams between neighbours.
    return int(math.floor(value + 0.5))


def _resize(img: Image.Image, size: Size) -> Image.Image:
    if img.size == size:
        return img.copy()
    return img.resize(size, RESAMPLE)


def _cover(img: Image.Image, target_w: int, target_h: int) -> Image.Image:
    scale = cover_scale(img.size, (target_w, target_h))
    # Clamp so float error can never leave the scaled image a pixel short.
    scaled_w = max(target_w, round_half_up(img.width * scale))
    scaled_h = max(target_h, round_half_up(img.height * scale))
    left = crop_offset(scaled_w - target_w)
    top = crop_offset(scaled_h - target_h)

    if (scaled_w, scaled_h) == img.size:
        return img.crop((left, top, left + target_w, top + target_h))

    # Resample only the window that survives the crop, never the full scaled
    # image: a 1x3000 source covering 341x559 would scale to 341x1023000.
    sx = scaled_w / img.width
    sy = scaled_h / img.height
    box = (
        max(0.0, left / sx),
        max(0.0, top / sy),
        min(float(img.width), (left + target_w) / sx),
        min(float(img.height), (top + target_h) / sy),
    )
    return img.resize((target_w, target_h), RESAMPLE, box=box)


def _contain(
    img: Image.Image,
    target_w: int,
    target_h: int,
    centering: Tuple[float, float],
) -> Image.Image:
    scale = contain_scale(img.size, (target_w, target_h))
    scaled_w = min(target_w, max(1, round_half_up(img.width * scale)))
    scaled_h = min(target_h, max(1, round_half_up(img.height * scale)))

    resized = _resize(img, (scaled_w, scaled_h))

    cx = min(max(centering[0], 0.0), 1.0)
    cy = min(max(centering[1], 0.0), 1.0)
    x = round_half_up((target_w - scaled_w) * cx)
    y = round_half_up((target_h - scaled_h) * cy)

    canvas = Image.new("RGBA", (target_w, target_h), (0, 0, 0, 0))
    canvas.paste(resized, (x, y))
    return canvas
