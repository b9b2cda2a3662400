import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

from PIL import Image

from .errors import DecodeError, InputDirectoryError, InvalidImageError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceImage:
    name: str
    path: Path
    image: Image.Image

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height


def supported_extensions() -> frozenset:
    """File suffixes Pillow knows how to open, lower-cased with the dot."""
    return frozenset(
        ext.lower()
        for ext, fmt in Image.registered_extensions().items()
        if fmt in Image.OPEN
    )


def discover_source_images(input_dir: Path) -> List[Path]:
    """
    List candidate source images in `input_dir`, sorted by file name.

    Hidden files and files whose suffix Pillow cannot open are skipped. A file
    with a supported suffix but broken content is still returned so the
    failure is reported per image instead of vanishing.
    """
    input_dir = Path(input_dir)
    if not input_dir.is_dir():
        raise InputDirectoryError(f"Input directory not found: {input_dir}")

    extensions = supported_extensions()
    try:
        entries = sorted(input_dir.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise InputDirectoryError(f"Cannot list input directory {input_dir}: {e}") from e

    paths: List[Path] = []
    for path in entries:
        if path.name.startswith(".") or not path.is_file():
            continue
        if path.suffix.lower() not in extensions:
            logger.warning("Skipping %s: not a supported image type", path.name)
            continue
        paths.append(path)
    return paths


def load_source_image(path: Path) -> SourceImage:
    """
    Fully decode `path` into an RGBA SourceImage.

    Decoding is forced here so truncated files fail now, not halfway through
    a resize. Failures are deterministic and never retried.
    """
    path = Path(path)
    try:
        with Image.open(path) as img:
            if getattr(img, "is_animated", False):
                raise DecodeError(f"Multi-frame images are not supported: {path}", path=path)
            img.load()
            rgba = img.convert("RGBA")
    except (OSError, EOFError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Cannot decode {path.name}: {e}", path=path) from e

    if rgba.width <= 0 or rgba.height <= 0:
        raise InvalidImageError(f"{path.name} has degenerate size {rgba.width}x{rgba.height}")

    logger.debug("Decoded %s (%dx%d)", path.name, rgba.width, rgba.height)
    return SourceImage(name=path.stem, path=path, image=rgba)
