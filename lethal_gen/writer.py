import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Mapping, Optional

from PIL import Image

from .compose import CompositeResult
from .errors import WriteError


logger = logging.getLogger(__name__)

CATEGORY_DIRS: Dict[str, str] = {
    "posters": "posters",
    "paintings": "paintings",
    "tips": "tips",
}

# Directory layout the Lethal Posters / Lethal Paintings plugins read from.
MOD_CATEGORY_DIRS: Dict[str, str] = {
    "posters": "BepInEx/plugins/LethalPosters/posters",
    "tips": "BepInEx/plugins/LethalPosters/tips",
    "paintings": "BepInEx/plugins/LethalPaintings/paintings",
}

# Formats that cannot store an alpha channel get flattened to RGB.
_NO_ALPHA_FORMATS = {"JPEG", "BMP"}


def output_filename(template_name: str, source_name: str, extension: str) -> str:
    return f"{template_name}_{source_name}.{extension}"


class OutputWriter:
    """
    Encodes composites and publishes them under
    `<output_root>/<category dir>/<template>_<source>.<ext>`.

    Files are written to a temporary sibling and renamed into place, so an
    interrupted run never leaves a truncated image at the final path.
    """

    def __init__(
        self,
        output_root: Path,
        image_format: str = "PNG",
        layout: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.output_root = Path(output_root)
        self.image_format = image_format.upper()
        self.layout: Mapping[str, str] = dict(layout or CATEGORY_DIRS)

        extension = _extension_for(self.image_format)
        if extension is None:
            raise ValueError(f"Unsupported output format: {image_format}")
        self.extension = extension

    def category_dir(self, category: str) -> Path:
        try:
            return self.output_root / self.layout[category]
        except KeyError:
            raise WriteError(f"No output directory configured for category '{category}'")

    def path_for(self, result: CompositeResult) -> Path:
        return self.category_dir(result.category) / output_filename(
            result.template_name, result.source_name, self.extension
        )

    def write(self, result: CompositeResult) -> Path:
        target = self.path_for(result)
        image = result.image
        if self.image_format in _NO_ALPHA_FORMATS and image.mode != "RGB":
            image = image.convert("RGB")

        tmp_name: Optional[str] = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=target.parent, prefix=f".{target.stem}.", suffix=".tmp"
            )
            with os.fdopen(fd, "wb") as f:
                image.save(f, format=self.image_format)
            # mkstemp creates 0600 files; published images should be world-readable.
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, target)
            tmp_name = None
        except (OSError, ValueError, KeyError) as e:
            raise WriteError(f"Cannot write {target}: {e}", path=target) from e
        finally:
            if tmp_name is not None:
                _discard(tmp_name)

        logger.debug("Wrote %s", target)
        return target


def _extension_for(image_format: str) -> Optional[str]:
    registered = Image.registered_extensions()
    if image_format not in Image.SAVE:
        return None
    extensions = sorted(ext for ext, fmt in registered.items() if fmt == image_format)
    if not extensions:
        return None
    preferred = "." + image_format.lower()
    chosen = preferred if preferred in extensions else extensions[0]
    return chosen.lstrip(".")


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove temporary file %s: %s", path, e)
