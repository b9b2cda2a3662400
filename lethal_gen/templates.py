import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Literal, Mapping, Optional, Sequence, Tuple

from PIL import Image

from .errors import TemplateLoadError


logger = logging.getLogger(__name__)

Category = Literal["posters", "paintings", "tips"]
FitPolicy = Literal["cover", "contain"]

CATEGORIES: Tuple[str, ...] = ("posters", "paintings", "tips")


@dataclass(frozen=True)
class PlacementRegion:
    x: int
    y: int
    width: int
    height: int

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """(left, top, right, bottom) as used by Pillow's crop/paste."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    def fits_within(self, width: int, height: int) -> bool:
        return (
            self.x >= 0
            and self.y >= 0
            and self.width > 0
            and self.height > 0
            and self.x + self.width <= width
            and self.y + self.height <= height
        )


@dataclass(frozen=True)
class TemplateSpec:
    """
    Static description of one template: where its file lives and where user
    content goes. Geometry is fixed per template name because the templates
    are assets of the target mod, not user configuration.

    `filename=None` means the template is a blank transparent canvas of
    `canvas_size` (used for the tips card, which has no artwork).
    """

    name: str
    category: Category
    region: PlacementRegion
    filename: Optional[str] = None
    overlay: Optional[str] = None
    canvas_size: Optional[Tuple[int, int]] = None
    policy: FitPolicy = "cover"
    centering: Tuple[float, float] = (0.5, 0.5)


@dataclass(frozen=True)
class Template:
    name: str
    category: Category
    image: Image.Image
    region: PlacementRegion
    overlay: Optional[Image.Image] = None
    policy: FitPolicy = "cover"
    centering: Tuple[float, float] = (0.5, 0.5)

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size


DEFAULT_TEMPLATES: Tuple[TemplateSpec, ...] = (
    TemplateSpec(
        name="poster",
        category="posters",
        filename="poster_template.png",
        region=PlacementRegion(0, 0, 341, 559),
    ),
    TemplateSpec(
        name="painting",
        category="paintings",
        filename="painting_template.png",
        region=PlacementRegion(264, 19, 243, 324),
    ),
    TemplateSpec(
        name="tips",
        category="tips",
        canvas_size=(796, 1024),
        region=PlacementRegion(0, 0, 796, 1024),
        policy="contain",
        centering=(1.0, 0.0),
    ),
)


class TemplateRegistry:
    """Read-only, ordered mapping of template name to loaded Template."""

    def __init__(self, templates: Sequence[Template]) -> None:
        by_name: Dict[str, Template] = {}
        for template in templates:
            if template.name in by_name:
                raise TemplateLoadError(
                    f"Duplicate template name '{template.name}'",
                    template_name=template.name,
                )
            by_name[template.name] = template
        self._templates: Mapping[str, Template] = MappingProxyType(by_name)

    @classmethod
    def load(
        cls,
        template_dir: Path,
        specs: Sequence[TemplateSpec] = DEFAULT_TEMPLATES,
    ) -> "TemplateRegistry":
        """
        Load every template described by `specs` from `template_dir`.

        Any missing or unreadable template aborts the whole load with
        TemplateLoadError naming the offending template.
        """
        template_dir = Path(template_dir)
        if not template_dir.is_dir():
            raise TemplateLoadError(f"Template directory not found: {template_dir}")

        templates = [_load_template(template_dir, spec) for spec in specs]
        logger.info("Loaded %d template(s) from %s", len(templates), template_dir)
        return cls(templates)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._templates)

    def __getitem__(self, name: str) -> Template:
        return self._templates[name]

    def __contains__(self, name: object) -> bool:
        return name in self._templates

    def __iter__(self) -> Iterator[Template]:
        return iter(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)


def _load_template(template_dir: Path, spec: TemplateSpec) -> Template:
    if spec.category not in CATEGORIES:
        raise TemplateLoadError(
            f"Template '{spec.name}' has unknown category '{spec.category}'",
            template_name=spec.name,
        )
    if spec.policy not in ("cover", "contain"):
        raise TemplateLoadError(
            f"Template '{spec.name}' has unknown fit policy '{spec.policy}'",
            template_name=spec.name,
        )

    if spec.filename is not None:
        base = _read_rgba(template_dir / spec.filename, spec.name)
    elif spec.canvas_size is not None:
        base = Image.new("RGBA", spec.canvas_size, (0, 0, 0, 0))
    else:
        raise TemplateLoadError(
            f"Template '{spec.name}' has neither a file nor a canvas size",
            template_name=spec.name,
        )

    if not spec.region.fits_within(*base.size):
        raise TemplateLoadError(
            f"Placement region {spec.region} of template '{spec.name}' does not fit "
            f"inside its {base.width}x{base.height} image",
            template_name=spec.name,
        )

    overlay = None
    if spec.overlay is not None:
        overlay = _read_rgba(template_dir / spec.overlay, spec.name)
        if overlay.size != base.size:
            raise TemplateLoadError(
                f"Overlay '{spec.overlay}' of template '{spec.name}' is "
                f"{overlay.width}x{overlay.height}, expected {base.width}x{base.height}",
                template_name=spec.name,
            )

    logger.debug("Loaded template '%s' (%dx%d)", spec.name, base.width, base.height)
    return Template(
        name=spec.name,
        category=spec.category,
        image=base,
        region=spec.region,
        overlay=overlay,
        policy=spec.policy,
        centering=spec.centering,
    )


def _read_rgba(path: Path, template_name: str) -> Image.Image:
    if not path.is_file():
        raise TemplateLoadError(
            f"Template '{template_name}' is missing: {path}",
            template_name=template_name,
        )
    try:
        with Image.open(path) as img:
            img.load()
            return img.convert("RGBA")
    except (OSError, EOFError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise TemplateLoadError(
            f"Template '{template_name}' could not be decoded ({path}): {e}",
            template_name=template_name,
        ) from e
