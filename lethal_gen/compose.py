from dataclasses import dataclass
from typing import Optional

from PIL import Image

from .errors import CompositeError
from .templates import Template


@dataclass(frozen=True)
class CompositeResult:
    image: Image.Image
    template_name: str
    source_name: str
    category: str


def region_mask(behind: Image.Image) -> Optional[Image.Image]:
    """
    The alpha channel of the template under the placement region, or None when
    it is uniform. A non-uniform alpha means the artwork cuts a shape (rounded
    corners, torn edges) out of the rectangle.
    """
    alpha = behind.getchannel("A")
    low, high = alpha.getextrema()
    return alpha if low != high else None


def composite(template: Template, fitted: Image.Image, source_name: str = "") -> CompositeResult:
    """
    Insert `fitted` into the template's placement region and return a new
    canvas the size of the template.

    The source is alpha-composited over the region. When the template's alpha
    is uniform inside the region, an opaque cover-fitted source replaces
    every pixel of it. That guarantee does not hold for masked templates:
    where the alpha inside the region varies it acts as a mask, template
    pixels with alpha 0 keep their original value and partial alpha blends
    the two. A foreground overlay, if any, is drawn over everything last.
    """
    region = template.region
    if fitted.size != region.size:
        raise CompositeError(
            f"Fitted image is {fitted.width}x{fitted.height}, "
            f"region of '{template.name}' is {region.width}x{region.height}"
        )
    if not region.fits_within(*template.size):
        raise CompositeError(
            f"Region {region} lies outside template '{template.name}' "
            f"({template.size[0]}x{template.size[1]})"
        )

    if fitted.mode != "RGBA":
        fitted = fitted.convert("RGBA")

    canvas = template.image.copy()
    behind = canvas.crop(region.box)
    inserted = Image.alpha_composite(behind, fitted)

    mask = region_mask(behind)
    if mask is not None:
        inserted = Image.composite(inserted, behind, mask)

    canvas.paste(inserted, region.box)

    if template.overlay is not None:
        canvas = Image.alpha_composite(canvas, template.overlay)

    if canvas.size != template.size:
        raise CompositeError(
            f"Composite for '{template.name}' is {canvas.width}x{canvas.height}, "
            f"expected {template.size[0]}x{template.size[1]}"
        )

    return CompositeResult(
        image=canvas,
        template_name=template.name,
        source_name=source_name,
        category=template.category,
    )
