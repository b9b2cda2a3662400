"""
Poster and painting generator for the Lethal Posters / Lethal Paintings mods.

Modules:
- templates: fixed template set and placement geometry
- loader: source image discovery & decoding
- render: aspect-preserving fit (cover / contain) to a placement region
- compose: inserting fitted images into templates
- writer: deterministic, atomic output files
- core: pipeline orchestration over every template x image pair
- config: environment / .env settings
"""

__version__ = "0.3.0"
