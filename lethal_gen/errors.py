from pathlib import Path
from typing import Optional


class PipelineError(Exception):
    """Base class for every error raised by the generation pipeline."""


class TemplateLoadError(PipelineError):
    """
    A required template is missing, corrupt or has no usable placement region.

    Always fatal: no output can be produced without the full template set.
    """

    def __init__(self, message: str, template_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.template_name = template_name


class InputDirectoryError(PipelineError):
    """The input directory does not exist or cannot be listed."""


class DecodeError(PipelineError):
    """A source image could not be read or decoded."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


class InvalidImageError(PipelineError):
    """An image has degenerate (zero) dimensions."""


class CompositeError(PipelineError):
    """An internal geometry invariant was violated while compositing."""


class WriteError(PipelineError):
    """A composite could not be encoded or persisted."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


class DuplicateSourceError(PipelineError):
    """Two input files share a base name and would write the same outputs."""
