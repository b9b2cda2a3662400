import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv


ENV_PREFIX = "LETHAL_GEN_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class Settings:
    templates_dir: Path = Path("templates")
    input_dir: Path = Path("input")
    output_dir: Path = Path("output")
    # None means "one worker per available CPU".
    jobs: Optional[int] = None
    image_format: str = "PNG"
    mod_layout: bool = False
    fail_on_error: bool = True


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Build settings from LETHAL_GEN_* environment variables.

    The nearest .env file above the working directory (or `env_file`) is
    loaded first; variables already set in the process environment win over
    the file.
    """
    load_dotenv(env_file if env_file is not None else find_dotenv(usecwd=True))

    defaults = Settings()
    return Settings(
        templates_dir=_env_path("TEMPLATES", defaults.templates_dir),
        input_dir=_env_path("INPUT", defaults.input_dir),
        output_dir=_env_path("OUTPUT", defaults.output_dir),
        jobs=_env_int("JOBS", defaults.jobs),
        image_format=(os.environ.get(ENV_PREFIX + "FORMAT") or defaults.image_format).upper(),
        mod_layout=_env_bool("MOD_LAYOUT", defaults.mod_layout),
        fail_on_error=_env_bool("FAIL_ON_ERROR", defaults.fail_on_error),
    )


def _env_path(name: str, default: Path) -> Path:
    value = os.environ.get(ENV_PREFIX + name)
    return Path(value) if value else default


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.environ.get(ENV_PREFIX + name)
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}")
    if parsed < 1:
        raise ValueError(f"{ENV_PREFIX}{name} must be at least 1, got {parsed}")
    return parsed


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(ENV_PREFIX + name)
    if not value:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{ENV_PREFIX}{name} must be a boolean, got {value!r}")
