import os
import tomllib
from dataclasses import dataclass, fields, replace

from .exceptions import CellasmError

CONFIG_FILE = "cellasm.toml"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    collapse: bool = True
    log_level: str = "WARNING"
    debug_map: bool = False  # write <output>.dbg.json beside assembled containers


def _as_bool(key: str, value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise CellasmError(f"invalid boolean for {key}: {value!r}")


def _as_level(key: str, value) -> str:
    level = str(value).strip().upper()
    if level not in LOG_LEVELS:
        raise CellasmError(f"invalid log level for {key}: {value!r}")
    return level


def _read_file(project_root: str) -> dict:
    path = os.path.join(project_root, CONFIG_FILE)
    if not os.path.isfile(path):
        return {}
    with open(path, "rb") as f:
        try:
            manifest = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise CellasmError(f"{path}: {e}") from e
    section = manifest.get("cellasm", {})
    if not isinstance(section, dict):
        raise CellasmError(f"{path}: [cellasm] must be a table")
    return section


def load_settings(project_root: str = ".", environ=None) -> Settings:
    """Defaults, then ``cellasm.toml`` [cellasm], then CELLASM_* variables."""
    environ = os.environ if environ is None else environ
    settings = Settings()
    known = {f.name for f in fields(Settings)}

    for key, value in _read_file(project_root).items():
        if key not in known:
            raise CellasmError(f"unknown setting in {CONFIG_FILE}: {key}")
        if key == "log_level":
            settings = replace(settings, log_level=_as_level(key, value))
        else:
            settings = replace(settings, **{key: _as_bool(key, value)})

    if "CELLASM_COLLAPSE" in environ:
        settings = replace(
            settings, collapse=_as_bool("CELLASM_COLLAPSE", environ["CELLASM_COLLAPSE"])
        )
    if "CELLASM_LOG_LEVEL" in environ:
        settings = replace(
            settings, log_level=_as_level("CELLASM_LOG_LEVEL", environ["CELLASM_LOG_LEVEL"])
        )
    return settings
