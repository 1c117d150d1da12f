"""Configuration file loading and validation.

Loads a YAML configuration file, expands ``${ENV_VAR}`` placeholders,
and validates against Pydantic models defined in :mod:`schema`.
Relative manifest roots are resolved against the config file's directory.
"""

import logging
import os
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

from pack_sentinel.config.env import expand_env_vars
from pack_sentinel.config.schema import PackConfig
from pack_sentinel.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Recognised config file extensions.
_YAML_EXTS = frozenset({".yaml", ".yml"})


def _read_config_file(cfg_fpath: str) -> Dict[str, Any]:
    """Read and parse a YAML config file from *cfg_fpath*.

    Raises :class:`ConfigurationError` on I/O or parse errors.
    """
    ext = os.path.splitext(cfg_fpath)[1].lower()
    if ext not in _YAML_EXTS:
        raise ConfigurationError(
            f"Unsupported config file extension '{ext}'. "
            "Only YAML files (.yaml, .yml) are supported."
        )

    try:
        with open(cfg_fpath, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except Exception as exc:
        raise ConfigurationError(f"Error reading configuration file: {cfg_fpath}\n  {exc}") from exc

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise ConfigurationError(
            "Top-level configuration content must be a YAML mapping (dictionary)."
        )
    return raw_data


def _format_validation_errors(exc: ValidationError) -> str:
    """Format Pydantic validation errors into a readable multi-line string."""
    lines: List[str] = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        lines.append(f"  • {loc}: {err['msg']}")
    return "\n".join(lines)


def validate_config(raw_data: Dict[str, Any], base_dir: str = ".") -> PackConfig:
    """Expand, validate, and normalise an already-parsed config mapping."""
    raw_data = expand_env_vars(raw_data)
    try:
        config = PackConfig.model_validate(raw_data)
    except ValidationError as exc:
        error_summary = _format_validation_errors(exc)
        raise ConfigurationError(
            f"Configuration validation failed ({len(exc.errors())} error(s)):\n" f"{error_summary}"
        ) from exc

    roots = [
        os.path.normpath(os.path.join(base_dir, os.path.expanduser(r))) for r in config.manifest.roots
    ]
    return config.model_copy(
        update={"manifest": config.manifest.model_copy(update={"roots": roots})}
    )


def load_pack_config(cfg_fpath: str) -> PackConfig:
    """Load and return the full :class:`PackConfig` model.

    Steps:
        1. Read YAML file
        2. Expand ``${VAR}`` environment variable references
        3. Validate against :class:`PackConfig` (Pydantic)
        4. Resolve manifest roots relative to the file

    Raises:
        ConfigurationError: On file I/O errors, parse errors, or
            validation failures (all errors reported at once).
    """
    logger.debug("Loading configuration file: %s", cfg_fpath)

    if not os.path.exists(cfg_fpath):
        raise ConfigurationError(f"Configuration file does not exist: {cfg_fpath}")

    raw_data = _read_config_file(cfg_fpath)
    config = validate_config(raw_data, os.path.dirname(os.path.abspath(cfg_fpath)))

    logger.info(
        "Configuration '%s' loaded (v%s). %d manifest root(s).",
        cfg_fpath,
        config.version,
        len(config.manifest.roots),
    )
    return config
