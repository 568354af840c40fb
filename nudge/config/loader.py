"""
Nudge configuration loader.

Reads ~/.nudge/config.yaml and <project>/.nudge/config.yaml, merges the
project layer over the global one, and validates the result with
NudgeConfig. A file that cannot be read or validated is logged and
skipped.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from nudge.config.models import NudgeConfig

logger = logging.getLogger(__name__)

NUDGE_HOME = Path.home() / ".nudge"
CONFIG_FILENAME = "config.yaml"


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge `override` into a copy of `base`, recursing into nested dicts."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("ignoring unreadable config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("ignoring config %s: top level must be a mapping", path)
        return {}
    return data


def load_config(
    project_dir: Optional[Path] = None,
    global_config_path: Optional[Path] = None,
) -> NudgeConfig:
    """Load the effective configuration for a project.

    Args:
        project_dir: Project root; defaults to the working directory.
        global_config_path: Override for ~/.nudge/config.yaml.
    """
    project_dir = Path(project_dir) if project_dir is not None else Path.cwd()
    global_path = global_config_path or NUDGE_HOME / CONFIG_FILENAME
    project_path = project_dir / ".nudge" / CONFIG_FILENAME

    global_data = _read_yaml(global_path)
    project_data = _read_yaml(project_path)

    try:
        return NudgeConfig.model_validate(deep_merge(global_data, project_data))
    except ValidationError as e:
        logger.warning("invalid project config %s: %s", project_path, e)

    # The project layer broke validation; try the global layer alone
    try:
        return NudgeConfig.model_validate(global_data)
    except ValidationError as e:
        logger.warning("invalid global config %s: %s", global_path, e)
        return NudgeConfig()
