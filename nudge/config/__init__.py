"""Nudge configuration module."""

from nudge.config.loader import NUDGE_HOME, load_config
from nudge.config.models import NudgeConfig, NudgeMode

__all__ = ["NUDGE_HOME", "NudgeConfig", "NudgeMode", "load_config"]
