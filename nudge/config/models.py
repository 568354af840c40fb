"""
Pydantic models for Nudge configuration validation.

These models define the schema for config.yaml, read from ~/.nudge/ and
from the project's .nudge/ directory. They provide:
- Type-safe configuration loading with automatic validation
- Human-readable error messages for invalid configuration
"""

from __future__ import annotations

from enum import Enum
from typing import Dict

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Enums
# ============================================================================


class NudgeMode(str, Enum):
    """How loop findings are acted on."""
    OFF = "off"
    WARN = "warn"
    BLOCK = "block"


# ============================================================================
# Configuration Section Models
# ============================================================================


class FeaturesConfig(BaseModel):
    """Feature toggles for the learning subsystems."""
    error_learning: bool = True
    loop_detection: bool = True
    agent_prediction: bool = True
    effectiveness_tracking: bool = True

    model_config = {"extra": "allow"}


class LoopBlockingConfig(BaseModel):
    """Repeated read/search limits enforced before a tool runs."""
    enabled: bool = True
    read_threshold: int = Field(default=3, gt=0)
    search_threshold: int = Field(default=2, gt=0)
    warn_cooldown_seconds: int = Field(default=300, ge=0)

    model_config = {"extra": "allow"}


class HygieneConfig(BaseModel):
    """Session efficiency reporting and reaction."""
    warn_on_low_efficiency: int = Field(default=40, ge=0, le=100)
    auto_adjust_thresholds: bool = True

    model_config = {"extra": "allow"}


class LearningConfig(BaseModel):
    """Learning cycle and prediction settings."""
    window_days: int = Field(default=30, gt=0)
    min_prediction_confidence: float = Field(default=0.4, ge=0.0, le=1.0)

    model_config = {"extra": "allow"}


# ============================================================================
# Root Configuration Model
# ============================================================================


class NudgeConfig(BaseModel):
    """
    Root Pydantic model for Nudge configuration (config.yaml).

    Validates the merged configuration from the global and project layers.
    Uses extra="allow" at the root level to be forward-compatible with new
    config keys added in future versions.
    """
    enabled: bool = True
    mode: NudgeMode = NudgeMode.WARN

    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    loop_blocking: LoopBlockingConfig = Field(default_factory=LoopBlockingConfig)
    hygiene: HygieneConfig = Field(default_factory=HygieneConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)

    # Helper name -> helper type used for threshold lookup
    agent_types: Dict[str, str] = Field(default_factory=dict)

    model_config = {"extra": "allow"}

    @field_validator("mode", mode="before")
    @classmethod
    def coerce_mode(cls, v):
        """Accept any casing, and YAML's `off` parsed as False."""
        if v is False:
            return NudgeMode.OFF
        if isinstance(v, str):
            return v.strip().lower()
        return v

    def resolve_agent_type(self, agent_name: str) -> str:
        """Helper type for a helper name, defaulting to the name itself."""
        return self.agent_types.get(agent_name, agent_name)
