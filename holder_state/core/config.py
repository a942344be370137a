"""
Settings for holder_state runs.

A run is described by one YAML file validated against the `Settings` model
below. Keys can be overridden from the environment with the `HOLDER_STATE_`
prefix and `__` between nesting levels, e.g.
`HOLDER_STATE_SUPPLY__KNOWN_TOTAL_QUANTITY=1000000000`.

Validation happens once, in `load_settings`; library code receives the
resulting `Settings` object and never reads files on its own. Any schema
problem surfaces as a `ConfigError` listing every offending key.
"""

import os
import json
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError

class ConfigError(Exception):
    """Settings could not be loaded or failed validation."""

# --- Sections ---

class WindowSettings(BaseModel):
    """Bounds of the daily calendar the analysis runs over (both inclusive)."""
    start_period: date
    end_period: date

    @field_validator('end_period')
    def end_must_not_precede_start(cls, v, values):
        start = values.data.get('start_period')
        if start is not None and v < start:
            raise PydanticCustomError(
                "window_inverted",
                "end_period '{end}' must not be earlier than start_period '{start}'",
                {"end": str(v), "start": str(start)}
            )
        return v


class SupplySettings(BaseModel):
    """Economic constants of the tracked token."""
    significance_floor: float = Field(0.0, ge=0)
    known_total_quantity: float = Field(..., gt=0)


class CohortThreshold(BaseModel):
    max_share: float = Field(gt=0)
    label: str = Field(min_length=1)


class CohortSettings(BaseModel):
    """Share-of-total buckets, ascending. A wallet falls in the first bucket whose
    `max_share` is strictly greater than its share of the known total."""
    thresholds: List[CohortThreshold] = Field(default_factory=lambda: [
        CohortThreshold(max_share=0.0001, label="krill"),
        CohortThreshold(max_share=0.001, label="fish"),
        CohortThreshold(max_share=0.01, label="dolphin"),
        CohortThreshold(max_share=1.0, label="whale"),
    ], min_length=1)

    @field_validator('thresholds')
    def thresholds_strictly_ascending(cls, v):
        bounds = [t.max_share for t in v]
        if any(b <= a for a, b in zip(bounds, bounds[1:])):
            raise PydanticCustomError(
                "cohort_thresholds_unordered",
                "Cohort thresholds must be strictly ascending, got {bounds}",
                {"bounds": bounds}
            )
        labels = [t.label for t in v]
        if len(set(labels)) != len(labels):
            raise PydanticCustomError(
                "cohort_labels_duplicated",
                "Cohort labels must be unique, got {labels}",
                {"labels": labels}
            )
        return v


class AgeBoundary(BaseModel):
    max_days: int = Field(ge=0)
    label: str = Field(min_length=1)


class AgeSettings(BaseModel):
    """Supply-age buckets in days since the current episode started.

    An age lands in the first bucket with `age <= max_days`; anything older than
    the last boundary lands in `overflow_label` (the aged supply bucket).
    """
    boundaries: List[AgeBoundary] = Field(default_factory=lambda: [
        AgeBoundary(max_days=0, label="active"),
        AgeBoundary(max_days=30, label="sub_1_month"),
        AgeBoundary(max_days=90, label="m1_3"),
        AgeBoundary(max_days=180, label="m3_6"),
    ])
    overflow_label: str = "m6_plus"
    unknown_label: str = "unknown"

    @field_validator('boundaries')
    def boundaries_strictly_ascending(cls, v):
        days = [b.max_days for b in v]
        if any(b <= a for a, b in zip(days, days[1:])):
            raise PydanticCustomError(
                "age_boundaries_unordered",
                "Age bucket boundaries must be strictly ascending, got {days}",
                {"days": days}
            )
        return v


class VelocitySettings(BaseModel):
    """Rolling windows, in calendar periods."""
    rolling_baseline_window_days: int = Field(30, gt=0)
    supply_flow_window_days: int = Field(7, gt=0)


class ReconstructionSettings(BaseModel):
    """Knobs of the per-entity reconstruction phase."""
    # drop wallets whose lifetime peak never exceeds the significance floor
    require_floor_crossing: bool = True
    max_workers: int = Field(1, ge=1)
    fail_on_order_violation: bool = False


class RegistrySettings(BaseModel):
    """Where the role oracle registries live (versioned JSON files)."""
    dir_path: Optional[str] = None
    infrastructure_kind: str = "infrastructure"
    active_participant_kind: str = "active_participant"


class OutputSettings(BaseModel):
    format: Literal["csv", "parquet"] = "csv"
    dir: str = "reports/holder_state"


class Settings(BaseModel):
    """One analysis run."""
    window: WindowSettings
    supply: SupplySettings
    cohorts: CohortSettings = CohortSettings()
    ages: AgeSettings = AgeSettings()
    velocity: VelocitySettings = VelocitySettings()
    reconstruction: ReconstructionSettings = ReconstructionSettings()
    registry: RegistrySettings = RegistrySettings()
    output: OutputSettings = OutputSettings()
    # loose schema, read by dq.normalizer and dq.validators
    data_quality: Optional[Dict[str, Any]] = None

# --- Loading ---

ENV_PREFIX = "HOLDER_STATE"


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Configuration file not found at: {path}")
    try:
        text = path.read_text(encoding="utf-8")
        return yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse YAML at {path}: {e}") from e


def _coerce_env_value(raw: str) -> Any:
    """JSON-looking values (lists, objects, numbers, true/false/null) are decoded, the rest stay strings."""
    looks_json = raw[:1] in ("[", "{") or raw.lower() in ("true", "false", "null") \
        or raw.lstrip("-").replace(".", "", 1).isdigit()
    if not looks_json:
        return raw
    try:
        return json.loads(raw.lower() if raw.lower() in ("true", "false", "null") else raw)
    except json.JSONDecodeError:
        return raw


def _env_overrides(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    """HOLDER_STATE_SUPPLY__SIGNIFICANCE_FLOOR=5 -> {'supply': {'significance_floor': 5}}"""
    tree: Dict[str, Any] = {}
    for key, raw in os.environ.items():
        if not key.startswith(prefix + "_"):
            continue
        path = key[len(prefix) + 1:].lower().split("__")
        node = tree
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = _coerce_env_value(raw)
    return tree


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay `overrides` on `base`; nested mappings merge, anything else replaces."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _describe(err: ValidationError) -> str:
    lines = [f"{len(err.errors())} invalid setting(s):"]
    for item in err.errors():
        where = ".".join(str(p) for p in item["loc"]) or "<root>"
        lines.append(f"  {where}: {item['msg']}")
    return "\n".join(lines)

# --- Public API ---

def load_settings(path: str = "settings.yaml") -> Settings:
    """
    Read `path`, apply environment overrides and validate.

    Raises:
        ConfigError: missing or unparsable file, empty file, or schema errors.
    """
    logger.info(f"config.load path={path}")
    from_file = _read_yaml(Path(path))
    if not from_file:
        raise ConfigError(f"YAML file '{path}' is empty or invalid.")
    raw = _deep_merge(from_file, _env_overrides())
    try:
        settings = Settings.model_validate(raw)
    except ValidationError as e:
        logger.error(f"config.invalid path={path}\n{_describe(e)}")
        raise ConfigError("Failed to validate settings.") from e
    logger.success(f"config.loaded window={settings.window.start_period}..{settings.window.end_period}")
    return settings

if __name__ == '__main__':
    # python -m holder_state.core.config  (reads ./settings.yaml and ./.env)
    from dotenv import load_dotenv
    load_dotenv()

    try:
        print(json.dumps(load_settings().model_dump(mode="json"), indent=2))
    except ConfigError as e:
        print(f"config error: {e}")
