from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

CONFIG_RELATIVE_PATH = Path(".taskplan") / "taskplan.toml"

DEFAULT_PLANNER_STEPS = ("Analyze", "Implement", "Verify")


@dataclass(frozen=True)
class EngineConfig:
    minutes_per_1k_tokens: int = 2
    confidence: float = 0.7
    default_step_tokens: int = 1000
    default_steps: tuple[str, ...] = DEFAULT_PLANNER_STEPS
    source_path: Path | None = None


class ConfigValidationError(ValueError):
    pass


def _as_int(value: object, *, field: str, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError(f"{field} must be an integer")
    if value < minimum:
        raise ConfigValidationError(f"{field} must be >= {minimum}")
    return value


def _as_confidence(value: object, *, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigValidationError(f"{field} must be a number")
    if not 0.0 <= float(value) <= 1.0:
        raise ConfigValidationError(f"{field} must be within [0, 1]")
    return float(value)


def _as_str_tuple(value: object, *, field: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ConfigValidationError(f"{field} must be an array of strings")

    out: list[str] = []
    for idx, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            raise ConfigValidationError(f"{field}[{idx}] must be a non-empty string")
        out.append(item.strip())
    if not out:
        raise ConfigValidationError(f"{field} cannot be empty")
    return tuple(out)


def _table(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ConfigValidationError(f"[{name}] must be a table")
    return value


def parse_config(raw: dict[str, Any], *, source_path: Path | None = None) -> EngineConfig:
    defaults = EngineConfig()
    estimate = _table(raw, "estimate")
    planner = _table(raw, "planner")

    return EngineConfig(
        minutes_per_1k_tokens=(
            _as_int(
                estimate["minutes_per_1k_tokens"],
                field="estimate.minutes_per_1k_tokens",
            )
            if "minutes_per_1k_tokens" in estimate
            else defaults.minutes_per_1k_tokens
        ),
        confidence=(
            _as_confidence(estimate["confidence"], field="estimate.confidence")
            if "confidence" in estimate
            else defaults.confidence
        ),
        default_step_tokens=(
            _as_int(
                estimate["default_step_tokens"],
                field="estimate.default_step_tokens",
                minimum=1,
            )
            if "default_step_tokens" in estimate
            else defaults.default_step_tokens
        ),
        default_steps=(
            _as_str_tuple(planner["default_steps"], field="planner.default_steps")
            if "default_steps" in planner
            else defaults.default_steps
        ),
        source_path=source_path,
    )


def load_config(path: Path | None = None, *, repo_root: Path | None = None) -> EngineConfig:
    """Load engine settings from TOML; a missing file yields defaults."""
    if path is None:
        path = (repo_root or Path.cwd()) / CONFIG_RELATIVE_PATH
    if not path.exists():
        return EngineConfig()

    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigValidationError(f"invalid TOML in {path}: {exc}") from exc
    try:
        return parse_config(raw, source_path=path)
    except ConfigValidationError as exc:
        raise ConfigValidationError(f"{path}: {exc}") from exc
